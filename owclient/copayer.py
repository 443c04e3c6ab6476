#!/usr/bin/env python3

# Copyright (C) 2020-2022 The owclient developers
#
# This file is part of owclient. It is subject to the license terms in the
# LICENSE file found in the top-level directory of this distribution.
#
# No part of owclient including this file, may be copied, modified, propagated,
# or distributed except according to the terms contained in the LICENSE file.

"""Copayer: one participant's view of a shared wallet.

A device holds a copayer for each of its accounts.
The copayer knows its own account extended public key,
the wallet metadata, the wallet private key (a secret shared by all
the participants, only used to prove wallet membership), the
derived shared encrypting key, and the public key ring of all
the participants.

The public key ring is always replaced as a whole,
never merged entry by entry.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar

from owclient.address import AddressDefinition, AddressType, derive_address
from owclient.exceptions import OWClientStateError, OWClientTypeError
from owclient.keystore import copayer_id_from_xpub, shared_encrypting_key

_Copayer = TypeVar("_Copayer", bound="Copayer")

PublicKeyRingEntry = Dict[str, Any]

# python attribute name, serialized name
_FIELDS = (
    ("account", "account"),
    ("copayer_id", "copayerId"),
    ("copayer_name", "copayerName"),
    ("xpub", "xPubKey"),
    ("wallet_id", "walletId"),
    ("wallet_name", "walletName"),
    ("m", "m"),
    ("n", "n"),
    ("public_key_ring", "publicKeyRing"),
    ("wallet_priv_key", "walletPrivKey"),
    ("shared_encrypting_key", "sharedEncryptingKey"),
    ("address_type", "addressType"),
)


def ring_entry(
    xpub: str, request_pub_key: Optional[str], device_id: Optional[str], account: int
) -> PublicKeyRingEntry:
    return {
        "xPubKey": xpub,
        "requestPubKey": request_pub_key,
        "deviceId": device_id,
        "account": account,
    }


@dataclass
class Copayer:
    xpub: str
    account: int = 0
    copayer_id: Optional[str] = None
    copayer_name: Optional[str] = None
    wallet_id: Optional[str] = None
    wallet_name: Optional[str] = None
    m: Optional[int] = None
    n: Optional[int] = None
    public_key_ring: List[PublicKeyRingEntry] = field(default_factory=list)
    wallet_priv_key: Optional[str] = None
    shared_encrypting_key: Optional[str] = None
    address_type: AddressType = AddressType.NORMAL

    @classmethod
    def from_extended_public_key(
        cls: Type[_Copayer],
        device_id: Optional[str],
        xpub: str,
        account: int,
        wallet_priv_key: Optional[str] = None,
    ) -> _Copayer:
        "Return the copayer of an account extended public key."
        if isinstance(account, bool) or not isinstance(account, int):
            raise OWClientTypeError(f"account must be an int: {account!r}")
        if not xpub:
            raise OWClientStateError("missing extended public key")

        copayer = cls(
            xpub=xpub,
            account=account,
            copayer_id=copayer_id_from_xpub(xpub),
            public_key_ring=[ring_entry(xpub, None, device_id, account)],
        )
        if wallet_priv_key:
            copayer.add_wallet_private_key(wallet_priv_key)
        return copayer

    def add_wallet_private_key(self, wallet_priv_key: str) -> None:
        # validate before mutating anything
        key = shared_encrypting_key(wallet_priv_key)
        self.wallet_priv_key = wallet_priv_key
        self.shared_encrypting_key = key

    def add_wallet_info(
        self,
        device_id: str,
        wallet_id: str,
        wallet_name: Optional[str],
        m: int,
        n: int,
        request_pub_key: Optional[str],
        copayer_name: Optional[str] = None,
    ) -> None:
        """Store the wallet metadata once membership is confirmed.

        A single participant wallet has no one else to wait for:
        its public key ring is complete at once.
        """
        self.wallet_id = wallet_id
        self.wallet_name = wallet_name
        self.m = m
        self.n = n
        if copayer_name:
            self.copayer_name = copayer_name

        if n == 1:
            self.address_type = AddressType.NORMAL
            ring = [ring_entry(self.xpub, request_pub_key, device_id, self.account)]
            self.add_public_key_ring(ring)
        else:
            self.address_type = AddressType.SHARED

    def has_wallet_info(self) -> bool:
        return bool(self.wallet_id)

    def add_public_key_ring(self, public_key_ring: List[PublicKeyRingEntry]) -> None:
        self.public_key_ring = copy.deepcopy(list(public_key_ring))

    def is_complete(self) -> bool:
        if not self.m or not self.n:
            return False
        return len(self.public_key_ring or []) == self.n

    def derive_address(self, path: str, address_type: Any = None) -> AddressDefinition:
        "Return the wallet address at path, computed from the current ring."
        if address_type is None:
            address_type = self.address_type
        return derive_address(self.wallet_id, address_type, self.public_key_ring, path, self.m)

    def to_dict(self) -> Dict[str, Any]:
        dict_ = {}
        for attr, key in _FIELDS:
            value = getattr(self, attr)
            if isinstance(value, AddressType):
                value = value.value
            elif attr == "public_key_ring":
                value = copy.deepcopy(value)
            dict_[key] = value
        return dict_

    @classmethod
    def from_dict(cls: Type[_Copayer], dict_: Mapping[str, Any]) -> _Copayer:
        if not dict_.get("xPubKey"):
            raise OWClientStateError("invalid input: missing xPubKey")
        kwargs = {attr: dict_.get(key) for attr, key in _FIELDS}
        kwargs["account"] = kwargs["account"] or 0
        kwargs["public_key_ring"] = copy.deepcopy(kwargs["public_key_ring"] or [])
        kwargs["address_type"] = AddressType.from_value(
            kwargs["address_type"] or AddressType.NORMAL
        )
        return cls(**kwargs)

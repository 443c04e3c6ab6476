#!/usr/bin/env python3

# Copyright (C) 2020-2022 The owclient developers
#
# This file is part of owclient. It is subject to the license terms in the
# LICENSE file found in the top-level directory of this distribution.
#
# No part of owclient including this file, may be copied, modified, propagated,
# or distributed except according to the terms contained in the LICENSE file.

"""Address definitions.

An address is the chash160 of its definition, the structural
spending policy:

- single signature (NORMAL): ["sig", {"pubkey": pub_key}]
- M-of-N multisig (SHARED):
  ["r of set", {"required": m, "set": [["sig", {"pubkey": pub_key}], ...]}]

Public keys are base64 compressed keys derived from each
public key ring entry at the given non-hardened path.
The set is in public key ring order: the order is part of the
definition, hence of the address, and must never be changed.

Signing paths map each public key to the position of its signature
in the definition: "r" for NORMAL, "r.<i>" for SHARED.
"""

import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Sequence, Type, TypeVar

from owclient.exceptions import InvalidAddressType, OWClientValueError, RingSizeMismatch
from owclient.keystore import derive_public_key
from owclient.object_hash import get_chash160

_AddressType = TypeVar("_AddressType", bound="AddressType")
_AddressDefinition = TypeVar("_AddressDefinition", bound="AddressDefinition")


class AddressType(Enum):
    NORMAL = "normal"
    SHARED = "shared"

    @classmethod
    def from_value(cls: Type[_AddressType], value: Any) -> _AddressType:
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError as e:
            raise InvalidAddressType(f"invalid address type: {value!r}") from e


@dataclass(frozen=True)
class AddressDefinition:
    address: str
    definition: List[Any]
    path: str
    signing_paths: Dict[str, str] = field(default_factory=dict)
    wallet_id: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "definition": self.definition,
            "path": self.path,
            "signingPaths": dict(self.signing_paths),
            "walletId": self.wallet_id,
        }

    @classmethod
    def from_dict(
        cls: Type[_AddressDefinition], dict_: Mapping[str, Any]
    ) -> _AddressDefinition:
        return cls(
            dict_["address"],
            dict_["definition"],
            dict_["path"],
            dict(dict_.get("signingPaths", {})),
            dict_.get("walletId"),
        )


def b64_pub_keys(public_key_ring: Sequence[Mapping[str, Any]], path: str) -> List[str]:
    "Return the base64 public keys derived at path, in ring order."
    pub_keys = []
    for entry in public_key_ring:
        xpub = entry.get("xPubKey")
        if not xpub:
            raise OWClientValueError("public key ring entry without xPubKey")
        pub_key = derive_public_key(xpub, path)
        pub_keys.append(base64.b64encode(pub_key).decode("ascii"))
    return pub_keys


def single_sig_definition(pub_key: str) -> List[Any]:
    return ["sig", {"pubkey": pub_key}]


def multisig_definition(pub_keys: Sequence[str], required: int) -> List[Any]:
    return [
        "r of set",
        {"required": required, "set": [single_sig_definition(k) for k in pub_keys]},
    ]


def derive_address(
    wallet_id: Any,
    address_type: Any,
    public_key_ring: Sequence[Mapping[str, Any]],
    path: str,
    m: int,
) -> AddressDefinition:
    """Return the address definition of a wallet at path.

    It is a pure function of its arguments: anyone with the
    public key ring can recompute (and check) any wallet address.
    """

    address_type = AddressType.from_value(address_type)
    pub_keys = b64_pub_keys(public_key_ring, path)

    signing_paths: Dict[str, str] = {}
    if address_type is AddressType.NORMAL:
        if len(pub_keys) != 1:
            err_msg = f"a normal address needs exactly one key: {len(pub_keys)}"
            raise RingSizeMismatch(err_msg)
        definition = single_sig_definition(pub_keys[0])
        signing_paths[pub_keys[0]] = "r"
    elif address_type is AddressType.SHARED:
        if isinstance(m, bool) or not isinstance(m, int) or not 0 < m <= len(pub_keys):
            err_msg = f"invalid required signatures: {m!r} of {len(pub_keys)}"
            raise OWClientValueError(err_msg)
        definition = multisig_definition(pub_keys, m)
        for i, pub_key in enumerate(pub_keys):
            signing_paths[pub_key] = f"r.{i}"
    else:  # pragma: no cover
        raise InvalidAddressType(f"unhandled address type: {address_type}")

    return AddressDefinition(
        address=get_chash160(definition),
        definition=definition,
        path=path,
        signing_paths=signing_paths,
        wallet_id=wallet_id,
    )

#!/usr/bin/env python3

# Copyright (C) 2020-2022 The owclient developers
#
# This file is part of owclient. It is subject to the license terms in the
# LICENSE file found in the top-level directory of this distribution.
#
# No part of owclient including this file, may be copied, modified, propagated,
# or distributed except according to the terms contained in the LICENSE file.

"""Device: the root identity owning the master key material.

Derivation dependencies:

- signing software wallets (with or without mnemonic):
  mnemonic (+passphrase) -> xprv -> device_id
                                 -> request_priv_key -> request_pub_key
                                 -> entropy_source -> personal_encrypting_key
- watch-only software and hardware wallets:
  entropy (hashed twice) -> entropy_source
  device_pub_key -> device_id
  entropy_source -> request_priv_key -> request_pub_key
                 -> personal_encrypting_key

The derived fields are computed once, at creation or import,
by the pure function expand_device_keys; encryption only toggles
the presence of the plaintext private material.
"""

import copy
import logging
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Type, TypeVar

from btclib.exceptions import BTClibValueError
from btclib.mnemonic import WORDLISTS
from btclib.mnemonic.bip39 import entropy_from_mnemonic, mnemonic_from_entropy, seed_from_mnemonic

from owclient import defaults, encryption
from owclient.constants import COINS, DERIVATION_STRATEGIES, NETWORKS
from owclient.copayer import Copayer
from owclient.exceptions import (
    DecryptionFailed,
    EncryptedPrivateKey,
    InvalidCoin,
    InvalidDerivationStrategy,
    InvalidNetwork,
    MissingPrivateKey,
    NetworkMismatch,
    OWClientStateError,
    OWClientValueError,
)
from owclient.keystore import (
    derive_child,
    device_id_from_pub_key,
    device_pub_key_from_xprv,
    derive_personal_encrypting_key,
    entropy_source_from_hex,
    entropy_source_from_request_key,
    get_base_derivation_path,
    network_from_extended_key,
    neutered,
    new_root_xprv,
    request_keypair_from_entropy,
    request_keypair_from_xprv,
    root_xprv_from_seed,
)

LOGGER = logging.getLogger(__name__)

_Device = TypeVar("_Device", bound="Device")

# python attribute name, serialized name
_FIELDS = (
    ("coin", "coin"),
    ("network", "network"),
    ("derivation_strategy", "derivationStrategy"),
    ("xprv", "xPrivKey"),
    ("xpub", "xPubKey"),
    ("xprv_encrypted", "xPrivKeyEncrypted"),
    ("mnemonic", "mnemonic"),
    ("mnemonic_encrypted", "mnemonicEncrypted"),
    ("mnemonic_has_passphrase", "mnemonicHasPassphrase"),
    ("request_priv_key", "requestPrivKey"),
    ("request_pub_key", "requestPubKey"),
    ("personal_encrypting_key", "personalEncryptingKey"),
    ("entropy_source", "entropySource"),
    ("device_id", "deviceId"),
    ("device_pub_key", "devicePubKey"),
)


def _check_coin(coin: str) -> None:
    if coin not in COINS:
        raise InvalidCoin(f"invalid coin: {coin}")


def _check_network(network: str) -> None:
    if network not in NETWORKS:
        raise InvalidNetwork(f"invalid network: {network}")


def _check_derivation_strategy(derivation_strategy: str) -> None:
    if derivation_strategy not in DERIVATION_STRATEGIES:
        raise InvalidDerivationStrategy(f"invalid derivation strategy: {derivation_strategy}")


def _check_language(lang: str) -> None:
    if lang not in WORDLISTS.languages:
        raise OWClientValueError(f"unsupported language: {lang}")


def _nfkd(text: Optional[str]) -> str:
    return unicodedata.normalize("NFKD", text or "")


def mnemonic_language(mnemonic: str) -> str:
    "Return the first known language the mnemonic is valid in."
    for lang in WORDLISTS.languages:
        try:
            entropy_from_mnemonic(mnemonic, lang)
        except (BTClibValueError, ValueError, IndexError):
            continue
        return lang
    raise OWClientValueError("invalid mnemonic")


def xprv_from_mnemonic(
    mnemonic: str, passphrase: Optional[str], network: str, lang: Optional[str] = None
) -> str:
    """Return the BIP39 root extended private key of a mnemonic.

    If lang is not given, it is detected from the mnemonic words.
    """
    if lang is None:
        lang = mnemonic_language(mnemonic)
    _check_language(lang)
    try:
        entropy_from_mnemonic(mnemonic, lang)
    except (BTClibValueError, ValueError, IndexError) as e:
        raise OWClientValueError(f"invalid mnemonic: {e}") from e
    seed = seed_from_mnemonic(_nfkd(mnemonic), _nfkd(passphrase), verify_checksum=False)
    return root_xprv_from_seed(seed, network)


class ExpandedKeys(NamedTuple):
    network: str
    xpub: str
    device_pub_key: str
    request_priv_key: str
    request_pub_key: str
    entropy_source: str
    personal_encrypting_key: str
    device_id: str


def expand_device_keys(
    network: Optional[str],
    xprv: Optional[str] = None,
    xpub: Optional[str] = None,
    device_pub_key: Optional[str] = None,
    entropy_source: Optional[str] = None,
) -> ExpandedKeys:
    """Return all the keys derived from the master key material.

    Either xprv or (xpub, device_pub_key, entropy_source)
    must be provided; the network, if provided,
    must match the one of the extended key.
    """
    if not (xprv or (xpub and device_pub_key and entropy_source)):
        raise OWClientStateError("missing master key material")

    key_network = network_from_extended_key(xprv or xpub)
    if network and network != key_network:
        raise NetworkMismatch(f"{network} device with a {key_network} key")

    if xprv:
        xpub = neutered(xprv)
        device_pub_key = device_pub_key_from_xprv(xprv)

    if entropy_source:
        request_key = request_keypair_from_entropy(entropy_source)
    else:
        request_key = request_keypair_from_xprv(xprv)
        entropy_source = entropy_source_from_request_key(request_key.prv_key)

    return ExpandedKeys(
        network=key_network,
        xpub=xpub,
        device_pub_key=device_pub_key,
        request_priv_key=request_key.prv_key,
        request_pub_key=request_key.pub_key,
        entropy_source=entropy_source,
        personal_encrypting_key=derive_personal_encrypting_key(entropy_source),
        device_id=device_id_from_pub_key(device_pub_key),
    )


class Keys(NamedTuple):
    xprv: Optional[str]
    mnemonic: Optional[str]


@dataclass
class Device:
    coin: str = defaults.COIN
    network: Optional[str] = None
    derivation_strategy: str = defaults.DERIVATION_STRATEGY
    xprv: Optional[str] = None
    xpub: Optional[str] = None
    xprv_encrypted: Optional[str] = None
    mnemonic: Optional[str] = None
    mnemonic_encrypted: Optional[str] = None
    mnemonic_has_passphrase: bool = False
    request_priv_key: Optional[str] = None
    request_pub_key: Optional[str] = None
    personal_encrypting_key: Optional[str] = None
    entropy_source: Optional[str] = None
    device_id: Optional[str] = None
    device_pub_key: Optional[str] = None
    copayers: List[Copayer] = field(default_factory=list)
    # name of the external (hardware) key source, not serialized
    external_source: Optional[str] = field(default=None, compare=False)

    # creation

    def _expand(self) -> None:
        keys = expand_device_keys(
            self.network, self.xprv, self.xpub, self.device_pub_key, self.entropy_source
        )
        for attr, value in keys._asdict().items():
            setattr(self, attr, value)

    @classmethod
    def create(cls: Type[_Device], coin: str, network: str) -> _Device:
        "Return a device with a new random master key."
        _check_coin(coin)
        _check_network(network)
        device = cls(coin=coin, network=network, xprv=new_root_xprv(network))
        device._expand()
        return device

    @classmethod
    def create_with_mnemonic(
        cls: Type[_Device],
        coin: str,
        network: str,
        passphrase: Optional[str] = None,
        lang: str = defaults.MNEMONIC_LANGUAGE,
    ) -> _Device:
        "Return a device with a new random 12 words mnemonic."
        _check_coin(coin)
        _check_network(network)
        _check_language(lang)
        mnemonic = mnemonic_from_entropy(None, lang)
        device = cls(
            coin=coin,
            network=network,
            xprv=xprv_from_mnemonic(mnemonic, passphrase, network, lang),
            mnemonic=mnemonic,
            mnemonic_has_passphrase=bool(passphrase),
        )
        device._expand()
        return device

    @classmethod
    def from_extended_private_key(
        cls: Type[_Device], coin: str, xprv: str, derivation_strategy: str
    ) -> _Device:
        _check_coin(coin)
        _check_derivation_strategy(derivation_strategy)
        device = cls(coin=coin, derivation_strategy=derivation_strategy, xprv=xprv)
        device._expand()
        return device

    @classmethod
    def from_mnemonic(
        cls: Type[_Device],
        coin: str,
        network: str,
        mnemonic: str,
        passphrase: Optional[str],
        derivation_strategy: str,
        lang: Optional[str] = defaults.MNEMONIC_LANGUAGE,
    ) -> _Device:
        """Return the device of a mnemonic.

        A wrong passphrase is not an error:
        it results in a different (valid) master key.
        """
        _check_coin(coin)
        _check_network(network)
        _check_derivation_strategy(derivation_strategy)
        device = cls(
            coin=coin,
            network=network,
            derivation_strategy=derivation_strategy,
            xprv=xprv_from_mnemonic(mnemonic, passphrase, network, lang),
            mnemonic=mnemonic,
            mnemonic_has_passphrase=bool(passphrase),
        )
        device._expand()
        return device

    @classmethod
    def from_extended_public_key(
        cls: Type[_Device],
        coin: str,
        network: str,
        xpub: str,
        source: Optional[str],
        entropy_source_hex: str,
        derivation_strategy: str,
        device_pub_key: str,
    ) -> _Device:
        """Return a watch-only device.

        xpub is the account extended public key, i.e. already derived
        at the account base path; device_pub_key is the public key at m/1'.
        The entropy must be derivable from the (never disclosed) master
        private key but not from xpub: it is only checked for length.
        """
        _check_coin(coin)
        _check_network(network)
        _check_derivation_strategy(derivation_strategy)
        if not entropy_source_hex:
            raise OWClientValueError("missing entropy source")
        device = cls(
            coin=coin,
            network=network,
            derivation_strategy=derivation_strategy,
            xpub=xpub,
            entropy_source=entropy_source_from_hex(entropy_source_hex),
            device_pub_key=device_pub_key,
            external_source=source,
        )
        device._expand()
        return device

    # serialization

    def to_dict(self) -> Dict[str, Any]:
        dict_: Dict[str, Any] = {key: getattr(self, attr) for attr, key in _FIELDS}
        dict_["copayers"] = [c.to_dict() for c in self.copayers]
        return dict_

    @classmethod
    def from_dict(cls: Type[_Device], dict_: Mapping[str, Any]) -> _Device:
        kwargs = {attr: dict_.get(key) for attr, key in _FIELDS}
        kwargs["coin"] = kwargs["coin"] or defaults.COIN
        kwargs["network"] = kwargs["network"] or defaults.NETWORK
        kwargs["derivation_strategy"] = (
            kwargs["derivation_strategy"] or defaults.DERIVATION_STRATEGY
        )
        kwargs["mnemonic_has_passphrase"] = bool(kwargs["mnemonic_has_passphrase"])
        _check_coin(kwargs["coin"])
        _check_network(kwargs["network"])
        _check_derivation_strategy(kwargs["derivation_strategy"])
        copayers = [Copayer.from_dict(c) for c in dict_.get("copayers") or []]
        return cls(copayers=copayers, **kwargs)

    # private key encryption

    def is_priv_key_encrypted(self) -> bool:
        return bool(self.xprv_encrypted) and not self.xprv

    def encrypt_private_key(self, password: str, **opts: Any) -> None:
        """Encrypt xprv and mnemonic, removing the plaintext.

        opts are the encryption envelope parameters (iter, ks, ts).
        """
        if self.xprv_encrypted:
            raise OWClientStateError("private key already encrypted")
        if not self.xprv:
            raise MissingPrivateKey("no private key to encrypt")

        xprv_encrypted = encryption.encrypt(self.xprv, password, **opts)
        mnemonic_encrypted = None
        if self.mnemonic:
            mnemonic_encrypted = encryption.encrypt(self.mnemonic, password, **opts)

        self.xprv_encrypted = xprv_encrypted
        self.mnemonic_encrypted = mnemonic_encrypted
        self.xprv = None
        self.mnemonic = None

    def _decrypted_keys(self, password: str) -> Keys:
        try:
            xprv = encryption.decrypt(self.xprv_encrypted, password)
            mnemonic = None
            if self.mnemonic_encrypted:
                mnemonic = encryption.decrypt(self.mnemonic_encrypted, password)
        except DecryptionFailed as e:
            raise DecryptionFailed("Could not decrypt") from e
        return Keys(xprv, mnemonic)

    def decrypt_private_key(self, password: str) -> None:
        """Restore xprv and mnemonic.

        A wrong password raises DecryptionFailed
        and leaves the encrypted state untouched.
        """
        if not self.xprv_encrypted:
            raise OWClientStateError("private key is not encrypted")
        keys = self._decrypted_keys(password)
        self.xprv, self.mnemonic = keys
        self.xprv_encrypted = None
        self.mnemonic_encrypted = None

    def get_keys(self, password: Optional[str] = None) -> Keys:
        "Return the plaintext xprv and mnemonic, whether encrypted or not."
        if self.is_priv_key_encrypted():
            if not password:
                raise EncryptedPrivateKey("private keys are encrypted, a password is needed")
            return self._decrypted_keys(password)
        return Keys(self.xprv, self.mnemonic)

    def can_sign(self) -> bool:
        return bool(self.xprv or self.xprv_encrypted)

    def set_no_sign(self) -> None:
        self.xprv = None
        self.xprv_encrypted = None
        self.mnemonic = None
        self.mnemonic_encrypted = None

    def has_external_source(self) -> bool:
        return isinstance(self.external_source, str)

    def get_external_source_name(self) -> Optional[str]:
        return self.external_source

    def get_mnemonic(self) -> Optional[str]:
        if self.mnemonic_encrypted and not self.mnemonic:
            raise EncryptedPrivateKey("device is encrypted")
        return self.mnemonic

    def clear_mnemonic(self) -> None:
        self.mnemonic = None
        self.mnemonic_encrypted = None

    # accounts

    def get_base_derivation_path(self, account: int) -> str:
        return get_base_derivation_path(self.derivation_strategy, self.network, account)

    def get_derived_xprv(self, account: int, password: Optional[str] = None) -> str:
        "Return the account extended private key."
        path = self.get_base_derivation_path(account)
        xprv = self.get_keys(password).xprv
        if not xprv:
            raise MissingPrivateKey("no private key")
        return derive_child(xprv, path)

    def get_account_xpub(self, account: int, password: Optional[str] = None) -> str:
        """Return the account extended public key.

        A watch-only device only knows its (single) account xpub.
        """
        if not self.can_sign():
            return self.xpub
        return neutered(self.get_derived_xprv(account, password))

    def accounts(self) -> List[int]:
        return [c.account for c in self.copayers]

    def get_new_account(self) -> int:
        """Return the next account index: max + 1, or 0 if none.

        There is no coordination across devices sharing the same
        master key: concurrent account creation must be serialized
        by the caller.
        """
        accounts = self.accounts()
        return max(accounts) + 1 if accounts else 0

    def get_copayer(self, account: int = 0) -> Optional[Copayer]:
        for copayer in self.copayers:
            if copayer.account == account:
                return copayer
        return None

    def add_copayer(
        self,
        account: int,
        wallet_priv_key: Optional[str] = None,
        password: Optional[str] = None,
    ) -> Optional[Copayer]:
        "Create, store, and return the copayer of an unused account."
        if account in self.accounts():
            LOGGER.warning("duplicate account: %s", account)
            return None
        xpub = self.get_account_xpub(account, password)
        copayer = Copayer.from_extended_public_key(
            self.device_id, xpub, account, wallet_priv_key
        )
        self.copayers.append(copayer)
        return copayer

    def copy(self: _Device) -> _Device:
        return copy.deepcopy(self)

#!/usr/bin/env python3

# Copyright (C) 2020-2022 The owclient developers
#
# This file is part of owclient. It is subject to the license terms in the
# LICENSE file found in the top-level directory of this distribution.
#
# No part of owclient including this file, may be copied, modified, propagated,
# or distributed except according to the terms contained in the LICENSE file.

"""Hierarchical deterministic key store.

All wallet keys derive from a single BIP32 master key:

- m/1'                          -> device key (device address)
- m/1'/0                        -> request key (wallet service authentication)
- m/purpose'/coin_type'/account' -> account base key (wallet addresses)

Device level keys are shared by all the wallets (accounts) of a device,
account level keys are specific to one wallet.

Watch-only and hardware setups have no master private key:
request key and personal encrypting key are then derived from an
entropy source, i.e. the double SHA256 of some externally supplied
high entropy data, which can be disclosed as derivation from it is one-way.
"""

import base64
import hashlib
import hmac
import secrets
from typing import NamedTuple

from btclib.bip32 import BIP32Key, BIP32KeyData, derive, rootxprv_from_seed, xpub_from_xprv
from btclib.bip32.der_path import indexes_from_bip32_path
from btclib.ec import bytes_from_point, mult, secp256k1
from btclib.exceptions import BTClibValueError
from btclib.hashes import hash256, sha256
from btclib.network import NETWORKS as BTCLIB_NETWORKS

from owclient.constants import (
    MIN_ENTROPY_BYTES,
    NETWORKS,
    PATHS,
    PERSONAL_KEY_LABEL,
    PURPOSES,
    REQUEST_KEY_LABEL,
    DerivationStrategy,
)
from owclient.exceptions import (
    InsufficientEntropy,
    InvalidDerivationStrategy,
    InvalidNetwork,
    InvalidPath,
    OWClientValueError,
)
from owclient.object_hash import get_device_address

_HARDENED = 0x80000000

# btclib network names
_BTCLIB_NETWORK = {"livenet": "mainnet", "testnet": "testnet"}


class RequestKeyPair(NamedTuple):
    prv_key: str
    pub_key: str


def _btclib_network(network: str) -> str:
    if network not in NETWORKS:
        raise InvalidNetwork(f"invalid network: {network}")
    return _BTCLIB_NETWORK[network]


def _key_data(xkey: BIP32Key) -> BIP32KeyData:
    if isinstance(xkey, BIP32KeyData):
        return xkey
    try:
        return BIP32KeyData.b58decode(xkey)
    except ValueError as e:
        raise OWClientValueError(f"invalid extended key: {e}") from e


def new_root_xprv(network: str) -> str:
    "Return a random BIP32 root extended private key for the network."
    version = BTCLIB_NETWORKS[_btclib_network(network)].bip32_prv
    return rootxprv_from_seed(secrets.token_bytes(64), version)


def root_xprv_from_seed(seed: bytes, network: str) -> str:
    version = BTCLIB_NETWORKS[_btclib_network(network)].bip32_prv
    return rootxprv_from_seed(seed, version)


def network_from_extended_key(xkey: str) -> str:
    "Return the network of an extended private or public key."
    if not xkey or not isinstance(xkey, str):
        raise OWClientValueError("invalid extended key")
    return "testnet" if xkey[0] == "t" else "livenet"


def neutered(xprv: BIP32Key) -> str:
    "Return the extended public key of an extended private key."
    try:
        return xpub_from_xprv(xprv)
    except ValueError as e:
        raise OWClientValueError(str(e)) from e


def derive_child(xkey: BIP32Key, path: str) -> str:
    """Derive an extended key along a BIP32 path.

    Hardened steps require an extended private key.
    Malformed paths, indexes out of range, and hardened
    derivations from a public key raise InvalidPath.
    """
    xkey_data = _key_data(xkey)
    try:
        indexes = indexes_from_bip32_path(path)
    except (BTClibValueError, ValueError) as e:
        raise InvalidPath(f"invalid path {path!r}: {e}") from e
    if not xkey_data.is_private and any(i >= _HARDENED for i in indexes):
        raise InvalidPath(f"hardened derivation from a public key: {path}")
    try:
        return derive(xkey_data, indexes)
    except BTClibValueError as e:
        raise InvalidPath(f"invalid path {path!r}: {e}") from e


def derive_public_key(xkey: BIP32Key, path: str) -> bytes:
    "Return the compressed public key derived at path."
    child = BIP32KeyData.b58decode(derive_child(xkey, path))
    if child.is_private:
        q = int.from_bytes(child.key[1:], byteorder="big", signed=False)
        return bytes_from_point(mult(q))
    return child.key


def derive_private_key(xprv: BIP32Key, path: str) -> int:
    "Return the private scalar derived at path."
    child = BIP32KeyData.b58decode(derive_child(xprv, path))
    if not child.is_private:
        raise OWClientValueError("not a private key")
    return int.from_bytes(child.key[1:], byteorder="big", signed=False)


def int_from_prv_key(prv_key: str) -> int:
    "Return the private scalar of a 32 bytes hex-string private key."
    try:
        q = int(prv_key, 16)
    except (TypeError, ValueError) as e:
        raise OWClientValueError(f"invalid private key: {prv_key!r}") from e
    if not 0 < q < secp256k1.n:
        raise OWClientValueError("private key not in 1..n-1")
    return q


def prv_key_hex(q: int) -> str:
    return q.to_bytes(32, byteorder="big", signed=False).hex()


def new_prv_key() -> str:
    "Return a random hex-string private key."
    return prv_key_hex(1 + secrets.randbelow(secp256k1.n - 1))


def pub_key_from_prv_key(prv_key: str) -> str:
    "Return the compressed hex-string public key of a hex-string private key."
    return bytes_from_point(mult(int_from_prv_key(prv_key))).hex()


def get_base_derivation_path(strategy: str, network: str, account: int) -> str:
    """Return the account base path of a derivation strategy.

    BIP45 is account-independent; BIP44 and BIP48 use
    coin type 0 on livenet and 1 otherwise.
    """
    try:
        strategy = DerivationStrategy(strategy)
    except ValueError as e:
        raise InvalidDerivationStrategy(f"invalid derivation strategy: {strategy}") from e
    if isinstance(account, bool) or not isinstance(account, int):
        raise InvalidPath(f"invalid account: {account!r}")
    if not 0 <= account < _HARDENED:
        raise InvalidPath(f"invalid account: {account}")

    if strategy is DerivationStrategy.BIP45:
        return "m/45'"
    coin_type = 0 if network == "livenet" else 1
    return f"m/{PURPOSES[strategy]}'/{coin_type}'/{account}'"


def request_keypair_from_xprv(xprv: BIP32Key) -> RequestKeyPair:
    q = derive_private_key(xprv, PATHS["REQUEST_KEY"])
    return RequestKeyPair(prv_key_hex(q), bytes_from_point(mult(q)).hex())


def entropy_source_from_request_key(request_prv_key: str) -> str:
    "Return the entropy source of a device with a master private key."
    q = int_from_prv_key(request_prv_key)
    return sha256(q.to_bytes(32, byteorder="big", signed=False)).hex()


def entropy_source_from_hex(entropy_hex: str) -> str:
    """Return the entropy source from externally supplied entropy.

    At least 112 bits are required; the entropy source is the
    double SHA256 of the supplied bytes.
    """
    try:
        entropy = bytes.fromhex(entropy_hex)
    except (TypeError, ValueError) as e:
        raise OWClientValueError("entropy must be a hex-string") from e
    if len(entropy) < MIN_ENTROPY_BYTES:
        err_msg = f"at least {MIN_ENTROPY_BYTES * 8} bits of entropy are needed: "
        err_msg += f"{len(entropy) * 8}"
        raise InsufficientEntropy(err_msg)
    return hash256(entropy).hex()


def hash_from_entropy(entropy_source: str, label: str, length: int) -> bytes:
    "Return the label-keyed HMAC-SHA256 of the entropy source, truncated."
    if not label:
        raise OWClientValueError("missing label")
    data = bytes.fromhex(entropy_source)
    return hmac.new(label.encode(), data, hashlib.sha256).digest()[:length]


def request_keypair_from_entropy(entropy_source: str) -> RequestKeyPair:
    seed = hash_from_entropy(entropy_source, REQUEST_KEY_LABEL, 32)
    prv_key = seed.hex()
    return RequestKeyPair(prv_key, pub_key_from_prv_key(prv_key))


def derive_personal_encrypting_key(entropy_source: str) -> str:
    "Return the base64 128 bits key for private (non shared) data."
    key = hash_from_entropy(entropy_source, PERSONAL_KEY_LABEL, 16)
    return base64.b64encode(key).decode("ascii")


def device_pub_key_from_xprv(xprv: BIP32Key) -> str:
    return derive_public_key(xprv, PATHS["DEVICE_KEY"]).hex()


def device_id_from_pub_key(pub_key: str) -> str:
    "Return the device address of a hex-string public key."
    b64_pub_key = base64.b64encode(bytes.fromhex(pub_key)).decode("ascii")
    return get_device_address(b64_pub_key)


def copayer_id_from_xpub(xpub: str) -> str:
    "Return the base64 SHA256 of the extended public key string."
    return base64.b64encode(sha256(xpub.encode("utf-8"))).decode("ascii")


def shared_encrypting_key(wallet_prv_key: str) -> str:
    """Return the base64 128 bits key for wallet-shared data.

    It is derived from the wallet private key, a secret shared
    by all the wallet participants.
    """
    q = int_from_prv_key(wallet_prv_key)
    digest = sha256(q.to_bytes(32, byteorder="big", signed=False))
    return base64.b64encode(digest[:16]).decode("ascii")



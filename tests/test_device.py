#!/usr/bin/env python3

# Copyright (C) 2020-2022 The owclient developers
#
# This file is part of owclient. It is subject to the license terms in the
# LICENSE file found in the top-level directory of this distribution.
#
# No part of owclient including this file, may be copied, modified, propagated,
# or distributed except according to the terms contained in the LICENSE file.

"Tests for the `owclient.device` module."

import pytest

from owclient.device import Device, expand_device_keys, mnemonic_language, xprv_from_mnemonic
from owclient.exceptions import (
    DecryptionFailed,
    EncryptedPrivateKey,
    InsufficientEntropy,
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
    derive_public_key,
    device_id_from_pub_key,
    entropy_source_from_hex,
    neutered,
)

MASTER = "xprv9s21ZrQH143K3zLpjtB4J4yrRfDTEfbrMa9vLZaTAv5BzASwBmA16mdBmZKpMLssw1AzTnm31HAD2pk2bsnZ9dccxaLD48mRdhtw82XoiBi"
XPRV = "xprv9s21ZrQH143K2TjT3rF4m5AJcMvCetfQbVjFEx1Rped8qzcMJwbqxv21k3ftL69z7n3gqvvHthkdzbW14gxEFDYQdrRQMub3XdkJyt3GGGc"
XPUB = "xpub661MyMwAqRbcEwov9sn58D73APkh4MPFxier3LR3NzA7inwVrUv6WiLVbHdqtQB14A3YL3oH4KFwaA8iHyZDnnWUtT9cVnUd5Avo6GCJs2G"
WORDS = "abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon about"
WORDS_XPRV = "xprv9s21ZrQH143K3GJpoapnV8SFfukcVBSfeCficPSGfubmSFDxo1kuHnLisriDvSnRRuL2Qrg5ggqHKNVpxR86QEC8w35uxmGoggxtQTPvfUu"
WORDS_XPUB = "xpub661MyMwAqRbcFkPHucMnrGNzDwb6teAX1RbKQmqtEF8kK3Z7LZ59qafCjB9eCRLiTVG3uxBxgKvRgbubRhqSKXnGGb1aoaqLrpMBDrVxga8"
WALLET_PRV_KEY = "a28840e18650b1de8cb83bcd2213672a728be38a63e70680b0d2be9c452e2d4d"
ENTROPY_HEX = "0123456789abcdef0123456789abcdef"


def test_create() -> None:
    device = Device.create("obyte", "livenet")
    assert device.xprv.startswith("xprv")
    assert device.xpub == neutered(device.xprv)
    assert device.device_id.startswith("0")
    assert device.network == "livenet"
    assert device.can_sign()
    assert not device.is_priv_key_encrypted()

    devices = {Device.create("obyte", "livenet").xprv for _ in range(10)}
    assert len(devices) == 10

    device = Device.create("obyte", "testnet")
    assert device.xprv.startswith("tprv")

    with pytest.raises(InvalidCoin, match="invalid coin: "):
        Device.create("btc", "livenet")
    with pytest.raises(InvalidNetwork, match="invalid network: "):
        Device.create("obyte", "regtest")


def test_base_derivation_path() -> None:
    device = Device.create("obyte", "livenet")
    assert device.get_base_derivation_path(0) == "m/44'/0'/0'"
    device = Device.create("obyte", "testnet")
    assert device.get_base_derivation_path(2) == "m/44'/1'/2'"
    device.derivation_strategy = "BIP45"
    assert device.get_base_derivation_path(0) == "m/45'"


def test_derived_xprv() -> None:
    test_vectors = [
        (
            MASTER,
            "BIP44",
            "xprv9xud2WztGSSBPDPDL9RQ3rG3vucRA4BmEnfAdP76bTqtkGCK8VzWjevLw9LsdqwH1PEWiwcjymf1T2FLp12XjwjuCRvcSBJvxDgv1BDTbWY",
        ),
        (
            "tprv8ZgxMBicQKsPfPX8avSJXY1tZYJJESNg8vR88i8rJFkQJm6HgPPtDEmD36NLVSJWV5ieejVCK62NdggXmfMEHog598PxvXuLEsWgE6tKdwz",
            "BIP44",
            "tprv8gBu8N7JbHZs7MsW4kgE8LAYMhGJES9JP6DHsj2gw9Tc5PrF5Grr9ynAZkH1LyWsxjaAyCuEMFKTKhzdSaykpqzUnmEhpLsxfujWHA66N93",
        ),
        (
            MASTER,
            "BIP48",
            "xprv9yaGCLKPS2ovEGw987MZr4DCkfZHGh518ndVk3Jb6eiUdPwCQu7nYru59WoNkTEQvmhnv5sPbYxeuee5k8QASWRnGV2iFX4RmKXEQse8KnQ",
        ),
        (
            MASTER,
            "BIP45",
            "xprv9vDaAbbvT8LHKr8v5A2JeFJrnbQk6ZrMDGWuiv2vZgSyugeV4RE7Z9QjBNYsdafdhwEGb6Y48DRrXFVKvYRAub9ExzcmJHt6Js6ybJCSssm",
        ),
    ]
    for xprv, strategy, derived in test_vectors:
        device = Device.from_extended_private_key("obyte", xprv, strategy)
        assert device.get_derived_xprv(0) == derived
        assert device.get_account_xpub(0) == neutered(derived)


def test_from_extended_private_key() -> None:
    device = Device.from_extended_private_key("obyte", XPRV, "BIP44")
    assert device.xprv == XPRV
    assert device.xpub == XPUB
    assert device.network == "livenet"
    assert device.personal_encrypting_key == "M4MTmfRZaTtX6izAAxTpJg=="
    assert device.mnemonic is None

    copayer = device.add_copayer(0)
    assert copayer.copayer_id == "utZu+IrY3sCONtV2wptPCR0wGX8E4WaHHmS/lp0IqVg="
    assert copayer.wallet_priv_key is None
    assert device.get_copayer(0) is copayer

    copayer = device.add_copayer(1, WALLET_PRV_KEY)
    assert copayer.wallet_priv_key == WALLET_PRV_KEY
    assert device.accounts() == [0, 1]

    with pytest.raises(InvalidDerivationStrategy, match="invalid derivation strategy: "):
        Device.from_extended_private_key("obyte", XPRV, "BIP32")
    with pytest.raises(OWClientValueError):
        Device.from_extended_private_key("obyte", "xprv_not_a_key", "BIP44")


def test_from_mnemonic() -> None:
    for strategy, path in (("BIP44", "m/44'/0'/0'"), ("BIP48", "m/48'/0'/0'")):
        device = Device.from_mnemonic("obyte", "livenet", WORDS, "", strategy)
        assert device.xprv == WORDS_XPRV
        assert device.xpub == WORDS_XPUB
        assert device.network == "livenet"
        assert device.derivation_strategy == strategy
        assert device.get_base_derivation_path(0) == path
        assert device.mnemonic == WORDS
        assert not device.mnemonic_has_passphrase

    device = Device.from_mnemonic("obyte", "livenet", WORDS, None, "BIP44")
    assert device.xprv == WORDS_XPRV
    assert device.get_base_derivation_path(1) == "m/44'/0'/1'"

    # a passphrase is not checked: it just results in a different key
    device = Device.from_mnemonic("obyte", "livenet", WORDS, "passphrase", "BIP44")
    assert device.xprv != WORDS_XPRV
    assert device.mnemonic_has_passphrase

    device = Device.from_mnemonic("obyte", "testnet", WORDS, "", "BIP44")
    assert device.xprv.startswith("tprv")
    assert device.network == "testnet"
    assert device.get_base_derivation_path(2) == "m/44'/1'/2'"

    invalid_words = WORDS.replace("about", "abandon")
    with pytest.raises(OWClientValueError, match="invalid mnemonic"):
        Device.from_mnemonic("obyte", "livenet", invalid_words, "", "BIP44")
    with pytest.raises(OWClientValueError, match="unsupported language: "):
        Device.from_mnemonic("obyte", "livenet", WORDS, "", "BIP44", "xx")


def test_mnemonic_language() -> None:
    assert mnemonic_language(WORDS) == "en"
    with pytest.raises(OWClientValueError, match="invalid mnemonic"):
        mnemonic_language("not a mnemonic at all")

    assert xprv_from_mnemonic(WORDS, "", "livenet") == WORDS_XPRV
    assert xprv_from_mnemonic(WORDS, None, "livenet", "en") == WORDS_XPRV


def test_create_with_mnemonic() -> None:
    for network in ("livenet", "testnet"):
        device = Device.create_with_mnemonic("obyte", network, "", "en")
        assert len(device.mnemonic.split(" ")) == 12
        assert device.network == network
        assert device.get_mnemonic() == device.mnemonic
        device.clear_mnemonic()
        assert device.get_mnemonic() is None

    for lang in ("en", "it"):
        device = Device.create_with_mnemonic("obyte", "testnet", "holamundo", lang)
        assert device.mnemonic_has_passphrase
        device2 = Device.from_mnemonic(
            "obyte", "testnet", device.mnemonic, "holamundo", "BIP44", None
        )
        assert device2.mnemonic == device.mnemonic
        assert device2.xprv == device.xprv
        assert device2.get_base_derivation_path(0) == device.get_base_derivation_path(0)

        device3 = Device.from_mnemonic(
            "obyte", "testnet", device.mnemonic, "chaumundo", "BIP44", lang
        )
        assert device3.xprv != device.xprv

    with pytest.raises(OWClientValueError, match="unsupported language: "):
        Device.create_with_mnemonic("obyte", "livenet", "", "xx")


def test_from_extended_public_key() -> None:
    account_xpub = neutered(derive_child(MASTER, "m/44'/0'/0'"))
    device_pub_key = derive_public_key(MASTER, "m/1'").hex()
    device = Device.from_extended_public_key(
        "obyte", "livenet", account_xpub, "ledger", ENTROPY_HEX, "BIP44", device_pub_key
    )
    assert device.xprv is None
    assert device.xpub == account_xpub
    assert device.entropy_source == entropy_source_from_hex(ENTROPY_HEX)
    assert device.device_id == device_id_from_pub_key(device_pub_key)
    assert device.request_pub_key
    assert device.personal_encrypting_key
    assert not device.can_sign()
    assert device.has_external_source()
    assert device.get_external_source_name() == "ledger"

    # a watch-only device only knows its own account
    assert device.get_account_xpub(0) == account_xpub
    copayer = device.add_copayer(0)
    assert copayer.xpub == account_xpub
    with pytest.raises(MissingPrivateKey, match="no private key"):
        device.get_derived_xprv(0)

    # same entropy, same request key
    device2 = Device.from_extended_public_key(
        "obyte", "livenet", account_xpub, None, ENTROPY_HEX, "BIP44", device_pub_key
    )
    assert device2.request_priv_key == device.request_priv_key
    assert not device2.has_external_source()

    with pytest.raises(InsufficientEntropy, match="at least 112 bits of entropy are needed: "):
        Device.from_extended_public_key(
            "obyte", "livenet", account_xpub, None, "0123", "BIP44", device_pub_key
        )
    with pytest.raises(OWClientValueError, match="missing entropy source"):
        Device.from_extended_public_key(
            "obyte", "livenet", account_xpub, None, "", "BIP44", device_pub_key
        )
    with pytest.raises(NetworkMismatch, match="testnet device with a livenet key"):
        Device.from_extended_public_key(
            "obyte", "testnet", account_xpub, None, ENTROPY_HEX, "BIP44", device_pub_key
        )


def test_expand_device_keys() -> None:
    keys = expand_device_keys(None, XPRV)
    assert keys.network == "livenet"
    assert keys.xpub == XPUB
    assert keys.personal_encrypting_key == "M4MTmfRZaTtX6izAAxTpJg=="
    assert expand_device_keys("livenet", XPRV) == keys

    with pytest.raises(NetworkMismatch):
        expand_device_keys("testnet", XPRV)
    with pytest.raises(OWClientStateError, match="missing master key material"):
        expand_device_keys("livenet")
    with pytest.raises(OWClientStateError, match="missing master key material"):
        expand_device_keys("livenet", xpub=XPUB)


def test_private_key_encryption() -> None:
    device = Device.from_mnemonic("obyte", "livenet", WORDS, "", "BIP44")
    request_priv_key = device.request_priv_key

    device.encrypt_private_key("password", iter=100)
    assert device.is_priv_key_encrypted()
    assert device.can_sign()
    assert device.xprv is None
    assert device.mnemonic is None
    assert device.xprv_encrypted
    assert device.mnemonic_encrypted
    # derived keys are not affected
    assert device.request_priv_key == request_priv_key
    with pytest.raises(OWClientStateError, match="private key already encrypted"):
        device.encrypt_private_key("password")

    with pytest.raises(EncryptedPrivateKey, match="device is encrypted"):
        device.get_mnemonic()
    with pytest.raises(EncryptedPrivateKey, match="a password is needed"):
        device.get_keys()
    with pytest.raises(EncryptedPrivateKey):
        device.get_derived_xprv(0)
    assert device.get_keys("password") == (WORDS_XPRV, WORDS)
    assert device.get_derived_xprv(0, "password") == derive_child(WORDS_XPRV, "m/44'/0'/0'")

    xprv_encrypted = device.xprv_encrypted
    with pytest.raises(DecryptionFailed, match="Could not decrypt"):
        device.decrypt_private_key("wrong password")
    assert device.xprv_encrypted == xprv_encrypted
    assert device.is_priv_key_encrypted()
    with pytest.raises(DecryptionFailed, match="Could not decrypt"):
        device.get_keys("wrong password")

    device.decrypt_private_key("password")
    assert device.xprv == WORDS_XPRV
    assert device.mnemonic == WORDS
    assert device.xprv_encrypted is None
    assert device.mnemonic_encrypted is None
    assert not device.is_priv_key_encrypted()
    with pytest.raises(OWClientStateError, match="private key is not encrypted"):
        device.decrypt_private_key("password")


def test_encryption_without_mnemonic() -> None:
    device = Device.from_extended_private_key("obyte", XPRV, "BIP44")
    device.encrypt_private_key("password", iter=100)
    assert device.mnemonic_encrypted is None
    assert device.get_keys("password") == (XPRV, None)

    device.set_no_sign()
    assert not device.can_sign()
    with pytest.raises(MissingPrivateKey, match="no private key to encrypt"):
        device.encrypt_private_key("password")


def test_dict_round_trip() -> None:
    device = Device.from_mnemonic("obyte", "livenet", WORDS, "", "BIP48")
    device.add_copayer(0, WALLET_PRV_KEY)
    device.add_copayer(2)
    dict_ = device.to_dict()
    assert dict_["xPrivKey"] == WORDS_XPRV
    assert dict_["derivationStrategy"] == "BIP48"
    assert len(dict_["copayers"]) == 2
    assert "externalSource" not in dict_

    device2 = Device.from_dict(dict_)
    assert device2 == device
    assert device2.get_new_account() == 3

    device.encrypt_private_key("password", iter=100)
    device2 = Device.from_dict(device.to_dict())
    assert device2.is_priv_key_encrypted()
    assert device2.get_keys("password").xprv == WORDS_XPRV

    # defaults
    device = Device.from_dict({"xPrivKey": XPRV})
    assert device.coin == "obyte"
    assert device.network == "livenet"
    assert device.derivation_strategy == "BIP44"
    assert device.copayers == []

    with pytest.raises(InvalidNetwork):
        Device.from_dict({"xPrivKey": XPRV, "network": "regtest"})


def test_accounts() -> None:
    device = Device.from_extended_private_key("obyte", XPRV, "BIP44")
    assert device.get_new_account() == 0
    assert device.get_copayer(0) is None
    device.add_copayer(0)
    assert device.get_new_account() == 1
    device.add_copayer(5)
    assert device.get_new_account() == 6

    # duplicate accounts are ignored
    assert device.add_copayer(5) is None
    assert device.accounts() == [0, 5]


def test_copy() -> None:
    device = Device.from_extended_private_key("obyte", XPRV, "BIP44")
    device.add_copayer(0)
    device2 = device.copy()
    assert device2 == device
    device2.add_copayer(1)
    assert device.accounts() == [0]

#!/usr/bin/env python3

# Copyright (C) 2020-2022 The owclient developers
#
# This file is part of owclient. It is subject to the license terms in the
# LICENSE file found in the top-level directory of this distribution.
#
# No part of owclient including this file, may be copied, modified, propagated,
# or distributed except according to the terms contained in the LICENSE file.

"""Self test of the key derivation stack.

Before trusting a device with funds, check that the
BIP39/BIP32/ECDSA implementation in use gives the expected results:
once per session against known vectors, then against
the device own keys.
"""

import logging
from typing import Optional

from owclient.device import Device, xprv_from_mnemonic
from owclient.exceptions import EncryptedPrivateKey
from owclient.keystore import derive_child, derive_private_key, derive_public_key
from owclient.message import sign_message, verify_message

LOGGER = logging.getLogger(__name__)

_MNEMONIC = " ".join(["abandon"] * 11 + ["about"])
_ROOT_XPRV = (
    "xprv9s21ZrQH143K3GJpoapnV8SFfukcVBSfeCficPSGfubmSFDxo1kuHnLisriDvSnRRuL2Qrg5ggqHKNVpxR86QEC8w35uxmGoggxtQTPvfUu"
)
_ACCOUNT_PATH = "m/44'/0'/0'"
_ACCOUNT_XPRV = (
    "xprv9xpXFhFpqdQK3TmytPBqXtGSwS3DLjojFhTGht8gwAAii8py5X6pxeBnQ6ehJiyJ6nDjWGJfZ95WxByFXVkDxHXrqu53WCRGypk2ttuqncb"
)
_ACCOUNT_XPUB = (
    "xpub6BosfCnifzxcFwrSzQiqu2DBVTshkCXacvNsWGYJVVhhawA7d4R5WSWGFNbi8Aw6ZRc1brxMyWMzG3DSSSSoekkudhUd9yLb6qx39T9nMdj"
)

_SIGNING_PATH = "m/0/0"
_MESSAGE = (
    "Lorem ipsum dolor sit amet, ne amet urbanitas percipitur vim, "
    "libris disputando his ne, et facer suavitate qui. Ei quidam laoreet sea. "
    "Cu pro dico aliquip gubergren, in mundi postea usu. "
    "Ad labitur posidonium interesset duo, est et doctus molestie adipiscing."
)


def message_signing_ok(xprv: str, xpub: str) -> bool:
    "Sign with xprv and verify with xpub at a non-hardened path."
    prv_key = derive_private_key(xprv, _SIGNING_PATH)
    signature = sign_message(_MESSAGE, prv_key)
    pub_key = derive_public_key(xpub, _SIGNING_PATH).hex()
    return verify_message(_MESSAGE, signature, pub_key)


def hardcoded_keys_ok() -> bool:
    if xprv_from_mnemonic(_MNEMONIC, "", "livenet") != _ROOT_XPRV:
        return False
    account_xprv = derive_child(_ROOT_XPRV, _ACCOUNT_PATH)
    if account_xprv != _ACCOUNT_XPRV:
        return False
    return message_signing_ok(account_xprv, _ACCOUNT_XPUB)


def live_keys_ok(device: Device, passphrase: Optional[str] = None) -> bool:
    """Check the device keys.

    The root key is recomputed from the mnemonic, if any,
    unless it has a passphrase that was not provided.
    """
    try:
        mnemonic = device.get_mnemonic()
    except EncryptedPrivateKey:
        mnemonic = None

    xprv = None
    if mnemonic and (not device.mnemonic_has_passphrase or passphrase):
        xprv = xprv_from_mnemonic(mnemonic, passphrase, device.network)
    if not xprv:
        xprv = device.xprv
    return message_signing_ok(xprv, device.xpub)


class KeyDerivationValidator:
    """Session scoped key derivation checks.

    The hardcoded vectors are checked once per validator;
    the device keys are checked at each call, if available.
    """

    def __init__(self) -> None:
        self.hardcoded_ok: Optional[bool] = None

    def validate(
        self,
        device: Device,
        passphrase: Optional[str] = None,
        skip_device_validation: bool = False,
    ) -> bool:
        hardcoded_ok = True
        if self.hardcoded_ok is None and not skip_device_validation:
            self.hardcoded_ok = hardcoded_keys_ok()
        if self.hardcoded_ok is not None:
            hardcoded_ok = self.hardcoded_ok
        if not hardcoded_ok:
            LOGGER.error("key derivation self test failed")

        live_ok = True
        if device.can_sign() and not device.is_priv_key_encrypted():
            live_ok = live_keys_ok(device, passphrase)
            if not live_ok:
                LOGGER.error("device key derivation check failed")

        return hardcoded_ok and live_ok

#!/usr/bin/env python3

# Copyright (C) 2020-2022 The owclient developers
#
# This file is part of owclient. It is subject to the license terms in the
# LICENSE file found in the top-level directory of this distribution.
#
# No part of owclient including this file, may be copied, modified, propagated,
# or distributed except according to the terms contained in the LICENSE file.

"""Symmetric encryption envelope.

The envelope is the JSON object produced by the SJCL library,
so that ciphertexts are interchangeable with other wallet clients:

{"iv": ..., "v": 1, "iter": ..., "ks": 128, "ts": 64, "mode": "ccm",
 "adata": "", "cipher": "aes", "salt": ..., "ct": ...}

- the cipher is AES-CCM with a ts bits tag appended to ct
- the nonce is the 16 bytes iv truncated to 15 - L bytes,
  L being the bytes needed to represent the plaintext length (at least 2)
- with a text password the key is PBKDF2-HMAC-SHA256(password, salt, iter),
  with a binary key (e.g. the base64 wallet shared key) no salt is used

iv, salt, and ct are base64 encoded.
"""

import base64
import binascii
import json
import os
from typing import Any, Dict, Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESCCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from owclient import defaults
from owclient.exceptions import DecryptionFailed, EncryptionError, OWClientValueError

Password = Union[str, bytes]


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _nonce(iv: bytes, plaintext_len: int) -> bytes:
    length_size = 2
    while length_size < 4 and plaintext_len >> (8 * length_size):
        length_size += 1
    return iv[: 15 - length_size]


def _stretch(password: str, salt: bytes, iterations: int, key_size: int) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=key_size // 8,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


def key_from_b64(encrypting_key: str) -> bytes:
    "Return the raw bytes of a base64 symmetric key."
    try:
        return base64.b64decode(encrypting_key, validate=True)
    except (binascii.Error, ValueError) as e:
        raise OWClientValueError("invalid base64 encrypting key") from e


def encrypt(plaintext: str, password: Password, **opts: Any) -> str:
    """Return the JSON envelope of the encrypted plaintext.

    A text password is stretched with PBKDF2,
    a bytes password is used as AES key.
    """
    if not password:
        raise EncryptionError("missing password")
    params = dict(defaults.PRIVATE_KEY_ENCRYPTION_OPTS)
    params.update(opts)
    key_size = int(params["ks"])
    tag_size = int(params["ts"])
    iterations = int(params["iter"])
    if key_size not in (128, 192, 256):
        raise EncryptionError(f"invalid key size: {key_size}")
    if tag_size not in (64, 96, 128):
        raise EncryptionError(f"invalid tag size: {tag_size}")

    envelope: Dict[str, Any] = {
        "iv": "",
        "v": 1,
        "iter": iterations,
        "ks": key_size,
        "ts": tag_size,
        "mode": "ccm",
        "adata": "",
        "cipher": "aes",
    }
    if isinstance(password, str):
        salt = os.urandom(8)
        key = _stretch(password, salt, iterations, key_size)
        envelope["salt"] = _b64(salt)
    else:
        key = bytes(password)
        if len(key) * 8 != key_size:
            raise EncryptionError(f"key size is not {key_size} bits: {len(key) * 8}")

    data = plaintext.encode("utf-8")
    iv = os.urandom(16)
    ct = AESCCM(key, tag_length=tag_size // 8).encrypt(_nonce(iv, len(data)), data, None)
    envelope["iv"] = _b64(iv)
    envelope["ct"] = _b64(ct)
    return json.dumps(envelope, separators=(",", ":"))


def decrypt(envelope: str, password: Password) -> str:
    """Return the plaintext of a JSON envelope.

    Any failure raises DecryptionFailed, without
    telling which part of the envelope was wrong.
    """
    if not password:
        raise DecryptionFailed("Could not decrypt")
    try:
        params = json.loads(envelope)
        iv = base64.b64decode(params["iv"])
        ct = base64.b64decode(params["ct"])
        key_size = int(params.get("ks", 128))
        tag_size = int(params.get("ts", 64))
        if params.get("mode", "ccm") != "ccm" or params.get("cipher", "aes") != "aes":
            raise DecryptionFailed("Could not decrypt")
        if isinstance(password, str):
            salt = base64.b64decode(params["salt"])
            key = _stretch(password, salt, int(params["iter"]), key_size)
        else:
            key = bytes(password)
        plaintext_len = len(ct) - tag_size // 8
        aesccm = AESCCM(key, tag_length=tag_size // 8)
        data = aesccm.decrypt(_nonce(iv, plaintext_len), ct, None)
        return data.decode("utf-8")
    except (InvalidTag, KeyError, TypeError, ValueError) as e:
        raise DecryptionFailed("Could not decrypt") from e


def is_encrypted(text: Any) -> bool:
    "Return True if text looks like an encryption envelope."
    if not text or not isinstance(text, str):
        return False
    try:
        params = json.loads(text)
    except ValueError:
        return False
    return isinstance(params, dict) and bool(params.get("iv")) and bool(params.get("ct"))


def encrypt_message(message: str, encrypting_key: str) -> str:
    "Encrypt with a base64 128 bits key, as used for wallet-shared data."
    key = key_from_b64(encrypting_key)
    return encrypt(message, key, **defaults.MESSAGE_ENCRYPTION_OPTS)


def decrypt_message(envelope: Optional[str], encrypting_key: Optional[str]) -> Optional[str]:
    """Decrypt with a base64 key.

    It returns None for a missing envelope
    and raises DecryptionFailed if it cannot decrypt.
    """
    if not envelope:
        return None
    if not encrypting_key:
        raise DecryptionFailed("No key")
    return decrypt(envelope, key_from_b64(encrypting_key))


def decrypt_message_no_throw(envelope: Optional[str], encrypting_key: Optional[str]) -> str:
    """Decrypt for display purposes.

    Not encrypted (legacy) text is returned as is,
    undecryptable text is replaced by a sentinel value.
    """
    if not encrypting_key:
        return defaults.CANNOT_DECRYPT
    if not envelope:
        return ""
    if not is_encrypted(envelope):
        return envelope
    try:
        return decrypt(envelope, key_from_b64(encrypting_key))
    except (DecryptionFailed, OWClientValueError):
        return defaults.CANNOT_DECRYPT

#!/usr/bin/env python3

# Copyright (C) 2020-2022 The owclient developers
#
# This file is part of owclient. It is subject to the license terms in the
# LICENSE file found in the top-level directory of this distribution.
#
# No part of owclient including this file, may be copied, modified, propagated,
# or distributed except according to the terms contained in the LICENSE file.

"""Message signing.

Messages exchanged with the wallet service are signed with
ECDSA (RFC6979 nonce, low-s) over the byte-reversed double SHA256
of the UTF-8 text, the signature being a DER hex-string.
The reversed hash is interpreted as a little-endian integer,
i.e. the signed integer is the big-endian double SHA256.

Unit authentifiers are instead base64 64 bytes r|s signatures
over the unit hash.
"""

import base64
import json
from typing import Any, Optional, Union

from btclib.ecc import dsa
from btclib.hashes import hash256

from owclient.constants import PATHS
from owclient.exceptions import OWClientValueError
from owclient.keystore import derive_private_key, derive_public_key, int_from_prv_key

PrvKey = Union[int, str]
Message = Union[str, bytes]


def _int_prv_key(prv_key: PrvKey) -> int:
    if isinstance(prv_key, int):
        return prv_key
    return int_from_prv_key(prv_key)


def hash_message(text: Message) -> bytes:
    "Return the byte-reversed double SHA256 of the (UTF-8 encoded) text."
    if not text:
        raise OWClientValueError("missing message")
    data = text.encode("utf-8") if isinstance(text, str) else bytes(text)
    return hash256(data)[::-1]


def sign_message(text: Message, prv_key: PrvKey) -> str:
    "Return the DER hex-string signature of the text."
    msg_hash = hash_message(text)[::-1]
    sig = dsa.sign_(msg_hash, _int_prv_key(prv_key))
    return sig.serialize().hex()


def verify_message(text: Message, signature: Optional[str], pub_key: str) -> bool:
    "Return True if signature is a valid signature of the text."
    if not pub_key:
        raise OWClientValueError("missing public key")
    if not signature:
        return False
    msg_hash = hash_message(text)[::-1]
    try:
        sig = bytes.fromhex(signature)
        key = bytes.fromhex(pub_key)
    except (TypeError, ValueError):
        return False
    return dsa.verify_(msg_hash, key, sig)


def get_copayer_hash(name: str, xpub: str, request_pub_key: str) -> str:
    return "|".join((name, xpub, request_pub_key))


def sign_request(method: str, url: str, args: Any, prv_key: PrvKey) -> str:
    "Return the signature authenticating a wallet service request."
    message = "|".join((method.lower(), url, json.dumps(args, separators=(",", ":"))))
    return sign_message(message, prv_key)


def sign_request_pub_key(request_pub_key: str, xprv: str) -> str:
    "Sign the request public key with the account REQUEST_KEY_AUTH key."
    q = derive_private_key(xprv, PATHS["REQUEST_KEY_AUTH"])
    return sign_message(request_pub_key, q)


def verify_request_pub_key(request_pub_key: str, signature: str, xpub: str) -> bool:
    pub_key = derive_public_key(xpub, PATHS["REQUEST_KEY_AUTH"])
    return verify_message(request_pub_key, signature, pub_key.hex())


def sign_unit_hash(unit_hash: bytes, prv_key: PrvKey) -> str:
    "Return the base64 r|s authentifier of a unit hash."
    sig = dsa.sign_(unit_hash, _int_prv_key(prv_key))
    return base64.b64encode(sig.r.to_bytes(32, "big") + sig.s.to_bytes(32, "big")).decode(
        "ascii"
    )


def verify_unit_hash(unit_hash: bytes, authentifier: str, b64_pub_key: str) -> bool:
    try:
        raw = base64.b64decode(authentifier, validate=True)
        pub_key = base64.b64decode(b64_pub_key, validate=True)
    except ValueError:
        return False
    if len(raw) != 64:
        return False
    r = int.from_bytes(raw[:32], "big")
    s = int.from_bytes(raw[32:], "big")
    try:
        sig = dsa.Sig(r, s)
    except ValueError:
        return False
    return dsa.verify_(unit_hash, pub_key, sig)

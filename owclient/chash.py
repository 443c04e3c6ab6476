#!/usr/bin/env python3

# Copyright (C) 2020-2022 The owclient developers
#
# This file is part of owclient. It is subject to the license terms in the
# LICENSE file found in the top-level directory of this distribution.
#
# No part of owclient including this file, may be copied, modified, propagated,
# or distributed except according to the terms contained in the LICENSE file.

"""Checksummed hashes (chash).

A chash is a content hash with an embedded 32 bits checksum.

For the 160 bits version (used for addresses):

- RIPEMD160 of the data, with the first 4 bytes dropped,
  provides 128 bits of clean data
- the checksum is made of bytes 5, 13, 21, and 29
  of the SHA256 of the clean data
- the 32 checksum bits are interleaved with the clean data bits
  at offsets given by the digits of pi
- the resulting 160 bits are base32 encoded (32 characters)

The 288 bits version uses the full SHA256 as clean data,
spreads the checksum with 4 more bits between offsets,
and is base64 encoded (48 characters).
"""

import base64
import binascii
from typing import List, Tuple

from btclib.hashes import ripemd160, sha256

from owclient.exceptions import OWClientValueError

_PI = "14159265358979323846264338327950288419716939937510"
_CHECKSUM_BITS = 32


def _offsets(chash_length: int) -> List[int]:
    if chash_length not in (160, 288):
        raise OWClientValueError(f"unsupported chash length: {chash_length}")

    offsets: List[int] = []
    offset = 0
    for digit in _PI:
        relative_offset = int(digit)
        if relative_offset == 0:
            continue
        offset += relative_offset
        if chash_length == 288:
            offset += 4
        if offset >= chash_length:
            break
        offsets.append(offset)

    if len(offsets) != _CHECKSUM_BITS:
        raise OWClientValueError("wrong number of checksum bits")
    return offsets


_OFFSETS = {160: _offsets(160), 288: _offsets(288)}


def _bin_from_bytes(data: bytes) -> str:
    return "".join(format(byte, "08b") for byte in data)


def _bytes_from_bin(bin_str: str) -> bytes:
    return int(bin_str, 2).to_bytes(len(bin_str) // 8, byteorder="big")


def _checksum(clean_data: bytes) -> bytes:
    full_checksum = sha256(clean_data)
    return bytes(full_checksum[i] for i in (5, 13, 21, 29))


def _mix_checksum(clean_bin: str, checksum_bin: str) -> str:
    offsets = _OFFSETS[len(clean_bin) + len(checksum_bin)]
    frags: List[str] = []
    start = 0
    for i, offset in enumerate(offsets):
        end = offset - i
        frags.append(clean_bin[start:end])
        frags.append(checksum_bin[i])
        start = end
    frags.append(clean_bin[start:])
    return "".join(frags)


def _separate_checksum(chash_bin: str) -> Tuple[str, str]:
    offsets = _OFFSETS[len(chash_bin)]
    frags: List[str] = []
    checksum_bits: List[str] = []
    start = 0
    for offset in offsets:
        frags.append(chash_bin[start:offset])
        checksum_bits.append(chash_bin[offset])
        start = offset + 1
    frags.append(chash_bin[start:])
    return "".join(frags), "".join(checksum_bits)


def _chash(data: str, chash_length: int) -> str:
    raw = data.encode("utf-8")
    if chash_length == 160:
        clean_data = ripemd160(raw)[4:]
    else:
        clean_data = sha256(raw)
    mixed = _mix_checksum(_bin_from_bytes(clean_data), _bin_from_bytes(_checksum(clean_data)))
    chash_bytes = _bytes_from_bin(mixed)
    if chash_length == 160:
        return base64.b32encode(chash_bytes).decode("ascii")
    return base64.b64encode(chash_bytes).decode("ascii")


def chash160(data: str) -> str:
    "Return the 32 characters base32 checksummed 160 bits hash of data."
    return _chash(data, 160)


def chash288(data: str) -> str:
    "Return the 48 characters base64 checksummed 288 bits hash of data."
    return _chash(data, 288)


def is_chash_valid(encoded: str) -> bool:
    "Return True if the string is a chash with a valid checksum."
    if not isinstance(encoded, str):
        return False
    try:
        if len(encoded) == 32:
            chash_bytes = base64.b32decode(encoded)
        elif len(encoded) == 48:
            chash_bytes = base64.b64decode(encoded, validate=True)
        else:
            return False
    except (binascii.Error, ValueError):
        return False

    clean_bin, checksum_bin = _separate_checksum(_bin_from_bytes(chash_bytes))
    clean_data = _bytes_from_bin(clean_bin)
    return _bytes_from_bin(checksum_bin) == _checksum(clean_data)

#!/usr/bin/env python3

# Copyright (C) 2020-2022 The owclient developers
#
# This file is part of owclient. It is subject to the license terms in the
# LICENSE file found in the top-level directory of this distribution.
#
# No part of owclient including this file, may be copied, modified, propagated,
# or distributed except according to the terms contained in the LICENSE file.

"""Canonical hashes of structured values.

The source string of a structured value is its stable serialization:
components are joined by the NUL character and

- a string contributes "s" and the string itself
- a number contributes "n" and its decimal representation
- a boolean contributes "b" and "true" or "false"
- a list contributes "[", its elements, and "]"
- a dict contributes, for each key in sorted order,
  the key followed by its value

None, empty lists, and empty dicts are not allowed:
every party must be able to reproduce the very same string.
"""

import base64
import copy
import math
from typing import Any, Dict, List

from btclib.hashes import sha256

from owclient.chash import chash160, chash288
from owclient.constants import VERSION_WITHOUT_TIMESTAMP
from owclient.exceptions import OWClientTypeError, OWClientValueError

STRING_JOIN_CHAR = "\x00"


def _number_str(value: Any) -> str:
    if isinstance(value, float):
        if not math.isfinite(value):
            raise OWClientValueError(f"not a finite number: {value}")
        if value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value)


def get_source_string(obj: Any) -> str:
    "Return the stable serialization of a structured value."

    components: List[str] = []

    def extract(variable: Any) -> None:
        if variable is None:
            raise OWClientValueError(f"None value in {obj!r}")
        # bool before int, as bool is a subclass of int
        if isinstance(variable, bool):
            components.extend(("b", "true" if variable else "false"))
        elif isinstance(variable, str):
            components.extend(("s", variable))
        elif isinstance(variable, (int, float)):
            components.extend(("n", _number_str(variable)))
        elif isinstance(variable, (list, tuple)):
            if not variable:
                raise OWClientValueError(f"empty list in {obj!r}")
            components.append("[")
            for item in variable:
                extract(item)
            components.append("]")
        elif isinstance(variable, dict):
            if not variable:
                raise OWClientValueError(f"empty dict in {obj!r}")
            for key in sorted(variable):
                components.append(key)
                extract(variable[key])
        else:
            raise OWClientTypeError(f"unsupported type {type(variable).__name__}")

    extract(obj)
    return STRING_JOIN_CHAR.join(components)


def get_chash160(obj: Any) -> str:
    return chash160(get_source_string(obj))


def get_chash288(obj: Any) -> str:
    return chash288(get_source_string(obj))


def get_base64_hash(obj: Any) -> str:
    source = get_source_string(obj).encode("utf-8")
    return base64.b64encode(sha256(source)).decode("ascii")


def get_device_address(b64_pub_key: str) -> str:
    "Return the device address of a base64 encoded public key."
    return "0" + get_chash160(b64_pub_key)


def get_naked_unit(unit: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of the unit without the fields that are not signed.

    Commissions, main chain index, and the unit hash itself
    are computed after signing; message payloads are
    committed to by their payload hash.
    """
    naked_unit = copy.deepcopy(unit)
    for key in ("unit", "headers_commission", "payload_commission", "main_chain_index"):
        naked_unit.pop(key, None)
    if naked_unit.get("version") == VERSION_WITHOUT_TIMESTAMP:
        naked_unit.pop("timestamp", None)
    for message in naked_unit.get("messages", []):
        message.pop("payload", None)
        message.pop("payload_uri", None)
    return naked_unit


def get_unit_hash_to_sign(unit: Dict[str, Any]) -> bytes:
    "Return the 32 bytes hash each author of the unit has to sign."
    naked_unit = get_naked_unit(unit)
    for author in naked_unit.get("authors", []):
        author.pop("authentifiers", None)
    return sha256(get_source_string(naked_unit).encode("utf-8"))

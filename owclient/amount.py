#!/usr/bin/env python3

# Copyright (C) 2020-2022 The owclient developers
#
# This file is part of owclient. It is subject to the license terms in the
# LICENSE file found in the top-level directory of this distribution.
#
# No part of owclient including this file, may be copied, modified, propagated,
# or distributed except according to the terms contained in the LICENSE file.

"""Display formatting of amounts.

Amounts of the base asset are integer numbers of bytes,
displayed with the largest fitting unit (GB, MB, KB);
amounts of other assets are integer numbers of their
smallest unit, displayed with the asset decimals.

Decimal is used throughout: floats are never involved.
"""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Any, Optional

from owclient.exceptions import OWClientValueError

BASE_ASSET = "base"

# threshold (exclusive), scale, unit
_BYTE_UNITS = (
    (10 * 10**9, 10**9, "GB"),
    (10 * 10**6, 10**6, "MB"),
    (10 * 10**3, 10**3, "KB"),
)


def _clip(number: Decimal, decimals: int) -> Decimal:
    "Truncate (not round) to decimals digits."
    return number.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_DOWN)


def _fixed(number: Decimal, decimals: int) -> str:
    return f"{number.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_UP):f}"


def _add_separators(number: str, min_decimals: int, thousands: str = ",", point: str = ".") -> str:
    integer, _, fraction = number.partition(".")
    # trailing zeros are dropped, but never below min_decimals
    while len(fraction) > min_decimals and fraction.endswith("0"):
        fraction = fraction[:-1]
    sign = "-" if integer.startswith("-") else ""
    integer = f"{int(integer.lstrip('-')):,}".replace(",", thousands)
    return sign + integer + (point + fraction if fraction else "")


def format_amount(amount: Any, asset: Optional[str] = None, decimals: int = 0) -> str:
    """Return the display string of an amount.

    >>> format_amount(12345)
    '12.345 KB'
    >>> format_amount(150000, "an asset", 2)
    '1,500.00'
    """
    try:
        value = Decimal(str(amount))
    except ArithmeticError as e:
        raise OWClientValueError(f"invalid amount: {amount!r}") from e
    if not value.is_finite():
        raise OWClientValueError(f"invalid amount: {amount!r}")

    if asset is None or asset == BASE_ASSET:
        for threshold, scale, unit in _BYTE_UNITS:
            if value > threshold:
                digits = len(str(scale)) - 1
                number = _fixed(_clip(value / scale, digits), 3)
                return f"{_add_separators(number, 3)} {unit}"
        return f"{_add_separators(_fixed(_clip(value, 0), 0), 0)} Bytes"

    if isinstance(decimals, bool) or not isinstance(decimals, int) or decimals < 0:
        raise OWClientValueError(f"invalid decimals: {decimals!r}")
    number = _fixed(_clip(value.scaleb(-decimals), decimals), decimals)
    return _add_separators(number, decimals)

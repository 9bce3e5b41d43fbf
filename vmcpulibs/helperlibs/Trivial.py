# -*- coding: utf-8 -*-
# vim: ts=4 sw=4 tw=100 et ai si
#
# Copyright (C) 2020-2025 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

"""
Common trivial helpers.
"""

from __future__ import annotations # Remove when switching to Python 3.10+.

import typing
from vmcpulibs.helperlibs.Exceptions import ErrorBadFormat

if typing.TYPE_CHECKING:
    from typing import Iterable

# String values accepted for boolean settings.
_TRUE_VALUES = ("1", "on", "yes", "true")
_FALSE_VALUES = ("0", "off", "no", "false")

def str_to_int(snum: str | int, base: int = 0, what: str = "") -> int:
    """
    Convert a string to an integer value.

    Args:
        snum: The value to convert to 'int'.
        base: Base of 'snum'. Defaults to auto-detect based on the prefix.
        what: A string describing the value to convert, for the possible error message.

    Returns:
        int: The converted integer value.

    Raises:
        ErrorBadFormat: If 'snum' cannot be converted to an integer.
    """

    try:
        return int(str(snum), base)
    except (ValueError, TypeError):
        if not what:
            what = "value"
        if base:
            errmsg = f"a base {base} integer"
        else:
            errmsg = "an integer"
        raise ErrorBadFormat(f"Bad {what} '{snum}': should be {errmsg}") from None

def str_to_bool(sval: str | bool | int, what: str = "") -> bool:
    """
    Convert a string like "1", "on", "yes" or "false" to a boolean value.

    Args:
        sval: The value to convert.
        what: A string describing the value to convert, for the possible error message.

    Returns:
        bool: The converted boolean value.

    Raises:
        ErrorBadFormat: If 'sval' is not a boolean value.
    """

    if isinstance(sval, bool):
        return sval

    lowered = str(sval).strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False

    if not what:
        what = "value"
    raise ErrorBadFormat(f"Bad {what} '{sval}': should be one of: "
                         f"{', '.join(_TRUE_VALUES + _FALSE_VALUES)}")

def list_dedup(elts: Iterable) -> list:
    """
    Return a list of unique elements in 'elts', preserving the order.

    Args:
        elts: The list of elements.

    Returns:
        list: A list of unique elements.
    """

    return list(dict.fromkeys(elts))

def split_csv_line(csv_line: str, sep: str = ",", dedup: bool = False) -> list[str]:
    """
    Split a comma-separated values line and return the list of values. Empty values are dropped.

    Args:
        csv_line: The comma-separated line to split.
        sep: The separator character. Defaults to comma.
        dedup: If True, remove duplicated elements from the returned list.

    Returns:
        list: A list of values.
    """

    result = []
    for val in csv_line.strip(sep).split(sep):
        val = val.strip()
        if val:
            result.append(val)

    if dedup:
        return list_dedup(result)
    return result

# -*- coding: utf-8 -*-
# vim: ts=4 sw=4 tw=100 et ai si
#
# Copyright (C) 2020-2025 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

"""
Helpers for comparing emulator and machine version numbers.

Versions look like 'major.minor[.patch][+pveN]', where the '+pveN' suffix is a project-specific
"extra" version layered on top of the upstream machine version.
"""

from __future__ import annotations # Remove when switching to Python 3.10+.

import re
from collections import namedtuple
from vmcpulibs.helperlibs.Exceptions import ErrorBadArity, ErrorBadVersion

# The split version "type". Missing components are 0.
VersionTuple = namedtuple("VersionTuple", ["major", "minor", "patch", "extra"])

VERSION_RE = re.compile(r"^(\d+)\.(\d+)(?:\.(\d+))?(?:\+pve(\d+))?")

def version_cmp(*versions: int | str | None) -> int:
    """
    Compare versions given as a flat sequence of pairs: '(a_major, b_major, a_minor, b_minor, ...)'.
    Undefined ('None') components are treated as 0.

    Args:
        *versions: The version components to compare, in pairs.

    Returns:
        1 if version 'a' is newer than version 'b', -1 if it is older, and 0 if they are the same.

    Raises:
        ErrorBadArity: If the number of version components is odd.
    """

    if len(versions) % 2:
        raise ErrorBadArity(f"BUG: cannot compare odd count of versions ({len(versions)})")

    for idx in range(0, len(versions), 2):
        a = int(versions[idx] or 0)
        b = int(versions[idx + 1] or 0)

        if a > b:
            return 1
        if a < b:
            return -1

    return 0

def split_version(verstr: str) -> VersionTuple:
    """
    Split a version string on the components. For example, '4.1.2+pve3' would be (4, 1, 2, 3), and
    '5.1' would be (5, 1, 0, 0).

    Args:
        verstr: The version string to split.

    Returns:
        VersionTuple: The split version with integer components.

    Raises:
        ErrorBadVersion: If the version string cannot be parsed.
    """

    matchobj = VERSION_RE.match(str(verstr))
    if not matchobj:
        raise ErrorBadVersion(f"Cannot check version of invalid string '{verstr}'")

    return VersionTuple(*(int(val) if val else 0 for val in matchobj.groups()))

def min_version(verstr: str, major: int, minor: int, extra: int | None = None) -> bool:
    """
    Check whether version string 'verstr' is at least 'major.minor+pve<extra>'. The patch
    component of 'verstr' is not taken into account.

    Args:
        verstr: The version string to check.
        major: The minimum major version number.
        minor: The minimum minor version number.
        extra: The minimum extra version number, 0 if 'None'.

    Returns:
        True if 'verstr' is at least the specified version, False otherwise.

    Raises:
        ErrorBadVersion: If the version string cannot be parsed.
    """

    ver = split_version(verstr)
    return version_cmp(ver.major, major, ver.minor, minor, ver.extra, extra) >= 0

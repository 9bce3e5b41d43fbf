# -*- coding: utf-8 -*-
# vim: ts=4 sw=4 tw=100 et ai si
#
# Copyright (C) 2020-2025 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

"""
Provide the machine version compatibility model: extract a comparable version from a machine type
string and decide whether a machine version can run on a given emulator build.

Machine versions have the 'major.minor[+pveN]' format. The 'major.minor' part is the upstream
machine version, and the optional 'N' is the project-specific "extra" version, which is bumped for
virtual hardware layout changes that happen within one upstream release.
"""

from __future__ import annotations # Remove when switching to Python 3.10+.

import re
import typing
from vmcpulibs import VersionCmp
from vmcpulibs.helperlibs import Logging
from vmcpulibs.helperlibs.Exceptions import Error, ErrorBadVersion, ErrorNotSupported

if typing.TYPE_CHECKING:
    from typing import Protocol, Final

    class MonitorType(Protocol):
        """The live query collaborator: queries the state of a running emulator instance."""

        def query_machines(self, vmid: int | str) -> list[dict]:
            """Return the list of machine types of a running instance."""

        def query_version(self, vmid: int | str) -> dict | None:
            """Return the emulator build version of a running instance."""

_LOG = Logging.getLogger(f"{Logging.MAIN_LOGGER_NAME}.vmcpu.{__name__}")

# Maximum supported extra version per 'major.minor' machine version. Bump it for virtual hardware
# layout changes during a release, where the upstream machine version stays the same.
PVE_MACHINE_VERSION: Final[dict[str, int]] = {
    "4.1": 2,
}

# The emulator build micro version starting from which the build is a release candidate.
_RC_MICRO_VERSION = 90

_MACHINE_RE = re.compile(r"^(?:pc(?:-i440fx|-q35)?|virt)-(\d+)\.(\d+)(?:\.(\d+))?(?:\+pve(\d+))?")
_MACHINE_VERSION_RE = re.compile(r"^(\d+)\.(\d+)(?:\+pve(\d+))?$")
_BUILD_VERSION_RE = re.compile(r"^(\d+)\.(\d+)(?:\.(\d+))?")

def get_pve_version(verstr: str) -> int:
    """
    Return the maximum supported extra version for the 'major.minor' part of a version string.

    Args:
        verstr: The version string (only the 'major.minor' part is used).

    Returns:
        The maximum supported extra version, 0 if the table has no entry for 'major.minor'.
    """

    matchobj = re.match(r"^(\d+\.\d+)", str(verstr))
    if not matchobj:
        raise ErrorBadVersion(f"Cannot get extra version for invalid string '{verstr}'")

    return PVE_MACHINE_VERSION.get(matchobj.group(1), 0)

def extract_version(machine_type: str | None, kvmver: str | None = None) -> str | None:
    """
    Extract the machine version from a machine type string. The patch part of the version is
    dropped, because it almost never resembles a real emulator machine type.

    Args:
        machine_type: The machine type string (e.g., 'pc-i440fx-4.1+pve2' or 'pc-q35-8.1.pxe').
        kvmver: The emulator build version string to synthesize the machine version from if the
                machine type is not versioned (e.g., 'q35' or 'pc').

    Returns:
        The 'major.minor[+pveN]' machine version string, or 'None' if it cannot be determined.
    """

    if machine_type:
        matchobj = _MACHINE_RE.match(machine_type)
        if matchobj:
            major, minor, _, extra = matchobj.groups()
            verstr = f"{major}.{minor}"
            if extra is not None:
                verstr += f"+pve{extra}"
            return verstr

    if kvmver:
        matchobj = _BUILD_VERSION_RE.match(kvmver)
        if matchobj:
            key = f"{matchobj.group(1)}.{matchobj.group(2)}"
            return f"{key}+pve{PVE_MACHINE_VERSION.get(key, 0)}"

    return None

def is_at_least(verstr: str, major: int, minor: int, extra: int = 0) -> bool:
    """
    Check whether machine version 'verstr' is at least 'major.minor+pve<extra>'.

    Args:
        verstr: The machine version string.
        major: The minimum major version.
        minor: The minimum minor version.
        extra: The minimum extra version.

    Returns:
        True if 'verstr' is at least the specified version, False otherwise.
    """

    return VersionCmp.min_version(verstr, major, minor, extra)

def machine_version(machine_type: str | None, major: int, minor: int, extra: int = 0,
                    kvmver: str | None = None) -> bool:
    """
    Check whether the machine version of a machine type is at least 'major.minor+pve<extra>'.

    Args:
        machine_type: The machine type string.
        major: The minimum major version.
        minor: The minimum minor version.
        extra: The minimum extra version.
        kvmver: The emulator build version to fall back to for non-versioned machine types.

    Returns:
        True if the machine version is at least the specified version, False otherwise.
    """

    verstr = extract_version(machine_type, kvmver=kvmver)
    if verstr is None:
        raise ErrorBadVersion(f"Cannot determine version of machine type '{machine_type}'")

    return is_at_least(verstr, major, minor, extra)

def can_run(machine_version_str: str, kvmver: str) -> bool:
    """
    Check whether a machine version can run on an emulator build.

    Args:
        machine_version_str: The machine version string ('major.minor[+pveN]').
        kvmver: The emulator build version string.

    Returns:
        True if the emulator build supports the machine version, False otherwise.
    """

    matchobj = _MACHINE_VERSION_RE.match(machine_version_str)
    if not matchobj:
        raise ErrorBadVersion(f"Bad machine version '{machine_version_str}'")
    major, minor, extra = matchobj.groups()

    matchobj = _BUILD_VERSION_RE.match(kvmver)
    if not matchobj:
        raise ErrorBadVersion(f"Bad emulator version '{kvmver}'")

    if VersionCmp.version_cmp(matchobj.group(1), major, matchobj.group(2), minor) < 0:
        return False

    # A missing or zero extra version is supported as long as the upstream version check passed.
    if not extra or not int(extra):
        return True

    return get_pve_version(f"{major}.{minor}") >= int(extra)

def check_runnable(machine_type: str | None, kvmver: str) -> str:
    """
    Check that a machine type can run on an emulator build before starting a VM with it.

    Args:
        machine_type: The machine type string (e.g., 'pc-q35-4.1+pve2' or 'q35').
        kvmver: The emulator build version string.

    Returns:
        The machine version of the machine type.

    Raises:
        ErrorNotSupported: If the emulator build is too old for the machine type.
    """

    verstr = extract_version(machine_type, kvmver=kvmver)
    if verstr is None:
        raise ErrorBadVersion(f"Bad emulator version '{kvmver}'")

    build = VersionCmp.split_version(kvmver)
    ver = VersionCmp.split_version(verstr)
    what = f"machine type '{machine_type}'" if machine_type else f"machine version '{verstr}'"

    if build.patch >= _RC_MICRO_VERSION:
        _LOG.warning("installed emulator version '%s' is a release candidate, ignoring version "
                     "checks", kvmver)
    elif not VersionCmp.min_version(kvmver, ver.major, ver.minor):
        raise ErrorNotSupported(f"Installed emulator version '{kvmver}' is too old to run {what}")
    elif not can_run(verstr, kvmver):
        max_extra = get_pve_version(verstr)
        raise ErrorNotSupported(f"Installed version (max feature level for {ver.major}.{ver.minor} "
                                f"is pve{max_extra}) is too old to run {what}")

    _LOG.debug("%s resolved to machine version '%s'", what, verstr)
    return verstr

def is_q35(machine_type: str | None) -> bool:
    """
    Check whether a machine type is a q35 chipset machine type.

    Args:
        machine_type: The machine type string.

    Returns:
        True if the machine type is q35-based, False otherwise.
    """

    return bool(machine_type) and "q35" in str(machine_type)

def get_current_machine(monitor: MonitorType, vmid: int | str) -> str:
    """
    Return the machine type of a running instance.

    Args:
        monitor: The live query collaborator.
        vmid: The ID of the running instance.

    Returns:
        The current machine type, suffixed with '+pveN' if the instance reports an extra version.
        Fall back to the default machine type if there is no current machine, and to 'pc' if there
        is no default machine either.
    """

    current = default = pve_version = None
    for machine in monitor.query_machines(vmid):
        if machine.get("is-default"):
            default = machine["name"]
        if machine.get("is-current"):
            current = machine["name"]
        if machine.get("pve-version"):
            pve_version = machine["pve-version"]

    if current and pve_version:
        current += f"+{pve_version}"

    return current or default or "pc"

def get_current_machine_pxe(monitor: MonitorType, vmid: int | str,
                            machine_type: str | None) -> str:
    """
    Same as 'get_current_machine()', but keep the '.pxe' suffix of the configured machine type.

    Args:
        monitor: The live query collaborator.
        vmid: The ID of the running instance.
        machine_type: The machine type from the VM configuration.

    Returns:
        The current machine type with the '.pxe' suffix, if the configured one has it.
    """

    machine = get_current_machine(monitor, vmid)
    if machine_type and machine_type.endswith(".pxe"):
        machine += ".pxe"

    return machine

def runs_at_least_version(monitor: MonitorType, vmid: int | str, major: int, minor: int,
                          extra: int | None = None) -> bool:
    """
    Check whether a running instance runs emulator version 'major.minor.extra' or newer.

    Args:
        monitor: The live query collaborator.
        vmid: The ID of the running instance.
        major: The minimum major version.
        minor: The minimum minor version.
        extra: The minimum micro version.

    Returns:
        True if the instance runs the specified version or newer, False otherwise.
    """

    result = monitor.query_version(vmid)
    if not result:
        raise Error(f"Could not query currently running version for VM {vmid}")

    ver = result["qemu"]
    return VersionCmp.version_cmp(ver["major"], major, ver["minor"], minor,
                                  ver["micro"], extra) >= 0

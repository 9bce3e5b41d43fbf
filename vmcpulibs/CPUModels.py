# -*- coding: utf-8 -*-
# vim: ts=4 sw=4 tw=100 et ai si
#
# Copyright (C) 2020-2025 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

"""
Provide the built-in CPU model tables (vendors, micro-architecture level models, deprecated models)
and helpers for picking the default CPU model.
"""

from __future__ import annotations # Remove when switching to Python 3.10+.

import os
import typing

if typing.TYPE_CHECKING:
    from typing import TypedDict, Final

    class BuiltinModelTypedDict(TypedDict):
        """
        A built-in micro-architecture level CPU model.

        Attributes:
            reported_model: The CPU model reported to the guest.
            flags: The CPU flags added on top of the reported model, separated by ';'.
        """

        reported_model: str
        flags: str

VENDOR_INTEL: Final[str] = "GenuineIntel"
VENDOR_AMD: Final[str] = "AuthenticAMD"
# Generic CPU models inherit the vendor of the host CPU.
VENDOR_DEFAULT: Final[str] = "default"

# Built-in CPU model name -> vendor.
CPU_VENDORS: Final[dict[str, str]] = {
    # Intel CPUs.
    "486": VENDOR_INTEL,
    "pentium": VENDOR_INTEL,
    "pentium2": VENDOR_INTEL,
    "pentium3": VENDOR_INTEL,
    "coreduo": VENDOR_INTEL,
    "core2duo": VENDOR_INTEL,
    "Conroe": VENDOR_INTEL,
    "Penryn": VENDOR_INTEL,
    "Nehalem": VENDOR_INTEL,
    "Nehalem-IBRS": VENDOR_INTEL,
    "Westmere": VENDOR_INTEL,
    "Westmere-IBRS": VENDOR_INTEL,
    "SandyBridge": VENDOR_INTEL,
    "SandyBridge-IBRS": VENDOR_INTEL,
    "IvyBridge": VENDOR_INTEL,
    "IvyBridge-IBRS": VENDOR_INTEL,
    "Haswell": VENDOR_INTEL,
    "Haswell-IBRS": VENDOR_INTEL,
    "Haswell-noTSX": VENDOR_INTEL,
    "Haswell-noTSX-IBRS": VENDOR_INTEL,
    "Broadwell": VENDOR_INTEL,
    "Broadwell-IBRS": VENDOR_INTEL,
    "Broadwell-noTSX": VENDOR_INTEL,
    "Broadwell-noTSX-IBRS": VENDOR_INTEL,
    "Skylake-Client": VENDOR_INTEL,
    "Skylake-Client-IBRS": VENDOR_INTEL,
    "Skylake-Client-noTSX-IBRS": VENDOR_INTEL,
    "Skylake-Client-v4": VENDOR_INTEL,
    "Skylake-Server": VENDOR_INTEL,
    "Skylake-Server-IBRS": VENDOR_INTEL,
    "Skylake-Server-noTSX-IBRS": VENDOR_INTEL,
    "Skylake-Server-v4": VENDOR_INTEL,
    "Skylake-Server-v5": VENDOR_INTEL,
    "Cascadelake-Server": VENDOR_INTEL,
    "Cascadelake-Server-v2": VENDOR_INTEL,
    "Cascadelake-Server-noTSX": VENDOR_INTEL,
    "Cascadelake-Server-v4": VENDOR_INTEL,
    "Cascadelake-Server-v5": VENDOR_INTEL,
    "Cooperlake": VENDOR_INTEL,
    "Cooperlake-v2": VENDOR_INTEL,
    "KnightsMill": VENDOR_INTEL,
    "Icelake-Client": VENDOR_INTEL, # Deprecated, see 'DEPRECATED_MODELS'.
    "Icelake-Client-noTSX": VENDOR_INTEL, # Deprecated, see 'DEPRECATED_MODELS'.
    "Icelake-Server": VENDOR_INTEL,
    "Icelake-Server-noTSX": VENDOR_INTEL,
    "Icelake-Server-v3": VENDOR_INTEL,
    "Icelake-Server-v4": VENDOR_INTEL,
    "Icelake-Server-v5": VENDOR_INTEL,
    "Icelake-Server-v6": VENDOR_INTEL,
    "SapphireRapids": VENDOR_INTEL,
    "SapphireRapids-v2": VENDOR_INTEL,
    "GraniteRapids": VENDOR_INTEL,

    # AMD CPUs.
    "athlon": VENDOR_AMD,
    "phenom": VENDOR_AMD,
    "Opteron_G1": VENDOR_AMD,
    "Opteron_G2": VENDOR_AMD,
    "Opteron_G3": VENDOR_AMD,
    "Opteron_G4": VENDOR_AMD,
    "Opteron_G5": VENDOR_AMD,
    "EPYC": VENDOR_AMD,
    "EPYC-IBPB": VENDOR_AMD,
    "EPYC-v3": VENDOR_AMD,
    "EPYC-v4": VENDOR_AMD,
    "EPYC-Rome": VENDOR_AMD,
    "EPYC-Rome-v2": VENDOR_AMD,
    "EPYC-Rome-v3": VENDOR_AMD,
    "EPYC-Rome-v4": VENDOR_AMD,
    "EPYC-Milan": VENDOR_AMD,
    "EPYC-Milan-v2": VENDOR_AMD,
    "EPYC-Genoa": VENDOR_AMD,

    # Generic CPU models.
    "host": VENDOR_DEFAULT,
    "kvm32": VENDOR_DEFAULT,
    "kvm64": VENDOR_DEFAULT,
    "qemu32": VENDOR_DEFAULT,
    "qemu64": VENDOR_DEFAULT,
    "max": VENDOR_DEFAULT,
}

_X86_64_V2_FLAGS = "+popcnt;+pni;+sse4.1;+sse4.2;+ssse3"
_X86_64_V3_FLAGS = "+aes;" + _X86_64_V2_FLAGS + \
                   ";+avx;+avx2;+bmi1;+bmi2;+f16c;+fma;+abm;+movbe;+xsave"

# Built-in micro-architecture level models. They are not known to the emulator, so they are
# presented to it as the reported model plus the flags.
BUILTIN_MODELS: Final[dict[str, BuiltinModelTypedDict]] = {
    "x86-64-v2": {
        "reported_model": "qemu64",
        "flags": _X86_64_V2_FLAGS,
    },
    "x86-64-v2-AES": {
        "reported_model": "qemu64",
        "flags": "+aes;" + _X86_64_V2_FLAGS,
    },
    "x86-64-v3": {
        "reported_model": "qemu64",
        "flags": _X86_64_V3_FLAGS,
    },
    "x86-64-v4": {
        "reported_model": "qemu64",
        "flags": _X86_64_V3_FLAGS + ";+avx512f;+avx512bw;+avx512cd;+avx512dq;+avx512vl",
    },
}

# There never was an Icelake client CPU, the models are mapped to the server ones.
DEPRECATED_MODELS: Final[dict[str, str]] = {
    "Icelake-Client": "Icelake-Server",
    "Icelake-Client-noTSX": "Icelake-Server-noTSX",
}

CPUTYPES_32BIT: Final[tuple[str, ...]] = ("486", "pentium", "pentium2", "pentium3", "coreduo",
                                          "athlon", "kvm32", "qemu32")

# The model reported to the guest by custom CPU models that do not specify one.
DEFAULT_REPORTED_MODEL: Final[str] = "kvm64"

# VM configurations refer to custom CPU models by the model name with this prefix.
CUSTOM_PREFIX: Final[str] = "custom-"

def get_host_arch() -> str:
    """
    Return the architecture of the host (e.g., 'x86_64' or 'aarch64').
    """

    return os.uname().machine

def is_native_arch(arch: str) -> bool:
    """
    Check whether 'arch' is the architecture of the host.

    Args:
        arch: The architecture name to check.

    Returns:
        True if 'arch' is the host architecture, False otherwise.
    """

    return get_host_arch() == arch

def get_default_cpu_type(arch: str, kvm: bool) -> str:
    """
    Return the default CPU model for an architecture.

    Args:
        arch: The architecture name.
        kvm: Whether hardware virtualization is enabled.

    Returns:
        The default CPU model name.
    """

    if arch == "aarch64":
        return "cortex-a57"
    return "kvm64" if kvm else "qemu64"

def is_builtin_model(cputype: str) -> bool:
    """Return 'True' if 'cputype' is in the vendor table or is a level model."""

    return cputype in CPU_VENDORS or cputype in BUILTIN_MODELS

def get_replacement(cputype: str) -> str:
    """Return the replacement for a deprecated CPU model, or 'cputype' if it is not deprecated."""

    return DEPRECATED_MODELS.get(cputype, cputype)

def is_custom_model(cputype: str | None) -> bool:
    """
    Check whether a CPU type is a reference to a custom CPU model.

    Args:
        cputype: The CPU type name.

    Returns:
        True if 'cputype' has the custom CPU model prefix, False otherwise.
    """

    return bool(cputype) and str(cputype).startswith(CUSTOM_PREFIX)

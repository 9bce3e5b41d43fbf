# -*- coding: utf-8 -*-
# vim: ts=4 sw=4 tw=100 et ai si
#
# Copyright (C) 2020-2025 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

"""
Parse and validate CPU configuration strings like 'custom-mymodel,hidden=1,flags=+pcid;+aes'.

The same CPU configuration format ('CPU_FMT') describes two things:
  1. A custom CPU model definition. Custom models are created by the administrator, and they may use
     any CPU flag and the 'reported-model' property.
  2. The CPU configuration of a VM. It is validated more strictly: the CPU type must exist, the
     'reported-model' property is forbidden, and only the flags from 'SUPPORTED_FLAGS' are allowed.

The difference is expressed by validation policy objects ('PERMISSIVE_POLICY' and 'VM_POLICY').
"""

from __future__ import annotations # Remove when switching to Python 3.10+.

import re
import typing
from vmcpulibs import CPUModels, PropertyString
from vmcpulibs.helperlibs import Logging, DamerauLevenshtein
from vmcpulibs.helperlibs.Exceptions import Error, ErrorBadFormat, ErrorMissingCPUType
from vmcpulibs.helperlibs.Exceptions import ErrorNotFound
from vmcpulibs.helperlibs.Exceptions import ErrorFlagNotAllowed, ErrorPropertyNotAllowed
from vmcpulibs.helperlibs.Exceptions import ErrorUnknownBuiltinType

if typing.TYPE_CHECKING:
    from typing import TypedDict, Final, Pattern, Sequence
    from vmcpulibs.CustomModels import CustomModels
    from vmcpulibs.PropertyString import SchemaType

    # A parsed CPU configuration or custom CPU model. The "cputype" key is a built-in model name or
    # "custom-<name>", the "hidden" key is a boolean, the rest of the values are strings.
    CPUConfTypedDict = TypedDict("CPUConfTypedDict", {"cputype": str,
                                                      "reported-model": str,
                                                      "hidden": bool,
                                                      "hv-vendor-id": str,
                                                      "flags": str,
                                                      "phys-bits": str}, total=False)

_LOG = Logging.getLogger(f"{Logging.MAIN_LOGGER_NAME}.vmcpu.{__name__}")

# CPU flags that can be used in the CPU configuration of a VM.
SUPPORTED_FLAGS: Final[tuple[str, ...]] = ("pcid", "spec-ctrl", "ibpb", "ssbd", "virt-ssbd",
                                           "amd-ssbd", "amd-no-ssb", "pdpe1gb", "md-clear",
                                           "hv-tlbflush", "hv-evmcs", "aes")

_FLAG_ANY = r"[+-][a-zA-Z0-9\-_\.]+"

FLAG_ANY_RE: Final[Pattern[str]] = re.compile(r"([+-])([a-zA-Z0-9\-_\.]+)")
FLAG_SUPPORTED_RE: Final[Pattern[str]] = re.compile(rf"([+-])({'|'.join(SUPPORTED_FLAGS)})")

# The '-cpu' option value of a running emulator process: comma-separated tokens, a token may start
# with '+' without a separating comma.
CMDLINE_CPU_RE: Final[Pattern[str]] = re.compile(r"^\+?[\w\-.=]+(?:(?:,\+?|\+)[\w\-.=]+)*,?$")

_PHYS_BITS_RE = re.compile(r"^(host|\d{1,2})$")

def parse_phys_bits(value: str, noerr: bool = False) -> str | None:
    """
    Validate a 'phys-bits' property value.

    Args:
        value: The value to validate: an integer between 8 and 64, or 'host'.
        noerr: If True, return 'None' instead of raising an exception for an invalid value.

    Returns:
        The validated value.

    Raises:
        ErrorBadFormat: If the value is invalid and 'noerr' is False.
    """

    value = str(value)
    if not _PHYS_BITS_RE.match(value) or (value != "host" and not 8 <= int(value) <= 64):
        if noerr:
            return None
        raise ErrorBadFormat("value must be an integer between 8 and 64 or 'host'")

    return value

# The CPU configuration format.
CPU_FMT: Final[SchemaType] = {
    "cputype": {
        "type": "str",
        "description": "Emulated CPU type. Can be a built-in model name or a custom model name "
                       "(custom model names must be prefixed with 'custom-')",
        "format_description": "string",
        "default": "kvm64",
        "default_key": True,
        # Mandatory, but the name of a custom model comes from the section header.
        "optional": True,
    },
    "reported-model": {
        "type": "str",
        "description": "CPU model and vendor to report to the guest. Only valid for custom CPU "
                       "model definitions",
        "enum": sorted(CPUModels.CPU_VENDORS, key=str.lower),
        "default": CPUModels.DEFAULT_REPORTED_MODEL,
        "optional": True,
    },
    "hidden": {
        "type": "bool",
        "description": "Do not identify as a KVM virtual machine",
        "default": False,
        "optional": True,
    },
    "hv-vendor-id": {
        "type": "str",
        "description": "The Hyper-V vendor ID. Some drivers or programs inside Windows guests need "
                       "a specific ID",
        "format_description": "vendor-id",
        "pattern": re.compile(r"[a-zA-Z0-9]{1,12}"),
        "optional": True,
    },
    "flags": {
        "type": "str",
        "description": "List of additional CPU flags separated by ';'. Use '+FLAG' to enable, "
                       "'-FLAG' to disable a flag. Custom CPU models can specify any flag, "
                       f"VM-specific flags must be from the following set: "
                       f"{', '.join(SUPPORTED_FLAGS)}",
        "format_description": "+FLAG[;-FLAG...]",
        "pattern": re.compile(rf"{_FLAG_ANY}(?:;{_FLAG_ANY})*"),
        "optional": True,
    },
    "phys-bits": {
        "type": "str",
        "description": "The physical memory address bits that are reported to the guest OS. Set to "
                       "'host' to use the value of the host CPU",
        "format_description": "8-64|host",
        "verify": parse_phys_bits,
        "optional": True,
    },
}

class ValidationPolicy:
    """
    A set of constraints applied to a parsed CPU configuration on top of the 'CPU_FMT' schema.
    """

    def __init__(self, name: str, flag_re: Pattern[str], allowed_flags: Sequence[str] = (),
                 forbidden: Sequence[str] = (), check_cputype: bool = False):
        """
        Initialize a class instance.

        Args:
            name: Name of the policy for messages.
            flag_re: The regular expression every CPU flag must fully match.
            allowed_flags: Names of the allowed CPU flags, for messages. Empty if any flag matching
                           'flag_re' is allowed.
            forbidden: Names of the properties that must not be present.
            check_cputype: If True, the CPU type must be a known built-in model or an existing
                           custom model.
        """

        self.name = name
        self.flag_re = flag_re
        self.allowed_flags = allowed_flags
        self.forbidden = forbidden
        self.check_cputype = check_cputype

    def __repr__(self):
        """Return a printable representation of the policy."""
        return f"ValidationPolicy({self.name!r})"

# Custom CPU model definitions: any CPU flag is allowed.
PERMISSIVE_POLICY: Final[ValidationPolicy] = ValidationPolicy("custom CPU model", FLAG_ANY_RE)

# The CPU configuration of a VM.
VM_POLICY: Final[ValidationPolicy] = ValidationPolicy("VM-specific CPU config", FLAG_SUPPORTED_RE,
                                                      allowed_flags=SUPPORTED_FLAGS,
                                                      forbidden=("reported-model",),
                                                      check_cputype=True)

def split_flags(flags: str | None) -> list[tuple[str, str]]:
    """
    Split a ';'-separated CPU flags string.

    Args:
        flags: The CPU flags string (e.g., '+pcid;-aes'). May be empty or 'None'.

    Returns:
        A list of '(operation, flag name)' tuples in the original order, where the operation is '+'
        or '-'. Malformed tokens are skipped.
    """

    result: list[tuple[str, str]] = []
    if not flags:
        return result

    for token in flags.split(";"):
        matchobj = FLAG_ANY_RE.fullmatch(token.strip())
        if matchobj:
            result.append((matchobj.group(1), matchobj.group(2)))

    return result

def _check_cputype(cputype: str, models: CustomModels | None):
    """Make sure 'cputype' is a known built-in CPU model or an existing custom CPU model."""

    if CPUModels.is_custom_model(cputype):
        if models is None:
            raise ErrorNotFound(f"Custom cputype '{cputype}' not found: custom CPU models are not "
                                f"available")
        # Raises 'ErrorNotFound' for an unknown model.
        models.get_model(cputype)
        return

    if CPUModels.is_builtin_model(cputype):
        return

    msg = f"Built-in cputype '{cputype}' is not defined " \
          f"(missing '{CPUModels.CUSTOM_PREFIX}' prefix?)"
    candidates = list(CPUModels.CPU_VENDORS) + list(CPUModels.BUILTIN_MODELS)
    match = DamerauLevenshtein.closest_match(cputype, candidates)
    if match:
        msg += f"\nDid you mean '{match}'?"
    raise ErrorUnknownBuiltinType(msg, cputype=cputype)

def validate_cpu_conf(cpu: CPUConfTypedDict, policy: ValidationPolicy = PERMISSIVE_POLICY,
                      models: CustomModels | None = None) -> CPUConfTypedDict:
    """
    Validate a parsed CPU configuration according to a validation policy.

    Args:
        cpu: The parsed CPU configuration.
        policy: The validation policy to apply.
        models: The custom CPU models registry, used for checking custom CPU model references.

    Returns:
        The validated CPU configuration ('cpu').

    Raises:
        ErrorMissingCPUType: If the CPU type is missing.
        ErrorNotFound: If the CPU type refers to a non-existing custom CPU model.
        ErrorUnknownBuiltinType: If the CPU type is an unknown built-in CPU model.
        ErrorFlagNotAllowed: If some of the flags are not allowed by the policy.
        ErrorPropertyNotAllowed: If a property forbidden by the policy is present.
    """

    cputype = cpu.get("cputype")
    if not cputype:
        raise ErrorMissingCPUType("CPU is missing cputype")

    if policy.check_cputype:
        _check_cputype(cputype, models)

    flags = cpu.get("flags")
    if flags:
        bad_flags = [flag for flag in flags.split(";") if not policy.flag_re.fullmatch(flag)]
        if bad_flags:
            if policy.allowed_flags:
                msg = f"{policy.name} flags must be a subset of: " \
                      f"{', '.join(policy.allowed_flags)}"
            else:
                msg = f"Bad CPU flags for {policy.name}: {', '.join(bad_flags)}"
            raise ErrorFlagNotAllowed(msg, flags=bad_flags)

    for prop in policy.forbidden:
        if cpu.get(prop) is not None:
            raise ErrorPropertyNotAllowed(f"Property '{prop}' not allowed in {policy.name}")

    return cpu

def parse_basic(cpustr: str, noerr: bool = False) -> CPUConfTypedDict | None:
    """
    Parse a CPU configuration string using the full CPU configuration format.

    Args:
        cpustr: The CPU configuration string.
        noerr: If True, return 'None' instead of raising an exception on errors.

    Returns:
        The parsed CPU configuration dictionary.

    Raises:
        ErrorBadFormat: If the string cannot be parsed.
        ErrorMissingCPUType: If the CPU type is missing.
    """

    try:
        cpu = typing.cast("CPUConfTypedDict",
                          PropertyString.parse_property_string(CPU_FMT, cpustr))
        return validate_cpu_conf(cpu)
    except ErrorBadFormat as err:
        if noerr:
            _LOG.debug("failed to parse CPU configuration '%s': %s", cpustr, err)
            return None
        raise

def parse_inline_restricted(cpustr: str, models: CustomModels | None,
                            noerr: bool = False) -> CPUConfTypedDict | None:
    """
    Parse the CPU configuration string of a VM. Same as 'parse_basic()', but apply the VM validation
    policy.

    Args:
        cpustr: The CPU configuration string of the VM.
        models: The custom CPU models registry.
        noerr: If True, return 'None' instead of raising an exception on errors.

    Returns:
        The parsed CPU configuration dictionary.

    Raises:
        ErrorBadFormat: If the string cannot be parsed.
        ErrorMissingCPUType: If the CPU type is missing.
        ErrorNotFound: If the CPU type refers to a non-existing custom CPU model.
        ErrorUnknownBuiltinType: If the CPU type is an unknown built-in CPU model.
        ErrorFlagNotAllowed: If the flags include a flag not in 'SUPPORTED_FLAGS'.
        ErrorPropertyNotAllowed: If the 'reported-model' property is present.
        Error: If the custom CPU models registry cannot be read.
    """

    cpu = parse_basic(cpustr, noerr=noerr)
    if cpu is None:
        return None

    try:
        return validate_cpu_conf(cpu, policy=VM_POLICY, models=models)
    except Error as err:
        if noerr:
            _LOG.debug("bad VM CPU configuration '%s': %s", cpustr, err)
            return None
        raise

def format_cpu_spec(cpu: CPUConfTypedDict) -> str:
    """
    Format a CPU configuration dictionary as a CPU configuration string.

    Args:
        cpu: The CPU configuration dictionary.

    Returns:
        The CPU configuration string (e.g., 'kvm64,hidden=1,flags=+pcid').
    """

    return PropertyString.format_property_string(CPU_FMT, typing.cast(dict, cpu))

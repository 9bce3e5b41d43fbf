# -*- coding: utf-8 -*-
# vim: ts=4 sw=4 tw=100 et ai si
#
# Copyright (C) 2020-2025 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

"""
Resolve the emulator '-cpu' option and CPU hotplug device strings for a VM configuration.

The '-cpu' option value is the CPU model name followed by comma-separated CPU flags and settings,
for example 'kvm64,+lahf_lm,+sep,+kvm_pv_unhalt,+kvm_pv_eoi,enforce'. The order of flags matters for
the emulator, so the flags are collected into an ordered 'CPUFlags' object in a fixed sequence of
steps.
"""

from __future__ import annotations # Remove when switching to Python 3.10+.

import re
import typing
from collections import namedtuple
from vmcpulibs import CPUModels, CPUSpec, Machine
from vmcpulibs.helperlibs import Logging, Trivial
from vmcpulibs.helperlibs.Exceptions import Error, ErrorBadFormat, ErrorNotFound
from vmcpulibs.helperlibs.Exceptions import ErrorNotSupported, ErrorInternal

if typing.TYPE_CHECKING:
    from typing import TypedDict, Iterator, Sequence
    from vmcpulibs.CustomModels import CustomModels
    from vmcpulibs.CPUSpec import CPUConfTypedDict

    class VMConfTypedDict(TypedDict, total=False):
        """
        The VM configuration properties used for CPU option resolution.

        Attributes:
            cpu: The CPU configuration string of the VM.
            kvm: Whether hardware virtualization is enabled.
            ostype: The guest OS type (e.g., 'l26', 'win10', 'solaris').
            bios: The BIOS type ('seabios' or 'ovmf').
            cores: Number of cores per socket.
        """

        cpu: str
        kvm: bool | str | int
        ostype: str
        bios: str
        cores: int | str

_LOG = Logging.getLogger(f"{Logging.MAIN_LOGGER_NAME}.vmcpu.{__name__}")

# A CPU flag or setting of the '-cpu' option.
CPUFlag = namedtuple("CPUFlag", ["op", "name", "value", "reason"])

# The Hyper-V vendor ID used for GPU passthrough if the configuration does not specify one.
DEFAULT_HV_VENDOR_ID = "proxmox"

_PVE_REASON = "set by PVE"
_HV_REASON = "automatic Hyper-V enlightenment for Windows"

class CPUFlags:
    """
    An ordered list of CPU flags and settings for the '-cpu' option. Flags are formatted in the
    order they were added.

    If a flag is added again with the same operation and value, the addition is ignored. If it is
    added with a different operation or value, a warning is printed and the flag is added again, so
    that the later setting takes effect in the emulator.
    """

    def __init__(self):
        """Initialize a class instance."""

        self._flags: list[CPUFlag] = []

    def __len__(self) -> int:
        """Return the number of flags."""
        return len(self._flags)

    def __iter__(self) -> Iterator[str]:
        """Iterate over the formatted flags."""

        for flag in self._flags:
            yield self._format(flag)

    @staticmethod
    def _format(flag: CPUFlag) -> str:
        """Format a flag for the '-cpu' option."""

        result = f"{flag.op}{flag.name}"
        if flag.value is not None:
            result += f"={flag.value}"
        return result

    def _find(self, name: str) -> CPUFlag | None:
        """Return the last added flag named 'name' or 'None'."""

        for flag in reversed(self._flags):
            if flag.name == name:
                return flag
        return None

    def add(self, name: str, op: str = "", value: str | None = None,
            reason: str = "unknown origin"):
        """
        Add a CPU flag or setting.

        Args:
            name: Name of the flag (e.g., 'sep', 'hv_spinlocks', 'vendor').
            op: The flag operation: '+' to enable, '-' to disable, or '' for settings.
            value: The flag value (e.g., '0x1fff' for 'hv_spinlocks=0x1fff').
            reason: Why the flag is added, used in the warning about overwriting a flag.
        """

        flag = CPUFlag(op, name, value, reason)
        old = self._find(name)
        if old:
            if old.op == op and old.value == value:
                _LOG.debug("CPU flag '%s' (%s) is already set (%s)",
                           self._format(flag), reason, old.reason)
                return
            _LOG.warning("CPU flag/setting '%s' (%s) overwrites '%s' (%s)",
                         self._format(flag), reason, self._format(old), old.reason)

        self._flags.append(flag)

    def add_list(self, flags: str | None, reason: str):
        """
        Add CPU flags from a ';'-separated flags string, like '+pcid;-aes'.

        A flag repeated with the same operation, like '+pcid;+pcid', is added once. A flag repeated
        with a different operation, like '+pcid;-pcid', is added twice and the last one wins.

        Args:
            flags: The CPU flags string.
            reason: Why the flags are added.
        """

        for op, name in CPUSpec.split_flags(flags):
            self.add(name, op=op, reason=reason)

    def format(self, cputype: str) -> str:
        """
        Format the '-cpu' option value.

        Args:
            cputype: The CPU model name.

        Returns:
            The CPU model name followed by the comma-separated flags.
        """

        return ",".join([cputype] + list(self))

def windows_version(ostype: str | None) -> int:
    """
    Return the Windows version number for a guest OS type.

    Args:
        ostype: The guest OS type (e.g., 'win10', 'w2k8', 'l26').

    Returns:
        The Windows version number, 0 for non-Windows guests.
    """

    if not ostype:
        return 0
    if ostype in ("wxp", "w2k", "w2k3"):
        return 5
    if ostype in ("w2k8", "wvista"):
        return 6

    matchobj = re.match(r"^win(\d+)$", ostype)
    if matchobj:
        return int(matchobj.group(1))
    return 0

def _get_custom_model(models: CustomModels | None, cputype: str) -> CPUConfTypedDict:
    """Look up a custom CPU model, raise 'ErrorNotFound' if there is no such model."""

    if models is None:
        raise ErrorNotFound(f"Custom cputype '{cputype}' not found: custom CPU models are not "
                            f"available")

    model = models.get_model(cputype)
    if model is None:
        raise ErrorInternal(f"BUG: custom CPU model '{cputype}' lookup returned nothing")
    return model

def _parse_vm_cpu(cpustr: str) -> CPUConfTypedDict:
    """Parse the CPU configuration string of a VM."""

    try:
        cpu = CPUSpec.parse_basic(cpustr)
    except ErrorBadFormat as err:
        raise ErrorBadFormat(f"Cannot parse CPU description: {cpustr}\n{err.indent(2)}") from err

    if cpu is None:
        raise ErrorInternal(f"BUG: no result for CPU description '{cpustr}'")
    return cpu

def _resolve_cputype(cpu: CPUConfTypedDict,
                     models: CustomModels | None) -> tuple[str, str | None,
                                                           CPUConfTypedDict | None]:
    """
    Resolve the CPU model name passed to the emulator for a parsed VM CPU configuration.

    Return a '(cputype, builtin_flags, custom_model)' tuple, where 'builtin_flags' are the flags of
    a built-in level model, and 'custom_model' is the referenced custom CPU model.
    """

    cputype = cpu["cputype"]
    builtin_flags = None
    custom = None

    if cputype in CPUModels.BUILTIN_MODELS:
        builtin = CPUModels.BUILTIN_MODELS[cputype]
        cputype = builtin["reported_model"]
        builtin_flags = builtin["flags"]
    elif CPUModels.is_custom_model(cputype):
        custom = _get_custom_model(models, cputype)
        cputype = custom.get("reported-model", CPUModels.DEFAULT_REPORTED_MODEL)

    replacement = CPUModels.get_replacement(cputype)
    if replacement != cputype:
        _LOG.debug("CPU model '%s' is deprecated, using '%s'", cputype, replacement)

    return replacement, builtin_flags, custom

def get_pve_cpu_flags(conf: VMConfTypedDict, kvm: bool, cputype: str, arch: str,
                      machine_version: str, flags: CPUFlags | None = None) -> CPUFlags:
    """
    Add the CPU flags required by certain configurations.

    Args:
        conf: The VM configuration.
        kvm: Whether hardware virtualization is enabled.
        cputype: The CPU model name passed to the emulator.
        arch: The VM architecture.
        machine_version: The machine version ('major.minor[+pveN]').
        flags: The CPU flags object to add the flags to. A new one is created by default.

    Returns:
        The CPU flags object.
    """

    if flags is None:
        flags = CPUFlags()

    if cputype == "kvm64" and arch == "x86_64":
        flags.add("lahf_lm", op="+", reason=f"{_PVE_REASON}; to support Windows 8.1+")

    if conf.get("ostype") == "solaris":
        flags.add("x2apic", op="-", reason=f"{_PVE_REASON}; incompatible with Solaris")

    if cputype in ("kvm64", "kvm32"):
        flags.add("sep", op="+", reason=f"{_PVE_REASON}; to support Windows 8+ and improve "
                                        f"Windows XP+")

    if cputype.startswith("Opteron"):
        flags.add("rdtscp", op="-", reason=f"{_PVE_REASON}; broken on AMD Opteron")

    if Machine.is_at_least(machine_version, 2, 3) and arch == "x86_64" and kvm:
        flags.add("kvm_pv_unhalt", op="+",
                  reason=f"{_PVE_REASON}; to improve Linux guest spinlock performance")
        flags.add("kvm_pv_eoi", op="+",
                  reason=f"{_PVE_REASON}; to improve Linux guest interrupt performance")

    return flags

def get_hyperv_enlightenments(winversion: int, machine_version: str, bios: str | None,
                              gpu_passthrough: bool, hv_vendor_id: str | None,
                              flags: CPUFlags | None = None) -> CPUFlags:
    """
    Add the Hyper-V enlightenments for Windows guests.

    Args:
        winversion: The Windows version of the guest, 0 for non-Windows guests.
        machine_version: The machine version ('major.minor[+pveN]').
        bios: The BIOS type of the VM.
        gpu_passthrough: Whether a GPU is passed through to the VM.
        hv_vendor_id: The Hyper-V vendor ID from the CPU configuration.
        flags: The CPU flags object to add the flags to. A new one is created by default.

    Returns:
        The CPU flags object.
    """

    if flags is None:
        flags = CPUFlags()

    if winversion < 6:
        return flags
    if bios == "ovmf" and winversion < 8:
        return flags

    if gpu_passthrough or hv_vendor_id is not None:
        if hv_vendor_id is not None:
            reason = "custom hv_vendor_id set"
        else:
            reason = "NVIDIA workaround for GPU passthrough"
        flags.add("hv_vendor_id", value=hv_vendor_id or DEFAULT_HV_VENDOR_ID, reason=reason)

    if Machine.is_at_least(machine_version, 2, 3):
        flags.add("hv_spinlocks", value="0x1fff", reason=_HV_REASON)
        flags.add("hv_vapic", reason=_HV_REASON)
        flags.add("hv_time", reason=_HV_REASON)
    else:
        flags.add("hv_spinlocks", value="0xffff", reason=_HV_REASON)

    if Machine.is_at_least(machine_version, 2, 6):
        flags.add("hv_reset", reason=_HV_REASON)
        flags.add("hv_vpindex", reason=_HV_REASON)
        flags.add("hv_runtime", reason=_HV_REASON)

    if winversion >= 7:
        reason = f"{_HV_REASON} 7 and higher"
        flags.add("hv_relaxed", reason=reason)

        if Machine.is_at_least(machine_version, 2, 12):
            flags.add("hv_synic", reason=reason)
            flags.add("hv_stimer", reason=reason)

        if Machine.is_at_least(machine_version, 3, 1):
            flags.add("hv_ipi", reason=reason)

    return flags

def get_cpu_options(conf: VMConfTypedDict,
                    arch: str,
                    kvm: bool,
                    kvm_off: bool,
                    machine_version: str,
                    winversion: int,
                    gpu_passthrough: bool,
                    models: CustomModels | None = None) -> tuple[str, str]:
    """
    Calculate the emulator '-cpu' option for a VM configuration.

    Args:
        conf: The VM configuration.
        arch: The VM architecture.
        kvm: Whether hardware virtualization is enabled.
        kvm_off: Whether to hide the KVM signature from the guest.
        machine_version: The machine version ('major.minor[+pveN]').
        winversion: The Windows version of the guest, 0 for non-Windows guests.
        gpu_passthrough: Whether a GPU is passed through to the VM.
        models: The custom CPU models registry, needed if the VM uses a custom CPU model.

    Returns:
        The '("-cpu", <value>)' tuple.

    Raises:
        ErrorBadFormat: If the CPU configuration of the VM cannot be parsed.
        ErrorNotFound: If the VM refers to a non-existing custom CPU model.
        ErrorInternal: If the resolved CPU model is missing in the vendor table.
    """

    flags = CPUFlags()
    cputype = CPUModels.get_default_cpu_type(arch, kvm)
    hv_vendor_id = None
    cpu: CPUConfTypedDict | None = None
    custom: CPUConfTypedDict | None = None

    cpustr = conf.get("cpu")
    if cpustr:
        cpu = _parse_vm_cpu(cpustr)
        cputype, builtin_flags, custom = _resolve_cputype(cpu, models)

        if builtin_flags:
            flags.add_list(builtin_flags, "set by built-in CPU model")

        if custom:
            if custom.get("hidden") is not None:
                kvm_off = custom["hidden"]
            hv_vendor_id = custom.get("hv-vendor-id")
            flags.add_list(custom.get("flags"), "set by custom CPU model")

        # VM-specific settings override the custom CPU model.
        if cpu.get("hidden") is not None:
            kvm_off = cpu["hidden"]
        if cpu.get("hv-vendor-id") is not None:
            hv_vendor_id = cpu["hv-vendor-id"]
        flags.add_list(cpu.get("flags"), "manually set for VM")

    get_pve_cpu_flags(conf, kvm, cputype, arch, machine_version, flags=flags)

    if kvm:
        get_hyperv_enlightenments(winversion, machine_version, conf.get("bios"), gpu_passthrough,
                                  hv_vendor_id, flags=flags)

    if cputype != "host" and kvm and arch == "x86_64":
        flags.add("enforce", reason="error if requested CPU settings not available")

    if kvm_off:
        flags.add("kvm", value="off", reason="hide KVM virtualization from guest")

    # For custom CPU models 'cputype' is the reported model, which is in the vendor table.
    vendor = CPUModels.CPU_VENDORS.get(cputype)
    if vendor:
        if vendor != CPUModels.VENDOR_DEFAULT:
            flags.add("vendor", value=vendor, reason=f"vendor of CPU model '{cputype}'")
    elif arch != "aarch64":
        raise ErrorInternal(f"BUG: CPU model '{cputype}' is not in the vendor table")

    phys_bits = None
    for source in (custom, cpu):
        if source and source.get("phys-bits"):
            phys_bits = source["phys-bits"]
    if phys_bits == "host":
        flags.add("host-phys-bits", value="true", reason="physical address bits of the host")
    elif phys_bits:
        flags.add("phys-bits", value=phys_bits, reason="physical address bits")

    cpu_opt = flags.format(cputype)
    _LOG.debug("resolved '-cpu %s'", cpu_opt)
    return ("-cpu", cpu_opt)

def print_cpu_device(conf: VMConfTypedDict, arch: str, cpuid: int,
                     models: CustomModels | None = None, kvm: bool | None = None) -> str:
    """
    Format the emulator device string for hotplugging a vCPU.

    Args:
        conf: The VM configuration.
        arch: The VM architecture.
        cpuid: The vCPU number, starting from 1.
        models: The custom CPU models registry, needed if the VM uses a custom CPU model.
        kvm: Whether hardware virtualization is enabled. By default, take it from the 'kvm' VM
             configuration property, or enable if 'arch' is the host architecture.

    Returns:
        The device string, e.g., 'kvm64-x86_64-cpu,id=cpu5,socket-id=1,core-id=0,thread-id=0'.

    Raises:
        ErrorNotSupported: If 'arch' is not 'x86_64'.
    """

    if arch != "x86_64":
        raise ErrorNotSupported(f"Hotplug of non x86_64 CPU not yet supported (architecture "
                                f"'{arch}')")

    if kvm is None:
        if conf.get("kvm") is not None:
            kvm = Trivial.str_to_bool(conf["kvm"], what="'kvm' VM configuration property")
        else:
            kvm = CPUModels.is_native_arch(arch)

    cputype = CPUModels.get_default_cpu_type("x86_64", kvm)
    cpustr = conf.get("cpu")
    if cpustr:
        cputype, _, _ = _resolve_cputype(_parse_vm_cpu(cpustr), models)

    cores = 1
    if conf.get("cores") is not None:
        cores = Trivial.str_to_int(conf["cores"], what="number of cores")
    if cores < 1:
        raise Error(f"Bad number of cores '{cores}': should be a positive integer")

    socket, core = divmod(cpuid - 1, cores)
    return f"{cputype}-x86_64-cpu,id=cpu{cpuid},socket-id={socket},core-id={core},thread-id=0"

def get_cpu_bitness(cpustr: str | None, arch: str | None = None,
                    models: CustomModels | None = None) -> int:
    """
    Return the bitness of the CPU model of a VM.

    Args:
        cpustr: The CPU configuration string of the VM, 'None' for the default CPU model.
        arch: The VM architecture. Defaults to the host architecture.
        models: The custom CPU models registry, needed if the VM uses a custom CPU model.

    Returns:
        32 or 64.

    Raises:
        ErrorNotSupported: If the architecture is not supported.
    """

    if arch is None:
        arch = CPUModels.get_host_arch()

    cputype = CPUModels.get_default_cpu_type(arch, False)
    if cpustr:
        cputype, _, _ = _resolve_cputype(_parse_vm_cpu(cpustr), models)

    if arch == "x86_64":
        return 32 if cputype in CPUModels.CPUTYPES_32BIT else 64
    if arch == "aarch64":
        return 64

    raise ErrorNotSupported(f"Unsupported architecture '{arch}'")

def get_cpu_from_running_vm(cmdline: str | bytes | Sequence[str]) -> str:
    """
    Return the '-cpu' option value of a running emulator process.

    Args:
        cmdline: The command line of the emulator process: either the contents of the
                 '/proc/<pid>/cmdline' file (NUL-separated arguments), or a list of arguments.

    Returns:
        The sanitized '-cpu' option value.

    Raises:
        Error: If the command line has no valid '-cpu' option.
    """

    if isinstance(cmdline, bytes):
        cmdline = cmdline.decode("utf-8", errors="replace")
    if isinstance(cmdline, str):
        args = cmdline.split("\0")
    else:
        args = list(cmdline)

    value = None
    pending = None
    for arg in args:
        if not arg:
            continue
        matchobj = re.match(r"^--?(.*)$", arg)
        if matchobj:
            pending = matchobj.group(1)
        elif pending:
            if pending == "cpu":
                value = arg
            pending = None

    if not value:
        raise Error("Could not read the '-cpu' option from the command line of the running VM")

    if not CPUSpec.CMDLINE_CPU_RE.match(value):
        raise Error(f"Bad '-cpu' option value in the command line of the running VM: {value}")

    return value

# -*- coding: utf-8 -*-
# vim: ts=4 sw=4 tw=100 et ai si
#
# Copyright (C) 2020-2025 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

"""
Implement the 'vmcpu options', 'vmcpu device', and 'vmcpu machine' commands.
"""

from __future__ import annotations # Remove when switching to Python 3.10+.

import re
import typing
from vmcpulibs import CPUModels, CPUOptions, CPUSpec, CustomModels, Machine
from vmcpulibs.helperlibs import Logging, Trivial, YAML
from vmcpulibs.helperlibs.Exceptions import Error

if typing.TYPE_CHECKING:
    import argparse
    from typing import Any
    from vmcpulibs.CPUOptions import VMConfTypedDict

_LOG = Logging.getLogger(f"{Logging.MAIN_LOGGER_NAME}.vmcpu.{__name__}")

_HOSTPCI_RE = re.compile(r"^hostpci\d+$")
_XVGA_RE = re.compile(r"(?:^|,)x-vga=(?:1|on)(?:,|$)")

def _load_vm_config(path: str) -> dict[str, Any]:
    """Load and sanity-check the VM configuration YAML file."""

    conf = YAML.load(path)

    for key in ("cpu", "ostype", "bios", "machine", "arch"):
        if conf.get(key) is not None and not isinstance(conf[key], str):
            raise Error(f"Bad VM configuration file '{path}': the '{key}' value must be a string")

    _LOG.debug("loaded VM configuration: %s", conf)
    return conf

def _get_arch(args: argparse.Namespace, conf: dict[str, Any]) -> str:
    """Return the VM architecture."""

    return args.arch or conf.get("arch") or CPUModels.get_host_arch()

def _get_kvm(conf: dict[str, Any], arch: str) -> bool:
    """Return whether hardware virtualization is enabled for the VM."""

    if conf.get("kvm") is not None:
        return Trivial.str_to_bool(conf["kvm"], what="'kvm' VM configuration property")
    return CPUModels.is_native_arch(arch)

def _has_gpu_passthrough(conf: dict[str, Any]) -> bool:
    """Check whether the VM configuration passes through a GPU ('x-vga=1' in 'hostpciN')."""

    for key, value in conf.items():
        if _HOSTPCI_RE.match(str(key)) and _XVGA_RE.search(str(value)):
            _LOG.debug("GPU passthrough detected in '%s: %s'", key, value)
            return True
    return False

def _get_models(args: argparse.Namespace, cpustr: str | None) -> CustomModels.CustomModels:
    """Create the custom CPU models registry object and validate the VM CPU configuration."""

    models = CustomModels.CustomModels(path=args.models_file)
    if cpustr:
        CPUSpec.parse_inline_restricted(cpustr, models)
    return models

def options_command(args: argparse.Namespace):
    """
    Implement the 'options' command.

    Args:
        args: The command line arguments.
    """

    conf = _load_vm_config(args.config)
    arch = _get_arch(args, conf)
    kvm = _get_kvm(conf, arch)

    machine = args.machine or conf.get("machine")
    if args.kvm_version:
        machine_version = Machine.check_runnable(machine, args.kvm_version)
    else:
        machine_version = Machine.extract_version(machine)
        if machine_version is None:
            raise Error(f"Cannot determine the version of machine type '{machine or 'pc'}', "
                        f"please, specify the emulator version with '--kvm-version'")

    gpu_passthrough = args.gpu_passthrough or _has_gpu_passthrough(conf)
    # GPU passthrough requires hiding the hypervisor from the guest.
    kvm_off = gpu_passthrough

    models = _get_models(args, conf.get("cpu"))
    winversion = CPUOptions.windows_version(conf.get("ostype"))

    _, value = CPUOptions.get_cpu_options(typing.cast("VMConfTypedDict", conf), arch, kvm,
                                          kvm_off, machine_version, winversion, gpu_passthrough,
                                          models=models)
    _LOG.info("-cpu %s", value)

def device_command(args: argparse.Namespace):
    """
    Implement the 'device' command.

    Args:
        args: The command line arguments.
    """

    conf = _load_vm_config(args.config)
    arch = _get_arch(args, conf)
    cpuid = Trivial.str_to_int(args.cpuid, what="vCPU number")
    if cpuid < 1:
        raise Error(f"Bad vCPU number '{cpuid}': should be a positive integer")

    models = _get_models(args, conf.get("cpu"))
    device = CPUOptions.print_cpu_device(typing.cast("VMConfTypedDict", conf), arch, cpuid,
                                         models=models)
    _LOG.info("%s", device)

def machine_check_command(args: argparse.Namespace):
    """
    Implement the 'machine check' command.

    Args:
        args: The command line arguments.
    """

    verstr = Machine.check_runnable(args.machine, args.kvm_version)
    _LOG.info("Machine type '%s' (version %s) can run on emulator version '%s'",
              args.machine, verstr, args.kvm_version)

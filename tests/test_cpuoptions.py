#!/usr/bin/env python3
#
# -*- coding: utf-8 -*-
# vim: ts=4 sw=4 tw=100 et ai si
#
# Copyright (C) 2020-2025 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

"""
Test resolving the emulator '-cpu' option and vCPU hotplug device strings.
"""

from __future__ import annotations # Remove when switching to Python 3.10+.

import typing
import logging
import pytest
from vmcpulibs import CPUOptions, CustomModels
from vmcpulibs.helperlibs.Exceptions import Error, ErrorBadFormat, ErrorNotFound
from vmcpulibs.helperlibs.Exceptions import ErrorNotSupported, ErrorInternal

if typing.TYPE_CHECKING:
    from typing import TypedDict
    from vmcpulibs.CPUOptions import VMConfTypedDict

    class _CPUOptionsTestTypedDict(TypedDict, total=False):
        """
        A '-cpu' option test case.

        Attributes:
            conf: The VM configuration.
            arch: The VM architecture.
            kvm: Whether hardware virtualization is enabled.
            kvm_off: Whether to hide the KVM signature.
            machine: The machine version.
            gpu: Whether a GPU is passed through.
            result: The expected '-cpu' option value.
        """

        conf: VMConfTypedDict
        arch: str
        kvm: bool
        kvm_off: bool
        machine: str
        gpu: bool
        result: str

_PV_FLAGS = "+kvm_pv_unhalt,+kvm_pv_eoi"
_KVM64_FLAGS = f"+lahf_lm,+sep,{_PV_FLAGS}"
_HV_FLAGS = "hv_spinlocks=0x1fff,hv_vapic,hv_time,hv_reset,hv_vpindex,hv_runtime,hv_relaxed," \
            "hv_synic,hv_stimer,hv_ipi"

_TEST_CASES: list[_CPUOptionsTestTypedDict] = [
    # The default CPU model.
    {"conf": {}, "result": f"kvm64,{_KVM64_FLAGS},enforce"},
    {"conf": {"ostype": "l26"}, "machine": "2.2", "result": "kvm64,+lahf_lm,+sep,enforce"},
    {"conf": {}, "kvm": False, "result": "qemu64"},
    {"conf": {"ostype": "solaris"},
     "result": f"kvm64,+lahf_lm,-x2apic,+sep,{_PV_FLAGS},enforce"},
    {"conf": {"cpu": "kvm32"}, "result": f"kvm32,+sep,{_PV_FLAGS},enforce"},
    # Windows guests get Hyper-V enlightenments.
    {"conf": {"ostype": "win10"}, "machine": "5.1",
     "result": f"kvm64,{_KVM64_FLAGS},{_HV_FLAGS},enforce"},
    {"conf": {"ostype": "win10"}, "machine": "2.5",
     "result": f"kvm64,{_KVM64_FLAGS},hv_spinlocks=0x1fff,hv_vapic,hv_time,hv_relaxed,enforce"},
    {"conf": {"ostype": "w2k8"}, "machine": "2.2",
     "result": "kvm64,+lahf_lm,+sep,hv_spinlocks=0xffff,enforce"},
    {"conf": {"ostype": "wxp"}, "result": f"kvm64,{_KVM64_FLAGS},enforce"},
    {"conf": {"ostype": "win7", "bios": "ovmf"}, "result": f"kvm64,{_KVM64_FLAGS},enforce"},
    {"conf": {"ostype": "win10"}, "kvm": False, "result": "qemu64"},
    {"conf": {"ostype": "win10"}, "machine": "5.1", "gpu": True, "kvm_off": True,
     "result": f"kvm64,{_KVM64_FLAGS},hv_vendor_id=proxmox,{_HV_FLAGS},enforce,kvm=off"},
    {"conf": {"ostype": "win10", "cpu": "host,hv-vendor-id=myvendor"}, "machine": "5.1",
     "result": f"host,{_PV_FLAGS},hv_vendor_id=myvendor,{_HV_FLAGS}"},
    # Built-in, deprecated, and vendor-specific CPU models.
    {"conf": {"cpu": "host"}, "result": f"host,{_PV_FLAGS}"},
    {"conf": {"cpu": "x86-64-v2-AES"},
     "result": f"qemu64,+aes,+popcnt,+pni,+sse4.1,+sse4.2,+ssse3,{_PV_FLAGS},enforce"},
    {"conf": {"cpu": "Icelake-Client"},
     "result": f"Icelake-Server,{_PV_FLAGS},enforce,vendor=GenuineIntel"},
    {"conf": {"cpu": "Opteron_G3,flags=+pcid"},
     "result": f"Opteron_G3,+pcid,-rdtscp,{_PV_FLAGS},enforce,vendor=AuthenticAMD"},
    # VM-specific settings.
    {"conf": {"cpu": "kvm64,hidden=1"}, "result": f"kvm64,{_KVM64_FLAGS},enforce,kvm=off"},
    {"conf": {"cpu": "kvm64,hidden=0"}, "kvm_off": True, "result": f"kvm64,{_KVM64_FLAGS},enforce"},
    {"conf": {"cpu": "kvm64,phys-bits=host"},
     "result": f"kvm64,{_KVM64_FLAGS},enforce,host-phys-bits=true"},
    {"conf": {"cpu": "kvm64,phys-bits=40"}, "result": f"kvm64,{_KVM64_FLAGS},enforce,phys-bits=40"},
    # Custom CPU models.
    {"conf": {"cpu": "custom-mymodel"},
     "result": f"EPYC,+aes,-pcid,{_PV_FLAGS},enforce,kvm=off,vendor=AuthenticAMD"},
    {"conf": {"cpu": "custom-mymodel,hidden=0,flags=+ssbd"},
     "result": f"EPYC,+aes,-pcid,+ssbd,{_PV_FLAGS},enforce,vendor=AuthenticAMD"},
    {"conf": {"cpu": "custom-plain"}, "result": f"kvm64,{_KVM64_FLAGS},enforce,phys-bits=40"},
    {"conf": {"cpu": "custom-plain,phys-bits=host"},
     "result": f"kvm64,{_KVM64_FLAGS},enforce,host-phys-bits=true"},
    # Other architectures.
    {"conf": {}, "arch": "aarch64", "result": "cortex-a57"},
    {"conf": {"ostype": "win10"}, "arch": "aarch64", "kvm": False, "result": "cortex-a57"},
]

def test_get_cpu_options(models: CustomModels.CustomModels):
    """
    Test resolving the '-cpu' option for various VM configurations.

    Args:
        models: The custom CPU models registry object.
    """

    for case in _TEST_CASES:
        conf = case["conf"]
        winversion = CPUOptions.windows_version(conf.get("ostype"))
        result = CPUOptions.get_cpu_options(conf, case.get("arch", "x86_64"),
                                            case.get("kvm", True), case.get("kvm_off", False),
                                            case.get("machine", "4.1"), winversion,
                                            case.get("gpu", False), models=models)
        assert result == ("-cpu", case["result"]), f"VM configuration: {conf}"

def test_get_cpu_options_errors(models: CustomModels.CustomModels):
    """
    Test '-cpu' option resolution errors.

    Args:
        models: The custom CPU models registry object.
    """

    args: tuple = ("x86_64", True, False, "4.1", 0, False)

    with pytest.raises(ErrorBadFormat, match="Cannot parse CPU description"):
        CPUOptions.get_cpu_options({"cpu": "kvm64,hidden=maybe"}, *args, models=models)
    with pytest.raises(ErrorBadFormat, match="Cannot parse CPU description"):
        CPUOptions.get_cpu_options({"cpu": "flags=+pcid"}, *args, models=models)

    with pytest.raises(ErrorNotFound):
        CPUOptions.get_cpu_options({"cpu": "custom-nosuchmodel"}, *args, models=models)
    with pytest.raises(ErrorNotFound):
        CPUOptions.get_cpu_options({"cpu": "custom-mymodel"}, *args)

    # A CPU model missing in the vendor table.
    with pytest.raises(ErrorInternal, match="BUG"):
        CPUOptions.get_cpu_options({"cpu": "Pentium9000"}, *args, models=models)

def test_flags_overwrite(caplog: pytest.LogCaptureFixture, models: CustomModels.CustomModels):
    """
    Test adding CPU flags that are already set.

    Args:
        caplog: The log capturing fixture (provided by the pytest framework).
        models: The custom CPU models registry object.
    """

    flags = CPUOptions.CPUFlags()
    flags.add("sep", op="+", reason="first")
    flags.add("sep", op="+", reason="same")
    flags.add("hv_spinlocks", value="0x1fff", reason="first")
    assert len(flags) == 2

    with caplog.at_level(logging.WARNING):
        flags.add("sep", op="-", reason="second")
        flags.add("hv_spinlocks", value="0xffff", reason="second")
    assert list(flags) == ["+sep", "hv_spinlocks=0x1fff", "-sep", "hv_spinlocks=0xffff"]
    assert len(caplog.records) == 2
    assert "'-sep' (second) overwrites '+sep' (first)" in caplog.text

    # A VM flag overrides a custom CPU model flag, and both end up in the '-cpu' option value.
    caplog.clear()
    with caplog.at_level(logging.WARNING):
        _, value = CPUOptions.get_cpu_options({"cpu": "custom-mymodel,flags=+pcid"}, "x86_64",
                                              True, False, "4.1", 0, False, models=models)
    assert value.startswith("EPYC,+aes,-pcid,+pcid,")
    assert "overwrites '-pcid'" in caplog.text

    flags = CPUOptions.CPUFlags()
    flags.add_list("+aes;-pcid", "test")
    flags.add("vendor", value="GenuineIntel")
    assert flags.format("Haswell") == "Haswell,+aes,-pcid,vendor=GenuineIntel"
    assert CPUOptions.CPUFlags().format("kvm64") == "kvm64"

def test_flags_repeated(caplog: pytest.LogCaptureFixture, models: CustomModels.CustomModels):
    """
    Test CPU flags strings that repeat a flag.

    Args:
        caplog: The log capturing fixture (provided by the pytest framework).
        models: The custom CPU models registry object.
    """

    flags = CPUOptions.CPUFlags()
    with caplog.at_level(logging.WARNING):
        flags.add_list("+pcid;-aes;+pcid;-aes", "test")
    assert list(flags) == ["+pcid", "-aes"]
    assert not caplog.records

    with caplog.at_level(logging.WARNING):
        flags.add_list("-pcid", "test")
    assert list(flags) == ["+pcid", "-aes", "-pcid"]
    assert "overwrites '+pcid'" in caplog.text

    _, value = CPUOptions.get_cpu_options({"cpu": "kvm64,flags=+pcid;+pcid"}, "x86_64", True,
                                          False, "4.1", 0, False, models=models)
    assert value.split(",").count("+pcid") == 1

def test_hyperv_enlightenments():
    """Test the Hyper-V enlightenments helper directly."""

    flags = CPUOptions.get_hyperv_enlightenments(10, "3.0", "seabios", False, None)
    assert list(flags) == ["hv_spinlocks=0x1fff", "hv_vapic", "hv_time", "hv_reset", "hv_vpindex",
                           "hv_runtime", "hv_relaxed", "hv_synic", "hv_stimer"]

    flags = CPUOptions.get_hyperv_enlightenments(8, "4.1", "ovmf", True, None)
    assert list(flags)[0] == "hv_vendor_id=proxmox"

    assert not CPUOptions.get_hyperv_enlightenments(5, "4.1", None, True, "vendor")
    assert not CPUOptions.get_hyperv_enlightenments(7, "4.1", "ovmf", False, None)

def test_windows_version():
    """Test detecting Windows versions of guest OS types."""

    versions = {"wxp": 5, "w2k": 5, "w2k3": 5, "w2k8": 6, "wvista": 6, "win7": 7, "win8": 8,
                "win10": 10, "win11": 11, "l26": 0, "l24": 0, "solaris": 0, "other": 0, "": 0,
                None: 0}

    for ostype, version in versions.items():
        assert CPUOptions.windows_version(ostype) == version, f"OS type '{ostype}'"

def test_print_cpu_device(models: CustomModels.CustomModels):
    """
    Test formatting vCPU hotplug device strings.

    Args:
        models: The custom CPU models registry object.
    """

    conf: VMConfTypedDict = {"cores": 4}
    assert CPUOptions.print_cpu_device(conf, "x86_64", 5, kvm=True) == \
           "kvm64-x86_64-cpu,id=cpu5,socket-id=1,core-id=0,thread-id=0"
    assert CPUOptions.print_cpu_device(conf, "x86_64", 4, kvm=True) == \
           "kvm64-x86_64-cpu,id=cpu4,socket-id=0,core-id=3,thread-id=0"
    assert CPUOptions.print_cpu_device(conf, "x86_64", 1, kvm=False) == \
           "qemu64-x86_64-cpu,id=cpu1,socket-id=0,core-id=0,thread-id=0"

    # The 'kvm' property of the VM configuration and the default number of cores.
    conf = {"kvm": 0}
    assert CPUOptions.print_cpu_device(conf, "x86_64", 3) == \
           "qemu64-x86_64-cpu,id=cpu3,socket-id=2,core-id=0,thread-id=0"

    conf = {"cpu": "custom-mymodel", "cores": "2"}
    assert CPUOptions.print_cpu_device(conf, "x86_64", 4, models=models, kvm=True) == \
           "EPYC-x86_64-cpu,id=cpu4,socket-id=1,core-id=1,thread-id=0"

    conf = {"cpu": "x86-64-v3", "cores": 2}
    assert CPUOptions.print_cpu_device(conf, "x86_64", 2, kvm=True) == \
           "qemu64-x86_64-cpu,id=cpu2,socket-id=0,core-id=1,thread-id=0"

    with pytest.raises(ErrorNotSupported, match="non x86_64"):
        CPUOptions.print_cpu_device({}, "aarch64", 1)
    with pytest.raises(Error):
        CPUOptions.print_cpu_device({"cores": 0}, "x86_64", 1, kvm=True)

def test_get_cpu_bitness(models: CustomModels.CustomModels):
    """
    Test detecting the bitness of VM CPU models.

    Args:
        models: The custom CPU models registry object.
    """

    assert CPUOptions.get_cpu_bitness(None, "x86_64") == 64
    assert CPUOptions.get_cpu_bitness("kvm32", "x86_64") == 32
    assert CPUOptions.get_cpu_bitness("athlon,flags=+pcid", "x86_64") == 32
    assert CPUOptions.get_cpu_bitness("Haswell", "x86_64") == 64
    assert CPUOptions.get_cpu_bitness("custom-mymodel", "x86_64", models=models) == 64
    assert CPUOptions.get_cpu_bitness(None, "aarch64") == 64
    assert CPUOptions.get_cpu_bitness("cortex-a72", "aarch64") == 64

    with pytest.raises(ErrorNotSupported):
        CPUOptions.get_cpu_bitness(None, "riscv64")

def test_get_cpu_from_running_vm():
    """Test reading the '-cpu' option from emulator command lines."""

    cmdline = b"\0".join([b"/usr/bin/kvm", b"-id", b"100", b"-name", b"vm100", b"-cpu",
                           b"kvm64,+lahf_lm,+sep,enforce", b"-m", b"1024", b"-nodefaults", b""])
    assert CPUOptions.get_cpu_from_running_vm(cmdline) == "kvm64,+lahf_lm,+sep,enforce"
    assert CPUOptions.get_cpu_from_running_vm(cmdline.decode()) == "kvm64,+lahf_lm,+sep,enforce"

    args = ["/usr/bin/kvm", "--cpu", "host,+kvm_pv_eoi", "-machine", "type=pc-i440fx-8.1"]
    assert CPUOptions.get_cpu_from_running_vm(args) == "host,+kvm_pv_eoi"

    with pytest.raises(Error, match="Could not read"):
        CPUOptions.get_cpu_from_running_vm(b"\0".join([b"/usr/bin/kvm", b"-id", b"100"]))
    with pytest.raises(Error, match="Could not read"):
        CPUOptions.get_cpu_from_running_vm(["/usr/bin/kvm", "-cpu"])
    with pytest.raises(Error, match="Bad '-cpu' option value"):
        CPUOptions.get_cpu_from_running_vm(["/usr/bin/kvm", "-cpu", "kvm64;reboot"])

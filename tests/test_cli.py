#!/usr/bin/env python3
#
# -*- coding: utf-8 -*-
# vim: ts=4 sw=4 tw=100 et ai si
#
# Copyright (C) 2020-2025 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

"""Test the 'vmcpu' command-line tool."""

from __future__ import annotations # Remove when switching to Python 3.10+.

import re
import typing
import pytest
import yaml
from vmcputool import _VmCpu

if typing.TYPE_CHECKING:
    from pathlib import Path

_PV_FLAGS = "+kvm_pv_unhalt,+kvm_pv_eoi"
_HV_FLAGS = "hv_spinlocks=0x1fff,hv_vapic,hv_time,hv_reset,hv_vpindex,hv_runtime,hv_relaxed," \
            "hv_synic,hv_stimer,hv_ipi"

def _run_vmcpu(arguments: str, models_path: Path, exp_exc: type[BaseException] | None = None):
    """
    Execute the 'vmcpu' command and validate its outcome.

    Args:
        arguments: The command-line arguments to execute the 'vmcpu' command with, e.g.,
                   'models list --custom'.
        models_path: Path to the custom CPU models file to use.
        exp_exc: The expected exception. By default, any exception is considered a failure.
    """

    argv = ["--models-file", str(models_path)] + arguments.split()

    if exp_exc is None:
        assert _VmCpu.main(argv) == 0, f"command failed: vmcpu {' '.join(argv)}"
        return

    with pytest.raises(exp_exc) as excinfo:
        _VmCpu.main(argv)

    if exp_exc is SystemExit:
        assert excinfo.value.code == 1, f"unexpected exit code for: vmcpu {' '.join(argv)}"

def _write_vm_config(tmp_path: Path, text: str) -> Path:
    """Write a VM configuration YAML file and return its path."""

    path = tmp_path / "vm.yaml"
    path.write_text(text, encoding="utf-8")
    return path

def test_models_list(models_path: Path, capsys: pytest.CaptureFixture[str]):
    """
    Test the 'vmcpu models list' command.

    Args:
        models_path: Path to the custom CPU models file.
        capsys: The output capturing fixture (provided by the pytest framework).
    """

    _run_vmcpu("models list", models_path)
    out = capsys.readouterr().out
    assert re.search(r"^Skylake-Server\s+GenuineIntel$", out, re.MULTILINE)
    assert "custom-mymodel" not in out

    _run_vmcpu("models list --custom", models_path)
    out = capsys.readouterr().out
    assert re.search(r"^custom-mymodel\s+AuthenticAMD \(custom\)$", out, re.MULTILINE)
    assert re.search(r"^custom-plain\s+default \(custom\)$", out, re.MULTILINE)

    _run_vmcpu("models list --custom --yaml", models_path)
    cpu_models = yaml.safe_load(capsys.readouterr().out)
    assert {"name": "custom-plain", "custom": True, "vendor": "default"} in cpu_models
    assert {"name": "kvm64", "custom": False, "vendor": "default"} in cpu_models

def test_global_options(models_path: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]):
    """
    Test the global options in different positions of the command line.

    Args:
        models_path: Path to the custom CPU models file.
        tmp_path: A temporary directory path for testing (provided by the pytest framework).
        capsys: The output capturing fixture (provided by the pytest framework).
    """

    other_path = tmp_path / "other.conf"

    # The last '--models-file' option wins.
    _run_vmcpu(f"models list --custom --models-file {other_path}", models_path)
    assert "custom-mymodel" not in capsys.readouterr().out

    _run_vmcpu(f"models list --custom --models-file={other_path}", models_path)
    assert "custom-mymodel" not in capsys.readouterr().out

    # The quiet mode suppresses the informational output.
    _run_vmcpu("-q models show mymodel", models_path)
    assert not capsys.readouterr().out

    _run_vmcpu("models list --models-file", models_path, exp_exc=SystemExit)
    _run_vmcpu("models list --no-such-option", models_path, exp_exc=SystemExit)
    _run_vmcpu("-q -d models list", models_path, exp_exc=SystemExit)
    _run_vmcpu("--debug-modules YAML models list", models_path, exp_exc=SystemExit)

def test_models_manage(models_path: Path, capsys: pytest.CaptureFixture[str]):
    """
    Test the 'vmcpu models show/add/edit/delete' commands.

    Args:
        models_path: Path to the custom CPU models file.
        capsys: The output capturing fixture (provided by the pytest framework).
    """

    _run_vmcpu("models show custom-mymodel", models_path)
    out = capsys.readouterr().out
    assert out == "cputype: custom-mymodel\n" \
                  "reported-model: EPYC\n" \
                  "hidden: 1\n" \
                  "flags: +aes;-pcid\n"

    _run_vmcpu("models show mymodel --yaml", models_path)
    assert yaml.safe_load(capsys.readouterr().out) == {"cputype": "custom-mymodel",
                                                       "reported-model": "EPYC",
                                                       "flags": "+aes;-pcid", "hidden": True}

    _run_vmcpu("models add newmodel --reported-model Haswell --flags +pcid;+avx2 --hidden 0",
               models_path)
    out = capsys.readouterr().out
    assert out == "Added custom CPU model 'newmodel': " \
                  "custom-newmodel,reported-model=Haswell,hidden=0,flags=+pcid;+avx2\n"
    assert "cpu-model: newmodel\n" in models_path.read_text(encoding="utf-8")

    _run_vmcpu("models edit custom-newmodel --phys-bits host --delete hidden,flags", models_path)
    out = capsys.readouterr().out
    assert out == "Updated custom CPU model 'custom-newmodel': " \
                  "custom-newmodel,reported-model=Haswell,phys-bits=host\n"

    _run_vmcpu("models delete newmodel", models_path)
    assert capsys.readouterr().out == "Deleted custom CPU model 'newmodel'\n"
    assert "newmodel" not in models_path.read_text(encoding="utf-8")

    bad_commands = (
        "models show nosuchmodel",
        "models add mymodel",
        "models add custom-foo",
        "models add foo --phys-bits 100",
        "models add foo --flags avx",
        "models add foo --reported-model custom-mymodel",
        "models edit mymodel",
        "models edit mymodel --hidden 1 --delete hidden",
        "models edit mymodel --delete cputype",
        "models edit nosuchmodel --hidden 1",
        "models delete nosuchmodel",
    )
    for cmd in bad_commands:
        _run_vmcpu(cmd, models_path, exp_exc=SystemExit)

    # Failed commands do not change the custom CPU models file.
    assert models_path.read_text(encoding="utf-8").count("cpu-model:") == 2

def test_options(models_path: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]):
    """
    Test the 'vmcpu options' command.

    Args:
        models_path: Path to the custom CPU models file.
        tmp_path: A temporary directory path for testing (provided by the pytest framework).
        capsys: The output capturing fixture (provided by the pytest framework).
    """

    conf = _write_vm_config(tmp_path, """cpu: custom-mymodel
arch: x86_64
kvm: 1
ostype: l26
machine: pc-i440fx-4.1
""")

    _run_vmcpu(f"options {conf}", models_path)
    assert capsys.readouterr().out == \
           f"-cpu EPYC,+aes,-pcid,{_PV_FLAGS},enforce,kvm=off,vendor=AuthenticAMD\n"

    # The machine version is checked against the emulator version.
    _run_vmcpu(f"options {conf} --kvm-version 4.1.1", models_path)
    assert capsys.readouterr().out.startswith("-cpu EPYC,+aes,-pcid,")
    _run_vmcpu(f"options {conf} --kvm-version 4.0.0", models_path, exp_exc=SystemExit)

    # The machine type is not versioned, so the emulator version is required.
    _run_vmcpu(f"options {conf} --machine q35", models_path, exp_exc=SystemExit)
    _run_vmcpu(f"options {conf} --machine q35 --kvm-version 5.2.0", models_path)
    assert capsys.readouterr().out.startswith("-cpu EPYC,")

    # The custom CPU model is not defined in the custom CPU models file.
    other_path = tmp_path / "other.conf"
    _run_vmcpu(f"options {conf} --models-file {other_path}", models_path, exp_exc=SystemExit)

def test_options_gpu_passthrough(models_path: Path, tmp_path: Path,
                                 capsys: pytest.CaptureFixture[str]):
    """
    Test the 'vmcpu options' command for VMs with a GPU passed through.

    Args:
        models_path: Path to the custom CPU models file.
        tmp_path: A temporary directory path for testing (provided by the pytest framework).
        capsys: The output capturing fixture (provided by the pytest framework).
    """

    conf = _write_vm_config(tmp_path, """arch: x86_64
kvm: 1
ostype: win10
machine: pc-i440fx-5.1
hostpci0: "0000:01:00,x-vga=1,pcie=1"
""")

    expected = f"-cpu kvm64,+lahf_lm,+sep,{_PV_FLAGS},hv_vendor_id=proxmox,{_HV_FLAGS}," \
               f"enforce,kvm=off\n"

    _run_vmcpu(f"options {conf}", models_path)
    assert capsys.readouterr().out == expected

    conf = _write_vm_config(tmp_path, """arch: x86_64
kvm: 1
ostype: win10
machine: pc-i440fx-5.1
""")

    _run_vmcpu(f"options {conf} --gpu-passthrough", models_path)
    assert capsys.readouterr().out == expected

    _run_vmcpu(f"options {conf}", models_path)
    assert "kvm=off" not in capsys.readouterr().out

def test_options_bad_config(models_path: Path, tmp_path: Path):
    """
    Test the 'vmcpu options' command with bad VM configuration files.

    Args:
        models_path: Path to the custom CPU models file.
        tmp_path: A temporary directory path for testing (provided by the pytest framework).
    """

    bad_configs = (
        "cpu: kvm64,flags=+avx\nkvm: 1\nmachine: pc-4.1\n",
        "cpu: kvm64,reported-model=EPYC\nkvm: 1\nmachine: pc-4.1\n",
        "cpu: Skylake-Sever\nkvm: 1\nmachine: pc-4.1\n",
        "cpu: kvm64\nkvm: maybe\nmachine: pc-4.1\n",
        "cpu: [kvm64]\nmachine: pc-4.1\n",
        "- cpu: kvm64\n",
    )

    for text in bad_configs:
        conf = _write_vm_config(tmp_path, text)
        _run_vmcpu(f"options {conf}", models_path, exp_exc=SystemExit)

    _run_vmcpu(f"options {tmp_path / 'nosuchfile.yaml'}", models_path, exp_exc=SystemExit)

def test_device(models_path: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]):
    """
    Test the 'vmcpu device' command.

    Args:
        models_path: Path to the custom CPU models file.
        tmp_path: A temporary directory path for testing (provided by the pytest framework).
        capsys: The output capturing fixture (provided by the pytest framework).
    """

    conf = _write_vm_config(tmp_path, "cpu: custom-mymodel\nkvm: 1\ncores: 2\n")

    _run_vmcpu(f"device {conf} 3 --arch x86_64", models_path)
    assert capsys.readouterr().out == "EPYC-x86_64-cpu,id=cpu3,socket-id=1,core-id=0,thread-id=0\n"

    _run_vmcpu(f"device {conf} 0 --arch x86_64", models_path, exp_exc=SystemExit)
    _run_vmcpu(f"device {conf} one --arch x86_64", models_path, exp_exc=SystemExit)
    _run_vmcpu(f"device {conf} 1 --arch aarch64", models_path, exp_exc=SystemExit)

def test_machine_check(models_path: Path, capsys: pytest.CaptureFixture[str]):
    """
    Test the 'vmcpu machine check' command.

    Args:
        models_path: Path to the custom CPU models file.
        capsys: The output capturing fixture (provided by the pytest framework).
    """

    _run_vmcpu("machine check pc-q35-4.1 --kvm-version 4.1.1", models_path)
    assert capsys.readouterr().out == \
           "Machine type 'pc-q35-4.1' (version 4.1) can run on emulator version '4.1.1'\n"

    _run_vmcpu("machine check pc-q35-9.0 --kvm-version 4.1.1", models_path, exp_exc=SystemExit)
    _run_vmcpu("machine check pc-q35-4.1 --kvm-version bad", models_path, exp_exc=SystemExit)
    _run_vmcpu("machine check pc-q35-4.1", models_path, exp_exc=SystemExit)

def test_bad_command(models_path: Path):
    """
    Test misspelled commands and the '--version' option.

    Args:
        models_path: Path to the custom CPU models file.
    """

    _run_vmcpu("modles list", models_path, exp_exc=SystemExit)
    _run_vmcpu("models lst", models_path, exp_exc=SystemExit)

    with pytest.raises(SystemExit) as excinfo:
        _VmCpu.main(["--version"])
    assert excinfo.value.code == 0

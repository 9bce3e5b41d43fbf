#!/usr/bin/env python
#
# -*- coding: utf-8 -*-
# vim: ts=4 sw=4 tw=100 et ai si
#
# Copyright (C) 2020-2025 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

"""Common fixtures for the 'vmcpu' tests."""

from __future__ import annotations # Remove when switching to Python 3.10+.

import typing
import pytest
from vmcpulibs import CustomModels

if typing.TYPE_CHECKING:
    from pathlib import Path
    from typing import Any

# A custom CPU models file used by many tests.
MODELS_FILE_TEXT = """# Custom CPU models.
cpu-model: mymodel
\treported-model EPYC
\tflags +aes;-pcid
\thidden 1

cpu-model: plain
\tphys-bits 40
"""

class FakeMonitor:
    """
    A fake live query collaborator for a running emulator instance.
    """

    def __init__(self, machines: list[dict[str, Any]] | None = None,
                 version: dict[str, Any] | None = None):
        """
        Initialize a class instance.

        Args:
            machines: The machine types to return from 'query_machines()'.
            version: The emulator version to return from 'query_version()'.
        """

        self.machines = machines or []
        self.version = version
        self.queried: list[int | str] = []

    def query_machines(self, vmid: int | str) -> list[dict[str, Any]]:
        """Return the machine types of VM 'vmid'."""

        self.queried.append(vmid)
        return self.machines

    def query_version(self, vmid: int | str) -> dict[str, Any] | None:
        """Return the emulator version of VM 'vmid'."""

        self.queried.append(vmid)
        return self.version

@pytest.fixture(name="models_path")
def get_models_path(tmp_path: Path) -> Path:
    """
    Create a custom CPU models file in a temporary directory.

    Args:
        tmp_path: A temporary directory path for testing (provided by the pytest framework).

    Returns:
        Path to the custom CPU models file.
    """

    path = tmp_path / "cpu-models.conf"
    path.write_text(MODELS_FILE_TEXT, encoding="utf-8")
    return path

@pytest.fixture(name="models")
def get_models(models_path: Path) -> CustomModels.CustomModels:
    """
    Create a custom CPU models registry object for the test custom CPU models file.

    Args:
        models_path: Path to the custom CPU models file.

    Returns:
        The 'CustomModels' object.
    """

    return CustomModels.CustomModels(path=models_path)

@pytest.fixture(name="empty_models")
def get_empty_models(tmp_path: Path) -> CustomModels.CustomModels:
    """
    Create a custom CPU models registry object for a non-existing custom CPU models file.

    Args:
        tmp_path: A temporary directory path for testing (provided by the pytest framework).

    Returns:
        The 'CustomModels' object.
    """

    return CustomModels.CustomModels(path=tmp_path / "subdir" / "cpu-models.conf")

@pytest.fixture(name="fake_monitor")
def get_fake_monitor() -> type[FakeMonitor]:
    """
    Return the fake live query collaborator class.

    Returns:
        The 'FakeMonitor' class.
    """

    return FakeMonitor

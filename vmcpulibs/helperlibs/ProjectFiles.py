# -*- coding: utf-8 -*-
# vim: ts=4 sw=4 tw=100 et ai si
#
# Copyright (C) 2019-2025 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

"""Provide API for finding project files."""

from __future__ import annotations # Remove when switching to Python 3.10+.

import os
from pathlib import Path
from vmcpulibs.helperlibs import Logging

_LOG = Logging.getLogger(f"{Logging.MAIN_LOGGER_NAME}.vmcpu.{__name__}")

# The default location of the custom CPU models file.
DEFAULT_MODELS_PATH = Path("/etc/pve/virtual-guest/cpu-models.conf")

def get_project_models_envar(prjname: str) -> str:
    """
    Return the environment variable name for the custom CPU models file path of the given project.

    Args:
        prjname: Project name.

    Returns:
        Environment variable name for the custom CPU models file path.
    """

    name = prjname.replace("-", "_").upper()
    return f"{name}_MODELS_PATH"

def get_models_path(prjname: str, path: str | Path | None = None) -> Path:
    """
    Return the path to the custom CPU models file. The path is selected as follows:
        1. 'path', if it is provided.
        2. The path in the environment variable returned by 'get_project_models_envar()', if the
           variable is set.
        3. 'DEFAULT_MODELS_PATH'.

    Args:
        prjname: Project name.
        path: Explicitly specified custom CPU models file path.

    Returns:
        The custom CPU models file path.
    """

    if path:
        _LOG.debug("using custom CPU models file '%s'", path)
        return Path(path)

    envar = get_project_models_envar(prjname)
    envpath = os.environ.get(envar)
    if envpath:
        _LOG.debug("using custom CPU models file '%s' from the '%s' environment variable",
                   envpath, envar)
        return Path(envpath)

    return DEFAULT_MODELS_PATH

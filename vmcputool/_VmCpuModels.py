# -*- coding: utf-8 -*-
# vim: ts=4 sw=4 tw=100 et ai si
#
# Copyright (C) 2020-2025 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

"""
Implement the 'vmcpu models' command.
"""

from __future__ import annotations # Remove when switching to Python 3.10+.

import sys
import typing
from vmcpulibs import CPUSpec, CustomModels, PropertyString
from vmcpulibs.helperlibs import Logging, Trivial, YAML
from vmcpulibs.helperlibs.Exceptions import Error

if typing.TYPE_CHECKING:
    import argparse
    from typing import Any

_LOG = Logging.getLogger(f"{Logging.MAIN_LOGGER_NAME}.vmcpu.{__name__}")

# The command line options for the custom CPU model properties.
_PROP_OPTIONS = {"reported_model": "reported-model",
                 "flags": "flags",
                 "hidden": "hidden",
                 "hv_vendor_id": "hv-vendor-id",
                 "phys_bits": "phys-bits"}

def _get_props(args: argparse.Namespace) -> dict[str, Any]:
    """Return the custom CPU model properties specified on the command line."""

    props = {}
    for optname, key in _PROP_OPTIONS.items():
        value = getattr(args, optname, None)
        if value is not None:
            props[key] = value
    return props

def _print_model(model: dict[str, Any], yaml: bool):
    """Print custom CPU model properties."""

    if yaml:
        YAML.dump(model, sys.stdout)
        return

    for key in CPUSpec.CPU_FMT:
        if key in model:
            _LOG.info("%s: %s", key, PropertyString.format_value(model[key]))

def models_list_command(args: argparse.Namespace):
    """
    Implement the 'models list' command.

    Args:
        args: The command line arguments.
    """

    models = CustomModels.CustomModels(path=args.models_file)
    cpu_models = models.get_cpu_models(include_custom=args.custom)

    if args.yaml:
        YAML.dump(cpu_models, sys.stdout, skip_none=True)
        return

    width = max(len(info["name"]) for info in cpu_models)
    for info in cpu_models:
        vendor = info["vendor"] or "unknown vendor"
        suffix = " (custom)" if info["custom"] else ""
        _LOG.info("%-*s  %s%s", width, info["name"], vendor, suffix)

def models_show_command(args: argparse.Namespace):
    """
    Implement the 'models show' command.

    Args:
        args: The command line arguments.
    """

    models = CustomModels.CustomModels(path=args.models_file)
    model = models.get_model(args.name)
    _print_model(typing.cast(dict, model), args.yaml)

def models_add_command(args: argparse.Namespace):
    """
    Implement the 'models add' command.

    Args:
        args: The command line arguments.
    """

    models = CustomModels.CustomModels(path=args.models_file)
    model = models.add_model(args.name, _get_props(args))

    _LOG.info("Added custom CPU model '%s': %s", args.name, CPUSpec.format_cpu_spec(model))

def models_edit_command(args: argparse.Namespace):
    """
    Implement the 'models edit' command.

    Args:
        args: The command line arguments.
    """

    props = _get_props(args)
    delete: list[str] = []
    if args.delete:
        delete = Trivial.split_csv_line(args.delete, dedup=True)

    if not props and not delete:
        raise Error("please, specify the properties to change or delete")

    both = set(props) & set(delete)
    if both:
        raise Error(f"cannot both set and delete properties: {', '.join(sorted(both))}")

    models = CustomModels.CustomModels(path=args.models_file)
    model = models.update_model(args.name, props, delete=delete)

    _LOG.info("Updated custom CPU model '%s': %s", args.name, CPUSpec.format_cpu_spec(model))

def models_delete_command(args: argparse.Namespace):
    """
    Implement the 'models delete' command.

    Args:
        args: The command line arguments.
    """

    models = CustomModels.CustomModels(path=args.models_file)
    models.delete_model(args.name)

    _LOG.info("Deleted custom CPU model '%s'", args.name)

# -*- coding: utf-8 -*-
# vim: ts=4 sw=4 tw=100 et ai si
#
# Copyright (C) 2020-2025 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

"""
Provide YAML file reading and writing capabilities. Loading supports the "include" statement, which
merges the top-level keys of another YAML file (e.g., a VM configuration file may include a file
with settings shared by multiple VMs).
"""

from  __future__ import annotations # Remove when switching to Python 3.10+.

import io
from pathlib import Path, PosixPath
from typing import Any, IO, cast
import yaml
from vmcpulibs.helperlibs import Logging
from vmcpulibs.helperlibs.Exceptions import Error

_LOG = Logging.getLogger(f"{Logging.MAIN_LOGGER_NAME}.vmcpu.{__name__}")

def _drop_none(data: Any) -> Any:
    """
    Create a copy of the input data, excluding dictionary keys with 'None' values.

    Args:
        data: The input dictionary or list of dictionaries to process.

    Returns:
        A copy of 'data' without dictionary keys that had 'None' values.
    """

    if isinstance(data, list):
        return [_drop_none(val) for val in data]
    if not isinstance(data, dict):
        return data

    copy = {}
    for key, val in data.items():
        if val is None:
            continue
        copy[key] = _drop_none(val)

    return copy

def _represent_none(dumper: yaml.Dumper, _) -> yaml.ScalarNode:
    """Represent 'None' values as empty strings in YAML output."""

    return dumper.represent_scalar("tag:yaml.org,2002:null", "")

def _represent_posixpath(dumper: yaml.Dumper, value: PosixPath) -> yaml.ScalarNode:
    """Represent a 'PosixPath' object as a YAML string."""

    return dumper.represent_scalar("tag:yaml.org,2002:str", str(value))

def dump(data: dict[str, Any] | list[Any], path: Path | IO[str], skip_none: bool = False):
    """
    Dump a dictionary or a list to a YAML file.

    Args:
        data: The data to dump.
        path: The file path or file object to write the YAML data to.
        skip_none: If True, exclude dictionary keys with 'None' values from the output.
    """

    if skip_none:
        data = _drop_none(data)

    yaml.add_representer(type(None), _represent_none)
    yaml.add_representer(PosixPath, _represent_posixpath)

    try:
        if hasattr(path, "write"):
            yaml.dump(data, path, default_flow_style=False, sort_keys=False)
            _LOG.debug("wrote YAML to '%s'", getattr(path, "name", path))
        else:
            with open(path, "w", encoding="utf-8") as fobj:
                yaml.dump(data, fobj, default_flow_style=False, sort_keys=False)
            _LOG.debug("wrote YAML file at '%s'", path)
    except OSError as err:
        msg = Error(str(err)).indent(2)
        raise Error(f"failed to write YAML file '{path}':\n{msg}") from err

def _dict_constructor(loader: yaml.SafeLoader, node: yaml.MappingNode) -> dict[Any, Any]:
    """
    Process a YAML mapping node and rename 'include' keys to ensure uniqueness.

    Args:
        loader: The YAML loader instance.
        node: The YAML node representing the mapping.

    Returns:
        A dictionary with renamed "include" keys.
    """

    # Rename 'include' keys to be unique so they don't overwrite each other in the dictionary.
    includes = 0
    pairs = loader.construct_pairs(node)
    for idx, pair in enumerate(pairs):
        if pair[0] == "include":
            pairs[idx] = (f"__include_{includes}", pair[1])
            includes += 1
        elif str(pair[0]).startswith("__include_"):
            raise Error(f"illegal key '{pair[0]}', keys beginning with '__include_' are reserved "
                        f"for internal functions")
    return dict(pairs)

class _Loader(yaml.SafeLoader): # pylint: disable=too-many-ancestors
    """The safe YAML loader with the "include" statement support."""

_Loader.add_constructor(yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG, _dict_constructor)

def _load(path: Path | IO[str], included: dict[Path, Path]) -> dict[str, Any]:
    """
    Load and parse a YAML file.

    Args:
        path: Path to the YAML file or a file-like object to read from.
        included: Dictionary tracking files that have already been included to prevent circular
                  includes.

    Returns:
        A dictionary representing the loaded YAML content.
    """

    is_fobj = isinstance(path, io.IOBase) or hasattr(path, "read")
    fobj: IO[str] | None = None

    if is_fobj:
        fobj = cast(IO[str], path)
    else:
        try:
            fobj = open(path, "r", encoding="utf-8") # pylint: disable=consider-using-with
        except OSError as err:
            msg = Error(str(err)).indent(2)
            raise Error(f"failed to open file '{path}':\n{msg}") from None

    try:
        loaded = yaml.load(fobj, Loader=_Loader) # nosec B506
    except (TypeError, ValueError, yaml.YAMLError) as err:
        msg = Error(str(err)).indent(2)
        raise Error(f"Failed to parse YAML file '{path}':\n{msg}") from None
    except OSError as err:
        msg = Error(str(err)).indent(2)
        raise Error(f"Failed to read YAML file '{path}':\n{msg}") from None
    finally:
        if not is_fobj:
            fobj.close()

    if not loaded:
        return {}
    if not isinstance(loaded, dict):
        raise Error(f"Bad YAML file '{path}': the top level must be a mapping")

    result: dict[str, Any] = {}

    for key, value in loaded.items():
        # Keep in mind that "include" keys are renamed to "__include_0", "__include_1", etc, because
        # there may be multiple of them in the same file.
        if not str(key).startswith("__include_"):
            result[key] = value
            continue

        if is_fobj:
            raise Error("File-like objects are not supported for YAML files that contain the "
                        "'include' statement, provide the path instead")
        path = cast(Path, path)

        try:
            incpath = Path(value)
        except TypeError as err:
            msg = Error(str(err)).indent(2)
            raise Error(f"Bad 'include' statement in YAML file at '{path}':\n{msg}") from None

        if not incpath.is_absolute():
            incpath = path.parent / incpath

        if incpath in included:
            raise Error(f"Circular dependency found: Include path '{incpath}' in YAML file "
                        f"'{path}' was already included from '{included[incpath]}'")

        included[incpath] = path
        result.update(_load(incpath, included))

    if not is_fobj:
        _LOG.debug("loaded YAML file at '%s'", path)

    return result

def load(path: str | Path | IO[str]) -> dict[str, Any]:
    """
    Load a YAML file. Extend the standard YAML loader by adding support for the 'include' statement,
    which allows including other YAML files.

    Args:
        path: Path to the YAML file to load or a file-like object to read the YAML contents from.

    Returns:
        A dictionary representing the contents of the loaded YAML file.
    """

    if isinstance(path, str):
        path = Path(path)

    return _load(path, {})

# -*- coding: utf-8 -*-
# vim: ts=4 sw=4 tw=100 et ai si
#
# Copyright (C) 2020-2025 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

"""
Provide the custom CPU models registry.

Custom CPU models are stored in a section-structured file, one section per model:

    cpu-model: mymodel
        reported-model Skylake-Server
        flags +aes;-pcid
        hidden 1

Section header carries the model name, which is not prefixed with 'custom-'. In memory, every model
additionally has the 'cputype' property set to 'custom-<name>'. The 'cputype' property is never
written to the file, it is always derived from the section header.
"""

from __future__ import annotations # Remove when switching to Python 3.10+.

import os
import re
import typing
from pathlib import Path
from vmcpulibs import CPUModels, CPUSpec, PropertyString
from vmcpulibs.CPUModels import is_custom_model
from vmcpulibs.helperlibs import Logging, ProjectFiles
from vmcpulibs.helperlibs.Exceptions import Error, ErrorBadFormat, ErrorExists, ErrorNotFound
from vmcpulibs.helperlibs.Exceptions import ErrorInternal

if typing.TYPE_CHECKING:
    from typing import TypedDict, Callable, Iterable, Any
    from vmcpulibs.CPUSpec import CPUConfTypedDict

    class CPUModelInfoTypedDict(TypedDict):
        """
        A CPU model description for CPU model listings.

        Attributes:
            name: The CPU model name ('custom-<name>' for custom CPU models).
            custom: Whether it is a custom CPU model.
            vendor: The vendor of the CPU model.
        """

        name: str
        custom: bool
        vendor: str | None

    ReadCBType = Callable[[Path], str]
    WriteCBType = Callable[[Path, str], None]
    RegistryType = dict[str, CPUConfTypedDict]

_LOG = Logging.getLogger(f"{Logging.MAIN_LOGGER_NAME}.vmcpu.{__name__}")

# The type of the registry file sections.
SECTION_TYPE = "cpu-model"

_NAME_RE = re.compile(r"^[a-zA-Z0-9\-_]+$")
_SECTION_RE = re.compile(r"^(\S+):\s*(\S+)\s*$")
_PROPERTY_RE = re.compile(r"^\s+(\S+)(?:\s+(.*?))?\s*$")

def _validate_name(name: str, what: str = "custom CPU model name"):
    """Validate a custom CPU model name (without the 'custom-' prefix)."""

    if not _NAME_RE.match(name):
        raise ErrorBadFormat(f"Bad {what} '{name}': only letters, digits, '-' and '_' are allowed")

def _strip_prefix(name: str) -> str:
    """Strip the 'custom-' prefix from a custom CPU model name, if present."""

    if is_custom_model(name):
        return name[len(CPUModels.CUSTOM_PREFIX):]
    return name

def parse_config(text: str, path: str | Path = "<string>") -> RegistryType:
    """
    Parse the contents of a custom CPU models file.

    Args:
        text: The custom CPU models file contents.
        path: The file path, for error messages.

    Returns:
        The registry: a dictionary of custom CPU model name (no 'custom-' prefix) and model
        properties, in the file order. Unknown properties are skipped with a warning.

    Raises:
        ErrorBadFormat: If the contents are malformed.
    """

    cfg: RegistryType = {}
    name: str | None = None

    for lineno, line in enumerate(text.splitlines(), start=1):
        where = f"{path}:{lineno}"

        if not line.strip():
            # An empty line ends the section.
            name = None
            continue
        if line.lstrip().startswith("#"):
            continue

        if not line[0].isspace():
            matchobj = _SECTION_RE.match(line)
            if not matchobj:
                raise ErrorBadFormat(f"{where}: bad section header '{line}'")

            sectype, name = matchobj.groups()
            if sectype != SECTION_TYPE:
                raise ErrorBadFormat(f"{where}: unknown section type '{sectype}'")

            try:
                _validate_name(name)
            except ErrorBadFormat as err:
                raise ErrorBadFormat(f"{where}: {err}") from None

            if name in cfg:
                raise ErrorBadFormat(f"{where}: duplicate custom CPU model '{name}'")

            cfg[name] = {"cputype": f"{CPUModels.CUSTOM_PREFIX}{name}"}
            continue

        if name is None:
            raise ErrorBadFormat(f"{where}: property outside of a section: '{line.strip()}'")

        matchobj = _PROPERTY_RE.match(line)
        if not matchobj:
            raise ErrorBadFormat(f"{where}: bad property line '{line.strip()}'")

        key, value = matchobj.groups()
        if key == "cputype":
            raise ErrorBadFormat(f"{where}: property 'cputype' is not allowed, the CPU type is "
                                 f"defined by the section header")
        if key not in CPUSpec.CPU_FMT:
            _LOG.warning("%s: ignoring unknown property '%s' of custom CPU model '%s'",
                         where, key, name)
            continue
        if key in cfg[name]:
            raise ErrorBadFormat(f"{where}: duplicate property '{key}'")

        try:
            cfg[name][key] = PropertyString.validate_value(CPUSpec.CPU_FMT, key, value or "")
        except ErrorBadFormat as err:
            raise ErrorBadFormat(f"{where}: {err}") from None

    for name, model in cfg.items():
        try:
            CPUSpec.validate_cpu_conf(model, policy=CPUSpec.PERMISSIVE_POLICY)
        except Error as err:
            msg = err.indent(2)
            raise ErrorBadFormat(f"{path}: bad custom CPU model '{name}':\n{msg}") from None

    _LOG.debug("parsed %d custom CPU model(s) from '%s'", len(cfg), path)
    return cfg

def write_config(cfg: RegistryType) -> str:
    """
    Format the registry as the custom CPU models file contents. This is the inverse of
    'parse_config()'. The 'cfg' dictionary is not modified.

    Args:
        cfg: The registry to format.

    Returns:
        The custom CPU models file contents.

    Raises:
        ErrorInternal: If the 'cputype' property of a model does not match the model name.
    """

    lines = []
    for name, model in cfg.items():
        cputype = model.get("cputype")
        if not is_custom_model(cputype):
            raise ErrorInternal(f"BUG: tried saving built-in CPU model (or missing prefix): "
                                f"{cputype}")
        if cputype != f"{CPUModels.CUSTOM_PREFIX}{name}":
            raise ErrorInternal(f"BUG: tried saving custom CPU model with cputype (ignoring "
                                f"prefix: {cputype}) not equal to the registry entry ({name})")

        lines.append(f"{SECTION_TYPE}: {name}")
        for key in CPUSpec.CPU_FMT:
            # The CPU type is saved in the section header.
            if key == "cputype":
                continue
            value = model.get(key)
            if value is not None:
                lines.append(f"\t{key} {PropertyString.format_value(value)}")
        lines.append("")

    return "".join(f"{line}\n" for line in lines)

def _read_file(path: Path) -> str:
    """Read the custom CPU models file. A missing file is an empty registry."""

    try:
        with open(path, "r", encoding="utf-8") as fobj:
            return fobj.read()
    except FileNotFoundError:
        _LOG.debug("custom CPU models file '%s' does not exist", path)
        return ""
    except OSError as err:
        msg = Error(str(err)).indent(2)
        raise Error(f"Failed to read custom CPU models file '{path}':\n{msg}") from None

def _write_file(path: Path, text: str):
    """Write the custom CPU models file via a temporary file and rename it into place."""

    tmppath = path.with_name(f".{path.name}.tmp.{os.getpid()}")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmppath, "w", encoding="utf-8") as fobj:
            fobj.write(text)
        os.replace(tmppath, path)
    except OSError as err:
        msg = Error(str(err)).indent(2)
        raise Error(f"Failed to write custom CPU models file '{path}':\n{msg}") from None
    finally:
        if tmppath.exists():
            tmppath.unlink()

class CustomModels:
    """
    Provide API for the custom CPU models registry. The registry is read and written via the
    'read_cb()' and 'write_cb()' callbacks, which default to reading and writing a local file. The
    registry is not cached: every operation reads it anew.

    Public methods overview.

    1. Look up custom CPU models.
        * 'load()' - read and parse the whole registry.
        * 'get_model()' - get a single custom CPU model.
        * 'get_cpu_models()' - list built-in and custom CPU models.
    2. Modify the registry.
        * 'add_model()' - add a custom CPU model.
        * 'update_model()' - change properties of a custom CPU model.
        * 'delete_model()' - delete a custom CPU model.
    """

    def __init__(self,
                 path: str | Path | None = None,
                 read_cb: ReadCBType | None = None,
                 write_cb: WriteCBType | None = None):
        """
        Initialize a class instance.

        Args:
            path: Path to the custom CPU models file. Defaults to the path returned by
                  'ProjectFiles.get_models_path()'.
            read_cb: The function for reading the registry. Gets the path, returns the contents.
            write_cb: The function for writing the registry. Gets the path and the contents.
        """

        self.path = ProjectFiles.get_models_path("vmcpu", path)
        self._read_cb: ReadCBType = read_cb or _read_file
        self._write_cb: WriteCBType = write_cb or _write_file

    def load(self) -> RegistryType:
        """
        Read and parse the registry.

        Returns:
            The registry dictionary (see 'parse_config()').
        """

        return parse_config(self._read_cb(self.path), self.path)

    def _save(self, cfg: RegistryType):
        """Format and write the registry."""

        text = write_config(cfg)
        self._write_cb(self.path, text)

    def get_model(self, name: str, noerr: bool = False) -> CPUConfTypedDict | None:
        """
        Return a custom CPU model.

        Args:
            name: Name of the custom CPU model, with or without the 'custom-' prefix.
            noerr: If True, return 'None' instead of raising 'ErrorNotFound'.

        Returns:
            The custom CPU model properties. Only the properties known to 'CPUSpec.CPU_FMT' are
            included.

        Raises:
            ErrorNotFound: If the model does not exist and 'noerr' is False.
        """

        name = _strip_prefix(name)

        entry = self.load().get(name)
        if entry is None:
            if noerr:
                return None
            raise ErrorNotFound(f"Custom cputype '{name}' not found")

        model: dict[str, Any] = {}
        for key in CPUSpec.CPU_FMT:
            if entry.get(key) is not None:
                model[key] = entry[key]

        return typing.cast("CPUConfTypedDict", model)

    def _build_model(self, name: str, props: dict[str, Any]) -> CPUConfTypedDict:
        """Build and validate a registry entry from user-provided properties."""

        model: dict[str, Any] = {"cputype": f"{CPUModels.CUSTOM_PREFIX}{name}"}
        for key, value in props.items():
            if value is None:
                continue
            if key == "cputype":
                raise ErrorBadFormat("Property 'cputype' is not allowed, it is defined by the "
                                     "model name")
            model[key] = PropertyString.validate_value(CPUSpec.CPU_FMT, key, value)

        cpu = typing.cast("CPUConfTypedDict", model)
        return CPUSpec.validate_cpu_conf(cpu, policy=CPUSpec.PERMISSIVE_POLICY)

    def add_model(self, name: str, props: dict[str, Any]) -> CPUConfTypedDict:
        """
        Add a custom CPU model to the registry.

        Args:
            name: Name of the new custom CPU model, without the 'custom-' prefix.
            props: The model properties (e.g., {"reported-model": "EPYC", "flags": "+aes"}).

        Returns:
            The added model.

        Raises:
            ErrorBadFormat: If the name or the properties are invalid.
            ErrorExists: If a model with the same name already exists.
        """

        if is_custom_model(name):
            raise ErrorBadFormat(f"Bad custom CPU model name '{name}': do not use the "
                                 f"'{CPUModels.CUSTOM_PREFIX}' prefix")
        _validate_name(name)

        model = self._build_model(name, props)

        cfg = self.load()
        if name in cfg:
            raise ErrorExists(f"Custom CPU model '{name}' already exists")

        cfg[name] = model
        self._save(cfg)

        _LOG.debug("added custom CPU model '%s'", name)
        return model

    def update_model(self, name: str, props: dict[str, Any],
                     delete: Iterable[str] = ()) -> CPUConfTypedDict:
        """
        Change properties of a custom CPU model.

        Args:
            name: Name of the custom CPU model, with or without the 'custom-' prefix.
            props: The properties to set.
            delete: Names of the properties to remove.

        Returns:
            The updated model.

        Raises:
            ErrorNotFound: If the model does not exist.
            ErrorBadFormat: If the resulting model is invalid.
        """

        name = _strip_prefix(name)

        cfg = self.load()
        if name not in cfg:
            raise ErrorNotFound(f"Custom cputype '{name}' not found")

        merged: dict[str, Any] = {key: val for key, val in cfg[name].items() if key != "cputype"}
        for key in delete:
            if key not in CPUSpec.CPU_FMT or key == "cputype":
                raise ErrorBadFormat(f"Cannot delete unknown property '{key}'")
            merged.pop(key, None)
        merged.update(props)

        model = self._build_model(name, merged)
        cfg[name] = model
        self._save(cfg)

        _LOG.debug("updated custom CPU model '%s'", name)
        return model

    def delete_model(self, name: str):
        """
        Delete a custom CPU model. VMs referring to the model are not checked.

        Args:
            name: Name of the custom CPU model, with or without the 'custom-' prefix.

        Raises:
            ErrorNotFound: If the model does not exist.
        """

        name = _strip_prefix(name)

        cfg = self.load()
        if name not in cfg:
            raise ErrorNotFound(f"Custom cputype '{name}' not found")

        del cfg[name]
        self._save(cfg)

        _LOG.debug("deleted custom CPU model '%s'", name)

    def get_cpu_models(self, include_custom: bool = False) -> list[CPUModelInfoTypedDict]:
        """
        List the available CPU models.

        Args:
            include_custom: Whether to include the custom CPU models.

        Returns:
            A list of CPU model descriptions: the vendor table models, the built-in level models,
            and, if requested, the custom models.
        """

        models: list[CPUModelInfoTypedDict] = []

        for name, vendor in CPUModels.CPU_VENDORS.items():
            models.append({"name": name, "custom": False, "vendor": vendor})

        for name, builtin in CPUModels.BUILTIN_MODELS.items():
            vendor = CPUModels.CPU_VENDORS.get(builtin["reported_model"])
            models.append({"name": name, "custom": False, "vendor": vendor})

        if not include_custom:
            return models

        for name, model in self.load().items():
            reported_model = model.get("reported-model", CPUModels.DEFAULT_REPORTED_MODEL)
            models.append({"name": f"{CPUModels.CUSTOM_PREFIX}{name}", "custom": True,
                           "vendor": CPUModels.CPU_VENDORS.get(reported_model)})

        return models

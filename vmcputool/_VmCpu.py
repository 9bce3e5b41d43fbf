# -*- coding: utf-8 -*-
# vim: ts=4 sw=4 tw=100 et ai si
#
# Copyright (C) 2020-2025 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

"""
vmcpu - virtual machine CPU model configuration tool.
"""

from __future__ import annotations # Remove when switching to Python 3.10+.

import sys
import typing

try:
    import argcomplete
except ImportError:
    # We can live without argcomplete, we only lose tab completions.
    argcomplete = None

from vmcpulibs import CPUModels, CPUSpec
from vmcpulibs.helperlibs import ArgParse, Logging
from vmcpulibs.helperlibs.Exceptions import Error

if typing.TYPE_CHECKING:
    import argparse
    from typing import Sequence
    from vmcpulibs.helperlibs.ArgParse import ArgTypedDict

if sys.version_info < (3, 8):
    raise SystemExit("this tool requires python version 3.8 or higher")

_VERSION = "1.0.0"
TOOLNAME = "vmcpu"

_LOG = Logging.getLogger(f"{Logging.MAIN_LOGGER_NAME}.vmcpu").configure(prefix=TOOLNAME)

# The options accepted anywhere on the command line, not only before the command name.
_GLOBAL_OPTIONS: tuple[ArgTypedDict, ...] = (ArgParse.MODELS_FILE_OPTION,)

class VmCpuArgsParser(ArgParse.ArgsParser):
    """
    The default argument parser does not allow defining "global" options, so that they are present
    in every subcommand. For example, we want the '--models-file' option to be available everywhere.
    """

    def _check_unknown_args(self, args: argparse.Namespace, uargs: list[str],
                            gargs: Sequence[ArgTypedDict]):
        """
        Check unknown arguments 'uargs' for global arguments 'gargs' and add them to 'args'. This is
        a workaround for implementing global arguments.
        """

        for opt in gargs:
            optname = None
            for name in (opt.get("short"), opt["long"]):
                if name and name in uargs:
                    optname = name
                    break

            if not optname:
                # Handle the '--option=value' form as well.
                for uarg in uargs:
                    if uarg.startswith(f"{opt['long']}="):
                        setattr(args, opt["kwargs"]["dest"], uarg.split("=", 1)[1])
                        uargs.remove(uarg)
                        break
                continue

            val_idx = uargs.index(optname) + 1
            if len(uargs) <= val_idx or uargs[val_idx].startswith("-"):
                raise Error(f"value required for argument '{optname}'")

            setattr(args, opt["kwargs"]["dest"], uargs[val_idx])
            uargs.remove(uargs[val_idx])
            uargs.remove(optname)

    def parse_args(self, *args, **kwargs): # pylint: disable=signature-differs
        """Parse the command line, pick global options from the unknown arguments."""

        args, uargs = super().parse_known_args(*args, **kwargs)
        if not uargs:
            return args

        self._check_unknown_args(args, uargs, _GLOBAL_OPTIONS)

        if uargs:
            raise Error(f"unrecognized option(s): {' '.join(uargs)}")
        return args

def _add_model_props_arguments(subpars: argparse.ArgumentParser):
    """Add the custom CPU model property options to the 'models add' or 'models edit' parser."""

    vendors = ", ".join(sorted(CPUModels.CPU_VENDORS))
    text = f"""The CPU model reported to the guest. Must be one of the built-in CPU models:
               {vendors}. The default is '{CPUModels.DEFAULT_REPORTED_MODEL}'."""
    subpars.add_argument("--reported-model", metavar="MODEL", help=text)

    text = """Semicolon-separated list of CPU flags to enable ('+flag') or disable ('-flag'), for
              example '+aes;-pcid'."""
    subpars.add_argument("--flags", help=text)

    text = """Whether to hide the KVM virtualization from the guest ('1' or '0')."""
    subpars.add_argument("--hidden", metavar="0/1", help=text)

    text = """The Hyper-V vendor ID reported to Windows guests (up to 12 characters)."""
    subpars.add_argument("--hv-vendor-id", metavar="ID", help=text)

    text = """The number of physical address bits reported to the guest (8-64), or 'host' to use
              the value of the host CPU."""
    subpars.add_argument("--phys-bits", metavar="BITS", help=text)

def _add_vm_config_argument(subpars: argparse.ArgumentParser):
    """Add the VM configuration file positional argument."""

    text = """Path to the VM configuration YAML file. Supported keys: 'cpu', 'kvm', 'ostype',
              'bios', 'machine', 'cores', 'arch' and 'hostpci0', 'hostpci1', etc."""
    arg = subpars.add_argument("config", metavar="CONFIG", help=text)
    if argcomplete:
        setattr(arg, "completer", argcomplete.completers.FilesCompleter)

def build_arguments_parser() -> VmCpuArgsParser:
    """Build and return the the command-line arguments parser object."""

    text = f"{TOOLNAME} - virtual machine CPU model configuration tool."
    parser = VmCpuArgsParser(description=text, prog=TOOLNAME, ver=_VERSION)

    ArgParse.add_options(parser, _GLOBAL_OPTIONS)

    subparsers = parser.add_subparsers(title="commands", dest="a command")
    subparsers.required = True

    #
    # Create parser for the 'models' command.
    #
    text = "Custom CPU models commands."
    descr = """List, show, and manage the CPU models. Custom CPU models are referred to as
               'custom-<name>' in VM CPU configurations."""
    subpars = subparsers.add_parser("models", help=text, description=descr)
    subparsers2 = subpars.add_subparsers(title="further sub-commands")
    subparsers2.required = True

    #
    # Create parser for the 'models list' command.
    #
    text = "List CPU models."
    descr = """List the built-in CPU models and their vendors. Use '--custom' to include the
               custom CPU models."""
    subpars2 = subparsers2.add_parser("list", help=text, description=descr)
    subpars2.set_defaults(func=_models_list_command)

    text = "Include custom CPU models."
    subpars2.add_argument("--custom", action="store_true", help=text)

    text = "Print information in YAML format."
    subpars2.add_argument("--yaml", action="store_true", help=text)

    #
    # Create parser for the 'models show' command.
    #
    text = "Show a custom CPU model."
    descr = "Show properties of a custom CPU model."
    subpars2 = subparsers2.add_parser("show", help=text, description=descr)
    subpars2.set_defaults(func=_models_show_command)

    text = "Name of the custom CPU model, with or without the 'custom-' prefix."
    subpars2.add_argument("name", metavar="NAME", help=text)

    text = "Print information in YAML format."
    subpars2.add_argument("--yaml", action="store_true", help=text)

    #
    # Create parser for the 'models add' command.
    #
    text = "Add a custom CPU model."
    descr = """Add a custom CPU model to the custom CPU models file. The name must not include the
               'custom-' prefix."""
    subpars2 = subparsers2.add_parser("add", help=text, description=descr)
    subpars2.set_defaults(func=_models_add_command)

    text = "Name of the new custom CPU model."
    subpars2.add_argument("name", metavar="NAME", help=text)
    _add_model_props_arguments(subpars2)

    #
    # Create parser for the 'models edit' command.
    #
    text = "Change a custom CPU model."
    descr = """Change properties of an existing custom CPU model. Properties that are not
               specified are preserved."""
    subpars2 = subparsers2.add_parser("edit", help=text, description=descr)
    subpars2.set_defaults(func=_models_edit_command)

    text = "Name of the custom CPU model, with or without the 'custom-' prefix."
    subpars2.add_argument("name", metavar="NAME", help=text)
    _add_model_props_arguments(subpars2)

    props = ", ".join(key for key in CPUSpec.CPU_FMT if key != "cputype")
    text = f"""Comma-separated list of properties to remove from the custom CPU model. Supported
               properties: {props}."""
    subpars2.add_argument("--delete", metavar="PROP[,PROP1,...]", help=text)

    #
    # Create parser for the 'models delete' command.
    #
    text = "Delete a custom CPU model."
    descr = """Delete a custom CPU model. VMs using the model are not checked and will fail to
               start."""
    subpars2 = subparsers2.add_parser("delete", help=text, description=descr)
    subpars2.set_defaults(func=_models_delete_command)

    text = "Name of the custom CPU model, with or without the 'custom-' prefix."
    subpars2.add_argument("name", metavar="NAME", help=text)

    #
    # Create parser for the 'options' command.
    #
    text = "Print the emulator '-cpu' option for a VM."
    descr = """Resolve the emulator '-cpu' option for a VM configuration: the CPU model and all
               the CPU flags, including the automatic ones."""
    subpars = subparsers.add_parser("options", help=text, description=descr)
    subpars.set_defaults(func=_options_command)

    _add_vm_config_argument(subpars)

    text = f"""The VM architecture ('x86_64' or 'aarch64'). The default is the 'arch' VM
               configuration property, or the host architecture
               ('{CPUModels.get_host_arch()}')."""
    subpars.add_argument("--arch", help=text)

    text = """The emulator build version (e.g., '8.1.2'). Required if the machine type is not
              versioned. When specified, also check that the emulator can run the machine type."""
    subpars.add_argument("--kvm-version", metavar="VERSION", help=text)

    text = """The machine type (e.g., 'pc-i440fx-4.1+pve2' or 'q35'). Overrides the 'machine' VM
              configuration property."""
    subpars.add_argument("--machine", help=text)

    text = """Assume a GPU is passed through to the VM. By default, GPU passthrough is detected by
              the 'x-vga=1' setting in the 'hostpciN' VM configuration properties."""
    subpars.add_argument("--gpu-passthrough", action="store_true", help=text)

    #
    # Create parser for the 'device' command.
    #
    text = "Print the emulator device string for hotplugging a vCPU."
    descr = """Print the emulator device string for hotplugging a vCPU to a VM. Only 'x86_64' VMs
               are supported."""
    subpars = subparsers.add_parser("device", help=text, description=descr)
    subpars.set_defaults(func=_device_command)

    _add_vm_config_argument(subpars)

    text = "The vCPU number, starting from 1."
    subpars.add_argument("cpuid", metavar="ID", help=text)

    text = """The VM architecture. The default is the 'arch' VM configuration property, or the
              host architecture."""
    subpars.add_argument("--arch", help=text)

    #
    # Create parser for the 'machine' command.
    #
    text = "Machine type commands."
    descr = "Various commands related to emulator machine types."
    subpars = subparsers.add_parser("machine", help=text, description=descr)
    subparsers2 = subpars.add_subparsers(title="further sub-commands")
    subparsers2.required = True

    #
    # Create parser for the 'machine check' command.
    #
    text = "Check that the emulator can run a machine type."
    descr = """Check that an emulator build can run a machine type and print the machine
               version."""
    subpars2 = subparsers2.add_parser("check", help=text, description=descr)
    subpars2.set_defaults(func=_machine_check_command)

    text = "The machine type (e.g., 'pc-q35-4.1+pve2')."
    subpars2.add_argument("machine", metavar="MACHINE", help=text)

    text = "The emulator build version (e.g., '4.1.1')."
    subpars2.add_argument("--kvm-version", metavar="VERSION", required=True, help=text)

    if argcomplete:
        argcomplete.autocomplete(parser)

    return parser

def parse_arguments(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Args:
        argv: The command line arguments to parse. Defaults to 'sys.argv[1:]'.

    Returns:
        The parsed arguments.
    """

    parser = build_arguments_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "models_file"):
        setattr(args, "models_file", None)

    return args

# pylint: disable=import-outside-toplevel

def _models_list_command(args: argparse.Namespace):
    """Implement the 'models list' command."""

    from vmcputool import _VmCpuModels

    _VmCpuModels.models_list_command(args)

def _models_show_command(args: argparse.Namespace):
    """Implement the 'models show' command."""

    from vmcputool import _VmCpuModels

    _VmCpuModels.models_show_command(args)

def _models_add_command(args: argparse.Namespace):
    """Implement the 'models add' command."""

    from vmcputool import _VmCpuModels

    _VmCpuModels.models_add_command(args)

def _models_edit_command(args: argparse.Namespace):
    """Implement the 'models edit' command."""

    from vmcputool import _VmCpuModels

    _VmCpuModels.models_edit_command(args)

def _models_delete_command(args: argparse.Namespace):
    """Implement the 'models delete' command."""

    from vmcputool import _VmCpuModels

    _VmCpuModels.models_delete_command(args)

def _options_command(args: argparse.Namespace):
    """Implement the 'options' command."""

    from vmcputool import _VmCpuOptions

    _VmCpuOptions.options_command(args)

def _device_command(args: argparse.Namespace):
    """Implement the 'device' command."""

    from vmcputool import _VmCpuOptions

    _VmCpuOptions.device_command(args)

def _machine_check_command(args: argparse.Namespace):
    """Implement the 'machine check' command."""

    from vmcputool import _VmCpuOptions

    _VmCpuOptions.machine_check_command(args)

def main(argv: Sequence[str] | None = None) -> int:
    """
    Script entry point.

    Args:
        argv: The command line arguments. Defaults to 'sys.argv[1:]'.

    Returns:
        The program exit code.
    """

    try:
        args = parse_arguments(argv)

        if not getattr(args, "func", None):
            _LOG.error("please, run '%s -h' for help", TOOLNAME)
            return -1

        cmdl = ArgParse.format_common_args(args)
        ArgParse.configure_logging(_LOG, cmdl, TOOLNAME)

        args.func(args)
    except KeyboardInterrupt:
        _LOG.info("\nInterrupted, exiting")
        return -1
    except Error as err:
        _LOG.error_out(err)

    return 0

if __name__ == "__main__":
    sys.exit(main())

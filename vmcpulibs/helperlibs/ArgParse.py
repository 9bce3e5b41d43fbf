# -*- coding: utf-8 -*-
# vim: ts=4 sw=4 tw=100 et ai si
#
# Copyright (C) 2020-2025 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

"""
Helpful classes extending 'argparse.ArgumentParser' class functionality.
"""

from __future__ import annotations # Remove when switching to Python 3.10+.

import re
import sys
import types
import typing
import argparse

try:
    import argcomplete
    _ARGCOMPLETE_AVAILABLE = True
except ImportError:
    # We can live without argcomplete, we only lose tab completions.
    _ARGCOMPLETE_AVAILABLE = False

from vmcpulibs.helperlibs import DamerauLevenshtein, Trivial, Logging, ProjectFiles
from vmcpulibs.helperlibs.Exceptions import Error

if typing.TYPE_CHECKING:
    from typing import TypedDict, Iterable, Any

    # The class type returned by the 'add_subparsers()' method of the arguments classes. Even though
    # the class is private, it is documented and will unlikely to change.
    SubParsersType = argparse._SubParsersAction # pylint: disable=protected-access

    class ArgKwargsTypedDict(TypedDict, total=False):
        """
        Keyword arguments passed to 'argparse.add_argument()' for an option.

        Attributes:
            dest: The 'argparse' attribute name where the command line argument will be stored.
            default: The default value for the argument.
            metavar: The name of the argument in the help text.
            action: The 'argparse' action to use for the argument.
            help: A brief description of the argument.
        """

        dest: str
        default: str | int | None
        metavar: str
        action: str | type[argparse.Action]
        help: str

    class ArgTypedDict(TypedDict, total=False):
        """
        An option definition.

        Attributes:
            short: The short option name.
            long: The long option name.
            argcomplete: The 'argcomplete' completer class name for tab completion of the option.
            kwargs: Keyword arguments for 'argparse.add_argument()'.
        """

        short: str | None
        long: str
        argcomplete: str | None
        kwargs: ArgKwargsTypedDict

    class CommonArgsTypedDict(TypedDict, total=False):
        """
        The common command-line arguments.

        Attributes:
            quiet: Print only warnings and errors (-q option).
            force_color: Force colorized output (--force-color option).
            debug: Enable debugging output (-d option).
            debug_modules: Names of modules to print debugging output for (--debug-modules option),
                           'None' means all modules.
        """

        quiet: bool
        force_color: bool
        debug: bool
        debug_modules: list[str] | None

# The custom CPU models file option, shared by all commands.
MODELS_FILE_OPTION: ArgTypedDict = {
    "short": None,
    "long": "--models-file",
    "argcomplete": "FilesCompleter",
    "kwargs": {
        "dest": "models_file",
        "default": None,
        "metavar": "PATH",
        "help": f"""Path to the custom CPU models file. The default is the path in the
                    '{ProjectFiles.get_project_models_envar("vmcpu")}' environment variable, or
                    '{ProjectFiles.DEFAULT_MODELS_PATH}'.""",
    },
}

def add_options(parser: argparse.ArgumentParser | ArgsParser, options: Iterable[ArgTypedDict]):
    """
    Add command line options to a parser.

    Args:
        parser: The argument parser object to add the options to.
        options: The option definitions.
    """

    for opt in options:
        if opt.get("short"):
            args: tuple[str, ...] = (typing.cast(str, opt["short"]), opt["long"])
        else:
            args = (opt["long"], )

        arg = parser.add_argument(*args, **opt["kwargs"])
        if opt.get("argcomplete") and _ARGCOMPLETE_AVAILABLE:
            setattr(arg, "completer", getattr(argcomplete.completers, str(opt["argcomplete"])))

def format_common_args(args: argparse.Namespace) -> CommonArgsTypedDict:
    """
    Validate the common command-line arguments.

    Args:
        args: Parsed command-line arguments.

    Returns:
        The common command-line arguments dictionary.

    Raises:
        Error: If the common options are used incorrectly.
    """

    cmdl: CommonArgsTypedDict = {"quiet": getattr(args, "quiet", False),
                                 "debug": getattr(args, "debug", False),
                                 "force_color": getattr(args, "force_color", False),
                                 "debug_modules": None}

    if cmdl["quiet"] and cmdl["debug"]:
        raise Error("The '-q' and '-d' options cannot be used together")

    debug_modules: str | None = getattr(args, "debug_modules", None)
    if debug_modules:
        if not cmdl["debug"]:
            raise Error("The '--debug-modules' option requires the '-d' option")
        cmdl["debug_modules"] = Trivial.split_csv_line(debug_modules, dedup=True)

    return cmdl

def configure_logging(log: Logging.Logger, cmdl: CommonArgsTypedDict, prefix: str):
    """
    Configure the main logger according to the common command-line arguments.

    Args:
        log: The logger to configure.
        cmdl: The common command-line arguments.
        prefix: The message prefix (usually the tool name).
    """

    if cmdl["debug"]:
        level = Logging.DEBUG
    elif cmdl["quiet"]:
        level = Logging.WARNING
    else:
        level = Logging.INFO

    colored = True if cmdl["force_color"] else None
    # Resolve the streams at call time, they may be replaced (e.g., when output is captured).
    log.configure(prefix=prefix, level=level, colored=colored, info_stream=sys.stdout,
                  error_stream=sys.stderr)

    if cmdl["debug_modules"] is not None:
        Logging.DEBUG_MODULE_NAMES = set(cmdl["debug_modules"])

def _add_parser(subparsers: SubParsersType, *args: Any, **kwargs: Any) -> argparse.ArgumentParser:
    """
    Replace the 'add_parser()' method of a subparsers object. Squeeze white-spaces and newlines in
    the 'description' argument, so that triple-quoted descriptions are displayed nicely.

    Args:
        subparsers: The subparsers action object returned by 'add_subparsers()'.
        *args: Positional arguments for the original 'add_parser()' method.
        **kwargs: Keyword arguments for the original 'add_parser()' method.

    Returns:
        The sub-command argument parser.
    """

    if "description" in kwargs:
        kwargs["description"] = " ".join(kwargs["description"].split())

    orig_add_parser = getattr(subparsers, "__orig_add_parser")
    return orig_add_parser(*args, **kwargs)

class ArgsParser(argparse.ArgumentParser):
    """
    Extend 'argparse.ArgumentParser':
      - add the standard '-h', '-q', '-d', '--debug-modules', '--force-color' and '--version'
        options,
      - squeeze white-spaces in sub-command descriptions,
      - raise 'Error' instead of exiting on bad arguments, and suggest the most similar
        sub-command or option.
    """

    def __init__(self, *args: Any, **kwargs: Any):
        """
        Initialize a class instance. Same as 'argparse.ArgumentParser()', but accept the 'ver'
        keyword argument: the version string for the '--version' option.
        """

        version = kwargs.pop("ver", None)

        kwargs["add_help"] = False
        super().__init__(*args, **kwargs)

        text = "Show this help message and exit."
        self.add_argument("-h", "--help", dest="help", action="help", help=text)

        # Sub-command parsers have these options too, suppress the defaults so that they do not
        # override the values specified before the sub-command name.
        text = "Be quiet (print only warnings and errors)."
        self.add_argument("-q", "--quiet", dest="quiet", action="store_true",
                          default=argparse.SUPPRESS, help=text)

        text = """Force colorized output even if the output stream is not a terminal (adds ANSI
                  escape codes)."""
        self.add_argument("--force-color", action="store_true", default=argparse.SUPPRESS,
                          help=text)

        text = "Print debugging information."
        self.add_argument("-d", "--debug", dest="debug", action="store_true",
                          default=argparse.SUPPRESS, help=text)

        text = "Print debugging information only from the specified modules."
        self.add_argument("--debug-modules", action="store", metavar="MODNAME[,MODNAME1,...]",
                          default=argparse.SUPPRESS, help=text)

        if version:
            text = "Print the version number and exit."
            self.add_argument("--version", action="version", help=text, version=version)

    def add_subparsers(self, *args: Any, **kwargs: Any) -> SubParsersType:
        """
        Create subparsers with the white-space squeezing 'add_parser()' method.

        Args:
            *args: Positional arguments for 'add_subparsers()'.
            **kwargs: Keyword arguments for 'add_subparsers()'.

        Returns:
            The subparsers action object.
        """

        subparsers = super().add_subparsers(*args, **kwargs)
        setattr(subparsers, "__orig_add_parser", subparsers.add_parser)
        setattr(subparsers, "add_parser", types.MethodType(_add_parser, subparsers))

        return subparsers

    def _option_strings(self) -> list[str]:
        """Return all option strings of the parser."""

        result = []
        for action in self._actions:
            result += action.option_strings
        return result

    def error(self, message: str):
        """
        Raise 'Error' with an improved error message.

        Args:
            message: The original error message.
        """

        suggestion = None

        if "invalid choice: " in message:
            offending, opts = message.split(" (choose from ", 1)
            offending = offending.split("invalid choice: ")[1].strip("'")
            options = [opt.strip(")'") for opt in opts.split(", ")]
            suggestion = DamerauLevenshtein.closest_match(offending, options)
        else:
            matchobj = re.match(r"^unrecognized arguments: (-\S+)", message)
            if matchobj:
                offending = matchobj.group(1)
                suggestion = DamerauLevenshtein.closest_match(offending, self._option_strings())

        if suggestion:
            message = f"bad argument '{offending}', use '{self.prog} -h'.\n\nThe most " \
                      f"similar argument is\n  {suggestion}"
        else:
            message += "\nUse -h for help."

        # Do not call the superclass method, because it exits the program.
        raise Error(message)

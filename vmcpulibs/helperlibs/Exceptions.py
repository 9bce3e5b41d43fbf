# -*- coding: utf-8 -*-
# vim: ts=4 sw=4 tw=100 et ai si
#
# Copyright (C) 2020-2025 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

"""
Exception types used in this project.
"""

from __future__ import annotations # Remove when switching to Python 3.10+.

from typing import Any, Match
import re

class Error(Exception):
    """The base class for all exceptions raised by this project."""

    def __init__(self, msg: str, *args: Any, **kwargs: Any):
        """
        Initialize the exception object.

        Args:
            msg: The exception message.
            *args: Positional arguments for the message.
            **kwargs: Additional keyword arguments, stored as attributes of the exception object.
        """

        msg = str(msg)
        super().__init__(msg)

        for key, val in kwargs.items():
            setattr(self, key, val)

        if args:
            self.msg = msg % tuple(args)
        else:
            self.msg = msg

    def indent(self, indent: int | str, capitalize: bool = True) -> str:
        """
        Indent/prefix each line in the error message.

        Args:
            indent: Can be an integer or a string. If an integer, each line of the error message is
                    prefixed with the specified number of white spaces. If a string, each line is
                    prefixed with the specified string.
            capitalize: If True, ensures the message starts with a capital letter.

        Returns:
            str: The modified error message.
        """

        def capitalize_mobj(mobj: Match[str]):
            """Capitalize the intended/prefixed message."""

            return mobj.group(1) + mobj.group(2).capitalize()

        if isinstance(indent, int):
            pfx = " " * indent
        else:
            pfx = indent

        msg = pfx + self.msg.replace("\n", f"\n{pfx}")
        if capitalize:
            msg = re.sub(r"^(\s*)(\S)", capitalize_mobj, msg)

        return msg

    def __str__(self):
        """The string representation of the exception."""
        return self.msg

class ErrorExists(Error):
    """Something already exists."""

class ErrorNotFound(Error):
    """Something was not found."""

class ErrorNotSupported(Error):
    """Feature/option/etc is not supported."""

class ErrorBadFormat(Error):
    """Bad format of something, e.g., a property string or a configuration file."""

class ErrorMissingCPUType(ErrorBadFormat):
    """A CPU description does not include the CPU type."""

class ErrorBadVersion(ErrorBadFormat):
    """A version string cannot be parsed."""

class ErrorUnknownBuiltinType(ErrorNotFound):
    """A CPU type is neither a known built-in type nor a custom model reference."""

    def __init__(self, msg: str, *args: Any, cputype: str | None = None, **kwargs: Any):
        """
        Initialize the exception object.

        Args:
            msg: The exception message.
            *args: Positional arguments for the message.
            cputype: The unknown CPU type name.
            **kwargs: Additional keyword arguments.
        """

        self.cputype = cputype
        super().__init__(msg, *args, **kwargs)

class ErrorFlagNotAllowed(Error):
    """A CPU flag is not allowed in the current context."""

    def __init__(self, msg: str, *args: Any, flags: list[str] | None = None, **kwargs: Any):
        """
        Initialize the exception object.

        Args:
            msg: The exception message.
            *args: Positional arguments for the message.
            flags: The offending CPU flags.
            **kwargs: Additional keyword arguments.
        """

        self.flags = flags
        super().__init__(msg, *args, **kwargs)

class ErrorPropertyNotAllowed(Error):
    """A CPU property is not allowed in the current context."""

class ErrorBadArity(Error):
    """A function was called with a wrong number of arguments."""

class ErrorInternal(Error):
    """An internal consistency check failed, which indicates a bug."""

# -*- coding: utf-8 -*-
# vim: ts=4 sw=4 tw=100 et ai si
#
# Copyright (C) 2020-2025 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

"""
This module contains helper functions related to logging.
"""

from __future__ import annotations # Remove when switching to Python 3.10+.

import sys
import logging
import traceback
from typing import NoReturn, Any, IO, cast
try:
    # It is OK if 'colorama' is not available, we only lose message coloring.
    import colorama
    colorama_imported = True
except ImportError:
    colorama_imported = False
from vmcpulibs.helperlibs.Exceptions import Error

# Log levels.
#   * INFO: No prefixes, just the message.
#   * NOTICE: An INFO message, but with a prefix.
#   * DEBUG, WARNING, ERROR, CRITICAL: Also have the prefix.
#   * ERRINFO: An ERROR message, but without a prefix.
INFO = logging.INFO
NOTICE = logging.INFO + 1
DEBUG = logging.DEBUG
WARNING = logging.WARNING
ERROR = logging.ERROR
ERRINFO = logging.ERROR + 1
CRITICAL = logging.CRITICAL

# Name of the main logger instance. Other project loggers are supposed to be children of this one.
MAIN_LOGGER_NAME = "main"

# Names of the modules to print debug messages for. All modules if 'None'.
DEBUG_MODULE_NAMES: set[str] | None = None

# The default prefix for debug messages.
_DEFAULT_DBG_PREFIX = "[%(created)f] [%(asctime)s] [%(module)s,%(lineno)d]"

class _MyFormatter(logging.Formatter):
    """
    A custom formatter for logging messages. Provides different message formats for different log
    levels.
    """

    def __init__(self, prefix: str | None = None, colors: dict[int, str] | None = None):
        """
        Initialize the custom logging formatter.

        Args:
            prefix: Prefix for non-info and non-debug messages. Info messages go without any
                    formatting. By default, the prefix is just the log level name.
            colors: A dictionary containing colorama color codes to use for the prefixes.
        """

        logging.Formatter.__init__(self, "%(levelname)s: %(message)s", "%H:%M:%S")

        self._myfmt: dict[int, str] = {}

        if not colors or not colorama_imported:
            colors = {}

        self._colors = colors

        self._set_prefix(prefix)

    def _set_prefix(self, prefix: str | None):
        """
        Build the per-level message formats.

        Args:
            prefix: Prefix for non-info and non-debug messages.
        """

        def _start(level):
            """Return the "start color output" code for the given log level."""
            return str(self._colors.get(level, ""))

        def _end(level):
            """Return the "end color output" code for the given log level."""

            if level in self._colors:
                return str(colorama.Style.RESET_ALL)
            return ""

        if prefix:
            prefix += ": "
        else:
            prefix = ""

        for lvl, pfx in ((WARNING, "warning"), (ERROR, "error"), (CRITICAL, "critical error"),
                         (NOTICE, "notice")):
            if not prefix:
                pfx = pfx.title()
            self._myfmt[lvl] = _start(lvl) + prefix + pfx + _end(lvl) + ": %(message)s"

        fmt = _DEFAULT_DBG_PREFIX + ": %(message)s"
        fmt = fmt.replace("[", "[" + _start(DEBUG))
        self._myfmt[DEBUG] = fmt.replace("]", _end(DEBUG) + "]")

        # Leave the info messages without any formatting.
        self._myfmt[ERRINFO] = self._myfmt[INFO] = "%(message)s"

    def format(self, record: logging.LogRecord) -> str:
        """
        Format the log record. Prefix debugging messages with a timestamp and keep info messages
        unchanged.

        Args:
            record: The log record to format.

        Returns:
            str: The formatted log record.
        """

        # pylint: disable=protected-access
        self._style._fmt = self._myfmt[record.levelno]
        return logging.Formatter.format(self, record)

class _MyFilter(logging.Filter):
    """
    A custom filter which allows only certain log levels to go through. Debug messages are also
    filtered by module name if 'DEBUG_MODULE_NAMES' is set.
    """

    def __init__(self, let_go: list[int]):
        """
        Initialize the logging filter.

        Args:
            let_go: A list of logging levels to let go through the filter.
        """

        logging.Filter.__init__(self)
        self._let_go = let_go

    def filter(self, record: logging.LogRecord) -> bool:
        """
        Filter out all log levels except for the ones specified by the user.

        Args:
            record: The log record to filter.

        Returns:
            bool: True if the record should be printed, False otherwise.
        """

        if record.levelno not in self._let_go:
            return False

        if record.levelno == DEBUG and DEBUG_MODULE_NAMES is not None:
            return record.module in DEBUG_MODULE_NAMES

        return True

class Logger(logging.Logger):
    """
    A custom logger class that provides the following functionality on top of the standard logger:
      * Message coloring.
      * Different prefixes for different log levels.
      * Debug messages with timestamps and file line numbers.
      * The NOTICE and ERRINFO log levels.
      * The 'warn_once()' method.
      * The 'error_out()' method.
    """

    def __init__(self, name: str | None = None):
        """
        Initialize the logger.

        Args:
            name: The name of the logger (same as in 'logging.Logger()').
        """

        self.prefix = ""
        self.colored = False

        self._colors: dict[int, str] = {}
        self._seen_msgs: set[str] = set()

        if not name:
            name = "default"

        super().__init__(name)

    def _init_colors(self):
        """Initialize the per-level colors."""

        self._colors[DEBUG] = colorama.Fore.GREEN
        self._colors[WARNING] = colorama.Fore.YELLOW + colorama.Style.BRIGHT
        self._colors[NOTICE] = colorama.Fore.CYAN + colorama.Style.BRIGHT
        self._colors[ERROR] = self._colors[CRITICAL] = colorama.Fore.RED + colorama.Style.BRIGHT

    def configure(self,
                  prefix: str | None = None,
                  level: int | None = None,
                  colored: bool | None = None,
                  info_stream: IO[str] = sys.stdout,
                  error_stream: IO[str] = sys.stderr) -> Logger:
        """
        Configure the logger.

        Args:
            prefix: The prefix for log messages, used for all levels except 'INFO' and 'ERRINFO'.
            level: The default log level. If not provided, it is automatically detected based on the
                   presence of '-d' (debug) and '-q' (quiet) command line options.
            colored: Whether to use colored output. By default, colored output is used for TTYs and
                     uncolored output for non-TTYs, unless the '--force-color' command line option
                     is specified.
            info_stream: The stream for 'INFO' level messages.
            error_stream: The stream for messages of all levels except 'INFO'.

        Returns:
            Logger: The configured logger instance.
        """

        self.prefix = prefix or ""

        if not level:
            if "-q" in sys.argv:
                level = WARNING
            elif "-d" in sys.argv:
                level = DEBUG
            else:
                level = INFO

        self.setLevel(level)

        if not colorama_imported:
            colored = False

        if colored is None:
            if "--force-color" in sys.argv:
                colored = True
            else:
                colored = info_stream.isatty() and error_stream.isatty()

        self.colored = colored
        if colored:
            self._init_colors()

        # Remove existing handlers.
        self.handlers = []

        formatter = _MyFormatter(prefix=self.prefix, colors=self._colors)

        stream_handler = logging.StreamHandler(info_stream)
        stream_handler.setFormatter(formatter)
        stream_handler.addFilter(_MyFilter([INFO]))
        self.addHandler(stream_handler)

        stream_handler = logging.StreamHandler(error_stream)
        stream_handler.setFormatter(formatter)
        stream_handler.addFilter(_MyFilter([DEBUG, WARNING, NOTICE, ERROR, ERRINFO, CRITICAL]))
        self.addHandler(stream_handler)

        return self

    def _print_traceback(self, level: int = ERROR):
        """
        Print an exception or stack traceback.

        Args:
            level: The logging level at which to log the traceback.
        """

        if sys.exc_info()[0]:
            lines = traceback.format_exc().splitlines()
        else:
            lines = [line.strip() for line in traceback.format_stack()]

        if not lines:
            return

        if colorama_imported and self.colored:
            dim = colorama.Style.RESET_ALL + colorama.Style.DIM
            undim = colorama.Style.RESET_ALL
        else:
            dim = undim = ""

        self.log(level, "--- Debug trace starts here ---")
        self.log(level, "%sAn error occurred, here is the traceback:\n%s%s",
                 dim, "\n".join(lines), undim)
        self.log(level, "--- Debug trace ends here ---\n")

    def error_out(self, fmt: Any, *args: Any, print_tb: bool = False) -> NoReturn:
        """
        Print an error message and terminate program execution.

        Args:
            fmt: The error message format string (or an exception object).
            *args: The arguments to format the error message.
            print_tb: If True, print the stack trace. The stack trace is always printed when
                      debugging is enabled.

        Raises:
            SystemExit: Terminates the program with exit code 1.
        """

        if args:
            errmsg = fmt % args
        else:
            errmsg = str(fmt)

        if print_tb or self.getEffectiveLevel() == DEBUG:
            self._print_traceback(level=ERRINFO)

        self.error(errmsg)

        raise SystemExit(1)

    def notice(self, fmt: str, *args: Any):
        """
        Log a message with level 'NOTICE'.

        Args:
            fmt: The format string for the log message.
            *args: The arguments to format the log message.
        """

        self.log(NOTICE, fmt, *args)

    def warn_once(self, fmt: str, *args: Any):
        """
        Log a warning message, but only once for the same format string and arguments.

        Args:
            fmt: The format string for the warning message.
            *args: The arguments to format the warning message.
        """

        try:
            msg = fmt % args if args else fmt
        except TypeError as err:
            raise Error(f"BUG: bad format string '{fmt}': {err}") from err

        if msg not in self._seen_msgs:
            self._seen_msgs.add(msg)
            self.log(WARNING, "%s", msg)

logging.setLoggerClass(Logger)

def getLogger(name: str | None = None) -> Logger:
    """
    Get a logger by name (similar to 'logging.getLogger()').

    Args:
        name: The name of the logger.

    Returns:
        Logger: The logger instance.
    """

    # Because of 'setLoggerClass()', this returns a 'Logger' instance (except for the root logger).
    return cast(Logger, logging.getLogger(name=name))

# -*- test-case-name: portrelay.test.test_script -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Command line options for C{portrelay}.
"""

from os import isatty
from sys import stderr, stdout
from textwrap import dedent

from twisted.logger import (
    InvalidLogLevelError,
    LogLevel,
    jsonFileLogObserver,
    textFileLogObserver,
)
from twisted.python.usage import Options, UsageError

from portrelay import __version__
from portrelay._exit import ExitStatus, exit
from portrelay.policy import backoffPolicy, immediatePolicy, limitedPolicy
from portrelay.resolve import parsePortSpecs


def _nonNegative(value):
    count = int(value)
    if count < 0:
        raise ValueError(f"{value} is negative")
    return count


class ForwardOptions(Options):
    """
    Command line options for C{portrelay}.
    """

    synopsis = "[options] <source>[:<target>] [<source>[:<target>] ...]"
    longdesc = dedent(
        """
        Forward TCP ports.  Each <source> port is listened on and every
        connection to it is relayed to the <target> port (by default the same
        number).

        Without --host, every external interface listens and forwards to
        localhost.  With --host, if the host is this machine its addresses
        listen and forward to localhost; otherwise localhost listens and
        forwards to the host.
        """
    )

    optFlags = [
        [
            "backoff",
            "b",
            "Wait increasingly long before replacing a forwarder which failed.",
        ],
    ]

    optParameters = [
        ["host", "a", None, "The host to listen on or to forward to."],
        [
            "max-retries",
            None,
            None,
            "Give up on a forwarder after this many consecutive failures.",
            _nonNegative,
        ],
    ]

    defaultLogLevel = LogLevel.info

    def __init__(self):
        Options.__init__(self)

        self["logLevel"] = self.defaultLogLevel
        self["logFile"] = stdout
        self["ports"] = []

    def opt_version(self):
        """
        Print version and exit.
        """
        exit(ExitStatus.EX_OK, f"portrelay {__version__}")

    def opt_log_level(self, levelName):
        """
        Set default log level.
        (options: {options}; default: "{default}")
        """
        try:
            self["logLevel"] = LogLevel.levelWithName(levelName)
        except InvalidLogLevelError:
            exit(ExitStatus.EX_CONFIG, f"Invalid log level: {levelName}")

    opt_log_level.__doc__ = dedent(opt_log_level.__doc__).format(
        options=", ".join(f'"{level.name}"' for level in LogLevel.iterconstants()),
        default=defaultLogLevel.name,
    )

    def opt_log_file(self, fileName):
        """
        Log to file. ("-" for stdout, "+" for stderr; default: "-")
        """
        if fileName == "-":
            self["logFile"] = stdout
            return

        if fileName == "+":
            self["logFile"] = stderr
            return

        try:
            self["logFile"] = open(fileName, "a")
        except OSError as e:
            exit(
                ExitStatus.EX_CANTCREAT,
                f"Unable to open log file {fileName!r}: {e}",
            )

    def opt_log_format(self, format):
        """
        Log file format.
        (options: "text", "json"; default: "text" if the log file is a tty,
        otherwise "json")
        """
        format = format.lower()

        if format == "text":
            self["fileLogObserverFactory"] = textFileLogObserver
        elif format == "json":
            self["fileLogObserverFactory"] = jsonFileLogObserver
        else:
            exit(ExitStatus.EX_CONFIG, f"Invalid log format: {format}")
        self["logFormat"] = format

    opt_log_format.__doc__ = dedent(opt_log_format.__doc__)

    def selectDefaultLogObserver(self):
        """
        Set the L{fileLogObserverFactory} to the default appropriate for the
        chosen L{logFile}.
        """
        if "fileLogObserverFactory" not in self:
            logFile = self["logFile"]

            try:
                interactive = isatty(logFile.fileno())
            except (AttributeError, OSError, ValueError):
                interactive = False

            if interactive:
                self["fileLogObserverFactory"] = textFileLogObserver
            else:
                self["fileLogObserverFactory"] = jsonFileLogObserver

    def parseArgs(self, *specs):
        if not specs:
            raise UsageError("At least one port mapping is required.")
        self["ports"] = parsePortSpecs(specs)
        if not self["ports"]:
            raise UsageError("No valid port mapping given.")

    def postOptions(self):
        self.selectDefaultLogObserver()

    def respawnPolicy(self):
        """
        The respawn policy chosen by C{--backoff} and C{--max-retries}.
        """
        if self["backoff"]:
            policy = backoffPolicy()
        else:
            policy = immediatePolicy
        if self["max-retries"] is not None:
            policy = limitedPolicy(policy, self["max-retries"])
        return policy

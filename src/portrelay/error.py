# -*- test-case-name: portrelay.test.test_error -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Exceptions and error classification for portrelay.
"""

import errno

from constantly import NamedConstant

from twisted.internet.error import CannotListenError
from twisted.python.failure import Failure

from portrelay.interfaces import FailureKind

# Bind errors that retrying cannot fix.
PERMANENT_BIND_ERRNOS = frozenset(
    [errno.EADDRINUSE, errno.EADDRNOTAVAIL, errno.EACCES]
)


class PortRelayError(Exception):
    """
    Base class for portrelay errors.
    """


class InvalidPortSpec(PortRelayError, ValueError):
    """
    A port mapping given on the command line could not be parsed.
    """

    def __init__(self, spec, message="invalid port mapping"):
        PortRelayError.__init__(self, spec, message)
        self.spec = spec
        self.message = message

    def __str__(self) -> str:
        return f"{self.message}: {self.spec!r}"


class NoEndpointsError(PortRelayError):
    """
    There is nothing to forward: no valid port mapping, or no address to
    listen on.
    """


def isPermanentBindFailure(reason: Failure) -> bool:
    """
    Is C{reason} a failure to bind a listening port that will not go away by
    trying again?

    @param reason: A failure reported while starting to listen.
    """
    if reason.check(CannotListenError) is None:
        return False
    socketError = reason.value.socketError
    return getattr(socketError, "errno", None) in PERMANENT_BIND_ERRNOS


def failureKind(reason: Failure) -> NamedConstant:
    """
    Classify C{reason} as a L{FailureKind}.
    """
    if isPermanentBindFailure(reason):
        return FailureKind.PERMANENT
    return FailureKind.TRANSIENT

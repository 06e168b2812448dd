# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Interface documentation for observing forwarders.
"""

from constantly import NamedConstant, Names
from zope.interface import Interface


class FailureKind(Names):
    """
    How a failure reported by a forwarder affects its future.

    @cvar PERMANENT: The listening port could not be bound and never will be;
        the address is in use, unavailable on this host, or not permitted.
    @cvar TRANSIENT: Anything else, typically an error on one relayed
        connection.
    """

    PERMANENT = NamedConstant()
    TRANSIENT = NamedConstant()


class ResourceKind(Names):
    """
    The kind of resource a C{closed} notification is about.
    """

    LISTENER = NamedConstant()
    CONNECTION = NamedConstant()


class IForwarderObserver(Interface):
    """
    An object notified of the lifecycle transitions of a
    L{Forwarder<portrelay.forward.Forwarder>}.
    """

    def listening():
        """
        The listening port is bound and accepting connections.
        """

    def connected(peer):
        """
        A connection was accepted.

        @param peer: The remote end of the accepted connection.
        @type peer: L{portrelay.endpoint.Endpoint}
        """

    def disconnected(peer):
        """
        An accepted connection was closed.

        @param peer: The same endpoint that was passed to C{connected}.
        @type peer: L{portrelay.endpoint.Endpoint}
        """

    def failed(reason, kind):
        """
        A socket-level error happened.

        @param reason: The error.
        @type reason: L{twisted.python.failure.Failure}

        @param kind: Whether the forwarder may ever work again.
        @type kind: L{FailureKind}
        """

    def closed(kind, subject):
        """
        A resource owned by the forwarder terminated.

        @param kind: L{ResourceKind.LISTENER} when the listening port stopped;
            the forwarder is then closed for good.  L{ResourceKind.CONNECTION}
            when one side of a relayed connection closed.
        @type kind: L{ResourceKind}

        @param subject: The listening endpoint, or the remote end of the
            connection that closed.
        @type subject: L{portrelay.endpoint.Endpoint}
        """

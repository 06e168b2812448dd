# -*- test-case-name: portrelay.test.test_forward -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
A TCP port forwarder.

A L{Forwarder} owns one listening port.  Each connection accepted on it gets a
fresh outbound connection to a fixed destination, and bytes are relayed
between the two until either side goes away.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional, Set, TypeVar

from zope.interface import implementer

from automat import MethodicalMachine

from twisted.internet.defer import Deferred, maybeDeferred, succeed
from twisted.internet.error import ConnectionDone, NotListeningError
from twisted.internet.interfaces import (
    IAddress,
    IConnector,
    IHalfCloseableProtocol,
    IListeningPort,
)
from twisted.internet.protocol import (
    ClientFactory,
    Factory,
    Protocol,
    connectionDone,
)
from twisted.logger import Logger, LogLevel
from twisted.python.failure import Failure

from portrelay.endpoint import Endpoint, EndpointPair
from portrelay.error import failureKind
from portrelay.interfaces import FailureKind, IForwarderObserver, ResourceKind

T = TypeVar("T")


def _maybeGlobalReactor(maybeReactor: Optional[T]) -> T:
    """
    @return: the argument, or the global reactor if the argument is L{None}.
    """
    if maybeReactor is None:
        from twisted.internet import reactor

        return reactor  # type:ignore[return-value]
    else:
        return maybeReactor


def _firstOutput(outputs: Iterable[Any]) -> Any:
    return list(outputs)[0]


@implementer(IForwarderObserver)
class ForwarderObserver:
    """
    An L{IForwarderObserver} which ignores every notification.  Subclass it
    and override the notifications you are interested in.
    """

    def listening(self) -> None:
        pass

    def connected(self, peer: Endpoint) -> None:
        pass

    def disconnected(self, peer: Endpoint) -> None:
        pass

    def failed(self, reason: Failure, kind: Any) -> None:
        pass

    def closed(self, kind: Any, subject: Endpoint) -> None:
        pass


@implementer(IHalfCloseableProtocol)
class Relay(Protocol):
    """
    One side of a relayed connection.  Everything received is written to the
    other side.

    @ivar peer: The L{Relay} for the other side of the connection, once both
        sides are connected.
    @ivar forwarder: The L{Forwarder} which tracks this connection.
    @ivar endpoint: The remote end of this side of the connection.
    @ivar inbound: C{True} for the side accepted by the listening port.
    """

    peer: Optional[Relay] = None
    forwarder: Optional[Forwarder] = None
    endpoint: Optional[Endpoint] = None
    inbound = False
    _readClosed = False

    def setPeer(self, peer: Relay) -> None:
        self.peer = peer

    def dataReceived(self, data: bytes) -> None:
        self.peer.transport.write(data)

    def readConnectionLost(self) -> None:
        """
        The remote end will send nothing more.  Pass that on by shutting down
        writing to the other side, and close both sides once neither has
        anything left to send.
        """
        self._readClosed = True
        peer = self.peer
        if peer is None:
            self.transport.loseConnection()
            return
        peer.transport.loseWriteConnection()
        if peer._readClosed:
            self.transport.loseConnection()
            peer.transport.loseConnection()

    def writeConnectionLost(self) -> None:
        """
        Writing to this side was shut down; the other direction is unaffected.
        """

    def connectionLost(self, reason: Failure = connectionDone) -> None:
        peer, self.peer = self.peer, None
        if peer is not None:
            peer.transport.loseConnection()
        self.forwarder._connectionLost(self, reason)


class OutboundRelay(Relay):
    """
    The side of a relayed connection which connects to the destination.
    """

    def connectionMade(self) -> None:
        self.endpoint = Endpoint.fromAddress(self.transport.getPeer())
        self.peer.connector = None
        self.peer.setPeer(self)
        self.forwarder._outboundConnected(self)
        # Wire this and the peer transport together to enable
        # flow control (this stops connections from filling
        # this proxy memory when one side produces data at a
        # higher rate than the other can consume).
        self.transport.registerProducer(self.peer.transport, True)
        self.peer.transport.registerProducer(self.transport, True)

        # We're connected, everybody can read to their hearts content.
        self.peer.transport.resumeProducing()


class OutboundRelayFactory(ClientFactory):
    """
    Connects one L{InboundRelay} to the destination.

    @ivar server: The L{InboundRelay} waiting for this connection.
    """

    protocol = OutboundRelay
    noisy = False

    def setServer(self, server: InboundRelay) -> None:
        self.server = server

    def buildProtocol(self, *args, **kw):
        prot = ClientFactory.buildProtocol(self, *args, **kw)
        prot.setPeer(self.server)
        prot.forwarder = self.server.forwarder
        return prot

    def clientConnectionFailed(self, connector: IConnector, reason: Failure) -> None:
        if self.server.connector is None:
            # The accepted side went away first and cancelled this attempt.
            return
        self.server.connector = None
        self.server.forwarder._outboundFailed(reason)
        self.server.transport.loseConnection()


class InboundRelay(Relay):
    """
    The side of a relayed connection accepted by the listening port.

    @ivar connector: The L{IConnector} of the outbound connection while it is
        still being established.
    @ivar reactor: The reactor to connect to the destination with, set by
        L{RelayFactory}.
    """

    clientProtocolFactory = OutboundRelayFactory
    connector: Optional[IConnector] = None
    inbound = True

    def connectionMade(self) -> None:
        # Don't read anything from the connecting client until we have
        # somewhere to send it to.
        self.transport.pauseProducing()
        self.endpoint = Endpoint.fromAddress(self.transport.getPeer())
        self.forwarder._inboundConnected(self)

        client = self.clientProtocolFactory()
        client.setServer(self)
        destination = self.factory.destination
        self.connector = self.reactor.connectTCP(
            destination.address, destination.port, client
        )

    def connectionLost(self, reason: Failure = connectionDone) -> None:
        connector, self.connector = self.connector, None
        if connector is not None:
            connector.stopConnecting()
        Relay.connectionLost(self, reason)


class RelayFactory(Factory):
    """
    Builds an L{InboundRelay} for each connection accepted by a L{Forwarder}.
    """

    protocol = InboundRelay

    def __init__(self, forwarder: Forwarder, destination: Endpoint) -> None:
        self.forwarder = forwarder
        self.destination = destination

    def buildProtocol(self, addr: IAddress) -> InboundRelay:
        p = Factory.buildProtocol(self, addr)
        p.forwarder = self.forwarder
        p.reactor = self.forwarder.reactor
        return p


class Forwarder:
    """
    Relay every connection accepted on C{listen} to C{destination}.

    Lifecycle transitions are reported to an L{IForwarderObserver}.  Nothing
    happens until L{startListening} is called.

    @ivar listen: Where to accept connections.
    @ivar destination: Where to relay them to.
    @ivar connections: Every L{Relay} whose connection is open, on both the
        accepting and the destination side.
    @ivar respawnEligible: Whether a supervisor may replace this forwarder
        once it has closed.  Cleared when binding fails permanently.
    @ivar reactor: The reactor used to listen and connect.
    """

    _log = Logger()
    _machine = MethodicalMachine()

    def __init__(
        self,
        listen: Endpoint,
        destination: Endpoint,
        observer: IForwarderObserver,
        reactor: Any = None,
    ) -> None:
        self.listen = listen
        self.destination = destination
        self.connections: Set[Relay] = set()
        self.respawnEligible = True
        self.reactor = _maybeGlobalReactor(reactor)
        self._observer = observer
        self._factory = RelayFactory(self, destination)
        self._port: Optional[IListeningPort] = None

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.listen} to {self.destination}>"

    @property
    def pair(self) -> EndpointPair:
        return EndpointPair(self.listen, self.destination)

    @property
    def key(self) -> str:
        return self.pair.key

    def getHost(self) -> IAddress:
        """
        The address the listening port is bound to.

        @raise NotListeningError: If the forwarder is not listening.
        """
        if self._port is None:
            raise NotListeningError(f"{self!r} is not listening")
        return self._port.getHost()

    def startListening(self) -> None:
        """
        Bind the listening port and start accepting connections.

        The observer is told C{listening()} on success.  Otherwise it is told
        C{failed()} with the reason and its classification, and then
        C{closed()} for the listener; the forwarder is then closed.
        """
        port = self._start()
        if isinstance(port, Failure):
            self._bindFailed(port)
        else:
            self._bound(port)

    # States

    @_machine.state(initial=True)
    def _idle(self):
        """
        Created but not listening yet.
        """

    @_machine.state()
    def _binding(self):
        """
        Binding the listening port.
        """

    @_machine.state()
    def _listening(self):
        """
        Accepting and relaying connections.
        """

    @_machine.state()
    def _closed(self):
        """
        The listening port is gone and will not come back.
        """

    # Inputs

    @_machine.input()
    def _start(self):
        """
        Attempt to bind.
        """

    @_machine.input()
    def _bound(self, port):
        """
        The listening port was bound.
        """

    @_machine.input()
    def _bindFailed(self, reason):
        """
        The listening port could not be bound.
        """

    @_machine.input()
    def close(self):
        """
        Stop accepting connections and close every open connection.

        Errors encountered while closing connections are logged and
        otherwise ignored.  Calling this more than once has no further effect.

        @return: A L{Deferred} that fires with L{None} once the listening port
            has stopped.
        """

    # Outputs

    @_machine.output()
    def _listen(self):
        try:
            return self.reactor.listenTCP(
                self.listen.port, self._factory, interface=self.listen.address
            )
        except Exception:
            return Failure()

    @_machine.output()
    def _rememberPort(self, port):
        self._port = port
        self._observer.listening()

    @_machine.output()
    def _reportBindFailure(self, reason):
        self._log.debug(
            "{forwarder} could not listen: {reason}",
            forwarder=self,
            reason=reason.getErrorMessage(),
        )
        self._observer.failed(reason, failureKind(reason))
        self._observer.closed(ResourceKind.LISTENER, self.listen)

    @_machine.output()
    def _stopListening(self) -> Deferred[None]:
        port, self._port = self._port, None
        stopped = maybeDeferred(port.stopListening)
        for relay in list(self.connections):
            try:
                relay.transport.loseConnection()
            except Exception:
                self._log.failure(
                    "Error closing {relay} of {forwarder}",
                    relay=relay,
                    forwarder=self,
                    level=LogLevel.debug,
                )

        def stopFailed(reason: Failure) -> None:
            self._log.failure(
                "Error stopping {forwarder}",
                reason,
                forwarder=self,
                level=LogLevel.debug,
            )

        stopped.addErrback(stopFailed)
        stopped.addCallback(
            lambda ignored: self._observer.closed(ResourceKind.LISTENER, self.listen)
        )
        return stopped

    @_machine.output()
    def _alreadyClosed(self) -> Deferred[None]:
        return succeed(None)

    _idle.upon(_start, enter=_binding, outputs=[_listen], collector=_firstOutput)
    _binding.upon(_bound, enter=_listening, outputs=[_rememberPort])
    _binding.upon(_bindFailed, enter=_closed, outputs=[_reportBindFailure])
    _idle.upon(close, enter=_closed, outputs=[_alreadyClosed], collector=_firstOutput)
    _listening.upon(
        close, enter=_closed, outputs=[_stopListening], collector=_firstOutput
    )
    _closed.upon(close, enter=_closed, outputs=[_alreadyClosed], collector=_firstOutput)

    # Notifications from relays

    def _inboundConnected(self, relay: InboundRelay) -> None:
        self.connections.add(relay)
        self._observer.connected(relay.endpoint)

    def _outboundConnected(self, relay: OutboundRelay) -> None:
        self.connections.add(relay)

    def _outboundFailed(self, reason: Failure) -> None:
        self._observer.failed(reason, FailureKind.TRANSIENT)

    def _connectionLost(self, relay: Relay, reason: Failure) -> None:
        self.connections.discard(relay)
        if reason.check(ConnectionDone) is None:
            self._observer.failed(reason, FailureKind.TRANSIENT)
        if relay.inbound:
            self._observer.disconnected(relay.endpoint)
        self._observer.closed(ResourceKind.CONNECTION, relay.endpoint)


def create(
    listen: Endpoint,
    destination: Endpoint,
    observer: IForwarderObserver,
    reactor: Any = None,
) -> Forwarder:
    """
    Create a L{Forwarder} and start listening right away.

    @return: The new forwarder.  If it could not listen, C{observer} has
        already been told so and the forwarder is closed.
    """
    forwarder = Forwarder(listen, destination, observer, reactor)
    forwarder.startListening()
    return forwarder

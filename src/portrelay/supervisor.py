# -*- test-case-name: portrelay.test.test_supervisor -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Keep a set of L{Forwarder}s running.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from zope.interface import implementer

from twisted.application.service import Service
from twisted.internet.defer import Deferred, gatherResults, succeed
from twisted.internet.interfaces import IDelayedCall
from twisted.logger import Logger
from twisted.python.failure import Failure

from portrelay.endpoint import Endpoint, EndpointPair
from portrelay.forward import Forwarder, _maybeGlobalReactor
from portrelay.interfaces import FailureKind, IForwarderObserver, ResourceKind
from portrelay.policy import RespawnPolicy, immediatePolicy


@implementer(IForwarderObserver)
class _SupervisedForwarder:
    """
    Reports the notifications of one forwarder to its L{Supervisor}.

    @ivar forwarder: The L{Forwarder} being observed.
    """

    forwarder: Optional[Forwarder] = None

    def __init__(self, supervisor: Supervisor, pair: EndpointPair) -> None:
        self._supervisor = supervisor
        self._pair = pair

    def listening(self) -> None:
        self._supervisor._log.info(
            "forwarding {listen} to {destination}",
            listen=self._pair.listen,
            destination=self._pair.destination,
        )
        self._supervisor._failedAttempts.pop(self._pair, None)

    def connected(self, peer: Endpoint) -> None:
        self._supervisor._log.info(
            "connected {peer} via {listen} to {destination}",
            peer=peer,
            listen=self._pair.listen,
            destination=self._pair.destination,
        )

    def disconnected(self, peer: Endpoint) -> None:
        self._supervisor._log.debug(
            "disconnected {peer} via {listen}", peer=peer, listen=self._pair.listen
        )

    def failed(self, reason: Failure, kind: Any) -> None:
        if kind is FailureKind.PERMANENT:
            self.forwarder.respawnEligible = False
            self._supervisor._log.debug(
                "{key} cannot listen on {listen}: {error}",
                key=self._pair.key,
                listen=self._pair.listen,
                error=reason.getErrorMessage(),
            )
            return
        self._supervisor._log.error(
            "{key} {error}", key=self._pair.key, error=reason.getErrorMessage()
        )

    def closed(self, kind: Any, subject: Endpoint) -> None:
        if kind is ResourceKind.LISTENER:
            self._supervisor._forwarderClosed(self.forwarder)


class Supervisor(Service):
    """
    A L{Supervisor} owns one L{Forwarder} per L{EndpointPair} and creates it
    again whenever it stops listening, unless it stopped because its address
    can never be bound.

    @ivar forwarders: The live forwarders, keyed by their L{EndpointPair}.
    @type forwarders: L{dict}

    @ivar pairs: The pairs to start forwarding when the service starts.
    """

    _log = Logger()

    def __init__(
        self,
        pairs: Iterable[EndpointPair] = (),
        respawnPolicy: Optional[RespawnPolicy] = None,
        reactor: Any = None,
    ) -> None:
        """
        @param pairs: Endpoint pairs to forward once the service starts.

        @param respawnPolicy: Chooses how long to wait before replacing a
            forwarder which stopped listening; see L{portrelay.policy}.
            Defaults to L{immediatePolicy}.

        @param reactor: The reactor to listen, connect and schedule respawns
            with.  Mainly useful to be parametrized in tests.
        """
        self.pairs = list(pairs)
        self.forwarders: Dict[EndpointPair, Forwarder] = {}
        self._respawnPolicy = (
            immediatePolicy if respawnPolicy is None else respawnPolicy
        )
        self._reactor = _maybeGlobalReactor(reactor)
        self._failedAttempts: Dict[EndpointPair, int] = {}
        self._pendingRespawns: Dict[EndpointPair, IDelayedCall] = {}
        self._idleWaiters: List[Deferred[None]] = []
        self._adding = 0

    def addEndpointPair(self, listen: Endpoint, destination: Endpoint) -> Forwarder:
        """
        Start forwarding connections accepted on C{listen} to C{destination}.

        @return: The new L{Forwarder}, or the one already forwarding this
            pair.
        """
        pair = EndpointPair(listen, destination)
        existing = self.forwarders.get(pair)
        if existing is not None:
            self._log.warn("already forwarding {pair}", pair=pair)
            return existing
        pending = self._pendingRespawns.pop(pair, None)
        if pending is not None:
            pending.cancel()

        observer = _SupervisedForwarder(self, pair)
        forwarder = Forwarder(listen, destination, observer, self._reactor)
        observer.forwarder = forwarder
        self.forwarders[pair] = forwarder
        forwarder.startListening()
        return forwarder

    def addEndpointPairs(self, pairs: Iterable[EndpointPair]) -> None:
        """
        Call L{addEndpointPair} for each of C{pairs}, in order.
        """
        self._adding += 1
        try:
            for pair in pairs:
                self.addEndpointPair(pair.listen, pair.destination)
        finally:
            self._adding -= 1
        self._maybeIdle()

    def removeEndpointPair(
        self, listen: Endpoint, destination: Endpoint
    ) -> Deferred[None]:
        """
        Stop forwarding C{listen} to C{destination} without respawning.

        @return: A L{Deferred} that fires when the listening port has stopped.
        """
        pair = EndpointPair(listen, destination)
        pending = self._pendingRespawns.pop(pair, None)
        if pending is not None:
            pending.cancel()
        self._failedAttempts.pop(pair, None)
        forwarder = self.forwarders.pop(pair, None)
        if forwarder is None:
            closing = succeed(None)
        else:
            closing = forwarder.close()
        self._maybeIdle()
        return closing

    def startService(self) -> None:
        """
        Start forwarding every pair given to C{__init__}.
        """
        Service.startService(self)
        self.addEndpointPairs(self.pairs)

    def stopService(self) -> Deferred[None]:
        """
        Close every forwarder without respawning any of them.

        The collection is cleared before any forwarder is closed, so the
        close notifications arriving during teardown find nothing to respawn.

        @return: A L{Deferred} that fires when every listening port has
            stopped.
        """
        Service.stopService(self)
        forwarders = list(self.forwarders.values())
        self.forwarders.clear()
        pending = list(self._pendingRespawns.values())
        self._pendingRespawns.clear()
        self._failedAttempts.clear()
        for call in pending:
            call.cancel()
        closing = [forwarder.close() for forwarder in forwarders]
        return gatherResults(closing).addCallback(lambda ignored: None)

    def whenIdle(self) -> Deferred[None]:
        """
        Wait for the supervisor to run out of work while it is running: every
        forwarder has been given up on and no respawn is pending.

        Stopping the service does not count as running out of work.

        @return: a L{Deferred} that fires with L{None} the next time the
            supervisor has nothing left to forward.
        """
        waiter: Deferred[None] = Deferred()
        self._idleWaiters.append(waiter)
        return waiter

    def _maybeIdle(self) -> None:
        if not self.running or self._adding:
            return
        if self.forwarders or self._pendingRespawns:
            return
        self._log.info("nothing left to forward")
        self._idleWaiters, waiting = [], self._idleWaiters
        for waiter in waiting:
            waiter.callback(None)

    def _forwarderClosed(self, forwarder: Forwarder) -> None:
        pair = forwarder.pair
        if self.forwarders.get(pair) is not forwarder:
            return
        del self.forwarders[pair]
        if not forwarder.respawnEligible:
            self._log.info("not forwarding {pair}", pair=pair)
            self._failedAttempts.pop(pair, None)
            self._maybeIdle()
            return

        attempt = self._failedAttempts.get(pair, 0) + 1
        delay = self._respawnPolicy(attempt)
        if delay is None:
            self._log.warn(
                "giving up on {pair} after {attempt} attempts",
                pair=pair,
                attempt=attempt,
            )
            self._failedAttempts.pop(pair, None)
            self._maybeIdle()
            return
        self._failedAttempts[pair] = attempt
        self._log.debug(
            "respawning {pair} in {delay} seconds", pair=pair, delay=delay
        )
        self._pendingRespawns[pair] = self._reactor.callLater(
            delay, self._respawn, pair
        )

    def _respawn(self, pair: EndpointPair) -> None:
        del self._pendingRespawns[pair]
        self.addEndpointPair(pair.listen, pair.destination)

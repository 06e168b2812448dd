# -*- test-case-name: portrelay.test.test_shutdown -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Tear down every forwarder of a L{Supervisor} when the process is asked to
stop.
"""

from __future__ import annotations

from typing import Any, List, Optional

from twisted.internet.defer import Deferred
from twisted.logger import Logger
from twisted.python.failure import Failure

from portrelay.forward import _maybeGlobalReactor
from portrelay.supervisor import Supervisor


class ShutdownCoordinator:
    """
    Stops a L{Supervisor} once, from whichever stop trigger comes first.

    Installed, it is called by the reactor before the reactor shuts down,
    which is what the reactor's own SIGINT and SIGTERM handlers lead to.  It
    can also be stopped directly with L{stop}.
    """

    _log = Logger()

    def __init__(self, supervisor: Supervisor, reactor: Any = None) -> None:
        """
        @param supervisor: The supervisor whose forwarders to close.

        @param reactor: The reactor to register the shutdown trigger with and
            to schedule termination on.
        """
        self._supervisor = supervisor
        self._reactor = _maybeGlobalReactor(reactor)
        self._trigger: Optional[Any] = None
        self._stopping = False
        self._stopped = False
        self._terminated = False
        self._stopWaiters: List[Deferred[None]] = []
        self._terminationWaiters: List[Deferred[None]] = []

    def install(self) -> None:
        """
        Stop the supervisor when the reactor begins shutting down.
        """
        if self._trigger is None and not self._stopping:
            self._trigger = self._reactor.addSystemEventTrigger(
                "before", "shutdown", self._shutdownTriggered
            )

    def _shutdownTriggered(self) -> Deferred[None]:
        # The reactor has already consumed this trigger.
        self._trigger = None
        return self.stop()

    def stop(self) -> Deferred[None]:
        """
        Close every forwarder of the supervisor, then schedule termination on
        the next turn of the reactor.  Only the first call does anything.

        @return: A L{Deferred} that fires when every listening port has
            stopped.
        """
        waiter: Deferred[None] = Deferred()
        if self._stopped:
            waiter.callback(None)
            return waiter
        self._stopWaiters.append(waiter)
        if self._stopping:
            return waiter
        self._stopping = True

        trigger, self._trigger = self._trigger, None
        if trigger is not None:
            self._reactor.removeSystemEventTrigger(trigger)

        self._log.info(
            "stopping {count} forwarders", count=len(self._supervisor.forwarders)
        )
        self._supervisor.stopService().addBoth(self._finishStopping)
        self._reactor.callLater(0, self._terminate)
        return waiter

    def whenTerminated(self) -> Deferred[None]:
        """
        @return: A L{Deferred} that fires once teardown has been requested and
            the process may exit.
        """
        waiter: Deferred[None] = Deferred()
        if self._terminated:
            waiter.callback(None)
        else:
            self._terminationWaiters.append(waiter)
        return waiter

    def _finishStopping(self, result: object) -> None:
        if isinstance(result, Failure):
            self._log.failure("Error stopping forwarders", result)
        self._stopped = True
        self._stopWaiters, waiting = [], self._stopWaiters
        for waiter in waiting:
            waiter.callback(None)

    def _terminate(self) -> None:
        self._terminated = True
        self._terminationWaiters, waiting = [], self._terminationWaiters
        for waiter in waiting:
            waiter.callback(None)

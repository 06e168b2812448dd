# -*- test-case-name: portrelay.test.test_policy -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Respawn policies for L{Supervisor<portrelay.supervisor.Supervisor>}.

A policy is a 1-argument callable.  Given the number of consecutive times a
forwarder has closed without managing to listen (starting at 1), it returns
the number of seconds to wait before creating it again, or L{None} to give up
on it.
"""

from random import random as _goodEnoughRandom
from typing import Callable, Optional

RespawnPolicy = Callable[[int], Optional[float]]


def immediatePolicy(attempt: int) -> float:
    """
    Respawn on the next turn of the reactor, however often it fails.
    """
    return 0


def backoffPolicy(
    initialDelay: float = 1.0,
    maxDelay: float = 60.0,
    factor: float = 1.5,
    jitter: Callable[[], float] = _goodEnoughRandom,
) -> Callable[[int], float]:
    """
    A respawn policy which computes an exponential backoff interval with
    configurable parameters.

    @param initialDelay: Delay for the first respawn (default 1.0s).
    @type initialDelay: L{float}

    @param maxDelay: Maximum number of seconds between respawns (default 60
        seconds, or one minute).  Note that this value is before jitter is
        applied, so the actual maximum possible delay is this value plus the
        maximum possible result of C{jitter()}.
    @type maxDelay: L{float}

    @param factor: A multiplicative factor by which the delay grows on each
        consecutive failure.  Default: 1.5.
    @type factor: L{float}

    @param jitter: A 0-argument callable that introduces noise into the delay.
        By default, C{random.random}, i.e. a pseudorandom floating-point value
        between zero and one.
    @type jitter: 0-argument callable returning L{float}

    @return: a 1-argument callable that, given an attempt count, returns a
        floating point number; the number of seconds to delay.
    """

    def policy(attempt: int) -> float:
        try:
            delay = min(initialDelay * (factor ** min(100, attempt)), maxDelay)
        except OverflowError:
            delay = maxDelay
        return delay + jitter()

    return policy


def limitedPolicy(policy: RespawnPolicy, maxAttempts: int) -> RespawnPolicy:
    """
    Follow C{policy} for at most C{maxAttempts} consecutive failures, then
    stop respawning.
    """

    def limited(attempt: int) -> Optional[float]:
        if attempt > maxAttempts:
            return None
        return policy(attempt)

    return limited

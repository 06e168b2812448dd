# -*- test-case-name: portrelay.test.test_script -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
The C{portrelay} command.
"""

import sys

from twisted.internet.defer import DeferredList, inlineCallbacks
from twisted.internet.error import DNSLookupError
from twisted.internet.task import react
from twisted.logger import (
    FilteringLogObserver,
    LogLevelFilterPredicate,
    Logger,
    globalLogBeginner,
)
from twisted.python.usage import UsageError

from portrelay._exit import ExitStatus, exit
from portrelay._options import ForwardOptions
from portrelay.error import NoEndpointsError
from portrelay.resolve import endpointPairs
from portrelay.shutdown import ShutdownCoordinator
from portrelay.supervisor import Supervisor

log = Logger()


def parseOptions(argv):
    """
    Parse command line options, exiting with a usage message if they are
    wrong.

    @param argv: The arguments, not including the program name.
    """
    options = ForwardOptions()

    try:
        options.parseOptions(argv)
    except UsageError as e:
        exit(ExitStatus.EX_USAGE, f"Error: {e}\n\n{options}")

    return options


def startLogging(options, beginner=globalLogBeginner):
    """
    Start the L{twisted.logger} system.
    """
    fileLogObserver = options["fileLogObserverFactory"](options["logFile"])

    logLevelPredicate = LogLevelFilterPredicate(defaultLogLevel=options["logLevel"])

    filteringObserver = FilteringLogObserver(fileLogObserver, [logLevelPredicate])

    beginner.beginLoggingTo([filteringObserver])


@inlineCallbacks
def main(reactor, *argv):
    """
    Forward the ports named on the command line until the reactor is asked to
    stop.

    @return: A L{Deferred} that fires when every forwarder has been told to
        close, or fails with L{SystemExit} once none of them is left.
    """
    options = parseOptions(list(argv))
    startLogging(options)

    try:
        pairs = yield endpointPairs(reactor, options["ports"], options["host"])
    except DNSLookupError as e:
        exit(ExitStatus.EX_NOHOST, f"Name resolution failed: {e}")
    except NoEndpointsError as e:
        exit(ExitStatus.EX_UNAVAILABLE, f"Nothing to forward: {e}")

    supervisor = Supervisor(pairs, options.respawnPolicy(), reactor)
    coordinator = ShutdownCoordinator(supervisor, reactor)
    coordinator.install()
    idle = supervisor.whenIdle()
    supervisor.startService()
    log.info("forwarding {count} endpoint pairs", count=len(pairs))

    result, index = yield DeferredList(
        [coordinator.whenTerminated(), idle], fireOnOneCallback=True
    )
    if index == 1:
        yield coordinator.stop()
        exit(ExitStatus.EX_UNAVAILABLE, "Nothing left to forward.")


def run(argv=None):
    """
    Run the C{portrelay} command.
    """
    if argv is None:
        argv = sys.argv[1:]
    react(main, argv)

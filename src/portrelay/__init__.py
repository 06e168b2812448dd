# -*- test-case-name: portrelay -*-

# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
portrelay: relay TCP ports to other addresses with Twisted.

A L{Forwarder<portrelay.forward.Forwarder>} listens on one endpoint and splices
every accepted connection to a fixed destination.  A
L{Supervisor<portrelay.supervisor.Supervisor>} keeps a set of forwarders
alive, and a L{ShutdownCoordinator<portrelay.shutdown.ShutdownCoordinator>}
tears them down when the process is asked to stop.
"""

from portrelay._version import __version__ as version
from portrelay.endpoint import Endpoint, EndpointPair
from portrelay.forward import Forwarder, create
from portrelay.interfaces import FailureKind, IForwarderObserver, ResourceKind
from portrelay.shutdown import ShutdownCoordinator
from portrelay.supervisor import Supervisor

__version__ = version.short()

__all__ = [
    "Endpoint",
    "EndpointPair",
    "FailureKind",
    "Forwarder",
    "IForwarderObserver",
    "ResourceKind",
    "ShutdownCoordinator",
    "Supervisor",
    "create",
]

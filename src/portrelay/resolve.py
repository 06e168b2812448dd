# -*- test-case-name: portrelay.test.test_resolve -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Work out which endpoints to listen on and where to forward them to.
"""

from __future__ import annotations

import ipaddress
import socket
from typing import Any, Dict, Iterable, List, Optional, Sequence

import attr
import psutil
from zope.interface import implementer

from twisted.internet.abstract import isIPAddress, isIPv6Address
from twisted.internet.defer import Deferred, inlineCallbacks, succeed
from twisted.internet.error import DNSLookupError
from twisted.internet.interfaces import IResolutionReceiver
from twisted.logger import Logger

from portrelay.endpoint import Endpoint, EndpointPair
from portrelay.error import InvalidPortSpec, NoEndpointsError

log = Logger()

LOCALHOST = "localhost"


@attr.s(frozen=True, auto_attribs=True)
class PortMapping:
    """
    A port to listen on and the port to forward it to.
    """

    source: int
    target: int


def _parsePort(text: str, spec: str) -> int:
    try:
        port = int(text.strip())
    except ValueError:
        raise InvalidPortSpec(spec)
    if not 1 <= port <= 65535:
        raise InvalidPortSpec(spec, "port out of range")
    return port


def parsePortSpec(spec: str) -> PortMapping:
    """
    Parse C{"<source>[:<target>]"}.  The target port defaults to the source
    port.

    @raise InvalidPortSpec: If either port is not a number from 1 to 65535.
    """
    parts = spec.split(":")
    source = _parsePort(parts[0], spec)
    if len(parts) > 1:
        target = _parsePort(parts[1], spec)
    else:
        target = source
    return PortMapping(source, target)


def parsePortSpecs(specs: Iterable[str]) -> List[PortMapping]:
    """
    Parse every spec with L{parsePortSpec}, skipping the invalid ones.
    """
    mappings = []
    for spec in specs:
        try:
            mappings.append(parsePortSpec(spec))
        except InvalidPortSpec as e:
            log.warn("ignoring {error}", error=e)
    return mappings


def _isLoopback(address: str) -> bool:
    return ipaddress.ip_address(address.split("%", 1)[0]).is_loopback


def externalAddresses(
    interfaces: Optional[Dict[str, Sequence[Any]]] = None
) -> List[str]:
    """
    The IPv4 and IPv6 addresses of every network interface, except loopback
    ones.

    @param interfaces: A mapping shaped like the result of
        C{psutil.net_if_addrs()}, which is used when this is L{None}.
    """
    if interfaces is None:
        interfaces = psutil.net_if_addrs()
    addresses: List[str] = []
    for nics in interfaces.values():
        for nic in nics:
            if nic.family not in (socket.AF_INET, socket.AF_INET6):
                continue
            if _isLoopback(nic.address) or nic.address in addresses:
                continue
            addresses.append(nic.address)
    return addresses


@implementer(IResolutionReceiver)
class _AddressCollector:
    """
    Collects every address a name resolves to.

    @ivar deferred: Fires with the L{list} of addresses, or fails with
        L{DNSLookupError} if there were none.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._addresses: List[str] = []
        self.deferred: Deferred[List[str]] = Deferred()

    def resolutionBegan(self, resolutionInProgress):
        pass

    def addressResolved(self, address):
        if address.host not in self._addresses:
            self._addresses.append(address.host)

    def resolutionComplete(self):
        if self._addresses:
            self.deferred.callback(self._addresses)
        else:
            self.deferred.errback(DNSLookupError(self._name))


def resolveHost(reactor: Any, name: str) -> Deferred[List[str]]:
    """
    Resolve C{name} to all of its numeric addresses, with the reactor's
    L{IHostnameResolver<twisted.internet.interfaces.IHostnameResolver>}.

    @return: A L{Deferred} firing with a non-empty L{list} of addresses, or
        failing with L{DNSLookupError}.
    """
    if isIPAddress(name) or isIPv6Address(name):
        return succeed([name])
    collector = _AddressCollector(name)
    reactor.nameResolver.resolveHostName(collector, name)
    return collector.deferred


def _preferIPv4(addresses: Sequence[str]) -> str:
    for address in addresses:
        if isIPAddress(address):
            return address
    return addresses[0]


@inlineCallbacks
def endpointPairs(
    reactor: Any,
    ports: Sequence[PortMapping],
    host: Optional[str] = None,
    interfaces: Optional[Dict[str, Sequence[Any]]] = None,
):
    """
    Compute the endpoint pairs to forward.

    Without C{host}, every external interface address listens on each source
    port and forwards to the target port on C{localhost}.  With C{host}: if it
    names an address of this machine, every address it resolves to listens
    and forwards to C{localhost}; otherwise every address of C{localhost}
    listens and forwards to C{host}.

    Destinations are resolved to a single numeric address, preferring IPv4.

    @return: A L{Deferred} firing with a L{list} of L{EndpointPair}.

    @raise NoEndpointsError: If there is nothing to forward.
    """
    local = externalAddresses(interfaces)
    if host is None:
        listenAddresses = local
        destination = _preferIPv4((yield resolveHost(reactor, LOCALHOST)))
    else:
        hostAddresses = yield resolveHost(reactor, host)
        if hostAddresses[0] in local:
            listenAddresses = hostAddresses
            destination = _preferIPv4((yield resolveHost(reactor, LOCALHOST)))
        else:
            listenAddresses = yield resolveHost(reactor, LOCALHOST)
            destination = _preferIPv4(hostAddresses)

    pairs = [
        EndpointPair(
            Endpoint(address, mapping.source), Endpoint(destination, mapping.target)
        )
        for address in listenAddresses
        for mapping in ports
    ]
    if not pairs:
        raise NoEndpointsError("no address or port to forward")
    return pairs

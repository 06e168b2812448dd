# -*- test-case-name: portrelay.test.test_endpoint -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Addresses of the two sides of a forwarded port.
"""

from __future__ import annotations

from typing import Union

import attr

from twisted.internet.abstract import isIPv6Address
from twisted.internet.address import IPv4Address, IPv6Address


def _validPort(instance: object, attribute: attr.Attribute, value: object) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{attribute.name} must be an integer, not {value!r}")
    if not 0 <= value <= 65535:
        raise ValueError(f"{attribute.name} {value} is out of range")


@attr.s(frozen=True, auto_attribs=True)
class Endpoint:
    """
    An address and TCP port number identifying one side of a connection.

    @ivar address: A numeric IPv4 or IPv6 address, or a host name.
    @ivar port: The TCP port number.  C{0} lets the operating system choose a
        port when listening.
    """

    address: str
    port: int = attr.ib(validator=_validPort)

    @classmethod
    def fromAddress(cls, address: Union[IPv4Address, IPv6Address]) -> Endpoint:
        """
        Create an L{Endpoint} from a Twisted TCP address.
        """
        return cls(address.host, address.port)

    def __str__(self) -> str:
        if isIPv6Address(self.address):
            return f"[{self.address}]:{self.port}"
        return f"{self.address}:{self.port}"


@attr.s(frozen=True, auto_attribs=True)
class EndpointPair:
    """
    A listening endpoint and the destination its connections are relayed to.
    """

    listen: Endpoint
    destination: Endpoint

    @property
    def key(self) -> str:
        """
        A short label for this pair, C{"<listen port>:<destination port>"}.
        """
        return f"{self.listen.port}:{self.destination.port}"

    def __str__(self) -> str:
        return f"{self.listen} to {self.destination}"

# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Tests for L{portrelay.endpoint}.
"""

from twisted.internet.address import IPv4Address, IPv6Address
from twisted.trial.unittest import SynchronousTestCase

from portrelay.endpoint import Endpoint, EndpointPair


class EndpointTests(SynchronousTestCase):
    """
    Tests for L{Endpoint}.
    """

    def test_portRange(self):
        """
        Ports from 0 to 65535 are accepted, 0 meaning any free port.
        """
        self.assertEqual(Endpoint("127.0.0.1", 0).port, 0)
        self.assertEqual(Endpoint("127.0.0.1", 65535).port, 65535)
        self.assertRaises(ValueError, Endpoint, "127.0.0.1", -1)
        self.assertRaises(ValueError, Endpoint, "127.0.0.1", 65536)

    def test_portMustBeInteger(self):
        """
        Strings and booleans are not port numbers.
        """
        self.assertRaises(ValueError, Endpoint, "127.0.0.1", "80")
        self.assertRaises(ValueError, Endpoint, "127.0.0.1", True)

    def test_equality(self):
        """
        Endpoints with the same address and port are equal and hash alike.
        """
        self.assertEqual(Endpoint("10.0.0.1", 80), Endpoint("10.0.0.1", 80))
        self.assertNotEqual(Endpoint("10.0.0.1", 80), Endpoint("10.0.0.2", 80))
        self.assertEqual(
            len({Endpoint("10.0.0.1", 80), Endpoint("10.0.0.1", 80)}), 1
        )

    def test_str(self):
        """
        IPv6 addresses are bracketed, the others are not.
        """
        self.assertEqual(str(Endpoint("10.0.0.1", 80)), "10.0.0.1:80")
        self.assertEqual(str(Endpoint("::1", 80)), "[::1]:80")
        self.assertEqual(str(Endpoint("localhost", 80)), "localhost:80")

    def test_fromAddress(self):
        """
        L{Endpoint.fromAddress} takes the host and port of a TCP address.
        """
        self.assertEqual(
            Endpoint.fromAddress(IPv4Address("TCP", "10.0.0.1", 1234)),
            Endpoint("10.0.0.1", 1234),
        )
        self.assertEqual(
            Endpoint.fromAddress(IPv6Address("TCP", "::1", 1234)),
            Endpoint("::1", 1234),
        )


class EndpointPairTests(SynchronousTestCase):
    """
    Tests for L{EndpointPair}.
    """

    def test_key(self):
        """
        The key of a pair is its listening port and destination port.
        """
        pair = EndpointPair(Endpoint("10.0.0.1", 8080), Endpoint("127.0.0.1", 80))
        self.assertEqual(pair.key, "8080:80")

    def test_pairsDifferByAddress(self):
        """
        Pairs with the same ports on different addresses are distinct.
        """
        first = EndpointPair(Endpoint("10.0.0.1", 8080), Endpoint("127.0.0.1", 80))
        second = EndpointPair(Endpoint("10.0.0.2", 8080), Endpoint("127.0.0.1", 80))
        self.assertEqual(first.key, second.key)
        self.assertNotEqual(first, second)

    def test_str(self):
        pair = EndpointPair(Endpoint("10.0.0.1", 8080), Endpoint("::1", 80))
        self.assertEqual(str(pair), "10.0.0.1:8080 to [::1]:80")

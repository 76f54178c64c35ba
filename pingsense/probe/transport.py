import ipaddress
import logging
import socket

from pingsense.probe.errors import ResolutionError

logger = logging.getLogger(__name__)


class RawSocketPermissionError(PermissionError):
    """Raised when raw socket creation fails due to missing privileges."""


def parse_address(target):
    # IPv4Address / IPv6Address / literal string -> address, hostname -> None
    if isinstance(target, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return target
    try:
        return ipaddress.ip_address(str(target).strip())
    except ValueError:
        return None


def resolve_host(hostname):
    """
    Resolve a hostname through the OS resolver.

    IPv4 answers are preferred over IPv6 ones, the ICMP codec only speaks
    ICMPv4.
    """
    try:
        answers = socket.getaddrinfo(hostname, None, proto=socket.IPPROTO_TCP)
    except (socket.gaierror, UnicodeError) as exc:
        raise ResolutionError(hostname, str(exc)) from exc

    addresses = [ipaddress.ip_address(answer[4][0].split("%")[0]) for answer in answers]
    if not addresses:
        raise ResolutionError(hostname, "no addresses")

    addresses.sort(key=lambda address: address.version)
    return addresses[0]


class RawSocketTransport:
    """
    One raw ICMP socket bound to a single remote address.

    Receive waits are bounded by the socket timeout. IPv4 raw sockets hand
    back the IP header in front of the ICMP bytes, IPv6 ones do not.
    """

    def __init__(self, address, timeout=3.0, ttl=64, buffer_size=65536):
        self.address = address
        self.timeout = timeout
        self.ttl = ttl
        self.buffer_size = buffer_size
        self.includes_ip_header = address.version == 4
        self._sock = None

    def open(self):
        if self._sock is not None:
            return self

        if self.address.version == 4:
            family, proto = socket.AF_INET, socket.IPPROTO_ICMP
        else:
            family, proto = socket.AF_INET6, socket.IPPROTO_ICMPV6

        try:
            sock = socket.socket(family, socket.SOCK_RAW, proto)
        except PermissionError as exc:
            raise RawSocketPermissionError(
                "Raw socket requires elevated privileges. Use sudo or grant "
                "CAP_NET_RAW to the Python interpreter."
            ) from exc

        try:
            sock.settimeout(self.timeout)
            if family == socket.AF_INET:
                sock.setsockopt(socket.IPPROTO_IP, socket.IP_TTL, self.ttl)
            else:
                sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_UNICAST_HOPS, self.ttl)
        except OSError:
            sock.close()
            raise

        self._sock = sock
        logger.debug("Opened raw socket for %s (ttl=%s)", self.address, self.ttl)
        return self

    def close(self):
        if self._sock is not None:
            try:
                self._sock.close()
            finally:
                self._sock = None

    def send(self, data):
        return self._sock.sendto(data, (str(self.address), 0))

    def receive(self, timeout):
        # raises socket.timeout (TimeoutError) when nothing arrives in time
        self._sock.settimeout(max(timeout, 0.0))
        data, _ = self._sock.recvfrom(self.buffer_size)
        return data

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()

import ipaddress
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, ClassVar, Optional

from pingsense.analysis.ipv4_analyzer import IPv4Analyzer
from pingsense.icmp.packet import ICMPPacket, register_message

ICMP_ECHO_REPLY = 0
ICMP_DEST_UNREACHABLE = 3
ICMP_SOURCE_QUENCH = 4
ICMP_REDIRECT = 5
ICMP_ECHO_REQUEST = 8
ICMP_TIME_EXCEEDED = 11
ICMP_PARAMETER_PROBLEM = 12

ipv4_analyzer = IPv4Analyzer()


class UnreachableCode(IntEnum):
    NET_UNREACHABLE = 0
    HOST_UNREACHABLE = 1
    PROTOCOL_UNREACHABLE = 2
    PORT_UNREACHABLE = 3
    FRAGMENTATION_NEEDED = 4
    SOURCE_ROUTE_FAILED = 5
    NET_UNKNOWN = 6
    HOST_UNKNOWN = 7
    SOURCE_HOST_ISOLATED = 8
    NET_PROHIBITED = 9
    HOST_PROHIBITED = 10
    NET_UNREACHABLE_FOR_TOS = 11
    HOST_UNREACHABLE_FOR_TOS = 12
    COMMUNICATION_PROHIBITED = 13
    HOST_PRECEDENCE_VIOLATION = 14
    PRECEDENCE_CUTOFF = 15


class RedirectCode(IntEnum):
    NETWORK = 0
    HOST = 1
    TOS_NETWORK = 2
    TOS_HOST = 3


def _check_u16(name, value):
    if not 0 <= value <= 0xFFFF:
        raise ValueError(f"{name} must fit in 16 bits, got {value}")
    return value


def _quote(raw_data, embedded):
    # the quoted datagram is kept as bytes; the parsed view is derived from them
    if embedded is not None and not raw_data:
        raw_data = bytes(embedded)
    raw_data = bytes(raw_data or b"")
    if embedded is None:
        embedded = ipv4_analyzer.parse(raw_data)
    return raw_data, embedded


@dataclass(frozen=True)
class ICMPMessage:
    """Type-specific part of an ICMP packet, everything after the checksum."""

    icmp_type: ClassVar[int]
    name: ClassVar[str]

    def encode(self) -> bytes:
        raise NotImplementedError

    @classmethod
    def try_decode(cls, payload: bytes, code: int = 0) -> Optional["ICMPMessage"]:
        raise NotImplementedError


@dataclass(frozen=True)
class _Echo(ICMPMessage):
    identifier: int
    sequence: int
    data: bytes = b""

    def encode(self) -> bytes:
        return struct.pack("!HH", self.identifier, self.sequence) + self.data

    @classmethod
    def try_decode(cls, payload, code=0):
        if payload is None or len(payload) < 4:
            return None
        identifier, sequence = struct.unpack("!HH", payload[:4])
        return cls(identifier, sequence, bytes(payload[4:]))

    @classmethod
    def create(cls, identifier, sequence, data=b""):
        if isinstance(data, str):
            data = data.encode("utf-8")
        message = cls(_check_u16("identifier", identifier),
                      _check_u16("sequence", sequence),
                      bytes(data))
        return ICMPPacket.build(message, 0)

    @property
    def text(self) -> str:
        return self.data.decode("utf-8", errors="replace")


@register_message
@dataclass(frozen=True)
class EchoRequest(_Echo):
    icmp_type: ClassVar[int] = ICMP_ECHO_REQUEST
    name: ClassVar[str] = "Echo Request"


@register_message
@dataclass(frozen=True)
class EchoReply(_Echo):
    icmp_type: ClassVar[int] = ICMP_ECHO_REPLY
    name: ClassVar[str] = "Echo Reply"


@dataclass(frozen=True)
class _QuotingMessage(ICMPMessage):
    """
    Error messages quoting the offending datagram after a 4 byte
    type-specific word. The quote is parsed as IPv4 when possible, a failed
    parse only leaves `embedded` empty.
    """

    raw_data: bytes = b""
    embedded: Optional[Any] = field(default=None, compare=False, repr=False)

    def _header(self) -> bytes:
        return b"\x00\x00\x00\x00"

    def encode(self) -> bytes:
        return self._header() + self.raw_data

    @classmethod
    def try_decode(cls, payload, code=0):
        if payload is None or len(payload) < 4:
            return None
        raw_data, embedded = _quote(payload[4:], None)
        return cls(raw_data=raw_data, embedded=embedded)

    @classmethod
    def create(cls, raw_data=b"", embedded=None, code=0):
        raw_data, embedded = _quote(raw_data, embedded)
        return ICMPPacket.build(cls(raw_data=raw_data, embedded=embedded), code)


@register_message
@dataclass(frozen=True)
class DestinationUnreachable(_QuotingMessage):
    icmp_type: ClassVar[int] = ICMP_DEST_UNREACHABLE
    name: ClassVar[str] = "Destination Unreachable"

    code: UnreachableCode = UnreachableCode.NET_UNREACHABLE
    next_hop_mtu: int = 0

    def _header(self):
        # unused(2) | next-hop MTU(2), RFC 1191
        return struct.pack("!HH", 0, self.next_hop_mtu)

    @classmethod
    def try_decode(cls, payload, code=0):
        if payload is None or len(payload) < 4:
            return None
        try:
            code = UnreachableCode(code)
        except ValueError:
            return None
        _, next_hop_mtu = struct.unpack("!HH", payload[:4])
        raw_data, embedded = _quote(payload[4:], None)
        return cls(raw_data=raw_data, embedded=embedded,
                   code=code, next_hop_mtu=next_hop_mtu)

    @classmethod
    def create(cls, code=UnreachableCode.NET_UNREACHABLE, next_hop_mtu=0,
               raw_data=b"", embedded=None):
        raw_data, embedded = _quote(raw_data, embedded)
        message = cls(raw_data=raw_data, embedded=embedded,
                      code=UnreachableCode(code),
                      next_hop_mtu=_check_u16("next_hop_mtu", next_hop_mtu))
        return ICMPPacket.build(message, message.code)


@register_message
@dataclass(frozen=True)
class TimeExceeded(_QuotingMessage):
    icmp_type: ClassVar[int] = ICMP_TIME_EXCEEDED
    name: ClassVar[str] = "Time Exceeded"


@register_message
@dataclass(frozen=True)
class SourceQuench(_QuotingMessage):
    icmp_type: ClassVar[int] = ICMP_SOURCE_QUENCH
    name: ClassVar[str] = "Source Quench"


@register_message
@dataclass(frozen=True)
class ParameterProblem(_QuotingMessage):
    icmp_type: ClassVar[int] = ICMP_PARAMETER_PROBLEM
    name: ClassVar[str] = "Parameter Problem"

    pointer: int = 0

    def _header(self):
        # pointer(1) | unused(3)
        return struct.pack("!B3x", self.pointer)

    @classmethod
    def try_decode(cls, payload, code=0):
        if payload is None or len(payload) < 4:
            return None
        raw_data, embedded = _quote(payload[4:], None)
        return cls(raw_data=raw_data, embedded=embedded, pointer=payload[0])

    @classmethod
    def create(cls, pointer=0, raw_data=b"", embedded=None, code=0):
        if not 0 <= pointer <= 0xFF:
            raise ValueError(f"pointer must fit in 8 bits, got {pointer}")
        raw_data, embedded = _quote(raw_data, embedded)
        message = cls(raw_data=raw_data, embedded=embedded, pointer=pointer)
        return ICMPPacket.build(message, code)


@register_message
@dataclass(frozen=True)
class Redirect(ICMPMessage):
    icmp_type: ClassVar[int] = ICMP_REDIRECT
    name: ClassVar[str] = "Redirect"

    code: RedirectCode = RedirectCode.NETWORK
    gateway_address: ipaddress.IPv4Address = ipaddress.IPv4Address(0)
    raw_data: bytes = b""

    def encode(self):
        return self.gateway_address.packed + self.raw_data

    @classmethod
    def try_decode(cls, payload, code=0):
        if payload is None or len(payload) < 4:
            return None
        try:
            code = RedirectCode(code)
        except ValueError:
            return None
        return cls(code=code,
                   gateway_address=ipaddress.IPv4Address(bytes(payload[:4])),
                   raw_data=bytes(payload[4:]))

    @classmethod
    def create(cls, code=RedirectCode.NETWORK, gateway_address="0.0.0.0", raw_data=b""):
        message = cls(code=RedirectCode(code),
                      gateway_address=ipaddress.IPv4Address(gateway_address),
                      raw_data=bytes(raw_data))
        return ICMPPacket.build(message, message.code)


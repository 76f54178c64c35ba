import struct
from dataclasses import dataclass, field
from typing import Any, Optional

from pingsense.icmp.checksum import checksum, verify

ICMP_HEADER_SIZE = 4

# icmp type -> message class, filled in by register_message
MESSAGE_TYPES = {}


def register_message(message_class):
    """Bind a message class to its ICMP type for ICMPPacket.try_decode."""
    MESSAGE_TYPES[message_class.icmp_type] = message_class
    return message_class


@dataclass(frozen=True)
class ICMPPacket:
    """
    The common ICMP header wrapped around one message:

        type(1) | code(1) | checksum(2, big-endian) | message payload

    Packets built with `build` (or a message `create` factory) always carry
    the checksum of their own bytes. Decoded packets keep the checksum found
    on the wire, which may be wrong; see `checksum_valid`.
    """

    type: int
    code: int
    checksum: int
    message: Any
    raw: bytes = field(default=b"", compare=False, repr=False)

    @classmethod
    def build(cls, message, code: Optional[int] = None) -> "ICMPPacket":
        if code is None:
            code = getattr(message, "code", 0)
        code = int(code)
        if not 0 <= code <= 0xFF:
            raise ValueError(f"code must fit in 8 bits, got {code}")
        payload = message.encode()
        return cls(message.icmp_type, code, cls._compute(message.icmp_type, code, payload), message)

    @staticmethod
    def _compute(icmp_type, code, payload):
        return checksum(struct.pack("!BBH", icmp_type, code, 0) + payload)

    def encode(self) -> bytes:
        payload = self.message.encode()
        value = self._compute(self.type, self.code, payload)
        return struct.pack("!BBH", self.type, self.code, value) + payload

    @property
    def checksum_valid(self) -> bool:
        if self.raw:
            return verify(self.raw)
        return self.checksum == self._compute(self.type, self.code, self.message.encode())

    @property
    def name(self) -> str:
        return self.message.name

    @classmethod
    def try_decode(cls, data: bytes) -> Optional["ICMPPacket"]:
        if data is None or len(data) < ICMP_HEADER_SIZE:
            return None

        icmp_type, code, value = struct.unpack("!BBH", data[:ICMP_HEADER_SIZE])
        message_class = MESSAGE_TYPES.get(icmp_type)
        if message_class is None:
            return None

        message = message_class.try_decode(bytes(data[ICMP_HEADER_SIZE:]), code)
        if message is None:
            return None

        return cls(icmp_type, code, value, message, bytes(data))

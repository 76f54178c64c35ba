import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import struct

import pytest

from pingsense.icmp.checksum import checksum, verify


def test_rfc1071_example():
    # worked example from RFC 1071 section 3
    data = bytes([0x00, 0x01, 0xf2, 0x03, 0xf4, 0xf5, 0xf6, 0xf7])
    assert checksum(data) == 0x220d


def test_odd_length_pads_low_byte():
    assert checksum(b"\x01") == 0xfeff
    assert checksum(b"\x12\x34\x56") == checksum(b"\x12\x34\x56\x00")


def test_empty_buffer():
    assert checksum(b"") == 0xffff


def test_carries_are_folded():
    # 0xffff + 0xffff = 0x1fffe -> 0xffff -> complement 0
    assert checksum(b"\xff\xff\xff\xff") == 0x0000


@pytest.mark.parametrize("payload", [
    b"",
    b"a",
    b"hello world",
    bytes(range(256)),
    b"\xff" * 1001,
])
def test_inserted_checksum_verifies(payload):
    header = struct.pack("!BBH", 8, 0, 0)
    value = checksum(header + payload)
    packet = struct.pack("!BBH", 8, 0, value) + payload

    assert checksum(packet) == 0
    assert verify(packet)


def test_corrupted_buffer_does_not_verify():
    header = struct.pack("!BBH", 0, 0, 0)
    payload = b"\x12\x34\x00\x01payload"
    packet = bytearray(struct.pack("!BBH", 0, 0, checksum(header + payload)) + payload)
    packet[-1] ^= 0x01

    assert not verify(bytes(packet))

import struct


def checksum(data: bytes) -> int:
    """
    Internet checksum (RFC 1071).

    - data is summed as big-endian 16-bit words
    - an odd trailing byte is the high byte of a zero padded word
    - carries are folded back until none remain
    - the one's complement of the low 16 bits is returned
    """
    if len(data) % 2:
        data += b"\x00"

    total = sum(struct.unpack("!%dH" % (len(data) // 2), data))

    while total >> 16:
        total = (total & 0xFFFF) + (total >> 16)

    return ~total & 0xFFFF


def verify(data: bytes) -> bool:
    # a buffer carrying its own checksum sums to zero
    return checksum(data) == 0

from scapy.layers.inet import IP
from scapy.packet import Raw

from pingsense.icmp.messages import EchoReply, EchoRequest
from pingsense.icmp.packet import ICMPPacket

LOCAL = "192.0.2.1"
REMOTE = "198.51.100.7"


def ipv4(icmp_bytes, src=REMOTE, dst=LOCAL, proto=1):
    return bytes(IP(src=src, dst=dst, proto=proto, ttl=57) / Raw(icmp_bytes))


def quoted_request(identifier, sequence, data, truncate=None):
    # the datagram a router quotes back: our IPv4 header plus the echo request
    icmp_bytes = EchoRequest.create(identifier, sequence, data).encode()
    datagram = bytes(IP(src=LOCAL, dst=REMOTE, proto=1, ttl=1) / Raw(icmp_bytes))
    if truncate is not None:
        datagram = datagram[:truncate]
    return datagram


def echo_reply_for(sent, identifier=None, sequence=None, data=None):
    request = ICMPPacket.try_decode(sent).message
    return EchoReply.create(
        request.identifier if identifier is None else identifier,
        request.sequence if sequence is None else sequence,
        request.data if data is None else data,
    ).encode()

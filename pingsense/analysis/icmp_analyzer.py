import logging

from pingsense.analysis.ipv4_analyzer import IPv4Analyzer
from pingsense.icmp.messages import (
    DestinationUnreachable,
    EchoReply,
    EchoRequest,
    Redirect,
    TimeExceeded,
)
from pingsense.icmp.packet import MESSAGE_TYPES, ICMPPacket
from pingsense.probe.errors import ICMPErrors

logger = logging.getLogger(__name__)


class ICMPAnalyzer:
    ICMP_TYPES = {
        0:  "Echo Reply",
        3:  "Destination Unreachable",
        4:  "Source Quench",
        5:  "Redirect",
        8:  "Echo Request",
        9:  "Router Advertisement",
        10: "Router Solicitation",
        11: "Time Exceeded",
        12: "Parameter Problem",
        13: "Timestamp",
        14: "Timestamp Reply",
        40: "Photuris",
        41: "Experimental Mobility Protocols (Seamoby)",
        42: "Extended Echo Request",
        43: "Extended Echo Reply",
        253: "RFC3692-style Experiment 1",
        254: "RFC3692-style Experiment 2",
        255: "Reserved"
    }

    # error messages that end a probe; source quench, redirect and parameter
    # problem about it leave the probe waiting for its reply
    ERROR_CLASSES = {
        DestinationUnreachable: ICMPErrors.Unreachable,
        TimeExceeded: ICMPErrors.TTLExceeded,
    }

    def __init__(self):
        self.ipv4_analyzer = IPv4Analyzer()

    def get_type_name(self, icmp_type):
        return self.ICMP_TYPES.get(icmp_type, "Unknown")

    def unwrap(self, datagram):
        """ICMP bytes of a raw IPv4 datagram, or None if it does not carry ICMP."""
        ip = self.ipv4_analyzer.parse(datagram)
        if ip is None or ip.proto != IPv4Analyzer.PROTO_ICMP:
            return None
        return self.ipv4_analyzer.payload(ip)

    def quoted_echo(self, ip):
        # the echo request quoted inside an ICMP error, if that is what it carries
        if ip is None or ip.proto != IPv4Analyzer.PROTO_ICMP:
            return None
        packet = ICMPPacket.try_decode(self.ipv4_analyzer.payload(ip))
        if packet is None or not isinstance(packet.message, EchoRequest):
            return None
        return packet.message

    def classify(self, icmp_bytes, identifier, sequence, data):
        """
        Map ICMP bytes received during a probe to the probe outcome.

        Returns None for traffic that has nothing to do with the probe: other
        sessions' replies, our own request looped back, errors quoting other
        datagrams, advisory errors (source quench, redirect, parameter problem)
        and ICMP types the codec does not know.
        """
        packet = ICMPPacket.try_decode(icmp_bytes)
        if packet is None:
            if icmp_bytes and icmp_bytes[0] not in MESSAGE_TYPES:
                logger.debug("Ignoring ICMP type %d", icmp_bytes[0])
                return None
            return ICMPErrors.InvalidReply
        return self.classify_packet(packet, identifier, sequence, data)

    def classify_packet(self, packet, identifier, sequence, data):
        message = packet.message

        if isinstance(message, EchoReply):
            if packet.code != 0 or message.identifier != identifier or message.sequence != sequence:
                return None
            if message.data == data:
                return ICMPErrors.Success
            return ICMPErrors.InvalidReply

        error = self.ERROR_CLASSES.get(type(message))
        if error is None:
            return None

        if isinstance(message, TimeExceeded) and packet.code not in (0, 1):
            return None

        request = self.quoted_echo(message.embedded)
        if request is None:
            return None
        if request.identifier != identifier or request.sequence != sequence:
            return None
        # routers may quote only the first 8 bytes of the echo request
        if data[:len(request.data)] != request.data:
            return None

        return error

    def analyze(self, packet):
        if packet is None:
            return None

        message = packet.message
        info = {
            'type': self.get_type_name(packet.type),
            'type_id': packet.type,
            'code': packet.code,
            'checksum': packet.checksum,
            'checksum_valid': packet.checksum_valid,
            'id': getattr(message, 'identifier', None),
            'sequence': getattr(message, 'sequence', None),
            'data': getattr(message, 'data', None),
            'next_hop_mtu': getattr(message, 'next_hop_mtu', None),
            'gateway': str(message.gateway_address) if isinstance(message, Redirect) else None,
            'pointer': getattr(message, 'pointer', None),
            'embedded': None,
        }

        embedded = getattr(message, 'embedded', None)
        if embedded is not None:
            info['embedded'] = self.ipv4_analyzer.analyze(embedded)
            request = self.quoted_echo(embedded)
            if request is not None:
                info['embedded']['echo_id'] = request.identifier
                info['embedded']['echo_sequence'] = request.sequence

        return info

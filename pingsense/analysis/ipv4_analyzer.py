from scapy.layers.inet import IP

IPV4_MIN_HEADER = 20


class IPv4Analyzer:
    # IP Protocols
    PROTOCOLS = {
        1: "ICMP",
        6: "TCP",
        17: "UDP",
        41: "IPv6-in-IPv4",
        47: "GRE",
        50: "ESP",
        51: "AH",
        89: "OSPF",
        132: "SCTP",
    }

    PROTO_ICMP = 1

    # Flags
    FLAG_RESERVED = 0x4
    FLAG_DF = 0x2
    FLAG_MF = 0x1

    def get_protocol_name(self, proto):
        return self.PROTOCOLS.get(proto, f"Unknown({proto})")

    def parse(self, data):
        """
        Dissect raw bytes as an IPv4 datagram.

        Returns the scapy IP packet, or None when the bytes are not a plausible
        IPv4 header: too short, wrong version, IHL below 5, header longer than
        the buffer or a total length smaller than the header. The payload may be
        truncated, which is normal for datagrams quoted inside ICMP errors.
        """
        if not data or len(data) < IPV4_MIN_HEADER:
            return None

        version = data[0] >> 4
        header_size = (data[0] & 0x0F) * 4
        total_length = int.from_bytes(data[2:4], "big")

        if version != 4 or header_size < IPV4_MIN_HEADER:
            return None
        if len(data) < header_size or total_length < header_size:
            return None

        return IP(bytes(data))

    def payload(self, ip):
        # bytes after the header, bounded by the total length field
        raw = ip.original or bytes(ip)
        return raw[ip.ihl * 4:ip.len]

    def analyze(self, ip):
        if ip is None:
            return None

        flags = int(ip.flags)
        is_fragmented = self.is_fragmented(ip)

        return {
            "version": ip.version,
            "header_size": ip.ihl * 4,
            "total_length": ip.len,
            "src_ip": ip.src,
            "dst_ip": ip.dst,
            "protocol": ip.proto,
            "protocol_name": self.get_protocol_name(ip.proto),
            "ttl": ip.ttl,
            "identification": ip.id,
            "checksum": ip.chksum,
            "is_fragmented": is_fragmented,
            "fragment_offset": ip.frag if is_fragmented else None,
            "flag_df": int(bool(flags & self.FLAG_DF)),
            "flag_mf": int(bool(flags & self.FLAG_MF)),
        }

    def is_fragmented(self, ip):
        flag_mf = int(ip.flags) & self.FLAG_MF
        return bool(flag_mf or ip.frag > 0)

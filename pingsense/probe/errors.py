from enum import IntEnum


class ICMPErrors(IntEnum):
    Success = 0
    DNSError = 1
    SendError = 2
    Timeout = 3
    TTLExceeded = 4
    Unreachable = 5
    InvalidReply = 6
    Mixed = 7
    Unknown = 8


class PingSenseError(Exception):
    """Base class for errors raised by pingsense."""


class ResolutionError(PingSenseError):
    """The target hostname could not be resolved; no probe was sent."""

    error = ICMPErrors.DNSError

    def __init__(self, hostname, reason=None):
        self.hostname = hostname
        self.reason = reason
        message = f"Could not resolve {hostname}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class PingCancelled(PingSenseError):
    """The session was cancelled between two probes."""

    def __init__(self, results):
        self.results = tuple(results)
        super().__init__(f"Ping session cancelled after {len(self.results)} probe(s)")

import errno
import logging
import random
import socket
import string
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import closing
from datetime import timedelta

from pingsense.analysis.icmp_analyzer import ICMPAnalyzer
from pingsense.config import Settings
from pingsense.icmp.messages import EchoRequest
from pingsense.probe.errors import ICMPErrors, PingCancelled, ResolutionError
from pingsense.probe.results import PingResult, aggregate
from pingsense.probe.transport import RawSocketTransport, parse_address, resolve_host

logger = logging.getLogger(__name__)

TEST_DATA_ALPHABET = string.ascii_letters + string.digits

# receive errors that mean the request never made it out
SEND_ERRNOS = {errno.ECONNRESET, errno.ECONNREFUSED, errno.EMSGSIZE, errno.ENETRESET,
               errno.ENETUNREACH, errno.EHOSTUNREACH}


class Pinger:
    """
    Runs ping sessions: `repetitions` echo requests sent one after another
    over one raw socket, each answered by a PingResult, summarized into
    PingResults.

    The resolver, transport factory, random generator and clock are injected
    so sessions can run against scripted transports in tests.
    """

    def __init__(self, settings=None, resolver=None, transport_factory=None,
                 rng=None, clock=None, result_handler=None):
        self.settings = settings or Settings()
        self.resolver = resolver or resolve_host
        self.transport_factory = transport_factory or self._raw_transport
        self.rng = rng or random.Random()
        self.clock = clock or time.monotonic
        self.result_handler = result_handler
        self.analyzer = ICMPAnalyzer()

    def _raw_transport(self, address, timeout, ttl):
        return RawSocketTransport(address, timeout=timeout, ttl=ttl,
                                  buffer_size=self.settings.receive_buffer)

    def random_identifier(self, rng=None):
        return (rng or self.rng).randrange(0x10000)

    def random_text(self, length=None, rng=None):
        rng = rng or self.rng
        length = self.settings.test_data_length if length is None else length
        return "".join(rng.choice(TEST_DATA_ALPHABET) for _ in range(length))

    def resolve(self, target):
        address = parse_address(target)
        if address is not None:
            return address

        try:
            resolved = self.resolver(str(target))
        except ResolutionError:
            raise
        except OSError as exc:
            raise ResolutionError(target, str(exc)) from exc

        address = parse_address(resolved) if resolved is not None else None
        if address is None:
            raise ResolutionError(target, "no usable address")
        return address

    def ping(self, target, repetitions=None, timeout=None, identifier=None,
             sequence_start=0, test_data=None, ttl=None, on_result=None,
             cancel_event=None, rng=None):
        """
        Ping `target` (hostname, address string, IPv4Address or IPv6Address).

        Returns PingResults holding exactly `repetitions` outcomes. Raises
        ResolutionError before sending anything if a hostname cannot be
        resolved, and PingCancelled if `cancel_event` gets set; it is only
        looked at between probes. `on_result(sequence, repetitions, result)`
        is called after every probe. `rng` replaces the pinger's random
        generator for this session.
        """
        repetitions = self.settings.repetitions if repetitions is None else repetitions
        timeout = self.settings.timeout if timeout is None else timeout
        ttl = self.settings.ttl if ttl is None else ttl
        on_result = on_result or self.result_handler

        if isinstance(timeout, timedelta):
            timeout = timeout.total_seconds()
        if repetitions < 1:
            raise ValueError(f"repetitions must be at least 1, got {repetitions}")
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        if not 1 <= ttl <= 255:
            raise ValueError(f"ttl must be between 1 and 255, got {ttl}")
        if not 0 <= sequence_start <= 0xFFFF:
            raise ValueError(f"sequence_start must fit in 16 bits, got {sequence_start}")
        if identifier is not None and not 0 <= identifier <= 0xFFFF:
            raise ValueError(f"identifier must fit in 16 bits, got {identifier}")

        session_start = self.clock()
        address = self.resolve(target)

        if identifier is None:
            identifier = self.random_identifier(rng)
        if test_data is None:
            test_data = self.random_text(rng=rng)
        data = test_data.encode("utf-8") if isinstance(test_data, str) else bytes(test_data)

        logger.info("Pinging %s (%s) id=%d, %d probe(s), timeout %.3fs, ttl %d",
                    target, address, identifier, repetitions, timeout, ttl)

        results = []
        transport = self.transport_factory(address, timeout, ttl)

        with closing(transport):
            opened = self._open(transport, address)

            for i in range(repetitions):
                if cancel_event is not None and cancel_event.is_set():
                    logger.info("Ping session for %s cancelled after %d probe(s)", address, len(results))
                    raise PingCancelled(results)

                sequence = (sequence_start + i) & 0xFFFF
                if opened:
                    result = self._probe(transport, identifier, sequence, data, timeout)
                else:
                    result = PingResult(ICMPErrors.SendError, timedelta(0))

                logger.debug("%s seq=%d: %s in %.3f ms", address, sequence,
                             result.error.name, result.runtime_ms)
                results.append(result)

                if on_result is not None:
                    on_result(sequence, repetitions, result)

        summary = aggregate(results, timeout, self.clock() - session_start, address)
        logger.info("%s: %d/%d replies, %.0f%% loss", address,
                    summary.number_of_replies, repetitions, summary.packet_loss_percent)
        return summary

    def _open(self, transport, address):
        try:
            transport.open()
        except OSError as exc:
            logger.warning("Could not open raw socket for %s: %s", address, exc)
            return False
        return True

    def _probe(self, transport, identifier, sequence, data, timeout):
        request = EchoRequest.create(identifier, sequence, data)

        send_start = self.clock()
        try:
            transport.send(request.encode())
        except OSError as exc:
            logger.warning("Sending echo request seq=%d failed: %s", sequence, exc)
            return PingResult(ICMPErrors.SendError, timedelta(seconds=self.clock() - send_start))

        start = self.clock()
        deadline = start + timeout

        while True:
            remaining = deadline - self.clock()
            if remaining <= 0:
                return PingResult(ICMPErrors.Timeout, timedelta(seconds=timeout))

            try:
                datagram = transport.receive(remaining)
            except socket.timeout:
                return PingResult(ICMPErrors.Timeout, timedelta(seconds=timeout))
            except OSError as exc:
                error = ICMPErrors.SendError if exc.errno in SEND_ERRNOS else ICMPErrors.Unknown
                logger.warning("Receiving reply for seq=%d failed: %s", sequence, exc)
                return PingResult(error, timedelta(seconds=self.clock() - start))

            icmp_bytes = datagram
            if transport.includes_ip_header:
                icmp_bytes = self.analyzer.unwrap(datagram)
                if icmp_bytes is None:
                    logger.debug("Datagram of %d bytes is not an ICMP over IPv4 packet", len(datagram))
                    return PingResult(ICMPErrors.InvalidReply, timedelta(seconds=self.clock() - start))

            error = self.analyzer.classify(icmp_bytes, identifier, sequence, data)
            if error is None:
                logger.debug("Discarding unrelated ICMP datagram (%d bytes)", len(icmp_bytes))
                continue

            return PingResult(error, timedelta(seconds=self.clock() - start))

    def ping_many(self, targets, workers=None, **kwargs):
        """
        Ping several targets concurrently, one session and one socket per
        target. Returns {target: PingResults or ResolutionError}.
        """
        workers = workers or self.settings.workers
        targets = list(dict.fromkeys(targets))
        # one generator per session, seeded in target order
        rngs = [random.Random(self.rng.getrandbits(64)) for _ in targets]

        def run(target, rng):
            try:
                return self.ping(target, rng=rng, **kwargs)
            except ResolutionError as exc:
                logger.warning("%s", exc)
                return exc

        with ThreadPoolExecutor(max_workers=workers) as pool:
            return dict(zip(targets, pool.map(run, targets, rngs)))


def ping(target, **kwargs):
    return Pinger().ping(target, **kwargs)

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional, Tuple

import numpy as np

from pingsense.probe.errors import ICMPErrors


def as_timedelta(value):
    if isinstance(value, timedelta):
        return value
    return timedelta(seconds=value)


def to_ms(value):
    return value / timedelta(milliseconds=1)


@dataclass(frozen=True, order=True)
class PingResult:
    """Outcome of one probe. Sorts by error first, then by runtime."""

    error: ICMPErrors
    runtime: timedelta

    @property
    def success(self):
        return self.error == ICMPErrors.Success

    @property
    def runtime_ms(self):
        return to_ms(self.runtime)


@dataclass(frozen=True)
class PingResults:
    success: bool
    error: ICMPErrors
    results: Tuple[PingResult, ...]
    number_of_replies: int
    packet_loss_percent: float
    min: timedelta
    avg: timedelta
    max: timedelta
    stddev: float
    timeout: timedelta
    runtime: timedelta
    address: Optional[Any] = None   # resolved IPv4Address / IPv6Address

    def to_dict(self):
        return {
            "address": str(self.address) if self.address is not None else None,
            "success": self.success,
            "error": self.error.name,
            "number_of_replies": self.number_of_replies,
            "number_of_tests": len(self.results),
            "packet_loss_percent": self.packet_loss_percent,
            "min_ms": to_ms(self.min),
            "avg_ms": to_ms(self.avg),
            "max_ms": to_ms(self.max),
            "stddev_ms": self.stddev,
            "timeout_ms": to_ms(self.timeout),
            "runtime_ms": to_ms(self.runtime),
            "results": [
                {"error": result.error.name, "runtime_ms": result.runtime_ms}
                for result in self.results
            ],
        }


def aggregate(results, timeout, runtime, address=None) -> PingResults:
    """
    Reduce the probe outcomes of one session to a PingResults summary.

    Statistics only look at successful probes. Without any success min, max
    and avg fall back to the timeout and stddev to 0.
    """
    results = tuple(results)
    timeout = as_timedelta(timeout)
    runtime = as_timedelta(runtime)

    successes = [result for result in results if result.success]
    number_of_replies = len(successes)

    if results:
        packet_loss_percent = float(round(100 - 100 * number_of_replies / len(results)))
    else:
        packet_loss_percent = 100.0

    errors = {result.error for result in results}
    if len(errors) == 1:
        error = errors.pop()
    elif errors:
        error = ICMPErrors.Mixed
    else:
        error = ICMPErrors.Unknown

    if successes:
        rtts = np.array([result.runtime_ms for result in successes], dtype=float)
        min_rtt = min(result.runtime for result in successes)
        max_rtt = max(result.runtime for result in successes)
        avg_rtt = timedelta(milliseconds=float(np.mean(rtts)))
        stddev = float(np.std(rtts))
    else:
        min_rtt = max_rtt = avg_rtt = timeout
        stddev = 0.0

    return PingResults(
        success=bool(results) and number_of_replies == len(results),
        error=error,
        results=results,
        number_of_replies=number_of_replies,
        packet_loss_percent=packet_loss_percent,
        min=min_rtt,
        avg=avg_rtt,
        max=max_rtt,
        stddev=stddev,
        timeout=timeout,
        runtime=runtime,
        address=address,
    )

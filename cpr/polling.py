from __future__ import annotations

import sys
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable


class PollOutcome(str, Enum):
    MATCHED = "matched"
    NOT_YET_MATCHED = "not_yet_matched"
    PROBE_FAILED = "probe_failed"


class PollResult(str, Enum):
    SUCCESS = "success"
    TIMED_OUT = "timed_out"


Clock = Callable[[], float]
Sleeper = Callable[[float], None]


@dataclass(frozen=True)
class Deadline:
    """Absolute point on a monotonic clock, fixed when the operation starts."""

    at: float
    clock: Clock = field(default=time.monotonic, repr=False, compare=False)

    @classmethod
    def after(cls, seconds: float, clock: Clock = time.monotonic) -> Deadline:
        return cls(at=clock() + max(0.0, float(seconds)), clock=clock)

    def remaining(self) -> float:
        return max(0.0, self.at - self.clock())

    def expired(self) -> bool:
        return self.clock() >= self.at


def print_progress(outcome: PollOutcome) -> None:
    sys.stdout.write(".")
    sys.stdout.flush()


def poll_until(
    deadline: Deadline,
    interval_s: float,
    probe: Callable[[], PollOutcome],
    progress: Callable[[PollOutcome], None] | None = print_progress,
    sleep: Sleeper = time.sleep,
) -> PollResult:
    """Call `probe` every `interval_s` seconds until it matches or `deadline` passes.

    PROBE_FAILED is neither progress nor failure: the loop just sleeps and
    tries again. No probe is issued once the deadline has passed.
    """
    interval_s = max(0.0, float(interval_s))
    while not deadline.expired():
        outcome = probe()
        if outcome is PollOutcome.MATCHED:
            return PollResult.SUCCESS
        if progress is not None:
            progress(outcome)
        remaining = deadline.remaining()
        if remaining <= 0:
            break
        sleep(min(interval_s, remaining))
    return PollResult.TIMED_OUT

# PATH: core/retry.py
"""
Bounded retry over ranked candidate executors.

One combinator serves three call sites:
- RPC failover (candidates = endpoints, one or two passes)
- approval verification (one candidate, a few passes with backoff)
- receipt polling (one candidate, fixed interval until a deadline)

Candidates are always tried in the given order on every pass; nothing
about a previous success or failure changes the order.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple, TypeVar

from core.time import monotonic

T = TypeVar("T")

Candidate = Tuple[str, Callable[[], Awaitable[T]]]


@dataclass(frozen=True)
class RetryPolicy:
    """
    attempts: number of full passes over the candidate list
    base_delay: pause before the second pass, in seconds
    multiplier: growth factor for each later pause (1.0 = fixed interval)
    max_delay: cap for a single pause
    deadline: optional limit for the whole call, in seconds
    """
    attempts: int = 1
    base_delay: float = 0.5
    max_delay: float = 5.0
    multiplier: float = 2.0
    deadline: Optional[float] = None

    def __post_init__(self):
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")

    def delay_for(self, pass_index: int) -> float:
        """Pause after pass number pass_index (0-based)."""
        return min(self.base_delay * (self.multiplier ** pass_index), self.max_delay)

    @classmethod
    def polling(cls, interval: float, timeout: float) -> "RetryPolicy":
        """Fixed-interval policy that gives up after roughly timeout seconds."""
        attempts = max(1, int(timeout / interval) + 1) if interval > 0 else 1
        return cls(
            attempts=attempts,
            base_delay=interval,
            max_delay=interval,
            multiplier=1.0,
            deadline=timeout,
        )


SINGLE_PASS = RetryPolicy(attempts=1)
PRECHECK_POLICY = RetryPolicy(attempts=2, base_delay=0.5, max_delay=2.0)


@dataclass(frozen=True)
class AttemptFailure:
    candidate: str
    attempt: int
    error_type: str
    error: str

    def to_dict(self) -> dict:
        return {
            "candidate": self.candidate,
            "attempt": self.attempt,
            "error_type": self.error_type,
            "error": self.error,
        }


class RetryExhausted(Exception):
    """Every candidate failed on every pass, or the deadline elapsed."""

    def __init__(self, failures: List[AttemptFailure], deadline_hit: bool = False):
        self.failures = failures
        self.deadline_hit = deadline_hit
        last = failures[-1].error if failures else "no attempts made"
        super().__init__(f"{len(failures)} attempt(s) failed; last: {last}")


def _always(_: BaseException) -> bool:
    return True


async def retry_with_backoff(
    candidates: Sequence[Candidate],
    policy: RetryPolicy = SINGLE_PASS,
    should_retry: Callable[[BaseException], bool] = _always,
    accept: Optional[Callable[[Any], bool]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Any:
    """
    Run candidates in order until one returns an accepted result.

    Args:
        candidates: (name, factory) pairs; factory() returns a fresh awaitable
        policy: passes, backoff and deadline
        should_retry: exceptions for which it returns False propagate at once
        accept: optional predicate; a rejected result counts as a failure
        sleep: awaitable sleep, injectable for tests

    Raises:
        RetryExhausted: carrying one AttemptFailure per failed attempt
    """
    if not candidates:
        raise RetryExhausted([])

    failures: List[AttemptFailure] = []
    started = monotonic()

    for pass_index in range(policy.attempts):
        for name, factory in candidates:
            try:
                result = await factory()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if not should_retry(e):
                    raise
                failures.append(AttemptFailure(name, pass_index + 1, type(e).__name__, str(e)))
                continue

            if accept is not None and not accept(result):
                failures.append(AttemptFailure(name, pass_index + 1, "Rejected", "result not accepted"))
                continue
            return result

        if pass_index + 1 >= policy.attempts:
            break

        delay = policy.delay_for(pass_index)
        if policy.deadline is not None and monotonic() - started + delay > policy.deadline:
            raise RetryExhausted(failures, deadline_hit=True)
        await sleep(delay)

    raise RetryExhausted(failures)

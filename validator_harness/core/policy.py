"""
Retry policies for waits performed by the harness.
"""

from __future__ import annotations

from dataclasses import dataclass, replace


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget, per-attempt timeout and delay between attempts (seconds)."""

    max_attempts: int
    per_attempt_timeout: float
    retry_delay: float = 0.0

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ValueError(f"max_attempts must be >= 0, got {self.max_attempts}")
        if self.per_attempt_timeout < 0:
            raise ValueError(
                f"per_attempt_timeout must be >= 0, got {self.per_attempt_timeout}"
            )
        if self.retry_delay < 0:
            raise ValueError(f"retry_delay must be >= 0, got {self.retry_delay}")

    def with_attempts(self, max_attempts: int) -> RetryPolicy:
        return replace(self, max_attempts=max_attempts)


# SIGTERM re-sent every 2s, up to 10 times, before escalating to SIGKILL
TERMINATION_POLICY = RetryPolicy(max_attempts=10, per_attempt_timeout=2.0)

# 50 retries, 500ms apart, each TCP probe bounded by 5s
READINESS_POLICY = RetryPolicy(max_attempts=50, per_attempt_timeout=5.0, retry_delay=0.5)

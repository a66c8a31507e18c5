"""Rolling per-source health tracking.

For every source the tracker keeps a trailing window of fetch outcomes and
response times plus the current consecutive-failure streak.  A source is
unhealthy once its streak reaches the failure threshold, or once the window
holds at least ``min_attempts`` outcomes and the success rate in it is below
the configured floor.

State is a pure function of the fetch history: :meth:`SourceHealthTracker.replay`
rebuilds it from persisted ``article_fetch`` log entries in timestamp order.
"""

from __future__ import annotations

import uuid
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field


@dataclass
class _SourceState:
    outcomes: deque = field(default_factory=deque)
    response_times: deque = field(default_factory=deque)
    consecutive_failures: int = 0
    total_attempts: int = 0


@dataclass(frozen=True)
class HealthSnapshot:
    """Derived health metrics of one source at one point in time."""

    success_rate: float
    avg_response_time_ms: float | None
    consecutive_failures: int
    is_healthy: bool
    window_attempts: int
    total_attempts: int


class SourceHealthTracker:
    """Tracks success rate, response time and failure streak per source.

    Args:
        failure_threshold: Consecutive failures that make a source unhealthy.
        min_success_rate: Success-rate floor over the trailing window.
        window_size: Number of most recent attempts kept per source.
        min_attempts: Attempts required in the window before the
            success-rate floor applies.
    """

    def __init__(
        self,
        *,
        failure_threshold: int = 3,
        min_success_rate: float = 0.5,
        window_size: int = 20,
        min_attempts: int = 5,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.min_success_rate = min_success_rate
        self.window_size = window_size
        self.min_attempts = min_attempts
        self._states: dict[uuid.UUID, _SourceState] = {}

    @classmethod
    def from_settings(cls, settings: object) -> SourceHealthTracker:
        return cls(
            failure_threshold=settings.scraper_health_failure_threshold,
            min_success_rate=settings.scraper_health_min_success_rate,
            window_size=settings.scraper_health_window_size,
            min_attempts=settings.scraper_health_min_attempts,
        )

    def _state(self, source_id: uuid.UUID) -> _SourceState:
        state = self._states.get(source_id)
        if state is None:
            state = _SourceState(
                outcomes=deque(maxlen=self.window_size),
                response_times=deque(maxlen=self.window_size),
            )
            self._states[source_id] = state
        return state

    def record_attempt(
        self,
        source_id: uuid.UUID,
        success: bool,
        response_ms: float | None,
    ) -> HealthSnapshot:
        """Record one article fetch attempt and return the new snapshot."""
        state = self._state(source_id)
        state.outcomes.append(bool(success))
        if response_ms is not None:
            state.response_times.append(float(response_ms))
        state.total_attempts += 1
        if success:
            state.consecutive_failures = 0
        else:
            state.consecutive_failures += 1
        return self.snapshot(source_id)

    def replay(
        self,
        source_id: uuid.UUID,
        attempts: Iterable[tuple[bool, float | None]],
    ) -> HealthSnapshot:
        """Rebuild a source's state from ``(success, response_ms)`` history."""
        self._states.pop(source_id, None)
        self._state(source_id)
        for success, response_ms in attempts:
            self.record_attempt(source_id, success, response_ms)
        return self.snapshot(source_id)

    def reset_streak(self, source_id: uuid.UUID) -> None:
        """Clear the failure streak; the trailing window is kept."""
        self._state(source_id).consecutive_failures = 0

    def success_rate(self, source_id: uuid.UUID) -> float:
        outcomes = self._state(source_id).outcomes
        if not outcomes:
            return 1.0
        return sum(outcomes) / len(outcomes)

    def is_healthy(self, source_id: uuid.UUID) -> bool:
        state = self._state(source_id)
        if state.consecutive_failures >= self.failure_threshold:
            return False
        if len(state.outcomes) >= self.min_attempts:
            return self.success_rate(source_id) >= self.min_success_rate
        return True

    def consecutive_failures(self, source_id: uuid.UUID) -> int:
        return self._state(source_id).consecutive_failures

    def snapshot(self, source_id: uuid.UUID) -> HealthSnapshot:
        state = self._state(source_id)
        times = state.response_times
        return HealthSnapshot(
            success_rate=round(self.success_rate(source_id), 4),
            avg_response_time_ms=round(sum(times) / len(times), 1) if times else None,
            consecutive_failures=state.consecutive_failures,
            is_healthy=self.is_healthy(source_id),
            window_attempts=len(state.outcomes),
            total_attempts=state.total_attempts,
        )

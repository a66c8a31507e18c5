"""Scraping job lifecycle state machine.

::

    new ──> in-progress ──> successful | partial | failed | cancelled
     │
     └────> failed

``new -> failed`` covers a worker that could not even start the run.  A
job cancelled while still ``new`` keeps its cancel flag and is cancelled at
the first checkpoint after it starts.
Terminal states have no outgoing transitions.
"""

from __future__ import annotations

import enum

from veritas_scraper.core.exceptions import InvalidJobTransitionError


class JobStatus(str, enum.Enum):
    """Lifecycle states of a scraping job."""

    NEW = "new"
    IN_PROGRESS = "in-progress"
    SUCCESSFUL = "successful"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES: frozenset[JobStatus] = frozenset(
    {JobStatus.SUCCESSFUL, JobStatus.PARTIAL, JobStatus.FAILED, JobStatus.CANCELLED}
)

_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.NEW: frozenset({JobStatus.IN_PROGRESS, JobStatus.FAILED}),
    JobStatus.IN_PROGRESS: frozenset(TERMINAL_STATES),
    JobStatus.SUCCESSFUL: frozenset(),
    JobStatus.PARTIAL: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


def can_transition(current: JobStatus | str, target: JobStatus | str) -> bool:
    return JobStatus(target) in _TRANSITIONS[JobStatus(current)]


def ensure_transition(current: JobStatus | str, target: JobStatus | str) -> JobStatus:
    """Validate a transition and return the target status.

    Raises:
        InvalidJobTransitionError: If the state machine forbids it.
    """
    if not can_transition(current, target):
        raise InvalidJobTransitionError(str(JobStatus(current).value), str(JobStatus(target).value))
    return JobStatus(target)


def final_status(*, cancelled: bool, scraped: int, errors: int) -> JobStatus:
    """Resolve the terminal status of a job that ran to its end.

    Cancellation wins; otherwise zero scraped articles is ``failed``, any
    error alongside scraped articles is ``partial``, and a clean run is
    ``successful``.
    """
    if cancelled:
        return JobStatus.CANCELLED
    if scraped == 0:
        return JobStatus.FAILED
    if errors > 0:
        return JobStatus.PARTIAL
    return JobStatus.SUCCESSFUL

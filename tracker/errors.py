"""
Error taxonomy for the slip tracker. Nothing here is fatal to the process:
every error is recovered where it is caught and at worst leaves a slip
PENDING with stale descriptive fields.
"""

from __future__ import annotations


class TrackerError(Exception):
    """Base class for slip tracker errors."""
    pass


class TransportError(TrackerError):
    """Channel connection dropped or could not be opened. Recovered by backoff."""
    pass


class DecodeError(TrackerError):
    """Malformed prediction tuple or push payload. The item is dropped."""
    pass


class MergeConflict(TrackerError):
    """
    Two sources disagree on a field already settled by a higher-priority
    source. Resolved by the priority rule; kept as a type so the merger can
    describe the conflict in its debug log.
    """

    def __init__(self, slip_id: int, field: str, kept: object, rejected: object):
        self.slip_id = slip_id
        self.field = field
        self.kept = kept
        self.rejected = rejected
        super().__init__(
            f"slip {slip_id}: kept {field}={kept!r}, rejected {rejected!r}"
        )


class PollError(TrackerError):
    """Enrichment or live-evaluation request failed. Retried next interval."""
    pass

"""
Error taxonomy for the search saga.

Only dispatch-level failures ever reach the caller.  Stage failures
(timeouts, remote errors, malformed replies) are recovered by the
stage's fallback policy, and stale replies are simply dropped.
"""

from __future__ import annotations


class SearchSagaError(Exception):
    """Base class for all coordinator errors."""


class TransientStageFailure(SearchSagaError):
    """A stage timed out, replied with an error, or sent a malformed reply."""

    def __init__(self, stage: str, reason: str):
        super().__init__(f"{stage}: {reason}")
        self.stage = stage
        self.reason = reason


class SearchDispatchError(SearchSagaError):
    """A stage request could not be published; the whole search fails."""

    def __init__(self, correlation_id: str, stage: str, cause: Exception | None = None):
        super().__init__(f"Could not dispatch {stage} request for {correlation_id}: {cause}")
        self.correlation_id = correlation_id
        self.stage = stage
        self.cause = cause


class BusClosedError(SearchSagaError):
    """Raised by the message bus when publishing after shutdown."""


class DuplicateCorrelationIdError(SearchSagaError):
    """A saga with the same correlation id is already in flight."""

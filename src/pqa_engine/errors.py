"""Error kinds raised by the scoring engine.

Transient I/O failures (:class:`AggregationFailure`, :class:`StoreWriteFailure`,
:class:`PassTimeout`) are retried by the coordinator.  Everything else is
either returned to the caller (:class:`UnknownAccount`), fatal at startup
(:class:`ConfigurationError`), or a programming error (:class:`FactorSetError`).
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class PQAEngineError(Exception):
    """Base class for all engine errors."""


class UnknownAccount(PQAEngineError, LookupError):
    """Query for an account that has no snapshots."""

    def __init__(self, account_id: str) -> None:
        super().__init__(f"No score recorded for account {account_id!r}")
        self.account_id = account_id


class ConfigurationError(PQAEngineError):
    """Invalid scoring configuration.  Fatal at load time."""


class AggregationFailure(PQAEngineError):
    """Upstream signal or identity data was unavailable."""


class PassTimeout(AggregationFailure):
    """A recomputation pass exceeded its execution budget."""


class StoreWriteFailure(PQAEngineError):
    """A snapshot append failed.  Nothing was committed."""


class SupersededSnapshotError(PQAEngineError):
    """A completed pass lost to a pass computed against fresher data."""


class FactorSetError(PQAEngineError, ValueError):
    """Malformed factor set handed to a pure scoring stage."""


RETRYABLE_ERRORS: tuple[type[Exception], ...] = (AggregationFailure, StoreWriteFailure)


def log_pass_failure(*, account_id: str, exc: Exception, attempt: int) -> None:
    """Log a failed pass with full details, at a level matching its kind."""
    if isinstance(exc, RETRYABLE_ERRORS):
        logger.warning(
            "Recompute pass for %s failed on attempt %d: %s", account_id, attempt, exc,
        )
    else:
        logger.exception(
            "Recompute pass for %s failed with a non-retryable error",
            account_id,
            exc_info=exc,
        )

"""Application-wide exception hierarchy for Listing Harvester.

All custom exceptions subclass ``ListingHarvesterError``, enabling
consistent error handling and structured logging across the application.

Hierarchy::

    ListingHarvesterError
    ├── RetryExhaustedError      (attempts: int, last_error: BaseException)
    ├── AdapterError             (site: str | None)
    │   ├── UnknownSiteError
    │   └── PaginationError
    ├── JobNotFoundError         (job_id: str)
    └── JobValidationError
"""

from __future__ import annotations


class ListingHarvesterError(Exception):
    """Base class for all Listing Harvester exceptions.

    All application-specific exceptions inherit from this class so that
    callers can catch the entire hierarchy with a single ``except`` clause
    when needed.
    """


# ---------------------------------------------------------------------------
# Retry exceptions
# ---------------------------------------------------------------------------


class RetryExhaustedError(ListingHarvesterError):
    """Raised by ``retry_with_backoff`` once every attempt has failed.

    The message names the attempt count so it is distinguishable from the
    underlying cause, which is also chained via ``__cause__``.

    Args:
        attempts: Number of attempts that were made.
        last_error: The exception raised by the final attempt.
    """

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"Failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


# ---------------------------------------------------------------------------
# Adapter exceptions
# ---------------------------------------------------------------------------


class AdapterError(ListingHarvesterError):
    """Raised when a site adapter cannot fulfil its contract.

    Args:
        message: Human-readable description of the failure.
        site: Registry key of the adapter involved (e.g. ``"theknot"``).
    """

    def __init__(self, message: str, site: str | None = None) -> None:
        super().__init__(message)
        self.site = site


class UnknownSiteError(AdapterError):
    """Raised when no adapter is registered for the requested ``site``."""


class PaginationError(AdapterError):
    """Raised when next-page navigation is requested but no control exists.

    The worker only navigates forward after ``has_next_page`` confirmed a
    control, so this signals a contract violation rather than an expected
    end-of-results condition.  It is never retried.
    """


# ---------------------------------------------------------------------------
# Job exceptions
# ---------------------------------------------------------------------------


class JobNotFoundError(ListingHarvesterError):
    """Raised when a job id does not exist in the store.

    Args:
        job_id: The id that was looked up.
    """

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job '{job_id}' not found")
        self.job_id = job_id


class JobValidationError(ListingHarvesterError):
    """Raised when a job's parameters cannot be executed.

    Example: an enrichment job that carries no target item URLs.
    """

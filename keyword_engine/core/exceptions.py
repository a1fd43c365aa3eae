"""Error taxonomy for the engine and the HTTP layer.

Engine errors carry a machine-readable ``ReasonCode``; callers only ever see
the code plus a safe message, never a raw exception string.
"""

from __future__ import annotations

from enum import Enum

from fastapi import HTTPException, status


class ReasonCode(str, Enum):
    """Machine-readable failure reasons surfaced to callers."""

    RATE_LIMITED = "rate_limited"
    FETCH_TRANSIENT = "fetch_transient"
    FETCH_BLOCKED = "fetch_blocked"
    INVALID_TERM = "invalid_term"
    PERSISTENCE_UNAVAILABLE = "persistence_unavailable"
    SCHEDULER_FAULT = "scheduler_fault"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    METADATA_UNAVAILABLE = "metadata_unavailable"
    INVALID_REQUEST = "invalid_request"
    JOB_NOT_FOUND = "job_not_found"


class FetchErrorKind(str, Enum):
    TRANSIENT = "transient"
    BLOCKED = "blocked"
    INVALID_TERM = "invalid_term"


# ---------------------------------------------------------------------------
# Engine errors
# ---------------------------------------------------------------------------


class EngineError(Exception):
    """Base class for all engine errors."""

    reason: ReasonCode = ReasonCode.SCHEDULER_FAULT

    def __init__(self, message: str = "", *, reason: ReasonCode | None = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        if reason is not None:
            self.reason = reason

    def to_dict(self) -> dict:
        return {"reason": self.reason.value, "detail": self.message}


class RateLimited(EngineError):
    """Budget exhausted for a tenant+region. A scheduling signal, not a failure."""

    reason = ReasonCode.RATE_LIMITED

    def __init__(self, message: str = "", *, wait_until: float = 0.0):
        super().__init__(message)
        self.wait_until = wait_until


class FetchError(EngineError):
    """SERP source failure. ``kind`` selects the recovery strategy."""

    kind: FetchErrorKind = FetchErrorKind.TRANSIENT
    reason = ReasonCode.FETCH_TRANSIENT


class FetchTransient(FetchError):
    kind = FetchErrorKind.TRANSIENT
    reason = ReasonCode.FETCH_TRANSIENT


class FetchBlocked(FetchError):
    """Remote source rate-limited us or detected automated access."""

    kind = FetchErrorKind.BLOCKED
    reason = ReasonCode.FETCH_BLOCKED


class InvalidTerm(FetchError):
    kind = FetchErrorKind.INVALID_TERM
    reason = ReasonCode.INVALID_TERM


class PersistenceUnavailable(EngineError):
    reason = ReasonCode.PERSISTENCE_UNAVAILABLE


class SchedulerFault(EngineError):
    reason = ReasonCode.SCHEDULER_FAULT


class JobNotFound(EngineError):
    reason = ReasonCode.JOB_NOT_FOUND


class InvalidRequest(EngineError):
    reason = ReasonCode.INVALID_REQUEST


class MetadataUnavailable(EngineError):
    reason = ReasonCode.METADATA_UNAVAILABLE


# Engine reason → HTTP status for the API layer
HTTP_STATUS_BY_REASON: dict[ReasonCode, int] = {
    ReasonCode.JOB_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ReasonCode.INVALID_REQUEST: 422,
    ReasonCode.INVALID_TERM: 422,
    ReasonCode.PERSISTENCE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ReasonCode.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    ReasonCode.SCHEDULER_FAULT: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


# ---------------------------------------------------------------------------
# HTTP errors
# ---------------------------------------------------------------------------


class NotFoundError(HTTPException):
    def __init__(self, detail: str = "Not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class BadRequestError(HTTPException):
    def __init__(self, detail: str = "Bad request"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class ServiceUnavailableError(HTTPException):
    def __init__(self, detail: str = "Service unavailable"):
        super().__init__(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)

"""
Error taxonomy for the provisioning and funding engine.

Every failure the engine can observe maps onto one ``ErrorKind``.  Retry
logic branches on exception *type*; attempt records and presentation code
use the ``kind`` so that display text is derived from the taxonomy and never
parsed back out of messages.

    EntropyFailure          fatal, key generation cannot proceed
    NoEndpointAvailable     every candidate unhealthy or cooling down
    TransportError          network / HTTP / rate-limit trouble, retried
    RejectedTransaction     the network refused or failed the transaction
    InvalidSecretError      restore input is not a usable key
    CorruptPersistedState   stored wallet unreadable (downgraded to "no wallet")

A confirmation that misses its deadline is not raised; it shows up as
``ErrorKind.TIMED_OUT`` on the funding attempt.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    ENTROPY = "entropy_failure"
    NO_ENDPOINT = "no_endpoint_available"
    TRANSPORT = "transport_error"
    RATE_LIMITED = "rate_limited"
    REJECTED = "rejected_transaction"
    TIMED_OUT = "timed_out"
    INVALID_SECRET = "invalid_secret"
    CORRUPT_STATE = "corrupt_persisted_state"
    SERVICE = "service_error"


class FundlineError(Exception):
    """Base class for all engine errors."""

    kind: ErrorKind = ErrorKind.TRANSPORT

    def __init__(self, message: str = "", *, endpoint: str | None = None):
        super().__init__(message)
        self.endpoint = endpoint


class EntropyFailure(FundlineError):
    kind = ErrorKind.ENTROPY


class NoEndpointAvailableError(FundlineError):
    kind = ErrorKind.NO_ENDPOINT


class TransportError(FundlineError):
    """Connection failure, timeout, non-2xx reply or malformed body."""
    kind = ErrorKind.TRANSPORT


class RateLimitedError(TransportError):
    kind = ErrorKind.RATE_LIMITED


class RejectedTransaction(FundlineError):
    kind = ErrorKind.REJECTED


class InvalidSecretError(FundlineError, ValueError):
    kind = ErrorKind.INVALID_SECRET


class CorruptPersistedState(FundlineError):
    kind = ErrorKind.CORRUPT_STATE


class ServiceError(FundlineError):
    """The metadata or upload service answered with an error payload."""
    kind = ErrorKind.SERVICE


# Short human-readable phrases for each kind, used in result summaries.
DESCRIPTIONS: dict[ErrorKind, str] = {
    ErrorKind.ENTROPY: "key generation failed",
    ErrorKind.NO_ENDPOINT: "no healthy endpoint",
    ErrorKind.TRANSPORT: "network error",
    ErrorKind.RATE_LIMITED: "rate limited",
    ErrorKind.REJECTED: "transaction rejected",
    ErrorKind.TIMED_OUT: "confirmation timed out",
    ErrorKind.INVALID_SECRET: "invalid secret",
    ErrorKind.CORRUPT_STATE: "stored wallet unreadable",
    ErrorKind.SERVICE: "service error",
}


def describe(kind: ErrorKind | None) -> str:
    if kind is None:
        return "ok"
    return DESCRIPTIONS.get(kind, kind.value)

"""
Exception hierarchy for the aPaaS client.

Every error raised by this package derives from ApaasError. Remote failures
are split by retry eligibility:

- TransientRemoteError: no response, 5xx or 429. Eligible for backoff.
- PermanentRemoteError: any other 4xx or a business failure envelope code.
"""

from __future__ import annotations


class ApaasError(Exception):
    """Base exception for all client errors."""


class ValidationError(ApaasError, ValueError):
    """Caller input is malformed. Raised before any network call."""


class AuthError(ApaasError):
    """Access credential issuance failed."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class TransportError(ApaasError):
    """A remote call failed.

    Attributes:
        status: HTTP status, or None when no response was received.
        code: Envelope code when the server returned one.
        msg: Server message (or the local error description).
    """

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        code: str | None = None,
        msg: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.code = code
        self.msg = msg if msg is not None else message


class TransientRemoteError(TransportError):
    """Network-level failure, 5xx or 429 response."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        code: str | None = None,
        msg: str | None = None,
        retry_after_ms: int | None = None,
    ) -> None:
        super().__init__(message, status=status, code=code, msg=msg)
        self.retry_after_ms = retry_after_ms

    @property
    def is_rate_limit(self) -> bool:
        """Check if this failure is a 429."""
        return self.status == 429


class PermanentRemoteError(TransportError):
    """Well-formed 4xx (other than 429) or business failure code."""

    @classmethod
    def from_envelope(cls, code: str, msg: str | None, action: str = "Request") -> PermanentRemoteError:
        """Build from a non-success response envelope."""
        text = msg or f"{action} failed with code {code}"
        return cls(text, code=code, msg=text)


class SchedulerDroppedError(ApaasError):
    """Admission refused because the scheduler wait queue is full."""

    def __init__(self, message: str, queue_depth: int = 0) -> None:
        super().__init__(message)
        self.queue_depth = queue_depth


class SchedulerTimeoutError(ApaasError):
    """Admission wait exceeded the configured timeout."""

    def __init__(self, message: str, waited_ms: int = 0) -> None:
        super().__init__(message)
        self.waited_ms = waited_ms

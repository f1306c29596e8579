"""Exception hierarchy for the report pipeline.

Every error raised across the core derives from :class:`ReportEngineError`
so that outer layers (HTTP routers, CLI commands) can map the whole family
with a single handler while still discriminating on the concrete type.

Errors that concern a specific report job carry a ``job_id`` attribute.
It is ``None`` when the failure happened before a job was recorded.
"""

from __future__ import annotations


class ReportEngineError(Exception):
    """Base class for all report pipeline errors."""

    def __init__(self, message: str, *, job_id: str | None = None) -> None:
        super().__init__(message)
        self.job_id = job_id


class ValidationError(ReportEngineError):
    """The request was rejected before any credit moved.

    Raised for unknown or incompatible engine/renderer pairs, renderers the
    caller's organization may not use, and measurement summaries that fail
    the engine's quality gate.
    """


class InsufficientCreditError(ReportEngineError):
    """The account balance cannot cover the requested reservation."""

    def __init__(
        self,
        account_id: str,
        required: int,
        available: int,
        *,
        job_id: str | None = None,
    ) -> None:
        self.account_id = account_id
        self.required = required
        self.available = available
        super().__init__(
            f"Account {account_id!r} has {available} credit(s), {required} required",
            job_id=job_id,
        )


class EngineError(ReportEngineError):
    """An analysis engine failed to produce a result."""


class RendererError(ReportEngineError):
    """A report renderer failed to produce an artifact."""


class LedgerConsistencyError(ReportEngineError):
    """A reservation was charged or refunded in a state that forbids it.

    This signals a broken caller contract (double charge, double refund,
    refund after charge) and is never part of normal operation.
    """

    def __init__(self, job_id: str, operation: str, current_status: str | None) -> None:
        self.operation = operation
        self.current_status = current_status
        super().__init__(
            f"Cannot {operation} reservation for job {job_id!r} in status {current_status!r}",
            job_id=job_id,
        )


class AccessDeniedError(ReportEngineError):
    """A share link could not be resolved.

    ``reason`` is one of ``not_found``, ``expired``, ``exhausted``,
    ``revoked`` or ``subject_mismatch``.
    """

    def __init__(self, reason: str, *, token_hint: str | None = None) -> None:
        self.reason = reason
        self.token_hint = token_hint
        super().__init__(f"Share link access denied: {reason}")


class MissingSubjectBindingError(ReportEngineError):
    """A share link was requested without a usable subject identity."""


class NotFoundError(ReportEngineError):
    """A referenced entity (job, account, summary, artifact) does not exist."""


class JobStateError(ReportEngineError):
    """The job is not in a stage that permits the requested operation."""


class DuplicateRegistrationError(ReportEngineError, ValueError):
    """An engine or renderer with the same ``(id, version)`` is already registered."""

from __future__ import annotations

from uuid import UUID


class BillingError(Exception):
    """Base class for every error raised by the billing engine and job pipeline."""


class ValidationError(BillingError, ValueError):
    """Malformed or absent input, rejected before any computation."""


class NotFoundError(ValidationError):
    """A referenced record does not exist for the tenant."""


class ComputationError(BillingError, ValueError):
    """Invoice data could not be computed (missing rate, no plan, bad tax context)."""


class InvalidStateError(BillingError, ValueError):
    """The requested transition is not allowed from the record's current state."""


class PipelineStepError(BillingError, RuntimeError):
    def __init__(self, message: str, *, invoice_id: UUID | str | None = None, step: str | None = None) -> None:
        super().__init__(message)
        self.invoice_id = invoice_id
        self.step = step


class ResourceError(BillingError):
    """Local resource (temporary file) could not be written or read."""

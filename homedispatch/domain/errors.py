PROBLEM_TYPE_DOMAIN = "https://example.com/problems/domain-error"
PROBLEM_TYPE_NOT_FOUND = "https://example.com/problems/not-found"
PROBLEM_TYPE_FORBIDDEN = "https://example.com/problems/forbidden"
PROBLEM_TYPE_VALIDATION = "https://example.com/problems/validation-error"
PROBLEM_TYPE_CONFLICT = "https://example.com/problems/transition-not-allowed"
PROBLEM_TYPE_PRECONDITION = "https://example.com/problems/precondition-not-met"
PROBLEM_TYPE_DEPENDENCY = "https://example.com/problems/dependency-unavailable"


class DomainError(Exception):
    status_code = 400
    title = "Domain Error"
    type = PROBLEM_TYPE_DOMAIN
    retryable = False

    def __init__(
        self,
        detail: str = "Request could not be processed",
        *,
        title: str | None = None,
        errors: list[dict[str, str]] | None = None,
    ) -> None:
        super().__init__(detail)
        self.detail = detail
        if title is not None:
            self.title = title
        self.errors = errors or []


class ValidationFailed(DomainError):
    status_code = 422
    title = "Validation Error"
    type = PROBLEM_TYPE_VALIDATION


class NotFound(DomainError):
    status_code = 404
    title = "Not Found"
    type = PROBLEM_TYPE_NOT_FOUND


class Forbidden(DomainError):
    status_code = 403
    title = "Forbidden"
    type = PROBLEM_TYPE_FORBIDDEN


class TransitionNotAllowed(DomainError):
    """The booking's current state does not permit the requested action."""

    status_code = 409
    title = "Not Allowed In Current State"
    type = PROBLEM_TYPE_CONFLICT


class PreconditionNotMet(TransitionNotAllowed):
    title = "Precondition Not Met"
    type = PROBLEM_TYPE_PRECONDITION
    retryable = True


class BookingBusy(TransitionNotAllowed):
    retryable = True

    def __init__(self, detail: str = "Booking is being updated by another request; retry shortly") -> None:
        super().__init__(detail, title="Booking Busy")


class EscrowAlreadySettled(TransitionNotAllowed):
    title = "Escrow Already Settled"


class PaymentCaptureFailed(DomainError):
    status_code = 503
    title = "Payment Capture Failed"
    type = PROBLEM_TYPE_DEPENDENCY
    retryable = True


class InvariantViolation(RuntimeError):
    """Raised when persisted state contradicts a guard that should have held."""

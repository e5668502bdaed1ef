"""Error taxonomy for the Ordering domain.

Bad input and unmet preconditions are raised as Protean's ``ValidationError``
and missing orders as ``ObjectNotFoundError``. The classes below cover the
remaining outcomes the HTTP layer has to tell apart:

- ``ConflictError``: the transition is not allowed from the current state,
  or another writer won the race. Re-read and retry.
- ``IdempotencyViolation``: the same shipment stage is already in flight.
- ``RetriableExternalError``: the carrier or gateway timed out or answered
  5xx. Nothing was written; the stage is pending and can be retried.
- ``TerminalExternalError``: the carrier rejected the request. It is also a
  ``ValidationError`` so callers see field-level detail and resubmit.
"""

from protean.exceptions import ObjectNotFoundError, ValidationError

NotFoundError = ObjectNotFoundError


class OrderingError(Exception):
    """Base class for ordering errors that carry a messages dict."""

    def __init__(self, messages, **kwargs):
        if isinstance(messages, str):
            messages = {"_entity": [messages]}
        self.messages = messages
        super().__init__(messages, **kwargs)


class ConflictError(OrderingError):
    """Transition not allowed from the current state, or a lost race."""


class PaymentPolicyViolation(ConflictError):
    """Payment policy blocks the requested transition."""


class IdempotencyViolation(OrderingError):
    """A stage for the same order is already in flight."""


class ExternalServiceError(OrderingError):
    """Base class for failures reported by an external collaborator."""

    def __init__(self, messages, service: str = "", **kwargs):
        self.service = service
        super().__init__(messages, **kwargs)


class RetriableExternalError(ExternalServiceError):
    """Transient collaborator failure; state is unchanged and may be retried."""


class TerminalExternalError(ExternalServiceError, ValidationError):
    """Collaborator rejected the request; the input has to be fixed."""

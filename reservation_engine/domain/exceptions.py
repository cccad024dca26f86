class ReservationError(Exception):
    """
    Base exception for all domain-level errors
    inside the table reservation engine.
    """


# ---------------------
# VALIDATION
# ---------------------

class ValidationError(ReservationError):
    """Malformed input. Carries the offending field when known."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidTimeRange(ValidationError):
    """Raised when a start time or duration cannot form a same-day interval."""

    def __init__(self, message: str):
        super().__init__(message, field="start_time")


class InvalidDuration(ValidationError):

    def __init__(self, message: str):
        super().__init__(message, field="duration_hours")


class InvalidPartySize(ValidationError):

    def __init__(self, message: str):
        super().__init__(message, field="party_size")


class PromoDefinitionError(ValidationError):
    """Raised when an admin submits an inconsistent promo code."""


class PaymentVerificationFailed(ValidationError):
    """Raised when the gateway rejects a payment signature."""


# ---------------------
# CONFLICTS
# ---------------------

class ConflictError(ReservationError):
    """Concurrent modification or uniqueness clash. Safe to retry."""


class TableNoLongerAvailable(ConflictError):

    def __init__(self, table_id: int):
        self.table_id = table_id
        super().__init__(
            f"Table {table_id} is no longer available for the requested slot"
        )


class DuplicateBookingCode(ConflictError):
    """Raised when the storage layer rejects a booking code as taken."""


# ---------------------
# NOT FOUND
# ---------------------

class NotFoundError(ReservationError):

    def __init__(self, entity: str, key: object | None = None):
        self.entity = entity
        self.key = key
        if key is None:
            message = f"{entity} not found"
        else:
            message = f"{entity} {key} not found"
        super().__init__(message)


# ---------------------
# STATE
# ---------------------

class StateError(ReservationError):
    """An operation is not allowed in the booking's current state or time."""


class InvalidStateTransitionError(StateError):
    """
    Raised when an illegal booking state transition is attempted.
    """

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class TooEarly(StateError):
    """Check-in attempted before the check-in window opens."""


class TooLate(StateError):
    """Check-in attempted after the check-in window closed."""


class CancellationWindowClosed(StateError):
    """Customer cancellation attempted inside the notice period."""


# ---------------------
# COLLABORATORS / STORE
# ---------------------

class StoreError(ReservationError):
    """Transaction or commit failure in the booking store."""


class StoreUnavailable(StoreError):
    """The store did not answer within the configured timeout."""


class DepositFailed(ReservationError):
    """The payment collaborator could not create a deposit."""


class PromoInvalid(ReservationError):
    """
    A promo code failed validation. Non-fatal for booking creation:
    the booking proceeds at full price.
    """

    def __init__(self, code: str, reason: str):
        self.code = code
        self.reason = reason
        super().__init__(f"Promo code {code} rejected: {reason}")

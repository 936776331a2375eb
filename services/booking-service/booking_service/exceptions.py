"""Domain errors raised by the booking engine.

Each error carries the HTTP status the API layer answers with. Assignment
exhaustion is deliberately not an error and never appears here.
"""


class EngineError(Exception):
    """Base exception for booking engine errors."""
    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationFailed(EngineError):
    """Raised when a request is missing fields or carries invalid values."""
    status_code = 400


class NotFound(EngineError):
    """Raised when a booking, item, partner, service or region is absent."""
    status_code = 404

    def __init__(self, entity: str, key):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} '{key}' not found")


class RuleViolation(EngineError):
    """Raised when an operation is not allowed in the current state."""
    status_code = 409


class TransitionRejected(RuleViolation):
    """Raised when an item status transition is illegal."""
    status_code = 400

    def __init__(self, current, target, reason: str):
        self.current = current
        self.target = target
        self.reason = reason
        super().__init__(f"Cannot move item from {_name(current)} to {_name(target)}: {reason}")


class OtpMismatch(TransitionRejected):
    """Raised when the presented job OTP does not match the item's OTP."""

    def __init__(self, current, target, which: str):
        self.which = which
        super().__init__(current, target, f"Invalid {which} OTP")


class ConcurrentUpdate(EngineError):
    """Raised when another writer changed the item first."""
    status_code = 409

    def __init__(self, item_id):
        self.item_id = item_id
        super().__init__(f"Order item '{item_id}' was modified concurrently; reload and retry")


class Conflict(EngineError):
    """Raised when a unique value (e.g. a phone number) is already taken."""
    status_code = 409


def _name(status) -> str:
    return getattr(status, "value", status)

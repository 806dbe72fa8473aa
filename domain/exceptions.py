"""Domain Errors

Every error raised by the reservation core derives from ReservationError,
which is itself a ValueError so plain ``except ValueError`` callers keep
working.
"""


class ReservationError(ValueError):
    """Base class for reservation core errors"""
    kind = "reservation_error"


class ValidationError(ReservationError):
    """Malformed input, rejected before any side effect"""
    kind = "validation_error"


class NotFoundError(ReservationError):
    kind = "not_found"


class CapacityError(ReservationError):
    """No room of the requested type is free for the requested nights"""
    kind = "capacity_error"


class StateTransitionError(ReservationError):
    """Transition not legal from the reservation's current status"""
    kind = "state_transition_error"

    def __init__(self, action: str, current_status, subject: str = "reservation"):
        self.action = action
        self.current_status = current_status
        status = getattr(current_status, "value", current_status)
        super().__init__(f"Cannot {action} {subject} with status {status}")


class OversoldError(ReservationError):
    """Payment succeeded but no room remains to honour it"""
    kind = "oversold"

    def __init__(self, tx_ref: str, message: str = None):
        self.tx_ref = tx_ref
        super().__init__(
            message or f"Payment {tx_ref} succeeded but no room is left for the requested stay"
        )


class TransientProbeError(ReservationError):
    """A status probe failed for a reason unrelated to the payment outcome"""
    kind = "transient_probe_error"

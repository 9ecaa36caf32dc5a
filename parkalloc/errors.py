from __future__ import annotations

from typing import Optional


class SlotEngineError(Exception):
    """Base for every error the allocation engine surfaces to its caller.

    `code` is a stable snake_case identifier (returned as the HTTP `detail`),
    `status_code` is what the HTTP binding answers with.
    """

    status_code = 500
    default_code = "internal_error"

    def __init__(self, code: Optional[str] = None, message: Optional[str] = None):
        self.code = code or self.default_code
        self.message = message or self.code.replace("_", " ")
        super().__init__(self.message)


class NotFound(SlotEngineError):
    status_code = 404
    default_code = "not_found"


class DuplicateSlotNumber(SlotEngineError):
    status_code = 409
    default_code = "slot_number_already_exists"


class InvalidStateTransition(SlotEngineError):
    status_code = 409
    default_code = "invalid_state_transition"


class NotRejected(InvalidStateTransition):
    default_code = "slot_request_not_rejected"


class VehicleAlreadyAssigned(InvalidStateTransition):
    default_code = "vehicle_already_has_approved_request"


class VehicleNotOwned(SlotEngineError):
    status_code = 403
    default_code = "vehicle_not_owned"


class NoCompatibleSlot(SlotEngineError):
    status_code = 409
    default_code = "no_compatible_slot"


class SlotUnavailable(SlotEngineError):
    status_code = 409
    default_code = "slot_unavailable"


class GenerationExhausted(SlotEngineError):
    status_code = 503
    default_code = "slot_number_generation_exhausted"


class HasActiveAssignment(SlotEngineError):
    status_code = 409
    default_code = "slot_has_approved_request"


class Conflict(SlotEngineError):
    """Uniqueness clash on users and vehicles (email, plate)."""
    status_code = 409
    default_code = "conflict"


class InvalidInput(SlotEngineError):
    status_code = 400
    default_code = "invalid_input"

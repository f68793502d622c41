"""Error taxonomy for the scheduling and status-transition engine."""


class MedReminderError(Exception):
    """Base class for every error raised by this service."""


class ValidationError(MedReminderError, ValueError):
    """Malformed input (frequency spec, quantity, delay); nothing was mutated."""


class DomainError(MedReminderError):
    """Request is well-formed but not allowed in the medication's current state."""


class MedicationNotFoundError(DomainError, LookupError):
    pass


class InactiveMedicationError(DomainError):
    def __init__(self, medication_id: str):
        super().__init__(f"medication not currently active: {medication_id}")
        self.medication_id = medication_id


class UnknownActionError(DomainError, ValidationError):
    def __init__(self, action: str):
        super().__init__(f"Unknown action {action!r}")
        self.action = action


class ConflictError(MedReminderError):
    """Stale write: the slot's cycle marker moved underneath us.

    Not a failure for the caller; the transition was already applied by
    someone else and the prior result should be returned instead.
    """

    def __init__(self, slot_id: str, expected_version: int):
        super().__init__(f"slot {slot_id} no longer at version {expected_version}")
        self.slot_id = slot_id
        self.expected_version = expected_version


class DispatchError(MedReminderError, RuntimeError):
    """Notification send failed. Never propagated out of a status transition."""


class RateLimitExceeded(MedReminderError):
    pass

from enum import Enum


class CheckoutStatus(str, Enum):
    CREATED = "created"
    METHOD_SELECTED = "method_selected"
    PROCESSING = "processing"
    AWAITING_EXTERNAL_CONFIRMATION = "awaiting_external_confirmation"
    SUCCEEDED = "succeeded"
    GRANT_REQUESTED = "grant_requested"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


ALLOWED_TRANSITIONS = {
    "created": ["method_selected", "grant_requested"],
    "method_selected": ["processing", "failed"],
    "processing": ["succeeded", "awaiting_external_confirmation", "failed"],
    "awaiting_external_confirmation": ["succeeded", "expired", "failed"],
    "succeeded": ["grant_requested"],
    "grant_requested": ["completed"],
    "failed": ["method_selected"],
    "completed": [],
    "expired": [],
}

TERMINAL_STATUSES = {"completed", "expired"}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, [])

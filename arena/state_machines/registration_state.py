"""
Registration Verification State Machine

State Flow:
pending ⇄ images_uploaded → verified | rejected

Natural transitions are driven by the photo quota (system) and by admin
review. verified and rejected are terminal: leaving them needs an explicit
admin override.
"""
from typing import Dict, FrozenSet

from arena.errors import InvalidTransition
from arena.orm.registration import RegistrationStatus as RS

PENDING = RS.PENDING.value
IMAGES_UPLOADED = RS.IMAGES_UPLOADED.value
VERIFIED = RS.VERIFIED.value
REJECTED = RS.REJECTED.value

TERMINAL_STATUSES: FrozenSet[str] = frozenset({VERIFIED, REJECTED})

# Statuses in which images may be attached or detached
IMAGE_EDITABLE_STATUSES: FrozenSet[str] = frozenset({PENDING, IMAGES_UPLOADED})

TRANSITIONS: Dict[str, FrozenSet[str]] = {
    PENDING: frozenset({IMAGES_UPLOADED, VERIFIED, REJECTED}),
    IMAGES_UPLOADED: frozenset({PENDING, VERIFIED, REJECTED}),
    VERIFIED: frozenset(),
    REJECTED: frozenset(),
}

# Reachable only with an explicit admin override
OVERRIDE_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    VERIFIED: frozenset({REJECTED, PENDING, IMAGES_UPLOADED}),
    REJECTED: frozenset({VERIFIED, PENDING, IMAGES_UPLOADED}),
}


def can_transition(from_status: str, to_status: str, override: bool = False) -> bool:
    if to_status in TRANSITIONS.get(from_status, frozenset()):
        return True
    return override and to_status in OVERRIDE_TRANSITIONS.get(from_status, frozenset())


def require_transition(from_status: str, to_status: str, override: bool = False) -> None:
    if can_transition(from_status, to_status, override):
        return
    hint = None
    if from_status in TERMINAL_STATUSES and not override:
        hint = f"'{from_status}' is terminal, an explicit admin override is required"
    raise InvalidTransition("registration", from_status, to_status, hint=hint)


def status_for_image_count(current: str, image_count: int, required: int) -> str:
    """
    Pure function: quota-driven status after an image change.

    Only moves between pending and images_uploaded; admin-set statuses are
    left alone.
    """
    if current == PENDING and image_count >= required:
        return IMAGES_UPLOADED
    if current == IMAGES_UPLOADED and image_count < required:
        return PENDING
    return current

from __future__ import annotations

from crosslister.core.errors import InvalidTransition

# completed / failed are terminal
TRANSITIONS: dict[str, frozenset[str]] = {
    "queued": frozenset({"processing"}),
    "processing": frozenset({"queued", "completed", "failed", "pending_verification"}),
    "pending_verification": frozenset({"queued"}),
    "completed": frozenset(),
    "failed": frozenset(),
}

TERMINAL_STATUSES = frozenset({"completed", "failed"})


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def transition(current: str, target: str) -> str:
    if not can_transition(current, target):
        raise InvalidTransition(current, target)
    return target


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def has_result(status: str) -> bool:
    """A result is reportable once the job is terminal or waiting on the seller."""
    return status in TERMINAL_STATUSES or status == "pending_verification"

"""Painting status values and the transitions allowed between them.

::

    pending ──▶ generating_image ──▶ completed
       ▲                        ├──▶ failed ───────────┐ retry
       │                        └──▶ safety_violation ─┤ regenerate prompt
       └───────────────────────────────────────────────┘

``completed`` is final.  ``failed`` and ``safety_violation`` only return to
``pending`` through an explicit retry, and each of them has its own retry
action: a plain retry keeps the prompt, a regenerate-prompt retry replaces
the idea first.
"""

from __future__ import annotations

from enum import Enum

from paintworks.core.errors import InvalidTransitionError


class PaintingStatus(str, Enum):
    """Lifecycle status of a single painting."""

    PENDING = "pending"
    GENERATING_IMAGE = "generating_image"
    COMPLETED = "completed"
    FAILED = "failed"
    SAFETY_VIOLATION = "safety_violation"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {PaintingStatus.COMPLETED, PaintingStatus.FAILED, PaintingStatus.SAFETY_VIOLATION}
)

_TRANSITIONS: dict[PaintingStatus, frozenset[PaintingStatus]] = {
    PaintingStatus.PENDING: frozenset({PaintingStatus.GENERATING_IMAGE}),
    PaintingStatus.GENERATING_IMAGE: TERMINAL_STATUSES,
    PaintingStatus.COMPLETED: frozenset(),
    PaintingStatus.FAILED: frozenset({PaintingStatus.PENDING}),
    PaintingStatus.SAFETY_VIOLATION: frozenset({PaintingStatus.PENDING}),
}

# Which retry action is allowed to leave each recoverable status.
RETRY_ACTIONS: dict[PaintingStatus, str] = {
    PaintingStatus.FAILED: "retry",
    PaintingStatus.SAFETY_VIOLATION: "regenerate_prompt",
}


def can_transition(current: PaintingStatus, new: PaintingStatus) -> bool:
    """Return whether ``current -> new`` is an edge of the state machine."""
    return PaintingStatus(new) in _TRANSITIONS[PaintingStatus(current)]


def ensure_transition(current: PaintingStatus, new: PaintingStatus) -> None:
    """Raise :class:`InvalidTransitionError` unless ``current -> new`` is allowed."""
    current = PaintingStatus(current)
    new = PaintingStatus(new)
    if not can_transition(current, new):
        raise InvalidTransitionError(
            f"Cannot move painting from '{current.value}' to '{new.value}'",
            current=current.value,
        )


def ensure_retry_action(current: PaintingStatus, action: str) -> None:
    """Check that ``action`` is the retry path for a painting in ``current``.

    Args:
        current: The painting's stored status.
        action: ``"retry"`` or ``"regenerate_prompt"``.

    Raises:
        InvalidTransitionError: If the painting is not in the one status the
            action recovers from.
    """
    current = PaintingStatus(current)
    if RETRY_ACTIONS.get(current) != action:
        allowed = next(
            (status.value for status, name in RETRY_ACTIONS.items() if name == action),
            None,
        )
        raise InvalidTransitionError(
            f"Can only {action.replace('_', ' ')} paintings in '{allowed}' status "
            f"(painting is '{current.value}')",
            current=current.value,
        )

"""Exception hierarchy shared by the Paintworks core and API layers.

Every error the core raises on purpose derives from :class:`PaintworksError`
so the API can translate it into an HTTP response in one place.  Per-item
failures that happen on a worker thread never propagate; they are recorded on
the painting and only become visible on the next status poll.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from paintworks.core.models import Idea


class PaintworksError(Exception):
    """Base class for expected Paintworks failures."""


class ValidationError(PaintworksError):
    """Request parameters are missing or invalid; no state was created."""


class NotFoundError(PaintworksError):
    """A title, idea or painting does not exist."""


class InvalidTransitionError(PaintworksError):
    """A painting cannot move from its current status to the requested one."""

    def __init__(self, message: str, *, current: str | None = None) -> None:
        super().__init__(message)
        self.current = current


class UpstreamGenerationError(PaintworksError):
    """The idea or image service failed (timeout, quota, malformed response)."""


class SafetyRejection(UpstreamGenerationError):
    """The image service refused the prompt for content-policy reasons."""


class PersistenceError(PaintworksError):
    """The durable store rejected a read or write."""


class BatchInterruptedError(PaintworksError):
    """A batch stopped part-way through idea generation.

    Ideas created before the failure already have paintings queued for image
    generation and keep going; ``created`` lists them so callers can report
    how much of the batch exists.
    """

    def __init__(self, cause: PaintworksError, created: Sequence[Idea]) -> None:
        super().__init__(f"Batch interrupted after {len(created)} item(s): {cause}")
        self.cause = cause
        self.created = list(created)

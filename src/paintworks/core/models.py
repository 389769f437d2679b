"""Record types shared by the store, the pipeline and the API."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from paintworks.core.state import PaintingStatus


@dataclass(frozen=True)
class Title:
    """User-defined subject seeding a batch of paintings."""

    id: int
    text: str
    instructions: str = ""


@dataclass(frozen=True)
class IdeaDraft:
    """An idea as returned by the idea service, before it is stored."""

    summary: str
    full_prompt: str


@dataclass(frozen=True)
class Idea:
    """A stored painting concept.  Ideas are never edited once written."""

    id: int
    title_id: int
    summary: str
    full_prompt: str
    created_at: datetime


@dataclass(frozen=True)
class Reference:
    """Reference image biasing image generation.

    ``image_data`` is kept exactly as uploaded, normally a ``data:`` URL.
    """

    id: int
    image_data: str
    title_id: int | None = None
    is_global: bool = False


@dataclass(frozen=True)
class Painting:
    """Tracked unit of work pairing one idea with its image outcome."""

    id: int
    title_id: int
    idea_id: int
    status: PaintingStatus
    created_at: datetime
    image_url: str | None = None
    error_message: str | None = None
    used_reference_ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class PaintingDetails:
    """A painting joined with its idea and title, as shown on the status view."""

    painting: Painting
    summary: str
    full_prompt: str
    title_text: str
    title_instructions: str

    def to_dict(self, known_reference_ids: set[int] | frozenset[int] = frozenset()) -> dict:
        """Serialise for the status endpoint.

        Args:
            known_reference_ids: Ids whose image data is present in the
                response's ``referenceDataMap``.  References that no longer
                exist are left out of ``promptDetails``.
        """
        painting = self.painting
        shown_refs = [ref_id for ref_id in painting.used_reference_ids if ref_id in known_reference_ids]
        return {
            "id": painting.id,
            "idea_id": painting.idea_id,
            "title_id": painting.title_id,
            "image_url": painting.image_url or "",
            "status": painting.status.value,
            "created_at": painting.created_at.isoformat(),
            "error_message": painting.error_message or "",
            "summary": self.summary,
            "used_reference_ids": list(painting.used_reference_ids),
            "promptDetails": {
                "summary": self.summary,
                "title": self.title_text,
                "instructions": self.title_instructions or "No custom instructions provided",
                "referenceCount": len(shown_refs),
                "referenceImages": shown_refs,
                "fullPrompt": self.full_prompt,
            },
        }


@dataclass(frozen=True)
class ImageJob:
    """One queued image-generation attempt for a painting.

    Attributes:
        painting_id: Painting the outcome is written to.
        prompt: Full prompt sent to the image service.
        references: Reference images passed along with the prompt.
        safety_status: Status recorded when the service reports a content
            policy violation.  First attempts use ``safety_violation``;
            retries use ``failed`` so a rejected prompt cannot loop.
    """

    painting_id: int
    prompt: str
    references: tuple[Reference, ...] = field(default_factory=tuple)
    safety_status: PaintingStatus = PaintingStatus.SAFETY_VIOLATION

"""Pydantic request and response models for the Paintworks API.

FastAPI uses these for request validation, serialisation and the OpenAPI
schema.

Models
------
GenerateRequest
    Payload for ``POST /api/paintings/generate``.
IdeaSummary
    One created idea as reported back from a generate call.
GenerateResponse
    Response of ``POST /api/paintings/generate``.
RetryResponse
    Response of the retry and regenerate-prompt endpoints.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class GenerateRequest(BaseModel):
    """Request body for ``POST /api/paintings/generate``.

    Attributes:
        title_id: Existing title to generate paintings for.
        quantity: Number of paintings in the batch.  ``None`` uses the
            server's ``default_quantity``.  Range checking happens in the
            pipeline so that out-of-range values are a 400, not a 422.
    """

    title_id: int = Field(..., description="Identifier of an existing title.")
    quantity: int | None = Field(
        default=None,
        description="Batch size, 1 to the server's max_batch_quantity.",
    )


class IdeaSummary(BaseModel):
    id: int
    summary: str


class GenerateResponse(BaseModel):
    """Response of a generate call.

    Image generation for every listed idea is already queued when this is
    returned; clients follow progress through the status endpoint.
    """

    success: bool = True
    message: str
    ideas: list[IdeaSummary] = Field(default_factory=list)


class RetryResponse(BaseModel):
    success: bool = True
    message: str
    painting_id: int
    status: str
    idea_id: int | None = None

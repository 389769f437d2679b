"""Paintworks — FastAPI Application.

This module is the single entry point for the web service.  It defines the
FastAPI ``app`` instance, the REST routes, and the ``main()`` CLI function
that launches the uvicorn server.

Architecture
------------
- **Painting generation** is performed by
  :class:`~paintworks.core.pipeline.PaintingPipeline`, created on startup and
  stored on ``app.state``.  A generate call blocks until every idea exists,
  then returns while images render on the pipeline's worker threads.
- **Persistence** is a single SQLite database (see
  :class:`~paintworks.core.store.PaintingStore`).
- **Generated images** are served by FastAPI's ``StaticFiles`` at
  ``/static/paintings``.
- **Errors** raised by the core derive from
  :class:`~paintworks.core.errors.PaintworksError` and are mapped to HTTP
  status codes in one exception handler.

Endpoints
---------
========  ==========================================  ============================
Method    Path                                        Purpose
========  ==========================================  ============================
GET       ``/``                                       Service banner
GET       ``/api/config``                             Limits and poll interval
POST      ``/api/paintings/generate``                 Start a batch for a title
GET       ``/api/paintings/{title_id}``               Status snapshot for a title
POST      ``/api/paintings/{id}/retry``               Retry a failed painting
POST      ``/api/paintings/{id}/regenerate-prompt``   New idea after a safety hit
GET       ``/static/paintings/{file}``                Generated PNG files
========  ==========================================  ============================

Usage
-----
CLI (installed entry point)::

    paintworks

Direct invocation::

    python -m paintworks.api.main
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from fastapi.staticfiles import StaticFiles

from paintworks import __version__
from paintworks.api.models import GenerateRequest, GenerateResponse, IdeaSummary, RetryResponse
from paintworks.core.config import PaintworksConfig, config
from paintworks.core.errors import (
    BatchInterruptedError,
    InvalidTransitionError,
    NotFoundError,
    PaintworksError,
    PersistenceError,
    UpstreamGenerationError,
    ValidationError,
)
from paintworks.core.gallery import GALLERY_URL_PREFIX
from paintworks.core.pipeline import PaintingPipeline

logger = logging.getLogger(__name__)

# Most specific first; the first isinstance match wins.
_ERROR_STATUS: list[tuple[type[PaintworksError], int]] = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (UpstreamGenerationError, status.HTTP_502_BAD_GATEWAY),
    (PersistenceError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def error_status(exc: PaintworksError) -> int:
    """HTTP status code for a core error."""
    if isinstance(exc, BatchInterruptedError):
        return error_status(exc.cause)
    for error_type, code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


# ---------------------------------------------------------------------------
# Application lifecycle: pipeline setup and teardown.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown lifecycle.

    On startup:
        Builds a :class:`PaintingPipeline` from the global configuration,
        unless one was already placed on ``app.state`` (tests do this), and
        starts its image workers.

    On shutdown:
        Stops the workers after the jobs already queued have run.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control back to the application for the duration of its lifetime.
    """
    # --- Startup -----------------------------------------------------------
    if getattr(app.state, "pipeline", None) is None:
        app.state.pipeline = PaintingPipeline.from_config(config)
    app.state.pipeline.start()
    logger.info("PaintingPipeline started.")

    yield  # Application runs here.

    # --- Shutdown ----------------------------------------------------------
    app.state.pipeline.shutdown(wait=True)
    logger.info("PaintingPipeline shut down.")


# ---------------------------------------------------------------------------
# FastAPI application instance.
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Paintworks",
    description="Batch painting generation with bounded image concurrency.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Generated paintings are served directly from the gallery directory.
app.mount(
    GALLERY_URL_PREFIX,
    StaticFiles(directory=str(config.gallery_dir)),
    name="paintings",
)


# ---------------------------------------------------------------------------
# Error handling.
# ---------------------------------------------------------------------------


@app.exception_handler(PaintworksError)
async def paintworks_error_handler(request: Request, exc: PaintworksError) -> JSONResponse:
    """Translate core errors into JSON error responses.

    Interrupted batches report the ideas that were created before the
    failure; those paintings are already queued and will keep going.
    """
    code = error_status(exc)
    if isinstance(exc, BatchInterruptedError):
        logger.warning(f"Batch interrupted: {exc}")
        detail: object = {
            "message": str(exc),
            "created": [{"id": idea.id, "summary": idea.summary} for idea in exc.created],
        }
    else:
        detail = str(exc)
        if code >= 500:
            logger.error(f"{type(exc).__name__}: {exc}")
    return JSONResponse(status_code=code, content={"detail": detail})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies are a 400, like every other bad parameter."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_errors(exc)},
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", ""), "type": error.get("type")}
        for error in exc.errors()
    ]


# ---------------------------------------------------------------------------
# Dependencies.
# ---------------------------------------------------------------------------

_bearer = HTTPBearer(auto_error=False)


def get_config(request: Request) -> PaintworksConfig:
    """Configuration in effect for this app (``app.state.config`` overrides the global)."""
    return getattr(request.app.state, "config", None) or config


def get_pipeline(request: Request) -> PaintingPipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Painting pipeline is not running",
        )
    return pipeline


def require_caller(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
    settings: PaintworksConfig = Depends(get_config),
) -> None:
    """Reject requests without the configured bearer token.

    When ``api_token`` is unset the API is open.
    """
    expected = settings.api_token
    if not expected:
        return
    if credentials is None or not secrets.compare_digest(credentials.credentials, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------


@app.get("/")
def index() -> dict:
    """Service banner."""
    return {"name": "Paintworks", "version": __version__, "docs": "/docs"}


@app.get("/api/config")
def get_public_config(settings: PaintworksConfig = Depends(get_config)) -> dict:
    """Return the limits clients need to drive a batch.

    Returns:
        Dictionary with ``version``, ``max_parallel_images``,
        ``max_batch_quantity``, ``default_quantity`` and
        ``poll_interval_seconds``.
    """
    return {
        "version": __version__,
        "max_parallel_images": settings.max_parallel_images,
        "max_batch_quantity": settings.max_batch_quantity,
        "default_quantity": settings.default_quantity,
        "poll_interval_seconds": settings.poll_interval_seconds,
    }


router = APIRouter(
    prefix="/api/paintings",
    tags=["paintings"],
    dependencies=[Depends(require_caller)],
)


# Routes are plain ``def``: they make blocking calls (SQLite, the idea
# service) and FastAPI runs them on its thread pool.
@router.post("/generate", response_model=GenerateResponse)
def generate_paintings(
    req: GenerateRequest,
    pipeline: PaintingPipeline = Depends(get_pipeline),
) -> GenerateResponse:
    """Create a batch of ideas and queue their paintings for rendering.

    Every idea and its ``pending`` painting exist when this returns.  Image
    generation continues in the background, independent of this request.

    Raises:
        HTTPException: 400 for an invalid quantity, 404 for an unknown
            title, 502 if the idea service fails (the body lists the ideas
            created before the failure).
    """
    ideas = pipeline.generate_batch(req.title_id, req.quantity)
    return GenerateResponse(
        message=f"Started generating {len(ideas)} paintings",
        ideas=[IdeaSummary(id=idea.id, summary=idea.summary) for idea in ideas],
    )


@router.get("/{title_id}")
def get_paintings(title_id: int, pipeline: PaintingPipeline = Depends(get_pipeline)) -> dict:
    """Return every painting for a title, newest first, with reference data."""
    return pipeline.status(title_id)


@router.post("/{painting_id}/retry", response_model=RetryResponse)
def retry_painting(
    painting_id: int, pipeline: PaintingPipeline = Depends(get_pipeline)
) -> RetryResponse:
    """Retry a ``failed`` painting with its existing prompt.

    Raises:
        HTTPException: 404 for an unknown painting, 409 if it is not
            ``failed``, 400 if its idea has no prompt.
    """
    painting = pipeline.retry(painting_id)
    return RetryResponse(
        message="Painting retry initiated",
        painting_id=painting.id,
        status=painting.status.value,
        idea_id=painting.idea_id,
    )


@router.post("/{painting_id}/regenerate-prompt", response_model=RetryResponse)
def regenerate_prompt(
    painting_id: int, pipeline: PaintingPipeline = Depends(get_pipeline)
) -> RetryResponse:
    """Give a ``safety_violation`` painting a new idea and render it again.

    Raises:
        HTTPException: 404 for an unknown painting, 409 if it is not
            ``safety_violation``, 502 if the idea service fails.
    """
    idea, painting = pipeline.regenerate_prompt(painting_id)
    return RetryResponse(
        message="Prompt regenerated and image generation started",
        painting_id=painting.id,
        status=painting.status.value,
        idea_id=idea.id,
    )


app.include_router(router)


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port and log level from :data:`~paintworks.core.config.config`
    (``PAINTWORKS_SERVER_HOST``, ``PAINTWORKS_SERVER_PORT``,
    ``PAINTWORKS_LOG_LEVEL``).  Defaults to ``0.0.0.0:3000``.

    This function is registered as the ``paintworks`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s",
    )
    uvicorn.run(
        "paintworks.api.main:app",
        host=config.server_host,
        port=config.server_port,
        log_level=config.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()

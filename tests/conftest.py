"""Shared pytest fixtures for Paintworks tests."""

import io
import shutil
import tempfile
import threading
from pathlib import Path
from typing import Generator

import pytest
from PIL import Image

from paintworks.core.config import PaintworksConfig
from paintworks.core.errors import UpstreamGenerationError
from paintworks.core.models import IdeaDraft, Title
from paintworks.core.pipeline import PaintingPipeline
from paintworks.core.store import PaintingStore


def make_png(color: str = "red", size: tuple[int, int] = (8, 8)) -> bytes:
    """Encode a small solid-colour PNG."""
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeIdeaClient:
    """Deterministic stand-in for :class:`~paintworks.core.idea_client.IdeaClient`.

    Attributes:
        calls: ``(title, instructions, prior_summaries)`` per generate call,
            with ``prior_summaries`` copied at call time.
        regenerate_calls: ``(title, prior_summaries, rejected_prompt)`` per
            regenerate call.
        fail_at: Zero-based generate call index that raises
            :class:`UpstreamGenerationError`.
        repeat_rejected: Make ``regenerate_idea`` echo the rejected prompt.
    """

    def __init__(self):
        self.calls: list[tuple[str, str, list[str]]] = []
        self.regenerate_calls: list[tuple[str, list[str], str]] = []
        self.fail_at: int | None = None
        self.repeat_rejected = False
        self.closed = False
        self._counter = 0

    def generate_idea(self, title, instructions, prior_summaries):
        index = len(self.calls)
        self.calls.append((title, instructions, list(prior_summaries)))
        if self.fail_at is not None and index == self.fail_at:
            raise UpstreamGenerationError("idea service unavailable")
        self._counter += 1
        return IdeaDraft(
            summary=f"{title} idea {self._counter}",
            full_prompt=f"Paint {title}, variation {self._counter}",
        )

    def close(self):
        self.closed = True

    def regenerate_idea(self, title, instructions, prior_summaries, rejected_prompt):
        self.regenerate_calls.append((title, list(prior_summaries), rejected_prompt))
        if self.repeat_rejected:
            return IdeaDraft(summary="same again", full_prompt=rejected_prompt)
        self._counter += 1
        return IdeaDraft(
            summary=f"{title} safer idea {self._counter}",
            full_prompt=f"Paint {title} gently, variation {self._counter}",
        )


class FakeImageClient:
    """Stand-in for :class:`~paintworks.core.image_client.ImageClient`.

    Attributes:
        calls: ``(prompt, reference_ids)`` per call.
        failures: Prompt to exception raised for that prompt.
        gate: When set, every call waits on this event before returning.
        peak_in_flight: Highest number of simultaneous calls seen.
    """

    def __init__(self):
        self.calls: list[tuple[str, tuple[int, ...]]] = []
        self.failures: dict[str, Exception] = {}
        self.gate: threading.Event | None = None
        self.in_flight = 0
        self.peak_in_flight = 0
        self.closed = False
        self._lock = threading.Lock()

    def close(self):
        self.closed = True

    def generate_image(self, prompt, references=()):
        with self._lock:
            self.calls.append((prompt, tuple(reference.id for reference in references)))
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                self.gate.wait(timeout=10)
            failure = self.failures.get(prompt)
            if failure is not None:
                raise failure
            return make_png()
        finally:
            with self._lock:
                self.in_flight -= 1


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> PaintworksConfig:
    """Create a test configuration with temporary directories.

    Args:
        temp_dir: Temporary directory from fixture

    Returns:
        PaintworksConfig instance for testing
    """
    return PaintworksConfig(
        data_dir=temp_dir / "data",
        gallery_dir=temp_dir / "gallery",
        client_state_path=temp_dir / "client" / "placeholders.json",
        max_parallel_images=2,
        max_batch_quantity=20,
        default_quantity=3,
        idea_api_key="test-idea-key",
        image_api_key="test-image-key",
        api_token=None,
        _env_file=None,
    )


@pytest.fixture
def store(test_config: PaintworksConfig) -> PaintingStore:
    return PaintingStore(test_config.database_path)


@pytest.fixture
def title(store: PaintingStore) -> Title:
    return store.create_title("Harbour at dusk", "Muted palette, oil on canvas")


@pytest.fixture
def idea_client() -> FakeIdeaClient:
    return FakeIdeaClient()


@pytest.fixture
def image_client() -> FakeImageClient:
    return FakeImageClient()


@pytest.fixture
def pipeline(
    store: PaintingStore,
    idea_client: FakeIdeaClient,
    image_client: FakeImageClient,
    test_config: PaintworksConfig,
) -> Generator[PaintingPipeline, None, None]:
    """A started pipeline wired to the fake services.

    Cleanup:
        Workers are shut down after the test.
    """
    pipeline = PaintingPipeline(store, idea_client, image_client, test_config)
    pipeline.start()
    try:
        yield pipeline
    finally:
        if image_client.gate is not None:
            image_client.gate.set()
        pipeline.shutdown(wait=True)


@pytest.fixture
def test_client(pipeline: PaintingPipeline, test_config: PaintworksConfig):
    """FastAPI TestClient serving the fake-backed pipeline."""
    from fastapi.testclient import TestClient

    from paintworks.api.main import app

    app.state.pipeline = pipeline
    app.state.config = test_config
    try:
        with TestClient(app) as client:
            yield client
    finally:
        app.state.pipeline = None
        app.state.config = None

"""Tests for paintworks.core.retry — retry and regenerate-prompt paths."""

from __future__ import annotations

import sqlite3

import pytest

from paintworks.core.errors import (
    InvalidTransitionError,
    NotFoundError,
    SafetyRejection,
    UpstreamGenerationError,
    ValidationError,
)
from paintworks.core.models import IdeaDraft
from paintworks.core.state import PaintingStatus

WAIT = 5.0


def _single_painting(pipeline, store, title):
    pipeline.generate_batch(title.id, 1)
    assert pipeline.scheduler.wait_until_idle(WAIT)
    return store.list_painting_details(title.id)[0]


@pytest.fixture
def failed(pipeline, store, title, image_client):
    image_client.failures[f"Paint {title.text}, variation 1"] = UpstreamGenerationError("quota")
    details = _single_painting(pipeline, store, title)
    assert details.painting.status is PaintingStatus.FAILED
    return details


@pytest.fixture
def rejected(pipeline, store, title, image_client):
    image_client.failures[f"Paint {title.text}, variation 1"] = SafetyRejection("unsafe")
    details = _single_painting(pipeline, store, title)
    assert details.painting.status is PaintingStatus.SAFETY_VIOLATION
    return details


class TestRetry:
    def test_retry_completes_with_same_prompt(self, pipeline, store, image_client, failed):
        image_client.failures.clear()
        painting = pipeline.retry(failed.painting.id)
        assert painting.status is PaintingStatus.PENDING
        assert painting.error_message is None

        assert pipeline.scheduler.wait_until_idle(WAIT)
        done = store.get_painting(failed.painting.id)
        assert done.status is PaintingStatus.COMPLETED
        assert done.idea_id == failed.painting.idea_id
        assert image_client.calls[-1][0] == failed.full_prompt

    def test_retry_refreshes_created_at(self, pipeline, failed):
        painting = pipeline.retry(failed.painting.id)
        assert painting.created_at > failed.painting.created_at

    def test_safety_rejection_on_retry_is_failed(self, pipeline, store, image_client, failed):
        """A retry never lands in safety_violation."""
        image_client.failures[failed.full_prompt] = SafetyRejection("still unsafe")
        pipeline.retry(failed.painting.id)
        assert pipeline.scheduler.wait_until_idle(WAIT)
        assert store.get_painting(failed.painting.id).status is PaintingStatus.FAILED

    def test_retry_reuses_recorded_references(self, pipeline, store, title, image_client):
        ref = store.add_reference("data:image/png;base64,AAAA", title_id=title.id)
        image_client.failures[f"Paint {title.text}, variation 1"] = UpstreamGenerationError("x")
        details = _single_painting(pipeline, store, title)
        image_client.failures.clear()

        pipeline.retry(details.painting.id)
        assert pipeline.scheduler.wait_until_idle(WAIT)
        assert image_client.calls[-1][1] == (ref.id,)

    @pytest.mark.parametrize("status", ["completed", "safety_violation"])
    def test_retry_rejected_from_other_states(self, pipeline, store, title, image_client, status):
        if status == "safety_violation":
            image_client.failures[f"Paint {title.text}, variation 1"] = SafetyRejection("no")
        details = _single_painting(pipeline, store, title)
        calls_before = len(image_client.calls)

        with pytest.raises(InvalidTransitionError):
            pipeline.retry(details.painting.id)
        assert store.get_painting(details.painting.id).status.value == status
        assert len(image_client.calls) == calls_before

    def test_retry_rejected_while_pending(self, pipeline, store, title):
        _, painting = store.create_idea_with_painting(title.id, IdeaDraft("s", "p"))
        with pytest.raises(InvalidTransitionError):
            pipeline.retry(painting.id)

    def test_retry_without_prompt_is_rejected(self, pipeline, store, title, failed):
        conn = sqlite3.connect(store.db_path)
        try:
            conn.execute("UPDATE ideas SET full_prompt = '' WHERE id = ?", (failed.painting.idea_id,))
            conn.commit()
        finally:
            conn.close()

        with pytest.raises(ValidationError):
            pipeline.retry(failed.painting.id)
        assert store.get_painting(failed.painting.id).status is PaintingStatus.FAILED

    def test_retry_unknown_painting(self, pipeline):
        with pytest.raises(NotFoundError):
            pipeline.retry(999)


class TestRegeneratePrompt:
    def test_new_idea_then_completed(self, pipeline, store, image_client, idea_client, rejected):
        image_client.failures.clear()
        idea, painting = pipeline.regenerate_prompt(rejected.painting.id)

        assert painting.status is PaintingStatus.PENDING
        assert painting.idea_id == idea.id != rejected.painting.idea_id
        assert idea.full_prompt != rejected.full_prompt
        assert idea_client.regenerate_calls[0][2] == rejected.full_prompt

        assert pipeline.scheduler.wait_until_idle(WAIT)
        done = store.get_painting(rejected.painting.id)
        assert done.status is PaintingStatus.COMPLETED
        assert image_client.calls[-1][0] == idea.full_prompt

    def test_second_rejection_lands_in_failed(self, pipeline, store, image_client, rejected):
        """The regenerate path cannot loop back into safety_violation."""
        original = image_client.generate_image

        def always_reject(prompt, references=()):
            if prompt != rejected.full_prompt:
                raise SafetyRejection("still unsafe")
            return original(prompt, references)

        image_client.generate_image = always_reject
        pipeline.regenerate_prompt(rejected.painting.id)
        assert pipeline.scheduler.wait_until_idle(WAIT)
        assert store.get_painting(rejected.painting.id).status is PaintingStatus.FAILED

    def test_regenerate_rejected_from_failed(self, pipeline, store, failed, idea_client):
        with pytest.raises(InvalidTransitionError):
            pipeline.regenerate_prompt(failed.painting.id)
        assert idea_client.regenerate_calls == []

    def test_idea_service_failure_leaves_painting_untouched(self, pipeline, store, idea_client, rejected):
        idea_client.repeat_rejected = True
        with pytest.raises(UpstreamGenerationError):
            pipeline.regenerate_prompt(rejected.painting.id)
        painting = store.get_painting(rejected.painting.id)
        assert painting.status is PaintingStatus.SAFETY_VIOLATION
        assert painting.idea_id == rejected.painting.idea_id

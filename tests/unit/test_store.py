"""Tests for paintworks.core.store — SQLite persistence and compare-and-set updates."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from paintworks.core.errors import InvalidTransitionError, NotFoundError, PersistenceError
from paintworks.core.models import IdeaDraft
from paintworks.core.state import PaintingStatus
from paintworks.core.store import PaintingStore


def _draft(n: int) -> IdeaDraft:
    return IdeaDraft(summary=f"summary {n}", full_prompt=f"prompt {n}")


class TestInitialization:
    def test_creates_database_file(self, temp_dir: Path):
        db_path = temp_dir / "nested" / "paintings.db"
        PaintingStore(db_path)
        assert db_path.exists()

    def test_schema_tables_exist(self, store: PaintingStore):
        conn = sqlite3.connect(store.db_path)
        try:
            names = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        finally:
            conn.close()
        assert {"titles", "ideas", "paintings", "reference_images"} <= names

    def test_reopening_keeps_data(self, store: PaintingStore, title):
        again = PaintingStore(store.db_path)
        assert again.get_title(title.id).text == "Harbour at dusk"


class TestTitlesAndReferences:
    def test_get_unknown_title(self, store: PaintingStore):
        with pytest.raises(NotFoundError):
            store.get_title(999)

    def test_references_include_global(self, store: PaintingStore, title):
        other = store.create_title("Other")
        own = store.add_reference("data:image/png;base64,AAAA", title_id=title.id)
        shared = store.add_reference("data:image/png;base64,BBBB", is_global=True)
        store.add_reference("data:image/png;base64,CCCC", title_id=other.id)

        ids = [reference.id for reference in store.get_references(title.id)]
        assert ids == [own.id, shared.id]

    def test_reference_data_skips_missing_ids(self, store: PaintingStore, title):
        ref = store.add_reference("data:image/png;base64,AAAA", title_id=title.id)
        assert store.get_reference_data([ref.id, 12345]) == {ref.id: "data:image/png;base64,AAAA"}

    def test_reference_data_empty(self, store: PaintingStore):
        assert store.get_reference_data([]) == {}


class TestIdeasAndPaintings:
    def test_create_pair_is_pending(self, store: PaintingStore, title):
        idea, painting = store.create_idea_with_painting(title.id, _draft(1), [4, 7])
        assert painting.status is PaintingStatus.PENDING
        assert painting.idea_id == idea.id
        assert store.get_painting(painting.id).used_reference_ids == (4, 7)

    def test_previous_ideas_newest_first(self, store: PaintingStore, title):
        for n in range(3):
            store.create_idea_with_painting(title.id, _draft(n))
        summaries = [idea.summary for idea in store.get_previous_ideas(title.id)]
        assert summaries == ["summary 2", "summary 1", "summary 0"]

    def test_count_paintings(self, store: PaintingStore, title):
        for n in range(4):
            store.create_idea_with_painting(title.id, _draft(n))
        assert store.count_paintings(title.id) == 4

    def test_get_unknown_painting(self, store: PaintingStore):
        with pytest.raises(NotFoundError):
            store.get_painting(42)

    def test_get_unknown_idea(self, store: PaintingStore):
        with pytest.raises(NotFoundError):
            store.get_idea(42)


class TestTransitions:
    def test_happy_path(self, store: PaintingStore, title):
        _, painting = store.create_idea_with_painting(title.id, _draft(1))
        store.transition_painting(painting.id, PaintingStatus.PENDING, PaintingStatus.GENERATING_IMAGE)
        done = store.transition_painting(
            painting.id,
            PaintingStatus.GENERATING_IMAGE,
            PaintingStatus.COMPLETED,
            image_url="/static/paintings/x.png",
        )
        assert done.status is PaintingStatus.COMPLETED
        assert done.image_url == "/static/paintings/x.png"

    def test_stale_expected_status_rejected(self, store: PaintingStore, title):
        """A write expecting the wrong current status changes nothing."""
        _, painting = store.create_idea_with_painting(title.id, _draft(1))
        with pytest.raises(InvalidTransitionError) as exc_info:
            store.transition_painting(
                painting.id, PaintingStatus.GENERATING_IMAGE, PaintingStatus.FAILED
            )
        assert exc_info.value.current == "pending"
        assert store.get_painting(painting.id).status is PaintingStatus.PENDING

    def test_invalid_edge_rejected_before_write(self, store: PaintingStore, title):
        _, painting = store.create_idea_with_painting(title.id, _draft(1))
        with pytest.raises(InvalidTransitionError):
            store.transition_painting(painting.id, PaintingStatus.PENDING, PaintingStatus.COMPLETED)
        assert store.get_painting(painting.id).status is PaintingStatus.PENDING

    def test_unknown_painting(self, store: PaintingStore):
        with pytest.raises(NotFoundError):
            store.transition_painting(99, PaintingStatus.PENDING, PaintingStatus.GENERATING_IMAGE)

    def test_reset_to_pending_clears_outcome(self, store: PaintingStore, title):
        _, painting = store.create_idea_with_painting(title.id, _draft(1))
        store.transition_painting(painting.id, PaintingStatus.PENDING, PaintingStatus.GENERATING_IMAGE)
        store.transition_painting(
            painting.id,
            PaintingStatus.GENERATING_IMAGE,
            PaintingStatus.FAILED,
            error_message="quota exceeded",
        )
        reset = store.transition_painting(
            painting.id, PaintingStatus.FAILED, PaintingStatus.PENDING, refresh_created_at=True
        )
        assert reset.error_message is None
        assert reset.created_at > painting.created_at


class TestReplaceIdea:
    def _rejected(self, store: PaintingStore, title):
        idea, painting = store.create_idea_with_painting(title.id, _draft(1))
        store.transition_painting(painting.id, PaintingStatus.PENDING, PaintingStatus.GENERATING_IMAGE)
        store.transition_painting(
            painting.id,
            PaintingStatus.GENERATING_IMAGE,
            PaintingStatus.SAFETY_VIOLATION,
            error_message="rejected",
        )
        return idea, painting

    def test_replace_points_at_new_idea(self, store: PaintingStore, title):
        old_idea, painting = self._rejected(store, title)
        new_idea, updated = store.replace_painting_idea(painting.id, _draft(2))
        assert updated.idea_id == new_idea.id != old_idea.id
        assert updated.status is PaintingStatus.PENDING
        assert store.get_idea(old_idea.id).full_prompt == "prompt 1"

    def test_replace_requires_safety_violation(self, store: PaintingStore, title):
        """Nothing is written, not even the new idea, when the status is wrong."""
        _, painting = store.create_idea_with_painting(title.id, _draft(1))
        with pytest.raises(InvalidTransitionError):
            store.replace_painting_idea(painting.id, _draft(2))
        assert len(store.get_previous_ideas(title.id)) == 1


class TestDetails:
    def test_details_newest_first_with_prompt_details(self, store: PaintingStore, title):
        store.create_idea_with_painting(title.id, _draft(1))
        store.create_idea_with_painting(title.id, _draft(2), [5])

        details = store.list_painting_details(title.id)
        assert [item.summary for item in details] == ["summary 2", "summary 1"]

        payload = details[0].to_dict({5})
        assert payload["status"] == "pending"
        assert payload["promptDetails"]["title"] == "Harbour at dusk"
        assert payload["promptDetails"]["instructions"] == "Muted palette, oil on canvas"
        assert payload["promptDetails"]["referenceImages"] == [5]
        assert payload["promptDetails"]["fullPrompt"] == "prompt 2"

    def test_default_instructions_text(self, store: PaintingStore):
        bare = store.create_title("Bare")
        store.create_idea_with_painting(bare.id, _draft(1))
        payload = store.list_painting_details(bare.id)[0].to_dict()
        assert payload["promptDetails"]["instructions"] == "No custom instructions provided"


class TestErrors:
    def test_sqlite_errors_become_persistence_errors(self, store: PaintingStore, title):
        conn = sqlite3.connect(store.db_path)
        try:
            conn.execute("DROP TABLE paintings")
            conn.commit()
        finally:
            conn.close()
        with pytest.raises(PersistenceError):
            store.count_paintings(title.id)

"""Tests for paintworks.core.sequencer — ordered idea generation."""

from __future__ import annotations

import threading

import pytest

from paintworks.core.errors import BatchInterruptedError, PersistenceError, UpstreamGenerationError
from paintworks.core.models import IdeaDraft
from paintworks.core.sequencer import IdeaSequencer


def _store_hand_off(store, title):
    def hand_off(draft):
        idea, _ = store.create_idea_with_painting(title.id, draft)
        return idea

    return hand_off


class TestPriorContext:
    def test_each_item_sees_all_earlier_items(self, store, title, idea_client):
        """Item i receives the summaries of items 0..i-1, oldest first."""
        sequencer = IdeaSequencer(idea_client, store)
        ideas = sequencer.run_batch(title, 5, _store_hand_off(store, title))

        assert len(ideas) == 5
        summaries = [idea.summary for idea in ideas]
        for index, (_, _, prior) in enumerate(idea_client.calls):
            assert prior == summaries[:index]

    def test_earlier_batches_are_included(self, store, title, idea_client):
        sequencer = IdeaSequencer(idea_client, store)
        first = sequencer.run_batch(title, 2, _store_hand_off(store, title))
        idea_client.calls.clear()

        sequencer.run_batch(title, 2, _store_hand_off(store, title))

        first_summaries = [idea.summary for idea in first]
        assert idea_client.calls[0][2] == first_summaries
        assert idea_client.calls[1][2][:2] == first_summaries
        assert len(idea_client.calls[1][2]) == 3

    def test_duplicate_summaries_sent_once(self, store, title, idea_client):
        store.create_idea_with_painting(title.id, IdeaDraft("a fox", "p1"))
        store.create_idea_with_painting(title.id, IdeaDraft("a fox", "p2"))
        store.create_idea_with_painting(title.id, IdeaDraft("a heron", "p3"))

        sequencer = IdeaSequencer(idea_client, store)
        assert sequencer.prior_summaries(title.id) == ["a fox", "a heron"]

    def test_title_text_and_instructions_passed(self, store, title, idea_client):
        sequencer = IdeaSequencer(idea_client, store)
        sequencer.run_batch(title, 1, _store_hand_off(store, title))
        assert idea_client.calls[0][:2] == ("Harbour at dusk", "Muted palette, oil on canvas")


class TestInterruption:
    def test_failure_mid_batch_keeps_created_items(self, store, title, idea_client):
        idea_client.fail_at = 2
        sequencer = IdeaSequencer(idea_client, store)

        with pytest.raises(BatchInterruptedError) as exc_info:
            sequencer.run_batch(title, 5, _store_hand_off(store, title))

        error = exc_info.value
        assert isinstance(error.cause, UpstreamGenerationError)
        assert len(error.created) == 2
        assert store.count_paintings(title.id) == 2
        assert len(idea_client.calls) == 3

    def test_persistence_failure_interrupts(self, store, title, idea_client):
        calls = []

        def hand_off(draft):
            calls.append(draft)
            if len(calls) == 2:
                raise PersistenceError("disk full")
            idea, _ = store.create_idea_with_painting(title.id, draft)
            return idea

        sequencer = IdeaSequencer(idea_client, store)
        with pytest.raises(BatchInterruptedError) as exc_info:
            sequencer.run_batch(title, 3, hand_off)
        assert isinstance(exc_info.value.cause, PersistenceError)
        assert len(exc_info.value.created) == 1

    def test_blank_draft_is_upstream_failure(self, store, title):
        class BlankIdeas:
            def generate_idea(self, title, instructions, prior_summaries):
                return IdeaDraft(summary="  ", full_prompt="something")

        sequencer = IdeaSequencer(BlankIdeas(), store)
        with pytest.raises(BatchInterruptedError) as exc_info:
            sequencer.run_batch(title, 2, _store_hand_off(store, title))
        assert exc_info.value.created == []


class TestSerialisation:
    def test_concurrent_batches_for_one_title_do_not_interleave(self, store, title):
        """The second batch starts only after the first one finished."""
        in_call = threading.Lock()
        overlaps = []
        counter = iter(range(1000))

        class SlowIdeas:
            def generate_idea(self, title, instructions, prior_summaries):
                if not in_call.acquire(blocking=False):
                    overlaps.append(True)
                    in_call.acquire()
                try:
                    n = next(counter)
                    return IdeaDraft(f"idea {n}", f"prompt {n}")
                finally:
                    in_call.release()

        sequencer = IdeaSequencer(SlowIdeas(), store)
        threads = [
            threading.Thread(
                target=sequencer.run_batch, args=(title, 4, _store_hand_off(store, title))
            )
            for _ in range(2)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert not overlaps
        priors = [idea.summary for idea in reversed(store.get_previous_ideas(title.id))]
        assert len(priors) == 8


class TestRegenerate:
    def test_regenerate_uses_full_context(self, store, title, idea_client):
        sequencer = IdeaSequencer(idea_client, store)
        created = sequencer.run_batch(title, 3, _store_hand_off(store, title))

        draft = sequencer.regenerate_idea(title, created[1].full_prompt)

        _, prior, rejected = idea_client.regenerate_calls[0]
        assert prior == [idea.summary for idea in created]
        assert rejected == created[1].full_prompt
        assert draft.full_prompt != created[1].full_prompt

    def test_repeated_prompt_refused(self, store, title, idea_client):
        idea_client.repeat_rejected = True
        sequencer = IdeaSequencer(idea_client, store)
        with pytest.raises(UpstreamGenerationError, match="repeated"):
            sequencer.regenerate_idea(title, "Paint the harbour")

"""Sequential idea generation for a title.

Every idea is generated with the summaries of all ideas that came before it
for the same title, including the ones created earlier in the same batch, so
the idea service can steer away from repeats.  That only works if calls for a
title happen one at a time and each sees the previous one's result, which is
what the per-title lock below guarantees.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Protocol

from paintworks.core.errors import (
    BatchInterruptedError,
    PersistenceError,
    UpstreamGenerationError,
)
from paintworks.core.models import Idea, IdeaDraft, Title
from paintworks.core.store import PaintingStore

logger = logging.getLogger(__name__)


class IdeaGenerator(Protocol):
    def generate_idea(
        self, title: str, instructions: str, prior_summaries: list[str]
    ) -> IdeaDraft: ...

    def regenerate_idea(
        self,
        title: str,
        instructions: str,
        prior_summaries: list[str],
        rejected_prompt: str,
    ) -> IdeaDraft: ...


def _validate_draft(draft: IdeaDraft) -> IdeaDraft:
    summary = (draft.summary or "").strip()
    full_prompt = (draft.full_prompt or "").strip()
    if not summary or not full_prompt:
        raise UpstreamGenerationError("Idea service returned an empty summary or prompt")
    return IdeaDraft(summary=summary, full_prompt=full_prompt)


class IdeaSequencer:
    """Generates ideas for a title strictly one after another.

    Args:
        idea_client: Remote idea generator (see :class:`IdeaGenerator`).
        store: Store used to read the title's earlier ideas.
    """

    def __init__(self, idea_client: IdeaGenerator, store: PaintingStore):
        self.idea_client = idea_client
        self.store = store
        self._locks: dict[int, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _title_lock(self, title_id: int) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(title_id, threading.Lock())

    def prior_summaries(self, title_id: int) -> list[str]:
        """Stored summaries for the title, oldest first, without duplicates."""
        ideas = reversed(self.store.get_previous_ideas(title_id))
        return list(dict.fromkeys(idea.summary for idea in ideas if idea.summary))

    def generate_next_idea(self, title: Title, prior_summaries: list[str]) -> IdeaDraft:
        """Ask the idea service for one new idea given everything before it."""
        draft = self.idea_client.generate_idea(title.text, title.instructions, list(prior_summaries))
        return _validate_draft(draft)

    def run_batch(
        self,
        title: Title,
        quantity: int,
        hand_off: Callable[[IdeaDraft], Idea],
    ) -> list[Idea]:
        """Generate ``quantity`` ideas in order, handing each off as it arrives.

        ``hand_off`` stores the idea (with its painting) and queues the image
        work, so image generation for early items starts while later ideas
        are still being written.

        Returns:
            The stored ideas in creation order.

        Raises:
            BatchInterruptedError: The idea service or the store failed part
                way.  Items handed off before the failure are kept and keep
                processing.
        """
        created: list[Idea] = []
        with self._title_lock(title.id):
            prior = self.prior_summaries(title.id)
            logger.info(
                "Generating %d idea(s) for title %s with %d prior idea(s)",
                quantity,
                title.id,
                len(prior),
            )
            for index in range(quantity):
                try:
                    draft = self.generate_next_idea(title, prior)
                    idea = hand_off(draft)
                except (UpstreamGenerationError, PersistenceError) as exc:
                    logger.warning(
                        "Batch for title %s stopped at item %d/%d: %s",
                        title.id,
                        index + 1,
                        quantity,
                        exc,
                    )
                    raise BatchInterruptedError(exc, created) from exc
                created.append(idea)
                if idea.summary not in prior:
                    prior.append(idea.summary)
        logger.info("Created %d idea(s) for title %s", len(created), title.id)
        return created

    def regenerate_idea(self, title: Title, rejected_prompt: str) -> IdeaDraft:
        """Ask for a safer replacement for a prompt the image service refused.

        Raises:
            UpstreamGenerationError: The service failed or returned the
                rejected prompt again.
        """
        with self._title_lock(title.id):
            prior = self.prior_summaries(title.id)
            draft = _validate_draft(
                self.idea_client.regenerate_idea(
                    title.text, title.instructions, prior, rejected_prompt
                )
            )
        if draft.full_prompt == (rejected_prompt or "").strip():
            raise UpstreamGenerationError("Idea service repeated the rejected prompt")
        return draft

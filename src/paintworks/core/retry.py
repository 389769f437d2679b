"""Retry paths for paintings that ended badly.

A ``failed`` painting is retried with the prompt it already has.  A
``safety_violation`` painting first gets a brand new idea, since sending the
same prompt again would be refused again.  In both cases the second attempt
records a content-policy refusal as ``failed``, so a painting can only take
the regenerate path once per rejection.
"""

import logging
from typing import Callable

from paintworks.core.errors import ValidationError
from paintworks.core.models import Idea, ImageJob, Painting
from paintworks.core.sequencer import IdeaSequencer
from paintworks.core.state import PaintingStatus, ensure_retry_action
from paintworks.core.store import PaintingStore

logger = logging.getLogger(__name__)


class RetryCoordinator:
    """Resets recoverable paintings to ``pending`` and queues them again.

    Args:
        store: Painting store.
        sequencer: Used to generate replacement ideas.
        enqueue: Submits an :class:`ImageJob` to the image scheduler.
    """

    def __init__(
        self,
        store: PaintingStore,
        sequencer: IdeaSequencer,
        enqueue: Callable[[ImageJob], None],
    ):
        self.store = store
        self.sequencer = sequencer
        self._enqueue = enqueue

    def _job_for(self, painting: Painting, prompt: str) -> ImageJob:
        references = tuple(self.store.get_references_by_ids(painting.used_reference_ids))
        return ImageJob(
            painting_id=painting.id,
            prompt=prompt,
            references=references,
            safety_status=PaintingStatus.FAILED,
        )

    def retry(self, painting_id: int) -> Painting:
        """Retry a ``failed`` painting with its existing prompt.

        Returns:
            The painting, now ``pending``.

        Raises:
            NotFoundError: Unknown painting.
            InvalidTransitionError: The painting is not ``failed``.
            ValidationError: The painting's idea has no prompt to retry with.
        """
        painting = self.store.get_painting(painting_id)
        ensure_retry_action(painting.status, "retry")

        idea = self.store.get_idea(painting.idea_id)
        if not idea.full_prompt.strip():
            raise ValidationError(f"Painting {painting_id} has no prompt to retry with")

        painting = self.store.transition_painting(
            painting_id,
            PaintingStatus.FAILED,
            PaintingStatus.PENDING,
            refresh_created_at=True,
        )
        self._enqueue(self._job_for(painting, idea.full_prompt))
        logger.info(f"Painting {painting_id} queued for retry")
        return painting

    def regenerate_prompt(self, painting_id: int) -> tuple[Idea, Painting]:
        """Replace the idea of a ``safety_violation`` painting and queue it again.

        Returns:
            The new idea and the painting, now ``pending``.

        Raises:
            NotFoundError: Unknown painting.
            InvalidTransitionError: The painting is not ``safety_violation``,
                or left that status while the new idea was being generated.
            UpstreamGenerationError: The idea service failed or repeated the
                rejected prompt.  The painting is left untouched.
        """
        painting = self.store.get_painting(painting_id)
        ensure_retry_action(painting.status, "regenerate_prompt")

        rejected = self.store.get_idea(painting.idea_id)
        title = self.store.get_title(painting.title_id)
        draft = self.sequencer.regenerate_idea(title, rejected.full_prompt)

        idea, painting = self.store.replace_painting_idea(
            painting_id, draft, expected=PaintingStatus.SAFETY_VIOLATION
        )
        self._enqueue(self._job_for(painting, idea.full_prompt))
        logger.info(
            "Painting %s moved from idea %s to idea %s and queued", painting_id, rejected.id, idea.id
        )
        return idea, painting

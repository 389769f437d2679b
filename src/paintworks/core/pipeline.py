"""Painting generation pipeline.

Ties the pieces together: a batch request generates ideas one at a time
(:class:`~paintworks.core.sequencer.IdeaSequencer`), each idea is stored with
a ``pending`` painting and immediately queued for rendering
(:class:`~paintworks.core.scheduler.ImageScheduler`), and the call returns as
soon as every idea exists.  Rendering finishes in the background and clients
follow it by polling :meth:`PaintingPipeline.status`.
"""

import logging
from typing import Any, Optional

from paintworks.core.config import PaintworksConfig, config as default_config
from paintworks.core.errors import (
    InvalidTransitionError,
    SafetyRejection,
    UpstreamGenerationError,
    ValidationError,
)
from paintworks.core.gallery import save_painting_image
from paintworks.core.idea_client import IdeaClient
from paintworks.core.image_client import ImageClient
from paintworks.core.models import Idea, IdeaDraft, ImageJob, Painting
from paintworks.core.retry import RetryCoordinator
from paintworks.core.scheduler import ImageScheduler
from paintworks.core.sequencer import IdeaSequencer
from paintworks.core.state import PaintingStatus
from paintworks.core.store import PaintingStore

logger = logging.getLogger(__name__)


class PaintingPipeline:
    """Batch generation, background rendering and retries for paintings.

    Args:
        store: Durable painting store.
        idea_client: Idea generator (``generate_idea``/``regenerate_idea``).
        image_client: Image generator (``generate_image``).
        config: Configuration object. If None, uses global default config.
    """

    def __init__(
        self,
        store: PaintingStore,
        idea_client: Any,
        image_client: Any,
        config: Optional[PaintworksConfig] = None,
    ):
        self.config = config or default_config
        self.store = store
        self.idea_client = idea_client
        self.image_client = image_client
        self.sequencer = IdeaSequencer(idea_client, store)
        self.scheduler: ImageScheduler[ImageJob] = ImageScheduler(
            self._render,
            max_concurrency=self.config.max_parallel_images,
            name="painting-worker",
        )
        self.retries = RetryCoordinator(store, self.sequencer, self.scheduler.enqueue)

        logger.info(
            f"Initialized PaintingPipeline with {self.config.max_parallel_images} image worker(s)"
        )

    @classmethod
    def from_config(cls, config: Optional[PaintworksConfig] = None) -> "PaintingPipeline":
        """Build a pipeline talking to the services named in ``config``."""
        config = config or default_config
        return cls(
            store=PaintingStore(config.database_path),
            idea_client=IdeaClient.from_config(config),
            image_client=ImageClient.from_config(config),
            config=config,
        )

    def start(self) -> None:
        self.scheduler.start()

    def shutdown(self, wait: bool = True) -> None:
        """Stop the image workers, then close the service clients."""
        self.scheduler.shutdown(wait=wait)
        self.idea_client.close()
        self.image_client.close()

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------
    def _validate_quantity(self, quantity: Any) -> int:
        if quantity is None:
            return self.config.default_quantity
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise ValidationError("quantity must be an integer")
        if not 1 <= quantity <= self.config.max_batch_quantity:
            raise ValidationError(
                f"quantity must be between 1 and {self.config.max_batch_quantity}"
            )
        return quantity

    def generate_batch(self, title_id: int, quantity: Optional[int] = None) -> list[Idea]:
        """Create ``quantity`` ideas for a title and queue their paintings.

        Every idea and its ``pending`` painting exist when this returns; the
        images are rendered afterwards on the scheduler's workers.

        Args:
            title_id: Title to generate for.
            quantity: Batch size, ``1..max_batch_quantity``.  Defaults to
                ``config.default_quantity``.

        Returns:
            The created ideas in creation order.

        Raises:
            ValidationError: Invalid quantity.  Nothing is created.
            NotFoundError: Unknown title.  Nothing is created.
            BatchInterruptedError: Idea generation failed part way.
        """
        quantity = self._validate_quantity(quantity)
        title = self.store.get_title(title_id)
        references = tuple(self.store.get_references(title_id))
        reference_ids = [reference.id for reference in references]

        def hand_off(draft: IdeaDraft) -> Idea:
            idea, painting = self.store.create_idea_with_painting(
                title.id, draft, used_reference_ids=reference_ids
            )
            self.scheduler.enqueue(
                ImageJob(painting_id=painting.id, prompt=idea.full_prompt, references=references)
            )
            return idea

        logger.info(
            f"Starting batch of {quantity} for title {title.id} "
            f"with {len(references)} reference image(s)"
        )
        return self.sequencer.run_batch(title, quantity, hand_off)

    # ------------------------------------------------------------------
    # Rendering (runs on scheduler workers)
    # ------------------------------------------------------------------
    def _render(self, job: ImageJob) -> None:
        try:
            self.store.transition_painting(
                job.painting_id, PaintingStatus.PENDING, PaintingStatus.GENERATING_IMAGE
            )
        except InvalidTransitionError as exc:
            logger.warning(f"Skipping painting {job.painting_id}: {exc}")
            return

        try:
            image_bytes = self.image_client.generate_image(job.prompt, job.references)
            image_url = save_painting_image(image_bytes, self.config.gallery_dir, job.painting_id)
        except SafetyRejection as exc:
            logger.warning(f"Painting {job.painting_id} rejected by safety system: {exc}")
            self._finish(job.painting_id, job.safety_status, error_message=str(exc))
            return
        except UpstreamGenerationError as exc:
            logger.warning(f"Painting {job.painting_id} failed: {exc}")
            self._finish(job.painting_id, PaintingStatus.FAILED, error_message=str(exc))
            return
        except Exception as exc:
            logger.exception(f"Unexpected error rendering painting {job.painting_id}")
            self._finish(
                job.painting_id,
                PaintingStatus.FAILED,
                error_message=f"Unexpected error: {exc}",
            )
            return

        self._finish(job.painting_id, PaintingStatus.COMPLETED, image_url=image_url)
        logger.info(f"Painting {job.painting_id} completed: {image_url}")

    def _finish(
        self,
        painting_id: int,
        status: PaintingStatus,
        *,
        image_url: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        self.store.transition_painting(
            painting_id,
            PaintingStatus.GENERATING_IMAGE,
            status,
            image_url=image_url,
            error_message=error_message,
        )

    # ------------------------------------------------------------------
    # Status and retries
    # ------------------------------------------------------------------
    def status(self, title_id: int) -> dict:
        """Snapshot of a title's paintings, newest first.

        Returns:
            ``{"paintings": [...], "referenceDataMap": {id: image_data}}``
            where the map holds every reference image used by a listed
            painting.

        Raises:
            NotFoundError: Unknown title.
        """
        self.store.get_title(title_id)
        details = self.store.list_painting_details(title_id)
        used_ids = {ref_id for item in details for ref_id in item.painting.used_reference_ids}
        reference_data = self.store.get_reference_data(used_ids)
        known_ids = set(reference_data)
        return {
            "paintings": [item.to_dict(known_ids) for item in details],
            "referenceDataMap": {str(ref_id): data for ref_id, data in reference_data.items()},
        }

    def retry(self, painting_id: int) -> Painting:
        return self.retries.retry(painting_id)

    def regenerate_prompt(self, painting_id: int) -> tuple[Idea, Painting]:
        return self.retries.regenerate_prompt(painting_id)

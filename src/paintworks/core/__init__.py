"""Core functionality for painting generation.

This module provides the core components for Paintworks:

- **PaintingPipeline**: Batch generation, background rendering and retries
- **PaintingStore**: SQLite-backed titles, ideas, paintings and references
- **IdeaSequencer**: Strictly ordered idea generation per title
- **ImageScheduler**: Bounded FIFO worker pool for image calls
- **RetryCoordinator**: Retry and regenerate-prompt paths
- **PaintworksConfig**: Configuration management using Pydantic Settings
- **config**: Global configuration instance (loads from environment variables)

Architecture Overview
---------------------
1. **Configuration Layer** (config.py):
   - Environment-based configuration using Pydantic Settings
   - All settings prefixed with PAINTWORKS_ in .env files

2. **State Layer** (state.py, store.py, models.py):
   - Painting status machine and its allowed transitions
   - Compare-and-set updates keyed by painting id and expected status

3. **Generation Layer** (sequencer.py, scheduler.py, pipeline.py, retry.py):
   - Ideas are generated one at a time, each seeing all earlier ideas
   - Images are rendered by at most ``max_parallel_images`` workers

4. **Remote Services** (idea_client.py, image_client.py):
   - Chat completions API with a forced tool call for ideas
   - Images API for rendering, with reference images as edit inputs

Usage Example
-------------
    from paintworks.core import PaintingPipeline, config

    pipeline = PaintingPipeline.from_config(config)
    pipeline.start()
    ideas = pipeline.generate_batch(title_id=1, quantity=3)
    snapshot = pipeline.status(1)
"""

from paintworks.core.config import PaintworksConfig, config
from paintworks.core.errors import (
    BatchInterruptedError,
    InvalidTransitionError,
    NotFoundError,
    PaintworksError,
    PersistenceError,
    SafetyRejection,
    UpstreamGenerationError,
    ValidationError,
)
from paintworks.core.pipeline import PaintingPipeline
from paintworks.core.scheduler import ImageScheduler
from paintworks.core.sequencer import IdeaSequencer
from paintworks.core.state import PaintingStatus
from paintworks.core.store import PaintingStore

__all__ = [
    "BatchInterruptedError",
    "IdeaSequencer",
    "ImageScheduler",
    "InvalidTransitionError",
    "NotFoundError",
    "PaintingPipeline",
    "PaintingStatus",
    "PaintingStore",
    "PaintworksConfig",
    "PaintworksError",
    "PersistenceError",
    "SafetyRejection",
    "UpstreamGenerationError",
    "ValidationError",
    "config",
]

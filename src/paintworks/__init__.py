"""Paintworks - batch painting generation with bounded image concurrency."""

__version__ = "0.3.0"

from paintworks.core.config import PaintworksConfig, config
from paintworks.core.state import PaintingStatus

__all__ = [
    "PaintworksConfig",
    "config",
    "PaintingStatus",
]

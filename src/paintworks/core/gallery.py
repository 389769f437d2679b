"""Storage for generated painting images.

Images arrive from the image service as encoded bytes (PNG, JPEG or WebP).
They are decoded with Pillow, which doubles as validation of the service's
response, and re-encoded as PNG into the gallery directory.  The directory is
mounted by the API at ``/static/paintings`` so the returned URL can be handed
straight to clients.
"""

from __future__ import annotations

import io
import logging
import uuid
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from paintworks.core.errors import UpstreamGenerationError

logger = logging.getLogger(__name__)

GALLERY_URL_PREFIX = "/static/paintings"


def save_painting_image(image_bytes: bytes, gallery_dir: Path, painting_id: int) -> str:
    """Decode ``image_bytes`` and write them to the gallery as a PNG.

    Each attempt gets a unique filename, so a retried painting never
    overwrites the file of an earlier attempt that a client may still show.

    Args:
        image_bytes: Encoded image returned by the image service.
        gallery_dir: Directory to write into (created if missing).
        painting_id: Painting the image belongs to, used in the filename.

    Returns:
        Public URL of the saved file, e.g. ``/static/paintings/painting-7-ab12cd34.png``.

    Raises:
        UpstreamGenerationError: The bytes are not a decodable image.
    """
    try:
        image = Image.open(io.BytesIO(image_bytes))
        image.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise UpstreamGenerationError(f"Image service returned undecodable data: {exc}") from exc

    if image.mode not in ("RGB", "RGBA"):
        image = image.convert("RGBA" if "A" in image.getbands() else "RGB")

    gallery_dir.mkdir(parents=True, exist_ok=True)
    filename = f"painting-{painting_id}-{uuid.uuid4().hex[:8]}.png"
    filepath = gallery_dir / filename
    image.save(filepath, format="PNG")
    logger.info("Saved painting %s image to %s (%dx%d)", painting_id, filepath, *image.size)

    return f"{GALLERY_URL_PREFIX}/{filename}"

"""HTTP client for the image generation service.

Talks to an OpenAI-compatible Images API.  Prompts without reference images
go to ``/images/generations``; prompts with references go to
``/images/edits`` as a multipart upload so the references can steer the
result.  Either way the caller gets raw encoded image bytes back.
"""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Sequence
from typing import Any

import requests

from paintworks.core.config import PaintworksConfig
from paintworks.core.errors import SafetyRejection, UpstreamGenerationError
from paintworks.core.models import Reference

logger = logging.getLogger(__name__)

# Error codes the Images API uses for content-policy refusals.
SAFETY_ERROR_CODES = frozenset({"content_policy_violation", "moderation_blocked"})


def decode_image_data(value: str) -> tuple[bytes, str] | None:
    """Decode a base64 payload or ``data:`` URL.

    Returns:
        ``(bytes, mime_type)``, or None if the value cannot be decoded.
    """
    candidate = (value or "").strip()
    if not candidate:
        return None
    mime_type = "image/png"
    if candidate.lower().startswith("data:") and "," in candidate:
        header, _, candidate = candidate.partition(",")
        declared = header[5:].split(";", 1)[0].strip()
        if declared:
            mime_type = declared
    try:
        decoded = base64.b64decode(candidate, validate=False)
    except (binascii.Error, ValueError):
        return None
    if not decoded:
        return None
    return decoded, mime_type


def _error_details(response: requests.Response) -> tuple[str, str]:
    """Return ``(code, message)`` from an Images API error body."""
    try:
        payload = response.json()
    except ValueError:
        return "", response.text[:300]
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        return str(error.get("code") or error.get("type") or ""), str(error.get("message") or "")
    if isinstance(error, str):
        return "", error
    return "", response.text[:300]


def is_safety_rejection(code: str, message: str) -> bool:
    return code in SAFETY_ERROR_CODES or "safety" in message.lower()


class ImageClient:
    """Generates painting images through an Images API.

    Args:
        base_url: API root, e.g. ``https://api.openai.com/v1``.
        api_key: Bearer token.
        model: Image model identifier.
        size: Requested output size (``"1024x1024"`` etc.).
        timeout: Request timeout in seconds.
        session: Optional pre-configured ``requests.Session``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None,
        model: str,
        *,
        size: str = "1024x1024",
        timeout: float = 300.0,
        session: requests.Session | None = None,
    ):
        trimmed = (base_url or "").strip().rstrip("/")
        if not trimmed:
            raise ValueError("ImageClient base_url cannot be empty")
        self.base_url = trimmed
        self.api_key = api_key
        self.model = model
        self.size = size
        self.timeout = timeout
        self._session = session or requests.Session()

    @classmethod
    def from_config(cls, config: PaintworksConfig) -> ImageClient:
        return cls(
            config.image_api_url,
            config.image_api_key,
            config.image_model,
            size=config.image_size,
            timeout=config.image_timeout_seconds,
        )

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise UpstreamGenerationError(
                "Image service API key is missing. Set PAINTWORKS_IMAGE_API_KEY."
            )
        return {"Authorization": f"Bearer {self.api_key}"}

    def _reference_files(self, references: Sequence[Reference]) -> list[tuple[str, Any]]:
        files = []
        for reference in references:
            decoded = decode_image_data(reference.image_data)
            if decoded is None:
                logger.warning("Skipping undecodable reference image %s", reference.id)
                continue
            data, mime_type = decoded
            extension = mime_type.rsplit("/", 1)[-1] or "png"
            files.append(("image[]", (f"reference-{reference.id}.{extension}", data, mime_type)))
        return files

    def generate_image(self, prompt: str, references: Sequence[Reference] = ()) -> bytes:
        """Render ``prompt`` and return the encoded image bytes.

        Raises:
            SafetyRejection: The service refused the prompt on content grounds.
            UpstreamGenerationError: Any other failure (network, quota,
                malformed response).
        """
        headers = self._headers()
        files = self._reference_files(references)
        try:
            if files:
                response = self._session.post(
                    f"{self.base_url}/images/edits",
                    data={"model": self.model, "prompt": prompt, "size": self.size, "n": "1"},
                    files=files,
                    headers=headers,
                    timeout=self.timeout,
                )
            else:
                response = self._session.post(
                    f"{self.base_url}/images/generations",
                    json={"model": self.model, "prompt": prompt, "size": self.size, "n": 1},
                    headers=headers,
                    timeout=self.timeout,
                )
        except requests.RequestException as exc:
            raise UpstreamGenerationError(f"Image service request failed: {exc}") from exc

        if not response.ok:
            code, message = _error_details(response)
            if is_safety_rejection(code, message):
                raise SafetyRejection(message or "Image rejected by safety system")
            raise UpstreamGenerationError(
                f"Image service returned HTTP {response.status_code}: {message}"
            )
        return self._extract_image(response)

    def _extract_image(self, response: requests.Response) -> bytes:
        try:
            payload = response.json()
            item = payload["data"][0]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise UpstreamGenerationError("Image service response did not contain image data") from exc

        if item.get("b64_json"):
            decoded = decode_image_data(str(item["b64_json"]))
            if decoded is None:
                raise UpstreamGenerationError("Image service returned invalid base64 data")
            return decoded[0]

        if item.get("url"):
            try:
                download = self._session.get(item["url"], timeout=self.timeout)
                download.raise_for_status()
            except requests.RequestException as exc:
                raise UpstreamGenerationError(f"Failed to download generated image: {exc}") from exc
            return download.content

        raise UpstreamGenerationError("Image service response did not contain image data")

    def close(self) -> None:
        self._session.close()

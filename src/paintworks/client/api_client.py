"""HTTP client for the Paintworks API."""

from __future__ import annotations

import logging
from typing import Any

import requests

logger = logging.getLogger(__name__)


class PaintworksClientError(RuntimeError):
    """Raised when the API answers with a non-2xx status or cannot be reached.

    Attributes:
        status_code: HTTP status, or 0 when the request never got a response.
        detail: The ``detail`` field of the error body (a string, or a dict
            for interrupted batches), falling back to the raw body text.
    """

    def __init__(self, status_code: int, detail: Any):
        message = detail.get("message") if isinstance(detail, dict) else detail
        super().__init__(f"HTTP {status_code}: {message}" if status_code else str(message))
        self.status_code = status_code
        self.detail = detail


class PaintworksClient:
    """Thin wrapper over the four painting endpoints.

    Args:
        base_url: Server root, e.g. ``http://localhost:3000``.
        token: Bearer token sent on every request, if the server needs one.
        session: Optional pre-configured ``requests.Session``.
        timeout: Request timeout in seconds.  Generate calls wait for every
            idea to be written, so this should allow for several idea calls.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        session: requests.Session | None = None,
        timeout: float = 600.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise PaintworksClientError(0, f"Request to {url} failed: {exc}") from exc

        if not response.ok:
            try:
                detail = response.json().get("detail", response.text)
            except (ValueError, AttributeError):
                detail = response.text
            raise PaintworksClientError(response.status_code, detail)
        return response.json()

    def get_config(self) -> dict:
        """Server limits: ``max_batch_quantity``, ``default_quantity`` and friends."""
        return self._request("GET", "/api/config")

    def generate(self, title_id: int, quantity: int | None = None) -> dict:
        """Start a batch.  Returns ``{"success", "message", "ideas"}``."""
        payload: dict[str, Any] = {"title_id": title_id}
        if quantity is not None:
            payload["quantity"] = quantity
        return self._request("POST", "/api/paintings/generate", json=payload)

    def get_status(self, title_id: int) -> dict:
        """Return ``{"paintings": [...], "referenceDataMap": {...}}`` for a title."""
        return self._request("GET", f"/api/paintings/{title_id}")

    def retry(self, painting_id: int) -> dict:
        return self._request("POST", f"/api/paintings/{painting_id}/retry")

    def regenerate_prompt(self, painting_id: int) -> dict:
        return self._request("POST", f"/api/paintings/{painting_id}/regenerate-prompt")

    def close(self) -> None:
        self._session.close()

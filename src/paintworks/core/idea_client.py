"""HTTP client for the painting idea service.

The service is any OpenRouter-compatible chat completions endpoint.  Each
request forces a ``savePaintingIdea`` tool call, so the answer arrives as
structured JSON (``summary`` and ``fullPrompt``) rather than free text.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import requests

from paintworks.core.config import PaintworksConfig
from paintworks.core.errors import UpstreamGenerationError
from paintworks.core.models import IdeaDraft

logger = logging.getLogger(__name__)

TOOL_NAME = "savePaintingIdea"

_SYSTEM_PROMPT = (
    "You are a creative painting designer. "
    "Generate unique painting concepts that haven't been suggested before."
)
_SAFER_SYSTEM_PROMPT = (
    "You are a creative painting designer. Generate a new, safer painting concept "
    "that avoids any content that might violate safety guidelines."
)


def _idea_tool(description: str, summary_hint: str, prompt_hint: str) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": TOOL_NAME,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": {
                    "summary": {"type": "string", "description": summary_hint},
                    "fullPrompt": {"type": "string", "description": prompt_hint},
                },
                "required": ["summary", "fullPrompt"],
            },
        },
    }


_IDEA_TOOL = _idea_tool(
    "Save a painting idea",
    "A short summary of the painting idea (30-50 words)",
    "The full prompt to generate this painting image "
    "(100-200 words with detailed visual instructions)",
)
_SAFER_IDEA_TOOL = _idea_tool(
    "Save a safer painting idea",
    "A short summary of the safer painting idea (30-50 words)",
    "The full prompt to generate this painting image (100-200 words with detailed "
    "visual instructions, avoiding any potentially problematic content)",
)


def _context_lines(instructions: str, prior_summaries: list[str]) -> list[str]:
    lines = []
    if instructions:
        lines.append(f"Custom instructions: {instructions}")
    if prior_summaries:
        lines.append(f"Previous painting ideas: {'; '.join(prior_summaries)}")
    return lines


def build_idea_messages(
    title: str, instructions: str, prior_summaries: list[str]
) -> list[dict[str, str]]:
    """Chat messages asking for a new idea that differs from ``prior_summaries``."""
    user_lines = [f'Create a painting concept for the title: "{title}".']
    user_lines += _context_lines(instructions, prior_summaries)
    user_lines.append(
        "Please generate a completely new and different painting idea "
        "that hasn't been suggested yet."
    )
    return [
        {"role": "system", "content": _SYSTEM_PROMPT},
        {"role": "user", "content": "\n".join(user_lines)},
    ]


def build_safer_idea_messages(
    title: str,
    instructions: str,
    prior_summaries: list[str],
    rejected_prompt: str,
) -> list[dict[str, str]]:
    """Chat messages asking to replace a prompt rejected for safety reasons."""
    user_lines = [f'The previous prompt for "{title}" was rejected due to safety concerns.']
    if rejected_prompt:
        user_lines.append(f"Rejected prompt: {rejected_prompt}")
    user_lines += _context_lines(instructions, prior_summaries)
    user_lines.append(
        "Please generate a completely new, safer painting idea that maintains the "
        "artistic vision while avoiding any potentially problematic content."
    )
    return [
        {"role": "system", "content": _SAFER_SYSTEM_PROMPT},
        {"role": "user", "content": "\n".join(user_lines)},
    ]


def parse_tool_call(data: Any) -> IdeaDraft:
    """Extract the idea from a chat completion carrying a forced tool call.

    Raises:
        UpstreamGenerationError: The response does not contain a usable call.
    """
    try:
        tool_call = data["choices"][0]["message"]["tool_calls"][0]
        arguments = tool_call["function"]["arguments"]
    except (KeyError, IndexError, TypeError) as exc:
        raise UpstreamGenerationError("Idea service response has no tool call") from exc

    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments)
        except json.JSONDecodeError as exc:
            raise UpstreamGenerationError("Idea tool call arguments are not valid JSON") from exc
    if not isinstance(arguments, dict):
        raise UpstreamGenerationError("Idea tool call arguments are not an object")

    summary = arguments.get("summary")
    full_prompt = arguments.get("fullPrompt")
    if not isinstance(summary, str) or not isinstance(full_prompt, str):
        raise UpstreamGenerationError("Incomplete idea data received from idea service")
    if not summary.strip() or not full_prompt.strip():
        raise UpstreamGenerationError("Incomplete idea data received from idea service")
    return IdeaDraft(summary=summary.strip(), full_prompt=full_prompt.strip())


class IdeaClient:
    """Generates painting ideas through a chat completions API.

    Args:
        api_url: Full chat completions endpoint URL.
        api_key: Bearer token.  Requests fail fast when it is missing.
        model: Model identifier sent with each request.
        timeout: Request timeout in seconds.
        session: Optional pre-configured ``requests.Session``.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str | None,
        model: str,
        *,
        timeout: float = 120.0,
        session: requests.Session | None = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._session = session or requests.Session()

    @classmethod
    def from_config(cls, config: PaintworksConfig) -> IdeaClient:
        return cls(
            config.idea_api_url,
            config.idea_api_key,
            config.idea_model,
            timeout=config.idea_timeout_seconds,
        )

    def _request_idea(self, messages: list[dict[str, str]], tool: dict[str, Any]) -> IdeaDraft:
        if not self.api_key:
            raise UpstreamGenerationError(
                "Idea service API key is missing. Set PAINTWORKS_IDEA_API_KEY."
            )
        payload = {
            "model": self.model,
            "messages": messages,
            "tools": [tool],
            "tool_choice": {"type": "function", "function": {"name": TOOL_NAME}},
        }
        logger.debug("Requesting idea from %s with model %s", self.api_url, self.model)
        try:
            response = self._session.post(
                self.api_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise UpstreamGenerationError(f"Idea service request failed: {exc}") from exc

        if not response.ok:
            body_preview = response.text[:300]
            raise UpstreamGenerationError(
                f"Idea service returned HTTP {response.status_code}: {body_preview}"
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamGenerationError("Idea service response was not valid JSON") from exc
        return parse_tool_call(data)

    def generate_idea(
        self, title: str, instructions: str, prior_summaries: list[str]
    ) -> IdeaDraft:
        """Ask for one new idea for ``title``, distinct from ``prior_summaries``."""
        if not title:
            raise UpstreamGenerationError("Title text is required for idea generation")
        return self._request_idea(
            build_idea_messages(title, instructions, prior_summaries), _IDEA_TOOL
        )

    def regenerate_idea(
        self,
        title: str,
        instructions: str,
        prior_summaries: list[str],
        rejected_prompt: str,
    ) -> IdeaDraft:
        """Ask for a safer idea replacing ``rejected_prompt``."""
        if not title:
            raise UpstreamGenerationError("Title text is required for prompt regeneration")
        return self._request_idea(
            build_safer_idea_messages(title, instructions, prior_summaries, rejected_prompt),
            _SAFER_IDEA_TOOL,
        )

    def close(self) -> None:
        self._session.close()

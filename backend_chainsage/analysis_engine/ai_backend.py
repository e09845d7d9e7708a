"""
AI classification backend.

AIBackend is the seam the classifier talks to: one prompt in, raw text out.
AnthropicBackend calls Claude via the async SDK; the client is created lazily
so the package imports without an API key. Every failure (missing key, quota,
timeout, API error, empty reply) is raised as UpstreamUnavailable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from backend_chainsage.chainsage_logging import get_logger
from backend_chainsage.config.settings import DEFAULT_AI_TIMEOUT_SEC, DEFAULT_ANTHROPIC_MODEL, Settings
from backend_chainsage.core.exceptions import UpstreamUnavailable

logger = get_logger(__name__)

_MAX_TOKENS = 800


class AIBackend(ABC):
    """Text-completion service used for wallet and transaction analysis."""

    name: str = "ai"

    @abstractmethod
    async def complete(self, system: str, prompt: str) -> str:
        """Return the model's raw reply. Raise UpstreamUnavailable on failure."""
        ...


class AnthropicBackend(AIBackend):
    """Claude via anthropic.AsyncAnthropic."""

    name = "anthropic"

    def __init__(
        self,
        api_key: str,
        *,
        model: str = DEFAULT_ANTHROPIC_MODEL,
        timeout_sec: float = DEFAULT_AI_TIMEOUT_SEC,
        max_tokens: int = _MAX_TOKENS,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._timeout = timeout_sec
        self._max_tokens = max_tokens
        self._client: Any = None

    @classmethod
    def from_settings(cls, settings: Settings) -> AnthropicBackend:
        return cls(
            settings.anthropic_api_key,
            model=settings.anthropic_model,
            timeout_sec=settings.ai_timeout_sec,
        )

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        if not self._api_key:
            raise UpstreamUnavailable("ai", "ANTHROPIC_API_KEY not set")
        import anthropic

        self._client = anthropic.AsyncAnthropic(api_key=self._api_key, timeout=self._timeout)
        return self._client

    async def complete(self, system: str, prompt: str) -> str:
        import anthropic

        client = self._get_client()
        try:
            message = await client.messages.create(
                model=self._model,
                max_tokens=self._max_tokens,
                system=system,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as e:
            raise UpstreamUnavailable("ai", f"{type(e).__name__}: {e}") from e
        text = "".join(
            getattr(block, "text", "") for block in (message.content or [])
        ).strip()
        if not text:
            raise UpstreamUnavailable("ai", "empty reply")
        logger.debug(
            "ai_completion",
            model=self._model,
            input_tokens=getattr(message.usage, "input_tokens", None),
            output_tokens=getattr(message.usage, "output_tokens", None),
        )
        return text

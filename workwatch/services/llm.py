"""LLM interaction helpers for workwatch."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional

from openai import AsyncOpenAI

logger = logging.getLogger(__name__)


class LLMUnavailable(RuntimeError):
    """Raised when an LLM request is made without configuration."""


class LLMClient:
    """Wrapper around OpenAI's async client."""

    def __init__(self, api_key: Optional[str], model: str, base_url: Optional[str] = None):
        self._model = model
        self._client: Optional[AsyncOpenAI] = None
        if api_key:
            self._client = AsyncOpenAI(api_key=api_key, base_url=base_url)
            logger.info("LLM client configured with model=%s, base_url=%s", model, base_url or "default")

    @property
    def model(self) -> str:
        return self._model

    def is_configured(self) -> bool:
        return self._client is not None

    async def run(
        self,
        messages: Iterable[Dict[str, Any]],
        max_tokens: int = 1000,
        temperature: float = 0.2,
    ) -> Dict[str, Any]:
        """Execute a chat completion and return the first choice as a dict."""

        if self._client is None:
            raise LLMUnavailable(
                "LLM credentials not configured. Set OPENAI_API_KEY before enabling analysis."
            )

        response = await self._client.chat.completions.create(
            model=self._model,
            messages=list(messages),
            max_tokens=max_tokens,
            temperature=temperature,
        )

        choice = response.choices[0]
        return choice.model_dump()

    @staticmethod
    def extract_text(choice: Dict[str, Any]) -> str:
        return choice.get("message", {}).get("content") or ""

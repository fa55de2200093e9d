"""Smart merge — combine an edit fragment with a file's current content.

The apply engine only knows the :class:`SmartMerger` protocol. The shipped
implementation talks to Morph's OpenAI-compatible fast-apply endpoint.
"""

from __future__ import annotations

import re
from typing import Any, Protocol

import httpx

from sandpiper.config import settings
from sandpiper.utils import get_logger

logger = get_logger("apply.merge")

MAX_INSTRUCTION_CHARS = 4000


class SmartMerger(Protocol):
    async def merge(self, path: str, original: str, update: str, instruction: str = "") -> str:
        """Return the full merged file content."""
        ...


class MorphMerger:
    """Async client for Morph fast-apply.

    Raises ``httpx.HTTPError`` on transport/HTTP failures and ``ValueError``
    when the response carries no usable content — the engine records either
    as a per-file error.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key or settings.morph_api_key
        self.base_url = (base_url or settings.morph_base_url).rstrip("/")
        self.model = model or settings.morph_model
        self.timeout = timeout or settings.morph_timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={"Authorization": f"Bearer {self.api_key}"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def merge(self, path: str, original: str, update: str, instruction: str = "") -> str:
        client = await self._get_client()
        prompt = (
            f"<instruction>{instruction[:MAX_INSTRUCTION_CHARS]}</instruction>\n"
            f"<code>{original}</code>\n"
            f"<update>{update}</update>"
        )
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
        }
        response = await client.post("/chat/completions", json=payload)
        response.raise_for_status()
        result = response.json()

        try:
            merged = result["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ValueError(f"Malformed merge response for {path}") from e
        if not isinstance(merged, str) or not merged.strip():
            raise ValueError(f"Empty merge result for {path}")

        # Strip accidental markdown fences
        merged = re.sub(r"^```[\w.+-]*\n", "", merged.strip())
        merged = re.sub(r"\n?```$", "", merged)
        logger.info("smart_merge_complete", path=path, original_len=len(original), merged_len=len(merged))
        return merged if merged.endswith("\n") else merged + "\n"

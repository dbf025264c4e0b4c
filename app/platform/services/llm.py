"""
Thin async client for the Perplexity chat API (OpenAI-compatible) plus helpers
for parsing the loosely formatted JSON that models tend to return.
"""

import json
import re
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI, OpenAIError

from app.platform.config import settings
from app.platform.exceptions import ProviderError
from app.platform.logger import get_logger

logger = get_logger(__name__)

_FENCED_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_THINK_RE = re.compile(r"<think>[\s\S]*?</think>", re.IGNORECASE)


def extract_json_object_loose(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Parse a JSON object out of model output.

    Tries, in order: the raw text, the first fenced code block, and the span
    between the first ``{`` and the last ``}`` once ``<think>`` blocks are
    removed. Returns None when nothing parses.
    """
    s = str(text or "").strip()
    if not s:
        return None

    try:
        return json.loads(s)
    except json.JSONDecodeError:
        pass

    fenced = _FENCED_RE.search(s)
    if fenced and fenced.group(1):
        try:
            return json.loads(fenced.group(1).strip())
        except json.JSONDecodeError:
            pass

    no_think = _THINK_RE.sub("", s).strip()
    start = no_think.find("{")
    end = no_think.rfind("}")
    if start >= 0 and end > start:
        try:
            return json.loads(no_think[start:end + 1])
        except json.JSONDecodeError:
            pass

    return None


def clamp_pct(value: Any) -> int:
    try:
        x = float(value)
    except (TypeError, ValueError):
        return 0
    if x != x:  # NaN
        return 0
    return int(max(0, min(100, round(x))))


def stable_hash_lite(value: str) -> str:
    """32-bit FNV-1a, hex encoded. Used for cache keys only."""
    h = 2166136261
    for ch in str(value or ""):
        h ^= ord(ch)
        h = (h * 16777619) & 0xFFFFFFFF
    return format(h, "x")


class PerplexityClient:
    """Chat completions against Perplexity through the OpenAI SDK."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.PERPLEXITY_API_KEY
        self.model = model or settings.PERPLEXITY_MODEL
        self.base_url = base_url or settings.PERPLEXITY_BASE_URL
        self.timeout = timeout or settings.PROVIDER_TIMEOUT_SECONDS
        self._client: Optional[AsyncOpenAI] = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _get_client(self) -> AsyncOpenAI:
        if not self.api_key:
            raise ProviderError("perplexity", "PERPLEXITY_API_KEY is not set")
        if self._client is None:
            self._client = AsyncOpenAI(
                base_url=self.base_url,
                api_key=self.api_key,
                timeout=self.timeout,
            )
        return self._client

    async def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.2,
        max_tokens: int = 1100,
    ) -> str:
        """Return the assistant message content of a single completion."""
        client = self._get_client()
        try:
            completion = await client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except OpenAIError as e:
            logger.warning(f"Perplexity call failed: {e}")
            raise ProviderError("perplexity", str(e)) from e

        if not completion.choices:
            return ""
        return completion.choices[0].message.content or ""

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

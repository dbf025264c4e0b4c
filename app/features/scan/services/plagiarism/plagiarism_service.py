"""
Plagiarism estimation through Perplexity, plus the per-scan budget that caps
how many checks a single scan may spend.
"""
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from app.features.scan.services.discovery.url_classifier import get_hostname, normalize_hostname
from app.platform.config import settings
from app.platform.logger import get_logger
from app.platform.services.llm import PerplexityClient, clamp_pct, extract_json_object_loose, stable_hash_lite

logger = get_logger(__name__)

CACHE_TTL_SECONDS = 10 * 60

SYSTEM_PROMPT = """
You are a plagiarism-checking engine for SEO content.

Goal:
Estimate how much of the DRAFT looks copied from existing online sources.
Also compare specifically against SOURCE PAGE (if provided).

Hard rules:
- Return ONLY valid JSON.
- plagiarismPercent must be a number 0..100.
- If you are uncertain, provide a conservative estimate and explain briefly in "notes".
- Provide up to 5 sources with URLs if you can identify likely matches.
- Do NOT return markdown.
""".strip()

USER_PROMPT = """
SOURCE PAGE URL (may be empty): {source_url}
PAGE URL CONTEXT (may be empty): {url}

SOURCE TEXT (excerpt, may be empty):
\"\"\"
{source_text}
\"\"\"

DRAFT TEXT (excerpt):
\"\"\"
{draft_text}
\"\"\"

TASK:
1) Estimate plagiarismPercent (0..100) based on overlap with the SOURCE TEXT and other likely online sources.
2) If the draft is mostly a rewrite of source, plagiarismPercent should be high.
3) If it looks original and doesn't strongly match known phrasing, plagiarismPercent should be low.
4) Provide "sources": array of up to 5 objects: {{ "url": "...", "note": "why it matches" }}
5) Provide "notes": short string.
Return JSON in this exact shape:
{{
  "plagiarismPercent": number,
  "sources": [{{ "url": string, "note": string }}],
  "notes": string
}}
""".strip()


class PlagiarismBudget:
    """Per-scan allowance of plagiarism checks. ``try_consume`` is atomic."""

    def __init__(self, total: int):
        self.total = max(0, int(total))
        self._remaining = self.total
        self._lock = threading.Lock()

    def try_consume(self) -> bool:
        with self._lock:
            if self._remaining <= 0:
                return False
            self._remaining -= 1
            return True

    @property
    def remaining(self) -> int:
        with self._lock:
            return self._remaining

    @property
    def used(self) -> int:
        return self.total - self.remaining


@dataclass
class PlagiarismResult:
    plagiarism: int
    sources: List[Dict[str, str]] = field(default_factory=list)
    notes: str = ""
    checked_at: str = ""
    cache_key: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plagiarism": self.plagiarism,
            "sources": list(self.sources),
            "notes": self.notes,
            "checkedAt": self.checked_at,
            "cacheKey": self.cache_key,
        }


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_sources(raw: Any) -> List[Dict[str, str]]:
    if not isinstance(raw, list):
        return []
    out = []
    for item in raw[:5]:
        if not isinstance(item, dict):
            continue
        url = str(item.get("url") or "").strip()
        if url:
            out.append({"url": url, "note": str(item.get("note") or "").strip()})
    return out


class PlagiarismChecker:
    """
    LLM-assisted originality estimate (not a fingerprinting service).

    Results are cached in memory for ten minutes per draft/source pair.
    """

    def __init__(self, llm: Optional[PerplexityClient] = None, max_chars: Optional[int] = None):
        self.llm = llm or PerplexityClient()
        self.max_chars = max_chars or settings.PLAGIARISM_MAX_CHARS
        self._cache: Dict[str, Tuple[float, PlagiarismResult]] = {}

    @property
    def configured(self) -> bool:
        return self.llm.configured

    def _cache_get(self, key: str) -> Optional[PlagiarismResult]:
        item = self._cache.get(key)
        if not item:
            return None
        expires_at, value = item
        if expires_at < time.time():
            self._cache.pop(key, None)
            return None
        return value

    def _cache_set(self, key: str, value: PlagiarismResult) -> None:
        self._cache[key] = (time.time() + CACHE_TTL_SECONDS, value)

    @staticmethod
    def derive_cache_key(url: str, source_url: str, draft: str, source_text: str) -> str:
        anchor = source_url or url or ""
        host = normalize_hostname(get_hostname(anchor) or anchor or "unknown")
        digest = stable_hash_lite(f"{anchor}|{draft[:2000]}|{(source_text or '')[:2000]}")
        return f"plag:{host}:{digest}"

    async def check(
        self,
        draft_text: str,
        url: str = "",
        source_url: str = "",
        source_text: str = "",
        cache_key: str = "",
    ) -> PlagiarismResult:
        """
        Raises:
            ProviderError: the LLM is not configured or the call failed
        """
        draft = str(draft_text or "").strip()[:self.max_chars]
        if not draft:
            return PlagiarismResult(plagiarism=0, checked_at=_now_iso())

        source = str(source_text or "")[:self.max_chars]
        key = cache_key or self.derive_cache_key(url, source_url, draft, source)
        cached = self._cache_get(key)
        if cached is not None:
            return cached

        content = await self.llm.chat(
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": USER_PROMPT.format(
                        source_url=source_url or "none",
                        url=url or "none",
                        source_text=source,
                        draft_text=draft,
                    ),
                },
            ],
            temperature=0.1,
            max_tokens=700,
        )

        parsed = extract_json_object_loose(content) or {}
        result = PlagiarismResult(
            plagiarism=clamp_pct(parsed.get("plagiarismPercent")),
            sources=_parse_sources(parsed.get("sources")),
            notes=str(parsed.get("notes") or "").strip(),
            checked_at=_now_iso(),
            cache_key=key,
        )
        self._cache_set(key, result)
        logger.info(f"Plagiarism check for {url or source_url or 'draft'}: {result.plagiarism}%")
        return result

"""
DataForSEO client: backlinks summary, referring domains, site keywords,
SERP feature coverage and an AI visibility estimate.

Results are cached per target for 10 minutes and concurrent identical calls
share one upstream request.
"""
import asyncio
import base64
import json
import math
import time
from typing import Any, Dict, List, Optional, Tuple

import httpx

from app.features.seo.services.providers.http import request_json, to_number
from app.platform.config import settings
from app.platform.exceptions import ProviderError
from app.platform.logger import get_logger

logger = get_logger(__name__)

API_BASE = "https://api.dataforseo.com/v3"
RESULT_TTL_SECONDS = 10 * 60
SUBTOPIC_TTL_SECONDS = 24 * 60 * 60

TRANSACTIONAL_HINTS = (
    "buy", "price", "deal", "coupon", "discount", "best ", " top ", " vs ",
    " vs.", "compare", "comparison", "under ", "$", "near me",
)

SERP_FEATURES = {
    "featuredSnippets": ("featured_snippet",),
    "peopleAlsoAsk": ("people_also_ask",),
    "imagePack": ("images", "image_search", "image_pack"),
    "videoResults": ("videos", "video"),
    "knowledgePanel": ("knowledge_graph", "knowledge_panel"),
}


def infer_keyword_type(keyword: str) -> str:
    kw = (keyword or "").lower()
    if any(hint in kw for hint in TRANSACTIONAL_HINTS):
        return "Transactional"
    return "Informational"


def build_suggested_topic(keyword: str, keyword_type: str) -> str:
    kw = (keyword or "").strip()
    lower = kw.lower()
    if keyword_type == "Transactional":
        return f"{kw} - comparison & buyer's guide"
    if lower.startswith("how to") or "fix" in lower:
        return f"{kw} - step-by-step guide"
    if "tools" in lower or "software" in lower:
        return f"{kw} - best tools & platforms"
    return f"{kw} - complete guide"


def normalize_difficulty(raw: Optional[float], volume: Optional[float]) -> Optional[int]:
    """Competition as 0-100; estimated from search volume when missing."""
    if raw is not None:
        if raw <= 1:
            return round(raw * 100)
        if raw <= 100:
            return round(raw)
    if volume:
        if volume >= 20000:
            return 80
        if volume >= 10000:
            return 65
        if volume >= 5000:
            return 55
        if volume >= 2000:
            return 45
        return 30
    return None


def build_ai_visibility_matrix(backlinks_summary: Optional[Dict[str, Any]], serp_features: Dict[str, Any]) -> Dict[str, Any]:
    summary = backlinks_summary or {}
    rank = summary.get("rank") if isinstance(summary.get("rank"), (int, float)) else 50
    coverage = serp_features.get("coveragePercent")
    coverage = coverage if isinstance(coverage, (int, float)) else 40

    total_features = sum(serp_features.get(k) or 0 for k in SERP_FEATURES)
    features_score = min(100, math.log10(total_features + 1) / math.log10(101) * 100) if total_features > 0 else 0

    visibility = 0.4 * rank + 0.4 * coverage + 0.2 * features_score
    base_rating = max(0.0, min(5.0, visibility / 20))

    pages_base = to_number(summary.get("crawled_pages"))
    if pages_base is None:
        pages_base = to_number(summary.get("referring_domains"))
    if pages_base is None:
        pages_base = 100

    def pages(mult: float) -> int:
        return max(10, round(pages_base * mult))

    def rating(offset: float) -> float:
        return max(0.0, min(5.0, round(base_rating + offset, 1)))

    return {
        "GPT": {"rating": rating(0.2), "pages": pages(0.9)},
        "GoogleAI": {"rating": rating(-0.1), "pages": pages(0.8)},
        "Perplexity": {"rating": rating(0.1), "pages": pages(0.7)},
        "Copilot": {"rating": rating(-0.2), "pages": pages(0.6)},
        "Gemini": {"rating": rating(-0.3), "pages": pages(0.5)},
    }


def _first_result(payload: Dict[str, Any]) -> Dict[str, Any]:
    tasks = payload.get("tasks") or []
    results = (tasks[0] or {}).get("result") if tasks else None
    return (results[0] or {}) if results else {}


def parse_keyword_items(items: List[Dict[str, Any]], max_keywords: int) -> List[Dict[str, Any]]:
    rows = []
    for item in items or []:
        keyword_data = item.get("keyword_data") or {}
        keyword_info = item.get("keyword_info") or keyword_data.get("keyword_info") or {}
        kw = item.get("keyword") or keyword_data.get("keyword") or keyword_info.get("keyword")
        if not kw:
            continue

        volume_raw = next(
            (v for v in (
                item.get("search_volume"),
                keyword_data.get("search_volume"),
                keyword_info.get("search_volume"),
                (item.get("metrics") or {}).get("search_volume"),
            ) if v is not None),
            None,
        )
        volume = to_number(volume_raw) or 0
        competition = next(
            (v for v in (keyword_info.get("competition"), keyword_data.get("competition"), item.get("competition")) if v is not None),
            None,
        )
        difficulty = normalize_difficulty(to_number(competition), volume)
        if difficulty is None:
            difficulty = 30

        rows.append({
            "keyword": kw,
            "type": infer_keyword_type(kw),
            "searchVolume": volume,
            "volume": volume,
            "difficulty": difficulty,
            "seoDifficulty": difficulty,
        })
        if len(rows) >= max_keywords:
            break
    return rows


def summarize_serp_items(per_keyword_items: List[List[Dict[str, Any]]]) -> Dict[str, Any]:
    """Feature totals plus the share of keywords with at least one feature."""
    totals = {name: 0 for name in SERP_FEATURES}
    with_feature = 0
    keyword_count = 0
    for items in per_keyword_items:
        if not items:
            continue
        keyword_count += 1
        counts = {}
        for name, types in SERP_FEATURES.items():
            counts[name] = sum(
                1 for item in items
                if item.get("type") in types or any(t in (item.get("serp_features") or []) for t in types)
            )
            totals[name] += counts[name]
        if any(counts.values()):
            with_feature += 1

    coverage = round(with_feature / keyword_count * 100) if keyword_count else 0
    return {"coveragePercent": coverage, **totals}


class DataForSeoClient:
    def __init__(
        self,
        client: httpx.AsyncClient,
        login: Optional[str] = None,
        password: Optional[str] = None,
        clock=time.monotonic,
    ):
        self.client = client
        self.login = login if login is not None else settings.DATAFORSEO_LOGIN
        self.password = password if password is not None else settings.DATAFORSEO_PASSWORD
        self.clock = clock
        self._results: Dict[str, Tuple[float, Dict[str, Any]]] = {}
        self._subtopics: Dict[str, Tuple[float, List[str]]] = {}
        self._in_flight: Dict[str, asyncio.Future] = {}

    def _auth_header(self) -> Dict[str, str]:
        if not self.login or not self.password:
            raise ProviderError("dataforseo", "DATAFORSEO_LOGIN and DATAFORSEO_PASSWORD are not set")
        token = base64.b64encode(f"{self.login}:{self.password}".encode()).decode()
        return {"Authorization": f"Basic {token}"}

    async def _post(self, path: str, body: List[Dict[str, Any]]) -> Dict[str, Any]:
        return await request_json(
            "dataforseo",
            self.client,
            "POST",
            f"{API_BASE}{path}",
            json=body,
            headers=self._auth_header(),
        )

    async def fetch(
        self,
        target: str,
        language_code: str = "en",
        country_code: str = "in",
        depth: int = 10,
        keywords_only: bool = False,
        max_keywords: int = 5,
        include_subtopics: bool = True,
    ) -> Dict[str, Any]:
        """
        Returns ``{"dataForSeo": {...}, "seoRows": [...]}``.

        In ``keywords_only`` mode only site keywords (and subtopics) are
        fetched; backlinks and SERP analysis are skipped.

        Raises:
            ProviderError: credentials missing, or the backlinks call failed
        """
        self._auth_header()
        target = str(target or "").strip().lower()
        for prefix in ("https://", "http://"):
            if target.startswith(prefix):
                target = target[len(prefix):]
        if target.startswith("www."):
            target = target[4:]
        target = target.split("/")[0]
        if not target:
            raise ProviderError("dataforseo", "target domain is empty")

        location_name = "India" if country_code.lower() == "in" else "United States"
        cache_key = json.dumps(
            [target, language_code, location_name, depth, max_keywords, keywords_only, include_subtopics]
        )

        hit = self._results.get(cache_key)
        if hit and hit[0] > self.clock():
            return hit[1]

        pending = self._in_flight.get(cache_key)
        if pending is not None:
            return await asyncio.shield(pending)

        future = asyncio.get_running_loop().create_future()
        self._in_flight[cache_key] = future
        try:
            if keywords_only:
                result = await self._fetch_keywords_only(target, language_code, location_name, max_keywords, include_subtopics)
            else:
                result = await self._fetch_full(target, language_code, location_name, depth, max_keywords, include_subtopics)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved; there may be no other waiter
            future.exception()
            raise
        else:
            self._results[cache_key] = (self.clock() + RESULT_TTL_SECONDS, result)
            future.set_result(result)
            return result
        finally:
            self._in_flight.pop(cache_key, None)

    async def _site_keywords(
        self,
        target: str,
        language_code: str,
        location_name: str,
        max_keywords: int,
        include_subtopics: bool,
    ) -> List[Dict[str, Any]]:
        try:
            payload = await self._post(
                "/dataforseo_labs/google/keywords_for_site/live",
                [{"target": target, "language_code": language_code, "location_name": location_name, "limit": max_keywords}],
            )
        except ProviderError as e:
            logger.warning(f"DataForSEO keywords failed for {target}: {e}")
            return []

        rows = parse_keyword_items(_first_result(payload).get("items") or [], max_keywords)
        subtopics = await self._subtopics_for([r["keyword"] for r in rows]) if include_subtopics else {}
        for row in rows:
            subs = subtopics.get(row["keyword"]) or []
            suggested = subs[0] if subs else build_suggested_topic(row["keyword"], row["type"])
            row.update(suggested=suggested, suggestedTopic=suggested, topic=suggested)
        return rows

    async def _subtopics_for(self, keywords: List[str]) -> Dict[str, List[str]]:
        out: Dict[str, List[str]] = {}
        now = self.clock()
        for kw in keywords:
            key = kw.strip().lower()
            if not key:
                continue
            hit = self._subtopics.get(key)
            if hit and hit[0] > now:
                out[kw] = hit[1]
                continue
            try:
                payload = await self._post(
                    "/content_generation/generate_sub_topics/live",
                    [{"topic": kw, "creativity_index": 0.7}],
                )
            except ProviderError as e:
                logger.debug(f"Subtopics failed for '{kw}': {e}")
                continue
            subs = _first_result(payload).get("sub_topics") or []
            if subs:
                self._subtopics[key] = (now + SUBTOPIC_TTL_SECONDS, subs)
                out[kw] = subs
        return out

    async def _fetch_keywords_only(self, target, language_code, location_name, max_keywords, include_subtopics):
        rows = await self._site_keywords(target, language_code, location_name, max_keywords, include_subtopics)
        return {
            "dataForSeo": {
                "keyword": target,
                "backlinksSummary": None,
                "backlinkDomains": [],
                "externalTotal": 0,
                "totalDomains": 0,
                "serpFeatures": None,
                "serpItems": [],
                "topKeywords": rows,
                "aiTools": None,
            },
            "seoRows": rows,
            "_mode": "keywordsOnly",
        }

    async def _referring_domains(self, target: str) -> Tuple[List[Dict[str, Any]], int, int]:
        try:
            payload = await self._post(
                "/backlinks/referring_domains/live",
                [{
                    "target": target,
                    "limit": 200,
                    "offset": 0,
                    "order_by": ["rank,desc"],
                    "exclude_internal_backlinks": True,
                    "include_subdomains": True,
                }],
            )
        except ProviderError as e:
            logger.warning(f"DataForSEO referring domains failed for {target}: {e}")
            return [], 0, 0

        result = _first_result(payload)
        items = result.get("items") or []
        domains = []
        for it in items:
            domain = it.get("domain") or it.get("referring_domain")
            if not domain:
                continue
            domains.append({
                "domain": domain,
                "backlinks": to_number(it.get("backlinks")) or 0,
                "rank": to_number(it.get("rank")) or 0,
                "referring_pages": to_number(it.get("referring_pages")) or 0,
                "backlinks_spam_score": to_number(it.get("backlinks_spam_score")),
                "first_seen": it.get("first_seen"),
                "lost_date": it.get("lost_date"),
            })
        total = result.get("total_count")
        total_domains = total if isinstance(total, int) else len(items)
        external_total = sum(d["backlinks"] for d in domains)
        return domains, external_total, total_domains

    async def _serp_items(self, keyword: str, language_code: str, location_name: str, depth: int) -> List[Dict[str, Any]]:
        try:
            payload = await self._post(
                "/serp/google/organic/live/advanced",
                [{
                    "keyword": keyword,
                    "language_code": language_code,
                    "location_name": location_name,
                    "depth": depth,
                    "device": "desktop",
                }],
            )
        except ProviderError as e:
            logger.debug(f"SERP lookup failed for '{keyword}': {e}")
            return []
        return _first_result(payload).get("items") or []

    async def _fetch_full(self, target, language_code, location_name, depth, max_keywords, include_subtopics):
        backlinks_payload = await self._post(
            "/backlinks/summary/live",
            [{"target": target, "internal_list_limit": 10, "include_subdomains": True, "backlinks_status_type": "all"}],
        )
        backlinks_summary = _first_result(backlinks_payload) or None

        backlink_domains, external_total, total_domains = await self._referring_domains(target)
        rows = await self._site_keywords(target, language_code, location_name, max_keywords, include_subtopics)

        serp_keywords = [r["keyword"] for r in rows] or [target]
        per_keyword = await asyncio.gather(
            *(self._serp_items(kw, language_code, location_name, depth) for kw in serp_keywords)
        )
        serp_features = summarize_serp_items(list(per_keyword))

        return {
            "dataForSeo": {
                "keyword": target,
                "backlinksSummary": backlinks_summary,
                "backlinkDomains": backlink_domains,
                "externalTotal": external_total,
                "totalDomains": total_domains,
                "serpFeatures": serp_features,
                "serpItems": [item for items in per_keyword for item in items],
                "topKeywords": rows,
                "aiTools": build_ai_visibility_matrix(backlinks_summary, serp_features),
            },
            "seoRows": rows,
        }

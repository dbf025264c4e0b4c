"""
Unified SEO aggregation.

Fans out to the requested data providers, merges their results into one
"unified" document and derives the dashboard rollups (issues, growth,
info panel). Provider failures are recorded under ``_errors`` and never abort
the request.

``aggregate`` returns the document; ``stream`` yields progress as
``(event, data)`` pairs ending in ``done`` (or ``fatal``).
"""
import asyncio
import re
from html import escape
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx
from bs4 import BeautifulSoup

from app.features.scan.services.discovery.url_classifier import get_hostname, normalize_to_https
from app.features.scan.services.extraction.content_extractor import ContentExtractor
from app.features.scan.services.extraction.content_fetcher import ContentFetcher
from app.features.scan.services.extraction.html_sanitizer import sanitize_html_for_editor
from app.features.seo.schemas.seo import SeoRequest
from app.features.seo.services.providers.dataforseo import DataForSeoClient
from app.features.seo.services.providers.http import to_number
from app.features.seo.services.providers.insights import InsightsProvider
from app.features.seo.services.providers.openpagerank import OpenPageRankClient
from app.features.seo.services.providers.psi import PageSpeedClient
from app.features.seo.services.providers.rapidapi import RapidApiBacklinkClient
from app.features.seo.services.providers.serper import SerperClient
from app.platform.exceptions import InvalidWebsiteUrl
from app.platform.logger import get_logger
from app.platform.services.llm import PerplexityClient
from app.platform.services.sse_helper import get_current_timestamp, status_event

logger = get_logger(__name__)

Event = Tuple[str, Dict[str, Any]]

ISSUE_BASELINES = {"critical": 274, "warning": 883, "recommendations": 77, "contentOpps": 5}
INFO_PANEL_BASELINES = {"domainAuthority": 40, "organicKeyword": 200, "organicTraffic": 0}

AUTHORITY_PATHS = (
    ("pageRank",), ("rank",), ("domainAuthority",), ("score",),
    ("openPageRank", "pageRank"), ("openPageRank", "rank"),
    ("openPageRank", "domainAuthority"), ("openPageRank", "score"),
    ("data", "page_rank_decimal"), ("data", "page_rank_integer"), ("data", "page_rank"),
    ("response", "page_rank_decimal"), ("response", "page_rank_integer"), ("response", "page_rank"),
    ("results", 0, "page_rank_decimal"), ("results", 0, "page_rank_integer"), ("results", 0, "page_rank"),
    ("result", "page_rank_decimal"), ("result", "page_rank_integer"), ("result", "page_rank"),
)


# ── Pure helpers ──────────────────────────────

def resolve_target(raw_url: Optional[str]) -> Tuple[str, str]:
    """
    Returns (absolute url, bare domain).

    Raises:
        InvalidWebsiteUrl: missing or unparsable url
    """
    if not str(raw_url or "").strip():
        raise InvalidWebsiteUrl("Missing 'url' in request body")
    url = normalize_to_https(raw_url)
    domain = get_hostname(url) if url else ""
    if not url or not domain:
        raise InvalidWebsiteUrl("Invalid 'url' in request body")
    return url, domain


def compute_percent_growth(current: Any, baseline: Any) -> int:
    cur = current if isinstance(current, (int, float)) and not isinstance(current, bool) else 0
    base = baseline if isinstance(baseline, (int, float)) and not isinstance(baseline, bool) else 0
    if base <= 0:
        return 0
    return round((cur - base) / base * 100)


def pick_authority_score(payload: Any) -> Optional[float]:
    """
    First numeric authority-like value in ``payload``. Open PageRank's
    0-10 values are rescaled to 0-100.
    """
    if payload is None:
        return None
    if isinstance(payload, (int, float)) and not isinstance(payload, bool):
        return payload

    for path in AUTHORITY_PATHS:
        cur = payload
        for key in path:
            if isinstance(key, int):
                cur = cur[key] if isinstance(cur, list) and len(cur) > key else None
            else:
                cur = cur.get(key) if isinstance(cur, dict) else None
            if cur is None:
                break
        if isinstance(cur, str) and not cur.strip():
            continue
        n = to_number(cur)
        if n is None:
            continue
        return round(n * 10) if 0 <= n <= 10 else n
    return None


def ensure_seo_rows(unified: Dict[str, Any]) -> None:
    if isinstance(unified.get("seoRows"), list):
        return
    top_keywords = (unified.get("dataForSeo") or {}).get("topKeywords")
    if isinstance(top_keywords, list):
        unified["seoRows"] = top_keywords


def merge_provider_result(unified: Dict[str, Any], key: str, result: Optional[Dict[str, Any]]) -> None:
    if not result:
        return
    unified.update(result)
    if key == "authority" and unified.get("openPageRank") is None:
        unified["openPageRank"] = result.get("authority") or result
    ensure_seo_rows(unified)


def normalize_for_ui(unified: Dict[str, Any]) -> Dict[str, Any]:
    """Fill the aliases and empty fields dashboard consumers index into."""
    serp = unified.get("serp")
    if serp and not unified.get("serper"):
        unified["serper"] = {
            "organic": serp.get("topResults") or [],
            "peopleAlsoAsk": serp.get("peopleAlsoAsk") or [],
            "relatedSearches": serp.get("relatedSearches") or [],
            "serpFeatures": serp.get("serpFeatures"),
        }

    dfs = unified.get("dataForSeo")
    if isinstance(dfs, dict):
        if not isinstance(dfs.get("backlinkDomains"), list):
            dfs["backlinkDomains"] = []
        for field in ("externalTotal", "totalDomains"):
            if not isinstance(dfs.get(field), (int, float)):
                dfs[field] = 0

    ensure_seo_rows(unified)
    return unified


def needs_backlink_fallback(unified: Dict[str, Any]) -> bool:
    """True when backlinks and referring domains are both missing or zero."""
    summary = (unified.get("dataForSeo") or {}).get("backlinksSummary")
    if not summary:
        return True
    backlinks = to_number(summary.get("backlinks"))
    referring = to_number(summary.get("referring_domains"))
    return not backlinks and not referring


def apply_backlink_fallback(unified: Dict[str, Any], fallback_summary: Dict[str, Any]) -> bool:
    """Overlay fallback counts when ours are zero. Returns True if applied."""
    dfs = unified.setdefault("dataForSeo", {})
    summary = dict(dfs.get("backlinksSummary") or {})
    summary["backlinks"] = to_number(summary.get("backlinks")) or 0
    summary["referring_domains"] = to_number(summary.get("referring_domains")) or 0
    dfs["backlinksSummary"] = summary

    if summary["backlinks"] == 0 and summary["referring_domains"] == 0:
        dfs["backlinksSummary"] = {**summary, **fallback_summary}
        unified.setdefault("_meta", {})["backlinksFallback"] = "rapidapi"
        return True
    return False


def build_issues(unified: Dict[str, Any]) -> Dict[str, int]:
    counts = (unified.get("technicalSeo") or {}).get("issueCounts") or {}
    raw_text = ((unified.get("content") or {}).get("rawText") or "").strip()

    recommendations = content_opps = 0
    if raw_text:
        words = len(raw_text.split())
        recommendations = max(3, round(words / 300))
        content_opps = max(1, round(words / 1200))

    def count(key: str) -> int:
        value = counts.get(key)
        return value if isinstance(value, int) and not isinstance(value, bool) else 0

    return {
        "critical": count("critical"),
        "warning": count("warning"),
        "recommendations": recommendations,
        "contentOpps": content_opps,
    }


def build_issues_growth(issues: Dict[str, int]) -> Dict[str, int]:
    return {key: compute_percent_growth(issues.get(key), base) for key, base in ISSUE_BASELINES.items()}


def build_info_panel(unified: Dict[str, Any]) -> Dict[str, Any]:
    authority_source = unified.get("openPageRank")
    if authority_source is None:
        authority_source = unified.get("authority")
    if authority_source is None:
        authority_source = unified
    domain_authority = pick_authority_score(authority_source)

    seo_rows = unified.get("seoRows")
    organic_keyword = len(seo_rows) if isinstance(seo_rows, list) else 0

    tech = unified.get("technicalSeo") or {}
    scores = [s for s in (tech.get("performanceScoreMobile"), tech.get("performanceScoreDesktop")) if isinstance(s, (int, float))]
    # PSI scores are 0-1
    avg_perf = sum(scores) / len(scores) * 100 if scores else None

    if avg_perf is None or avg_perf >= 70:
        badge = {"label": "Good", "tone": "success"}
    elif avg_perf >= 50:
        badge = {"label": "Needs Work", "tone": "warning"}
    else:
        badge = {"label": "Poor", "tone": "danger"}

    return {
        "domainAuthority": domain_authority,
        "organicKeyword": organic_keyword,
        "organicTraffic": None,
        "growth": {
            "domainAuthority": compute_percent_growth(domain_authority, INFO_PANEL_BASELINES["domainAuthority"]),
            "organicKeyword": compute_percent_growth(organic_keyword, INFO_PANEL_BASELINES["organicKeyword"]),
            "organicTraffic": 0,
        },
        "badge": badge,
    }


def text_to_html(text: str) -> str:
    """Paragraph-per-blank-line HTML for text-only content."""
    paragraphs = []
    for block in re.split(r"\n\s*\n", str(text or "").strip()):
        block = block.strip()
        if block:
            paragraphs.append("<p>" + escape(block, quote=False).replace("\n", "<br/>") + "</p>")
    return "".join(paragraphs)


def parse_page_content(page_html: str) -> Dict[str, Any]:
    """Editor-safe HTML, plain text and title of a page. CPU bound, call off the loop."""
    soup = BeautifulSoup(page_html or "", "lxml")
    title = ContentExtractor.extract_title_tag(soup) or None

    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    body = soup.body or soup

    lines = [line.strip() for line in body.get_text("\n").splitlines()]
    lines = [line for line in lines if line]
    raw_text = re.sub(r"\s+", " ", " ".join(lines)).strip()

    html = sanitize_html_for_editor(body.decode_contents())
    if not html and raw_text:
        html = text_to_html("\n\n".join(lines))
    if not title and lines:
        title = lines[0][:120]

    return {"title": title, "rawText": raw_text, "html": html}


# ── Service ───────────────────────────────────

class SeoAggregationService:
    def __init__(
        self,
        client: httpx.AsyncClient,
        fetcher: ContentFetcher,
        psi: Optional[PageSpeedClient] = None,
        authority: Optional[OpenPageRankClient] = None,
        serper: Optional[SerperClient] = None,
        dataforseo: Optional[DataForSeoClient] = None,
        rapidapi: Optional[RapidApiBacklinkClient] = None,
        insights: Optional[InsightsProvider] = None,
        llm: Optional[PerplexityClient] = None,
    ):
        self.fetcher = fetcher
        self.psi = psi or PageSpeedClient(client)
        self.authority = authority or OpenPageRankClient(client)
        self.serper = serper or SerperClient(client)
        self.dataforseo = dataforseo or DataForSeoClient(client)
        self.rapidapi = rapidapi or RapidApiBacklinkClient(client)
        self.insights = insights or InsightsProvider(llm)

    async def build_content(self, url: str) -> Dict[str, Any]:
        """Rendered page as editor-safe HTML, plain text and title."""
        page = await self.fetcher.fetch_html(url)
        return await asyncio.to_thread(parse_page_content, page.html or "")

    def _core_jobs(self, req: SeoRequest, url: str, domain: str) -> List[Tuple[str, str, Callable[[], Awaitable[Dict[str, Any]]]]]:
        jobs = []
        if req.wants("psi") and not req.keywords_only:
            jobs.append(("psi", "Fetching PageSpeed Insights (mobile + desktop)", lambda: self.psi.fetch_technical_seo(url)))
        if req.wants("authority"):
            jobs.append(("authority", "Fetching authority metrics", lambda: self.authority.fetch(domain)))
        if req.wants("serper") and req.keyword and not req.keywords_only:
            jobs.append((
                "serper",
                "Fetching SERP results",
                lambda: self.serper.search(req.keyword, req.country_code, req.language_code),
            ))
        if req.wants("dataforseo"):
            label = (
                "Fetching DataForSEO suggested keywords (fast)"
                if req.keywords_only
                else "Fetching DataForSEO keywords & opportunities"
            )
            jobs.append((
                "dataforseo",
                label,
                lambda: self.dataforseo.fetch(
                    domain,
                    language_code=req.language_code,
                    country_code=req.country_code,
                    depth=req.depth,
                    keywords_only=req.keywords_only,
                ),
            ))
        return jobs

    @staticmethod
    async def _guarded(key: str, job: Callable[[], Awaitable[Dict[str, Any]]]) -> Tuple[str, bool, Any]:
        try:
            return key, True, await job()
        except Exception as e:
            logger.warning(f"SEO provider {key} failed: {e}")
            return key, False, str(e) or f"{key} failed"

    async def _pipeline(self, req: SeoRequest) -> AsyncIterator[Event]:
        url, domain = resolve_target(req.url)
        unified: Dict[str, Any] = {}
        errors: Dict[str, str] = {}

        yield "status", {
            "stage": "start",
            "message": "Starting SEO pipeline",
            "url": url,
            "domain": domain,
            "keyword": req.keyword,
            "providers": req.providers,
            "keywordsOnly": req.keywords_only,
        }

        # 1) core providers, concurrently
        jobs = self._core_jobs(req, url, domain)
        labels = {key: label for key, label, _ in jobs}
        for key, label, _ in jobs:
            yield status_event(key, "start", label)

        for next_done in asyncio.as_completed([self._guarded(key, job) for key, _, job in jobs]):
            key, ok, payload = await next_done
            if ok:
                merge_provider_result(unified, key, payload)
                yield status_event(key, "done", labels[key])
            else:
                errors[key] = payload
                yield status_event(key, "error", payload)

        # 2) backlink fallback
        if req.wants("dataforseo") and not req.keywords_only and needs_backlink_fallback(unified):
            yield status_event("rapidapi", "start", "Falling back for backlink metrics")
            try:
                fallback = await self.rapidapi.fetch(domain)
            except Exception as e:
                errors["rapidapi"] = str(e) or "RapidAPI backlink fallback failed"
                yield status_event("rapidapi", "error", errors["rapidapi"])
            else:
                applied = apply_backlink_fallback(unified, fallback["backlinksSummary"])
                yield status_event("rapidapi", "done", "Backlink fallback applied" if applied else "Backlink fallback not needed")

        # 3) content
        content: Optional[Dict[str, Any]] = None
        if req.wants("content") and not req.keywords_only:
            yield status_event("content", "start", "Extracting page content (title + rendered HTML, image-free)")
            try:
                content = await self.build_content(url)
            except Exception as e:
                logger.warning(f"Content pipeline failed for {url}: {e}")
                errors["contentPipeline"] = str(e) or "Content pipeline failed"
                yield status_event("content", "error", errors["contentPipeline"])
            else:
                if content["html"] or content["title"] or content["rawText"]:
                    unified["content"] = {
                        "rawText": content["rawText"],
                        "html": content["html"],
                        "title": content["title"],
                        "source": "rendered_html" if content["html"] else "text_fallback",
                    }
                    yield status_event("content", "done", "Content extracted")
                else:
                    unified.setdefault("_warnings", []).append("No title/html/text extracted (content empty)")
                    yield status_event("content", "done", "No content extracted (continuing)")

        # 4) FAQs
        if req.wants("faqs") and not req.keywords_only:
            yield status_event("faqs", "start", "Building FAQ suggestions")
            try:
                people_also_ask = (unified.get("serp") or {}).get("peopleAlsoAsk") or []
                title = ((unified.get("content") or {}).get("title")) or ""
                merge_provider_result(unified, "faqs", await self.insights.faqs(req.keyword or "", people_also_ask, title))
                yield status_event("faqs", "done", f"{len(unified.get('faqs') or [])} FAQs")
            except Exception as e:
                errors["faqs"] = str(e) or "FAQ suggestions failed"
                yield status_event("faqs", "error", errors["faqs"])

        # 5) on-page keyword opportunities
        if req.wants("keywords"):
            yield status_event("keywords", "start", "Finding on-page keyword opportunities")
            try:
                text = (unified.get("content") or {}).get("rawText")
                if text is None and content is None:
                    text = (await self.build_content(url))["rawText"]
                tracked = [row.get("keyword") for row in unified.get("seoRows") or [] if row.get("keyword")]
                merge_provider_result(unified, "keywords", self.insights.keywords(text or "", tracked))
                yield status_event("keywords", "done", f"{len(unified['keywordOpportunities'])} keyword opportunities")
            except Exception as e:
                errors["keywords"] = str(e) or "Keyword opportunities failed"
                yield status_event("keywords", "error", errors["keywords"])

        normalize_for_ui(unified)

        # 6) rollups
        yield status_event("finalize", "start", "Finalizing dashboard metrics")
        unified["issues"] = build_issues(unified)
        unified["issuesGrowth"] = build_issues_growth(unified["issues"])
        unified["infoPanel"] = build_info_panel(unified)
        if errors:
            unified["_errors"] = errors
        unified["_meta"] = {
            **(unified.get("_meta") or {}),
            "url": url,
            "domain": domain,
            "keyword": req.keyword,
            "countryCode": req.country_code,
            "languageCode": req.language_code,
            "depth": req.depth,
            "providers": req.providers,
            "keywordsOnly": req.keywords_only,
            "generatedAt": get_current_timestamp(),
        }
        yield status_event("finalize", "done", "Finalized")

        logger.info(f"SEO aggregation for {domain} done ({len(errors)} provider errors)")
        yield "done", {"unified": unified}

    async def aggregate(self, req: SeoRequest) -> Dict[str, Any]:
        """
        Buffered run of the pipeline.

        Raises:
            InvalidWebsiteUrl: missing or unparsable url
        """
        async for event, data in self._pipeline(req):
            if event == "done":
                return data["unified"]
        return {}

    async def stream(self, req: SeoRequest) -> AsyncIterator[Event]:
        """Progress events then ``done``; an unexpected failure ends with ``fatal``."""
        try:
            async for event in self._pipeline(req):
                yield event
        except Exception as e:
            logger.error(f"SEO stream failed: {e}", exc_info=True)
            yield "fatal", {"error": "Internal server error", "details": str(e) or "Unknown error"}

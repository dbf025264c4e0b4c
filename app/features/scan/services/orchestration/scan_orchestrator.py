"""
Opportunities scan orchestration.

enqueue() is synchronous and registers the scan in the in-flight registry
before any await, so two requests for the same key in one loop iteration
always share a scan. run() executes in a background task with its own error
boundary; every failure ends as a ``failed`` scan, never as an escaped
exception.
"""
import asyncio
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
from urllib.parse import urlparse

from app.features.scan.models.scan import InFlightEntry, Scan, ScanMode, ScanStatus
from app.features.scan.schemas.opportunities import ContentItem, PlagiarismSource
from app.features.scan.services.discovery.crawl_fallback import CrawlFallbackService
from app.features.scan.services.discovery.sitemap_discovery import SitemapDiscoveryService
from app.features.scan.services.discovery.url_classifier import (
    BLOG,
    clean_candidate,
    get_hostname,
    heuristic_url_type,
    is_allowed_host,
    merge_unique,
    normalize_to_https,
)
from app.features.scan.services.extraction.content_fetcher import ContentFetcher
from app.features.scan.services.extraction.content_extractor import ExtractedContent
from app.features.scan.services.plagiarism.plagiarism_service import PlagiarismBudget, PlagiarismChecker
from app.features.scan.services.store.snapshot_store import SnapshotStore
from app.platform.config import settings
from app.platform.exceptions import InvalidWebsiteUrl
from app.platform.logger import get_logger

logger = get_logger(__name__)

SCAN_KIND = "opportunities"


def in_flight_key(hostname: str, allow_subdomains: bool, mode: ScanMode = ScanMode.published) -> str:
    return f"{SCAN_KIND}|{hostname}|sub={1 if allow_subdomains else 0}|mode={ScanMode.normalize(mode).value}"


def infer_blog_urls(page_urls: Iterable[str]) -> List[str]:
    """Page URLs whose path looks like an individual post."""
    return [u for u in page_urls if u and heuristic_url_type(u) == BLOG]


def _url_path_length(url: str) -> int:
    try:
        return len(urlparse(url).path or "/")
    except ValueError:
        return len(url)


def select_top_n(items: Iterable[ContentItem], n: int) -> List[ContentItem]:
    """Highest word count first; ties go to the shorter path, then the URL."""
    ranked = sorted(items, key=lambda it: (-it.word_count, _url_path_length(it.url), it.url))
    return ranked[:max(0, n)]


class OpportunitiesScanOrchestrator:

    def __init__(
        self,
        store: SnapshotStore,
        discovery: SitemapDiscoveryService,
        fetcher: ContentFetcher,
        plagiarism: Optional[PlagiarismChecker] = None,
        crawler: Optional[CrawlFallbackService] = None,
        url_cap: Optional[int] = None,
        concurrency: Optional[int] = None,
        top_n: Optional[int] = None,
        candidates_per_type: Optional[int] = None,
        plagiarism_budget: Optional[int] = None,
        plagiarism_min_words: Optional[int] = None,
        plagiarism_min_html_length: Optional[int] = None,
        grace_seconds: Optional[float] = None,
        deadline_seconds: Optional[float] = None,
    ):
        self.store = store
        self.discovery = discovery
        self.fetcher = fetcher
        self.plagiarism = plagiarism
        self.crawler = crawler or discovery.crawler
        self.url_cap = url_cap or settings.SCAN_URL_CAP
        self.concurrency = concurrency or settings.SCAN_WORKER_CONCURRENCY
        self.top_n = top_n or settings.SCAN_TOP_N
        self.candidates_per_type = candidates_per_type or settings.SCAN_CANDIDATES_PER_TYPE
        self.plagiarism_budget = settings.PLAGIARISM_BUDGET if plagiarism_budget is None else plagiarism_budget
        self.plagiarism_min_words = (
            settings.PLAGIARISM_MIN_WORDS if plagiarism_min_words is None else plagiarism_min_words
        )
        self.plagiarism_min_html_length = (
            settings.PLAGIARISM_MIN_HTML_LENGTH if plagiarism_min_html_length is None else plagiarism_min_html_length
        )
        self.grace_seconds = settings.IN_FLIGHT_GRACE_SECONDS if grace_seconds is None else grace_seconds
        self.deadline_seconds = settings.SCAN_DEADLINE_SECONDS if deadline_seconds is None else deadline_seconds

        self._in_flight: Dict[str, InFlightEntry] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._timers: Set[asyncio.TimerHandle] = set()

    # ── Registry ────────────────────────────────

    @property
    def active_count(self) -> int:
        return sum(1 for entry in self._in_flight.values() if entry.active)

    def get_in_flight(
        self,
        hostname: str,
        allow_subdomains: bool = False,
        mode: ScanMode = ScanMode.published,
    ) -> Optional[InFlightEntry]:
        return self._in_flight.get(in_flight_key(hostname, allow_subdomains, mode))

    def _set_status(self, key: str, scan_id: str, status: ScanStatus) -> None:
        entry = self._in_flight.get(key)
        if entry and entry.scan_id == scan_id:
            entry.status = status

    def _release(self, key: str, scan_id: str) -> None:
        entry = self._in_flight.get(key)
        if entry and entry.scan_id == scan_id:
            del self._in_flight[key]

    def _schedule_release(self, key: str, scan_id: str) -> None:
        if self.grace_seconds <= 0:
            self._release(key, scan_id)
            return
        loop = asyncio.get_running_loop()
        handle: Optional[asyncio.TimerHandle] = None

        def _fire():
            self._timers.discard(handle)
            self._release(key, scan_id)

        handle = loop.call_later(self.grace_seconds, _fire)
        self._timers.add(handle)

    # ── Enqueue ─────────────────────────────────

    def enqueue(self, website_url: str, allow_subdomains: bool = False) -> Scan:
        """
        Start (or join) the published-mode scan for a site.

        Must be called from inside the running event loop. Returns the
        existing scan when one is queued or running for the same key.

        Raises:
            InvalidWebsiteUrl: the URL has no usable hostname
        """
        normalized = normalize_to_https(website_url)
        hostname = get_hostname(normalized)
        if not normalized or not hostname:
            raise InvalidWebsiteUrl("Invalid websiteUrl")

        allow_subdomains = bool(allow_subdomains)
        mode = ScanMode.published
        key = in_flight_key(hostname, allow_subdomains, mode)

        existing = self._in_flight.get(key)
        if existing and existing.active:
            scan = self.store.get_scan(existing.scan_id)
            if scan is not None:
                logger.info(f"Scan {scan.scan_id} already {existing.status.value} for {hostname}, reusing")
                return scan

        scan = self.store.create_scan(
            kind=SCAN_KIND,
            website_url=normalized,
            hostname=hostname,
            allow_subdomains=allow_subdomains,
            mode=mode,
        )
        self.store.upsert_opportunities_snapshot(hostname, {
            "scanId": scan.scan_id,
            "status": ScanStatus.queued.value,
            "mode": mode.value,
            "allowSubdomains": allow_subdomains,
            "diagnostics": {"stage": "queued"},
            "blogs": [],
            "pages": [],
        })

        entry = InFlightEntry(key=key, scan_id=scan.scan_id, status=ScanStatus.queued)
        self._in_flight[key] = entry

        task = asyncio.get_running_loop().create_task(self.run(scan), name=f"opportunities-scan-{scan.scan_id}")
        entry.task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info(f"Enqueued opportunities scan {scan.scan_id} for {hostname} (subdomains={allow_subdomains})")
        return scan

    # ── Run ─────────────────────────────────────

    async def run(self, scan: Scan) -> None:
        """Background body with its own error boundary."""
        key = in_flight_key(scan.hostname, scan.allow_subdomains, scan.mode)
        try:
            if self.deadline_seconds and self.deadline_seconds > 0:
                await asyncio.wait_for(self._execute(scan, key), timeout=self.deadline_seconds)
            else:
                await self._execute(scan, key)
        except asyncio.TimeoutError:
            logger.error(f"Scan {scan.scan_id} exceeded its {self.deadline_seconds}s deadline")
            self._fail(scan, key, f"Scan exceeded deadline of {self.deadline_seconds}s")
        except asyncio.CancelledError:
            self._fail(scan, key, "Scan cancelled")
            raise
        except Exception as e:
            logger.error(f"Scan {scan.scan_id} for {scan.hostname} failed: {e}", exc_info=True)
            self._fail(scan, key, str(e) or "scan failed")
        finally:
            self._schedule_release(key, scan.scan_id)

    def _snapshot(self, scan: Scan, status: ScanStatus, diagnostics: Dict[str, Any], blogs=None, pages=None) -> None:
        self.store.upsert_opportunities_snapshot(scan.hostname, {
            "scanId": scan.scan_id,
            "status": status.value,
            "mode": scan.mode.value,
            "allowSubdomains": scan.allow_subdomains,
            "diagnostics": diagnostics,
            "blogs": blogs or [],
            "pages": pages or [],
        })

    def _fail(self, scan: Scan, key: str, error: str) -> None:
        diagnostics = {"stage": "failed", "error": error}
        try:
            self._snapshot(scan, ScanStatus.failed, diagnostics)
        except Exception as e:
            logger.error(f"Could not write failed snapshot for scan {scan.scan_id}: {e}", exc_info=True)
        self.store.fail_scan(scan.scan_id, error=error, diagnostics=diagnostics)
        self._set_status(key, scan.scan_id, ScanStatus.failed)

    async def _recover_blogs(self, scan: Scan, page_urls: List[str]) -> Tuple[List[str], str]:
        inferred = infer_blog_urls(page_urls)
        if inferred:
            return inferred, "inferred"

        crawled = await self.crawler.crawl(scan.hostname, None, scan.allow_subdomains)
        blog_like = []
        for url in crawled:
            cleaned = clean_candidate(url, scan.hostname, scan.allow_subdomains)
            if cleaned and heuristic_url_type(cleaned) == BLOG:
                blog_like.append(cleaned)
        blog_like = merge_unique(blog_like, limit=self.candidates_per_type)
        return blog_like, "crawl" if blog_like else "none"

    async def _execute(self, scan: Scan, key: str) -> None:
        self.store.mark_running(scan.scan_id, {"stage": "discovery"})
        self._set_status(key, scan.scan_id, ScanStatus.running)
        self._snapshot(scan, ScanStatus.running, {"stage": "discovery"})

        discovery = await self.discovery.discover(
            scan.website_url,
            scan.allow_subdomains,
            limit=self.candidates_per_type,
        )
        blog_urls = list(discovery.blog_urls)
        page_urls = list(discovery.page_urls)

        blog_recovery = "none"
        if not blog_urls:
            blog_urls, blog_recovery = await self._recover_blogs(scan, page_urls)
            page_urls = [u for u in page_urls if u not in blog_urls]
            if blog_urls:
                logger.info(f"Recovered {len(blog_urls)} blog URLs for {scan.hostname} via {blog_recovery}")

        blog_urls = blog_urls[:self.url_cap]
        page_urls = page_urls[:self.url_cap]
        used_fallback = bool(discovery.diagnostics.get("usedFallback")) or blog_recovery != "none"

        diagnostics = {
            **discovery.diagnostics,
            "usedFallback": used_fallback,
            "blogRecovery": blog_recovery,
            "candidateBlogs": len(blog_urls),
            "candidatePages": len(page_urls),
        }
        self.store.mark_running(scan.scan_id, {**diagnostics, "stage": "fetch-meta"})
        self._snapshot(scan, ScanStatus.running, {**diagnostics, "stage": "fetch-meta"})

        budget = PlagiarismBudget(self.plagiarism_budget)
        items = await self.process_candidates(blog_urls + page_urls, scan.hostname, scan.allow_subdomains, budget)

        blog_set = set(blog_urls)
        blogs = select_top_n([it for it in items if it.url in blog_set], self.top_n)
        pages = select_top_n([it for it in items if it.url not in blog_set], self.top_n)

        diagnostics.update({
            "selectedBlogs": len(blogs),
            "selectedPages": len(pages),
            "plagiarismChecks": budget.used,
            "plagiarismBudgetRemaining": budget.remaining,
            "stage": "complete",
        })
        self._snapshot(
            scan,
            ScanStatus.complete,
            diagnostics,
            blogs=[it.to_wire() for it in blogs],
            pages=[it.to_wire() for it in pages],
        )
        self.store.complete_scan(scan.scan_id, hostname=scan.hostname, diagnostics=diagnostics)
        self._set_status(key, scan.scan_id, ScanStatus.complete)
        logger.info(
            f"Scan {scan.scan_id} complete for {scan.hostname}: "
            f"{len(blogs)} blogs, {len(pages)} pages, {budget.used} plagiarism checks"
        )

    # ── Extraction pool ─────────────────────────

    def _plagiarism_eligible(self, extracted: ExtractedContent) -> bool:
        if self.plagiarism is None or not self.plagiarism.configured:
            return False
        return (
            extracted.word_count >= self.plagiarism_min_words
            and len(extracted.content_html) >= self.plagiarism_min_html_length
        )

    async def _process_one(
        self,
        url: str,
        hostname: str,
        allow_subdomains: bool,
        budget: PlagiarismBudget,
        is_draft: bool = False,
    ) -> Optional[ContentItem]:
        if not is_allowed_host(url, hostname, allow_subdomains):
            logger.warning(f"Skipping off-host candidate {url}")
            return None

        extracted = await self.fetcher.fetch_and_extract(url)
        item = ContentItem(
            url=url,
            title=extracted.title,
            description=extracted.description,
            word_count=extracted.word_count,
            content_html=extracted.content_html,
            is_draft=is_draft,
        )

        # A unit is spent before the call, whatever the outcome
        if self._plagiarism_eligible(extracted) and budget.try_consume():
            result = await self.plagiarism.check(draft_text=extracted.text, url=url, source_url=url)
            item.plagiarism = result.plagiarism
            item.plagiarism_checked_at = result.checked_at
            item.plagiarism_sources = [PlagiarismSource(**s) for s in result.sources]
        return item

    async def process_candidates(
        self,
        urls: Iterable[str],
        hostname: str,
        allow_subdomains: bool,
        budget: PlagiarismBudget,
    ) -> List[ContentItem]:
        """
        Fetch, extract and score candidates with a bounded worker pool.

        Any per-URL failure drops that URL. Completion order is arbitrary;
        callers rank the results.
        """
        queue: asyncio.Queue = asyncio.Queue()
        for url in dict.fromkeys(u for u in urls if u):
            queue.put_nowait(url)
        if queue.empty():
            return []

        results: List[ContentItem] = []

        async def worker() -> None:
            while True:
                try:
                    url = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    item = await self._process_one(url, hostname, allow_subdomains, budget)
                    if item is not None:
                        results.append(item)
                except Exception as e:
                    logger.warning(f"Dropping {url}: {type(e).__name__}: {e}")
                finally:
                    queue.task_done()

        workers = min(self.concurrency, queue.qsize())
        await asyncio.gather(*(worker() for _ in range(workers)))
        return results

    # ── Lifecycle ───────────────────────────────

    async def shutdown(self) -> None:
        tasks = [t for t in self._tasks if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        # cancelled runs schedule their own release timers on the way out
        for handle in list(self._timers):
            handle.cancel()
        self._timers.clear()
        logger.info(f"Orchestrator shut down, cancelled {len(tasks)} running scans")

from collections import deque
from typing import List, Optional
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup

from app.features.scan.services.discovery.url_classifier import (
    SKIPPED_HREF_PREFIXES,
    is_allowed_host,
    looks_like_asset,
    normalize_hostname,
    strip_tracking,
)
from app.platform.config import settings
from app.platform.logger import get_logger

logger = get_logger(__name__)


class Reachability:
    """Counts fetches that got an HTTP response of any status."""

    def __init__(self):
        self.responses = 0
        self.errors = 0

    @property
    def reached(self) -> bool:
        return self.responses > 0


def extract_links(html: str, base_url: str) -> List[str]:
    """Absolute, tracking-free hrefs found in ``html``, in document order."""
    soup = BeautifulSoup(html, "lxml")
    links = []
    for tag in soup.find_all(href=True):
        href = (tag.get("href") or "").strip()
        if not href or href.lower().startswith(SKIPPED_HREF_PREFIXES):
            continue
        try:
            absolute = urljoin(base_url, href)
        except ValueError:
            continue
        if absolute.startswith(("http://", "https://")):
            links.append(strip_tracking(absolute))
    return links


class CrawlFallbackService:
    """
    Bounded breadth-first same-host crawler.

    Used only when sitemap discovery comes back thin. Per-page failures
    (timeouts, non-2xx, transport errors) are skipped, never raised.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        timeout: Optional[float] = None,
        queue_factor: Optional[int] = None,
        user_agent: Optional[str] = None,
    ):
        self.client = client
        self.timeout = timeout or settings.CRAWL_TIMEOUT_SECONDS
        self.queue_factor = queue_factor or settings.CRAWL_QUEUE_FACTOR
        self.user_agent = user_agent or settings.FETCH_USER_AGENT

    async def _fetch_html(self, url: str, reach: Optional[Reachability] = None) -> str:
        try:
            response = await self.client.get(
                url,
                timeout=self.timeout,
                headers={
                    "User-Agent": self.user_agent,
                    "Accept": "text/html,application/xhtml+xml",
                },
            )
        except httpx.HTTPError as e:
            logger.debug(f"Crawl fetch failed for {url}: {e}")
            if reach is not None:
                reach.errors += 1
            return ""
        if reach is not None:
            reach.responses += 1
        if not response.is_success:
            logger.debug(f"Crawl skipped {url}: HTTP {response.status_code}")
            return ""
        return response.text or ""

    async def crawl(
        self,
        hostname: str,
        max_pages: Optional[int] = None,
        allow_subdomains: bool = False,
        reach: Optional[Reachability] = None,
    ) -> List[str]:
        """
        Crawl from ``https://{hostname}/``.

        Args:
            hostname: Bare hostname to crawl
            max_pages: Visit cap (distinct URLs)
            allow_subdomains: Follow links to true subdomains of hostname
            reach: Updated with the outcome of every fetch

        Returns:
            URLs that returned HTML, in visit order
        """
        hostname = normalize_hostname(hostname)
        max_pages = max_pages or settings.CRAWL_MAX_PAGES
        queue_cap = max_pages * self.queue_factor

        seed = f"https://{hostname}/"
        visited = set()
        queue = deque([seed])
        results: List[str] = []

        while queue and len(visited) < max_pages:
            url = queue.popleft()
            if not url or url in visited:
                continue
            visited.add(url)

            html = await self._fetch_html(url, reach)
            if not html:
                continue
            results.append(url)

            for link in extract_links(html, url):
                if link in visited or looks_like_asset(link):
                    continue
                if not is_allowed_host(link, hostname, allow_subdomains):
                    continue
                queue.append(link)
                if len(queue) > queue_cap:
                    break

        logger.info(f"Crawl of {hostname} visited {len(visited)} URLs, {len(results)} returned HTML")
        return results

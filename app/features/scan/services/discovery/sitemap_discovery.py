from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup

from app.features.scan.services.discovery.crawl_fallback import CrawlFallbackService, Reachability, extract_links
from app.features.scan.services.discovery.url_classifier import (
    BLOG,
    BLOG_INDEX_PATHS,
    IGNORE,
    PAGE,
    UNKNOWN,
    TypedUrl,
    classify_sitemap_url,
    clean_candidate,
    get_hostname,
    heuristic_url_type,
    merge_unique,
    normalize_to_https,
    pick_typed_top_n,
)
from app.platform.config import settings
from app.platform.exceptions import DiscoveryError, InvalidWebsiteUrl
from app.platform.logger import get_logger

logger = get_logger(__name__)


@dataclass
class DiscoveryResult:
    hostname: str
    blog_urls: List[str] = field(default_factory=list)
    page_urls: List[str] = field(default_factory=list)
    diagnostics: Dict[str, Any] = field(default_factory=dict)


def extract_locs(xml: str) -> List[str]:
    soup = BeautifulSoup(xml, "xml")
    return [loc.get_text(strip=True) for loc in soup.find_all("loc") if loc.get_text(strip=True)]


class SitemapDiscoveryService:
    """
    Finds candidate blog posts and pages for a site.

    Order: sitemap index / flat sitemap, then crawl fallback when the
    sitemap is thin, then expansion from common blog index pages. Never
    invents a URL: a site with nothing blog-like yields no blog URLs.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        crawler: Optional[CrawlFallbackService] = None,
        timeout: Optional[float] = None,
        max_children: Optional[int] = None,
        max_crawl_pages: Optional[int] = None,
    ):
        self.client = client
        self.crawler = crawler or CrawlFallbackService(client)
        self.timeout = timeout or settings.SITEMAP_TIMEOUT_SECONDS
        self.max_children = max_children or settings.SITEMAP_MAX_CHILDREN
        self.max_crawl_pages = max_crawl_pages or settings.CRAWL_MAX_PAGES

    async def _get_text(self, url: str, reach: Optional[Reachability] = None) -> Optional[str]:
        try:
            response = await self.client.get(url, timeout=self.timeout)
        except httpx.HTTPError as e:
            logger.debug(f"Fetch failed for {url}: {e}")
            if reach is not None:
                reach.errors += 1
            return None
        if reach is not None:
            reach.responses += 1
        if not response.is_success:
            return None
        return response.text

    async def get_sitemap_typed_urls(self, site_url: str, reach: Optional[Reachability] = None) -> List[TypedUrl]:
        """
        Collect ``<loc>`` entries from sitemap_index.xml or sitemap.xml.

        Child sitemaps of an index are typed by filename; ignored ones are
        never fetched. A flat urlset tags everything ``unknown``.
        """
        base = site_url.rstrip("/")
        for sitemap_url in (f"{base}/sitemap_index.xml", f"{base}/sitemap.xml"):
            xml = await self._get_text(sitemap_url, reach)
            if not xml:
                continue

            lowered = xml.lower()
            locs = extract_locs(xml)
            if not locs:
                continue

            if "<sitemapindex" in lowered:
                out: List[TypedUrl] = []
                for child in locs[:self.max_children]:
                    child_type = classify_sitemap_url(child)
                    if child_type == IGNORE:
                        continue
                    child_xml = await self._get_text(child, reach)
                    if not child_xml:
                        continue
                    out.extend(TypedUrl(url=u, type=child_type, source=child) for u in extract_locs(child_xml))
                if out:
                    logger.info(f"Sitemap index {sitemap_url} yielded {len(out)} URLs")
                    return out

            if "<urlset" in lowered:
                logger.info(f"Flat sitemap {sitemap_url} yielded {len(locs)} URLs")
                return [TypedUrl(url=u, type=UNKNOWN, source=sitemap_url) for u in locs]

        return []

    async def expand_from_blog_indexes(
        self,
        base_url: str,
        hostname: str,
        allow_subdomains: bool,
        reach: Optional[Reachability] = None,
    ) -> List[str]:
        """Blog-like links harvested from /blog/, /news/ and similar listing pages."""
        found: List[str] = []
        for path in BLOG_INDEX_PATHS:
            index_url = urljoin(base_url, path)
            html = await self._get_text(index_url, reach)
            if not html:
                continue
            for link in extract_links(html, index_url):
                cleaned = clean_candidate(link, hostname, allow_subdomains)
                if cleaned and heuristic_url_type(cleaned) == BLOG:
                    found.append(cleaned)
        return merge_unique(found, limit=len(found))

    async def discover(
        self,
        website_url: str,
        allow_subdomains: bool = False,
        limit: Optional[int] = None,
    ) -> DiscoveryResult:
        """
        Discover up to ``limit`` blog URLs and ``limit`` page URLs.

        Args:
            website_url: Site root as entered by the user
            allow_subdomains: Accept URLs on true subdomains of the host
            limit: Per-type cap (defaults to DISCOVERY_TOP_N)

        Raises:
            InvalidWebsiteUrl: the URL has no usable hostname
            DiscoveryError: no sitemap, crawl or blog index request got a response
        """
        limit = limit or settings.DISCOVERY_TOP_N
        needed = min(limit, settings.DISCOVERY_TOP_N)

        normalized = normalize_to_https(website_url)
        hostname = get_hostname(normalized)
        if not hostname:
            raise InvalidWebsiteUrl("Invalid websiteUrl")

        reach = Reachability()

        # 1) sitemap
        typed = [
            TypedUrl(url=it.url, type=heuristic_url_type(it.url), source=it.source) if it.type == UNKNOWN else it
            for it in await self.get_sitemap_typed_urls(normalized, reach)
        ]

        blog_urls = pick_typed_top_n(typed, hostname, limit, BLOG, allow_subdomains)
        page_urls = pick_typed_top_n(typed, hostname, limit, PAGE, allow_subdomains)

        # 2) crawl fallback
        needs_fallback = not typed or len(blog_urls) < needed or len(page_urls) < needed
        crawl_urls: List[str] = []
        if needs_fallback:
            crawl_urls = await self.crawler.crawl(hostname, self.max_crawl_pages, allow_subdomains, reach=reach)
            crawl_typed = [
                TypedUrl(url=u, type=heuristic_url_type(u), source="crawl")
                for u in merge_unique(crawl_urls, limit=len(crawl_urls))
            ]
            if len(blog_urls) < needed:
                more = pick_typed_top_n(crawl_typed, hostname, 20, BLOG, allow_subdomains)
                blog_urls = merge_unique(blog_urls, more, limit=limit)
            if len(page_urls) < needed:
                more = pick_typed_top_n(crawl_typed, hostname, 20, PAGE, allow_subdomains)
                page_urls = merge_unique(page_urls, more, limit=limit)

        # 3) blog index pages
        expanded: List[str] = []
        if len(blog_urls) < needed:
            expanded = await self.expand_from_blog_indexes(normalized, hostname, allow_subdomains, reach)
            blog_urls = merge_unique(blog_urls, expanded, limit=limit)

        if not reach.reached:
            logger.warning(f"Discovery for {hostname}: all {reach.errors} requests failed before a response")
            raise DiscoveryError(f"Could not reach {hostname}")

        blog_urls = merge_unique(blog_urls, limit=limit)
        page_urls = [u for u in page_urls if u not in blog_urls][:limit]

        diagnostics = {
            "sitemapTypedCount": len(typed),
            "crawlFound": len(crawl_urls),
            "usedFallback": needs_fallback,
            "blogCount": len(blog_urls),
            "pageCount": len(page_urls),
            "picked": {"blogUrls": list(blog_urls), "pageUrls": list(page_urls)},
            "allowSubdomains": allow_subdomains,
            "expandedFromIndex": len(expanded),
        }
        logger.info(
            f"Discovery for {hostname}: {len(blog_urls)} blogs, {len(page_urls)} pages "
            f"(sitemap={len(typed)}, crawl={len(crawl_urls)}, fallback={needs_fallback})"
        )
        return DiscoveryResult(hostname=hostname, blog_urls=blog_urls, page_urls=page_urls, diagnostics=diagnostics)

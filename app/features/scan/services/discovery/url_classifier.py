"""
URL helpers for opportunity discovery: normalisation, host filtering, tracking
stripping, asset/junk detection and blog/page classification.
"""
from dataclasses import dataclass, replace
from typing import Iterable, List
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

BLOG = "blog"
PAGE = "page"
IGNORE = "ignore"
UNKNOWN = "unknown"

TRACKING_PARAMS = {"gclid", "fbclid", "msclkid"}

ASSET_SUFFIXES = (
    ".png", ".jpg", ".jpeg", ".webp", ".svg", ".pdf",
    ".css", ".js", ".ico", ".json", ".xml",
)

JUNK_PATH_PARTS = (
    "/wp-admin", "/wp-login", "/cart", "/checkout", "/my-account", "/account",
    "/login", "/signup", "/register", "/search", "/feed", "/amp",
)

IGNORE_SITEMAP_HINTS = (
    "category-sitemap", "tag-sitemap", "author-sitemap", "archive-sitemap",
    "attachment-sitemap", "media-sitemap", "image-sitemap", "video-sitemap",
    "product-sitemap", "portfolio-sitemap", "elements", "elementor",
    "elementskit", "hf-sitemap", "taxonomy",
)

PAGE_SITEMAP_HINTS = ("page-sitemap", "post_type-page", "posttype-page", "pages-sitemap")

BLOG_SITEMAP_HINTS = (
    "post-sitemap", "post_type-post", "posttype-post", "posts-sitemap",
    "blog-sitemap", "article-sitemap", "articles-sitemap", "news-sitemap",
    "insights-sitemap",
)

# Listing roots are pages, not posts
LISTING_ROOTS = {
    "/blog", "/blog/", "/blogs", "/blogs/", "/news", "/news/",
    "/insights", "/insights/", "/articles", "/articles/",
}

BLOG_PATH_HINTS = ("/blog/", "/blogs/", "/post/", "/posts/", "/news/", "/articles/", "/insights/")

BLOG_INDEX_PATHS = ("/blog/", "/blogs/", "/news/", "/insights/", "/articles/")

SKIPPED_HREF_PREFIXES = ("#", "mailto:", "tel:", "javascript:")


@dataclass(frozen=True)
class TypedUrl:
    url: str
    type: str
    source: str = ""


def normalize_to_https(raw: str) -> str:
    """
    Turn user input into an absolute http(s) URL.

    Bare hosts get an ``https://`` prefix. Returns "" when the input cannot
    be parsed into a URL with a hostname.
    """
    value = str(raw or "").strip()
    if not value:
        return ""
    if "://" not in value:
        value = f"https://{value}"
    try:
        parsed = urlparse(value)
        host = parsed.hostname
    except ValueError:
        return ""
    if parsed.scheme.lower() not in ("http", "https") or not host or " " in host:
        return ""
    return urlunparse((parsed.scheme.lower(), parsed.netloc.lower(), parsed.path or "/", parsed.params, parsed.query, parsed.fragment))


def _bare_host(url: str) -> str:
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        return ""
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


def get_hostname(url: str) -> str:
    """Lowercase hostname without a leading ``www.``; "" if unparsable."""
    return _bare_host(url)


def normalize_hostname(hostname: str) -> str:
    h = str(hostname or "").strip().lower()
    return h[4:] if h.startswith("www.") else h


def is_allowed_host(url: str, hostname: str, allow_subdomains: bool) -> bool:
    """Exact host match, or a strict ``.hostname`` suffix when subdomains are allowed."""
    h = _bare_host(url)
    if not h:
        return False
    target = normalize_hostname(hostname)
    if h == target:
        return True
    if not allow_subdomains:
        return False
    return h.endswith(f".{target}")


def strip_tracking(url: str) -> str:
    """Drop the fragment and utm_*/gclid/fbclid/msclkid query parameters."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return url
    if not parsed.scheme or not parsed.netloc:
        return url

    query = parsed.query
    if query:
        pairs = parse_qsl(query, keep_blank_values=True)
        kept = [
            (k, v) for k, v in pairs
            if not (k.lower().startswith("utm_") or k.lower() in TRACKING_PARAMS)
        ]
        if len(kept) != len(pairs):
            query = urlencode(kept)

    return urlunparse((parsed.scheme, parsed.netloc, parsed.path or "/", parsed.params, query, ""))


def looks_like_asset(url: str) -> bool:
    s = str(url or "").lower()
    return "/wp-content/" in s or s.endswith(ASSET_SUFFIXES)


def _path(url: str) -> str:
    try:
        return urlparse(url).path or "/"
    except ValueError:
        return ""


def is_junk_path(url: str) -> bool:
    p = _path(url).lower()
    return any(part in p for part in JUNK_PATH_PARTS)


def classify_sitemap_url(sitemap_url: str) -> str:
    """Classify a child sitemap by its filename: blog, page, ignore or unknown."""
    s = str(sitemap_url or "").lower()
    if any(h in s for h in IGNORE_SITEMAP_HINTS):
        return IGNORE
    if any(h in s for h in PAGE_SITEMAP_HINTS):
        return PAGE
    if any(h in s for h in BLOG_SITEMAP_HINTS):
        return BLOG
    return UNKNOWN


def heuristic_url_type(url: str) -> str:
    p = _path(url).lower()
    if p in LISTING_ROOTS:
        return PAGE
    if any(h in p for h in BLOG_PATH_HINTS):
        return BLOG
    return PAGE


def path_depth(url: str) -> int:
    return len([seg for seg in _path(url).split("/") if seg])


def clean_candidate(url: str, hostname: str, allow_subdomains: bool) -> str:
    """
    Apply the shared candidate filters to one URL.

    Returns the tracking-stripped URL, or "" when the URL is an asset, a junk
    path or on a disallowed host.
    """
    if not url:
        return ""
    cleaned = strip_tracking(url)
    if not cleaned or looks_like_asset(cleaned):
        return ""
    if not is_allowed_host(cleaned, hostname, allow_subdomains):
        return ""
    if is_junk_path(cleaned):
        return ""
    return cleaned


def pick_typed_top_n(
    items: Iterable[TypedUrl],
    hostname: str,
    n: int,
    kind: str,
    allow_subdomains: bool,
) -> List[str]:
    """
    Filter, rank and dedupe candidates of one kind.

    Blogs prefer deeper paths (specific posts), pages prefer shallower ones.
    The sort is stable, so equal depths keep their discovery order.
    """
    candidates = []
    for item in items:
        if not item or not item.url or item.type != kind:
            continue
        cleaned = clean_candidate(item.url, hostname, allow_subdomains)
        if cleaned:
            candidates.append(replace(item, url=cleaned))

    candidates.sort(key=lambda it: -path_depth(it.url) if kind == BLOG else path_depth(it.url))

    out: List[str] = []
    seen = set()
    for it in candidates:
        if len(out) >= n:
            break
        if it.url not in seen:
            seen.add(it.url)
            out.append(it.url)
    return out


def merge_unique(*groups: Iterable[str], limit: int) -> List[str]:
    """Order-preserving union of URL lists, capped at ``limit``."""
    out: List[str] = []
    seen = set()
    for group in groups:
        for url in group:
            if url and url not in seen:
                seen.add(url)
                out.append(url)
    return out[:limit]

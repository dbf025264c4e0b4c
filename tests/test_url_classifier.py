"""
Tests for the URL helpers used by opportunity discovery.
"""
import pytest

from app.features.scan.services.discovery.url_classifier import (
    BLOG,
    IGNORE,
    PAGE,
    UNKNOWN,
    TypedUrl,
    clean_candidate,
    classify_sitemap_url,
    get_hostname,
    heuristic_url_type,
    is_allowed_host,
    is_junk_path,
    looks_like_asset,
    merge_unique,
    normalize_to_https,
    pick_typed_top_n,
    strip_tracking,
)


class TestNormalisation:

    def test_bare_host_gets_https(self):
        assert normalize_to_https("example.com") == "https://example.com/"

    def test_keeps_http_scheme(self):
        assert normalize_to_https("http://Example.com/About") == "http://example.com/About"

    @pytest.mark.parametrize("raw", ["", "   ", "ftp://example.com", "https://"])
    def test_unusable_input_returns_empty(self, raw):
        assert normalize_to_https(raw) == ""

    def test_hostname_drops_www(self):
        assert get_hostname("https://WWW.Example.com/path") == "example.com"

    def test_hostname_of_garbage_is_empty(self):
        assert get_hostname("not a url") == ""


class TestHostFilter:

    def test_exact_host_allowed(self):
        assert is_allowed_host("https://www.example.com/a", "example.com", False) is True

    def test_subdomain_rejected_by_default(self):
        assert is_allowed_host("https://blog.example.com/a", "example.com", False) is False

    def test_subdomain_allowed_when_enabled(self):
        assert is_allowed_host("https://blog.example.com/a", "example.com", True) is True

    def test_lookalike_suffix_never_allowed(self):
        assert is_allowed_host("https://evilexample.com/a", "example.com", True) is False

    def test_other_host_rejected(self):
        assert is_allowed_host("https://other.org/", "example.com", True) is False


class TestTrackingAndFilters:

    def test_strips_tracking_params_and_fragment(self):
        url = "https://example.com/post?utm_source=x&ref=1&gclid=abc#section"
        assert strip_tracking(url) == "https://example.com/post?ref=1"

    def test_leaves_clean_query_alone(self):
        assert strip_tracking("https://example.com/p?page=2") == "https://example.com/p?page=2"

    @pytest.mark.parametrize("url", [
        "https://example.com/wp-content/uploads/a.html",
        "https://example.com/logo.PNG",
        "https://example.com/sitemap.xml",
        "https://example.com/data.json",
    ])
    def test_assets(self, url):
        assert looks_like_asset(url) is True

    def test_html_page_is_not_asset(self):
        assert looks_like_asset("https://example.com/about") is False

    @pytest.mark.parametrize("url", [
        "https://example.com/cart",
        "https://example.com/my-account/orders",
        "https://example.com/search?q=x",
        "https://example.com/blog/post/amp",
        "https://example.com/feed/",
    ])
    def test_junk_paths(self, url):
        assert is_junk_path(url) is True

    def test_clean_candidate_rejects_junk_and_assets(self):
        assert clean_candidate("https://example.com/login", "example.com", False) == ""
        assert clean_candidate("https://example.com/a.pdf", "example.com", False) == ""
        assert clean_candidate("https://other.com/a", "example.com", False) == ""

    def test_clean_candidate_returns_stripped_url(self):
        cleaned = clean_candidate("https://example.com/a?utm_medium=b", "example.com", False)
        assert cleaned == "https://example.com/a"


class TestClassification:

    @pytest.mark.parametrize("sitemap,expected", [
        ("https://example.com/post-sitemap.xml", BLOG),
        ("https://example.com/page-sitemap.xml", PAGE),
        ("https://example.com/category-sitemap.xml", IGNORE),
        ("https://example.com/product-sitemap.xml", IGNORE),
        ("https://example.com/sitemap-misc.xml", UNKNOWN),
    ])
    def test_sitemap_filename_classification(self, sitemap, expected):
        assert classify_sitemap_url(sitemap) == expected

    def test_ignore_hints_win_over_page_hints(self):
        assert classify_sitemap_url("https://example.com/elementor-page-sitemap.xml") == IGNORE

    @pytest.mark.parametrize("url,expected", [
        ("https://example.com/blog", PAGE),
        ("https://example.com/blog/", PAGE),
        ("https://example.com/blog/my-first-post", BLOG),
        ("https://example.com/news/launch", BLOG),
        ("https://example.com/about", PAGE),
        ("https://example.com/", PAGE),
    ])
    def test_heuristic_url_type(self, url, expected):
        assert heuristic_url_type(url) == expected


class TestTopN:

    def test_blogs_prefer_deeper_paths(self):
        items = [
            TypedUrl("https://example.com/blog/a", BLOG),
            TypedUrl("https://example.com/blog/2024/05/deep-post", BLOG),
            TypedUrl("https://example.com/blog/b", BLOG),
        ]
        picked = pick_typed_top_n(items, "example.com", 2, BLOG, False)
        assert picked == ["https://example.com/blog/2024/05/deep-post", "https://example.com/blog/a"]

    def test_pages_prefer_shallower_paths_and_dedupe(self):
        items = [
            TypedUrl("https://example.com/services/seo", PAGE),
            TypedUrl("https://example.com/about?utm_source=x", PAGE),
            TypedUrl("https://example.com/about", PAGE),
            TypedUrl("https://example.com/blog/x", BLOG),
        ]
        picked = pick_typed_top_n(items, "example.com", 5, PAGE, False)
        assert picked == ["https://example.com/about", "https://example.com/services/seo"]

    def test_filters_junk_and_foreign_hosts(self):
        items = [
            TypedUrl("https://example.com/cart", PAGE),
            TypedUrl("https://elsewhere.com/about", PAGE),
            TypedUrl("https://example.com/contact", PAGE),
        ]
        assert pick_typed_top_n(items, "example.com", 5, PAGE, False) == ["https://example.com/contact"]

    def test_merge_unique_preserves_order_and_limit(self):
        merged = merge_unique(["a", "b"], ["b", "c", ""], ["d"], limit=3)
        assert merged == ["a", "b", "c"]

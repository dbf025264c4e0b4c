"""
Tests for CMS draft renderers and the draft scan service.
"""
import threading
from unittest.mock import MagicMock

import httpx
import pytest

from app.features.scan.models.scan import ScanMode, ScanStatus
from app.features.scan.services.drafts.providers import DRAFT_URL, render_draft
from app.features.scan.services.extraction.content_extractor import ContentExtractor
from app.features.scan.services.orchestration.draft_scan import DraftScanService
from app.features.scan.services.store.snapshot_store import SnapshotStore
from app.platform.exceptions import DraftProviderError

WP_POST = {
    "title": {"rendered": "Ten tips &amp; tricks"},
    "content": {"rendered": "<h2>Intro</h2><p>First tip is to write clearly.</p><img src='x.png'><p>Second tip.</p>"},
}


def wordpress_client(seen=None, status_code=200):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status_code, json=WP_POST)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


WP_PAYLOAD = {"siteUrl": "https://example.com/", "postId": 42, "authBasic": "dXNlcjpwYXNz"}


class TestDraftProviders:

    async def test_wordpress_draft_request(self):
        seen = []
        draft = await render_draft(wordpress_client(seen), "wordpress", WP_PAYLOAD)

        assert draft.url == DRAFT_URL
        assert draft.title == "Ten tips &amp; tricks"
        assert "First tip" in draft.html
        request = seen[0]
        assert str(request.url) == "https://example.com/wp-json/wp/v2/posts/42?context=edit"
        assert request.headers["Authorization"] == "Basic dXNlcjpwYXNz"

    async def test_shopify_and_webflow(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if "myshopify" in request.url.host:
                assert request.headers["X-Shopify-Access-Token"] == "tok"
                return httpx.Response(200, json={"article": {"title": "Shop post", "body_html": "<p>shop</p>"}})
            assert request.headers["Authorization"] == "Bearer wf"
            return httpx.Response(200, json={"fieldData": {"name": "Flow post", "body": "<p>flow</p>"}})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        shop = await render_draft(client, "shopify", {
            "shopDomain": "store.myshopify.com", "accessToken": "tok", "blogId": 1, "articleId": 2,
        })
        flow = await render_draft(client, "webflow", {"collectionId": "c", "itemId": "i", "token": "wf"})

        assert (shop.title, shop.html) == ("Shop post", "<p>shop</p>")
        assert (flow.title, flow.html) == ("Flow post", "<p>flow</p>")

    async def test_unsupported_provider(self):
        with pytest.raises(DraftProviderError, match="Unsupported provider"):
            await render_draft(wordpress_client(), "ghost", WP_PAYLOAD)

    async def test_incomplete_payload(self):
        with pytest.raises(DraftProviderError, match="payload requires"):
            await render_draft(wordpress_client(), "wordpress", {"siteUrl": "https://example.com"})

    async def test_cms_error_status(self):
        with pytest.raises(DraftProviderError, match="401"):
            await render_draft(wordpress_client(status_code=401), "wordpress", WP_PAYLOAD)


class TestDraftScanService:

    async def test_run_writes_single_draft_blog(self):
        store = SnapshotStore()
        service = DraftScanService(store, wordpress_client())
        scan = store.create_scan("opportunities", "https://example.com/", "example.com", mode=ScanMode.draft, provider="wordpress")

        await service.run(scan, WP_PAYLOAD)

        assert store.get_scan(scan.scan_id).status == ScanStatus.complete
        snapshot = store.get_snapshot("example.com", mode=ScanMode.draft)
        assert snapshot.pages == []
        assert len(snapshot.blogs) == 1
        blog = snapshot.blogs[0]
        assert blog["url"] == DRAFT_URL
        assert blog["title"] == "Ten tips & tricks"
        assert blog["isDraft"] is True
        assert blog["wordCount"] == 9
        assert "<img" not in blog["contentHtml"]
        assert store.get_snapshot("example.com") is None

    async def test_extraction_runs_in_worker_thread(self):
        real = ContentExtractor()
        threads = []

        def extract(html, url):
            threads.append(threading.get_ident())
            return real.extract(html, url)

        extractor = MagicMock()
        extractor.extract.side_effect = extract
        store = SnapshotStore()
        service = DraftScanService(store, wordpress_client(), extractor=extractor)
        scan = store.create_scan("opportunities", "", "example.com", mode=ScanMode.draft, provider="wordpress")

        await service.run(scan, WP_PAYLOAD)

        assert store.get_scan(scan.scan_id).status == ScanStatus.complete
        assert len(threads) == 1
        assert threads[0] != threading.get_ident()

    async def test_failure_leaves_no_snapshot(self):
        store = SnapshotStore()
        service = DraftScanService(store, wordpress_client(status_code=500))
        scan = store.create_scan("opportunities", "", "example.com", mode=ScanMode.draft, provider="wordpress")

        await service.run(scan, WP_PAYLOAD)

        record = store.get_scan(scan.scan_id)
        assert record.status == ScanStatus.failed
        assert "500" in record.error
        assert store.get_snapshot("example.com", mode=ScanMode.draft) is None

    async def test_enqueue_validates_and_starts_task(self):
        store = SnapshotStore()
        service = DraftScanService(store, wordpress_client())

        with pytest.raises(ValueError, match="provider is required"):
            service.enqueue("example.com", "", WP_PAYLOAD)

        scan = service.enqueue("www.example.com", "WordPress", WP_PAYLOAD)
        assert scan.mode == ScanMode.draft
        assert scan.provider == "wordpress"
        assert scan.hostname == "example.com"

        await service.shutdown()

"""
Endpoint tests for /seo/opportunities, /seo/scan/status, /seo/draft-scan and
/plagiarism. Services are swapped through ``app.dependency_overrides``.
"""
import pytest

from app.features.scan.dependencies import (
    get_draft_scan_service,
    get_orchestrator,
    get_plagiarism_checker,
    get_snapshot_store,
)
from app.features.scan.models.scan import ScanMode
from app.features.scan.services.discovery.url_classifier import get_hostname
from app.features.scan.services.plagiarism.plagiarism_service import PlagiarismResult
from app.features.scan.services.store.snapshot_store import SnapshotStore
from app.platform.exceptions import ProviderError

BLOG = {
    "url": "https://example.com/blog/post",
    "title": "Post",
    "description": "About things",
    "wordCount": 1200,
    "contentHtml": "<p>Body</p>",
}


class FakeOrchestrator:
    def __init__(self, store: SnapshotStore):
        self.store = store
        self.enqueued = []

    def enqueue(self, website_url, allow_subdomains=False):
        self.enqueued.append((website_url, allow_subdomains))
        return self.store.create_scan("opportunities", website_url, get_hostname(website_url), allow_subdomains)


class FakeDraftService:
    def __init__(self, store: SnapshotStore):
        self.store = store
        self.enqueued = []

    def enqueue(self, hostname, provider, payload):
        self.enqueued.append((hostname, provider, payload))
        return self.store.create_scan("opportunities", "", hostname, mode=ScanMode.draft, provider=provider)


class FakeChecker:
    def __init__(self, error: Exception = None):
        self.error = error
        self.calls = []

    async def check(self, draft_text, url="", source_url="", source_text="", cache_key=""):
        self.calls.append({"draft_text": draft_text, "url": url, "source_url": source_url, "source_text": source_text})
        if self.error:
            raise self.error
        return PlagiarismResult(
            plagiarism=35,
            sources=[{"url": "https://copied.example.org", "note": "same intro"}],
            notes="Intro overlaps",
            checked_at="2026-01-01T00:00:00+00:00",
            cache_key="plag:example.com:abc",
        )


@pytest.fixture
def store():
    return SnapshotStore()


@pytest.fixture
def scan_client(client, test_app, store):
    orchestrator = FakeOrchestrator(store)
    drafts = FakeDraftService(store)
    test_app.dependency_overrides[get_snapshot_store] = lambda: store
    test_app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    test_app.dependency_overrides[get_draft_scan_service] = lambda: drafts
    client.orchestrator = orchestrator
    client.drafts = drafts
    return client


class TestOpportunitiesEndpoint:

    def test_cold_request_enqueues_scan(self, scan_client):
        response = scan_client.post("/api/v1/seo/opportunities", json={"websiteUrl": "www.Example.com"})

        assert response.status_code == 202
        body = response.json()
        assert body["websiteUrl"] == "https://www.example.com/"
        assert body["hostname"] == "example.com"
        assert body["blogs"] == [] and body["pages"] == []
        assert body["source"]["status"] == "queued"
        assert body["source"]["fromCache"] is False
        assert body["source"]["scanId"]
        assert scan_client.orchestrator.enqueued == [("https://www.example.com/", False)]

    def test_fresh_snapshot_served_from_cache(self, scan_client, store):
        store.upsert_opportunities_snapshot("example.com", {
            "scanId": "done-1",
            "status": "complete",
            "diagnostics": {"stage": "complete"},
            "blogs": [BLOG],
            "pages": [],
        })

        response = scan_client.post("/api/v1/seo/opportunities", json={"websiteUrl": "https://example.com"})

        assert response.status_code == 200
        body = response.json()
        assert body["source"]["fromCache"] is True
        assert body["source"]["scanId"] == "done-1"
        assert body["blogs"][0]["wordCount"] == 1200
        assert body["blogs"][0]["isDraft"] is False
        assert scan_client.orchestrator.enqueued == []

    def test_running_scan_returns_202_from_cache(self, scan_client, store):
        scan = store.create_scan("opportunities", "https://example.com/", "example.com")
        store.upsert_opportunities_snapshot("example.com", {"scanId": scan.scan_id, "status": "queued", "blogs": [], "pages": []})
        store.mark_running(scan.scan_id, {"stage": "fetch-meta"})

        response = scan_client.post("/api/v1/seo/opportunities", json={"websiteUrl": "example.com"})

        assert response.status_code == 202
        assert response.json()["source"]["status"] == "running"
        assert response.json()["source"]["fromCache"] is True
        assert scan_client.orchestrator.enqueued == []

    def test_failed_snapshot_triggers_rescan(self, scan_client, store):
        store.upsert_opportunities_snapshot("example.com", {"scanId": "bad", "status": "failed"})

        response = scan_client.post("/api/v1/seo/opportunities", json={"websiteUrl": "example.com"})

        assert response.status_code == 202
        assert response.json()["source"]["fromCache"] is False
        assert len(scan_client.orchestrator.enqueued) == 1

    def test_subdomain_snapshots_are_separate(self, scan_client, store):
        store.upsert_opportunities_snapshot("example.com", {"scanId": "strict", "status": "complete", "blogs": [BLOG]})

        response = scan_client.post(
            "/api/v1/seo/opportunities",
            json={"websiteUrl": "example.com", "allowSubdomains": True},
        )

        assert response.status_code == 202
        assert scan_client.orchestrator.enqueued == [("https://example.com/", True)]

    def test_missing_url(self, scan_client):
        response = scan_client.post("/api/v1/seo/opportunities", json={})

        assert response.status_code == 400
        assert response.json()["status"] == "error"
        assert response.json()["message"] == "websiteUrl is required"

    def test_invalid_url(self, scan_client):
        response = scan_client.post("/api/v1/seo/opportunities", json={"websiteUrl": "ftp://example.com"})

        assert response.status_code == 400
        assert response.json()["message"] == "Invalid websiteUrl"


class TestScanStatusEndpoint:

    def test_missing_scan_id(self, scan_client):
        response = scan_client.get("/api/v1/seo/scan/status")
        assert response.status_code == 400
        assert response.json()["message"] == "scanId is required"

    def test_unknown_scan(self, scan_client):
        response = scan_client.get("/api/v1/seo/scan/status", params={"scanId": "nope"})
        assert response.status_code == 404
        assert response.json()["message"] == "Scan not found"

    def test_known_scan(self, scan_client, store):
        scan = store.create_scan("opportunities", "https://example.com/", "example.com")
        store.fail_scan(scan.scan_id, error="timeout", diagnostics={"stage": "failed"})

        response = scan_client.get("/api/v1/seo/scan/status", params={"scanId": scan.scan_id})

        assert response.status_code == 200
        body = response.json()
        assert body["scanId"] == scan.scan_id
        assert body["status"] == "failed"
        assert body["hostname"] == "example.com"
        assert body["mode"] == "published"
        assert body["error"] == "timeout"
        assert body["createdAt"].endswith("+00:00")


class TestDraftScanEndpoint:

    PAYLOAD = {"siteUrl": "https://example.com", "postId": 1, "authBasic": "abc"}

    @pytest.mark.parametrize("missing", ["hostname", "provider", "payload"])
    def test_required_fields(self, scan_client, missing):
        body = {"hostname": "example.com", "provider": "wordpress", "payload": self.PAYLOAD}
        body.pop(missing)

        response = scan_client.post("/api/v1/seo/draft-scan", json=body)

        assert response.status_code == 400
        assert response.json()["message"] == f"{missing} is required"

    def test_enqueues_draft_scan(self, scan_client):
        response = scan_client.post(
            "/api/v1/seo/draft-scan",
            json={"hostname": "www.example.com", "provider": "WordPress", "payload": self.PAYLOAD},
        )

        assert response.status_code == 202
        body = response.json()
        assert body["hostname"] == "example.com"
        assert body["source"]["mode"] == "draft"
        assert body["source"]["provider"] == "wordpress"
        assert scan_client.drafts.enqueued[0][:2] == ("example.com", "wordpress")

    def test_cached_draft_returned(self, scan_client, store):
        scan = store.create_scan("opportunities", "", "example.com", mode=ScanMode.draft, provider="wordpress")
        store.upsert_opportunities_snapshot("example.com", {
            "scanId": scan.scan_id,
            "status": "complete",
            "mode": "draft",
            "blogs": [{**BLOG, "url": "(draft)"}],
            "pages": [],
        })
        store.complete_scan(scan.scan_id)

        response = scan_client.post(
            "/api/v1/seo/draft-scan",
            json={"hostname": "example.com", "provider": "wordpress", "payload": self.PAYLOAD},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["source"]["fromCache"] is True
        assert body["blogs"][0]["isDraft"] is True
        assert scan_client.drafts.enqueued == []


class TestPlagiarismEndpoint:

    def test_requires_draft(self, client):
        response = client.post("/api/v1/plagiarism", json={"url": "https://example.com"})
        assert response.status_code == 400
        assert response.json()["message"] == "draftHtml/draftText is required"

    def test_html_draft_is_converted_to_text(self, client, test_app):
        checker = FakeChecker()
        test_app.dependency_overrides[get_plagiarism_checker] = lambda: checker

        response = client.post("/api/v1/plagiarism", json={
            "draftHtml": "<p>Hello <b>draft</b></p>",
            "sourceUrl": "https://example.com/post",
            "sourceHtml": "<p>Source text</p>",
        })

        assert response.status_code == 200
        assert response.json() == {
            "plagiarism": 35,
            "sources": [{"url": "https://copied.example.org", "note": "same intro"}],
            "notes": "Intro overlaps",
            "checkedAt": "2026-01-01T00:00:00+00:00",
            "cacheKey": "plag:example.com:abc",
        }
        assert checker.calls[0]["draft_text"] == "Hello draft"
        assert checker.calls[0]["source_text"] == "Source text"
        assert checker.calls[0]["url"] == "https://example.com/post"

    def test_unconfigured_llm_is_bad_gateway(self, client):
        response = client.post("/api/v1/plagiarism", json={"draftText": "Some draft words"})

        assert response.status_code == 502
        assert response.json()["message"] == "PERPLEXITY_API_KEY is not set"

    def test_provider_failure_is_bad_gateway(self, client, test_app):
        test_app.dependency_overrides[get_plagiarism_checker] = lambda: FakeChecker(ProviderError("perplexity", "quota"))

        response = client.post("/api/v1/plagiarism", json={"draftText": "Some draft words"})

        assert response.status_code == 502
        assert response.json()["message"] == "quota"

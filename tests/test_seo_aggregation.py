"""
Tests for the unified SEO aggregation: fan-out, partial failure, the
backlink fallback, progress events and the dashboard rollups.
"""
import threading
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from app.features.scan.services.extraction.content_fetcher import FetchedPage
from app.features.seo.schemas.seo import DEFAULT_PROVIDERS, SeoRequest
from app.features.seo.services.aggregation import (
    SeoAggregationService,
    apply_backlink_fallback,
    build_info_panel,
    build_issues,
    build_issues_growth,
    compute_percent_growth,
    needs_backlink_fallback,
    normalize_for_ui,
    parse_page_content,
    pick_authority_score,
    resolve_target,
    text_to_html,
)
from app.features.seo.services.providers.insights import InsightsProvider
from app.platform.exceptions import InvalidWebsiteUrl, ProviderError

PAGE_HTML = """
<html><head><title>Acme SEO Services</title><script>var x = 1;</script></head>
<body>
  <h1>Technical SEO audits</h1>
  <img src="/hero.png">
  <p>Technical SEO audits find crawl problems. Our technical SEO audits cover site speed.</p>
  <p>Site speed matters for rankings and site speed affects conversions.</p>
</body></html>
"""

PSI_RESULT = {
    "technicalSeo": {
        "performanceScoreMobile": 0.8,
        "performanceScoreDesktop": 0.9,
        "coreWebVitals": {},
        "coreWebVitalsField": {},
        "issueCounts": {"critical": 2, "warning": 3},
    }
}

AUTHORITY_RESULT = {"authority": {"domain": "example.com", "domainAuthority": 5, "pageRankDecimal": 5.12}}

SERP_RESULT = {
    "serp": {
        "topResults": [{"title": "Top", "link": "https://top.example.org", "position": 1}],
        "peopleAlsoAsk": [
            {"question": "What is a technical SEO audit", "snippet": "A review of crawlability.", "link": "https://a.org"},
        ],
        "relatedSearches": [{"query": "seo audit checklist"}],
        "serpFeatures": 60,
    }
}


def dataforseo_result(backlinks: int = 10, referring: int = 2) -> Dict[str, Any]:
    rows = [{"keyword": "technical seo", "volume": 1900, "difficulty": 40}]
    return {
        "dataForSeo": {
            "backlinksSummary": {"backlinks": backlinks, "referring_domains": referring},
            "topKeywords": rows,
        },
        "seoRows": rows,
    }


def provider(result: Any = None, error: Optional[Exception] = None, method: str = "fetch") -> MagicMock:
    mock = MagicMock()
    setattr(mock, method, AsyncMock(return_value=result, side_effect=error))
    return mock


def make_service(
    psi=None,
    authority=None,
    serper=None,
    dataforseo=None,
    rapidapi=None,
    html: str = PAGE_HTML,
    fetch_error: Optional[Exception] = None,
) -> SeoAggregationService:
    fetcher = MagicMock()
    fetcher.fetch_html = AsyncMock(
        return_value=FetchedPage(html=html, source="direct", status=200, final_url="https://example.com/"),
        side_effect=fetch_error,
    )
    return SeoAggregationService(
        client=MagicMock(spec=httpx.AsyncClient),
        fetcher=fetcher,
        psi=psi or provider(PSI_RESULT, method="fetch_technical_seo"),
        authority=authority or provider(AUTHORITY_RESULT),
        serper=serper or provider(SERP_RESULT, method="search"),
        dataforseo=dataforseo or provider(dataforseo_result()),
        rapidapi=rapidapi or provider({"backlinksSummary": {"backlinks": 120, "referring_domains": 14}}),
        insights=InsightsProvider(llm=None),
    )


def request(**kwargs) -> SeoRequest:
    body = {"url": "example.com", "keyword": "technical seo audit"}
    body.update(kwargs)
    return SeoRequest.model_validate(body)


async def collect(service: SeoAggregationService, req: SeoRequest) -> List:
    return [event async for event in service.stream(req)]


class TestSeoRequest:

    def test_defaults(self):
        req = SeoRequest(url="example.com")
        assert req.providers == DEFAULT_PROVIDERS
        assert req.country_code == "in"
        assert req.language_code == "en"
        assert req.depth == 10
        assert req.keyword is None

    def test_providers_normalized(self):
        req = SeoRequest.model_validate({"url": "x.com", "providers": " PSI,serper,unknown,psi, keywords"})
        assert req.providers == ["psi", "serper", "keywords"]

    def test_blank_keyword_is_none(self):
        assert SeoRequest.model_validate({"url": "x.com", "keyword": "   "}).keyword is None


class TestHelpers:

    def test_resolve_target(self):
        assert resolve_target("www.example.com/page") == ("https://www.example.com/page", "example.com")
        with pytest.raises(InvalidWebsiteUrl, match="Missing 'url'"):
            resolve_target("  ")
        with pytest.raises(InvalidWebsiteUrl, match="Invalid 'url'"):
            resolve_target("ftp://example.com")

    @pytest.mark.parametrize("current,baseline,expected", [
        (50, 40, 25),
        (20, 40, -50),
        (10, 0, 0),
        (None, 40, -100),
        (True, 40, -100),
    ])
    def test_compute_percent_growth(self, current, baseline, expected):
        assert compute_percent_growth(current, baseline) == expected

    @pytest.mark.parametrize("payload,expected", [
        (None, None),
        (55, 55),
        ({"pageRank": 4.2}, 42),
        ({"domainAuthority": 63}, 63),
        ({"openPageRank": {"rank": "7"}}, 70),
        ({"results": [{"page_rank_decimal": 3.5}]}, 35),
        ({"score": ""}, None),
        ({"nothing": 1}, None),
    ])
    def test_pick_authority_score(self, payload, expected):
        assert pick_authority_score(payload) == expected

    def test_build_issues_from_counts_and_text(self):
        unified = {
            "technicalSeo": {"issueCounts": {"critical": 4, "warning": True}},
            "content": {"rawText": "word " * 2400},
        }
        issues = build_issues(unified)
        assert issues == {"critical": 4, "warning": 0, "recommendations": 8, "contentOpps": 2}
        assert build_issues_growth(issues)["critical"] == compute_percent_growth(4, 274)

    def test_build_issues_without_text(self):
        assert build_issues({}) == {"critical": 0, "warning": 0, "recommendations": 0, "contentOpps": 0}

    @pytest.mark.parametrize("mobile,desktop,label,tone", [
        (0.9, 0.8, "Good", "success"),
        (0.6, 0.5, "Needs Work", "warning"),
        (0.2, 0.4, "Poor", "danger"),
        (None, None, "Good", "success"),
    ])
    def test_info_panel_badge(self, mobile, desktop, label, tone):
        panel = build_info_panel({"technicalSeo": {"performanceScoreMobile": mobile, "performanceScoreDesktop": desktop}})
        assert panel["badge"] == {"label": label, "tone": tone}

    def test_info_panel_metrics(self):
        panel = build_info_panel({"openPageRank": {"domainAuthority": 6, "pageRankDecimal": 6.2}, "seoRows": [{}, {}]})
        assert panel["domainAuthority"] == 60
        assert panel["organicKeyword"] == 2
        assert panel["organicTraffic"] is None
        assert panel["growth"] == {"domainAuthority": 50, "organicKeyword": -99, "organicTraffic": 0}

    def test_backlink_fallback_helpers(self):
        unified = {"dataForSeo": {"backlinksSummary": {"backlinks": "0", "referring_domains": None}}}
        assert needs_backlink_fallback(unified) is True
        assert needs_backlink_fallback({"dataForSeo": {"backlinksSummary": {"backlinks": 3}}}) is False

        applied = apply_backlink_fallback(unified, {"backlinks": 9, "referring_domains": 4})
        assert applied is True
        assert unified["dataForSeo"]["backlinksSummary"] == {"backlinks": 9, "referring_domains": 4}
        assert unified["_meta"]["backlinksFallback"] == "rapidapi"

    def test_normalize_for_ui(self):
        unified = normalize_for_ui({"serp": SERP_RESULT["serp"], "dataForSeo": {"topKeywords": [{"keyword": "k"}]}})
        assert unified["serper"]["organic"] == SERP_RESULT["serp"]["topResults"]
        assert unified["dataForSeo"]["backlinkDomains"] == []
        assert unified["dataForSeo"]["externalTotal"] == 0
        assert unified["seoRows"] == [{"keyword": "k"}]

    def test_text_to_html(self):
        assert text_to_html("One <b>\nline\n\nTwo") == "<p>One &lt;b&gt;<br/>line</p><p>Two</p>"


class TestContentPipeline:

    def test_parse_page_content(self):
        content = parse_page_content(PAGE_HTML)

        assert content["title"] == "Acme SEO Services"
        assert content["rawText"].startswith("Technical SEO audits")
        assert "var x" not in content["rawText"]
        assert "<script" not in content["html"] and "<img" not in content["html"]

    def test_title_falls_back_to_first_line(self):
        content = parse_page_content("<html><body><p>Only a paragraph here</p></body></html>")
        assert content["title"] == "Only a paragraph here"

    async def test_build_content_parses_off_the_event_loop(self):
        service = make_service()
        loop_thread = threading.get_ident()

        with patch(
            "app.features.seo.services.aggregation.parse_page_content",
            side_effect=lambda page_html: {"thread": threading.get_ident()},
        ) as parse:
            content = await service.build_content("https://example.com/")

        parse.assert_called_once_with(PAGE_HTML)
        assert content["thread"] != loop_thread


class TestAggregate:

    async def test_all_providers_succeed(self):
        service = make_service()

        unified = await service.aggregate(request())

        assert "_errors" not in unified
        assert unified["technicalSeo"]["performanceScoreMobile"] == 0.8
        assert unified["openPageRank"]["domainAuthority"] == 5
        assert unified["serper"]["peopleAlsoAsk"][0]["question"] == "What is a technical SEO audit"
        assert unified["dataForSeo"]["backlinksSummary"]["backlinks"] == 10
        assert unified["content"]["title"] == "Acme SEO Services"
        assert unified["content"]["source"] == "rendered_html"
        assert "<img" not in unified["content"]["html"]
        assert "var x" not in unified["content"]["rawText"]
        assert unified["issues"]["critical"] == 2
        assert unified["infoPanel"]["domainAuthority"] == 50
        assert unified["infoPanel"]["organicKeyword"] == 1
        assert unified["infoPanel"]["badge"]["label"] == "Good"
        assert unified["_meta"]["domain"] == "example.com"
        assert unified["_meta"]["keyword"] == "technical seo audit"
        assert unified["_meta"]["generatedAt"]
        service.rapidapi.fetch.assert_not_awaited()
        service.serper.search.assert_awaited_once_with("technical seo audit", "in", "en")

    async def test_provider_failure_is_recorded_not_raised(self):
        service = make_service(authority=provider(error=ProviderError("authority", "OPENPAGERANK_API_KEY is not set")))

        unified = await service.aggregate(request())

        assert unified["_errors"] == {"authority": "authority: OPENPAGERANK_API_KEY is not set"}
        assert "technicalSeo" in unified
        assert "openPageRank" not in unified
        assert unified["infoPanel"]["domainAuthority"] is None

    async def test_backlink_fallback_used_when_counts_are_zero(self):
        service = make_service(dataforseo=provider(dataforseo_result(backlinks=0, referring=0)))

        unified = await service.aggregate(request())

        service.rapidapi.fetch.assert_awaited_once_with("example.com")
        assert unified["dataForSeo"]["backlinksSummary"]["backlinks"] == 120
        assert unified["_meta"]["backlinksFallback"] == "rapidapi"

    async def test_backlink_fallback_failure_is_recorded(self):
        service = make_service(
            dataforseo=provider(dataforseo_result(backlinks=0, referring=0)),
            rapidapi=provider(error=ProviderError("rapidapi", "all endpoints failed")),
        )

        unified = await service.aggregate(request())

        assert unified["_errors"]["rapidapi"] == "rapidapi: all endpoints failed"
        assert "backlinksFallback" not in unified["_meta"]

    async def test_keywords_only_skips_slow_providers(self):
        service = make_service()

        unified = await service.aggregate(request(keywordsOnly=True))

        service.psi.fetch_technical_seo.assert_not_awaited()
        service.serper.search.assert_not_awaited()
        service.rapidapi.fetch.assert_not_awaited()
        service.fetcher.fetch_html.assert_not_awaited()
        assert service.dataforseo.fetch.await_args.kwargs["keywords_only"] is True
        assert "content" not in unified
        assert unified["_meta"]["keywordsOnly"] is True

    async def test_serper_needs_a_keyword(self):
        service = make_service()

        unified = await service.aggregate(request(keyword=None))

        service.serper.search.assert_not_awaited()
        assert "serp" not in unified

    async def test_only_requested_providers_run(self):
        service = make_service()

        unified = await service.aggregate(request(providers=["authority"]))

        service.psi.fetch_technical_seo.assert_not_awaited()
        service.dataforseo.fetch.assert_not_awaited()
        assert set(k for k in unified if not k.startswith("_")) >= {"authority", "openPageRank", "issues", "infoPanel"}
        assert "content" not in unified

    async def test_content_failure_is_recorded(self):
        service = make_service(fetch_error=httpx.ConnectError("refused"))

        unified = await service.aggregate(request())

        assert unified["_errors"]["contentPipeline"] == "refused"
        assert "content" not in unified

    async def test_empty_page_adds_warning(self):
        service = make_service(html="<html><body></body></html>")

        unified = await service.aggregate(request())

        assert unified["_warnings"] == ["No title/html/text extracted (content empty)"]

    async def test_faqs_and_keyword_opportunities(self):
        service = make_service()

        unified = await service.aggregate(request(providers=["serper", "dataforseo", "content", "faqs", "keywords"]))

        assert unified["faqs"] == [{
            "question": "What is a technical SEO audit?",
            "answer": "A review of crawlability.",
            "source": "https://a.org",
        }]
        phrases = [k["phrase"] for k in unified["keywordOpportunities"]]
        assert "site speed" in phrases
        assert "technical seo" not in phrases

    async def test_invalid_url_raises(self):
        with pytest.raises(InvalidWebsiteUrl):
            await make_service().aggregate(request(url=""))


class TestStream:

    async def test_event_order(self):
        events = await collect(make_service(), request())

        names = [e for e, _ in events]
        assert names[-1] == "done"
        assert events[0][1]["stage"] == "start"
        assert all(name == "status" for name in names[:-1])

        stages = [(d["stage"], d["state"]) for e, d in events[1:-1]]
        core = ["psi", "authority", "serper", "dataforseo"]
        starts = [stages.index((k, "start")) for k in core]
        dones = [stages.index((k, "done")) for k in core]
        assert max(starts) < min(dones)
        assert stages.index(("content", "start")) > max(dones)
        assert stages[-2:] == [("finalize", "start"), ("finalize", "done")]
        assert "infoPanel" in events[-1][1]["unified"]

    async def test_provider_error_event(self):
        events = await collect(make_service(psi=provider(error=ProviderError("psi", "quota"), method="fetch_technical_seo")), request())

        errors = [d for e, d in events if e == "status" and d.get("state") == "error"]
        assert errors == [{"stage": "psi", "state": "error", "message": "psi: quota"}]
        assert events[-1][0] == "done"

    async def test_unexpected_failure_ends_with_fatal(self):
        broken = provider({"technicalSeo": ["not", "a", "dict"]}, method="fetch_technical_seo")

        events = await collect(make_service(psi=broken), request())

        assert events[-1][0] == "fatal"
        assert events[-1][1]["error"] == "Internal server error"
        assert "done" not in [e for e, _ in events]

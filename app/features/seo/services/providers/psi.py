import asyncio
from typing import Any, Dict, Optional

import httpx

from app.features.seo.services.providers.http import request_json, require_key
from app.platform.config import settings

PSI_ENDPOINT = "https://www.googleapis.com/pagespeedonline/v5/runPagespeed"


def _number(value: Any) -> Optional[float]:
    return value if isinstance(value, (int, float)) and not isinstance(value, bool) else None


def parse_psi_response(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Reduce a PageSpeed Insights payload to the lab and field vitals the
    dashboard reads, plus audit-derived issue counts.

    Audits scoring below 0.5 count as critical, below 0.9 as warnings.
    """
    lighthouse = data.get("lighthouseResult") or {}
    audits = lighthouse.get("audits") or {}
    categories = lighthouse.get("categories") or {}

    inp_audit = audits.get("interaction-to-next-paint") or audits.get("experimental-interaction-to-next-paint") or {}

    def lab(key: str) -> Optional[float]:
        return _number((audits.get(key) or {}).get("numericValue"))

    core_web_vitals_lab = {
        "lcp": lab("largest-contentful-paint"),
        "fcp": lab("first-contentful-paint"),
        "cls": lab("cumulative-layout-shift"),
        "tti": lab("interactive"),
        "inp": _number(inp_audit.get("numericValue")),
    }

    critical = warning = 0
    for audit in audits.values():
        score = _number((audit or {}).get("score"))
        if score is None:
            continue
        if score < 0.5:
            critical += 1
        elif score < 0.9:
            warning += 1

    page_metrics = (data.get("loadingExperience") or {}).get("metrics") or {}
    origin_metrics = (data.get("originLoadingExperience") or {}).get("metrics") or {}

    def field(*keys: str, scale: float = 1) -> Dict[str, Any]:
        metric = None
        for key in keys:
            metric = page_metrics.get(key) or origin_metrics.get(key)
            if metric:
                break
        metric = metric or {}
        percentile = _number(metric.get("percentile"))
        return {
            "value": percentile / scale if percentile is not None else None,
            "category": metric.get("category"),
        }

    # CLS percentile is reported as score * 100
    core_web_vitals_field = {
        "lcp": field("LARGEST_CONTENTFUL_PAINT_MS"),
        "inp": field("INTERACTION_TO_NEXT_PAINT", "EXPERIMENTAL_INTERACTION_TO_NEXT_PAINT"),
        "cls": field("CUMULATIVE_LAYOUT_SHIFT_SCORE", scale=100),
    }

    return {
        "performanceScore": _number((categories.get("performance") or {}).get("score")),
        "coreWebVitalsLab": core_web_vitals_lab,
        "coreWebVitalsField": core_web_vitals_field,
        "issueCounts": {"critical": critical, "warning": warning},
    }


class PageSpeedClient:
    """Google PageSpeed Insights, mobile and desktop strategies."""

    def __init__(self, client: httpx.AsyncClient, api_key: Optional[str] = None):
        self.client = client
        self.api_key = api_key if api_key is not None else settings.PSI_API_KEY

    async def fetch_strategy(self, url: str, strategy: str = "mobile") -> Dict[str, Any]:
        key = require_key("psi", self.api_key, "PSI_API_KEY")
        data = await request_json(
            "psi",
            self.client,
            "GET",
            PSI_ENDPOINT,
            params={"url": url, "strategy": strategy, "key": key},
            timeout=max(settings.PROVIDER_TIMEOUT_SECONDS, 60),
        )
        return parse_psi_response(data)

    async def fetch_technical_seo(self, url: str) -> Dict[str, Any]:
        """Both strategies in parallel, merged into ``{"technicalSeo": ...}``."""
        mobile, desktop = await asyncio.gather(
            self.fetch_strategy(url, "mobile"),
            self.fetch_strategy(url, "desktop"),
        )
        return {
            "technicalSeo": {
                "performanceScoreMobile": mobile["performanceScore"],
                "performanceScoreDesktop": desktop["performanceScore"],
                "coreWebVitals": mobile["coreWebVitalsLab"] or desktop["coreWebVitalsLab"],
                "coreWebVitalsField": mobile["coreWebVitalsField"] or desktop["coreWebVitalsField"],
                "issueCounts": {
                    "critical": mobile["issueCounts"]["critical"] + desktop["issueCounts"]["critical"],
                    "warning": mobile["issueCounts"]["warning"] + desktop["issueCounts"]["warning"],
                },
            }
        }

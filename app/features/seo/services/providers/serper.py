from typing import Any, Dict, Optional

import httpx

from app.features.seo.services.providers.http import request_json, require_key
from app.platform.config import settings

SERPER_ENDPOINT = "https://google.serper.dev/search"


def serp_feature_counts(data: Dict[str, Any]) -> Dict[str, int]:
    """Each SERP feature block present adds 20% coverage, capped at 100."""
    featured_snippets = 1 if data.get("answerBox") else 0
    people_also_ask = len(data.get("peopleAlsoAsk") or [])
    image_pack = len(data.get("images") or [])
    video_results = len(data.get("videos") or [])
    knowledge_panel = 1 if data.get("knowledgeGraph") else 0

    blocks = sum(1 for n in (featured_snippets, people_also_ask, image_pack, video_results, knowledge_panel) if n > 0)
    return {
        "coveragePercent": min(100, blocks * 20),
        "featuredSnippets": featured_snippets,
        "peopleAlsoAsk": people_also_ask,
        "imagePack": image_pack,
        "videoResults": video_results,
        "knowledgePanel": knowledge_panel,
    }


class SerperClient:
    def __init__(self, client: httpx.AsyncClient, api_key: Optional[str] = None):
        self.client = client
        self.api_key = api_key if api_key is not None else settings.SERPER_API_KEY

    async def search(self, query: str, country_code: str = "in", language_code: str = "en") -> Dict[str, Any]:
        """Google results for ``query`` as ``{"serp": {...}}``."""
        key = require_key("serper", self.api_key, "SERPER_API_KEY")
        data = await request_json(
            "serper",
            self.client,
            "POST",
            SERPER_ENDPOINT,
            json={"q": query, "gl": country_code, "hl": language_code},
            headers={"X-API-KEY": key},
        )
        return {
            "serp": {
                "topResults": data.get("organic") or [],
                "peopleAlsoAsk": data.get("peopleAlsoAsk") or [],
                "relatedSearches": data.get("relatedSearches") or [],
                "serpFeatures": serp_feature_counts(data),
            }
        }

from typing import Any, Dict, Optional

import httpx

from app.features.seo.services.providers.http import request_json, require_key
from app.platform.config import settings

OPENPAGERANK_ENDPOINT = "https://openpagerank.com/api/v1.0/getPageRank"


class OpenPageRankClient:
    """Domain authority proxy from Open PageRank (0-10 scale)."""

    def __init__(self, client: httpx.AsyncClient, api_key: Optional[str] = None):
        self.client = client
        self.api_key = api_key if api_key is not None else settings.OPENPAGERANK_API_KEY

    async def fetch(self, domain: str) -> Dict[str, Any]:
        key = require_key("authority", self.api_key, "OPENPAGERANK_API_KEY")
        data = await request_json(
            "authority",
            self.client,
            "GET",
            OPENPAGERANK_ENDPOINT,
            params={"domains[0]": domain},
            headers={"API-OPR": key},
        )
        rows = data.get("response") or []
        result = rows[0] if rows else {}
        return {
            "authority": {
                "domain": result.get("domain") or domain,
                "domainAuthority": result.get("page_rank_integer"),
                "pageRankDecimal": result.get("page_rank_decimal"),
            }
        }

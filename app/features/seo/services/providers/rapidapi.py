import re
from collections import deque
from typing import Any, Dict, Optional

import httpx

from app.features.seo.services.providers.http import require_key, to_number
from app.platform.config import settings
from app.platform.exceptions import ProviderError
from app.platform.logger import get_logger

logger = get_logger(__name__)

KEY_BACKLINK = re.compile(r"back\s*links?|total_backlinks?", re.I)
KEY_REF_DOMAINS = re.compile(r"(referr?ing|referral)[\s_]*domains?|ref_domains?", re.I)
KEY_REF_PAGES = re.compile(r"(referr?ing|referral)[\s_]*pages?", re.I)
KEY_NOFOLLOW = re.compile(r"nofollow", re.I)


def scan_for_counts(payload: Any) -> Dict[str, Optional[float]]:
    """
    Breadth-first search of an arbitrary JSON payload for backlink-style
    counts. The first numeric value under a matching key wins.
    """
    found: Dict[str, Optional[float]] = {
        "backlinks": None,
        "referringDomains": None,
        "referringPages": None,
        "nofollowPages": None,
    }
    queue = deque([payload])
    seen = set()

    while queue:
        current = queue.popleft()
        if isinstance(current, list):
            queue.extend(current)
            continue
        if not isinstance(current, dict) or id(current) in seen:
            continue
        seen.add(id(current))

        for key, value in current.items():
            if isinstance(value, (dict, list)):
                queue.append(value)
                continue
            n = to_number(value)
            if n is None:
                continue
            key = str(key)
            if found["backlinks"] is None and KEY_BACKLINK.search(key):
                found["backlinks"] = n
            if found["referringDomains"] is None and KEY_REF_DOMAINS.search(key):
                found["referringDomains"] = n
            if KEY_REF_PAGES.search(key):
                if found["nofollowPages"] is None and KEY_NOFOLLOW.search(key):
                    found["nofollowPages"] = n
                elif found["referringPages"] is None and not KEY_NOFOLLOW.search(key):
                    found["referringPages"] = n
    return found


class RapidApiBacklinkClient:
    """
    Backlink counts from the RapidAPI "website analyze and SEO audit" API.

    Used only when DataForSEO has no usable backlink numbers. Endpoint names
    vary by plan, so a few are tried in order.
    """

    ENDPOINTS = (
        ("/domain-data", "domain"),
        ("/domain_data", "domain"),
        ("/aiseo.php", "url"),
    )

    def __init__(self, client: httpx.AsyncClient, api_key: Optional[str] = None, host: Optional[str] = None):
        self.client = client
        self.api_key = api_key if api_key is not None else settings.RAPIDAPI_KEY
        self.host = host or settings.RAPIDAPI_HOST

    async def fetch(self, domain: str) -> Dict[str, Any]:
        """
        Returns:
            ``{"backlinksSummary": {backlinks, referring_domains, referring_pages,
            referring_pages_nofollow}}``

        Raises:
            ProviderError: no key, or every endpoint failed
        """
        key = require_key("rapidapi", self.api_key, "RAPIDAPI_KEY")
        headers = {"X-RapidAPI-Key": key, "X-RapidAPI-Host": self.host}
        last_error = "no endpoint worked"

        for path, param in self.ENDPOINTS:
            try:
                response = await self.client.get(
                    f"https://{self.host}{path}",
                    params={param: domain},
                    headers=headers,
                    timeout=12.0,
                )
            except httpx.HTTPError as e:
                last_error = f"{path} request failed: {e}"
                continue
            if not response.is_success:
                last_error = f"{path} failed: {response.status_code} - {response.text[:200]}"
                continue
            try:
                payload = response.json()
            except ValueError:
                last_error = f"{path} returned non-JSON"
                continue

            counts = scan_for_counts(payload)
            logger.info(f"RapidAPI backlink fallback hit {path} for {domain}")
            return {
                "backlinksSummary": {
                    "backlinks": counts["backlinks"] or 0,
                    "referring_domains": counts["referringDomains"] or 0,
                    "referring_pages": counts["referringPages"] or 0,
                    "referring_pages_nofollow": counts["nofollowPages"] or 0,
                }
            }

        raise ProviderError("rapidapi", last_error)

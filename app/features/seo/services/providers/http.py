"""
Shared plumbing for the SEO data provider clients.
"""
import math
from typing import Any, Dict, Optional

import httpx

from app.platform.config import settings
from app.platform.exceptions import ProviderError


def to_number(value: Any) -> Optional[float]:
    """
    Coerce provider values such as ``1,234`` or ``"12.5"`` to a number.

    Booleans, NaN/inf and anything unparseable give None.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        cleaned = value.replace(",", "").strip()
        try:
            n = float(cleaned)
        except ValueError:
            return None
        if not math.isfinite(n):
            return None
        return int(n) if n.is_integer() else n
    return None


def require_key(provider: str, key: Optional[str], env_name: str) -> str:
    if not key:
        raise ProviderError(provider, f"{env_name} is not set")
    return key


async def request_json(
    provider: str,
    client: httpx.AsyncClient,
    method: str,
    url: str,
    timeout: Optional[float] = None,
    **kwargs,
) -> Dict[str, Any]:
    """
    Send a request and decode its JSON body.

    Raises:
        ProviderError: transport failure, non-2xx status or a non-JSON body
    """
    try:
        response = await client.request(
            method,
            url,
            timeout=timeout or settings.PROVIDER_TIMEOUT_SECONDS,
            **kwargs,
        )
    except httpx.HTTPError as e:
        raise ProviderError(provider, f"request failed: {e}") from e

    if not response.is_success:
        raise ProviderError(provider, f"failed: {response.status_code} - {response.text[:200]}")

    try:
        return response.json()
    except ValueError as e:
        raise ProviderError(provider, "response was not JSON") from e

"""
CMS draft renderers. Each returns the unpublished post as
``RenderedDraft(url, title, html)`` using the CMS's authenticated API.
"""
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict

import httpx

from app.platform.config import settings
from app.platform.exceptions import DraftProviderError

DRAFT_URL = "(draft)"


@dataclass
class RenderedDraft:
    url: str
    title: str
    html: str


def _require(provider: str, payload: Dict[str, Any], *fields: str) -> None:
    missing = [f for f in fields if not payload.get(f)]
    if missing:
        raise DraftProviderError(provider, f"payload requires {', '.join(fields)}")


async def _get_json(provider: str, client: httpx.AsyncClient, url: str, headers: Dict[str, str]) -> Dict[str, Any]:
    try:
        response = await client.get(url, headers=headers, timeout=settings.PROVIDER_TIMEOUT_SECONDS)
    except httpx.HTTPError as e:
        raise DraftProviderError(provider, f"request failed: {e}") from e
    if not response.is_success:
        raise DraftProviderError(provider, f"draft fetch failed ({response.status_code})")
    return response.json()


async def render_wordpress_draft(client: httpx.AsyncClient, payload: Dict[str, Any]) -> RenderedDraft:
    """payload: siteUrl, postId, authBasic (base64 of user:app_password)"""
    _require("wordpress", payload, "siteUrl", "postId", "authBasic")
    api_url = f"{str(payload['siteUrl']).rstrip('/')}/wp-json/wp/v2/posts/{payload['postId']}?context=edit"
    data = await _get_json("wordpress", client, api_url, {"Authorization": f"Basic {payload['authBasic']}"})
    return RenderedDraft(
        url=DRAFT_URL,
        title=(data.get("title") or {}).get("rendered") or "",
        html=(data.get("content") or {}).get("rendered") or "",
    )


async def render_shopify_draft(client: httpx.AsyncClient, payload: Dict[str, Any]) -> RenderedDraft:
    """payload: shopDomain, accessToken, blogId, articleId"""
    _require("shopify", payload, "shopDomain", "accessToken", "blogId", "articleId")
    api_url = (
        f"https://{payload['shopDomain']}/admin/api/2023-01/blogs/"
        f"{payload['blogId']}/articles/{payload['articleId']}.json"
    )
    data = await _get_json("shopify", client, api_url, {"X-Shopify-Access-Token": str(payload["accessToken"])})
    article = data.get("article") or {}
    return RenderedDraft(url=DRAFT_URL, title=article.get("title") or "", html=article.get("body_html") or "")


async def render_webflow_draft(client: httpx.AsyncClient, payload: Dict[str, Any]) -> RenderedDraft:
    """payload: collectionId, itemId, token"""
    _require("webflow", payload, "collectionId", "itemId", "token")
    api_url = f"https://api.webflow.com/v2/collections/{payload['collectionId']}/items/{payload['itemId']}"
    data = await _get_json(
        "webflow",
        client,
        api_url,
        {"Authorization": f"Bearer {payload['token']}", "accept-version": "2.0.0"},
    )
    fields = data.get("fieldData") or {}
    return RenderedDraft(url=DRAFT_URL, title=fields.get("name") or "", html=fields.get("body") or fields.get("content") or "")


DRAFT_PROVIDERS: Dict[str, Callable[[httpx.AsyncClient, Dict[str, Any]], Awaitable[RenderedDraft]]] = {
    "wordpress": render_wordpress_draft,
    "shopify": render_shopify_draft,
    "webflow": render_webflow_draft,
}


async def render_draft(client: httpx.AsyncClient, provider: str, payload: Dict[str, Any]) -> RenderedDraft:
    renderer = DRAFT_PROVIDERS.get(provider)
    if renderer is None:
        raise DraftProviderError(provider, f"Unsupported provider: {provider}")
    return await renderer(client, payload or {})

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from app.features.scan.dependencies import get_draft_scan_service, get_orchestrator, get_snapshot_store
from app.features.scan.models.scan import ScanMode, ScanStatus
from app.features.scan.schemas.opportunities import (
    ContentItem,
    DraftScanRequest,
    OpportunitiesRequest,
    OpportunitiesResponse,
    OpportunitiesSource,
)
from app.features.scan.services.discovery.url_classifier import get_hostname, normalize_hostname, normalize_to_https
from app.features.scan.services.orchestration.draft_scan import DraftScanService
from app.features.scan.services.orchestration.scan_orchestrator import OpportunitiesScanOrchestrator
from app.features.scan.services.store.snapshot_store import SnapshotStore
from app.platform.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/seo", tags=["opportunities"])

IN_PROGRESS = {ScanStatus.queued.value, ScanStatus.running.value}


def _items(raw: List[Dict[str, Any]]) -> List[ContentItem]:
    return [ContentItem.model_validate(item) for item in raw or []]


def _respond(payload: OpportunitiesResponse, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=payload.model_dump(by_alias=True))


@router.post("/opportunities")
async def get_opportunities(
    body: OpportunitiesRequest,
    store: SnapshotStore = Depends(get_snapshot_store),
    orchestrator: OpportunitiesScanOrchestrator = Depends(get_orchestrator),
):
    """
    Cached opportunities for a site, or a 202 while a scan runs.

    - **200**: fresh, complete snapshot
    - **202**: scan queued or running (poll ``/seo/scan/status``)
    """
    raw_url = (body.website_url or "").strip()
    if not raw_url:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="websiteUrl is required")
    website_url = normalize_to_https(raw_url)
    hostname = get_hostname(website_url)
    if not website_url or not hostname:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid websiteUrl")

    allow_subdomains = bool(body.allow_subdomains)
    cached = store.get_latest_opportunities(hostname, mode=ScanMode.published, allow_subdomains=allow_subdomains)

    # A failed snapshot is not worth serving; fall through and rescan
    if cached and cached.scan.get("status") != ScanStatus.failed.value:
        scan_status = cached.scan.get("status")
        payload = OpportunitiesResponse(
            website_url=website_url,
            hostname=hostname,
            blogs=_items(cached.blogs),
            pages=_items(cached.pages),
            source=OpportunitiesSource(
                scan_id=cached.scan.get("scanId"),
                status=scan_status,
                mode=cached.scan.get("mode") or ScanMode.published.value,
                provider=cached.scan.get("provider"),
                diagnostics=cached.scan.get("diagnostics") or {},
                from_cache=True,
                allow_subdomains=allow_subdomains,
            ),
        )
        in_progress = scan_status in IN_PROGRESS
        return _respond(payload, status.HTTP_202_ACCEPTED if in_progress else status.HTTP_200_OK)

    scan = orchestrator.enqueue(website_url, allow_subdomains)
    payload = OpportunitiesResponse(
        website_url=website_url,
        hostname=hostname,
        source=OpportunitiesSource(
            scan_id=scan.scan_id,
            status=scan.status.value,
            mode=ScanMode.published.value,
            from_cache=False,
            allow_subdomains=allow_subdomains,
        ),
    )
    return _respond(payload, status.HTTP_202_ACCEPTED)


@router.post("/draft-scan")
async def draft_scan(
    body: DraftScanRequest,
    store: SnapshotStore = Depends(get_snapshot_store),
    service: DraftScanService = Depends(get_draft_scan_service),
):
    """
    Scan an unpublished CMS post (wordpress, shopify, webflow).

    Returns the fresh draft snapshot (200) or enqueues a draft scan (202).
    """
    hostname = normalize_hostname(body.hostname or "")
    provider = (body.provider or "").strip().lower()
    for field, value in (("hostname", hostname), ("provider", provider), ("payload", body.payload)):
        if not value:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{field} is required")

    cached = store.get_latest_opportunities(hostname, mode=ScanMode.draft)
    if cached:
        payload = OpportunitiesResponse(
            hostname=hostname,
            blogs=_items(cached.blogs),
            pages=_items(cached.pages),
            source=OpportunitiesSource(
                scan_id=cached.scan.get("scanId"),
                status=cached.scan.get("status"),
                mode=ScanMode.draft.value,
                provider=cached.scan.get("provider") or provider,
                diagnostics=cached.scan.get("diagnostics") or {},
                from_cache=True,
            ),
        )
        return _respond(payload, status.HTTP_200_OK)

    scan = service.enqueue(hostname, provider, body.payload)
    payload = OpportunitiesResponse(
        hostname=hostname,
        source=OpportunitiesSource(
            scan_id=scan.scan_id,
            status=scan.status.value,
            mode=ScanMode.draft.value,
            provider=provider,
            from_cache=False,
        ),
    )
    return _respond(payload, status.HTTP_202_ACCEPTED)

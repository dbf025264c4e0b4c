from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.features.scan.dependencies import get_snapshot_store
from app.features.scan.models.scan import to_iso
from app.features.scan.schemas.opportunities import ScanStatusResponse
from app.features.scan.services.store.snapshot_store import SnapshotStore
from app.platform.exceptions import ScanNotFound

router = APIRouter(prefix="/seo/scan", tags=["opportunities"])


@router.get("/status", response_model=ScanStatusResponse, response_model_by_alias=True)
async def get_scan_status(
    scan_id: Optional[str] = Query(default=None, alias="scanId"),
    store: SnapshotStore = Depends(get_snapshot_store),
):
    """Poll target for clients that received a 202."""
    if not scan_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="scanId is required")

    scan = store.get_scan(scan_id)
    if scan is None:
        raise ScanNotFound(scan_id)

    return ScanStatusResponse(
        scan_id=scan.scan_id,
        status=scan.status.value,
        hostname=scan.hostname,
        mode=scan.mode.value,
        provider=scan.provider,
        created_at=to_iso(scan.created_at),
        diagnostics=scan.diagnostics or {},
        error=scan.error,
    )

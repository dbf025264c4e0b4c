import asyncio
import html
from typing import Any, Dict, Optional, Set

import httpx

from app.features.scan.models.scan import Scan, ScanMode
from app.features.scan.schemas.opportunities import ContentItem
from app.features.scan.services.drafts.providers import render_draft
from app.features.scan.services.extraction.content_extractor import ContentExtractor, TITLE_MAX_LENGTH, safe_trim
from app.features.scan.services.store.snapshot_store import SnapshotStore
from app.platform.logger import get_logger

logger = get_logger(__name__)


class DraftScanService:
    """
    Scans an unpublished CMS post. The result is stored as a ``draft`` mode
    snapshot holding a single blog item.
    """

    def __init__(self, store: SnapshotStore, client: httpx.AsyncClient, extractor: Optional[ContentExtractor] = None):
        self.store = store
        self.client = client
        self.extractor = extractor or ContentExtractor()
        self._tasks: Set[asyncio.Task] = set()

    def enqueue(self, hostname: str, provider: str, payload: Dict[str, Any]) -> Scan:
        """
        Raises:
            ValueError: hostname, provider or payload missing
        """
        hostname = str(hostname or "").strip()
        provider = str(provider or "").strip().lower()
        if not hostname:
            raise ValueError("hostname is required")
        if not provider:
            raise ValueError("provider is required")
        if not payload:
            raise ValueError("payload is required")

        scan = self.store.create_scan(
            kind="opportunities",
            website_url=payload.get("siteUrl") or payload.get("shopDomain") or "",
            hostname=hostname,
            mode=ScanMode.draft,
            provider=provider,
        )
        task = asyncio.get_running_loop().create_task(self.run(scan, payload), name=f"draft-scan-{scan.scan_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(f"Enqueued draft scan {scan.scan_id} for {scan.hostname} via {provider}")
        return scan

    async def run(self, scan: Scan, payload: Dict[str, Any]) -> None:
        diagnostics = {"provider": scan.provider, "source": "internal-render"}
        self.store.mark_running(scan.scan_id, {**diagnostics, "stage": "render"})
        try:
            rendered = await render_draft(self.client, scan.provider, payload)
            extracted = await asyncio.to_thread(self.extractor.extract, rendered.html, rendered.url)

            item = ContentItem(
                url=rendered.url,
                title=safe_trim(html.unescape(rendered.title), TITLE_MAX_LENGTH) or extracted.title,
                description=extracted.description,
                word_count=extracted.word_count,
                content_html=extracted.content_html,
                is_draft=True,
            )
            self.store.upsert_opportunities_snapshot(scan.hostname, {
                "scanId": scan.scan_id,
                "status": "complete",
                "mode": ScanMode.draft.value,
                "diagnostics": diagnostics,
                "blogs": [item.to_wire()],
                "pages": [],
            })
            self.store.complete_scan(scan.scan_id, hostname=scan.hostname, diagnostics=diagnostics)
            logger.info(f"Draft scan {scan.scan_id} complete ({item.word_count} words)")
        except asyncio.CancelledError:
            self.store.fail_scan(scan.scan_id, error="Draft scan cancelled", diagnostics=diagnostics)
            raise
        except Exception as e:
            logger.warning(f"Draft scan {scan.scan_id} failed: {e}")
            self.store.fail_scan(scan.scan_id, error=str(e) or "Draft scan failed", diagnostics=diagnostics)

    async def shutdown(self) -> None:
        tasks = [t for t in self._tasks if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from app.features.scan.models.scan import OpportunitySnapshot, Scan, ScanMode, ScanStatus
from app.features.scan.services.discovery.url_classifier import normalize_hostname
from app.platform.config import settings
from app.platform.logger import get_logger

logger = get_logger(__name__)


@dataclass
class LatestOpportunities:
    scan: Dict[str, Any]
    blogs: List[Dict[str, Any]] = field(default_factory=list)
    pages: List[Dict[str, Any]] = field(default_factory=list)


def _normalize_items(items: Optional[Iterable[Any]], is_draft: bool) -> List[Dict[str, Any]]:
    out = []
    for item in items or []:
        if hasattr(item, "model_dump"):
            item = item.model_dump(by_alias=True)
        item = dict(item or {})
        try:
            word_count = max(0, int(item.get("wordCount") or 0))
        except (TypeError, ValueError):
            word_count = 0
        item.update(
            url=item.get("url") or "",
            title=item.get("title") or "",
            description=item.get("description") or "",
            wordCount=word_count,
            isDraft=bool(is_draft),
        )
        item.setdefault("contentHtml", "")
        item.setdefault("plagiarism", None)
        item.setdefault("plagiarismCheckedAt", None)
        item.setdefault("plagiarismSources", [])
        out.append(item)
    return out


class SnapshotStore:
    """
    In-process scan records and opportunity snapshots.

    Scans are keyed by scan id; snapshots by ``{hostname}::{mode}::sub={0|1}``.
    Not shared across processes.
    """

    def __init__(self, clock: Callable[[], float] = time.time, ttl_seconds: Optional[int] = None):
        self.clock = clock
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.OPPORTUNITIES_TTL_SECONDS
        self._scans: Dict[str, Scan] = {}
        self._snapshots: Dict[str, OpportunitySnapshot] = {}

    @staticmethod
    def snapshot_key(hostname: str, mode: Any = ScanMode.published, allow_subdomains: bool = False) -> str:
        return f"{normalize_hostname(hostname)}::{ScanMode.normalize(mode).value}::sub={1 if allow_subdomains else 0}"

    # ── Scans ───────────────────────────────────

    def create_scan(
        self,
        kind: str,
        website_url: str,
        hostname: str,
        allow_subdomains: bool = False,
        mode: Any = ScanMode.published,
        provider: Optional[str] = None,
    ) -> Scan:
        now = self.clock()
        scan = Scan(
            scan_id=str(uuid.uuid4()),
            kind=kind or "opportunities",
            website_url=website_url or "",
            hostname=normalize_hostname(hostname),
            allow_subdomains=bool(allow_subdomains),
            mode=ScanMode.normalize(mode),
            provider=provider or None,
            status=ScanStatus.queued,
            created_at=now,
            updated_at=now,
        )
        self._scans[scan.scan_id] = scan
        return scan

    def get_scan(self, scan_id: str) -> Optional[Scan]:
        return self._scans.get(scan_id)

    def mark_running(self, scan_id: str, diagnostics: Optional[Dict[str, Any]] = None) -> Optional[Scan]:
        scan = self._scans.get(scan_id)
        if not scan:
            return None
        scan.status = ScanStatus.running
        if diagnostics is not None:
            scan.diagnostics = dict(diagnostics)
        scan.updated_at = self.clock()
        return scan

    def complete_scan(
        self,
        scan_id: str,
        hostname: Optional[str] = None,
        diagnostics: Optional[Dict[str, Any]] = None,
    ) -> Optional[Scan]:
        scan = self._scans.get(scan_id)
        if not scan:
            return None
        scan.status = ScanStatus.complete
        if hostname:
            scan.hostname = normalize_hostname(hostname)
        if diagnostics is not None:
            scan.diagnostics = dict(diagnostics)
        scan.updated_at = self.clock()
        return scan

    def fail_scan(
        self,
        scan_id: str,
        error: Optional[str] = None,
        diagnostics: Optional[Dict[str, Any]] = None,
    ) -> Optional[Scan]:
        scan = self._scans.get(scan_id)
        if not scan:
            return None
        scan.status = ScanStatus.failed
        scan.error = error or "failed"
        if diagnostics is not None:
            scan.diagnostics = dict(diagnostics)
        scan.updated_at = self.clock()
        return scan

    # ── Snapshots ───────────────────────────────

    def upsert_opportunities_snapshot(self, hostname: str, payload: Dict[str, Any]) -> OpportunitySnapshot:
        """
        Merge ``payload`` onto the snapshot for its key.

        Scalar fields the payload omits keep their previous values. ``blogs``
        and ``pages``, when present, are normalized and replace the old lists.
        ``updated_at`` always moves to now.
        """
        mode = ScanMode.normalize(payload.get("mode"))
        allow_subdomains = bool(payload.get("allowSubdomains"))
        key = self.snapshot_key(hostname, mode, allow_subdomains)
        prev = self._snapshots.get(key)
        is_draft = mode == ScanMode.draft

        status = payload.get("status")
        diagnostics = payload.get("diagnostics")

        snapshot = OpportunitySnapshot(
            hostname=normalize_hostname(hostname),
            mode=mode,
            allow_subdomains=allow_subdomains,
            updated_at=self.clock(),
            scan_id=payload.get("scanId") or (prev.scan_id if prev else None),
            status=ScanStatus(status) if status else (prev.status if prev and prev.status else ScanStatus.complete),
            diagnostics=dict(diagnostics) if diagnostics is not None else (dict(prev.diagnostics) if prev else {}),
            blogs=_normalize_items(payload["blogs"], is_draft) if "blogs" in payload else (list(prev.blogs) if prev else []),
            pages=_normalize_items(payload["pages"], is_draft) if "pages" in payload else (list(prev.pages) if prev else []),
        )
        self._snapshots[key] = snapshot
        return snapshot

    def get_snapshot(self, hostname: str, mode: Any = ScanMode.published, allow_subdomains: bool = False) -> Optional[OpportunitySnapshot]:
        return self._snapshots.get(self.snapshot_key(hostname, mode, allow_subdomains))

    def get_latest_opportunities(
        self,
        hostname: str,
        ttl_seconds: Optional[float] = None,
        mode: Any = ScanMode.published,
        allow_subdomains: bool = False,
    ) -> Optional[LatestOpportunities]:
        """
        Fresh snapshot for the key, or None when absent or older than the TTL.

        The ``scan`` block reflects the live scan record when it still exists,
        else the snapshot's own cached status.
        """
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        snapshot = self.get_snapshot(hostname, mode, allow_subdomains)
        if snapshot is None:
            return None
        if self.clock() - snapshot.updated_at > ttl:
            return None

        scan = self._scans.get(snapshot.scan_id) if snapshot.scan_id else None
        if scan:
            info = {
                "scanId": scan.scan_id,
                "status": scan.status.value,
                "diagnostics": dict(scan.diagnostics),
                "mode": scan.mode.value,
                "provider": scan.provider,
                "allowSubdomains": scan.allow_subdomains,
            }
        else:
            info = {
                "scanId": snapshot.scan_id,
                "status": (snapshot.status or ScanStatus.complete).value,
                "diagnostics": dict(snapshot.diagnostics),
                "mode": snapshot.mode.value,
                "provider": None,
                "allowSubdomains": snapshot.allow_subdomains,
            }
        return LatestOpportunities(scan=info, blogs=list(snapshot.blogs), pages=list(snapshot.pages))

import asyncio
import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class ScanStatus(str, enum.Enum):
    """Scan state machine: queued -> running -> complete | failed"""
    queued = "queued"
    running = "running"
    complete = "complete"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ScanStatus.complete, ScanStatus.failed)


class ScanMode(str, enum.Enum):
    published = "published"
    draft = "draft"

    @classmethod
    def normalize(cls, value: Any) -> "ScanMode":
        """Anything other than "draft" is treated as published."""
        if isinstance(value, ScanMode):
            return value
        return cls.draft if str(value or "").strip().lower() == "draft" else cls.published


def to_iso(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


@dataclass
class Scan:
    scan_id: str
    kind: str
    website_url: str
    hostname: str
    allow_subdomains: bool = False
    mode: ScanMode = ScanMode.published
    provider: Optional[str] = None
    status: ScanStatus = ScanStatus.queued
    created_at: float = 0.0
    updated_at: float = 0.0
    diagnostics: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scanId": self.scan_id,
            "kind": self.kind,
            "websiteUrl": self.website_url,
            "hostname": self.hostname,
            "allowSubdomains": self.allow_subdomains,
            "mode": self.mode.value,
            "provider": self.provider,
            "status": self.status.value,
            "createdAt": to_iso(self.created_at),
            "updatedAt": to_iso(self.updated_at),
            "diagnostics": dict(self.diagnostics),
            "error": self.error,
        }


@dataclass
class OpportunitySnapshot:
    """Latest result set for one (hostname, mode, allowSubdomains) key."""
    hostname: str
    mode: ScanMode
    allow_subdomains: bool
    updated_at: float
    scan_id: Optional[str] = None
    status: Optional[ScanStatus] = None
    diagnostics: Dict[str, Any] = field(default_factory=dict)
    blogs: List[Dict[str, Any]] = field(default_factory=list)
    pages: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class InFlightEntry:
    """Dedup guard for one composite scan key."""
    key: str
    scan_id: str
    status: ScanStatus
    task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return not self.status.is_terminal

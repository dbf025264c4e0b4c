"""
Scan models package.
"""
from app.features.scan.models.scan import (
    InFlightEntry,
    OpportunitySnapshot,
    Scan,
    ScanMode,
    ScanStatus,
)

__all__ = ["Scan", "ScanMode", "ScanStatus", "OpportunitySnapshot", "InFlightEntry"]

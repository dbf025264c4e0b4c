"""
Request-scoped accessors for the services built in the app lifespan.
"""
from fastapi import Request

from app.features.scan.services.orchestration.draft_scan import DraftScanService
from app.features.scan.services.orchestration.scan_orchestrator import OpportunitiesScanOrchestrator
from app.features.scan.services.plagiarism.plagiarism_service import PlagiarismChecker
from app.features.scan.services.store.snapshot_store import SnapshotStore


def get_snapshot_store(request: Request) -> SnapshotStore:
    return request.app.state.snapshot_store


def get_orchestrator(request: Request) -> OpportunitiesScanOrchestrator:
    return request.app.state.orchestrator


def get_draft_scan_service(request: Request) -> DraftScanService:
    return request.app.state.draft_scan_service


def get_plagiarism_checker(request: Request) -> PlagiarismChecker:
    return request.app.state.plagiarism_checker

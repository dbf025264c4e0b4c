from fastapi import APIRouter

from app.features.scan.routes.opportunities import router as opportunities_router
from app.features.scan.routes.plagiarism import router as plagiarism_router
from app.features.scan.routes.scan_status import router as scan_status_router
from app.features.seo.routes.seo import router as seo_router

api_router = APIRouter()

# Opportunities scan feature routes
api_router.include_router(opportunities_router)
api_router.include_router(scan_status_router)
api_router.include_router(plagiarism_router)

# Unified SEO signals
api_router.include_router(seo_router)

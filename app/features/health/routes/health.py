from fastapi import APIRouter, Request, status

from app.platform.config import settings
from app.platform.response import api_response


router = APIRouter()

@router.get("/health", tags=["health"])
async def health_check(request: Request):
    orchestrator = getattr(request.app.state, "orchestrator", None)
    return api_response(
        data={
            "status": "ok",
            "service": settings.APP_NAME,
            "scansInFlight": orchestrator.active_count if orchestrator else 0,
        },
        message="Service is healthy",
        status_code=status.HTTP_200_OK,
    )

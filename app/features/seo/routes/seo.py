"""
Unified SEO endpoint.

Send ``Accept: text/event-stream`` to receive progress as Server-Sent Events
(``status`` per provider, then ``done`` with the unified document).
"""
from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from app.features.seo.dependencies import get_seo_aggregation_service
from app.features.seo.schemas.seo import SeoRequest
from app.features.seo.services.aggregation import SeoAggregationService, resolve_target
from app.platform.logger import get_logger
from app.platform.services.sse_helper import to_sse_frames

logger = get_logger(__name__)

router = APIRouter(prefix="/seo", tags=["seo"])


@router.post("")
async def aggregate_seo(
    body: SeoRequest,
    request: Request,
    service: SeoAggregationService = Depends(get_seo_aggregation_service),
):
    # Validate before choosing a mode so a bad url is a 400 in both
    resolve_target(body.url)

    if "text/event-stream" in request.headers.get("accept", ""):
        logger.info(f"Streaming SEO aggregation for {body.url}")
        return EventSourceResponse(
            to_sse_frames(service.stream(body)),
            headers={"Cache-Control": "no-cache, no-transform", "X-Accel-Buffering": "no"},
        )

    return await service.aggregate(body)

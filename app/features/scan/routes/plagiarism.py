from fastapi import APIRouter, Depends, HTTPException, status

from app.features.scan.dependencies import get_plagiarism_checker
from app.features.scan.schemas.opportunities import PlagiarismRequest, PlagiarismResponse
from app.features.scan.services.extraction.html_sanitizer import html_to_text
from app.features.scan.services.plagiarism.plagiarism_service import PlagiarismChecker
from app.platform.exceptions import ProviderError
from app.platform.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["plagiarism"])


@router.post("/plagiarism", response_model=PlagiarismResponse, response_model_by_alias=True)
async def check_plagiarism(
    body: PlagiarismRequest,
    checker: PlagiarismChecker = Depends(get_plagiarism_checker),
):
    """Estimate how much of an editor draft is copied from the web or its source page."""
    draft_text = body.draft_text.strip() or html_to_text(body.draft_html)
    if not draft_text:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="draftHtml/draftText is required")
    source_text = body.source_text.strip() or html_to_text(body.source_html)

    try:
        result = await checker.check(
            draft_text=draft_text,
            url=body.url or body.source_url,
            source_url=body.source_url or body.url,
            source_text=source_text,
            cache_key=body.cache_key.strip(),
        )
    except ProviderError as e:
        logger.warning(f"Plagiarism check failed: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)

    return PlagiarismResponse(
        plagiarism=result.plagiarism,
        sources=result.sources,
        notes=result.notes,
        checked_at=result.checked_at,
        cache_key=result.cache_key,
    )

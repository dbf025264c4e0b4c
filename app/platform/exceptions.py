from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.platform.logger import get_logger
from app.platform.response import error_response

logger = get_logger(__name__)


class InvalidWebsiteUrl(ValueError):
    """Raised when a website URL cannot be normalised to an https origin."""

    status_code = status.HTTP_400_BAD_REQUEST


class ScanNotFound(LookupError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, scan_id: str):
        super().__init__(f"Scan not found: {scan_id}")
        self.scan_id = scan_id


class DiscoveryError(RuntimeError):
    """Discovery could not produce candidates for a site."""


class RenderError(RuntimeError):
    """The rendering tier failed for a URL (timeout, crash, bad page)."""


class RenderRateLimited(RenderError):
    """The rendering tier refused work because it is at capacity."""


class ProviderError(RuntimeError):
    """An upstream SEO data provider failed or is not configured."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message


class DraftProviderError(ProviderError):
    """A CMS draft provider is unsupported or was given an incomplete payload."""


def add_exception_handlers(app):
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return error_response(str(exc.detail), exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return error_response("Validation failed", status.HTTP_422_UNPROCESSABLE_ENTITY, errors=exc.errors())

    @app.exception_handler(InvalidWebsiteUrl)
    async def invalid_url_handler(request: Request, exc: InvalidWebsiteUrl):
        return error_response(str(exc) or "Invalid websiteUrl", exc.status_code)

    @app.exception_handler(ScanNotFound)
    async def scan_not_found_handler(request: Request, exc: ScanNotFound):
        return error_response("Scan not found", exc.status_code)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception: {exc}")
        return error_response("Internal server error", status.HTTP_500_INTERNAL_SERVER_ERROR)

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api_routers.v1 import api_router
from app.features.health.routes.health import router as health_router
from app.features.scan.services.discovery.crawl_fallback import CrawlFallbackService
from app.features.scan.services.discovery.sitemap_discovery import SitemapDiscoveryService
from app.features.scan.services.extraction.content_extractor import ContentExtractor
from app.features.scan.services.extraction.content_fetcher import ContentFetcher, RenderLimiter, SeleniumRenderer
from app.features.scan.services.orchestration.draft_scan import DraftScanService
from app.features.scan.services.orchestration.scan_orchestrator import OpportunitiesScanOrchestrator
from app.features.scan.services.plagiarism.plagiarism_service import PlagiarismChecker
from app.features.scan.services.store.snapshot_store import SnapshotStore
from app.features.seo.services.aggregation import SeoAggregationService
from app.platform.config import settings
from app.platform.exceptions import add_exception_handlers
from app.platform.logger import LOG_FORMAT, get_logger
from app.platform.services.llm import PerplexityClient

# Root logging for uvicorn, httpx and selenium
logging.basicConfig(
    level=settings.LOG_LEVEL.upper(), format=LOG_FORMAT
)

logger = get_logger(__name__)


def init_services(app: FastAPI, client: httpx.AsyncClient, renderer: Optional[SeleniumRenderer] = None) -> None:
    """Build the process-wide services and attach them to ``app.state``."""
    store = SnapshotStore()
    extractor = ContentExtractor()
    fetcher = ContentFetcher(
        client,
        RenderLimiter(settings.RENDER_CONCURRENCY),
        renderer=renderer or SeleniumRenderer(),
        extractor=extractor,
    )
    llm = PerplexityClient()
    plagiarism = PlagiarismChecker(llm)
    crawler = CrawlFallbackService(client)

    app.state.http_client = client
    app.state.llm = llm
    app.state.snapshot_store = store
    app.state.plagiarism_checker = plagiarism
    app.state.orchestrator = OpportunitiesScanOrchestrator(
        store,
        SitemapDiscoveryService(client, crawler=crawler),
        fetcher,
        plagiarism=plagiarism,
        crawler=crawler,
    )
    app.state.draft_scan_service = DraftScanService(store, client, extractor=extractor)
    app.state.seo_aggregation = SeoAggregationService(client, fetcher, llm=llm)


async def shutdown_services(app: FastAPI) -> None:
    await app.state.orchestrator.shutdown()
    await app.state.draft_scan_service.shutdown()
    await app.state.llm.close()
    await app.state.http_client.aclose()


@asynccontextmanager
async def lifespan(app: FastAPI):
    client = httpx.AsyncClient(
        follow_redirects=True,
        headers={"User-Agent": settings.FETCH_USER_AGENT},
    )
    init_services(app, client)
    logger.info(f"{settings.APP_NAME} started ({settings.ENVIRONMENT})")
    try:
        yield
    finally:
        await shutdown_services(app)
        logger.info(f"{settings.APP_NAME} stopped")


app = FastAPI(
    title="SEO Signal Hub API",
    description="SEO opportunity discovery, background content scans and unified SEO signals",
    version="1.0.0",
    lifespan=lifespan,
)


# Root endpoint for basic info
@app.get("/", tags=["Info"])
def root():
    return {
        "app_name": "SEO Signal Hub API",
        "description": "Finds blog and page opportunities on a site and aggregates SEO provider signals.",
        "version": "1.0.0",
        "docs_url": "/docs",
        "api_base": "/api/v1",
    }


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

add_exception_handlers(app)

app.include_router(health_router)
app.include_router(api_router, prefix="/api/v1")

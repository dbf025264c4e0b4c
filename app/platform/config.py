from pathlib import Path
from typing import List, Literal, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── App ─────────────────────────────────────
    APP_NAME: str = "SEO Signal Hub"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"
    DEBUG: bool = True
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # ── Logging ─────────────────────────────────
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    LOG_TO_FILE: bool = True

    # ── Snapshot store ──────────────────────────
    OPPORTUNITIES_TTL_SECONDS: int = 24 * 60 * 60
    IN_FLIGHT_GRACE_SECONDS: float = 30.0

    # ── Discovery ───────────────────────────────
    DISCOVERY_TOP_N: int = 2
    SITEMAP_MAX_CHILDREN: int = 50
    SITEMAP_TIMEOUT_SECONDS: float = 15.0
    CRAWL_MAX_PAGES: int = 60
    CRAWL_TIMEOUT_SECONDS: float = 12.0
    CRAWL_QUEUE_FACTOR: int = 4

    # ── Rendering / extraction ──────────────────
    RENDER_ENABLED: bool = True
    RENDER_CONCURRENCY: int = 1
    RENDER_TIMEOUT_SECONDS: int = 45
    RENDER_READY_TIMEOUT_SECONDS: int = 10
    RENDER_MIN_TEXT_LENGTH: int = 500
    RENDER_SCROLL_STEPS: int = 6
    SELENIUM_REMOTE_URL: Optional[str] = None
    CHROMEDRIVER_PATH: Optional[str] = None
    DIRECT_FETCH_TIMEOUT_SECONDS: float = 15.0
    FETCH_USER_AGENT: str = "Mozilla/5.0 (compatible; SeoSignalHubBot/1.0; +https://example.com/bot)"
    READABILITY_MIN_TEXT_LENGTH: int = 300
    CONTENT_HTML_MAX_LENGTH: int = 140_000

    # ── Opportunities scan ──────────────────────
    SCAN_URL_CAP: int = 24
    SCAN_WORKER_CONCURRENCY: int = 4
    SCAN_TOP_N: int = 2
    SCAN_CANDIDATES_PER_TYPE: int = 6
    SCAN_DEADLINE_SECONDS: float = 0  # 0 disables the wall-clock budget

    # ── Plagiarism ──────────────────────────────
    PLAGIARISM_BUDGET: int = 12
    PLAGIARISM_MIN_WORDS: int = 200
    PLAGIARISM_MIN_HTML_LENGTH: int = 1200
    PLAGIARISM_MAX_CHARS: int = 9000

    # ── Providers ───────────────────────────────
    PROVIDER_TIMEOUT_SECONDS: float = 30.0
    PSI_API_KEY: Optional[str] = None
    OPENPAGERANK_API_KEY: Optional[str] = None
    SERPER_API_KEY: Optional[str] = None
    DATAFORSEO_LOGIN: Optional[str] = None
    DATAFORSEO_PASSWORD: Optional[str] = None
    RAPIDAPI_KEY: Optional[str] = None
    RAPIDAPI_HOST: str = "website-analyze-and-seo-audit-pro.p.rapidapi.com"
    PERPLEXITY_API_KEY: Optional[str] = None
    PERPLEXITY_MODEL: str = "sonar-pro"
    PERPLEXITY_BASE_URL: str = "https://api.perplexity.ai"

    @property
    def allowed_origins(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    class Config:
        env_file = str(Path(__file__).parent.parent.parent / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


settings = Settings()

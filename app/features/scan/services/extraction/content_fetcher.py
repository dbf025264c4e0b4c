import asyncio
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

import httpx
from selenium import webdriver
from selenium.common.exceptions import SessionNotCreatedException, TimeoutException, WebDriverException
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.chrome.service import Service
from selenium.webdriver.support.ui import WebDriverWait

from app.features.scan.services.extraction.content_extractor import ContentExtractor, ExtractedContent
from app.features.scan.services.extraction.html_sanitizer import html_to_text
from app.platform.config import settings
from app.platform.exceptions import RenderError, RenderRateLimited
from app.platform.logger import get_logger

logger = get_logger(__name__)

READY_SCRIPT = (
    "var body = document.body;"
    "var hasMain = !!document.querySelector('main, article, [role=\"main\"]');"
    "return hasMain && (body ? body.innerText.length : 0) >= arguments[0];"
)

SCROLL_SCRIPT = "window.scrollTo(0, document.body.scrollHeight * arguments[0]);"

RATE_LIMIT_MARKERS = ("429", "too many requests", "rate limit", "capacity")


class RenderLimiter:
    """
    Counting semaphore with an explicit FIFO wait queue.

    One instance per process, shared by every scan. A released slot is handed
    directly to the oldest waiter, so later arrivals cannot overtake.
    """

    def __init__(self, concurrency: int = 1):
        self.concurrency = max(1, int(concurrency))
        self._active = 0
        self._waiters: Deque[asyncio.Future] = deque()

    @property
    def active(self) -> int:
        return self._active

    @property
    def waiting(self) -> int:
        return sum(1 for f in self._waiters if not f.done())

    async def acquire(self) -> None:
        if self._active < self.concurrency and not self.waiting:
            self._active += 1
            return

        fut = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        try:
            await fut
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                # slot was already handed over; pass it on
                self.release()
            else:
                try:
                    self._waiters.remove(fut)
                except ValueError:
                    pass
            raise

    def release(self) -> None:
        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                fut.set_result(None)
                return
        self._active = max(0, self._active - 1)

    async def __aenter__(self) -> "RenderLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()


def _looks_rate_limited(error: Exception) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


class SeleniumRenderer:
    """Headless Chrome rendering, locally or on a remote Selenium grid."""

    def __init__(
        self,
        remote_url: Optional[str] = None,
        chromedriver_path: Optional[str] = None,
        page_load_timeout: Optional[int] = None,
        ready_timeout: Optional[int] = None,
        min_text_length: Optional[int] = None,
        scroll_steps: Optional[int] = None,
        user_agent: Optional[str] = None,
    ):
        self.remote_url = remote_url or settings.SELENIUM_REMOTE_URL
        self.chromedriver_path = chromedriver_path or settings.CHROMEDRIVER_PATH
        self.page_load_timeout = page_load_timeout or settings.RENDER_TIMEOUT_SECONDS
        self.ready_timeout = ready_timeout or settings.RENDER_READY_TIMEOUT_SECONDS
        self.min_text_length = min_text_length or settings.RENDER_MIN_TEXT_LENGTH
        self.scroll_steps = scroll_steps if scroll_steps is not None else settings.RENDER_SCROLL_STEPS
        self.user_agent = user_agent or settings.FETCH_USER_AGENT

    def build_driver(self) -> webdriver.Remote:
        chrome_options = Options()
        chrome_options.add_argument('--headless=new')
        chrome_options.add_argument('--no-sandbox')
        chrome_options.add_argument('--disable-dev-shm-usage')
        chrome_options.add_argument('--window-size=1366,900')
        chrome_options.add_argument(f'--user-agent={self.user_agent}')

        if self.remote_url:
            return webdriver.Remote(command_executor=self.remote_url, options=chrome_options)
        if self.chromedriver_path:
            driver_service = Service(executable_path=self.chromedriver_path)
            return webdriver.Chrome(service=driver_service, options=chrome_options)
        return webdriver.Chrome(options=chrome_options)

    def _is_ready(self, driver) -> bool:
        return bool(driver.execute_script(READY_SCRIPT, self.min_text_length))

    def _scroll(self, driver) -> None:
        """Step down the page so lazy-loaded sections mount."""
        steps = max(0, self.scroll_steps)
        for step in range(1, steps + 1):
            driver.execute_script(SCROLL_SCRIPT, step / steps)
            time.sleep(0.25)
        if steps:
            driver.execute_script("window.scrollTo(0, 0);")

    def render_sync(self, url: str) -> str:
        """
        Load ``url`` and return the rendered DOM.

        Raises:
            RenderRateLimited: the grid refused a session or answered 429
            RenderError: any other driver failure
        """
        try:
            driver = self.build_driver()
        except SessionNotCreatedException as e:
            raise RenderRateLimited(f"Render session refused: {e.msg or e}") from e
        except WebDriverException as e:
            if _looks_rate_limited(e):
                raise RenderRateLimited(f"Render service rate limited: {e.msg or e}") from e
            raise RenderError(f"Could not start renderer: {e.msg or e}") from e

        try:
            driver.set_page_load_timeout(self.page_load_timeout)
            driver.get(url)
            self._scroll(driver)
            try:
                WebDriverWait(driver, self.ready_timeout).until(self._is_ready)
            except TimeoutException:
                logger.info(f"Readiness not reached for {url}, using current DOM")
            return driver.page_source or ""
        except TimeoutException as e:
            raise RenderError(f"Render timed out for {url}") from e
        except WebDriverException as e:
            if _looks_rate_limited(e):
                raise RenderRateLimited(f"Render service rate limited: {e.msg or e}") from e
            raise RenderError(f"Render failed for {url}: {e.msg or e}") from e
        finally:
            driver.quit()

    async def render(self, url: str) -> str:
        return await asyncio.to_thread(self.render_sync, url)


@dataclass
class FetchedPage:
    html: str
    source: str  # "rendered" | "direct"
    status: int
    final_url: str


class ContentFetcher:
    """
    Two-tier HTML retrieval.

    Tier 1 renders through the shared limiter. A rate-limit refusal goes
    straight to tier 2 (plain GET) without retrying the renderer; so do render
    errors and renders with too little text.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        limiter: RenderLimiter,
        renderer: Optional[SeleniumRenderer] = None,
        extractor: Optional[ContentExtractor] = None,
        render_enabled: Optional[bool] = None,
        min_text_length: Optional[int] = None,
        timeout: Optional[float] = None,
        user_agent: Optional[str] = None,
    ):
        self.client = client
        self.limiter = limiter
        self.renderer = renderer
        self.extractor = extractor or ContentExtractor()
        self.render_enabled = settings.RENDER_ENABLED if render_enabled is None else render_enabled
        self.min_text_length = min_text_length or settings.RENDER_MIN_TEXT_LENGTH
        self.timeout = timeout or settings.DIRECT_FETCH_TIMEOUT_SECONDS
        self.user_agent = user_agent or settings.FETCH_USER_AGENT

    async def _render(self, url: str) -> Optional[FetchedPage]:
        if not (self.render_enabled and self.renderer):
            return None
        try:
            async with self.limiter:
                html = await self.renderer.render(url)
        except RenderRateLimited as e:
            logger.warning(f"Renderer rate limited for {url}, using direct fetch: {e}")
            return None
        except RenderError as e:
            logger.warning(f"Render failed for {url}, using direct fetch: {e}")
            return None
        return FetchedPage(html=html or "", source="rendered", status=200, final_url=url)

    async def _direct(self, url: str) -> FetchedPage:
        response = await self.client.get(
            url,
            timeout=self.timeout,
            headers={
                "User-Agent": self.user_agent,
                "Accept": "text/html,application/xhtml+xml",
            },
        )
        response.raise_for_status()
        return FetchedPage(
            html=response.text or "",
            source="direct",
            status=response.status_code,
            final_url=str(response.url),
        )

    async def fetch_html(self, url: str) -> FetchedPage:
        """
        Raises:
            httpx.HTTPError: render was unusable and the direct fetch failed
        """
        rendered = await self._render(url)
        rendered_len = len(html_to_text(rendered.html)) if rendered else 0
        if rendered and rendered_len >= self.min_text_length:
            return rendered
        if rendered:
            logger.info(f"Rendered {url} has {rendered_len} chars of text, trying direct fetch")

        try:
            direct = await self._direct(url)
        except httpx.HTTPError:
            if rendered and rendered.html:
                return rendered
            raise

        if rendered and rendered_len > len(html_to_text(direct.html)):
            return rendered
        return direct

    async def fetch_and_extract(self, url: str) -> ExtractedContent:
        page = await self.fetch_html(url)
        return await asyncio.to_thread(self.extractor.extract, page.html, page.final_url or url)

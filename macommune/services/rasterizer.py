"""
HTML to PDF rasterization using headless Chromium (Playwright).

SESSION POLICY (renderer_pool_size):

    0   one dedicated browser is launched and closed for every render;
        no state survives between documents
    N   one warm browser is kept for the life of the process and each
        render gets a fresh isolated context; at most N run at once

Every step (browser launch, content load, PDF print) is bounded by
render_timeout_seconds. Contexts and browsers are closed on success and
on failure alike.

Any engine failure surfaces as RasterizationError.
"""

import asyncio
import logging
from typing import List, Optional, Protocol

from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from macommune.core.config import Settings
from macommune.core.errors import RasterizationError

logger = logging.getLogger(__name__)


class Rasterizer(Protocol):
    """Anything able to turn a self-contained HTML document into PDF bytes."""

    async def render_pdf(self, html: str) -> bytes: ...


class PlaywrightRasterizer:
    """
    Prints HTML documents to A4 PDFs with background graphics.
    """

    def __init__(self, settings: Settings) -> None:
        self._timeout_s = settings.render_timeout_seconds
        self._timeout_ms = int(settings.render_timeout_seconds * 1000)
        self._pool_size = settings.renderer_pool_size
        self._browser_args: List[str] = list(settings.browser_args)

        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._lock = asyncio.Lock()
        self._slots: Optional[asyncio.Semaphore] = (
            asyncio.Semaphore(self._pool_size) if self._pool_size > 0 else None
        )

    @property
    def pooled(self) -> bool:
        return self._slots is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Launch the warm browser when pooling is enabled."""
        if not self.pooled:
            return
        await self._ensure_browser()

    async def close(self) -> None:
        async with self._lock:
            if self._browser is not None:
                await self._browser.close()
                self._browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
        logger.info("rasterizer_closed")

    async def _ensure_browser(self) -> Browser:
        async with self._lock:
            if self._browser is not None and self._browser.is_connected():
                return self._browser

            logger.info(
                "rasterizer_browser_launch",
                extra={"pool_size": self._pool_size},
            )
            try:
                if self._playwright is None:
                    self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=True,
                    args=self._browser_args,
                    timeout=self._timeout_ms,
                )
            except PlaywrightError as exc:
                raise RasterizationError(
                    f"Failed to launch headless browser: {exc}"
                ) from exc
            return self._browser

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def render_pdf(self, html: str) -> bytes:
        """
        Rasterize an HTML document into A4 PDF bytes.

        Raises:
            RasterizationError:
                If the browser cannot be launched, the content does not
                settle in time, or printing fails.
        """
        try:
            if self._slots is None:
                return await self._render_with_dedicated_browser(html)

            browser = await self._ensure_browser()
            async with self._slots:
                return await self._print(browser, html)

        except PlaywrightTimeout as exc:
            raise RasterizationError(
                f"Rendering timed out after {self._timeout_ms}ms: {exc}"
            ) from exc
        except asyncio.TimeoutError as exc:
            raise RasterizationError(
                f"PDF generation timed out after {self._timeout_ms}ms"
            ) from exc
        except PlaywrightError as exc:
            raise RasterizationError(f"Headless rendering failed: {exc}") from exc

    async def _render_with_dedicated_browser(self, html: str) -> bytes:
        async with async_playwright() as playwright:
            browser = await playwright.chromium.launch(
                headless=True,
                args=self._browser_args,
                timeout=self._timeout_ms,
            )
            try:
                return await self._print(browser, html)
            finally:
                await browser.close()

    async def _print(self, browser: Browser, html: str) -> bytes:
        context: BrowserContext = await browser.new_context()
        try:
            page = await context.new_page()
            await page.set_content(
                html,
                wait_until="networkidle",
                timeout=self._timeout_ms,
            )
            pdf_bytes = await asyncio.wait_for(
                page.pdf(format="A4", print_background=True),
                timeout=self._timeout_s,
            )
        finally:
            await self._release_context(context)

        if not pdf_bytes:
            raise RasterizationError("Headless browser produced an empty PDF.")
        return pdf_bytes

    @staticmethod
    async def _release_context(context: BrowserContext) -> None:
        try:
            await context.close()
        except PlaywrightError as exc:
            logger.warning(
                "rasterizer_context_close_failed",
                extra={"error": str(exc)},
            )

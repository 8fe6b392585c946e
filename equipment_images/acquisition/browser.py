"""
Browser automation strategy.

Opens a product page in headless Chromium (Playwright) and captures the
product photo, falling back from a single image element, to the product
container, to a fixed crop of the viewport. Each level has to clear a size
gate before it counts.

One browser per process is shared through BrowserPool. It is launched on
first use, checked for liveness on every acquire and relaunched when it has
gone away. Pages live in their own browser context that is always closed.
"""

import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Optional

from loguru import logger
from playwright.sync_api import Browser, ElementHandle, Page, Playwright, sync_playwright
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from equipment_images.acquisition import page_rules
from equipment_images.acquisition.direct_fetch import ensure_directory
from equipment_images.acquisition.errors import (
    AcquisitionError,
    ContentRejected,
    NetworkFailure,
    ResourceFailure,
)
from equipment_images.acquisition.types import StrategyResult
from equipment_images.config import BrowserSettings, settings
from equipment_images.utils.http import InvalidURLError, validate_url

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--window-size=1920,1080",
]

BODY_TEXT_SCRIPT = (
    "() => document.body ? document.body.innerText.substring(0, "
    f"{page_rules.BODY_SAMPLE_CHARS}) : ''"
)


# =============================================================================
# Browser resource
# =============================================================================

class BrowserPool:
    """Owns the process-wide browser; hands out page scopes.

    Playwright's sync objects belong to the thread that started the driver.
    When another thread acquires, the old driver is abandoned and a new one
    is started in the calling thread.
    """

    def __init__(
        self,
        browser_settings: Optional[BrowserSettings] = None,
        launcher: Callable = sync_playwright,
    ):
        self.settings = browser_settings or settings.browser
        self._launcher = launcher
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._owner: Optional[int] = None
        self._lock = threading.Lock()

    def is_alive(self) -> bool:
        return (
            self._browser is not None
            and self._owner == threading.get_ident()
            and self._browser.is_connected()
        )

    def acquire(self) -> Browser:
        """Return a connected browser, launching or relaunching as needed."""
        with self._lock:
            if self._playwright is not None and self._owner != threading.get_ident():
                # Objects of another thread's driver cannot be touched from here
                logger.warning("Browser acquired from a new thread, starting a fresh driver")
                self._browser = None
                self._playwright = None
            if self._browser is not None and not self._browser.is_connected():
                logger.warning("Browser disconnected, relaunching")
                self._browser = None
            if self._browser is None:
                self._browser = self._launch()
            return self._browser

    def _launch(self) -> Browser:
        try:
            if self._playwright is None:
                self._playwright = self._launcher().start()
                self._owner = threading.get_ident()
            browser = self._playwright.chromium.launch(
                headless=self.settings.headless,
                args=LAUNCH_ARGS,
            )
        except PlaywrightError as e:
            raise ResourceFailure(f"Cannot launch browser: {e}") from e
        logger.info("Browser launched")
        return browser

    @contextmanager
    def page(self) -> Iterator[Page]:
        """Scoped page in a fresh context; the context is closed on exit."""
        browser = self.acquire()
        try:
            context = browser.new_context(
                viewport={
                    "width": self.settings.viewport_width,
                    "height": self.settings.viewport_height,
                },
                user_agent=self.settings.user_agent,
            )
        except PlaywrightError as e:
            raise ResourceFailure(f"Cannot open browser context: {e}") from e

        try:
            yield context.new_page()
        finally:
            try:
                context.close()
            except PlaywrightError as e:
                # Context of a crashed browser is already gone
                logger.debug(f"Browser context close failed: {e}")

    def shutdown(self) -> None:
        """Close the browser and stop the Playwright driver."""
        with self._lock:
            if self._playwright is not None and self._owner != threading.get_ident():
                logger.warning("Browser owned by another thread, dropping it without closing")
                self._browser = None
                self._playwright = None
            if self._browser is not None:
                try:
                    self._browser.close()
                except PlaywrightError as e:
                    logger.debug(f"Browser close failed: {e}")
                self._browser = None
            if self._playwright is not None:
                self._playwright.stop()
                self._playwright = None
        logger.info("Browser shut down")


_pool: Optional[BrowserPool] = None
_pool_lock = threading.Lock()


def get_browser_pool() -> BrowserPool:
    """Get the process-wide browser pool."""
    global _pool
    with _pool_lock:
        if _pool is None:
            _pool = BrowserPool()
        return _pool


def close_browser() -> None:
    """Shut down the process-wide browser (call on server shutdown)."""
    global _pool
    with _pool_lock:
        pool, _pool = _pool, None
    if pool is not None:
        pool.shutdown()


# =============================================================================
# Capture strategy
# =============================================================================

def _new_png_path(output_dir: Path) -> Path:
    return output_dir / f"{uuid.uuid4().hex}.png"


def _keep_if_large(filepath: Path, min_bytes: int) -> StrategyResult | None:
    """Accept a screenshot that reached ``min_bytes``, delete it otherwise."""
    if not filepath.exists():
        return None
    size = filepath.stat().st_size
    if size < min_bytes:
        logger.debug(f"Capture too small ({size} bytes < {min_bytes}), discarded")
        filepath.unlink(missing_ok=True)
        return None
    return StrategyResult(success=True, filename=filepath.name, filepath=filepath, size_bytes=size)


def _element_source(element: ElementHandle) -> str | None:
    for attribute in page_rules.SOURCE_ATTRIBUTES:
        value = element.get_attribute(attribute)
        if value:
            return value
    return None


class BrowserCaptureStrategy:
    """Capture a product image from a product page."""

    def __init__(
        self,
        pool: Optional[BrowserPool] = None,
        browser_settings: Optional[BrowserSettings] = None,
    ):
        self._pool = pool
        self.settings = browser_settings or settings.browser

    @property
    def pool(self) -> BrowserPool:
        if self._pool is None:
            self._pool = get_browser_pool()
        return self._pool

    def capture(self, url: str, output_dir: Path) -> StrategyResult:
        """
        Navigate to ``url`` and save a product image into ``output_dir``.

        Returns:
            StrategyResult; failures carry the error kind. Never raises.
        """
        try:
            parsed = validate_url(url)
        except InvalidURLError as e:
            return StrategyResult.failed(NetworkFailure(str(e)))

        try:
            with self.pool.page() as page:
                return self._capture_page(page, str(parsed), Path(output_dir))
        except AcquisitionError as e:
            logger.info(f"Browser capture failed for {url}: {e}")
            return StrategyResult.failed(e)
        except PlaywrightError as e:
            if not self.pool.is_alive():
                logger.warning(f"Browser went away while capturing {url}: {e}")
                return StrategyResult.failed(ResourceFailure(f"Browser disconnected: {e}"))
            logger.warning(f"Browser error while capturing {url}: {e}")
            return StrategyResult.failed(AcquisitionError(f"Browser error: {e}"))

    def _capture_page(self, page: Page, url: str, output_dir: Path) -> StrategyResult:
        try:
            response = page.goto(
                url,
                wait_until="networkidle",
                timeout=self.settings.navigation_timeout_ms,
            )
        except PlaywrightTimeoutError as e:
            raise NetworkFailure(f"Navigation timeout: {url}") from e
        except PlaywrightError as e:
            if not self.pool.is_alive():
                raise
            raise NetworkFailure(f"Navigation failed: {e}") from e

        if response is not None and response.status >= 400:
            raise NetworkFailure(f"HTTP {response.status}")

        page.wait_for_timeout(self.settings.settle_ms)

        reason = self._error_page_reason(page)
        if reason:
            raise ContentRejected(f"Page appears to be an error or not-found page ({reason})")

        ensure_directory(output_dir)

        result = self._extract_product_image(page, output_dir)
        if result:
            return result
        result = self._capture_container(page, output_dir)
        if result:
            return result
        return self._capture_crop(page, output_dir)

    def _error_page_reason(self, page: Page) -> str | None:
        try:
            title = page.title()
            body_text = page.evaluate(BODY_TEXT_SCRIPT)
        except PlaywrightError as e:
            # Can't inspect: let the size gates decide
            logger.debug(f"Could not inspect page for error markers: {e}")
            return None
        reason = page_rules.is_error_page(title, body_text if isinstance(body_text, str) else "")
        if reason:
            logger.info(f"Rejected page (title: {title!r}): {reason}")
        return reason

    def _extract_product_image(self, page: Page, output_dir: Path) -> StrategyResult | None:
        gate = page_rules.IMAGE_GATE
        for selector in page_rules.PRODUCT_IMAGE_SELECTORS:
            try:
                elements = page.query_selector_all(selector)
            except PlaywrightError:
                continue

            for element in elements:
                filepath = None
                try:
                    box = element.bounding_box()
                    if not page_rules.meets_minimum_box(box, gate):
                        continue
                    if box["y"] > page_rules.MAX_IMAGE_TOP:
                        continue
                    if page_rules.is_placeholder_source(_element_source(element)):
                        continue

                    filepath = _new_png_path(output_dir)
                    element.screenshot(path=str(filepath))
                except PlaywrightError as e:
                    logger.debug(f"Element capture failed for {selector}: {e}")
                    if filepath is not None:
                        filepath.unlink(missing_ok=True)
                    continue

                result = _keep_if_large(filepath, gate.min_bytes)
                if result:
                    logger.info(f"Extracted product image from selector: {selector}")
                    return result
        return None

    def _capture_container(self, page: Page, output_dir: Path) -> StrategyResult | None:
        gate = page_rules.CONTAINER_GATE
        for selector in page_rules.CONTAINER_SELECTORS:
            filepath = None
            try:
                container = page.query_selector(selector)
                if container is None:
                    continue
                if not page_rules.meets_minimum_box(container.bounding_box(), gate):
                    continue
                filepath = _new_png_path(output_dir)
                container.screenshot(path=str(filepath))
            except PlaywrightError as e:
                logger.debug(f"Container capture failed for {selector}: {e}")
                if filepath is not None:
                    filepath.unlink(missing_ok=True)
                continue

            result = _keep_if_large(filepath, gate.min_bytes)
            if result:
                logger.info(f"Captured product container: {selector}")
                return result
        return None

    def _capture_crop(self, page: Page, output_dir: Path) -> StrategyResult:
        filepath = _new_png_path(output_dir)
        try:
            page.screenshot(path=str(filepath), clip=page_rules.CROP_CLIP)
        except PlaywrightError:
            filepath.unlink(missing_ok=True)
            raise

        result = _keep_if_large(filepath, page_rules.CROP_MIN_BYTES)
        if result is None:
            raise ContentRejected("Screenshot too small or empty")
        logger.info("Captured fixed crop of product page")
        return result

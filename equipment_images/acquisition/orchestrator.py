"""
Acquisition orchestrator.

Tries strategies in order until one produces an image:
1. Oracle image URL -> direct download
2. Oracle product page URL -> browser capture

Every outcome is a CaptureResult; nothing is raised to the caller.
"""

from pathlib import Path
from typing import Optional

from loguru import logger

from equipment_images.acquisition.browser import BrowserCaptureStrategy
from equipment_images.acquisition.direct_fetch import DirectFetchStrategy
from equipment_images.acquisition.oracle import OracleClient
from equipment_images.acquisition.types import (
    AcquisitionRequest,
    CaptureMethod,
    CaptureResult,
    CandidateURL,
    StrategyResult,
)
from equipment_images.config import settings

NO_PAGE_CANDIDATE = "Could not find confident product page URL"


class ImageAcquirer:
    """Runs the download-then-screenshot fallback chain."""

    def __init__(
        self,
        oracle: Optional[OracleClient] = None,
        direct_fetch: Optional[DirectFetchStrategy] = None,
        browser_capture: Optional[BrowserCaptureStrategy] = None,
    ):
        self.oracle = oracle or OracleClient()
        self.direct_fetch = direct_fetch or DirectFetchStrategy()
        self.browser_capture = browser_capture or BrowserCaptureStrategy()

    def acquire(self, request: AcquisitionRequest) -> CaptureResult:
        label = " ".join(p for p in (request.manufacturer, request.model) if p) or request.product_name
        try:
            return self._acquire(request, label)
        except Exception as e:
            logger.exception(f"Unexpected error acquiring image for {label}")
            return CaptureResult(success=False, error=str(e) or type(e).__name__)

    def _acquire(self, request: AcquisitionRequest, label: str) -> CaptureResult:
        output_dir = Path(request.output_dir)

        # Method 1: direct image download
        candidate = self.oracle.find_image_url(request.manufacturer, request.model, request.product_name)
        if candidate:
            outcome = self.direct_fetch.fetch(candidate.url, output_dir)
            if outcome.success:
                return _capture(outcome, candidate, CaptureMethod.DIRECT_DOWNLOAD)
            logger.info(f"Direct download failed for {label}, trying screenshot: {outcome.error}")

        # Method 2: product page screenshot
        page = self.oracle.find_product_page_url(request.manufacturer, request.model, request.product_name)
        if not page:
            logger.info(f"No product page candidate for {label}")
            return CaptureResult(success=False, error=NO_PAGE_CANDIDATE)

        outcome = self.browser_capture.capture(page.url, output_dir)
        if outcome.success:
            return _capture(outcome, page, CaptureMethod.SCREENSHOT)

        logger.info(f"Screenshot failed for {label}: {outcome.error}")
        return CaptureResult(success=False, error=outcome.error or "Both download and screenshot failed")


def _capture(outcome: StrategyResult, candidate: CandidateURL, method: CaptureMethod) -> CaptureResult:
    return CaptureResult(
        success=True,
        filename=outcome.filename,
        filepath=outcome.filepath,
        size_bytes=outcome.size_bytes,
        method=method,
        source_url=candidate.url,
    )


_default_acquirer: Optional[ImageAcquirer] = None


def get_acquirer() -> ImageAcquirer:
    global _default_acquirer
    if _default_acquirer is None:
        _default_acquirer = ImageAcquirer()
    return _default_acquirer


def fetch_equipment_image(
    manufacturer: str | None,
    model: str | None,
    product_name: str | None = None,
    output_dir: Path | None = None,
) -> CaptureResult:
    """Acquire an image for loose metadata using the default acquirer."""
    request = AcquisitionRequest(
        manufacturer=manufacturer,
        model=model,
        product_name=product_name,
        output_dir=output_dir or settings.images.output_dir,
    )
    return get_acquirer().acquire(request)

"""
Heuristics for judging and mining product pages.

Ordered rule tables plus small predicates, kept free of any browser
dependency so they can be exercised directly.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

# =============================================================================
# Error page detection
# =============================================================================

TITLE_ERROR_PHRASES = (
    "404",
    "not found",
    "page not found",
    "error",
    "unavailable",
    "doesn't exist",
    "does not exist",
    "sorry",
    "oops",
    "no longer available",
)

BODY_ERROR_PHRASES = (
    "page not found",
    "404 error",
    "this page doesn't exist",
    "product not found",
    "item not found",
    "no results",
    "we couldn't find",
    "sorry, we can't find",
    "no longer available",
)

# Only the top of the rendered body is inspected
BODY_SAMPLE_CHARS = 2000


def match_error_phrase(text: str | None, phrases: Iterable[str]) -> Optional[str]:
    """Return the first phrase found in ``text`` (case-insensitive), or None."""
    if not text:
        return None
    lowered = text.lower()
    for phrase in phrases:
        if phrase in lowered:
            return phrase
    return None


def is_error_page(title: str | None, body_text: str | None) -> Optional[str]:
    """Describe why a page looks like an error page, or None if it looks fine."""
    phrase = match_error_phrase(title, TITLE_ERROR_PHRASES)
    if phrase:
        return f"title contains '{phrase}'"
    phrase = match_error_phrase((body_text or "")[:BODY_SAMPLE_CHARS], BODY_ERROR_PHRASES)
    if phrase:
        return f"content contains '{phrase}'"
    return None


# =============================================================================
# Element extraction
# =============================================================================

# Most specific product-image containers first, generic containers last
PRODUCT_IMAGE_SELECTORS = (
    ".product-image img",
    ".product-hero img",
    ".product-photo img",
    ".main-image img",
    "#product-image img",
    "[data-product-image] img",
    ".gallery-image img",
    ".product-media img",
    ".product-gallery img",
    ".hero-image img",
    "article img",
    ".content-image img",
    "img[data-zoom-image]",
    "img[data-large-image]",
    "img[data-main-image]",
    "main img",
    ".main-content img",
)

# Attributes that may hold the real image source on lazy-loading sites
SOURCE_ATTRIBUTES = ("src", "data-src", "data-lazy-src")

PLACEHOLDER_MARKERS = ("placeholder", "loading", "spinner", "blank.gif", "data:image/gif")

CONTAINER_SELECTORS = (
    ".product-container",
    ".product-detail",
    ".product-info",
    ".product-main",
    "#product",
    "article.product",
    ".hero-section",
    "main",
)


@dataclass(frozen=True)
class CaptureGate:
    """Size thresholds for one capture level."""
    min_width: float
    min_height: float
    min_bytes: int
    strict: bool = False  # box must exceed the minimum, not just reach it


IMAGE_GATE = CaptureGate(min_width=200, min_height=150, min_bytes=5000)
CONTAINER_GATE = CaptureGate(min_width=400, min_height=300, min_bytes=10000, strict=True)
CROP_MIN_BYTES = 10000

# Last resort screenshot region, in viewport pixels
CROP_CLIP = {"x": 100, "y": 100, "width": 1000, "height": 700}

# Images starting further down than this are not the hero shot
MAX_IMAGE_TOP = 1500


def meets_minimum_box(box: dict | None, gate: CaptureGate) -> bool:
    """Check a Playwright bounding box against a gate."""
    if not box:
        return False
    width, height = box.get("width", 0), box.get("height", 0)
    if gate.strict:
        return width > gate.min_width and height > gate.min_height
    return width >= gate.min_width and height >= gate.min_height


def is_placeholder_source(src: str | None) -> bool:
    """True when an image has no usable source or points at a loading asset."""
    if not src:
        return True
    lowered = src.lower()
    return any(marker in lowered for marker in PLACEHOLDER_MARKERS)

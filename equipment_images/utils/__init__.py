"""Utility modules for the image pipeline."""

from equipment_images.utils.http import InvalidURLError, url_origin, validate_url
from equipment_images.utils.images import get_image_type, validate_image
from equipment_images.utils.logging import setup_logging

__all__ = [
    # HTTP utilities
    "InvalidURLError",
    "validate_url",
    "url_origin",
    # Image sniffing
    "get_image_type",
    "validate_image",
    # Logging
    "setup_logging",
]

"""
Direct image download strategy.

Downloads a candidate image URL straight to the upload directory. Redirects
are followed by hand so that every hop is re-validated, gets its own Referer
and counts against a hop limit. Anything that is not a plausibly sized image
is removed before returning.
"""

import uuid
from pathlib import Path
from typing import Optional

import httpx
from loguru import logger
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from equipment_images.acquisition.errors import (
    AcquisitionError,
    ContentRejected,
    FileSystemFailure,
    NetworkFailure,
)
from equipment_images.acquisition.types import StrategyResult
from equipment_images.config import ImageSettings, settings
from equipment_images.utils.http import (
    IMAGE_REQUEST_HEADERS,
    InvalidURLError,
    is_redirect,
    url_origin,
    validate_url,
)

ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif"}
DEFAULT_EXTENSION = ".jpg"
CHUNK_SIZE = 64 * 1024


def infer_extension(url: httpx.URL) -> str:
    """Extension from the URL path, .jpg when missing or not an image type."""
    ext = Path(url.path).suffix.lower()
    return ext if ext in ALLOWED_EXTENSIONS else DEFAULT_EXTENSION


def ensure_directory(directory: Path) -> Path:
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise FileSystemFailure(f"Cannot create destination directory {directory}: {e}") from e
    return directory


# Connection errors only; a timeout already used up the per-request budget
@retry(
    stop=stop_after_attempt(settings.images.http_max_retries),
    wait=wait_exponential(multiplier=settings.images.http_retry_delay, min=1, max=10),
    retry=retry_if_exception_type(httpx.ConnectError),
    reraise=True,
)
def _send(client: httpx.Client, url: httpx.URL, headers: dict, timeout: float) -> httpx.Response:
    request = client.build_request("GET", url, headers=headers, timeout=timeout)
    return client.send(request, stream=True, follow_redirects=False)


class DirectFetchStrategy:
    """Download an image from a URL into a destination directory."""

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        image_settings: Optional[ImageSettings] = None,
    ):
        self._client = client
        self.settings = image_settings or settings.images

    def fetch(self, url: str, destination_dir: Path) -> StrategyResult:
        """
        Download ``url`` into ``destination_dir``.

        Returns:
            StrategyResult with filename/filepath/size_bytes on success,
            or a failure carrying the error and its kind. Never raises.
        """
        destination_dir = Path(destination_dir)
        try:
            if self._client is not None:
                return self._download(self._client, url, destination_dir)
            with httpx.Client(timeout=self.settings.download_timeout, follow_redirects=False) as client:
                return self._download(client, url, destination_dir)
        except AcquisitionError as e:
            logger.info(f"Direct download failed for {url}: {e}")
            return StrategyResult.failed(e)

    def _download(self, client: httpx.Client, url: str, destination_dir: Path) -> StrategyResult:
        current = url
        for hop in range(self.settings.max_redirects + 1):
            try:
                parsed = validate_url(current, self.settings.allow_private_hosts)
            except InvalidURLError as e:
                raise NetworkFailure(str(e)) from e

            headers = {**IMAGE_REQUEST_HEADERS, "Referer": url_origin(parsed)}
            try:
                response = _send(client, parsed, headers, self.settings.download_timeout)
            except httpx.TimeoutException as e:
                raise NetworkFailure(f"Request timeout: {parsed}") from e
            except httpx.HTTPError as e:
                raise NetworkFailure(f"Request failed: {e}") from e

            try:
                if is_redirect(response):
                    current = str(parsed.join(response.headers["location"]))
                    logger.debug(f"Redirect {hop + 1}: {parsed} -> {current}")
                    continue

                if not 200 <= response.status_code < 300:
                    raise NetworkFailure(f"HTTP {response.status_code}")

                return self._save_body(response, parsed, destination_dir)
            finally:
                response.close()

        raise NetworkFailure(f"Too many redirects (limit {self.settings.max_redirects})")

    def _save_body(self, response: httpx.Response, url: httpx.URL, destination_dir: Path) -> StrategyResult:
        ensure_directory(destination_dir)

        filename = f"{uuid.uuid4().hex}{infer_extension(url)}"
        filepath = destination_dir / filename

        try:
            with open(filepath, "wb") as f:
                for chunk in response.iter_bytes(CHUNK_SIZE):
                    f.write(chunk)
        except httpx.TimeoutException as e:
            filepath.unlink(missing_ok=True)
            raise NetworkFailure("Request timeout while reading body") from e
        except httpx.HTTPError as e:
            filepath.unlink(missing_ok=True)
            raise NetworkFailure(f"Download interrupted: {e}") from e
        except OSError as e:
            filepath.unlink(missing_ok=True)
            raise FileSystemFailure(f"Cannot write {filepath}: {e}") from e

        size = filepath.stat().st_size
        if size < self.settings.min_download_bytes:
            filepath.unlink(missing_ok=True)
            raise ContentRejected(f"Downloaded file too small ({size} bytes), likely not an image")

        logger.info(f"Downloaded {url} -> {filename} ({size:,} bytes)")
        return StrategyResult(success=True, filename=filename, filepath=filepath, size_bytes=size)

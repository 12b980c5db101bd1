"""Fetch image bytes from URLs or local blob paths with retry."""

import logging
import time
from pathlib import Path
from typing import Callable, List, Optional

import requests

from config.constants import (
    DEFAULT_BACKOFF_DELAYS,
    DEFAULT_MAX_ATTEMPTS,
    IMAGE_DOWNLOAD_TIMEOUT_SECONDS,
    IMAGE_USER_AGENT,
)

from ..errors import ImageDownloadError

logger = logging.getLogger(__name__)

_TRANSIENT_STATUS = {408, 425, 429, 500, 502, 503, 504}


class ImageDownloader:
    """Download images over HTTP(S) or read them from disk."""

    def __init__(
        self,
        timeout: int = IMAGE_DOWNLOAD_TIMEOUT_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_delays: Optional[List[float]] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.backoff_delays = backoff_delays or list(DEFAULT_BACKOFF_DELAYS)
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", IMAGE_USER_AGENT)
        self._sleep = sleep

    def fetch(self, location: str) -> bytes:
        """
        Fetch image bytes.

        Raises:
            ImageDownloadError: On a permanent failure, or once retries for a
                transient failure are exhausted (``transient=True``).
        """
        if not location:
            raise ImageDownloadError("Missing image location", location=location)

        if not location.startswith(("http://", "https://")):
            return self._read_local(location)

        last_error: Optional[Exception] = None
        for attempt in range(self.max_attempts):
            try:
                response = self.session.get(location, timeout=self.timeout)
                if response.status_code in _TRANSIENT_STATUS:
                    raise requests.HTTPError(
                        f"HTTP {response.status_code}", response=response
                    )
                if response.status_code != 200:
                    raise ImageDownloadError(
                        f"Failed to download image: HTTP {response.status_code}",
                        location=location,
                    )
                return response.content

            except (requests.ConnectionError, requests.Timeout, requests.HTTPError) as e:
                last_error = e
                if attempt < self.max_attempts - 1:
                    delay = self.backoff_delays[min(attempt, len(self.backoff_delays) - 1)]
                    logger.warning(
                        f"Image download error (attempt {attempt + 1}/{self.max_attempts}): "
                        f"{type(e).__name__} - {e}",
                        extra={"location": location, "retry_delay": delay},
                    )
                    self._sleep(delay)

        logger.error(f"All {self.max_attempts} download attempts failed for {location}: {last_error}")
        raise ImageDownloadError(
            f"Failed to download {location} after {self.max_attempts} attempts: {last_error}",
            location=location,
            transient=True,
            retry_count=self.max_attempts,
        )

    @staticmethod
    def _read_local(location: str) -> bytes:
        path = Path(location.replace("file://", "", 1))
        try:
            return path.read_bytes()
        except OSError as e:
            raise ImageDownloadError(f"Cannot read image file {path}: {e}", location=location)

"""Page fetching for recipe sites over a retrying ``requests`` session."""
from __future__ import annotations

import logging
from typing import Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import WebscraperConfig

logger = logging.getLogger(__name__)

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
    "Connection": "keep-alive",
}

RETRY_STATUSES = (429, 500, 502, 503, 504)


def build_session(
    retries: int, backoff_factor: float, headers: Optional[Dict[str, str]] = None
) -> requests.Session:
    """Session that looks like a desktop browser and backs off on throttling."""

    session = requests.Session()
    session.headers.update(BROWSER_HEADERS)
    session.headers.update(headers or {})
    adapter = HTTPAdapter(
        max_retries=Retry(
            total=retries,
            backoff_factor=backoff_factor,
            status_forcelist=RETRY_STATUSES,
            allowed_methods=frozenset({"GET"}),
            respect_retry_after_header=True,
        )
    )
    for scheme in ("http://", "https://"):
        session.mount(scheme, adapter)
    return session


class HttpClient:
    """Fetches search and recipe pages as text."""

    def __init__(
        self,
        timeout: int = 30,
        retries: int = 3,
        backoff_factor: float = 0.5,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self._timeout = timeout
        self._session = build_session(retries, backoff_factor, headers)

    @classmethod
    def from_config(cls, config: WebscraperConfig) -> "HttpClient":
        return cls(timeout=config.request_timeout)

    def get_html(self, url: str) -> str:
        """Return the decoded body of ``url``; HTTP errors raise."""

        response = self._session.get(url, timeout=self._timeout)
        response.raise_for_status()
        content_type = response.headers.get("Content-Type", "")
        if content_type and "html" not in content_type:
            logger.warning("Unexpected content type %s for %s", content_type, url)
        # servers that omit the charset get the default latin-1; sniff instead
        if not response.encoding or response.encoding.lower() == "iso-8859-1":
            response.encoding = response.apparent_encoding
        logger.debug("Fetched %s (%d bytes)", url, len(response.content))
        return response.text

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "HttpClient":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

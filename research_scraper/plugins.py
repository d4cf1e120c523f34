from __future__ import annotations

import json
from typing import Any, List, Type

import requests
from curl_cffi import requests as curl_requests

from .base import BaseScraper, FetchedPage
from .errors import ErrorCode
from .extractors import extract_html, extract_json
from .models import ExecutionOptions, ExtractedData

BINARY_ASSET_PATTERN = r"\.(?:pdf|zip|gz|tar|rar|7z|exe|dmg|iso|png|jpe?g|gif|webp|svg|ico|mp[34]|avi|mov|woff2?|ttf|eot)(?:\?|$)"
API_PATH_PATTERN = r"/api/|\.json(?:\?|$)|^https?://api\."

# libcurl error codes surfaced by curl_cffi
CURL_TIMEOUT_CODES = {28}
CURL_CONNECTION_CODES = {5, 6, 7, 35, 52, 56}


class StaticHtmlScraper(BaseScraper):
    """Plain HTTP GET with requests, parsed with BeautifulSoup."""

    CONFIG = {
        "id": "static",
        "name": "Static HTML Scraper",
        "strategy": "static",
        "priority": 50,
        "timeout_seconds": 20,
        "max_retries": 2,
        "speed": "fast",
        "excluded_patterns": [BINARY_ASSET_PATTERN, API_PATH_PATTERN],
        "max_concurrency": 5,
        "request_delay_seconds": 0.2,
    }

    def fetch(self, url: str, options: ExecutionOptions) -> FetchedPage:
        response = requests.get(
            url,
            headers=self.request_headers(options),
            timeout=self.config.timeout_seconds,
            allow_redirects=options.follow_redirects,
        )
        return FetchedPage(
            url=response.url or url,
            status_code=response.status_code,
            text=response.text,
            headers=dict(response.headers),
            bytes_downloaded=len(response.content or b""),
        )

    def parse(self, page: FetchedPage) -> ExtractedData:
        return extract_html(page.text, page.url, page.headers)


class JsonApiScraper(BaseScraper):
    """Fetches JSON documents and API endpoints."""

    CONFIG = {
        "id": "api",
        "name": "JSON API Scraper",
        "strategy": "api",
        "priority": 70,
        "timeout_seconds": 15,
        "max_retries": 3,
        "speed": "fast",
        "supported_patterns": [API_PATH_PATTERN],
        "max_concurrency": 4,
        "request_delay_seconds": 0.25,
    }

    def request_headers(self, options: ExecutionOptions):
        return {"Accept": "application/json", **super().request_headers(options)}

    def fetch(self, url: str, options: ExecutionOptions) -> FetchedPage:
        response = requests.get(
            url,
            headers=self.request_headers(options),
            timeout=self.config.timeout_seconds,
            allow_redirects=options.follow_redirects,
        )
        return FetchedPage(
            url=response.url or url,
            status_code=response.status_code,
            text=response.text,
            headers=dict(response.headers),
            bytes_downloaded=len(response.content or b""),
        )

    def parse(self, page: FetchedPage) -> ExtractedData:
        payload: Any = page.payload
        if payload is None:
            payload = json.loads(page.text)
        return extract_json(payload, page.url)


class ImpersonatedHtmlScraper(BaseScraper):
    """HTML fetch through curl_cffi with browser TLS impersonation.

    Slower than the static plugin; used for sites that reject plain
    HTTP clients."""

    CONFIG = {
        "id": "impersonate",
        "name": "Browser-Impersonating Scraper",
        "strategy": "hybrid",
        "priority": 30,
        "timeout_seconds": 30,
        "max_retries": 3,
        "speed": "medium",
        "excluded_patterns": [BINARY_ASSET_PATTERN],
        "max_concurrency": 3,
        "request_delay_seconds": 0.5,
    }

    impersonate = "chrome120"

    def fetch(self, url: str, options: ExecutionOptions) -> FetchedPage:
        session = curl_requests.Session()
        try:
            response = session.get(
                url,
                headers=self.request_headers(options),
                impersonate=self.impersonate,
                timeout=self.config.timeout_seconds,
                allow_redirects=options.follow_redirects,
            )
            return FetchedPage(
                url=str(response.url or url),
                status_code=response.status_code,
                text=response.text,
                headers=dict(response.headers),
                bytes_downloaded=len(response.content or b""),
            )
        finally:
            session.close()

    def parse(self, page: FetchedPage) -> ExtractedData:
        return extract_html(page.text, page.url, page.headers)

    def classify_exception(self, exc: Exception) -> str:
        code = getattr(exc, "code", None)
        try:
            code = int(code) if code is not None else None
        except (TypeError, ValueError):
            code = None
        if code in CURL_TIMEOUT_CODES:
            return ErrorCode.TIMEOUT
        if code in CURL_CONNECTION_CODES:
            return ErrorCode.CONNECTION_ERROR
        return super().classify_exception(exc)


DEFAULT_PLUGINS: List[Type[BaseScraper]] = [
    StaticHtmlScraper,
    JsonApiScraper,
    ImpersonatedHtmlScraper,
]

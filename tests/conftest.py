"""
Shared fakes for the catalog scraper tests
"""

import json
from typing import Any, Dict, List, Optional, Tuple

import pytest

from http_client import FetchError, ParseError
from scraper import Config


ORIGIN = "https://shop.example"


class FakeClient:
    """In-memory stand-in for `HttpClient`.

    `routes` maps a URL to a response body (str), a JSON-able object, or an
    exception instance to raise.
    """

    def __init__(self, routes: Optional[Dict[str, Any]] = None) -> None:
        self.routes: Dict[str, Any] = dict(routes or {})
        self.calls: List[Tuple[str, Optional[Dict[str, str]]]] = []

    async def get_text(self, url: str, headers: Optional[Dict[str, str]] = None) -> str:
        self.calls.append((url, headers))
        if url not in self.routes:
            raise FetchError(url, "unexpected status 404", status=404)
        body = self.routes[url]
        if isinstance(body, Exception):
            raise body
        return body if isinstance(body, str) else json.dumps(body)

    async def get_json(self, url: str, headers: Optional[Dict[str, str]] = None) -> Any:
        text = await self.get_text(url, headers=headers)
        try:
            return json.loads(text)
        except ValueError as e:
            raise ParseError(url, f"invalid JSON: {e}") from e

    async def close(self) -> None:
        pass


def urlset(*locs: str) -> str:
    entries = "".join(f"<url><loc>{loc}</loc></url>" for loc in locs)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{entries}</urlset>'
    )


def sitemapindex(*locs: str) -> str:
    entries = "".join(f"<sitemap><loc>{loc}</loc></sitemap>" for loc in locs)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{entries}</sitemapindex>'
    )


@pytest.fixture
def cfg(tmp_path) -> Config:
    return Config(origin=ORIGIN, out_dir=str(tmp_path / "data"), concurrency=3, request_delay_ms=0, timeout_ms=1000)


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()

import json
from typing import Any, Dict, Optional

from playwright.async_api import APIRequestContext, Error as PWError, Playwright


class ScrapeError(Exception):
    """Base class for every error the catalog run raises."""


class FetchError(ScrapeError):
    """Transport failure, timeout, or a status outside 2xx/304."""

    def __init__(self, url: str, message: str, status: Optional[int] = None) -> None:
        super().__init__(f"{message} ({url})")
        self.url = url
        self.status = status


class ParseError(ScrapeError):
    """Body could not be decoded as the expected XML/JSON document."""

    def __init__(self, url: str, message: str) -> None:
        super().__init__(f"{message} ({url})")
        self.url = url


def status_accepted(status: int) -> bool:
    return 200 <= status < 300 or status == 304


class HttpClient:
    """Thin wrapper over a Playwright API request context.

    One instance is shared by every task of a run; it holds no per-request
    state, so concurrent `get_*` calls are fine.
    """

    def __init__(self, request_context: APIRequestContext, timeout_ms: int) -> None:
        self._ctx = request_context
        self.timeout_ms = timeout_ms

    @classmethod
    async def open(cls, pw: Playwright, user_agent: str, timeout_ms: int) -> "HttpClient":
        ctx = await pw.request.new_context(
            user_agent=user_agent,
            extra_http_headers={"Accept": "text/html,application/json"},
            timeout=timeout_ms,
        )
        return cls(ctx, timeout_ms)

    async def get_text(self, url: str, headers: Optional[Dict[str, str]] = None) -> str:
        try:
            resp = await self._ctx.get(
                url,
                headers=headers,
                timeout=self.timeout_ms,
                fail_on_status_code=False,
            )
        except PWError as e:
            # Playwright's TimeoutError subclasses Error
            raise FetchError(url, f"request failed: {e}") from e
        try:
            if not status_accepted(resp.status):
                raise FetchError(url, f"unexpected status {resp.status}", status=resp.status)
            try:
                return await resp.text()
            except PWError as e:
                raise FetchError(url, f"could not read body: {e}") from e
        finally:
            await resp.dispose()

    async def get_json(self, url: str, headers: Optional[Dict[str, str]] = None) -> Any:
        text = await self.get_text(url, headers=headers)
        try:
            return json.loads(text)
        except ValueError as e:
            raise ParseError(url, f"invalid JSON: {e}") from e

    async def close(self) -> None:
        await self._ctx.dispose()

import asyncio
import os
import re
import sys
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional
from urllib.parse import quote

from bs4 import BeautifulSoup
from dotenv import load_dotenv
from playwright.async_api import async_playwright
from rich.console import Console
from rich.markup import escape

from catalog import CatalogWriter
from http_client import FetchError, HttpClient, ScrapeError
from sitemap import SitemapTraverser, UrlClassifier


console = Console()

#
# High-level overview
# - Configuration: runtime knobs via environment variables (`Config`)
# - Build id: read the Next.js build token off the storefront home page
# - Discovery: sitemap tree -> page URLs -> product slugs (see sitemap.py)
# - Fetch: one `/_next/data/<build>/shop/product/<slug>.json` call per slug
# - Scheduling: bounded pool, fixed delay before every fetch, failures isolated
# - Sink: per-product JSON plus slug and light indexes (see catalog.py)
# - Entrypoint: `main` wires config, client and writer, then runs the pipeline


class ResolutionError(ScrapeError):
    """The storefront's build id could not be discovered."""


@dataclass(frozen=True)
class Config:
    origin: str = "https://megapc.tn"
    out_dir: str = "data"
    concurrency: int = 4
    request_delay_ms: int = 300
    timeout_ms: int = 20000
    user_agent: str = "MegapcResearchBot/1.0 (+contact@example.com)"
    sitemap_max_depth: int = 5

    @classmethod
    def from_env(cls) -> "Config":
        return cls(
            origin=os.getenv("ORIGIN", cls.origin).rstrip("/"),
            out_dir=os.getenv("OUT_DIR", cls.out_dir),
            concurrency=max(1, int(os.getenv("CONCURRENCY", str(cls.concurrency)))),
            request_delay_ms=int(os.getenv("REQUEST_DELAY_MS", str(cls.request_delay_ms))),
            timeout_ms=int(os.getenv("TIMEOUT_MS", str(cls.timeout_ms))),
            user_agent=os.getenv("USER_AGENT", cls.user_agent),
            sitemap_max_depth=int(os.getenv("SITEMAP_MAX_DEPTH", str(cls.sitemap_max_depth))),
        )

    @property
    def sitemap_url(self) -> str:
        return f"{self.origin}/sitemap.xml"


@dataclass
class FetchResult:
    slug: str
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RunSummary:
    saved: int
    total: int
    build_id: str


_BUILD_ID_RE = re.compile(r'"buildId"\s*:\s*"([^"]+)"')
_STATIC_SEGMENT_RE = re.compile(r"/_next/static/([^/]+)/")
# Asset directories under /_next/static/ that are never build ids
_STATIC_ASSET_DIRS = {"chunks", "css", "media", "webpack"}


def extract_build_id(html: str) -> Optional[str]:
    """Find the build id in inlined `__NEXT_DATA__`, else in script asset paths."""
    m = _BUILD_ID_RE.search(html)
    if m:
        return m.group(1)
    soup = BeautifulSoup(html, "html.parser")
    build_id: Optional[str] = None
    for script in soup.select("script[src]"):
        src = script.get("src") or ""
        for segment in _STATIC_SEGMENT_RE.findall(src):
            if segment not in _STATIC_ASSET_DIRS:
                build_id = segment
    return build_id


async def discover_build_id(client: HttpClient, origin: str) -> str:
    html = await client.get_text(origin)
    build_id = extract_build_id(html)
    if not build_id:
        raise ResolutionError(f"Unable to find Next.js buildId on {origin}")
    return build_id


def encode_uri_component(value: str) -> str:
    return quote(value, safe="!~*'()")


class ProductFetcher:
    """Reads one product through the Next.js data route."""

    def __init__(self, client: HttpClient, origin: str, build_id: str) -> None:
        self.client = client
        self.origin = origin.rstrip("/")
        self.build_id = build_id

    def product_data_url(self, slug: str) -> str:
        enc = encode_uri_component(slug)
        return f"{self.origin}/_next/data/{self.build_id}/shop/product/{enc}.json?lien={enc}"

    async def fetch(self, slug: str) -> Dict[str, Any]:
        url = self.product_data_url(slug)
        payload = await self.client.get_json(url, headers={"x-nextjs-data": "1"})
        product = unwrap_product(payload)
        if not isinstance(product, dict):
            raise FetchError(url, f"product payload is {type(product).__name__}, not an object")
        return product


def _truthy(value: Any) -> bool:
    # Empty objects and arrays still count as present
    return isinstance(value, (dict, list)) or bool(value)


def unwrap_product(payload: Any) -> Any:
    """`pageProps.product`, then `product`, then the payload itself."""
    if isinstance(payload, dict):
        page_props = payload.get("pageProps")
        if isinstance(page_props, dict) and _truthy(page_props.get("product")):
            return page_props["product"]
        if _truthy(payload.get("product")):
            return payload["product"]
    return payload


async def run_bounded(
    slugs: Iterable[str],
    task: Callable[[str], Awaitable[Any]],
    concurrency: int,
    delay_ms: int,
) -> List[FetchResult]:
    """Run `task` once per slug with at most `concurrency` in flight.

    Every task waits `delay_ms` before starting its request. A failing task
    becomes a failed `FetchResult`; it never cancels its siblings.
    """
    sem = asyncio.Semaphore(max(1, concurrency))

    async def safe_task(slug: str) -> FetchResult:
        async with sem:
            try:
                await asyncio.sleep(delay_ms / 1000.0)
                await task(slug)
                console.log(f"Saved {escape(slug)}")
                return FetchResult(slug=slug)
            except Exception as e:
                console.log(f"Skipped {escape(slug)}: {type(e).__name__}: {escape(str(e))}")
                return FetchResult(slug=slug, error=e)

    return list(await asyncio.gather(*(safe_task(s) for s in slugs)))


async def collect_slugs(client: HttpClient, cfg: Config) -> List[str]:
    traverser = SitemapTraverser(client, cfg.request_delay_ms, max_depth=cfg.sitemap_max_depth)
    urls = await traverser.traverse(cfg.sitemap_url)
    console.log(f"Sitemap yielded {len(urls)} URLs")
    return sorted(UrlClassifier(cfg.origin).product_slugs(urls))


async def run_pipeline(
    cfg: Config,
    client: HttpClient,
    writer: Optional[CatalogWriter] = None,
    limit: Optional[int] = None,
) -> RunSummary:
    """Crawl the whole catalog and rebuild the on-disk snapshot.

    Build id and sitemap failures propagate; per-product failures are skipped.
    """
    writer = writer or CatalogWriter(cfg.out_dir)
    writer.ensure_dirs()
    started = time.monotonic()

    console.log("Discovering Next.js buildId...")
    build_id = await discover_build_id(client, cfg.origin)
    console.log(f"buildId: {build_id}")

    console.log(f"Loading sitemap {cfg.sitemap_url} and extracting product slugs...")
    slugs = await collect_slugs(client, cfg)
    if limit is not None:
        slugs = slugs[:limit]
    console.log(f"Found {len(slugs)} product slugs from sitemap.")

    fetcher = ProductFetcher(client, cfg.origin, build_id)

    async def fetch_and_persist(slug: str) -> None:
        record = await fetcher.fetch(slug)
        writer.write_product(slug, record)

    results = await run_bounded(slugs, fetch_and_persist, cfg.concurrency, cfg.request_delay_ms)
    # Only files written by this run; older files for failed slugs stay out
    persisted = [r.slug for r in results if r.ok]
    saved = len(persisted)

    writer.write_slug_index(slugs)
    light = writer.build_light_index(persisted)
    writer.write_light_index(light)
    console.log(f"Light index: {len(light)} entries, run took {time.monotonic() - started:.1f}s")

    console.log(f"Saved {saved}/{len(slugs)} products to {writer.products_dir}")
    return RunSummary(saved=saved, total=len(slugs), build_id=build_id)


def load_env() -> None:
    # Load from .env if present
    try:
        load_dotenv()
    except Exception:
        pass


def parse_limit(argv: List[str]) -> Optional[int]:
    if len(argv) > 1 and argv[1].isdigit():
        return int(argv[1])
    return None


async def main() -> RunSummary:
    """Entrypoint: load configuration, open the HTTP client, run the pipeline."""
    load_env()
    cfg = Config.from_env()
    limit = parse_limit(sys.argv)

    async with async_playwright() as pw:
        client = await HttpClient.open(pw, cfg.user_agent, cfg.timeout_ms)
        try:
            return await run_pipeline(cfg, client, limit=limit)
        finally:
            await client.close()


def cli() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        console.log("Interrupted by user")
        sys.exit(1)
    except Exception as e:
        console.log(f"Fatal error: {escape(str(e))}")
        sys.exit(1)


if __name__ == "__main__":
    cli()

import asyncio
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set, Union
from urllib.parse import unquote, urlparse

from rich.console import Console
from rich.markup import escape

from http_client import HttpClient, ParseError


console = Console()

#
# Sitemap discovery
# - Parsing: XML text -> `IndexNode` | `UrlSetNode`, namespace-agnostic
# - Traversal: depth-first over index nodes, one child at a time
# - Classification: keep same-origin product URLs and pull their slugs


@dataclass
class IndexNode:
    """`<sitemapindex>`: references to child sitemaps."""
    children: List[str] = field(default_factory=list)


@dataclass
class UrlSetNode:
    """`<urlset>`: terminal page locations."""
    locs: List[str] = field(default_factory=list)


SitemapNode = Union[IndexNode, UrlSetNode]


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1] if isinstance(tag, str) else ""


def _children(elem: ET.Element, name: str) -> List[ET.Element]:
    """All direct children named `name`, one or many, as a list."""
    return [c for c in list(elem) if _local_name(c.tag) == name]


def _loc_values(entries: Iterable[ET.Element]) -> List[str]:
    locs: List[str] = []
    for entry in entries:
        for loc in _children(entry, "loc"):
            text = (loc.text or "").strip()
            if text:
                locs.append(text)
                break
    return locs


def parse_sitemap(xml_text: str, url: str = "") -> SitemapNode:
    """Interpret a sitemap document as an index or a url-set.

    Unknown root elements are treated as an empty url-set.
    """
    try:
        root = ET.fromstring(xml_text.strip())
    except ET.ParseError as e:
        raise ParseError(url, f"invalid sitemap XML: {e}") from e
    kind = _local_name(root.tag)
    if kind == "sitemapindex":
        return IndexNode(children=_loc_values(_children(root, "sitemap")))
    if kind == "urlset":
        return UrlSetNode(locs=_loc_values(_children(root, "url")))
    return UrlSetNode()


class SitemapTraverser:
    def __init__(self, client: HttpClient, delay_ms: int, max_depth: int = 5) -> None:
        self.client = client
        self.delay_ms = delay_ms
        self.max_depth = max_depth

    async def traverse(self, url: str) -> Set[str]:
        """Return every page URL reachable from `url`.

        Any child fetch/parse failure propagates; there are no partial results.
        """
        return await self._traverse(url, 0)

    async def _traverse(self, url: str, depth: int) -> Set[str]:
        if depth > self.max_depth:
            raise ParseError(url, f"sitemap nesting deeper than {self.max_depth}")
        xml_text = await self.client.get_text(url)
        node = parse_sitemap(xml_text, url)

        urls: Set[str] = set()
        if isinstance(node, IndexNode):
            indent = "  " * (depth + 1)
            console.log(f"{indent}Sitemap index {escape(url)}: {len(node.children)} child sitemaps")
            for child in node.children:
                urls |= await self._traverse(child, depth + 1)
                await asyncio.sleep(self.delay_ms / 1000.0)
            return urls
        urls.update(node.locs)
        return urls


_PRODUCT_PATH = re.compile(r"/shop/product/")
_SLUG_RE = re.compile(r"/shop/product/(.*?)(?:[/?#]|$)")
_DEFAULT_PORTS = {"http": 80, "https": 443}


def url_origin(url: str) -> Optional[str]:
    """`scheme://host[:port]`, lower-cased, default port dropped; None if not absolute."""
    try:
        parsed = urlparse(url.strip())
        port = parsed.port
    except ValueError:
        return None
    scheme = (parsed.scheme or "").lower()
    host = (parsed.hostname or "").lower()
    if not scheme or not host:
        return None
    if port is not None and port != _DEFAULT_PORTS.get(scheme):
        return f"{scheme}://{host}:{port}"
    return f"{scheme}://{host}"


class UrlClassifier:
    """Decides which sitemap URLs are product pages for one origin."""

    def __init__(self, origin: str) -> None:
        self.origin = url_origin(origin) or origin.rstrip("/").lower()

    def is_product_url(self, url: str) -> bool:
        if url_origin(url) != self.origin:
            return False
        try:
            path = urlparse(url.strip()).path
        except ValueError:
            return False
        return bool(_PRODUCT_PATH.search(path)) and not path.endswith("/cart")

    def extract_slug(self, url: str) -> Optional[str]:
        m = _SLUG_RE.search(url)
        if not m:
            return None
        slug = unquote(m.group(1))
        return slug or None

    def product_slugs(self, urls: Iterable[str]) -> Set[str]:
        slugs: Set[str] = set()
        for url in urls:
            if not self.is_product_url(url):
                continue
            slug = self.extract_slug(url)
            if slug:
                slugs.add(slug)
        return slugs

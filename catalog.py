import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from http_client import ScrapeError


class PersistError(ScrapeError):
    """A product record could not be written to disk."""


class LightIndexEntry(BaseModel):
    """Listing-sized projection of one product record.

    - Built only from files on disk, never from in-memory fetch results
    - `discount` is always recomputed; the record's own value is ignored
    - Serialized with the camelCase keys the catalog viewer reads
    """
    model_config = ConfigDict(populate_by_name=True)

    slug: str
    id: Optional[Any] = None
    title: Any
    price: Optional[Any] = None
    prix_en_promo: Optional[Any] = Field(default=None, alias="prixEnPromo")
    discount: Optional[float] = None
    img: Optional[Any] = None
    category: Any = "Other"
    subcategory: Optional[Any] = None


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def compute_discount(price: Any, promo: Any) -> Optional[float]:
    """Percentage off list price, or None unless 0 < promo < price."""
    p = _to_number(price)
    q = _to_number(promo)
    if p is None or q is None or p <= 0 or q <= 0 or q >= p:
        return None
    return (p - q) * 100 / p


def _first_image(record: Dict[str, Any]) -> Any:
    images = record.get("images")
    if isinstance(images, list) and images and isinstance(images[0], dict):
        src = images[0].get("thumbnailImageSrc")
        if src:
            return src
    gallery = record.get("gallerie")
    if isinstance(gallery, dict):
        photos = gallery.get("urlPhoto")
        if isinstance(photos, list) and photos and photos[0]:
            return photos[0]
    return None


def _titre(value: Any) -> Any:
    if isinstance(value, dict):
        return value.get("titre") or None
    return None


def light_entry(slug: str, record: Dict[str, Any]) -> LightIndexEntry:
    price = record.get("price")
    promo = record.get("prixEnPromo")
    return LightIndexEntry(
        slug=slug,
        id=record.get("_id"),
        title=record.get("title") or record.get("title_fr") or slug,
        price=price,
        prix_en_promo=promo,
        discount=compute_discount(price, promo),
        img=_first_image(record),
        category=_titre(record.get("categorie")) or "Other",
        subcategory=_titre(record.get("filscateg")),
    )


def dump_json(path: Path, data: Any) -> None:
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")


class CatalogWriter:
    """Owns the on-disk snapshot: `products/<slug>.json` plus both indexes."""

    def __init__(self, out_dir: Union[str, Path]) -> None:
        self.out_dir = Path(out_dir)
        self.products_dir = self.out_dir / "products"

    @property
    def slug_index_path(self) -> Path:
        return self.out_dir / "data-index.json"

    @property
    def light_index_path(self) -> Path:
        return self.out_dir / "light-index.json"

    def ensure_dirs(self) -> None:
        self.products_dir.mkdir(parents=True, exist_ok=True)

    def product_path(self, slug: str) -> Path:
        return self.products_dir / f"{slug}.json"

    def write_product(self, slug: str, record: Dict[str, Any]) -> Path:
        path = self.product_path(slug)
        # Decoded slugs may carry separators or dot segments
        if "/" in slug or "\\" in slug or path.parent != self.products_dir:
            raise PersistError(f"slug cannot be used as a file name: {slug!r}")
        try:
            dump_json(path, record)
        except (OSError, TypeError, ValueError) as e:
            raise PersistError(f"could not write {path}: {e}") from e
        return path

    def read_product(self, slug: str) -> Optional[Dict[str, Any]]:
        """Stored record for `slug`, or None when missing or unreadable."""
        path = self.product_path(slug)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        return data if isinstance(data, dict) else None

    def write_slug_index(self, slugs: Iterable[str]) -> None:
        dump_json(self.slug_index_path, list(slugs))

    def build_light_index(self, slugs: Iterable[str]) -> List[LightIndexEntry]:
        entries: List[LightIndexEntry] = []
        for slug in slugs:
            record = self.read_product(slug)
            if record is None:
                continue
            entries.append(light_entry(slug, record))
        return entries

    def write_light_index(self, entries: Iterable[LightIndexEntry]) -> None:
        dump_json(self.light_index_path, [e.model_dump(by_alias=True) for e in entries])

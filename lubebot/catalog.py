"""Catalog access and local query execution.

The remote catalog is an external system. This module fetches its product list
(remote URL or local JSON file), normalizes records into Product objects, caches
them in an injected TTLCache, and runs Query objects against the list.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import requests

from .cache import TTLCache
from .config import Settings
from .utils import normalize_text

logger = logging.getLogger("lubebot.catalog")

PRODUCTS_CACHE_KEY = ("catalog", "products")

DEFAULT_FIELDS = {
    "id": "id",
    "partno": "partno",
    "title": "title",
    "cert": "cert",
    "viscosity": "word2",
    "category": "sort",
    "size": "size",
    "price": "price",
    "content": "content",
}

LARGE_PACK_MARKERS = ["4l", "5l", "20l", "60l", "205l"]


@dataclass
class Product:
    """Normalized view of a catalog record with a raw backing dict."""
    partno: str
    title: str = ""
    cert: str = ""
    viscosity: str = ""
    category: str = ""
    size: str = ""
    price: str = ""
    id: str = ""
    content: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return self.id or self.partno

    def get(self, catalog_field: str) -> str:
        """Return a raw catalog field as text (catalog field names, e.g. "word2")."""
        value = self.raw.get(catalog_field)
        return "" if value is None else str(value)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("raw", None)
        return data


@dataclass
class Query:
    """One field-level catalog search: the engine's output contract."""
    field: str
    value: str
    method: str = "contains"
    limit: int = 20

    @property
    def key(self) -> tuple:
        return (self.field, self.value.casefold(), self.method)

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "value": self.value, "method": self.method, "limit": self.limit}


@dataclass
class CatalogMeta:
    """Metadata describing the fetched catalog version for logging."""
    source: str
    updated_at: str
    sha256: str
    count: int


def product_from_record(record: Dict[str, Any], fields: Optional[Dict[str, str]] = None) -> Product:
    """Purpose: Map a raw catalog record onto the Product shape.
    Inputs/Outputs: Input is the raw dict and a logical->catalog field map; output is a Product.
    Side Effects / State: None.
    Dependencies: DEFAULT_FIELDS for any logical field missing from the map.
    Failure Modes: Missing fields become empty strings; partno is uppercased.
    If Removed: Matchers would read catalog-specific field names directly.
    Testing Notes: A record with word2="5W-30" yields Product.viscosity == "5W-30".
    """
    # Resolve each logical field through the configured catalog field name.
    mapping = dict(DEFAULT_FIELDS)
    mapping.update(fields or {})

    def value(name: str) -> str:
        raw_value = record.get(mapping[name])
        return "" if raw_value is None else str(raw_value).strip()

    return Product(
        partno=value("partno").upper(),
        title=value("title"),
        cert=value("cert"),
        viscosity=value("viscosity"),
        category=value("category"),
        size=value("size"),
        price=value("price"),
        id=value("id"),
        content=value("content"),
        raw=record,
    )


class CatalogClient:
    """Fetch and cache the product list from the remote catalog or a local file."""

    def __init__(
        self,
        settings: Settings,
        cache: Optional[TTLCache] = None,
        fields: Optional[Dict[str, str]] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._settings = settings
        self._cache = cache if cache is not None else TTLCache()
        self._fields = fields or {}
        self._session = session or requests.Session()
        self._last_products: List[Product] = []
        self.meta: Optional[CatalogMeta] = None

    def fetch_products(self) -> List[Product]:
        """Purpose: Return the current product list, served from cache within the TTL.
        Inputs/Outputs: No inputs; returns a list of Product (possibly empty).
        Side Effects / State: Performs a network or file read on cache miss and updates
            the cache, the stale fallback list, and meta.
        Dependencies: requests for CATALOG_URL, json for the local file, TTLCache.
        Failure Modes: Transport or payload errors are logged and the last good list
            (or []) is returned; nothing is raised.
        If Removed: Grounding and response validation have no ground truth.
        Testing Notes: Point catalog_path at a temp file; a missing file yields [].
        """
        # Read through the cache; failed loads return None so nothing is cached.
        products = self._cache.get_or_load(PRODUCTS_CACHE_KEY, self._load, self._settings.products_ttl)
        if products is None:
            return list(self._last_products)
        return products

    def clear(self) -> None:
        self._cache.clear()

    def _load(self) -> Optional[List[Product]]:
        try:
            if self._settings.catalog_url:
                records, raw_bytes, source = self._fetch_remote()
            else:
                records, raw_bytes, source = self._read_file(self._settings.catalog_path)
        except requests.RequestException as exc:
            logger.error("Catalog fetch failed: %s", exc)
            return None
        except (OSError, ValueError) as exc:
            logger.error("Catalog payload unreadable: %s", exc)
            return None

        products = [product_from_record(record, self._fields) for record in records if isinstance(record, dict)]
        self.meta = CatalogMeta(
            source=source,
            updated_at=datetime.now().isoformat(timespec="seconds"),
            sha256=hashlib.sha256(raw_bytes).hexdigest(),
            count=len(products),
        )
        logger.info("Catalog loaded: source=%s count=%d sha256=%s", source, len(products), self.meta.sha256[:12])
        self._last_products = products
        return products

    def _fetch_remote(self) -> tuple:
        url = self._settings.catalog_url.rstrip("/")
        response = self._session.get(url, timeout=self._settings.catalog_timeout)
        response.raise_for_status()
        return _extract_records(response.json()), response.content, url

    @staticmethod
    def _read_file(path: Path) -> tuple:
        raw_bytes = path.read_bytes()
        data = json.loads(raw_bytes.decode("utf-8-sig"))
        return _extract_records(data), raw_bytes, str(path)


def _extract_records(data: Any) -> List[Dict[str, Any]]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        if data.get("success") is False:
            raise ValueError(f"catalog reported failure: {data.get('error', 'unknown error')}")
        products = data.get("products", data.get("items", []))
        if isinstance(products, list):
            return products
    raise ValueError("catalog payload has no product list")


def run_queries(products: List[Product], queries: Iterable[Query]) -> List[Product]:
    """Purpose: Execute queries against an in-memory product list.
    Inputs/Outputs: Inputs are products and queries; output is the union of matches
        in query order, deduplicated by product id (or partno).
    Side Effects / State: None.
    Dependencies: normalize_text, Product.get.
    Failure Modes: Unknown methods match nothing.
    If Removed: Queries could only run on the remote backend.
    Testing Notes: A partno eq query returns exactly that product.
    """
    # Each query contributes at most `limit` products; earlier queries win ties.
    results: List[Product] = []
    seen = set()
    for query in queries:
        needle = normalize_text(query.value)
        if not needle:
            continue
        added = 0
        for product in products:
            if added >= query.limit:
                break
            haystack = normalize_text(product.get(query.field))
            if query.method == "eq":
                hit = haystack == needle
            elif query.method == "contains":
                hit = needle in haystack
            else:
                hit = False
            if not hit:
                continue
            added += 1
            if product.key in seen:
                continue
            seen.add(product.key)
            results.append(product)
    return results


def deduplicate_by_size(products: List[Product], prefer_large: bool = False) -> List[Product]:
    """Keep one package size per product title (1L by default, large packs on request)."""
    groups: Dict[str, List[Product]] = {}
    for product in products:
        groups.setdefault(product.title, []).append(product)
    kept: List[Product] = []
    for title, group in groups.items():
        if len(group) == 1:
            kept.append(group[0])
            continue
        best = max(group, key=lambda item: _size_score(item, prefer_large))
        logger.debug("Size dedupe: %s kept %s, dropped %d variants", title, best.partno, len(group) - 1)
        kept.append(best)
    return kept


def _size_score(product: Product, prefer_large: bool) -> int:
    text = normalize_text(f"{product.title} {product.size}")
    is_large = any(marker in text for marker in LARGE_PACK_MARKERS)
    if prefer_large:
        return 10 if is_large else 1
    return 1 if is_large else 10

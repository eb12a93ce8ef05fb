"""Turn a ResolvedIntent into deduplicated catalog queries."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from .catalog import Query
from .intent import ResolvedIntent
from .knowledge.knowledge_store import KnowledgeStore
from .vehicle_matcher import VehicleMatch

logger = logging.getLogger("lubebot.query")

OIL_CATEGORY = "oil"


class QueryBuilder:
    """Query synthesis driven by search-reference.json."""

    def __init__(self, store: KnowledgeStore) -> None:
        self._store = store

    def _reference(self) -> Dict[str, Any]:
        return self._store.search_reference()

    def _field(self, name: str) -> str:
        return (self._reference().get("fields", {}) or {}).get(name, name)

    def _limit(self, name: str) -> int:
        limits = self._reference().get("limits", {}) or {}
        return int(limits.get(name, limits.get("default", 20)))

    def build(self, intent: ResolvedIntent) -> List[Query]:
        """Purpose: Synthesize the catalog queries for one request.
        Inputs/Outputs: Input is a ResolvedIntent; output is a list of Query in
            insertion order with no two sharing (field, value, method).
        Side Effects / State: Logs the query count at DEBUG.
        Dependencies: search-reference.json (fields, limits, categoryToSort, markers,
            oilOnlyKeywords, SKU patterns, year_range).
        Failure Modes: Missing reference data yields fewer queries, never an error.
        If Removed: The engine has no output contract toward the catalog.
        Testing Notes: A scooter oil intent yields the motorcycle sort value plus
            "Motorbike" and "Scooter" title filters; "LM3840" yields a partno eq query.
        """
        # SKUs first (category-agnostic), then per-vehicle routing, then free text.
        queries: List[Query] = []
        seen = set()

        def add(field: str, value: Optional[str], method: str, limit: int) -> None:
            if not value or not str(value).strip():
                return
            query = Query(field=field, value=str(value).strip(), method=method, limit=limit)
            if query.key in seen:
                return
            seen.add(query.key)
            queries.append(query)

        skus, free_text = self.split_keywords(intent.search_keywords)
        for sku in skus + self.extract_message_skus(intent.message):
            add(self._field("partno"), sku, "eq", self._limit("sku"))

        vehicles = intent.vehicles or [VehicleMatch()]
        for vehicle in vehicles:
            self._vehicle_queries(intent, vehicle, add)

        for keyword in self.filter_keywords(free_text, intent.product_category):
            add(self._field("title"), keyword, "contains", self._limit("default"))

        logger.debug("Built %d queries for category=%s", len(queries), intent.product_category)
        return queries

    def _vehicle_queries(self, intent: ResolvedIntent, vehicle: VehicleMatch, add) -> None:
        category = intent.product_category
        oil_like = category in (None, OIL_CATEGORY)
        title = self._field("title")

        sort_value = self.category_sort(category, vehicle.is_motorcycle)
        if sort_value:
            add(self._field("category"), sort_value, "contains", self._limit("category"))
        if category == OIL_CATEGORY and vehicle.is_motorcycle:
            markers = self._reference().get("markers", {}) or {}
            add(title, markers.get("motorcycle_title"), "contains", self._limit("category"))
            if vehicle.is_scooter or vehicle.vehicle_sub_type == "scooter":
                add(title, markers.get("scooter_title"), "contains", self._limit("category"))

        certifications = list(intent.certifications)
        if oil_like:
            certifications += [cert for cert in vehicle.certifications if cert not in certifications]
        cert_field = self._field("cert")
        for cert in certifications:
            add(cert_field, cert, "contains", self._limit("default"))
            add(title, cert, "contains", self._limit("default"))
            add(cert_field, cert.replace(" ", ""), "contains", self._limit("default"))

        viscosity = intent.viscosity or (vehicle.viscosity if oil_like else None)
        if viscosity:
            viscosity_field = self._field("viscosity")
            add(viscosity_field, viscosity, "contains", self._limit("default"))
            add(title, viscosity, "contains", self._limit("default"))
            add(viscosity_field, viscosity.replace("-", ""), "contains", self._limit("default"))

        if oil_like:
            for sku in vehicle.recommended_skus:
                add(self._field("partno"), sku, "eq", self._limit("sku"))
            for keyword in vehicle.search_keywords:
                add(title, keyword, "contains", self._limit("default"))

    def category_sort(self, category: Optional[str], is_motorcycle: bool) -> Optional[str]:
        """Catalog sort value for (category, is_motorcycle), or None when unrouted."""
        if not category:
            return None
        routing = (self._reference().get("categoryToSort", {}) or {}).get(category)
        if isinstance(routing, dict):
            return routing.get("motorcycle" if is_motorcycle else "car")
        return routing or None

    def split_keywords(self, keywords: List[str]) -> tuple:
        """Split keywords into (normalized SKUs, free text); bare year-like numbers are dropped."""
        pattern = re.compile(self._reference().get("sku_keyword_pattern", r"^(LM)?[-\s]?(\d{4,5})$"), re.IGNORECASE)
        low, high = self._reference().get("year_range", [2019, 2030])
        skus: List[str] = []
        free_text: List[str] = []
        for keyword in keywords or []:
            text = str(keyword).strip()
            match = pattern.match(text)
            if not match:
                if text:
                    free_text.append(text)
                continue
            prefix, digits = match.group(1), match.group(2)
            if not prefix and len(digits) == 4 and low <= int(digits) <= high:
                continue
            sku = f"LM{digits}"
            if sku not in skus:
                skus.append(sku)
        return skus, free_text

    def extract_message_skus(self, message: Optional[str]) -> List[str]:
        if not message:
            return []
        pattern = re.compile(self._reference().get("sku_message_pattern", r"LM[-\s]?\d{4,5}"), re.IGNORECASE)
        skus: List[str] = []
        for raw in pattern.findall(message):
            sku = "LM" + re.sub(r"\D", "", raw)
            if sku not in skus:
                skus.append(sku)
        return skus

    def filter_keywords(self, keywords: List[str], category: Optional[str]) -> List[str]:
        """Drop oil-only vocabulary when a non-oil category is requested."""
        if not category or category == OIL_CATEGORY:
            return list(keywords)
        oil_only = {
            str(word).casefold()
            for word in (self._reference().get("oilOnlyKeywords", {}) or {}).get("keywords", []) or []
        }
        return [keyword for keyword in keywords if keyword.casefold() not in oil_only]

"""Motorcycle identification and the JASO MA/MB selection rule.

Scooters (CVT, dry clutch) take JASO MB; manual, naked, and sport bikes (wet clutch)
take JASO MA/MA2. A product that carries only the other family is never offered.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from .catalog import Product
from .certification_matcher import CertificationMatcher, normalize_viscosity
from .knowledge.knowledge_store import KnowledgeStore
from .utils import contains_keyword, normalize_text

logger = logging.getLogger("lubebot.motorcycle")


def _field(vehicle: Any, name: str, default: Any = None) -> Any:
    if isinstance(vehicle, dict):
        return vehicle.get(name, default)
    return getattr(vehicle, name, default)


class MotorcycleRules:
    """JASO-aware filtering and ranking for motorcycle oil."""

    def __init__(self, store: KnowledgeStore, cert_matcher: CertificationMatcher) -> None:
        self._store = store
        self._certs = cert_matcher

    def _rules(self) -> Dict[str, Any]:
        return self._store.motorcycle_rules()

    def _markers(self) -> Dict[str, Any]:
        return self._store.search_reference().get("markers", {}) or {}

    def scooter_models(self) -> List[str]:
        return list((self._rules().get("scooter_identification", {}) or {}).get("models", []) or [])

    def manual_series(self) -> List[str]:
        return list((self._rules().get("motorcycle_identification", {}) or {}).get("manual_series", []) or [])

    def _matches_any(self, text: Optional[str], keywords: Iterable[str]) -> bool:
        if not text:
            return False
        return any(contains_keyword(text, keyword) for keyword in keywords)

    def is_scooter(self, vehicle: Any) -> bool:
        """Purpose: Decide whether a model name or vehicle record is a scooter.
        Inputs/Outputs: Input is a model string, a VehicleMatch, or a dict; output is bool.
        Side Effects / State: None.
        Dependencies: scooter_identification.models from motorcycle-rules.json.
        Failure Modes: None/empty input returns False.
        If Removed: Scooters would be offered wet-clutch MA oils.
        Testing Notes: "勁戰" is True; "CBR600", "Ninja 400", "R1" are False.
        """
        # Strings are model names; records carry sub-type, flag, certs, and model.
        if not vehicle:
            return False
        if isinstance(vehicle, str):
            return self._matches_any(vehicle, self.scooter_models())
        if _field(vehicle, "vehicle_sub_type") == "scooter" or _field(vehicle, "is_scooter"):
            return True
        certifications = _field(vehicle, "certifications") or []
        if any("JASOMB" in self._certs.normalize_cert(cert) for cert in certifications):
            return True
        return self._matches_any(_field(vehicle, "model"), self.scooter_models())

    def is_manual_motorcycle(self, vehicle: Any) -> bool:
        if not vehicle:
            return False
        if isinstance(vehicle, str):
            return self._matches_any(vehicle, self.manual_series())
        if _field(vehicle, "vehicle_sub_type") == "manual":
            return True
        certifications = _field(vehicle, "certifications") or []
        if any("JASOMA" in self._certs.normalize_cert(cert) for cert in certifications):
            return True
        return self._matches_any(_field(vehicle, "model"), self.manual_series())

    def get_jaso_type(self, vehicle: Any) -> Optional[str]:
        if self.is_scooter(vehicle):
            return "MB"
        if self.is_manual_motorcycle(vehicle):
            return "MA2"
        return None

    def jaso_certification(self, is_scooter: bool) -> str:
        jaso = (self._store.certification_rules().get("jaso", {}) or {})
        return jaso.get("scooter", "JASO MB") if is_scooter else jaso.get("manual", "JASO MA2")

    def jaso_reason(self, is_scooter: bool) -> str:
        rules = self._store.motorcycle_rules().get("jaso_rules", {}) or {}
        return (rules.get("scooter" if is_scooter else "manual", {}) or {}).get("reason", "")

    def is_motorcycle_product(self, product: Product) -> bool:
        markers = self._markers()
        title_marker = normalize_text(markers.get("motorcycle_title", "Motorbike"))
        if title_marker and title_marker in normalize_text(product.title):
            return True
        category = normalize_text(product.category)
        return any(normalize_text(marker) in category for marker in markers.get("motorcycle_category", []) or [])

    def _jaso_families(self, product: Product) -> tuple:
        cert = self._certs.normalize_cert(product.cert, expand_alias=False)
        scooter_marker = normalize_text(self._markers().get("scooter_title", "Scooter"))
        has_mb = "JASOMB" in cert or bool(scooter_marker and scooter_marker in normalize_text(product.title))
        has_ma = "JASOMA" in cert
        return has_ma, has_mb

    def check_jaso(self, product: Product, is_scooter: bool) -> bool:
        """Strict JASO check: scooters need MB, manual bikes need MA/MA2."""
        has_ma, has_mb = self._jaso_families(product)
        return has_mb if is_scooter else has_ma

    def filter_motorcycle_products(
        self,
        products: List[Product],
        is_scooter: Optional[bool] = None,
        viscosity: Optional[str] = None,
    ) -> List[Product]:
        """Purpose: Narrow a product list to motorcycle oils suitable for the bike.
        Inputs/Outputs: Inputs are products, optional scooter flag, optional viscosity;
            output keeps input order.
        Side Effects / State: None.
        Dependencies: is_motorcycle_product, _jaso_families, normalize_viscosity.
        Failure Modes: Unknown scooter flag (None) applies no JASO exclusion.
        If Removed: Keyword searches leak car oils and wrong-JASO oils to riders.
        Testing Notes: [scooter, manual, car] products -> the two motorcycle ones.
        """
        # Exclude only products whose sole JASO family is the wrong one.
        wanted_viscosity = normalize_viscosity(viscosity)
        kept = []
        for product in products:
            if not self.is_motorcycle_product(product):
                continue
            has_ma, has_mb = self._jaso_families(product)
            if is_scooter is True and has_ma and not has_mb:
                continue
            if is_scooter is False and has_mb and not has_ma:
                continue
            if wanted_viscosity and wanted_viscosity not in normalize_viscosity(product.viscosity):
                continue
            kept.append(product)
        return kept

    def search_motorcycle_oil(self, products: List[Product], vehicle: Any) -> List[Product]:
        """Motorcycle oils passing the strict JASO check and the vehicle's viscosity."""
        scooter = self.is_scooter(vehicle)
        viscosity = normalize_viscosity(_field(vehicle, "viscosity"))
        matches = [
            product
            for product in products
            if self.is_motorcycle_product(product) and self.check_jaso(product, scooter)
        ]
        if viscosity:
            matches = [product for product in matches if viscosity in normalize_viscosity(product.viscosity)]
        logger.debug("Motorcycle oil search: scooter=%s viscosity=%s matches=%d", scooter, viscosity, len(matches))
        return matches

    def get_synthetic_score(self, title: Optional[str]) -> float:
        """Purpose: Rank base-oil quality from the product title.
        Inputs/Outputs: Input is a title; output is 3 (full), 2 (semi), 1 (mineral),
            1.5 (unknown), or 0 (empty), using the configured keyword lists.
        Side Effects / State: None.
        Dependencies: synthetic_keywords/synthetic_scores from motorcycle-rules.json.
        Failure Modes: None.
        If Removed: Track and mountain riders are not steered to full synthetics.
        Testing Notes: "Motorbike 4T Synth Street Race" scores 3.
        """
        # Full-synthetic markers are checked before the broader semi markers.
        scores = self._rules().get("synthetic_scores", {}) or {}
        if not title:
            return float(scores.get("empty", 0))
        keywords = self._rules().get("synthetic_keywords", {}) or {}
        text = normalize_text(title)
        for grade in ("full", "semi", "mineral"):
            if any(normalize_text(keyword) in text for keyword in keywords.get(grade, []) or []):
                return float(scores.get(grade, 0))
        return float(scores.get("unknown", 1.5))

    def sort_motorcycle_products(
        self,
        products: List[Product],
        prefer_full_synthetic: bool = False,
        is_scooter: bool = False,
    ) -> List[Product]:
        def sort_key(product: Product) -> tuple:
            synthetic = self.get_synthetic_score(product.title) if prefer_full_synthetic else 0
            scooter = self._certs.get_scooter_cert_score(product.cert) if is_scooter else 0
            return (-synthetic, -scooter)

        return sorted(products, key=sort_key)

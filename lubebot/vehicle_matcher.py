"""Vehicle identification from a user message and conversation history.

Matching order (first success wins):
    1. Alias match against the current message (spec-linked, authoritative).
    2. Alias match against the history text (multi-turn follow-ups).
    3. Keyword/brand classification into car, motorcycle, marine, or bicycle.
    4. Electric-vehicle detection, which runs on every message.
    5. Default to an unmatched car.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .knowledge.knowledge_store import KnowledgeStore
from .utils import contains_keyword, find_keywords, normalize_text

logger = logging.getLogger("lubebot.vehicle")

VEHICLE_TYPES = ("car", "motorcycle", "marine", "bicycle")
YEAR_PATTERN = re.compile(r"\b(19[89]\d|20\d\d)\b")
YEAR_PLUS = re.compile(r"^(\d{4})\s*\+$")
YEAR_SPAN = re.compile(r"^(\d{4})\s*-\s*(\d{4})$")


@dataclass
class VehicleMatch:
    """Resolved vehicle identity plus any spec-linked lubricant requirements."""
    matched: bool = False
    vehicle_type: str = "car"
    vehicle_sub_type: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    is_electric_vehicle: bool = False
    fuel_type: Optional[str] = None
    is_scooter: bool = False
    certifications: List[str] = field(default_factory=list)
    viscosity: Optional[str] = None
    recommended_skus: List[str] = field(default_factory=list)
    search_keywords: List[str] = field(default_factory=list)
    detected_keywords: List[str] = field(default_factory=list)
    match_source: str = "default"
    spec: Optional[Dict[str, Any]] = None

    @property
    def is_motorcycle(self) -> bool:
        return self.vehicle_type == "motorcycle"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matched": self.matched,
            "vehicle_type": self.vehicle_type,
            "vehicle_sub_type": self.vehicle_sub_type,
            "brand": self.brand,
            "model": self.model,
            "is_electric_vehicle": self.is_electric_vehicle,
            "fuel_type": self.fuel_type,
            "is_scooter": self.is_scooter,
            "certifications": list(self.certifications),
            "viscosity": self.viscosity,
            "recommended_skus": list(self.recommended_skus),
            "detected_keywords": list(self.detected_keywords),
            "match_source": self.match_source,
        }


class VehicleMatcher:
    """Resolve vehicles against the vehicle-specs knowledge table."""

    def __init__(self, store: KnowledgeStore) -> None:
        self._store = store

    def match(self, message: str, history_text: str = "") -> VehicleMatch:
        """Purpose: Identify the vehicle the user is asking about.
        Inputs/Outputs: Inputs are the current message and flattened history text;
            output is a VehicleMatch (never None).
        Side Effects / State: Logs the match source at DEBUG.
        Dependencies: KnowledgeStore.vehicle_specs/vehicle_metadata, contains_keyword.
        Failure Modes: Missing knowledge yields the default unmatched car.
        If Removed: Certification lookup and category routing lose the vehicle.
        Testing Notes: Alias hits must skip keyword classification; "gogoro" sets the
            EV flag; an empty message returns matched=False, vehicle_type="car".
        """
        # Alias matches are authoritative; keyword classification only runs without one.
        result = self._match_alias(message, "alias")
        if result is None and history_text:
            result = self._match_alias(history_text, "history_alias")
        if result is None:
            result = self._classify_keywords(message)

        self._detect_electric(message, result)
        logger.debug(
            "Vehicle match: source=%s type=%s sub_type=%s brand=%s model=%s",
            result.match_source,
            result.vehicle_type,
            result.vehicle_sub_type,
            result.brand,
            result.model,
        )
        return result

    def _alias_index(self) -> List[Tuple[str, str, str, Dict[str, Any]]]:
        index = []
        for brand, models in self._store.vehicle_specs().items():
            for model, specs in models.items():
                if model.startswith("_") or not isinstance(specs, list):
                    continue
                for spec in specs:
                    for alias in spec.get("aliases", []) or []:
                        index.append((normalize_text(alias), brand, model, spec))
        # Longest alias first so "jetta" wins over any shorter overlapping alias.
        index.sort(key=lambda item: len(item[0]), reverse=True)
        return index

    def _match_alias(self, text: str, source: str) -> Optional[VehicleMatch]:
        if not text:
            return None
        for alias, brand, model, spec in self._alias_index():
            if not contains_keyword(text, alias):
                continue
            specs = self._store.vehicle_specs()[brand][model]
            chosen = select_spec(specs, text) or spec
            return _match_from_spec(brand, model, chosen, source, [alias])
        return None

    def _classify_keywords(self, message: str) -> VehicleMatch:
        metadata = self._store.vehicle_metadata()
        vehicle_types = metadata.get("vehicle_types", {}) or {}
        result = VehicleMatch()

        motorcycle = vehicle_types.get("motorcycle", {}) or {}
        hits = find_keywords(message, motorcycle.get("keywords", []))
        brand = None
        for model_brand, models in (motorcycle.get("specific_models", {}) or {}).items():
            model_hits = find_keywords(message, models)
            if model_hits:
                hits.extend(model_hits)
                brand = brand or model_brand
        if hits:
            result.matched = True
            result.vehicle_type = "motorcycle"
            result.brand = brand
            result.detected_keywords = hits
            result.match_source = "keyword"
            self._detect_sub_type(message, result, metadata)
            return result

        for vehicle_type in ("marine", "bicycle"):
            hits = find_keywords(message, (vehicle_types.get(vehicle_type, {}) or {}).get("keywords", []))
            if hits:
                result.matched = True
                result.vehicle_type = vehicle_type
                result.detected_keywords = hits
                result.match_source = "keyword"
                return result

        car = vehicle_types.get("car", {}) or {}
        hits = find_keywords(message, car.get("keywords", []))
        brand_hits = find_keywords(message, car.get("brands", []))
        if hits or brand_hits:
            result.matched = True
            result.vehicle_type = "car"
            result.brand = brand_hits[0] if brand_hits else None
            result.detected_keywords = hits + brand_hits
            result.match_source = "keyword" if hits else "brand"
        return result

    def _detect_sub_type(self, message: str, result: VehicleMatch, metadata: Dict[str, Any]) -> None:
        sub_types = metadata.get("sub_type_keywords", {}) or {}
        scooter_hits = find_keywords(message, sub_types.get("scooter", []))
        if scooter_hits:
            result.vehicle_sub_type = "scooter"
            result.is_scooter = True
            result.detected_keywords.extend(k for k in scooter_hits if k not in result.detected_keywords)
            return
        manual_hits = find_keywords(message, sub_types.get("manual", []))
        if manual_hits:
            result.vehicle_sub_type = "manual"
            result.detected_keywords.extend(k for k in manual_hits if k not in result.detected_keywords)

    def _detect_electric(self, message: str, result: VehicleMatch) -> None:
        electric = (self._store.vehicle_metadata().get("electric_vehicle", {}) or {})
        alias_derived = result.match_source in ("alias", "history_alias")

        if find_keywords(message, electric.get("ev_motorcycle", [])):
            ev_type = "motorcycle"
        elif find_keywords(message, electric.get("ev_car", [])):
            ev_type = "car"
        else:
            if find_keywords(message, electric.get("hybrid", [])):
                result.fuel_type = "hybrid"
            return

        result.is_electric_vehicle = True
        result.fuel_type = "electric"
        # EV keywords never override an alias match or an already classified motorcycle.
        if alias_derived or (ev_type == "car" and result.is_motorcycle):
            return
        result.matched = True
        result.vehicle_type = ev_type
        if result.match_source == "default":
            result.match_source = "keyword"

    def get_vehicle_spec(self, brand: str, model: str) -> List[Dict[str, Any]]:
        """Purpose: Look up specs for a brand/model pair named by the classifier.
        Inputs/Outputs: Inputs are free-form brand and model strings; output is a flat
            list of spec dicts annotated with brand/model (empty when unknown).
        Side Effects / State: None.
        Dependencies: KnowledgeStore.vehicle_specs.
        Failure Modes: Unknown brand or model returns [].
        If Removed: LLM-named vehicles that miss the alias table get no certification.
        Testing Notes: ("BMW", "2020 BMW 3 Series") resolves to both 3 Series specs.
        """
        # Strip years and the brand name from the model, then match loosely both ways.
        if not brand or not model:
            return []
        brand_key = normalize_text(brand)
        model_key = normalize_text(YEAR_PATTERN.sub("", model)).replace(brand_key, "").strip()
        if not model_key:
            return []
        found: List[Dict[str, Any]] = []
        for spec_brand, models in self._store.vehicle_specs().items():
            spec_brand_key = normalize_text(spec_brand)
            if brand_key not in spec_brand_key and spec_brand_key not in brand_key:
                continue
            for spec_model, specs in models.items():
                spec_model_key = normalize_text(spec_model)
                if model_key in spec_model_key or spec_model_key in model_key:
                    for spec in specs:
                        found.append(dict(spec, brand=spec_brand, model=spec_model))
        return found


def select_spec(
    specs: List[Dict[str, Any]],
    model_text: str = "",
    fuel_type: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """Purpose: Choose one spec among candidates using year range and fuel.
    Inputs/Outputs: Inputs are candidate specs, the text that may carry a model year,
        and an optional fuel type; output is the chosen spec or None when ambiguous.
    Side Effects / State: None; pure function.
    Dependencies: YEAR_PATTERN, _year_in_range.
    Failure Modes: Returns None instead of guessing between different certifications.
    If Removed: Multi-generation models always resolve to the first listed spec.
    Testing Notes: BMW 3 Series with "2020" picks the 2019+ spec.
    """
    # Narrow by year, then fuel, then accept when the remaining certs agree.
    if not specs:
        return None
    if len(specs) == 1:
        return specs[0]
    candidates = list(specs)
    year_match = YEAR_PATTERN.search(model_text or "")
    if year_match:
        year = int(year_match.group(1))
        in_range = [spec for spec in candidates if _year_in_range(spec.get("year"), year)]
        candidates = in_range or candidates
    if fuel_type:
        same_fuel = [spec for spec in candidates if spec.get("fuel") == fuel_type]
        candidates = same_fuel or candidates
    if len(candidates) == 1:
        return candidates[0]
    cert_sets = {tuple(spec.get("certification", []) or []) for spec in candidates}
    if len(cert_sets) == 1:
        return candidates[0]
    return None


def _year_in_range(year_spec: Any, year: int) -> bool:
    if not year_spec:
        return True
    text = str(year_spec).strip()
    plus = YEAR_PLUS.match(text)
    if plus:
        return year >= int(plus.group(1))
    span = YEAR_SPAN.match(text)
    if span:
        return int(span.group(1)) <= year <= int(span.group(2))
    return text == str(year)


def _match_from_spec(
    brand: str,
    model: str,
    spec: Dict[str, Any],
    source: str,
    detected: List[str],
) -> VehicleMatch:
    vehicle_type = spec.get("type") if spec.get("type") in VEHICLE_TYPES else "car"
    sub_type = spec.get("sub_type") or None
    fuel = spec.get("fuel") or None
    return VehicleMatch(
        matched=True,
        vehicle_type=vehicle_type,
        vehicle_sub_type=sub_type,
        brand=brand,
        model=model,
        is_electric_vehicle=fuel == "electric",
        fuel_type=fuel,
        is_scooter=sub_type == "scooter",
        certifications=list(spec.get("certification", []) or []),
        viscosity=spec.get("viscosity") or None,
        recommended_skus=[sku.upper() for sku in spec.get("recommended_sku", []) or []],
        search_keywords=list(spec.get("search_keywords", []) or []),
        detected_keywords=detected,
        match_source=source,
        spec=spec,
    )

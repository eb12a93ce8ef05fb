"""Map free-text complaints to the additive guide.

When the answer depends on information the user has not given (car vs. motorcycle,
manual vs. automatic transmission) the matcher returns both option sets and a
clarification flag instead of guessing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .catalog import Product
from .knowledge.knowledge_store import KnowledgeStore
from .utils import normalize_key, normalize_text

logger = logging.getLogger("lubebot.symptom")

MAX_ITEMS = 3
AREAS = ("car", "motorcycle")
TRANSMISSION_TYPES = {"manual": "manual-transmission", "auto": "auto-transmission"}
FUEL_TYPES = ("gasoline", "diesel")


@dataclass
class SymptomSolution:
    sku: str
    name: Optional[str] = None


@dataclass
class SymptomItem:
    """One additive-guide entry matched against the message."""
    problem: str
    explanation: str
    area: str
    type: str
    has_product: bool
    severity: Optional[str] = None
    solutions: List[SymptomSolution] = field(default_factory=list)

    @property
    def skus(self) -> List[str]:
        return [solution.sku for solution in self.solutions]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "problem": self.problem,
            "explanation": self.explanation,
            "area": self.area,
            "type": self.type,
            "has_product": self.has_product,
            "severity": self.severity,
            "solutions": [{"sku": s.sku, "name": s.name} for s in self.solutions],
        }


@dataclass
class SymptomMatch:
    """Resolved symptom items or a structured clarification request."""
    items: List[SymptomItem] = field(default_factory=list)
    detected_symptom: Optional[str] = None
    needs_vehicle_type: bool = False
    needs_transmission_type: bool = False
    vehicle_options: Dict[str, List[SymptomItem]] = field(default_factory=dict)
    transmission_options: Dict[str, List[SymptomItem]] = field(default_factory=dict)
    informational_only: bool = False

    @property
    def matched(self) -> bool:
        return bool(self.items or self.vehicle_options or self.transmission_options)

    @property
    def needs_clarification(self) -> bool:
        return self.needs_vehicle_type or self.needs_transmission_type

    @property
    def solution_skus(self) -> List[str]:
        skus: List[str] = []
        for item in self.items:
            for sku in item.skus:
                if sku not in skus:
                    skus.append(sku)
        return skus

    @property
    def severity(self) -> Optional[str]:
        return self.items[0].severity if self.items else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matched": self.matched,
            "detected_symptom": self.detected_symptom,
            "needs_vehicle_type": self.needs_vehicle_type,
            "needs_transmission_type": self.needs_transmission_type,
            "informational_only": self.informational_only,
            "items": [item.to_dict() for item in self.items],
            "vehicle_options": {k: [i.to_dict() for i in v] for k, v in self.vehicle_options.items()},
            "transmission_options": {k: [i.to_dict() for i in v] for k, v in self.transmission_options.items()},
        }


class SymptomMatcher:
    """Symptom lookup over additive-guide.json and sku-names.json."""

    def __init__(self, store: KnowledgeStore) -> None:
        self._store = store

    def detect_symptom(self, message: str) -> Tuple[Optional[str], List[str]]:
        """Return (canonical symptom, its synonyms) for the first alias found in message."""
        text = normalize_key(message)
        if not text:
            return None, []
        for symptom, synonyms in self._store.symptom_aliases().items():
            terms = [symptom] + list(synonyms or [])
            if any(normalize_key(term) and normalize_key(term) in text for term in terms):
                return symptom, terms
        return None, []

    def match(
        self,
        message: str,
        vehicle_type: Optional[str] = None,
        fuel_type: Optional[str] = None,
        transmission_type: Optional[str] = None,
    ) -> SymptomMatch:
        """Purpose: Match a complaint to additive-guide entries.
        Inputs/Outputs: Inputs are the message and whatever is known about the vehicle
            ("car"/"motorcycle", "gasoline"/"diesel", "manual"/"auto"); output is a
            SymptomMatch with up to 3 items or a clarification request.
        Side Effects / State: Logs the detected symptom at DEBUG.
        Dependencies: KnowledgeStore.symptom_guide/symptom_aliases/sku_names.
        Failure Modes: Missing guide yields an unmatched SymptomMatch.
        If Removed: Additive questions fall back to plain keyword search.
        Testing Notes: "吃機油" with unknown vehicle asks for the vehicle type;
            with vehicle_type="car" it returns the car entry only.
        """
        # Alias hits outrank raw problem-substring hits; ties keep table order.
        detected, terms = self.detect_symptom(message)
        result = SymptomMatch(detected_symptom=detected)
        candidates = self._candidates(message, terms)
        if not candidates:
            return result

        vehicle_type = vehicle_type if vehicle_type in AREAS else None
        if vehicle_type:
            candidates = [entry for entry in candidates if entry.get("area") in (vehicle_type, "universal")]
        else:
            by_area = {area: [entry for entry in candidates if entry.get("area") == area] for area in AREAS}
            if all(by_area.values()) and _solution_set(by_area["car"]) != _solution_set(by_area["motorcycle"]):
                result.needs_vehicle_type = True
                result.vehicle_options = {area: self._items(entries) for area, entries in by_area.items()}
                logger.debug("Symptom %s needs vehicle type", detected)
                return result

        if fuel_type in FUEL_TYPES:
            other = [fuel for fuel in FUEL_TYPES if fuel != fuel_type]
            candidates = [entry for entry in candidates if entry.get("type") not in other]

        wanted_transmission = TRANSMISSION_TYPES.get(transmission_type or "")
        by_transmission = {
            key: [entry for entry in candidates if entry.get("type") == value]
            for key, value in TRANSMISSION_TYPES.items()
        }
        if wanted_transmission:
            candidates = [
                entry
                for entry in candidates
                if entry.get("type") == wanted_transmission
                or entry.get("type") not in TRANSMISSION_TYPES.values()
            ]
        elif all(by_transmission.values()) and _solution_set(by_transmission["manual"]) != _solution_set(
            by_transmission["auto"]
        ):
            result.needs_transmission_type = True
            result.transmission_options = {key: self._items(entries) for key, entries in by_transmission.items()}
            logger.debug("Symptom %s needs transmission type", detected)
            return result

        result.items = self._items(candidates[:MAX_ITEMS])
        result.informational_only = bool(result.items) and not any(item.has_product for item in result.items)
        logger.debug("Symptom %s matched %d entries", detected, len(result.items))
        return result

    def _candidates(self, message: str, terms: List[str]) -> List[Dict[str, Any]]:
        text = normalize_key(message)
        term_keys = [normalize_key(term) for term in terms if normalize_key(term)]
        scored = []
        for index, entry in enumerate(self._store.symptom_guide()):
            problem = normalize_key(entry.get("problem", ""))
            if not problem:
                continue
            if any(term in problem for term in term_keys):
                scored.append((2, index, entry))
            elif text and problem in text:
                scored.append((1, index, entry))
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [entry for _, _, entry in scored]

    def _items(self, entries: List[Dict[str, Any]]) -> List[SymptomItem]:
        names = self._store.sku_names()
        items = []
        for entry in entries:
            has_product = bool(entry.get("has_product", True))
            solutions = []
            if has_product:
                for sku in entry.get("solutions", []) or []:
                    sku_key = str(sku).upper()
                    solutions.append(SymptomSolution(sku=sku_key, name=names.get(sku_key)))
            items.append(
                SymptomItem(
                    problem=entry.get("problem", ""),
                    explanation=entry.get("explanation", ""),
                    area=entry.get("area", "universal"),
                    type=entry.get("type", "universal"),
                    has_product=has_product,
                    severity=entry.get("severity"),
                    solutions=solutions,
                )
            )
        return items

    def additive_priority_score(
        self,
        product: Product,
        severity: Optional[str] = None,
        fuel_type: Optional[str] = None,
        usage_scenario: Optional[str] = None,
    ) -> float:
        """Purpose: Rank additive products for a symptom's severity and usage.
        Inputs/Outputs: Inputs are a product and context; output is a float score.
        Side Effects / State: None.
        Dependencies: priority_rules from additive-guide.json.
        Failure Modes: Missing rules score every product at the base value.
        If Removed: Severe symptoms are not steered to Pro-Line products.
        Testing Notes: Diesel fuel favours titles containing "diesel".
        """
        # Each rule group adds a bonus when any of its keywords is in title or partno.
        rules = self._store.additive_priority_rules()
        text = normalize_text(f"{product.title} {product.partno}")
        score = float(rules.get("base", 1))

        def hit(keywords: List[str]) -> bool:
            return any(normalize_text(keyword) in text for keyword in keywords or [])

        fuel_rule = (rules.get("fuel", {}) or {}).get(fuel_type or "")
        if fuel_rule and hit(fuel_rule.get("keywords")):
            score += float(fuel_rule.get("bonus", 0))

        severity_rule = (rules.get("severity", {}) or {}).get(severity or "")
        if severity_rule:
            if hit(severity_rule.get("keywords")):
                score += float(severity_rule.get("bonus", 0))
            else:
                score += float(severity_rule.get("other_bonus", 0))

        for rule in (rules.get("scenarios", {}) or {}).get(usage_scenario or "", []) or []:
            if hit(rule.get("keywords")):
                score += float(rule.get("bonus", 0))

        for rule in rules.get("general", []) or []:
            if hit(rule.get("keywords")):
                score += float(rule.get("bonus", 0))
        return score


def _solution_set(entries: List[Dict[str, Any]]) -> frozenset:
    return frozenset(str(sku).upper() for entry in entries for sku in entry.get("solutions", []) or [])

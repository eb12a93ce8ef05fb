"""Classifier output parsing and intent resolution.

The LLM classifier returns loosely shaped JSON. It is parsed into one of a fixed set
of analysis variants, each tagged with a `kind`, and every consumer dispatches over
all of them. Unparseable output becomes FallbackAnalysis instead of an exception.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Any, ClassVar, Dict, List, Optional, Union

from .certification_matcher import CertificationMatcher
from .knowledge.knowledge_store import KnowledgeStore
from .utils import find_keywords, safe_json_loads
from .vehicle_matcher import VEHICLE_TYPES, VehicleMatch, VehicleMatcher, select_spec

logger = logging.getLogger("lubebot.intent")

OIL_CATEGORY = "oil"


@dataclass
class AnalysisVehicle:
    """A vehicle as described by the classifier (all fields optional)."""
    name: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    vehicle_type: Optional[str] = None
    sub_type: Optional[str] = None
    fuel_type: Optional[str] = None
    transmission_type: Optional[str] = None
    certifications: List[str] = field(default_factory=list)
    viscosity: Optional[str] = None
    is_scooter: bool = False
    is_electric_vehicle: bool = False


@dataclass
class _AnalysisBase:
    vehicles: List[AnalysisVehicle] = field(default_factory=list)
    product_category: Optional[str] = None
    search_keywords: List[str] = field(default_factory=list)
    needs_more_info: List[str] = field(default_factory=list)


@dataclass
class ProductRecommendation(_AnalysisBase):
    kind: ClassVar[str] = "product_recommendation"
    usage_scenario: Optional[str] = None
    symptom_severity: Optional[str] = None
    recommend_synthetic: Optional[str] = None
    certification_search: Optional[Dict[str, Optional[str]]] = None
    queried_sku: Optional[str] = None
    prefer_large_pack: bool = False


@dataclass
class PriceInquiry(_AnalysisBase):
    kind: ClassVar[str] = "price_inquiry"
    queried_sku: Optional[str] = None


@dataclass
class PurchaseInquiry(_AnalysisBase):
    kind: ClassVar[str] = "purchase_inquiry"


@dataclass
class CooperationInquiry(_AnalysisBase):
    kind: ClassVar[str] = "cooperation_inquiry"


@dataclass
class Authentication(_AnalysisBase):
    kind: ClassVar[str] = "authentication"


@dataclass
class GeneralInquiry(_AnalysisBase):
    kind: ClassVar[str] = "general_inquiry"


@dataclass
class FallbackAnalysis(_AnalysisBase):
    kind: ClassVar[str] = "fallback"
    raw_text: str = ""
    reason: str = "unparseable"


Analysis = Union[
    ProductRecommendation,
    PriceInquiry,
    PurchaseInquiry,
    CooperationInquiry,
    Authentication,
    GeneralInquiry,
    FallbackAnalysis,
]

_VARIANTS = {
    variant.kind: variant
    for variant in (
        ProductRecommendation,
        PriceInquiry,
        PurchaseInquiry,
        CooperationInquiry,
        Authentication,
        GeneralInquiry,
    )
}

# Keyword fallbacks are checked in this order; the first hit wins.
_RULE_KINDS = ("authentication", "cooperation_inquiry", "purchase_inquiry", "price_inquiry")


@dataclass
class ResolvedIntent:
    """Per-request working record consumed by the query builder and the pipeline."""
    kind: str
    message: str = ""
    vehicles: List[VehicleMatch] = field(default_factory=list)
    product_category: Optional[str] = None
    certifications: List[str] = field(default_factory=list)
    viscosity: Optional[str] = None
    needs_more_info: List[str] = field(default_factory=list)
    usage_scenario: Optional[str] = None
    search_keywords: List[str] = field(default_factory=list)
    symptom_severity: Optional[str] = None
    recommend_synthetic: Optional[str] = None
    certification_search: Optional[Dict[str, Optional[str]]] = None
    transmission_type: Optional[str] = None
    prefer_large_pack: bool = False

    @property
    def primary_vehicle(self) -> Optional[VehicleMatch]:
        return self.vehicles[0] if self.vehicles else None

    @property
    def wants_products(self) -> bool:
        return self.kind in ("product_recommendation", "price_inquiry")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "vehicles": [vehicle.to_dict() for vehicle in self.vehicles],
            "product_category": self.product_category,
            "certifications": list(self.certifications),
            "viscosity": self.viscosity,
            "needs_more_info": list(self.needs_more_info),
            "usage_scenario": self.usage_scenario,
            "search_keywords": list(self.search_keywords),
            "symptom_severity": self.symptom_severity,
            "recommend_synthetic": self.recommend_synthetic,
            "certification_search": self.certification_search,
            "transmission_type": self.transmission_type,
        }


def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] not in (None, ""):
            return data[key]
    return default


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, list):
        return [str(item) for item in value if item not in (None, "")]
    return []


def parse_analysis(raw_text: str) -> Analysis:
    """Purpose: Parse classifier output into a tagged analysis variant.
    Inputs/Outputs: Input is raw LLM text with embedded JSON; output is an Analysis.
    Side Effects / State: Logs at INFO when the text could not be parsed.
    Dependencies: safe_json_loads (which applies repair_json).
    Failure Modes: Never raises; unparseable text yields FallbackAnalysis.
    If Removed: The pipeline would consume untyped dicts with optional fields.
    Testing Notes: Trailing commas still parse; "intent_type": "weird" becomes
        GeneralInquiry; plain prose becomes FallbackAnalysis.
    """
    # Unknown or missing intent types degrade to a general inquiry.
    data = safe_json_loads(raw_text or "")
    if data is None:
        logger.info("Classifier output not parseable; using fallback analysis")
        return FallbackAnalysis(raw_text=raw_text or "", reason="unparseable" if raw_text else "empty")
    return analysis_from_dict(data)


def analysis_from_dict(data: Dict[str, Any]) -> Analysis:
    kind = _pick(data, "intent_type", "intentType", default="")
    if not kind and data.get("needsProductRecommendation"):
        kind = ProductRecommendation.kind
    variant = _VARIANTS.get(str(kind), GeneralInquiry)

    common = dict(
        vehicles=[_vehicle_from_dict(item) for item in data.get("vehicles", []) or [] if isinstance(item, dict)],
        product_category=_pick(data, "product_category", "productCategory"),
        search_keywords=_as_list(_pick(data, "search_keywords", "searchKeywords")),
        needs_more_info=_as_list(_pick(data, "needs_more_info", "needsMoreInfo")),
    )
    if variant is ProductRecommendation:
        certification_search = _pick(data, "certification_search", "certificationSearch")
        if isinstance(certification_search, dict):
            certification_search = {
                "requested_cert": _pick(certification_search, "requested_cert", "requestedCert"),
                "viscosity": _pick(certification_search, "viscosity"),
            }
        else:
            certification_search = None
        return ProductRecommendation(
            usage_scenario=_pick(data, "usage_scenario", "usageScenario"),
            symptom_severity=_pick(data, "symptom_severity", "symptomSeverity"),
            recommend_synthetic=_pick(data, "recommend_synthetic", "recommendSynthetic"),
            certification_search=certification_search,
            queried_sku=_pick(data, "queried_sku", "queriedSKU"),
            prefer_large_pack=bool(_pick(data, "prefer_large_pack", "preferLargePack", default=False)),
            **common,
        )
    if variant is PriceInquiry:
        return PriceInquiry(queried_sku=_pick(data, "queried_sku", "queriedSKU"), **common)
    return variant(**common)


def _vehicle_from_dict(data: Dict[str, Any]) -> AnalysisVehicle:
    return AnalysisVehicle(
        name=_pick(data, "name", "vehicle_name", "vehicleName"),
        brand=_pick(data, "brand"),
        model=_pick(data, "model"),
        vehicle_type=_pick(data, "vehicle_type", "vehicleType"),
        sub_type=_pick(data, "sub_type", "vehicleSubType"),
        fuel_type=_pick(data, "fuel_type", "fuelType"),
        transmission_type=_pick(data, "transmission_type", "transmissionType"),
        certifications=_as_list(_pick(data, "certifications")),
        viscosity=_pick(data, "viscosity"),
        is_scooter=bool(_pick(data, "is_scooter", "isScooter", default=False)),
        is_electric_vehicle=bool(_pick(data, "is_electric_vehicle", "isElectricVehicle", default=False)),
    )


class IntentResolver:
    """Merge classifier output, keyword rules, and the vehicle match into a ResolvedIntent."""

    def __init__(
        self,
        store: KnowledgeStore,
        vehicle_matcher: VehicleMatcher,
        cert_matcher: CertificationMatcher,
    ) -> None:
        self._store = store
        self._vehicles = vehicle_matcher
        self._certs = cert_matcher

    def _keywords(self) -> Dict[str, Any]:
        return self._store.intent_keywords()

    def _alias(self, group: str, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        aliases = (self._keywords().get("value_aliases", {}) or {}).get(group, {}) or {}
        return aliases.get(value, aliases.get(str(value).lower(), value))

    def detect_category(self, message: str) -> Optional[str]:
        for category, keywords in (self._keywords().get("categories", {}) or {}).items():
            if find_keywords(message, keywords or []):
                return category
        return None

    def detect_viscosity(self, message: str) -> Optional[str]:
        pattern = self._store.search_reference().get("viscosity_pattern")
        if not pattern or not message:
            return None
        match = re.search(pattern, message, re.IGNORECASE)
        if not match:
            return None
        return f"{match.group(1).upper()}-{match.group(2)}"

    def enhance_with_rules(self, analysis: Analysis, message: str) -> Analysis:
        """Purpose: Upgrade weak classifier results using keyword rules.
        Inputs/Outputs: Inputs are an Analysis and the message; output is an Analysis
            (the same object when no rule applies).
        Side Effects / State: Logs upgrades at INFO.
        Dependencies: intent-keywords.json.
        Failure Modes: None; missing keyword lists change nothing.
        If Removed: An LLM outage turns every message into a general inquiry.
        Testing Notes: A fallback for "這是正品嗎" becomes Authentication; a fallback
            for "機油推薦" becomes ProductRecommendation with category "oil".
        """
        # Only general and fallback results are eligible; classifier decisions stand.
        if not isinstance(analysis, (GeneralInquiry, FallbackAnalysis)):
            return analysis
        common = dict(
            vehicles=analysis.vehicles,
            product_category=analysis.product_category or self.detect_category(message),
            search_keywords=analysis.search_keywords,
            needs_more_info=analysis.needs_more_info,
        )
        keywords = self._keywords()
        for kind in _RULE_KINDS:
            if find_keywords(message, keywords.get(kind, []) or []):
                logger.info("Intent upgraded by keyword rule: %s -> %s", analysis.kind, kind)
                return _VARIANTS[kind](**common)
        if isinstance(analysis, FallbackAnalysis) and common["product_category"]:
            logger.info("Fallback analysis upgraded to product recommendation")
            return ProductRecommendation(**common)
        if common["product_category"] != analysis.product_category:
            return replace(analysis, product_category=common["product_category"])
        return analysis

    def resolve(self, analysis: Analysis, message: str, vehicle_match: VehicleMatch) -> ResolvedIntent:
        """Purpose: Build the ResolvedIntent for one request.
        Inputs/Outputs: Inputs are the (enhanced) analysis, the message, and the
            VehicleMatch; output is a ResolvedIntent.
        Side Effects / State: None beyond logging.
        Dependencies: VehicleMatcher.get_vehicle_spec, select_spec,
            CertificationMatcher.detect_certification.
        Failure Modes: Raises TypeError for an object that is not an Analysis variant.
        If Removed: Query synthesis and grounding have no input.
        Testing Notes: A fallback analysis with an alias-matched vehicle still carries
            the vehicle's certification and viscosity.
        """
        # Exhaustive dispatch: every variant maps to exactly one intent kind.
        if isinstance(analysis, ProductRecommendation):
            intent = self._base_intent(analysis, message, vehicle_match, ProductRecommendation.kind)
            intent.usage_scenario = self._alias("usage_scenario", analysis.usage_scenario)
            intent.symptom_severity = analysis.symptom_severity
            intent.recommend_synthetic = analysis.recommend_synthetic
            intent.prefer_large_pack = analysis.prefer_large_pack
            if analysis.certification_search and analysis.certification_search.get("requested_cert"):
                intent.certification_search = dict(analysis.certification_search)
            if analysis.queried_sku:
                intent.search_keywords.append(analysis.queried_sku)
        elif isinstance(analysis, PriceInquiry):
            intent = self._base_intent(analysis, message, vehicle_match, PriceInquiry.kind)
            if analysis.queried_sku:
                intent.search_keywords.append(analysis.queried_sku)
        elif isinstance(analysis, (PurchaseInquiry, CooperationInquiry, Authentication, GeneralInquiry)):
            intent = self._base_intent(analysis, message, vehicle_match, analysis.kind)
        elif isinstance(analysis, FallbackAnalysis):
            intent = self._base_intent(analysis, message, vehicle_match, GeneralInquiry.kind)
        else:
            raise TypeError(f"Unsupported analysis variant: {type(analysis).__name__}")

        self._apply_message_rules(intent, message)
        self._apply_missing_info(intent)
        if find_keywords(message, self._keywords().get("large_pack", []) or []):
            intent.prefer_large_pack = True
        logger.debug("Resolved intent kind=%s category=%s certs=%s", intent.kind, intent.product_category, intent.certifications)
        return intent

    def _base_intent(
        self,
        analysis: _AnalysisBase,
        message: str,
        vehicle_match: VehicleMatch,
        kind: str,
    ) -> ResolvedIntent:
        vehicles = self._merge_vehicles(analysis.vehicles, vehicle_match)
        primary = vehicles[0] if vehicles else None
        return ResolvedIntent(
            kind=kind,
            message=message,
            vehicles=vehicles,
            product_category=self._alias("category", analysis.product_category),
            needs_more_info=list(analysis.needs_more_info),
            search_keywords=list(analysis.search_keywords),
            transmission_type=self._transmission(analysis.vehicles),
            viscosity=primary.viscosity if primary else None,
        )

    def _transmission(self, vehicles: List[AnalysisVehicle]) -> Optional[str]:
        for vehicle in vehicles:
            if vehicle.transmission_type:
                return self._alias("transmission_type", vehicle.transmission_type)
        return None

    def _merge_vehicles(self, described: List[AnalysisVehicle], match: VehicleMatch) -> List[VehicleMatch]:
        # Alias matches are authoritative; otherwise classifier fields win and the
        # knowledge base fills certification/viscosity gaps.
        if not described:
            return [match] if match.matched else []
        merged = []
        for index, vehicle in enumerate(described):
            if index == 0 and match.match_source in ("alias", "history_alias"):
                merged.append(match)
                continue
            merged.append(self._vehicle_from_analysis(vehicle, match if index == 0 else None))
        return merged

    def _vehicle_from_analysis(self, vehicle: AnalysisVehicle, match: Optional[VehicleMatch]) -> VehicleMatch:
        vehicle_type = self._alias("vehicle_type", vehicle.vehicle_type)
        if vehicle_type not in VEHICLE_TYPES:
            vehicle_type = match.vehicle_type if match else "car"
        sub_type = self._alias("sub_type", vehicle.sub_type) or (match.vehicle_sub_type if match else None)
        result = VehicleMatch(
            matched=True,
            vehicle_type=vehicle_type,
            vehicle_sub_type=sub_type,
            brand=vehicle.brand or (match.brand if match else None),
            model=vehicle.model or vehicle.name,
            is_electric_vehicle=vehicle.is_electric_vehicle or bool(match and match.is_electric_vehicle),
            fuel_type=self._alias("fuel_type", vehicle.fuel_type) or (match.fuel_type if match else None),
            is_scooter=vehicle.is_scooter or sub_type == "scooter",
            certifications=list(vehicle.certifications),
            viscosity=vehicle.viscosity,
            detected_keywords=list(match.detected_keywords) if match else [],
            match_source="analysis",
        )
        if result.brand and result.model and (not result.certifications or not result.viscosity):
            spec = select_spec(
                self._vehicles.get_vehicle_spec(result.brand, result.model),
                vehicle.name or result.model or "",
                result.fuel_type,
            )
            if spec:
                result.certifications = result.certifications or list(spec.get("certification", []) or [])
                result.viscosity = result.viscosity or spec.get("viscosity")
                result.recommended_skus = [sku.upper() for sku in spec.get("recommended_sku", []) or []]
                result.match_source = "analysis_spec"
        return result

    def _apply_message_rules(self, intent: ResolvedIntent, message: str) -> None:
        if not intent.product_category:
            intent.product_category = self.detect_category(message)

        detected = self._certs.detect_certification(message)
        viscosity = self.detect_viscosity(message)
        if viscosity:
            intent.viscosity = viscosity
        if detected and detected["type"] != "JASO":
            intent.certifications = [detected["cert"]]
            if intent.certification_search is None:
                intent.certification_search = {"requested_cert": detected["cert"], "viscosity": intent.viscosity}
        elif intent.certification_search and intent.certification_search.get("requested_cert"):
            intent.certifications = [intent.certification_search["requested_cert"]]

    def _apply_missing_info(self, intent: ResolvedIntent) -> None:
        missing = intent.needs_more_info
        if intent.wants_products and not intent.product_category and "product_category" not in missing:
            missing.append("product_category")
        has_vehicle = any(vehicle.matched for vehicle in intent.vehicles)
        if (
            intent.product_category == OIL_CATEGORY
            and not has_vehicle
            and not intent.certifications
            and not intent.viscosity
            and "vehicle" not in missing
        ):
            missing.append("vehicle")

"""Certification normalization, classification, and resolution against the catalog.

Two families behave differently:
    OEM (VW/BMW/MB/Porsche/Ford/Dexos): exact match only. Substitution happens only
        through pairs declared in the compatibility table.
    API/ILSAC: versioned by a priority table; a newer cert satisfies an older request.
Every table used here (patterns, priorities, aliases, notices) comes from the
knowledge store.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Pattern, Set

from .catalog import Product
from .knowledge.knowledge_store import KnowledgeStore

logger = logging.getLogger("lubebot.cert")

FAMILY_OEM = "OEM"
FAMILY_API = "API"
FAMILY_UNKNOWN = "UNKNOWN"

FALLBACK_NONE = "none"
FALLBACK_VISCOSITY = "viscosity"
FALLBACK_CERT_UPGRADE = "cert_upgrade"

STRATEGY_OEM = "oem_exact"
STRATEGY_API = "api_newest"
STRATEGY_UNKNOWN = "unknown"

_STRIP = re.compile(r"[-\s]")


@dataclass(frozen=True)
class CertificationRecord:
    """A normalized certification plus its family tag."""
    raw: str
    normalized: str
    family: str
    api_family: Optional[str] = None


@dataclass
class CertResolution:
    """Outcome of resolving a requested certification against the catalog."""
    products: List[Product] = field(default_factory=list)
    used_cert: Optional[str] = None
    fallback_type: str = FALLBACK_NONE
    notice: Optional[str] = None
    strategy: str = STRATEGY_UNKNOWN
    requested_cert: Optional[str] = None
    requested_viscosity: Optional[str] = None

    @property
    def is_upgrade(self) -> bool:
        return self.fallback_type == FALLBACK_CERT_UPGRADE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "partnos": [product.partno for product in self.products],
            "used_cert": self.used_cert,
            "fallback_type": self.fallback_type,
            "notice": self.notice,
            "strategy": self.strategy,
            "requested_cert": self.requested_cert,
            "requested_viscosity": self.requested_viscosity,
        }


def normalize_viscosity(viscosity: Optional[str]) -> str:
    """Uppercase and drop hyphens/spaces: "5w-30" -> "5W30"."""
    if not viscosity:
        return ""
    return _STRIP.sub("", str(viscosity).upper())


class CertificationMatcher:
    """Certification logic driven by certification-rules.json and the compatibility table."""

    def __init__(self, store: KnowledgeStore) -> None:
        self._store = store

    # -- table access -------------------------------------------------------

    def _rules(self) -> Dict[str, Any]:
        return self._store.certification_rules()

    def _aliases(self) -> Dict[str, str]:
        return {
            _STRIP.sub("", short.upper()): _STRIP.sub("", long.upper())
            for short, long in (self._rules().get("aliases", {}) or {}).items()
        }

    def _patterns(self, key: str) -> List[Pattern[str]]:
        return [re.compile(pattern, re.IGNORECASE) for pattern in self._rules().get(key, []) or []]

    def _api_families(self) -> List[Dict[str, Any]]:
        return [family for family in self._rules().get("api_families", []) or [] if isinstance(family, dict)]

    def _notice(self, key: str, **values: Any) -> str:
        template = (self._rules().get("notices", {}) or {}).get(key, "")
        return template.format(**values) if template else ""

    # -- normalization ------------------------------------------------------

    def normalize_cert(self, cert: Optional[str], expand_alias: bool = True) -> str:
        """Purpose: Canonical comparison form of a certification string.
        Inputs/Outputs: Input is a raw cert ("BMW LL-01"); output is uppercase with
            spaces/hyphens removed and short aliases expanded ("BMWLONGLIFE01").
        Side Effects / State: None.
        Dependencies: aliases from certification-rules.json.
        Failure Modes: None/empty returns "".
        If Removed: "LL-01" and "Longlife-01" stop matching each other.
        Testing Notes: Idempotent; normalize_cert("GF-6A") == "GF6A".
        """
        # Expansion only rewrites short forms that are not already part of a long form.
        if not cert:
            return ""
        normalized = _STRIP.sub("", str(cert).upper())
        if not expand_alias:
            return normalized
        for short, long in self._aliases().items():
            if short in normalized and long not in normalized:
                normalized = normalized.replace(short, long)
        return normalized

    def cert_variants(self, cert: Optional[str]) -> Set[str]:
        """Base, alias-expanded, and alias-contracted forms of a certification."""
        base = self.normalize_cert(cert, expand_alias=False)
        if not base:
            return set()
        variants = {base, self.normalize_cert(cert)}
        contracted = base
        for short, long in self._aliases().items():
            contracted = contracted.replace(long, short)
        variants.add(contracted)
        return variants

    # -- classification -----------------------------------------------------

    def is_oem_certification(self, cert: Optional[str]) -> bool:
        if not cert:
            return False
        return any(pattern.search(cert) for pattern in self._patterns("oem_patterns"))

    def is_api_certification(self, cert: Optional[str]) -> bool:
        if not cert:
            return False
        return any(pattern.search(cert) for pattern in self._patterns("api_patterns"))

    def classify(self, cert: Optional[str]) -> CertificationRecord:
        normalized = self.normalize_cert(cert)
        if self.is_oem_certification(cert):
            return CertificationRecord(str(cert), normalized, FAMILY_OEM)
        if self.is_api_certification(cert):
            return CertificationRecord(str(cert), normalized, FAMILY_API, self.api_family(cert))
        return CertificationRecord(str(cert or ""), normalized, FAMILY_UNKNOWN)

    def api_family(self, cert: Optional[str]) -> Optional[str]:
        """Name of the first priority table (gasoline/diesel/ilsac) that recognises cert."""
        for family in self._api_families():
            if self._family_code(family, self.normalize_cert(cert)):
                return family.get("name")
        return None

    def _family_code(self, family: Dict[str, Any], normalized: str) -> Optional[str]:
        pattern = family.get("pattern")
        if not pattern or not normalized:
            return None
        match = re.search(pattern, normalized)
        if not match:
            return None
        code = next((group for group in match.groups() if group), None)
        if code is None:
            return None
        if family.get("name") == "ilsac":
            return f"GF{code}"
        return code

    def get_api_cert_priority(self, cert: Optional[str], family: Optional[str] = None) -> int:
        """Purpose: Score an API/ILSAC certification by recency.
        Inputs/Outputs: Input is a raw cert and optional family name; output is
            len(table) - index for the first matching table, or 0.
        Side Effects / State: None.
        Dependencies: api_families from certification-rules.json.
        Failure Modes: OEM, empty, or unknown codes score 0.
        If Removed: API upgrades cannot tell SP from SN.
        Testing Notes: "API SQ" > "API SP" > "API SN"; "GF-6A" > "GF-5"; "VW 504 00" == 0.
        """
        # ILSAC sub-grades (GF6A) fall back to their base version (GF6) when unlisted.
        normalized = self.normalize_cert(cert)
        for table in self._api_families():
            if family and table.get("name") != family:
                continue
            code = self._family_code(table, normalized)
            if not code:
                continue
            priority = table.get("priority", []) or []
            if code not in priority and table.get("name") == "ilsac":
                code = re.sub(r"[AB]$", "", code)
            if code in priority:
                return len(priority) - priority.index(code)
        return 0

    def extract_api_cert_name(self, cert: Optional[str], family: Optional[str] = None) -> Optional[str]:
        """Display name of the API/ILSAC grade inside cert: "API SP" or "ILSAC GF-6A"."""
        normalized = self.normalize_cert(cert)
        for table in self._api_families():
            if family and table.get("name") != family:
                continue
            code = self._family_code(table, normalized)
            if not code:
                continue
            if table.get("name") == "ilsac":
                return f"ILSAC GF-{code[2:]}"
            return f"API {code}"
        return None

    def detect_certification(self, text: Optional[str]) -> Optional[Dict[str, str]]:
        """Purpose: Find the first certification mentioned in free text.
        Inputs/Outputs: Input is a message; output is {"cert", "type"} or None.
        Side Effects / State: None.
        Dependencies: detect_patterns from certification-rules.json, checked in order.
        Failure Modes: None; no match returns None.
        If Removed: Users typing "API SP" are not routed to certification search.
        Testing Notes: "JASO MA2 摩托車機油" -> {"cert": "JASO MA2", "type": "JASO"}.
        """
        # Patterns are ordered by specificity in the knowledge file.
        if not text:
            return None
        for entry in self._rules().get("detect_patterns", []) or []:
            match = re.search(entry.get("pattern", ""), text, re.IGNORECASE)
            if match:
                return {
                    "cert": f"{entry.get('prefix', '')}{match.group(1).upper()}",
                    "type": entry.get("type", FAMILY_UNKNOWN),
                }
        return None

    def get_scooter_cert_score(self, cert: Optional[str]) -> int:
        """Rank motorcycle oils for scooters: JASO MB first, MA last, others between."""
        scores = ((self._rules().get("jaso", {}) or {}).get("scores", {}) or {})
        normalized = self.normalize_cert(cert, expand_alias=False)
        if "JASOMB" in normalized:
            return int(scores.get("mb", 10))
        if "JASOMA" in normalized:
            return int(scores.get("ma", 1))
        return int(scores.get("default", 5))

    # -- product filtering --------------------------------------------------

    def filter_products_by_cert(
        self,
        products: List[Product],
        cert: Optional[str],
        viscosity: Optional[str] = None,
    ) -> List[Product]:
        """Purpose: Keep products whose cert variants intersect the requested cert.
        Inputs/Outputs: Inputs are products, a cert, optional viscosity; output is the
            matching products in input order ([] when none match).
        Side Effects / State: None.
        Dependencies: cert_variants, normalize_viscosity.
        Failure Modes: Empty cert returns [].
        If Removed: Certification search has no exact-match primitive.
        Testing Notes: "BMW LL-01" matches a product listing "BMW Longlife-01".
        """
        # A search variant must appear inside one of the product's variants.
        search = self.cert_variants(cert)
        if not search:
            return []
        wanted_viscosity = normalize_viscosity(viscosity)
        matched = []
        for product in products:
            product_variants = self.cert_variants(product.cert)
            if not any(variant in candidate for variant in search for candidate in product_variants):
                continue
            if wanted_viscosity and wanted_viscosity not in normalize_viscosity(product.viscosity):
                continue
            matched.append(product)
        return matched

    def search_with_cert_upgrade(
        self,
        products: List[Product],
        cert: str,
        viscosity: Optional[str] = None,
    ) -> CertResolution:
        """Purpose: Exact search, then substitution through the compatibility table.
        Inputs/Outputs: Inputs are products, requested cert, optional viscosity;
            output is a CertResolution (fallback_type none or cert_upgrade).
        Side Effects / State: Logs the chosen upgrade at INFO.
        Dependencies: certification_compatibility from the knowledge store.
        Failure Modes: A missing compatibility table means exact matches only.
        If Removed: Declared OEM successor specs are never offered.
        Testing Notes: "VW 502 00" with no exact product resolves via "VW 504 00".
        """
        # Only explicitly declared (upgrade -> older) pairs are interchangeable.
        exact = self.filter_products_by_cert(products, cert, viscosity)
        if exact:
            return CertResolution(products=exact, used_cert=cert, requested_cert=cert, requested_viscosity=viscosity)

        requested = self.normalize_cert(cert)
        for standard, upgrades in self._store.certification_compatibility().items():
            for upgrade_cert, older in upgrades.items():
                if upgrade_cert.startswith("_") or not isinstance(older, list):
                    continue
                # Table entries may omit the brand prefix ("LONGLIFE01" for "BMW LL-01").
                if not any(requested.endswith(self.normalize_cert(item)) for item in older if item):
                    continue
                upgraded = self.filter_products_by_cert(products, upgrade_cert, viscosity)
                if upgraded:
                    logger.info("Cert upgrade (%s): %s -> %s", standard, cert, upgrade_cert)
                    return CertResolution(
                        products=upgraded,
                        used_cert=upgrade_cert,
                        fallback_type=FALLBACK_CERT_UPGRADE,
                        notice=self._notice("cert_upgrade", requested=cert, used=upgrade_cert),
                        requested_cert=cert,
                        requested_viscosity=viscosity,
                    )
        return CertResolution(requested_cert=cert, requested_viscosity=viscosity)

    def search_with_viscosity_fallback(
        self,
        products: List[Product],
        cert: str,
        viscosity: Optional[str] = None,
    ) -> CertResolution:
        """Purpose: Exact cert+viscosity, then cert only, then declared upgrades.
        Inputs/Outputs: Inputs are products, cert, optional viscosity; output is a
            CertResolution with fallback_type none/viscosity/cert_upgrade and a notice
            whenever the answer is not an exact match.
        Side Effects / State: Logs each fallback at INFO.
        Dependencies: filter_products_by_cert, search_with_cert_upgrade.
        Failure Modes: No match yields empty products plus the no-match notice.
        If Removed: OEM and unknown-family requests lose their relaxation order.
        Testing Notes: "VW 504 00" + "0W-20" relaxes to the 5W-30 product.
        """
        # Relax viscosity before substituting the certification itself.
        exact = self.filter_products_by_cert(products, cert, viscosity)
        if exact:
            return CertResolution(products=exact, used_cert=cert, requested_cert=cert, requested_viscosity=viscosity)

        if viscosity:
            relaxed = self.filter_products_by_cert(products, cert)
            if relaxed:
                logger.info("Viscosity relaxed for %s: %s not available", cert, viscosity)
                return CertResolution(
                    products=relaxed,
                    used_cert=cert,
                    fallback_type=FALLBACK_VISCOSITY,
                    notice=self._notice("viscosity_relaxed", cert=cert, viscosity=viscosity),
                    requested_cert=cert,
                    requested_viscosity=viscosity,
                )

        for candidate_viscosity in ([viscosity, None] if viscosity else [None]):
            upgraded = self.search_with_cert_upgrade(products, cert, candidate_viscosity)
            if upgraded.products:
                upgraded.requested_viscosity = viscosity
                return upgraded

        logger.info("No product for %s (viscosity=%s)", cert, viscosity)
        return CertResolution(
            fallback_type=FALLBACK_NONE,
            notice=self._notice("no_match", cert=cert),
            requested_cert=cert,
            requested_viscosity=viscosity,
        )

    def resolve_certification(
        self,
        products: List[Product],
        requested_cert: str,
        requested_viscosity: Optional[str] = None,
    ) -> CertResolution:
        """Purpose: Resolve a requested certification to available catalog products.
        Inputs/Outputs: Inputs are products, requested cert, optional viscosity; output
            is a CertResolution with products, used_cert, fallback_type, notice, strategy.
        Side Effects / State: Logs the strategy at DEBUG.
        Dependencies: classify, get_api_cert_priority, search_with_viscosity_fallback.
        Failure Modes: Never raises; no match is an empty result with a notice.
        If Removed: The engine cannot ground oil recommendations on certifications.
        Testing Notes: "API SN" upgrades to an "API SP" product; "VW 504 00" never
            upgrades to an unrelated newer OEM spec.
        """
        # OEM first: an OEM pattern wins even when the string also names an API grade.
        record = self.classify(requested_cert)
        logger.debug("Resolving %s as %s (viscosity=%s)", requested_cert, record.family, requested_viscosity)

        if record.family == FAMILY_OEM:
            result = self.search_with_viscosity_fallback(products, requested_cert, requested_viscosity)
            result.strategy = STRATEGY_OEM
            return result

        if record.family == FAMILY_API and record.api_family:
            result = self._resolve_api(products, requested_cert, requested_viscosity, record.api_family)
            if result is not None:
                return result
            result = self.search_with_viscosity_fallback(products, requested_cert, requested_viscosity)
            result.strategy = STRATEGY_API
            return result

        result = self.search_with_viscosity_fallback(products, requested_cert, requested_viscosity)
        result.strategy = STRATEGY_UNKNOWN
        return result

    def _resolve_api(
        self,
        products: List[Product],
        requested_cert: str,
        viscosity: Optional[str],
        family: str,
    ) -> Optional[CertResolution]:
        wanted_viscosity = normalize_viscosity(viscosity)
        candidates = [
            product
            for product in products
            if not wanted_viscosity or wanted_viscosity in normalize_viscosity(product.viscosity)
        ]
        scored = [
            (self.get_api_cert_priority(product.cert, family), index, product)
            for index, product in enumerate(candidates)
        ]
        scored = [item for item in scored if item[0] > 0]
        if not scored:
            return None
        scored.sort(key=lambda item: (-item[0], item[1]))

        requested_priority = self.get_api_cert_priority(requested_cert, family)
        top_priority, _, top_product = scored[0]
        if top_priority > requested_priority:
            used = self.extract_api_cert_name(top_product.cert, family) or top_product.cert
            logger.info("API upgrade: %s -> %s", requested_cert, used)
            return CertResolution(
                products=[product for priority, _, product in scored if priority >= requested_priority],
                used_cert=used,
                fallback_type=FALLBACK_CERT_UPGRADE,
                notice=self._notice("api_upgrade", requested=requested_cert, used=used),
                strategy=STRATEGY_API,
                requested_cert=requested_cert,
                requested_viscosity=viscosity,
            )

        requested = self.normalize_cert(requested_cert)
        exact = [product for _, _, product in scored if requested in self.normalize_cert(product.cert)]
        if not exact:
            return None
        return CertResolution(
            products=exact,
            used_cert=requested_cert,
            strategy=STRATEGY_API,
            requested_cert=requested_cert,
            requested_viscosity=viscosity,
        )

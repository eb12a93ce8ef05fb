"""Read-only JSON knowledge tables with lazy, cache-backed loading."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..cache import TTLCache

logger = logging.getLogger("lubebot.knowledge")

DEFAULT_KNOWLEDGE_DIR = Path(__file__).resolve().parent / "data"

VEHICLE_SPECS = "vehicle-specs"
CERTIFICATION_RULES = "certification-rules"
SEARCH_REFERENCE = "search-reference"
ADDITIVE_GUIDE = "additive-guide"
SKU_NAMES = "sku-names"
MOTORCYCLE_RULES = "motorcycle-rules"
ANTI_HALLUCINATION_RULES = "anti-hallucination-rules"
INTENT_KEYWORDS = "intent-keywords"


class KnowledgeStore:
    """Load knowledge JSON files on first use and serve them from a TTLCache."""

    def __init__(
        self,
        knowledge_dir: Optional[Path] = None,
        cache: Optional[TTLCache] = None,
        ttl: Optional[float] = None,
    ) -> None:
        self._knowledge_dir = Path(knowledge_dir) if knowledge_dir else DEFAULT_KNOWLEDGE_DIR
        self._cache = cache if cache is not None else TTLCache()
        self._ttl = ttl

    @property
    def knowledge_dir(self) -> Path:
        return self._knowledge_dir

    def load(self, name: str) -> Dict[str, Any]:
        """Purpose: Return the parsed contents of <name>.json from the knowledge dir.
        Inputs/Outputs: Input is the file stem; output is a dict (empty on failure).
        Side Effects / State: Reads the file once and stores it in the cache.
        Dependencies: TTLCache.get_or_load, json.
        Failure Modes: Missing, unreadable, or malformed files log a warning and yield
            {} which is not cached, so a fixed file is picked up on the next call.
        If Removed: Every matcher loses its tables.
        Testing Notes: Point at a temp dir without files and expect {}.
        """
        # Failed loads return None to the cache so nothing is stored.
        data = self._cache.get_or_load(("knowledge", name), lambda: self._read(name), self._ttl)
        return data if data is not None else {}

    def clear(self) -> None:
        self._cache.clear()

    def _read(self, name: str) -> Optional[Dict[str, Any]]:
        path = self._knowledge_dir / f"{name}.json"
        try:
            data = json.loads(path.read_text(encoding="utf-8-sig"))
        except FileNotFoundError:
            logger.warning("Knowledge file missing: %s", path)
            return None
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Knowledge file unreadable: %s (%s)", path, exc)
            return None
        if not isinstance(data, dict):
            logger.warning("Knowledge file is not a JSON object: %s", path)
            return None
        logger.debug("Loaded knowledge file %s", path.name)
        return data

    def vehicle_specs(self) -> Dict[str, Dict[str, List[Dict[str, Any]]]]:
        """Brand tables only; metadata keys starting with "_" are dropped."""
        data = self.load(VEHICLE_SPECS)
        return {
            brand: models
            for brand, models in data.items()
            if not brand.startswith("_") and isinstance(models, dict)
        }

    def vehicle_metadata(self) -> Dict[str, Any]:
        return self.load(VEHICLE_SPECS).get("_metadata", {}) or {}

    def certification_rules(self) -> Dict[str, Any]:
        return self.load(CERTIFICATION_RULES)

    def certification_compatibility(self) -> Dict[str, Dict[str, List[str]]]:
        table = self.search_reference().get("certification_compatibility", {}) or {}
        return {
            standard: upgrades
            for standard, upgrades in table.items()
            if not standard.startswith("_") and isinstance(upgrades, dict)
        }

    def search_reference(self) -> Dict[str, Any]:
        return self.load(SEARCH_REFERENCE)

    def symptom_guide(self) -> List[Dict[str, Any]]:
        entries = self.load(ADDITIVE_GUIDE).get("entries", [])
        return [entry for entry in entries if isinstance(entry, dict)]

    def symptom_aliases(self) -> Dict[str, List[str]]:
        return self.load(ADDITIVE_GUIDE).get("symptom_aliases", {}) or {}

    def additive_priority_rules(self) -> Dict[str, Any]:
        return self.load(ADDITIVE_GUIDE).get("priority_rules", {}) or {}

    def sku_names(self) -> Dict[str, str]:
        return {
            key.upper(): value
            for key, value in self.load(SKU_NAMES).items()
            if not key.startswith("_")
        }

    def motorcycle_rules(self) -> Dict[str, Any]:
        return self.load(MOTORCYCLE_RULES)

    def validation_rules(self) -> Dict[str, Any]:
        return self.load(ANTI_HALLUCINATION_RULES)

    def intent_keywords(self) -> Dict[str, Any]:
        return self.load(INTENT_KEYWORDS)

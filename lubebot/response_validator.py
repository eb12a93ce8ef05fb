"""Post-generation check that every SKU in a reply exists in the retrieved products."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List

from .catalog import Product
from .knowledge.knowledge_store import KnowledgeStore

logger = logging.getLogger("lubebot.validator")

DEFAULT_SKU_PATTERN = r"LM[0-9]{4,5}"
_NUMBERED_ITEM = re.compile(r"^\s*\d+[.)、]\s")
_EXCESS_NEWLINES = re.compile(r"\n{3,}")


@dataclass
class ValidationResult:
    validated_text: str
    invalid_skus: List[str] = field(default_factory=list)
    valid_skus: List[str] = field(default_factory=list)
    skipped: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.invalid_skus)


class ResponseValidator:
    """Remove fabricated part numbers from generated text."""

    def __init__(self, store: KnowledgeStore) -> None:
        self._store = store

    def _rules(self):
        return self._store.validation_rules()

    def _pattern(self) -> re.Pattern:
        pattern = (self._rules().get("product_validation", {}) or {}).get("sku_pattern") or DEFAULT_SKU_PATTERN
        return re.compile(pattern, re.IGNORECASE)

    def extract_skus(self, text: str) -> List[str]:
        """Uppercased SKUs in order of first appearance."""
        skus: List[str] = []
        for raw in self._pattern().findall(text or ""):
            sku = raw.upper() if isinstance(raw, str) else "".join(raw).upper()
            if sku not in skus:
                skus.append(sku)
        return skus

    def validate(self, text: str, products: Iterable[Product]) -> ValidationResult:
        """Purpose: Strip SKUs that are not in the retrieved product list.
        Inputs/Outputs: Inputs are the generated text and the products that grounded
            it; output is a ValidationResult.
        Side Effects / State: Logs removed SKUs at INFO.
        Dependencies: anti-hallucination-rules.json (pattern, warning, fallback).
        Failure Modes: An empty product list skips validation and returns the text.
        If Removed: Invented part numbers reach customers.
        Testing Notes: Text naming only unknown SKUs is replaced by the fallback;
            a numbered item with an unknown SKU is dropped with its indented lines.
        """
        # With no products there is nothing to validate against.
        products = list(products)
        if not products:
            return ValidationResult(validated_text=text, skipped=True)

        known = {str(product.partno).upper() for product in products if product.partno}
        extracted = self.extract_skus(text)
        valid = [sku for sku in extracted if sku in known]
        invalid = [sku for sku in extracted if sku not in known]
        if not invalid:
            return ValidationResult(validated_text=text, valid_skus=valid)

        logger.info("Removed unverified SKUs from reply: %s", ", ".join(invalid))
        rules = self._rules()
        if not valid:
            fallback = (rules.get("on_all_invalid", {}) or {}).get("response", "")
            return ValidationResult(validated_text=fallback, invalid_skus=invalid)

        cleaned = text
        for sku in invalid:
            cleaned = self._remove_sku(cleaned, sku)
        cleaned = _EXCESS_NEWLINES.sub("\n\n", cleaned).strip()
        warning = (rules.get("on_invalid_sku", {}) or {}).get("warning_message", "")
        if warning:
            cleaned = f"{warning}\n\n{cleaned}"
        return ValidationResult(validated_text=cleaned, invalid_skus=invalid, valid_skus=valid)

    def _remove_sku(self, text: str, sku: str) -> str:
        # Lines are matched on the extracted tokens so removal agrees with extraction.
        lines = text.split("\n")
        kept: List[str] = []
        dropping_item = False
        for line in lines:
            if dropping_item:
                if line.strip() and line[:1] in (" ", "\t") and not _NUMBERED_ITEM.match(line):
                    continue
                dropping_item = False
            if _NUMBERED_ITEM.match(line) and sku in self.extract_skus(line):
                dropping_item = True
                continue
            if sku in self.extract_skus(line):
                continue
            kept.append(line)
        return "\n".join(kept)

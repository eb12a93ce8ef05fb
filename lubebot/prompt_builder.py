"""Prompt assembly for the reply call.

build_prompt_sections is a pure function of the resolved intent and the grounding
result: the same inputs always produce the same sections, so the prompt can be
inspected and tested without an LLM.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .catalog import Product
from .certification_matcher import CertResolution
from .intent import ResolvedIntent
from .symptom_matcher import SymptomItem, SymptomMatch

SECTIONS_PLACEHOLDER = "{{sections}}"
MESSAGE_PLACEHOLDER = "{{message}}"
HISTORY_PLACEHOLDER = "{{history}}"
MAX_PROMPT_PRODUCTS = 12


@dataclass
class GroundingResult:
    """Catalog products and knowledge notes that the reply must stay within."""
    products: List[Product] = field(default_factory=list)
    resolution: Optional[CertResolution] = None
    symptom: Optional[SymptomMatch] = None
    jaso_cert: Optional[str] = None
    jaso_reason: str = ""
    notices: List[str] = field(default_factory=list)

    @property
    def partnos(self) -> List[str]:
        return [product.partno for product in self.products]


@dataclass(frozen=True)
class PromptSection:
    name: str
    title: str
    body: str

    def render(self) -> str:
        return f"## {self.title}\n{self.body}"


def build_prompt_sections(intent: ResolvedIntent, grounding: GroundingResult) -> List[PromptSection]:
    """Purpose: Turn the resolved request into ordered prompt sections.
    Inputs/Outputs: Inputs are a ResolvedIntent and a GroundingResult; output is a
        list of PromptSection (empty sections are omitted).
    Side Effects / State: None; pure function.
    Dependencies: ResolvedIntent, GroundingResult, SymptomMatch.
    Failure Modes: None.
    If Removed: The reply prompt loses its catalog grounding.
    Testing Notes: A scooter intent yields a "jaso" section naming JASO MB; an empty
        product list yields a "rules" section forbidding part numbers.
    """
    # Order matters: the model reads the catalog list right before the rules.
    sections = [PromptSection("question", "Customer question", intent.message.strip() or "(empty)")]

    vehicle = _vehicle_section(intent)
    if vehicle:
        sections.append(vehicle)
    if grounding.notices:
        sections.append(PromptSection("certification", "Certification notes", _bullets(grounding.notices)))
    if grounding.jaso_cert:
        sections.append(
            PromptSection(
                "jaso",
                "Motorcycle oil rule",
                " ".join(filter(None, [f"Recommend only oils carrying {grounding.jaso_cert}.", grounding.jaso_reason])),
            )
        )
    symptom = _symptom_section(grounding.symptom)
    if symptom:
        sections.append(symptom)
    if intent.needs_more_info:
        sections.append(
            PromptSection(
                "missing",
                "Ask the customer for",
                _bullets([_MISSING_LABELS.get(item, item) for item in intent.needs_more_info]),
            )
        )
    sections.append(_products_section(grounding.products))
    sections.append(_rules_section(grounding.products))
    return sections


_MISSING_LABELS: Dict[str, str] = {
    "vehicle": "the vehicle brand, model and year",
    "product_category": "which kind of product they need",
    "vehicle_type": "whether the vehicle is a car or a motorcycle",
    "transmission_type": "whether the transmission is manual or automatic",
}


def _bullets(lines: List[str]) -> str:
    return "\n".join(f"- {line}" for line in lines if line)


def _vehicle_section(intent: ResolvedIntent) -> Optional[PromptSection]:
    lines = []
    for vehicle in intent.vehicles:
        if not vehicle.matched:
            continue
        name = " ".join(part for part in (vehicle.brand, vehicle.model) if part) or vehicle.vehicle_type
        details = [vehicle.vehicle_type]
        if vehicle.vehicle_sub_type:
            details.append(vehicle.vehicle_sub_type)
        if vehicle.fuel_type:
            details.append(vehicle.fuel_type)
        line = f"{name} ({', '.join(details)})"
        if vehicle.certifications:
            line += f"; required certification: {', '.join(vehicle.certifications)}"
        if vehicle.viscosity:
            line += f"; viscosity: {vehicle.viscosity}"
        if vehicle.is_electric_vehicle:
            line += "; electric vehicle, no engine oil needed"
        lines.append(line)
    if not lines:
        return None
    return PromptSection("vehicle", "Vehicle", _bullets(lines))


def _symptom_section(symptom: Optional[SymptomMatch]) -> Optional[PromptSection]:
    if symptom is None or not symptom.matched:
        return None
    if symptom.needs_vehicle_type:
        body = "Solutions differ by vehicle type. Ask whether it is a car or a motorcycle.\n"
        body += "\n".join(_option_lines(symptom.vehicle_options))
        return PromptSection("symptom", "Symptom clarification", body)
    if symptom.needs_transmission_type:
        body = "Solutions differ by transmission. Ask whether it is manual or automatic.\n"
        body += "\n".join(_option_lines(symptom.transmission_options))
        return PromptSection("symptom", "Symptom clarification", body)
    lines = [_item_line(item) for item in symptom.items]
    if symptom.informational_only:
        lines.append("No additive fixes this; recommend an inspection at a workshop.")
    return PromptSection("symptom", "Symptom guidance", _bullets(lines))


def _option_lines(options: Dict[str, List[SymptomItem]]) -> List[str]:
    return [f"- {key}: {'; '.join(_item_line(item) for item in items)}" for key, items in options.items()]


def _item_line(item: SymptomItem) -> str:
    line = f"{item.problem}: {item.explanation}"
    if item.solutions:
        names = [f"{s.sku} {s.name}" if s.name else s.sku for s in item.solutions]
        line += f" (products: {', '.join(names)})"
    return line


def _products_section(products: List[Product]) -> PromptSection:
    if not products:
        return PromptSection("products", "Catalog products", "No catalog product matched this request.")
    lines = []
    for product in products[:MAX_PROMPT_PRODUCTS]:
        fields = [product.partno, product.title]
        fields += [value for value in (product.cert, product.viscosity, product.size, product.price) if value]
        lines.append(" | ".join(fields))
    return PromptSection("products", "Catalog products", _bullets(lines))


def _rules_section(products: List[Product]) -> PromptSection:
    if not products:
        body = "Do not mention any part number. Offer to connect the customer with customer service."
    else:
        body = (
            "Mention only part numbers from the catalog product list above. "
            "Never invent part numbers, certifications, or prices."
        )
    return PromptSection("rules", "Rules", body)


def render_prompt(sections: List[PromptSection], template: str) -> str:
    """Substitute the rendered sections into the reply template."""
    rendered = "\n\n".join(section.render() for section in sections)
    if SECTIONS_PLACEHOLDER not in template:
        return f"{template.rstrip()}\n\n{rendered}"
    return template.replace(SECTIONS_PLACEHOLDER, rendered)


def build_analysis_prompt(message: str, history_text: str, template: str) -> str:
    return template.replace(HISTORY_PLACEHOLDER, history_text.strip() or "(none)").replace(
        MESSAGE_PLACEHOLDER, message.strip()
    )

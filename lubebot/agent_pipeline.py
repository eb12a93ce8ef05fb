"""lubebot knowledge engine and chat pipeline orchestration.

Role:
    Owns the PipelineContext contract and the two step runners built on AdkAgent:
    the deterministic KnowledgeEngine (vehicle -> intent -> symptom -> queries) and
    the LubricantAssistantAgent that wraps it with the LLM and the catalog.

Pipeline data contract (fields passed across steps):
    - message, history_text: request input.
    - analysis: classifier output (an intent.Analysis variant, or None).
    - vehicle: VehicleMatch for the message.
    - intent: ResolvedIntent built once per request.
    - symptom: SymptomMatch when the request is about a complaint.
    - queries: deduplicated catalog queries.
    - grounding: products and notices the reply must stay within.
    - answer_text, validation: final reply and its SKU check.

Step contracts:
    Vehicle Matching:
        Reads message + history_text; sets vehicle.
    Intent Resolution:
        Applies keyword rules to the analysis and merges it with the vehicle.
    Symptom Matching:
        Runs only for additive or uncategorized requests; adds solution SKUs.
    Query Synthesis:
        Turns the intent into catalog queries.
    Grounding:
        Resolves certifications or JASO rules against the catalog and runs queries.
    Clarification / Generation / Validation:
        Ask for missing vehicle or transmission type, otherwise ask the LLM, then
        strip any part number not present in the grounding products.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .adk_runtime import AdkAgent, AdkStep
from .catalog import CatalogClient, Product, Query, deduplicate_by_size, run_queries
from .certification_matcher import CertificationMatcher
from .intent import Analysis, FallbackAnalysis, IntentResolver, ResolvedIntent, parse_analysis
from .knowledge.knowledge_store import KnowledgeStore
from .motorcycle_rules import MotorcycleRules
from .prompt_builder import GroundingResult, build_analysis_prompt, build_prompt_sections, render_prompt
from .prompt_loader import ANALYSIS_PROMPT, REPLY_PROMPT, load_prompts
from .query_builder import QueryBuilder
from .response_validator import ResponseValidator, ValidationResult
from .symptom_matcher import SymptomMatch, SymptomMatcher
from .vehicle_matcher import VehicleMatch, VehicleMatcher

logger = logging.getLogger("lubebot.agent")

SYMPTOM_CATEGORIES = {None, "additive"}
OIL_CATEGORY = "oil"
ADDITIVE_CATEGORY = "additive"
FULL_SYNTHETIC_SCENARIOS = {"track", "mountain"}
MAX_HISTORY_TURNS = 6

ASK_VEHICLE_TYPE_REPLY = "Is this for a car or a motorcycle? The right product is different for each."
ASK_TRANSMISSION_REPLY = "Is the transmission manual or automatic? The right product is different for each."
ASK_VEHICLE_REPLY = "Which vehicle is it for? Please share the brand, model and year."
ASK_CATEGORY_REPLY = "Which kind of product are you looking for (engine oil, additive, transmission fluid, coolant)?"
NO_LLM_REPLY = "Here are the products that match your request:"
LLM_ERROR_REPLY = "Sorry, the assistant is temporarily unavailable. Please try again shortly."


@dataclass
class PipelineContext:
    """Mutable context passed through each pipeline step."""
    message: str
    history_text: str = ""
    analysis: Optional[Analysis] = None
    vehicle: VehicleMatch = field(default_factory=VehicleMatch)
    intent: Optional[ResolvedIntent] = None
    symptom: Optional[SymptomMatch] = None
    queries: List[Query] = field(default_factory=list)
    products: List[Product] = field(default_factory=list)
    grounding: GroundingResult = field(default_factory=GroundingResult)
    answer_text: str = ""
    validation: Optional[ValidationResult] = None
    thinking_logs: List[Dict[str, str]] = field(default_factory=list)

    @property
    def notices(self) -> List[str]:
        return list(self.grounding.notices)

    @property
    def needs_clarification(self) -> bool:
        return bool(self.symptom and self.symptom.needs_clarification)

    def log(self, event: str, detail: str, status: str = "success") -> None:
        """Purpose: Append a structured step entry for API callers and debugging.
        Inputs/Outputs: Inputs are event, detail, status; no return value.
        Side Effects / State: Mutates thinking_logs.
        Dependencies: Used by every pipeline step and by AdkAgent for skips.
        Failure Modes: None; always appends.
        If Removed: /api/analyze and /api/chat lose their step trace.
        Testing Notes: Entries appear in AnalyzeResponse.thinking_logs in step order.
        """
        self.thinking_logs.append({"event": event, "detail": detail, "status": status})


def flatten_history(history: Optional[List[Dict[str, Any]]]) -> str:
    """Join the last user turns into one text block for alias matching and the classifier."""
    lines = []
    for entry in (history or [])[-MAX_HISTORY_TURNS:]:
        content = str(entry.get("content", "")).strip()
        if not content:
            continue
        role = str(entry.get("role", "user"))
        lines.append(f"{role}: {content}")
    return "\n".join(lines)


def _history_user_text(history_text: str) -> str:
    # Alias matching only looks at what the customer wrote.
    return "\n".join(
        line.split(":", 1)[1].strip() for line in history_text.splitlines() if line.startswith("user:")
    )


class KnowledgeEngine:
    """Deterministic resolution of one message into an intent and catalog queries."""

    def __init__(self, store: KnowledgeStore) -> None:
        """Purpose: Build every matcher over a shared KnowledgeStore.
        Inputs/Outputs: Input is the store; no return value.
        Side Effects / State: Constructs the engine step runner.
        Dependencies: All matcher modules.
        Failure Modes: None at init; missing tables degrade per matcher.
        If Removed: Neither endpoint can resolve messages.
        Testing Notes: Construct over the bundled knowledge data in fixtures.
        """
        self.store = store
        self.vehicle_matcher = VehicleMatcher(store)
        self.cert_matcher = CertificationMatcher(store)
        self.motorcycle_rules = MotorcycleRules(store, self.cert_matcher)
        self.symptom_matcher = SymptomMatcher(store)
        self.query_builder = QueryBuilder(store)
        self.intent_resolver = IntentResolver(store, self.vehicle_matcher, self.cert_matcher)
        self.validator = ResponseValidator(store)
        self._agent = AdkAgent(
            steps=[
                AdkStep("vehicle_matching", self._step_vehicle_matching),
                AdkStep("intent_resolution", self._step_intent_resolution),
                AdkStep("symptom_matching", self._step_symptom_matching, skip_if=self._skip_symptom),
                AdkStep("query_synthesis", self._step_query_synthesis),
            ],
            name="engine",
        )

    def analyze(
        self,
        message: str,
        history_text: str = "",
        analysis: Optional[Analysis] = None,
    ) -> PipelineContext:
        """Run the engine steps on a fresh context."""
        context = PipelineContext(message=message, history_text=history_text, analysis=analysis)
        self.run(context)
        return context

    def run(self, context: PipelineContext) -> PipelineContext:
        self._agent.run(context)
        return context

    def _step_vehicle_matching(self, context: PipelineContext) -> None:
        context.vehicle = self.vehicle_matcher.match(context.message, _history_user_text(context.history_text))
        vehicle = context.vehicle
        detail = f"{vehicle.vehicle_type} via {vehicle.match_source}"
        if vehicle.brand or vehicle.model:
            detail += f": {vehicle.brand or ''} {vehicle.model or ''}".rstrip()
        context.log("Vehicle Matching", detail, status="success" if vehicle.matched else "default")

    def _step_intent_resolution(self, context: PipelineContext) -> None:
        analysis = context.analysis if context.analysis is not None else FallbackAnalysis(reason="no_llm")
        analysis = self.intent_resolver.enhance_with_rules(analysis, context.message)
        context.analysis = analysis
        context.intent = self.intent_resolver.resolve(analysis, context.message, context.vehicle)
        intent = context.intent
        context.log(
            "Intent Resolution",
            f"{intent.kind} category={intent.product_category} certs={intent.certifications}",
        )
        logger.info(
            "intent=%s category=%s vehicle=%s missing=%s",
            intent.kind,
            intent.product_category,
            context.vehicle.match_source,
            intent.needs_more_info,
        )

    def _skip_symptom(self, context: PipelineContext) -> bool:
        return context.intent is None or context.intent.product_category not in SYMPTOM_CATEGORIES

    def _step_symptom_matching(self, context: PipelineContext) -> None:
        intent = context.intent
        vehicle = intent.primary_vehicle
        known_type = vehicle.vehicle_type if vehicle and vehicle.matched else None
        symptom = self.symptom_matcher.match(
            context.message,
            vehicle_type=known_type,
            fuel_type=vehicle.fuel_type if vehicle else None,
            transmission_type=intent.transmission_type,
        )
        context.symptom = symptom
        if not symptom.matched:
            context.log("Symptom Matching", "no symptom", status="skip")
            return

        # A recognised complaint makes this an additive request.
        if intent.product_category is None:
            intent.product_category = ADDITIVE_CATEGORY
            if "product_category" in intent.needs_more_info:
                intent.needs_more_info.remove("product_category")
        if symptom.needs_vehicle_type and "vehicle_type" not in intent.needs_more_info:
            intent.needs_more_info.append("vehicle_type")
        if symptom.needs_transmission_type and "transmission_type" not in intent.needs_more_info:
            intent.needs_more_info.append("transmission_type")
        for sku in symptom.solution_skus:
            if sku not in intent.search_keywords:
                intent.search_keywords.append(sku)
        intent.symptom_severity = intent.symptom_severity or symptom.severity
        context.log(
            "Symptom Matching",
            f"{symptom.detected_symptom or 'problem text'}: {', '.join(symptom.solution_skus) or 'clarify'}",
            status="pending" if symptom.needs_clarification else "success",
        )

    def _step_query_synthesis(self, context: PipelineContext) -> None:
        context.queries = self.query_builder.build(context.intent)
        context.log("Query Synthesis", f"{len(context.queries)} queries")

    def ground(self, context: PipelineContext, products: List[Product]) -> GroundingResult:
        """Purpose: Select the catalog products the reply may mention.
        Inputs/Outputs: Inputs are an analyzed context and the full product list;
            output is a GroundingResult (also stored on the context).
        Side Effects / State: Sets context.products/context.grounding; logs notices.
        Dependencies: CertificationMatcher.resolve_certification, MotorcycleRules,
            run_queries, additive_priority_score, deduplicate_by_size.
        Failure Modes: No matches yield an empty product list plus a notice.
        If Removed: Replies are not anchored to real catalog products.
        Testing Notes: A VW Golf oil request grounds on the VW 504 00 product; a
            scooter oil request never returns a JASO MA-only product.
        """
        # Knowledge-driven candidates first, then query hits, then ordering passes.
        intent = context.intent
        vehicle = intent.primary_vehicle if intent else None
        grounding = GroundingResult()
        candidates: List[Product] = []
        oil_like = intent is not None and intent.product_category in (None, OIL_CATEGORY)
        is_motorcycle = bool(vehicle and vehicle.is_motorcycle)
        scooter: Optional[bool] = None

        if oil_like and is_motorcycle and intent.product_category == OIL_CATEGORY:
            jaso_type = self.motorcycle_rules.get_jaso_type(vehicle)
            if jaso_type:
                scooter = jaso_type == "MB"
                grounding.jaso_cert = self.motorcycle_rules.jaso_certification(scooter)
                grounding.jaso_reason = self.motorcycle_rules.jaso_reason(scooter)
                candidates = self.motorcycle_rules.search_motorcycle_oil(products, vehicle)
            else:
                candidates = self.motorcycle_rules.filter_motorcycle_products(products, None, intent.viscosity)
            prefer_full = intent.recommend_synthetic == "full" or intent.usage_scenario in FULL_SYNTHETIC_SCENARIOS
            candidates = self.motorcycle_rules.sort_motorcycle_products(candidates, prefer_full, bool(scooter))
        elif oil_like and not is_motorcycle:
            certifications = list(intent.certifications)
            if vehicle and not certifications:
                certifications = list(vehicle.certifications)
            if certifications and not (vehicle and vehicle.is_electric_vehicle):
                resolution = self.cert_matcher.resolve_certification(
                    products, certifications[0], intent.viscosity or (vehicle.viscosity if vehicle else None)
                )
                grounding.resolution = resolution
                candidates = list(resolution.products)
                if resolution.notice:
                    grounding.notices.append(resolution.notice)

        query_hits = run_queries(products, context.queries)
        if is_motorcycle and intent is not None and intent.product_category == OIL_CATEGORY:
            query_hits = self.motorcycle_rules.filter_motorcycle_products(query_hits, scooter)
        merged = _merge_products(candidates, query_hits)

        if intent is not None and intent.product_category == ADDITIVE_CATEGORY:
            severity = intent.symptom_severity
            fuel = vehicle.fuel_type if vehicle else None
            merged = sorted(
                merged,
                key=lambda product: -self.symptom_matcher.additive_priority_score(
                    product, severity, fuel, intent.usage_scenario
                ),
            )
        merged = deduplicate_by_size(merged, prefer_large=bool(intent and intent.prefer_large_pack))
        if context.symptom is not None:
            merged = _pull_to_front(merged, context.symptom.solution_skus)

        grounding.products = merged
        grounding.symptom = context.symptom
        context.grounding = grounding
        context.products = merged
        for notice in grounding.notices:
            logger.info("notice: %s", notice)
        context.log("Grounding", f"{len(merged)} products; notices={len(grounding.notices)}")
        return grounding


def _merge_products(first: List[Product], second: List[Product]) -> List[Product]:
    merged: List[Product] = []
    seen = set()
    for product in first + second:
        if product.key in seen:
            continue
        seen.add(product.key)
        merged.append(product)
    return merged


def _pull_to_front(products: List[Product], skus: List[str]) -> List[Product]:
    if not skus:
        return products
    order = {sku: index for index, sku in enumerate(skus)}
    front = sorted((p for p in products if p.partno in order), key=lambda p: order[p.partno])
    return front + [p for p in products if p.partno not in order]


class LubricantAssistantAgent:
    """Chat pipeline: LLM analysis, engine, catalog grounding, reply, validation."""

    def __init__(
        self,
        engine: KnowledgeEngine,
        catalog: CatalogClient,
        llm: Optional[Any] = None,
        prompts_dir: Optional[Path] = None,
    ) -> None:
        """Purpose: Wire the engine, catalog and optional LLM into one step runner.
        Inputs/Outputs: Inputs are collaborators; no return value.
        Side Effects / State: Loads both prompt templates from prompts_dir.
        Dependencies: AdkAgent/AdkStep, prompt_loader, KnowledgeEngine, CatalogClient.
        Failure Modes: Missing template files raise OSError at construction.
        If Removed: /api/chat has no pipeline.
        Testing Notes: Pass a fake llm exposing analyze() and generate_text().
        """
        self._engine = engine
        self._catalog = catalog
        self._llm = llm
        self._prompts = load_prompts(prompts_dir)
        self._agent = AdkAgent(
            steps=[
                AdkStep("llm_analysis", self._step_llm_analysis, skip_if=lambda _: self._llm is None),
                AdkStep("engine", self._engine.run),
                AdkStep("grounding", self._step_grounding),
                AdkStep("clarification", self._step_clarification, skip_if=self._skip_clarification),
                AdkStep("generation", self._step_generation, skip_if=lambda context: bool(context.answer_text)),
                AdkStep("validation", self._step_validation, always_run=True),
            ],
            name="chat",
        )

    def handle_message(self, message: str, history: Optional[List[Dict[str, Any]]] = None) -> PipelineContext:
        """Run the full chat pipeline for one message and return the populated context."""
        context = PipelineContext(message=message, history_text=flatten_history(history))
        logger.info("question=%s", message)
        self._agent.run(context)
        logger.info("answer=%s", context.answer_text)
        return context

    def _step_llm_analysis(self, context: PipelineContext) -> None:
        prompt = build_analysis_prompt(context.message, context.history_text, self._prompts[ANALYSIS_PROMPT])
        try:
            raw = self._llm.analyze(prompt)
        except Exception as exc:
            logger.warning("LLM analysis failed, continuing with rules: %s", exc)
            context.log("LLM Analysis", "unavailable", status="error")
            return
        context.analysis = parse_analysis(raw)
        context.log("LLM Analysis", context.analysis.kind)

    def _step_grounding(self, context: PipelineContext) -> None:
        if context.intent is None or not _wants_products(context.intent):
            context.log("Grounding", f"not needed for {context.intent.kind if context.intent else 'unknown'}", "skip")
            return
        self._engine.ground(context, self._catalog.fetch_products())

    def _skip_clarification(self, context: PipelineContext) -> bool:
        return not (context.needs_clarification or _missing_vehicle(context))

    def _step_clarification(self, context: PipelineContext) -> None:
        symptom = context.symptom
        if symptom and symptom.needs_vehicle_type:
            context.answer_text = ASK_VEHICLE_TYPE_REPLY
        elif symptom and symptom.needs_transmission_type:
            context.answer_text = ASK_TRANSMISSION_REPLY
        else:
            context.answer_text = ASK_VEHICLE_REPLY
        context.log("Clarification", context.answer_text, status="pending")

    def _step_generation(self, context: PipelineContext) -> None:
        intent = context.intent
        fallback = (self._engine.store.validation_rules().get("on_all_invalid", {}) or {}).get("response", "")
        if self._llm is None:
            context.answer_text = _template_reply(context, fallback)
            context.log("Generation", "template reply")
            return
        sections = build_prompt_sections(intent, context.grounding)
        prompt = render_prompt(sections, self._prompts[REPLY_PROMPT])
        try:
            answer = self._llm.generate_text(prompt)
        except Exception as exc:
            logger.warning("LLM reply failed: %s", exc)
            context.answer_text = LLM_ERROR_REPLY
            context.log("Generation", "llm error", status="error")
            return
        context.answer_text = answer.strip() or _template_reply(context, fallback)
        context.log("Generation", f"{len(context.answer_text)} chars")

    def _step_validation(self, context: PipelineContext) -> None:
        context.validation = self._engine.validator.validate(context.answer_text, context.products)
        context.answer_text = context.validation.validated_text
        if context.validation.skipped:
            context.log("Validation", "no products to check", status="skip")
        else:
            context.log("Validation", f"invalid={context.validation.invalid_skus}")


def _wants_products(intent: ResolvedIntent) -> bool:
    return intent.wants_products or bool(intent.product_category)


def _missing_vehicle(context: PipelineContext) -> bool:
    return context.intent is not None and "vehicle" in context.intent.needs_more_info


def _template_reply(context: PipelineContext, fallback: str) -> str:
    intent = context.intent
    if intent is not None and "product_category" in intent.needs_more_info:
        return ASK_CATEGORY_REPLY
    products = context.products[:3]
    if not products:
        return fallback or LLM_ERROR_REPLY
    lines = [NO_LLM_REPLY]
    lines += [f"{index}. {p.partno} {p.title}" for index, p in enumerate(products, start=1)]
    lines += context.notices
    return "\n".join(lines)

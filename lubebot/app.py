from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI

from .agent_pipeline import KnowledgeEngine, LubricantAssistantAgent, flatten_history
from .cache import TTLCache
from .catalog import CatalogClient, Product
from .config import load_settings
from .gemini_client import GeminiClient
from .knowledge.knowledge_store import KnowledgeStore
from .models import (
    AnalyzeRequest,
    AnalyzeResponse,
    ChatResponse,
    HistoryMessage,
    QueryModel,
    ValidateRequest,
    ValidateResponse,
)

BASE_DIR = Path(__file__).resolve().parent

log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
log_level = getattr(logging, log_level_name, logging.INFO)
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

logging.getLogger("lubebot").setLevel(log_level)
logger = logging.getLogger("lubebot.app")

ENV_PATH = BASE_DIR / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=True)

app = FastAPI(title="lubebot Lubricant Assistant")

settings = load_settings()
store = KnowledgeStore(settings.knowledge_dir, TTLCache(), ttl=settings.knowledge_ttl)
catalog = CatalogClient(settings, TTLCache(default_ttl=settings.products_ttl))
engine = KnowledgeEngine(store)

gemini: Optional[GeminiClient] = None
if settings.gemini_api_key:
    gemini = GeminiClient(settings)
else:
    logger.warning("GEMINI_API_KEY not set; running with keyword rules and template replies")

agent = LubricantAssistantAgent(engine=engine, catalog=catalog, llm=gemini, prompts_dir=settings.prompts_dir)


def _history(messages: List[HistoryMessage]) -> List[dict]:
    return [{"role": message.role, "content": message.content} for message in messages]


@app.post("/api/analyze", response_model=AnalyzeResponse)
def analyze(request: AnalyzeRequest) -> AnalyzeResponse:
    """Purpose: Run only the deterministic engine on a message.
    Inputs/Outputs: Input is AnalyzeRequest; output is the resolved intent, vehicle,
        symptom match, and catalog queries.
    Side Effects / State: Reads knowledge tables through the shared cache.
    Dependencies: KnowledgeEngine.analyze.
    Failure Modes: None for data problems; programming errors surface as 500.
    If Removed: Query synthesis cannot be inspected without the LLM.
    Testing Notes: "Toyota Camry 機油" returns a cert query for API SP.
    """
    context = engine.analyze(request.message, flatten_history(_history(request.history)))
    return AnalyzeResponse(
        intent=context.intent.to_dict(),
        vehicle=context.vehicle.to_dict(),
        symptom=context.symptom.to_dict() if context.symptom else None,
        queries=[QueryModel(**query.to_dict()) for query in context.queries],
        thinking_logs=context.thinking_logs,
    )


@app.post("/api/chat", response_model=ChatResponse)
def chat(request: AnalyzeRequest) -> ChatResponse:
    """Purpose: Handle a chat turn through the full agent pipeline.
    Inputs/Outputs: Input is AnalyzeRequest; output is the validated reply plus the
        queries, grounding part numbers, notices, and step log.
    Side Effects / State: May fetch the catalog and call Gemini.
    Dependencies: LubricantAssistantAgent.handle_message.
    Failure Modes: LLM and catalog failures degrade inside the pipeline.
    If Removed: Core chat functionality is unavailable.
    Testing Notes: With a fake LLM naming an unknown SKU, invalid_skus lists it.
    """
    context = agent.handle_message(request.message, _history(request.history))
    validation = context.validation
    return ChatResponse(
        answer_text=context.answer_text,
        queries=[QueryModel(**query.to_dict()) for query in context.queries],
        products=[product.partno for product in context.products],
        invalid_skus=validation.invalid_skus if validation else [],
        notices=context.notices,
        thinking_logs=context.thinking_logs,
    )


@app.post("/api/validate", response_model=ValidateResponse)
def validate(request: ValidateRequest) -> ValidateResponse:
    """Check a text against an explicit list of part numbers."""
    products = [Product(partno=partno.strip().upper()) for partno in request.partnos if partno.strip()]
    result = engine.validator.validate(request.text, products)
    return ValidateResponse(validated_text=result.validated_text, invalid_skus=result.invalid_skus)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "lubebot.app:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=False,
    )

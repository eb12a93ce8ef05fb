from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class HistoryMessage(BaseModel):
    """One prior conversation turn supplied by the caller."""
    role: str = "user"
    content: str


class AnalyzeRequest(BaseModel):
    """Request payload for the engine-only and chat endpoints."""
    message: str
    history: List[HistoryMessage] = Field(default_factory=list)


class QueryModel(BaseModel):
    field: str
    value: str
    method: str
    limit: int


class AnalyzeResponse(BaseModel):
    """Deterministic engine output for one message."""
    intent: Dict[str, Any]
    vehicle: Dict[str, Any]
    symptom: Optional[Dict[str, Any]] = None
    queries: List[QueryModel]
    thinking_logs: List[Dict[str, str]]


class ChatResponse(BaseModel):
    """Response payload returned by the chat API."""
    answer_text: str
    queries: List[QueryModel]
    products: List[str] = Field(default_factory=list)
    invalid_skus: List[str] = Field(default_factory=list)
    notices: List[str] = Field(default_factory=list)
    thinking_logs: List[Dict[str, str]]


class ValidateRequest(BaseModel):
    text: str
    partnos: List[str] = Field(default_factory=list)


class ValidateResponse(BaseModel):
    validated_text: str
    invalid_skus: List[str]

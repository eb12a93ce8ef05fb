from __future__ import annotations

import logging
from typing import Dict, Optional

import google.generativeai as genai

from .config import Settings

logger = logging.getLogger("lubebot.llm")

DEFAULT_SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_NONE"},
]

ANALYSIS_TEMPERATURE = 0.0
REPLY_TEMPERATURE = 0.3


class GeminiClient:
    """Gemini adapter: one classification call and one reply call per request."""

    def __init__(self, settings: Settings) -> None:
        """Purpose: Configure the Gemini SDK for the configured model.
        Inputs/Outputs: Input is Settings; no return value.
        Side Effects / State: Sets the SDK's global API key and caches model objects.
        Dependencies: google.generativeai, Settings.gemini_api_key/gemini_model.
        Failure Modes: Raises ValueError when the API key or model name is missing.
        If Removed: The app runs with keyword rules only and replies from templates.
        Testing Notes: Settings without a key must raise ValueError.
        """
        if not settings.gemini_api_key:
            raise ValueError("GEMINI_API_KEY is required")
        self._default_model = _normalize_model_name(settings.gemini_model)
        if not self._default_model:
            raise ValueError("GEMINI_MODEL is required")
        genai.configure(api_key=settings.gemini_api_key)
        self._models: Dict[str, genai.GenerativeModel] = {}

    def _model(self, name: Optional[str]) -> genai.GenerativeModel:
        model_name = _normalize_model_name(name) if name else self._default_model
        if model_name not in self._models:
            self._models[model_name] = genai.GenerativeModel(model_name)
        return self._models[model_name]

    def generate_text(
        self,
        prompt: str,
        model: Optional[str] = None,
        temperature: float = REPLY_TEMPERATURE,
        max_output_tokens: int = 2048,
        json_mode: bool = False,
    ) -> str:
        """Send one prompt and return the stripped response text ("" when blocked)."""
        generation_config = {"temperature": temperature, "max_output_tokens": max_output_tokens}
        if json_mode:
            generation_config["response_mime_type"] = "application/json"
        response = self._model(model).generate_content(
            prompt,
            generation_config=generation_config,
            safety_settings=DEFAULT_SAFETY_SETTINGS,
        )
        try:
            text: Optional[str] = response.text
        except ValueError:
            # The SDK raises when the candidate has no text part (safety block).
            logger.warning("Gemini returned no text part")
            return ""
        return (text or "").strip()

    def analyze(self, prompt: str) -> str:
        """Classifier call; the raw text is parsed by intent.parse_analysis."""
        return self.generate_text(prompt, temperature=ANALYSIS_TEMPERATURE, json_mode=True)


def _normalize_model_name(name: Optional[str]) -> str:
    """Strip whitespace and a leading "models/" prefix."""
    if not name:
        return ""
    cleaned = name.strip()
    if cleaned.startswith("models/"):
        return cleaned.split("/", 1)[1]
    return cleaned

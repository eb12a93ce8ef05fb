"""Gemini adapter without network access."""

from dataclasses import replace

import pytest

import lubebot.gemini_client as gemini_module
from lubebot.config import load_settings
from lubebot.gemini_client import ANALYSIS_TEMPERATURE, GeminiClient


class FakeResponse:
    def __init__(self, text=None, blocked=False):
        self._text = text
        self._blocked = blocked

    @property
    def text(self):
        if self._blocked:
            raise ValueError("no text part")
        return self._text


class FakeModel:
    created = []

    def __init__(self, name):
        self.name = name
        self.calls = []
        self.response = FakeResponse("  hello  ")
        FakeModel.created.append(self)

    def generate_content(self, prompt, generation_config=None, safety_settings=None):
        self.calls.append((prompt, generation_config))
        return self.response


@pytest.fixture
def fake_genai(monkeypatch):
    FakeModel.created = []
    monkeypatch.setattr(gemini_module.genai, "configure", lambda **kwargs: None)
    monkeypatch.setattr(gemini_module.genai, "GenerativeModel", FakeModel)
    return FakeModel


def make_settings(**overrides):
    values = dict(gemini_api_key="test-key", gemini_model="models/gemini-2.5-flash")
    values.update(overrides)
    return replace(load_settings(), **values)


class TestConstruction:
    def test_missing_key(self):
        with pytest.raises(ValueError):
            GeminiClient(make_settings(gemini_api_key=""))

    def test_missing_model(self, fake_genai):
        with pytest.raises(ValueError):
            GeminiClient(make_settings(gemini_model="  "))


class TestGenerate:
    def test_text_is_stripped_and_model_cached(self, fake_genai):
        client = GeminiClient(make_settings())
        assert client.generate_text("hi") == "hello"
        assert client.generate_text("again") == "hello"
        assert len(fake_genai.created) == 1
        assert fake_genai.created[0].name == "gemini-2.5-flash"

    def test_analyze_uses_json_mode(self, fake_genai):
        client = GeminiClient(make_settings())
        client.analyze("classify")
        _, config = fake_genai.created[0].calls[0]
        assert config["response_mime_type"] == "application/json"
        assert config["temperature"] == ANALYSIS_TEMPERATURE

    def test_blocked_response_is_empty(self, fake_genai):
        client = GeminiClient(make_settings())
        client.generate_text("warm up")
        fake_genai.created[0].response = FakeResponse(blocked=True)
        assert client.generate_text("blocked") == ""

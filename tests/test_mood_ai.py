"""Tests for the mood analysis service and endpoint."""
import json

import httpx
import pytest

from calmora.core.config import settings
from calmora.services import mood_ai
from calmora.services.ai_json import extract_json


def _openai_reply(content: str, status: int = 200) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["authorization"] == "Bearer sk-test"
        body = json.loads(request.content)
        assert body["messages"][0]["role"] == "system"
        assert body["max_completion_tokens"] == 300
        return httpx.Response(status, json={"choices": [{"message": {"content": content}}]})
    return httpx.MockTransport(handler)


@pytest.fixture
def openai_key(monkeypatch):
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")


class TestExtractJson:
    def test_block_inside_prose(self):
        assert extract_json('Sure! ```json\n{"a": 1}\n``` done') == {"a": 1}

    def test_garbage(self):
        assert extract_json("no json here") is None
        assert extract_json("") is None
        assert extract_json("[1, 2]") is None


class TestAnalyzeMood:
    async def test_parses_model_json(self, openai_key):
        content = ('Here you go: {"mood": "anxious", "confidence": 82, "descriptors": ["tense"], '
                   '"supportive_message": "Breathe slowly.", "secondary_emotions": ["worried"]}')
        out = await mood_ai.analyze_mood("exam tomorrow", transport=_openai_reply(content))
        assert out.mood == "anxious"
        assert out.confidence == 82
        assert out.fallback is False

    async def test_unparsable_reply_falls_back(self, openai_key):
        out = await mood_ai.analyze_mood("hmm", transport=_openai_reply("I feel you"))
        assert out.fallback is True
        assert out.mood == "calm"
        assert out.confidence == 50

    async def test_unknown_mood_falls_back(self, openai_key):
        content = '{"mood": "sleepy", "confidence": 10, "supportive_message": "ok"}'
        out = await mood_ai.analyze_mood("zzz", transport=_openai_reply(content))
        assert out.fallback is True

    async def test_http_error_falls_back(self, openai_key):
        out = await mood_ai.analyze_mood("x", transport=_openai_reply("{}", status=500))
        assert out.fallback is True

    async def test_no_key_falls_back(self, monkeypatch):
        monkeypatch.setattr(settings, "OPENAI_API_KEY", None)
        out = await mood_ai.analyze_mood("x")
        assert out.model_dump() == mood_ai.FALLBACK_MOOD

    def test_user_prompt_default_context(self):
        assert mood_ai.build_user_prompt("hi") == 'Text: "hi"\nContext: General mood check'


class TestMoodEndpoint:
    async def test_requires_auth(self, client):
        r = await client.post("/ai/mood", json={"text": "hello"})
        assert r.status_code == 401

    async def test_empty_text_rejected(self, client, register_and_login):
        headers = await register_and_login()
        r = await client.post("/ai/mood", headers=headers, json={"text": ""})
        assert r.status_code == 422

    async def test_returns_analysis(self, client, register_and_login, monkeypatch):
        headers = await register_and_login()

        async def _fake(text, context=None):
            return mood_ai.fallback_mood()
        monkeypatch.setattr("calmora.api.v1.ai.analyze_mood", _fake)
        r = await client.post("/ai/mood", headers=headers, json={"text": "long day"})
        assert r.status_code == 200
        assert r.json()["fallback"] is True

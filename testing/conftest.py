"""Shared fixtures: in-memory database, controllable cache clock, fake Gemini."""

import json
from typing import Any, Callable, Dict, List

import httpx
import pytest

from kardia_engine.cache.store import InMemoryCacheStore
from kardia_engine.db import create_db_engine, create_session_factory, init_db
from kardia_engine.llm.gemini import GeminiLLMClient


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def reply_json(*paragraphs: str) -> str:
    return json.dumps({
        "reply_components": [{"kind": "paragraph", "content": p} for p in paragraphs]
    })


def gemini_envelope(text: str) -> Dict[str, Any]:
    return {
        "candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}],
        "usageMetadata": {"promptTokenCount": 12, "candidatesTokenCount": 7},
    }


class FakeGemini:
    """
    Records generateContent calls and answers with queued model texts.

    The last queued text is repeated once the queue runs out.
    """

    def __init__(self, *texts: str):
        self.texts: List[str] = list(texts) or [reply_json("Hello from the model.")]
        self.requests: List[Dict[str, Any]] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, json={"name": "models/test-model"})
        self.requests.append(json.loads(request.content))
        text = self.texts.pop(0) if len(self.texts) > 1 else self.texts[0]
        return httpx.Response(200, json=gemini_envelope(text))


def make_gemini_client(handler: Callable, **overrides) -> GeminiLLMClient:
    options = dict(
        base_url="https://gemini.test/v1beta",
        model="test-model",
        api_key="test-key",
        retry_count=2,
        retry_backoff_seconds=0,
        transport=httpx.MockTransport(handler),
    )
    options.update(overrides)
    return GeminiLLMClient(**options)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return InMemoryCacheStore(clock=clock)


@pytest.fixture
def db():
    engine = create_db_engine("sqlite://")
    init_db(engine)
    session = create_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()

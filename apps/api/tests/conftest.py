"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database, recreated for each test
- Fake AI provider and a zero-delay extraction engine
- HTTPX AsyncClient wired to the test session and engine
- HMAC signing helper for webhook bodies
"""
import json
import os
from typing import AsyncGenerator, Generator

# Must be set before the app (and its settings) are imported
os.environ["DATABASE_URL"] = os.environ.get("TEST_DATABASE_URL", "sqlite://")
os.environ["TESTING"] = "1"

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

import reconciler.db.models  # noqa: F401
from reconciler.core.config import settings
from reconciler.core.deps import get_db, get_extraction_engine
from reconciler.core.retry import RetryPolicy
from reconciler.core.security import compute_hmac_signature
from reconciler.db.base import Base
from reconciler.db.session import SessionLocal, engine
from reconciler.main import app
from reconciler.services.ai_provider import AIProvider, ChatResponse, ProviderRequest
from reconciler.services.extraction_service import ExtractionEngine

CRM_SECRET = "crm-test-secret"


# =============================================================================
# Fake AI provider
# =============================================================================

class FakeProvider(AIProvider):
    """
    Scripted provider.

    Each call consumes the next scripted item; the last item repeats once the
    script runs out. Exceptions in the script are raised, strings are
    returned as the response content.
    """

    default_model = "fake-model"

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls: list[list] = []

    def build_request(self, messages, model, temperature, max_tokens, json_mode) -> ProviderRequest:
        return ProviderRequest(url="https://ai.example.test/v1/chat", body={"model": model})

    def parse_response(self, data: dict, model: str) -> ChatResponse:
        return ChatResponse(data["content"], 10, 20, 30, model)

    async def chat(
        self,
        messages,
        model=None,
        temperature=0.0,
        max_tokens=2000,
        json_mode=False,
    ) -> ChatResponse:
        self.calls.append(messages)
        if not self.responses:
            raise AssertionError("FakeProvider has no scripted response")
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, BaseException):
            raise item
        return self.parse_response({"content": item}, model or self.default_model)


def http_status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://ai.example.test/v1/chat")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"status {status}", request=request, response=response)


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Fresh schema per test.

    Application code commits and rolls back on its own, so each test gets
    newly created tables instead of a wrapping transaction.
    """
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


# =============================================================================
# Extraction Fixtures
# =============================================================================

@pytest.fixture
def extraction_payload() -> dict:
    return {
        "name": {"value": "Jane Doe", "confidence": 0.92},
        "email": {"value": "Jane.Doe@Example.com", "confidence": 0.81},
        "property_type": {"value": "single family", "confidence": 0.88},
        "loan_type": {"value": "FHA", "confidence": 0.4},
        "timeline": {"value": "3 months", "confidence": 0.7},
        "lead_temperature": "warm",
        "concerns": ["interest rates"],
        "interested_properties": ["12 Oak St"],
        "requested_actions": ["schedule showing"],
        "summary": "Caller is looking for a single family home within three months.",
        "sentiment_score": 0.4,
        "qualification_score": 72,
    }


@pytest.fixture
def fake_provider(extraction_payload) -> FakeProvider:
    return FakeProvider([json.dumps(extraction_payload)])


@pytest.fixture
def zero_delay_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=4, base_delay=0, max_delay=0, jitter=0)


@pytest.fixture
def make_engine(zero_delay_policy):
    """Build an engine over a scripted provider: make_engine([...]) -> (engine, provider)."""

    def _make(responses, **kwargs) -> tuple[ExtractionEngine, FakeProvider]:
        provider = FakeProvider(responses)
        kwargs.setdefault("retry_policy", zero_delay_policy)
        return ExtractionEngine(provider, **kwargs), provider

    return _make


@pytest.fixture
def status_error():
    """Factory for httpx.HTTPStatusError with a given status code."""
    return http_status_error


@pytest.fixture
def extraction_engine(fake_provider, zero_delay_policy) -> ExtractionEngine:
    return ExtractionEngine(
        fake_provider,
        zero_delay_policy,
        max_transcript_chars=2000,
        min_confidence=0.5,
    )


# =============================================================================
# HTTP Client Fixtures
# =============================================================================

@pytest.fixture
def crm_secret(monkeypatch) -> str:
    monkeypatch.setattr(settings, "CRM_WEBHOOK_SECRET", CRM_SECRET)
    return CRM_SECRET


@pytest.fixture
def sign():
    """Return (body_bytes, signature_hex) for a JSON payload."""

    def _sign(payload: dict, secret: str = CRM_SECRET) -> tuple[bytes, str]:
        body = json.dumps(payload).encode("utf-8")
        return body, compute_hmac_signature(body, secret)

    return _sign


@pytest.fixture
async def client(db, extraction_engine) -> AsyncGenerator[AsyncClient, None]:
    """Async client sharing the test session and the fake extraction engine."""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_extraction_engine] = lambda: extraction_engine

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()

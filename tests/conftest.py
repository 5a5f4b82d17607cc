import asyncio
import json
import os

# Every test runs against a private in-memory database
os.environ["DATABASE_URL"] = "sqlite://"

import pytest

import models  # noqa: F401  registers the tables on Base
from database import Base, SessionLocal, engine


COMPLETE_RESPONSE = json.dumps({
    "summary": "Solid income with room to save more.",
    "budgetAllocations": [
        {"category": "Rent / Mortgage", "amount": 1000, "percentage": 50, "priority": 1, "description": "Housing"},
        {"category": "Groceries", "amount": 400, "percentage": 20, "priority": 2, "description": "Food"},
        {"category": "Emergency Fund", "amount": 600, "percentage": 30, "priority": 3, "description": "Safety net"},
    ],
    "priorities": [{"rank": 1, "category": "Emergency Fund", "reason": "No buffer", "action": "Save 600 a month"}],
    "riskAssessment": {"level": "Moderate", "factors": ["No emergency fund"], "mitigation": "Build savings"},
    "timeline": {"emergencyFund": "6 months"},
    "recommendations": ["Automate savings on payday"],
})

PARTIAL_RESPONSE = '```json\n{"summary": "ok"}\n```'


class FakeGenerator:
    """Stands in for GeminiService.generate_json."""

    def __init__(self, responses=None, error=None, delay=0.0):
        self.responses = list(responses or [COMPLETE_RESPONSE])
        self.error = error
        self.delay = delay
        self.calls = []

    async def generate_json(self, prompt, **kwargs):
        self.calls.append({"prompt": prompt, **kwargs})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def fake_generator():
    return FakeGenerator()


@pytest.fixture
def controller(db_session, fake_generator):
    from services.analysis_controller import AnalysisController

    return AnalysisController(generator=fake_generator, session_factory=SessionLocal, tolerance_pct=1.0)


@pytest.fixture
def client(controller):
    from fastapi.testclient import TestClient

    from main import app
    from services.analysis_controller import get_analysis_controller

    app.dependency_overrides[get_analysis_controller] = lambda: controller
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_generator():
    return FakeGenerator


@pytest.fixture
def partial_response():
    return PARTIAL_RESPONSE

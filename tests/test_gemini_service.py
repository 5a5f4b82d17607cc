import asyncio
from types import SimpleNamespace

import pytest

from services import gemini_service
from services.errors import ExternalServiceError, ValidationError


class FakeModel:
    instances = []
    delay = 0.0
    error = None

    def __init__(self, model_name, safety_settings=None, system_instruction=None):
        self.model_name = model_name
        self.system_instruction = system_instruction
        self.contents = None
        self.generation_config = None
        FakeModel.instances.append(self)

    async def generate_content_async(self, contents, generation_config=None):
        self.contents = contents
        self.generation_config = generation_config
        if FakeModel.delay:
            await asyncio.sleep(FakeModel.delay)
        if FakeModel.error is not None:
            raise FakeModel.error
        return SimpleNamespace(text='{"summary": "ok"}')


@pytest.fixture
def service(monkeypatch):
    FakeModel.instances = []
    FakeModel.delay = 0.0
    FakeModel.error = None
    monkeypatch.setattr(gemini_service.genai, "configure", lambda **kwargs: None)
    monkeypatch.setattr(gemini_service.genai, "GenerativeModel", FakeModel)
    monkeypatch.setenv("GEMINI_MAX_DOCUMENT_BYTES", "1024")
    monkeypatch.setenv("GEMINI_TEXT_TIMEOUT_SECONDS", "0.05")
    monkeypatch.setenv("GEMINI_DOCUMENT_TIMEOUT_SECONDS", "0.5")
    return gemini_service.GeminiService(api_key="test-key", model_name="gemini-test")


def test_missing_api_key_is_rejected(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)

    with pytest.raises(ValueError):
        gemini_service.GeminiService()


def test_text_prompt_requests_json(service):
    text = asyncio.run(service.generate_json("Plan my budget", system_instruction="Be precise", temperature=0.1, max_output_tokens=500))

    model = FakeModel.instances[-1]
    assert text == '{"summary": "ok"}'
    assert model.model_name == "gemini-test"
    assert model.system_instruction == "Be precise"
    assert model.contents == ["Plan my budget"]
    assert model.generation_config == {
        "response_mime_type": "application/json",
        "temperature": 0.1,
        "max_output_tokens": 500,
    }


def test_document_is_sent_inline_before_prompt(service):
    asyncio.run(service.generate_json("Summarise", document=b"%PDF-1.4 data"))

    contents = FakeModel.instances[-1].contents
    assert contents[0] == {"mime_type": "application/pdf", "data": b"%PDF-1.4 data"}
    assert contents[1] == "Summarise"


def test_empty_document_is_a_validation_error(service):
    with pytest.raises(ValidationError):
        asyncio.run(service.generate_json("Summarise", document=b""))

    assert FakeModel.instances == []


def test_oversized_document_fails_before_any_call(service):
    with pytest.raises(ExternalServiceError, match="byte limit"):
        asyncio.run(service.generate_json("Summarise", document=b"x" * 2048))

    assert FakeModel.instances == []


def test_text_timeout_becomes_external_service_error(service):
    FakeModel.delay = 0.2

    with pytest.raises(ExternalServiceError, match="timed out"):
        asyncio.run(service.generate_json("Plan my budget"))


def test_documents_get_the_longer_timeout(service):
    FakeModel.delay = 0.2

    text = asyncio.run(service.generate_json("Summarise", document=b"%PDF"))

    assert text == '{"summary": "ok"}'


def test_sdk_errors_become_external_service_errors(service):
    FakeModel.error = RuntimeError("429 Resource has been exhausted")

    with pytest.raises(ExternalServiceError, match="exhausted") as excinfo:
        asyncio.run(service.generate_json("Plan my budget"))

    assert isinstance(excinfo.value.__cause__, RuntimeError)

from __future__ import annotations

import asyncio

import pytest
from google.api_core import exceptions as google_exceptions

from utilityrates.advisory import AdvisoryConfigurationError, GeminiAdvisoryClient
from utilityrates.config import AdvisoryConfig, EngineConfig
from utilityrates.orchestrator import Orchestrator
from utilityrates.types import DETERMINISTIC, EnterpriseSnapshot

FAST = EngineConfig(advisory=AdvisoryConfig(timeout_seconds=0.5))


class FakeResponse:
    def __init__(self, text: str | None) -> None:
        self._text = text

    @property
    def text(self) -> str:
        if self._text is None:
            raise ValueError("candidate was blocked")
        return self._text


class FakeModel:
    """Stands in for genai.GenerativeModel."""

    def __init__(self, text: str | None = "Hold the rate at $42.", error: Exception | None = None) -> None:
        self.text = text
        self.error = error
        self.calls = 0
        self.prompts: list[str] = []

    async def generate_content_async(self, prompt: str) -> FakeResponse:
        self.calls += 1
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return FakeResponse(self.text)


def _client(model: FakeModel) -> GeminiAdvisoryClient:
    client = GeminiAdvisoryClient(api_key="test-key")
    client._model = model
    return client


def _snapshot() -> EnterpriseSnapshot:
    return EnterpriseSnapshot(
        name="Water Enterprise",
        customer_count=1_000,
        total_budget=100_000.0,
        total_revenue=120_000.0,
        total_expenses=100_000.0,
        year_to_date_spending=50_000.0,
        required_rate=40.0,
    )


def _compliance_runs(orch: Orchestrator, times: int):
    async def scenario():
        return [await orch.check_compliance(_snapshot()) for _ in range(times)]

    return asyncio.run(scenario())


def test_ask_text_returns_model_text() -> None:
    model = FakeModel()
    response = asyncio.run(_client(model).ask_text(_snapshot(), "How are reserves?"))
    assert response.ok
    assert response.text == "Hold the rate at $42."
    assert "Water Enterprise" in model.prompts[0]
    assert model.prompts[0].endswith("How are reserves?")


@pytest.mark.parametrize("text", [None, "", "   "])
def test_blocked_or_empty_response_is_failure(text) -> None:
    response = asyncio.run(_client(FakeModel(text=text)).ask_text(_snapshot(), "prompt"))
    assert not response.ok
    assert response.error


@pytest.mark.parametrize(
    "error",
    [
        google_exceptions.PermissionDenied("API key not valid"),
        google_exceptions.Unauthenticated("missing credentials"),
        google_exceptions.InvalidArgument("API key not valid. Please pass a valid API key."),
    ],
)
def test_rejected_credentials_raise_configuration_error(error) -> None:
    with pytest.raises(AdvisoryConfigurationError):
        asyncio.run(_client(FakeModel(error=error)).ask_text(_snapshot(), "prompt"))


def test_rejected_key_disables_advisory_after_one_call() -> None:
    model = FakeModel(error=google_exceptions.PermissionDenied("API key not valid"))
    orch = Orchestrator(FAST, _client(model))
    results = _compliance_runs(orch, 3)
    assert all(r.method == DETERMINISTIC and r.success for r in results)
    assert model.calls == 1
    assert not orch.advisory_available


def test_other_bad_request_keeps_client_enabled() -> None:
    model = FakeModel(error=google_exceptions.InvalidArgument("Request payload size exceeds the limit"))
    orch = Orchestrator(FAST, _client(model))
    results = _compliance_runs(orch, 2)
    assert all(r.method == DETERMINISTIC for r in results)
    assert model.calls == 2
    assert orch.advisory_available


def test_from_env_requires_key(monkeypatch) -> None:
    config = AdvisoryConfig()
    monkeypatch.delenv(config.api_key_env, raising=False)
    assert GeminiAdvisoryClient.from_env(config) is None

    monkeypatch.setenv(config.api_key_env, "abc123")
    client = GeminiAdvisoryClient.from_env(config)
    assert client is not None
    assert client.api_key == "abc123"
    assert client.model_name == config.model
    assert GeminiAdvisoryClient.from_env(AdvisoryConfig(enabled=False)) is None

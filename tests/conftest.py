"""Shared fixtures for tests."""

import asyncio
import os
from dataclasses import replace
from typing import Callable, Optional, Union

import pytest

from mermaid_stream.config import GenerationSettings, ModelProvider, get_ollama_base_url
from mermaid_stream.persistence import InMemoryArtifactStore
from mermaid_stream.prompts import CompiledPrompt
from mermaid_stream.registry import get_default_registry
from mermaid_stream.service import DiagramService
from mermaid_stream.validator import StructuralValidator


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (may require external services)"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow running"
    )


# ============================================================================
# Environment Detection Fixtures
# ============================================================================

@pytest.fixture(scope="session")
def ollama_available() -> bool:
    """Check if Ollama server is available."""
    import httpx

    base_url = get_ollama_base_url().replace("/v1", "")
    try:
        response = httpx.get(f"{base_url}/api/tags", timeout=5.0)
        return response.status_code == 200
    except httpx.HTTPError:
        return False


@pytest.fixture(scope="session")
def openai_available() -> bool:
    """Check if OpenAI API key is configured."""
    api_key = os.environ.get("OPENAI_API_KEY", "")
    return api_key.startswith("sk-") and len(api_key) > 20


@pytest.fixture(scope="session")
def current_provider() -> ModelProvider:
    """Get the current model provider from environment."""
    return ModelProvider.from_env()


@pytest.fixture
def require_ollama(ollama_available):
    """Skip test if Ollama is not available."""
    if not ollama_available:
        pytest.skip("Ollama server not available")


@pytest.fixture
def require_openai(openai_available):
    """Skip test if OpenAI is not configured."""
    if not openai_available:
        pytest.skip("OpenAI API key not configured")


@pytest.fixture
def require_llm(ollama_available, openai_available, current_provider):
    """Skip test if no LLM provider is available."""
    if current_provider == ModelProvider.OLLAMA and not ollama_available:
        pytest.skip("Ollama server not available")
    if current_provider == ModelProvider.OPENAI and not openai_available:
        pytest.skip("OpenAI API key not configured")


# ============================================================================
# Fake Provider
# ============================================================================

Script = list[Union[str, BaseException, float]]


class FakeTokenStream:
    """Replays scripted deltas, one script per call.

    A float in a script sleeps that many seconds; an exception is raised.
    Every prompt received is recorded in ``prompts``.
    """

    def __init__(self, *scripts: Script):
        self.scripts = list(scripts)
        self.prompts: list[CompiledPrompt] = []
        self.closed = 0
        self.consumed = 0

    async def __call__(self, prompt: CompiledPrompt):
        self.prompts.append(prompt)
        script = self.scripts.pop(0) if self.scripts else []
        try:
            for item in script:
                if isinstance(item, BaseException):
                    raise item
                if isinstance(item, float):
                    await asyncio.sleep(item)
                    continue
                self.consumed += 1
                yield item
        finally:
            self.closed += 1


def chunked(text: str, size: int = 7) -> list[str]:
    """Split text into fixed-size deltas, as a provider would."""
    return [text[i:i + size] for i in range(0, len(text), size)]


def fenced(body: str, before: str = "Here is your diagram:\n\n", after: str = "\n\nLet me know if you want changes.") -> str:
    return f"{before}```mermaid\n{body}\n```{after}"


@pytest.fixture
def fake_stream() -> Callable[..., FakeTokenStream]:
    """Factory for scripted token streams."""
    return FakeTokenStream


@pytest.fixture
def chunk() -> Callable[..., list[str]]:
    return chunked


@pytest.fixture
def fence() -> Callable[..., str]:
    return fenced


# ============================================================================
# Pipeline Fixtures
# ============================================================================

@pytest.fixture(scope="session")
def registry():
    return get_default_registry()


@pytest.fixture
def flowchart(registry):
    return registry.resolve("flowchart")


@pytest.fixture
def settings() -> GenerationSettings:
    """Settings with every delay and backoff set to zero."""
    return replace(
        GenerationSettings().without_delays(),
        persist_backoff=0.0,
        persist_max_backoff=0.0,
        request_timeout=5.0,
    )


@pytest.fixture
def store() -> InMemoryArtifactStore:
    """Store with one user holding five generations and one empty project."""
    s = InMemoryArtifactStore()
    s.add_user("user-1", quota_balance=5000)
    s.add_project("proj-1", owner_id="user-1", diagram_type="flowchart")
    return s


@pytest.fixture
def make_service(store, settings, registry):
    """Factory building a DiagramService around a fake token stream."""
    def _make(stream: FakeTokenStream, validator=None, store_override: Optional[InMemoryArtifactStore] = None,
              **overrides) -> DiagramService:
        return DiagramService(
            store=store_override if store_override is not None else store,
            token_stream=stream,
            validator=validator or StructuralValidator(),
            registry=registry,
            settings=replace(settings, **overrides),
        )
    return _make

"""Root pytest fixtures for ai-shield-python tests."""

from __future__ import annotations

import asyncio
import io
from collections import deque
from typing import Any

import pytest

from ai_shield.client import ContentValidator, GenerationClient
from ai_shield.telemetry import LogLevel, ShieldLogger, clear_log_context
from ai_shield.types import (
    GenerationMetadata,
    GenerationRequest,
    GenerationResult,
    UsageStats,
    ValidationResult,
)

DEFAULT_CONTENT = (
    "Tonight's total lunar eclipse is visible across the Americas, "
    "with totality lasting just over an hour."
)


class FakeClock:
    """Manually advanced clock in seconds."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_result(content: str = DEFAULT_CONTENT, tokens: int = 100, model: str = "test-model") -> GenerationResult:
    return GenerationResult(
        content=content,
        metadata=GenerationMetadata(model=model, tokens=tokens, confidence=0.9),
    )


class FakeClient(GenerationClient):
    """Scripted generation client.

    Queued outcomes are returned (or raised) in order; once the queue is
    empty every call returns a default result. When ``gate`` is set each call
    waits on it before answering.
    """

    def __init__(self, *outcomes: Any, tokens: int = 100) -> None:
        self.outcomes: deque[Any] = deque(outcomes)
        self.tokens = tokens
        self.calls = 0
        self.requests: list[GenerationRequest] = []
        self.gate: asyncio.Event | None = None
        self.available = True
        self.closed = False
        self._validator = ContentValidator()

    def queue(self, *outcomes: Any) -> None:
        self.outcomes.extend(outcomes)

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        self.calls += 1
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        outcome = self.outcomes.popleft() if self.outcomes else make_result(tokens=self.tokens)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def is_available(self) -> bool:
        return self.available

    async def get_usage_stats(self) -> UsageStats:
        return UsageStats(requests_today=self.calls, tokens_used=self.calls * self.tokens)

    def validate_content(self, content: str) -> ValidationResult:
        return self._validator.validate(content)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def client_factory():
    """FakeClient constructor, for tests that script outcomes up front."""
    return FakeClient


@pytest.fixture
def result_factory():
    """Factory for GenerationResult values."""
    return make_result


@pytest.fixture
def request_factory():
    """Factory for GenerationRequest values with distinct options per call site."""

    def _make(prompt: str = "Describe tonight's eclipse", **options: Any) -> GenerationRequest:
        options.setdefault("max_tokens", 500)
        return GenerationRequest.of(prompt, **options)

    return _make


@pytest.fixture
def log_stream():
    """Capture ai_shield log output as JSON lines."""
    stream = io.StringIO()
    ShieldLogger.configure(level=LogLevel.DEBUG, format="json", stream=stream)
    yield stream
    clear_log_context()
    ShieldLogger.configure(level=LogLevel.INFO, format="text")

import pytest

from deepresearch.config import AISettings, AppSettings, WebSearchSettings
from deepresearch.limiter import ConcurrencyBudget
from deepresearch.research import ResearchContext
from tests.fakes import EventRecorder, FakeLLMClient, FakeWebSearch


def make_settings(concurrency_limit: int = 2, **overrides) -> AppSettings:
    settings = AppSettings(
        ai=AISettings(provider="openai-compatible", api_key="test-key", api_base="http://llm.test/v1", model="test-model"),
        web_search=WebSearchSettings(provider="tavily", api_key="tvly-test", concurrency_limit=concurrency_limit),
    )
    if overrides:
        settings = settings.model_copy(update=overrides)
    return settings


@pytest.fixture
def context_factory():
    def _factory(
        *,
        llm: FakeLLMClient | None = None,
        web_search: FakeWebSearch | None = None,
        concurrency_limit: int = 2,
        budget: ConcurrencyBudget | None = None,
    ) -> ResearchContext:
        return ResearchContext(
            llm=llm or FakeLLMClient(),
            web_search=web_search or FakeWebSearch(),
            settings=make_settings(concurrency_limit=concurrency_limit),
            budget=budget,
            # Character counts keep truncation offline.
            count_tokens=len,
        )

    return _factory


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()

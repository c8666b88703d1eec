import json

import pytest

from deepresearch.config import (
    AISettings,
    AppSettings,
    WebSearchSettings,
    language_name,
    load_settings,
    save_settings,
    validate_settings,
)


ENV_KEYS = (
    "AI_PROVIDER",
    "AI_API_KEY",
    "AI_API_BASE",
    "AI_MODEL",
    "AI_CONTEXT_SIZE",
    "WEB_SEARCH_PROVIDER",
    "WEB_SEARCH_API_KEY",
    "TAVILY_API_KEY",
    "WEB_SEARCH_API_BASE",
    "SEARCH_LANGUAGE",
    "CONCURRENCY_LIMIT",
    "TAVILY_ADVANCED_SEARCH",
    "TAVILY_SEARCH_TOPIC",
    "RESEARCH_LANGUAGE",
    "RESEARCH_BREADTH",
    "RESEARCH_DEPTH",
    "DEEPRESEARCH_ENV_OVERRIDES_CONFIG",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_config_precedence_configjson_wins_by_default(tmp_path, monkeypatch):
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"ai": {"model": "from-config"}, "breadth": 4}))
    monkeypatch.setenv("AI_MODEL", "from-env")
    monkeypatch.setenv("AI_API_KEY", "env-key")
    settings = load_settings(config_path=config_path)
    assert settings.ai.model == "from-config"
    assert settings.ai.api_key == "env-key"
    assert settings.breadth == 4


def test_env_override_when_flag_set(tmp_path, monkeypatch):
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"ai": {"model": "from-config"}, "web_search": {"concurrency_limit": 1}}))
    monkeypatch.setenv("AI_MODEL", "from-env")
    monkeypatch.setenv("CONCURRENCY_LIMIT", "4")
    monkeypatch.setenv("TAVILY_ADVANCED_SEARCH", "true")
    monkeypatch.setenv("DEEPRESEARCH_ENV_OVERRIDES_CONFIG", "1")
    settings = load_settings(config_path=config_path)
    assert settings.ai.model == "from-env"
    assert settings.web_search.concurrency_limit == 4
    assert settings.web_search.tavily_advanced_search is True


def test_tavily_key_fallback_env(tmp_path, monkeypatch):
    monkeypatch.setenv("TAVILY_API_KEY", "tvly-env")
    settings = load_settings(config_path=tmp_path / "missing.json")
    assert settings.web_search.api_key == "tvly-env"


def test_save_then_load_round_trip(tmp_path):
    config_path = tmp_path / "config.json"
    settings = AppSettings(ai=AISettings(api_key="k", model="m"), language="zh", depth=3)
    save_settings(settings, config_path)
    loaded = load_settings(config_path=config_path)
    assert loaded == settings


def test_safe_dict_masks_keys():
    settings = AppSettings(
        ai=AISettings(api_key="secret"),
        web_search=WebSearchSettings(api_key="tvly-secret"),
    )
    data = settings.to_safe_dict()
    assert data["ai"]["api_key"] == "********"
    assert data["web_search"]["api_key"] == "********"
    assert settings.ai.api_key == "secret"


def test_validate_settings_rules():
    ok = AppSettings(ai=AISettings(api_key="k"), web_search=WebSearchSettings(api_key="t"))
    assert validate_settings(ok)
    assert not validate_settings(ok.model_copy(update={"ai": AISettings()}))
    assert validate_settings(ok.model_copy(update={"ai": AISettings(provider="ollama")}))
    assert not validate_settings(ok.model_copy(update={"web_search": WebSearchSettings()}))
    assert validate_settings(
        ok.model_copy(update={"web_search": WebSearchSettings(provider="firecrawl", api_base="http://fc.local")})
    )
    assert not validate_settings(ok.model_copy(update={"web_search": WebSearchSettings(provider="firecrawl")}))
    assert not validate_settings(
        ok.model_copy(update={"web_search": WebSearchSettings(api_key="t", concurrency_limit=0)})
    )


def test_language_names():
    assert language_name("en") == "English"
    assert language_name("zh") == "中文"
    assert language_name(None) == "English"
    assert language_name("pt") == "pt"

import json
import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

from dotenv import load_dotenv

CONFIG_PATH = Path("config.json")
ENV_OVERRIDE_KEY = "DEEPRESEARCH_ENV_OVERRIDES_CONFIG"
ENV_OVERRIDE_TRUE = {"1", "true", "yes", "on"}

AiProvider = Literal["openai-compatible", "siliconflow", "openrouter", "deepseek", "ollama"]
WebSearchProvider = Literal["tavily", "firecrawl"]

AI_API_BASES: Dict[str, str] = {
    "openai-compatible": "https://api.openai.com/v1",
    "openrouter": "https://openrouter.ai/api/v1",
    "deepseek": "https://api.deepseek.com/v1",
    "ollama": "http://localhost:11434/v1",
    "siliconflow": "https://api.siliconflow.cn/v1",
}
FIRECRAWL_API_BASE = "https://api.firecrawl.dev"

LANGUAGE_NAMES: Dict[str, str] = {
    "en": "English",
    "zh": "中文",
    "nl": "Nederlands",
    "de": "Deutsch",
    "fr": "Français",
    "es": "Español",
    "ja": "日本語",
}


class AISettings(BaseModel):
    provider: AiProvider = "openai-compatible"
    api_key: Optional[str] = None
    api_base: Optional[str] = None
    model: str = ""
    context_size: int = 128_000

    model_config = {"protected_namespaces": ()}

    @property
    def resolved_api_base(self) -> str:
        return (self.api_base or AI_API_BASES.get(self.provider) or AI_API_BASES["openai-compatible"]).rstrip("/")


class WebSearchSettings(BaseModel):
    provider: WebSearchProvider = "tavily"
    api_key: Optional[str] = None
    # Only honoured by Firecrawl.
    api_base: Optional[str] = None
    search_language: Optional[str] = None
    concurrency_limit: int = 2
    tavily_advanced_search: bool = False
    tavily_search_topic: Literal["general", "news", "finance"] = "general"

    @property
    def resolved_api_base(self) -> Optional[str]:
        if self.provider == "firecrawl":
            return (self.api_base or FIRECRAWL_API_BASE).rstrip("/")
        return None


class AppSettings(BaseModel):
    ai: AISettings = Field(default_factory=AISettings)
    web_search: WebSearchSettings = Field(default_factory=WebSearchSettings)
    language: str = "en"
    breadth: int = 2
    depth: int = 2

    def to_safe_dict(self) -> dict:
        data = self.model_dump()
        if data["ai"].get("api_key"):
            data["ai"]["api_key"] = "********"
        if data["web_search"].get("api_key"):
            data["web_search"]["api_key"] = "********"
        return data


def language_name(code: Optional[str]) -> str:
    if not code:
        return LANGUAGE_NAMES["en"]
    return LANGUAGE_NAMES.get(code.lower(), code)


def validate_settings(settings: AppSettings) -> bool:
    ai = settings.ai
    if ai.provider != "ollama" and not ai.api_key:
        return False
    if ai.context_size < 0:
        return False
    ws = settings.web_search
    if ws.provider == "tavily" and not ws.api_key:
        return False
    # Firecrawl accepts either a self-hosted base or a hosted key.
    if ws.provider == "firecrawl" and not ws.api_base and not ws.api_key:
        return False
    if ws.concurrency_limit < 1:
        return False
    return True


def _load_from_env() -> Dict[str, Dict[str, Any]]:
    load_dotenv()
    ai_map = {
        "provider": os.getenv("AI_PROVIDER"),
        "api_key": os.getenv("AI_API_KEY"),
        "api_base": os.getenv("AI_API_BASE"),
        "model": os.getenv("AI_MODEL"),
        "context_size": os.getenv("AI_CONTEXT_SIZE"),
    }
    ws_map = {
        "provider": os.getenv("WEB_SEARCH_PROVIDER"),
        "api_key": os.getenv("WEB_SEARCH_API_KEY") or os.getenv("TAVILY_API_KEY"),
        "api_base": os.getenv("WEB_SEARCH_API_BASE"),
        "search_language": os.getenv("SEARCH_LANGUAGE"),
        "concurrency_limit": os.getenv("CONCURRENCY_LIMIT"),
        "tavily_advanced_search": os.getenv("TAVILY_ADVANCED_SEARCH"),
        "tavily_search_topic": os.getenv("TAVILY_SEARCH_TOPIC"),
    }
    top_map = {
        "language": os.getenv("RESEARCH_LANGUAGE"),
        "breadth": os.getenv("RESEARCH_BREADTH"),
        "depth": os.getenv("RESEARCH_DEPTH"),
    }
    ai = {k: v for k, v in ai_map.items() if v not in (None, "")}
    ws = {k: v for k, v in ws_map.items() if v not in (None, "")}
    top: Dict[str, Any] = {k: v for k, v in top_map.items() if v not in (None, "")}
    if "context_size" in ai:
        ai["context_size"] = int(ai["context_size"])
    if "concurrency_limit" in ws:
        ws["concurrency_limit"] = int(ws["concurrency_limit"])
    if "tavily_advanced_search" in ws:
        ws["tavily_advanced_search"] = str(ws["tavily_advanced_search"]).lower() in ENV_OVERRIDE_TRUE
    for key in ("breadth", "depth"):
        if key in top:
            top[key] = int(top[key])
    cleaned: Dict[str, Any] = dict(top)
    if ai:
        cleaned["ai"] = ai
    if ws:
        cleaned["web_search"] = ws
    return cleaned


def _env_overrides_config() -> bool:
    return str(os.getenv(ENV_OVERRIDE_KEY, "")).strip().lower() in ENV_OVERRIDE_TRUE


def _merge(low: Dict[str, Any], high: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(low)
    for key, value in high.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def load_settings(config_path: Optional[Path] = None) -> AppSettings:
    env_data = _load_from_env()
    path = config_path or CONFIG_PATH
    file_data: Dict[str, Any] = {}
    if path.exists():
        try:
            file_data = json.loads(path.read_text())
        except Exception:
            file_data = {}
    # Config wins by default; allow env overrides only when explicitly enabled.
    if _env_overrides_config():
        merged = _merge(file_data, env_data)
    else:
        merged = _merge(env_data, file_data)
    return AppSettings(**merged)


def save_settings(settings: AppSettings, config_path: Optional[Path] = None) -> None:
    path = config_path or CONFIG_PATH
    path.write_text(settings.model_dump_json(indent=2))

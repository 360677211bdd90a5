"""
Typed configuration model with precedence-based loader.

Precedence (lowest to highest):
    defaults < config file (YAML) < profile < env vars < CLI flags

Configuration is read once at request setup and never mutated while a
request is in flight.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any

import yaml


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ProvidersConfig:
    default_provider: str = "groq"
    default_model: str = "openai/gpt-oss-120b"
    anthropic_api_key_env: str = "ANTHROPIC_API_KEY"
    groq_api_key_env: str = "GROQ_API_KEY"
    openai_api_key_env: str = "OPENAI_API_KEY"
    anthropic_url: str = "https://api.anthropic.com/v1"
    groq_url: str = "https://api.groq.com/openai/v1"
    openai_url: str = "https://api.openai.com/v1"
    anthropic_version: str = "2023-06-01"
    anthropic_cache_hints: bool = True
    anthropic_history_window: int = 6
    max_output_tokens: int = 4096
    timeout_seconds: int = 120

    def api_key_env(self, vendor: str) -> str:
        return getattr(self, f"{vendor}_api_key_env")

    def base_url(self, vendor: str) -> str:
        return getattr(self, f"{vendor}_url")


@dataclass
class LoopConfig:
    max_iterations: int = 10
    enable_loop_default: bool = True
    analysis_tools: list[str] = field(default_factory=lambda: [
        "execute_sql",
        "lookup_knowledge_base",
        "browse_knowledge_base_category",
        "get_knowledge_base_categories",
        "evaluate_expression",
        "batch_tool",
    ])
    continue_tools: list[str] = field(default_factory=lambda: ["continue_agent"])
    terminal_tools: list[str] = field(default_factory=lambda: [
        "complete_task",
        "prepare_sql_for_user",
    ])


@dataclass
class ToolsConfig:
    timeouts: dict[str, float] = field(default_factory=lambda: {
        "sql": 45.0,
        "knowledge": 15.0,
        "default": 30.0,
        "batch": 60.0,
    })
    disabled: list[str] = field(default_factory=list)
    default_sql_query: str = "SELECT COUNT(*) AS total_accounts FROM FRPAIR"
    row_threshold: int = 10
    row_sample: int = 5
    search_limit: int = 5
    browse_limit: int = 8
    text_budget: int = 1500
    max_result_chars: int = 4000

    def timeout_for(self, timeout_class: str) -> float:
        return float(self.timeouts.get(timeout_class, self.timeouts.get("default", 30.0)))


@dataclass
class AnalyticsConfig:
    url: str = "http://localhost:8787/query"
    api_key_env: str = "ANALYTICS_API_KEY"
    source: str = "duckdb"


@dataclass
class KnowledgeConfig:
    path: str = "~/.chatloop/knowledge-base.json"


@dataclass
class StoreConfig:
    db_path: str = "~/.chatloop/conversations.db"


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class ChatloopConfig:
    providers: ProvidersConfig = field(default_factory=ProvidersConfig)
    loop: LoopConfig = field(default_factory=LoopConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    analytics: AnalyticsConfig = field(default_factory=AnalyticsConfig)
    knowledge: KnowledgeConfig = field(default_factory=KnowledgeConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    profiles: dict[str, dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _apply_dotpath(obj: Any, dotpath: str, value: Any) -> None:
    """Walk obj via dotpath and set the final attribute."""
    parts = dotpath.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    setattr(obj, parts[-1], value)


def _deep_merge(base: dict, overlay: dict) -> dict:
    """Recursively merge overlay into base, returning a new dict."""
    merged = dict(base)
    for k, v in overlay.items():
        if k in merged and isinstance(merged[k], dict) and isinstance(v, dict):
            merged[k] = _deep_merge(merged[k], v)
        else:
            merged[k] = v
    return merged


def _coerce(value: str, target_type: type) -> Any:
    """Coerce a string env value to the target type."""
    if target_type is bool:
        return value.lower() in ("1", "true", "yes", "on")
    if target_type is int:
        return int(value)
    if target_type is float:
        return float(value)
    if target_type is list:
        return [s.strip() for s in value.split(",") if s.strip()]
    return value


def _build_section(cls: type, raw: dict) -> Any:
    """Build a dataclass section from a raw dict, ignoring unknown keys."""
    valid_fields = {f.name for f in fields(cls)}
    filtered = {k: v for k, v in raw.items() if k in valid_fields}
    section = cls(**filtered)
    # Partial timeout maps keep the defaults for classes they don't mention.
    if cls is ToolsConfig and "timeouts" in filtered:
        section.timeouts = {**ToolsConfig().timeouts, **filtered["timeouts"]}
    return section


# ---------------------------------------------------------------------------
# ENV var mapping
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, type]] = {
    "CHATLOOP_DEFAULT_PROVIDER":      ("providers.default_provider", str),
    "CHATLOOP_DEFAULT_MODEL":         ("providers.default_model", str),
    "CHATLOOP_ANTHROPIC_URL":         ("providers.anthropic_url", str),
    "CHATLOOP_GROQ_URL":              ("providers.groq_url", str),
    "CHATLOOP_OPENAI_URL":            ("providers.openai_url", str),
    "CHATLOOP_CACHE_HINTS":           ("providers.anthropic_cache_hints", bool),
    "CHATLOOP_HISTORY_WINDOW":        ("providers.anthropic_history_window", int),
    "CHATLOOP_MAX_OUTPUT_TOKENS":     ("providers.max_output_tokens", int),
    "CHATLOOP_PROVIDER_TIMEOUT":      ("providers.timeout_seconds", int),
    "CHATLOOP_MAX_ITERATIONS":        ("loop.max_iterations", int),
    "CHATLOOP_ENABLE_LOOP":           ("loop.enable_loop_default", bool),
    "CHATLOOP_ANALYSIS_TOOLS":        ("loop.analysis_tools", list),
    "CHATLOOP_CONTINUE_TOOLS":        ("loop.continue_tools", list),
    "CHATLOOP_TERMINAL_TOOLS":        ("loop.terminal_tools", list),
    "CHATLOOP_TOOLS_DISABLED":        ("tools.disabled", list),
    "CHATLOOP_DEFAULT_SQL_QUERY":     ("tools.default_sql_query", str),
    "CHATLOOP_TEXT_BUDGET":           ("tools.text_budget", int),
    "CHATLOOP_ANALYTICS_URL":         ("analytics.url", str),
    "CHATLOOP_ANALYTICS_KEY_ENV":     ("analytics.api_key_env", str),
    "CHATLOOP_KNOWLEDGE_PATH":        ("knowledge.path", str),
    "CHATLOOP_STORE_DB":              ("store.db_path", str),
    "CHATLOOP_HOST":                  ("server.host", str),
    "CHATLOOP_PORT":                  ("server.port", int),
    "CHATLOOP_LOG_LEVEL":             ("server.log_level", str),
}

_TIMEOUT_ENV_PREFIX = "CHATLOOP_TIMEOUT_"


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> ChatloopConfig:
    """
    Build a ChatloopConfig by layering sources in precedence order:

        defaults  <  config file  <  profile  <  env vars  <  CLI flags

    Parameters
    ----------
    config_path : path to YAML config file (optional)
    profile : name of a profile to apply from the config file
    cli_overrides : dict of dotpath -> value CLI flag overrides
    """
    raw: dict[str, Any] = {}

    # --- 1. Config file ---
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.is_file():
            with p.open("r", encoding="utf-8") as f:
                file_data = yaml.safe_load(f) or {}
            raw = _deep_merge(raw, file_data)

    # --- 2. Profile overlay ---
    if profile and "profiles" in raw:
        profile_data = raw.get("profiles", {}).get(profile, {})
        if profile_data:
            raw = _deep_merge(raw, profile_data)

    # --- Build sections from raw ---
    cfg = ChatloopConfig(
        providers=_build_section(ProvidersConfig, raw.get("providers", {})),
        loop=_build_section(LoopConfig, raw.get("loop", {})),
        tools=_build_section(ToolsConfig, raw.get("tools", {})),
        analytics=_build_section(AnalyticsConfig, raw.get("analytics", {})),
        knowledge=_build_section(KnowledgeConfig, raw.get("knowledge", {})),
        store=_build_section(StoreConfig, raw.get("store", {})),
        server=_build_section(ServerConfig, raw.get("server", {})),
        profiles=raw.get("profiles", {}),
    )

    # --- 3. Env var overrides ---
    for env_var, (dotpath, target_type) in _ENV_MAP.items():
        val = os.environ.get(env_var)
        if val is not None:
            _apply_dotpath(cfg, dotpath, _coerce(val, target_type))

    # CHATLOOP_TIMEOUT_SQL=20 -> tools.timeouts["sql"] = 20.0
    for env_var, val in os.environ.items():
        if env_var.startswith(_TIMEOUT_ENV_PREFIX):
            timeout_class = env_var[len(_TIMEOUT_ENV_PREFIX):].lower()
            cfg.tools.timeouts[timeout_class] = _coerce(val, float)

    # --- 4. CLI flag overrides ---
    if cli_overrides:
        for dotpath, value in cli_overrides.items():
            _apply_dotpath(cfg, dotpath, value)

    return cfg

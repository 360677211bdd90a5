"""Provider names, model aliases, and request routing rules."""

from __future__ import annotations

from dataclasses import dataclass

ANTHROPIC = "anthropic"
OPENAI = "openai"
GROQ = "groq"

SUPPORTED_PROVIDERS = (ANTHROPIC, OPENAI, GROQ)

ANTHROPIC_MODEL_ALIASES: dict[str, str] = {
    "haiku": "claude-3-5-haiku-20241022",
    "sonnet": "claude-3-5-sonnet-20241022",
    "opus": "claude-3-opus-20240229",
}

DEFAULT_MODELS: dict[str, str] = {
    ANTHROPIC: ANTHROPIC_MODEL_ALIASES["haiku"],
    OPENAI: "gpt-4o-mini",
    GROQ: "openai/gpt-oss-120b",
}


@dataclass(frozen=True)
class Route:
    provider: str
    model: str | None


def resolve_anthropic_model(model: str | None) -> str:
    """Map a short alias to a full model id; unknown names pass through."""
    if not model:
        return DEFAULT_MODELS[ANTHROPIC]
    return ANTHROPIC_MODEL_ALIASES.get(model.lower(), model)


def route_request(provider: str | None, model: str | None, default_provider: str) -> Route:
    """
    Resolve the requested provider/model pair to the vendor that serves it.

    ``"default"`` (or no provider) selects the configured default and
    ``"claude"`` is a synonym for ``"anthropic"``.  Gemini requests are
    served by the Anthropic fast tier.
    """
    name = (provider or "default").strip().lower()
    if name == "default":
        name = default_provider
    if name == "claude":
        name = ANTHROPIC
    if name == "gemini":
        return Route(ANTHROPIC, "haiku")
    return Route(name, model)

"""
LLM Router -- resolves a request's provider/model pair to a configured adapter.

The router is the request-setup entry point for the conversation loop.  It:

  1. Applies the routing rules (``"default"``, vendor rerouting).
  2. Rejects unsupported vendors before any stream is opened.
  3. Reads the vendor credential from the environment and fails fast with
     ``ProviderAuthMissingError`` when it is absent.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Callable

import httpx

from chatloop.config import ProvidersConfig
from chatloop.errors import ProviderAuthMissingError, UnsupportedProviderError
from chatloop.llm.models import ANTHROPIC, GROQ, OPENAI, SUPPORTED_PROVIDERS, route_request
from chatloop.llm.providers.anthropic import AnthropicProvider
from chatloop.llm.providers.base import Provider
from chatloop.llm.providers.openai_compat import OpenAICompatProvider

logger = logging.getLogger(__name__)


@dataclass
class ResolvedProvider:
    provider: Provider
    model: str


ProviderFactory = Callable[[str | None, str | None], ResolvedProvider]


class LLMRouter:
    """
    Builds provider adapters on demand from ``ProvidersConfig``.

    Parameters
    ----------
    config:
        Provider section of the loaded configuration.
    environ:
        Mapping to read API keys from.  Defaults to ``os.environ``.
    transport:
        Optional ``httpx`` transport handed to every adapter.
    """

    def __init__(
        self,
        config: ProvidersConfig,
        environ: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._environ = environ
        self._transport = transport

    def resolve(self, provider: str | None, model: str | None) -> ResolvedProvider:
        """
        Return the adapter and concrete model id for a request.

        Raises ``UnsupportedProviderError`` or ``ProviderAuthMissingError``.
        """
        route = route_request(provider, model, self._config.default_provider)
        if route.provider not in SUPPORTED_PROVIDERS:
            raise UnsupportedProviderError(provider or route.provider)

        env_var = self._config.api_key_env(route.provider)
        environ = self._environ if self._environ is not None else os.environ
        api_key = environ.get(env_var, "")
        if not api_key:
            raise ProviderAuthMissingError(route.provider, env_var)

        adapter = self._build(route.provider, api_key)
        requested = route.model
        if not requested and route.provider == self._config.default_provider:
            requested = self._config.default_model
        resolved_model = adapter.resolve_model(requested)
        logger.info("Routing request to %s (%s)", adapter.name, resolved_model)
        return ResolvedProvider(provider=adapter, model=resolved_model)

    def __call__(self, provider: str | None, model: str | None) -> ResolvedProvider:
        return self.resolve(provider, model)

    def _build(self, vendor: str, api_key: str) -> Provider:
        cfg = self._config
        common = dict(
            api_key=api_key,
            base_url=cfg.base_url(vendor),
            timeout=float(cfg.timeout_seconds),
            max_output_tokens=cfg.max_output_tokens,
            transport=self._transport,
        )
        if vendor == ANTHROPIC:
            return AnthropicProvider(
                anthropic_version=cfg.anthropic_version,
                cache_hints=cfg.anthropic_cache_hints,
                history_window=cfg.anthropic_history_window,
                **common,
            )
        if vendor in (OPENAI, GROQ):
            return OpenAICompatProvider(vendor=vendor, **common)
        raise UnsupportedProviderError(vendor)

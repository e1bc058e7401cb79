"""Generative provider client: priority-ordered fallback chain over LLM providers.

OpenRouter serves the catalog models (and any per-trip model override);
OpenAI and Anthropic follow as fallbacks with their own default models.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Protocol

import anthropic
from openai import AsyncOpenAI

from wayfinder.config import Settings, settings as default_settings
from wayfinder.errors import AllProvidersFailed
from wayfinder.services.cost_ledger import CostLedger
from wayfinder.services.provider_config import (
    DEFAULT_MODEL_CATALOG,
    ModelCatalog,
    ModelDescriptor,
    ProviderDescriptor,
    generative_descriptors,
)
from wayfinder.services.trip_store import ModelDirectory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerativeRequest:
    system: str
    user: str = ""
    messages: list[dict] | None = None  # multi-turn, without the system message
    max_tokens: int = 2000
    temperature: float = 0.7
    json_mode: bool = False
    task: str = "general"

    def chat_messages(self) -> list[dict]:
        if self.messages:
            return list(self.messages)
        return [{"role": "user", "content": self.user}]


@dataclass(frozen=True)
class GenerativeResult:
    text: str
    tokens_in: int
    tokens_out: int
    provider: str = ""
    model: str = ""
    cost: float = 0.0


class GenerativeAdapter(Protocol):
    descriptor: ProviderDescriptor

    @property
    def name(self) -> str: ...

    def is_available(self) -> bool: ...

    async def execute(self, request: GenerativeRequest, model: str) -> GenerativeResult: ...


@dataclass(frozen=True)
class OpenAICompatibleAdapter:
    """OpenAI chat completions; with a base_url it talks to OpenRouter."""
    descriptor: ProviderDescriptor
    base_url: str | None = None
    extra_headers: dict = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.descriptor.name

    def is_available(self) -> bool:
        return self.descriptor.is_available()

    async def execute(self, request: GenerativeRequest, model: str) -> GenerativeResult:
        kwargs: dict = {
            "model": model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "messages": [{"role": "system", "content": request.system}] + request.chat_messages(),
        }
        if request.json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        if self.extra_headers:
            kwargs["extra_headers"] = self.extra_headers

        async with AsyncOpenAI(api_key=self.descriptor.api_key, base_url=self.base_url, timeout=60.0) as client:
            response = await client.chat.completions.create(**kwargs)

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ValueError("empty completion")
        usage = response.usage
        return GenerativeResult(
            text=content.strip(),
            tokens_in=usage.prompt_tokens if usage else 0,
            tokens_out=usage.completion_tokens if usage else 0,
        )


@dataclass(frozen=True)
class AnthropicAdapter:
    descriptor: ProviderDescriptor

    @property
    def name(self) -> str:
        return self.descriptor.name

    def is_available(self) -> bool:
        return self.descriptor.is_available()

    async def execute(self, request: GenerativeRequest, model: str) -> GenerativeResult:
        async with anthropic.AsyncAnthropic(api_key=self.descriptor.api_key, timeout=60.0) as client:
            response = await client.messages.create(
                model=model,
                max_tokens=request.max_tokens,
                temperature=request.temperature,
                system=request.system,
                messages=request.chat_messages(),
            )

        text = "".join(block.text for block in response.content if getattr(block, "type", "") == "text")
        if not text:
            raise ValueError("empty completion")
        return GenerativeResult(
            text=text.strip(),
            tokens_in=response.usage.input_tokens,
            tokens_out=response.usage.output_tokens,
        )


def build_generative_adapters(cfg: Settings = default_settings) -> list[GenerativeAdapter]:
    adapters: list[GenerativeAdapter] = []
    for descriptor in generative_descriptors(cfg):
        if descriptor.name == "openrouter":
            adapters.append(OpenAICompatibleAdapter(
                descriptor,
                base_url=cfg.openrouter_base_url,
                extra_headers={"X-Title": "Wayfinder"},
            ))
        elif descriptor.name == "openai":
            adapters.append(OpenAICompatibleAdapter(descriptor))
        elif descriptor.name == "anthropic":
            adapters.append(AnthropicAdapter(descriptor))
    return adapters


class GenerativeProviderClient:
    """Tries each available adapter in priority order; first success wins."""

    def __init__(
        self,
        adapters: list[GenerativeAdapter],
        catalog: ModelCatalog = DEFAULT_MODEL_CATALOG,
        directory: ModelDirectory | None = None,
    ):
        self.adapters = sorted(adapters, key=lambda a: a.descriptor.priority)
        self.catalog = catalog
        self.directory = directory

    async def resolve_model(self, requested: str | None = None) -> ModelDescriptor:
        """Requested model → directory default → catalog last resort.

        A requested model is looked up in the directory first, then in the
        catalog. Directory errors are logged and skipped.
        """
        if requested and self.directory is not None:
            try:
                info = await self.directory.get_model(requested)
                if info:
                    return _from_info(info)
            except Exception as e:
                logger.warning(f"Model directory lookup for {requested} failed: {e}")
        if requested:
            model = self.catalog.get(requested)
            if model:
                return model
            logger.warning(f"Unknown model {requested}, using default")
        if self.directory is not None:
            try:
                info = await self.directory.get_default_model()
                if info:
                    return _from_info(info)
            except Exception as e:
                logger.warning(f"Default model lookup failed: {e}")
        return self.catalog.default

    async def generate(
        self,
        request: GenerativeRequest,
        ledger: CostLedger,
        *,
        model: str | None = None,
    ) -> GenerativeResult:
        """Get a completion from the first adapter that succeeds.

        Every attempt is written to the ledger: failures as zero-cost entries,
        the success priced by its model's per-million token rates.

        Raises:
            AllProvidersFailed with every attempt's error concatenated.
        """
        resolved = await self.resolve_model(model)
        errors: list[str] = []

        for adapter in self.adapters:
            if not adapter.is_available():
                continue

            if adapter.name == resolved.provider:
                model_id = resolved.model_id
                price_in, price_out = resolved.input_cost_per_1m, resolved.output_cost_per_1m
            else:
                model_id = adapter.descriptor.model or ""
                price_in = adapter.descriptor.input_cost_per_1m
                price_out = adapter.descriptor.output_cost_per_1m

            started = time.monotonic()
            try:
                result = await adapter.execute(request, model_id)
            except Exception as e:
                duration_ms = int((time.monotonic() - started) * 1000)
                errors.append(f"{adapter.name}: {e}")
                logger.warning(f"{adapter.name} ({model_id}) failed for {request.task}: {e}")
                await ledger.track_ai_failure(
                    adapter.name, model_id, str(e), duration_ms=duration_ms, task=request.task
                )
                continue

            duration_ms = int((time.monotonic() - started) * 1000)
            cost = await ledger.track_ai(
                adapter.name,
                model_id,
                result.tokens_in,
                result.tokens_out,
                price_in,
                price_out,
                duration_ms=duration_ms,
                task=request.task,
            )
            logger.info(
                f"{request.task}: {adapter.name}/{model_id} "
                f"{result.tokens_in}+{result.tokens_out} tokens, ${cost:.5f}"
            )
            return GenerativeResult(
                text=result.text,
                tokens_in=result.tokens_in,
                tokens_out=result.tokens_out,
                provider=adapter.name,
                model=model_id,
                cost=cost,
            )

        raise AllProvidersFailed("generative", errors)


def _from_info(info) -> ModelDescriptor:
    return ModelDescriptor(
        id=info.id,
        provider=info.provider,
        model_id=info.model_id,
        display_name=info.id,
        input_cost_per_1m=info.input_cost_per_1m,
        output_cost_per_1m=info.output_cost_per_1m,
        priority=info.priority,
    )

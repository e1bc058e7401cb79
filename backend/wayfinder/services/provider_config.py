"""Provider descriptors, the fallback model catalog and flat API call costs."""

from dataclasses import dataclass, field

from wayfinder.config import Settings, settings as default_settings

# Flat per-call estimates (USD); partner APIs do not meter per call
API_CALL_COSTS: dict[tuple[str, str], float] = {
    ("serper", "search"): 0.002,
    ("tavily", "search"): 0.001,
    ("firecrawl", "scrape"): 0.01,
    ("firecrawl", "search"): 0.01,
    ("amadeus", "location_search"): 0.001,
    ("amadeus", "flight_search"): 0.001,
    ("amadeus", "hotel_list"): 0.001,
    ("amadeus", "hotel_search"): 0.001,
    ("viator", "product_search"): 0.0005,
}

COST_TARGET_USD = 0.50


@dataclass(frozen=True)
class ProviderDescriptor:
    """One entry in a fallback chain. Ordering is fixed by priority (lower first)."""
    name: str
    priority: int
    model: str | None = None
    input_cost_per_1m: float = 0.0
    output_cost_per_1m: float = 0.0
    cost_per_call: float = 0.0
    api_key: str = field(default="", repr=False)

    def is_available(self) -> bool:
        return bool(self.api_key)


@dataclass(frozen=True)
class ModelDescriptor:
    id: str
    provider: str
    model_id: str
    display_name: str
    input_cost_per_1m: float
    output_cost_per_1m: float
    priority: int = 100


@dataclass(frozen=True)
class ModelCatalog:
    """Versioned, immutable table of models usable without the model directory."""
    version: str
    models: tuple[ModelDescriptor, ...]
    default_id: str

    def get(self, key: str) -> ModelDescriptor | None:
        for model in self.models:
            if key in (model.id, model.model_id):
                return model
        return None

    @property
    def default(self) -> ModelDescriptor:
        model = self.get(self.default_id)
        if model is None:
            raise ValueError(f"Catalog {self.version} has no default model {self.default_id!r}")
        return model


DEFAULT_MODEL_CATALOG = ModelCatalog(
    version="2025.1",
    default_id="llama-3.1-8b",
    models=(
        ModelDescriptor("llama-3.1-8b", "openrouter", "meta-llama/llama-3.1-8b-instruct", "Llama 3.1 8B", 0.02, 0.03, 20),
        ModelDescriptor("llama-3.2-3b", "openrouter", "meta-llama/llama-3.2-3b-instruct", "Llama 3.2 3B", 0.02, 0.02, 10),
        ModelDescriptor("gemma-3-4b", "openrouter", "google/gemma-3-4b-it", "Gemma 3 4B", 0.017, 0.068, 8),
        ModelDescriptor("gemma-3-12b", "openrouter", "google/gemma-3-12b-it", "Gemma 3 12B", 0.03, 0.10, 28),
        ModelDescriptor("mistral-small-3.1", "openrouter", "mistralai/mistral-small-3.1-24b-instruct", "Mistral Small 3.1 24B", 0.03, 0.11, 30),
        ModelDescriptor("gemini-flash-free", "openrouter", "google/gemini-2.0-flash-exp:free", "Gemini Flash (Free)", 0.0, 0.0, 5),
        ModelDescriptor("mistral-small-free", "openrouter", "mistralai/mistral-small-3.1-24b-instruct:free", "Mistral Small (Free)", 0.0, 0.0, 6),
        ModelDescriptor("llama-3.2-3b-free", "openrouter", "meta-llama/llama-3.2-3b-instruct:free", "Llama 3.2 3B (Free)", 0.0, 0.0, 7),
        ModelDescriptor("qwen3-8b", "openrouter", "qwen/qwen3-8b", "Qwen3 8B", 0.028, 0.11, 25),
        ModelDescriptor("gemini-flash-lite", "openrouter", "google/gemini-2.0-flash-lite-001", "Gemini 2.0 Flash Lite", 0.075, 0.30, 35),
    ),
)


def generative_descriptors(cfg: Settings = default_settings) -> list[ProviderDescriptor]:
    """Generative chain: OpenRouter (catalog models), then OpenAI, then Anthropic."""
    default = DEFAULT_MODEL_CATALOG.default
    return [
        ProviderDescriptor(
            name="openrouter",
            priority=1,
            model=default.model_id,
            input_cost_per_1m=default.input_cost_per_1m,
            output_cost_per_1m=default.output_cost_per_1m,
            api_key=cfg.openrouter_api_key,
        ),
        ProviderDescriptor(
            name="openai",
            priority=2,
            model="gpt-4o-mini",
            input_cost_per_1m=0.15,
            output_cost_per_1m=0.60,
            api_key=cfg.openai_api_key,
        ),
        ProviderDescriptor(
            name="anthropic",
            priority=3,
            model="claude-3-5-haiku-20241022",
            input_cost_per_1m=0.80,
            output_cost_per_1m=4.00,
            api_key=cfg.anthropic_api_key,
        ),
    ]


def search_descriptors(cfg: Settings = default_settings) -> list[ProviderDescriptor]:
    """Search chain: Serper first, Tavily as fallback."""
    return [
        ProviderDescriptor(
            name="serper",
            priority=1,
            cost_per_call=API_CALL_COSTS[("serper", "search")],
            api_key=cfg.serper_api_key,
        ),
        ProviderDescriptor(
            name="tavily",
            priority=2,
            cost_per_call=API_CALL_COSTS[("tavily", "search")],
            api_key=cfg.tavily_api_key,
        ),
    ]

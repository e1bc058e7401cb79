"""Web search client: Serper first, Tavily as fallback, Redis-cached."""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from typing import Protocol

import httpx

from wayfinder.config import Settings, settings as default_settings
from wayfinder.errors import AllProvidersFailed
from wayfinder.services.cache_service import CacheService
from wayfinder.services.cost_ledger import CostLedger
from wayfinder.services.provider_config import ProviderDescriptor, search_descriptors

logger = logging.getLogger(__name__)

SERPER_URL = "https://google.serper.dev/search"
TAVILY_URL = "https://api.tavily.com/search"


@dataclass(frozen=True)
class SearchResult:
    title: str
    url: str
    snippet: str = ""
    source: str = ""


class SearchAdapter(Protocol):
    descriptor: ProviderDescriptor

    @property
    def name(self) -> str: ...

    def is_available(self) -> bool: ...

    async def execute(self, query: str, num_results: int) -> list[SearchResult]: ...


@dataclass(frozen=True)
class SerperAdapter:
    descriptor: ProviderDescriptor
    transport: httpx.AsyncBaseTransport | None = None

    @property
    def name(self) -> str:
        return self.descriptor.name

    def is_available(self) -> bool:
        return self.descriptor.is_available()

    async def execute(self, query: str, num_results: int) -> list[SearchResult]:
        async with httpx.AsyncClient(timeout=15.0, transport=self.transport) as client:
            resp = await client.post(
                SERPER_URL,
                json={"q": query, "num": num_results},
                headers={"X-API-KEY": self.descriptor.api_key},
            )
            resp.raise_for_status()
            data = resp.json()

        return [
            SearchResult(
                title=item.get("title", ""),
                url=item["link"],
                snippet=item.get("snippet", ""),
                source=self.name,
            )
            for item in data.get("organic", [])[:num_results]
            if item.get("link")
        ]


@dataclass(frozen=True)
class TavilyAdapter:
    descriptor: ProviderDescriptor
    transport: httpx.AsyncBaseTransport | None = None

    @property
    def name(self) -> str:
        return self.descriptor.name

    def is_available(self) -> bool:
        return self.descriptor.is_available()

    async def execute(self, query: str, num_results: int) -> list[SearchResult]:
        async with httpx.AsyncClient(timeout=20.0, transport=self.transport) as client:
            resp = await client.post(
                TAVILY_URL,
                json={
                    "api_key": self.descriptor.api_key,
                    "query": query,
                    "max_results": num_results,
                    "search_depth": "basic",
                },
            )
            resp.raise_for_status()
            data = resp.json()

        return [
            SearchResult(
                title=item.get("title", ""),
                url=item["url"],
                snippet=item.get("content", ""),
                source=self.name,
            )
            for item in data.get("results", [])[:num_results]
            if item.get("url")
        ]


def build_search_adapters(cfg: Settings = default_settings) -> list[SearchAdapter]:
    adapters: list[SearchAdapter] = []
    for descriptor in search_descriptors(cfg):
        if descriptor.name == "serper":
            adapters.append(SerperAdapter(descriptor))
        elif descriptor.name == "tavily":
            adapters.append(TavilyAdapter(descriptor))
    return adapters


class SearchProviderClient:
    """Fallback chain over search adapters. Failed attempts are logged, not charged."""

    def __init__(self, adapters: list[SearchAdapter], cache: CacheService | None = None):
        self.adapters = sorted(adapters, key=lambda a: a.descriptor.priority)
        self.cache = cache

    def is_available(self) -> bool:
        return any(a.is_available() for a in self.adapters)

    async def search(self, query: str, ledger: CostLedger, num_results: int = 5) -> list[SearchResult]:
        if self.cache is not None:
            cached = await self.cache.get_search(query, num_results)
            if cached is not None:
                await ledger.log("search_cache_hit", details={"query": query, "results": len(cached)})
                return [SearchResult(**item) for item in cached]

        errors: list[str] = []
        for adapter in self.adapters:
            if not adapter.is_available():
                continue

            started = time.monotonic()
            try:
                results = await adapter.execute(query, num_results)
            except Exception as e:
                duration_ms = int((time.monotonic() - started) * 1000)
                errors.append(f"{adapter.name}: {e}")
                logger.warning(f"{adapter.name} search failed for {query!r}: {e}")
                await ledger.log(
                    "search_failed",
                    provider=adapter.name,
                    duration_ms=duration_ms,
                    details={"query": query, "error": str(e)},
                )
                continue

            await ledger.track_api(
                adapter.name,
                "search",
                cost=adapter.descriptor.cost_per_call,
                duration_ms=int((time.monotonic() - started) * 1000),
                details={"query": query, "results": len(results)},
            )
            if self.cache is not None and results:
                await self.cache.set_search(query, num_results, [asdict(r) for r in results])
            return results

        raise AllProvidersFailed("search", errors)

    async def search_many(
        self, queries: list[str], ledger: CostLedger, num_results: int = 5
    ) -> dict[str, list[SearchResult]]:
        """Run every query concurrently. A query whose chain fails maps to []."""
        outcomes = await asyncio.gather(
            *(self.search(q, ledger, num_results) for q in queries),
            return_exceptions=True,
        )
        results: dict[str, list[SearchResult]] = {}
        for query, outcome in zip(queries, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(f"Search chain failed for {query!r}: {outcome}")
                await ledger.log("search_chain_failed", details={"query": query, "error": str(outcome)})
                results[query] = []
            else:
                results[query] = outcome
        return results

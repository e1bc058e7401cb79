"""Builds the service graph once per application and tears it down on shutdown."""

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wayfinder.config import Settings
from wayfinder.services.amadeus_client import AmadeusClient
from wayfinder.services.cache_service import CacheService
from wayfinder.services.conversation_service import ConversationService
from wayfinder.services.firecrawl_client import ContentEnrichmentClient
from wayfinder.services.llm_client import GenerativeProviderClient, build_generative_adapters
from wayfinder.services.research_orchestrator import ResearchOrchestrator
from wayfinder.services.search_client import SearchProviderClient, build_search_adapters
from wayfinder.services.task_runner import TaskRunner
from wayfinder.services.trip_builder import TripBuildOrchestrator
from wayfinder.services.trip_store import SqlModelDirectory, SqlTripStore, TripStore
from wayfinder.services.trip_workflow import TripWorkflow
from wayfinder.services.viator_client import ViatorClient


@dataclass
class ServiceContainer:
    store: TripStore
    workflow: TripWorkflow
    conversation: ConversationService
    builder: TripBuildOrchestrator
    research: ResearchOrchestrator
    runner: TaskRunner
    cache: CacheService | None = None
    enrichment: ContentEnrichmentClient | None = None
    amadeus: AmadeusClient | None = None
    viator: ViatorClient | None = None

    async def aclose(self):
        await self.runner.shutdown()
        for client in (self.enrichment, self.amadeus, self.viator, self.cache):
            if client is not None:
                await client.close()


def build_services(cfg: Settings, session_factory: async_sessionmaker[AsyncSession]) -> ServiceContainer:
    store = SqlTripStore(session_factory)
    cache = CacheService(cfg.redis_url)
    llm = GenerativeProviderClient(
        build_generative_adapters(cfg),
        directory=SqlModelDirectory(session_factory),
    )
    search = SearchProviderClient(build_search_adapters(cfg), cache=cache)
    enrichment = ContentEnrichmentClient(cfg.firecrawl_api_key, cfg.firecrawl_base_url)
    amadeus = AmadeusClient(cfg.amadeus_client_id, cfg.amadeus_client_secret, cfg.amadeus_base_url)
    viator = ViatorClient(cfg.viator_api_key, cfg.viator_base_url)
    runner = TaskRunner()

    research = ResearchOrchestrator(
        store, llm, search, enrichment,
        results_per_query=cfg.research_results_per_query,
        enrich_top_urls=cfg.research_enrich_top_urls,
        enrichment_concurrency=cfg.enrichment_concurrency,
        cost_target_usd=cfg.cost_target_usd,
    )
    builder = TripBuildOrchestrator(
        store, llm, enrichment, amadeus, viator,
        concurrency=cfg.enrichment_concurrency,
        cost_target_usd=cfg.cost_target_usd,
    )
    workflow = TripWorkflow(
        store, research, builder, runner,
        estimated_build_seconds=cfg.build_estimated_seconds,
        cost_target_usd=cfg.cost_target_usd,
    )
    conversation = ConversationService(store, llm, research, runner)
    return ServiceContainer(
        store=store,
        workflow=workflow,
        conversation=conversation,
        builder=builder,
        research=research,
        runner=runner,
        cache=cache,
        enrichment=enrichment,
        amadeus=amadeus,
        viator=viator,
    )

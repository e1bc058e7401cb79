"""Phase 1: destination research.

interpret request → search (parallel) → enrich top URLs (bounded) → synthesize
destinations + summary → persist and move the trip to awaiting_confirmation.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field

from pydantic import ValidationError

from wayfinder.errors import AllProvidersFailed, MalformedStructuredOutput, NotFound
from wayfinder.schemas.template import Template
from wayfinder.schemas.trip import Destination, ResearchSource, ResearchSummary, Trip, TripStatus
from wayfinder.services.cost_ledger import CostLedger
from wayfinder.services.firecrawl_client import ContentEnrichmentClient, ScrapedPage
from wayfinder.services.llm_client import GenerativeProviderClient, GenerativeRequest
from wayfinder.services.prompts import INTERPRET_SYSTEM_PROMPT, SYNTHESIS_FORMAT, interpolate
from wayfinder.services.provider_config import COST_TARGET_USD
from wayfinder.services.search_client import SearchProviderClient, SearchResult
from wayfinder.services.structured_output import extract_json
from wayfinder.services.trip_store import TripStore

logger = logging.getLogger(__name__)

MIN_QUERIES = 2
MAX_QUERIES = 4
MAX_DESTINATIONS = 4
MAX_SOURCES = 8
PAGE_CONTEXT_CHARS = 1500

RESEARCH_FAILED_MESSAGE = "Research failed. Please try again."


@dataclass
class ResearchOutcome:
    success: bool
    message: str
    destinations: list[Destination] = field(default_factory=list)
    summary: ResearchSummary | None = None


def confirmation_message(destinations: list[Destination], summary: str = "") -> str:
    lines = [summary.strip()] if summary.strip() else []
    lines.append("Here are the destinations I found:")
    for i, d in enumerate(destinations, start=1):
        where = f" ({d.geographic_context})" if d.geographic_context else ""
        lines.append(f"{i}. {d.name}{where}: {d.rationale}".rstrip(": "))
    lines.append(
        "Confirm the ones you'd like to visit, or tell me what to change "
        "(e.g. \"keep 1 and 3\" or \"skip the cities\")."
    )
    return "\n".join(lines)


def parse_destinations(raw: list) -> list[Destination]:
    destinations: list[Destination] = []
    seen: set[str] = set()
    for item in raw:
        if not isinstance(item, dict):
            continue
        try:
            destination = Destination.model_validate(item)
        except ValidationError as e:
            logger.debug(f"Skipping malformed destination {item!r}: {e}")
            continue
        key = destination.name.strip().lower()
        if not key or key in seen:
            continue
        seen.add(key)
        destinations.append(destination)
    return destinations[:MAX_DESTINATIONS]


class ResearchOrchestrator:
    def __init__(
        self,
        store: TripStore,
        llm: GenerativeProviderClient,
        search: SearchProviderClient,
        enrichment: ContentEnrichmentClient,
        *,
        results_per_query: int = 5,
        enrich_top_urls: int = 3,
        enrichment_concurrency: int = 3,
        cost_target_usd: float = COST_TARGET_USD,
    ):
        self.store = store
        self.llm = llm
        self.search = search
        self.enrichment = enrichment
        self.results_per_query = results_per_query
        self.enrich_top_urls = enrich_top_urls
        self.enrichment_concurrency = enrichment_concurrency
        self.cost_target_usd = cost_target_usd

    async def _progress(self, trip_id: uuid.UUID, message: str, percent: int, **kwargs):
        await self.store.update_progress(trip_id, message, percent, **kwargs)

    async def run(self, trip_id: uuid.UUID, message: str) -> ResearchOutcome:
        """Run the research pipeline for a trip.

        Provider and parsing failures never escape: the trip is rolled back
        to ``researching`` with a user-facing message and the outcome says so.

        Raises:
            NotFound if the trip or its template is missing.
        """
        trip = await self.store.get_trip(trip_id)
        if trip is None:
            raise NotFound("trip", str(trip_id))
        template = await self.store.get_template(trip.template_id)
        if template is None:
            raise NotFound("template", trip.template_id)

        ledger = CostLedger(self.store, trip_id, baseline_usd=trip.total_cost_usd)
        try:
            await self._progress(
                trip_id, "Understanding your request...", 10, status=TripStatus.RESEARCHING
            )
            queries, constraints = await self.interpret(message, template, trip, ledger)
            await ledger.log("search_queries", details={"queries": queries, "constraints": constraints})

            await self._progress(trip_id, "Searching the web for destinations...", 30)
            results = await self.search.search_many(queries, ledger, self.results_per_query)
            await ledger.log(
                "search_results",
                details={
                    "total_results": sum(len(r) for r in results.values()),
                    "by_query": [{"query": q, "count": len(r)} for q, r in results.items()],
                },
            )

            await self._progress(trip_id, "Reading the most relevant sources...", 45)
            pages = await self.enrich(results, ledger)

            await self._progress(trip_id, "Identifying destinations...", 60)
            destinations, narrative = await self.synthesize(
                message, template, constraints, results, pages, trip, ledger
            )

            summary = ResearchSummary(
                queries=queries,
                sources=self._top_sources(results),
                summary=narrative,
            )
            await self._progress(trip_id, "Preparing recommendations...", 90)
            await self.store.update_research_destinations(
                trip_id, destinations, summary, progress_message="Recommendations ready!"
            )
            reply = confirmation_message(destinations, narrative)
            await self.store.append_chat_message(trip_id, "assistant", reply)
            logger.info(f"Research for trip {trip_id}: {len(destinations)} destinations")
            return ResearchOutcome(True, reply, destinations, summary)

        except Exception as e:
            logger.error(f"Research failed for trip {trip_id}: {e}")
            await ledger.log(
                "research_failed",
                details={"error": str(e), "error_type": type(e).__name__},
            )
            await self._progress(
                trip_id, RESEARCH_FAILED_MESSAGE, 0,
                status=TripStatus.RESEARCHING, error_message=str(e),
            )
            return ResearchOutcome(False, RESEARCH_FAILED_MESSAGE)

        finally:
            if ledger.exceeds_target(self.cost_target_usd):
                await ledger.log(
                    "cost_target_exceeded",
                    cost=ledger.total_cost_usd,
                    details={"phase": "research", "target_usd": self.cost_target_usd},
                )

    async def interpret(
        self, message: str, template: Template, trip: Trip, ledger: CostLedger
    ) -> tuple[list[str], dict]:
        """Free text → 2-4 search queries + constraints, falling back to the template queries."""
        prefs = trip.preferences.model_dump(exclude_none=True)
        constraints: dict = {"topic": message, **prefs}
        try:
            result = await self.llm.generate(
                GenerativeRequest(
                    system=INTERPRET_SYSTEM_PROMPT,
                    user=(
                        f"Trip theme: {template.name}\n"
                        f"Theme description: {template.description or ''}\n"
                        f"Traveller preferences: {json.dumps(prefs)}\n\n"
                        f"Request: {message}"
                    ),
                    max_tokens=500,
                    temperature=0.3,
                    task="interpret_request",
                ),
                ledger,
                model=trip.model_id,
            )
            parsed = extract_json(result.text, expect="object", required_keys=("queries",))
            queries = [q.strip() for q in parsed.get("queries", []) if isinstance(q, str) and q.strip()]
            extracted = parsed.get("constraints") or {}
            if isinstance(extracted, dict):
                constraints.update({k: v for k, v in extracted.items() if v})
        except (AllProvidersFailed, MalformedStructuredOutput) as e:
            logger.warning(f"Request interpretation failed, using template queries: {e}")
            await ledger.log("interpretation_fallback", details={"error": str(e)})
            queries = []

        if len(queries) < MIN_QUERIES:
            for q in self.template_queries(template, constraints):
                if q not in queries:
                    queries.append(q)
        return queries[:MAX_QUERIES], constraints

    @staticmethod
    def template_queries(template: Template, context: dict) -> list[str]:
        queries = [interpolate(q, context) for q in template.query_template.split(",")]
        return [q for q in queries if q]

    async def enrich(
        self, results: dict[str, list[SearchResult]], ledger: CostLedger
    ) -> list[ScrapedPage]:
        """Scrape the top URLs. Unconfigured enrichment degrades to snippets only."""
        if not self.enrichment.is_available():
            await ledger.log("enrichment_skipped", details={"reason": "not configured"})
            return []

        urls: list[str] = []
        # Round-robin across queries so each query contributes its best hit
        ranked = list(results.values())
        for rank in range(max((len(r) for r in ranked), default=0)):
            for hits in ranked:
                if rank < len(hits) and hits[rank].url not in urls:
                    urls.append(hits[rank].url)
        urls = urls[:self.enrich_top_urls]
        if not urls:
            return []

        pages = await self.enrichment.enrich_urls(urls, ledger, self.enrichment_concurrency)
        scraped = [p for p in pages if p is not None and p.markdown]
        await ledger.log(
            "enrichment_scrape",
            provider="firecrawl",
            details={"requested": len(urls), "scraped": len(scraped)},
        )
        return scraped

    async def synthesize(
        self,
        message: str,
        template: Template,
        constraints: dict,
        results: dict[str, list[SearchResult]],
        pages: list[ScrapedPage],
        trip: Trip,
        ledger: CostLedger,
    ) -> tuple[list[Destination], str]:
        search_context = ["Web search results:"]
        for i, (query, hits) in enumerate(results.items(), start=1):
            search_context.append(f'\nQuery {i}: "{query}"')
            for j, hit in enumerate(hits, start=1):
                search_context.append(f"{j}. {hit.title}\n   {hit.snippet}\n   {hit.url}")
        if not any(results.values()):
            search_context.append("(no web results; rely on your own knowledge)")

        page_context = []
        for page in pages:
            page_context.append(f"Source: {page.title or page.url}\n{page.summary[:PAGE_CONTEXT_CHARS]}")

        region = constraints.get("region")
        region_rule = (
            f"\nAll destinations MUST be located in or near {region}. Do not suggest places elsewhere.\n"
            if region else ""
        )
        user_context = "\n".join(
            f"- {k}: {v}" for k, v in constraints.items()
            if v and k not in ("departure_airport", "luxury_level", "activity_level")
        )
        prompt = "\n".join(filter(None, [
            interpolate(template.destination_criteria, constraints),
            region_rule,
            interpolate(template.research_synthesis_prompt, constraints),
            f"Traveller's request: {message}",
            f"Request context:\n{user_context}",
            "\n".join(search_context),
            "Full page extracts:\n\n" + "\n\n".join(page_context) if page_context else "",
            SYNTHESIS_FORMAT,
        ]))

        result = await self.llm.generate(
            GenerativeRequest(
                system=(
                    f"You are a {template.name} travel research assistant. "
                    "Respond ONLY with valid JSON."
                ),
                user=prompt,
                max_tokens=2000,
                temperature=0.7,
                task="destination_synthesis",
            ),
            ledger,
            model=trip.model_id,
        )
        parsed = extract_json(result.text, expect="object", required_keys=("destinations",))
        raw = parsed.get("destinations")
        if not isinstance(raw, list):
            raise MalformedStructuredOutput("destinations is not a list", result.text)
        destinations = parse_destinations(raw)
        if not destinations:
            raise MalformedStructuredOutput("no usable destinations", result.text)
        summary = parsed.get("summary")
        return destinations, summary if isinstance(summary, str) else ""

    @staticmethod
    def _top_sources(results: dict[str, list[SearchResult]]) -> list[ResearchSource]:
        sources: list[ResearchSource] = []
        seen: set[str] = set()
        for hits in results.values():
            for hit in hits:
                if hit.url in seen:
                    continue
                seen.add(hit.url)
                sources.append(ResearchSource(title=hit.title or hit.url, url=hit.url))
                if len(sources) >= MAX_SOURCES:
                    return sources
        return sources

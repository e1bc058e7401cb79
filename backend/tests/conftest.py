"""
Shared fixtures and test doubles.

The in-memory store implements the full TripStore protocol so orchestrators
can be exercised without a database; scripted adapters stand in for the
generative and search providers.
"""

import json
import uuid
from collections import defaultdict
from datetime import datetime, timezone

import pytest

from wayfinder.schemas.template import ModelInfo, Template
from wayfinder.schemas.trip import (
    ChatMessage,
    Destination,
    ResearchSummary,
    TelemetryEntry,
    Trip,
    TripOption,
    TripPreferences,
    TripStatus,
)
from wayfinder.services.amadeus_client import AmadeusClient
from wayfinder.services.cost_ledger import CostLedger
from wayfinder.services.firecrawl_client import ScrapedPage
from wayfinder.services.llm_client import GenerativeProviderClient, GenerativeResult
from wayfinder.services.provider_config import ProviderDescriptor
from wayfinder.services.research_orchestrator import ResearchOrchestrator
from wayfinder.services.search_client import SearchProviderClient, SearchResult
from wayfinder.services.task_runner import TaskRunner
from wayfinder.services.trip_builder import TripBuildOrchestrator
from wayfinder.services.trip_workflow import TripWorkflow
from wayfinder.services.viator_client import ViatorClient


# ============================================================================
# In-memory TripStore
# ============================================================================


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryTripStore:
    """TripStore over plain dicts. Reads return copies, like a database would."""

    def __init__(self, templates: list[Template] | None = None):
        self.trips: dict[uuid.UUID, Trip] = {}
        self.templates = {t.id: t for t in templates or []}
        self.telemetry: dict[uuid.UUID, list[TelemetryEntry]] = defaultdict(list)
        self.cost_updates: list[tuple[uuid.UUID, float, float]] = []

    def put(self, trip: Trip) -> Trip:
        self.trips[trip.id] = trip
        return trip

    def events(self, trip_id: uuid.UUID) -> list[str]:
        return [e.event for e in self.telemetry[trip_id]]

    def _update(self, trip_id: uuid.UUID, **values) -> bool:
        trip = self.trips.get(trip_id)
        if trip is None:
            return False
        self.trips[trip_id] = trip.model_copy(update={**values, "updated_at": _now()})
        return True

    async def get_trip(self, trip_id):
        trip = self.trips.get(trip_id)
        return trip.model_copy(deep=True) if trip else None

    async def create_trip(self, template_id, initial_message, preferences=None, model_id=None):
        trip = Trip(
            id=uuid.uuid4(),
            template_id=template_id,
            status=TripStatus.RESEARCHING,
            model_id=model_id,
            initial_message=initial_message,
            preferences=TripPreferences(**(preferences or {})),
            progress_message="Starting research...",
            created_at=_now(),
            updated_at=_now(),
        )
        self.trips[trip.id] = trip
        return trip.model_copy(deep=True)

    async def get_template(self, template_id):
        return self.templates.get(template_id)

    async def list_templates(self):
        return sorted(
            (t for t in self.templates.values() if t.is_active),
            key=lambda t: (t.display_order, t.name),
        )

    async def update_progress(self, trip_id, message, percent, *, status=None, error_message=None):
        values = {"progress_message": message, "progress_percent": percent}
        if status is not None:
            values["status"] = status
        if error_message is not None:
            values["error_message"] = error_message
        self._update(trip_id, **values)

    async def update_costs(self, trip_id, ai_delta, api_delta):
        self.cost_updates.append((trip_id, ai_delta, api_delta))
        trip = self.trips.get(trip_id)
        if trip is not None:
            self._update(
                trip_id,
                ai_cost_usd=trip.ai_cost_usd + ai_delta,
                api_cost_usd=trip.api_cost_usd + api_delta,
            )

    async def append_telemetry(self, trip_id, entry):
        self.telemetry[trip_id].append(entry)

    async def list_telemetry(self, trip_id):
        return list(self.telemetry[trip_id])

    async def append_chat_message(self, trip_id, role, content):
        trip = self.trips.get(trip_id)
        if trip is not None:
            message = ChatMessage(role=role, content=content, timestamp=_now())
            self._update(trip_id, chat_history=[*trip.chat_history, message])

    async def update_preferences(self, trip_id, preferences):
        self._update(trip_id, preferences=TripPreferences(**preferences))

    async def update_research_destinations(self, trip_id, destinations, summary=None, *, progress_message=None):
        values = {
            "research_destinations": list(destinations),
            "status": TripStatus.AWAITING_CONFIRMATION,
            "progress_message": progress_message or "Research complete",
            "progress_percent": 100,
            "error_message": None,
        }
        if summary is not None:
            values["research_summary"] = summary
        self._update(trip_id, **values)

    async def confirm_destinations(self, trip_id, names, progress_message):
        trip = self.trips.get(trip_id)
        if trip is None or trip.destinations_confirmed:
            return False
        return self._update(
            trip_id,
            destinations_confirmed=True,
            confirmed_destinations=list(names),
            status=TripStatus.BUILDING,
            progress_message=progress_message,
            progress_percent=0,
            error_message=None,
            options=[],
            selected_option_index=None,
        )

    async def rollback_confirmation(self, trip_id, error_message):
        self._update(
            trip_id,
            destinations_confirmed=False,
            confirmed_destinations=[],
            status=TripStatus.AWAITING_CONFIRMATION,
            progress_message=error_message,
            progress_percent=0,
            error_message=error_message,
        )

    async def update_trip_options(self, trip_id, options):
        self._update(
            trip_id,
            options=[o.model_copy(deep=True) for o in options],
            selected_option_index=None,
            status=TripStatus.OPTIONS_READY,
            progress_message="Trip options ready!",
            progress_percent=100,
        )

    async def update_option_itinerary(self, trip_id, option_index, itinerary):
        trip = self.trips.get(trip_id)
        if trip is None:
            return
        options = [
            o.model_copy(update={"daily_itinerary": itinerary}) if o.option_index == option_index else o
            for o in trip.options
        ]
        self._update(trip_id, options=options)

    async def select_trip_option(self, trip_id, option_index):
        self._update(trip_id, selected_option_index=option_index, status=TripStatus.OPTION_SELECTED)

    async def mark_handed_off(self, trip_id):
        self._update(trip_id, status=TripStatus.HANDED_OFF, handed_off_at=_now())

    async def purge_telemetry(self, older_than):
        removed = 0
        for trip_id, entries in self.telemetry.items():
            kept = [e for e in entries if e.timestamp >= older_than]
            removed += len(entries) - len(kept)
            self.telemetry[trip_id] = kept
        return removed


class FakeModelDirectory:
    def __init__(self, models: list[ModelInfo] | None = None, fail: bool = False):
        self.models = {m.id: m for m in models or []}
        self.fail = fail

    async def get_model(self, key):
        if self.fail:
            raise RuntimeError("directory offline")
        return self.models.get(key)

    async def get_default_model(self):
        if self.fail:
            raise RuntimeError("directory offline")
        return next((m for m in self.models.values() if m.is_default), None)


# ============================================================================
# Provider doubles
# ============================================================================


class ScriptedGenerativeAdapter:
    """Generative adapter that answers by task name.

    ``replies`` maps a GenerativeRequest.task to a reply string or an
    exception to raise; "*" is the catch-all.
    """

    def __init__(
        self,
        name: str = "openai",
        priority: int = 1,
        replies: dict | None = None,
        *,
        error: Exception | None = None,
        tokens: tuple[int, int] = (1000, 500),
        input_cost_per_1m: float = 0.15,
        output_cost_per_1m: float = 0.60,
        available: bool = True,
    ):
        self.descriptor = ProviderDescriptor(
            name=name,
            priority=priority,
            model=f"{name}-model",
            input_cost_per_1m=input_cost_per_1m,
            output_cost_per_1m=output_cost_per_1m,
            api_key="test-key" if available else "",
        )
        self.replies = replies or {}
        self.error = error
        self.tokens = tokens
        self.calls: list[tuple[str, str]] = []
        self.requests: list = []

    @property
    def name(self) -> str:
        return self.descriptor.name

    def is_available(self) -> bool:
        return self.descriptor.is_available()

    def tasks(self) -> list[str]:
        return [task for task, _ in self.calls]

    async def execute(self, request, model):
        self.calls.append((request.task, model))
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        reply = self.replies.get(request.task, self.replies.get("*"))
        if reply is None:
            raise RuntimeError(f"no scripted reply for {request.task}")
        if isinstance(reply, Exception):
            raise reply
        return GenerativeResult(text=reply, tokens_in=self.tokens[0], tokens_out=self.tokens[1])


class FakeSearchAdapter:
    def __init__(self, name="serper", priority=1, *, results=None, error=None, cost_per_call=0.002, available=True):
        self.descriptor = ProviderDescriptor(
            name=name,
            priority=priority,
            cost_per_call=cost_per_call,
            api_key="test-key" if available else "",
        )
        self.results = results
        self.error = error
        self.queries: list[str] = []

    @property
    def name(self) -> str:
        return self.descriptor.name

    def is_available(self) -> bool:
        return self.descriptor.is_available()

    async def execute(self, query, num_results):
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        if self.results is not None:
            return self.results[:num_results]
        slug = query.lower().replace(" ", "-")
        return [
            SearchResult(
                title=f"{query} result {i}",
                url=f"https://example.com/{slug}/{i}",
                snippet=f"Snippet {i} about {query}",
                source=self.name,
            )
            for i in range(1, num_results + 1)
        ]


class FakeSearchCache:
    def __init__(self):
        self.entries: dict[tuple[str, int], list[dict]] = {}

    async def get_search(self, query, num_results):
        return self.entries.get((query, num_results))

    async def set_search(self, query, num_results, results):
        self.entries[(query, num_results)] = results

    async def close(self):
        pass


class FakeEnrichmentClient:
    """Stands in for ContentEnrichmentClient; counts booking URL lookups."""

    def __init__(self, available: bool = True, failing: tuple[str, ...] = ()):
        self.available = available
        self.failing = set(failing)
        self.lookups: list[tuple[str, str, str]] = []
        self.scraped: list[str] = []

    def is_available(self) -> bool:
        return self.available

    async def enrich_urls(self, urls, ledger, concurrency=None):
        self.scraped.extend(urls)
        return [
            ScrapedPage(url=url, title=f"Page {i}", markdown=f"# Page {i}\nDetails about the region.")
            for i, url in enumerate(urls, start=1)
        ]

    async def find_booking_url(self, name, city, kind, ledger):
        self.lookups.append((name, city, kind))
        if name in self.failing:
            raise RuntimeError(f"search backend error for {name}")
        await ledger.track_api("firecrawl", "search")
        slug = name.lower().replace(" ", "-")
        return f"https://www.booking.com/{slug}" if kind == "hotel" else f"https://www.viator.com/{slug}"

    async def close(self):
        pass


# ============================================================================
# Canned model output
# ============================================================================


def interpretation_reply(region: str = "Ireland") -> str:
    return json.dumps({
        "queries": [f"Murphy family origins {region}", f"{region} heritage towns"],
        "constraints": {"region": region, "topic": "Murphy ancestry"},
    })


def synthesis_reply(names=("Dublin", "Cork", "Galway")) -> str:
    destinations = [
        {
            "name": name,
            "geographic_context": "Ireland",
            "key_sites": [f"{name} Castle"],
            "rationale": f"{name} has strong Murphy family records",
            "estimated_days": 2,
        }
        for name in names
    ]
    return "Sure! ```json\n" + json.dumps({"summary": "Murphys cluster in Munster.", "destinations": destinations}) + "\n```"


def options_reply(cities=("Dublin", "Cork"), count: int = 2) -> str:
    options = []
    for i in range(1, count + 1):
        options.append({
            "option_index": i,
            "total_cost_usd": 1,  # wrong on purpose, recomputed from line items
            "flights": {
                "outbound": {"route": "JFK-DUB", "airline": "Aer Lingus"},
                "return": {"route": "DUB-JFK", "airline": "Aer Lingus"},
                "price_usd": 800 + 100 * i,
            },
            "hotels": [
                {"city": city, "name": f"The {city} Grand", "rating": 4, "nights": 3, "cost_per_night_usd": 150 + 10 * i}
                for city in cities
            ],
            "tours": [
                {"city": cities[0], "name": "Walking Heritage Tour", "duration": "3h", "cost_usd": 45.5},
            ],
            "itinerary_highlights": f"Option {i} highlights",
        })
    return json.dumps(options)


def itinerary_reply() -> str:
    return json.dumps([
        {"day": 1, "city": "Dublin", "title": "Arrival", "activities": [{"time": "15:00", "activity": "Check in"}]},
        {"day": 2, "city": "Dublin", "title": "Archives", "activities": [{"time": "09:00", "activity": "National Archives"}]},
    ])


# ============================================================================
# Fixtures
# ============================================================================


HERITAGE_TEMPLATE = Template(
    id="heritage",
    name="Heritage & Ancestry",
    description="Visit the places your family came from.",
    query_template="{topic} ancestral homeland {region}, {region} heritage towns to visit",
    destination_criteria="Pick towns with a documented link to the family history.",
    research_synthesis_prompt="Explain how each destination connects to the traveller's heritage.",
    options_prompt="Create {number_of_options} heritage trip options at a {luxury_level} comfort level.",
    daily_activity_prompt="Plan each day at a {activity_level} pace.",
    number_of_options=2,
)


@pytest.fixture
def template() -> Template:
    return HERITAGE_TEMPLATE


@pytest.fixture
def store(template) -> InMemoryTripStore:
    return InMemoryTripStore([template])


@pytest.fixture
def trip_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def ledger(store, trip_id) -> CostLedger:
    return CostLedger(store, trip_id)


@pytest.fixture
def llm_adapter() -> ScriptedGenerativeAdapter:
    return ScriptedGenerativeAdapter(
        replies={
            "interpret_request": interpretation_reply(),
            "destination_synthesis": synthesis_reply(),
            "trip_options": options_reply(),
            "daily_itinerary": itinerary_reply(),
            "chat": "Cork is lovely in June.",
        }
    )


@pytest.fixture
def llm(llm_adapter) -> GenerativeProviderClient:
    return GenerativeProviderClient([llm_adapter])


@pytest.fixture
def search_adapter() -> FakeSearchAdapter:
    return FakeSearchAdapter()


@pytest.fixture
def search(search_adapter) -> SearchProviderClient:
    return SearchProviderClient([search_adapter])


@pytest.fixture
def enrichment() -> FakeEnrichmentClient:
    return FakeEnrichmentClient()


@pytest.fixture
def research(store, llm, search, enrichment) -> ResearchOrchestrator:
    return ResearchOrchestrator(store, llm, search, enrichment)


@pytest.fixture
def builder(store, llm, enrichment) -> TripBuildOrchestrator:
    # Partner APIs left unconfigured: options are synthesized without live inventory
    return TripBuildOrchestrator(
        store, llm, enrichment,
        AmadeusClient(client_id="", client_secret=""),
        ViatorClient(api_key=""),
    )


@pytest.fixture
async def runner():
    runner = TaskRunner()
    yield runner
    await runner.shutdown()


@pytest.fixture
def workflow(store, research, builder, runner) -> TripWorkflow:
    return TripWorkflow(store, research, builder, runner)


def make_trip(store: InMemoryTripStore, **fields) -> Trip:
    """Insert a trip directly in the given state."""
    defaults = {
        "id": uuid.uuid4(),
        "template_id": HERITAGE_TEMPLATE.id,
        "status": TripStatus.RESEARCHING,
        "initial_message": "My family are Murphys from Cork",
    }
    return store.put(Trip(**{**defaults, **fields}))


def researched_trip(store: InMemoryTripStore, names=("Dublin", "Cork", "Galway"), **fields) -> Trip:
    defaults = {
        "status": TripStatus.AWAITING_CONFIRMATION,
        "research_destinations": [Destination(name=n, geographic_context="Ireland") for n in names],
        "research_summary": ResearchSummary(summary="Murphys cluster in Munster."),
        "progress_percent": 100,
    }
    return make_trip(store, **{**defaults, **fields})


def sample_option(index: int = 1, cities=("Dublin", "Cork")) -> TripOption:
    option = TripOption.model_validate({
        "option_index": index,
        "flights": {"outbound": {"route": "JFK-DUB"}, "return": {"route": "DUB-JFK"}, "price_usd": 900},
        "hotels": [{"city": c, "name": f"The {c} Grand", "nights": 3, "cost_per_night_usd": 150} for c in cities],
        "tours": [{"city": cities[0], "name": "Walking Tour", "cost_usd": 50}],
    })
    option.total_cost_usd = option.line_item_total()
    return option


def built_trip(store: InMemoryTripStore, **fields) -> Trip:
    trip = researched_trip(store, **fields)
    return store.put(trip.model_copy(update={
        "status": TripStatus.OPTIONS_READY,
        "destinations_confirmed": True,
        "confirmed_destinations": ["Dublin", "Cork"],
        "options": [sample_option(1), sample_option(2)],
    }))

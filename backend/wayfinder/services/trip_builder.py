"""Phase 2: trip option building and on-demand daily itineraries.

search bookables per confirmed destination (best effort) → synthesize 2-4
priced options → resolve booking URLs (bounded, per-run cache) → persist.
"""

import json
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import date, timedelta

from pydantic import ValidationError

from wayfinder.errors import (
    AllProvidersFailed,
    BackgroundPipelineFailure,
    MalformedStructuredOutput,
    NotFound,
    PhaseViolation,
)
from wayfinder.schemas.template import Template
from wayfinder.schemas.trip import HotelStay, TourItem, Trip, TripOption, TripPreferences
from wayfinder.services.amadeus_client import AmadeusClient, hotel_ratings_for, travel_class_for
from wayfinder.services.bounded_pipeline import EnrichmentCache, run_bounded
from wayfinder.services.cost_ledger import CostLedger
from wayfinder.services.firecrawl_client import ContentEnrichmentClient
from wayfinder.services.llm_client import GenerativeProviderClient, GenerativeRequest
from wayfinder.services.phase_gate import INVALID_OPTION_INDEX, phase_gate
from wayfinder.services.prompts import ITINERARY_FORMAT, OPTIONS_FORMAT, interpolate
from wayfinder.services.provider_config import COST_TARGET_USD
from wayfinder.services.structured_output import extract_json
from wayfinder.services.trip_store import TripStore
from wayfinder.services.viator_client import ViatorClient

logger = logging.getLogger(__name__)

DEFAULT_TRIP_DAYS = 7
DEFAULT_LEAD_DAYS = 30
ITEMS_PER_DESTINATION = 3
BUILD_FAILED_MESSAGE = "We couldn't build your trip options. Please confirm your destinations again to retry."


@dataclass
class TravelPlan:
    departure_date: date
    return_date: date
    nights: dict[str, int]
    travel_class: str
    hotel_ratings: str
    adults: int
    children: int
    departure_airport: str | None


def parse_duration_days(duration: str | None, default: int = DEFAULT_TRIP_DAYS) -> int:
    """'10 days' → 10, '2 weeks' → 14, 'a week' → 7, 'long weekend' → 3."""
    if not duration:
        return default
    text = duration.lower()
    if "weekend" in text:
        return 3
    match = re.search(r"(\d+)\s*(day|night|week)?", text)
    if match:
        value = int(match.group(1))
        if match.group(2) == "week":
            value *= 7
        return max(value, 1)
    if "week" in text:
        return 7
    return default


def split_nights(destinations: list[str], total_days: int) -> dict[str, int]:
    """Spread nights evenly; earlier stops take the remainder."""
    if not destinations:
        return {}
    base, extra = divmod(max(total_days, len(destinations)), len(destinations))
    return {name: base + (1 if i < extra else 0) for i, name in enumerate(destinations)}


def make_plan(destinations: list[str], prefs: TripPreferences, today: date | None = None) -> TravelPlan:
    today = today or date.today()
    departure = today + timedelta(days=DEFAULT_LEAD_DAYS)
    if prefs.departure_date:
        try:
            departure = date.fromisoformat(prefs.departure_date[:10])
        except ValueError:
            logger.warning(f"Ignoring unparseable departure date {prefs.departure_date!r}")
    days = parse_duration_days(prefs.duration)
    return TravelPlan(
        departure_date=departure,
        return_date=departure + timedelta(days=days),
        nights=split_nights(destinations, days),
        travel_class=travel_class_for(prefs.luxury_level),
        hotel_ratings=hotel_ratings_for(prefs.luxury_level),
        adults=prefs.travelers_adults,
        children=prefs.travelers_children,
        departure_airport=prefs.departure_airport,
    )


def _money(value) -> float:
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        match = re.search(r"-?\d+(?:\.\d+)?", value.replace(",", ""))
        if match:
            return float(match.group())
    return 0.0


def _count(value, default: int = 1) -> int:
    number = _money(value)
    return int(number) if number >= 1 else default


def _city_matches(city: str, allowed: set[str]) -> bool:
    name = city.split(",")[0].strip().lower()
    return name in allowed or city.strip().lower() in allowed


def _items(raw: dict, key: str) -> list:
    value = raw.get(key)
    return value if isinstance(value, list) else []


def normalize_option(raw: dict, option_index: int, confirmed: list[str]) -> tuple[TripOption, int]:
    """Coerce model output into a TripOption; returns the option and how many items were dropped.

    Hotels and tours outside the confirmed destinations are dropped and the
    total is recomputed from the remaining line items.
    """
    allowed = {c.strip().lower() for c in confirmed}
    dropped = 0

    hotels: list[HotelStay] = []
    for item in _items(raw, "hotels"):
        if not isinstance(item, dict) or not _city_matches(str(item.get("city", "")), allowed):
            dropped += 1
            continue
        try:
            hotels.append(HotelStay(
                city=item["city"],
                name=item.get("name") or "Hotel",
                rating=_money(item["rating"]) if item.get("rating") is not None else None,
                nights=_count(item.get("nights")),
                cost_per_night_usd=_money(item.get("cost_per_night_usd")),
                booking_url=item.get("booking_url"),
            ))
        except (KeyError, ValidationError):
            dropped += 1

    tours: list[TourItem] = []
    for item in _items(raw, "tours"):
        if not isinstance(item, dict) or not _city_matches(str(item.get("city", "")), allowed):
            dropped += 1
            continue
        try:
            tours.append(TourItem(
                city=item["city"],
                name=item.get("name") or "Tour",
                duration=str(item["duration"]) if item.get("duration") else None,
                cost_usd=_money(item.get("cost_usd")),
                booking_url=item.get("booking_url"),
            ))
        except (KeyError, ValidationError):
            dropped += 1

    flights_raw = raw.get("flights") if isinstance(raw.get("flights"), dict) else {}
    flights = {
        "outbound": flights_raw.get("outbound") if isinstance(flights_raw.get("outbound"), dict) else {},
        "return": flights_raw.get("return") if isinstance(flights_raw.get("return"), dict) else {},
        "price_usd": _money(flights_raw.get("price_usd", flights_raw.get("total_price_usd"))),
    }
    highlights = raw.get("itinerary_highlights") or ""
    if isinstance(highlights, list):
        highlights = " ".join(str(h) for h in highlights)

    option = TripOption(
        option_index=option_index,
        flights=flights,
        hotels=hotels,
        tours=tours,
        itinerary_highlights=str(highlights),
    )
    option.total_cost_usd = option.line_item_total()
    return option, dropped


class TripBuildOrchestrator:
    def __init__(
        self,
        store: TripStore,
        llm: GenerativeProviderClient,
        enrichment: ContentEnrichmentClient,
        amadeus: AmadeusClient,
        viator: ViatorClient,
        *,
        concurrency: int = 3,
        cost_target_usd: float = COST_TARGET_USD,
    ):
        self.store = store
        self.llm = llm
        self.enrichment = enrichment
        self.amadeus = amadeus
        self.viator = viator
        self.concurrency = concurrency
        self.cost_target_usd = cost_target_usd

    async def _load(self, trip_id: uuid.UUID) -> tuple[Trip, Template]:
        trip = await self.store.get_trip(trip_id)
        if trip is None:
            raise NotFound("trip", str(trip_id))
        template = await self.store.get_template(trip.template_id)
        if template is None:
            raise NotFound("template", trip.template_id)
        return trip, template

    async def build(self, trip_id: uuid.UUID) -> list[TripOption]:
        """Build and persist trip options.

        On failure the trip is rolled back to awaiting_confirmation (confirmation
        cleared, so it can be retried) and BackgroundPipelineFailure is raised.
        """
        trip, template = await self._load(trip_id)
        phase_gate.check_phase2_access(trip).raise_for_violation()

        ledger = CostLedger(self.store, trip_id, baseline_usd=trip.total_cost_usd)
        try:
            await ledger.log("phase2_start", details={"destinations": trip.confirmed_destinations})
            plan = make_plan(trip.confirmed_destinations, trip.preferences)

            await self.store.update_progress(trip_id, "Searching flights, hotels and tours...", 10)
            flights, hotels, tours = await self.search_bookables(trip, plan, ledger)

            await self.store.update_progress(trip_id, "Designing your trip options...", 50)
            options = await self.synthesize_options(trip, template, plan, flights, hotels, tours, ledger)

            await self.store.update_progress(trip_id, "Finding booking links...", 75)
            await self.enrich_booking_urls(options, ledger)

            await self.store.update_trip_options(trip_id, options)
            logger.info(f"Built {len(options)} options for trip {trip_id}")
            return options

        except Exception as e:
            logger.error(f"Trip build failed for trip {trip_id}: {e}")
            await ledger.log("build_failed", details={"error": str(e), "error_type": type(e).__name__})
            await self.store.rollback_confirmation(trip_id, BUILD_FAILED_MESSAGE)
            raise BackgroundPipelineFailure(str(trip_id), "trip_build", e) from e

        finally:
            if ledger.exceeds_target(self.cost_target_usd):
                await ledger.log(
                    "cost_target_exceeded",
                    cost=ledger.total_cost_usd,
                    details={"phase": "build", "target_usd": self.cost_target_usd},
                )

    async def _best_effort(self, ledger: CostLedger, provider: str, operation: str, call, **details) -> list[dict]:
        """Run one booking search; failures yield [] and are logged."""
        try:
            return await call()
        except Exception as e:
            logger.warning(f"{provider} {operation} failed ({details}): {e}")
            await ledger.log(
                "booking_search_failed",
                provider=provider,
                details={"operation": operation, "error": str(e), **details},
            )
            return []

    async def search_bookables(
        self, trip: Trip, plan: TravelPlan, ledger: CostLedger
    ) -> tuple[list[dict], dict[str, list[dict]], dict[str, list[dict]]]:
        destinations = trip.confirmed_destinations

        flights: list[dict] = []
        if not self.amadeus.is_available():
            await ledger.log("booking_provider_unavailable", provider="amadeus")
        elif not plan.departure_airport:
            await ledger.log("booking_search_skipped", provider="amadeus", details={"reason": "no departure airport"})
        else:
            flights = await self._best_effort(
                ledger, "amadeus", "flight_search",
                lambda: self.amadeus.search_flights(
                    plan.departure_airport,
                    destinations[0],
                    plan.departure_date,
                    plan.return_date,
                    ledger,
                    adults=plan.adults,
                    children=plan.children,
                    travel_class=plan.travel_class,
                ),
                destination=destinations[0],
            )

        if not self.viator.is_available():
            await ledger.log("booking_provider_unavailable", provider="viator")

        async def per_destination(city: str) -> tuple[list[dict], list[dict]]:
            city_hotels: list[dict] = []
            city_tours: list[dict] = []
            if self.amadeus.is_available():
                check_in = plan.departure_date + timedelta(
                    days=sum(plan.nights[d] for d in destinations[:destinations.index(city)])
                )
                city_hotels = await self._best_effort(
                    ledger, "amadeus", "hotel_search",
                    lambda: self.amadeus.search_hotels(
                        city, check_in, check_in + timedelta(days=plan.nights[city]), ledger,
                        adults=plan.adults, ratings=plan.hotel_ratings,
                        max_results=ITEMS_PER_DESTINATION,
                    ),
                    city=city,
                )
            if self.viator.is_available():
                city_tours = await self._best_effort(
                    ledger, "viator", "product_search",
                    lambda: self.viator.search_tours(city, ledger, limit=ITEMS_PER_DESTINATION),
                    city=city,
                )
            return city_hotels[:ITEMS_PER_DESTINATION], city_tours[:ITEMS_PER_DESTINATION]

        per_city = await run_bounded(destinations, per_destination, self.concurrency)
        hotels = {city: result[0] for city, result in zip(destinations, per_city)}
        tours = {city: result[1] for city, result in zip(destinations, per_city)}
        return flights[:ITEMS_PER_DESTINATION], hotels, tours

    async def synthesize_options(
        self,
        trip: Trip,
        template: Template,
        plan: TravelPlan,
        flights: list[dict],
        hotels: dict[str, list[dict]],
        tours: dict[str, list[dict]],
        ledger: CostLedger,
    ) -> list[TripOption]:
        count = template.option_count
        prefs = trip.preferences
        context = {
            **prefs.model_dump(exclude_none=True),
            "number_of_options": count,
            "destinations": ", ".join(trip.confirmed_destinations),
        }
        stops = "\n".join(f"- {name}: {plan.nights[name]} nights" for name in trip.confirmed_destinations)
        inventory = {
            "flights": flights,
            "hotels": hotels,
            "tours": tours,
        }
        has_inventory = bool(flights) or any(hotels.values()) or any(tours.values())

        prompt = "\n\n".join(filter(None, [
            interpolate(template.options_prompt, context),
            f"Confirmed destinations (use ONLY these, in this order):\n{stops}",
            (
                f"Travellers: {plan.adults} adults, {plan.children} children. "
                f"Departing {plan.departure_airport or 'the traveller home airport'} on "
                f"{plan.departure_date.isoformat()}, returning {plan.return_date.isoformat()}. "
                f"Comfort level: {prefs.luxury_level}. Activity level: {prefs.activity_level}."
            ),
            (
                f"Available booking data:\n{json.dumps(inventory, default=str)}"
                if has_inventory else
                "No live booking data is available. Use realistic placeholder flights, hotels and tours with plausible prices."
            ),
            (
                f"Create exactly {count} distinct options at different price points. "
                "Never include a city that is not in the confirmed destinations list. "
                "Every hotel and tour must name one of the confirmed destinations as its city."
            ),
            OPTIONS_FORMAT,
        ]))

        result = await self.llm.generate(
            GenerativeRequest(
                system=f"You are a {template.name} trip planner. Respond ONLY with a valid JSON array.",
                user=prompt,
                max_tokens=3000,
                temperature=0.7,
                task="trip_options",
            ),
            ledger,
            model=trip.model_id,
        )
        raw_options = extract_json(result.text, expect="array", key="options")

        options: list[TripOption] = []
        dropped_total = 0
        for raw in raw_options:
            if not isinstance(raw, dict):
                continue
            try:
                option, dropped = normalize_option(raw, len(options) + 1, trip.confirmed_destinations)
            except ValidationError as e:
                logger.warning(f"Skipping malformed trip option: {e}")
                continue
            dropped_total += dropped
            options.append(option)
            if len(options) >= count:
                break
        if not options:
            raise MalformedStructuredOutput("no usable trip options", result.text)

        if dropped_total:
            await ledger.log("option_items_dropped", details={"dropped": dropped_total})
        await ledger.log(
            "trip_options_generation",
            provider=result.provider,
            model=result.model,
            tokens=result.tokens_in + result.tokens_out,
            cost=result.cost,
            details={"options": len(options), "live_inventory": has_inventory},
        )
        return options

    async def enrich_booking_urls(
        self, options: list[TripOption], ledger: CostLedger, cache: EnrichmentCache | None = None
    ) -> EnrichmentCache:
        """Resolve a booking URL for every hotel and tour lacking one, once per (name, city, kind)."""
        cache = cache if cache is not None else EnrichmentCache()
        if not self.enrichment.is_available():
            await ledger.log("booking_url_enrichment", details={"skipped": "not configured"})
            return cache

        items: list[tuple[HotelStay | TourItem, str]] = []
        for option in options:
            items.extend((h, "hotel") for h in option.hotels if not h.booking_url)
            items.extend((t, "tour") for t in option.tours if not t.booking_url)

        async def resolve(entry: tuple[HotelStay | TourItem, str]) -> str | None:
            item, kind = entry
            return await cache.get_or_resolve(
                item.name, item.city, kind,
                lambda: self.enrichment.find_booking_url(item.name, item.city, kind, ledger),
            )

        results = await run_bounded(items, resolve, self.concurrency, return_exceptions=True)
        urls: list[str | None] = []
        for (item, kind), result in zip(items, results):
            if isinstance(result, Exception):
                logger.warning(f"Booking URL lookup failed for {kind} {item.name!r} in {item.city}: {result}")
                await ledger.log(
                    "enrichment_failed",
                    provider="firecrawl",
                    details={"operation": "booking_url", "name": item.name, "city": item.city, "kind": kind, "error": str(result)},
                )
                result = None
            elif isinstance(result, BaseException):
                raise result
            item.booking_url = result
            urls.append(result)

        await ledger.log(
            "booking_url_enrichment",
            provider="firecrawl",
            details={
                "items": len(items),
                "lookups": cache.misses,
                "cache_hits": cache.hits,
                "resolved": sum(1 for u in urls if u),
            },
        )
        return cache

    async def generate_itinerary(self, trip_id: uuid.UUID, option_index: int) -> tuple[list[dict], bool]:
        """Day-by-day itinerary for one option; cached on the option after the first call.

        Returns (itinerary, cached). Generation failures are logged and re-raised;
        they never touch the rest of the trip.
        """
        trip, template = await self._load(trip_id)
        phase_gate.check_options_ready(trip).raise_for_violation()
        option = next((o for o in trip.options if o.option_index == option_index), None)
        if option is None:
            raise PhaseViolation(INVALID_OPTION_INDEX, f"Option {option_index} does not exist")
        if option.daily_itinerary:
            return option.daily_itinerary, True

        ledger = CostLedger(self.store, trip_id, baseline_usd=trip.total_cost_usd)
        stays = "\n".join(f"- {h.city}: {h.nights} nights at {h.name}" for h in option.hotels)
        tours = "\n".join(f"- {t.city}: {t.name} ({t.duration or 'duration n/a'})" for t in option.tours)
        context = {
            **trip.preferences.model_dump(exclude_none=True),
            "destinations": ", ".join(trip.confirmed_destinations),
        }
        prompt = "\n\n".join(filter(None, [
            interpolate(template.daily_activity_prompt, context),
            f"Destinations in order: {', '.join(trip.confirmed_destinations)}",
            f"Hotel stays:\n{stays}" if stays else "",
            f"Booked tours:\n{tours}" if tours else "",
            f"Option summary: {option.itinerary_highlights}" if option.itinerary_highlights else "",
            f"Activity level: {trip.preferences.activity_level}",
            ITINERARY_FORMAT,
        ]))

        try:
            result = await self.llm.generate(
                GenerativeRequest(
                    system=f"You are a {template.name} itinerary planner. Respond ONLY with a valid JSON array.",
                    user=prompt,
                    max_tokens=3000,
                    temperature=0.7,
                    task="daily_itinerary",
                ),
                ledger,
                model=trip.model_id,
            )
            itinerary = extract_json(result.text, expect="array", key="days", required_keys=("day",))
        except (AllProvidersFailed, MalformedStructuredOutput) as e:
            logger.error(f"Itinerary generation failed for trip {trip_id} option {option_index}: {e}")
            await ledger.log(
                "itinerary_error",
                details={"option_index": option_index, "error": str(e), "error_type": type(e).__name__},
            )
            raise

        await self.store.update_option_itinerary(trip_id, option_index, itinerary)
        return itinerary, False

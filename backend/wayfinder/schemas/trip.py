import re
import uuid
from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class TripStatus:
    RESEARCHING = "researching"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    BUILDING = "building_trip"
    OPTIONS_READY = "options_ready"
    OPTION_SELECTED = "option_selected"
    HANDED_OFF = "handed_off"


class TripPreferences(BaseModel):
    duration: str | None = None
    travelers_adults: int = 2
    travelers_children: int = 0
    luxury_level: str = "Comfort"  # Budget | Comfort | Luxury
    activity_level: str = "Moderate"  # Relaxed | Moderate | Active
    departure_airport: str | None = None
    departure_date: str | None = None

    model_config = {"extra": "allow"}


class Destination(BaseModel):
    name: str
    geographic_context: str = ""
    key_sites: list[str] = Field(default_factory=list)
    rationale: str = ""
    estimated_days: int = 2
    travel_logistics_note: str | None = None

    @field_validator("estimated_days", mode="before")
    @classmethod
    def _leading_day_count(cls, value):
        """Model output like "2-3 days" or "about 4" keeps its first number."""
        if isinstance(value, bool) or value is None:
            return 2
        if isinstance(value, (int, float)):
            return max(int(value), 1)
        match = re.search(r"\d+", str(value))
        return max(int(match.group()), 1) if match else 2


class ResearchSource(BaseModel):
    title: str
    url: str


class ResearchSummary(BaseModel):
    queries: list[str] = Field(default_factory=list)
    sources: list[ResearchSource] = Field(default_factory=list)
    summary: str = ""


class FlightLeg(BaseModel):
    route: str | None = None
    airline: str | None = None
    departure: str | None = None
    arrival: str | None = None


class FlightPair(BaseModel):
    outbound: FlightLeg = Field(default_factory=FlightLeg)
    return_: FlightLeg = Field(default_factory=FlightLeg, alias="return")
    price_usd: float = 0.0

    model_config = {"populate_by_name": True}


class HotelStay(BaseModel):
    city: str
    name: str
    rating: float | None = None
    nights: int = 1
    cost_per_night_usd: float = 0.0
    booking_url: str | None = None


class TourItem(BaseModel):
    city: str
    name: str
    duration: str | None = None
    cost_usd: float = 0.0
    booking_url: str | None = None


class TripOption(BaseModel):
    option_index: int
    total_cost_usd: float = 0.0
    flights: FlightPair = Field(default_factory=FlightPair)
    hotels: list[HotelStay] = Field(default_factory=list)
    tours: list[TourItem] = Field(default_factory=list)
    itinerary_highlights: str = ""
    daily_itinerary: list[dict] | None = None

    def line_item_total(self) -> float:
        hotels = sum(h.nights * h.cost_per_night_usd for h in self.hotels)
        tours = sum(t.cost_usd for t in self.tours)
        return round(self.flights.price_usd + hotels + tours, 2)


class ChatMessage(BaseModel):
    role: str
    content: str
    timestamp: datetime


class TelemetryEntry(BaseModel):
    timestamp: datetime
    event: str
    provider: str | None = None
    model: str | None = None
    tokens: int | None = None
    cost: float | None = None
    duration_ms: int | None = None
    details: dict | None = None

    model_config = {"from_attributes": True}


class Trip(BaseModel):
    """Aggregate root as seen by the orchestration engine."""

    id: uuid.UUID
    template_id: str
    status: str
    model_id: str | None = None
    initial_message: str | None = None
    chat_history: list[ChatMessage] = Field(default_factory=list)
    preferences: TripPreferences = Field(default_factory=TripPreferences)
    research_destinations: list[Destination] = Field(default_factory=list)
    research_summary: ResearchSummary | None = None
    destinations_confirmed: bool = False
    confirmed_destinations: list[str] = Field(default_factory=list)
    options: list[TripOption] = Field(default_factory=list)
    selected_option_index: int | None = None
    handed_off_at: datetime | None = None
    progress_message: str | None = None
    progress_percent: int = 0
    error_message: str | None = None
    ai_cost_usd: float = 0.0
    api_cost_usd: float = 0.0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}

    @property
    def total_cost_usd(self) -> float:
        return self.ai_cost_usd + self.api_cost_usd


# ── Request / response bodies ──


class CreateTripRequest(BaseModel):
    template_id: str
    initial_message: str = Field(min_length=1)
    preferences: TripPreferences | None = None
    model_id: str | None = None


class CreateTripResponse(BaseModel):
    id: uuid.UUID
    status: str
    progress_message: str | None


class ChatRequest(BaseModel):
    message: str = Field(min_length=1)


class ChatResponse(BaseModel):
    response: str
    status: str
    updated_destinations: list[Destination] | None = None


class ConfirmDestinationsRequest(BaseModel):
    confirmed_destinations: list[str] = Field(min_length=1)
    preferences: TripPreferences | None = None


class ConfirmDestinationsResponse(BaseModel):
    status: str
    progress_message: str
    estimated_completion: int


class SelectOptionRequest(BaseModel):
    option_index: int


class SelectOptionResponse(BaseModel):
    selected_option: int
    total_cost_usd: float


class ItineraryRequest(BaseModel):
    option_index: int


class ItineraryResponse(BaseModel):
    option_index: int
    daily_itinerary: list[dict]
    cached: bool


class ProgressResponse(BaseModel):
    message: str | None
    percent: int
    complete: bool
    status: str


class HandoffResponse(BaseModel):
    status: str
    selected_option: TripOption
    confirmed_destinations: list[str]


class CostBreakdown(BaseModel):
    ai_cost_usd: float
    api_cost_usd: float
    total_cost_usd: float
    exceeds_target: bool


class TripLogsResponse(BaseModel):
    telemetry: list[TelemetryEntry]
    costs: CostBreakdown

import uuid

from fastapi import APIRouter, Depends

from wayfinder.dependencies import get_services
from wayfinder.schemas.trip import (
    ChatRequest,
    ChatResponse,
    ConfirmDestinationsRequest,
    ConfirmDestinationsResponse,
    CreateTripRequest,
    CreateTripResponse,
    HandoffResponse,
    ItineraryRequest,
    ItineraryResponse,
    ProgressResponse,
    SelectOptionRequest,
    SelectOptionResponse,
    Trip,
    TripLogsResponse,
    TripOption,
)
from wayfinder.services.container import ServiceContainer

router = APIRouter()


@router.post("", status_code=201, response_model=CreateTripResponse)
async def create_trip(req: CreateTripRequest, services: ServiceContainer = Depends(get_services)):
    """Create a trip from an opening message; research starts in the background."""
    trip = await services.workflow.create_trip(
        req.template_id, req.initial_message, req.preferences, req.model_id
    )
    return CreateTripResponse(id=trip.id, status=trip.status, progress_message=trip.progress_message)


@router.get("/{trip_id}", response_model=Trip)
async def get_trip(trip_id: uuid.UUID, services: ServiceContainer = Depends(get_services)):
    return await services.workflow.get_trip(trip_id)


@router.get("/{trip_id}/progress", response_model=ProgressResponse)
async def get_progress(trip_id: uuid.UUID, services: ServiceContainer = Depends(get_services)):
    return await services.workflow.get_progress(trip_id)


@router.post("/{trip_id}/chat", response_model=ChatResponse)
async def chat(trip_id: uuid.UUID, req: ChatRequest, services: ServiceContainer = Depends(get_services)):
    return await services.conversation.handle_message(trip_id, req.message)


@router.post("/{trip_id}/confirm-destinations", status_code=202, response_model=ConfirmDestinationsResponse)
async def confirm_destinations(
    trip_id: uuid.UUID,
    req: ConfirmDestinationsRequest,
    services: ServiceContainer = Depends(get_services),
):
    """Confirm a subset of the researched destinations and start building options."""
    return await services.workflow.confirm_destinations(
        trip_id, req.confirmed_destinations, req.preferences
    )


@router.get("/{trip_id}/options", response_model=list[TripOption])
async def get_options(trip_id: uuid.UUID, services: ServiceContainer = Depends(get_services)):
    return await services.workflow.get_options(trip_id)


@router.post("/{trip_id}/select", response_model=SelectOptionResponse)
async def select_option(
    trip_id: uuid.UUID,
    req: SelectOptionRequest,
    services: ServiceContainer = Depends(get_services),
):
    return await services.workflow.select_option(trip_id, req.option_index)


@router.post("/{trip_id}/itinerary", response_model=ItineraryResponse)
async def get_itinerary(
    trip_id: uuid.UUID,
    req: ItineraryRequest,
    services: ServiceContainer = Depends(get_services),
):
    """Day-by-day plan for one option, generated on first request and cached."""
    itinerary, cached = await services.builder.generate_itinerary(trip_id, req.option_index)
    return ItineraryResponse(option_index=req.option_index, daily_itinerary=itinerary, cached=cached)


@router.post("/{trip_id}/handoff", response_model=HandoffResponse)
async def handoff(trip_id: uuid.UUID, services: ServiceContainer = Depends(get_services)):
    return await services.workflow.handoff(trip_id)


@router.get("/{trip_id}/logs", response_model=TripLogsResponse)
async def get_logs(trip_id: uuid.UUID, services: ServiceContainer = Depends(get_services)):
    """Telemetry events and the cost breakdown for diagnostics."""
    return await services.workflow.get_logs(trip_id)

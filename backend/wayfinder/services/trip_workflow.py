"""Trip workflow commands: create, confirm destinations, select option, hand off."""

import logging
import uuid

from wayfinder.errors import NotFound, PhaseViolation
from wayfinder.schemas.trip import (
    ConfirmDestinationsResponse,
    CostBreakdown,
    HandoffResponse,
    ProgressResponse,
    SelectOptionResponse,
    Trip,
    TripLogsResponse,
    TripOption,
    TripPreferences,
    TripStatus,
)
from wayfinder.services.cost_ledger import CostLedger
from wayfinder.services.phase_gate import ALREADY_CONFIRMED, PhaseGate, phase_gate
from wayfinder.services.provider_config import COST_TARGET_USD
from wayfinder.services.research_orchestrator import RESEARCH_FAILED_MESSAGE, ResearchOrchestrator
from wayfinder.services.task_runner import PIPELINE_IN_PROGRESS, TaskRunner
from wayfinder.services.trip_builder import BUILD_FAILED_MESSAGE, TripBuildOrchestrator
from wayfinder.services.trip_store import TripStore

logger = logging.getLogger(__name__)

BUILD_PROGRESS_MESSAGE = "Finding flights and hotels..."


class TripWorkflow:
    def __init__(
        self,
        store: TripStore,
        research: ResearchOrchestrator,
        builder: TripBuildOrchestrator,
        runner: TaskRunner,
        *,
        gate: PhaseGate = phase_gate,
        estimated_build_seconds: int = 120,
        cost_target_usd: float = COST_TARGET_USD,
    ):
        self.store = store
        self.research = research
        self.builder = builder
        self.runner = runner
        self.gate = gate
        self.estimated_build_seconds = estimated_build_seconds
        self.cost_target_usd = cost_target_usd

    async def get_trip(self, trip_id: uuid.UUID) -> Trip:
        trip = await self.store.get_trip(trip_id)
        if trip is None:
            raise NotFound("trip", str(trip_id))
        return trip

    async def create_trip(
        self,
        template_id: str,
        message: str,
        preferences: TripPreferences | None = None,
        model_id: str | None = None,
    ) -> Trip:
        """Create a trip and start research on the opening message in the background."""
        if await self.store.get_template(template_id) is None:
            raise NotFound("template", template_id)
        trip = await self.store.create_trip(
            template_id,
            message,
            preferences.model_dump(exclude_none=True) if preferences else {},
            model_id,
        )
        await self.store.append_chat_message(trip.id, "user", message)
        self.start_research(trip.id, message)
        return trip

    def start_research(self, trip_id: uuid.UUID, message: str):
        async def _on_failure(error: BaseException):
            await self.store.update_progress(
                trip_id, RESEARCH_FAILED_MESSAGE, 0,
                status=TripStatus.RESEARCHING, error_message=str(error),
            )

        self.runner.submit(trip_id, "research", lambda: self.research.run(trip_id, message), _on_failure)

    async def confirm_destinations(
        self,
        trip_id: uuid.UUID,
        names: list[str],
        preferences: TripPreferences | None = None,
    ) -> ConfirmDestinationsResponse:
        """Gate, validate, confirm in one write, then hand the build to the task runner.

        Raises:
            NotFound, PhaseViolation (ALREADY_CONFIRMED, NO_RESEARCH_DESTINATIONS,
            INVALID_DESTINATIONS, PIPELINE_IN_PROGRESS).
        """
        trip = await self.get_trip(trip_id)
        self.gate.check_confirmation_eligibility(trip).raise_for_violation()
        self.gate.validate_destination_names(trip, names).raise_for_violation()
        if self.runner.is_running(trip_id):
            raise PhaseViolation(PIPELINE_IN_PROGRESS, "This trip is already being processed")

        # Canonical names, research order, no duplicates
        wanted = {n.strip().lower() for n in names}
        canonical = [d.name for d in trip.research_destinations if d.name.strip().lower() in wanted]

        applied = await self.store.confirm_destinations(trip_id, canonical, BUILD_PROGRESS_MESSAGE)
        if not applied:
            raise PhaseViolation(ALREADY_CONFIRMED, "Destinations have already been confirmed for this trip")

        # Only the confirmation that won the compare-and-set may change preferences
        if preferences is not None:
            merged = {
                **trip.preferences.model_dump(exclude_none=True),
                **preferences.model_dump(exclude_unset=True, exclude_none=True),
            }
            await self.store.update_preferences(trip_id, merged)

        async def _on_failure(error: BaseException):
            await CostLedger(self.store, trip_id).log(
                "build_failed", details={"error": str(error), "error_type": type(error).__name__}
            )
            await self.store.rollback_confirmation(trip_id, BUILD_FAILED_MESSAGE)

        self.runner.submit(trip_id, "trip_build", lambda: self.builder.build(trip_id), _on_failure)
        logger.info(f"Trip {trip_id}: confirmed {canonical}, build started")
        return ConfirmDestinationsResponse(
            status=TripStatus.BUILDING,
            progress_message=BUILD_PROGRESS_MESSAGE,
            estimated_completion=self.estimated_build_seconds,
        )

    async def get_options(self, trip_id: uuid.UUID) -> list[TripOption]:
        trip = await self.get_trip(trip_id)
        self.gate.check_options_ready(trip).raise_for_violation()
        return trip.options

    async def select_option(self, trip_id: uuid.UUID, option_index: int) -> SelectOptionResponse:
        trip = await self.get_trip(trip_id)
        self.gate.check_option_selection_eligibility(trip, option_index).raise_for_violation()
        option = next(o for o in trip.options if o.option_index == option_index)
        await self.store.select_trip_option(trip_id, option_index)
        return SelectOptionResponse(selected_option=option_index, total_cost_usd=option.total_cost_usd)

    async def handoff(self, trip_id: uuid.UUID) -> HandoffResponse:
        trip = await self.get_trip(trip_id)
        self.gate.check_handoff_eligibility(trip).raise_for_violation()
        option = next(o for o in trip.options if o.option_index == trip.selected_option_index)
        await self.store.mark_handed_off(trip_id)
        return HandoffResponse(
            status=TripStatus.HANDED_OFF,
            selected_option=option,
            confirmed_destinations=trip.confirmed_destinations,
        )

    async def get_progress(self, trip_id: uuid.UUID) -> ProgressResponse:
        trip = await self.get_trip(trip_id)
        complete = trip.status in (
            TripStatus.AWAITING_CONFIRMATION,
            TripStatus.OPTIONS_READY,
            TripStatus.OPTION_SELECTED,
            TripStatus.HANDED_OFF,
        ) and not self.runner.is_running(trip_id)
        return ProgressResponse(
            message=trip.progress_message,
            percent=trip.progress_percent,
            complete=complete,
            status=trip.status,
        )

    async def get_logs(self, trip_id: uuid.UUID) -> TripLogsResponse:
        trip = await self.get_trip(trip_id)
        telemetry = await self.store.list_telemetry(trip_id)
        return TripLogsResponse(
            telemetry=telemetry,
            costs=CostBreakdown(
                ai_cost_usd=round(trip.ai_cost_usd, 6),
                api_cost_usd=round(trip.api_cost_usd, 6),
                total_cost_usd=round(trip.total_cost_usd, 6),
                exceeds_target=trip.total_cost_usd > self.cost_target_usd,
            ),
        )

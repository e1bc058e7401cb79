"""Chat handling: what a user message means depends on where the trip is."""

import json
import logging
import uuid

from wayfinder.errors import AllProvidersFailed, MalformedStructuredOutput, NotFound
from wayfinder.schemas.trip import ChatResponse, Destination, Trip, TripStatus
from wayfinder.services.cost_ledger import CostLedger
from wayfinder.services.intent_classifier import (
    Confirm,
    Question,
    RefineByFilter,
    RefineByIndex,
    classify_intent,
)
from wayfinder.services.llm_client import GenerativeProviderClient, GenerativeRequest
from wayfinder.services.prompts import CHAT_SYSTEM_PROMPT, REFINE_SYSTEM_PROMPT
from wayfinder.services.research_orchestrator import ResearchOrchestrator, parse_destinations
from wayfinder.services.structured_output import extract_json
from wayfinder.services.task_runner import TaskRunner
from wayfinder.services.trip_store import TripStore

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 5
FALLBACK_REPLY = "Sorry, I'm having trouble responding right now. Please try again in a moment."


class ConversationService:
    def __init__(
        self,
        store: TripStore,
        llm: GenerativeProviderClient,
        research: ResearchOrchestrator,
        runner: TaskRunner,
    ):
        self.store = store
        self.llm = llm
        self.research = research
        self.runner = runner

    async def handle_message(self, trip_id: uuid.UUID, message: str) -> ChatResponse:
        trip = await self.store.get_trip(trip_id)
        if trip is None:
            raise NotFound("trip", str(trip_id))
        await self.store.append_chat_message(trip_id, "user", message)

        updated: list[Destination] | None = None
        if trip.status == TripStatus.RESEARCHING:
            if self.runner.is_running(trip_id):
                reply = "I'm still researching destinations for you. Hang tight!"
            else:
                # research.run appends its own assistant message
                outcome = await self.research.run(trip_id, message)
                updated = outcome.destinations or None
                trip = await self.store.get_trip(trip_id) or trip
                return ChatResponse(response=outcome.message, status=trip.status, updated_destinations=updated)
        elif trip.status == TripStatus.AWAITING_CONFIRMATION:
            reply, updated = await self._handle_refinement(trip, message)
        else:
            reply = await self._answer(trip, message)

        await self.store.append_chat_message(trip_id, "assistant", reply)
        trip = await self.store.get_trip(trip_id) or trip
        return ChatResponse(response=reply, status=trip.status, updated_destinations=updated)

    async def _handle_refinement(self, trip: Trip, message: str) -> tuple[str, list[Destination] | None]:
        ledger = CostLedger(self.store, trip.id, baseline_usd=trip.total_cost_usd)
        intent = classify_intent(message, len(trip.research_destinations))
        await ledger.log("refinement", details={"intent": type(intent).__name__})

        if isinstance(intent, Confirm):
            names = ", ".join(d.name for d in trip.research_destinations)
            return (
                f"Great! Confirm your destinations ({names}) and I'll start finding flights, "
                "hotels and tours.",
                None,
            )
        if isinstance(intent, RefineByIndex):
            kept = [trip.research_destinations[i] for i in intent.indices]
            await self.store.update_research_destinations(
                trip.id, kept, trip.research_summary, progress_message="Destinations updated"
            )
            return f"Updated your list to: {', '.join(d.name for d in kept)}.", kept
        if isinstance(intent, RefineByFilter):
            return await self._refine_with_model(trip, intent.text, ledger)
        if isinstance(intent, Question):
            return await self._answer(trip, intent.text, ledger), None
        raise TypeError(f"Unhandled intent {intent!r}")

    async def _refine_with_model(
        self, trip: Trip, request: str, ledger: CostLedger
    ) -> tuple[str, list[Destination] | None]:
        current = [d.model_dump(mode="json") for d in trip.research_destinations]
        try:
            result = await self.llm.generate(
                GenerativeRequest(
                    system=REFINE_SYSTEM_PROMPT,
                    user=f"Current destinations:\n{json.dumps(current, indent=2)}\n\nRequest: {request}",
                    max_tokens=2000,
                    temperature=0.5,
                    task="destination_refinement",
                ),
                ledger,
                model=trip.model_id,
            )
            parsed = extract_json(result.text, expect="object", required_keys=("destinations",))
            raw = parsed.get("destinations")
            destinations = parse_destinations(raw) if isinstance(raw, list) else []
            if not destinations:
                raise MalformedStructuredOutput("refinement produced no destinations", result.text)
        except (AllProvidersFailed, MalformedStructuredOutput) as e:
            logger.warning(f"Refinement failed for trip {trip.id}: {e}")
            await ledger.log("refinement_failed", details={"error": str(e)})
            return "I couldn't update the destinations just now. Could you rephrase that?", None

        await self.store.update_research_destinations(
            trip.id, destinations, trip.research_summary, progress_message="Destinations updated"
        )
        message = parsed.get("message")
        if not isinstance(message, str) or not message.strip():
            message = f"Updated your list to: {', '.join(d.name for d in destinations)}."
        return message, destinations

    async def _answer(self, trip: Trip, question: str, ledger: CostLedger | None = None) -> str:
        ledger = ledger or CostLedger(self.store, trip.id, baseline_usd=trip.total_cost_usd)
        history = [
            {"role": m.role, "content": m.content}
            for m in trip.chat_history[-HISTORY_WINDOW:]
            if m.role in ("user", "assistant")
        ]
        while history and history[0]["role"] != "user":
            history.pop(0)
        context = {
            "status": trip.status,
            "destinations": [d.name for d in trip.research_destinations],
            "confirmed_destinations": trip.confirmed_destinations,
            "options": len(trip.options),
            "selected_option": trip.selected_option_index,
        }
        try:
            result = await self.llm.generate(
                GenerativeRequest(
                    system=f"{CHAT_SYSTEM_PROMPT}\n\nTrip context: {json.dumps(context)}",
                    messages=[*history, {"role": "user", "content": question}],
                    max_tokens=400,
                    temperature=0.7,
                    task="chat",
                ),
                ledger,
                model=trip.model_id,
            )
        except AllProvidersFailed as e:
            logger.warning(f"Chat reply failed for trip {trip.id}: {e}")
            return FALLBACK_REPLY
        return result.text

"""
End-to-end workflow tests: research → confirm → build → select → hand off.

Runs the real orchestrators and task runner against the in-memory store
and scripted providers.
"""

import asyncio

import pytest

from conftest import researched_trip
from wayfinder.errors import NotFound, PhaseViolation
from wayfinder.schemas.trip import TripPreferences, TripStatus
from wayfinder.services.phase_gate import (
    ALREADY_CONFIRMED,
    ALREADY_HANDED_OFF,
    DESTINATIONS_NOT_CONFIRMED,
    INVALID_DESTINATIONS,
    NO_RESEARCH_DESTINATIONS,
)

MESSAGE = "My family are Murphys from Cork"


class TestTripLifecycle:
    async def test_full_lifecycle(self, store, workflow, runner):
        trip = await workflow.create_trip(
            "heritage", MESSAGE, TripPreferences(duration="10 days", departure_airport="JFK")
        )
        assert trip.status == TripStatus.RESEARCHING

        # Research runs in the background
        await runner.wait(trip.id)
        trip = await workflow.get_trip(trip.id)
        assert trip.status == TripStatus.AWAITING_CONFIRMATION
        assert len(trip.research_destinations) >= 2
        assert [m.role for m in trip.chat_history] == ["user", "assistant"]

        response = await workflow.confirm_destinations(trip.id, ["cork", "Dublin"])
        assert response.status == TripStatus.BUILDING
        assert response.estimated_completion == 120
        building = await workflow.get_trip(trip.id)
        assert building.status == TripStatus.BUILDING
        # Research order, canonical names
        assert building.confirmed_destinations == ["Dublin", "Cork"]

        await runner.wait(trip.id)
        trip = await workflow.get_trip(trip.id)
        assert trip.status == TripStatus.OPTIONS_READY
        assert len(trip.options) >= 1
        for option in trip.options:
            hotels = sum(h.nights * h.cost_per_night_usd for h in option.hotels)
            tours = sum(t.cost_usd for t in option.tours)
            assert option.total_cost_usd == pytest.approx(option.flights.price_usd + hotels + tours)

        selected = await workflow.select_option(trip.id, 2)
        assert selected.selected_option == 2
        assert selected.total_cost_usd == trip.options[1].total_cost_usd

        # Re-selection is allowed before hand-off
        await workflow.select_option(trip.id, 1)

        handoff = await workflow.handoff(trip.id)
        assert handoff.status == TripStatus.HANDED_OFF
        assert handoff.selected_option.option_index == 1
        assert handoff.confirmed_destinations == ["Dublin", "Cork"]

        with pytest.raises(PhaseViolation) as exc:
            await workflow.select_option(trip.id, 2)
        assert exc.value.code == ALREADY_HANDED_OFF

    async def test_costs_reported_in_logs(self, workflow, runner):
        trip = await workflow.create_trip("heritage", MESSAGE)
        await runner.wait(trip.id)

        logs = await workflow.get_logs(trip.id)
        assert logs.costs.ai_cost_usd > 0
        assert logs.costs.api_cost_usd > 0
        assert logs.costs.total_cost_usd == pytest.approx(logs.costs.ai_cost_usd + logs.costs.api_cost_usd)
        assert logs.costs.exceeds_target is False
        assert any(e.event == "ai_call" for e in logs.telemetry)

    async def test_progress(self, workflow, runner):
        trip = await workflow.create_trip("heritage", MESSAGE)
        progress = await workflow.get_progress(trip.id)
        assert progress.complete is False

        await runner.wait(trip.id)
        progress = await workflow.get_progress(trip.id)
        assert progress.complete is True
        assert progress.percent == 100
        assert progress.status == TripStatus.AWAITING_CONFIRMATION

    async def test_unknown_template(self, workflow):
        with pytest.raises(NotFound):
            await workflow.create_trip("no-such-theme", MESSAGE)


class TestConfirmation:
    async def test_confirm_before_research_finishes(self, store, workflow):
        trip = await store.create_trip("heritage", MESSAGE)
        with pytest.raises(PhaseViolation) as exc:
            await workflow.confirm_destinations(trip.id, ["Cork"])
        assert exc.value.code == NO_RESEARCH_DESTINATIONS

    async def test_unknown_destination(self, store, workflow):
        trip = researched_trip(store)
        with pytest.raises(PhaseViolation) as exc:
            await workflow.confirm_destinations(trip.id, ["Cork", "Paris"])
        assert exc.value.code == INVALID_DESTINATIONS
        assert (await store.get_trip(trip.id)).destinations_confirmed is False

    async def test_concurrent_confirms_one_wins(self, store, workflow, runner):
        """Exactly one of two simultaneous confirmations starts a build."""
        trip = researched_trip(store)
        results = await asyncio.gather(
            workflow.confirm_destinations(trip.id, ["Cork"]),
            workflow.confirm_destinations(trip.id, ["Dublin"]),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, PhaseViolation)]
        assert len(errors) == 1
        assert errors[0].code == ALREADY_CONFIRMED

        await runner.wait(trip.id)
        assert (await store.get_trip(trip.id)).status == TripStatus.OPTIONS_READY

    async def test_confirm_merges_preferences(self, store, workflow, runner):
        trip = researched_trip(store, preferences=TripPreferences(departure_airport="JFK"))
        await workflow.confirm_destinations(trip.id, ["Cork"], TripPreferences(duration="5 days"))

        saved = await store.get_trip(trip.id)
        assert saved.preferences.departure_airport == "JFK"
        assert saved.preferences.duration == "5 days"
        await runner.wait(trip.id)

    async def test_losing_confirmation_leaves_preferences_untouched(self, store, workflow, monkeypatch):
        """A confirmation that loses the compare-and-set writes nothing."""
        trip = researched_trip(store, preferences=TripPreferences(departure_airport="JFK"))
        store_confirm = store.confirm_destinations

        async def rival_confirms_first(trip_id, names, message):
            await store_confirm(trip_id, ["Dublin"], message)
            return await store_confirm(trip_id, names, message)

        monkeypatch.setattr(store, "confirm_destinations", rival_confirms_first)
        with pytest.raises(PhaseViolation) as exc:
            await workflow.confirm_destinations(trip.id, ["Cork"], TripPreferences(duration="5 days"))
        assert exc.value.code == ALREADY_CONFIRMED

        saved = await store.get_trip(trip.id)
        assert saved.confirmed_destinations == ["Dublin"]
        assert saved.preferences.duration is None
        assert saved.preferences.departure_airport == "JFK"

    async def test_failed_build_can_be_reconfirmed(self, store, workflow, runner, llm_adapter):
        replies = dict(llm_adapter.replies)
        llm_adapter.replies["trip_options"] = RuntimeError("model overloaded")
        trip = researched_trip(store)

        await workflow.confirm_destinations(trip.id, ["Cork"])
        await runner.wait(trip.id)
        failed = await store.get_trip(trip.id)
        assert failed.status == TripStatus.AWAITING_CONFIRMATION
        assert failed.error_message

        llm_adapter.replies = replies
        await workflow.confirm_destinations(trip.id, ["Cork", "Dublin"])
        await runner.wait(trip.id)
        assert (await store.get_trip(trip.id)).status == TripStatus.OPTIONS_READY


class TestPhase2Guards:
    async def test_options_before_confirmation(self, store, workflow):
        trip = researched_trip(store)
        with pytest.raises(PhaseViolation) as exc:
            await workflow.get_options(trip.id)
        assert exc.value.code == DESTINATIONS_NOT_CONFIRMED
        assert exc.value.requires_confirmation is True

"""
Tests for the phase gate guarding the two-phase workflow.
"""

import pytest

from conftest import built_trip, make_trip, researched_trip
from wayfinder.errors import PhaseViolation
from wayfinder.schemas.trip import TripStatus
from wayfinder.services.phase_gate import (
    ALREADY_CONFIRMED,
    ALREADY_HANDED_OFF,
    DESTINATIONS_NOT_CONFIRMED,
    INVALID_DESTINATIONS,
    INVALID_OPTION_INDEX,
    NO_OPTION_SELECTED,
    NO_RESEARCH_DESTINATIONS,
    OPTIONS_NOT_READY,
    PhaseGate,
)

gate = PhaseGate()


class TestConfirmationEligibility:
    def test_awaiting_trip_is_eligible(self, store):
        assert gate.check_confirmation_eligibility(researched_trip(store)).allowed

    def test_already_confirmed(self, store):
        trip = researched_trip(store, destinations_confirmed=True, confirmed_destinations=["Cork"])
        result = gate.check_confirmation_eligibility(trip)
        assert not result.allowed
        assert result.code == ALREADY_CONFIRMED

    def test_no_destinations_yet(self, store):
        result = gate.check_confirmation_eligibility(make_trip(store))
        assert result.code == NO_RESEARCH_DESTINATIONS

    def test_research_still_running(self, store):
        """Destinations from a previous run do not count while research is running again."""
        trip = researched_trip(store)
        trip.status = TripStatus.RESEARCHING
        assert gate.check_confirmation_eligibility(trip).code == NO_RESEARCH_DESTINATIONS


class TestDestinationNames:
    def test_case_insensitive_subset(self, store):
        assert gate.validate_destination_names(researched_trip(store), ["dublin", " CORK "]).allowed

    def test_unknown_name_rejected(self, store):
        result = gate.validate_destination_names(researched_trip(store), ["Dublin", "Paris"])
        assert result.code == INVALID_DESTINATIONS
        assert "Paris" in result.message

    def test_empty_selection_rejected(self, store):
        assert gate.validate_destination_names(researched_trip(store), []).code == INVALID_DESTINATIONS


class TestPhase2Access:
    def test_requires_confirmation(self, store):
        result = gate.check_phase2_access(researched_trip(store))
        assert result.code == DESTINATIONS_NOT_CONFIRMED
        assert result.requires_confirmation is True

    def test_options_not_ready_while_building(self, store):
        trip = researched_trip(
            store,
            destinations_confirmed=True,
            confirmed_destinations=["Dublin"],
        )
        assert gate.check_phase2_access(trip).allowed
        assert gate.check_options_ready(trip).code == OPTIONS_NOT_READY

    def test_options_ready(self, store):
        assert gate.check_options_ready(built_trip(store)).allowed


class TestSelectionAndHandoff:
    def test_valid_selection(self, store):
        assert gate.check_option_selection_eligibility(built_trip(store), 2).allowed

    def test_unknown_option(self, store):
        result = gate.check_option_selection_eligibility(built_trip(store), 7)
        assert result.code == INVALID_OPTION_INDEX

    def test_reselection_allowed_until_handoff(self, store):
        trip = built_trip(store, selected_option_index=1)
        trip.status = TripStatus.OPTION_SELECTED
        assert gate.check_option_selection_eligibility(trip, 2).allowed

        trip.status = TripStatus.HANDED_OFF
        assert gate.check_option_selection_eligibility(trip, 2).code == ALREADY_HANDED_OFF

    def test_handoff_needs_selection(self, store):
        assert gate.check_handoff_eligibility(built_trip(store)).code == NO_OPTION_SELECTED

    def test_handoff_once(self, store):
        trip = built_trip(store, selected_option_index=1)
        assert gate.check_handoff_eligibility(trip).allowed
        trip.status = TripStatus.HANDED_OFF
        assert gate.check_handoff_eligibility(trip).code == ALREADY_HANDED_OFF


class TestGateResult:
    def test_raise_for_violation(self, store):
        result = gate.check_phase2_access(researched_trip(store))
        with pytest.raises(PhaseViolation) as exc:
            result.raise_for_violation()
        assert exc.value.code == DESTINATIONS_NOT_CONFIRMED
        assert exc.value.requires_confirmation is True

    def test_allowed_does_not_raise(self, store):
        gate.check_options_ready(built_trip(store)).raise_for_violation()

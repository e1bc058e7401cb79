"""Phase gate: guards the two-phase trip workflow.

RESEARCHING → AWAITING_CONFIRMATION → BUILDING → OPTIONS_READY → OPTION_SELECTED → HANDED_OFF

Checks are pure reads of a Trip and return a GateResult; they never mutate
and never raise. Callers that want an exception use ``raise_for_violation``.
"""

from dataclasses import dataclass

from wayfinder.errors import PhaseViolation
from wayfinder.schemas.trip import Trip, TripStatus

# Machine-readable rejection codes
TRIP_NOT_FOUND = "TRIP_NOT_FOUND"
ALREADY_CONFIRMED = "ALREADY_CONFIRMED"
NO_RESEARCH_DESTINATIONS = "NO_RESEARCH_DESTINATIONS"
INVALID_DESTINATIONS = "INVALID_DESTINATIONS"
DESTINATIONS_NOT_CONFIRMED = "DESTINATIONS_NOT_CONFIRMED"
OPTIONS_NOT_READY = "OPTIONS_NOT_READY"
INVALID_OPTION_INDEX = "INVALID_OPTION_INDEX"
NO_OPTION_SELECTED = "NO_OPTION_SELECTED"
ALREADY_HANDED_OFF = "ALREADY_HANDED_OFF"


@dataclass(frozen=True)
class GateResult:
    allowed: bool
    code: str | None = None
    message: str = ""
    requires_confirmation: bool = False

    def raise_for_violation(self):
        if not self.allowed:
            raise PhaseViolation(self.code or "PHASE_VIOLATION", self.message, self.requires_confirmation)


ALLOWED = GateResult(allowed=True)


def _deny(code: str, message: str, requires_confirmation: bool = False) -> GateResult:
    return GateResult(False, code, message, requires_confirmation)


class PhaseGate:
    def check_confirmation_eligibility(self, trip: Trip) -> GateResult:
        if trip.destinations_confirmed:
            return _deny(ALREADY_CONFIRMED, "Destinations have already been confirmed for this trip")
        if not trip.research_destinations:
            return _deny(NO_RESEARCH_DESTINATIONS, "No destinations to confirm yet. Complete research first.")
        if trip.status != TripStatus.AWAITING_CONFIRMATION:
            return _deny(NO_RESEARCH_DESTINATIONS, "Research is still in progress")
        return ALLOWED

    def validate_destination_names(self, trip: Trip, names: list[str]) -> GateResult:
        """Every name must match a current research destination, case-insensitively."""
        if not names:
            return _deny(INVALID_DESTINATIONS, "Select at least one destination")
        known = {d.name.strip().lower() for d in trip.research_destinations}
        invalid = [n for n in names if n.strip().lower() not in known]
        if invalid:
            return _deny(INVALID_DESTINATIONS, f"Unknown destinations: {', '.join(invalid)}")
        return ALLOWED

    def check_phase2_access(self, trip: Trip) -> GateResult:
        if not trip.confirmed_destinations:
            return _deny(
                DESTINATIONS_NOT_CONFIRMED,
                "Please confirm your destinations before building trip options",
                requires_confirmation=True,
            )
        return ALLOWED

    def check_options_ready(self, trip: Trip) -> GateResult:
        access = self.check_phase2_access(trip)
        if not access.allowed:
            return access
        if not trip.options:
            return _deny(OPTIONS_NOT_READY, "Trip options are still being built")
        return ALLOWED

    def check_option_selection_eligibility(self, trip: Trip, option_index: int | None = None) -> GateResult:
        """Re-selection is allowed any time before hand-off."""
        ready = self.check_options_ready(trip)
        if not ready.allowed:
            return ready
        if trip.status == TripStatus.HANDED_OFF:
            return _deny(ALREADY_HANDED_OFF, "This trip has already been handed off")
        if option_index is not None and option_index not in {o.option_index for o in trip.options}:
            return _deny(INVALID_OPTION_INDEX, f"Option {option_index} does not exist")
        return ALLOWED

    def check_handoff_eligibility(self, trip: Trip) -> GateResult:
        if trip.status == TripStatus.HANDED_OFF:
            return _deny(ALREADY_HANDED_OFF, "This trip has already been handed off")
        if trip.selected_option_index is None:
            return _deny(NO_OPTION_SELECTED, "Select a trip option before handing off")
        return ALLOWED


phase_gate = PhaseGate()

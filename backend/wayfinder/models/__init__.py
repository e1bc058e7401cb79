from wayfinder.models.template import AIModel, TripTemplate
from wayfinder.models.trip import TelemetryRecord, TripRecord

__all__ = [
    "AIModel",
    "TelemetryRecord",
    "TripRecord",
    "TripTemplate",
]

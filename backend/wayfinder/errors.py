"""Error taxonomy for the trip orchestration engine."""


class WayfinderError(Exception):
    """Base class for all domain errors."""


class PhaseViolation(WayfinderError):
    """An operation was attempted in a trip state that does not allow it."""

    def __init__(self, code: str, message: str, requires_confirmation: bool = False):
        super().__init__(message)
        self.code = code
        self.message = message
        self.requires_confirmation = requires_confirmation


class AllProvidersFailed(WayfinderError):
    """Every adapter in a fallback chain was unavailable or raised."""

    def __init__(self, kind: str, errors: list[str]):
        self.kind = kind
        self.errors = list(errors)
        detail = "; ".join(self.errors) if self.errors else "no providers available"
        super().__init__(f"All {kind} providers failed: {detail}")


class MalformedStructuredOutput(WayfinderError):
    """Model output could not be recovered into the expected JSON shape."""

    def __init__(self, reason: str, original: str, repaired: str | None = None):
        super().__init__(reason)
        self.reason = reason
        self.original = original
        self.repaired = repaired


class NotFound(WayfinderError):
    def __init__(self, resource: str, identifier: str):
        super().__init__(f"{resource.capitalize()} not found")
        self.resource = resource
        self.identifier = identifier


class BackgroundPipelineFailure(WayfinderError):
    """A detached pipeline failed after its triggering response was sent."""

    def __init__(self, trip_id: str, stage: str, cause: BaseException):
        super().__init__(f"{stage} failed for trip {trip_id}: {cause}")
        self.trip_id = trip_id
        self.stage = stage
        self.cause = cause

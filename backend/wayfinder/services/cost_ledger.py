"""Per-run cost accounting for external calls.

Every tracked cost appends a CostEntry, increments the trip's persisted
accumulator by the delta and writes a telemetry event.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from wayfinder.schemas.trip import TelemetryEntry
from wayfinder.services.provider_config import API_CALL_COSTS
from wayfinder.services.trip_store import TripStore

logger = logging.getLogger(__name__)


@dataclass
class CostEntry:
    provider: str
    operation: str
    quantity: int
    cost: float
    category: str  # "ai" | "api"
    success: bool = True


def ai_cost(tokens_in: int, tokens_out: int, input_cost_per_1m: float, output_cost_per_1m: float) -> float:
    return tokens_in / 1e6 * input_cost_per_1m + tokens_out / 1e6 * output_cost_per_1m


class CostLedger:
    def __init__(
        self,
        store: TripStore,
        trip_id: uuid.UUID,
        *,
        api_costs: dict[tuple[str, str], float] | None = None,
        baseline_usd: float = 0.0,
    ):
        self.store = store
        self.trip_id = trip_id
        self.entries: list[CostEntry] = []
        self._api_costs = api_costs if api_costs is not None else API_CALL_COSTS
        self._baseline_usd = baseline_usd

    @property
    def ai_cost_usd(self) -> float:
        return sum(e.cost for e in self.entries if e.category == "ai")

    @property
    def api_cost_usd(self) -> float:
        return sum(e.cost for e in self.entries if e.category == "api")

    @property
    def total_cost_usd(self) -> float:
        return self.ai_cost_usd + self.api_cost_usd

    def exceeds_target(self, threshold_usd: float) -> bool:
        """Advisory only: trip spend so far (prior runs included) is over threshold."""
        return self._baseline_usd + self.total_cost_usd > threshold_usd

    async def track_ai(
        self,
        provider: str,
        model: str,
        tokens_in: int,
        tokens_out: int,
        input_cost_per_1m: float,
        output_cost_per_1m: float,
        *,
        duration_ms: int | None = None,
        task: str | None = None,
    ) -> float:
        cost = ai_cost(tokens_in, tokens_out, input_cost_per_1m, output_cost_per_1m)
        self.entries.append(CostEntry(provider, task or "generate", tokens_in + tokens_out, cost, "ai"))
        await self._persist_delta(ai_delta=cost)
        await self.log(
            "ai_call",
            provider=provider,
            model=model,
            tokens=tokens_in + tokens_out,
            cost=cost,
            duration_ms=duration_ms,
            details={"task": task, "tokens_in": tokens_in, "tokens_out": tokens_out},
        )
        return cost

    async def track_ai_failure(
        self,
        provider: str,
        model: str | None,
        error: str,
        *,
        duration_ms: int | None = None,
        task: str | None = None,
    ):
        self.entries.append(CostEntry(provider, task or "generate", 0, 0.0, "ai", success=False))
        await self.log(
            "ai_call_failed",
            provider=provider,
            model=model,
            tokens=0,
            cost=0.0,
            duration_ms=duration_ms,
            details={"task": task, "error": error},
        )

    async def track_api(
        self,
        provider: str,
        operation: str,
        *,
        cost: float | None = None,
        quantity: int = 1,
        duration_ms: int | None = None,
        details: dict | None = None,
    ) -> float:
        if cost is None:
            cost = self._api_costs.get((provider, operation), 0.0) * quantity
        self.entries.append(CostEntry(provider, operation, quantity, cost, "api"))
        await self._persist_delta(api_delta=cost)
        await self.log(
            "api_call",
            provider=provider,
            cost=cost,
            duration_ms=duration_ms,
            details={"operation": operation, "quantity": quantity, **(details or {})},
        )
        return cost

    async def log(self, event: str, **fields):
        """Append a telemetry event without charging anything."""
        entry = TelemetryEntry(timestamp=datetime.now(timezone.utc), event=event, **fields)
        try:
            await self.store.append_telemetry(self.trip_id, entry)
        except Exception as e:
            logger.warning(f"Telemetry write failed for trip {self.trip_id} ({event}): {e}")

    async def _persist_delta(self, ai_delta: float = 0.0, api_delta: float = 0.0):
        if not ai_delta and not api_delta:
            return
        try:
            await self.store.update_costs(self.trip_id, ai_delta, api_delta)
        except Exception as e:
            logger.warning(f"Cost update failed for trip {self.trip_id}: {e}")

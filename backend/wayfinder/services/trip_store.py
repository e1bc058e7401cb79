"""Durable trip storage: the narrow interface the orchestrators depend on.

The engine assumes a single active writer per trip. The only concurrency
guard is the compare-and-set in ``confirm_destinations``; every other write
is last-writer-wins.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wayfinder.database import async_session_factory
from wayfinder.models.template import AIModel, TripTemplate
from wayfinder.models.trip import TelemetryRecord, TripRecord
from wayfinder.schemas.template import ModelInfo, Template
from wayfinder.schemas.trip import (
    Destination,
    ResearchSummary,
    TelemetryEntry,
    Trip,
    TripOption,
    TripStatus,
)

logger = logging.getLogger(__name__)


class TripStore(Protocol):
    async def get_trip(self, trip_id: uuid.UUID) -> Trip | None: ...

    async def create_trip(
        self,
        template_id: str,
        initial_message: str,
        preferences: dict | None = None,
        model_id: str | None = None,
    ) -> Trip: ...

    async def get_template(self, template_id: str) -> Template | None: ...

    async def list_templates(self) -> list[Template]: ...

    async def update_progress(
        self,
        trip_id: uuid.UUID,
        message: str,
        percent: int,
        *,
        status: str | None = None,
        error_message: str | None = None,
    ) -> None: ...

    async def update_costs(self, trip_id: uuid.UUID, ai_delta: float, api_delta: float) -> None: ...

    async def append_telemetry(self, trip_id: uuid.UUID, entry: TelemetryEntry) -> None: ...

    async def list_telemetry(self, trip_id: uuid.UUID) -> list[TelemetryEntry]: ...

    async def append_chat_message(self, trip_id: uuid.UUID, role: str, content: str) -> None: ...

    async def update_preferences(self, trip_id: uuid.UUID, preferences: dict) -> None: ...

    async def update_research_destinations(
        self,
        trip_id: uuid.UUID,
        destinations: list[Destination],
        summary: ResearchSummary | None = None,
        *,
        progress_message: str | None = None,
    ) -> None: ...

    async def confirm_destinations(
        self, trip_id: uuid.UUID, names: list[str], progress_message: str
    ) -> bool: ...

    async def rollback_confirmation(self, trip_id: uuid.UUID, error_message: str) -> None: ...

    async def update_trip_options(self, trip_id: uuid.UUID, options: list[TripOption]) -> None: ...

    async def update_option_itinerary(
        self, trip_id: uuid.UUID, option_index: int, itinerary: list[dict]
    ) -> None: ...

    async def select_trip_option(self, trip_id: uuid.UUID, option_index: int) -> None: ...

    async def mark_handed_off(self, trip_id: uuid.UUID) -> None: ...

    async def purge_telemetry(self, older_than: datetime) -> int: ...


class ModelDirectory(Protocol):
    async def get_model(self, key: str) -> ModelInfo | None: ...

    async def get_default_model(self) -> ModelInfo | None: ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _dump_options(options: list[TripOption]) -> list[dict]:
    return [o.model_dump(mode="json", by_alias=True) for o in options]


class SqlTripStore:
    """TripStore over SQLAlchemy async sessions. Each call is its own unit of work."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = async_session_factory):
        self._session_factory = session_factory

    async def _update(self, trip_id: uuid.UUID, **values) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                update(TripRecord).where(TripRecord.id == trip_id).values(**values)
            )
            await db.commit()
            return result.rowcount

    async def get_trip(self, trip_id: uuid.UUID) -> Trip | None:
        async with self._session_factory() as db:
            record = await db.get(TripRecord, trip_id)
            if record is None:
                return None
            return Trip.model_validate(record)

    async def create_trip(
        self,
        template_id: str,
        initial_message: str,
        preferences: dict | None = None,
        model_id: str | None = None,
    ) -> Trip:
        record = TripRecord(
            template_id=template_id,
            status=TripStatus.RESEARCHING,
            model_id=model_id,
            initial_message=initial_message,
            chat_history=[],
            preferences=preferences or {},
            research_destinations=[],
            confirmed_destinations=[],
            options=[],
            progress_message="Starting research...",
            progress_percent=0,
            ai_cost_usd=0.0,
            api_cost_usd=0.0,
        )
        async with self._session_factory() as db:
            db.add(record)
            await db.commit()
            await db.refresh(record)
            logger.info(f"Created trip {record.id} (template={template_id})")
            return Trip.model_validate(record)

    async def get_template(self, template_id: str) -> Template | None:
        async with self._session_factory() as db:
            record = await db.get(TripTemplate, template_id)
            if record is None:
                return None
            return Template.model_validate(record)

    async def list_templates(self) -> list[Template]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(TripTemplate)
                .where(TripTemplate.is_active.is_(True))
                .order_by(TripTemplate.display_order, TripTemplate.name)
            )
            return [Template.model_validate(t) for t in result.scalars().all()]

    async def update_progress(
        self,
        trip_id: uuid.UUID,
        message: str,
        percent: int,
        *,
        status: str | None = None,
        error_message: str | None = None,
    ) -> None:
        values: dict = {"progress_message": message, "progress_percent": percent}
        if status is not None:
            values["status"] = status
        if error_message is not None:
            values["error_message"] = error_message
        await self._update(trip_id, **values)

    async def update_costs(self, trip_id: uuid.UUID, ai_delta: float, api_delta: float) -> None:
        # Increment in SQL so concurrent ledgers never overwrite each other
        await self._update(
            trip_id,
            ai_cost_usd=TripRecord.ai_cost_usd + ai_delta,
            api_cost_usd=TripRecord.api_cost_usd + api_delta,
        )

    async def append_telemetry(self, trip_id: uuid.UUID, entry: TelemetryEntry) -> None:
        async with self._session_factory() as db:
            db.add(TelemetryRecord(trip_id=trip_id, **entry.model_dump(mode="python")))
            await db.commit()

    async def list_telemetry(self, trip_id: uuid.UUID) -> list[TelemetryEntry]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(TelemetryRecord)
                .where(TelemetryRecord.trip_id == trip_id)
                .order_by(TelemetryRecord.id)
            )
            return [TelemetryEntry.model_validate(r) for r in result.scalars().all()]

    async def append_chat_message(self, trip_id: uuid.UUID, role: str, content: str) -> None:
        async with self._session_factory() as db:
            record = await db.get(TripRecord, trip_id)
            if record is None:
                return
            message = {"role": role, "content": content, "timestamp": _now().isoformat()}
            record.chat_history = [*(record.chat_history or []), message]
            await db.commit()

    async def update_preferences(self, trip_id: uuid.UUID, preferences: dict) -> None:
        await self._update(trip_id, preferences=preferences)

    async def update_research_destinations(
        self,
        trip_id: uuid.UUID,
        destinations: list[Destination],
        summary: ResearchSummary | None = None,
        *,
        progress_message: str | None = None,
    ) -> None:
        values: dict = {
            "research_destinations": [d.model_dump(mode="json") for d in destinations],
            "status": TripStatus.AWAITING_CONFIRMATION,
            "progress_message": progress_message or "Research complete",
            "progress_percent": 100,
            "error_message": None,
        }
        if summary is not None:
            values["research_summary"] = summary.model_dump(mode="json")
        await self._update(trip_id, **values)

    async def confirm_destinations(
        self, trip_id: uuid.UUID, names: list[str], progress_message: str
    ) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(
                update(TripRecord)
                .where(
                    TripRecord.id == trip_id,
                    TripRecord.destinations_confirmed.is_(False),
                )
                .values(
                    destinations_confirmed=True,
                    confirmed_destinations=list(names),
                    status=TripStatus.BUILDING,
                    progress_message=progress_message,
                    progress_percent=0,
                    error_message=None,
                    options=[],
                    selected_option_index=None,
                )
            )
            await db.commit()
            return result.rowcount == 1

    async def rollback_confirmation(self, trip_id: uuid.UUID, error_message: str) -> None:
        await self._update(
            trip_id,
            destinations_confirmed=False,
            confirmed_destinations=[],
            status=TripStatus.AWAITING_CONFIRMATION,
            progress_message=error_message,
            progress_percent=0,
            error_message=error_message,
        )

    async def update_trip_options(self, trip_id: uuid.UUID, options: list[TripOption]) -> None:
        await self._update(
            trip_id,
            options=_dump_options(options),
            selected_option_index=None,
            status=TripStatus.OPTIONS_READY,
            progress_message="Trip options ready!",
            progress_percent=100,
        )

    async def update_option_itinerary(
        self, trip_id: uuid.UUID, option_index: int, itinerary: list[dict]
    ) -> None:
        async with self._session_factory() as db:
            record = await db.get(TripRecord, trip_id)
            if record is None:
                return
            options = [dict(o) for o in record.options or []]
            for option in options:
                if option.get("option_index") == option_index:
                    option["daily_itinerary"] = itinerary
            record.options = options
            await db.commit()

    async def select_trip_option(self, trip_id: uuid.UUID, option_index: int) -> None:
        await self._update(
            trip_id,
            selected_option_index=option_index,
            status=TripStatus.OPTION_SELECTED,
        )

    async def mark_handed_off(self, trip_id: uuid.UUID) -> None:
        await self._update(trip_id, status=TripStatus.HANDED_OFF, handed_off_at=_now())

    async def purge_telemetry(self, older_than: datetime) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                delete(TelemetryRecord).where(TelemetryRecord.timestamp < older_than)
            )
            await db.commit()
            return result.rowcount


class SqlModelDirectory:
    """Dynamic model directory backed by the ai_models table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = async_session_factory):
        self._session_factory = session_factory

    async def get_model(self, key: str) -> ModelInfo | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(AIModel).where(
                    (AIModel.id == key) | (AIModel.model_id == key),
                    AIModel.is_active.is_(True),
                )
            )
            record = result.scalars().first()
            return ModelInfo.model_validate(record) if record else None

    async def get_default_model(self) -> ModelInfo | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(AIModel)
                .where(AIModel.is_default.is_(True), AIModel.is_active.is_(True))
                .order_by(AIModel.priority)
            )
            record = result.scalars().first()
            return ModelInfo.model_validate(record) if record else None

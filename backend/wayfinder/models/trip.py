import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from wayfinder.database import Base, JSONType


class TripRecord(Base):
    __tablename__ = "trips"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    template_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("trip_templates.id"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(32), default="researching")
    model_id: Mapped[str | None] = mapped_column(String(64))
    initial_message: Mapped[str | None] = mapped_column(Text)
    chat_history: Mapped[list] = mapped_column(JSONType, default=list)
    preferences: Mapped[dict] = mapped_column(JSONType, default=dict)

    # Phase 1
    research_destinations: Mapped[list] = mapped_column(JSONType, default=list)
    research_summary: Mapped[dict | None] = mapped_column(JSONType)

    # Phase gate
    destinations_confirmed: Mapped[bool] = mapped_column(Boolean, default=False)
    confirmed_destinations: Mapped[list] = mapped_column(JSONType, default=list)

    # Phase 2
    options: Mapped[list] = mapped_column(JSONType, default=list)
    selected_option_index: Mapped[int | None] = mapped_column(Integer)
    handed_off_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Progress
    progress_message: Mapped[str | None] = mapped_column(Text)
    progress_percent: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text)

    # Cost accumulators (USD)
    ai_cost_usd: Mapped[float] = mapped_column(Float, default=0.0)
    api_cost_usd: Mapped[float] = mapped_column(Float, default=0.0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    telemetry_log: Mapped[list["TelemetryRecord"]] = relationship(
        back_populates="trip", cascade="all, delete-orphan", order_by="TelemetryRecord.id"
    )


class TelemetryRecord(Base):
    __tablename__ = "trip_telemetry"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    trip_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True
    )
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    event: Mapped[str] = mapped_column(String(64), nullable=False)
    provider: Mapped[str | None] = mapped_column(String(64))
    model: Mapped[str | None] = mapped_column(String(128))
    tokens: Mapped[int | None] = mapped_column(Integer)
    cost: Mapped[float | None] = mapped_column(Float)
    duration_ms: Mapped[int | None] = mapped_column(Integer)
    details: Mapped[dict | None] = mapped_column(JSONType)

    trip: Mapped["TripRecord"] = relationship(back_populates="telemetry_log")

"""Collection-side models: coverage areas, unmet requests, attempt history."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from sqlalchemy import Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.dialects.postgresql import ENUM, UUID
from sqlalchemy.orm import Mapped, mapped_column

from keyword_selection.models.base import Base, TimestampMixin
from keyword_selection.models.entity import entity_type_enum

UnmetReason = Literal["unresolved", "low_result"]
KeywordAttemptOutcome = Literal["success", "no_results", "error", "deferred"]

UNMET_REASONS: tuple[UnmetReason, ...] = ("unresolved", "low_result")

# Created by the product API under its original mixed-case name
on_demand_reason_enum = ENUM(*UNMET_REASONS, name="OnDemandReason", create_type=False)
keyword_attempt_outcome_enum = ENUM(
    "success",
    "no_results",
    "error",
    "deferred",
    name="keyword_attempt_outcome",
    create_type=False,
)


class CoverageArea(Base, TimestampMixin):
    """A monitored community/region and its collection cadence."""

    __tablename__ = "coverage_areas"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    coverage_key: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    safe_interval_days: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<CoverageArea {self.name}>"


class OnDemandRequest(Base, TimestampMixin):
    """A user-facing search that found no or too few results."""

    __tablename__ = "collection_on_demand_requests"

    request_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    term: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[str] = mapped_column(entity_type_enum, nullable=False)
    reason: Mapped[str] = mapped_column(on_demand_reason_enum, nullable=False)
    location_key: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    distinct_user_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class KeywordAttemptHistory(Base, TimestampMixin):
    """Latest keyword search attempt per coverage area and normalized term."""

    __tablename__ = "keyword_attempt_history"

    collection_coverage_key: Mapped[str] = mapped_column(String(255), primary_key=True)
    normalized_term: Mapped[str] = mapped_column(String(255), primary_key=True)
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    last_success_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    last_outcome: Mapped[str | None] = mapped_column(keyword_attempt_outcome_enum, nullable=True)
    cooldown_until: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=False),
        nullable=True,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<KeywordAttemptHistory {self.collection_coverage_key}:{self.normalized_term}>"

"""User activity models feeding the aggregated demand signals."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import ENUM, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from keyword_selection.models.base import Base
from keyword_selection.models.entity import entity_type_enum

search_log_source_enum = ENUM("search", "poll", name="search_log_source", create_type=False)


class UserSearchLog(Base):
    """One search submitted by a user, optionally resolved to an entity."""

    __tablename__ = "user_search_logs"

    log_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    user_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    entity_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("core_entities.entity_id", ondelete="SET NULL"),
        nullable=True,
    )
    entity_type: Mapped[str | None] = mapped_column(entity_type_enum, nullable=True)
    source: Mapped[str] = mapped_column(search_log_source_enum, nullable=False, default="search")
    collection_coverage_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # `metadata` is reserved on declarative classes
    search_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONB, nullable=True)
    logged_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class UserRestaurantView(Base):
    """Latest restaurant detail view per user."""

    __tablename__ = "user_restaurant_views"

    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    restaurant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("core_entities.entity_id", ondelete="CASCADE"),
        primary_key=True,
    )
    view_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_viewed_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class UserFoodView(Base):
    """Latest food detail view per user and connection."""

    __tablename__ = "user_food_views"

    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    connection_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("core_connections.connection_id", ondelete="CASCADE"),
        primary_key=True,
    )
    food_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    view_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_viewed_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class UserFavorite(Base):
    """An entity a user saved."""

    __tablename__ = "user_favorites"

    favorite_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("core_entities.entity_id", ondelete="CASCADE"),
        nullable=False,
    )
    entity_type: Mapped[str] = mapped_column(entity_type_enum, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

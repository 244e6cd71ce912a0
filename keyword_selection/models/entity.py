"""Core entity and connection models."""

from __future__ import annotations

import uuid
from typing import Literal

from sqlalchemy import ForeignKey, String
from sqlalchemy.dialects.postgresql import ENUM, UUID
from sqlalchemy.orm import Mapped, mapped_column

from keyword_selection.models.base import Base, TimestampMixin

EntityType = Literal["restaurant", "food", "food_attribute", "restaurant_attribute"]

ENTITY_TYPES: tuple[EntityType, ...] = (
    "restaurant",
    "food",
    "food_attribute",
    "restaurant_attribute",
)

# Existing Postgres enum; never created from here
entity_type_enum = ENUM(*ENTITY_TYPES, name="entity_type", create_type=False)


class CoreEntity(Base, TimestampMixin):
    """Restaurant, food or attribute entity shown to users."""

    __tablename__ = "core_entities"

    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(entity_type_enum, nullable=False, index=True)
    location_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<CoreEntity {self.type}:{self.name}>"


class CoreConnection(Base, TimestampMixin):
    """A food served at a restaurant."""

    __tablename__ = "core_connections"

    connection_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    restaurant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("core_entities.entity_id", ondelete="CASCADE"),
        nullable=False,
    )
    food_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("core_entities.entity_id", ondelete="CASCADE"),
        nullable=False,
    )

"""Read-only access to the signal stores behind keyword slice selection."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from keyword_selection.core.db_kernel import db_read
from keyword_selection.models.collection import (
    CoverageArea,
    KeywordAttemptHistory,
    OnDemandRequest,
    UnmetReason,
)
from keyword_selection.repositories.entity_demand_query import (
    build_entity_demand_statement,
    build_global_query_counts_statement,
    build_trend_counts_statement,
)
from keyword_selection.services.slice_selection.types import (
    AttemptHistoryRecord,
    CoverageAreaLookup,
    EntityDemandRow,
    TrendCounts,
    UnmetRequestRow,
)

logger = logging.getLogger(__name__)


class KeywordSignalSource(Protocol):
    """Query shapes the selection engine reads; implementations never write."""

    async def find_coverage_area(self, name: str) -> CoverageAreaLookup | None:
        """Case-insensitive exact match on the coverage area name."""

    async def find_unmet_requests(
        self,
        *,
        location_key: str,
        since: datetime,
        reasons: Sequence[UnmetReason],
        limit: int,
        min_distinct_users: int = 1,
    ) -> list[UnmetRequestRow]:
        """Requests ordered by distinct users desc, then last seen desc."""

    async def find_attempt_history(
        self,
        *,
        collection_coverage_key: str,
        normalized_terms: Sequence[str] | None = None,
        limit: int | None = None,
    ) -> list[AttemptHistoryRecord]:
        """History rows for the area, oldest success first; optionally limited to terms."""

    async def find_entity_demand_signals(
        self,
        *,
        collection_coverage_key: str,
        since: datetime,
        limit: int,
    ) -> list[EntityDemandRow]:
        """Aggregated engagement rows for entities touched in the area."""

    async def find_trend_counts(
        self,
        *,
        collection_coverage_key: str,
        entity_ids: Sequence[str],
        since: datetime,
        trend_since: datetime,
    ) -> dict[str, TrendCounts]:
        """Current vs previous trend window query users keyed by entity id."""

    async def find_global_query_counts(
        self,
        *,
        since: datetime,
        term_keys: Sequence[str],
        entity_types: Sequence[str],
    ) -> dict[str, int]:
        """Distinct query users keyed by ``"{entity_type}:{term_key}"``."""


def to_db_timestamp(value: datetime) -> datetime:
    """Bind for timestamp columns without time zone, which hold naive UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_db_timestamptz(value: datetime) -> datetime:
    """Aware UTC bind for timestamptz columns; naive input is taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_db_timestamp(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def global_count_key(entity_type: str, term_key: str) -> str:
    return f"{entity_type}:{term_key}"


class SqlKeywordSignalRepository:
    """KeywordSignalSource backed by the product Postgres database.

    Every method opens its own short-lived read session, so independent
    loaders can await them concurrently.
    """

    async def find_coverage_area(self, name: str) -> CoverageAreaLookup | None:
        cleaned = name.strip()
        if not cleaned:
            return None

        async def _read(session: AsyncSession) -> CoverageAreaLookup | None:
            stmt = (
                select(CoverageArea.name, CoverageArea.coverage_key, CoverageArea.safe_interval_days)
                .where(func.lower(CoverageArea.name) == cleaned.lower())
                .limit(1)
            )
            row = (await session.execute(stmt)).first()
            if row is None:
                return None
            return CoverageAreaLookup(
                name=row.name,
                coverage_key=row.coverage_key,
                safe_interval_days=row.safe_interval_days,
            )

        return await db_read(_read, operation_name="coverage_area_lookup")

    async def find_unmet_requests(
        self,
        *,
        location_key: str,
        since: datetime,
        reasons: Sequence[UnmetReason],
        limit: int,
        min_distinct_users: int = 1,
    ) -> list[UnmetRequestRow]:
        if limit <= 0 or not reasons:
            return []

        async def _read(session: AsyncSession) -> list[UnmetRequestRow]:
            stmt = (
                select(OnDemandRequest)
                .where(
                    OnDemandRequest.location_key == location_key,
                    OnDemandRequest.distinct_user_count >= min_distinct_users,
                    OnDemandRequest.last_seen_at >= to_db_timestamptz(since),
                    OnDemandRequest.reason.in_(list(reasons)),
                )
                .order_by(
                    OnDemandRequest.distinct_user_count.desc(),
                    OnDemandRequest.last_seen_at.desc(),
                )
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [
                UnmetRequestRow(
                    request_id=str(request.request_id),
                    term=request.term,
                    entity_type=request.entity_type,
                    reason=request.reason,
                    distinct_user_count=request.distinct_user_count,
                    last_seen_at=from_db_timestamp(request.last_seen_at),
                    location_key=request.location_key,
                )
                for request in result.scalars()
            ]

        return await db_read(_read, operation_name="unmet_requests")

    async def find_attempt_history(
        self,
        *,
        collection_coverage_key: str,
        normalized_terms: Sequence[str] | None = None,
        limit: int | None = None,
    ) -> list[AttemptHistoryRecord]:
        if normalized_terms is not None and not normalized_terms:
            return []

        async def _read(session: AsyncSession) -> list[AttemptHistoryRecord]:
            history = KeywordAttemptHistory
            stmt = select(history).where(history.collection_coverage_key == collection_coverage_key)
            if normalized_terms is not None:
                stmt = stmt.where(history.normalized_term.in_(list(normalized_terms)))
            stmt = stmt.order_by(
                history.last_success_at.asc().nulls_first(),
                history.last_attempt_at.asc().nulls_first(),
                history.normalized_term.asc(),
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            result = await session.execute(stmt)
            return [
                AttemptHistoryRecord(
                    collection_coverage_key=row.collection_coverage_key,
                    normalized_term=row.normalized_term,
                    last_attempt_at=from_db_timestamp(row.last_attempt_at),
                    last_success_at=from_db_timestamp(row.last_success_at),
                    last_outcome=row.last_outcome,
                    cooldown_until=from_db_timestamp(row.cooldown_until),
                )
                for row in result.scalars()
            ]

        return await db_read(_read, operation_name="keyword_attempt_history")

    async def find_entity_demand_signals(
        self,
        *,
        collection_coverage_key: str,
        since: datetime,
        limit: int,
    ) -> list[EntityDemandRow]:
        if not collection_coverage_key.strip() or limit <= 0:
            return []

        stmt = build_entity_demand_statement(
            collection_coverage_key=collection_coverage_key,
            since=to_db_timestamp(since),
            limit=limit,
        )

        async def _read(session: AsyncSession) -> list[EntityDemandRow]:
            result = await session.execute(stmt)
            return [
                EntityDemandRow(
                    entity_id=str(row.entity_id),
                    entity_type=row.entity_type,
                    entity_name=row.entity_name,
                    favorite_users=int(row.favorite_users or 0),
                    view_users=int(row.view_users or 0),
                    autocomplete_users=int(row.autocomplete_users or 0),
                    query_users_primary=int(row.query_users_primary or 0),
                    last_query_at=from_db_timestamp(row.last_query_at),
                    last_view_at=from_db_timestamp(row.last_view_at),
                )
                for row in result
            ]

        return await db_read(_read, operation_name="entity_demand_signals")

    async def find_trend_counts(
        self,
        *,
        collection_coverage_key: str,
        entity_ids: Sequence[str],
        since: datetime,
        trend_since: datetime,
    ) -> dict[str, TrendCounts]:
        if not entity_ids:
            return {}

        stmt = build_trend_counts_statement(
            collection_coverage_key=collection_coverage_key,
            entity_ids=[uuid.UUID(str(entity_id)) for entity_id in entity_ids],
            since=to_db_timestamp(since),
            trend_since=to_db_timestamp(trend_since),
        )

        async def _read(session: AsyncSession) -> dict[str, TrendCounts]:
            result = await session.execute(stmt)
            return {
                str(row.entity_id): TrendCounts(
                    query_users_7d=int(row.query_users_7d or 0),
                    query_users_prev_7d=int(row.query_users_prev_7d or 0),
                )
                for row in result
            }

        return await db_read(_read, operation_name="entity_trend_counts")

    async def find_global_query_counts(
        self,
        *,
        since: datetime,
        term_keys: Sequence[str],
        entity_types: Sequence[str],
    ) -> dict[str, int]:
        if not term_keys or not entity_types:
            return {}

        stmt = build_global_query_counts_statement(
            since=to_db_timestamp(since),
            term_keys=term_keys,
            entity_types=entity_types,
        )

        async def _read(session: AsyncSession) -> dict[str, int]:
            result = await session.execute(stmt)
            return {
                global_count_key(row.entity_type, row.term_key): int(row.global_query_users or 0)
                for row in result
            }

        return await db_read(_read, operation_name="global_query_counts")

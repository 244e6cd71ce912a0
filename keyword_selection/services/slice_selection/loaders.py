"""Signal loaders: one per slice, each emitting raw scored candidates."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timedelta

from keyword_selection.config import SelectionConfig
from keyword_selection.models.collection import UNMET_REASONS
from keyword_selection.repositories.signal_repository import (
    KeywordSignalSource,
    global_count_key,
)
from keyword_selection.services.keyword_terms import term_key
from keyword_selection.services.slice_selection.scoring import (
    demand_score,
    refresh_score,
    staleness_days,
    unmet_score,
)
from keyword_selection.services.slice_selection.types import (
    EntityDemandRow,
    TermCandidate,
    TrendCounts,
)

logger = logging.getLogger(__name__)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


async def load_unmet_candidates(
    source: KeywordSignalSource,
    *,
    collection_coverage_key: str,
    since: datetime,
    now: datetime,
    config: SelectionConfig,
) -> list[TermCandidate]:
    """Recent user searches that came back empty or thin in this area."""
    requests = await source.find_unmet_requests(
        location_key=collection_coverage_key,
        since=since,
        reasons=UNMET_REASONS,
        limit=config.loader_limit,
    )

    return [
        TermCandidate(
            term=request.term,
            slice="unmet",
            score=unmet_score(
                distinct_users=request.distinct_user_count,
                reason=request.reason,
                last_seen_at=request.last_seen_at,
                now=now,
                distinct_users_cap=config.unmet_distinct_users_cap,
            ),
            load_index=index,
            entity_type=request.entity_type,
            origin={
                "request_id": request.request_id,
                "reason": request.reason,
                "distinct_user_count": request.distinct_user_count,
                "last_seen_at": _isoformat(request.last_seen_at),
            },
        )
        for index, request in enumerate(requests)
    ]


async def load_refresh_candidates(
    source: KeywordSignalSource,
    *,
    collection_coverage_key: str,
    now: datetime,
    config: SelectionConfig,
) -> list[TermCandidate]:
    """Previously searched terms, scored by how long since they last paid off."""
    rows = await source.find_attempt_history(
        collection_coverage_key=collection_coverage_key,
        limit=config.loader_limit,
    )

    candidates: list[TermCandidate] = []
    for index, row in enumerate(rows):
        stale_days = staleness_days(row.last_success_at, row.last_attempt_at, now)
        candidates.append(
            TermCandidate(
                term=row.normalized_term,
                normalized_term=row.normalized_term,
                slice="refresh",
                score=refresh_score(stale_days, config.refresh_staleness_saturation_days),
                load_index=index,
                origin={
                    "staleness_days": stale_days,
                    "last_success_at": _isoformat(row.last_success_at),
                    "last_attempt_at": _isoformat(row.last_attempt_at),
                    "last_outcome": row.last_outcome,
                    "cooldown_until": _isoformat(row.cooldown_until),
                },
            )
        )
    return candidates


async def load_entity_demand_rows(
    source: KeywordSignalSource,
    *,
    collection_coverage_key: str,
    since: datetime,
    config: SelectionConfig,
) -> list[EntityDemandRow]:
    """Shared row set for the demand and explore slices."""
    if not collection_coverage_key.strip():
        return []
    return await source.find_entity_demand_signals(
        collection_coverage_key=collection_coverage_key,
        since=since,
        limit=config.entity_signal_limit,
    )


def _engagement_origin(row: EntityDemandRow) -> dict[str, object]:
    return {
        "entity_id": row.entity_id,
        "favorite_users": row.favorite_users,
        "view_users": row.view_users,
        "autocomplete_users": row.autocomplete_users,
        "query_users_primary": row.query_users_primary,
        "last_query_at": _isoformat(row.last_query_at),
        "last_view_at": _isoformat(row.last_view_at),
    }


def build_demand_candidates(
    rows: Sequence[EntityDemandRow],
    config: SelectionConfig,
) -> list[TermCandidate]:
    """Entities users engage with locally, weighted toward favorites and searches."""
    return [
        TermCandidate(
            term=row.entity_name,
            slice="demand",
            score=demand_score(
                favorite_users=row.favorite_users,
                view_users=row.view_users,
                autocomplete_users=row.autocomplete_users,
                query_users_primary=row.query_users_primary,
                favorite_users_cap=config.favorite_users_cap,
                view_users_cap=config.view_users_cap,
                autocomplete_users_cap=config.autocomplete_users_cap,
                query_users_primary_cap=config.query_users_primary_cap,
            ),
            load_index=index,
            entity_type=row.entity_type,
            origin=_engagement_origin(row),
        )
        for index, row in enumerate(rows)
    ]


def _meets_signal_floor(
    row: EntityDemandRow,
    unmet_distinct_users: int,
    config: SelectionConfig,
) -> bool:
    return (
        row.view_users >= config.explore_view_users_floor
        or row.autocomplete_users >= config.explore_autocomplete_users_floor
        or row.favorite_users >= config.explore_favorite_users_floor
        or unmet_distinct_users >= config.explore_unmet_users_floor
    )


async def load_explore_candidates(
    source: KeywordSignalSource,
    rows: Sequence[EntityDemandRow],
    *,
    collection_coverage_key: str,
    since: datetime,
    now: datetime,
    config: SelectionConfig,
) -> list[TermCandidate]:
    """Entities with a minimum engagement signal, annotated for deferred scoring.

    Scores start at 0; the attempt-history stage computes them once novelty
    is known.
    """
    if not rows:
        return []

    unmet_requests = await source.find_unmet_requests(
        location_key=collection_coverage_key,
        since=since,
        reasons=UNMET_REASONS,
        limit=config.entity_signal_limit,
    )
    unmet_by_term: dict[str, int] = {}
    for request in unmet_requests:
        key = term_key(request.term)
        if not key:
            continue
        unmet_by_term[key] = max(unmet_by_term.get(key, 0), request.distinct_user_count)

    trend_since = now - timedelta(days=config.trend_window_days)
    previous_trend_since = now - timedelta(days=config.trend_window_days * 2)
    entity_ids = list(dict.fromkeys(row.entity_id for row in rows))
    trend_by_entity = await source.find_trend_counts(
        collection_coverage_key=collection_coverage_key,
        entity_ids=entity_ids,
        since=previous_trend_since,
        trend_since=trend_since,
    )

    term_keys = list(
        dict.fromkeys(
            row.entity_name.strip().lower() for row in rows if row.entity_name.strip()
        )
    )
    entity_types = list(dict.fromkeys(row.entity_type for row in rows))
    global_query_users = await source.find_global_query_counts(
        since=since,
        term_keys=term_keys,
        entity_types=entity_types,
    )

    candidates: list[TermCandidate] = []
    for row in rows:
        unmet_distinct_users = unmet_by_term.get(term_key(row.entity_name), 0)
        if not _meets_signal_floor(row, unmet_distinct_users, config):
            continue

        trend = trend_by_entity.get(row.entity_id, TrendCounts())
        global_users = global_query_users.get(
            global_count_key(row.entity_type, row.entity_name.strip().lower()),
            0,
        )
        candidates.append(
            TermCandidate(
                term=row.entity_name,
                slice="explore",
                score=0.0,
                load_index=len(candidates),
                entity_type=row.entity_type,
                origin={
                    **_engagement_origin(row),
                    "unmet_distinct_users": unmet_distinct_users,
                    "query_users_7d": trend.query_users_7d,
                    "query_users_prev_7d": trend.query_users_prev_7d,
                    "local_query_users": row.query_users_primary,
                    "global_query_users": global_users,
                },
            )
        )

    logger.debug(
        "Loaded explore candidates",
        extra={
            "collection_coverage_key": collection_coverage_key,
            "rows": len(rows),
            "qualified": len(candidates),
        },
    )
    return candidates

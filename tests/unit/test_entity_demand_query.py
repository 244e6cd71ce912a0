"""Compile checks for the entity demand SQL."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy.dialects import postgresql

from keyword_selection.repositories.entity_demand_query import (
    build_entity_demand_statement,
    build_global_query_counts_statement,
    build_trend_counts_statement,
)

SINCE = datetime(2026, 1, 30, 12, 0)


def _sql(stmt) -> str:
    return str(stmt.compile(dialect=postgresql.dialect()))


def test_entity_demand_statement_unions_every_signal() -> None:
    sql = _sql(build_entity_demand_statement(collection_coverage_key="atx", since=SINCE, limit=1250))

    for cte in (
        "local_query AS",
        "local_autocomplete AS",
        "restaurant_views AS",
        "food_views AS",
        "favorite_counts AS",
        "favorite_candidates AS",
        "candidate_ids AS",
    ):
        assert cte in sql
    assert "UNION" in sql
    assert "'restaurant'::entity_type" in sql
    assert "'food'::entity_type" in sql
    assert "#>>" in sql
    assert "greatest(" in sql
    assert "ORDER BY" in sql


def test_entity_demand_statement_selects_row_columns() -> None:
    stmt = build_entity_demand_statement(collection_coverage_key="atx", since=SINCE, limit=10)

    assert [column.name for column in stmt.selected_columns] == [
        "entity_id",
        "entity_type",
        "entity_name",
        "favorite_users",
        "view_users",
        "last_view_at",
        "autocomplete_users",
        "query_users_primary",
        "last_query_at",
    ]


def test_trend_statement_splits_windows_with_filters() -> None:
    stmt = build_trend_counts_statement(
        collection_coverage_key="atx",
        entity_ids=[uuid.uuid4()],
        since=SINCE,
        trend_since=datetime(2026, 2, 22, 12, 0),
    )
    sql = _sql(stmt)

    assert sql.count("FILTER (WHERE") == 2
    assert "GROUP BY user_search_logs.entity_id" in sql
    assert [column.name for column in stmt.selected_columns] == [
        "entity_id",
        "query_users_7d",
        "query_users_prev_7d",
    ]


def test_global_counts_statement_groups_by_type_and_lowercased_name() -> None:
    sql = _sql(
        build_global_query_counts_statement(
            since=SINCE,
            term_keys=["pho saigon"],
            entity_types=["restaurant"],
        )
    )

    assert "lower(e.name)" in sql
    assert "count(DISTINCT user_search_logs.user_id)" in sql
    assert "collection_coverage_key" not in sql

"""Unit tests for the per-slice signal loaders."""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from keyword_selection.config import SelectionConfig
from keyword_selection.services.slice_selection.loaders import (
    build_demand_candidates,
    load_entity_demand_rows,
    load_explore_candidates,
    load_refresh_candidates,
    load_unmet_candidates,
)
from keyword_selection.services.slice_selection.types import (
    AttemptHistoryRecord,
    EntityDemandRow,
    TrendCounts,
    UnmetRequestRow,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
SINCE = NOW - timedelta(days=30)
CONFIG = SelectionConfig(_env_file=None)


class _FakeSource:
    def __init__(
        self,
        *,
        unmet: list[UnmetRequestRow] | None = None,
        history: list[AttemptHistoryRecord] | None = None,
        entity_rows: list[EntityDemandRow] | None = None,
        trends: dict[str, TrendCounts] | None = None,
        global_counts: dict[str, int] | None = None,
    ) -> None:
        self.unmet = unmet or []
        self.history = history or []
        self.entity_rows = entity_rows or []
        self.trends = trends or {}
        self.global_counts = global_counts or {}
        self.calls: dict[str, list[dict[str, Any]]] = {}

    def _record(self, name: str, **kwargs: Any) -> None:
        self.calls.setdefault(name, []).append(kwargs)

    async def find_coverage_area(self, name: str):
        return None

    async def find_unmet_requests(self, **kwargs: Any) -> list[UnmetRequestRow]:
        self._record("unmet", **kwargs)
        return list(self.unmet)

    async def find_attempt_history(self, **kwargs: Any) -> list[AttemptHistoryRecord]:
        self._record("history", **kwargs)
        return list(self.history)

    async def find_entity_demand_signals(self, **kwargs: Any) -> list[EntityDemandRow]:
        self._record("entity", **kwargs)
        return list(self.entity_rows)

    async def find_trend_counts(self, **kwargs: Any) -> dict[str, TrendCounts]:
        self._record("trend", **kwargs)
        return dict(self.trends)

    async def find_global_query_counts(self, **kwargs: Any) -> dict[str, int]:
        self._record("global", **kwargs)
        return dict(self.global_counts)


def _unmet(term: str, users: int, **kwargs: Any) -> UnmetRequestRow:
    defaults: dict[str, Any] = {
        "request_id": f"req-{term}",
        "entity_type": "food",
        "reason": "unresolved",
        "last_seen_at": NOW - timedelta(days=1),
        "location_key": "austin",
    }
    defaults.update(kwargs)
    return UnmetRequestRow(term=term, distinct_user_count=users, **defaults)


def _entity(entity_id: str, name: str, entity_type: str = "food", **counts: int) -> EntityDemandRow:
    return EntityDemandRow(entity_id=entity_id, entity_type=entity_type, entity_name=name, **counts)


@pytest.mark.asyncio
async def test_unmet_loader_requests_both_reasons_and_scores_rows() -> None:
    source = _FakeSource(
        unmet=[
            _unmet("best ramen", 3),
            _unmet("pho", 1, reason="low_result", last_seen_at=NOW),
        ]
    )

    candidates = await load_unmet_candidates(
        source,
        collection_coverage_key="austin",
        since=SINCE,
        now=NOW,
        config=CONFIG,
    )

    [call] = source.calls["unmet"]
    assert call["location_key"] == "austin"
    assert call["since"] == SINCE
    assert set(call["reasons"]) == {"unresolved", "low_result"}
    assert call["limit"] == 250

    assert [c.term for c in candidates] == ["best ramen", "pho"]
    assert [c.load_index for c in candidates] == [0, 1]
    assert candidates[0].slice == "unmet"
    assert candidates[0].score == pytest.approx(
        math.log(4) / math.log(26) * (0.7 + 0.3 * math.exp(-1 / 7))
    )
    assert candidates[1].score == pytest.approx(0.8 * math.log(2) / math.log(26))
    assert candidates[0].origin["request_id"] == "req-best ramen"
    assert candidates[0].origin["last_seen_at"] == (NOW - timedelta(days=1)).isoformat()


@pytest.mark.asyncio
async def test_refresh_loader_scores_staleness_and_keeps_history_order() -> None:
    source = _FakeSource(
        history=[
            AttemptHistoryRecord(collection_coverage_key="austin", normalized_term="brisket"),
            AttemptHistoryRecord(
                collection_coverage_key="austin",
                normalized_term="tacos",
                last_success_at=NOW - timedelta(days=45),
                last_attempt_at=NOW - timedelta(days=2),
                last_outcome="success",
            ),
        ]
    )

    candidates = await load_refresh_candidates(
        source,
        collection_coverage_key="austin",
        now=NOW,
        config=CONFIG,
    )

    [call] = source.calls["history"]
    assert call == {"collection_coverage_key": "austin", "limit": 250}
    assert [c.normalized_term for c in candidates] == ["brisket", "tacos"]
    assert candidates[0].score == 1.0
    assert candidates[0].origin["staleness_days"] == 365.0
    assert candidates[1].score == pytest.approx(0.5)
    assert candidates[1].origin["last_outcome"] == "success"
    assert candidates[1].origin["cooldown_until"] is None


@pytest.mark.asyncio
async def test_entity_rows_skip_blank_coverage_key() -> None:
    source = _FakeSource(entity_rows=[_entity("e1", "Pho", view_users=3)])

    rows = await load_entity_demand_rows(
        source, collection_coverage_key="  ", since=SINCE, config=CONFIG
    )

    assert rows == []
    assert "entity" not in source.calls


@pytest.mark.asyncio
async def test_entity_rows_use_entity_signal_limit() -> None:
    source = _FakeSource(entity_rows=[_entity("e1", "Pho", view_users=3)])

    rows = await load_entity_demand_rows(
        source, collection_coverage_key="austin", since=SINCE, config=CONFIG
    )

    assert len(rows) == 1
    assert source.calls["entity"] == [
        {"collection_coverage_key": "austin", "since": SINCE, "limit": 1250}
    ]


def test_demand_candidates_weight_engagement_signals() -> None:
    rows = [
        _entity("e1", "Brisket", favorite_users=10, view_users=25, autocomplete_users=25, query_users_primary=50),
        _entity("e2", "Kolache", view_users=1),
    ]

    candidates = build_demand_candidates(rows, CONFIG)

    assert [c.term for c in candidates] == ["Brisket", "Kolache"]
    assert candidates[0].score == pytest.approx(1.0)
    assert 0 < candidates[1].score < 0.1
    assert candidates[1].entity_type == "food"
    assert candidates[1].origin["entity_id"] == "e2"


@pytest.mark.asyncio
async def test_explore_loader_applies_signal_floors() -> None:
    rows = [
        _entity("e1", "Pho Saigon", "restaurant", view_users=2),
        _entity("e2", "Kolache", autocomplete_users=2),
        _entity("e3", "Boba", favorite_users=1),
        _entity("e4", "Elote", view_users=1, autocomplete_users=1, query_users_primary=9),
        _entity("e5", "Birria", view_users=1),
    ]
    source = _FakeSource(
        unmet=[_unmet("best birria", 1), _unmet("Birria", 2), _unmet("best food", 9)],
    )

    candidates = await load_explore_candidates(
        source,
        rows,
        collection_coverage_key="austin",
        since=SINCE,
        now=NOW,
        config=CONFIG,
    )

    assert [c.term for c in candidates] == ["Pho Saigon", "Kolache", "Boba", "Birria"]
    assert [c.load_index for c in candidates] == [0, 1, 2, 3]
    assert all(c.score == 0.0 for c in candidates)
    assert candidates[3].origin["unmet_distinct_users"] == 2
    assert source.calls["unmet"][0]["limit"] == 1250


@pytest.mark.asyncio
async def test_explore_loader_reads_trend_windows_and_global_counts() -> None:
    rows = [
        _entity("e1", "Pho Saigon", "restaurant", view_users=3, query_users_primary=4),
        _entity("e2", " Ramen ", favorite_users=2, query_users_primary=3),
    ]
    source = _FakeSource(
        trends={"e1": TrendCounts(query_users_7d=3, query_users_prev_7d=1)},
        global_counts={"restaurant:pho saigon": 6, "food:ramen": 40},
    )

    candidates = await load_explore_candidates(
        source,
        rows,
        collection_coverage_key="austin",
        since=SINCE,
        now=NOW,
        config=CONFIG,
    )

    [trend_call] = source.calls["trend"]
    assert trend_call["entity_ids"] == ["e1", "e2"]
    assert trend_call["since"] == NOW - timedelta(days=14)
    assert trend_call["trend_since"] == NOW - timedelta(days=7)

    [global_call] = source.calls["global"]
    assert global_call["since"] == SINCE
    assert global_call["term_keys"] == ["pho saigon", "ramen"]
    assert global_call["entity_types"] == ["restaurant", "food"]

    pho, ramen = candidates
    assert pho.origin["query_users_7d"] == 3
    assert pho.origin["query_users_prev_7d"] == 1
    assert pho.origin["local_query_users"] == 4
    assert pho.origin["global_query_users"] == 6
    assert ramen.origin["query_users_7d"] == 0
    assert ramen.origin["global_query_users"] == 40


@pytest.mark.asyncio
async def test_explore_loader_short_circuits_without_rows() -> None:
    source = _FakeSource()

    candidates = await load_explore_candidates(
        source,
        [],
        collection_coverage_key="austin",
        since=SINCE,
        now=NOW,
        config=CONFIG,
    )

    assert candidates == []
    assert source.calls == {}

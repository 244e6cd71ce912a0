"""Pick the keyword terms to search for one coverage area this cycle."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from keyword_selection.config import SelectionConfig
from keyword_selection.repositories.signal_repository import KeywordSignalSource
from keyword_selection.services.slice_selection.loaders import (
    build_demand_candidates,
    load_entity_demand_rows,
    load_explore_candidates,
    load_refresh_candidates,
    load_unmet_candidates,
)
from keyword_selection.services.slice_selection.stages import (
    allocate_quotas,
    apply_attempt_history,
    backfill_overflow,
    dedupe_across_slices,
    dedupe_within_slice,
    normalize_and_filter,
)
from keyword_selection.services.slice_selection.types import (
    SLICE_PRIORITY,
    CoverageAreaLookup,
    KeywordSlice,
    SelectionResult,
    SelectionStats,
    TermCandidate,
)

logger = logging.getLogger(__name__)

LOG_SAMPLE_SIZE = 10


def resolve_collection_coverage_key(area_name: str, coverage: CoverageAreaLookup | None) -> str:
    """Configured key, then configured name, then the raw input; lowercased."""
    configured_key = (coverage.coverage_key or "").strip() if coverage is not None else ""
    if configured_key:
        return configured_key.lower()

    configured_name = (coverage.name or "").strip() if coverage is not None else ""
    if configured_name:
        return configured_name.lower()

    normalized = area_name.strip().lower()
    return normalized or area_name


def resolve_safe_interval_days(coverage: CoverageAreaLookup | None, default: float) -> float:
    raw = coverage.safe_interval_days if coverage is not None else None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool) and raw > 0:
        return raw
    return default


class KeywordSliceSelectionService:
    """Merge the four keyword signal slices into one budgeted term list.

    The service only reads. Executing the searches and recording their
    outcomes in attempt history belongs to the collection orchestrator.
    """

    def __init__(
        self,
        source: KeywordSignalSource,
        config: SelectionConfig | None = None,
    ) -> None:
        self.source = source
        self.config = config or SelectionConfig()

    async def select_terms_for_area(
        self,
        area_name: str,
        *,
        now: datetime | None = None,
    ) -> SelectionResult:
        """Select up to ``max_terms_per_cycle`` terms for the named coverage area.

        Any read failure propagates; there are no partial results.
        """
        config = self.config
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        normalized_area = area_name.strip()

        coverage = await self.source.find_coverage_area(normalized_area) if normalized_area else None
        collection_coverage_key = resolve_collection_coverage_key(normalized_area, coverage)
        safe_interval_days = resolve_safe_interval_days(coverage, config.default_safe_interval_days)
        since = now - timedelta(days=config.demand_window_days)

        stats = SelectionStats()
        loaded = await self._load_candidates(
            collection_coverage_key=collection_coverage_key,
            since=since,
            now=now,
        )

        candidates_by_slice: dict[KeywordSlice, list[TermCandidate]] = {}
        for slice_name in SLICE_PRIORITY:
            stats.loaded_by_slice[slice_name] = len(loaded[slice_name])
            normalized = normalize_and_filter(loaded[slice_name], stats.dropped)
            candidates_by_slice[slice_name] = dedupe_within_slice(normalized)
            stats.candidates_by_slice[slice_name] = len(candidates_by_slice[slice_name])

        normalized_terms = list(
            dict.fromkeys(
                candidate.normalized_term
                for slice_name in SLICE_PRIORITY
                for candidate in candidates_by_slice[slice_name]
            )
        )
        history_rows = (
            await self.source.find_attempt_history(
                collection_coverage_key=collection_coverage_key,
                normalized_terms=normalized_terms,
            )
            if normalized_terms
            else []
        )
        history_by_term = {row.normalized_term: row for row in history_rows}

        for slice_name in SLICE_PRIORITY:
            candidates_by_slice[slice_name] = apply_attempt_history(
                candidates_by_slice[slice_name],
                history_by_term,
                now=now,
                config=config,
                dropped=stats.dropped,
            )

        eligible_by_slice = dedupe_across_slices(candidates_by_slice, stats.dropped)
        quotas = config.slice_quotas
        selected_by_slice, overflow_by_slice = allocate_quotas(eligible_by_slice, quotas)

        primary: list[TermCandidate] = []
        for slice_name in SLICE_PRIORITY:
            stats.eligible_by_slice[slice_name] = len(eligible_by_slice[slice_name])
            stats.selected_by_slice[slice_name] = len(selected_by_slice[slice_name])
            stats.underfilled_by_slice[slice_name] = max(
                0, quotas[slice_name] - len(selected_by_slice[slice_name])
            )
            primary.extend(selected_by_slice[slice_name])

        max_terms = config.max_terms_per_cycle
        terms, backfilled = backfill_overflow(primary, overflow_by_slice, max_terms)
        stats.backfilled_by_slice = backfilled

        logger.info(
            "Selected keyword terms for cycle",
            extra={
                "area_name": normalized_area,
                "collection_coverage_key": collection_coverage_key,
                "max_terms": max_terms,
                "selected_terms": len(terms),
                "eligible_by_slice": dict(stats.eligible_by_slice),
                "dropped": stats.dropped.to_dict(),
            },
        )
        logger.debug(
            "Keyword selection detail",
            extra={
                "collection_coverage_key": collection_coverage_key,
                "quotas": quotas,
                "stats": stats.to_dict(),
                "sample": [
                    {
                        "slice": term.slice,
                        "term": term.term,
                        "normalized_term": term.normalized_term,
                        "score": term.score,
                    }
                    for term in terms[:LOG_SAMPLE_SIZE]
                ],
            },
        )

        return SelectionResult(
            area_name=normalized_area,
            collection_coverage_key=collection_coverage_key,
            safe_interval_days=safe_interval_days,
            window_days=config.demand_window_days,
            trend_window_days=config.trend_window_days,
            max_terms=max_terms,
            quotas=quotas,
            terms=terms,
            stats=stats,
        )

    async def _load_candidates(
        self,
        *,
        collection_coverage_key: str,
        since: datetime,
        now: datetime,
    ) -> dict[KeywordSlice, list[TermCandidate]]:
        """Run the independent loaders concurrently; the first failure fails the call."""
        unmet, refresh, (demand, explore) = await asyncio.gather(
            load_unmet_candidates(
                self.source,
                collection_coverage_key=collection_coverage_key,
                since=since,
                now=now,
                config=self.config,
            ),
            load_refresh_candidates(
                self.source,
                collection_coverage_key=collection_coverage_key,
                now=now,
                config=self.config,
            ),
            self._load_entity_slices(
                collection_coverage_key=collection_coverage_key,
                since=since,
                now=now,
            ),
        )
        return {"unmet": unmet, "refresh": refresh, "demand": demand, "explore": explore}

    async def _load_entity_slices(
        self,
        *,
        collection_coverage_key: str,
        since: datetime,
        now: datetime,
    ) -> tuple[list[TermCandidate], list[TermCandidate]]:
        rows = await load_entity_demand_rows(
            self.source,
            collection_coverage_key=collection_coverage_key,
            since=since,
            config=self.config,
        )
        demand = build_demand_candidates(rows, self.config)
        explore = await load_explore_candidates(
            self.source,
            rows,
            collection_coverage_key=collection_coverage_key,
            since=since,
            now=now,
            config=self.config,
        )
        return demand, explore

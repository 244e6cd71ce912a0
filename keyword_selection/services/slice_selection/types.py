"""Domain types for keyword slice selection."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from keyword_selection.models.collection import KeywordAttemptOutcome, UnmetReason
from keyword_selection.models.entity import EntityType

KeywordSlice = Literal["unmet", "refresh", "demand", "explore"]

# Highest priority first: quota concatenation, overflow backfill and
# cross-slice dedup all walk slices in this order.
SLICE_PRIORITY: tuple[KeywordSlice, ...] = ("unmet", "refresh", "demand", "explore")


def empty_slice_counts() -> dict[KeywordSlice, int]:
    return {slice_name: 0 for slice_name in SLICE_PRIORITY}


@dataclass(frozen=True, slots=True)
class TermCandidate:
    """One scored search term competing for a slot in the cycle.

    ``score`` only orders candidates within their own slice. ``load_index`` is
    the position the loader emitted the candidate at and breaks score ties.
    """

    term: str
    slice: KeywordSlice
    score: float
    load_index: int
    normalized_term: str = ""
    entity_type: EntityType | None = None
    origin: dict[str, Any] = field(default_factory=dict)

    def sort_key(self) -> tuple[float, int]:
        return (-self.score, self.load_index)


@dataclass(frozen=True, slots=True)
class UnmetRequestRow:
    """Unresolved or low-result user search, as read from the request store."""

    request_id: str
    term: str
    entity_type: EntityType | None
    reason: UnmetReason
    distinct_user_count: int
    last_seen_at: datetime
    location_key: str


@dataclass(frozen=True, slots=True)
class AttemptHistoryRecord:
    """Latest attempt outcome for one (coverage area, normalized term)."""

    collection_coverage_key: str
    normalized_term: str
    last_attempt_at: datetime | None = None
    last_success_at: datetime | None = None
    last_outcome: KeywordAttemptOutcome | None = None
    cooldown_until: datetime | None = None


@dataclass(frozen=True, slots=True)
class EntityDemandRow:
    """Aggregated user engagement for one entity in a coverage area."""

    entity_id: str
    entity_type: EntityType
    entity_name: str
    favorite_users: int = 0
    view_users: int = 0
    autocomplete_users: int = 0
    query_users_primary: int = 0
    last_query_at: datetime | None = None
    last_view_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class TrendCounts:
    """Distinct querying users in the current and previous trend windows."""

    query_users_7d: int = 0
    query_users_prev_7d: int = 0


@dataclass(frozen=True, slots=True)
class CoverageAreaLookup:
    """Configured coverage area, when one matches the requested name."""

    name: str
    coverage_key: str | None = None
    safe_interval_days: float | None = None


@dataclass(slots=True)
class DroppedCounts:
    invalid: int = 0
    cooldown: int = 0
    deduped: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "invalid": self.invalid,
            "cooldown": self.cooldown,
            "deduped": self.deduped,
        }


@dataclass(slots=True)
class SelectionStats:
    """Per-slice counts at each pipeline stage plus drop reasons."""

    loaded_by_slice: dict[KeywordSlice, int] = field(default_factory=empty_slice_counts)
    candidates_by_slice: dict[KeywordSlice, int] = field(default_factory=empty_slice_counts)
    eligible_by_slice: dict[KeywordSlice, int] = field(default_factory=empty_slice_counts)
    selected_by_slice: dict[KeywordSlice, int] = field(default_factory=empty_slice_counts)
    backfilled_by_slice: dict[KeywordSlice, int] = field(default_factory=empty_slice_counts)
    underfilled_by_slice: dict[KeywordSlice, int] = field(default_factory=empty_slice_counts)
    dropped: DroppedCounts = field(default_factory=DroppedCounts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "loaded_by_slice": dict(self.loaded_by_slice),
            "candidates_by_slice": dict(self.candidates_by_slice),
            "eligible_by_slice": dict(self.eligible_by_slice),
            "selected_by_slice": dict(self.selected_by_slice),
            "backfilled_by_slice": dict(self.backfilled_by_slice),
            "underfilled_by_slice": dict(self.underfilled_by_slice),
            "dropped": self.dropped.to_dict(),
        }


@dataclass(slots=True)
class SelectionResult:
    """Ordered terms to search this cycle for one coverage area."""

    area_name: str
    collection_coverage_key: str
    safe_interval_days: float
    window_days: int
    trend_window_days: int
    max_terms: int
    quotas: dict[KeywordSlice, int]
    terms: list[TermCandidate]
    stats: SelectionStats

    def to_dict(self) -> dict[str, Any]:
        """Serialize the result to a JSON-compatible dict."""
        return {
            "area_name": self.area_name,
            "collection_coverage_key": self.collection_coverage_key,
            "safe_interval_days": self.safe_interval_days,
            "window_days": self.window_days,
            "trend_window_days": self.trend_window_days,
            "max_terms": self.max_terms,
            "quotas": dict(self.quotas),
            "terms": [
                {
                    "term": term.term,
                    "normalized_term": term.normalized_term,
                    "slice": term.slice,
                    "score": term.score,
                    "entity_type": term.entity_type,
                    "origin": dict(term.origin),
                }
                for term in self.terms
            ],
            "stats": self.stats.to_dict(),
        }

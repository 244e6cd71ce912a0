"""Pure pipeline stages between loading and the final term list.

Each stage returns new candidate lists; candidates themselves are frozen and
are replaced rather than mutated when a stage rewrites them.
"""

from __future__ import annotations

import dataclasses
import math
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime
from typing import assert_never

from keyword_selection.config import SelectionConfig
from keyword_selection.services.keyword_terms import normalize_keyword_term, strip_generic_tokens
from keyword_selection.services.slice_selection.scoring import (
    days_between,
    explore_novelty,
    explore_score,
    explore_trend,
    local_specialization,
)
from keyword_selection.services.slice_selection.types import (
    SLICE_PRIORITY,
    AttemptHistoryRecord,
    DroppedCounts,
    KeywordSlice,
    TermCandidate,
    empty_slice_counts,
)


def sort_by_score(candidates: Iterable[TermCandidate]) -> list[TermCandidate]:
    """Score desc; equal scores keep load order."""
    return sorted(candidates, key=TermCandidate.sort_key)


def normalize_and_filter(
    candidates: Sequence[TermCandidate],
    dropped: DroppedCounts,
) -> list[TermCandidate]:
    """Strip generic tokens, compute normalized keys and drop unusable terms."""
    result: list[TermCandidate] = []
    for candidate in candidates:
        stripped = strip_generic_tokens(candidate.term)
        if not stripped.text or stripped.is_generic_only:
            dropped.invalid += 1
            continue

        normalized_term = normalize_keyword_term(stripped.text)
        if not normalized_term:
            dropped.invalid += 1
            continue

        result.append(
            dataclasses.replace(candidate, term=stripped.text, normalized_term=normalized_term)
        )
    return result


def dedupe_within_slice(candidates: Sequence[TermCandidate]) -> list[TermCandidate]:
    """Keep the best-scoring candidate per normalized term, sorted by score."""
    by_term: dict[str, TermCandidate] = {}
    for candidate in candidates:
        existing = by_term.get(candidate.normalized_term)
        if existing is None or candidate.score > existing.score:
            by_term[candidate.normalized_term] = candidate
    return sort_by_score(by_term.values())


def _number(origin: Mapping[str, object], key: str) -> float:
    value = origin.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value) if math.isfinite(value) else 0.0


def _soft_suppress_unmet(
    candidate: TermCandidate,
    history: AttemptHistoryRecord | None,
    now: datetime,
    config: SelectionConfig,
) -> TermCandidate:
    if history is None or history.last_outcome != "no_results" or history.last_attempt_at is None:
        return candidate

    days_since_attempt = days_between(history.last_attempt_at, now)
    if not 0 <= days_since_attempt <= config.no_results_suppression_window_days:
        return candidate

    multiplier = config.no_results_suppression_multiplier
    return dataclasses.replace(
        candidate,
        score=candidate.score * multiplier,
        origin={
            **candidate.origin,
            "soft_suppressed": True,
            "suppression_multiplier": multiplier,
            "last_outcome": history.last_outcome,
            "last_attempt_at": history.last_attempt_at.isoformat(),
        },
    )


def _score_explore(
    candidate: TermCandidate,
    history: AttemptHistoryRecord | None,
    now: datetime,
    config: SelectionConfig,
) -> TermCandidate:
    origin = candidate.origin
    trend = explore_trend(_number(origin, "query_users_7d"), _number(origin, "query_users_prev_7d"))
    specialization = local_specialization(
        _number(origin, "local_query_users"),
        _number(origin, "global_query_users"),
    )
    last_attempt_at = history.last_attempt_at if history is not None else None
    novelty = explore_novelty(last_attempt_at, now, config.explore_recent_attempt_days)

    return dataclasses.replace(
        candidate,
        score=explore_score(novelty=novelty, specialization=specialization, trend=trend),
        origin={
            **origin,
            "novelty": novelty,
            "trend": trend,
            "local_specialization": specialization,
            "last_outcome": history.last_outcome if history is not None else None,
            "last_attempt_at": last_attempt_at.isoformat() if last_attempt_at is not None else None,
        },
    )


def adjust_for_history(
    candidate: TermCandidate,
    history: AttemptHistoryRecord | None,
    now: datetime,
    config: SelectionConfig,
) -> TermCandidate:
    """Rescore one candidate from its attempt history (cooldown is checked by the caller)."""
    slice_name = candidate.slice
    if slice_name == "unmet":
        return _soft_suppress_unmet(candidate, history, now, config)
    elif slice_name == "explore":
        return _score_explore(candidate, history, now, config)
    elif slice_name == "refresh" or slice_name == "demand":
        return candidate
    else:
        assert_never(slice_name)


def apply_attempt_history(
    candidates: Sequence[TermCandidate],
    history_by_term: Mapping[str, AttemptHistoryRecord],
    *,
    now: datetime,
    config: SelectionConfig,
    dropped: DroppedCounts,
) -> list[TermCandidate]:
    """Drop cooling-down terms, rescore the rest and re-sort."""
    adjusted: list[TermCandidate] = []
    for candidate in candidates:
        history = history_by_term.get(candidate.normalized_term)
        if history is not None and history.cooldown_until is not None and history.cooldown_until > now:
            dropped.cooldown += 1
            continue
        adjusted.append(adjust_for_history(candidate, history, now, config))
    return sort_by_score(adjusted)


def dedupe_across_slices(
    candidates_by_slice: Mapping[KeywordSlice, Sequence[TermCandidate]],
    dropped: DroppedCounts,
) -> dict[KeywordSlice, list[TermCandidate]]:
    """Keep each normalized term only in the highest-priority slice that has it."""
    seen: set[str] = set()
    deduped: dict[KeywordSlice, list[TermCandidate]] = {slice_name: [] for slice_name in SLICE_PRIORITY}
    for slice_name in SLICE_PRIORITY:
        for candidate in candidates_by_slice.get(slice_name, ()):
            if candidate.normalized_term in seen:
                dropped.deduped += 1
                continue
            seen.add(candidate.normalized_term)
            deduped[slice_name].append(candidate)
    return deduped


def allocate_quotas(
    eligible_by_slice: Mapping[KeywordSlice, Sequence[TermCandidate]],
    quotas: Mapping[KeywordSlice, int],
) -> tuple[dict[KeywordSlice, list[TermCandidate]], dict[KeywordSlice, list[TermCandidate]]]:
    """Split each slice into its top-``quota`` selection and the overflow behind it."""
    selected: dict[KeywordSlice, list[TermCandidate]] = {}
    overflow: dict[KeywordSlice, list[TermCandidate]] = {}
    for slice_name in SLICE_PRIORITY:
        eligible = list(eligible_by_slice.get(slice_name, ()))
        quota = max(0, quotas.get(slice_name, 0))
        selected[slice_name] = eligible[:quota]
        overflow[slice_name] = eligible[quota:]
    return selected, overflow


def backfill_overflow(
    primary: Sequence[TermCandidate],
    overflow_by_slice: Mapping[KeywordSlice, Sequence[TermCandidate]],
    max_terms: int,
) -> tuple[list[TermCandidate], dict[KeywordSlice, int]]:
    """Top up unused budget from overflow, exhausting each slice before the next."""
    final = list(primary[:max_terms])
    backfilled = empty_slice_counts()
    remaining = max(0, max_terms - len(final))

    for slice_name in SLICE_PRIORITY:
        if remaining <= 0:
            break
        overflow = overflow_by_slice.get(slice_name, ())
        take = min(remaining, len(overflow))
        if take > 0:
            final.extend(overflow[:take])
            backfilled[slice_name] = take
            remaining -= take

    return final, backfilled

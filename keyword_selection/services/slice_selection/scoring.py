"""Scoring math for the keyword slices.

Scores are only compared within a slice, so each function returns a value in
[0, 1] on its own scale.
"""

from __future__ import annotations

import math
from datetime import datetime

from keyword_selection.models.collection import UnmetReason

SECONDS_PER_DAY = 24 * 60 * 60

UNMET_REASON_SEVERITY: dict[UnmetReason, float] = {
    "unresolved": 1.0,
    "low_result": 0.8,
}
UNMET_RECENCY_FLOOR = 0.7
UNMET_RECENCY_DECAY_DAYS = 7.0

DEMAND_WEIGHTS = {
    "favorites": 0.35,
    "views": 0.20,
    "autocomplete": 0.15,
    "queries": 0.30,
}

EXPLORE_WEIGHTS = {
    "novelty": 0.45,
    "local_specialization": 0.35,
    "trend": 0.20,
}
EXPLORE_SPECIALIZATION_RATIO_CAP = 3.0

MAX_STALENESS_DAYS = 365.0


def clamp01(value: float) -> float:
    """Clamp to [0, 1]; non-finite input maps to 0."""
    if not math.isfinite(value) or value <= 0:
        return 0.0
    if value >= 1:
        return 1.0
    return value


def normalize_log(value: float, cap: float) -> float:
    """Log-scale a count so that ``cap`` maps to 1."""
    safe_value = max(0.0, value) if math.isfinite(value) else 0.0
    safe_cap = cap if math.isfinite(cap) and cap > 0 else 1.0
    return clamp01(math.log1p(safe_value) / math.log1p(safe_cap))


def days_between(earlier: datetime, later: datetime) -> float:
    return (later - earlier).total_seconds() / SECONDS_PER_DAY


def recency_boost(days_since_last_seen: float) -> float:
    """Between 0.7 and 1.0, decaying with a 7 day time constant."""
    safe_days = (
        days_since_last_seen
        if math.isfinite(days_since_last_seen) and days_since_last_seen > 0
        else 0.0
    )
    return UNMET_RECENCY_FLOOR + (1 - UNMET_RECENCY_FLOOR) * math.exp(
        -safe_days / UNMET_RECENCY_DECAY_DAYS
    )


def unmet_score(
    *,
    distinct_users: int,
    reason: UnmetReason,
    last_seen_at: datetime,
    now: datetime,
    distinct_users_cap: int,
) -> float:
    severity = UNMET_REASON_SEVERITY.get(reason, 1.0)
    demand = normalize_log(distinct_users, distinct_users_cap)
    return severity * demand * recency_boost(days_between(last_seen_at, now))


def demand_score(
    *,
    favorite_users: int,
    view_users: int,
    autocomplete_users: int,
    query_users_primary: int,
    favorite_users_cap: int,
    view_users_cap: int,
    autocomplete_users_cap: int,
    query_users_primary_cap: int,
) -> float:
    return (
        DEMAND_WEIGHTS["favorites"] * normalize_log(favorite_users, favorite_users_cap)
        + DEMAND_WEIGHTS["views"] * normalize_log(view_users, view_users_cap)
        + DEMAND_WEIGHTS["autocomplete"] * normalize_log(autocomplete_users, autocomplete_users_cap)
        + DEMAND_WEIGHTS["queries"] * normalize_log(query_users_primary, query_users_primary_cap)
    )


def staleness_days(
    last_success_at: datetime | None,
    last_attempt_at: datetime | None,
    now: datetime,
) -> float:
    """Days since the last success (or attempt), capped at a year.

    A term that was never attempted counts as maximally stale.
    """
    anchor = last_success_at or last_attempt_at
    if anchor is None:
        return MAX_STALENESS_DAYS
    days = days_between(anchor, now)
    if not math.isfinite(days) or days <= 0:
        return 0.0
    return min(MAX_STALENESS_DAYS, days)


def refresh_score(stale_days: float, saturation_days: float) -> float:
    return clamp01(stale_days / saturation_days)


def explore_trend(query_users_7d: float, query_users_prev_7d: float) -> float:
    return clamp01((query_users_7d - query_users_prev_7d) / max(1.0, query_users_prev_7d))


def local_specialization(local_query_users: float, global_query_users: float) -> float:
    other_users = max(0.0, global_query_users - local_query_users)
    return clamp01((local_query_users + 1) / (other_users + 1) / EXPLORE_SPECIALIZATION_RATIO_CAP)


def explore_novelty(
    last_attempt_at: datetime | None,
    now: datetime,
    recent_attempt_days: float,
) -> float:
    """1.0 for never-attempted terms, otherwise ramps up over the recent-attempt window."""
    if last_attempt_at is None:
        return 1.0
    days = days_between(last_attempt_at, now)
    safe_days = days if math.isfinite(days) and days > 0 else 0.0
    return clamp01(safe_days / recent_attempt_days)


def explore_score(*, novelty: float, specialization: float, trend: float) -> float:
    return (
        EXPLORE_WEIGHTS["novelty"] * novelty
        + EXPLORE_WEIGHTS["local_specialization"] * specialization
        + EXPLORE_WEIGHTS["trend"] * trend
    )

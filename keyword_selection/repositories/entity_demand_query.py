"""SELECT statements over user activity for the demand and explore slices.

Restaurants and foods are scoped to the coverage area through their
location; attribute entities are area-agnostic and only reach the candidate
set through local searches, autocomplete picks or favorites.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import (
    Select,
    Text,
    and_,
    cast,
    distinct,
    func,
    literal_column,
    or_,
    select,
    union,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import aliased

from keyword_selection.models.entity import ENTITY_TYPES, CoreConnection, CoreEntity, entity_type_enum
from keyword_selection.models.user_activity import (
    UserFavorite,
    UserFoodView,
    UserRestaurantView,
    UserSearchLog,
)

EPOCH = literal_column("'epoch'::timestamp")

# Blended engagement rank used to cap the candidate union
FAVORITE_RANK_WEIGHT = 3
VIEW_RANK_WEIGHT = 2
AUTOCOMPLETE_RANK_WEIGHT = 2
QUERY_RANK_WEIGHT = 1


def _local_search_filters(collection_coverage_key: str, since: datetime) -> list:
    log = UserSearchLog
    return [
        log.logged_at >= since,
        log.source == "search",
        log.user_id.is_not(None),
        log.entity_id.is_not(None),
        log.entity_type.is_not(None),
        log.collection_coverage_key.is_not(None),
        func.lower(log.collection_coverage_key) == func.lower(collection_coverage_key),
    ]


def _in_area_entity(entity, collection_coverage_key: str):
    """Restaurants must sit in the area; other entity types pass."""
    return and_(
        entity.type.in_(ENTITY_TYPES),
        or_(
            entity.type != "restaurant",
            func.lower(entity.location_key) == func.lower(collection_coverage_key),
        ),
    )


def build_entity_demand_statement(
    *,
    collection_coverage_key: str,
    since: datetime,
    limit: int,
) -> Select:
    """Union of the top-``limit`` entities per signal, joined back to entity metadata."""
    log = UserSearchLog

    query_users = func.count(distinct(log.user_id)).label("query_users_primary")
    last_query_at = func.max(log.logged_at).label("last_query_at")
    local_query = (
        select(log.entity_id, log.entity_type, query_users, last_query_at)
        .where(*_local_search_filters(collection_coverage_key, since))
        .group_by(log.entity_id, log.entity_type)
        .order_by(query_users.desc(), last_query_at.desc())
        .limit(limit)
        .cte("local_query")
    )

    meta = log.search_metadata
    selected_entity_id = meta[("submissionContext", "selectedEntityId")].astext
    selected_entity_type = meta[("submissionContext", "selectedEntityType")].astext
    autocomplete_users = func.count(distinct(log.user_id)).label("autocomplete_users")
    local_autocomplete = (
        select(log.entity_id, log.entity_type, autocomplete_users)
        .where(
            *_local_search_filters(collection_coverage_key, since),
            meta["submissionSource"].astext == "autocomplete",
            selected_entity_id.is_not(None),
            selected_entity_type.is_not(None),
            cast(selected_entity_id, UUID(as_uuid=True)) == log.entity_id,
            selected_entity_type == cast(log.entity_type, Text),
        )
        .group_by(log.entity_id, log.entity_type)
        .order_by(autocomplete_users.desc())
        .limit(limit)
        .cte("local_autocomplete")
    )

    rv = UserRestaurantView
    restaurant = aliased(CoreEntity, name="rv_restaurant")
    restaurant_view_users = func.count().label("view_users")
    restaurant_last_view = func.max(rv.last_viewed_at).label("last_view_at")
    restaurant_views = (
        select(
            rv.restaurant_id.label("entity_id"),
            literal_column("'restaurant'::entity_type", entity_type_enum).label("entity_type"),
            restaurant_view_users,
            restaurant_last_view,
        )
        .join(restaurant, restaurant.entity_id == rv.restaurant_id)
        .where(
            rv.last_viewed_at >= since,
            func.lower(restaurant.location_key) == func.lower(collection_coverage_key),
        )
        .group_by(rv.restaurant_id)
        .order_by(restaurant_view_users.desc(), restaurant_last_view.desc())
        .limit(limit)
        .cte("restaurant_views")
    )

    fv = UserFoodView
    food_restaurant = aliased(CoreEntity, name="fv_restaurant")
    food_view_users = func.count(distinct(fv.user_id)).label("view_users")
    food_last_view = func.max(fv.last_viewed_at).label("last_view_at")
    food_views = (
        select(
            fv.food_id.label("entity_id"),
            literal_column("'food'::entity_type", entity_type_enum).label("entity_type"),
            food_view_users,
            food_last_view,
        )
        .join(CoreConnection, CoreConnection.connection_id == fv.connection_id)
        .join(food_restaurant, food_restaurant.entity_id == CoreConnection.restaurant_id)
        .where(
            fv.last_viewed_at >= since,
            func.lower(food_restaurant.location_key) == func.lower(collection_coverage_key),
        )
        .group_by(fv.food_id)
        .order_by(food_view_users.desc(), food_last_view.desc())
        .limit(limit)
        .cte("food_views")
    )

    fav = UserFavorite
    favorite_counts = (
        select(fav.entity_id, fav.entity_type, func.count().label("favorite_users"))
        .group_by(fav.entity_id, fav.entity_type)
        .cte("favorite_counts")
    )
    favorite_entity = aliased(CoreEntity, name="fav_entity")
    favorite_candidates = (
        select(favorite_counts.c.entity_id, favorite_counts.c.entity_type)
        .join(favorite_entity, favorite_entity.entity_id == favorite_counts.c.entity_id)
        .where(
            _in_area_entity(favorite_entity, collection_coverage_key),
            favorite_counts.c.favorite_users > 0,
        )
        .order_by(favorite_counts.c.favorite_users.desc())
        .limit(limit)
        .cte("favorite_candidates")
    )

    candidate_ids = union(
        select(local_query.c.entity_id, local_query.c.entity_type),
        select(local_autocomplete.c.entity_id, local_autocomplete.c.entity_type),
        select(restaurant_views.c.entity_id, restaurant_views.c.entity_type),
        select(food_views.c.entity_id, food_views.c.entity_type),
        select(favorite_candidates.c.entity_id, favorite_candidates.c.entity_type),
    ).cte("candidate_ids")

    entity = aliased(CoreEntity, name="e")
    favorite_users = func.coalesce(favorite_counts.c.favorite_users, 0)
    view_users = func.coalesce(restaurant_views.c.view_users, 0) + func.coalesce(
        food_views.c.view_users, 0
    )
    autocomplete = func.coalesce(local_autocomplete.c.autocomplete_users, 0)
    queries = func.coalesce(local_query.c.query_users_primary, 0)
    last_view_at = func.nullif(
        func.greatest(
            func.coalesce(restaurant_views.c.last_view_at, EPOCH),
            func.coalesce(food_views.c.last_view_at, EPOCH),
        ),
        EPOCH,
    )
    engagement_rank = (
        favorite_users * FAVORITE_RANK_WEIGHT
        + view_users * VIEW_RANK_WEIGHT
        + autocomplete * AUTOCOMPLETE_RANK_WEIGHT
        + queries * QUERY_RANK_WEIGHT
    )
    latest_activity = func.greatest(
        func.coalesce(local_query.c.last_query_at, EPOCH),
        func.coalesce(restaurant_views.c.last_view_at, EPOCH),
        func.coalesce(food_views.c.last_view_at, EPOCH),
    )

    return (
        select(
            entity.entity_id.label("entity_id"),
            entity.type.label("entity_type"),
            entity.name.label("entity_name"),
            favorite_users.label("favorite_users"),
            view_users.label("view_users"),
            last_view_at.label("last_view_at"),
            autocomplete.label("autocomplete_users"),
            queries.label("query_users_primary"),
            local_query.c.last_query_at.label("last_query_at"),
        )
        .select_from(candidate_ids)
        .join(entity, entity.entity_id == candidate_ids.c.entity_id)
        .outerjoin(
            favorite_counts,
            and_(
                favorite_counts.c.entity_id == candidate_ids.c.entity_id,
                favorite_counts.c.entity_type == candidate_ids.c.entity_type,
            ),
        )
        .outerjoin(restaurant_views, restaurant_views.c.entity_id == candidate_ids.c.entity_id)
        .outerjoin(food_views, food_views.c.entity_id == candidate_ids.c.entity_id)
        .outerjoin(
            local_autocomplete,
            and_(
                local_autocomplete.c.entity_id == candidate_ids.c.entity_id,
                local_autocomplete.c.entity_type == candidate_ids.c.entity_type,
            ),
        )
        .outerjoin(
            local_query,
            and_(
                local_query.c.entity_id == candidate_ids.c.entity_id,
                local_query.c.entity_type == candidate_ids.c.entity_type,
            ),
        )
        .where(_in_area_entity(entity, collection_coverage_key))
        .order_by(engagement_rank.desc(), latest_activity.desc())
        .limit(limit)
    )


def build_trend_counts_statement(
    *,
    collection_coverage_key: str,
    entity_ids: Sequence[uuid.UUID],
    since: datetime,
    trend_since: datetime,
) -> Select:
    """Distinct local query users per entity in [trend_since, now) and [since, trend_since)."""
    log = UserSearchLog
    return (
        select(
            log.entity_id.label("entity_id"),
            func.count(distinct(log.user_id))
            .filter(log.logged_at >= trend_since)
            .label("query_users_7d"),
            func.count(distinct(log.user_id))
            .filter(and_(log.logged_at >= since, log.logged_at < trend_since))
            .label("query_users_prev_7d"),
        )
        .where(
            log.logged_at >= since,
            log.source == "search",
            log.user_id.is_not(None),
            log.collection_coverage_key.is_not(None),
            func.lower(log.collection_coverage_key) == func.lower(collection_coverage_key),
            log.entity_id.in_(list(entity_ids)),
        )
        .group_by(log.entity_id)
    )


def build_global_query_counts_statement(
    *,
    since: datetime,
    term_keys: Sequence[str],
    entity_types: Sequence[str],
) -> Select:
    """Area-agnostic distinct query users per (entity type, lowercased name)."""
    log = UserSearchLog
    entity = aliased(CoreEntity, name="e")
    term_key = func.lower(entity.name)
    return (
        select(
            entity.type.label("entity_type"),
            term_key.label("term_key"),
            func.count(distinct(log.user_id)).label("global_query_users"),
        )
        .join(entity, entity.entity_id == log.entity_id)
        .where(
            log.logged_at >= since,
            log.source == "search",
            log.user_id.is_not(None),
            term_key.in_(list(term_keys)),
            entity.type.in_(list(entity_types)),
        )
        .group_by(entity.type, term_key)
    )

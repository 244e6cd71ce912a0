"""SQLAlchemy models for the signal stores read during keyword selection."""
from dotenv import load_dotenv
from keyword_selection.models.base import Base
from keyword_selection.models.collection import (
    CoverageArea,
    KeywordAttemptHistory,
    OnDemandRequest,
)
from keyword_selection.models.entity import CoreConnection, CoreEntity
from keyword_selection.models.user_activity import (
    UserFavorite,
    UserFoodView,
    UserRestaurantView,
    UserSearchLog,
)


load_dotenv()

__all__ = [
    "Base",
    "CoverageArea",
    "OnDemandRequest",
    "KeywordAttemptHistory",
    "CoreEntity",
    "CoreConnection",
    "UserSearchLog",
    "UserRestaurantView",
    "UserFoodView",
    "UserFavorite",
]

"""Custom exception classes for the keyword selection engine."""

from typing import Any


class KeywordSelectionError(Exception):
    """Base exception for all keyword selection errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class SignalSourceError(KeywordSelectionError):
    """A signal store read failed; the whole selection cycle is void."""

    pass

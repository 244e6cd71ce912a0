"""Unit tests for DB kernel helpers."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import pytest
from sqlalchemy.exc import OperationalError

from keyword_selection.core.db_kernel import (
    PermanentDbError,
    TransientDbError,
    db_read,
)
from keyword_selection.core.exceptions import SignalSourceError


class _FakeSession:
    def __init__(self) -> None:
        self.commit_calls = 0

    async def commit(self) -> None:
        self.commit_calls += 1


def _patch_context(monkeypatch: pytest.MonkeyPatch, session: _FakeSession) -> None:
    @asynccontextmanager
    async def _fake_context():
        yield session

    monkeypatch.setattr("keyword_selection.core.db_kernel.get_session_context", _fake_context)


@pytest.mark.asyncio
async def test_db_read_uses_short_lived_session(monkeypatch: pytest.MonkeyPatch) -> None:
    session = _FakeSession()
    _patch_context(monkeypatch, session)

    result = await db_read(lambda s: _echo("ok", s), operation_name="unit_read")

    assert result == "ok"
    assert session.commit_calls == 0


@pytest.mark.asyncio
async def test_db_read_does_not_retry_transient_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    session = _FakeSession()
    calls = {"count": 0}
    _patch_context(monkeypatch, session)

    async def _operation(_session: _FakeSession) -> str:
        calls["count"] += 1
        raise RuntimeError("connection is closed")

    with pytest.raises(TransientDbError) as exc_info:
        await db_read(_operation, operation_name="unit_read_transient")

    assert calls["count"] == 1
    assert isinstance(exc_info.value.__cause__, RuntimeError)


@pytest.mark.asyncio
async def test_db_read_classifies_operational_error_as_transient(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _patch_context(monkeypatch, _FakeSession())

    async def _operation(_session: _FakeSession) -> None:
        raise OperationalError("SELECT 1", {}, Exception("server went away"))

    with pytest.raises(TransientDbError):
        await db_read(_operation, operation_name="unit_read_operational")


@pytest.mark.asyncio
async def test_db_read_raises_permanent_on_non_transient_error(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _patch_context(monkeypatch, _FakeSession())

    async def _operation(_session: _FakeSession) -> None:
        raise ValueError("bad column")

    with pytest.raises(PermanentDbError) as exc_info:
        await db_read(_operation, operation_name="unit_read_perm")

    # Callers can catch every store failure through the domain base class
    assert isinstance(exc_info.value, SignalSourceError)
    assert exc_info.value.message == "bad column"


@pytest.mark.asyncio
async def test_db_read_passes_kernel_errors_through_unchanged(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _patch_context(monkeypatch, _FakeSession())
    original = TransientDbError("already translated")

    async def _operation(_session: _FakeSession) -> None:
        raise original

    with pytest.raises(TransientDbError) as exc_info:
        await db_read(_operation, operation_name="unit_read_passthrough")

    assert exc_info.value is original


async def _echo(value: str, _session: Any) -> str:
    return value

"""Tests for the persistent completion store."""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from sqlalchemy.exc import IntegrityError, OperationalError

from rewards_backend.models.completion_record import build_storage_key
from rewards_backend.services.completion_store import (
    MAX_WRITE_ATTEMPTS,
    CompletionStore,
    normalize_survey_ids,
    normalize_user_id,
)


def test_normalize_helpers():
    assert normalize_user_id(42) == "42"
    assert normalize_user_id("  ") is None
    assert normalize_user_id(None) is None
    assert normalize_survey_ids(["a", "b", "a", "", None, " c "]) == ["a", "b", "c"]


def test_storage_key_is_namespaced():
    assert build_storage_key("42") == "completed_surveys:42"


@pytest.mark.asyncio
async def test_mark_completed_is_idempotent(db_session, user_id):
    store = CompletionStore(db_session)

    assert await store.mark_completed(user_id, "3xqyg9")
    assert await store.mark_completed(user_id, "3xqyg9")

    assert await store.is_completed(user_id, "3xqyg9")
    assert await store.list_completed(user_id) == ["3xqyg9"]


@pytest.mark.asyncio
async def test_list_completed_keeps_completion_order(db_session, user_id):
    store = CompletionStore(db_session)

    await store.mark_completed(user_id, "b")
    await store.mark_completed_many(user_id, ["a", "b", "c"])

    assert await store.list_completed(user_id) == ["b", "a", "c"]


@pytest.mark.asyncio
async def test_write_is_visible_to_a_fresh_session(session_factory, user_id):
    async with session_factory() as first:
        await CompletionStore(first).mark_completed(user_id, "abc")

    async with session_factory() as second:
        assert await CompletionStore(second).is_completed(user_id, "abc")


@pytest.mark.asyncio
async def test_identities_are_isolated(db_session, user_id):
    store = CompletionStore(db_session)
    await store.mark_completed(user_id, "abc")

    assert not await store.is_completed(f"{user_id}-other", "abc")


@pytest.mark.asyncio
async def test_integer_and_string_identity_share_record(db_session):
    store = CompletionStore(db_session)
    await store.mark_completed(918273645, "abc")

    assert await store.is_completed("918273645", "abc")
    await store.clear_all(918273645)


@pytest.mark.asyncio
async def test_absent_identity_reads_empty_and_skips_writes(db_session):
    store = CompletionStore(db_session)

    assert await store.mark_completed(None, "abc") is False
    assert await store.mark_completed("", "abc") is False
    assert await store.list_completed(None) == []
    assert not await store.is_completed(None, "abc")


@pytest.mark.asyncio
async def test_unmark_and_clear(db_session, user_id):
    store = CompletionStore(db_session)
    await store.mark_completed_many(user_id, ["a", "b", "c"])

    assert await store.unmark_completed(user_id, "b")
    assert await store.unmark_completed(user_id, "b")
    assert await store.list_completed(user_id) == ["a", "c"]

    assert await store.clear_all(user_id)
    assert await store.list_completed(user_id) == []


@pytest.mark.asyncio
async def test_stats(db_session, user_id):
    store = CompletionStore(db_session)
    await store.mark_completed_many(user_id, ["a", "b"])

    assert await store.stats(user_id) == {"total": 2, "surveys": ["a", "b"]}


def _broken_session():
    session = MagicMock()
    session.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("disk I/O error")))
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    return session


@pytest.mark.asyncio
async def test_read_failure_degrades_to_no_completions():
    session = _broken_session()
    store = CompletionStore(session)

    assert await store.list_completed("42") == []
    assert not await store.is_completed("42", "abc")
    session.rollback.assert_awaited()


@pytest.mark.asyncio
async def test_write_failure_is_swallowed():
    session = _broken_session()
    store = CompletionStore(session)

    assert await store.mark_completed("42", "abc") is False
    session.commit.assert_not_awaited()
    session.rollback.assert_awaited()


@pytest.mark.asyncio
async def test_commit_failure_rolls_back(db_session, user_id):
    store = CompletionStore(db_session)
    original_commit = db_session.commit
    db_session.commit = AsyncMock(side_effect=OperationalError("COMMIT", {}, Exception("locked")))

    assert await store.mark_completed(user_id, "abc") is False

    db_session.commit = original_commit
    assert await store.list_completed(user_id) == []


def _interleave_once(monkeypatch, store, competing_write):
    """Run ``competing_write`` right after ``store`` reads its record, the first time only."""
    original_load = store._load_record
    state = {"done": False}

    async def load_then_compete(user_key):
        record = await original_load(user_key)
        if not state["done"]:
            state["done"] = True
            await competing_write()
        return record

    monkeypatch.setattr(store, "_load_record", load_then_compete)


@pytest.mark.asyncio
async def test_concurrent_first_writes_keep_both_surveys(session_factory, user_id):
    async with session_factory() as first, session_factory() as second:
        results = await asyncio.gather(
            CompletionStore(first).mark_completed(user_id, "s1"),
            CompletionStore(second).mark_completed(user_id, "s2"),
        )

    assert results == [True, True]
    async with session_factory() as check:
        assert sorted(await CompletionStore(check).list_completed(user_id)) == ["s1", "s2"]


@pytest.mark.asyncio
async def test_insert_race_on_new_identity_is_retried(session_factory, user_id, monkeypatch):
    async with session_factory() as first, session_factory() as second:
        winner = CompletionStore(first)
        loser = CompletionStore(second)
        _interleave_once(monkeypatch, loser, lambda: winner.mark_completed(user_id, "s1"))

        assert await loser.mark_completed(user_id, "s2")

    async with session_factory() as check:
        assert await CompletionStore(check).list_completed(user_id) == ["s1", "s2"]


@pytest.mark.asyncio
async def test_update_race_on_existing_record_is_retried(session_factory, user_id, monkeypatch):
    async with session_factory() as first, session_factory() as second:
        winner = CompletionStore(first)
        loser = CompletionStore(second)
        await winner.mark_completed(user_id, "s0")
        _interleave_once(monkeypatch, loser, lambda: winner.mark_completed(user_id, "s1"))

        assert await loser.mark_completed(user_id, "s2")

    async with session_factory() as check:
        assert await CompletionStore(check).list_completed(user_id) == ["s0", "s1", "s2"]


@pytest.mark.asyncio
async def test_unmark_race_keeps_concurrent_mark(session_factory, user_id, monkeypatch):
    async with session_factory() as first, session_factory() as second:
        winner = CompletionStore(first)
        loser = CompletionStore(second)
        await winner.mark_completed_many(user_id, ["a", "b"])
        _interleave_once(monkeypatch, loser, lambda: winner.mark_completed(user_id, "c"))

        assert await loser.unmark_completed(user_id, "a")

    async with session_factory() as check:
        assert await CompletionStore(check).list_completed(user_id) == ["b", "c"]


@pytest.mark.asyncio
async def test_persistent_conflict_gives_up():
    result = MagicMock()
    result.scalar_one_or_none.return_value = None
    session = MagicMock()
    session.execute = AsyncMock(return_value=result)
    session.commit = AsyncMock(side_effect=IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed")))
    session.rollback = AsyncMock()

    assert await CompletionStore(session).mark_completed("42", "abc") is False
    assert session.commit.await_count == MAX_WRITE_ATTEMPTS
    assert session.rollback.await_count == MAX_WRITE_ATTEMPTS

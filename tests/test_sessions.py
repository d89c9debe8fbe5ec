import asyncio
from datetime import datetime
from decimal import Decimal

import pytest

from spending_bot.models import DraftEntry, PendingAction
from spending_bot.sessions import Session, SessionStore

NOW = datetime(2026, 10, 19, 9, 0, 0)


def test_idle_by_default():
    store = SessionStore()
    assert store.pending(1) is PendingAction.NONE
    assert store.draft(1) is None


def test_draft_exists_only_while_entering_an_entry():
    store = SessionStore()
    store.begin_entry(1, "еда", NOW)
    assert store.pending(1).needs_draft and store.draft(1) is not None

    store.set_cost(1, Decimal("5"))
    assert store.pending(1) is PendingAction.AWAITING_NOTES
    assert store.draft(1).amount == Decimal("5")

    store.await_limit(1)
    assert store.pending(1) is PendingAction.AWAITING_LIMIT
    assert store.draft(1) is None

    store.clear(1)
    assert store.pending(1) is PendingAction.NONE
    assert store.draft(1) is None


def test_draft_is_returned_as_copy():
    store = SessionStore()
    store.begin_entry(1, "еда", NOW)
    store.draft(1).amount = Decimal("100")
    assert store.draft(1).amount is None


def test_set_cost_outside_cost_step_is_rejected():
    store = SessionStore()
    with pytest.raises(RuntimeError):
        store.set_cost(1, Decimal("5"))
    store.await_limit(1)
    with pytest.raises(RuntimeError):
        store.set_cost(1, Decimal("5"))


@pytest.mark.parametrize(
    "action, with_draft",
    [
        (PendingAction.AWAITING_COST, False),
        (PendingAction.AWAITING_NOTES, False),
        (PendingAction.AWAITING_LIMIT, True),
        (PendingAction.NONE, True),
    ],
)
def test_session_rejects_mismatched_draft(action, with_draft):
    draft = DraftEntry(owner_id=1, category="еда", created_at=NOW) if with_draft else None
    with pytest.raises(ValueError):
        Session(action, draft)


@pytest.mark.asyncio
async def test_owner_lock_is_dropped_once_released():
    store = SessionStore()
    for owner_id in range(1000):
        async with store.serialized(owner_id):
            pass
    assert store._locks == {}


@pytest.mark.asyncio
async def test_owner_lock_is_kept_while_events_wait():
    store = SessionStore()
    order = []

    async def step(tag):
        async with store.serialized(1):
            order.append(tag)
            await asyncio.sleep(0)

    first = asyncio.ensure_future(step("a"))
    second = asyncio.ensure_future(step("b"))
    await asyncio.sleep(0)
    assert 1 in store._locks
    await asyncio.gather(first, second)

    assert order == ["a", "b"]
    assert store._locks == {}

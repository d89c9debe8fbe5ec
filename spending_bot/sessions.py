import asyncio
import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import AsyncIterator, Dict, List, Optional

from spending_bot.models import DraftEntry, PendingAction


@dataclass
class Session:
    action: PendingAction
    draft: Optional[DraftEntry] = None

    def __post_init__(self):
        if self.action.needs_draft != (self.draft is not None):
            raise ValueError(f"{self.action.name} session with draft={self.draft!r}")


class SessionStore:
    """Per-owner conversation state held in memory.

    An owner with no session is idle. A session carries a draft exactly when
    its action is AWAITING_COST or AWAITING_NOTES; the mutators below are the
    only way to change it, so that pairing always holds.

    ``serialized(owner_id)`` is held by the dispatcher while it processes one
    event for that owner. A lock lives only while some event holds or waits
    for it.
    """

    def __init__(self):
        self._sessions: Dict[int, Session] = {}
        self._guard = threading.Lock()
        # owner -> [lock, holders and waiters]
        self._locks: Dict[int, List] = {}

    @asynccontextmanager
    async def serialized(self, owner_id: int) -> AsyncIterator[None]:
        with self._guard:
            slot = self._locks.get(owner_id)
            if slot is None:
                slot = self._locks[owner_id] = [asyncio.Lock(), 0]
            slot[1] += 1
        try:
            async with slot[0]:
                yield
        finally:
            with self._guard:
                slot[1] -= 1
                if slot[1] == 0:
                    del self._locks[owner_id]

    # reads

    def pending(self, owner_id: int) -> PendingAction:
        with self._guard:
            s = self._sessions.get(owner_id)
            return s.action if s else PendingAction.NONE

    def draft(self, owner_id: int) -> Optional[DraftEntry]:
        with self._guard:
            s = self._sessions.get(owner_id)
            return s.draft.copy() if s and s.draft else None

    # mutators

    def begin_entry(self, owner_id: int, category: str, now: datetime) -> DraftEntry:
        draft = DraftEntry(owner_id=owner_id, category=category, created_at=now)
        with self._guard:
            self._sessions[owner_id] = Session(PendingAction.AWAITING_COST, draft)
        return draft.copy()

    def set_cost(self, owner_id: int, amount: Decimal) -> DraftEntry:
        with self._guard:
            s = self._sessions.get(owner_id)
            if s is None or s.action is not PendingAction.AWAITING_COST:
                raise RuntimeError(f"owner {owner_id} is not entering a cost")
            s.draft.amount = amount
            s.action = PendingAction.AWAITING_NOTES
            return s.draft.copy()

    def await_limit(self, owner_id: int):
        with self._guard:
            self._sessions[owner_id] = Session(PendingAction.AWAITING_LIMIT)

    def clear(self, owner_id: int):
        with self._guard:
            self._sessions.pop(owner_id, None)

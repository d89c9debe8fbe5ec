from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

import pytest

from spending_bot.controller import Controller
from spending_bot.errors import StorageWriteError
from spending_bot.models import ReportWindow, SpendingEntry
from spending_bot.sessions import SessionStore

NOW = datetime(2026, 10, 19, 14, 30, 0)


class FakeStorage:
    """In-memory stand-in for Storage with the same ordering and window rules."""

    def __init__(self):
        self.entries: List[SpendingEntry] = []
        self.limits: Dict[int, Decimal] = {}
        self.fail_writes = False
        self._next_id = 1

    def insert_entry(self, entry: SpendingEntry) -> int:
        if self.fail_writes:
            raise StorageWriteError("insert failed")
        entry_id = self._next_id
        self._next_id += 1
        self.entries.append(replace(entry, entry_id=entry_id))
        return entry_id

    def aggregate_by_category(self, owner_id: int, window: ReportWindow) -> List[Tuple[str, Decimal]]:
        totals: Dict[str, Decimal] = {}
        for e in self.entries:
            if e.owner_id == owner_id and window.contains(e.created_at_text):
                totals[e.category] = totals.get(e.category, Decimal(0)) + e.amount
        return sorted(totals.items(), key=lambda kv: (-kv[1], kv[0]))

    def upsert_limit(self, owner_id: int, amount: Decimal):
        if self.fail_writes:
            raise StorageWriteError("upsert failed")
        self.limits[owner_id] = amount

    def get_limit(self, owner_id: int) -> Optional[Decimal]:
        return self.limits.get(owner_id)

    def delete_all_for_owner(self, owner_id: int):
        if self.fail_writes:
            raise StorageWriteError("delete failed")
        self.entries = [e for e in self.entries if e.owner_id != owner_id]
        self.limits.pop(owner_id, None)

    def add(self, owner_id: int, category: str, amount: str, created_at: datetime = NOW):
        self.insert_entry(SpendingEntry(owner_id, Decimal(amount), category, "", created_at))


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def sessions():
    return SessionStore()


@pytest.fixture
def controller(storage, sessions):
    return Controller(storage, sessions, clock=lambda: NOW, currency="руб.")

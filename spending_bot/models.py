import enum
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
DATE_FORMAT = "%Y-%m-%d"

MONTHS_RU = [
    "январь", "февраль", "март", "апрель", "май", "июнь",
    "июль", "август", "сентябрь", "октябрь", "ноябрь", "декабрь",
]


# =========================
# Persisted records
# =========================

@dataclass(frozen=True)
class SpendingEntry:
    owner_id: int
    amount: Decimal
    category: str
    note: str
    created_at: datetime
    entry_id: Optional[int] = None

    @property
    def created_at_text(self) -> str:
        return self.created_at.strftime(TIMESTAMP_FORMAT)


# =========================
# Conversation state
# =========================

class PendingAction(enum.Enum):
    NONE = "none"
    AWAITING_COST = "awaiting_cost"
    AWAITING_NOTES = "awaiting_notes"
    AWAITING_LIMIT = "awaiting_limit"

    @property
    def needs_draft(self) -> bool:
        return self in (PendingAction.AWAITING_COST, PendingAction.AWAITING_NOTES)


@dataclass
class DraftEntry:
    owner_id: int
    category: str
    created_at: datetime
    amount: Optional[Decimal] = None

    def copy(self) -> "DraftEntry":
        return replace(self)

    def commit(self, note: str) -> SpendingEntry:
        if self.amount is None:
            raise ValueError("draft has no amount yet")
        return SpendingEntry(
            owner_id=self.owner_id,
            amount=self.amount,
            category=self.category,
            note=note,
            created_at=self.created_at,
        )


# =========================
# Reporting windows
# =========================

@dataclass(frozen=True)
class ReportWindow:
    """Half-open range [since, until) over the stored created_date text.

    Bounds are kept as text because created_date is stored as
    ``YYYY-MM-DD HH:MM:SS`` and compares lexicographically.
    """

    kind: str
    title: str
    since: str
    until: Optional[str] = None

    @classmethod
    def last_week(cls, now: datetime) -> "ReportWindow":
        since = now.date() - timedelta(days=7)
        return cls(kind="week", title="📋 Итоги недели:", since=since.strftime(DATE_FORMAT))

    @classmethod
    def current_month(cls, now: datetime) -> "ReportWindow":
        first = date(now.year, now.month, 1)
        if now.month == 12:
            nxt = date(now.year + 1, 1, 1)
        else:
            nxt = date(now.year, now.month + 1, 1)
        title = f"📅 Итоги {MONTHS_RU[now.month - 1]} {now.year}:"
        return cls(
            kind="month",
            title=title,
            since=first.strftime(DATE_FORMAT),
            until=nxt.strftime(DATE_FORMAT),
        )

    def contains(self, created_at_text: str) -> bool:
        if created_at_text < self.since:
            return False
        return self.until is None or created_at_text < self.until


# =========================
# Transport-facing events and replies
# =========================

@dataclass(frozen=True)
class TextMessage:
    owner_id: int
    chat_id: int
    text: str


@dataclass(frozen=True)
class ButtonClick:
    owner_id: int
    chat_id: int
    payload: str


class Keyboard(enum.Enum):
    MAIN_MENU = "main_menu"
    CATEGORIES = "categories"


@dataclass(frozen=True)
class Reply:
    text: str
    keyboard: Optional[Keyboard] = None


@dataclass
class StepResult:
    replies: List[Reply] = field(default_factory=list)
    error: Optional[Exception] = None

    @classmethod
    def say(cls, text: str, keyboard: Optional[Keyboard] = None) -> "StepResult":
        return cls(replies=[Reply(text, keyboard)])

    @classmethod
    def failed(cls, text: str, error: Exception) -> "StepResult":
        return cls(replies=[Reply(text)], error=error)

    @classmethod
    def silent(cls) -> "StepResult":
        return cls()

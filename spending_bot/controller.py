import logging
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, Optional

from spending_bot.config import CURRENCY_LABEL
from spending_bot.errors import StorageError
from spending_bot.models import (
    ButtonClick,
    Keyboard,
    PendingAction,
    ReportWindow,
    StepResult,
    TextMessage,
)
from spending_bot.reports import fmt_money, render_report
from spending_bot.sessions import SessionStore

logger = logging.getLogger("spending-bot.controller")

# =========================
# Command surface
# =========================

CMD_START = "/start"
CMD_NEW_ENTRY = "➕ Новый расход"
CMD_WEEK_REPORT = "📋 Отчет неделя"
CMD_MONTH_REPORT = "📅 Отчет месяц"
CMD_LIMIT = "🎯 Лимит"
CMD_CLEAN = "/clean"
CMD_CANCEL = "/cancel"

MAIN_MENU_ROWS = [
    [CMD_NEW_ENTRY, CMD_WEEK_REPORT],
    [CMD_MONTH_REPORT, CMD_LIMIT],
]

CATEGORY_PREFIX = "type_"

# (button label, stored category)
CATEGORIES = [
    ("🍕 Еда", "еда"),
    ("🚕 Такси", "транспорт"),
    ("🏠 Квартира", "жилье"),
    ("👖 Одежда", "одежда"),
    ("💊 Аптека", "здоровье"),
    ("🎬 Кино", "развлечения"),
]

NO_NOTE_WORD = "нет"
NO_NOTE_PLACEHOLDER = "Без комментария"

GREETING = (
    "Добро пожаловать! 💰\n\n"
    "Этот помощник отслеживает твои расходы:\n\n"
    f"{CMD_NEW_ENTRY} - добавить трату\n"
    f"{CMD_WEEK_REPORT} - статистика 7 дней\n"
    f"{CMD_MONTH_REPORT} - траты за месяц\n"
    f"{CMD_LIMIT} - установить бюджет\n\n"
    "Начни с добавления расхода!"
)
PICK_CATEGORY = "Выбери категорию:"
ASK_COST = "Сколько потратил?"
BAD_COST = "Введи нормальную сумму:"
ASK_NOTE = "Добавь комментарий (или 'нет'):"
ASK_LIMIT = "Введи месячный лимит:"
BAD_LIMIT = "Нужно число больше нуля:"
DATA_CLEARED = "✅ Данные очищены!"
CANCELLED = "Действие отменено."
TRY_AGAIN = "⚠️ Не получилось сохранить, попробуй ещё раз."
REPORT_FAILED = "⚠️ Не получилось построить отчёт, попробуй позже."

_AMOUNT_RE = re.compile(r"^\s*\+?(\d+(\.\d*)?|\.\d+)\s*$")

# cents at most, and under a trillion
MAX_FRACTION_DIGITS = 2
MAX_INTEGER_DIGITS = 12


def parse_amount(text: str) -> Optional[Decimal]:
    """Positive decimal from user text; a comma works as the decimal separator.

    Returns None for anything that is not a plain positive number with at
    most two fractional digits and twelve integer digits.
    """
    normalized = (text or "").replace(",", ".")
    if not _AMOUNT_RE.match(normalized):
        return None
    try:
        value = Decimal(normalized.strip())
    except InvalidOperation:
        return None
    if not value.is_finite() or value <= 0:
        return None
    if value.as_tuple().exponent < -MAX_FRACTION_DIGITS or value.adjusted() >= MAX_INTEGER_DIGITS:
        return None
    return value


class Controller:
    """Turns one inbound event into storage calls and replies.

    Steps are synchronous and may block on the database; the dispatcher runs
    them off the event loop while holding the owner's lock.
    """

    def __init__(
        self,
        storage,
        sessions: SessionStore,
        clock: Callable[[], datetime] = datetime.now,
        currency: str = CURRENCY_LABEL,
    ):
        self.storage = storage
        self.sessions = sessions
        self.clock = clock
        self.currency = currency

        self._commands: Dict[str, Callable[[int], StepResult]] = {
            CMD_START: self._show_main_screen,
            CMD_NEW_ENTRY: self._show_categories,
            CMD_WEEK_REPORT: self._week_report,
            CMD_MONTH_REPORT: self._month_report,
            CMD_LIMIT: self._start_limit,
            CMD_CLEAN: self._clear_data,
        }
        self._inputs: Dict[PendingAction, Callable[[int, str], StepResult]] = {
            PendingAction.AWAITING_COST: self._enter_cost,
            PendingAction.AWAITING_NOTES: self._enter_note,
            PendingAction.AWAITING_LIMIT: self._enter_limit,
        }

    def handle(self, event) -> StepResult:
        if isinstance(event, TextMessage):
            return self.handle_text(event.owner_id, event.text)
        if isinstance(event, ButtonClick):
            return self.handle_button(event.owner_id, event.payload)
        return StepResult.silent()

    def handle_text(self, owner_id: int, text: str) -> StepResult:
        if text is None:
            return StepResult.silent()

        pending = self.sessions.pending(owner_id)
        if pending is PendingAction.NONE:
            command = self._commands.get(text)
            # unknown text while idle gets no reply at all
            return command(owner_id) if command else StepResult.silent()

        if text == CMD_CANCEL:
            self.sessions.clear(owner_id)
            return StepResult.say(CANCELLED)
        return self._inputs[pending](owner_id, text)

    def handle_button(self, owner_id: int, payload: str) -> StepResult:
        if not payload or not payload.startswith(CATEGORY_PREFIX):
            return StepResult.silent()
        # a category pick only starts a flow from idle
        if self.sessions.pending(owner_id) is not PendingAction.NONE:
            return StepResult.silent()

        category = payload[len(CATEGORY_PREFIX):]
        self.sessions.begin_entry(owner_id, category, self.clock())
        return StepResult.say(ASK_COST)

    # =========================
    # Idle commands
    # =========================

    def _show_main_screen(self, owner_id: int) -> StepResult:
        return StepResult.say(GREETING, Keyboard.MAIN_MENU)

    def _show_categories(self, owner_id: int) -> StepResult:
        return StepResult.say(PICK_CATEGORY, Keyboard.CATEGORIES)

    def _week_report(self, owner_id: int) -> StepResult:
        return self._report(owner_id, ReportWindow.last_week(self.clock()))

    def _month_report(self, owner_id: int) -> StepResult:
        return self._report(owner_id, ReportWindow.current_month(self.clock()))

    def _report(self, owner_id: int, window: ReportWindow) -> StepResult:
        try:
            rows = self.storage.aggregate_by_category(owner_id, window)
        except StorageError as e:
            return StepResult.failed(REPORT_FAILED, e)
        return StepResult.say(render_report(window, rows, self.currency))

    def _start_limit(self, owner_id: int) -> StepResult:
        self.sessions.await_limit(owner_id)
        prompt = ASK_LIMIT
        try:
            current = self.storage.get_limit(owner_id)
        except StorageError as e:
            logger.warning("Could not read limit for owner %s: %s", owner_id, e)
            current = None
        if current is not None:
            prompt = f"Сейчас лимит {fmt_money(current)} {self.currency}.\n{ASK_LIMIT}"
        return StepResult.say(prompt)

    def _clear_data(self, owner_id: int) -> StepResult:
        try:
            self.storage.delete_all_for_owner(owner_id)
        except StorageError as e:
            return StepResult.failed(TRY_AGAIN, e)
        logger.info("Cleared all data for owner %s", owner_id)
        return StepResult.say(DATA_CLEARED)

    # =========================
    # Mid-flow input
    # =========================

    def _enter_cost(self, owner_id: int, text: str) -> StepResult:
        amount = parse_amount(text)
        if amount is None:
            return StepResult.say(BAD_COST)
        self.sessions.set_cost(owner_id, amount)
        return StepResult.say(ASK_NOTE)

    def _enter_note(self, owner_id: int, text: str) -> StepResult:
        draft = self.sessions.draft(owner_id)
        note = NO_NOTE_PLACEHOLDER if text.lower() == NO_NOTE_WORD else text
        entry = draft.commit(note)
        try:
            entry_id = self.storage.insert_entry(entry)
        except StorageError as e:
            # draft and pending action stay as they are so the note can be resent
            return StepResult.failed(TRY_AGAIN, e)

        self.sessions.clear(owner_id)
        logger.info("Recorded entry %s for owner %s: %s %s", entry_id, owner_id, entry.category, entry.amount)
        return StepResult.say(
            "✅ Записано!\n"
            f"Категория: {entry.category}\n"
            f"Сумма: {fmt_money(entry.amount)} {self.currency}\n"
            f"Заметка: {entry.note}"
        )

    def _enter_limit(self, owner_id: int, text: str) -> StepResult:
        amount = parse_amount(text)
        if amount is None:
            return StepResult.say(BAD_LIMIT)
        try:
            self.storage.upsert_limit(owner_id, amount)
        except StorageError as e:
            return StepResult.failed(TRY_AGAIN, e)

        self.sessions.clear(owner_id)
        logger.info("Monthly limit for owner %s set to %s", owner_id, amount)
        return StepResult.say(f"✅ Лимит {fmt_money(amount)} {self.currency} установлен")

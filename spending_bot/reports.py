from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import Sequence, Tuple

from spending_bot.models import ReportWindow

CENTS = Decimal("0.01")
TENTHS = Decimal("0.1")

EMPTY_MESSAGES = {
    "week": "За неделю трат не было.",
    "month": "В этом месяце трат нет.",
}


def fmt_money(amount: Decimal) -> str:
    with localcontext() as ctx:
        # rows written before input was bounded can exceed the default precision
        ctx.prec = max(ctx.prec, amount.adjusted() + 4)
        return str(amount.quantize(CENTS, rounding=ROUND_HALF_UP))


def percentages(rows: Sequence[Tuple[str, Decimal]]) -> list:
    """Share of each category in the overall total, one fractional digit."""
    overall = sum((amount for _, amount in rows), Decimal(0))
    return [
        (category, (amount / overall * 100).quantize(TENTHS, rounding=ROUND_HALF_UP))
        for category, amount in rows
    ]


def render_report(window: ReportWindow, rows: Sequence[Tuple[str, Decimal]], currency: str) -> str:
    if not rows:
        return EMPTY_MESSAGES[window.kind]

    overall = sum((amount for _, amount in rows), Decimal(0))
    lines = [window.title, "", f"Всего: {fmt_money(overall)} {currency}", ""]
    for (category, amount), (_, pct) in zip(rows, percentages(rows)):
        lines.append(f"{category}: {fmt_money(amount)} {currency} ({pct}%)")
    return "\n".join(lines)

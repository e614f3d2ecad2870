"""Credit-card statement periods.

A statement for ``(month, year)`` covers the half-open interval
``[previous closing date, this closing date)``: a purchase due exactly on the
closing date already belongs to the next statement.
"""

import calendar
from datetime import date
from typing import NamedTuple

from errors import ValidationError


class StatementPeriod(NamedTuple):
    start: date
    end: date
    due: date

    def contains(self, day: date) -> bool:
        return self.start <= day < self.end


def _check_day(value: int, label: str) -> int:
    day = int(value)
    if day < 1 or day > 31:
        raise ValidationError(f"{label} deve estar entre 1 e 31.")
    return day


def _check_month(value: int) -> int:
    month = int(value)
    if month < 1 or month > 12:
        raise ValidationError("Mês deve estar entre 1 e 12.")
    return month


def _previous_month(month: int, year: int) -> tuple[int, int]:
    return (12, year - 1) if month == 1 else (month - 1, year)


def _next_month(month: int, year: int) -> tuple[int, int]:
    return (1, year + 1) if month == 12 else (month + 1, year)


def clamped_date(year: int, month: int, day: int) -> date:
    # dia 31 em fevereiro -> último dia do mês
    last = calendar.monthrange(year, month)[1]
    return date(year, month, max(1, min(int(day), last)))


def compute_period(closing_day: int, due_day: int, month: int, year: int) -> StatementPeriod:
    close_d = _check_day(closing_day, "Dia de fechamento")
    due_d = _check_day(due_day, "Dia de vencimento")
    m = _check_month(month)
    y = int(year)

    prev_m, prev_y = _previous_month(m, y)
    return StatementPeriod(
        start=clamped_date(prev_y, prev_m, close_d),
        end=clamped_date(y, m, close_d),
        due=clamped_date(y, m, due_d),
    )


def statement_for(closing_day: int, due_date: date) -> tuple[int, int]:
    """(month, year) of the statement that a transaction due on ``due_date`` lands in."""
    close_d = _check_day(closing_day, "Dia de fechamento")
    y, m = due_date.year, due_date.month
    if due_date >= clamped_date(y, m, close_d):
        m, y = _next_month(m, y)
    return m, y

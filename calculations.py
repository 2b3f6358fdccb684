"""
Budget and expense calculations

Pure helpers used by the services to derive read views.
"""

import json
from typing import Iterable, List

from dateutils import WeekSpan, format_date, month_date_range
from schemas import (
    Budget,
    BudgetExportRow,
    DailyTotal,
    Expense,
    ExpenseExportRow,
    WeeklyTotal,
    WeekSummary,
)
from validation import is_valid_month_format


def daily_average(total_expenses: float, days: int) -> float:
    return total_expenses / days if days > 0 else 0.0


def budget_used_percentage(total_expenses: float, total_budget: float) -> float:
    return (total_expenses / total_budget) * 100 if total_budget > 0 else 0.0


def remaining_budget(total_budget: float, total_expenses: float) -> float:
    return total_budget - total_expenses


def fill_daily_series(rows: Iterable[DailyTotal], max_day: int) -> List[DailyTotal]:
    """Days 1..max_day, zero where the store returned nothing."""
    amounts = {row.day: row.amount for row in rows if 1 <= row.day <= max_day}
    return [DailyTotal(day=day, amount=amounts.get(day, 0.0)) for day in range(1, max_day + 1)]


def fill_weekly_series(rows: Iterable[WeeklyTotal], weeks: List[WeekSpan]) -> List[WeekSummary]:
    amounts = {row.week: row.amount for row in rows}
    return [
        WeekSummary(week=w.week, amount=amounts.get(w.week, 0.0), start_date=w.start_date, end_date=w.end_date)
        for w in sorted(weeks, key=lambda w: w.start_date)
    ]


def month_ranges(months: Iterable[str]):
    return [month_date_range(m) for m in months if is_valid_month_format(m)]


def format_budget_for_export(budget: Budget) -> BudgetExportRow:
    return BudgetExportRow(
        id=budget.id,
        month=budget.month,
        essential_items=json.dumps([item.model_dump() for item in budget.essential_items]),
        total_budget=budget.total_budget,
        user_id=budget.user_id,
        created_at=format_date(budget.created_at),
        updated_at=format_date(budget.updated_at),
    )


def format_expense_for_export(expense: Expense) -> ExpenseExportRow:
    return ExpenseExportRow(
        id=expense.id,
        title=expense.title,
        amount=expense.amount,
        description=expense.description or "",
        category=expense.category or "",
        date=format_date(expense.date),
        created_at=format_date(expense.created_at),
        updated_at=format_date(expense.updated_at),
    )

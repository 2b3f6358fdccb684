"""
Budget service

The budget aggregation engine. Budgets and expenses live in separate
collections; every read view here is composed in application code from
the two stores:

- budget totals are always recomputed from the essential items
- spend is the sum of the owner's expenses within the budget month
- analysis stats combine the month's budget with the expense series

get_current_budget is a read-with-possible-create: when the current month
has no budget yet it is seeded from the most recent earlier budget. The
(user_id, month) unique index makes that create race-safe; the losing
writer re-reads the winner's budget.

Spend values used only for display (budget lists, single budget reads,
analysis series) are best-effort: a failing expense query degrades them
to 0 / empty instead of failing the whole read.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional, TypeVar

import config
from calculations import budget_used_percentage, daily_average, format_budget_for_export, remaining_budget
from dateutils import current_month, days_for_average, month_date_range, utc_now
from errors import Conflict, InvalidFormat, NotFound
from expense_service import ExpenseService, check_id, check_month, check_owner
from repositories import BudgetStore
from schemas import (
    AnalysisStats,
    Budget,
    BudgetCreate,
    BudgetExportRow,
    BudgetUpdate,
    BudgetWithSpend,
    DeleteResult,
    EssentialItem,
    WeekDetails,
)
from validation import NAME_MAX_LENGTH, NAME_MIN_LENGTH, is_valid_amount, is_valid_name

logger = logging.getLogger(__name__)

T = TypeVar("T")


def unique_items(items: List[EssentialItem]) -> List[EssentialItem]:
    """Drop later items whose name was already seen; order is kept."""
    seen = set()
    result = []
    for item in items:
        if item.name in seen:
            continue
        seen.add(item.name)
        result.append(item.model_copy())
    return result


def check_valid_month(month) -> str:
    check_month(month)
    month_date_range(month)
    return month


class BudgetService:
    def __init__(self, store: BudgetStore, expenses: ExpenseService, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.expenses = expenses
        self.clock = clock

    def _best_effort(self, what: str, fn: Callable[[], T], default: T) -> T:
        try:
            return fn()
        except Exception:
            logger.warning("Falling back to %r for %s", default, what, exc_info=True)
            return default

    # Spend enrichment

    def spent_amount(self, user_id: str, month: str) -> float:
        return self._best_effort(
            f"spent amount {month}",
            lambda: self.expenses.total_for_month(user_id, month),
            0.0,
        )

    def _with_spend(self, budget: Budget, spent: float) -> BudgetWithSpend:
        return BudgetWithSpend(**budget.model_dump(exclude={"total_budget"}), spent_amount=spent)

    def _enrich(self, budget: Budget, user_id: str) -> BudgetWithSpend:
        return self._with_spend(budget, self.spent_amount(user_id, budget.month))

    # CRUD

    def create(self, budget: BudgetCreate, user_id: str) -> BudgetWithSpend:
        check_owner(user_id)
        check_valid_month(budget.month)
        if self.store.exists_for_month(user_id, budget.month):
            raise Conflict("Budget already exists for this month")

        created = self.store.create(user_id, budget.month, unique_items(budget.essential_items))
        logger.info("Created budget %s (%s) for user %s", created.id, created.month, user_id)
        return self._enrich(created, user_id)

    def find_one(self, budget_id: str, user_id: str) -> BudgetWithSpend:
        check_owner(user_id)
        check_id(budget_id, "budget ID")
        budget = self.store.find_by_id(budget_id, user_id)
        if budget is None:
            raise NotFound("Budget not found")
        return self._enrich(budget, user_id)

    def update(self, budget_id: str, changes: BudgetUpdate, user_id: str) -> BudgetWithSpend:
        check_owner(user_id)
        check_id(budget_id, "budget ID")
        data = changes.model_dump(exclude_unset=True, exclude_none=True)
        if "month" in data:
            check_valid_month(data["month"])
        if changes.essential_items is not None:
            data["essential_items"] = unique_items(changes.essential_items)

        updated = self.store.update_by_id(budget_id, user_id, data)
        if updated is None:
            raise NotFound("Budget not found")
        return self._enrich(updated, user_id)

    def remove(self, budget_id: str, user_id: str) -> DeleteResult:
        check_owner(user_id)
        check_id(budget_id, "budget ID")
        if not self.store.delete_by_id(budget_id, user_id):
            raise NotFound("Budget not found")
        logger.info("Deleted budget %s for user %s", budget_id, user_id)
        return DeleteResult(message="Budget deleted successfully")

    def find_all_for_export(self, user_id: str) -> List[BudgetExportRow]:
        check_owner(user_id)
        return [format_budget_for_export(b) for b in self.store.list_all(user_id)]

    # Read views

    def get_all_budgets(self, user_id: str) -> List[BudgetWithSpend]:
        """All budgets, newest month first, spend fetched in one grouped query."""
        check_owner(user_id)
        budgets = self.store.list_all(user_id)
        if not budgets:
            return []

        months = [b.month for b in budgets]
        spent = self._best_effort(
            "spent amounts",
            lambda: self.expenses.totals_for_months(user_id, months),
            {},
        )
        return [self._with_spend(b, spent.get(b.month, 0.0)) for b in budgets]

    def get_budget_by_month(self, user_id: str, month: str) -> Optional[BudgetWithSpend]:
        check_owner(user_id)
        check_valid_month(month)
        budget = self.store.find_by_month(user_id, month)
        if budget is None:
            return None
        return self._enrich(budget, user_id)

    def get_current_budget(self, user_id: str) -> Optional[BudgetWithSpend]:
        """Read-with-possible-create: may seed this month's budget from an earlier one."""
        check_owner(user_id)
        month = current_month(self.clock())
        budget = self.store.find_by_month(user_id, month)
        if budget is None:
            budget = self._copy_forward(user_id, month)
        if budget is None:
            return None
        return self._enrich(budget, user_id)

    def _copy_forward(self, user_id: str, month: str) -> Optional[Budget]:
        previous = self.store.find_most_recent_before(user_id, month)
        if previous is None:
            return None

        try:
            created = self.store.create(user_id, month, unique_items(previous.essential_items))
        except Conflict:
            logger.info("Budget for %s was created concurrently for user %s, re-reading", month, user_id)
            return self.store.find_by_month(user_id, month)

        logger.info("Copied budget %s (%s) forward to %s for user %s", previous.id, previous.month, month, user_id)
        return created

    # Essential items

    def get_essential_items(self, budget_id: str, user_id: str) -> List[EssentialItem]:
        check_owner(user_id)
        check_id(budget_id, "budget ID")
        budget = self.store.find_by_id(budget_id, user_id)
        if budget is None:
            raise NotFound("Budget not found")
        return budget.essential_items

    def add_essential_item(self, budget_id: str, name: str, amount: Optional[float], user_id: str) -> BudgetWithSpend:
        """Append an item; a name already in the budget leaves it unchanged."""
        check_owner(user_id)
        check_id(budget_id, "budget ID")
        name = name.strip() if isinstance(name, str) else ""
        if not name:
            raise InvalidFormat("Item name is required")
        if not is_valid_name(name):
            raise InvalidFormat(f"Item name must be {NAME_MIN_LENGTH}-{NAME_MAX_LENGTH} characters long")
        if amount is not None and not is_valid_amount(amount):
            raise InvalidFormat("Item amount must be a valid positive number")

        budget = self.store.find_by_id(budget_id, user_id)
        if budget is None:
            raise NotFound("Budget not found")

        if all(item.name != name for item in budget.essential_items):
            budget = self.store.push_item(budget_id, user_id, EssentialItem(name=name, amount=amount))
            if budget is None:
                raise NotFound("Budget not found")
        return self._enrich(budget, user_id)

    def remove_essential_item(self, budget_id: str, item_name: str, user_id: str) -> BudgetWithSpend:
        check_owner(user_id)
        check_id(budget_id, "budget ID")
        item_name = item_name.strip() if isinstance(item_name, str) else ""
        if not item_name:
            raise InvalidFormat("Item name is required")

        budget = self.store.pull_item(budget_id, user_id, item_name)
        if budget is None:
            raise NotFound("Budget not found")
        return self._enrich(budget, user_id)

    # Analysis

    def get_analysis_stats(self, user_id: str, month: str) -> AnalysisStats:
        check_owner(user_id)
        check_valid_month(month)

        budget = self.store.find_by_month(user_id, month)
        total_expenses = self.spent_amount(user_id, month)
        categories = self._best_effort(
            f"category breakdown {month}", lambda: self.expenses.get_category_breakdown(user_id, month), []
        )
        top_expenses = self._best_effort(
            f"top expenses {month}",
            lambda: self.expenses.get_top_expenses(user_id, month, config.TOP_ITEMS_LIMIT),
            [],
        )
        weekly = self._best_effort(
            f"weekly expenses {month}", lambda: self.expenses.get_weekly_expenses(user_id, month), []
        )
        daily_avg = daily_average(total_expenses, days_for_average(month, self.clock()))

        stats = AnalysisStats(
            total_expenses=total_expenses,
            daily_average_spend=daily_avg,
            top_categories=categories[: config.TOP_ITEMS_LIMIT],
            top_expenses=top_expenses,
            weekly_expenses=weekly,
        )
        if budget is None:
            return stats

        total_budget = budget.total_budget
        stats.budget = self._with_spend(budget, total_expenses)
        stats.budget_exists = True
        stats.total_budget = total_budget
        stats.remaining_budget = remaining_budget(total_budget, total_expenses)
        stats.budget_used_percentage = budget_used_percentage(total_expenses, total_budget)
        return stats

    def get_week_details(self, user_id: str, start_date: str, end_date: str) -> WeekDetails:
        return WeekDetails(
            category_breakdown=self.expenses.get_category_breakdown_for_range(user_id, start_date, end_date)
        )

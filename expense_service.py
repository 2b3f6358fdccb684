"""
Expense service

Owner-scoped CRUD for expenses plus the month-scoped aggregation reads the
budget engine, the export and the weekly digest are built on. Input is
validated here, before the store is touched.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

import config
from calculations import fill_daily_series, fill_weekly_series, format_expense_for_export, month_ranges
from dateutils import (
    DATE_ONLY_RE,
    current_month,
    days_in_month,
    is_current_month,
    month_date_range,
    normalize_date_to_utc,
    to_utc,
    utc_now,
    weeks_in_range,
)
from errors import InvalidFormat, NotFound
from repositories import ExpenseStore
from schemas import (
    BulkResult,
    CategoryTotal,
    DailyTotal,
    DeleteResult,
    Expense,
    ExpenseCreate,
    ExpenseExportRow,
    ExpenseUpdate,
    TitleTotal,
    WeeklyStats,
    WeekSummary,
)
from validation import is_valid_amount, is_valid_date_string, is_valid_month_format, is_valid_object_id

logger = logging.getLogger(__name__)

REQUIRED_EXPENSE_FIELDS = ("title", "amount", "date")


def check_owner(user_id) -> str:
    if not isinstance(user_id, str) or not user_id.strip():
        raise InvalidFormat("Invalid user ID format")
    return user_id


def check_month(month) -> str:
    if not is_valid_month_format(month):
        raise InvalidFormat("Invalid month format. Expected YYYY-MM")
    return month


def check_id(value, label: str = "ID") -> str:
    if not is_valid_object_id(value):
        raise InvalidFormat(f"Invalid {label} format")
    return value


class ExpenseService:
    def __init__(self, store: ExpenseStore, clock: Callable[[], datetime] = utc_now,
                 bulk_limit: int = config.BULK_LIMIT):
        self.store = store
        self.clock = clock
        self.bulk_limit = bulk_limit

    # Writes

    def _prepare(self, expense: ExpenseCreate) -> dict:
        if not is_valid_amount(expense.amount, 0.01, inclusive=True):
            raise InvalidFormat("Amount must be a finite number of at least 0.01")
        date = normalize_date_to_utc(expense.date) if expense.date else to_utc(self.clock())
        return {
            "title": expense.title.strip(),
            "amount": float(expense.amount),
            "description": expense.description,
            "category": expense.category or None,
            "date": date,
        }

    def _check_batch(self, items: list, what: str, verb: str):
        if not items:
            raise InvalidFormat(f"{what} array is required and cannot be empty")
        if len(items) > self.bulk_limit:
            raise InvalidFormat(f"Cannot {verb} more than {self.bulk_limit} expenses at once")

    def create(self, expense: ExpenseCreate, user_id: str) -> Expense:
        check_owner(user_id)
        created = self.store.create(user_id, self._prepare(expense))
        logger.info("Created expense %s for user %s", created.id, user_id)
        return created

    def bulk_create(self, expenses: List[ExpenseCreate], user_id: str) -> BulkResult:
        check_owner(user_id)
        self._check_batch(expenses, "Expenses", "create")
        rows = [self._prepare(expense) for expense in expenses]
        created = self.store.bulk_create(user_id, rows)
        logger.info("Created %d expenses for user %s", len(created), user_id)
        return BulkResult(message=f"{len(created)} expenses created successfully", expenses=created)

    def bulk_replace(self, expenses: List[ExpenseCreate], user_id: str) -> BulkResult:
        """Replace every expense in the months the given rows fall in."""
        check_owner(user_id)
        self._check_batch(expenses, "Expenses", "update")
        if any(not expense.date for expense in expenses):
            raise InvalidFormat("Every expense needs a date to replace its month")

        rows = [self._prepare(expense) for expense in expenses]
        by_month: Dict[str, List[dict]] = {}
        for row in rows:
            by_month.setdefault(row["date"].strftime("%Y-%m"), []).append(row)
        for month in by_month:
            check_month(month)

        results: List[Expense] = []
        for month, month_rows in by_month.items():
            start, end = month_date_range(month)[1:]
            removed = self.store.delete_by_date_range(user_id, start, end)
            results.extend(self.store.bulk_create(user_id, month_rows))
            logger.info("Replaced %d expenses with %d in %s for user %s", removed, len(month_rows), month, user_id)

        return BulkResult(
            message=f"Replaced expenses for {len(by_month)} month(s) with {len(results)} new expenses",
            expenses=results,
        )

    def update(self, expense_id: str, changes: ExpenseUpdate, user_id: str) -> Expense:
        check_owner(user_id)
        check_id(expense_id)
        data = changes.model_dump(exclude_unset=True)
        # description and category may be cleared with null, the rest may not
        for field in REQUIRED_EXPENSE_FIELDS:
            if field in data and data[field] is None:
                del data[field]
        if "amount" in data and not is_valid_amount(data["amount"], 0.01, inclusive=True):
            raise InvalidFormat("Amount must be a finite number of at least 0.01")
        if "date" in data:
            data["date"] = normalize_date_to_utc(data["date"])

        updated = self.store.update_by_id(expense_id, user_id, data)
        if updated is None:
            raise NotFound("Expense not found")
        return updated

    def remove(self, expense_id: str, user_id: str) -> DeleteResult:
        check_owner(user_id)
        check_id(expense_id)
        if not self.store.delete_by_id(expense_id, user_id):
            raise NotFound("Expense not found")
        return DeleteResult(message="Expense deleted successfully")

    def bulk_remove(self, expense_ids: List[str], user_id: str) -> DeleteResult:
        check_owner(user_id)
        if not expense_ids:
            raise InvalidFormat("IDs array is required and cannot be empty")
        if len(expense_ids) > self.bulk_limit:
            raise InvalidFormat(f"Cannot delete more than {self.bulk_limit} expenses at once")

        valid_ids = [i for i in expense_ids if is_valid_object_id(i)]
        if not valid_ids:
            raise InvalidFormat("No valid expense IDs provided")

        deleted = self.store.bulk_delete_by_ids(valid_ids, user_id)
        if deleted == 0:
            raise NotFound("No expenses found to delete")
        return DeleteResult(message=f"{deleted} expenses deleted successfully", deleted_count=deleted)

    # Reads

    def find_one(self, expense_id: str, user_id: str) -> Expense:
        check_owner(user_id)
        check_id(expense_id)
        expense = self.store.find_by_id(expense_id, user_id)
        if expense is None:
            raise NotFound("Expense not found")
        return expense

    def find_all(self, user_id: str, month: Optional[str] = None) -> List[Expense]:
        check_owner(user_id)
        month = check_month(month or current_month(self.clock()))
        _, start, end = month_date_range(month)
        return self.store.find_in_range(user_id, start, end)

    def find_all_for_export(self, user_id: str) -> List[ExpenseExportRow]:
        check_owner(user_id)
        return [format_expense_for_export(e) for e in self.store.find_all(user_id)]

    def total_for_month(self, user_id: str, month: str) -> float:
        check_owner(user_id)
        _, start, end = month_date_range(check_month(month))
        return self.store.sum_in_range(user_id, start, end)

    def totals_for_months(self, user_id: str, months: List[str]) -> Dict[str, float]:
        """One grouped query for all months; every valid month gets a key."""
        check_owner(user_id)
        ranges = month_ranges(dict.fromkeys(months))
        if not ranges:
            return {}
        return self.store.sum_per_month(user_id, ranges)

    def get_daily_spending(self, user_id: str, month: str) -> List[DailyTotal]:
        check_owner(user_id)
        _, start, end = month_date_range(check_month(month))
        now = to_utc(self.clock())
        max_day = now.day if is_current_month(month, now) else days_in_month(month)
        return fill_daily_series(self.store.sum_per_day(user_id, start, end), max_day)

    def get_category_breakdown(self, user_id: str, month: str) -> List[CategoryTotal]:
        check_owner(user_id)
        _, start, end = month_date_range(check_month(month))
        return self.store.sum_per_category(user_id, start, end)

    def get_category_breakdown_for_range(self, user_id: str, start_date: str, end_date: str) -> List[CategoryTotal]:
        """Breakdown for an inclusive date window; a date-only end covers that whole day."""
        check_owner(user_id)
        if not (is_valid_date_string(start_date) and is_valid_date_string(end_date)):
            raise InvalidFormat("Invalid date format. Expected YYYY-MM-DD")
        start = normalize_date_to_utc(start_date)
        end = normalize_date_to_utc(end_date)
        if DATE_ONLY_RE.match(end_date.strip()):
            try:
                end += timedelta(days=1)
            except OverflowError:
                raise InvalidFormat("End date is out of range")
        if end <= start:
            raise InvalidFormat("End date must not be before start date")
        return self.store.sum_per_category(user_id, start, end)

    def get_top_expenses(self, user_id: str, month: str, limit: int = config.TOP_ITEMS_LIMIT) -> List[TitleTotal]:
        check_owner(user_id)
        _, start, end = month_date_range(check_month(month))
        return self.store.top_by_title(user_id, start, end, limit)

    def get_weekly_expenses(self, user_id: str, month: str) -> List[WeekSummary]:
        """Every ISO week touching the month, zero-filled, ordered by Monday."""
        check_owner(user_id)
        _, start, end = month_date_range(check_month(month))
        rows = self.store.sum_per_iso_week(user_id, start, end)
        return fill_weekly_series(rows, weeks_in_range(start, end))

    def get_weekly_stats(self, user_id: str, start: datetime, end: datetime) -> WeeklyStats:
        check_owner(user_id)
        categories = self.store.sum_per_category(user_id, start, end)
        return WeeklyStats(total=sum(c.amount for c in categories), categories=categories)

import datetime
from datetime import timezone

import pytest
from bson import ObjectId

from budget_service import BudgetService
from config import UNCATEGORIZED
from errors import Conflict, StoreUnavailable
from expense_service import ExpenseService
from schemas import Budget, CategoryTotal, DailyTotal, Expense, TitleTotal, WeeklyTotal

OWNER = "64b7f0c2a1e4d3b2c1a09f87"
OTHER_OWNER = "64b7f0c2a1e4d3b2c1a09f88"

# Mid-November 2025, so "2025-11" is the current month
NOW = datetime.datetime(2025, 11, 15, 9, 30, tzinfo=timezone.utc)


def _now():
    return datetime.datetime.now(timezone.utc)


def _in_range(doc, user_id, start, end):
    return doc["user_id"] == user_id and start <= doc["date"] < end


class InMemoryExpenseStore:
    """Dict-backed store with the same contract as ExpenseRepository."""

    def __init__(self):
        self.docs = {}
        self.calls = []

    def _record(self, name):
        self.calls.append(name)

    def _model(self, doc):
        return Expense(**doc)

    def create(self, user_id, data):
        self._record("create")
        doc = {**data, "id": str(ObjectId()), "user_id": user_id, "created_at": _now(), "updated_at": _now()}
        self.docs[doc["id"]] = doc
        return self._model(doc)

    def bulk_create(self, user_id, rows):
        self._record("bulk_create")
        return [self.create(user_id, row) for row in rows]

    def find_by_id(self, expense_id, user_id):
        doc = self.docs.get(expense_id)
        if doc is None or doc["user_id"] != user_id:
            return None
        return self._model(doc)

    def find_in_range(self, user_id, start, end):
        rows = [d for d in self.docs.values() if _in_range(d, user_id, start, end)]
        rows.sort(key=lambda d: (d["date"], d["created_at"]), reverse=True)
        return [self._model(d) for d in rows]

    def find_all(self, user_id):
        rows = [d for d in self.docs.values() if d["user_id"] == user_id]
        rows.sort(key=lambda d: (d["date"], d["created_at"]), reverse=True)
        return [self._model(d) for d in rows]

    def update_by_id(self, expense_id, user_id, changes):
        doc = self.docs.get(expense_id)
        if doc is None or doc["user_id"] != user_id:
            return None
        doc.update(changes, updated_at=_now())
        return self._model(doc)

    def delete_by_id(self, expense_id, user_id):
        if self.find_by_id(expense_id, user_id) is None:
            return False
        del self.docs[expense_id]
        return True

    def bulk_delete_by_ids(self, expense_ids, user_id):
        return sum(1 for i in expense_ids if self.delete_by_id(i, user_id))

    def delete_by_date_range(self, user_id, start, end):
        doomed = [i for i, d in self.docs.items() if _in_range(d, user_id, start, end)]
        for i in doomed:
            del self.docs[i]
        return len(doomed)

    def _rows(self, user_id, start, end):
        return [d for d in self.docs.values() if _in_range(d, user_id, start, end)]

    def _total(self, user_id, start, end):
        return float(sum(d["amount"] for d in self._rows(user_id, start, end)))

    def sum_in_range(self, user_id, start, end):
        self._record("sum_in_range")
        return self._total(user_id, start, end)

    def sum_per_month(self, user_id, month_ranges):
        self._record("sum_per_month")
        return {r.month: self._total(user_id, r.start, r.end) for r in month_ranges}

    def sum_per_day(self, user_id, start, end):
        days = {}
        for d in self._rows(user_id, start, end):
            days[d["date"].day] = days.get(d["date"].day, 0.0) + d["amount"]
        return [DailyTotal(day=day, amount=amount) for day, amount in sorted(days.items())]

    def sum_per_category(self, user_id, start, end):
        groups = {}
        for d in self._rows(user_id, start, end):
            key = (d.get("category") or "").strip() or UNCATEGORIZED
            amount, count = groups.get(key, (0.0, 0))
            groups[key] = (amount + d["amount"], count + 1)
        rows = [CategoryTotal(category=k, amount=a, count=c) for k, (a, c) in groups.items()]
        return sorted(rows, key=lambda r: (-r.amount, r.category))

    def top_by_title(self, user_id, start, end, limit):
        groups = {}
        for d in self._rows(user_id, start, end):
            key = d["title"].strip()
            groups[key] = groups.get(key, 0.0) + d["amount"]
        rows = sorted(groups.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]
        return [TitleTotal(title=t, amount=a) for t, a in rows]

    def sum_per_iso_week(self, user_id, start, end):
        weeks = {}
        for d in self._rows(user_id, start, end):
            week = d["date"].isocalendar()[1]
            weeks[week] = weeks.get(week, 0.0) + d["amount"]
        return [WeeklyTotal(week=w, amount=a) for w, a in sorted(weeks.items())]


class BrokenAggregateExpenseStore(InMemoryExpenseStore):
    """CRUD works but every aggregation fails like a dropped connection."""

    def _fail(self, *args, **kwargs):
        raise StoreUnavailable("connection reset")

    sum_in_range = _fail
    sum_per_month = _fail
    sum_per_day = _fail
    sum_per_category = _fail
    top_by_title = _fail
    sum_per_iso_week = _fail


class InMemoryBudgetStore:
    """Dict-backed store with a unique (user_id, month) constraint."""

    def __init__(self):
        self.docs = {}
        self.creates = 0

    def _model(self, doc):
        return Budget(**doc)

    def _owned(self, budget_id, user_id):
        doc = self.docs.get(budget_id)
        if doc is None or doc["user_id"] != user_id:
            return None
        return doc

    def create(self, user_id, month, items):
        if self.exists_for_month(user_id, month):
            raise Conflict("Budget already exists for this month")
        self.creates += 1
        doc = {
            "id": str(ObjectId()),
            "user_id": user_id,
            "month": month,
            "essential_items": [item.model_dump() for item in items],
            "created_at": _now(),
            "updated_at": _now(),
        }
        self.docs[doc["id"]] = doc
        return self._model(doc)

    def find_by_id(self, budget_id, user_id):
        doc = self._owned(budget_id, user_id)
        return self._model(doc) if doc else None

    def find_by_month(self, user_id, month):
        for doc in self.docs.values():
            if doc["user_id"] == user_id and doc["month"] == month:
                return self._model(doc)
        return None

    def find_most_recent_before(self, user_id, month):
        earlier = [d for d in self.docs.values() if d["user_id"] == user_id and d["month"] < month]
        if not earlier:
            return None
        return self._model(max(earlier, key=lambda d: d["month"]))

    def exists_for_month(self, user_id, month):
        return self.find_by_month(user_id, month) is not None

    def list_all(self, user_id):
        docs = [d for d in self.docs.values() if d["user_id"] == user_id]
        return [self._model(d) for d in sorted(docs, key=lambda d: d["month"], reverse=True)]

    def update_by_id(self, budget_id, user_id, changes):
        doc = self._owned(budget_id, user_id)
        if doc is None:
            return None
        if "month" in changes and changes["month"] != doc["month"] and self.exists_for_month(user_id, changes["month"]):
            raise Conflict("Budget already exists for this month")
        if "essential_items" in changes:
            changes = {**changes, "essential_items": [i.model_dump() for i in changes["essential_items"]]}
        doc.update(changes, updated_at=_now())
        return self._model(doc)

    def push_item(self, budget_id, user_id, item):
        doc = self._owned(budget_id, user_id)
        if doc is None:
            return None
        if all(i["name"] != item.name for i in doc["essential_items"]):
            doc["essential_items"].append(item.model_dump())
        return self._model(doc)

    def pull_item(self, budget_id, user_id, name):
        doc = self._owned(budget_id, user_id)
        if doc is None:
            return None
        doc["essential_items"] = [i for i in doc["essential_items"] if i["name"] != name]
        return self._model(doc)

    def delete_by_id(self, budget_id, user_id):
        if self._owned(budget_id, user_id) is None:
            return False
        del self.docs[budget_id]
        return True


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def expense_store():
    return InMemoryExpenseStore()


@pytest.fixture
def budget_store():
    return InMemoryBudgetStore()


@pytest.fixture
def expense_service(expense_store, clock):
    return ExpenseService(expense_store, clock=clock)


@pytest.fixture
def budget_service(budget_store, expense_service, clock):
    return BudgetService(budget_store, expense_service, clock=clock)

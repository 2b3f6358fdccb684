"""
Store adapters for expenses and budgets

The services only depend on the ExpenseStore / BudgetStore protocols. The
Mongo implementations below translate pymongo failures into the domain
errors: DuplicateKeyError -> Conflict, any other PyMongoError ->
StoreUnavailable.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Sequence

from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

import aggregations
from database import BUDGET_COLLECTION, EXPENSE_COLLECTION, create_document, serialize_doc, to_object_id
from dateutils import MonthRange, utc_now
from errors import Conflict, StoreUnavailable
from schemas import Budget, CategoryTotal, DailyTotal, EssentialItem, Expense, TitleTotal, WeeklyTotal

logger = logging.getLogger(__name__)


class ExpenseStore(Protocol):
    def create(self, user_id: str, data: dict) -> Expense: ...
    def bulk_create(self, user_id: str, rows: List[dict]) -> List[Expense]: ...
    def find_by_id(self, expense_id: str, user_id: str) -> Optional[Expense]: ...
    def find_in_range(self, user_id: str, start: datetime, end: datetime) -> List[Expense]: ...
    def find_all(self, user_id: str) -> List[Expense]: ...
    def update_by_id(self, expense_id: str, user_id: str, changes: dict) -> Optional[Expense]: ...
    def delete_by_id(self, expense_id: str, user_id: str) -> bool: ...
    def bulk_delete_by_ids(self, expense_ids: List[str], user_id: str) -> int: ...
    def delete_by_date_range(self, user_id: str, start: datetime, end: datetime) -> int: ...
    def sum_in_range(self, user_id: str, start: datetime, end: datetime) -> float: ...
    def sum_per_month(self, user_id: str, month_ranges: Sequence[MonthRange]) -> Dict[str, float]: ...
    def sum_per_day(self, user_id: str, start: datetime, end: datetime) -> List[DailyTotal]: ...
    def sum_per_category(self, user_id: str, start: datetime, end: datetime) -> List[CategoryTotal]: ...
    def top_by_title(self, user_id: str, start: datetime, end: datetime, limit: int) -> List[TitleTotal]: ...
    def sum_per_iso_week(self, user_id: str, start: datetime, end: datetime) -> List[WeeklyTotal]: ...


class BudgetStore(Protocol):
    def create(self, user_id: str, month: str, items: List[EssentialItem]) -> Budget: ...
    def find_by_id(self, budget_id: str, user_id: str) -> Optional[Budget]: ...
    def find_by_month(self, user_id: str, month: str) -> Optional[Budget]: ...
    def find_most_recent_before(self, user_id: str, month: str) -> Optional[Budget]: ...
    def exists_for_month(self, user_id: str, month: str) -> bool: ...
    def list_all(self, user_id: str) -> List[Budget]: ...
    def update_by_id(self, budget_id: str, user_id: str, changes: dict) -> Optional[Budget]: ...
    def push_item(self, budget_id: str, user_id: str, item: EssentialItem) -> Optional[Budget]: ...
    def pull_item(self, budget_id: str, user_id: str, name: str) -> Optional[Budget]: ...
    def delete_by_id(self, budget_id: str, user_id: str) -> bool: ...


@contextmanager
def store_errors(operation: str):
    try:
        yield
    except DuplicateKeyError as e:
        raise Conflict("Budget already exists for this month") from e
    except PyMongoError as e:
        logger.error("Store failure during %s: %s", operation, e)
        raise StoreUnavailable(f"Store unavailable during {operation}") from e


def _to_expense(doc) -> Optional[Expense]:
    if not doc:
        return None
    return Expense(**serialize_doc(doc))


def _to_budget(doc) -> Optional[Budget]:
    if not doc:
        return None
    return Budget(**serialize_doc(doc))


class ExpenseRepository:
    def __init__(self, database: Database):
        self.database = database
        self.collection = database[EXPENSE_COLLECTION]

    def _id_query(self, expense_id: str, user_id: str) -> dict:
        return {"_id": to_object_id(expense_id), "user_id": user_id}

    def create(self, user_id: str, data: dict) -> Expense:
        with store_errors("expense create"):
            inserted_id = create_document(EXPENSE_COLLECTION, {**data, "user_id": user_id}, self.database)
            return _to_expense(self.collection.find_one({"_id": to_object_id(inserted_id)}))

    def bulk_create(self, user_id: str, rows: List[dict]) -> List[Expense]:
        if not rows:
            return []
        now = utc_now()
        docs = [{**row, "user_id": user_id, "created_at": now, "updated_at": now} for row in rows]
        with store_errors("expense bulk create"):
            self.collection.insert_many(docs)
        # insert_many sets _id on each doc in place
        return [_to_expense(doc) for doc in docs]

    def find_by_id(self, expense_id: str, user_id: str) -> Optional[Expense]:
        with store_errors("expense lookup"):
            return _to_expense(self.collection.find_one(self._id_query(expense_id, user_id)))

    def find_in_range(self, user_id: str, start: datetime, end: datetime) -> List[Expense]:
        with store_errors("expense list"):
            cursor = self.collection.find({"user_id": user_id, "date": {"$gte": start, "$lt": end}})
            cursor = cursor.sort([("date", DESCENDING), ("created_at", DESCENDING)])
            return [_to_expense(doc) for doc in cursor]

    def find_all(self, user_id: str) -> List[Expense]:
        with store_errors("expense export"):
            cursor = self.collection.find({"user_id": user_id}).sort([("date", DESCENDING), ("created_at", DESCENDING)])
            return [_to_expense(doc) for doc in cursor]

    def update_by_id(self, expense_id: str, user_id: str, changes: dict) -> Optional[Expense]:
        with store_errors("expense update"):
            doc = self.collection.find_one_and_update(
                self._id_query(expense_id, user_id),
                {"$set": {**changes, "updated_at": utc_now()}},
                return_document=ReturnDocument.AFTER,
            )
        return _to_expense(doc)

    def delete_by_id(self, expense_id: str, user_id: str) -> bool:
        with store_errors("expense delete"):
            result = self.collection.delete_one(self._id_query(expense_id, user_id))
        return result.deleted_count > 0

    def bulk_delete_by_ids(self, expense_ids: List[str], user_id: str) -> int:
        with store_errors("expense bulk delete"):
            result = self.collection.delete_many(
                {"_id": {"$in": [to_object_id(i) for i in expense_ids]}, "user_id": user_id}
            )
        return result.deleted_count

    def delete_by_date_range(self, user_id: str, start: datetime, end: datetime) -> int:
        with store_errors("expense range delete"):
            result = self.collection.delete_many({"user_id": user_id, "date": {"$gte": start, "$lt": end}})
        return result.deleted_count

    def _aggregate(self, pipeline: List[dict], operation: str) -> List[dict]:
        with store_errors(operation):
            return list(self.collection.aggregate(pipeline, allowDiskUse=True))

    def sum_in_range(self, user_id: str, start: datetime, end: datetime) -> float:
        rows = self._aggregate(aggregations.total_pipeline(user_id, start, end), "expense total")
        if not rows or rows[0].get("total") is None:
            return 0.0
        return float(rows[0]["total"])

    def sum_per_month(self, user_id: str, month_ranges: Sequence[MonthRange]) -> Dict[str, float]:
        totals = {r.month: 0.0 for r in month_ranges}
        if not month_ranges:
            return totals
        rows = self._aggregate(aggregations.totals_per_month_pipeline(user_id, month_ranges), "monthly totals")
        for row in rows:
            if row["_id"] in totals:
                totals[row["_id"]] = float(row.get("total") or 0)
        return totals

    def sum_per_day(self, user_id: str, start: datetime, end: datetime) -> List[DailyTotal]:
        rows = self._aggregate(aggregations.daily_pipeline(user_id, start, end), "daily totals")
        return [DailyTotal(day=row["day"], amount=float(row.get("amount") or 0)) for row in rows]

    def sum_per_category(self, user_id: str, start: datetime, end: datetime) -> List[CategoryTotal]:
        rows = self._aggregate(aggregations.category_pipeline(user_id, start, end), "category breakdown")
        return [
            CategoryTotal(category=row["category"], amount=float(row.get("amount") or 0), count=row.get("count", 0))
            for row in rows
        ]

    def top_by_title(self, user_id: str, start: datetime, end: datetime, limit: int) -> List[TitleTotal]:
        rows = self._aggregate(aggregations.top_titles_pipeline(user_id, start, end, limit), "top expenses")
        return [TitleTotal(title=str(row["title"] or "").strip(), amount=float(row.get("amount") or 0)) for row in rows]

    def sum_per_iso_week(self, user_id: str, start: datetime, end: datetime) -> List[WeeklyTotal]:
        rows = self._aggregate(aggregations.iso_week_pipeline(user_id, start, end), "weekly totals")
        return [WeeklyTotal(week=int(row["week"]), amount=float(row.get("amount") or 0)) for row in rows]


class BudgetRepository:
    def __init__(self, database: Database):
        self.database = database
        self.collection = database[BUDGET_COLLECTION]

    def _id_query(self, budget_id: str, user_id: str) -> dict:
        return {"_id": to_object_id(budget_id), "user_id": user_id}

    def create(self, user_id: str, month: str, items: List[EssentialItem]) -> Budget:
        data = {
            "user_id": user_id,
            "month": month,
            "essential_items": [item.model_dump() for item in items],
        }
        with store_errors("budget create"):
            inserted_id = create_document(BUDGET_COLLECTION, data, self.database)
            return _to_budget(self.collection.find_one({"_id": to_object_id(inserted_id)}))

    def find_by_id(self, budget_id: str, user_id: str) -> Optional[Budget]:
        with store_errors("budget lookup"):
            return _to_budget(self.collection.find_one(self._id_query(budget_id, user_id)))

    def find_by_month(self, user_id: str, month: str) -> Optional[Budget]:
        with store_errors("budget lookup"):
            return _to_budget(self.collection.find_one({"user_id": user_id, "month": month}))

    def find_most_recent_before(self, user_id: str, month: str) -> Optional[Budget]:
        with store_errors("budget lookup"):
            doc = self.collection.find_one(
                {"user_id": user_id, "month": {"$lt": month}},
                sort=[("month", DESCENDING)],
            )
        return _to_budget(doc)

    def exists_for_month(self, user_id: str, month: str) -> bool:
        with store_errors("budget lookup"):
            return self.collection.count_documents({"user_id": user_id, "month": month}, limit=1) > 0

    def list_all(self, user_id: str) -> List[Budget]:
        with store_errors("budget list"):
            cursor = self.collection.find({"user_id": user_id}).sort("month", DESCENDING)
            return [_to_budget(doc) for doc in cursor]

    def update_by_id(self, budget_id: str, user_id: str, changes: dict) -> Optional[Budget]:
        if "essential_items" in changes:
            changes = {**changes, "essential_items": [item.model_dump() for item in changes["essential_items"]]}
        with store_errors("budget update"):
            doc = self.collection.find_one_and_update(
                self._id_query(budget_id, user_id),
                {"$set": {**changes, "updated_at": utc_now()}},
                return_document=ReturnDocument.AFTER,
            )
        return _to_budget(doc)

    def push_item(self, budget_id: str, user_id: str, item: EssentialItem) -> Optional[Budget]:
        """Append unless an item with that name is already present."""
        query = {**self._id_query(budget_id, user_id), "essential_items.name": {"$ne": item.name}}
        with store_errors("budget item add"):
            self.collection.update_one(
                query,
                {"$push": {"essential_items": item.model_dump()}, "$set": {"updated_at": utc_now()}},
            )
            return _to_budget(self.collection.find_one(self._id_query(budget_id, user_id)))

    def pull_item(self, budget_id: str, user_id: str, name: str) -> Optional[Budget]:
        with store_errors("budget item remove"):
            doc = self.collection.find_one_and_update(
                self._id_query(budget_id, user_id),
                {"$pull": {"essential_items": {"name": name}}, "$set": {"updated_at": utc_now()}},
                return_document=ReturnDocument.AFTER,
            )
        return _to_budget(doc)

    def delete_by_id(self, budget_id: str, user_id: str) -> bool:
        with store_errors("budget delete"):
            result = self.collection.delete_one(self._id_query(budget_id, user_id))
        return result.deleted_count > 0

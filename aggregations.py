"""
Expense aggregation pipelines

Every pipeline matches on the owner and a half-open date range
(start <= date < end) before grouping. Day, month and ISO week are
extracted in UTC.
"""

from datetime import datetime
from typing import List, Sequence

from config import UNCATEGORIZED
from dateutils import MonthRange


def owner_range_match(user_id: str, start: datetime, end: datetime) -> dict:
    return {"$match": {"user_id": user_id, "date": {"$gte": start, "$lt": end}}}


def total_pipeline(user_id: str, start: datetime, end: datetime) -> List[dict]:
    return [
        owner_range_match(user_id, start, end),
        {"$group": {"_id": None, "total": {"$sum": "$amount"}}},
    ]


def totals_per_month_pipeline(user_id: str, month_ranges: Sequence[MonthRange]) -> List[dict]:
    return [
        {
            "$match": {
                "user_id": user_id,
                "$or": [{"date": {"$gte": r.start, "$lt": r.end}} for r in month_ranges],
            }
        },
        {
            "$group": {
                "_id": {"$dateToString": {"format": "%Y-%m", "date": "$date", "timezone": "UTC"}},
                "total": {"$sum": "$amount"},
            }
        },
    ]


def daily_pipeline(user_id: str, start: datetime, end: datetime) -> List[dict]:
    return [
        owner_range_match(user_id, start, end),
        {"$group": {"_id": {"$dayOfMonth": {"date": "$date", "timezone": "UTC"}}, "amount": {"$sum": "$amount"}}},
        {"$project": {"_id": 0, "day": "$_id", "amount": 1}},
        {"$sort": {"day": 1}},
    ]


# Null, missing and blank categories all group under UNCATEGORIZED
_category_key = {
    "$let": {
        "vars": {"c": {"$trim": {"input": {"$ifNull": ["$category", ""]}}}},
        "in": {"$cond": [{"$eq": ["$$c", ""]}, UNCATEGORIZED, "$$c"]},
    }
}


def category_pipeline(user_id: str, start: datetime, end: datetime) -> List[dict]:
    return [
        owner_range_match(user_id, start, end),
        {"$group": {"_id": _category_key, "amount": {"$sum": "$amount"}, "count": {"$sum": 1}}},
        {"$project": {"_id": 0, "category": "$_id", "amount": 1, "count": 1}},
        {"$sort": {"amount": -1, "category": 1}},
    ]


def top_titles_pipeline(user_id: str, start: datetime, end: datetime, limit: int) -> List[dict]:
    return [
        owner_range_match(user_id, start, end),
        {"$group": {"_id": {"$trim": {"input": "$title"}}, "amount": {"$sum": "$amount"}}},
        {"$sort": {"amount": -1, "_id": 1}},
        {"$limit": limit},
        {"$project": {"_id": 0, "title": "$_id", "amount": 1}},
    ]


def iso_week_pipeline(user_id: str, start: datetime, end: datetime) -> List[dict]:
    return [
        owner_range_match(user_id, start, end),
        {"$group": {"_id": {"$isoWeek": {"date": "$date", "timezone": "UTC"}}, "amount": {"$sum": "$amount"}}},
        {"$sort": {"_id": 1}},
        {"$project": {"_id": 0, "week": "$_id", "amount": 1}},
    ]

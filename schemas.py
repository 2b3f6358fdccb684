"""
Database Schemas

MongoDB collection schemas and API shapes, defined as Pydantic models.
These schemas are used for data validation in the application and as the
return types of the services, so no pymongo/bson type crosses the API.

Collections:
- Budget -> "budget" collection (one per user per month)
- Expense -> "expense" collection
"""

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

MONTH_PATTERN = r"^\d{4}-\d{2}$"


class EssentialItem(BaseModel):
    """A named planned line inside a budget, e.g. Rent."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=3, max_length=100, description="Item name, unique within a budget")
    amount: Optional[float] = Field(None, gt=0, allow_inf_nan=False, description="Planned amount for the month")


def total_of(items: List[EssentialItem]) -> float:
    return float(sum(item.amount or 0 for item in items))


# Budgets

class BudgetCreate(BaseModel):
    month: str = Field(..., pattern=MONTH_PATTERN, description="Month in YYYY-MM format")
    essential_items: List[EssentialItem] = Field(default_factory=list)


class BudgetUpdate(BaseModel):
    month: Optional[str] = Field(None, pattern=MONTH_PATTERN)
    essential_items: Optional[List[EssentialItem]] = None


class Budget(BaseModel):
    """
    Monthly budget plan
    Collection name: "budget"
    """

    id: str
    user_id: str
    month: str = Field(..., description="Month in YYYY-MM format")
    essential_items: List[EssentialItem] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @computed_field
    @property
    def total_budget(self) -> float:
        return total_of(self.essential_items)


class BudgetWithSpend(Budget):
    spent_amount: float = 0.0


class BudgetExportRow(BaseModel):
    id: str
    month: str
    essential_items: str = Field(..., description="JSON encoded item list")
    total_budget: float
    user_id: str
    created_at: str
    updated_at: str


# Expenses

class ExpenseCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=3, max_length=100)
    amount: float = Field(..., ge=0.01, allow_inf_nan=False, description="Expense amount")
    description: Optional[str] = Field(None, max_length=500)
    category: Optional[str] = Field(None, max_length=50)
    date: Optional[str] = Field(None, description="YYYY-MM-DD or ISO datetime; defaults to now")


class ExpenseUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(None, min_length=3, max_length=100)
    amount: Optional[float] = Field(None, ge=0.01, allow_inf_nan=False)
    description: Optional[str] = Field(None, max_length=500)
    category: Optional[str] = Field(None, max_length=50)
    date: Optional[str] = None


class Expense(BaseModel):
    """
    Expense entries for tracking actual spending
    Collection name: "expense"
    """

    id: str
    user_id: str
    title: str
    amount: float
    description: Optional[str] = None
    category: Optional[str] = None
    date: datetime
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ExpenseExportRow(BaseModel):
    id: str
    title: str
    amount: float
    description: str
    category: str
    date: str
    created_at: str
    updated_at: str


class IdList(BaseModel):
    ids: List[str]


class BulkResult(BaseModel):
    message: str
    expenses: List[Expense]


class DeleteResult(BaseModel):
    message: str
    deleted_count: int = 1


# Aggregation results

class DailyTotal(BaseModel):
    day: int = Field(..., ge=1, le=31, description="1-based day of month")
    amount: float


class CategoryTotal(BaseModel):
    category: str
    amount: float
    count: int = 0


class TitleTotal(BaseModel):
    title: str
    amount: float


class WeeklyTotal(BaseModel):
    week: int = Field(..., description="ISO week number")
    amount: float


class WeekSummary(WeeklyTotal):
    start_date: date = Field(..., description="Monday of the ISO week")
    end_date: date = Field(..., description="Sunday of the ISO week")


class AnalysisStats(BaseModel):
    budget: Optional[BudgetWithSpend] = None
    total_budget: float = 0.0
    total_expenses: float = 0.0
    remaining_budget: float = 0.0
    budget_used_percentage: float = 0.0
    budget_exists: bool = False
    daily_average_spend: float = 0.0
    top_categories: List[CategoryTotal] = Field(default_factory=list)
    top_expenses: List[TitleTotal] = Field(default_factory=list)
    weekly_expenses: List[WeekSummary] = Field(default_factory=list)


class WeekDetails(BaseModel):
    category_breakdown: List[CategoryTotal] = Field(default_factory=list)


class WeeklyStats(BaseModel):
    total: float = 0.0
    categories: List[CategoryTotal] = Field(default_factory=list)

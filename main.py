import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import config
import database
from budget_service import BudgetService
from errors import BudgetTrackerError
from expense_service import ExpenseService
from repositories import BudgetRepository, ExpenseRepository
from schemas import (
    AnalysisStats,
    BudgetCreate,
    BudgetExportRow,
    BudgetUpdate,
    BudgetWithSpend,
    BulkResult,
    DailyTotal,
    DeleteResult,
    EssentialItem,
    Expense,
    ExpenseCreate,
    ExpenseExportRow,
    ExpenseUpdate,
    IdList,
    WeekDetails,
)

config.configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is None:
        logger.warning("Database not configured; skipping index creation")
    else:
        try:
            database.ensure_indexes()
        except Exception as e:
            logger.error("Could not create indexes: %s", e)
    yield


app = FastAPI(title="Budget Tracker API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BudgetTrackerError)
async def handle_domain_error(request: Request, exc: BudgetTrackerError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# Dependencies

def get_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


def get_expense_service() -> ExpenseService:
    return ExpenseService(ExpenseRepository(database.get_db()))


def get_budget_service(expenses: ExpenseService = Depends(get_expense_service)) -> BudgetService:
    return BudgetService(BudgetRepository(database.get_db()), expenses)


@app.get("/")
def read_root():
    return {"message": "Budget Tracker Backend is running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }

    db = database.db
    if db is not None:
        response["database"] = "✅ Available"
        response["database_name"] = db.name
        response["connection_status"] = "Connected"
        try:
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
        except Exception as e:
            response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"

    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"

    return response


# Budgets

@app.post("/api/budgets", response_model=BudgetWithSpend, status_code=201)
def create_budget(budget: BudgetCreate, user_id: str = Depends(get_user_id),
                  service: BudgetService = Depends(get_budget_service)):
    return service.create(budget, user_id)


@app.get("/api/budgets", response_model=List[BudgetWithSpend])
def list_budgets(user_id: str = Depends(get_user_id), service: BudgetService = Depends(get_budget_service)):
    return service.get_all_budgets(user_id)


@app.get("/api/budgets/current", response_model=Optional[BudgetWithSpend])
def current_budget(user_id: str = Depends(get_user_id), service: BudgetService = Depends(get_budget_service)):
    return service.get_current_budget(user_id)


@app.get("/api/budgets/export", response_model=List[BudgetExportRow])
def export_budgets(user_id: str = Depends(get_user_id), service: BudgetService = Depends(get_budget_service)):
    return service.find_all_for_export(user_id)


@app.get("/api/budgets/month/{month}", response_model=Optional[BudgetWithSpend])
def budget_by_month(month: str, user_id: str = Depends(get_user_id),
                    service: BudgetService = Depends(get_budget_service)):
    return service.get_budget_by_month(user_id, month)


@app.get("/api/budgets/analysis/{month}", response_model=AnalysisStats)
def analysis_stats(month: str, user_id: str = Depends(get_user_id),
                   service: BudgetService = Depends(get_budget_service)):
    return service.get_analysis_stats(user_id, month)


@app.get("/api/budgets/week-details", response_model=WeekDetails)
def week_details(start_date: str, end_date: str, user_id: str = Depends(get_user_id),
                 service: BudgetService = Depends(get_budget_service)):
    return service.get_week_details(user_id, start_date, end_date)


@app.get("/api/budgets/{budget_id}", response_model=BudgetWithSpend)
def get_budget(budget_id: str, user_id: str = Depends(get_user_id),
               service: BudgetService = Depends(get_budget_service)):
    return service.find_one(budget_id, user_id)


@app.patch("/api/budgets/{budget_id}", response_model=BudgetWithSpend)
def update_budget(budget_id: str, changes: BudgetUpdate, user_id: str = Depends(get_user_id),
                  service: BudgetService = Depends(get_budget_service)):
    return service.update(budget_id, changes, user_id)


@app.delete("/api/budgets/{budget_id}", response_model=DeleteResult)
def delete_budget(budget_id: str, user_id: str = Depends(get_user_id),
                  service: BudgetService = Depends(get_budget_service)):
    return service.remove(budget_id, user_id)


@app.get("/api/budgets/{budget_id}/essential-items", response_model=List[EssentialItem])
def list_essential_items(budget_id: str, user_id: str = Depends(get_user_id),
                         service: BudgetService = Depends(get_budget_service)):
    return service.get_essential_items(budget_id, user_id)


@app.post("/api/budgets/{budget_id}/essential-items", response_model=BudgetWithSpend)
def add_essential_item(budget_id: str, item: EssentialItem, user_id: str = Depends(get_user_id),
                       service: BudgetService = Depends(get_budget_service)):
    return service.add_essential_item(budget_id, item.name, item.amount, user_id)


@app.delete("/api/budgets/{budget_id}/essential-items/{item_name}", response_model=BudgetWithSpend)
def remove_essential_item(budget_id: str, item_name: str, user_id: str = Depends(get_user_id),
                          service: BudgetService = Depends(get_budget_service)):
    return service.remove_essential_item(budget_id, item_name, user_id)


# Expenses

@app.post("/api/expenses", response_model=Expense, status_code=201)
def add_expense(expense: ExpenseCreate, user_id: str = Depends(get_user_id),
                service: ExpenseService = Depends(get_expense_service)):
    return service.create(expense, user_id)


@app.post("/api/expenses/bulk", response_model=BulkResult, status_code=201)
def bulk_add_expenses(expenses: List[ExpenseCreate], user_id: str = Depends(get_user_id),
                      service: ExpenseService = Depends(get_expense_service)):
    return service.bulk_create(expenses, user_id)


@app.put("/api/expenses/bulk", response_model=BulkResult)
def bulk_replace_expenses(expenses: List[ExpenseCreate], user_id: str = Depends(get_user_id),
                          service: ExpenseService = Depends(get_expense_service)):
    return service.bulk_replace(expenses, user_id)


@app.post("/api/expenses/bulk-delete", response_model=DeleteResult)
def bulk_delete_expenses(body: IdList, user_id: str = Depends(get_user_id),
                         service: ExpenseService = Depends(get_expense_service)):
    return service.bulk_remove(body.ids, user_id)


@app.get("/api/expenses", response_model=List[Expense])
def list_expenses(month: Optional[str] = None, user_id: str = Depends(get_user_id),
                  service: ExpenseService = Depends(get_expense_service)):
    return service.find_all(user_id, month)


@app.get("/api/expenses/export", response_model=List[ExpenseExportRow])
def export_expenses(user_id: str = Depends(get_user_id), service: ExpenseService = Depends(get_expense_service)):
    return service.find_all_for_export(user_id)


@app.get("/api/expenses/daily/{month}", response_model=List[DailyTotal])
def daily_spending(month: str, user_id: str = Depends(get_user_id),
                   service: ExpenseService = Depends(get_expense_service)):
    return service.get_daily_spending(user_id, month)


@app.get("/api/expenses/{expense_id}", response_model=Expense)
def get_expense(expense_id: str, user_id: str = Depends(get_user_id),
                service: ExpenseService = Depends(get_expense_service)):
    return service.find_one(expense_id, user_id)


@app.patch("/api/expenses/{expense_id}", response_model=Expense)
def update_expense(expense_id: str, changes: ExpenseUpdate, user_id: str = Depends(get_user_id),
                   service: ExpenseService = Depends(get_expense_service)):
    return service.update(expense_id, changes, user_id)


@app.delete("/api/expenses/{expense_id}", response_model=DeleteResult)
def delete_expense(expense_id: str, user_id: str = Depends(get_user_id),
                   service: ExpenseService = Depends(get_expense_service)):
    return service.remove(expense_id, user_id)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)

from contextlib import asynccontextmanager
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Path, Query, Request, Response, status
from passlib.context import CryptContext
from starlette.middleware.sessions import SessionMiddleware

import schemas
from aggregation import SpendingAggregator
from auth import get_current_user, get_pwd_context, get_store, login_user, logout_user, make_password_context
from config import Settings, get_settings
from logger import configure_logging
from outcomes import FailureKind, Outcome
from repositories import BudgetGoalRepository, CategoryRepository, ExpenseRepository, UserRepository
from store import Store

STATUS_BY_FAILURE = {
    FailureKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    FailureKind.INVALID_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
    FailureKind.USERNAME_TAKEN: status.HTTP_400_BAD_REQUEST,
    FailureKind.INTEGRITY_VIOLATION: status.HTTP_409_CONFLICT,
    FailureKind.STORAGE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}

router = APIRouter()


def unwrap(outcome: Outcome):
    if outcome.ok:
        return outcome.value
    raise HTTPException(status_code=STATUS_BY_FAILURE[outcome.failure], detail=outcome.message)


def owned(record, user: schemas.SessionUser, what: str):
    """Hide rows of other users behind a 404"""
    if record.user_id != user.user_id:
        raise HTTPException(status_code=404, detail=f"{what} not found")
    return record


def get_user_repo(store: Store = Depends(get_store), pwd_context: CryptContext = Depends(get_pwd_context)):
    return UserRepository(store, pwd_context)

def get_category_repo(store: Store = Depends(get_store)):
    return CategoryRepository(store)

def get_expense_repo(store: Store = Depends(get_store)):
    return ExpenseRepository(store)

def get_goal_repo(store: Store = Depends(get_store)):
    return BudgetGoalRepository(store)

# ---------------------- AUTH ----------------------

@router.post("/register", response_model=schemas.UserOut, status_code=201)
async def register(user: schemas.UserCreate, users: UserRepository = Depends(get_user_repo)):
    return unwrap(await users.register(user))

@router.post("/login", response_model=schemas.UserOut)
async def login(request: Request, credentials: schemas.UserLogin, users: UserRepository = Depends(get_user_repo)):
    user = unwrap(await users.login(credentials))
    login_user(request, user)
    return user

@router.get("/logout")
def logout(request: Request):
    logout_user(request)
    return {"detail": "Logged out"}

@router.get("/me", response_model=schemas.SessionUser)
def me(user: schemas.SessionUser = Depends(get_current_user)):
    return user

# ---------------------- CATEGORIES ----------------------

@router.get("/categories", response_model=List[schemas.CategoryOut])
async def list_categories(
    user: schemas.SessionUser = Depends(get_current_user),
    categories: CategoryRepository = Depends(get_category_repo),
):
    return unwrap(await categories.list_for_user(user.user_id))

@router.post("/categories", response_model=schemas.CategoryOut, status_code=201)
async def add_category(
    category: schemas.CategoryBase,
    user: schemas.SessionUser = Depends(get_current_user),
    categories: CategoryRepository = Depends(get_category_repo),
):
    data = schemas.CategoryCreate(**category.model_dump(), user_id=user.user_id)
    return unwrap(await categories.add(data))

@router.get("/categories/{category_id}", response_model=schemas.CategoryOut)
async def get_category(
    category_id: int,
    user: schemas.SessionUser = Depends(get_current_user),
    categories: CategoryRepository = Depends(get_category_repo),
):
    return owned(unwrap(await categories.get(category_id)), user, "Category")

@router.put("/categories/{category_id}", response_model=schemas.CategoryOut)
async def update_category(
    category_id: int,
    category: schemas.CategoryBase,
    user: schemas.SessionUser = Depends(get_current_user),
    categories: CategoryRepository = Depends(get_category_repo),
):
    owned(unwrap(await categories.get(category_id)), user, "Category")
    data = schemas.CategoryCreate(**category.model_dump(), user_id=user.user_id)
    return unwrap(await categories.update(category_id, data))

@router.delete("/categories/{category_id}", status_code=204)
async def delete_category(
    category_id: int,
    user: schemas.SessionUser = Depends(get_current_user),
    categories: CategoryRepository = Depends(get_category_repo),
):
    owned(unwrap(await categories.get(category_id)), user, "Category")
    unwrap(await categories.delete(category_id))
    return Response(status_code=204)

# ---------------------- EXPENSES ----------------------

async def _check_category(category_id: int, user: schemas.SessionUser, categories: CategoryRepository):
    outcome = await categories.get(category_id)
    if outcome.failure == FailureKind.NOT_FOUND:
        raise HTTPException(status_code=404, detail="Category not found")
    owned(unwrap(outcome), user, "Category")

@router.get("/expenses", response_model=List[schemas.ExpenseOut])
async def list_expenses(
    start: date = Query(...),
    end: date = Query(...),
    user: schemas.SessionUser = Depends(get_current_user),
    expenses: ExpenseRepository = Depends(get_expense_repo),
):
    return unwrap(await expenses.list_in_range(user.user_id, start, end))

@router.post("/expenses", response_model=schemas.ExpenseOut, status_code=201)
async def add_expense(
    expense: schemas.ExpenseBase,
    user: schemas.SessionUser = Depends(get_current_user),
    expenses: ExpenseRepository = Depends(get_expense_repo),
    categories: CategoryRepository = Depends(get_category_repo),
):
    await _check_category(expense.category_id, user, categories)
    data = schemas.ExpenseCreate(**expense.model_dump(), user_id=user.user_id)
    return unwrap(await expenses.add(data))

@router.get("/expenses/{expense_id}", response_model=schemas.ExpenseOut)
async def get_expense(
    expense_id: int,
    user: schemas.SessionUser = Depends(get_current_user),
    expenses: ExpenseRepository = Depends(get_expense_repo),
):
    return owned(unwrap(await expenses.get(expense_id)), user, "Expense")

@router.put("/expenses/{expense_id}", response_model=schemas.ExpenseOut)
async def update_expense(
    expense_id: int,
    expense: schemas.ExpenseBase,
    user: schemas.SessionUser = Depends(get_current_user),
    expenses: ExpenseRepository = Depends(get_expense_repo),
    categories: CategoryRepository = Depends(get_category_repo),
):
    owned(unwrap(await expenses.get(expense_id)), user, "Expense")
    await _check_category(expense.category_id, user, categories)
    data = schemas.ExpenseCreate(**expense.model_dump(), user_id=user.user_id)
    return unwrap(await expenses.update(expense_id, data))

@router.delete("/expenses/{expense_id}", status_code=204)
async def delete_expense(
    expense_id: int,
    user: schemas.SessionUser = Depends(get_current_user),
    expenses: ExpenseRepository = Depends(get_expense_repo),
):
    owned(unwrap(await expenses.get(expense_id)), user, "Expense")
    unwrap(await expenses.delete(expense_id))
    return Response(status_code=204)

# ---------------------- BUDGET GOALS ----------------------

@router.get("/goals", response_model=List[schemas.BudgetGoalOut])
async def list_goals(
    user: schemas.SessionUser = Depends(get_current_user),
    goals: BudgetGoalRepository = Depends(get_goal_repo),
):
    return unwrap(await goals.list_for_user(user.user_id))

@router.get("/goals/{year}/{month}", response_model=schemas.BudgetGoalOut)
async def get_goal(
    year: int = Path(..., ge=2001, le=2100),
    month: int = Path(..., ge=1, le=12),
    user: schemas.SessionUser = Depends(get_current_user),
    goals: BudgetGoalRepository = Depends(get_goal_repo),
):
    goal = unwrap(await goals.get_for_month(user.user_id, month, year))
    if goal is None:
        raise HTTPException(status_code=404, detail="No goal set for this month")
    return goal

@router.put("/goals/{year}/{month}", response_model=schemas.BudgetGoalOut)
async def set_goal(
    goal: schemas.BudgetGoalBase,
    year: int = Path(..., ge=2001, le=2100),
    month: int = Path(..., ge=1, le=12),
    user: schemas.SessionUser = Depends(get_current_user),
    goals: BudgetGoalRepository = Depends(get_goal_repo),
):
    data = schemas.BudgetGoalCreate(**goal.model_dump(), month=month, year=year, user_id=user.user_id)
    return unwrap(await goals.set_goal(data))

# ---------------------- SUMMARY ----------------------

@router.get("/summary", response_model=schemas.MonthlySummary)
async def summary(
    year: Optional[int] = Query(None, ge=2001, le=2100),
    month: Optional[int] = Query(None, ge=1, le=12),
    user: schemas.SessionUser = Depends(get_current_user),
    expenses: ExpenseRepository = Depends(get_expense_repo),
    categories: CategoryRepository = Depends(get_category_repo),
    goals: BudgetGoalRepository = Depends(get_goal_repo),
):
    today = date.today()
    year = year or today.year
    month = month or today.month
    aggregator = SpendingAggregator(expenses, categories, goals)
    return unwrap(await aggregator.monthly_summary(user.user_id, year, month))

@router.get("/summary/range", response_model=schemas.CategoryTotals)
async def summary_for_range(
    start: date = Query(...),
    end: date = Query(...),
    category_ids: List[int] = Query(...),
    user: schemas.SessionUser = Depends(get_current_user),
    expenses: ExpenseRepository = Depends(get_expense_repo),
):
    return await SpendingAggregator(expenses).totals_by_category(user.user_id, start, end, category_ids)


def create_app(settings: Optional[Settings] = None, store: Optional[Store] = None) -> FastAPI:
    """
    Build the application. Without an explicit ``store`` one is opened from
    ``settings`` at startup and closed at shutdown.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level, settings.log_json)
        owns_store = app.state.store is None
        if owns_store:
            app.state.store = Store.from_settings(settings)
        app.state.store.create_all()
        yield
        if owns_store:
            app.state.store.close()
            app.state.store = None

    app = FastAPI(title="Finance Tracker", lifespan=lifespan)
    app.add_middleware(SessionMiddleware, secret_key=settings.session_secret)
    app.state.store = store
    app.state.pwd_context = make_password_context(settings.bcrypt_rounds)
    app.include_router(router)
    return app


app = create_app()

"""
Repositories: the translation boundary between storage and callers.

Every operation is a coroutine. The storage work runs on the store's worker
thread and the result comes back as an Outcome; raw SQLAlchemy errors never
leave this module. List queries also have an ``observe_*`` form returning a
LiveQuery that pushes a fresh result after every relevant commit.
"""

from datetime import date
from typing import Callable, Optional

from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

import auth
import models
import schemas
from crud import BudgetGoalDao, CategoryDao, ExpenseDao, RecordNotFound, UserDao
from live import LiveQuery
from logger import get_logger
from outcomes import FailureKind, Outcome, RepositoryFailure
from store import Store, StoreClosed

log = get_logger(__name__)


def _found(entity, model, record_id):
    if entity is None:
        raise RecordNotFound(model, record_id)
    return entity


class _Repository:
    def __init__(self, store: Store):
        self._store = store

    async def _call(self, operation: str, work: Callable[[Session], object]) -> Outcome:
        try:
            value = await self._store.run(work)
        except RepositoryFailure as exc:
            return self._failed(operation, exc.failure, exc.message)
        except RecordNotFound as exc:
            return self._failed(operation, FailureKind.NOT_FOUND, str(exc))
        except IntegrityError as exc:
            return self._failed(operation, FailureKind.INTEGRITY_VIOLATION, str(exc.orig))
        except (SQLAlchemyError, StoreClosed) as exc:
            return self._failed(operation, FailureKind.STORAGE_UNAVAILABLE, str(exc))
        except Exception as exc:
            log.error("repository_unexpected_error", operation=operation, error=str(exc), exc_info=True)
            return Outcome.fail(FailureKind.STORAGE_UNAVAILABLE, f"{operation} failed: {exc}")
        return Outcome.success(value)

    def _failed(self, operation: str, failure: FailureKind, message: str) -> Outcome:
        log.warning("repository_failure", operation=operation, failure=failure.value, error=message)
        return Outcome.fail(failure, message)

    def _live(self, tables, operation: str, work: Callable[[Session], object]) -> LiveQuery:
        async def fetch():
            return await self._call(operation, work)
        return LiveQuery(self._store.tracker, tables, fetch)


# ---------------------- USER ----------------------
class UserRepository(_Repository):
    def __init__(self, store: Store, pwd_context: Optional[CryptContext] = None):
        super().__init__(store)
        self._pwd_context = pwd_context or auth.pwd_context

    async def register(self, user: schemas.UserCreate) -> Outcome:
        def work(db):
            dao = UserDao(db)
            if dao.get_by_username(user.username) is not None:
                raise RepositoryFailure(FailureKind.USERNAME_TAKEN, f"Username {user.username!r} is already taken")
            db_user = models.User(
                username=user.username,
                password_hash=auth.hash_password(user.password, self._pwd_context),
            )
            try:
                dao.insert(db_user)
            except IntegrityError:
                # registered concurrently between the check and the insert
                raise RepositoryFailure(FailureKind.USERNAME_TAKEN, f"Username {user.username!r} is already taken")
            return schemas.UserOut.model_validate(db_user)

        outcome = await self._call("register", work)
        if outcome.ok:
            log.info("user_registered", user_id=outcome.value.id)
        return outcome

    async def login(self, credentials: schemas.UserLogin) -> Outcome:
        def work(db):
            db_user = UserDao(db).get_by_username(credentials.username)
            if db_user is None:
                self._pwd_context.dummy_verify()
            elif auth.verify_password(credentials.password, db_user.password_hash, self._pwd_context):
                return schemas.UserOut.model_validate(db_user)
            raise RepositoryFailure(FailureKind.INVALID_CREDENTIALS, "Invalid username or password")

        return await self._call("login", work)

    async def get(self, user_id: int) -> Outcome:
        return await self._call("get_user", lambda db: schemas.UserOut.model_validate(
            _found(UserDao(db).get(user_id), models.User, user_id)))


# ---------------------- CATEGORY ----------------------
class CategoryRepository(_Repository):
    async def add(self, category: schemas.CategoryCreate) -> Outcome:
        def work(db):
            db_category = models.Category(**category.model_dump())
            CategoryDao(db).insert(db_category)
            return schemas.CategoryOut.model_validate(db_category)

        outcome = await self._call("add_category", work)
        if outcome.ok:
            log.info("category_added", category_id=outcome.value.id)
        return outcome

    async def update(self, category_id: int, updated: schemas.CategoryCreate) -> Outcome:
        def work(db):
            db_category = CategoryDao(db).update(models.Category(id=category_id, **updated.model_dump()))
            return schemas.CategoryOut.model_validate(db_category)

        return await self._call("update_category", work)

    async def delete(self, category_id: int) -> Outcome:
        outcome = await self._call("delete_category", lambda db: CategoryDao(db).delete(category_id))
        if outcome.ok:
            log.info("category_deleted", category_id=category_id)
        return outcome

    async def get(self, category_id: int) -> Outcome:
        return await self._call("get_category", lambda db: schemas.CategoryOut.model_validate(
            _found(CategoryDao(db).get(category_id), models.Category, category_id)))

    def observe_for_user(self, user_id: int) -> LiveQuery:
        def work(db):
            return [schemas.CategoryOut.model_validate(c) for c in CategoryDao(db).list_for_user(user_id)]
        return self._live({models.Category.__tablename__}, "list_categories", work)

    async def list_for_user(self, user_id: int) -> Outcome:
        return await self.observe_for_user(user_id).fetch()


# ---------------------- EXPENSE ----------------------
class ExpenseRepository(_Repository):
    async def add(self, expense: schemas.ExpenseCreate) -> Outcome:
        def work(db):
            db_expense = models.Expense(**expense.model_dump())
            ExpenseDao(db).insert(db_expense)
            return schemas.ExpenseOut.model_validate(db_expense)

        outcome = await self._call("add_expense", work)
        if outcome.ok:
            log.info("expense_added", expense_id=outcome.value.id)
        return outcome

    async def update(self, expense_id: int, updated: schemas.ExpenseCreate) -> Outcome:
        def work(db):
            db_expense = ExpenseDao(db).update(models.Expense(id=expense_id, **updated.model_dump()))
            return schemas.ExpenseOut.model_validate(db_expense)

        return await self._call("update_expense", work)

    async def delete(self, expense_id: int) -> Outcome:
        outcome = await self._call("delete_expense", lambda db: ExpenseDao(db).delete(expense_id))
        if outcome.ok:
            log.info("expense_deleted", expense_id=expense_id)
        return outcome

    async def get(self, expense_id: int) -> Outcome:
        return await self._call("get_expense", lambda db: schemas.ExpenseOut.model_validate(
            _found(ExpenseDao(db).get(expense_id), models.Expense, expense_id)))

    def observe_in_range(self, user_id: int, start: date, end: date) -> LiveQuery:
        def work(db):
            return [schemas.ExpenseOut.model_validate(e) for e in ExpenseDao(db).list_in_range(user_id, start, end)]
        return self._live({models.Expense.__tablename__}, "list_expenses", work)

    async def list_in_range(self, user_id: int, start: date, end: date) -> Outcome:
        return await self.observe_in_range(user_id, start, end).fetch()

    async def total_for_category(self, user_id: int, category_id: int, start: date, end: date) -> Outcome:
        return await self._call(
            "total_for_category",
            lambda db: ExpenseDao(db).total_for_category(user_id, category_id, start, end),
        )


# ---------------------- BUDGET GOAL ----------------------
class BudgetGoalRepository(_Repository):
    async def add(self, goal: schemas.BudgetGoalCreate) -> Outcome:
        """Insert a goal; a second goal for the same month is an integrity violation."""
        def work(db):
            db_goal = models.BudgetGoal(**goal.model_dump())
            BudgetGoalDao(db).insert(db_goal)
            return schemas.BudgetGoalOut.model_validate(db_goal)

        return await self._call("add_goal", work)

    async def set_goal(self, goal: schemas.BudgetGoalCreate) -> Outcome:
        """
        Create the goal for (user, month, year) or replace the existing one.

        Two callers setting the same month concurrently both succeed; the one
        the store commits last wins.
        """
        def work(db):
            dao = BudgetGoalDao(db)
            goal_id = dao.replace(models.BudgetGoal(**goal.model_dump()))
            return schemas.BudgetGoalOut.model_validate(dao.get(goal_id))

        outcome = await self._call("set_goal", work)
        if outcome.ok:
            log.info("goal_set", goal_id=outcome.value.id, month=goal.month, year=goal.year)
        return outcome

    async def get_for_month(self, user_id: int, month: int, year: int) -> Outcome:
        """Goal for the month, or a success carrying None when none is set."""
        def work(db):
            db_goal = BudgetGoalDao(db).get_for_month(user_id, month, year)
            return schemas.BudgetGoalOut.model_validate(db_goal) if db_goal else None

        return await self._call("get_goal", work)

    def observe_for_user(self, user_id: int) -> LiveQuery:
        def work(db):
            return [schemas.BudgetGoalOut.model_validate(g) for g in BudgetGoalDao(db).list_for_user(user_id)]
        return self._live({models.BudgetGoal.__tablename__}, "list_goals", work)

    async def list_for_user(self, user_id: int) -> Outcome:
        return await self.observe_for_user(user_id).fetch()

from datetime import date
from typing import Optional

from sqlalchemy import desc, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import models


class RecordNotFound(LookupError):
    """Update or delete addressed a primary key with no row behind it."""

    def __init__(self, model, record_id):
        super().__init__(f"{model.__name__} {record_id} not found")
        self.model = model
        self.record_id = record_id


class _Dao:
    """Insert / update / delete / get by primary key for one entity table."""

    model = None

    def __init__(self, db: Session):
        self.db = db

    def get(self, record_id: int):
        return self.db.get(self.model, record_id)

    def insert(self, entity) -> int:
        self.db.add(entity)
        self.db.commit()
        self.db.refresh(entity)
        return entity.id

    def update(self, entity):
        """Replace every column of the row with the same primary key."""
        if self.get(entity.id) is None:
            raise RecordNotFound(self.model, entity.id)
        merged = self.db.merge(entity)
        self.db.commit()
        self.db.refresh(merged)
        return merged

    def delete(self, record_id: int) -> None:
        entity = self.get(record_id)
        if entity is None:
            raise RecordNotFound(self.model, record_id)
        self.db.delete(entity)
        self.db.commit()

# ---------------------- USER ----------------------
class UserDao(_Dao):
    model = models.User

    def get_by_username(self, username: str) -> Optional[models.User]:
        return self.db.query(models.User).filter(models.User.username == username).first()

# ---------------------- CATEGORY ----------------------
class CategoryDao(_Dao):
    model = models.Category

    def list_for_user(self, user_id: int):
        return self.db.query(models.Category)\
            .filter(models.Category.user_id == user_id)\
            .all()

# ---------------------- EXPENSE ----------------------
class ExpenseDao(_Dao):
    model = models.Expense

    def list_in_range(self, user_id: int, start: date, end: date):
        """Expenses dated within [start, end], newest first"""
        return self.db.query(models.Expense)\
            .filter(
                models.Expense.user_id == user_id,
                models.Expense.date >= start,
                models.Expense.date <= end
            )\
            .order_by(desc(models.Expense.date), desc(models.Expense.id))\
            .all()

    def total_for_category(self, user_id: int, category_id: int, start: date, end: date) -> float:
        total = self.db.query(func.sum(models.Expense.amount))\
            .filter(
                models.Expense.user_id == user_id,
                models.Expense.category_id == category_id,
                models.Expense.date >= start,
                models.Expense.date <= end
            )\
            .scalar()
        return float(total or 0)

# ---------------------- BUDGET GOAL ----------------------
class BudgetGoalDao(_Dao):
    model = models.BudgetGoal

    def get_for_month(self, user_id: int, month: int, year: int) -> Optional[models.BudgetGoal]:
        return self.db.query(models.BudgetGoal)\
            .filter(
                models.BudgetGoal.user_id == user_id,
                models.BudgetGoal.month == month,
                models.BudgetGoal.year == year
            )\
            .first()

    def list_for_user(self, user_id: int):
        return self.db.query(models.BudgetGoal)\
            .filter(models.BudgetGoal.user_id == user_id)\
            .order_by(desc(models.BudgetGoal.year), desc(models.BudgetGoal.month))\
            .all()

    def replace(self, goal: models.BudgetGoal) -> int:
        """Insert the goal, or overwrite the existing one for the same (user, month, year)."""
        existing = self.get_for_month(goal.user_id, goal.month, goal.year)
        if existing is None:
            try:
                return self.insert(goal)
            except IntegrityError:
                # lost the race against another insert, or the user does not exist
                self.db.rollback()
                existing = self.get_for_month(goal.user_id, goal.month, goal.year)
                if existing is None:
                    raise
        existing.minimum_goal = goal.minimum_goal
        existing.maximum_goal = goal.maximum_goal
        self.db.commit()
        return existing.id

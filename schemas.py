from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# ------------------ User Schemas ------------------

class UserLogin(BaseModel):
    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1)

    @field_validator("username")
    @classmethod
    def strip_username(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("username must not be blank")
        return v

    @field_validator("password")
    @classmethod
    def no_null_bytes(cls, v: str) -> str:
        # bcrypt cannot hash NUL
        if "\x00" in v:
            raise ValueError("password must not contain NUL characters")
        return v

class UserCreate(UserLogin):
    confirm_password: Optional[str] = None

    @model_validator(mode="after")
    def passwords_match(self):
        if self.confirm_password is not None and self.confirm_password != self.password:
            raise ValueError("passwords do not match")
        return self

class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str

class SessionUser(BaseModel):
    user_id: int
    username: str
    logged_in: bool = True

# ------------------ Category Schemas ------------------

class CategoryBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v

class CategoryCreate(CategoryBase):
    user_id: int

class CategoryOut(CategoryCreate):
    model_config = ConfigDict(from_attributes=True)

    id: int

# ------------------ Expense Schemas ------------------

class ExpenseBase(BaseModel):
    amount: float  # sign is not restricted
    description: str = Field("", max_length=200)
    date: date
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    photo_path: Optional[str] = Field(None, max_length=500)
    category_id: int

    @field_validator("start_time", "end_time")
    @classmethod
    def naive_as_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        return v

    @model_validator(mode="after")
    def end_after_start(self):
        if self.start_time and self.end_time and self.end_time < self.start_time:
            raise ValueError("end_time must not be before start_time")
        return self

class ExpenseCreate(ExpenseBase):
    user_id: int

class ExpenseOut(ExpenseCreate):
    model_config = ConfigDict(from_attributes=True)

    id: int

# ------------------ Budget Goal Schemas ------------------

class BudgetGoalBase(BaseModel):
    minimum_goal: float = Field(..., ge=0)
    maximum_goal: float = Field(..., ge=0)

    @model_validator(mode="after")
    def minimum_not_above_maximum(self):
        if self.minimum_goal > self.maximum_goal:
            raise ValueError("minimum_goal must not exceed maximum_goal")
        return self

class BudgetGoalCreate(BudgetGoalBase):
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2001, le=2100)
    user_id: int

class BudgetGoalOut(BudgetGoalCreate):
    model_config = ConfigDict(from_attributes=True)

    id: int

# ------------------ Summary Schemas ------------------

class CategoryTotals(BaseModel):
    """Spend per category id, plus the ids whose total could not be computed."""

    totals: dict[int, float] = {}
    failed: list[int] = []

    @property
    def complete(self) -> bool:
        return not self.failed

class GoalStatus(str, Enum):
    UNDER_MINIMUM = "under_minimum"
    WITHIN_RANGE = "within_range"
    OVER_MAXIMUM = "over_maximum"

class MonthlySummary(BaseModel):
    year: int
    month: int
    start: date
    end: date
    categories: list[CategoryOut] = []
    totals: CategoryTotals
    total_spent: float
    goal: Optional[BudgetGoalOut] = None
    status: Optional[GoalStatus] = None

from sqlalchemy import Column, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from database import Base, EpochDay, EpochMillis


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(100), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)

    # Relationships
    categories = relationship("Category", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
    expenses = relationship("Expense", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
    budget_goals = relationship("BudgetGoal", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)


class Category(Base):
    __tablename__ = "categories"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)  # not unique per user
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # Relationships
    user = relationship("User", back_populates="categories")
    expenses = relationship("Expense", back_populates="category", cascade="all, delete-orphan", passive_deletes=True)


class Expense(Base):
    __tablename__ = "expenses"
    id = Column(Integer, primary_key=True, index=True)
    amount = Column(Float, nullable=False)
    description = Column(String(200), nullable=False, default="")
    date = Column(EpochDay, nullable=False, index=True)
    start_time = Column(EpochMillis, nullable=True)
    end_time = Column(EpochMillis, nullable=True)
    photo_path = Column(String(500), nullable=True)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # Relationships
    category = relationship("Category", back_populates="expenses")
    user = relationship("User", back_populates="expenses")


class BudgetGoal(Base):
    __tablename__ = "budget_goals"
    id = Column(Integer, primary_key=True, index=True)
    minimum_goal = Column(Float, nullable=False)
    maximum_goal = Column(Float, nullable=False)
    month = Column(Integer, nullable=False)  # 1..12
    year = Column(Integer, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    # Relationship
    user = relationship("User", back_populates="budget_goals")

    __table_args__ = (
        UniqueConstraint("user_id", "month", "year", name="uix_user_month_year"),
    )

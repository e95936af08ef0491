import unittest
from datetime import date

import models
import schemas
from aggregation import SpendingAggregator, goal_status, month_bounds
from outcomes import FailureKind, Outcome
from repositories import BudgetGoalRepository, CategoryRepository, ExpenseRepository
from store import Store


class FlakyExpenses:
    """Expense repository stand-in whose sum query fails for some categories."""

    def __init__(self, totals, failing):
        self.totals = totals
        self.failing = failing
        self.calls = []

    async def total_for_category(self, user_id, category_id, start, end):
        self.calls.append(category_id)
        if category_id in self.failing:
            return Outcome.fail(FailureKind.STORAGE_UNAVAILABLE, "database is locked")
        return Outcome.success(self.totals.get(category_id, 0.0))


class TestHelpers(unittest.TestCase):
    def test_month_bounds(self):
        self.assertEqual(month_bounds(2024, 2), (date(2024, 2, 1), date(2024, 2, 29)))
        self.assertEqual(month_bounds(2023, 12), (date(2023, 12, 1), date(2023, 12, 31)))

    def test_goal_status(self):
        goal = schemas.BudgetGoalOut(id=1, minimum_goal=100, maximum_goal=500, month=3, year=2024, user_id=1)
        self.assertIsNone(goal_status(50, None))
        self.assertEqual(goal_status(50, goal), schemas.GoalStatus.UNDER_MINIMUM)
        self.assertEqual(goal_status(100, goal), schemas.GoalStatus.WITHIN_RANGE)
        self.assertEqual(goal_status(500, goal), schemas.GoalStatus.WITHIN_RANGE)
        self.assertEqual(goal_status(500.01, goal), schemas.GoalStatus.OVER_MAXIMUM)


class TestTotalsByCategory(unittest.IsolatedAsyncioTestCase):
    async def test_queries_each_category_once_in_order(self):
        expenses = FlakyExpenses({1: 10.0, 2: 5.5}, failing=set())
        result = await SpendingAggregator(expenses).totals_by_category(1, date(2024, 3, 1), date(2024, 3, 31), [2, 1, 3])
        self.assertEqual(expenses.calls, [2, 1, 3])
        self.assertEqual(result.totals, {2: 5.5, 1: 10.0, 3: 0.0})
        self.assertEqual(list(result.totals), [2, 1, 3])
        self.assertTrue(result.complete)

    async def test_failed_categories_are_reported(self):
        expenses = FlakyExpenses({1: 10.0, 2: 5.5, 3: 1.0}, failing={2})
        result = await SpendingAggregator(expenses).totals_by_category(1, date(2024, 3, 1), date(2024, 3, 31), [1, 2, 3])
        self.assertEqual(result.totals, {1: 10.0, 3: 1.0})
        self.assertEqual(result.failed, [2])
        self.assertFalse(result.complete)


class TestMonthlySummary(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.store = Store("sqlite://")
        self.store.create_all()
        self.categories = CategoryRepository(self.store)
        self.expenses = ExpenseRepository(self.store)
        self.goals = BudgetGoalRepository(self.store)
        self.aggregator = SpendingAggregator(self.expenses, self.categories, self.goals)

        with self.store.session() as db:
            db.add(models.User(id=1, username="alice", password_hash="x"))
            db.commit()
        self.food = (await self.categories.add(schemas.CategoryCreate(name="Food", user_id=1))).value
        self.rent = (await self.categories.add(schemas.CategoryCreate(name="Rent", user_id=1))).value
        for amount, category, day in [
            (12.50, self.food, date(2024, 3, 5)),
            (7.25, self.food, date(2024, 3, 20)),
            (400.0, self.rent, date(2024, 3, 1)),
            (999.0, self.rent, date(2024, 4, 1)),
        ]:
            await self.expenses.add(schemas.ExpenseCreate(
                amount=amount, date=day, category_id=category.id, user_id=1))

    async def asyncTearDown(self):
        self.store.close()

    async def test_summary_without_goal(self):
        outcome = await self.aggregator.monthly_summary(1, 2024, 3)
        self.assertTrue(outcome.ok)
        summary = outcome.value
        self.assertEqual((summary.start, summary.end), (date(2024, 3, 1), date(2024, 3, 31)))
        self.assertAlmostEqual(summary.totals.totals[self.food.id], 19.75)
        self.assertAlmostEqual(summary.totals.totals[self.rent.id], 400.0)
        self.assertAlmostEqual(summary.total_spent, 419.75)
        self.assertIsNone(summary.goal)
        self.assertIsNone(summary.status)

    async def test_summary_against_goal(self):
        await self.goals.set_goal(schemas.BudgetGoalCreate(
            minimum_goal=100, maximum_goal=400, month=3, year=2024, user_id=1))
        summary = (await self.aggregator.monthly_summary(1, 2024, 3)).value
        self.assertEqual(summary.goal.maximum_goal, 400)
        self.assertEqual(summary.status, schemas.GoalStatus.OVER_MAXIMUM)

    async def test_summary_fails_when_store_is_closed(self):
        self.store.close()
        outcome = await self.aggregator.monthly_summary(1, 2024, 3)
        self.assertEqual(outcome.failure, FailureKind.STORAGE_UNAVAILABLE)


if __name__ == "__main__":
    unittest.main()

import calendar
from datetime import date
from typing import Iterable, Optional

import schemas
from logger import get_logger
from outcomes import Outcome
from repositories import BudgetGoalRepository, CategoryRepository, ExpenseRepository

log = get_logger(__name__)


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """First and last day of the month."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def goal_status(total: float, goal: Optional[schemas.BudgetGoalOut]) -> Optional[schemas.GoalStatus]:
    if goal is None:
        return None
    if total < goal.minimum_goal:
        return schemas.GoalStatus.UNDER_MINIMUM
    if total > goal.maximum_goal:
        return schemas.GoalStatus.OVER_MAXIMUM
    return schemas.GoalStatus.WITHIN_RANGE


class SpendingAggregator:
    def __init__(
        self,
        expenses: ExpenseRepository,
        categories: Optional[CategoryRepository] = None,
        goals: Optional[BudgetGoalRepository] = None,
    ):
        self._expenses = expenses
        self._categories = categories
        self._goals = goals

    async def totals_by_category(
        self,
        user_id: int,
        start: date,
        end: date,
        category_ids: Iterable[int],
    ) -> schemas.CategoryTotals:
        """
        Sum the user's spend in [start, end] for each category, one query per category.

        A category whose query fails is listed in ``failed`` and left out of
        ``totals``; the other categories are still computed.
        """
        result = schemas.CategoryTotals()
        for category_id in category_ids:
            outcome = await self._expenses.total_for_category(user_id, category_id, start, end)
            if outcome.ok:
                result.totals[category_id] = outcome.value
            else:
                result.failed.append(category_id)
        if result.failed:
            log.warning("category_totals_incomplete", user_id=user_id, failed=result.failed)
        return result

    async def monthly_summary(self, user_id: int, year: int, month: int) -> Outcome:
        """Spend per category for the month compared against the month's goal."""
        start, end = month_bounds(year, month)

        categories = await self._categories.list_for_user(user_id)
        if not categories.ok:
            return categories
        goal = await self._goals.get_for_month(user_id, month, year)
        if not goal.ok:
            return goal

        totals = await self.totals_by_category(user_id, start, end, [c.id for c in categories.value])
        total_spent = sum(totals.totals.values())
        return Outcome.success(schemas.MonthlySummary(
            year=year,
            month=month,
            start=start,
            end=end,
            categories=categories.value,
            totals=totals,
            total_spent=total_spent,
            goal=goal.value,
            status=goal_status(total_spent, goal.value),
        ))

import unittest
from datetime import date, datetime, timezone

from passlib.context import CryptContext

import models
import schemas
from outcomes import FailureKind
from repositories import BudgetGoalRepository, CategoryRepository, ExpenseRepository, UserRepository
from store import Store

# Cheap hashes keep the suite fast
FAST_PWD_CONTEXT = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=4)


class RepositoryTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = Store("sqlite://")
        self.store.create_all()
        self.users = UserRepository(self.store, FAST_PWD_CONTEXT)
        self.categories = CategoryRepository(self.store)
        self.expenses = ExpenseRepository(self.store)
        self.goals = BudgetGoalRepository(self.store)

    def tearDown(self):
        self.store.close()

    async def register(self, username="alice", password="pw1"):
        outcome = await self.users.register(schemas.UserCreate(username=username, password=password))
        self.assertTrue(outcome.ok, outcome.message)
        return outcome.value

    async def add_category(self, user_id, name="Food"):
        outcome = await self.categories.add(schemas.CategoryCreate(name=name, user_id=user_id))
        self.assertTrue(outcome.ok, outcome.message)
        return outcome.value

    async def add_expense(self, user_id, category_id, amount, day, **extra):
        outcome = await self.expenses.add(schemas.ExpenseCreate(
            amount=amount, date=day, category_id=category_id, user_id=user_id, **extra))
        self.assertTrue(outcome.ok, outcome.message)
        return outcome.value


class TestUserRepository(RepositoryTestCase):
    async def test_register_returns_user(self):
        user = await self.register()
        self.assertEqual(user.id, 1)
        self.assertEqual(user.username, "alice")

    async def test_password_is_stored_hashed(self):
        await self.register(password="pw1")
        with self.store.session() as db:
            stored = db.query(models.User).one().password_hash
        self.assertNotEqual(stored, "pw1")
        self.assertTrue(FAST_PWD_CONTEXT.verify("pw1", stored))

    async def test_register_twice_fails_with_username_taken(self):
        await self.register()
        outcome = await self.users.register(schemas.UserCreate(username="alice", password="other"))
        self.assertFalse(outcome.ok)
        self.assertEqual(outcome.failure, FailureKind.USERNAME_TAKEN)
        with self.store.session() as db:
            self.assertEqual(db.query(models.User).count(), 1)

    async def test_login_with_correct_credentials(self):
        user = await self.register()
        outcome = await self.users.login(schemas.UserLogin(username="alice", password="pw1"))
        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.value, user)

    async def test_wrong_password_and_unknown_user_fail_the_same_way(self):
        await self.register()
        wrong_password = await self.users.login(schemas.UserLogin(username="alice", password="nope"))
        unknown_user = await self.users.login(schemas.UserLogin(username="bob", password="pw1"))
        self.assertEqual(wrong_password.failure, FailureKind.INVALID_CREDENTIALS)
        self.assertEqual(unknown_user.failure, FailureKind.INVALID_CREDENTIALS)
        self.assertEqual(wrong_password.message, unknown_user.message)

    async def test_unhashable_password_on_register_becomes_an_outcome(self):
        # built without validation so the hashing error reaches the repository
        user = schemas.UserCreate.model_construct(username="alice", password="p\x00w", confirm_password=None)
        outcome = await self.users.register(user)
        self.assertFalse(outcome.ok)
        self.assertEqual(outcome.failure, FailureKind.STORAGE_UNAVAILABLE)
        with self.store.session() as db:
            self.assertEqual(db.query(models.User).count(), 0)

    async def test_unhashable_password_on_login_becomes_an_outcome(self):
        await self.register()
        credentials = schemas.UserLogin.model_construct(username="alice", password="p\x00w")
        outcome = await self.users.login(credentials)
        self.assertFalse(outcome.ok)
        self.assertEqual(outcome.failure, FailureKind.STORAGE_UNAVAILABLE)

    async def test_get_missing_user(self):
        outcome = await self.users.get(7)
        self.assertEqual(outcome.failure, FailureKind.NOT_FOUND)


class TestValidation(unittest.TestCase):
    def test_mismatched_confirmation_is_rejected(self):
        with self.assertRaises(ValueError):
            schemas.UserCreate(username="alice", password="pw1", confirm_password="pw2")

    def test_blank_username_is_rejected(self):
        with self.assertRaises(ValueError):
            schemas.UserCreate(username="   ", password="pw1")

    def test_empty_password_is_rejected(self):
        with self.assertRaises(ValueError):
            schemas.UserLogin(username="alice", password="")

    def test_password_with_nul_is_rejected(self):
        with self.assertRaises(ValueError):
            schemas.UserCreate(username="alice", password="p\x00w")
        with self.assertRaises(ValueError):
            schemas.UserLogin(username="alice", password="p\x00w")

    def test_blank_category_name_is_rejected(self):
        with self.assertRaises(ValueError):
            schemas.CategoryCreate(name="   ", user_id=1)
        self.assertEqual(schemas.CategoryCreate(name="  Food ", user_id=1).name, "Food")

    def test_naive_and_aware_times_are_compared_as_utc(self):
        expense = schemas.ExpenseBase(
            amount=1.0, date=date(2024, 3, 5), category_id=1,
            start_time="2024-03-05T08:00:00", end_time="2024-03-05T09:00:00Z",
        )
        self.assertEqual(expense.start_time, datetime(2024, 3, 5, 8, tzinfo=timezone.utc))
        with self.assertRaises(ValueError):
            schemas.ExpenseBase(
                amount=1.0, date=date(2024, 3, 5), category_id=1,
                start_time="2024-03-05T10:00:00", end_time="2024-03-05T09:00:00Z",
            )

    def test_goal_minimum_above_maximum_is_rejected(self):
        with self.assertRaises(ValueError):
            schemas.BudgetGoalCreate(minimum_goal=500, maximum_goal=100, month=3, year=2024, user_id=1)

    def test_goal_month_out_of_range_is_rejected(self):
        with self.assertRaises(ValueError):
            schemas.BudgetGoalCreate(minimum_goal=1, maximum_goal=2, month=13, year=2024, user_id=1)


class TestCategoryRepository(RepositoryTestCase):
    async def test_get_missing_category_is_not_found(self):
        outcome = await self.categories.get(99)
        self.assertFalse(outcome.ok)
        self.assertEqual(outcome.failure, FailureKind.NOT_FOUND)

    async def test_add_for_unknown_user_is_integrity_violation(self):
        outcome = await self.categories.add(schemas.CategoryCreate(name="Food", user_id=99))
        self.assertEqual(outcome.failure, FailureKind.INTEGRITY_VIOLATION)

    async def test_update_and_delete(self):
        user = await self.register()
        category = await self.add_category(user.id)

        updated = await self.categories.update(category.id, schemas.CategoryCreate(name="Groceries", user_id=user.id))
        self.assertEqual(updated.value.name, "Groceries")

        self.assertTrue((await self.categories.delete(category.id)).ok)
        self.assertEqual((await self.categories.get(category.id)).failure, FailureKind.NOT_FOUND)

    async def test_renaming_category_keeps_its_expenses(self):
        user = await self.register()
        category = await self.add_category(user.id, "Food")
        expense = await self.add_expense(user.id, category.id, 4.0, date(2024, 3, 5))

        await self.categories.update(category.id, schemas.CategoryCreate(name="Groceries", user_id=user.id))

        fetched = await self.expenses.get(expense.id)
        self.assertTrue(fetched.ok)
        self.assertEqual(fetched.value.category_id, category.id)

    async def test_update_missing_category_is_not_found(self):
        user = await self.register()
        outcome = await self.categories.update(5, schemas.CategoryCreate(name="Ghost", user_id=user.id))
        self.assertEqual(outcome.failure, FailureKind.NOT_FOUND)

    async def test_delete_missing_category_is_not_found(self):
        outcome = await self.categories.delete(5)
        self.assertEqual(outcome.failure, FailureKind.NOT_FOUND)

    async def test_list_only_returns_own_categories(self):
        alice = await self.register("alice")
        bob = await self.register("bob")
        await self.add_category(alice.id, "Food")
        await self.add_category(alice.id, "Rent")
        await self.add_category(bob.id, "Games")

        outcome = await self.categories.list_for_user(alice.id)
        self.assertEqual(sorted(c.name for c in outcome.value), ["Food", "Rent"])


class TestExpenseRepository(RepositoryTestCase):
    async def test_month_scenario(self):
        user = await self.register("alice", "pw1")
        category = await self.add_category(user.id, "Food")
        self.assertEqual((user.id, category.id), (1, 1))
        d1, d2 = date(2024, 3, 5), date(2024, 3, 20)
        first = await self.add_expense(user.id, category.id, 12.50, d1)
        second = await self.add_expense(user.id, category.id, 7.25, d2)

        total = await self.expenses.total_for_category(user.id, category.id, date(2024, 3, 1), date(2024, 3, 31))
        self.assertAlmostEqual(total.value, 19.75)

        listed = await self.expenses.list_in_range(user.id, date(2024, 3, 1), date(2024, 3, 31))
        self.assertEqual([e.id for e in listed.value], [second.id, first.id])

    async def test_total_with_no_expenses_is_zero(self):
        user = await self.register()
        category = await self.add_category(user.id)
        total = await self.expenses.total_for_category(user.id, category.id, date(2024, 1, 1), date(2024, 1, 31))
        self.assertTrue(total.ok)
        self.assertEqual(total.value, 0.0)

    async def test_optional_fields_round_trip(self):
        user = await self.register()
        category = await self.add_category(user.id)
        expense = await self.add_expense(
            user.id, category.id, 3.0, date(2024, 3, 5),
            description="coffee", photo_path="/photos/receipt.jpg",
        )
        fetched = await self.expenses.get(expense.id)
        self.assertEqual(fetched.value.photo_path, "/photos/receipt.jpg")
        self.assertEqual(fetched.value.description, "coffee")
        self.assertIsNone(fetched.value.start_time)

    async def test_update_missing_expense_is_not_found(self):
        user = await self.register()
        category = await self.add_category(user.id)
        outcome = await self.expenses.update(3, schemas.ExpenseCreate(
            amount=1.0, date=date(2024, 3, 5), category_id=category.id, user_id=user.id))
        self.assertEqual(outcome.failure, FailureKind.NOT_FOUND)

    async def test_expense_with_unknown_category_is_integrity_violation(self):
        user = await self.register()
        outcome = await self.expenses.add(schemas.ExpenseCreate(
            amount=1.0, date=date(2024, 3, 5), category_id=12, user_id=user.id))
        self.assertEqual(outcome.failure, FailureKind.INTEGRITY_VIOLATION)

    async def test_deleting_category_removes_its_expenses(self):
        user = await self.register()
        category = await self.add_category(user.id)
        expense = await self.add_expense(user.id, category.id, 5.0, date(2024, 3, 5))

        await self.categories.delete(category.id)
        self.assertEqual((await self.expenses.get(expense.id)).failure, FailureKind.NOT_FOUND)


class TestBudgetGoalRepository(RepositoryTestCase):
    def goal(self, user_id, minimum, maximum, month=3, year=2024):
        return schemas.BudgetGoalCreate(
            minimum_goal=minimum, maximum_goal=maximum, month=month, year=year, user_id=user_id)

    async def test_setting_goal_twice_keeps_latest(self):
        user = await self.register()
        await self.goals.set_goal(self.goal(user.id, 100, 500))
        latest = await self.goals.set_goal(self.goal(user.id, 150, 450))
        self.assertTrue(latest.ok)

        goals = await self.goals.list_for_user(user.id)
        self.assertEqual(len(goals.value), 1)
        self.assertEqual((goals.value[0].minimum_goal, goals.value[0].maximum_goal), (150, 450))

    async def test_add_duplicate_goal_is_integrity_violation(self):
        user = await self.register()
        await self.goals.add(self.goal(user.id, 100, 500))
        outcome = await self.goals.add(self.goal(user.id, 200, 600))
        self.assertEqual(outcome.failure, FailureKind.INTEGRITY_VIOLATION)

    async def test_get_for_month_without_goal(self):
        user = await self.register()
        outcome = await self.goals.get_for_month(user.id, 3, 2024)
        self.assertTrue(outcome.ok)
        self.assertIsNone(outcome.value)


class TestStoreUnavailable(RepositoryTestCase):
    async def test_closed_store_reports_storage_unavailable(self):
        self.store.close()
        outcome = await self.categories.list_for_user(1)
        self.assertFalse(outcome.ok)
        self.assertEqual(outcome.failure, FailureKind.STORAGE_UNAVAILABLE)


if __name__ == "__main__":
    unittest.main()

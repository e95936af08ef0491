import unittest
from datetime import date

from fastapi.testclient import TestClient

from config import Settings
from main import create_app
from store import Store

TEST_SETTINGS = Settings(
    database_url="sqlite://",
    session_secret="test-secret",
    bcrypt_rounds=4,
    log_json=False,
    log_level="WARNING",
)


class TestFinanceTrackerApi(unittest.TestCase):
    def setUp(self):
        """Fresh in-memory store and a logged-in test user for each test"""
        self.store = Store(TEST_SETTINGS.database_url)
        self.app = create_app(TEST_SETTINGS, store=self.store)
        self.client = TestClient(self.app)
        self.client.__enter__()

        response = self.client.post("/register", json={
            "username": "testuser",
            "password": "testpassword",
            "confirm_password": "testpassword",
        })
        self.assertEqual(response.status_code, 201)
        self.user_id = response.json()["id"]
        response = self.client.post("/login", json={"username": "testuser", "password": "testpassword"})
        self.assertEqual(response.status_code, 200)

    def tearDown(self):
        self.client.__exit__(None, None, None)
        self.store.close()

    def add_category(self, name="Food"):
        response = self.client.post("/categories", json={"name": name})
        self.assertEqual(response.status_code, 201)
        return response.json()

    def add_expense(self, category_id, amount, day, **extra):
        response = self.client.post("/expenses", json={
            "amount": amount, "date": day, "category_id": category_id, **extra})
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()

    # ---------------------- auth ----------------------

    def test_session_holds_logged_in_user(self):
        response = self.client.get("/me")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"user_id": self.user_id, "username": "testuser", "logged_in": True})

    def test_register_existing_user(self):
        response = self.client.post("/register", json={"username": "testuser", "password": "other"})
        self.assertEqual(response.status_code, 400)

    def test_register_mismatched_passwords(self):
        response = self.client.post("/register", json={
            "username": "newuser", "password": "a", "confirm_password": "b"})
        self.assertEqual(response.status_code, 422)

    def test_register_password_with_nul(self):
        response = self.client.post("/register", json={"username": "newuser", "password": "p\u0000w"})
        self.assertEqual(response.status_code, 422)

    def test_failed_login(self):
        wrong_password = self.client.post("/login", json={"username": "testuser", "password": "wrong"})
        unknown_user = self.client.post("/login", json={"username": "nobody", "password": "wrong"})
        self.assertEqual(wrong_password.status_code, 401)
        self.assertEqual(unknown_user.status_code, 401)
        self.assertEqual(wrong_password.json(), unknown_user.json())

    def test_logout(self):
        response = self.client.get("/logout")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get("/me").status_code, 401)
        self.assertEqual(self.client.get("/categories").status_code, 401)

    # ---------------------- categories ----------------------

    def test_category_crud(self):
        category = self.add_category("Food")
        self.assertEqual(category["user_id"], self.user_id)

        response = self.client.put(f"/categories/{category['id']}", json={"name": "Groceries"})
        self.assertEqual(response.json()["name"], "Groceries")

        self.assertEqual([c["name"] for c in self.client.get("/categories").json()], ["Groceries"])

        response = self.client.delete(f"/categories/{category['id']}")
        self.assertEqual(response.status_code, 204)
        self.assertEqual(self.client.get(f"/categories/{category['id']}").status_code, 404)

    def test_blank_category_name_is_rejected(self):
        response = self.client.post("/categories", json={"name": "   "})
        self.assertEqual(response.status_code, 422)
        self.assertEqual(self.client.get("/categories").json(), [])

    def test_other_users_category_is_hidden(self):
        category = self.add_category("Food")
        other = TestClient(self.app)
        other.post("/register", json={"username": "intruder", "password": "pw"})
        other.post("/login", json={"username": "intruder", "password": "pw"})

        self.assertEqual(other.get(f"/categories/{category['id']}").status_code, 404)
        self.assertEqual(other.delete(f"/categories/{category['id']}").status_code, 404)
        self.assertEqual(other.get("/categories").json(), [])

    # ---------------------- expenses ----------------------

    def test_expenses_in_range_newest_first(self):
        category = self.add_category()
        first = self.add_expense(category["id"], 12.50, "2024-03-05")
        second = self.add_expense(category["id"], 7.25, "2024-03-20", description="dinner")
        self.add_expense(category["id"], 50.0, "2024-04-02")

        response = self.client.get("/expenses", params={"start": "2024-03-01", "end": "2024-03-31"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual([e["id"] for e in response.json()], [second["id"], first["id"]])

    def test_expense_with_times_and_photo(self):
        category = self.add_category()
        expense = self.add_expense(
            category["id"], 3.0, "2024-03-05",
            start_time="2024-03-05T08:00:00Z",
            end_time="2024-03-05T08:30:00Z",
            photo_path="/photos/receipt.jpg",
        )
        fetched = self.client.get(f"/expenses/{expense['id']}").json()
        self.assertEqual(fetched["photo_path"], "/photos/receipt.jpg")
        self.assertEqual(fetched["date"], "2024-03-05")
        self.assertTrue(fetched["start_time"].startswith("2024-03-05T08:00:00"))

    def test_expense_end_before_start_is_rejected(self):
        category = self.add_category()
        response = self.client.post("/expenses", json={
            "amount": 1.0, "date": "2024-03-05", "category_id": category["id"],
            "start_time": "2024-03-05T09:00:00Z", "end_time": "2024-03-05T08:00:00Z",
        })
        self.assertEqual(response.status_code, 422)

    def test_expense_for_unknown_category(self):
        response = self.client.post("/expenses", json={"amount": 1.0, "date": "2024-03-05", "category_id": 77})
        self.assertEqual(response.status_code, 404)

    def test_edit_and_delete_expense(self):
        category = self.add_category()
        expense = self.add_expense(category["id"], 100.0, str(date.today()), description="Test expense")

        response = self.client.put(f"/expenses/{expense['id']}", json={
            "amount": 150.0,
            "date": str(date.today()),
            "category_id": category["id"],
            "description": "Updated test expense",
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["amount"], 150.0)
        self.assertEqual(response.json()["description"], "Updated test expense")

        self.assertEqual(self.client.delete(f"/expenses/{expense['id']}").status_code, 204)
        self.assertEqual(self.client.get(f"/expenses/{expense['id']}").status_code, 404)

    # ---------------------- goals & summary ----------------------

    def test_set_goal_twice_keeps_latest(self):
        self.client.put("/goals/2024/3", json={"minimum_goal": 100, "maximum_goal": 500})
        response = self.client.put("/goals/2024/3", json={"minimum_goal": 200, "maximum_goal": 600})
        self.assertEqual(response.status_code, 200)

        goals = self.client.get("/goals").json()
        self.assertEqual(len(goals), 1)
        self.assertEqual((goals[0]["minimum_goal"], goals[0]["maximum_goal"]), (200, 600))
        self.assertEqual(self.client.get("/goals/2024/3").json()["id"], goals[0]["id"])

    def test_goal_validation(self):
        response = self.client.put("/goals/2024/13", json={"minimum_goal": 1, "maximum_goal": 2})
        self.assertEqual(response.status_code, 422)
        response = self.client.put("/goals/2024/3", json={"minimum_goal": 5, "maximum_goal": 2})
        self.assertEqual(response.status_code, 422)
        self.assertEqual(self.client.get("/goals/2024/3").status_code, 404)

    def test_summary_page(self):
        food = self.add_category("Food")
        self.add_expense(food["id"], 12.50, "2024-03-05")
        self.add_expense(food["id"], 7.25, "2024-03-20")
        self.client.put("/goals/2024/3", json={"minimum_goal": 10, "maximum_goal": 100})

        response = self.client.get("/summary", params={"year": 2024, "month": 3})
        self.assertEqual(response.status_code, 200)
        summary = response.json()
        self.assertEqual(summary["totals"]["totals"], {str(food["id"]): 19.75})
        self.assertEqual(summary["totals"]["failed"], [])
        self.assertEqual(summary["total_spent"], 19.75)
        self.assertEqual(summary["status"], "within_range")

    def test_range_totals_for_empty_category(self):
        food = self.add_category("Food")
        response = self.client.get("/summary/range", params={
            "start": "2024-03-01", "end": "2024-03-31", "category_ids": [food["id"]]})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["totals"], {str(food["id"]): 0.0})


class TestAppFactory(unittest.TestCase):
    def test_importing_main_opens_no_store(self):
        import main
        self.assertIsNone(main.app.state.store)

    def test_lifespan_opens_and_closes_its_own_store(self):
        app = create_app(TEST_SETTINGS)
        with TestClient(app) as client:
            store = app.state.store
            self.assertIsInstance(store, Store)
            response = client.post("/register", json={"username": "alice", "password": "pw1"})
            self.assertEqual(response.status_code, 201)
        self.assertIsNone(app.state.store)
        self.assertTrue(store.closed)


if __name__ == "__main__":
    unittest.main()

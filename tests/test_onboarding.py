from __future__ import annotations

from datetime import date

from conftest import make_user
from finboard import models
from finboard.services.onboarding_service import OnboardingService


def test_bulk_create_and_reactivate_categories(client, db_session, demo_user):
    dining = client.post("/api/categories", json={"name": "Dining", "type": "EXPENSE"}).json()["category"]
    client.post(f"/api/categories/{dining['id']}/archive")

    res = client.post(
        "/api/categories/bulk",
        json={
            "categories": [
                {"name": " Groceries ", "type": "EXPENSE", "color": "#84cc16"},
                {"name": "Dining", "type": "EXPENSE", "color": "#f97316"},
                {"name": "Salary", "type": "INCOME"},
            ]
        },
    )
    assert res.status_code == 201, res.text
    body = res.json()
    assert body["categories_created"] == 3
    by_name = {c["name"]: c for c in body["categories"]}
    assert set(by_name) == {"Groceries", "Dining", "Salary"}
    assert by_name["Dining"]["id"] == dining["id"]
    assert by_name["Dining"]["is_archived"] is False
    assert by_name["Dining"]["color"] == "#f97316"

    rows = db_session.query(models.Category).filter(models.Category.user_id == demo_user.id).count()
    assert rows == 3


def test_bulk_categories_input_is_checked(client, db_session):
    empty = client.post("/api/categories/bulk", json={"categories": []})
    assert empty.status_code == 422
    assert "categories" in empty.json()["error"]

    short = client.post("/api/categories/bulk", json={"categories": [{"name": "A", "type": "EXPENSE"}]})
    assert short.status_code == 422
    assert db_session.query(models.Category).count() == 0


def test_quick_budget_shows_on_dashboard(client, demo_account):
    groceries = client.post("/api/categories", json={"name": "Groceries", "type": "EXPENSE"}).json()["category"]
    assert client.get("/api/dashboard", params={"month": "2026-02"}).json()["budgets"] == []

    res = client.post(
        "/api/budgets/quick",
        json={"account_id": demo_account.id, "category_id": groceries["id"], "month_key": "2026-02", "planned": 400},
    )
    assert res.status_code == 201
    assert res.json() == {"ok": True}

    [budget] = client.get("/api/dashboard", params={"month": "2026-02"}).json()["budgets"]
    assert budget["planned"] == 400.0

    again = client.post(
        "/api/budgets/quick",
        json={"account_id": demo_account.id, "category_id": groceries["id"], "month_key": "2026-02", "planned": 250},
    )
    assert again.status_code == 201
    [budget] = client.get("/api/dashboard", params={"month": "2026-02"}).json()["budgets"]
    assert budget["planned"] == 250.0


def test_quick_budget_rejects_other_users_rows(client, db_session, demo_account):
    stranger = make_user(db_session, "stranger@example.com")
    their_account = db_session.query(models.Account).filter(models.Account.user_id == stranger.id).one()
    their_category = models.Category(user_id=stranger.id, name="Rent", type=models.TxnType.EXPENSE)
    db_session.add(their_category)
    db_session.commit()
    mine = client.post("/api/categories", json={"name": "Groceries", "type": "EXPENSE"}).json()["category"]

    wrong_account = client.post(
        "/api/budgets/quick",
        json={"account_id": their_account.id, "category_id": mine["id"], "month_key": "2026-02", "planned": 100},
    )
    assert wrong_account.status_code == 403
    assert wrong_account.json()["error"] == {"account_id": ["Account not found or access denied"]}

    wrong_category = client.post(
        "/api/budgets/quick",
        json={"account_id": demo_account.id, "category_id": their_category.id, "month_key": "2026-02", "planned": 100},
    )
    assert wrong_category.status_code == 403
    assert wrong_category.json()["error"] == {"category_id": ["Category not found or access denied"]}
    assert db_session.query(models.Budget).count() == 0


def test_seed_sample_data(client, db_session, demo_user, demo_account):
    res = client.post("/api/seed-data")
    assert res.status_code == 201, res.text
    assert res.json() == {"categories_created": 10, "transactions_created": 2, "budgets_created": 1}

    categories = client.get("/api/categories").json()
    assert len(categories) == 10
    assert {c["name"] for c in categories if c["type"] == "INCOME"} == {
        "Salary",
        "Freelance",
        "Investments",
        "Other Income",
    }

    txns = db_session.query(models.Transaction).filter(models.Transaction.account_id == demo_account.id).all()
    assert sorted(float(t.amount) for t in txns) == [85.5, 3500.0]
    [budget] = db_session.query(models.Budget).all()
    assert float(budget.planned) == 400.0

    # Running it again reuses the categories and keeps the budget
    budget.planned = 300
    db_session.commit()
    again = client.post("/api/seed-data")
    assert again.json()["categories_created"] == 10
    assert db_session.query(models.Category).filter(models.Category.user_id == demo_user.id).count() == 10
    db_session.refresh(budget)
    assert float(budget.planned) == 300.0


def test_seed_sample_data_builds_a_dashboard_month(client, db_session, demo_user):
    OnboardingService(db_session).seed_sample_data(demo_user, today=date(2026, 2, 10))

    data = client.get("/api/dashboard", params={"month": "2026-02"}).json()
    assert data["actual_income"] == 3500.0
    [budget] = data["budgets"]
    assert budget["planned"] == 400.0
    assert budget["actual"] == 85.5
    assert {t["description"] for t in data["transactions"]} == {"Weekly grocery shopping", "Monthly salary"}


def test_seed_sample_data_needs_an_account(client, db_session, demo_account):
    demo_account.deleted_at = models.utcnow_naive()
    db_session.commit()

    res = client.post("/api/seed-data")
    assert res.status_code == 403
    assert res.json()["detail"] == "No account found. Please create an account first."
    assert db_session.query(models.Category).count() == 0

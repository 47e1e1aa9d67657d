from __future__ import annotations

from conftest import make_user
from finboard import models


def _category(client, name: str, type: str) -> dict:
    res = client.post("/api/categories", json={"name": name, "type": type})
    assert res.status_code in (200, 201)
    return res.json()["category"]


def _txn(client, account_id: int, category_id: int, **overrides) -> dict:
    body = {
        "account_id": account_id,
        "category_id": category_id,
        "type": "EXPENSE",
        "amount": 12.5,
        "currency": "USD",
        "date": "2026-02-10",
    }
    body.update(overrides)
    res = client.post("/api/transactions", json=body)
    assert res.status_code == 201, res.text
    return res.json()


def test_create_list_update_delete(client, demo_account):
    cat = _category(client, "Coffee", "EXPENSE")
    created = _txn(client, demo_account.id, cat["id"], amount=4.755, description="Flat white")
    assert created["amount"] == 4.76
    assert created["month"] == "2026-02-01"
    assert created["month_key"] == "2026-02"

    feb = client.get("/api/transactions", params={"month": "2026-02"}).json()
    assert [t["id"] for t in feb] == [created["id"]]

    moved = client.patch(
        f"/api/transactions/{created['id']}",
        json={
            "account_id": demo_account.id,
            "category_id": cat["id"],
            "type": "EXPENSE",
            "amount": 5,
            "currency": "USD",
            "date": "2026-03-02",
        },
    )
    assert moved.status_code == 200
    assert moved.json()["month_key"] == "2026-03"
    assert client.get("/api/transactions", params={"month": "2026-02"}).json() == []

    assert client.delete(f"/api/transactions/{created['id']}").status_code == 204
    assert client.get("/api/transactions").json() == []
    assert client.delete(f"/api/transactions/{created['id']}").status_code == 404


def test_amount_and_description_limits(client, demo_account):
    cat = _category(client, "Misc", "EXPENSE")
    res = client.post(
        "/api/transactions",
        json={
            "account_id": demo_account.id,
            "category_id": cat["id"],
            "type": "EXPENSE",
            "amount": 0,
            "date": "2026-02-01",
            "description": "x" * 241,
        },
    )
    assert res.status_code == 422
    errors = res.json()["error"]
    assert "amount" in errors
    assert "description" in errors


def test_recurring_transaction_creates_template(client, demo_account):
    cat = _category(client, "Rent", "EXPENSE")
    created = _txn(client, demo_account.id, cat["id"], amount=1200, date="2026-02-03", is_recurring=True)
    assert created["recurring_template_id"] is not None

    templates = client.get("/api/recurring-templates").json()
    assert len(templates) == 1
    assert templates[0]["id"] == created["recurring_template_id"]
    assert templates[0]["day_of_month"] == 3
    assert templates[0]["start_month"] == "2026-02-01"

    applied = client.post(
        "/api/recurring-templates/apply", json={"account_id": demo_account.id, "month_key": "2026-02"}
    )
    assert applied.json() == {"created": 0}


def test_unknown_category_is_not_found(client, demo_account):
    res = client.post(
        "/api/transactions",
        json={
            "account_id": demo_account.id,
            "category_id": 4242,
            "type": "EXPENSE",
            "amount": 1,
            "date": "2026-02-01",
        },
    )
    assert res.status_code == 404


def test_request_approve_books_expense_for_recipient(client, db_session, demo_account, act_as, demo_user):
    friend = make_user(db_session, "friend@example.com")
    act_as(friend)
    cat = _category(client, "Dinner", "EXPENSE")
    req = client.post(
        "/api/transaction-requests",
        json={"to_id": demo_account.id, "category_id": cat["id"], "amount": 25, "date": "2026-02-14"},
    )
    assert req.status_code == 201
    request = req.json()
    assert request["status"] == "PENDING"

    # Only the recipient decides
    assert client.post(f"/api/transaction-requests/{request['id']}/approve").status_code == 403

    act_as(demo_user)
    dashboard = client.get("/api/dashboard", params={"month": "2026-02"}).json()
    assert [r["id"] for r in dashboard["transaction_requests"]] == [request["id"]]

    approved = client.post(f"/api/transaction-requests/{request['id']}/approve")
    assert approved.status_code == 200
    assert approved.json()["status"] == "APPROVED"

    txns = client.get("/api/transactions", params={"account_id": demo_account.id}).json()
    assert len(txns) == 1
    assert txns[0]["type"] == "EXPENSE"
    assert txns[0]["amount"] == 25.0

    again = client.post(f"/api/transaction-requests/{request['id']}/reject")
    assert again.status_code == 400
    assert again.json()["error"] == {"status": ["Request is already approved"]}


def test_request_reject_and_missing(client, db_session, demo_account, act_as, demo_user):
    friend = make_user(db_session, "friend@example.com")
    act_as(friend)
    cat = _category(client, "Tickets", "EXPENSE")
    request = client.post(
        "/api/transaction-requests",
        json={"to_id": demo_account.id, "category_id": cat["id"], "amount": 10, "date": "2026-02-01"},
    ).json()

    act_as(demo_user)
    rejected = client.post(f"/api/transaction-requests/{request['id']}/reject")
    assert rejected.json()["status"] == "REJECTED"
    assert client.get("/api/transactions").json() == []

    missing = client.post("/api/transaction-requests/9999/approve")
    assert missing.status_code == 404
    assert missing.json()["detail"] == "Transaction request not found"


def test_request_needs_a_self_account(client, db_session, demo_account, act_as):
    loner = models.User(email="loner@example.com")
    db_session.add(loner)
    db_session.flush()
    db_session.add(
        models.Subscription(user_id=loner.id, status=models.SubscriptionStatus.PAST_DUE)
    )
    db_session.add(models.Account(user_id=loner.id, name="Shared", type=models.AccountType.JOINT))
    db_session.commit()
    act_as(loner)
    cat = _category(client, "Lunch", "EXPENSE")

    res = client.post(
        "/api/transaction-requests",
        json={"to_id": demo_account.id, "category_id": cat["id"], "amount": 10, "date": "2026-02-01"},
    )
    assert res.status_code == 400
    assert res.json()["detail"] == "Unable to identify your primary account"


def test_set_balance_books_the_difference(client, demo_account):
    salary = _category(client, "Salary", "INCOME")
    _txn(client, demo_account.id, salary["id"], type="INCOME", amount=100, date="2026-02-01")

    up = client.post(
        "/api/balance-adjustments",
        json={"account_id": demo_account.id, "target_balance": 250, "currency": "USD", "month_key": "2026-02"},
    )
    assert up.status_code == 200
    assert up.json()["adjustment"] == 150.0
    assert up.json()["transaction_id"] is not None

    same = client.post(
        "/api/balance-adjustments",
        json={"account_id": demo_account.id, "target_balance": 250.004, "currency": "USD", "month_key": "2026-02"},
    )
    assert same.json() == {"adjustment": 0.0, "transaction_id": None}

    down = client.post(
        "/api/balance-adjustments",
        json={"account_id": demo_account.id, "target_balance": 200, "currency": "USD", "month_key": "2026-02"},
    )
    assert down.json()["adjustment"] == -50.0

    txns = client.get("/api/transactions", params={"month": "2026-02"}).json()
    adjustments = [t for t in txns if t["description"] == "Balance adjustment"]
    assert sorted((t["type"], t["amount"]) for t in adjustments) == [("EXPENSE", 50.0), ("INCOME", 150.0)]

    categories = client.get("/api/categories", params={"type": "INCOME"}).json()
    assert "Balance Adjustment" in [c["name"] for c in categories]

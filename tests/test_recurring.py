from __future__ import annotations

from datetime import date

import pytest

from finboard.utils.dates import clamp_day


def _category(client, name: str = "Gym", type: str = "EXPENSE") -> dict:
    return client.post("/api/categories", json={"name": name, "type": type}).json()["category"]


def _template(client, account_id: int, category_id: int, **overrides) -> dict:
    body = {
        "account_id": account_id,
        "category_id": category_id,
        "type": "EXPENSE",
        "amount": 45,
        "currency": "USD",
        "day_of_month": 31,
        "description": "Membership",
        "start_month_key": "2026-01",
    }
    body.update(overrides)
    res = client.put("/api/recurring-templates", json=body)
    assert res.status_code == 200, res.text
    return res.json()


def _apply(client, account_id: int, month_key: str, **extra) -> dict:
    res = client.post("/api/recurring-templates/apply", json={"account_id": account_id, "month_key": month_key, **extra})
    assert res.status_code == 200, res.text
    return res.json()


@pytest.mark.parametrize(
    "month_start, day, expected",
    [
        (date(2026, 2, 1), 31, date(2026, 2, 28)),
        (date(2028, 2, 1), 31, date(2028, 2, 29)),
        (date(2026, 4, 1), 31, date(2026, 4, 30)),
        (date(2026, 1, 1), 15, date(2026, 1, 15)),
    ],
)
def test_clamp_day(month_start, day, expected):
    assert clamp_day(month_start, day) == expected


def test_apply_is_idempotent_and_clamps_day(client, demo_account):
    cat = _category(client)
    tpl = _template(client, demo_account.id, cat["id"])
    assert tpl["start_month"] == "2026-01-01"
    assert tpl["end_month"] is None

    assert _apply(client, demo_account.id, "2026-02") == {"created": 1}
    assert _apply(client, demo_account.id, "2026-02") == {"created": 0}

    txns = client.get("/api/transactions", params={"month": "2026-02"}).json()
    assert len(txns) == 1
    assert txns[0]["date"] == "2026-02-28"
    assert txns[0]["is_recurring"] is True
    assert txns[0]["recurring_template_id"] == tpl["id"]

    assert _apply(client, demo_account.id, "2028-02") == {"created": 1}
    leap = client.get("/api/transactions", params={"month": "2028-02"}).json()
    assert leap[0]["date"] == "2028-02-29"


def test_apply_respects_window_and_active_flag(client, demo_account):
    cat = _category(client)
    tpl = _template(client, demo_account.id, cat["id"], start_month_key="2026-03", end_month_key="2026-04")

    assert _apply(client, demo_account.id, "2026-02") == {"created": 0}
    assert _apply(client, demo_account.id, "2026-05") == {"created": 0}

    toggled = client.post(f"/api/recurring-templates/{tpl['id']}/toggle", json={"is_active": False})
    assert toggled.json()["is_active"] is False
    assert _apply(client, demo_account.id, "2026-03") == {"created": 0}

    client.post(f"/api/recurring-templates/{tpl['id']}/toggle", json={"is_active": True})
    assert _apply(client, demo_account.id, "2026-03") == {"created": 1}


def test_apply_selected_templates_only(client, demo_account):
    cat = _category(client)
    first = _template(client, demo_account.id, cat["id"], description="First", day_of_month=1)
    _template(client, demo_account.id, cat["id"], description="Second", day_of_month=2)

    assert _apply(client, demo_account.id, "2026-02", template_ids=[]) == {"created": 0}
    assert _apply(client, demo_account.id, "2026-02", template_ids=[first["id"]]) == {"created": 1}
    assert _apply(client, demo_account.id, "2026-02") == {"created": 1}


def test_end_before_start_is_rejected(client, demo_account):
    cat = _category(client)
    res = client.put(
        "/api/recurring-templates",
        json={
            "account_id": demo_account.id,
            "category_id": cat["id"],
            "type": "INCOME",
            "amount": 10,
            "day_of_month": 5,
            "start_month_key": "2026-05",
            "end_month_key": "2026-01",
        },
    )
    assert res.status_code == 400
    assert "end_month_key" in res.json()["error"]


def test_update_and_delete_template(client, demo_account):
    cat = _category(client)
    tpl = _template(client, demo_account.id, cat["id"])

    updated = _template(client, demo_account.id, cat["id"], id=tpl["id"], amount=50, day_of_month=15)
    assert updated["id"] == tpl["id"]
    assert updated["amount"] == 50.0
    assert updated["day_of_month"] == 15
    assert len(client.get("/api/recurring-templates").json()) == 1

    assert client.delete(f"/api/recurring-templates/{tpl['id']}").status_code == 204
    assert client.get("/api/recurring-templates").json() == []
    missing = client.delete(f"/api/recurring-templates/{tpl['id']}")
    assert missing.status_code == 404
    assert missing.json()["detail"] == "Recurring template not found"


def test_day_of_month_bounds(client, demo_account):
    cat = _category(client)
    res = client.put(
        "/api/recurring-templates",
        json={
            "account_id": demo_account.id,
            "category_id": cat["id"],
            "type": "EXPENSE",
            "amount": 10,
            "day_of_month": 32,
            "start_month_key": "2026-01",
        },
    )
    assert res.status_code == 422
    assert "day_of_month" in res.json()["error"]

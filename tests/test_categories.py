from __future__ import annotations

from finboard import models
from finboard.services.category_service import CategoryService


def test_create_duplicate_and_reactivate(client):
    created = client.post("/api/categories", json={"name": "Groceries", "type": "EXPENSE"})
    assert created.status_code == 201
    assert created.json()["status"] == "CREATED"
    category = created.json()["category"]

    dup = client.post("/api/categories", json={"name": "Groceries", "type": "EXPENSE"})
    assert dup.status_code == 200
    assert dup.json()["status"] == "DUPLICATE"
    assert dup.json()["category"]["id"] == category["id"]

    archived = client.post(f"/api/categories/{category['id']}/archive")
    assert archived.status_code == 200
    assert archived.json()["is_archived"] is True

    listed = client.get("/api/categories").json()
    assert all(c["id"] != category["id"] for c in listed)
    with_archived = client.get("/api/categories", params={"include_archived": True}).json()
    assert any(c["id"] == category["id"] for c in with_archived)

    again = client.post("/api/categories", json={"name": "Groceries", "type": "EXPENSE", "color": "#123456"})
    assert again.status_code == 200
    assert again.json()["status"] == "REACTIVATED"
    assert again.json()["category"]["id"] == category["id"]
    assert again.json()["category"]["is_archived"] is False
    assert again.json()["category"]["color"] == "#123456"


def test_same_name_different_type_is_a_new_category(client):
    a = client.post("/api/categories", json={"name": "Gifts", "type": "EXPENSE"}).json()
    b = client.post("/api/categories", json={"name": "Gifts", "type": "INCOME"}).json()
    assert a["status"] == b["status"] == "CREATED"
    assert a["category"]["id"] != b["category"]["id"]

    incomes = client.get("/api/categories", params={"type": "INCOME"}).json()
    assert [c["name"] for c in incomes] == ["Gifts"]


def test_archive_twice_conflicts(client):
    cat = client.post("/api/categories", json={"name": "Travel", "type": "EXPENSE"}).json()["category"]
    assert client.post(f"/api/categories/{cat['id']}/archive").status_code == 200
    res = client.post(f"/api/categories/{cat['id']}/archive")
    assert res.status_code == 409
    assert res.json()["detail"] == "Category is already archived"


def test_short_name_rejected(client):
    res = client.post("/api/categories", json={"name": "A", "type": "EXPENSE"})
    assert res.status_code == 422
    assert "name" in res.json()["error"]


def test_rename_to_existing_name_conflicts(client):
    client.post("/api/categories", json={"name": "Rent", "type": "EXPENSE"})
    other = client.post("/api/categories", json={"name": "Utilities", "type": "EXPENSE"}).json()["category"]
    res = client.patch(f"/api/categories/{other['id']}", json={"name": "Rent"})
    assert res.status_code == 409
    assert res.json()["detail"] == "A category with this name already exists"


def test_find_or_create_unarchives(db_session, demo_user):
    svc = CategoryService(db_session)
    status, row = svc.create_or_reactivate(demo_user.id, "Balance Adjustment", models.TxnType.INCOME)
    assert status == "CREATED"
    svc.archive(row)

    found = svc.find_or_create(demo_user.id, "Balance Adjustment", models.TxnType.INCOME)
    db_session.commit()
    assert found.id == row.id
    assert found.is_archived is False

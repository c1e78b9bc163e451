import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

from conftest import seed_categories
from database import Base, build_engine, make_session_factory
from main import app, get_db

USER = {"X-User-Id": "1"}
OTHER_USER = {"X-User-Id": "2"}


@pytest.fixture
def client():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    TestingSession = make_session_factory(engine)
    with TestingSession() as session:
        ledger = seed_categories(session)
        ids = {
            "salary": ledger.salary.id,
            "home": ledger.home.id,
            "rent": ledger.rent.id,
            "groceries": ledger.groceries.id,
        }

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        test_client.ids = ids
        yield test_client
    app.dependency_overrides.clear()
    engine.dispose()


def _create_salary(client, **overrides) -> dict:
    payload = {
        "type": "income",
        "category_id": client.ids["salary"],
        "amount": "2500.00",
        "description": "Salary",
        "frequency": "monthly",
        "start_date": "2024-01-15",
        "occurrences": 3,
    }
    payload.update(overrides)
    response = client.post("/recurring-definitions", json=payload, headers=USER)
    assert response.status_code == 201, response.text
    return response.json()


def test_create_definition_materializes_instances(client):
    body = _create_salary(client)
    assert body["is_active"] is False
    assert body["next_due_date"] is None
    assert body["amount"] == "2500.00"

    response = client.get(
        f"/recurring-definitions/{body['id']}/instances", headers=USER
    )
    assert response.status_code == 200
    assert [t["date"] for t in response.json()] == [
        "2024-01-15",
        "2024-02-15",
        "2024-03-15",
    ]


def test_errors_map_to_status_codes(client):
    conflicting = client.post(
        "/recurring-definitions",
        json={
            "type": "income",
            "category_id": client.ids["salary"],
            "amount": "10.00",
            "frequency": "monthly",
            "start_date": "2024-01-15",
            "end_date": "2024-06-15",
            "occurrences": 3,
        },
        headers=USER,
    )
    assert conflicting.status_code == 422

    body = _create_salary(client)
    hidden = client.get(f"/recurring-definitions/{body['id']}", headers=OTHER_USER)
    assert hidden.status_code == 404

    instance = client.get(
        f"/recurring-definitions/{body['id']}/instances", headers=USER
    ).json()[0]
    assert client.post(f"/transactions/{instance['id']}/process", headers=USER).status_code == 200
    again = client.post(f"/transactions/{instance['id']}/process", headers=USER)
    assert again.status_code == 409

    assert client.get("/recurring-definitions").status_code == 422


def test_delete_occurrence_and_all_scopes(client):
    body = _create_salary(client)
    instances = client.get(
        f"/recurring-definitions/{body['id']}/instances", headers=USER
    ).json()

    response = client.delete(f"/transactions/{instances[0]['id']}", headers=USER)
    assert response.json() == {"archived": 1}
    definition = client.get(f"/recurring-definitions/{body['id']}", headers=USER).json()
    assert definition["occurrences"] == 2
    assert definition["start_date"] == "2024-02-15"

    response = client.delete(
        f"/transactions/{instances[1]['id']}", params={"scope": "all"}, headers=USER
    )
    assert response.json() == {"archived": 2}
    assert client.get(f"/recurring-definitions/{body['id']}", headers=USER).status_code == 404

    restored = client.post(f"/recurring-definitions/{body['id']}/restore", headers=USER)
    assert restored.status_code == 200
    assert len(
        client.get(f"/recurring-definitions/{body['id']}/instances", headers=USER).json()
    ) == 2


def test_installment_plan_and_budget_status(client):
    plan = client.post(
        "/installment-plans",
        json={
            "category_id": client.ids["home"],
            "subcategory_id": client.ids["groceries"],
            "total_amount": "100.00",
            "number_of_installments": 3,
            "description": "Freezer",
            "first_payment_date": "2024-02-01",
        },
        headers=USER,
    )
    assert plan.status_code == 201, plan.text
    assert plan.json()["installment_amount"] == "33.33"

    refused = client.patch(
        f"/installment-plans/{plan.json()['id']}",
        json={"number_of_installments": 4},
        headers=USER,
    )
    assert refused.status_code == 409

    instances = client.get(
        f"/installment-plans/{plan.json()['id']}/instances", headers=USER
    ).json()
    client.post(f"/transactions/{instances[0]['id']}/process", headers=USER)

    profile = client.post("/budget-profiles", json={"name": "Default"}, headers=USER)
    allocation = client.put(
        "/budgets",
        json={
            "profile_id": profile.json()["id"],
            "subcategory_id": client.ids["groceries"],
            "year": 2024,
            "month": 2,
            "allocated_amount": "0.00",
        },
        headers=USER,
    )
    assert allocation.status_code == 200, allocation.text

    status = client.get(f"/budgets/{allocation.json()['id']}/status", headers=USER)
    assert status.json()["spent"] == "33.33"
    assert status.json()["percentage"] == "100.00"

    month = client.get(
        f"/budget-profiles/{profile.json()['id']}/status",
        params={"year": 2024, "month": 2},
        headers=USER,
    )
    assert [s["remaining"] for s in month.json()] == ["-33.33"]

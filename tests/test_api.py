"""Tests for the HTTP API."""

from uuid import uuid4

from fastapi.testclient import TestClient

from bolus_tracker.api.app import create_app


def _client_with_profile(container) -> TestClient:  # type: ignore[no-untyped-def]
    client = TestClient(create_app(container))
    response = client.put(
        "/profile",
        json={"name": "Ana", "grams_per_ration": 10, "insulin_ratio": 1.5},
    )
    assert response.status_code == 200
    return client


def _create_food(client: TestClient, name: str, carbs: float) -> str:
    response = client.post("/foods", json={"name": name, "carbs_per_100g": carbs})
    assert response.status_code == 201
    return response.json()["food"]["id"]


def test_health(container) -> None:
    client = TestClient(create_app(container))

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_save_meal_without_profile_is_conflict(container) -> None:
    client = TestClient(create_app(container))
    food_id = _create_food(client, "Rice", 28)

    response = client.post(
        "/meals", json={"items": [{"food_id": food_id, "grams": "100"}]}
    )

    assert response.status_code == 409
    assert response.json() == {"detail": "Set up your profile before saving meals"}
    assert client.get("/profile").status_code == 404


def test_meal_flow(container) -> None:
    client = _client_with_profile(container)
    rice_id = _create_food(client, "Rice", 28)
    items = [{"food_id": rice_id, "grams": "150"}]

    preview = client.post("/calculation", json={"items": items}).json()
    assert preview["can_save"] is True
    assert preview["calculation"]["insulin_units"] == 6.5

    saved = client.post("/meals", json={"items": items, "notes": "lunch"})
    assert saved.status_code == 201
    meal_id = saved.json()["result"]["meal_id"]

    today = client.get("/meals", params={"day": "today"}).json()["meals"]
    assert [meal["id"] for meal in today] == [meal_id]
    assert client.get("/meals", params={"dose": "applied"}).json()["meals"] == []

    dose = client.put(f"/meals/{meal_id}/dose-status", json={"status": "applied"})
    assert dose.status_code == 200
    assert dose.json()["meal"]["dose_status"] == "applied"

    detail = client.get(f"/meals/{meal_id}").json()
    assert detail["items"][0]["food"]["name"] == "Rice"

    stats = client.get("/stats", params={"period": "last7"}).json()
    assert stats["summary"]["total_meals"] == 1

    export = client.get("/export.csv")
    assert export.headers["content-type"].startswith("text/csv")
    assert export.content.startswith(b"\xef\xbb\xbf")

    assert client.delete(f"/meals/{meal_id}").status_code == 200
    assert client.delete(f"/meals/{meal_id}").status_code == 404


def test_invalid_food_is_unprocessable(container) -> None:
    client = TestClient(create_app(container))

    response = client.post("/foods", json={"name": "Rice", "carbs_per_100g": -5})

    assert response.status_code == 422
    assert response.json() == {"detail": "Carbs per 100 g must be zero or more"}
    assert client.delete(f"/foods/{uuid4()}").status_code == 404


def test_templates_endpoints(container) -> None:
    client = _client_with_profile(container)
    rice_id = _create_food(client, "Rice", 28)

    created = client.post(
        "/templates",
        json={"name": "Usual", "items": [{"food_id": rice_id, "grams": "80"}]},
    )
    assert created.status_code == 201
    template_id = created.json()["template"]["id"]

    listed = client.get("/templates").json()["templates"]
    assert listed[0]["items"][0]["food"]["name"] == "Rice"

    draft = client.get(f"/templates/{template_id}/draft").json()
    assert draft["items"] == [{"food_id": rice_id, "grams": "80"}]

    assert client.delete(f"/templates/{template_id}").status_code == 200
    assert client.get(f"/templates/{template_id}/draft").status_code == 404


def test_pending_glucose_endpoints(container) -> None:
    client = _client_with_profile(container)
    rice_id = _create_food(client, "Rice", 28)
    meal_id = client.post(
        "/meals", json={"items": [{"food_id": rice_id, "grams": "100"}]}
    ).json()["result"]["meal_id"]

    task = client.post(
        "/glucose/pending", json={"meal_id": meal_id, "kind": "DESPUES_2H"}
    ).json()["task"]
    failed = client.post(
        f"/glucose/pending/{task['id']}/failure", json={"message": "timeout"}
    )
    assert failed.json()["task"]["attempts"] == 1

    pending = client.get("/glucose/pending").json()
    assert pending["max_attempts"] == 1
    assert pending["backoff_minutes"] == 20

    completed = client.post(
        f"/glucose/pending/{task['id']}/complete", json={"mgdl": 140}
    )
    assert completed.json()["meal"]["glucose_after_2h_mgdl"] == 140
    assert client.get("/glucose/pending").json()["tasks"] == []

    glucose = client.get("/glucose").json()
    assert glucose["state"] == {"kind": "idle"}
    assert glucose["polling"] is False


def test_backup_round_trip(container) -> None:
    client = _client_with_profile(container)
    _create_food(client, "Rice", 28)
    backup = client.get("/backup").content

    assert client.post("/backup", content=b"garbage").status_code == 422

    _create_food(client, "Bread", 50)
    assert client.post("/backup", content=backup).json() == {"status": "ok"}

    foods = client.get("/foods").json()["foods"]
    assert [food["name"] for food in foods] == ["Rice"]


def test_lifespan_seeds_catalog_and_snapshots(container, tmp_path) -> None:
    container.catalog_path.write_text(
        "name,carbs_per_100g,source,note\nApple,11.4,table,\n", encoding="utf-8"
    )

    with TestClient(create_app(container)) as client:
        foods = client.get("/foods", params={"query": "app"}).json()["foods"]
        assert [food["name"] for food in foods] == ["Apple"]
        assert client.get("/backups/auto").json() == {"latest_at": None}

    snapshots = list((tmp_path / "backups").iterdir())
    assert len(snapshots) == 1
    assert snapshots[0].name.startswith("auto_backup_")


def test_profile_and_food_reject_non_finite_numbers(container) -> None:
    client = TestClient(create_app(container))
    headers = {"content-type": "application/json"}

    profile = client.put(
        "/profile", content='{"name": "Ana", "insulin_ratio": 1e999}', headers=headers
    )
    zero = client.put("/profile", json={"name": "Ana", "grams_per_ration": 0})
    food = client.post(
        "/foods", content='{"name": "Rice", "carbs_per_100g": NaN}', headers=headers
    )

    assert profile.status_code == 422
    assert zero.status_code == 422
    assert food.status_code == 422
    assert client.get("/profile").status_code == 404
    assert client.get("/foods").json()["foods"] == []

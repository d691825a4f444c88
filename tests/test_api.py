from fastapi.testclient import TestClient

from drc.api import create_app


def _client(store, daemon):
    return TestClient(create_app(store=store, daemon=daemon))


def test_health(store, daemon):
    with _client(store, daemon) as client:
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json() == {"status": "healthy", "docker": True}


def test_plan_then_apply_then_noop(store, daemon, declarations_json):
    with _client(store, daemon) as client:
        r = client.post("/plan", json=declarations_json)
        assert r.status_code == 200
        body = r.json()
        assert body["order"] == ["network.app_network", "image.nginx", "container.nginx_container"]
        assert body["summary"]["create"] == 3
        assert body["has_changes"] is True
        assert daemon.calls == []

        r = client.post("/apply", json=declarations_json)
        assert r.status_code == 200
        report = r.json()
        assert report["status"] == "applied"
        assert [x["status"] for x in report["results"]] == ["applied"] * 3

        r = client.post("/apply", json=declarations_json)
        assert [x["action"] for x in r.json()["results"]] == ["no-op"] * 3
        assert client.post("/plan", json=declarations_json).json()["has_changes"] is False

        state = client.get("/state").json()
        assert {s["resource_id"] for s in state} == {
            "network.app_network",
            "image.nginx",
            "container.nginx_container",
        }

        events = client.get("/events", params={"limit": 1}).json()
        assert len(events) == 1
        assert events[0]["message"].startswith("Run applied")


def test_invalid_declarations_are_422(store, daemon, declarations_json):
    declarations_json["resources"][2]["attributes"]["ports"][0]["internal"] = 0
    with _client(store, daemon) as client:
        assert client.post("/plan", json=declarations_json).status_code == 422
        assert client.post("/apply", json=declarations_json).status_code == 422

    # undeclared reference is caught by validation, not by the schema
    declarations_json["resources"][2]["attributes"]["ports"][0]["internal"] = 80
    del declarations_json["resources"][1]
    with _client(store, daemon) as client:
        r = client.post("/apply", json=declarations_json)
        assert r.status_code == 422
        assert "image.nginx" in r.json()["detail"]
    assert daemon.calls == []


def test_concurrent_apply_is_rejected(store, daemon, declarations_json):
    app = create_app(store=store, daemon=daemon)
    with TestClient(app) as client:
        app.state.run_lock.acquire()
        try:
            r = client.post("/apply", json=declarations_json)
            assert r.status_code == 409
        finally:
            app.state.run_lock.release()

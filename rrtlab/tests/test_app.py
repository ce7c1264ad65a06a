import pytest

from rrtlab import app as app_module
from rrtlab.app import _planners, app


@pytest.fixture
def client():
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c


def _create(client, planner_id, **overrides):
    body = {
        "planner_id": planner_id,
        "bounds": [[0, 0], [800, 600]],
        "start": [50, 300],
        "goal": [750, 300],
        "obstacles": [{"x": 300, "y": 150, "w": 50, "h": 300}],
        "step_size": 30,
        "max_iterations": 200,
        "goal_bias": 0.05,
        "search_radius": 60,
        "seed": 1,
    }
    body.update(overrides)
    return client.post("/api/planners", json=body)


def test_create_and_step_micro(client):
    resp = _create(client, "micro-rrt", algorithm="RRT", obstacles=[])
    assert resp.status_code == 201
    data = resp.get_json()
    assert data["planner_id"] == "micro-rrt"
    assert data["snapshot"]["state"] == "SAMPLE"
    assert data["snapshot"]["nodes"] == [[50.0, 300.0, None]]

    resp = client.post("/api/planners/micro-rrt/micro", json={})
    data = resp.get_json()
    assert data["state"] == "NEAREST"
    assert data["in_progress"] is True
    assert data["scratch"]["sample"] is not None

    # NEAREST, STEER, COLLISION_CHECK, ADD_NODE
    data = client.post("/api/planners/micro-rrt/micro", json={"count": 4}).get_json()
    assert data["in_progress"] is False
    assert data["state"] == "SAMPLE"
    assert len(data["nodes"]) == 2

    assert "micro-rrt" in client.get("/api/planners").get_json()


def test_step_iterations_and_path(client):
    _create(client, "iter-star", algorithm="RRT*")
    # count is capped at max_iterations, a few requests cover the discarded attempts
    for _ in range(5):
        data = client.post("/api/planners/iter-star/iteration", json={"count": 200}).get_json()
        if data["saturated"]:
            break
    assert data["saturated"] is True
    assert len(data["nodes"]) == 200
    assert data["algorithm"] == "RRT*"

    path = client.get("/api/planners/iter-star/path").get_json()
    assert set(path) == {"path", "points", "cost"}
    assert len(path["points"]) == len(path["path"])
    assert client.get("/api/planners/iter-star").get_json()["nodes"] == data["nodes"]


def test_unknown_planner_is_404(client):
    resp = client.post("/api/planners/nope/micro", json={})
    assert resp.status_code == 404
    assert "nope" in resp.get_json()["error"]


@pytest.mark.parametrize("overrides", [
    {"step_size": -5},
    {"goal_bias": 2},
    {"algorithm": "PRM"},
    {"bounds": [[0, 0]]},
    {"obstacles": [{"x": 1}]},
])
def test_invalid_request_is_400(client, overrides):
    resp = _create(client, "bad", **overrides)
    assert resp.status_code == 400
    assert "invalid planner request" in resp.get_json()["error"]


def test_bad_count_is_400(client):
    _create(client, "count-check")
    assert client.post("/api/planners/count-check/micro", json={"count": 0}).status_code == 400
    assert client.post("/api/planners/count-check/iteration", json={"count": "x"}).status_code == 400


def test_delete_planner(client):
    _create(client, "to-delete")
    assert client.delete("/api/planners/to-delete").status_code == 200
    assert client.get("/api/planners/to-delete").status_code == 404


def test_background_run_starts(client):
    resp = client.post("/api/run/rrtstar", json={"run_id": "bg", "max_iterations": 30, "seed": 3})
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "started", "run_id": "bg"}
    assert "bg" in client.get("/api/runs").get_json()


def test_oversized_count_is_400(client):
    _create(client, "tiny", obstacles=[], max_iterations=2)
    resp = client.post("/api/planners/tiny/micro", json={"count": 2000000})
    assert resp.status_code == 400
    assert "count" in resp.get_json()["error"]
    assert client.post("/api/planners/tiny/iteration", json={"count": 3}).status_code == 400
    assert len(client.get("/api/planners/tiny").get_json()["nodes"]) == 1


def test_micro_steps_stop_once_saturated(client):
    _create(client, "tiny-star", algorithm="RRT*", obstacles=[], max_iterations=2)
    # 16 is the cap for two nodes; the tree fills after 7
    data = client.post("/api/planners/tiny-star/micro", json={"count": 16}).get_json()
    assert data["saturated"] is True
    assert data["in_progress"] is False
    assert data["state"] == "REWIRE"
    assert len(data["nodes"]) == 2


@pytest.mark.parametrize("body", [
    {"snapshot_interval": "often"},
    {"snapshot_interval": 0},
    {"max_iterations": float("inf")},
    {"stop_on_goal": "sometimes"},
])
def test_background_run_rejects_bad_fields(client, body):
    resp = client.post("/api/run/rrt", json=dict(body, max_iterations=body.get("max_iterations", 10)))
    assert resp.status_code == 400
    assert "error" in resp.get_json()


def test_exact_collision_string_flag(client):
    resp = _create(client, "flag-check", exact_collision="false")
    assert resp.status_code == 201
    assert _planners["flag-check"].config.exact_collision is False


def test_main_reads_server_settings_from_env(monkeypatch):
    calls = []
    monkeypatch.setattr(app_module.socketio, "run", lambda flask_app, **kw: calls.append((flask_app, kw)))
    monkeypatch.setenv("RRTLAB_HOST", "127.0.0.1")
    monkeypatch.setenv("RRTLAB_PORT", "5050")
    monkeypatch.setenv("RRTLAB_DEBUG", "off")
    app_module.main()
    assert calls == [(app, {"host": "127.0.0.1", "port": 5050, "debug": False})]

"""Flask backend exposing step-granular RRT / RRT* planners.

Planners live in memory for as long as the process runs. A frontend creates
one, then advances it one micro-step or one iteration per request and redraws
from the returned snapshot. ``/api/run/<algorithm>`` keeps the fire-and-forget
mode: the whole run is computed in a background task and streamed back through
Flask-SocketIO events.
"""
from __future__ import annotations

import os
from threading import Lock
from typing import Any, Dict, List, Optional

from flask import Flask, abort, jsonify, request
from flask_cors import CORS
from flask_socketio import SocketIO
from werkzeug.exceptions import HTTPException

from rrtlab.algorithms.geometry import Obstacle
from rrtlab.algorithms.path import path_cost, path_points
from rrtlab.algorithms.rrt import MAX_MICRO_STEPS, Planner, PlannerConfig, Variant, as_bool, construct

# default world mirrors the web frontend
DEFAULT_BOUNDS = ((0.0, 0.0), (800.0, 600.0))
DEFAULT_START = (50.0, 300.0)
DEFAULT_GOAL = (750.0, 300.0)

app = Flask(__name__)
app.config["SECRET_KEY"] = os.environ.get("RRTLAB_SECRET_KEY", "change-me")
socketio = SocketIO(app, cors_allowed_origins="*")

# Enable CORS for /api/* endpoints so that frontend localhost:5173 can POST
CORS(app, resources={r"/api/*": {"origins": os.environ.get("RRTLAB_CORS_ORIGINS", "*")}})

# keep track of live planners (id -> Planner); also serialises stepping
_planners: Dict[str, Planner] = {}
_planners_lock = Lock()

# background runs (run id -> Planner), stepped only by their own task
_runs: Dict[str, Planner] = {}
_runs_lock = Lock()


@app.errorhandler(HTTPException)
def _json_error(err: HTTPException):
    return jsonify({"error": err.description}), err.code


def _make_obstacles(obs_raw) -> List[Obstacle]:
    """Each rectangle: {"x": , "y": , "w": , "h": } with bottom-left origin."""
    return [Obstacle.from_dict(rect) for rect in obs_raw]


def _point(raw) -> tuple:
    x, y = raw
    return float(x), float(y)


def _build_planner(data: Dict[str, Any], algorithm=None) -> Planner:
    try:
        bounds = data.get("bounds", DEFAULT_BOUNDS)  # [[xmin,ymin], [xmax,ymax]]
        return construct(
            bounds=(_point(bounds[0]), _point(bounds[1])),
            start=_point(data.get("start", DEFAULT_START)),
            goal=_point(data.get("goal", DEFAULT_GOAL)),
            obstacles=_make_obstacles(data.get("obstacles", [])),
            config=PlannerConfig.from_dict(data),
            variant=Variant.parse(algorithm or data.get("algorithm", Variant.RRT)),
            seed=data.get("seed"),
        )
    except (KeyError, IndexError, TypeError, ValueError) as exc:
        app.logger.info("rejected planner request: %s", exc)
        abort(400, description=f"invalid planner request: {exc}")


def _get_planner(planner_id: str) -> Planner:
    planner = _planners.get(planner_id)
    if planner is None:
        abort(404, description=f"unknown planner {planner_id!r}")
    return planner


def _positive_int(data: Dict[str, Any], key: str, default: int, limit: Optional[int] = None) -> int:
    try:
        value = int(data.get(key, default))
    except (TypeError, ValueError, OverflowError):
        abort(400, description=f"{key} must be an integer")
    if value < 1:
        abort(400, description=f"{key} must be >= 1")
    if limit is not None and value > limit:
        abort(400, description=f"{key} must be <= {limit}")
    return value


@app.route("/api/planners", methods=["POST"])
def create_planner():
    data = request.get_json(force=True, silent=True) or {}
    planner = _build_planner(data)
    planner_id = str(data.get("planner_id") or f"{planner.variant.name.lower()}_{id(planner)}")
    with _planners_lock:
        _planners[planner_id] = planner
        snapshot = planner.snapshot()
    app.logger.info("created planner %s (%s)", planner_id, planner.variant.value)
    return jsonify({"status": "created", "planner_id": planner_id, "snapshot": snapshot}), 201


@app.route("/api/planners", methods=["GET"])
def list_planners():
    with _planners_lock:
        return jsonify(list(_planners.keys()))


@app.route("/api/planners/<planner_id>", methods=["GET"])
def get_planner(planner_id: str):
    with _planners_lock:
        return jsonify(_get_planner(planner_id).snapshot())


@app.route("/api/planners/<planner_id>", methods=["DELETE"])
def delete_planner(planner_id: str):
    with _planners_lock:
        _get_planner(planner_id)
        del _planners[planner_id]
    return jsonify({"status": "deleted", "planner_id": planner_id})


@app.route("/api/planners/<planner_id>/micro", methods=["POST"])
def step_micro(planner_id: str):
    data = request.get_json(force=True, silent=True) or {}
    with _planners_lock:
        planner = _get_planner(planner_id)
        # one request can at most drain the whole tree
        count = _positive_int(data, "count", 1, limit=planner.config.max_iterations * MAX_MICRO_STEPS)
        in_progress = True
        for _ in range(count):
            if planner.saturated:
                in_progress = False
                break
            in_progress = planner.advance_micro()
        snapshot = planner.snapshot()
    snapshot["in_progress"] = in_progress
    return jsonify(snapshot)


@app.route("/api/planners/<planner_id>/iteration", methods=["POST"])
def step_iteration(planner_id: str):
    data = request.get_json(force=True, silent=True) or {}
    with _planners_lock:
        planner = _get_planner(planner_id)
        count = _positive_int(data, "count", 1, limit=planner.config.max_iterations)
        for _ in range(count):
            if planner.saturated:
                break
            planner.advance_iteration()
        snapshot = planner.snapshot()
    return jsonify(snapshot)


@app.route("/api/planners/<planner_id>/path", methods=["GET"])
def get_path(planner_id: str):
    with _planners_lock:
        planner = _get_planner(planner_id)
        path = planner.current_path()
        return jsonify({
            "path": path,
            "points": path_points(planner.tree, path),
            "cost": path_cost(planner.tree, path),
        })


# --------------------------------------------------------
# Background run streamed over SocketIO
# --------------------------------------------------------


@app.route("/api/run/<algorithm>", methods=["POST"])
def run_planner(algorithm: str):
    data = request.get_json(force=True, silent=True) or {}
    planner = _build_planner(data, algorithm=algorithm)
    run_id = data.get("run_id", f"{planner.variant.name.lower()}_{id(planner)}")
    snapshot_interval = _positive_int(data, "snapshot_interval", 20)
    try:
        stop_on_goal = as_bool(data.get("stop_on_goal", planner.variant is Variant.RRT))
    except ValueError as exc:
        abort(400, description=str(exc))

    def _background_task():
        history = []
        iter_found = None
        for snap in planner.run_iter(snapshot_interval=snapshot_interval):
            history.append(snap)
            if snap["goal_reached"] and iter_found is None:
                iter_found = snap["iteration"]
                if stop_on_goal:
                    break

        # Emit entire history at once
        socketio.emit("rrt_history", {"run_id": run_id, "history": history})

        path = planner.current_path()
        socketio.emit("rrt_done", {
            "run_id": run_id,
            "path": path_points(planner.tree, path),
            "cost": path_cost(planner.tree, path),
            "iterations": iter_found,
        })

    socketio.start_background_task(_background_task)

    with _runs_lock:
        _runs[run_id] = planner

    return jsonify({"status": "started", "run_id": run_id})


@app.route("/api/runs", methods=["GET"])
def list_runs():
    with _runs_lock:
        return jsonify(list(_runs.keys()))


def main():
    socketio.run(
        app,
        host=os.environ.get("RRTLAB_HOST", "0.0.0.0"),
        port=int(os.environ.get("RRTLAB_PORT", "5000")),
        debug=as_bool(os.environ.get("RRTLAB_DEBUG", "false")),
    )


if __name__ == "__main__":
    main()

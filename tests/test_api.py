import time
from collections import OrderedDict

from fastapi.testclient import TestClient

from canyon_sim.gui import api_routes
from canyon_sim.gui.app import app

client = TestClient(app)


def side(*commanders, **extra):
    return {"slots": [{"commander": cid, "level": 60, **extra} for cid in commanders]}


def test_health():
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_list_commanders():
    r = client.get("/api/commanders")
    assert r.status_code == 200
    ids = {c["id"] for c in r.json()}
    assert {"richard-i", "ysg", "lohar"} <= ids


def test_battle_endpoint():
    r = client.post(
        "/api/battle",
        json={"attacker": side("charles-martel"), "defender": side("ysg"), "seed": 3, "max_turns": 5},
    )
    assert r.status_code == 200
    body = r.json()
    assert body["winner"] in ("attacker", "defender", "draw")
    assert body["turns"] <= 5
    assert body["seed"] == 3
    assert body["log"]


def test_battle_rejects_bad_input():
    r = client.post("/api/battle", json={"attacker": side("charles-martel", stars=9), "defender": side("ysg")})
    assert r.status_code == 422
    assert "stars" in r.json()["detail"]
    r = client.post("/api/battle", json={"attacker": {"slots": []}, "defender": side("ysg")})
    assert r.status_code == 422
    r = client.post(
        "/api/battle",
        json={"attacker": side("ysg"), "defender": side("ysg"), "config": {"damage": {"variance": 3}}},
    )
    assert r.status_code == 422


def test_simulate_endpoint():
    r = client.post(
        "/api/simulate",
        json={"attacker": side("charles-martel"), "defender": side("ysg"), "trials": 10, "seed": 1},
    )
    assert r.status_code == 200
    body = r.json()
    assert body["trials"] == 10
    assert body["wins"] + body["losses"] + body["draws"] == 10


def test_simulate_rejects_zero_trials():
    r = client.post("/api/simulate", json={"attacker": side("ysg"), "defender": side("ysg"), "trials": 0})
    assert r.status_code == 422


def test_background_job_lifecycle():
    r = client.post(
        "/api/simulations",
        json={"attacker": side("charles-martel"), "defender": side("ysg"), "trials": 10, "seed": 2},
    )
    assert r.status_code == 202
    job_id = r.json()["job_id"]

    deadline = time.time() + 60
    status = client.get(f"/api/simulations/{job_id}").json()
    while status["state"] == "in_progress" and time.time() < deadline:
        time.sleep(0.05)
        status = client.get(f"/api/simulations/{job_id}").json()
    assert status["state"] == "done"
    assert status["result"]["trials"] == 10
    assert "win_rate" in status["result"]


def test_cancel_job():
    r = client.post(
        "/api/simulations",
        json={"attacker": side("charles-martel"), "defender": side("ysg"), "trials": 5000, "seed": 2},
    )
    job_id = r.json()["job_id"]
    r = client.delete(f"/api/simulations/{job_id}")
    assert r.status_code == 200
    assert r.json()["cancel_requested"] is True

    deadline = time.time() + 60
    status = client.get(f"/api/simulations/{job_id}").json()
    while status["state"] == "in_progress" and time.time() < deadline:
        time.sleep(0.05)
        status = client.get(f"/api/simulations/{job_id}").json()
    assert status["state"] in ("cancelled", "done")
    assert status["result"]["trials"] <= 5000


def test_unknown_job_is_404():
    assert client.get("/api/simulations/nope").status_code == 404
    assert client.delete("/api/simulations/nope").status_code == 404


def wait_for(job_id):
    return api_routes._jobs[job_id].result(wait=True, timeout=60)


def test_finished_job_forgotten_after_result_served(monkeypatch):
    monkeypatch.setattr(api_routes, "_jobs", OrderedDict())
    r = client.post(
        "/api/simulations",
        json={"attacker": side("charles-martel"), "defender": side("ysg"), "trials": 3, "seed": 4},
    )
    job_id = r.json()["job_id"]
    wait_for(job_id)
    status = client.get(f"/api/simulations/{job_id}").json()
    assert status["state"] == "done"
    assert job_id not in api_routes._jobs
    assert client.get(f"/api/simulations/{job_id}").status_code == 404


def test_job_map_is_bounded(monkeypatch):
    monkeypatch.setattr(api_routes, "_jobs", OrderedDict())
    monkeypatch.setattr(api_routes, "MAX_RETAINED_JOBS", 2)
    body = {"attacker": side("charles-martel"), "defender": side("ysg"), "trials": 2, "seed": 1}
    first = client.post("/api/simulations", json=body).json()["job_id"]
    second = client.post("/api/simulations", json=body).json()["job_id"]
    wait_for(first)
    wait_for(second)
    third = client.post("/api/simulations", json=body).json()["job_id"]
    assert list(api_routes._jobs) == [second, third]
    assert client.get(f"/api/simulations/{first}").status_code == 404


def test_busy_job_map_rejects_new_jobs(monkeypatch):
    monkeypatch.setattr(api_routes, "_jobs", OrderedDict())
    monkeypatch.setattr(api_routes, "MAX_RETAINED_JOBS", 1)
    long_run = {"attacker": side("charles-martel"), "defender": side("ysg"), "trials": 5000, "seed": 1}
    job_id = client.post("/api/simulations", json=long_run).json()["job_id"]
    try:
        r = client.post("/api/simulations", json=long_run)
        assert r.status_code == 429
        assert len(api_routes._jobs) == 1
    finally:
        client.delete(f"/api/simulations/{job_id}")
        wait_for(job_id)


def test_zero_turn_limit_rejected():
    for path in ("/api/battle", "/api/simulate", "/api/simulations"):
        r = client.post(path, json={"attacker": side("ysg"), "defender": side("lohar"), "trials": 2, "max_turns": 0})
        assert r.status_code == 422, path
        assert "max_turns" in r.json()["detail"]

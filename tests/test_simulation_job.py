import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from canyon_sim.game_models import BaseStats, Commander, Formation, FormationSlot, UserCommander
from canyon_sim.simulators.monte_carlo import SimulationJob
from canyon_sim.validators import SimulationPendingError


def make_formation() -> Formation:
    commander = Commander(
        id="lead",
        name="Lead",
        rarity="legendary",
        troop_type="mixed",
        roles=("nuker",),
        base_stats=BaseStats(attack=100.0, defense=100.0, health=100.0, march_speed=60.0),
    )
    return Formation.from_slots([FormationSlot(primary=UserCommander(commander), troop_count=100_000)])


def test_job_runs_to_completion():
    job = SimulationJob(make_formation(), make_formation(), trials=20, seed=1)
    result = job.result(wait=True, timeout=60)
    assert result.trials == 20
    assert not job.in_progress
    assert job.progress == 1.0
    assert job.status() == {"state": "done", "completed": 20, "total": 20}


def test_result_unavailable_while_pending():
    gate = threading.Event()
    executor = ThreadPoolExecutor(max_workers=1)
    try:
        # occupy the only worker so the job cannot start yet
        executor.submit(gate.wait)
        job = SimulationJob(make_formation(), make_formation(), trials=10, seed=2, executor=executor)
        assert job.in_progress
        assert job.progress == 0.0
        assert job.status()["state"] == "in_progress"
        with pytest.raises(SimulationPendingError):
            job.result()
        gate.set()
        assert job.result(wait=True, timeout=60).trials == 10
    finally:
        gate.set()
        executor.shutdown(wait=True)


def test_cancelled_before_start():
    gate = threading.Event()
    executor = ThreadPoolExecutor(max_workers=1)
    try:
        executor.submit(gate.wait)
        job = SimulationJob(make_formation(), make_formation(), trials=10, seed=2, executor=executor)
        job.cancel()
        gate.set()
        result = job.result(wait=True, timeout=60)
        assert result.cancelled
        assert result.trials == 0
        assert result.win_rate == 0.0
        assert job.status()["state"] == "cancelled"
    finally:
        gate.set()
        executor.shutdown(wait=True)

"""API routes for the Canyon Sim service."""

import logging
import random
import threading
import uuid
from collections import OrderedDict
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ..commanders import all_commanders
from ..config import BalanceConfig, load_balance
from ..formation import formation_from_dict
from ..reports.battle_report import build_battle_report, build_simulation_report
from ..simulators.combat import run_battle
from ..simulators.monte_carlo import SimulationJob, run_simulations
from ..validators import validate_turn_limit

logger = logging.getLogger(__name__)

router = APIRouter()

# Background simulation jobs by id, oldest first. A finished job is dropped
# once its result has been served, and at most MAX_RETAINED_JOBS are kept.
MAX_RETAINED_JOBS = 64
_jobs: "OrderedDict[str, SimulationJob]" = OrderedDict()
_jobs_lock = threading.Lock()


# Request/Response models
class BattleRequest(BaseModel):
    attacker: Dict[str, Any]
    defender: Dict[str, Any]
    seed: Optional[int] = None
    max_turns: Optional[int] = None
    config: Dict[str, Any] = {}
    include_log: bool = True


class SimulateRequest(BaseModel):
    attacker: Dict[str, Any]
    defender: Dict[str, Any]
    trials: int = 100
    seed: Optional[int] = None
    max_turns: Optional[int] = None
    workers: int = 1
    config: Dict[str, Any] = {}


def _balance(overrides: Dict[str, Any]) -> BalanceConfig:
    return load_balance(overrides=overrides)


def _invalid(exc: Exception) -> HTTPException:
    return HTTPException(status_code=422, detail=str(exc))


# ============================================================================
# Catalog
# ============================================================================

@router.get("/commanders")
async def list_commanders() -> List[Dict[str, Any]]:
    """List every commander in the catalog."""
    out = []
    for c in sorted(all_commanders().values(), key=lambda c: (-c.rarity.tier, c.name)):
        bs = c.base_stats
        out.append({
            "id": c.id,
            "name": c.name,
            "rarity": c.rarity.value,
            "troop_type": c.troop_type.value,
            "roles": [r.value for r in c.roles],
            "base_stats": {
                "attack": bs.attack,
                "defense": bs.defense,
                "health": bs.health,
                "march_speed": bs.march_speed,
            },
            "skills": [s.name for s in c.skills],
        })
    return out


# ============================================================================
# Battles
# ============================================================================

@router.post("/battle")
def battle(request: BattleRequest) -> Dict[str, Any]:
    """Resolve one battle and return its report."""
    try:
        attacker = formation_from_dict(request.attacker, "attacker")
        defender = formation_from_dict(request.defender, "defender")
        balance = _balance(request.config)
        seed = request.seed if request.seed is not None else random.randrange(1, 2**31)
        state = run_battle(attacker, defender, random.Random(seed), balance=balance, max_turns=request.max_turns)
    except ValueError as e:
        raise _invalid(e)
    report = build_battle_report(state, seed=seed, include_log=request.include_log)
    return asdict(report)


@router.post("/simulate")
def simulate(request: SimulateRequest) -> Dict[str, Any]:
    """Run a blocking Monte Carlo estimate."""
    try:
        attacker = formation_from_dict(request.attacker, "attacker")
        defender = formation_from_dict(request.defender, "defender")
        result = run_simulations(
            attacker,
            defender,
            trials=request.trials,
            seed=request.seed,
            balance=_balance(request.config),
            max_turns=request.max_turns,
            workers=request.workers,
        )
    except ValueError as e:
        raise _invalid(e)
    return asdict(build_simulation_report(result, request.trials, seed=request.seed))


# ============================================================================
# Background jobs
# ============================================================================

@router.post("/simulations", status_code=202)
def start_simulation(request: SimulateRequest) -> Dict[str, Any]:
    """Start a simulation in the background and return its job id."""
    try:
        attacker = formation_from_dict(request.attacker, "attacker")
        defender = formation_from_dict(request.defender, "defender")
        balance = _balance(request.config)
        if isinstance(request.trials, bool) or request.trials < 1:
            raise ValueError(f"trial count must be a positive integer, got {request.trials!r}")
        if request.max_turns is not None:
            validate_turn_limit(request.max_turns)
    except ValueError as e:
        raise _invalid(e)
    job_id = uuid.uuid4().hex
    with _jobs_lock:
        _evict_jobs()
        job = SimulationJob(
            attacker,
            defender,
            request.trials,
            seed=request.seed,
            balance=balance,
            max_turns=request.max_turns,
            workers=request.workers,
        )
        _jobs[job_id] = job
    logger.info("started simulation job %s (%d trials)", job_id, request.trials)
    return {"job_id": job_id, **job.status()}


def _evict_jobs() -> None:
    # caller holds _jobs_lock
    while len(_jobs) >= MAX_RETAINED_JOBS:
        finished = next((k for k, j in _jobs.items() if not j.in_progress), None)
        if finished is None:
            raise HTTPException(
                status_code=429,
                detail=f"{len(_jobs)} simulations already running; retry once one finishes",
            )
        logger.info("evicting finished simulation job %s", finished)
        del _jobs[finished]


def _get_job(job_id: str) -> SimulationJob:
    with _jobs_lock:
        job = _jobs.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Simulation job '{job_id}' not found")
    return job


@router.get("/simulations/{job_id}")
async def simulation_status(job_id: str) -> Dict[str, Any]:
    """Poll a job; the aggregate is included once it has finished.

    A finished job is forgotten after this response, so its result can be
    fetched exactly once.
    """
    job = _get_job(job_id)
    status = {"job_id": job_id, **job.status()}
    if status["state"] in ("done", "cancelled"):
        status["result"] = job.result().to_dict()
    if status["state"] != "in_progress":
        # the final status has been served; later polls get 404
        with _jobs_lock:
            _jobs.pop(job_id, None)
    return status


@router.delete("/simulations/{job_id}")
async def cancel_simulation(job_id: str) -> Dict[str, Any]:
    """Ask a job to stop after the trial in flight."""
    job = _get_job(job_id)
    job.cancel()
    return {"job_id": job_id, "cancel_requested": True, **job.status()}

"""Monte Carlo win-rate estimation over many independent battles.

Every trial gets its own seed, drawn up front from one master seed, and
builds fresh armies from the (immutable) formations. Trials therefore share
no mutable state and can run in worker processes; sequential and parallel
runs with the same master seed produce the same aggregate.
"""
from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple
import logging
import multiprocessing
import random
import threading

import numpy as np

from ..config import BalanceConfig, default_balance
from ..game_models import Formation, SimulationResult, TrialFailure, Winner
from ..validators import (
    BattleAbortedError,
    ConfigurationError,
    SimulationPendingError,
    validate_formation,
    validate_turn_limit,
)
from .combat import ATTACKER, DEFENDER, run_battle

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

_SEED_CEILING = 2**31 - 1


@dataclass(frozen=True)
class TrialOutcome:
    trial: int
    seed: int
    winner: Optional[Winner] = None
    turns: int = 0
    error: Optional[str] = None


_WorkItem = Tuple[int, int, Formation, Formation, BalanceConfig, Optional[int]]


def trial_seeds(seed: Optional[int], trials: int) -> List[int]:
    master = random.Random(seed)
    return [master.randint(1, _SEED_CEILING) for _ in range(trials)]


def _run_trial(item: _WorkItem) -> TrialOutcome:
    index, seed, attacker, defender, balance, max_turns = item
    try:
        state = run_battle(attacker, defender, random.Random(seed), balance=balance, max_turns=max_turns)
    except BattleAbortedError as exc:
        return TrialOutcome(trial=index, seed=seed, error=str(exc))
    return TrialOutcome(trial=index, seed=seed, winner=state.winner, turns=state.turn)


def _outcomes(work: Sequence[_WorkItem], workers: int, chunk_size: Optional[int]) -> Iterator[TrialOutcome]:
    if workers <= 1 or len(work) <= 1:
        for item in work:
            yield _run_trial(item)
        return
    n_workers = min(workers, len(work), multiprocessing.cpu_count() or 1)
    chunk = chunk_size or max(1, len(work) // (n_workers * 4))
    # leaving the block terminates the pool, which is how cancellation stops stragglers
    with multiprocessing.Pool(processes=n_workers) as pool:
        for outcome in pool.imap(_run_trial, work, chunksize=chunk):
            yield outcome


def summarize_turns(turns: Sequence[int]) -> Dict[str, float]:
    if not turns:
        return {}
    arr = np.asarray(turns, dtype=float)
    return {
        "mean": float(arr.mean()),
        "p50": float(np.percentile(arr, 50)),
        "p90": float(np.percentile(arr, 90)),
        "min": float(arr.min()),
        "max": float(arr.max()),
    }


def run_simulations(
    attacker: Formation,
    defender: Formation,
    trials: int = 100,
    seed: Optional[int] = None,
    balance: Optional[BalanceConfig] = None,
    max_turns: Optional[int] = None,
    workers: int = 1,
    progress: Optional[ProgressCallback] = None,
    cancel_event: Optional[threading.Event] = None,
    chunk_size: Optional[int] = None,
) -> SimulationResult:
    """Run ``trials`` independent battles and count outcomes for the attacker.

    Args:
        attacker, defender: formations, validated once before any trial runs.
        trials: positive number of battles to run.
        seed: master seed; ``None`` draws one from the OS.
        workers: >1 spreads trials over a process pool.
        progress: called as ``progress(completed, trials)`` after every trial.
        cancel_event: checked between trials; once set, the completed trials
            are aggregated and the result is flagged ``cancelled``.

    Returns:
        SimulationResult where ``wins + losses + draws == trials`` (completed,
        non-failed trials). Trials aborted by ``BattleAbortedError`` are listed
        in ``failures`` and leave the other trials untouched.
    """
    if isinstance(trials, bool) or not isinstance(trials, int) or trials < 1:
        raise ConfigurationError(f"trial count must be a positive integer, got {trials!r}")
    if max_turns is not None:
        validate_turn_limit(max_turns)
    validate_formation(attacker, ATTACKER)
    validate_formation(defender, DEFENDER)
    balance = balance or default_balance()

    seeds = trial_seeds(seed, trials)
    work = [(i, s, attacker, defender, balance, max_turns) for i, s in enumerate(seeds)]

    wins = losses = draws = 0
    turns: List[int] = []
    failures: List[TrialFailure] = []
    cancelled = False
    completed = 0

    outcomes = _outcomes(work, workers, chunk_size)
    try:
        while True:
            if cancel_event is not None and cancel_event.is_set():
                cancelled = completed < trials
                break
            outcome = next(outcomes, None)
            if outcome is None:
                break
            completed += 1
            if outcome.error is not None:
                logger.warning("trial %d (seed %d) aborted: %s", outcome.trial, outcome.seed, outcome.error)
                failures.append(TrialFailure(trial=outcome.trial, seed=outcome.seed, reason=outcome.error))
            else:
                turns.append(outcome.turns)
                if outcome.winner is Winner.ATTACKER:
                    wins += 1
                elif outcome.winner is Winner.DEFENDER:
                    losses += 1
                else:
                    draws += 1
            if progress is not None:
                progress(completed, trials)
    finally:
        outcomes.close()

    result = SimulationResult(
        trials=wins + losses + draws,
        wins=wins,
        losses=losses,
        draws=draws,
        failures=failures,
        cancelled=cancelled,
        turn_summary=summarize_turns(turns),
    )
    logger.info(
        "simulated %d/%d trials: %d wins, %d losses, %d draws (%.1f%%)%s",
        completed,
        trials,
        wins,
        losses,
        draws,
        result.win_rate,
        " [cancelled]" if cancelled else "",
    )
    return result


# =============================
# Non-blocking wrapper
# =============================


class SimulationJob:
    """Runs :func:`run_simulations` on a background thread.

    Callers poll ``in_progress`` / ``progress`` and fetch ``result()`` once the
    run has finished; ``cancel()`` takes effect between trials.
    """

    def __init__(
        self,
        attacker: Formation,
        defender: Formation,
        trials: int,
        seed: Optional[int] = None,
        balance: Optional[BalanceConfig] = None,
        max_turns: Optional[int] = None,
        workers: int = 1,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        self.total = trials
        self.completed = 0
        self._lock = threading.Lock()
        self._cancel = threading.Event()
        owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="canyon-sim")
        self._future: Future = self._executor.submit(
            run_simulations,
            attacker,
            defender,
            trials,
            seed=seed,
            balance=balance,
            max_turns=max_turns,
            workers=workers,
            progress=self._on_progress,
            cancel_event=self._cancel,
        )
        if owns_executor:
            self._future.add_done_callback(lambda _f: self._executor.shutdown(wait=False))

    def _on_progress(self, completed: int, total: int) -> None:
        with self._lock:
            self.completed = completed

    @property
    def in_progress(self) -> bool:
        return not self._future.done()

    @property
    def progress(self) -> float:
        with self._lock:
            return self.completed / self.total if self.total else 1.0

    def cancel(self) -> None:
        self._cancel.set()

    def result(self, wait: bool = False, timeout: Optional[float] = None) -> SimulationResult:
        """The aggregate, once available.

        Raises:
            SimulationPendingError: the run is still going and ``wait`` is false.
        """
        if not wait and not self._future.done():
            raise SimulationPendingError(
                f"simulation in progress ({self.completed}/{self.total} trials); no result yet"
            )
        return self._future.result(timeout=timeout)

    def status(self) -> Dict[str, Any]:
        extra: Dict[str, Any] = {}
        if self.in_progress:
            state = "in_progress"
        elif self._future.exception() is not None:
            state = "failed"
            extra["error"] = str(self._future.exception())
        elif self._future.result().cancelled:
            state = "cancelled"
        else:
            state = "done"
        with self._lock:
            return {"state": state, "completed": self.completed, "total": self.total, **extra}


__all__ = [
    "run_simulations",
    "SimulationJob",
    "TrialOutcome",
    "trial_seeds",
    "summarize_turns",
]

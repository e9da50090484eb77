import threading

import pytest

from canyon_sim.config import load_balance
from canyon_sim.game_models import BaseStats, Commander, Formation, FormationSlot, UserCommander
from canyon_sim.simulators import monte_carlo
from canyon_sim.simulators.monte_carlo import run_simulations, summarize_turns, trial_seeds
from canyon_sim.validators import BattleAbortedError, ConfigurationError, EmptyFormationError


def make_slot(cid: str, role: str = "nuker", troops: int = 100_000, **growth) -> FormationSlot:
    commander = Commander(
        id=cid,
        name=cid.title(),
        rarity="legendary",
        troop_type="mixed",
        roles=(role,),
        base_stats=BaseStats(attack=100.0, defense=100.0, health=100.0, march_speed=60.0),
    )
    return FormationSlot(primary=UserCommander(commander, **growth), troop_count=troops)


def mirror_formation() -> Formation:
    return Formation.from_slots([make_slot("lead"), make_slot("wall", role="tank")])


def test_outcomes_sum_to_trials():
    result = run_simulations(mirror_formation(), mirror_formation(), trials=50, seed=1)
    assert result.wins + result.losses + result.draws == 50
    assert result.trials == 50
    assert not result.failures and not result.cancelled
    assert 0 <= result.win_rate <= 100
    assert result.turn_summary["min"] >= 1
    assert result.turn_summary["max"] <= 50


def test_same_seed_same_aggregate():
    a = run_simulations(mirror_formation(), mirror_formation(), trials=30, seed=8)
    b = run_simulations(mirror_formation(), mirror_formation(), trials=30, seed=8)
    assert a.to_dict() == b.to_dict()


def test_parallel_run_matches_sequential():
    sequential = run_simulations(mirror_formation(), mirror_formation(), trials=12, seed=11)
    parallel = run_simulations(mirror_formation(), mirror_formation(), trials=12, seed=11, workers=2)
    assert (parallel.wins, parallel.losses, parallel.draws) == (
        sequential.wins,
        sequential.losses,
        sequential.draws,
    )
    assert parallel.turn_summary == sequential.turn_summary


def test_mirror_match_is_balanced():
    result = run_simulations(mirror_formation(), mirror_formation(), trials=1000, seed=2024)
    assert abs(result.wins - result.losses) <= 100


def test_tank_against_nuker_is_contested():
    tank = Formation.from_slots([make_slot("bulwark", role="tank")])
    nuker = Formation.from_slots([make_slot("striker", role="nuker")])
    result = run_simulations(tank, nuker, trials=200, seed=42)
    assert result.wins > 0
    assert result.losses > 0


def test_tank_against_nuker_at_max_progression():
    maxed = dict(level=60, stars=5, skill_levels=(5, 5, 5, 5))
    tank = Formation.from_slots([make_slot("bulwark", role="tank", **maxed)])
    nuker = Formation.from_slots([make_slot("striker", role="nuker", **maxed)])
    result = run_simulations(tank, nuker, trials=200, seed=42)
    assert result.wins + result.losses + result.draws == 200
    assert not result.failures
    assert result.wins > 0
    assert result.losses > 0


def test_swapping_sides_mirrors_the_outcome():
    a = mirror_formation()
    b = Formation.from_slots([make_slot("raider", troops=115_000), make_slot("guard", role="tank", troops=90_000)])
    ab = run_simulations(a, b, trials=300, seed=17)
    ba = run_simulations(b, a, trials=300, seed=71)
    # no side advantage: A winning as attacker is B losing as attacker
    assert abs(ab.wins - ba.losses) <= 40
    assert abs(ab.losses - ba.wins) <= 40
    assert abs(ab.draws - ba.draws) <= 40


def test_stronger_attacker_never_does_worse():
    base = run_simulations(mirror_formation(), mirror_formation(), trials=200, seed=5)
    boosted = run_simulations(mirror_formation().scaled(1.5), mirror_formation(), trials=200, seed=5)
    assert boosted.win_rate > base.win_rate


def test_progress_reported_after_each_trial():
    seen = []
    run_simulations(
        mirror_formation(), mirror_formation(), trials=5, seed=3, progress=lambda d, t: seen.append((d, t))
    )
    assert seen == [(1, 5), (2, 5), (3, 5), (4, 5), (5, 5)]


def test_cancel_keeps_completed_trials():
    stop = threading.Event()

    def progress(done, total):
        if done == 5:
            stop.set()

    result = run_simulations(
        mirror_formation(), mirror_formation(), trials=20, seed=3, progress=progress, cancel_event=stop
    )
    assert result.cancelled
    assert result.trials == 5
    assert result.wins + result.losses + result.draws == 5


def test_aborted_trials_recorded_as_failures(monkeypatch):
    real = monte_carlo.run_battle
    calls = []

    def flaky(*args, **kwargs):
        calls.append(1)
        if len(calls) % 3 == 0:
            raise BattleAbortedError("army state corrupted")
        return real(*args, **kwargs)

    monkeypatch.setattr(monte_carlo, "run_battle", flaky)
    result = run_simulations(mirror_formation(), mirror_formation(), trials=9, seed=1)
    assert [f.trial for f in result.failures] == [2, 5, 8]
    assert all(f.reason == "army state corrupted" for f in result.failures)
    assert result.wins + result.losses + result.draws == 6 == result.trials


@pytest.mark.parametrize("trials", [0, -3, 2.5, True])
def test_bad_trial_count_rejected(trials):
    with pytest.raises(ConfigurationError):
        run_simulations(mirror_formation(), mirror_formation(), trials=trials)


def test_empty_attacker_rejected_before_any_trial():
    with pytest.raises(EmptyFormationError):
        run_simulations(Formation.empty(), mirror_formation(), trials=10)


def test_trial_seeds_reproducible():
    seeds = trial_seeds(5, 4)
    assert seeds == trial_seeds(5, 4)
    assert all(1 <= s < 2**31 for s in seeds)


def test_summarize_turns():
    summary = summarize_turns([1, 2, 3, 4])
    assert summary["mean"] == 2.5
    assert summary["p50"] == 2.5
    assert summary["min"] == 1 and summary["max"] == 4
    assert summarize_turns([]) == {}


def test_overflowing_trials_fail_without_killing_the_run():
    balance = load_balance(env_prefix=None, overrides={"roles": {"nuker": {"attack": 1e303}}})
    result = run_simulations(mirror_formation(), mirror_formation(), trials=4, seed=2, balance=balance)
    assert [f.trial for f in result.failures] == [0, 1, 2, 3]
    assert all("non-finite" in f.reason for f in result.failures)
    assert result.wins + result.losses + result.draws == 0 == result.trials


@pytest.mark.parametrize("max_turns", [0, -1, 1.5])
def test_bad_turn_limit_rejected_before_any_trial(max_turns):
    with pytest.raises(ConfigurationError, match="max_turns"):
        run_simulations(mirror_formation(), mirror_formation(), trials=5, max_turns=max_turns)

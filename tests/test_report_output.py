import json
import random

from canyon_sim.formation import formation_from_dict
from canyon_sim.reports.battle_report import build_battle_report, build_simulation_report
from canyon_sim.simulators.combat import health_fraction, run_battle
from canyon_sim.simulators.monte_carlo import run_simulations


def formations():
    attacker = formation_from_dict(
        {"slots": [{"commander": "charles-martel", "level": 60}, None, None, None, {"commander": "lohar", "level": 60}]},
        "attacker",
    )
    defender = formation_from_dict({"slots": [{"commander": "ysg", "level": 60}]}, "defender")
    return attacker, defender


def test_battle_report_json_and_markdown():
    attacker, defender = formations()
    state = run_battle(attacker, defender, random.Random(12))
    report = build_battle_report(state, seed=12)
    data = json.loads(report.to_json())
    assert data["winner"] == state.winner.value
    assert data["seed"] == 12
    assert [a["slot"] for a in data["attacker"]] == [0, 4]
    assert data["attacker"][1]["row"] == "back"
    assert all(0 <= a["rage"] <= 1000 for a in data["attacker"] + data["defender"])
    assert len(data["log"]) == len(state.battle_log)
    md = report.to_markdown(max_log_lines=3)
    assert md.startswith("# Battle Report")
    assert "## Attacker" in md and "## Defender" in md
    assert "## Battle Log" in md


def test_battle_report_without_log():
    attacker, defender = formations()
    report = build_battle_report(run_battle(attacker, defender, random.Random(1)), include_log=False)
    assert report.log == []
    assert "Battle Log" not in report.to_markdown()


def test_simulation_report():
    attacker, defender = formations()
    result = run_simulations(attacker, defender, trials=10, seed=4)
    report = build_simulation_report(result, requested_trials=10, seed=4)
    data = json.loads(report.to_json())
    assert data["trials"] == 10
    assert data["wins"] + data["losses"] + data["draws"] == 10
    assert data["failures"] == []
    md = report.to_markdown()
    assert "Win rate" in md
    assert "Battle Length" in md


def test_report_health_fractions_match_engine():
    attacker, defender = formations()
    state = run_battle(attacker, defender, random.Random(3), max_turns=4)
    report = build_battle_report(state)
    assert report.attacker_health_fraction == health_fraction(state.attacker_armies)
    assert report.defender_health_fraction == health_fraction(state.defender_armies)
    assert [a.remaining_health for a in report.defender] == [a.current_health for a in state.defender_armies]

from __future__ import annotations
from dataclasses import dataclass, asdict, field
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
import json

from ..game_models import Army, BattleState, SimulationResult
from ..simulators.combat import health_fraction


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


@dataclass
class ArmyDiag:
    id: str
    commander: str
    secondary: Optional[str]
    slot: int
    row: str
    troop_count: int
    max_health: float
    remaining_health: float
    is_alive: bool
    rage: float = 0.0


@dataclass
class BattleReport:
    timestamp: str
    seed: Optional[int]
    winner: str
    decided_by: str
    turns: int
    max_turns: int
    attacker_health_fraction: float
    defender_health_fraction: float
    attacker: List[ArmyDiag]
    defender: List[ArmyDiag]
    log: List[Dict[str, Any]] = field(default_factory=list)

    def to_json(self) -> str:
        return json.dumps(asdict(self), indent=2, sort_keys=False)

    def to_markdown(self, max_log_lines: int = 40) -> str:
        lines = []
        lines.append(f"# Battle Report: {self.winner}")
        lines.append(f"- **Timestamp:** {self.timestamp}")
        lines.append(f"- **Seed:** {self.seed}  |  **Turns:** {self.turns}/{self.max_turns}  |  **Decided by:** {self.decided_by}")
        lines.append(
            f"- **Remaining health:** attacker {self.attacker_health_fraction:.1%}"
            f"  |  defender {self.defender_health_fraction:.1%}"
        )
        for title, armies in (("Attacker", self.attacker), ("Defender", self.defender)):
            lines.append(f"\n## {title}")
            for a in armies:
                status = "alive" if a.is_alive else "defeated"
                pair = f"{a.commander} + {a.secondary}" if a.secondary else a.commander
                lines.append(
                    f"- [{a.row} {a.slot}] **{pair}**: {a.remaining_health:,.0f}/{a.max_health:,.0f} ({status}, rage {a.rage:.0f})"
                )
        if self.log:
            lines.append("\n## Battle Log")
            for entry in self.log[:max_log_lines]:
                extra = []
                if entry.get("damage") is not None:
                    extra.append(f"-{entry['damage']:,.0f}")
                if entry.get("heal") is not None:
                    extra.append(f"+{entry['heal']:,.0f}")
                if entry.get("effect"):
                    extra.append(f"[{entry['effect']}]")
                suffix = f" ({' '.join(extra)})" if extra else ""
                lines.append(f"- T{entry['turn']}: {entry['action']}{suffix}")
            hidden = len(self.log) - max_log_lines
            if hidden > 0:
                lines.append(f"- … {hidden} more entries")
        return "\n".join(lines)


@dataclass
class SimulationReport:
    timestamp: str
    seed: Optional[int]
    requested_trials: int
    trials: int
    wins: int
    losses: int
    draws: int
    win_rate: float
    cancelled: bool
    failures: List[Dict[str, Any]]
    turn_summary: Dict[str, float]

    def to_json(self) -> str:
        return json.dumps(asdict(self), indent=2, sort_keys=False)

    def to_markdown(self) -> str:
        lines = []
        lines.append("# Simulation Report")
        lines.append(f"- **Timestamp:** {self.timestamp}")
        lines.append(f"- **Seed:** {self.seed}  |  **Trials:** {self.trials}/{self.requested_trials}")
        lines.append(f"- **Win rate:** {self.win_rate:.1f}%")
        lines.append(f"- wins: {self.wins} | losses: {self.losses} | draws: {self.draws}")
        if self.cancelled:
            lines.append("- run was cancelled before all trials finished")
        if self.turn_summary:
            ts = self.turn_summary
            lines.append("\n## Battle Length")
            lines.append(
                f"- mean {ts['mean']:.1f} turns | median {ts['p50']:.0f} | p90 {ts['p90']:.0f}"
                f" | range {ts['min']:.0f}-{ts['max']:.0f}"
            )
        if self.failures:
            lines.append("\n## Failed Trials")
            for f in self.failures:
                lines.append(f"- trial {f['trial']} (seed {f['seed']}): {f['reason']}")
        return "\n".join(lines)


def _army_diag(army: Army) -> ArmyDiag:
    return ArmyDiag(
        id=army.id,
        commander=army.primary.name,
        secondary=army.secondary.name if army.secondary else None,
        slot=army.slot,
        row=army.row.value,
        troop_count=army.troop_count,
        max_health=army.stats.max_health,
        remaining_health=army.current_health,
        is_alive=army.is_alive,
        rage=army.current_rage,
    )


def build_battle_report(state: BattleState, seed: Optional[int] = None, include_log: bool = True) -> BattleReport:
    data = state.to_dict()
    return BattleReport(
        timestamp=_timestamp(),
        seed=seed,
        winner=state.winner.value if state.winner else "undecided",
        decided_by=state.decided_by or "",
        turns=state.turn,
        max_turns=state.max_turns,
        attacker_health_fraction=health_fraction(state.attacker_armies),
        defender_health_fraction=health_fraction(state.defender_armies),
        attacker=[_army_diag(a) for a in state.attacker_armies],
        defender=[_army_diag(a) for a in state.defender_armies],
        log=data["battle_log"] if include_log else [],
    )


def build_simulation_report(
    result: SimulationResult,
    requested_trials: int,
    seed: Optional[int] = None,
) -> SimulationReport:
    return SimulationReport(
        timestamp=_timestamp(),
        seed=seed,
        requested_trials=requested_trials,
        trials=result.trials,
        wins=result.wins,
        losses=result.losses,
        draws=result.draws,
        win_rate=result.win_rate,
        cancelled=result.cancelled,
        failures=[asdict(f) for f in result.failures],
        turn_summary=dict(result.turn_summary),
    )


__all__ = [
    "ArmyDiag",
    "BattleReport",
    "SimulationReport",
    "build_battle_report",
    "build_simulation_report",
]

from __future__ import annotations
import argparse, logging, random, sys, time
from typing import Any, Dict, Optional

import yaml

from .commanders import all_commanders
from .config import BalanceConfig, DEFAULT_ENV_PREFIX, load_balance
from .formation import formation_from_dict
from .game_models import Formation
from .reports.battle_report import build_battle_report, build_simulation_report
from .simulators.combat import run_battle
from .simulators.monte_carlo import run_simulations
from .validators import ConfigurationError


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="python -m canyon_sim.cli",
        description="Sunset Canyon battle simulator"
    )
    p.add_argument("-v", "--verbose", action="count", default=0, help="-v for info, -vv for debug logging")
    sub = p.add_subparsers(dest="cmd")

    # battle
    bt = sub.add_parser("battle", help="Resolve a single battle and emit a report")
    _add_common_args(bt)
    bt.add_argument("--no-log", action="store_true", help="Leave the turn-by-turn log out of the report")

    # simulate
    sm = sub.add_parser("simulate", help="Run Monte Carlo trials and report the win rate")
    _add_common_args(sm)
    sm.add_argument("--trials", type=int, default=200, help="Number of battles")
    sm.add_argument("--workers", type=int, default=1, help="Worker processes (1 = in-process)")

    # commanders
    cm = sub.add_parser("commanders", help="List the commander catalog")
    cm.add_argument("--role", type=str, default=None, help="Only commanders with this role")

    args = p.parse_args(argv)
    if getattr(args, "cmd", None) is None:
        p.print_help()
        sys.exit(2)
    return args


def _add_common_args(ap: argparse.ArgumentParser) -> None:
    ap.add_argument("--attacker", type=str, required=True, help="Attacker formation file (YAML/JSON)")
    ap.add_argument("--defender", type=str, required=True, help="Defender formation file (YAML/JSON)")
    ap.add_argument("--seed", type=int, default=None)
    ap.add_argument("--max-turns", dest="max_turns", type=int, default=None)
    ap.add_argument("--config", type=str, action="append", default=[], help="Balance override files (merged)")
    ap.add_argument("--env-prefix", type=str, default=DEFAULT_ENV_PREFIX, help="Env prefix for balance overrides")
    ap.add_argument("--report", type=str, default=None, help="Path to save report (.json or .md)")
    ap.add_argument("--print-md", action="store_true", help="Print Markdown report to stdout")


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _load_formation(path: str, side: str) -> Formation:
    with open(path, "r", encoding="utf-8") as f:
        try:
            payload = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"{side}: {path} is not valid YAML/JSON ({exc})") from exc
    if not isinstance(payload, dict):
        raise ConfigurationError(f"{side}: {path} must contain a mapping with 'slots'")
    return formation_from_dict(payload, side)


def _balance(args: argparse.Namespace) -> BalanceConfig:
    return load_balance(args.config, env_prefix=args.env_prefix)


def _write_report(report: Any, path: Optional[str]) -> bool:
    if not path:
        return True
    if path.endswith(".json"):
        text = report.to_json()
    elif path.endswith(".md"):
        text = report.to_markdown()
    else:
        print("Report path must end with .json or .md", file=sys.stderr)
        return False
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)
    return True


def _battle(args: argparse.Namespace) -> int:
    attacker = _load_formation(args.attacker, "attacker")
    defender = _load_formation(args.defender, "defender")
    seed = args.seed if args.seed is not None else random.randrange(1, 2**31)
    state = run_battle(attacker, defender, random.Random(seed), balance=_balance(args), max_turns=args.max_turns)
    report = build_battle_report(state, seed=seed, include_log=not args.no_log)
    if not _write_report(report, args.report):
        return 2
    if args.print_md:
        print(report.to_markdown())
    else:
        print(f"winner: {report.winner} after {report.turns} turns ({report.decided_by}), seed {seed}")
    return 0


def _simulate(args: argparse.Namespace) -> int:
    attacker = _load_formation(args.attacker, "attacker")
    defender = _load_formation(args.defender, "defender")
    t0 = time.perf_counter()
    result = run_simulations(
        attacker,
        defender,
        trials=args.trials,
        seed=args.seed,
        balance=_balance(args),
        max_turns=args.max_turns,
        workers=args.workers,
    )
    elapsed = max(1e-9, time.perf_counter() - t0)
    report = build_simulation_report(result, requested_trials=args.trials, seed=args.seed)
    if not _write_report(report, args.report):
        return 2
    if args.print_md:
        print(report.to_markdown())
    else:
        print(
            f"win rate {result.win_rate:.1f}% "
            f"({result.wins}W/{result.losses}L/{result.draws}D over {result.trials} trials, "
            f"{result.trials / elapsed:.0f} battles/s)"
        )
    return 0


def _commanders(args: argparse.Namespace) -> int:
    rows = sorted(all_commanders().values(), key=lambda c: (-c.rarity.tier, c.name))
    for c in rows:
        roles = [r.value for r in c.roles]
        if args.role and args.role.lower() not in roles:
            continue
        bs = c.base_stats
        print(
            f"{c.id:16s} {c.name:22s} {c.rarity.value:9s} {c.troop_type.value:8s} "
            f"{'/'.join(roles):18s} atk {bs.attack:.0f} def {bs.defense:.0f} hp {bs.health:.0f}"
        )
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    _configure_logging(args.verbose)
    handlers: Dict[str, Any] = {"battle": _battle, "simulate": _simulate, "commanders": _commanders}
    try:
        return handlers[args.cmd](args)
    except ConfigurationError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    except OSError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())

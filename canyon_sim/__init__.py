"""Canyon Sim: Sunset Canyon battle engine and Monte Carlo win-rate estimator."""

from importlib import import_module
from typing import Any

__version__ = "0.1.0"
__all__ = [
    "run_battle",
    "resolve_battle",
    "BattleConfig",
    "BattleResolver",
    "run_simulations",
    "SimulationJob",
    "compute_effective_stats",
    "Commander",
    "UserCommander",
    "Formation",
    "FormationSlot",
    "SkillDefinition",
    "SkillEffect",
    "Army",
    "BattleState",
    "BattleLogEntry",
    "SimulationResult",
    "Role",
    "TroopType",
    "Rarity",
    "Winner",
    "BalanceConfig",
    "load_balance",
    "get_commander",
    "create_user_commander",
    "formation_from_dict",
    "ConfigurationError",
    "EmptyFormationError",
    "__version__",
]

_EXPORTS = {
    "run_battle": ("simulators.combat", "run_battle"),
    "resolve_battle": ("simulators.combat", "resolve_battle"),
    "BattleConfig": ("simulators.combat", "BattleConfig"),
    "BattleResolver": ("simulators.combat", "BattleResolver"),
    "run_simulations": ("simulators.monte_carlo", "run_simulations"),
    "SimulationJob": ("simulators.monte_carlo", "SimulationJob"),
    "compute_effective_stats": ("stats", "compute_effective_stats"),
    "Commander": ("game_models", "Commander"),
    "UserCommander": ("game_models", "UserCommander"),
    "Formation": ("game_models", "Formation"),
    "FormationSlot": ("game_models", "FormationSlot"),
    "SkillDefinition": ("game_models", "SkillDefinition"),
    "SkillEffect": ("game_models", "SkillEffect"),
    "Army": ("game_models", "Army"),
    "BattleState": ("game_models", "BattleState"),
    "BattleLogEntry": ("game_models", "BattleLogEntry"),
    "SimulationResult": ("game_models", "SimulationResult"),
    "Role": ("game_models", "Role"),
    "TroopType": ("game_models", "TroopType"),
    "Rarity": ("game_models", "Rarity"),
    "Winner": ("game_models", "Winner"),
    "BalanceConfig": ("config", "BalanceConfig"),
    "load_balance": ("config", "load_balance"),
    "get_commander": ("commanders", "get_commander"),
    "create_user_commander": ("commanders", "create_user_commander"),
    "formation_from_dict": ("formation", "formation_from_dict"),
    "ConfigurationError": ("validators", "ConfigurationError"),
    "EmptyFormationError": ("validators", "EmptyFormationError"),
}


def __getattr__(name: str) -> Any:
    if name in _EXPORTS:
        module_name, attr_name = _EXPORTS[name]
        module = import_module(f".{module_name}", __name__)
        attr = getattr(module, attr_name)
        globals()[name] = attr
        return attr
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


def __dir__() -> list[str]:
    return sorted(set(list(globals().keys()) + list(__all__)))

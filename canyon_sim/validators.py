"""Input validation and the engine's failure taxonomy.

Everything raised from here is a :class:`ConfigurationError`, which callers
(CLI, HTTP API) report as malformed input. Checks run before a battle's first
turn; nothing is clamped or repaired mid-battle.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Sequence

if TYPE_CHECKING:
    from .game_models import Formation, FormationSlot, UserCommander


MIN_LEVEL = 1
MAX_LEVEL = 60
MIN_SKILL_LEVEL = 0
MAX_SKILL_LEVEL = 5
SKILL_SLOTS = 4
FORMATION_SIZE = 8


class ConfigurationError(ValueError):
    """Invalid input detected before any battle turn executes."""


class InvalidCommanderError(ConfigurationError):
    pass


class InvalidFormationError(ConfigurationError):
    pass


class EmptyFormationError(InvalidFormationError):
    pass


class InvalidBalanceError(ConfigurationError):
    pass


class BattleAbortedError(RuntimeError):
    """Army state became unusable mid-battle; the battle cannot continue."""


class SimulationPendingError(RuntimeError):
    """A simulation result was requested before the run finished."""


def max_stars_for(rarity) -> int:
    from .game_models import Rarity

    return 6 if rarity is Rarity.LEGENDARY else 5


def validate_skill_levels(skill_levels: Sequence[int], label: str = "commander") -> None:
    if len(skill_levels) != SKILL_SLOTS:
        raise InvalidCommanderError(
            f"{label}: expected {SKILL_SLOTS} skill levels, got {len(skill_levels)}"
        )
    for idx, lvl in enumerate(skill_levels):
        if isinstance(lvl, bool) or not isinstance(lvl, int):
            raise InvalidCommanderError(f"{label}: skill {idx + 1} level must be an integer")
        if not MIN_SKILL_LEVEL <= lvl <= MAX_SKILL_LEVEL:
            raise InvalidCommanderError(
                f"{label}: skill {idx + 1} level {lvl} outside "
                f"[{MIN_SKILL_LEVEL}, {MAX_SKILL_LEVEL}]"
            )


def validate_user_commander(uc: "UserCommander") -> None:
    """Reject out-of-range level, stars, or skill levels."""
    label = f"{uc.commander.name} ({uc.unique_id})"
    if isinstance(uc.level, bool) or not isinstance(uc.level, int):
        raise InvalidCommanderError(f"{label}: level must be an integer")
    if not MIN_LEVEL <= uc.level <= MAX_LEVEL:
        raise InvalidCommanderError(
            f"{label}: level {uc.level} outside [{MIN_LEVEL}, {MAX_LEVEL}]"
        )
    top = max_stars_for(uc.commander.rarity)
    if isinstance(uc.stars, bool) or not isinstance(uc.stars, int) or not 1 <= uc.stars <= top:
        raise InvalidCommanderError(
            f"{label}: stars {uc.stars!r} outside [1, {top}] for "
            f"{uc.commander.rarity.value} commanders"
        )
    validate_skill_levels(uc.skill_levels, label)


def validate_slot(slot: "FormationSlot", index: int) -> None:
    if slot.troop_count <= 0:
        raise InvalidCommanderError(
            f"slot {index}: troop count must be positive, got {slot.troop_count}"
        )
    validate_user_commander(slot.primary)
    if slot.secondary is not None:
        validate_user_commander(slot.secondary)
        if slot.secondary.unique_id == slot.primary.unique_id:
            raise InvalidFormationError(
                f"slot {index}: secondary commander duplicates the primary"
            )


def validate_formation(formation: "Formation", side: str = "formation") -> None:
    """Check slot count, occupancy, and every commander in the formation.

    Raises:
        InvalidFormationError: wrong slot count or duplicated commander.
        EmptyFormationError: no occupied slot.
        InvalidCommanderError: any commander out of range.
    """
    if len(formation.slots) != FORMATION_SIZE:
        raise InvalidFormationError(
            f"{side}: expected {FORMATION_SIZE} slots, got {len(formation.slots)}"
        )
    occupied = [(i, s) for i, s in enumerate(formation.slots) if s is not None]
    if not occupied:
        raise EmptyFormationError(f"{side}: formation has no occupied slot")

    seen: set[str] = set()
    for index, slot in occupied:
        try:
            validate_slot(slot, index)
        except ConfigurationError as exc:
            raise type(exc)(f"{side}: {exc}") from exc
        for uc in _commanders_in(slot):
            if uc.unique_id in seen:
                raise InvalidFormationError(
                    f"{side}: commander {uc.unique_id} is used in more than one slot"
                )
            seen.add(uc.unique_id)


def validate_turn_limit(max_turns: int) -> None:
    if isinstance(max_turns, bool) or not isinstance(max_turns, int) or max_turns < 1:
        raise ConfigurationError(f"max_turns must be a positive integer, got {max_turns!r}")


def _commanders_in(slot: "FormationSlot") -> Iterable["UserCommander"]:
    yield slot.primary
    if slot.secondary is not None:
        yield slot.secondary


__all__ = [
    "ConfigurationError",
    "InvalidCommanderError",
    "InvalidFormationError",
    "EmptyFormationError",
    "InvalidBalanceError",
    "BattleAbortedError",
    "SimulationPendingError",
    "validate_user_commander",
    "validate_skill_levels",
    "validate_slot",
    "validate_formation",
    "validate_turn_limit",
    "max_stars_for",
]

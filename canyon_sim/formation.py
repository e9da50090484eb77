from __future__ import annotations
from typing import Any, Dict, List, Mapping, Optional

from .commanders import create_user_commander, get_commander
from .game_models import Commander, Formation, FormationSlot, Row, UserCommander
from .validators import (
    FORMATION_SIZE,
    ConfigurationError,
    InvalidFormationError,
    validate_formation,
)

# Sunset Canyon troop allotment: (commander level + city hall level) * multiplier
TROOP_MULTIPLIER = 250
DEFAULT_CITY_HALL_LEVEL = 25


def calculate_troop_count(commander_level: int, city_hall_level: int = DEFAULT_CITY_HALL_LEVEL) -> int:
    """At (60 + 25) * 250 an army fields 21,250 troops."""
    return (commander_level + city_hall_level) * TROOP_MULTIPLIER


def index_to_position(index: int) -> Dict[str, Any]:
    if not 0 <= index < FORMATION_SIZE:
        raise InvalidFormationError(f"slot index {index} outside [0, {FORMATION_SIZE - 1}]")
    if index < 4:
        return {"row": Row.FRONT.value, "slot": index}
    return {"row": Row.BACK.value, "slot": index - 4}


# -----------------------------
# dict <-> Formation
# -----------------------------


def _commander_from(raw: Any) -> Commander:
    if isinstance(raw, Mapping):
        return Commander.from_dict(dict(raw))
    return get_commander(str(raw))


def user_commander_from_dict(data: Mapping[str, Any], label: str = "commander") -> UserCommander:
    if "commander" not in data:
        raise InvalidFormationError(f"{label}: missing 'commander'")
    commander = _commander_from(data["commander"])
    skill_levels = data.get("skill_levels", data.get("skillLevels", (1, 1, 1, 1)))
    if not isinstance(skill_levels, (list, tuple)):
        raise InvalidFormationError(f"{label}: skill_levels must be a list")
    return create_user_commander(
        commander,
        level=data.get("level", 1),
        skill_levels=tuple(skill_levels),
        stars=data.get("stars", 1),
        unique_id=data.get("unique_id") or data.get("uniqueId"),
    )


def slot_from_dict(data: Mapping[str, Any], index: int, city_hall_level: int) -> FormationSlot:
    label = f"slot {index}"
    primary = user_commander_from_dict(data, label)
    secondary = None
    if data.get("secondary") is not None:
        secondary = user_commander_from_dict(data["secondary"], f"{label} secondary")
    troop_count = data.get("troop_count", data.get("troopCount"))
    if troop_count is None:
        troop_count = calculate_troop_count(primary.level, city_hall_level)
    if isinstance(troop_count, bool) or not isinstance(troop_count, int):
        raise InvalidFormationError(f"{label}: troop_count must be an integer")
    return FormationSlot(primary=primary, troop_count=troop_count, secondary=secondary)


def formation_from_dict(payload: Mapping[str, Any], side: str = "formation") -> Formation:
    """
    Build and validate a Formation from a JSON/YAML-shaped mapping.

    Accepted shape::

        {"city_hall_level": 25,
         "slots": [null, {"commander": "richard-i", "level": 60, "stars": 5,
                          "skill_levels": [5, 5, 5, 5], "troop_count": 21250,
                          "secondary": {"commander": "lohar", ...}}, ...]}

    ``commander`` is a catalog id or an inline commander definition. Missing
    troop counts default to :func:`calculate_troop_count`. Fewer than eight
    slots are padded with empty ones.
    """
    if not isinstance(payload, Mapping):
        raise InvalidFormationError(f"{side}: expected a mapping with 'slots'")
    raw_slots = payload.get("slots")
    if not isinstance(raw_slots, list):
        raise InvalidFormationError(f"{side}: 'slots' must be a list")
    if len(raw_slots) > FORMATION_SIZE:
        raise InvalidFormationError(
            f"{side}: {len(raw_slots)} slots given, at most {FORMATION_SIZE} allowed"
        )
    city_hall = payload.get("city_hall_level", DEFAULT_CITY_HALL_LEVEL)

    slots: List[Optional[FormationSlot]] = []
    for index, raw in enumerate(raw_slots):
        if raw is None:
            slots.append(None)
            continue
        if not isinstance(raw, Mapping):
            raise InvalidFormationError(f"{side}: slot {index} must be an object or null")
        try:
            slots.append(slot_from_dict(raw, index, city_hall))
        except ConfigurationError as exc:
            raise type(exc)(f"{side}: {exc}") from exc
    formation = Formation.from_slots(slots)
    validate_formation(formation, side)
    return formation


def _user_commander_to_dict(uc: UserCommander) -> Dict[str, Any]:
    return {
        "commander": uc.commander.id,
        "unique_id": uc.unique_id,
        "level": uc.level,
        "stars": uc.stars,
        "skill_levels": list(uc.skill_levels),
    }


def formation_to_dict(formation: Formation) -> Dict[str, Any]:
    slots: List[Optional[Dict[str, Any]]] = []
    for slot in formation.slots:
        if slot is None:
            slots.append(None)
            continue
        entry = _user_commander_to_dict(slot.primary)
        entry["troop_count"] = slot.troop_count
        if slot.secondary is not None:
            entry["secondary"] = _user_commander_to_dict(slot.secondary)
        slots.append(entry)
    return {"slots": slots}


__all__ = [
    "TROOP_MULTIPLIER",
    "calculate_troop_count",
    "index_to_position",
    "user_commander_from_dict",
    "slot_from_dict",
    "formation_from_dict",
    "formation_to_dict",
]

"""Utilities for loading the commander catalog."""
from __future__ import annotations

import json
import os
from typing import Dict, List, Optional, Sequence

from .game_models import Commander, Rarity, Role, UserCommander
from .validators import InvalidCommanderError, validate_user_commander


class CommanderRegistry:
    """Singleton-style registry that loads JSON data on demand."""

    def __init__(self, path: Optional[str] = None) -> None:
        self._path = path or os.path.join(os.path.dirname(__file__), "data", "commanders.json")
        self._data: Dict[str, Commander] = {}
        self._loaded = False

    def load(self) -> None:
        if self._loaded:
            return
        with open(self._path, "r", encoding="utf-8") as handle:
            payload = json.load(handle)
        entries = {k: v for k, v in payload.items() if not k.startswith("_")}
        for commander_id, block in entries.items():
            self._data[commander_id] = Commander.from_dict({"id": commander_id, **block})
        self._loaded = True

    def get(self, commander_id: str) -> Commander:
        self.load()
        try:
            return self._data[commander_id]
        except KeyError:
            available = ", ".join(sorted(self._data))
            raise InvalidCommanderError(
                f"Unknown commander '{commander_id}'. Available: {available}"
            ) from None

    def all_commanders(self) -> Dict[str, Commander]:
        self.load()
        return dict(self._data)

    def by_role(self, role: Role) -> List[Commander]:
        self.load()
        return sorted(
            (c for c in self._data.values() if c.has_role(role)),
            key=lambda c: (-c.rarity.tier, c.name),
        )


_registry: Optional[CommanderRegistry] = None


def get_registry(path: Optional[str] = None) -> CommanderRegistry:
    global _registry
    if _registry is None or path is not None:
        _registry = CommanderRegistry(path=path)
    return _registry


def get_commander(commander_id: str) -> Commander:
    return get_registry().get(commander_id)


def all_commanders() -> Dict[str, Commander]:
    return get_registry().all_commanders()


def create_user_commander(
    commander: Commander | str,
    level: int = 1,
    skill_levels: Sequence[int] = (1, 1, 1, 1),
    stars: int = 1,
    unique_id: Optional[str] = None,
) -> UserCommander:
    """Build and validate a player's commander instance.

    ``commander`` may be a catalog id. Out-of-range level, stars or skill
    levels raise :class:`InvalidCommanderError`.
    """
    if isinstance(commander, str):
        commander = get_commander(commander)
    uc = UserCommander(
        commander=commander,
        level=level,
        stars=stars,
        skill_levels=tuple(skill_levels),
        unique_id=unique_id or commander.id,
    )
    validate_user_commander(uc)
    return uc


def max_user_commander(commander: Commander | str, unique_id: Optional[str] = None) -> UserCommander:
    """Level 60, top stars for the rarity, every skill at 5."""
    if isinstance(commander, str):
        commander = get_commander(commander)
    stars = 6 if commander.rarity is Rarity.LEGENDARY else 5
    return create_user_commander(commander, 60, (5, 5, 5, 5), stars, unique_id)


__all__ = [
    "CommanderRegistry",
    "get_registry",
    "get_commander",
    "all_commanders",
    "create_user_commander",
    "max_user_commander",
]

"""Effective-stat calculation for armies.

An army's combat numbers come from its primary commander's base stats, scaled
by troop count, level, stars, skill levels and rarity. A secondary commander
adds a reduced share of its own effective numbers; it never acts on its own.

    level_factor = 1 + level / 100
    max_health   = base_health * troop_count * level_factor
    attack       = base_attack * troop_count * level_factor * star * skill * rarity * attack_coefficient
    defense      = base_defense * troop_count * level_factor * star * skill * rarity * defense_coefficient
    speed        = march_speed * level_factor
"""
from __future__ import annotations

from typing import Optional, Sequence

from .config import BalanceConfig, StatConfig, default_balance
from .game_models import EffectiveStats, FormationSlot, UserCommander
from .validators import InvalidCommanderError, validate_user_commander


def level_factor(level: int) -> float:
    return 1 + level / 100


def star_factor(stars: int, cfg: StatConfig) -> float:
    return 1 + cfg.star_bonus * (stars - 1)


def skill_bonus(level: int, cfg: StatConfig) -> float:
    """Levels 1-4 add ``per_level`` each; the fifth level adds only ``max_level_bonus``."""
    bonus = min(level, 4) * cfg.skill.per_level
    if level >= 5:
        bonus += cfg.skill.max_level_bonus
    return bonus


def skill_factor(skill_levels: Sequence[int], cfg: StatConfig) -> float:
    return 1 + sum(skill_bonus(lvl, cfg) for lvl in skill_levels)


def _own_stats(uc: UserCommander, troop_count: int, cfg: StatConfig) -> EffectiveStats:
    base = uc.commander.base_stats
    lf = level_factor(uc.level)
    scale = (
        troop_count
        * lf
        * star_factor(uc.stars, cfg)
        * skill_factor(uc.skill_levels, cfg)
        * cfg.rarity_factor(uc.commander.rarity)
    )
    return EffectiveStats(
        attack=base.attack * scale * cfg.attack_coefficient,
        defense=base.defense * scale * cfg.defense_coefficient,
        max_health=base.health * troop_count * lf,
        speed=base.march_speed * lf,
    )


def compute_effective_stats(
    user_commander: UserCommander,
    troop_count: int,
    secondary: Optional[UserCommander] = None,
    balance: Optional[BalanceConfig] = None,
) -> EffectiveStats:
    """Combat-ready attack/defense/max health/speed for one army.

    Raises:
        InvalidCommanderError: level, stars or skill levels out of range, or a
            non-positive troop count.
    """
    cfg = (balance or default_balance()).stats
    if troop_count <= 0:
        raise InvalidCommanderError(f"troop count must be positive, got {troop_count}")
    validate_user_commander(user_commander)
    stats = _own_stats(user_commander, troop_count, cfg)
    if secondary is None:
        return stats

    validate_user_commander(secondary)
    bonus = _own_stats(secondary, troop_count, cfg)
    share = cfg.support_multiplier
    return EffectiveStats(
        attack=stats.attack + bonus.attack * share,
        defense=stats.defense + bonus.defense * share,
        max_health=stats.max_health + bonus.max_health * share,
        speed=stats.speed,
    )


def slot_stats(slot: FormationSlot, balance: Optional[BalanceConfig] = None) -> EffectiveStats:
    return compute_effective_stats(slot.primary, slot.troop_count, slot.secondary, balance)


__all__ = [
    "compute_effective_stats",
    "slot_stats",
    "level_factor",
    "star_factor",
    "skill_factor",
    "skill_bonus",
]

"""Balance configuration: coefficient tables for stats, damage, roles and effects.

The shipped defaults live in ``data/balance.yaml``. Extra YAML/JSON files are
deep-merged on top, then ``CANYON_SIM__`` environment variables, then explicit
overrides::

    CANYON_SIM__DAMAGE__VARIANCE=0.15  ->  {"damage": {"variance": 0.15}}
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple
import logging
import math
import os

import yaml

from .game_models import Rarity, Role, SkillEffectType, TroopType, coerce_enum
from .validators import ConfigurationError, InvalidBalanceError

logger = logging.getLogger(__name__)

DEFAULT_BALANCE_PATH = os.path.join(os.path.dirname(__file__), "data", "balance.yaml")
DEFAULT_ENV_PREFIX = "CANYON_SIM__"


def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(a)
    for k, v in (b or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _load_one(path: str) -> Dict[str, Any]:
    # JSON is a subset of YAML, so one parser covers both file kinds
    with open(path, "r", encoding="utf-8") as f:
        try:
            d = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise InvalidBalanceError(f"{path}: not valid YAML/JSON ({exc})") from exc
    if d is None:
        return {}
    if not isinstance(d, dict):
        raise InvalidBalanceError(f"{path}: top level must be a mapping")
    return d


def load_configs(paths: Iterable[str] | None) -> Dict[str, Any]:
    cfg: Dict[str, Any] = {}
    for p in (paths or []):
        cfg = _deep_merge(cfg, _load_one(p))
    return cfg


def env_overrides(prefix: str = DEFAULT_ENV_PREFIX) -> Dict[str, Any]:
    # Nested via double underscores: CANYON_SIM__STATS__STAR_BONUS=0.06
    out: Dict[str, Any] = {}
    for k, v in os.environ.items():
        if not k.startswith(prefix):
            continue
        parts = k[len(prefix):].split("__")
        cur = out
        for i, part in enumerate(parts):
            key = part.lower()
            if i == len(parts) - 1:
                cur[key] = _coerce(v)
            else:
                cur = cur.setdefault(key, {})
    return out


def _coerce(s: str) -> Any:
    t = s.strip().lower()
    if t in ("true", "false"):
        return t == "true"
    try:
        if "." in t or "e" in t:
            return float(t)
        return int(t)
    except ValueError:
        return s


def apply_cli_overrides(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    return _deep_merge(base, overrides or {})


# =============================
# Typed balance tables
# =============================


@dataclass(frozen=True)
class RoleModifier:
    attack: float = 1.0
    defense: float = 1.0


@dataclass(frozen=True)
class EffectDefinition:
    """A named effect a support/disabler army applies instead of attacking."""

    name: str
    target: str  # "ally" | "enemy"
    stat: Optional[str] = None  # "attack" | "defense" | None
    value: float = 0.0  # percent, negative for debuffs
    duration: int = 1
    cooldown: int = 3
    skips_action: bool = False


@dataclass(frozen=True)
class SkillScaling:
    per_level: float = 0.025
    max_level_bonus: float = 0.0125


@dataclass(frozen=True)
class StatConfig:
    support_multiplier: float = 0.3
    star_bonus: float = 0.05
    attack_coefficient: float = 0.1
    defense_coefficient: float = 0.05
    skill: SkillScaling = field(default_factory=SkillScaling)
    rarity: Tuple[Tuple[Rarity, float], ...] = (
        (Rarity.ELITE, 0.9),
        (Rarity.EPIC, 0.95),
        (Rarity.LEGENDARY, 1.0),
    )

    def rarity_factor(self, rarity: Rarity) -> float:
        return dict(self.rarity).get(rarity, 1.0)


@dataclass(frozen=True)
class DamageConfig:
    variance: float = 0.10
    min_damage: float = 1.0
    min_damage_fraction: float = 0.01
    heal_multiplier: float = 0.5


@dataclass(frozen=True)
class SkillConfig:
    """Rage economy and skill scaling.

    Skill damage is ``attack * damage_coefficient * coefficient_scale`` times
    ``level_base + level_step * skill_level``; a heal of value ``v`` restores
    ``attack * v * coefficient_scale * heal_multiplier * (1 + heal_level_step * skill_level)``.
    """

    rage_per_action: float = 100.0
    max_rage: float = 1000.0
    coefficient_scale: float = 0.001
    level_base: float = 0.6
    level_step: float = 0.08
    heal_level_step: float = 0.1
    buff_duration: int = 3
    debuff_duration: int = 3
    slow_duration: int = 3
    silence_duration: int = 2

    def level_multiplier(self, skill_level: int) -> float:
        return self.level_base + self.level_step * skill_level

    def default_duration(self, effect_type: SkillEffectType) -> int:
        return {
            SkillEffectType.BUFF: self.buff_duration,
            SkillEffectType.DEBUFF: self.debuff_duration,
            SkillEffectType.SLOW: self.slow_duration,
            SkillEffectType.SILENCE: self.silence_duration,
        }.get(effect_type, 1)


@dataclass(frozen=True)
class BalanceConfig:
    max_turns: int = 50
    stats: StatConfig = field(default_factory=StatConfig)
    damage: DamageConfig = field(default_factory=DamageConfig)
    skills: SkillConfig = field(default_factory=SkillConfig)
    roles: Tuple[Tuple[Role, RoleModifier], ...] = ()
    troop_effectiveness: Tuple[Tuple[TroopType, TroopType, float], ...] = ()
    effects: Tuple[Tuple[Role, EffectDefinition], ...] = ()

    def role_modifier(self, role: Role) -> RoleModifier:
        return dict(self.roles).get(role, RoleModifier())

    def effectiveness(self, attacker: TroopType, defender: TroopType) -> float:
        for a, d, mult in self.troop_effectiveness:
            if a is attacker and d is defender:
                return mult
        return 1.0

    def effect_for(self, role: Role) -> Optional[EffectDefinition]:
        return dict(self.effects).get(role)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BalanceConfig":
        try:
            return _balance_from_dict(data)
        except ConfigurationError as exc:
            raise InvalidBalanceError(f"balance config: {exc}") from exc
        except (TypeError, ValueError, AttributeError) as exc:
            raise InvalidBalanceError(f"balance config: malformed value ({exc})") from exc


def _balance_from_dict(data: Mapping[str, Any]) -> BalanceConfig:
    stats_raw = dict(data.get("stats") or {})
    skill_raw = dict(stats_raw.pop("skill", None) or {})
    rarity_raw = dict(stats_raw.pop("rarity", None) or {})
    stats = StatConfig(
        skill=SkillScaling(**{k: float(v) for k, v in skill_raw.items()}),
        rarity=tuple(
            sorted(
                ((coerce_enum(Rarity, k, "rarity"), float(v)) for k, v in rarity_raw.items()),
                key=lambda kv: kv[0].tier,
            )
        ) or StatConfig().rarity,
        **{k: float(v) for k, v in stats_raw.items()},
    )
    damage = DamageConfig(**{k: float(v) for k, v in (data.get("damage") or {}).items()})
    skills = SkillConfig(
        **{k: int(v) if k.endswith("_duration") else float(v) for k, v in (data.get("skills") or {}).items()}
    )

    roles = tuple(
        (coerce_enum(Role, name, "roles"), RoleModifier(**{k: float(v) for k, v in (mods or {}).items()}))
        for name, mods in (data.get("roles") or {}).items()
    )
    troop = []
    for att, row in (data.get("troop_effectiveness") or {}).items():
        for dfd, mult in (row or {}).items():
            troop.append(
                (
                    coerce_enum(TroopType, att, "troop_effectiveness"),
                    coerce_enum(TroopType, dfd, "troop_effectiveness"),
                    float(mult),
                )
            )
    effects = []
    for role_name, eff in (data.get("effects") or {}).items():
        eff = dict(eff or {})
        effects.append(
            (
                coerce_enum(Role, role_name, "effects"),
                EffectDefinition(
                    name=str(eff.get("name", role_name)),
                    target=str(eff.get("target", "enemy")),
                    stat=eff.get("stat"),
                    value=float(eff.get("value", 0.0)),
                    duration=int(eff.get("duration", 1)),
                    cooldown=int(eff.get("cooldown", 3)),
                    skips_action=bool(eff.get("skips_action", False)),
                ),
            )
        )

    cfg = BalanceConfig(
        max_turns=int(data.get("max_turns", 50)),
        stats=stats,
        damage=damage,
        skills=skills,
        roles=roles,
        troop_effectiveness=tuple(troop),
        effects=tuple(effects),
    )
    validate_balance(cfg)
    return cfg


def validate_balance(cfg: BalanceConfig) -> None:
    if cfg.max_turns < 1:
        raise InvalidBalanceError(f"max_turns must be >= 1, got {cfg.max_turns}")
    if not 0 < cfg.stats.support_multiplier < 1:
        raise InvalidBalanceError(
            f"support_multiplier must be in (0, 1), got {cfg.stats.support_multiplier}"
        )
    if not 0 <= cfg.damage.variance < 1:
        raise InvalidBalanceError(f"damage variance must be in [0, 1), got {cfg.damage.variance}")
    if cfg.damage.min_damage <= 0:
        raise InvalidBalanceError("min_damage must be positive so battles always progress")
    numbers = [
        cfg.stats.star_bonus,
        cfg.stats.attack_coefficient,
        cfg.stats.defense_coefficient,
        cfg.damage.heal_multiplier,
        cfg.damage.min_damage_fraction,
    ]
    sk = cfg.skills
    if sk.rage_per_action <= 0 or sk.max_rage <= 0:
        raise InvalidBalanceError("skills.rage_per_action and skills.max_rage must be positive")
    if min(sk.buff_duration, sk.debuff_duration, sk.slow_duration, sk.silence_duration) < 1:
        raise InvalidBalanceError("skill effect durations must be >= 1")
    numbers += [sk.rage_per_action, sk.max_rage, sk.coefficient_scale]
    numbers += [sk.level_base, sk.level_step, sk.heal_level_step]
    numbers += [m.attack for _, m in cfg.roles] + [m.defense for _, m in cfg.roles]
    numbers += [mult for _, _, mult in cfg.troop_effectiveness]
    if any(not math.isfinite(n) or n < 0 for n in numbers):
        raise InvalidBalanceError("balance coefficients must be finite and non-negative")
    for role, eff in cfg.effects:
        if eff.target not in ("ally", "enemy"):
            raise InvalidBalanceError(f"{role.value} effect target must be 'ally' or 'enemy'")
        if eff.stat not in (None, "attack", "defense"):
            raise InvalidBalanceError(f"{role.value} effect stat must be attack, defense or null")
        if eff.duration < 1 or eff.cooldown < 1:
            raise InvalidBalanceError(f"{role.value} effect duration/cooldown must be >= 1")


def load_balance(
    paths: Iterable[str] | None = None,
    env_prefix: Optional[str] = DEFAULT_ENV_PREFIX,
    overrides: Optional[Dict[str, Any]] = None,
) -> BalanceConfig:
    """Shipped defaults, then ``paths`` merged in order, then env, then ``overrides``."""
    raw = _load_one(DEFAULT_BALANCE_PATH)
    raw = _deep_merge(raw, load_configs(paths))
    if env_prefix:
        env = env_overrides(env_prefix)
        if env:
            logger.debug("balance env overrides: %s", env)
        raw = _deep_merge(raw, env)
    raw = apply_cli_overrides(raw, overrides or {})
    return BalanceConfig.from_dict(raw)


_DEFAULT: Optional[BalanceConfig] = None


def default_balance() -> BalanceConfig:
    """Shipped balance table, parsed once. Ignores environment overrides."""
    global _DEFAULT
    if _DEFAULT is None:
        _DEFAULT = BalanceConfig.from_dict(_load_one(DEFAULT_BALANCE_PATH))
    return _DEFAULT


__all__ = [
    "load_configs",
    "env_overrides",
    "apply_cli_overrides",
    "_deep_merge",
    "BalanceConfig",
    "StatConfig",
    "SkillScaling",
    "DamageConfig",
    "SkillConfig",
    "RoleModifier",
    "EffectDefinition",
    "load_balance",
    "default_balance",
    "validate_balance",
]

from __future__ import annotations
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, TypeVar
from enum import Enum
import json

from .validators import FORMATION_SIZE, InvalidCommanderError, InvalidFormationError

E = TypeVar("E", bound=Enum)

FRONT_ROW_SLOTS = 4


class Rarity(str, Enum):
    ELITE = "elite"
    EPIC = "epic"
    LEGENDARY = "legendary"

    @property
    def tier(self) -> int:
        return _RARITY_TIERS[self]

    # str already defines every rich comparison, so all four are spelled out
    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Rarity):
            return NotImplemented
        return self.tier < other.tier

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Rarity):
            return NotImplemented
        return self.tier <= other.tier

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Rarity):
            return NotImplemented
        return self.tier > other.tier

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Rarity):
            return NotImplemented
        return self.tier >= other.tier


_RARITY_TIERS = {Rarity.ELITE: 0, Rarity.EPIC: 1, Rarity.LEGENDARY: 2}


class TroopType(str, Enum):
    INFANTRY = "infantry"
    CAVALRY = "cavalry"
    ARCHER = "archer"
    MIXED = "mixed"


class Role(str, Enum):
    TANK = "tank"
    NUKER = "nuker"
    HEALER = "healer"
    SUPPORT = "support"
    DISABLER = "disabler"


class Row(str, Enum):
    FRONT = "front"
    BACK = "back"


class Winner(str, Enum):
    ATTACKER = "attacker"
    DEFENDER = "defender"
    DRAW = "draw"


class SkillEffectType(str, Enum):
    DAMAGE = "damage"
    HEAL = "heal"
    BUFF = "buff"
    DEBUFF = "debuff"
    SILENCE = "silence"
    SLOW = "slow"
    RAGE = "rage"


class SkillTarget(str, Enum):
    SELF = "self"
    ENEMY = "enemy"
    ALL_ALLIES = "all_allies"
    ALL_ENEMIES = "all_enemies"


def coerce_enum(enum_cls: Type[E], value: Any, label: str) -> E:
    """Map a raw string (or enum member) onto ``enum_cls`` or reject it."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise InvalidCommanderError(
            f"{label}: unknown {enum_cls.__name__} {value!r} (expected one of: {allowed})"
        ) from None


def row_for_slot(index: int) -> Row:
    return Row.FRONT if index < FRONT_ROW_SLOTS else Row.BACK


# =============================
# Catalog / roster
# =============================


@dataclass(frozen=True)
class BaseStats:
    attack: float
    defense: float
    health: float
    march_speed: float


MODIFIABLE_STATS = ("attack", "defense", "speed")


@dataclass(frozen=True)
class SkillEffect:
    """One entry of a skill's effect list.

    ``value`` is a percent for buff/debuff/slow, a heal coefficient for heal,
    a damage coefficient for damage and a rage amount for rage. ``duration``
    of None falls back to the balance table's default for the effect type.
    """

    type: SkillEffectType
    value: float
    target: SkillTarget = SkillTarget.ENEMY
    duration: Optional[int] = None
    stat: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", coerce_enum(SkillEffectType, self.type, "skill effect"))
        object.__setattr__(self, "target", coerce_enum(SkillTarget, self.target, "skill effect"))
        if self.stat is not None and self.stat not in MODIFIABLE_STATS:
            raise InvalidCommanderError(
                f"skill effect: stat must be one of {', '.join(MODIFIABLE_STATS)}, got {self.stat!r}"
            )
        if self.duration is not None and self.duration < 1:
            raise InvalidCommanderError(f"skill effect: duration must be >= 1, got {self.duration}")

    @property
    def modified_stat(self) -> Optional[str]:
        if self.type in (SkillEffectType.BUFF, SkillEffectType.DEBUFF):
            return self.stat or "attack"
        if self.type is SkillEffectType.SLOW:
            return self.stat or "speed"
        return None

    @property
    def hits_allies(self) -> bool:
        return self.target in (SkillTarget.SELF, SkillTarget.ALL_ALLIES)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SkillEffect":
        duration = data.get("duration")
        return cls(
            type=data["type"],
            value=float(data.get("value", 0)),
            target=data.get("target", "enemy"),
            duration=int(duration) if duration is not None else None,
            stat=data.get("stat"),
        )


@dataclass(frozen=True)
class SkillDefinition:
    """A commander skill. Only the first skill is cast in battle, on full rage."""

    name: str
    description: str = ""
    damage_coefficient: float = 0.0
    rage_required: float = 1000.0
    targets: int = 1
    effects: Tuple[SkillEffect, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "effects", tuple(self.effects))
        if self.damage_coefficient < 0:
            raise InvalidCommanderError(f"skill {self.name!r}: damage coefficient must be >= 0")
        if self.rage_required <= 0:
            raise InvalidCommanderError(f"skill {self.name!r}: rage_required must be positive")
        if self.targets < 1:
            raise InvalidCommanderError(f"skill {self.name!r}: targets must be >= 1")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SkillDefinition":
        name = str(data.get("name", ""))
        try:
            return cls(
                name=name,
                description=str(data.get("description", "")),
                damage_coefficient=float(data.get("damage_coefficient", data.get("damageCoefficient", 0))),
                rage_required=float(data.get("rage_required", data.get("rageRequired", 1000))),
                targets=int(data.get("targets", 1)),
                effects=tuple(SkillEffect.from_dict(e) for e in data.get("effects", [])),
            )
        except InvalidCommanderError:
            raise
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidCommanderError(f"skill {name!r}: malformed definition ({exc})") from exc


@dataclass(frozen=True)
class Commander:
    """Catalog entry. Read-only to the engine."""

    id: str
    name: str
    rarity: Rarity
    troop_type: TroopType
    roles: Tuple[Role, ...]
    base_stats: BaseStats
    skills: Tuple[SkillDefinition, ...] = ()
    synergies: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        label = f"commander {self.id!r}"
        object.__setattr__(self, "rarity", coerce_enum(Rarity, self.rarity, label))
        object.__setattr__(self, "troop_type", coerce_enum(TroopType, self.troop_type, label))
        roles = tuple(coerce_enum(Role, r, label) for r in self.roles)
        if not roles:
            raise InvalidCommanderError(f"{label}: at least one role is required")
        if len(set(roles)) != len(roles):
            raise InvalidCommanderError(f"{label}: duplicate roles {[r.value for r in roles]}")
        object.__setattr__(self, "roles", roles)
        object.__setattr__(self, "skills", tuple(self.skills))
        object.__setattr__(self, "synergies", tuple(self.synergies))

    @property
    def primary_role(self) -> Role:
        return self.roles[0]

    def has_role(self, role: Role) -> bool:
        return role in self.roles

    @property
    def rage_skill(self) -> Optional[SkillDefinition]:
        return self.skills[0] if self.skills else None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Commander":
        stats = data.get("base_stats") or data.get("baseStats") or {}
        try:
            base = BaseStats(
                attack=float(stats["attack"]),
                defense=float(stats["defense"]),
                health=float(stats["health"]),
                march_speed=float(stats.get("march_speed", stats.get("marchSpeed", 60))),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidCommanderError(
                f"commander {data.get('id')!r}: malformed base stats ({exc})"
            ) from exc
        roles = data.get("roles", data.get("role", ()))
        if isinstance(roles, str):
            roles = [roles]
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", data["id"])),
            rarity=data.get("rarity", "epic"),
            troop_type=data.get("troop_type", data.get("troopType", "mixed")),
            roles=tuple(roles),
            base_stats=base,
            skills=tuple(SkillDefinition.from_dict(s) for s in data.get("skills", [])),
            synergies=tuple(data.get("synergies", [])),
        )


@dataclass(frozen=True)
class UserCommander:
    """A catalog commander plus the player's progression choices."""

    commander: Commander
    level: int = 1
    stars: int = 1
    skill_levels: Tuple[int, int, int, int] = (1, 1, 1, 1)
    unique_id: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "skill_levels", tuple(self.skill_levels))
        if not self.unique_id:
            object.__setattr__(self, "unique_id", self.commander.id)

    @property
    def name(self) -> str:
        return self.commander.name

    def with_base_stats(self, factor: float) -> "UserCommander":
        """Copy with base attack and health scaled by ``factor`` (what-if analysis)."""
        bs = self.commander.base_stats
        scaled = BaseStats(
            attack=bs.attack * factor,
            defense=bs.defense,
            health=bs.health * factor,
            march_speed=bs.march_speed,
        )
        commander = Commander(
            id=self.commander.id,
            name=self.commander.name,
            rarity=self.commander.rarity,
            troop_type=self.commander.troop_type,
            roles=self.commander.roles,
            base_stats=scaled,
            skills=self.commander.skills,
            synergies=self.commander.synergies,
        )
        return UserCommander(commander, self.level, self.stars, self.skill_levels, self.unique_id)


@dataclass(frozen=True)
class FormationSlot:
    primary: UserCommander
    troop_count: int
    secondary: Optional[UserCommander] = None


@dataclass(frozen=True)
class Formation:
    """Eight optional slots: 0-3 front row, 4-7 back row."""

    slots: Tuple[Optional[FormationSlot], ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "slots", tuple(self.slots))

    @classmethod
    def from_slots(cls, slots: Sequence[Optional[FormationSlot]]) -> "Formation":
        """Pad a shorter slot list with empty slots."""
        if len(slots) > FORMATION_SIZE:
            raise InvalidFormationError(
                f"formation has {len(slots)} slots, at most {FORMATION_SIZE} allowed"
            )
        padded = list(slots) + [None] * (FORMATION_SIZE - len(slots))
        return cls(slots=tuple(padded))

    @classmethod
    def empty(cls) -> "Formation":
        return cls(slots=(None,) * FORMATION_SIZE)

    def occupied(self) -> List[Tuple[int, FormationSlot]]:
        return [(i, s) for i, s in enumerate(self.slots) if s is not None]

    def scaled(self, factor: float) -> "Formation":
        """Formation whose primaries' attack and health are scaled by ``factor``."""
        out: List[Optional[FormationSlot]] = []
        for slot in self.slots:
            if slot is None:
                out.append(None)
                continue
            out.append(
                FormationSlot(
                    primary=slot.primary.with_base_stats(factor),
                    troop_count=slot.troop_count,
                    secondary=slot.secondary,
                )
            )
        return Formation(slots=tuple(out))


# =============================
# Battle runtime
# =============================


@dataclass(frozen=True)
class EffectiveStats:
    attack: float
    defense: float
    max_health: float
    speed: float


@dataclass
class ActiveEffect:
    name: str
    stat: Optional[str]
    value: float
    duration: int
    source: str
    skips_action: bool = False
    blocks_skill: bool = False


@dataclass
class Army:
    """Runtime state of one occupied formation slot during a single battle."""

    id: str
    side: str
    slot: int
    row: Row
    primary: UserCommander
    troop_count: int
    stats: EffectiveStats
    current_health: float
    secondary: Optional[UserCommander] = None
    is_alive: bool = True
    current_rage: float = 0.0
    active_effects: List[ActiveEffect] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.primary.name

    @property
    def troop_type(self) -> TroopType:
        return self.primary.commander.troop_type

    @property
    def roles(self) -> Tuple[Role, ...]:
        return self.primary.commander.roles

    @property
    def silenced(self) -> bool:
        """True while any effect keeps the army from casting its skill."""
        return any(e.skips_action or e.blocks_skill for e in self.active_effects)


@dataclass(frozen=True)
class BattleLogEntry:
    turn: int
    army_id: str
    action: str
    damage: Optional[float] = None
    heal: Optional[float] = None
    effect: Optional[str] = None
    target: Optional[str] = None


@dataclass
class BattleState:
    turn: int
    max_turns: int
    attacker_armies: List[Army]
    defender_armies: List[Army]
    battle_log: List[BattleLogEntry] = field(default_factory=list)
    winner: Optional[Winner] = None
    decided_by: Optional[str] = None

    @property
    def concluded(self) -> bool:
        return self.winner is not None

    def to_dict(self) -> Dict[str, Any]:
        def _normalize(value: Any) -> Any:
            if isinstance(value, Enum):
                return value.value
            if isinstance(value, dict):
                return {k: _normalize(v) for k, v in value.items()}
            if isinstance(value, (list, tuple)):
                return [_normalize(v) for v in value]
            return value

        return _normalize(asdict(self))

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


@dataclass(frozen=True)
class TrialFailure:
    trial: int
    seed: int
    reason: str


@dataclass
class SimulationResult:
    """Aggregate of a Monte Carlo run, from the attacker's perspective."""

    trials: int
    wins: int
    losses: int
    draws: int
    failures: List[TrialFailure] = field(default_factory=list)
    cancelled: bool = False
    turn_summary: Dict[str, float] = field(default_factory=dict)

    @property
    def win_rate(self) -> float:
        total = self.wins + self.losses + self.draws
        if total == 0:
            return 0.0
        return self.wins / total * 100

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["win_rate"] = self.win_rate
        return d


__all__ = [
    "Rarity",
    "TroopType",
    "Role",
    "Row",
    "Winner",
    "SkillEffectType",
    "SkillTarget",
    "BaseStats",
    "SkillEffect",
    "SkillDefinition",
    "Commander",
    "UserCommander",
    "FormationSlot",
    "Formation",
    "EffectiveStats",
    "ActiveEffect",
    "Army",
    "BattleLogEntry",
    "BattleState",
    "TrialFailure",
    "SimulationResult",
    "coerce_enum",
    "row_for_slot",
]

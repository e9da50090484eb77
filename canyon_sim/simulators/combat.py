"""Battle resolution for Sunset Canyon style arena fights.

A battle is a two-state machine (in progress / concluded). Each call to
:meth:`BattleResolver.step` advances exactly one turn: every alive army acts
once, sequentially, fastest first; then the termination check runs. The
driver is :func:`run_battle`, while :func:`resolve_battle` accepts a
:class:`BattleConfig` carrying a seed.

Every action also fills the army's rage bar. Once it holds the first skill's
``rage_required``, the skill is cast right after the action: damage to its
targets (a splash around the attack target for multi-target skills), then the
skill's effect list in catalog order.

All randomness comes from the ``random.Random`` handed to the resolver, so a
battle is a pure function of (formations, random sequence, balance).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple
import logging
import math
import random

from ..config import BalanceConfig, EffectDefinition, default_balance
from ..game_models import (
    FRONT_ROW_SLOTS,
    ActiveEffect,
    Army,
    BattleLogEntry,
    BattleState,
    Formation,
    Role,
    Row,
    SkillDefinition,
    SkillEffect,
    SkillEffectType,
    SkillTarget,
    Winner,
    row_for_slot,
)
from ..stats import slot_stats
from ..validators import BattleAbortedError, validate_formation, validate_turn_limit

logger = logging.getLogger(__name__)

ATTACKER = "attacker"
DEFENDER = "defender"

DECIDED_BY_ELIMINATION = "elimination"
DECIDED_BY_TURN_LIMIT = "turn_limit"

_STATUS_VERBS = {
    SkillEffectType.BUFF: "empowers",
    SkillEffectType.DEBUFF: "weakens",
    SkillEffectType.SLOW: "slows",
    SkillEffectType.SILENCE: "silences",
}

# =============================
# Setup
# =============================


@dataclass
class BattleConfig:
    attacker: Formation
    defender: Formation
    balance: Optional[BalanceConfig] = None
    max_turns: Optional[int] = None
    seed: Optional[int] = None


def army_id(side: str, slot: int, commander_id: str) -> str:
    return f"{side}-{slot}-{commander_id}"


def build_armies(side: str, formation: Formation, balance: BalanceConfig) -> List[Army]:
    """Fresh Army objects for every occupied slot, at full health and no rage."""
    armies: List[Army] = []
    for index, slot in formation.occupied():
        stats = slot_stats(slot, balance)
        armies.append(
            Army(
                id=army_id(side, index, slot.primary.commander.id),
                side=side,
                slot=index,
                row=row_for_slot(index),
                primary=slot.primary,
                secondary=slot.secondary,
                troop_count=slot.troop_count,
                stats=stats,
                current_health=stats.max_health,
            )
        )
    return armies


def select_target(enemies: Iterable[Army]) -> Optional[Army]:
    """Front row first while any of it stands; lowest slot index breaks ties."""
    alive = [e for e in enemies if e.is_alive]
    if not alive:
        return None
    front = [e for e in alive if e.row is Row.FRONT]
    pool = front or alive
    return min(pool, key=lambda e: e.slot)


def select_aoe_targets(primary: Army, enemies: Iterable[Army], count: int) -> List[Army]:
    """Up to ``count`` alive enemies closest to ``primary``, which always comes first.

    Distance is the column gap plus one when the rows differ; slot index
    breaks ties.
    """
    column = primary.slot % FRONT_ROW_SLOTS

    def distance(e: Army) -> int:
        return abs(e.slot % FRONT_ROW_SLOTS - column) + (0 if e.row is primary.row else 1)

    alive = [e for e in enemies if e.is_alive]
    return sorted(alive, key=lambda e: (distance(e), e.slot))[:count]


def health_fraction(armies: Iterable[Army]) -> float:
    """Aggregate remaining health over aggregate maximum health."""
    armies = list(armies)
    total = sum(a.stats.max_health for a in armies)
    if total <= 0:
        return 0.0
    return sum(max(0.0, a.current_health) for a in armies) / total


# =============================
# Core battle driver
# =============================


class BattleResolver:
    def __init__(
        self,
        attacker: Formation,
        defender: Formation,
        rng: random.Random,
        balance: Optional[BalanceConfig] = None,
        max_turns: Optional[int] = None,
    ):
        validate_formation(attacker, ATTACKER)
        validate_formation(defender, DEFENDER)
        self.balance = balance or default_balance()
        self.rng = rng
        turns = max_turns if max_turns is not None else self.balance.max_turns
        validate_turn_limit(turns)
        self.state = BattleState(
            turn=0,
            max_turns=turns,
            attacker_armies=build_armies(ATTACKER, attacker, self.balance),
            defender_armies=build_armies(DEFENDER, defender, self.balance),
        )

    # ----- Public API -----

    @property
    def concluded(self) -> bool:
        return self.state.concluded

    def step(self) -> BattleState:
        """Advance one turn. A concluded battle is returned unchanged.

        Raises:
            BattleAbortedError: an army's numbers stopped being finite, or any
                arithmetic failure surfaced while an army acted.
        """
        if self.state.concluded:
            return self.state
        self.state.turn += 1
        turn = self.state.turn
        for army in self._acting_order():
            # may have fallen earlier this turn
            if not army.is_alive:
                continue
            try:
                self._act(army, turn)
            except ArithmeticError as exc:
                raise BattleAbortedError(
                    f"arithmetic failure while {army.id} acted on turn {turn}: {exc}"
                ) from exc
        self._check_termination()
        return self.state

    def resolve(self) -> BattleState:
        while not self.state.concluded:
            self.step()
        logger.debug(
            "battle concluded on turn %d: %s (%s)",
            self.state.turn,
            self.state.winner.value,
            self.state.decided_by,
        )
        return self.state

    # ----- Turn structure -----

    def _acting_order(self) -> List[Army]:
        keyed: List[Tuple[float, float, int, Army]] = []
        everyone = self.state.attacker_armies + self.state.defender_armies
        for idx, army in enumerate(everyone):
            if army.is_alive:
                speed = army.stats.speed * _stat_modifier(army, "speed")
                keyed.append((-speed, self.rng.random(), idx, army))
        keyed.sort(key=lambda k: k[:3])
        return [k[3] for k in keyed]

    def _sides_for(self, army: Army) -> Tuple[List[Army], List[Army]]:
        if army.side == ATTACKER:
            return self.state.attacker_armies, self.state.defender_armies
        return self.state.defender_armies, self.state.attacker_armies

    def _act(self, army: Army, turn: int) -> None:
        self._check_integrity(army)
        allies, enemies = self._sides_for(army)

        blocking = next((e for e in army.active_effects if e.skips_action), None)
        if blocking is not None:
            self._log(turn, army, f"{army.name} is under {blocking.name} and cannot act",
                      effect=blocking.name)
            self._tick_effects(army)
            return

        if not self._take_action(army, allies, enemies, turn):
            return
        self._tick_effects(army)
        self._gain_rage(army, self.balance.skills.rage_per_action)
        self._cast_ready_skill(army, allies, enemies, turn)

    def _take_action(self, army: Army, allies: List[Army], enemies: List[Army], turn: int) -> bool:
        if army.primary.commander.has_role(Role.HEALER):
            wounded = self._heal_target(allies)
            if wounded is not None:
                self._heal(army, wounded, turn)
                return True

        effect = self._ready_effect(army, turn)
        if effect is not None:
            target = self._effect_target(army, effect, allies, enemies)
            if target is not None:
                self._apply_effect(army, target, effect, turn)
                return True

        target = select_target(enemies)
        if target is None:
            return False
        self._attack(army, target, turn)
        return True

    # ----- Actions -----

    def _attack(self, army: Army, target: Army, turn: int) -> None:
        self._check_integrity(target)
        damage = self.compute_damage(army, target)
        self._deal(army, target, damage, f"{army.name} attacks {target.name}", turn)

    def _deal(self, army: Army, target: Army, damage: float, action: str, turn: int,
              effect: Optional[str] = None) -> None:
        target.current_health -= damage
        self._log(turn, army, action, damage=damage, effect=effect, target=target.id)
        if target.current_health <= 0:
            target.current_health = 0
            target.is_alive = False
            self._log(turn, target, f"{target.name}'s army is defeated", target=target.id)

    def compute_damage(self, army: Army, target: Army) -> float:
        dmg = self.balance.damage
        role_attack = self.balance.role_modifier(army.primary.commander.primary_role).attack
        role_defense = self.balance.role_modifier(target.primary.commander.primary_role).defense
        troop = self.balance.effectiveness(army.troop_type, target.troop_type)
        attack = army.stats.attack * _stat_modifier(army, "attack")
        defense = target.stats.defense * _stat_modifier(target, "defense")
        raw = attack * role_attack * troop * self._roll_variance() - defense * role_defense
        floor = max(dmg.min_damage, dmg.min_damage_fraction * attack)
        return self._whole(max(raw, floor), army)

    def compute_skill_damage(self, army: Army, target: Army, coefficient: float,
                             skill_level: int) -> float:
        """Skill hit: catalog coefficient and skill level replace the role multiplier."""
        dmg = self.balance.damage
        sk = self.balance.skills
        role_defense = self.balance.role_modifier(target.primary.commander.primary_role).defense
        troop = self.balance.effectiveness(army.troop_type, target.troop_type)
        attack = army.stats.attack * _stat_modifier(army, "attack")
        defense = target.stats.defense * _stat_modifier(target, "defense")
        power = attack * coefficient * sk.coefficient_scale * sk.level_multiplier(skill_level)
        raw = power * troop * self._roll_variance() - defense * role_defense
        floor = max(dmg.min_damage, dmg.min_damage_fraction * attack)
        return self._whole(max(raw, floor), army)

    def _heal(self, army: Army, target: Army, turn: int) -> None:
        amount = army.stats.attack * self.balance.damage.heal_multiplier * self._roll_variance()
        self._restore(army, target, amount, f"{army.name} heals {target.name}", turn)

    def _restore(self, army: Army, target: Army, amount: float, action: str, turn: int,
                 effect: Optional[str] = None) -> None:
        missing = target.stats.max_health - target.current_health
        applied = self._whole(min(amount, missing), army)
        target.current_health += applied
        self._log(turn, army, action, heal=applied, effect=effect, target=target.id)

    def _heal_target(self, allies: List[Army]) -> Optional[Army]:
        # heals are whole numbers; a sub-point gap counts as full health
        wounded = [a for a in allies if a.is_alive and a.stats.max_health - a.current_health >= 1]
        if not wounded:
            return None
        return min(wounded, key=lambda a: (a.current_health, a.slot))

    def _ready_effect(self, army: Army, turn: int) -> Optional[EffectDefinition]:
        for role in (Role.DISABLER, Role.SUPPORT):
            if not army.primary.commander.has_role(role):
                continue
            effect = self.balance.effect_for(role)
            if effect is not None and turn % effect.cooldown == 0:
                return effect
        return None

    def _effect_target(
        self,
        army: Army,
        effect: EffectDefinition,
        allies: List[Army],
        enemies: List[Army],
    ) -> Optional[Army]:
        if effect.target == "ally":
            alive = [a for a in allies if a.is_alive]
            return min(alive, key=lambda a: a.slot) if alive else None
        return select_target(enemies)

    def _apply_effect(self, army: Army, target: Army, effect: EffectDefinition, turn: int) -> None:
        _attach(
            target,
            ActiveEffect(
                name=effect.name,
                stat=effect.stat,
                value=effect.value,
                duration=effect.duration,
                source=army.id,
                skips_action=effect.skips_action,
            ),
        )
        self._log(
            turn,
            army,
            f"{army.name} uses {effect.name} on {target.name}",
            effect=effect.name,
            target=target.id,
        )

    # ----- Rage and skills -----

    def _gain_rage(self, army: Army, amount: float) -> None:
        army.current_rage = min(self.balance.skills.max_rage, army.current_rage + amount)

    def _cast_ready_skill(self, army: Army, allies: List[Army], enemies: List[Army], turn: int) -> None:
        skill = army.primary.commander.rage_skill
        # skill level 0 means the skill is still locked
        level = army.primary.skill_levels[0]
        if skill is None or level < 1 or army.silenced:
            return
        if army.current_rage < skill.rage_required:
            return
        primary = select_target(enemies)
        if primary is None:
            return
        army.current_rage = 0.0
        if skill.targets > 1:
            targets = select_aoe_targets(primary, enemies, skill.targets)
        else:
            targets = [primary]
        self._log(turn, army, f"{army.name} casts {skill.name}", effect=skill.name, target=primary.id)
        for effect in skill.effects:
            self._apply_skill_effect(army, skill, effect, level, targets, allies, turn)

    def _apply_skill_effect(
        self,
        army: Army,
        skill: SkillDefinition,
        effect: SkillEffect,
        level: int,
        targets: List[Army],
        allies: List[Army],
        turn: int,
    ) -> None:
        kind = effect.type
        if effect.target is SkillTarget.SELF:
            recipients = [army]
        elif effect.target is SkillTarget.ALL_ALLIES:
            recipients = [a for a in allies if a.is_alive]
        else:
            recipients = [t for t in targets if t.is_alive]

        if kind is SkillEffectType.DAMAGE:
            coefficient = skill.damage_coefficient or effect.value
            for target in recipients:
                self._check_integrity(target)
                damage = self.compute_skill_damage(army, target, coefficient, level)
                self._deal(army, target, damage, f"{army.name}'s {skill.name} hits {target.name}",
                           turn, effect=skill.name)
        elif kind is SkillEffectType.HEAL:
            sk = self.balance.skills
            amount = (
                army.stats.attack
                * effect.value
                * sk.coefficient_scale
                * self.balance.damage.heal_multiplier
                * (1 + sk.heal_level_step * level)
            )
            for target in recipients:
                self._restore(army, target, amount, f"{army.name}'s {skill.name} heals {target.name}",
                              turn, effect=skill.name)
        elif kind is SkillEffectType.RAGE:
            for target in recipients:
                if effect.value >= 0:
                    self._gain_rage(target, effect.value)
                else:
                    target.current_rage = max(0.0, target.current_rage + effect.value)
                self._log(turn, army, f"{army.name}'s {skill.name} shifts {target.name}'s rage",
                          effect=kind.value, target=target.id)
        else:
            value = abs(effect.value)
            if kind is not SkillEffectType.BUFF:
                value = -value
            duration = effect.duration or self.balance.skills.default_duration(kind)
            for target in recipients:
                _attach(
                    target,
                    ActiveEffect(
                        name=skill.name,
                        stat=effect.modified_stat,
                        value=value if kind is not SkillEffectType.SILENCE else 0.0,
                        duration=duration,
                        source=army.id,
                        blocks_skill=kind is SkillEffectType.SILENCE,
                    ),
                )
                self._log(turn, army, f"{army.name}'s {skill.name} {_STATUS_VERBS[kind]} {target.name}",
                          effect=kind.value, target=target.id)

    # ----- Termination -----

    def _check_termination(self) -> None:
        state = self.state
        attackers_alive = any(a.is_alive for a in state.attacker_armies)
        defenders_alive = any(a.is_alive for a in state.defender_armies)
        if not attackers_alive and not defenders_alive:
            self._conclude(Winner.DRAW, DECIDED_BY_ELIMINATION)
        elif not defenders_alive:
            self._conclude(Winner.ATTACKER, DECIDED_BY_ELIMINATION)
        elif not attackers_alive:
            self._conclude(Winner.DEFENDER, DECIDED_BY_ELIMINATION)
        elif state.turn >= state.max_turns:
            att = health_fraction(state.attacker_armies)
            dfd = health_fraction(state.defender_armies)
            if att > dfd:
                self._conclude(Winner.ATTACKER, DECIDED_BY_TURN_LIMIT)
            elif dfd > att:
                self._conclude(Winner.DEFENDER, DECIDED_BY_TURN_LIMIT)
            else:
                self._conclude(Winner.DRAW, DECIDED_BY_TURN_LIMIT)

    def _conclude(self, winner: Winner, decided_by: str) -> None:
        self.state.winner = winner
        self.state.decided_by = decided_by

    # ----- Utility -----

    def _check_integrity(self, army: Army) -> None:
        s = army.stats
        numbers = (army.current_health, army.current_rage, s.attack, s.defense, s.max_health, s.speed)
        if not all(math.isfinite(n) for n in numbers) or s.max_health <= 0:
            raise BattleAbortedError(
                f"army {army.id} has corrupted stats on turn {self.state.turn}"
            )
        if army.is_alive != (army.current_health > 0):
            raise BattleAbortedError(
                f"army {army.id} alive flag disagrees with health "
                f"({army.current_health}) on turn {self.state.turn}"
            )

    def _whole(self, value: float, army: Army) -> float:
        if not math.isfinite(value):
            raise BattleAbortedError(
                f"army {army.id} produced a non-finite amount ({value}) on turn {self.state.turn}"
            )
        return float(math.floor(value))

    def _roll_variance(self) -> float:
        v = self.balance.damage.variance
        return self.rng.uniform(1 - v, 1 + v)

    def _tick_effects(self, army: Army) -> None:
        for effect in army.active_effects:
            effect.duration -= 1
        army.active_effects = [e for e in army.active_effects if e.duration > 0]

    def _log(
        self,
        turn: int,
        army: Army,
        action: str,
        damage: Optional[float] = None,
        heal: Optional[float] = None,
        effect: Optional[str] = None,
        target: Optional[str] = None,
    ) -> None:
        self.state.battle_log.append(
            BattleLogEntry(
                turn=turn,
                army_id=army.id,
                action=action,
                damage=damage,
                heal=heal,
                effect=effect,
                target=target,
            )
        )


def _attach(target: Army, effect: ActiveEffect) -> None:
    # re-applying an effect with the same name and stat refreshes it rather than stacking
    target.active_effects = [
        e for e in target.active_effects if (e.name, e.stat) != (effect.name, effect.stat)
    ]
    target.active_effects.append(effect)


def _stat_modifier(army: Army, stat: str) -> float:
    mult = 1.0
    for effect in army.active_effects:
        if effect.stat == stat:
            mult *= 1 + effect.value / 100
    return max(0.0, mult)


def run_battle(
    attacker: Formation,
    defender: Formation,
    rng: Optional[random.Random] = None,
    balance: Optional[BalanceConfig] = None,
    max_turns: Optional[int] = None,
) -> BattleState:
    """Validate both formations, then play the battle to its conclusion.

    Raises:
        EmptyFormationError: either side has no occupied slot.
        InvalidFormationError / InvalidCommanderError: malformed input.
        ConfigurationError: ``max_turns`` is not a positive integer.
        BattleAbortedError: army state corrupted mid-battle.
    """
    resolver = BattleResolver(
        attacker,
        defender,
        rng if rng is not None else random.Random(),
        balance=balance,
        max_turns=max_turns,
    )
    return resolver.resolve()


def resolve_battle(config: BattleConfig) -> BattleState:
    return run_battle(
        config.attacker,
        config.defender,
        random.Random(config.seed),
        balance=config.balance,
        max_turns=config.max_turns,
    )


__all__ = [
    "BattleConfig",
    "BattleResolver",
    "build_armies",
    "select_target",
    "select_aoe_targets",
    "health_fraction",
    "run_battle",
    "resolve_battle",
    "army_id",
    "ATTACKER",
    "DEFENDER",
    "DECIDED_BY_ELIMINATION",
    "DECIDED_BY_TURN_LIMIT",
]

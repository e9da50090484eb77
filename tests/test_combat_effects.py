import random

from canyon_sim.game_models import BaseStats, Commander, Formation, FormationSlot, Role, UserCommander
from canyon_sim.simulators.combat import BattleResolver, run_battle


def make_slot(cid: str, roles=("nuker",), troops: int = 100_000) -> FormationSlot:
    commander = Commander(
        id=cid,
        name=cid.title(),
        rarity="legendary",
        troop_type="mixed",
        roles=tuple(roles),
        base_stats=BaseStats(attack=100.0, defense=100.0, health=100.0, march_speed=60.0),
    )
    return FormationSlot(primary=UserCommander(commander), troop_count=troops)


def test_healer_restores_wounded_ally():
    attacker = Formation.from_slots(
        [make_slot("front"), None, None, None, make_slot("medic", roles=("healer",))]
    )
    defender = Formation.from_slots([make_slot("raider", troops=50_000)])
    state = run_battle(attacker, defender, random.Random(9), max_turns=3)
    heals = [e for e in state.battle_log if e.heal is not None]
    assert heals
    assert all(e.army_id == "attacker-4-medic" for e in heals)
    assert all(e.target == "attacker-0-front" and e.heal >= 1 for e in heals)
    for army in state.attacker_armies:
        assert army.current_health <= army.stats.max_health


def test_healer_attacks_when_nobody_is_hurt():
    resolver = BattleResolver(
        Formation.from_slots([make_slot("medic", roles=("healer",))]),
        Formation.from_slots([make_slot("target", troops=50_000)]),
        random.Random(1),
    )
    medic = resolver.state.attacker_armies[0]
    resolver._act(medic, 1)
    entry = resolver.state.battle_log[-1]
    assert entry.damage is not None and entry.heal is None


def test_support_rallies_on_cooldown():
    attacker = Formation.from_slots([make_slot("banner", roles=("support",)), make_slot("blade")])
    defender = Formation.from_slots([make_slot("foe"), make_slot("foe2")])
    state = run_battle(attacker, defender, random.Random(2), max_turns=3)
    rallies = [e for e in state.battle_log if e.effect == "rally"]
    assert [e.turn for e in rallies] == [3]
    assert rallies[0].army_id == "attacker-0-banner"
    assert rallies[0].target == "attacker-0-banner"


def test_rally_boosts_damage():
    resolver = BattleResolver(
        Formation.from_slots([make_slot("blade")]),
        Formation.from_slots([make_slot("foe")]),
        random.Random(0),
    )
    blade = resolver.state.attacker_armies[0]
    foe = resolver.state.defender_armies[0]
    effect = resolver.balance.effect_for(Role.SUPPORT)
    resolver.rng = random.Random(5)
    plain = resolver.compute_damage(blade, foe)
    resolver._apply_effect(blade, blade, effect, 1)
    resolver.rng = random.Random(5)
    boosted = resolver.compute_damage(blade, foe)
    assert boosted > plain


def test_disabler_silences_enemy():
    attacker = Formation.from_slots([make_slot("jammer", roles=("disabler",))])
    defender = Formation.from_slots([make_slot("victim")])
    state = run_battle(attacker, defender, random.Random(6), max_turns=5)
    uses = [e for e in state.battle_log if e.army_id == "attacker-0-jammer" and e.effect == "silence"]
    assert [e.turn for e in uses] == [4]
    assert uses[0].target == "defender-0-victim"
    blocked = [e for e in state.battle_log if e.army_id == "defender-0-victim" and "cannot act" in e.action]
    assert len(blocked) == 1
    assert blocked[0].turn in (4, 5)
    assert blocked[0].damage is None


def test_reapplying_effect_refreshes_instead_of_stacking():
    resolver = BattleResolver(
        Formation.from_slots([make_slot("banner", roles=("support",))]),
        Formation.from_slots([make_slot("foe")]),
        random.Random(0),
    )
    banner = resolver.state.attacker_armies[0]
    effect = resolver.balance.effect_for(banner.primary.commander.primary_role)
    resolver._apply_effect(banner, banner, effect, 3)
    resolver._apply_effect(banner, banner, effect, 6)
    assert len(banner.active_effects) == 1
    assert banner.active_effects[0].duration == effect.duration

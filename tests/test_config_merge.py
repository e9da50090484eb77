import pytest

from canyon_sim.config import _deep_merge, env_overrides, load_balance, default_balance
from canyon_sim.game_models import Role, TroopType
from canyon_sim.validators import InvalidBalanceError


def test_deep_merge_simple():
    a = {"damage": {"variance": 0.1, "min_damage": 1.0}, "stats": {"star_bonus": 0.05}}
    b = {"damage": {"variance": 0.2}, "stats": {"support_multiplier": 0.25}}
    c = _deep_merge(a, b)
    assert c["damage"]["variance"] == 0.2 and c["damage"]["min_damage"] == 1.0
    assert c["stats"]["star_bonus"] == 0.05 and c["stats"]["support_multiplier"] == 0.25


def test_env_overrides_parsing(monkeypatch):
    monkeypatch.setenv("CANYON_SIM__MAX_TURNS", "20")
    monkeypatch.setenv("CANYON_SIM__DAMAGE__VARIANCE", "0.2")
    monkeypatch.setenv("CANYON_SIM__EFFECTS__DISABLER__SKIPS_ACTION", "false")
    d = env_overrides()
    assert d["max_turns"] == 20
    assert d["damage"]["variance"] == 0.2
    assert d["effects"]["disabler"]["skips_action"] is False


def test_shipped_defaults():
    cfg = default_balance()
    assert cfg.max_turns == 50
    assert cfg.role_modifier(Role.TANK).defense == 1.5
    assert cfg.role_modifier(Role.NUKER).attack == 1.25
    assert cfg.effectiveness(TroopType.INFANTRY, TroopType.CAVALRY) == 1.1
    assert cfg.effectiveness(TroopType.CAVALRY, TroopType.INFANTRY) == 0.9
    assert cfg.effect_for(Role.SUPPORT).name == "rally"
    assert cfg.effect_for(Role.DISABLER).skips_action is True
    assert cfg.effect_for(Role.TANK) is None


def test_layering_order(tmp_path, monkeypatch):
    override = tmp_path / "tweak.yaml"
    override.write_text("max_turns: 10\ndamage:\n  variance: 0.05\n")
    monkeypatch.setenv("CANYON_SIM__DAMAGE__VARIANCE", "0.07")
    cfg = load_balance([str(override)], overrides={"max_turns": 12})
    assert cfg.max_turns == 12
    assert cfg.damage.variance == 0.07
    # untouched keys keep shipped values
    assert cfg.damage.min_damage == 1.0
    assert cfg.role_modifier(Role.TANK).defense == 1.5


def test_json_override_file(tmp_path):
    override = tmp_path / "tweak.json"
    override.write_text('{"stats": {"support_multiplier": 0.25}}')
    cfg = load_balance([str(override)], env_prefix=None)
    assert cfg.stats.support_multiplier == 0.25


@pytest.mark.parametrize(
    "overrides",
    [
        {"max_turns": 0},
        {"damage": {"variance": 1.5}},
        {"damage": {"min_damage": 0}},
        {"stats": {"support_multiplier": 1.2}},
        {"roles": {"tank": {"defense": -1}}},
        {"roles": {"wizard": {"attack": 2}}},
        {"effects": {"support": {"target": "everyone"}}},
        {"damage": {"variance": "lots"}},
        {"skills": {"rage_per_action": 0}},
        {"skills": {"silence_duration": 0}},
        {"skills": {"level_step": -0.1}},
    ],
)
def test_invalid_balance_rejected(overrides):
    with pytest.raises(InvalidBalanceError):
        load_balance(env_prefix=None, overrides=overrides)


def test_malformed_file_rejected(tmp_path):
    bad = tmp_path / "bad.yaml"
    bad.write_text("- just\n- a list\n")
    with pytest.raises(InvalidBalanceError):
        load_balance([str(bad)], env_prefix=None)


def test_skill_section_layers_like_the_rest(monkeypatch):
    monkeypatch.setenv("CANYON_SIM__SKILLS__RAGE_PER_ACTION", "250")
    cfg = load_balance(overrides={"skills": {"buff_duration": 4}})
    assert cfg.skills.rage_per_action == 250
    assert cfg.skills.max_rage == 1000
    assert cfg.skills.buff_duration == 4
    assert cfg.skills.level_multiplier(5) == pytest.approx(1.0)

import pytest

from wowcore.common import ActionID, ConfigurationError, Stance, Talents
from wowcore.core import CastConfig, Character, Cooldown, RageBar, SpellConfig, Timer


def noop(sim, target, spell):
    pass


def rage_state(warrior):
    return (
        warrior.rage,
        warrior.gcd.ready_at,
        [timer.ready_at for timer in warrior.timers],
        sorted(aura.label for aura in warrior.auras.active_auras()),
        len(warrior.sim.metrics.casts),
        len(warrior.sim.metrics.outcomes),
    )


def test_illegal_cast_in_wrong_stance_changes_nothing(sim, make_targets, make_warrior, main_hand):
    make_targets(count=3)
    warrior = make_warrior(stance=Stance.BATTLE, starting_rage=50, main_hand=main_hand)
    before = rage_state(warrior)

    assert not warrior.whirlwind.can_cast(sim, warrior.current_target)
    assert not warrior.whirlwind.cast(sim, warrior.current_target)

    assert rage_state(warrior) == before
    assert warrior.whirlwind.casts == 0


def test_illegal_cast_without_enough_rage_changes_nothing(sim, make_targets, make_warrior, main_hand):
    make_targets(count=3)
    warrior = make_warrior(stance=Stance.BERSERKER, starting_rage=24, main_hand=main_hand)
    before = rage_state(warrior)

    assert not warrior.whirlwind.cast(sim, warrior.current_target)

    assert rage_state(warrior) == before


def test_successful_cast_spends_rage_and_arms_timers(sim, make_targets, make_warrior, main_hand):
    make_targets(count=1)
    warrior = make_warrior(stance=Stance.BERSERKER, starting_rage=60, main_hand=main_hand)

    assert warrior.whirlwind.cast(sim, warrior.current_target)

    assert warrior.rage == 35
    assert warrior.whirlwind.rage_spent == 25
    assert warrior.whirlwind.cooldown_timer.ready_at == 10_000
    record = sim.metrics.casts[-1]
    assert record.label == "Whirlwind"
    assert record.rage_spent == 25


def test_stance_swap_uses_the_shared_stance_cooldown(sim, make_targets, make_warrior):
    make_targets()
    warrior = make_warrior(stance=Stance.BATTLE)
    sim.start()
    assert warrior.has_aura("Battle Stance")

    assert not warrior.get_spell_by_label("Battle Stance").can_cast(sim, warrior)
    assert warrior.get_spell_by_label("Berserker Stance").cast(sim, warrior)
    assert warrior.stance == Stance.BERSERKER
    assert warrior.has_aura("Berserker Stance")
    assert not warrior.has_aura("Battle Stance")
    assert warrior.stats.melee_crit == pytest.approx(0.05 + 0.03)

    assert not warrior.get_spell_by_label("Defensive Stance").cast(sim, warrior)
    sim.step(1_000)
    assert warrior.get_spell_by_label("Defensive Stance").cast(sim, warrior)
    assert warrior.stats.melee_crit == pytest.approx(0.05)
    assert warrior.pseudo_stats.threat_multiplier == pytest.approx(1.3)


def test_stance_swap_keeps_rage_up_to_tactical_mastery(sim, make_targets, make_warrior):
    make_targets()
    warrior = make_warrior(stance=Stance.BATTLE, starting_rage=50, talents=Talents(tactical_mastery=3))

    warrior.get_spell_by_label("Berserker Stance").cast(sim, warrior)

    assert warrior.rage == 15


def test_stance_gated_spell_needs_its_stance(sim, make_targets, make_warrior):
    make_targets()
    warrior = make_warrior(stance=Stance.BATTLE, has_shield=True)
    shield_wall = warrior.get_spell_by_label("Shield Wall")

    assert not shield_wall.can_cast(sim, warrior)
    warrior.get_spell_by_label("Defensive Stance").cast(sim, warrior)
    assert shield_wall.can_cast(sim, warrior)


@pytest.fixture
def character(sim):
    character = Character(entity_id=sim.next_entity_id(), name="Dummy", level=60)
    character.gauge = RageBar(character)
    sim.add_character(character)
    return character


def test_registered_spell_is_found_by_id_and_label(character):
    spell = character.register_spell(SpellConfig(action_id=ActionID(spell_id=1), label="Strike", apply_effects=noop))
    assert character.get_spell(ActionID(spell_id=1)) is spell
    assert character.get_spell_by_label("Strike") is spell


@pytest.mark.parametrize("config", [
    SpellConfig(action_id=ActionID(spell_id=2), label="No Effect"),
    SpellConfig(action_id=ActionID(spell_id=2), label="Negative Cost", rage_cost=-5, apply_effects=noop),
    SpellConfig(action_id=ActionID(spell_id=2), label="Too Expensive", rage_cost=150, apply_effects=noop),
    SpellConfig(action_id=ActionID(spell_id=2), label="No Stance", required_stances=Stance.NONE, apply_effects=noop),
    SpellConfig(action_id=ActionID(spell_id=2), label="Negative GCD", cast=CastConfig(gcd=-1), apply_effects=noop),
    SpellConfig(action_id=ActionID(spell_id=2), label="Cooldown Without Timer", cast=CastConfig(cd=Cooldown(duration=5_000)), apply_effects=noop),
    SpellConfig(action_id=ActionID(spell_id=2), label="Timer Without Cooldown", cast=CastConfig(cd=Cooldown(timer=Timer("cd"))), apply_effects=noop),
])
def test_inconsistent_spell_is_a_configuration_error(character, config):
    with pytest.raises(ConfigurationError):
        character.register_spell(config)
    assert character.get_spell(config.action_id) is None


def test_duplicate_action_id_is_a_configuration_error(character):
    character.register_spell(SpellConfig(action_id=ActionID(spell_id=3), label="First", apply_effects=noop))
    with pytest.raises(ConfigurationError):
        character.register_spell(SpellConfig(action_id=ActionID(spell_id=3), label="Second", apply_effects=noop))


def test_rage_cost_without_a_resource_is_a_configuration_error(sim):
    character = Character(entity_id=sim.next_entity_id(), name="No Rage", level=60)
    with pytest.raises(ConfigurationError):
        character.register_spell(SpellConfig(action_id=ActionID(spell_id=4), rage_cost=10, apply_effects=noop))


def test_custom_predicate_gates_the_cast(sim, character):
    allowed = []
    spell = character.register_spell(SpellConfig(
        action_id=ActionID(spell_id=5),
        label="Conditional",
        extra_cast_condition=lambda sim, target: bool(allowed),
        apply_effects=noop,
    ))

    assert not spell.cast(sim, character)
    allowed.append(True)
    assert spell.cast(sim, character)

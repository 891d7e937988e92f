import pytest

from wowcore.common import (
    CooldownType,
    DefenseType,
    HitOutcome,
    ProcMask,
    SpellSchool,
    Stance,
    Talents,
    WarriorRune,
    rage_conversion,
)
from wowcore.core import SpellResult
from wowcore.job.warrior import (
    SHIELD_WALL,
    WHIRLWIND,
    rage_from_damage_dealt,
    rage_from_damage_taken,
)


def test_shield_wall_reduces_damage_taken_to_a_quarter_for_ten_seconds(sim, make_targets, make_warrior):
    make_targets()
    warrior = make_warrior(stance=Stance.DEFENSIVE, has_shield=True)
    shield_wall = warrior.get_spell_by_label("Shield Wall")

    assert shield_wall.cast(sim, warrior)
    assert warrior.take_damage(sim, 100) == pytest.approx(25)

    sim.step(9_999)
    assert warrior.has_aura("Shield Wall")
    assert warrior.take_damage(sim, 100) == pytest.approx(25)

    sim.step(1)
    assert not warrior.has_aura("Shield Wall")
    assert warrior.pseudo_stats.damage_taken_multiplier == pytest.approx(1.0)
    assert warrior.take_damage(sim, 100) == pytest.approx(100)


@pytest.mark.parametrize("points, duration", [(0, 10_000), (1, 13_000), (2, 15_000)])
def test_improved_shield_wall_extends_the_duration(make_targets, make_warrior, points, duration):
    make_targets()
    warrior = make_warrior(stance=Stance.DEFENSIVE, has_shield=True, talents=Talents(improved_shield_wall=points))
    assert warrior.shield_wall_aura.duration == duration


def test_shield_wall_requires_a_shield(sim, make_targets, make_warrior, main_hand):
    make_targets()
    warrior = make_warrior(stance=Stance.DEFENSIVE, main_hand=main_hand)
    assert not warrior.get_spell_by_label("Shield Wall").cast(sim, warrior)


def test_shield_wall_is_a_survival_cooldown(make_targets, make_warrior):
    make_targets()
    warrior = make_warrior(has_shield=True)
    survival = warrior.major_cooldowns.by_type(CooldownType.SURVIVAL)
    assert [entry.spell.action_id for entry in survival] == [SHIELD_WALL]


def test_whirlwind_resolves_once_per_target(sim, make_targets, make_warrior, main_hand, off_hand):
    make_targets(count=3)
    warrior = make_warrior(stance=Stance.BERSERKER, starting_rage=50, main_hand=main_hand, off_hand=off_hand)

    assert warrior.whirlwind.cast(sim, warrior.current_target)

    outcomes = sim.metrics.outcomes
    assert len(outcomes) == 3
    assert [record.target_index for record in outcomes] == [0, 1, 2]
    assert {record.label for record in outcomes} == {"Whirlwind (MH)"}
    assert warrior.get_spell(WHIRLWIND.with_tag(2)) is None


def test_enraged_whirlwind_with_consumed_by_rage_strikes_with_both_hands(sim, make_targets, make_warrior, main_hand, off_hand):
    make_targets(count=3)
    warrior = make_warrior(
        stance=Stance.BERSERKER,
        starting_rage=50,
        main_hand=main_hand,
        off_hand=off_hand,
        runes=[WarriorRune.CONSUMED_BY_RAGE],
    )
    warrior.get_aura("Enrage").activate(sim)
    assert warrior.is_enraged()

    assert warrior.whirlwind.cast(sim, warrior.current_target)

    outcomes = sim.metrics.outcomes
    assert len(outcomes) == 6
    assert [(record.label, record.target_index) for record in outcomes] == [
        ("Whirlwind (MH)", 0), ("Whirlwind (OH)", 0),
        ("Whirlwind (MH)", 1), ("Whirlwind (OH)", 1),
        ("Whirlwind (MH)", 2), ("Whirlwind (OH)", 2),
    ]


def test_consumed_by_rage_without_enrage_strikes_with_main_hand_only(sim, make_targets, make_warrior, main_hand, off_hand):
    make_targets(count=3)
    warrior = make_warrior(
        stance=Stance.BERSERKER,
        starting_rage=50,
        main_hand=main_hand,
        off_hand=off_hand,
        runes=[WarriorRune.CONSUMED_BY_RAGE],
    )

    warrior.whirlwind.cast(sim, warrior.current_target)

    assert len(sim.metrics.outcomes) == 3


def test_bloodrage_counts_as_enrage(sim, make_targets, make_warrior, main_hand, off_hand):
    make_targets(count=3)
    warrior = make_warrior(
        stance=Stance.BERSERKER,
        starting_rage=40,
        main_hand=main_hand,
        off_hand=off_hand,
        runes=[WarriorRune.CONSUMED_BY_RAGE],
    )
    warrior.get_spell_by_label("Bloodrage").cast(sim, warrior)

    warrior.whirlwind.cast(sim, warrior.current_target)

    assert len(sim.metrics.outcomes) == 6


def test_whirlwind_strikes_use_independent_draws(sim, make_targets, make_warrior, main_hand):
    make_targets(count=3)
    warrior = make_warrior(stance=Stance.BERSERKER, starting_rage=50, main_hand=main_hand)
    state = sim.rng.bit_generator.state

    warrior.whirlwind.cast(sim, warrior.current_target)

    assert sim.rng.bit_generator.state != state
    damages = [record.damage for record in sim.metrics.outcomes if record.damage > 0]
    assert len(set(damages)) == len(damages)


def test_whirlwind_threat_multiplier(sim, make_targets, make_warrior, main_hand):
    make_targets(count=1)
    warrior = make_warrior(stance=Stance.BERSERKER, starting_rage=50, main_hand=main_hand)

    warrior.whirlwind.cast(sim, warrior.current_target)

    record = sim.metrics.outcomes[0]
    assert record.threat == pytest.approx(record.damage * 1.25)


def test_whirlwind_is_not_registered_below_level_36(make_targets, make_warrior, main_hand):
    make_targets()
    warrior = make_warrior(level=35, stance=Stance.BERSERKER, main_hand=main_hand)

    assert warrior.get_spell_by_label("Whirlwind") is None
    assert warrior.get_spell(WHIRLWIND) is None
    assert warrior.whirlwind is None


def test_whirlwind_is_registered_from_level_36(make_targets, make_warrior, main_hand):
    make_targets()
    warrior = make_warrior(level=36, stance=Stance.BERSERKER, main_hand=main_hand)
    assert warrior.get_spell(WHIRLWIND) is warrior.whirlwind


def test_impale_is_read_at_registration(make_targets, make_warrior, main_hand):
    make_targets()
    warrior = make_warrior(stance=Stance.BERSERKER, main_hand=main_hand, talents=Talents(impale=2))
    assert warrior.get_spell_by_label("Whirlwind (MH)").config.crit_damage_bonus == pytest.approx(0.2)


def test_cruelty_adds_crit(make_targets, make_warrior):
    make_targets()
    warrior = make_warrior(melee_crit=0.1, talents=Talents(cruelty=5))
    assert warrior.stats.melee_crit == pytest.approx(0.15)


def test_rage_from_damage_dealt():
    conversion = rage_conversion(60)
    assert conversion == pytest.approx(230.6, abs=0.1)
    assert rage_from_damage_dealt(conversion, conversion, 3.5, 2.0) == pytest.approx(15 / 4 + 3.5)
    # Small hits are capped
    assert rage_from_damage_dealt(10, conversion, 3.5, 2.0) == pytest.approx(150 / conversion)


def test_taking_damage_generates_rage(sim, make_targets, make_warrior):
    make_targets()
    warrior = make_warrior()

    warrior.take_damage(sim, 1000)

    assert warrior.rage == pytest.approx(rage_from_damage_taken(1000, rage_conversion(60)))


def test_rage_is_capped(sim, make_targets, make_warrior):
    make_targets()
    warrior = make_warrior(starting_rage=95)

    assert warrior.gauge.gain(sim, 10, SHIELD_WALL) == pytest.approx(5)
    assert warrior.rage == 100
    assert warrior.gauge.wasted == pytest.approx(5)


def test_bloodrage_generates_rage_over_time(sim, make_targets, make_warrior):
    make_targets()
    warrior = make_warrior()

    warrior.get_spell_by_label("Bloodrage").cast(sim, warrior)
    assert warrior.rage == 10

    sim.step(10_000)
    assert warrior.rage == 20
    assert not warrior.has_aura("Bloodrage")


def test_crossing_eighty_rage_enrages_with_consumed_by_rage(sim, make_targets, make_warrior):
    make_targets()
    warrior = make_warrior(starting_rage=75, runes=[WarriorRune.CONSUMED_BY_RAGE])

    warrior.gauge.gain(sim, 10, SHIELD_WALL)

    enrage = warrior.get_aura("Enrage")
    assert enrage.active
    assert enrage.stacks == 12
    assert warrior.pseudo_stats.damage_dealt_multiplier == pytest.approx(1.1)


def test_flurry_charges(sim, make_targets, make_warrior, main_hand):
    target = make_targets()[0]
    warrior = make_warrior(main_hand=main_hand, talents=Talents(flurry=5))
    swing = warrior.auto_attacks.mh_spell

    warrior.on_spell_hit_dealt(sim, swing, SpellResult(target, HitOutcome.CRIT, 100.0, 100.0))
    flurry = warrior.get_aura("Flurry")
    assert flurry.stacks == 3
    assert warrior.pseudo_stats.melee_speed_multiplier == pytest.approx(1.3)
    assert warrior.auto_attacks.swing_speed(is_mh=True) == int(2600 / 1.3)

    for _ in range(3):
        warrior.on_auto_attack(sim, SpellResult(target, HitOutcome.MISS, 0.0, 0.0), is_mh=True)

    assert not flurry.active
    assert warrior.pseudo_stats.melee_speed_multiplier == pytest.approx(1.0)


def test_auto_attacks_swing_at_weapon_speed(make_targets, make_warrior, sim, main_hand, off_hand):
    make_targets()
    warrior = make_warrior(main_hand=main_hand, off_hand=off_hand)

    result = sim.run()

    assert result.casts["Auto Attack (MH)"] == 60_000 // 2_600 + 1
    assert result.casts["Auto Attack (OH)"] == 60_000 // 2_400 + 1
    assert sum(warrior.gauge.gained.values()) > 0


def test_dual_wield_specialization_raises_off_hand_damage(make_targets, make_warrior, main_hand, off_hand):
    make_targets()
    warrior = make_warrior(main_hand=main_hand, off_hand=off_hand, talents=Talents(dual_wield_specialization=5))
    assert warrior.pseudo_stats.off_hand_damage_multiplier == pytest.approx(0.5 * 1.25)


def test_whirlwind_is_not_registered_without_a_weapon(sim, make_targets, make_warrior):
    make_targets(count=3)
    warrior = make_warrior(stance=Stance.BERSERKER, starting_rage=50)

    assert warrior.whirlwind is None
    assert warrior.get_spell_by_label("Whirlwind") is None
    assert warrior.get_spell_by_label("Whirlwind (MH)") is None
    assert warrior.rage == 50


def test_whirlwind_is_a_main_hand_melee_special(make_targets, make_warrior, main_hand):
    make_targets()
    warrior = make_warrior(stance=Stance.BERSERKER, main_hand=main_hand)
    config = warrior.whirlwind.config

    assert config.spell_school == SpellSchool.PHYSICAL
    assert config.defense_type == DefenseType.MELEE
    assert config.proc_mask == ProcMask.MELEE_MH_SPECIAL


def pending_swings(sim, warrior):
    swing = warrior.auto_attacks._swing
    return sorted(task.time for task in sim.task_queue if not task.cancelled and task.callback == swing)


def test_flurry_rescales_swings_in_flight(sim, make_targets, make_warrior, main_hand, off_hand):
    make_targets()
    warrior = make_warrior(melee_crit=0.0, main_hand=main_hand, off_hand=off_hand, talents=Talents(flurry=5))
    swings = warrior.auto_attacks

    sim.step(100)
    assert swings.next_swing_at == {True: 2_600, False: 2_400}
    assert pending_swings(sim, warrior) == [2_400, 2_600]

    flurry = warrior.get_aura("Flurry")
    flurry.activate(sim)

    oh_swing = 100 + int(2_300 / 1.3)
    mh_swing = 100 + int(2_500 / 1.3)
    assert swings.next_swing_at == {True: mh_swing, False: oh_swing}
    assert pending_swings(sim, warrior) == [oh_swing, mh_swing]

    sim.step(100)
    flurry.deactivate(sim)

    assert swings.next_swing_at == {
        True: 200 + int((mh_swing - 200) * 1.3),
        False: 200 + int((oh_swing - 200) * 1.3),
    }
    assert len(pending_swings(sim, warrior)) == 2

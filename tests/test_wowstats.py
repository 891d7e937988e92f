import numpy as np
import pytest

from wowcore.common import HitOutcome, ResolverError
from wowcore.wowstats import (
    AttackerProfile,
    AttackTable,
    DefenderProfile,
    OutcomeTable,
    apply_outcome,
    armor_damage_reduction,
    crit_damage_multiplier,
)


def test_remainder_of_the_table_is_a_normal_hit():
    table = OutcomeTable([(HitOutcome.MISS, 0.1), (HitOutcome.DODGE, 0.2)])
    assert table.chance(HitOutcome.HIT) == pytest.approx(0.7)
    assert sum(table.probabilities.values()) == pytest.approx(1.0)


def test_draws_map_to_cumulative_intervals():
    table = OutcomeTable([(HitOutcome.MISS, 0.1), (HitOutcome.DODGE, 0.2), (HitOutcome.CRIT, 0.25)])
    assert table.outcome_for(0.0) == HitOutcome.MISS
    assert table.outcome_for(0.0999) == HitOutcome.MISS
    assert table.outcome_for(0.1) == HitOutcome.DODGE
    assert table.outcome_for(0.2) == HitOutcome.DODGE
    assert table.outcome_for(0.31) == HitOutcome.CRIT
    assert table.outcome_for(0.56) == HitOutcome.HIT
    assert table.outcome_for(0.999999) == HitOutcome.HIT


def test_zero_probability_rows_are_never_selected():
    table = OutcomeTable([(HitOutcome.MISS, 0.0), (HitOutcome.DODGE, 0.0), (HitOutcome.CRIT, 0.5)])
    draws = np.linspace(0.0, 0.999, 1000)
    outcomes = {table.outcome_for(draw) for draw in draws}
    assert outcomes == {HitOutcome.CRIT, HitOutcome.HIT}


def test_full_table_leaves_no_room_for_a_hit():
    table = OutcomeTable([(HitOutcome.MISS, 0.5), (HitOutcome.CRIT, 0.5)])
    assert table.chance(HitOutcome.HIT) == 0.0
    assert table.outcome_for(0.999999) == HitOutcome.CRIT


def test_draw_outside_the_unit_interval_is_rejected():
    table = OutcomeTable([(HitOutcome.MISS, 0.1)])
    with pytest.raises(ResolverError):
        table.outcome_for(1.0)
    with pytest.raises(ResolverError):
        table.outcome_for(-0.1)


@pytest.mark.parametrize("entries", [
    [(HitOutcome.MISS, 0.6), (HitOutcome.CRIT, 0.5)],
    [(HitOutcome.MISS, -0.1)],
    [(HitOutcome.MISS, float("nan"))],
    [(HitOutcome.MISS, 0.1), (HitOutcome.MISS, 0.1)],
    [(HitOutcome.HIT, 0.5)],
])
def test_degenerate_tables_raise(entries):
    with pytest.raises(ResolverError):
        OutcomeTable(entries)


def test_roll_uses_one_draw_from_the_stream():
    table = OutcomeTable([(HitOutcome.MISS, 0.25), (HitOutcome.CRIT, 0.25)])
    rng = np.random.default_rng(5)
    expected = np.random.default_rng(5).random(100)

    outcomes = [table.roll(rng) for _ in range(100)]

    assert outcomes == [table.outcome_for(draw) for draw in expected]


def level_60_attacker(**kwargs):
    return AttackerProfile(level=60, weapon_skill=300, **kwargs)


@pytest.mark.parametrize("hit, crit, expertise, in_front, dual_wield", [
    (0.0, 0.05, 0, False, False),
    (0.09, 0.35, 0, True, False),
    (0.0, 0.30, 5, True, True),
    (0.2, 0.0, 0, False, True),
])
def test_attack_tables_sum_to_one(hit, crit, expertise, in_front, dual_wield):
    attacker = level_60_attacker(hit=hit, crit=crit, expertise=expertise, dual_wield=dual_wield)
    table = AttackTable(attacker, DefenderProfile(level=63), in_front=in_front)

    for outcome_table in (table.special_table(), table.white_table()):
        assert sum(outcome_table.probabilities.values()) == pytest.approx(1.0)
        assert all(p >= 0 for p in outcome_table.probabilities.values())


def test_boss_level_defender_table():
    table = AttackTable(level_60_attacker(), DefenderProfile(level=63), in_front=False)
    assert table.skill_difference == 15
    assert table.miss_chance(white=False) == pytest.approx(0.08)
    assert table.dodge_chance() == pytest.approx(0.065)
    assert table.parry_chance() == 0.0
    assert table.block_chance() == 0.0
    assert table.glance_chance() == pytest.approx(0.4)
    assert table.glance_multiplier == pytest.approx(0.65)


def test_first_point_of_hit_is_ignored_against_bosses():
    table = AttackTable(level_60_attacker(hit=0.09), DefenderProfile(level=63))
    assert table.miss_chance(white=False) == pytest.approx(0.0)
    table = AttackTable(level_60_attacker(hit=0.05), DefenderProfile(level=63))
    assert table.miss_chance(white=False) == pytest.approx(0.04)


def test_parry_and_block_only_from_the_front():
    defender = DefenderProfile(level=60, parry=0.05, block=0.05)
    behind = AttackTable(level_60_attacker(), defender, in_front=False).special_table()
    front = AttackTable(level_60_attacker(), defender, in_front=True).special_table()

    assert behind.chance(HitOutcome.PARRY) == 0.0
    assert behind.chance(HitOutcome.BLOCK) == 0.0
    assert front.chance(HitOutcome.PARRY) == pytest.approx(0.05)
    assert front.chance(HitOutcome.BLOCK) == pytest.approx(0.05)


def test_dual_wield_penalty_applies_to_auto_attacks_only():
    table = AttackTable(level_60_attacker(dual_wield=True), DefenderProfile(level=60))
    assert table.miss_chance(white=True) == pytest.approx(0.05 + 0.19)
    assert table.miss_chance(white=False) == pytest.approx(0.05)


def test_white_crit_is_capped_by_the_table():
    table = AttackTable(level_60_attacker(crit=0.9), DefenderProfile(level=63))
    white = table.white_table()
    assert white.chance(HitOutcome.HIT) == pytest.approx(0.0)
    assert sum(white.probabilities.values()) == pytest.approx(1.0)


def test_special_crit_overflow_raises():
    table = AttackTable(level_60_attacker(crit=0.99), DefenderProfile(level=63))
    with pytest.raises(ResolverError):
        table.special_table()


def test_outcome_transforms():
    assert apply_outcome(HitOutcome.MISS, 100) == 0
    assert apply_outcome(HitOutcome.DODGE, 100) == 0
    assert apply_outcome(HitOutcome.PARRY, 100) == 0
    assert apply_outcome(HitOutcome.BLOCK, 100, block_value=30) == pytest.approx(70)
    assert apply_outcome(HitOutcome.BLOCK, 20, block_value=30) == 0
    assert apply_outcome(HitOutcome.GLANCE, 100, glance_multiplier=0.65) == pytest.approx(65)
    assert apply_outcome(HitOutcome.CRIT, 100, crit_multiplier=2.2) == pytest.approx(220)
    assert apply_outcome(HitOutcome.HIT, 100) == 100


def test_negative_damage_is_rejected():
    with pytest.raises(ResolverError):
        apply_outcome(HitOutcome.HIT, -1)


def test_impale_increases_the_crit_bonus():
    assert crit_damage_multiplier() == pytest.approx(2.0)
    assert crit_damage_multiplier(0.2) == pytest.approx(2.2)


def test_armor_reduction_is_capped():
    assert armor_damage_reduction(0, 60) == 0.0
    assert armor_damage_reduction(3731, 60) == pytest.approx(3731 / (3731 + 400 + 85 * 60))
    assert armor_damage_reduction(10 ** 7, 60) == pytest.approx(0.75)

import dataclasses

import pytest

from montecarlo import build_trial
from wowcore.common import ConfigurationError, CooldownType, Stance
from wowcore.core import MajorCooldown, Rotation


ROTATION_DATA = {
    "name": "Protection",
    "major_cooldowns": ["survival", "dps"],
    "actions": [
        {"spell": "Whirlwind", "min_rage": 25},
        "Bloodrage",
        {"spell": "Shield Wall", "target": "self"},
        {"spell": "Whirlwind", "target": "specific", "target_index": 1, "missing_aura": "Enrage"},
    ],
}


def test_rotation_round_trip():
    rotation = Rotation.from_dict(ROTATION_DATA)

    assert rotation.to_dict() == {
        "name": "Protection",
        "major_cooldowns": ["dps", "survival"],
        "actions": [
            {"spell": "Whirlwind", "min_rage": 25},
            {"spell": "Bloodrage"},
            {"spell": "Shield Wall", "target": "self"},
            {"spell": "Whirlwind", "target": "specific", "target_index": 1, "missing_aura": "Enrage"},
        ],
    }
    assert Rotation.from_dict(rotation.to_dict()).to_dict() == rotation.to_dict()


def test_rotation_file_round_trip(tmp_path):
    rotation = Rotation.from_dict(ROTATION_DATA)
    path = tmp_path / "rotation.json"

    rotation.save_to_file(str(path))

    assert Rotation.load_from_json(str(path)).to_dict() == rotation.to_dict()


@pytest.mark.parametrize("data", [
    {"actions": [{"spell": "Whirlwind", "min_mana": 25}]},
    {"major_cooldowns": ["offensive"], "actions": []},
])
def test_invalid_rotation_is_a_configuration_error(data):
    with pytest.raises(ConfigurationError):
        Rotation.from_dict(data)


def test_rotation_skips_actions_whose_requirements_fail(sim, make_targets, make_warrior, main_hand):
    make_targets(count=1)
    warrior = make_warrior(stance=Stance.BERSERKER, starting_rage=30, main_hand=main_hand)
    rotation = Rotation.from_dict({
        "name": "Test",
        "actions": [{"spell": "Whirlwind", "min_rage": 40}, {"spell": "Bloodrage"}],
    })
    warrior.set_rotation(rotation)
    rotation.enable()

    assert rotation.execute_next(sim)
    assert warrior.get_spell_by_label("Bloodrage").casts == 1
    assert warrior.whirlwind.casts == 0

    assert rotation.execute_next(sim)
    assert warrior.whirlwind.casts == 1
    assert rotation.next_decision_time(sim) == 10_000


def test_rotation_ignores_unregistered_spells(sim, make_targets, make_warrior):
    make_targets()
    warrior = make_warrior(level=30, stance=Stance.BERSERKER, starting_rage=50)
    rotation = Rotation.from_dict({"name": "Test", "actions": ["Whirlwind", "Rampage"]})
    warrior.set_rotation(rotation)
    rotation.enable()

    assert not rotation.execute_next(sim)


def test_disabled_rotation_does_nothing(sim, make_targets, make_warrior):
    make_targets()
    warrior = make_warrior()
    rotation = Rotation.from_dict({"name": "Test", "actions": ["Bloodrage"]})
    warrior.set_rotation(rotation)

    assert not rotation.execute_next(sim)


def test_rotation_drives_a_trial(fury_scenario):
    sim, warrior = build_trial(fury_scenario)

    result = sim.run()

    assert result.casts["Bloodrage"] == 1
    assert result.casts["Mighty Rage Potion"] == 1
    assert result.casts["Berserker Rage"] >= 1
    assert result.casts["Whirlwind"] >= 1
    assert result.damage_by_action["Whirlwind (MH)"] > 0
    assert result.resolver_calls == len(sim.metrics.outcomes)


def test_major_cooldowns_are_registered_by_category(make_targets, make_warrior):
    make_targets()
    warrior = make_warrior(has_shield=True)

    entries = [(entry.spell.label, entry.type) for entry in warrior.major_cooldowns.entries]
    assert entries == [
        ("Bloodrage", CooldownType.DPS),
        ("Berserker Rage", CooldownType.UTILITY),
        ("Shield Wall", CooldownType.SURVIVAL),
        ("Mighty Rage Potion", CooldownType.DPS),
    ]
    labels = [entry.spell.label for entry in warrior.major_cooldowns.by_type(CooldownType.DPS | CooldownType.SURVIVAL)]
    assert labels == ["Bloodrage", "Shield Wall", "Mighty Rage Potion"]


def test_major_cooldown_entries_are_immutable(make_targets, make_warrior):
    make_targets()
    warrior = make_warrior()
    entry = warrior.major_cooldowns.entries[0]

    with pytest.raises(dataclasses.FrozenInstanceError):
        entry.type = CooldownType.SURVIVAL


def test_major_cooldown_registered_twice_is_a_configuration_error(make_targets, make_warrior):
    make_targets()
    warrior = make_warrior()
    bloodrage = warrior.get_spell_by_label("Bloodrage")

    with pytest.raises(ConfigurationError):
        warrior.add_major_cooldown(MajorCooldown(spell=bloodrage, type=CooldownType.UTILITY))


def test_major_cooldown_of_another_character_is_a_configuration_error(make_targets, make_warrior):
    make_targets()
    first = make_warrior(name="First")
    second = make_warrior(name="Second")

    with pytest.raises(ConfigurationError):
        second.add_major_cooldown(MajorCooldown(spell=first.get_spell_by_label("Shield Wall")))


def test_potion_is_level_gated(make_targets, make_warrior):
    make_targets()
    warrior = make_warrior(level=45)
    assert warrior.get_spell_by_label("Mighty Rage Potion") is None

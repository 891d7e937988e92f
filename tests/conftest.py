import pytest

from wowcore.common import ScenarioConfig, TargetConfig, Weapon, WarriorConfig
from wowcore.core import Simulation
from wowcore.job import create_character

MAIN_HAND = Weapon(min_damage=100, max_damage=200, speed=2.6)
OFF_HAND = Weapon(min_damage=80, max_damage=150, speed=2.4)


@pytest.fixture
def sim():
    return Simulation(seed=1234, duration=60_000)


@pytest.fixture
def make_targets(sim):
    def factory(count=1, **kwargs):
        return sim.add_targets([TargetConfig(name=f"Dummy {i + 1}", **kwargs) for i in range(count)])
    return factory


@pytest.fixture
def make_warrior(sim):
    """Build a fully registered warrior and add it to the simulation."""
    def factory(**kwargs):
        warrior = create_character(entity_id=sim.next_entity_id(), config=WarriorConfig(**kwargs))
        sim.add_character(warrior)
        return warrior
    return factory


@pytest.fixture
def main_hand():
    return MAIN_HAND


@pytest.fixture
def off_hand():
    return OFF_HAND


@pytest.fixture
def fury_scenario_data():
    return {
        "character": {
            "name": "Fury Warrior",
            "attack_power": 1500,
            "melee_crit": 0.2,
            "melee_hit": 0.05,
            "main_hand": {"min_damage": 100, "max_damage": 200, "speed": 2.6},
            "off_hand": {"min_damage": 80, "max_damage": 150, "speed": 2.4},
            "talents": {"impale": 2, "flurry": 5, "dual_wield_specialization": 5},
            "runes": ["consumed_by_rage"],
            "stance": "berserker",
        },
        "encounter": {"duration": 20_000, "target_count": 3, "targets": [{"name": "Trash", "level": 62}]},
        "rotation": {
            "name": "Fury AoE",
            "major_cooldowns": ["dps"],
            "actions": [{"spell": "Berserker Rage"}, {"spell": "Whirlwind", "min_rage": 25}],
        },
        "simulation": {"num_trials": 8, "base_seed": 3, "method": "standard"},
    }


@pytest.fixture
def fury_scenario(fury_scenario_data):
    return ScenarioConfig.from_dict(fury_scenario_data)

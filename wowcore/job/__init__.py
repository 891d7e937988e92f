from wowcore.core import *
from wowcore.common import WarriorConfig

from wowcore.job.warrior import Warrior, register_warrior_actions

MIGHTY_RAGE_POTION = ActionID(item_id=13442)
POTION_LEVEL = 46
POTION_COOLDOWN = 120_000


def register_mighty_rage_potion(caster: "Character", potion_timer: Timer):
    """Mighty Rage Potion: 45 to 75 rage and 120 attack power for 20 seconds."""
    if caster.level < POTION_LEVEL or not isinstance(caster.gauge, RageBar):
        return

    aura = caster.register_aura(
        label="Mighty Rage",
        action_id=MIGHTY_RAGE_POTION,
        duration=20_000,
        effects=(AddStat("attack_power", 120),),
    )

    def apply_effects(sim: "Simulation", target: Optional[Unit], spell: Spell):
        caster.gauge.gain(sim, float(sim.rng.integers(45, 76)), MIGHTY_RAGE_POTION)
        aura.activate(sim)

    spell = caster.register_spell(SpellConfig(
        action_id=MIGHTY_RAGE_POTION,
        label="Mighty Rage Potion",
        flags=SpellFlag.APL,
        cast=CastConfig(shared_cd=Cooldown(timer=potion_timer, duration=POTION_COOLDOWN)),
        apply_effects=apply_effects,
    ))
    caster.add_major_cooldown(MajorCooldown(spell=spell, type=CooldownType.DPS))


def register_common_actions(caster: "Character"):
    """Register all common actions for the given caster"""

    # Consumables share one cooldown
    potion_timer = caster.new_timer("Potion", ignore_haste=True)
    register_mighty_rage_potion(caster, potion_timer)


def create_character(entity_id: int, config: WarriorConfig) -> Warrior:
    """
    Build a warrior with all of its auras and spells registered.

    Raises:
        ConfigurationError: If a spell or aura is inconsistent with the build
    """
    warrior = Warrior(entity_id=entity_id, config=config)
    register_warrior_actions(warrior)
    register_common_actions(warrior)
    return warrior

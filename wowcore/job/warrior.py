"""
Warrior Job Module for the Combat Simulation

This module implements the warrior mechanics, including:
- Rage generation from damage dealt and taken
- Stances and the shared stance cooldown
- Talent driven auras (Flurry) and modifiers (Impale, Cruelty, Tactical Mastery)
- Enrage effects (Bloodrage, Berserker Rage, the Consumed by Rage rune)
- Shield Wall and Whirlwind

Spells are registered on the Warrior through SpellConfig definitions; talents
and runes are read once, when the spells and auras are registered, and are
never re-evaluated during a trial.
"""

from wowcore.common import (
    GCD_DEFAULT,
    RAGE_FACTOR_MH_CRIT,
    RAGE_FACTOR_MH_HIT,
    RAGE_FACTOR_OH_CRIT,
    RAGE_FACTOR_OH_HIT,
    STANCE_SWAP_COOLDOWN,
    WarriorConfig,
    WarriorRune,
    rage_conversion,
)
from wowcore.core import *

# Spell identifiers
BATTLE_STANCE = ActionID(spell_id=2457)
DEFENSIVE_STANCE = ActionID(spell_id=71)
BERSERKER_STANCE = ActionID(spell_id=2458)
SHIELD_WALL = ActionID(spell_id=871)
WHIRLWIND = ActionID(spell_id=1680)
BLOODRAGE = ActionID(spell_id=2687)
BERSERKER_RAGE = ActionID(spell_id=18499)
FLURRY = ActionID(spell_id=12974)
CONSUMED_BY_RAGE = ActionID(spell_id=425418)
RAGE_FROM_DAMAGE_TAKEN = ActionID(spell_id=1, tag=2)

STANCE_ACTION_IDS = {
    Stance.BATTLE: BATTLE_STANCE,
    Stance.DEFENSIVE: DEFENSIVE_STANCE,
    Stance.BERSERKER: BERSERKER_STANCE,
}

# Minimum character level of each ability
STANCE_LEVELS = {Stance.BATTLE: 1, Stance.DEFENSIVE: 10, Stance.BERSERKER: 30}
BLOODRAGE_LEVEL = 10
SHIELD_WALL_LEVEL = 28
BERSERKER_RAGE_LEVEL = 32
WHIRLWIND_LEVEL = 36

SHIELD_WALL_DURATION = 10_000
SHIELD_WALL_BONUS_DURATION = [0, 3_000, 5_000]  # By Improved Shield Wall points
SHIELD_WALL_COOLDOWN = 30 * 60_000
SHIELD_WALL_DAMAGE_TAKEN = 0.25

WHIRLWIND_COOLDOWN = 10_000
WHIRLWIND_RAGE_COST = 25
WHIRLWIND_THREAT_MULTIPLIER = 1.25

FLURRY_HASTE = [0.0, 0.10, 0.15, 0.20, 0.25, 0.30]  # By Flurry points
FLURRY_CHARGES = 3
FLURRY_DURATION = 15_000

ENRAGE_TAG = "enrage"
CONSUMED_BY_RAGE_THRESHOLD = 80
CONSUMED_BY_RAGE_CHARGES = 12
CONSUMED_BY_RAGE_DURATION = 12_000
CONSUMED_BY_RAGE_DAMAGE = 1.10


def rage_from_damage_dealt(damage: float, conversion: float, hit_factor: float, weapon_speed: float) -> float:
    """
    Rage generated by an auto attack.

    Args:
        damage: Damage dealt by the swing
        conversion: Rage conversion value of the attacker's level
        hit_factor: Hit factor of the swing (hand and crit dependent)
        weapon_speed: Weapon speed in seconds

    Returns:
        float: Rage generated
    """
    rage = 15 * damage / (4 * conversion) + hit_factor * weapon_speed / 2
    return min(rage, 15 * damage / conversion)


def rage_from_damage_taken(damage: float, conversion: float) -> float:
    return 2.5 * damage / conversion


class Warrior(Character):
    """
    A warrior: rage user with three stances.

    Attributes:
        config (WarriorConfig): Build of the warrior
        talents (Talents): Talent points, read at registration
        stance_timer (Timer): Cooldown shared by the stance spells
        stance_auras (Dict[Stance, Aura]): Aura of each registered stance
        rage_conversion (float): Rage conversion value of the warrior's level
        shield_wall_aura (Optional[Aura]): Registered by register_shield_wall_cd
        whirlwind (Optional[Spell]): Registered by register_whirlwind_spell
    """

    def __init__(self, entity_id: int, config: WarriorConfig):
        talents = config.talents
        stats = Stats(
            attack_power=config.attack_power,
            melee_crit=config.melee_crit + 0.01 * talents.cruelty,
            melee_hit=config.melee_hit,
            expertise=config.expertise,
            armor=config.armor,
            block_value=config.block_value,
        )
        super().__init__(entity_id=entity_id, name=config.name, level=config.level, stats=stats)

        self.config = config
        self.talents = talents
        self.gauge = RageBar(self, starting_rage=config.starting_rage)
        self.gauge.listeners.append(self._on_rage_changed)
        self.auto_attacks = AutoAttacks(self, config.main_hand, config.off_hand)
        self.in_front_of_target = config.in_front_of_target
        self.pseudo_stats.can_block = config.has_shield
        if talents.dual_wield_specialization:
            self.pseudo_stats.multiply("off_hand_damage_multiplier", 1 + 0.05 * talents.dual_wield_specialization)

        self.stance = config.stance
        self.stance_timer = self.new_timer("Stance", ignore_haste=True)
        self.stance_auras: Dict[Stance, Aura] = {}
        self.rage_conversion = rage_conversion(config.level)

        self.shield_wall_aura: Optional[Aura] = None
        self.whirlwind: Optional[Spell] = None
        self.flurry_aura: Optional[Aura] = None
        self.consumed_by_rage_aura: Optional[Aura] = None

        self.hit_dealt_listeners.append(self._on_hit_dealt)

    def impale(self) -> float:
        """Crit damage bonus of special attacks granted by Impale."""
        return 0.1 * self.talents.impale

    def is_enraged(self) -> bool:
        return any(aura.active for aura in self.auras.with_tag(ENRAGE_TAG))

    def has_rune(self, rune: WarriorRune) -> bool:
        return self.config.has_rune(rune)

    @property
    def rage(self) -> float:
        return self.gauge.current

    def on_start(self, sim: "Simulation"):
        stance_aura = self.stance_auras.get(self.stance)
        if stance_aura is not None:
            stance_aura.activate(sim)

    # Rage

    def on_auto_attack(self, sim: "Simulation", result: SpellResult, is_mh: bool):
        if result.landed and result.damage > 0:
            is_crit = result.outcome == HitOutcome.CRIT
            if is_mh:
                hit_factor = RAGE_FACTOR_MH_CRIT if is_crit else RAGE_FACTOR_MH_HIT
            else:
                hit_factor = RAGE_FACTOR_OH_CRIT if is_crit else RAGE_FACTOR_OH_HIT
            rage = rage_from_damage_dealt(
                result.damage, self.rage_conversion, hit_factor, self.auto_attacks.weapon(is_mh).speed
            )
            action_id = AutoAttacks.MH_ACTION_ID if is_mh else AutoAttacks.OH_ACTION_ID
            self.gauge.gain(sim, rage, action_id)

        # A crit refreshes Flurry instead of consuming a charge
        flurry = self.flurry_aura
        if flurry is not None and flurry.active and result.outcome != HitOutcome.CRIT:
            flurry.remove_stack(sim)

        super().on_auto_attack(sim, result, is_mh)

    def on_damage_taken(self, sim: "Simulation", raw_damage: float, damage: float):
        if damage > 0:
            self.gauge.gain(sim, rage_from_damage_taken(damage, self.rage_conversion), RAGE_FROM_DAMAGE_TAKEN)

    def _on_rage_changed(self, sim: "Simulation", old_rage: float, new_rage: float):
        aura = self.consumed_by_rage_aura
        if aura is not None and old_rage <= CONSUMED_BY_RAGE_THRESHOLD < new_rage:
            aura.activate(sim)
        if new_rage > old_rage:
            self.request_decision(sim)

    def _on_hit_dealt(self, sim: "Simulation", spell: Spell, result: SpellResult):
        if not spell.proc_mask & ProcMask.MELEE:
            return
        if result.outcome == HitOutcome.CRIT and self.flurry_aura is not None:
            self.flurry_aura.activate(sim)
        enrage = self.consumed_by_rage_aura
        if enrage is not None and enrage.active and result.landed:
            enrage.remove_stack(sim)

    # Stances

    def set_stance(self, sim: "Simulation", stance: Stance):
        """
        Change stance: the old stance aura expires, rage above the Tactical
        Mastery allowance is lost and the new stance aura is gained.
        """
        if stance == self.stance:
            return
        old_aura = self.stance_auras.get(self.stance)
        if old_aura is not None:
            old_aura.deactivate(sim)
        self.stance = stance
        self.gauge.clamp(sim, 5 * self.talents.tactical_mastery, STANCE_ACTION_IDS[stance])
        self.stance_auras[stance].activate(sim)

    def register_stances(self):
        effects = {
            Stance.BATTLE: (),
            Stance.DEFENSIVE: (
                MultiplyStat("threat_multiplier", 1.3),
                MultiplyStat("damage_dealt_multiplier", 0.9),
            ),
            Stance.BERSERKER: (
                AddStat("melee_crit", 0.03),
                MultiplyStat("damage_taken_multiplier", 1.1),
            ),
        }
        for stance, action_id in STANCE_ACTION_IDS.items():
            if self.level < STANCE_LEVELS[stance]:
                continue
            label = f"{stance.name.title()} Stance"
            self.stance_auras[stance] = self.register_aura(
                label=label, action_id=action_id, effects=effects[stance], tags=("stance",)
            )
            self.register_spell(SpellConfig(
                action_id=action_id,
                label=label,
                flags=SpellFlag.APL,
                cast=CastConfig(shared_cd=Cooldown(timer=self.stance_timer, duration=STANCE_SWAP_COOLDOWN)),
                extra_cast_condition=lambda sim, target, stance=stance: self.stance != stance,
                apply_effects=lambda sim, target, spell, stance=stance: self.set_stance(sim, stance),
            ))

    # Talent and rune auras

    def register_flurry(self):
        if self.talents.flurry == 0:
            return
        self.flurry_aura = self.register_aura(
            label="Flurry",
            action_id=FLURRY.with_tag(self.talents.flurry),
            duration=FLURRY_DURATION,
            max_stacks=FLURRY_CHARGES,
            effects=(MultiplyMeleeSpeed(1 + FLURRY_HASTE[self.talents.flurry]),),
        )

    def register_consumed_by_rage(self):
        if not self.has_rune(WarriorRune.CONSUMED_BY_RAGE):
            return
        self.consumed_by_rage_aura = self.register_aura(
            label="Enrage",
            action_id=CONSUMED_BY_RAGE,
            duration=CONSUMED_BY_RAGE_DURATION,
            max_stacks=CONSUMED_BY_RAGE_CHARGES,
            effects=(MultiplyStat("damage_dealt_multiplier", CONSUMED_BY_RAGE_DAMAGE),),
            tags=(ENRAGE_TAG,),
        )

    # Cooldowns

    def register_bloodrage(self):
        if self.level < BLOODRAGE_LEVEL:
            return

        aura = self.register_aura(
            label="Bloodrage",
            action_id=BLOODRAGE,
            duration=10_000,
            tick_interval=1_000,
            on_tick=lambda aura, sim: self.gauge.gain(sim, 1, BLOODRAGE),
            tags=(ENRAGE_TAG,),
        )

        def apply_effects(sim: "Simulation", target: Optional[Unit], spell: Spell):
            self.gauge.gain(sim, 10, BLOODRAGE)
            aura.activate(sim)

        spell = self.register_spell(SpellConfig(
            action_id=BLOODRAGE,
            label="Bloodrage",
            flags=SpellFlag.APL,
            cast=CastConfig(cd=Cooldown(timer=self.new_timer("Bloodrage"), duration=60_000)),
            apply_effects=apply_effects,
        ))
        self.add_major_cooldown(MajorCooldown(spell=spell, type=CooldownType.DPS))

    def register_berserker_rage(self):
        if self.level < BERSERKER_RAGE_LEVEL:
            return

        aura = self.register_aura(
            label="Berserker Rage",
            action_id=BERSERKER_RAGE,
            duration=10_000,
            tags=(ENRAGE_TAG,),
        )
        bonus_rage = 5 * self.talents.improved_berserker_rage

        def apply_effects(sim: "Simulation", target: Optional[Unit], spell: Spell):
            if bonus_rage:
                self.gauge.gain(sim, bonus_rage, BERSERKER_RAGE)
            aura.activate(sim)

        spell = self.register_spell(SpellConfig(
            action_id=BERSERKER_RAGE,
            label="Berserker Rage",
            flags=SpellFlag.APL,
            required_stances=Stance.BERSERKER,
            cast=CastConfig(cd=Cooldown(timer=self.new_timer("Berserker Rage"), duration=30_000)),
            apply_effects=apply_effects,
        ))
        self.add_major_cooldown(MajorCooldown(spell=spell, type=CooldownType.UTILITY))

    def register_shield_wall_cd(self):
        """
        Shield Wall: damage taken is reduced to a quarter for 10 seconds,
        extended by Improved Shield Wall. Requires Defensive Stance and a shield.
        """
        if self.level < SHIELD_WALL_LEVEL:
            return

        duration = SHIELD_WALL_DURATION + SHIELD_WALL_BONUS_DURATION[self.talents.improved_shield_wall]
        self.shield_wall_aura = self.register_aura(
            label="Shield Wall",
            action_id=SHIELD_WALL,
            duration=duration,
            effects=(MultiplyStat("damage_taken_multiplier", SHIELD_WALL_DAMAGE_TAKEN),),
        )

        spell = self.register_spell(SpellConfig(
            action_id=SHIELD_WALL,
            label="Shield Wall",
            flags=SpellFlag.APL | SpellFlag.DEFENSIVE,
            required_stances=Stance.DEFENSIVE,
            cast=CastConfig(
                ignore_haste=True,
                cd=Cooldown(timer=self.new_timer("Shield Wall"), duration=SHIELD_WALL_COOLDOWN),
            ),
            extra_cast_condition=lambda sim, target: self.pseudo_stats.can_block,
            apply_effects=lambda sim, target, spell: self.shield_wall_aura.activate(sim),
        ))
        self.add_major_cooldown(MajorCooldown(spell=spell, type=CooldownType.SURVIVAL))

    def new_whirlwind_hit_spell(self, is_mh: bool) -> Spell:
        """The per-target strike of Whirlwind with the main hand or the off hand."""

        def apply_effects(sim: "Simulation", target: Unit, spell: Spell):
            attack_power = spell.melee_attack_power() * spell.config.bonus_coefficient
            base_damage = self.auto_attacks.normalized_weapon_damage(sim, is_mh, attack_power)
            spell.calc_and_deal_damage(sim, target, base_damage, spell.outcome_melee_special)

        return self.register_spell(SpellConfig(
            action_id=WHIRLWIND.with_tag(1 if is_mh else 2),
            label="Whirlwind (MH)" if is_mh else "Whirlwind (OH)",
            defense_type=DefenseType.MELEE,
            proc_mask=ProcMask.MELEE_MH_SPECIAL if is_mh else ProcMask.MELEE_OH_SPECIAL,
            flags=SpellFlag.MELEE_METRICS | SpellFlag.NO_ON_CAST_COMPLETE | SpellFlag.PASSIVE_SPELL,
            crit_damage_bonus=self.impale(),
            damage_multiplier=1.0,
            threat_multiplier=WHIRLWIND_THREAT_MULTIPLIER,
            bonus_coefficient=1.0,
            apply_effects=apply_effects,
        ))

    def register_whirlwind_spell(self):
        """
        Whirlwind: strikes every target of the encounter with the main hand.
        With Consumed by Rage engraved, a dual wielding warrior also strikes
        with the off hand while enraged.
        """
        # Every strike rolls weapon damage
        if self.level < WHIRLWIND_LEVEL or self.auto_attacks.main_hand is None:
            return

        mh_hit = self.new_whirlwind_hit_spell(is_mh=True)
        oh_hit = None
        if self.has_rune(WarriorRune.CONSUMED_BY_RAGE) and self.auto_attacks.is_dual_wielding:
            oh_hit = self.new_whirlwind_hit_spell(is_mh=False)

        def apply_effects(sim: "Simulation", target: Optional[Unit], spell: Spell):
            for roster_target in sim.targets:
                mh_hit.cast(sim, roster_target)
                if oh_hit is not None and self.is_enraged():
                    oh_hit.cast(sim, roster_target)

        self.whirlwind = self.register_spell(SpellConfig(
            action_id=WHIRLWIND,
            label="Whirlwind",
            spell_school=SpellSchool.PHYSICAL,
            defense_type=DefenseType.MELEE,
            proc_mask=ProcMask.MELEE_MH_SPECIAL,
            flags=SpellFlag.APL | SpellFlag.OFFENSIVE | SpellFlag.AOE,
            required_stances=Stance.BERSERKER,
            rage_cost=WHIRLWIND_RAGE_COST,
            cast=CastConfig(
                gcd=GCD_DEFAULT,
                ignore_haste=True,
                cd=Cooldown(timer=self.new_timer("Whirlwind"), duration=WHIRLWIND_COOLDOWN),
            ),
            apply_effects=apply_effects,
        ))


def register_warrior_actions(caster: "Warrior"):
    """Register all warrior auras and spells for the given caster"""

    caster.auto_attacks.register()

    # Auras
    caster.register_stances()
    caster.register_flurry()
    caster.register_consumed_by_rage()

    # Spells
    caster.register_bloodrage()
    caster.register_berserker_rage()
    caster.register_shield_wall_cd()
    caster.register_whirlwind_spell()

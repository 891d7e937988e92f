"""Common definitions and utilities for the warrior combat simulation.

This module contains constants, enumerations, configuration dataclasses and
utility functions used across the simulation engine, including the talent and
rune configuration of a warrior, weapon definitions and encounter settings.
"""

import json
from dataclasses import dataclass, field
from enum import Enum, Flag, IntEnum
from typing import Any, Dict, List, Optional

# Global timing constants (in milliseconds)
GCD_DEFAULT = 1500  # Default Global Cooldown for melee abilities
GCD_MIN = 1000  # The GCD never drops below this, whatever the haste
STANCE_SWAP_COOLDOWN = 1000  # Shared cooldown of the three stance abilities
DEFAULT_TRIAL_DURATION = 180_000  # Default simulated fight length

# Rage
MAX_RAGE = 100
RAGE_FACTOR_MH_HIT = 3.5
RAGE_FACTOR_MH_CRIT = 7.0
RAGE_FACTOR_OH_HIT = 1.75
RAGE_FACTOR_OH_CRIT = 3.5

# Combat table constants
CRIT_MULTIPLIER_MELEE = 2.0
OFF_HAND_DAMAGE_PENALTY = 0.5
DUAL_WIELD_MISS_PENALTY = 0.19
ATTACK_POWER_PER_DPS = 14.0
MAX_ARMOR_REDUCTION = 0.75


def format_ms(ms: int):
    """
    Format integer milliseconds to "mm:ss.000" string format,
    handling both positive and negative values.

    Args:
        ms (int): Time in milliseconds (positive or negative)

    Returns:
        str: Formatted time string "±mm:ss.000" with optional "-" sign for negative values
    """
    is_negative = ms < 0
    abs_ms = abs(ms)

    minutes = (abs_ms // 60000) % 60
    seconds = (abs_ms // 1000) % 60
    milliseconds = abs_ms % 1000

    if is_negative:
        return f"-{minutes:02d}:{seconds:02d}.{milliseconds:03d}"
    else:
        return f"+{minutes:02d}:{seconds:02d}.{milliseconds:03d}"


def rage_conversion(level: int) -> float:
    """Rage conversion value for the given level (230.6 at level 60)."""
    return 0.0091107836 * level * level + 3.225598133 * level + 4.2652911


class SimulationError(Exception):
    """Base class for all errors raised by the simulation engine."""


class ConfigurationError(SimulationError):
    """An action, aura or character was set up with inconsistent data.

    Raised while a trial is being constructed; the trial must not run.
    """


class ResolverError(SimulationError):
    """An outcome table or damage calculation violated an invariant."""


class SpellSchool(IntEnum):
    """Damage school of a spell. Only physical damage is mitigated by armor."""

    PHYSICAL = 0
    HOLY = 1
    FIRE = 2
    NATURE = 3
    FROST = 4
    SHADOW = 5
    ARCANE = 6


class DefenseType(IntEnum):
    """How the defender gets to avoid the attack.

    Attributes:
        NONE: Cannot be avoided (e.g. bleeds, self buffs)
        MELEE: Uses the melee attack table
        RANGED: Uses the ranged attack table
        MAGIC: Uses the spell hit table
    """

    NONE = 0
    MELEE = 1
    RANGED = 2
    MAGIC = 3


class ProcMask(Flag):
    """Flags describing what kind of hit a spell produces, for proc triggers."""

    NONE = 0
    MELEE_MH_AUTO = 1
    MELEE_OH_AUTO = 2
    MELEE_MH_SPECIAL = 4
    MELEE_OH_SPECIAL = 8
    MELEE_SPECIAL = MELEE_MH_SPECIAL | MELEE_OH_SPECIAL
    MELEE_WHITE = MELEE_MH_AUTO | MELEE_OH_AUTO
    MELEE = MELEE_WHITE | MELEE_SPECIAL


class SpellFlag(Flag):
    """Classification flags of a registered spell.

    Attributes:
        APL: May be chosen by the rotation component
        OFFENSIVE: Deals damage to a hostile target
        DEFENSIVE: Mitigates or prevents damage
        MELEE_METRICS: Damage is recorded in the per-action metrics
        NO_ON_CAST_COMPLETE: Does not notify cast-complete listeners
        PASSIVE_SPELL: Invoked by another spell, never by the rotation
        AOE: Hits every target of the encounter
    """

    NONE = 0
    APL = 1
    OFFENSIVE = 2
    DEFENSIVE = 4
    MELEE_METRICS = 8
    NO_ON_CAST_COMPLETE = 16
    PASSIVE_SPELL = 32
    AOE = 64


class HitOutcome(IntEnum):
    """Mutually exclusive results of a single attack roll, in table order."""

    MISS = 0
    DODGE = 1
    PARRY = 2
    GLANCE = 3
    BLOCK = 4
    CRIT = 5
    HIT = 6

    @property
    def is_landed(self) -> bool:
        return self not in (HitOutcome.MISS, HitOutcome.DODGE, HitOutcome.PARRY)


class Stance(Flag):
    """Warrior stances. Spells declare the set of stances they can be used in."""

    NONE = 0
    BATTLE = 1
    DEFENSIVE = 2
    BERSERKER = 4
    ANY = BATTLE | DEFENSIVE | BERSERKER


class CooldownType(Flag):
    """Category tags of notable cooldowns read by the rotation component."""

    UNKNOWN = 0
    DPS = 1
    SURVIVAL = 2
    UTILITY = 4
    ALL = DPS | SURVIVAL | UTILITY


class AuraRefresh(Enum):
    """What happens when an aura that is already active is activated again.

    Attributes:
        REFRESH_DURATION: Reschedule the expiration, reset stacks, do not re-run the gain callback
        NO_OP: Ignore the activation entirely
        ADD_STACK: Add one stack (up to max_stacks) and refresh the duration
        REAPPLY: Expire the aura, then gain it again
    """

    REFRESH_DURATION = "refresh_duration"
    NO_OP = "no_op"
    ADD_STACK = "add_stack"
    REAPPLY = "reapply"


class WeaponType(IntEnum):
    """Weapon classes, used for normalized weapon damage."""

    ONE_HAND = 0
    DAGGER = 1
    TWO_HAND = 2


NORMALIZED_WEAPON_SPEED = {
    WeaponType.ONE_HAND: 2.4,
    WeaponType.DAGGER: 1.7,
    WeaponType.TWO_HAND: 3.3,
}


class WarriorRune(IntEnum):
    """Runes that unlock optional warrior behaviors."""

    CONSUMED_BY_RAGE = 1
    FLAGELLATION = 2
    BLOOD_FRENZY = 3
    QUICK_STRIKE = 4


@dataclass(frozen=True)
class ActionID:
    """Identity of a spell, item or other action.

    Attributes:
        spell_id: Spell identifier, 0 for items
        item_id: Item identifier, 0 for spells
        tag: Distinguishes variants of the same spell (e.g. main hand / off hand)
    """

    spell_id: int = 0
    item_id: int = 0
    tag: int = 0

    def with_tag(self, tag: int) -> "ActionID":
        return ActionID(spell_id=self.spell_id, item_id=self.item_id, tag=tag)

    def __str__(self) -> str:
        if self.item_id:
            base = f"item:{self.item_id}"
        else:
            base = f"spell:{self.spell_id}"
        if self.tag:
            return f"{base}#{self.tag}"
        return base


@dataclass
class Weapon:
    """Class representing an equipped melee weapon.

    Attributes:
        min_damage: Lowest damage of a swing
        max_damage: Highest damage of a swing
        speed: Weapon speed in seconds
        weapon_type: Weapon class, used for normalized damage
        skill: Weapon skill of the wielder with this weapon
    """

    min_damage: float
    max_damage: float
    speed: float
    weapon_type: WeaponType = WeaponType.ONE_HAND
    skill: int = 300

    @property
    def speed_ms(self) -> int:
        return int(round(self.speed * 1000))

    @property
    def normalized_speed(self) -> float:
        return NORMALIZED_WEAPON_SPEED[self.weapon_type]

    @property
    def average_damage(self) -> float:
        return (self.min_damage + self.max_damage) / 2

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Weapon":
        weapon_type = data.get("weapon_type", "one_hand")
        if isinstance(weapon_type, str):
            try:
                weapon_type = WeaponType[weapon_type.upper()]
            except KeyError:
                raise ConfigurationError(f"Unknown weapon type: {weapon_type}") from None
        return cls(
            min_damage=float(data["min_damage"]),
            max_damage=float(data["max_damage"]),
            speed=float(data["speed"]),
            weapon_type=WeaponType(weapon_type),
            skill=int(data.get("skill", 300)),
        )


@dataclass
class Talents:
    """Warrior talent points. Every value is the number of points spent.

    Attributes:
        impale: Increases the critical strike damage bonus of abilities (max 2)
        improved_shield_wall: Increases the duration of Shield Wall (max 2)
        cruelty: Increases critical strike chance by 1% per point (max 5)
        flurry: Attack speed bonus after a critical strike (max 5)
        tactical_mastery: Rage retained when changing stance, 5 per point (max 5)
        dual_wield_specialization: Off-hand damage bonus, 5% per point (max 5)
        improved_berserker_rage: Rage generated by Berserker Rage (max 2)
    """

    impale: int = 0
    improved_shield_wall: int = 0
    cruelty: int = 0
    flurry: int = 0
    tactical_mastery: int = 0
    dual_wield_specialization: int = 0
    improved_berserker_rage: int = 0

    _MAX_POINTS = {
        "impale": 2,
        "improved_shield_wall": 2,
        "cruelty": 5,
        "flurry": 5,
        "tactical_mastery": 5,
        "dual_wield_specialization": 5,
        "improved_berserker_rage": 2,
    }

    def __post_init__(self):
        for name, max_points in self._MAX_POINTS.items():
            points = getattr(self, name)
            if not 0 <= points <= max_points:
                raise ConfigurationError(
                    f"Talent {name} has {points} points, allowed range is 0-{max_points}"
                )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Talents":
        unknown = set(data) - set(cls._MAX_POINTS)
        if unknown:
            raise ConfigurationError(f"Unknown talents: {', '.join(sorted(unknown))}")
        return cls(**{name: int(points) for name, points in data.items()})


@dataclass
class WarriorConfig:
    """Class representing a warrior's build and stats.

    Contains the fundamental character stats used in the attack table and damage
    calculations, plus the talent and rune configuration consulted when auras and
    spells are registered.

    Attributes:
        name: Name of the character
        level: Character level
        attack_power: Melee attack power
        melee_crit: Critical strike chance (0.0-1.0)
        melee_hit: Hit chance bonus (0.0-1.0)
        expertise: Expertise rating, 1% dodge reduction per point
        armor: Armor of the character
        block_value: Damage absorbed by a successful block
        main_hand: Main hand weapon
        off_hand: Off hand weapon, None when not dual wielding
        has_shield: Whether a shield is equipped (allows blocking)
        talents: Talent configuration
        runes: Engraved runes
        starting_rage: Rage at the start of the fight
        stance: Stance at the start of the fight
        in_front_of_target: Attacks come from the front (parry and block possible)
    """

    name: str = "Warrior"
    level: int = 60
    attack_power: float = 0.0
    melee_crit: float = 0.05
    melee_hit: float = 0.0
    expertise: float = 0.0
    armor: float = 0.0
    block_value: float = 0.0
    main_hand: Optional[Weapon] = None
    off_hand: Optional[Weapon] = None
    has_shield: bool = False
    talents: Talents = field(default_factory=Talents)
    runes: List[WarriorRune] = field(default_factory=list)
    starting_rage: float = 0.0
    stance: Stance = Stance.BATTLE
    in_front_of_target: bool = False

    def __post_init__(self):
        if self.off_hand is not None and self.has_shield:
            raise ConfigurationError("A warrior cannot dual wield while holding a shield")
        if not 0 <= self.starting_rage <= MAX_RAGE:
            raise ConfigurationError(f"Starting rage must be within 0-{MAX_RAGE}")
        if self.stance not in (Stance.BATTLE, Stance.DEFENSIVE, Stance.BERSERKER):
            raise ConfigurationError(f"Invalid starting stance: {self.stance}")

    @property
    def is_dual_wielding(self) -> bool:
        return self.main_hand is not None and self.off_hand is not None

    def has_rune(self, rune: WarriorRune) -> bool:
        return rune in self.runes

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WarriorConfig":
        """Build a WarriorConfig from its JSON representation.

        Args:
            data: Dictionary holding the character section of a scenario file

        Returns:
            WarriorConfig object with data loaded from the dictionary
        """
        stance_name = str(data.get("stance", "battle")).upper()
        try:
            stance = Stance[stance_name]
        except KeyError:
            raise ConfigurationError(f"Unknown stance: {stance_name}") from None

        runes = []
        for rune_name in data.get("runes", []):
            try:
                runes.append(WarriorRune[rune_name.upper()])
            except KeyError:
                raise ConfigurationError(f"Unknown rune: {rune_name}") from None

        main_hand = data.get("main_hand")
        off_hand = data.get("off_hand")

        return cls(
            name=data.get("name", "Warrior"),
            level=int(data.get("level", 60)),
            attack_power=float(data.get("attack_power", 0)),
            melee_crit=float(data.get("melee_crit", 0.05)),
            melee_hit=float(data.get("melee_hit", 0)),
            expertise=float(data.get("expertise", 0)),
            armor=float(data.get("armor", 0)),
            block_value=float(data.get("block_value", 0)),
            main_hand=Weapon.from_dict(main_hand) if main_hand else None,
            off_hand=Weapon.from_dict(off_hand) if off_hand else None,
            has_shield=bool(data.get("has_shield", False)),
            talents=Talents.from_dict(data.get("talents", {})),
            runes=runes,
            starting_rage=float(data.get("starting_rage", 0)),
            stance=stance,
            in_front_of_target=bool(data.get("in_front_of_target", False)),
        )

    def print(self):
        print(f"{self.name}")
        print(f"  Warrior Lv.{self.level} ({self.stance.name.title()} Stance)")
        print(f"  Attack Power: {self.attack_power}")
        print(f"  Melee Crit: {self.melee_crit:.2%}")
        print(f"  Melee Hit: {self.melee_hit:.2%}")
        if self.main_hand is not None:
            print(f"  Main Hand: {self.main_hand.min_damage}-{self.main_hand.max_damage} @ {self.main_hand.speed}")
        if self.off_hand is not None:
            print(f"  Off Hand: {self.off_hand.min_damage}-{self.off_hand.max_damage} @ {self.off_hand.speed}")
        if self.runes:
            print(f"  Runes: {', '.join(rune.name for rune in self.runes)}")


@dataclass
class TargetConfig:
    """Class representing a defendable unit of the encounter.

    Attributes:
        name: Display name of the target
        level: Target level
        armor: Armor, mitigates physical damage
        dodge: Base dodge chance (0.0-1.0)
        parry: Base parry chance (0.0-1.0), only applies from the front
        block: Base block chance (0.0-1.0), only applies from the front
        block_value: Damage absorbed by a successful block
        swing_damage: Raw damage of the target's own melee swings, 0 disables them
        swing_speed: Time between the target's swings in milliseconds
    """

    name: str = "Target Dummy"
    level: int = 63
    armor: float = 3731.0
    dodge: float = 0.05
    parry: float = 0.05
    block: float = 0.05
    block_value: float = 0.0
    swing_damage: float = 0.0
    swing_speed: int = 2000

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TargetConfig":
        return cls(
            name=data.get("name", "Target Dummy"),
            level=int(data.get("level", 63)),
            armor=float(data.get("armor", 3731)),
            dodge=float(data.get("dodge", 0.05)),
            parry=float(data.get("parry", 0.05)),
            block=float(data.get("block", 0.05)),
            block_value=float(data.get("block_value", 0)),
            swing_damage=float(data.get("swing_damage", 0)),
            swing_speed=int(data.get("swing_speed", 2000)),
        )


@dataclass
class EncounterConfig:
    """Class representing the encounter: fight length and the target roster.

    Attributes:
        duration: Fight length in milliseconds
        targets: Ordered target roster; the first target is the primary target
    """

    duration: int = DEFAULT_TRIAL_DURATION
    targets: List[TargetConfig] = field(default_factory=lambda: [TargetConfig()])

    def __post_init__(self):
        if self.duration <= 0:
            raise ConfigurationError("Encounter duration must be positive")
        if not self.targets:
            raise ConfigurationError("An encounter needs at least one target")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EncounterConfig":
        targets = [TargetConfig.from_dict(t) for t in data.get("targets", [{}])]
        count = int(data.get("target_count", 1))
        if len(targets) == 1 and count > 1:
            targets = [TargetConfig(**{**vars(targets[0]), "name": f"{targets[0].name} {i + 1}"}) for i in range(count)]
        return cls(duration=int(data.get("duration", DEFAULT_TRIAL_DURATION)), targets=targets)


@dataclass
class SimConfig:
    """Class representing the Monte Carlo settings.

    Attributes:
        num_trials: Number of independent trials to run
        base_seed: Seed the per-trial random streams are derived from
        method: 'standard', 'parallel' or 'auto'
        max_workers: Worker processes for the parallel method, None for the CPU count
    """

    num_trials: int = 1000
    base_seed: int = 0
    method: str = "auto"
    max_workers: Optional[int] = None

    def __post_init__(self):
        if self.num_trials <= 0:
            raise ConfigurationError("At least one trial is required")
        if self.method not in ("standard", "parallel", "auto"):
            raise ConfigurationError(f"Unknown simulation method: {self.method}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SimConfig":
        max_workers = data.get("max_workers")
        return cls(
            num_trials=int(data.get("num_trials", 1000)),
            base_seed=int(data.get("base_seed", 0)),
            method=data.get("method", "auto"),
            max_workers=int(max_workers) if max_workers is not None else None,
        )


@dataclass
class ScenarioConfig:
    """Everything needed to build one trial, loaded from a single JSON file.

    The configuration only holds plain data so it can be shipped to worker
    processes; each trial builds its own units from it.
    """

    character: WarriorConfig
    encounter: EncounterConfig = field(default_factory=EncounterConfig)
    rotation: Dict[str, Any] = field(default_factory=lambda: {"name": "Empty", "actions": []})
    simulation: SimConfig = field(default_factory=SimConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScenarioConfig":
        if "character" not in data:
            raise ConfigurationError("No character section found in scenario")
        return cls(
            character=WarriorConfig.from_dict(data["character"]),
            encounter=EncounterConfig.from_dict(data.get("encounter", {})),
            rotation=data.get("rotation", {"name": "Empty", "actions": []}),
            simulation=SimConfig.from_dict(data.get("simulation", {})),
        )

    @classmethod
    def from_json(cls, json_path):
        """Load a ScenarioConfig from a JSON file.

        Args:
            json_path: Path to the JSON file containing the scenario

        Returns:
            ScenarioConfig object with data loaded from the JSON file
        """
        with open(json_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return cls.from_dict(data)

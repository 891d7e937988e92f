"""
Warrior Battle Simulation Core
==============================

This module implements the core battle simulation system: timed cooldowns and
global-cooldown locks, reversible aura modifiers on a unit's derived stats,
legality and cost of casting a spell, and the resolution of attacks against
one or more targets.

Key Components:
--------------
- StatBlock: Versioned block of derived stats (Stats, PseudoStats)
- Aura: Timed, reversible modifier with an explicit reapplication policy
- Timer: Readiness gate used for cooldowns and the Global Cooldown
- Spell: Registered castable action with its cast pipeline
- RageBar: Resource pool spent by spells
- Character / Target: Units taking part in the fight
- Rotation: Priority list consulted at every decision point
- Simulation: One trial; owns the clock, event queue and random stream

The module uses a discrete event simulation approach: time jumps from one
scheduled event to the next, and events on the same millisecond run in a
fixed priority order (expirations before swings before casts).
"""

import heapq
import json
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from wowcore.common import (
    ATTACK_POWER_PER_DPS,
    DEFAULT_TRIAL_DURATION,
    GCD_MIN,
    MAX_RAGE,
    OFF_HAND_DAMAGE_PENALTY,
    ActionID,
    AuraRefresh,
    ConfigurationError,
    CooldownType,
    DefenseType,
    HitOutcome,
    ProcMask,
    SimulationError,
    SpellFlag,
    SpellSchool,
    Stance,
    TargetConfig,
    Weapon,
    format_ms,
)
from wowcore.task import PRIORITY_ACTION, PRIORITY_EXPIRE, PRIORITY_SWING, PRIORITY_TICK, Task
from wowcore.wowstats import (
    AttackerProfile,
    AttackTable,
    DefenderProfile,
    apply_outcome,
    armor_damage_reduction,
    crit_damage_multiplier,
)

log = logging.getLogger(__name__)


class StatBlock:
    """
    Mutable block of derived statistics owned by a unit.

    Values are only changed through add/multiply/divide so that every aura
    modification can be undone exactly, and each change bumps the version.

    Attributes:
        version (int): Number of mutations applied to this block
    """

    def __init__(self, **values: float):
        self.version = 0
        for name, value in values.items():
            setattr(self, name, value)

    def has(self, name: str) -> bool:
        return name != "version" and name in vars(self)

    def _check(self, name: str):
        if not self.has(name):
            raise ConfigurationError(f"{type(self).__name__} has no stat '{name}'")

    def add(self, name: str, amount: float):
        self._check(name)
        setattr(self, name, getattr(self, name) + amount)
        self.version += 1

    def multiply(self, name: str, factor: float):
        self._check(name)
        if factor == 0 or not math.isfinite(factor):
            raise ConfigurationError(f"Multiplying '{name}' by {factor} cannot be undone")
        setattr(self, name, getattr(self, name) * factor)
        self.version += 1

    def divide(self, name: str, factor: float):
        self._check(name)
        if factor == 0 or not math.isfinite(factor):
            raise ConfigurationError(f"Dividing '{name}' by {factor} is undefined")
        setattr(self, name, getattr(self, name) / factor)
        self.version += 1

    def snapshot(self) -> Dict[str, float]:
        """Copy of all stat values, without the version counter."""
        return {name: value for name, value in vars(self).items() if name != "version"}


class Stats(StatBlock):
    """Combat stats of a unit (attack power, chances, armor)."""

    def __init__(
        self,
        attack_power: float = 0.0,
        melee_crit: float = 0.0,
        melee_hit: float = 0.0,
        expertise: float = 0.0,
        armor: float = 0.0,
        dodge: float = 0.0,
        parry: float = 0.0,
        block: float = 0.0,
        block_value: float = 0.0,
    ):
        super().__init__(
            attack_power=attack_power,
            melee_crit=melee_crit,
            melee_hit=melee_hit,
            expertise=expertise,
            armor=armor,
            dodge=dodge,
            parry=parry,
            block=block,
            block_value=block_value,
        )


class PseudoStats(StatBlock):
    """Multipliers and switches derived from auras, talents and gear."""

    def __init__(self):
        super().__init__(
            damage_dealt_multiplier=1.0,
            damage_taken_multiplier=1.0,
            threat_multiplier=1.0,
            melee_speed_multiplier=1.0,
            cast_speed_multiplier=1.0,
            bonus_crit_damage=0.0,
            off_hand_damage_multiplier=OFF_HAND_DAMAGE_PENALTY,
        )
        self.can_block = False


class StatEffect(ABC):
    """
    A reversible operation on one stat of a unit.

    The stat is looked up on the unit's PseudoStats first, then on its Stats.
    revert() is the exact inverse of apply().
    """

    def __init__(self, stat: str, value: float):
        self.stat = stat
        self.value = value

    def block_for(self, unit: "Unit") -> StatBlock:
        for block in (unit.pseudo_stats, unit.stats):
            if block.has(self.stat):
                return block
        raise ConfigurationError(f"Unknown stat '{self.stat}'")

    @abstractmethod
    def apply(self, unit: "Unit"):
        """Install the modification."""

    @abstractmethod
    def revert(self, unit: "Unit"):
        """Remove the modification installed by apply()."""

    def __repr__(self):
        return f"{type(self).__name__}({self.stat!r}, {self.value!r})"


class MultiplyStat(StatEffect):
    def __init__(self, stat: str, factor: float):
        if factor == 0 or not math.isfinite(factor):
            raise ConfigurationError(f"Factor {factor} for '{stat}' cannot be undone")
        super().__init__(stat, factor)

    def apply(self, unit: "Unit"):
        self.block_for(unit).multiply(self.stat, self.value)

    def revert(self, unit: "Unit"):
        self.block_for(unit).divide(self.stat, self.value)


class MultiplyMeleeSpeed(MultiplyStat):
    """Melee haste. Swings already in flight are rescaled to the new speed."""

    def __init__(self, factor: float):
        super().__init__("melee_speed_multiplier", factor)

    def apply(self, unit: "Unit"):
        old_multiplier = unit.pseudo_stats.melee_speed_multiplier
        super().apply(unit)
        unit.on_melee_speed_changed(old_multiplier, unit.pseudo_stats.melee_speed_multiplier)

    def revert(self, unit: "Unit"):
        old_multiplier = unit.pseudo_stats.melee_speed_multiplier
        super().revert(unit)
        unit.on_melee_speed_changed(old_multiplier, unit.pseudo_stats.melee_speed_multiplier)


class AddStat(StatEffect):
    def apply(self, unit: "Unit"):
        self.block_for(unit).add(self.stat, self.value)

    def revert(self, unit: "Unit"):
        self.block_for(unit).add(self.stat, -self.value)


AuraCallback = Callable[["Aura", "Simulation"], None]


class Aura:
    """
    A named, timed modifier registered on a unit.

    Auras are registered once (dormant) when the unit is set up and activated
    by spells during the trial. On gain the declarative stat effects are
    applied in order and then on_gain runs; on expiration on_expire runs and
    the stat effects are reverted in reverse order. on_gain and on_expire must
    be exact inverses on whatever they modify.

    Attributes:
        unit (Unit): The unit the aura is registered on
        label (str): Unique name of the aura on its unit
        action_id (Optional[ActionID]): The action that applies the aura
        duration (Optional[int]): Duration in milliseconds, None for auras that last until removed
        refresh (AuraRefresh): Policy when activated while already active
        max_stacks (int): Maximum number of stacks, 0 for auras without stacks
        active (bool): Whether the aura is currently active
        stacks (int): Current number of stacks
        expires_at (Optional[int]): Simulation time of the scheduled expiration
        activations (int): Number of times the aura was gained
        expirations (int): Number of times the aura was removed
        uptime (int): Total active time in milliseconds
    """

    def __init__(
        self,
        unit: "Unit",
        label: str,
        action_id: Optional[ActionID] = None,
        duration: Optional[int] = None,
        on_gain: Optional[AuraCallback] = None,
        on_expire: Optional[AuraCallback] = None,
        effects: Sequence[StatEffect] = (),
        max_stacks: int = 0,
        initial_stacks: Optional[int] = None,
        refresh: AuraRefresh = AuraRefresh.REFRESH_DURATION,
        on_stacks_change: Optional[Callable[["Aura", "Simulation", int, int], None]] = None,
        tick_interval: int = 0,
        on_tick: Optional[AuraCallback] = None,
        tags: Iterable[str] = (),
    ):
        if not label:
            raise ConfigurationError("An aura needs a label")
        if duration is not None and duration <= 0:
            raise ConfigurationError(f"Aura {label}: duration must be positive, got {duration}")
        if max_stacks < 0:
            raise ConfigurationError(f"Aura {label}: max_stacks cannot be negative")
        if refresh == AuraRefresh.ADD_STACK and max_stacks <= 0:
            raise ConfigurationError(f"Aura {label}: ADD_STACK refresh requires max_stacks")
        if initial_stacks is not None and not 0 < initial_stacks <= max_stacks:
            raise ConfigurationError(f"Aura {label}: initial_stacks must be within 1-{max_stacks}")
        if tick_interval < 0 or (tick_interval > 0) != (on_tick is not None):
            raise ConfigurationError(f"Aura {label}: tick_interval and on_tick go together")

        self.unit = unit
        self.label = label
        self.action_id = action_id
        self.duration = duration
        self.on_gain = on_gain
        self.on_expire = on_expire
        self.effects: Tuple[StatEffect, ...] = tuple(effects)
        self.max_stacks = max_stacks
        self.initial_stacks = initial_stacks
        self.refresh_policy = refresh
        self.on_stacks_change = on_stacks_change
        self.tick_interval = tick_interval
        self.on_tick = on_tick
        self.tags = frozenset(tags)

        self.active = False
        self.stacks = 0
        self.expires_at: Optional[int] = None
        self.gained_at: Optional[int] = None
        self._expire_task: Optional[Task] = None
        self._tick_task: Optional[Task] = None

        self.activations = 0
        self.expirations = 0
        self.refreshes = 0
        self.uptime = 0

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags

    def _starting_stacks(self) -> int:
        if self.max_stacks <= 0:
            return 0
        if self.initial_stacks is not None:
            return self.initial_stacks
        return 1 if self.refresh_policy == AuraRefresh.ADD_STACK else self.max_stacks

    def activate(self, sim: "Simulation") -> bool:
        """
        Activate the aura, or apply its reapplication policy if it is already active.

        Args:
            sim: The running simulation

        Returns:
            bool: False if the activation was ignored (NO_OP policy), True otherwise
        """
        if not self.active:
            self._gain(sim)
            return True

        policy = self.refresh_policy
        if policy == AuraRefresh.NO_OP:
            return False
        if policy == AuraRefresh.REAPPLY:
            self.deactivate(sim)
            self._gain(sim)
            return True
        if policy == AuraRefresh.ADD_STACK:
            self.set_stacks(sim, self.stacks + 1)
        elif self.max_stacks > 0:
            self.set_stacks(sim, self._starting_stacks())
        self.refresh(sim)
        return True

    def _gain(self, sim: "Simulation"):
        self.active = True
        self.gained_at = sim.current_time
        self.activations += 1
        self.stacks = self._starting_stacks()

        for effect in self.effects:
            effect.apply(self.unit)
        if self.on_gain is not None:
            self.on_gain(self, sim)

        log.debug("%s %s gains %s", format_ms(sim.current_time), self.unit.name, self.label)

        self._schedule_expiration(sim)
        if self.tick_interval > 0:
            self._tick_task = sim.schedule_task(
                self.tick_interval, self._on_tick_due, sim, priority=PRIORITY_TICK
            )

    def refresh(self, sim: "Simulation"):
        """Restart the duration of an active aura without re-running the gain callback."""
        if not self.active:
            return
        self.refreshes += 1
        self._schedule_expiration(sim)

    def _schedule_expiration(self, sim: "Simulation"):
        if self._expire_task is not None:
            self._expire_task.cancel()
            self._expire_task = None

        if self.duration is None:
            self.expires_at = None
            return

        self.expires_at = sim.current_time + self.duration
        self._expire_task = sim.schedule_task(
            self.duration, self._on_expiration_due, sim, priority=PRIORITY_EXPIRE
        )

    def _on_expiration_due(self, sim: "Simulation"):
        self._expire_task = None
        # A periodic tick landing on the expiration time still happens
        if self._tick_task is not None and self._tick_task.time == sim.current_time:
            self._on_tick_due(sim)
        self.deactivate(sim)

    def _on_tick_due(self, sim: "Simulation"):
        if self._tick_task is not None:
            self._tick_task.cancel()
        self._tick_task = None
        if not self.active:
            return
        self.on_tick(self, sim)
        if self.active:
            self._tick_task = sim.schedule_task(
                self.tick_interval, self._on_tick_due, sim, priority=PRIORITY_TICK
            )

    def deactivate(self, sim: "Simulation") -> bool:
        """
        Remove the aura now, running the expire callback exactly once.

        Returns:
            bool: True if the aura was active and has been removed
        """
        if not self.active:
            return False

        for task in (self._expire_task, self._tick_task):
            if task is not None:
                task.cancel()
        self._expire_task = None
        self._tick_task = None

        # Marked inactive first so a callback cannot expire the aura a second time
        self.active = False
        if self.on_expire is not None:
            self.on_expire(self, sim)
        for effect in reversed(self.effects):
            effect.revert(self.unit)

        self.uptime += sim.current_time - self.gained_at
        self.expirations += 1
        self.stacks = 0
        self.expires_at = None
        self.gained_at = None

        log.debug("%s %s loses %s", format_ms(sim.current_time), self.unit.name, self.label)
        return True

    def expire_now(self, sim: "Simulation") -> bool:
        return self.deactivate(sim)

    def set_stacks(self, sim: "Simulation", stacks: int):
        """
        Set the stack count of an active aura, capped at max_stacks.
        Dropping to zero stacks removes the aura.
        """
        if not self.active:
            raise SimulationError(f"Cannot set stacks of inactive aura {self.label}")
        if self.max_stacks <= 0:
            raise SimulationError(f"Aura {self.label} does not stack")

        new_stacks = min(self.max_stacks, stacks)
        if new_stacks <= 0:
            self.deactivate(sim)
            return

        old_stacks = self.stacks
        self.stacks = new_stacks
        if old_stacks != new_stacks and self.on_stacks_change is not None:
            self.on_stacks_change(self, sim, old_stacks, new_stacks)

    def add_stack(self, sim: "Simulation", count: int = 1):
        self.set_stacks(sim, self.stacks + count)

    def remove_stack(self, sim: "Simulation", count: int = 1):
        self.set_stacks(sim, self.stacks - count)

    def remaining_duration(self, sim: "Simulation") -> Optional[int]:
        """
        Remaining duration in milliseconds.

        Returns:
            Optional[int]: 0 when inactive, None when the aura has no duration
        """
        if not self.active:
            return 0
        if self.expires_at is None:
            return None
        return max(0, self.expires_at - sim.current_time)

    def total_uptime(self, sim: "Simulation") -> int:
        """Uptime including the current activation."""
        if self.active:
            return self.uptime + sim.current_time - self.gained_at
        return self.uptime

    def __repr__(self):
        state = "active" if self.active else "inactive"
        return f"Aura({self.label!r}, {state})"


class AuraManager:
    """
    Ledger of all auras registered on a unit.

    Attributes:
        owner (Unit): The unit that owns this ledger
        auras (Dict[str, Aura]): Registered auras by label
    """

    def __init__(self, owner: "Unit"):
        self.owner = owner
        self.auras: Dict[str, Aura] = {}

    def register(self, aura: Aura) -> Aura:
        if aura.label in self.auras:
            raise ConfigurationError(f"Aura {aura.label} registered twice on {self.owner.name}")
        self.auras[aura.label] = aura
        return aura

    def get(self, label: str) -> Optional[Aura]:
        return self.auras.get(label)

    def is_active(self, label: str) -> bool:
        aura = self.auras.get(label)
        return aura is not None and aura.active

    def active_auras(self) -> List[Aura]:
        return [aura for aura in self.auras.values() if aura.active]

    def with_tag(self, tag: str) -> List[Aura]:
        return [aura for aura in self.auras.values() if aura.has_tag(tag)]

    def expire_all(self, sim: "Simulation"):
        """Remove every active aura, e.g. at the end of a trial."""
        for aura in self.active_auras():
            aura.deactivate(sim)


class Timer:
    """
    Readiness gate with an armed-until timestamp.

    Attributes:
        name (str): Name used in logs
        ready_at (int): Simulation time at which the gate is ready again
        ignore_haste (bool): Durations are never scaled by speed modifiers
    """

    def __init__(self, name: str = "", ignore_haste: bool = False):
        self.name = name
        self.ready_at = 0
        self.ignore_haste = ignore_haste

    def is_ready(self, now: int, tolerance: int = 0) -> bool:
        return self.ready_at <= now + tolerance

    def time_to_ready(self, now: int) -> int:
        return max(0, self.ready_at - now)

    def start(self, now: int, duration: int, speed: float = 1.0, minimum: int = 0) -> int:
        """
        Arm the gate until now + duration.

        Args:
            now: Current simulation time
            duration: Base duration in milliseconds
            speed: Speed multiplier dividing the duration, unless the timer ignores haste
            minimum: Lower bound of a scaled duration

        Returns:
            int: The time at which the gate is ready again
        """
        if duration < 0:
            raise SimulationError(f"Timer {self.name}: negative duration {duration}")
        if speed != 1.0 and not self.ignore_haste:
            duration = max(minimum, int(duration / speed))
        self.ready_at = now + duration
        return self.ready_at

    def reset(self, now: int = 0):
        """Make the gate ready at the given time."""
        self.ready_at = now

    def __repr__(self):
        return f"Timer({self.name!r}, ready_at={self.ready_at})"


@dataclass
class Cooldown:
    """Binding of a spell to a cooldown timer."""

    timer: Optional[Timer] = None
    duration: int = 0


@dataclass
class CastConfig:
    """
    How casting a spell occupies the caster.

    Attributes:
        gcd: Global Cooldown triggered by the spell, 0 for spells off the GCD
        ignore_haste: The GCD triggered by this spell is not scaled by cast speed
        cd: The spell's own cooldown
        shared_cd: A cooldown shared with other spells (stances, potions)
    """

    gcd: int = 0
    ignore_haste: bool = False
    cd: Cooldown = field(default_factory=Cooldown)
    shared_cd: Cooldown = field(default_factory=Cooldown)


ApplyEffects = Callable[["Simulation", Optional["Unit"], "Spell"], None]
CastCondition = Callable[["Simulation", Optional["Unit"]], bool]


@dataclass
class SpellConfig:
    """
    Definition of a castable action, handed to Character.register_spell().

    Attributes:
        action_id: Identity of the spell
        label: Unique name of the spell on its caster
        spell_school: Damage school
        defense_type: Which defense table the spell rolls against
        proc_mask: Kind of hit the spell produces
        flags: Classification flags
        required_stances: Stances the spell can be cast in
        rage_cost: Rage spent on a successful cast
        cast: GCD and cooldown bindings
        extra_cast_condition: Custom legality predicate
        apply_effects: Effect function invoked on a successful cast
        crit_damage_bonus: Bonus to the critical strike damage multiplier
        bonus_crit_chance: Additional critical strike chance
        damage_multiplier: Base damage multiplier
        threat_multiplier: Threat generated per point of damage
        bonus_coefficient: Attack power scaling of the damage
        bonus_threat: Flat threat added to every landed hit
    """

    action_id: ActionID
    label: str = ""
    spell_school: SpellSchool = SpellSchool.PHYSICAL
    defense_type: DefenseType = DefenseType.NONE
    proc_mask: ProcMask = ProcMask.NONE
    flags: SpellFlag = SpellFlag.NONE
    required_stances: Stance = Stance.ANY
    rage_cost: float = 0.0
    cast: CastConfig = field(default_factory=CastConfig)
    extra_cast_condition: Optional[CastCondition] = None
    apply_effects: Optional[ApplyEffects] = None
    crit_damage_bonus: float = 0.0
    bonus_crit_chance: float = 0.0
    damage_multiplier: float = 1.0
    threat_multiplier: float = 1.0
    bonus_coefficient: float = 0.0
    bonus_threat: float = 0.0


@dataclass
class SpellResult:
    """Result of one outcome roll against one target."""

    target: "Unit"
    outcome: HitOutcome
    damage: float
    threat: float

    @property
    def landed(self) -> bool:
        return self.outcome.is_landed


class Spell:
    """
    A registered, castable unit of behavior.

    The configuration is fixed at registration; the spell itself only keeps
    per-trial metrics.

    Attributes:
        unit (Character): The caster
        casts (int): Successful casts
        rage_spent (float): Rage spent on this spell
        damage (float): Damage dealt
        threat (float): Threat generated
        outcome_counts (Dict[HitOutcome, int]): Outcome rolls by category
    """

    def __init__(self, unit: "Character", config: SpellConfig):
        self.unit = unit
        self._config = config
        self.casts = 0
        self.rage_spent = 0.0
        self.damage = 0.0
        self.threat = 0.0
        self.outcome_counts: Dict[HitOutcome, int] = {}

    @property
    def config(self) -> SpellConfig:
        return self._config

    @property
    def action_id(self) -> ActionID:
        return self._config.action_id

    @property
    def label(self) -> str:
        return self._config.label

    @property
    def flags(self) -> SpellFlag:
        return self._config.flags

    @property
    def proc_mask(self) -> ProcMask:
        return self._config.proc_mask

    @property
    def cost(self) -> float:
        return self._config.rage_cost

    @property
    def is_gcd(self) -> bool:
        return self._config.cast.gcd > 0

    @property
    def cooldown_timer(self) -> Optional[Timer]:
        return self._config.cast.cd.timer

    def _gates(self) -> List[Timer]:
        gates = []
        if self.is_gcd:
            gates.append(self.unit.gcd)
        for cooldown in (self._config.cast.cd, self._config.cast.shared_cd):
            if cooldown.timer is not None:
                gates.append(cooldown.timer)
        return gates

    def ready_at(self) -> int:
        """Earliest time every timer gating this spell is ready."""
        return max((timer.ready_at for timer in self._gates()), default=0)

    def time_to_ready(self, sim: "Simulation") -> int:
        return max(0, self.ready_at() - sim.current_time)

    def is_ready(self, sim: "Simulation") -> bool:
        return self.ready_at() <= sim.current_time

    def can_cast(self, sim: "Simulation", target: Optional["Unit"] = None) -> bool:
        """
        Check whether the spell can be cast right now. Has no side effects.

        Args:
            sim: The running simulation
            target: Primary target of the cast

        Returns:
            bool: True if stance, timers, resource and the custom predicate all allow the cast
        """
        config = self._config
        if not self.unit.stance_allows(config.required_stances):
            return False
        if not self.is_ready(sim):
            return False
        if config.rage_cost > 0 and not self.unit.gauge.can_spend(config.rage_cost):
            return False
        if config.extra_cast_condition is not None and not config.extra_cast_condition(sim, target):
            return False
        return True

    def cast(self, sim: "Simulation", target: Optional["Unit"] = None) -> bool:
        """
        Cast the spell if it is legal.

        Spends the rage cost, arms the Global Cooldown and the spell's cooldowns,
        invokes the effect function and records the cast. An illegal cast is
        declined without changing anything.

        Args:
            sim: The running simulation
            target: Primary target of the cast

        Returns:
            bool: True if the spell was cast
        """
        if not self.can_cast(sim, target):
            return False

        config = self._config
        now = sim.current_time

        cost = config.rage_cost
        if cost > 0:
            self.unit.gauge.spend(sim, cost, self.action_id)

        if config.cast.gcd > 0:
            speed = 1.0 if config.cast.ignore_haste else self.unit.pseudo_stats.cast_speed_multiplier
            self.unit.gcd.start(now, config.cast.gcd, speed=speed, minimum=GCD_MIN)
        for cooldown in (config.cast.cd, config.cast.shared_cd):
            if cooldown.timer is not None:
                cooldown.timer.start(now, cooldown.duration)

        log.debug("%s %s casts %s", format_ms(now), self.unit.name, self.label)
        config.apply_effects(sim, target, self)

        self.casts += 1
        self.rage_spent += cost
        sim.metrics.record_cast(CastRecord(time=now, action_id=self.action_id, label=self.label, rage_spent=cost))

        if not config.flags & SpellFlag.NO_ON_CAST_COMPLETE:
            self.unit.on_cast_complete(sim, self)
        return True

    def melee_attack_power(self) -> float:
        return self.unit.stats.attack_power

    def attack_table(self, target: "Unit") -> AttackTable:
        """Attack table of this spell's caster against the target."""
        is_off_hand = bool(self.proc_mask & (ProcMask.MELEE_OH_AUTO | ProcMask.MELEE_OH_SPECIAL))
        attacker = AttackerProfile(
            level=self.unit.level,
            weapon_skill=self.unit.weapon_skill(is_off_hand),
            hit=self.unit.stats.melee_hit,
            crit=self.unit.stats.melee_crit,
            expertise=self.unit.stats.expertise,
            dual_wield=self.unit.is_dual_wielding,
        )
        defender = DefenderProfile(
            level=target.level,
            armor=target.stats.armor,
            dodge=target.stats.dodge,
            parry=target.stats.parry,
            block=target.stats.block,
            block_value=target.stats.block_value,
            can_parry=target.can_parry,
            can_block=target.can_block,
        )
        return AttackTable(attacker, defender, in_front=self.unit.in_front_of_target)

    def outcome_melee_special(self, sim: "Simulation", target: "Unit") -> HitOutcome:
        """Single roll on the special attack table (hit and crit)."""
        table = self.attack_table(target).special_table(self._config.bonus_crit_chance)
        return table.roll(sim.rng)

    def outcome_melee_white(self, sim: "Simulation", target: "Unit") -> HitOutcome:
        """Single roll on the auto attack table."""
        table = self.attack_table(target).white_table(self._config.bonus_crit_chance)
        return table.roll(sim.rng)

    def calc_damage(self, sim: "Simulation", target: "Unit", base_damage: float, outcome: HitOutcome) -> SpellResult:
        """
        Compose the damage and threat of one attack.

        Damage = base x spell multiplier x caster damage multiplier x target damage
        taken multiplier x armor mitigation, then transformed by the outcome.
        Threat = damage x spell threat multiplier x caster threat multiplier.
        """
        config = self._config
        damage = base_damage * config.damage_multiplier
        damage *= self.unit.pseudo_stats.damage_dealt_multiplier
        damage *= target.pseudo_stats.damage_taken_multiplier
        if config.spell_school == SpellSchool.PHYSICAL:
            damage *= 1.0 - armor_damage_reduction(target.stats.armor, self.unit.level)

        glance_multiplier = 1.0
        if outcome == HitOutcome.GLANCE:
            glance_multiplier = self.attack_table(target).glance_multiplier

        damage = apply_outcome(
            outcome,
            damage,
            crit_multiplier=crit_damage_multiplier(
                config.crit_damage_bonus + self.unit.pseudo_stats.bonus_crit_damage
            ),
            block_value=target.stats.block_value,
            glance_multiplier=glance_multiplier,
        )

        threat = damage * config.threat_multiplier * self.unit.pseudo_stats.threat_multiplier
        if outcome.is_landed:
            threat += config.bonus_threat * self.unit.pseudo_stats.threat_multiplier

        return SpellResult(target=target, outcome=outcome, damage=damage, threat=threat)

    def deal_damage(self, sim: "Simulation", result: SpellResult):
        """Apply a computed result to its target and record it."""
        self.damage += result.damage
        self.threat += result.threat
        self.outcome_counts[result.outcome] = self.outcome_counts.get(result.outcome, 0) + 1

        result.target.receive_hit(sim, self.unit, result)
        sim.metrics.record_outcome(OutcomeRecord(
            time=sim.current_time,
            action_id=self.action_id,
            label=self.label,
            target_index=result.target.index,
            outcome=result.outcome,
            damage=result.damage,
            threat=result.threat,
        ))
        self.unit.on_spell_hit_dealt(sim, self, result)

    def calc_and_deal_damage(
        self,
        sim: "Simulation",
        target: "Unit",
        base_damage: float,
        outcome_fn: Callable[["Simulation", "Unit"], HitOutcome],
    ) -> SpellResult:
        """Roll the outcome against the target, compute the damage and deal it."""
        outcome = outcome_fn(sim, target)
        result = self.calc_damage(sim, target, base_damage, outcome)
        self.deal_damage(sim, result)
        return result

    def __repr__(self):
        return f"Spell({self.label!r}, {self.action_id})"


@dataclass(frozen=True)
class MajorCooldown:
    """A high impact spell exposed to the rotation component."""

    spell: Spell
    type: CooldownType = CooldownType.DPS


class MajorCooldownManager:
    """Read-only registry of notable cooldowns. No engine logic depends on it."""

    def __init__(self):
        self._entries: List[MajorCooldown] = []

    def add(self, cooldown: MajorCooldown):
        if any(entry.spell is cooldown.spell for entry in self._entries):
            raise ConfigurationError(f"{cooldown.spell.label} is already a major cooldown")
        self._entries.append(cooldown)

    @property
    def entries(self) -> Tuple[MajorCooldown, ...]:
        return tuple(self._entries)

    def by_type(self, cooldown_type: CooldownType) -> List[MajorCooldown]:
        return [entry for entry in self._entries if entry.type & cooldown_type]

    def __len__(self):
        return len(self._entries)


@dataclass(frozen=True)
class CastRecord:
    time: int
    action_id: ActionID
    label: str
    rage_spent: float


@dataclass(frozen=True)
class OutcomeRecord:
    time: int
    action_id: ActionID
    label: str
    target_index: int
    outcome: HitOutcome
    damage: float
    threat: float


@dataclass(frozen=True)
class DamageTakenRecord:
    time: int
    unit: str
    raw_damage: float
    damage: float


class MetricsSink:
    """Append-only store of everything a trial records."""

    def __init__(self):
        self.casts: List[CastRecord] = []
        self.outcomes: List[OutcomeRecord] = []
        self.damage_taken: List[DamageTakenRecord] = []

    def record_cast(self, record: CastRecord):
        self.casts.append(record)

    def record_outcome(self, record: OutcomeRecord):
        self.outcomes.append(record)

    def record_damage_taken(self, record: DamageTakenRecord):
        self.damage_taken.append(record)


@dataclass
class TrialResult:
    """
    Metrics extracted from one finished trial.

    Attributes:
        trial_index: Index of the trial in its run
        duration: Simulated fight length in milliseconds
        damage: Total damage dealt
        threat: Total threat generated
        damage_taken: Total damage taken by the characters
        rage_spent: Total rage spent
        resolver_calls: Number of outcome rolls
        casts: Successful casts by spell label
        damage_by_action: Damage by spell label
        outcome_counts: Outcome rolls by outcome name
        aura_uptime: Fraction of the fight each aura was active, by label
    """

    trial_index: int
    duration: int
    damage: float = 0.0
    threat: float = 0.0
    damage_taken: float = 0.0
    rage_spent: float = 0.0
    resolver_calls: int = 0
    casts: Dict[str, int] = field(default_factory=dict)
    damage_by_action: Dict[str, float] = field(default_factory=dict)
    outcome_counts: Dict[str, int] = field(default_factory=dict)
    aura_uptime: Dict[str, float] = field(default_factory=dict)

    @property
    def dps(self) -> float:
        return self.damage / (self.duration / 1000)

    @property
    def tps(self) -> float:
        return self.threat / (self.duration / 1000)

    @property
    def dtps(self) -> float:
        return self.damage_taken / (self.duration / 1000)


class JobGauge(ABC):
    """
    Base class for the resource pool a character spends on spells.
    """

    def __init__(self, owner: "Character"):
        self.owner = owner

    @abstractmethod
    def can_spend(self, amount: float) -> bool:
        """Whether the amount is available"""

    @abstractmethod
    def spend(self, sim: "Simulation", amount: float, action_id: ActionID) -> bool:
        """Spend the amount; returns False without spending if insufficient"""

    @abstractmethod
    def gain(self, sim: "Simulation", amount: float, action_id: ActionID) -> float:
        """Add to the gauge; returns the amount actually gained"""


RageListener = Callable[["Simulation", float, float], None]


class RageBar(JobGauge):
    """
    Warrior rage, capped at 100.

    Tracks:
    - Current rage
    - Rage gained and spent, by action
    - Rage wasted above the cap
    """

    def __init__(self, owner: "Character", starting_rage: float = 0.0, max_rage: float = MAX_RAGE):
        super().__init__(owner)
        self.max_rage = max_rage
        self.starting_rage = starting_rage
        self.rage = starting_rage
        self.gained: Dict[ActionID, float] = {}
        self.spent: Dict[ActionID, float] = {}
        self.wasted = 0.0
        self.listeners: List[RageListener] = []

    @property
    def current(self) -> float:
        return self.rage

    def can_spend(self, amount: float) -> bool:
        return self.rage >= amount

    def spend(self, sim: "Simulation", amount: float, action_id: ActionID) -> bool:
        if amount < 0:
            raise SimulationError(f"Cannot spend negative rage ({amount})")
        if self.rage < amount:
            return False
        old_rage = self.rage
        self.rage -= amount
        self.spent[action_id] = self.spent.get(action_id, 0.0) + amount
        self._notify(sim, old_rage)
        return True

    def gain(self, sim: "Simulation", amount: float, action_id: ActionID) -> float:
        if amount < 0:
            raise SimulationError(f"Cannot gain negative rage ({amount})")
        old_rage = self.rage
        gained = min(amount, self.max_rage - self.rage)
        self.wasted += amount - gained
        self.rage += gained
        self.gained[action_id] = self.gained.get(action_id, 0.0) + gained
        if gained > 0:
            self._notify(sim, old_rage)
        return gained

    def clamp(self, sim: "Simulation", maximum: float, action_id: ActionID):
        """Drop rage above the given maximum (e.g. when changing stance)."""
        if self.rage > maximum:
            old_rage = self.rage
            self.wasted += self.rage - maximum
            self.rage = maximum
            self._notify(sim, old_rage)

    def _notify(self, sim: "Simulation", old_rage: float):
        for listener in self.listeners:
            listener(sim, old_rage, self.rage)


class Entity:
    """
    Base class for all entities in the simulation.

    Attributes:
        entity_id (int): Unique identifier for this entity
        sim (Optional[Simulation]): The trial this entity takes part in
    """

    def __init__(self, entity_id: int):
        self.entity_id = entity_id
        self.sim: Optional["Simulation"] = None


class Unit(Entity):
    """
    Base class for all entities that can participate in battle.

    Attributes:
        name (str): Display name
        level (int): Unit level
        index (int): Position in the simulation's roster of its kind
        stats (Stats): Combat stats
        pseudo_stats (PseudoStats): Multipliers modified by auras
        auras (AuraManager): Registered auras
        damage_taken_total (float): Damage taken during the trial
    """

    def __init__(self, entity_id: int, name: str, level: int, stats: Optional[Stats] = None):
        super().__init__(entity_id=entity_id)
        self.name = name
        self.level = level
        self.index = 0
        self.stats = stats if stats is not None else Stats()
        self.pseudo_stats = PseudoStats()
        self.auras = AuraManager(owner=self)
        self.damage_taken_total = 0.0
        self.can_parry = True

    @property
    def can_block(self) -> bool:
        return self.pseudo_stats.can_block

    def register_aura(self, **kwargs) -> Aura:
        """Register a dormant aura on this unit. See Aura for the arguments."""
        return self.auras.register(Aura(self, **kwargs))

    def get_aura(self, label: str) -> Optional[Aura]:
        return self.auras.get(label)

    def has_aura(self, label: str) -> bool:
        return self.auras.is_active(label)

    def take_damage(self, sim: "Simulation", raw_damage: float, source: Optional["Unit"] = None) -> float:
        """
        Take incoming damage, scaled by the damage taken multiplier.

        Args:
            sim: The running simulation
            raw_damage: Damage before this unit's modifiers
            source: The attacking unit, if any

        Returns:
            float: The damage actually taken
        """
        damage = raw_damage * self.pseudo_stats.damage_taken_multiplier
        self.damage_taken_total += damage
        sim.metrics.record_damage_taken(DamageTakenRecord(
            time=sim.current_time, unit=self.name, raw_damage=raw_damage, damage=damage
        ))
        self.on_damage_taken(sim, raw_damage, damage)
        return damage

    def on_damage_taken(self, sim: "Simulation", raw_damage: float, damage: float):
        """Called after the unit took damage."""

    def on_melee_speed_changed(self, old_multiplier: float, new_multiplier: float):
        """Called after the melee speed multiplier changed."""

    def receive_hit(self, sim: "Simulation", attacker: "Unit", result: SpellResult):
        """Called when a spell result lands on this unit."""
        self.damage_taken_total += result.damage

    def start(self, sim: "Simulation"):
        """Called when the trial starts."""


class Target(Unit):
    """
    Defendable unit of the encounter.

    Attributes:
        threat (Dict[int, float]): Threat by attacker entity id
        swing_damage (float): Raw damage of the target's melee swings
        swing_speed (int): Time between swings in milliseconds
    """

    def __init__(self, entity_id: int, config: TargetConfig):
        stats = Stats(
            armor=config.armor,
            dodge=config.dodge,
            parry=config.parry,
            block=config.block,
            block_value=config.block_value,
        )
        super().__init__(entity_id=entity_id, name=config.name, level=config.level, stats=stats)
        self.pseudo_stats.can_block = config.block > 0
        self.threat: Dict[int, float] = {}
        self.swing_damage = config.swing_damage
        self.swing_speed = config.swing_speed

    def receive_hit(self, sim: "Simulation", attacker: "Unit", result: SpellResult):
        super().receive_hit(sim, attacker, result)
        self.threat[attacker.entity_id] = self.threat.get(attacker.entity_id, 0.0) + result.threat

    def start(self, sim: "Simulation"):
        if self.swing_damage > 0 and self.swing_speed > 0:
            sim.schedule_task(self.swing_speed, self._swing, sim, priority=PRIORITY_SWING)

    def _swing(self, sim: "Simulation"):
        victim = self.current_victim(sim)
        if victim is not None:
            victim.take_damage(sim, self.swing_damage, source=self)
        sim.schedule_task(self.swing_speed, self._swing, sim, priority=PRIORITY_SWING)

    def current_victim(self, sim: "Simulation") -> Optional["Character"]:
        """The character with the most threat on this target, or the first character."""
        if not sim.characters:
            return None
        return max(sim.characters, key=lambda c: (self.threat.get(c.entity_id, 0.0), -c.index))


class AutoAttacks:
    """
    Main hand and off hand swing timers of a character.

    Each swing is a cast of a passive auto attack spell rolling on the white
    attack table; the next swing is scheduled from the weapon speed divided by
    the character's melee speed multiplier at the time of the swing, and swings
    in flight are rescaled when that multiplier changes.
    """

    MH_ACTION_ID = ActionID(spell_id=6603, tag=1)
    OH_ACTION_ID = ActionID(spell_id=6603, tag=2)

    def __init__(self, owner: "Character", main_hand: Optional[Weapon], off_hand: Optional[Weapon] = None):
        self.owner = owner
        self.main_hand = main_hand
        self.off_hand = off_hand
        self.enabled = main_hand is not None
        self.mh_spell: Optional[Spell] = None
        self.oh_spell: Optional[Spell] = None
        self.next_swing_at: Dict[bool, int] = {}
        self._swing_tasks: Dict[bool, Task] = {}

    @property
    def is_dual_wielding(self) -> bool:
        return self.main_hand is not None and self.off_hand is not None

    def register(self):
        if self.main_hand is not None:
            self.mh_spell = self._register_swing_spell(is_mh=True)
        if self.off_hand is not None:
            self.oh_spell = self._register_swing_spell(is_mh=False)

    def _register_swing_spell(self, is_mh: bool) -> Spell:
        def apply_effects(sim: "Simulation", target: "Unit", spell: Spell):
            base_damage = self.weapon_damage(sim, is_mh, spell.melee_attack_power())
            result = spell.calc_and_deal_damage(sim, target, base_damage, spell.outcome_melee_white)
            self.owner.on_auto_attack(sim, result, is_mh)

        return self.owner.register_spell(SpellConfig(
            action_id=self.MH_ACTION_ID if is_mh else self.OH_ACTION_ID,
            label="Auto Attack (MH)" if is_mh else "Auto Attack (OH)",
            defense_type=DefenseType.MELEE,
            proc_mask=ProcMask.MELEE_MH_AUTO if is_mh else ProcMask.MELEE_OH_AUTO,
            flags=SpellFlag.MELEE_METRICS | SpellFlag.NO_ON_CAST_COMPLETE,
            apply_effects=apply_effects,
        ))

    def weapon(self, is_mh: bool) -> Weapon:
        weapon = self.main_hand if is_mh else self.off_hand
        if weapon is None:
            raise SimulationError(f"{self.owner.name} has no {'main' if is_mh else 'off'} hand weapon")
        return weapon

    def swing_speed(self, is_mh: bool) -> int:
        return max(1, int(self.weapon(is_mh).speed_ms / self.owner.pseudo_stats.melee_speed_multiplier))

    def _hand_multiplier(self, is_mh: bool) -> float:
        return 1.0 if is_mh else self.owner.pseudo_stats.off_hand_damage_multiplier

    def weapon_damage(self, sim: "Simulation", is_mh: bool, attack_power: float) -> float:
        """Rolled weapon damage plus the attack power bonus at weapon speed."""
        weapon = self.weapon(is_mh)
        rolled = sim.rng.uniform(weapon.min_damage, weapon.max_damage)
        damage = rolled + attack_power / ATTACK_POWER_PER_DPS * weapon.speed
        return damage * self._hand_multiplier(is_mh)

    def normalized_weapon_damage(self, sim: "Simulation", is_mh: bool, attack_power: float) -> float:
        """Rolled weapon damage plus the attack power bonus at normalized speed."""
        weapon = self.weapon(is_mh)
        rolled = sim.rng.uniform(weapon.min_damage, weapon.max_damage)
        damage = rolled + attack_power / ATTACK_POWER_PER_DPS * weapon.normalized_speed
        return damage * self._hand_multiplier(is_mh)

    def start(self, sim: "Simulation"):
        if not self.enabled:
            return
        for is_mh, spell in ((True, self.mh_spell), (False, self.oh_spell)):
            if spell is not None:
                self._schedule_swing(sim, is_mh, 0)

    def _schedule_swing(self, sim: "Simulation", is_mh: bool, delay: int):
        self.next_swing_at[is_mh] = sim.current_time + delay
        self._swing_tasks[is_mh] = sim.schedule_task(delay, self._swing, sim, is_mh, priority=PRIORITY_SWING)

    def _swing(self, sim: "Simulation", is_mh: bool):
        if not self.enabled:
            return
        spell = self.mh_spell if is_mh else self.oh_spell
        target = self.owner.current_target
        if target is not None:
            spell.cast(sim, target)
        self._schedule_swing(sim, is_mh, self.swing_speed(is_mh))

    def rescale_swings(self, sim: "Simulation", old_multiplier: float, new_multiplier: float):
        """
        Move the swings in flight after a melee speed change, keeping the
        fraction of the swing already elapsed.
        """
        now = sim.current_time
        for is_mh, task in list(self._swing_tasks.items()):
            remaining = self.next_swing_at[is_mh] - now
            # The swing running right now schedules its successor itself
            if task.cancelled or remaining <= 0:
                continue
            task.cancel()
            self._schedule_swing(sim, is_mh, max(1, int(remaining * old_multiplier / new_multiplier)))


HitListener = Callable[["Simulation", Spell, SpellResult], None]
CastListener = Callable[["Simulation", Spell], None]


class Character(Unit):
    """
    The acting unit: owns spells, timers, a resource pool and a rotation.

    Attributes:
        spells (Dict[ActionID, Spell]): Registered spells by action id
        gcd (Timer): The Global Cooldown gate shared by all GCD spells
        gauge (Optional[JobGauge]): Resource pool spent by spells
        stance (Stance): Current stance
        major_cooldowns (MajorCooldownManager): Notable cooldowns for the rotation
        rotation (Optional[Rotation]): Rotation consulted at every decision point
        auto_attacks (AutoAttacks): Swing timers
        current_target (Optional[Unit]): Primary target
        in_front_of_target (bool): Attacks come from the front
    """

    def __init__(self, entity_id: int, name: str, level: int, stats: Optional[Stats] = None):
        super().__init__(entity_id=entity_id, name=name, level=level, stats=stats)
        self.spells: Dict[ActionID, Spell] = {}
        self._spells_by_label: Dict[str, Spell] = {}
        self.timers: List[Timer] = []
        self.gcd = self.new_timer("GCD")
        self.gauge: Optional[JobGauge] = None
        self.stance = Stance.NONE
        self.major_cooldowns = MajorCooldownManager()
        self.rotation: Optional["Rotation"] = None
        self.auto_attacks = AutoAttacks(self, None)
        self.current_target: Optional[Unit] = None
        self.in_front_of_target = False
        self.hit_dealt_listeners: List[HitListener] = []
        self.cast_complete_listeners: List[CastListener] = []
        self._decision_task: Optional[Task] = None

    @property
    def is_dual_wielding(self) -> bool:
        return self.auto_attacks.is_dual_wielding

    def weapon_skill(self, off_hand: bool = False) -> int:
        weapon = self.auto_attacks.off_hand if off_hand else self.auto_attacks.main_hand
        if weapon is None:
            return self.level * 5
        return weapon.skill

    def new_timer(self, name: str = "", ignore_haste: bool = False) -> Timer:
        timer = Timer(name=name, ignore_haste=ignore_haste)
        self.timers.append(timer)
        return timer

    def stance_allows(self, required: Stance) -> bool:
        if required == Stance.ANY:
            return True
        return bool(self.stance & required)

    def _validate_spell_config(self, config: SpellConfig):
        label = config.label or str(config.action_id)
        if config.action_id in self.spells:
            raise ConfigurationError(f"{label}: action {config.action_id} registered twice")
        if config.label and config.label in self._spells_by_label:
            raise ConfigurationError(f"{label}: label registered twice")
        if config.apply_effects is None:
            raise ConfigurationError(f"{label}: no effect function")
        if config.required_stances == Stance.NONE:
            raise ConfigurationError(f"{label}: no stance allows this spell")
        if config.rage_cost < 0:
            raise ConfigurationError(f"{label}: negative rage cost")
        if config.rage_cost > 0 and self.gauge is None:
            raise ConfigurationError(f"{label}: rage cost on a character without a resource")
        if self.gauge is not None and config.rage_cost > getattr(self.gauge, "max_rage", math.inf):
            raise ConfigurationError(f"{label}: costs more rage than the character can hold")
        if config.cast.gcd < 0:
            raise ConfigurationError(f"{label}: negative GCD")
        for cooldown in (config.cast.cd, config.cast.shared_cd):
            if cooldown.duration < 0:
                raise ConfigurationError(f"{label}: negative cooldown")
            if (cooldown.timer is None) != (cooldown.duration == 0):
                raise ConfigurationError(f"{label}: a cooldown needs both a timer and a duration")
        if config.damage_multiplier < 0 or config.threat_multiplier < 0:
            raise ConfigurationError(f"{label}: negative damage or threat multiplier")

    def register_spell(self, config: SpellConfig) -> Spell:
        """
        Register a spell on this character.

        Raises:
            ConfigurationError: If the configuration is inconsistent
        """
        try:
            self._validate_spell_config(config)
        except ConfigurationError:
            log.error("Invalid spell configuration on %s", self.name)
            raise
        spell = Spell(self, config)
        self.spells[config.action_id] = spell
        if config.label:
            self._spells_by_label[config.label] = spell
        return spell

    def get_spell(self, action_id: ActionID) -> Optional[Spell]:
        return self.spells.get(action_id)

    def get_spell_by_label(self, label: str) -> Optional[Spell]:
        return self._spells_by_label.get(label)

    def add_major_cooldown(self, cooldown: MajorCooldown):
        if cooldown.spell.unit is not self:
            raise ConfigurationError(f"{cooldown.spell.label} belongs to another character")
        self.major_cooldowns.add(cooldown)

    def set_target(self, target: Optional[Unit]):
        self.current_target = target

    def set_rotation(self, rotation: "Rotation"):
        self.rotation = rotation
        rotation.set_owner(self)

    def start(self, sim: "Simulation"):
        """Called when the trial starts: start swinging and take the first decision."""
        self.on_start(sim)
        self.auto_attacks.start(sim)
        self.request_decision(sim)

    def on_start(self, sim: "Simulation"):
        """Hook for subclasses to set up their initial state."""

    def request_decision(self, sim: "Simulation", delay: int = 0):
        """Ask the rotation for an action after the given delay, unless one is already due sooner."""
        if self.rotation is None or not self.rotation.enabled:
            return
        due = sim.current_time + delay
        task = self._decision_task
        if task is not None and not task.cancelled:
            if task.time <= due:
                return
            task.cancel()
        self._decision_task = sim.schedule_task(delay, self._on_decision, sim, priority=PRIORITY_ACTION)

    def _on_decision(self, sim: "Simulation"):
        self._decision_task = None
        rotation = self.rotation
        if rotation is None or not rotation.enabled:
            return

        # Several off-GCD actions can go out on the same millisecond
        for _ in range(rotation.max_casts_per_decision()):
            if not rotation.execute_next(sim):
                break

        next_time = rotation.next_decision_time(sim)
        if next_time is not None:
            self.request_decision(sim, delay=next_time - sim.current_time)

    def on_cast_complete(self, sim: "Simulation", spell: Spell):
        for listener in self.cast_complete_listeners:
            listener(sim, spell)

    def on_spell_hit_dealt(self, sim: "Simulation", spell: Spell, result: SpellResult):
        for listener in self.hit_dealt_listeners:
            listener(sim, spell, result)

    def on_auto_attack(self, sim: "Simulation", result: SpellResult, is_mh: bool):
        """Called after every auto attack swing; wakes up the rotation."""
        self.request_decision(sim)

    def on_melee_speed_changed(self, old_multiplier: float, new_multiplier: float):
        if self.sim is not None:
            self.auto_attacks.rescale_swings(self.sim, old_multiplier, new_multiplier)


class TargetType:
    """
    Targeting strategies for actions in rotations.

    Attributes:
        CURRENT: The character's current target
        SELF: The character itself
        SPECIFIC: The target at a given roster index
    """

    CURRENT = "current"
    SELF = "self"
    SPECIFIC = "specific"


class RotationAction:
    """
    One entry of a rotation's priority list.

    Attributes:
        spell_label (str): Label of the spell to cast
        condition (Optional[Callable[[Character, Optional[Unit]], bool]]): Extra requirement
        target_type (str): Targeting strategy for this action
        target_index (Optional[int]): Roster index when target_type is SPECIFIC
        requirements (Dict): Declarative requirements, kept for serialization
    """

    def __init__(
        self,
        spell_label: str,
        condition: Optional[Callable[["Character", Optional[Unit]], bool]] = None,
        target_type: str = TargetType.CURRENT,
        target_index: Optional[int] = None,
        requirements: Optional[Dict] = None,
    ):
        self.spell_label = spell_label
        self.condition = condition
        self.target_type = target_type
        self.target_index = target_index
        self.requirements = requirements or {}


def build_condition(requirements: Dict) -> Optional[Callable[["Character", Optional[Unit]], bool]]:
    """
    Build a rotation condition from its JSON form.

    Supported keys: min_rage, max_rage, requires_aura, missing_aura.
    """
    if not requirements:
        return None

    unknown = set(requirements) - {"min_rage", "max_rage", "requires_aura", "missing_aura"}
    if unknown:
        raise ConfigurationError(f"Unknown rotation requirements: {', '.join(sorted(unknown))}")

    min_rage = requirements.get("min_rage")
    max_rage = requirements.get("max_rage")
    requires_aura = requirements.get("requires_aura")
    missing_aura = requirements.get("missing_aura")

    def condition(character: "Character", target: Optional[Unit]) -> bool:
        rage = character.gauge.current if character.gauge is not None else 0.0
        if min_rage is not None and rage < min_rage:
            return False
        if max_rage is not None and rage > max_rage:
            return False
        if requires_aura is not None and not character.has_aura(requires_aura):
            return False
        if missing_aura is not None and character.has_aura(missing_aura):
            return False
        return True

    return condition


class Rotation:
    """
    Priority list of actions for a character to execute.

    At every decision point the rotation first uses any ready major cooldown of
    the allowed categories, then casts the first castable action of its list.

    Attributes:
        name (str): Name of the rotation
        actions (List[RotationAction]): Actions in priority order
        use_major_cooldowns (CooldownType): Categories of major cooldowns used on ready
        owner (Optional[Character]): The character executing the rotation
        enabled (bool): Whether the rotation is running
    """

    def __init__(self, name: str, use_major_cooldowns: CooldownType = CooldownType.UNKNOWN):
        self.name = name
        self.actions: List[RotationAction] = []
        self.use_major_cooldowns = use_major_cooldowns
        self.owner: Optional[Character] = None
        self.enabled = False

    def add_action(
        self,
        spell_label: str,
        condition: Optional[Callable[["Character", Optional[Unit]], bool]] = None,
        target_type: str = TargetType.CURRENT,
        target_index: Optional[int] = None,
        requirements: Optional[Dict] = None,
    ):
        """
        Add an action at the lowest priority.

        Args:
            spell_label: Label of the spell to cast
            condition: Optional function that returns True if the action should be used
            target_type: Targeting strategy for this action
            target_index: Roster index when target_type is SPECIFIC
            requirements: Declarative requirements; used to build the condition if none is given
        """
        if condition is None and requirements:
            condition = build_condition(requirements)
        self.actions.append(RotationAction(
            spell_label=spell_label,
            condition=condition,
            target_type=target_type,
            target_index=target_index,
            requirements=requirements,
        ))

    def set_owner(self, character: "Character"):
        self.owner = character

    def enable(self):
        self.enabled = True

    def disable(self):
        self.enabled = False

    def max_casts_per_decision(self) -> int:
        owner_cooldowns = len(self.owner.major_cooldowns) if self.owner is not None else 0
        return len(self.actions) + owner_cooldowns + 1

    def _cooldown_spells(self) -> List[Spell]:
        if self.use_major_cooldowns == CooldownType.UNKNOWN:
            return []
        return [entry.spell for entry in self.owner.major_cooldowns.by_type(self.use_major_cooldowns)]

    def _action_spells(self) -> List[Tuple[RotationAction, Spell]]:
        pairs = []
        for action in self.actions:
            # Spells gated by level or build are simply absent
            spell = self.owner.get_spell_by_label(action.spell_label)
            if spell is not None:
                pairs.append((action, spell))
        return pairs

    def execute_next(self, sim: "Simulation") -> bool:
        """
        Cast the highest priority action that is castable now.

        Args:
            sim: The running simulation

        Returns:
            bool: True if an action was cast
        """
        if not self.enabled or self.owner is None:
            return False

        for spell in self._cooldown_spells():
            target = self.owner.current_target
            if spell.can_cast(sim, target):
                return spell.cast(sim, target)

        for action, spell in self._action_spells():
            target = self._resolve_target(sim, action)
            if action.condition is not None and not action.condition(self.owner, target):
                continue
            if spell.can_cast(sim, target):
                return spell.cast(sim, target)

        return False

    def next_decision_time(self, sim: "Simulation") -> Optional[int]:
        """Earliest future time one of the rotation's spells comes off cooldown."""
        if self.owner is None:
            return None
        spells = self._cooldown_spells() + [spell for _, spell in self._action_spells()]
        ready_times = [spell.ready_at() for spell in spells]
        future = [time for time in ready_times if time > sim.current_time]
        return min(future, default=None)

    def _resolve_target(self, sim: "Simulation", action: RotationAction) -> Optional[Unit]:
        if action.target_type == TargetType.SELF:
            return self.owner
        if action.target_type == TargetType.SPECIFIC and action.target_index is not None:
            if 0 <= action.target_index < len(sim.targets):
                return sim.targets[action.target_index]
            return None
        return self.owner.current_target

    def to_dict(self) -> Dict:
        """
        Convert rotation to dictionary representation for serialization.

        Returns:
            Dict: Dictionary representation of rotation (conditions only in declarative form)
        """
        actions = []
        for action in self.actions:
            entry = {"spell": action.spell_label}
            if action.target_type != TargetType.CURRENT:
                entry["target"] = action.target_type
            if action.target_index is not None:
                entry["target_index"] = action.target_index
            entry.update(action.requirements)
            actions.append(entry)
        return {
            "name": self.name,
            "major_cooldowns": [t.name.lower() for t in CooldownType if t.value and t in self.use_major_cooldowns and t != CooldownType.ALL],
            "actions": actions,
        }

    def save_to_file(self, file_path: str):
        with open(file_path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def from_dict(cls, data: Dict) -> "Rotation":
        """
        Create a rotation from a dictionary representation.

        Args:
            data: Dictionary containing rotation data

        Returns:
            Rotation: New rotation instance
        """
        use_major_cooldowns = CooldownType.UNKNOWN
        for name in data.get("major_cooldowns", []):
            try:
                use_major_cooldowns |= CooldownType[name.upper()]
            except KeyError:
                raise ConfigurationError(f"Unknown cooldown type: {name}") from None

        rotation = cls(name=data.get("name", "Unnamed Rotation"), use_major_cooldowns=use_major_cooldowns)
        for entry in data.get("actions", []):
            if isinstance(entry, str):
                rotation.add_action(spell_label=entry)
                continue
            entry = dict(entry)
            spell_label = entry.pop("spell")
            target_type = entry.pop("target", TargetType.CURRENT)
            target_index = entry.pop("target_index", None)
            rotation.add_action(
                spell_label=spell_label,
                target_type=target_type,
                target_index=target_index,
                requirements=entry,
            )
        return rotation

    @classmethod
    def load_from_json(cls, file_path: str) -> "Rotation":
        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return cls.from_dict(data)


class Simulation:
    """
    One independent trial of the battle simulation.

    The Simulation class is the central coordinator of a trial, responsible for:
    - Owning the trial's private random stream
    - Managing the characters and the target roster
    - Scheduling and processing events in time and priority order
    - Extracting the trial's metrics

    Attributes:
        task_queue (list): Priority queue of scheduled events
        current_time (int): Current simulation time in milliseconds from the start of the fight
        duration (int): Length of the fight; no event after it is processed
        rng (np.random.Generator): The trial's random stream
        trial_index (int): Index of the trial in its run
        characters (List[Character]): Acting characters
        targets (List[Target]): Ordered target roster
        metrics (MetricsSink): Append-only record of the trial
    """

    def __init__(
        self,
        rng: Optional[np.random.Generator] = None,
        duration: int = DEFAULT_TRIAL_DURATION,
        trial_index: int = 0,
        seed: Optional[int] = None,
    ):
        if duration <= 0:
            raise ConfigurationError("Trial duration must be positive")
        self.task_queue: List[Task] = []
        self.current_time = 0
        self.duration = duration
        self.rng = rng if rng is not None else np.random.default_rng(seed)
        self.trial_index = trial_index
        self.characters: List[Character] = []
        self.targets: List[Target] = []
        self.metrics = MetricsSink()
        self._sequence = 0
        self._started = False
        self._finished = False
        self._next_entity_id = 1

    @classmethod
    def for_trial(cls, base_seed: int, trial_index: int, duration: int = DEFAULT_TRIAL_DURATION) -> "Simulation":
        """Create a trial whose random stream depends only on the base seed and the trial index."""
        seed_sequence = np.random.SeedSequence([base_seed, trial_index])
        return cls(rng=np.random.default_rng(seed_sequence), duration=duration, trial_index=trial_index)

    def next_entity_id(self) -> int:
        entity_id = self._next_entity_id
        self._next_entity_id += 1
        return entity_id

    def add_character(self, character: Character):
        character.sim = self
        character.index = len(self.characters)
        self.characters.append(character)
        if character.current_target is None and self.targets:
            character.set_target(self.targets[0])

    def add_target(self, target: Target):
        target.sim = self
        target.index = len(self.targets)
        self.targets.append(target)
        for character in self.characters:
            if character.current_target is None:
                character.set_target(target)

    def add_targets(self, configs: Sequence[TargetConfig]) -> List[Target]:
        targets = []
        for config in configs:
            target = Target(entity_id=self.next_entity_id(), config=config)
            self.add_target(target)
            targets.append(target)
        return targets

    def schedule_task(self, delay: int, callback: Callable, *args, priority: int = PRIORITY_ACTION, **kwargs) -> Task:
        """
        Schedule a task to execute after a specified delay.

        Args:
            delay: Time in milliseconds until the event should occur
            callback: Function to call when the event occurs
            *args: Positional arguments to pass to the callback function
            priority: Ordering among events on the same millisecond
            **kwargs: Keyword arguments to pass to the callback function

        Returns:
            Task: The scheduled task, which can be cancelled
        """
        if delay < 0:
            raise SimulationError(f"Cannot schedule a task {delay}ms in the past")
        self._sequence += 1
        task = Task(self.current_time + delay, callback, args, kwargs, priority=priority, sequence=self._sequence)
        heapq.heappush(self.task_queue, task)
        return task

    def start(self):
        """Start every unit. Called once, before the first event is processed."""
        if self._started:
            return
        self._started = True
        for target in self.targets:
            target.start(self)
        for character in self.characters:
            character.start(self)

    def step(self, frame_delta: int):
        """
        Advance the simulation by the given time, processing every event due.

        Args:
            frame_delta: Time in milliseconds to advance
        """
        if frame_delta < 0:
            raise SimulationError("Time cannot go backwards")
        self.start()
        end_time = min(self.current_time + frame_delta, self.duration)
        self._process_events(end_time)
        self.current_time = end_time

    def _process_events(self, end_time: int):
        """Execute all events up to and including end_time, in order."""
        while self.task_queue and self.task_queue[0].time <= end_time:
            task = heapq.heappop(self.task_queue)
            if task.cancelled:
                continue
            if task.time < self.current_time:
                raise SimulationError(f"Event at {task.time} is behind the clock ({self.current_time})")
            self.current_time = task.time
            task.execute()

    def run(self) -> TrialResult:
        """Run the trial to its duration and return its metrics."""
        self.step(self.duration - self.current_time)
        self.finish()
        return self.result()

    def finish(self):
        """End the trial: every active aura expires so each activation has its expiration."""
        if self._finished:
            return
        self._finished = True
        for unit in [*self.characters, *self.targets]:
            unit.auras.expire_all(self)
        self.task_queue.clear()

    def result(self) -> TrialResult:
        """Summarize the metrics sink into a TrialResult."""
        result = TrialResult(trial_index=self.trial_index, duration=self.current_time or self.duration)

        for record in self.metrics.outcomes:
            result.damage += record.damage
            result.threat += record.threat
            result.damage_by_action[record.label] = result.damage_by_action.get(record.label, 0.0) + record.damage
            name = record.outcome.name
            result.outcome_counts[name] = result.outcome_counts.get(name, 0) + 1
        result.resolver_calls = len(self.metrics.outcomes)

        for record in self.metrics.casts:
            result.casts[record.label] = result.casts.get(record.label, 0) + 1
            result.rage_spent += record.rage_spent

        result.damage_taken = sum(record.damage for record in self.metrics.damage_taken)

        for character in self.characters:
            for aura in character.auras.auras.values():
                if aura.activations:
                    result.aura_uptime[aura.label] = aura.total_uptime(self) / result.duration

        return result

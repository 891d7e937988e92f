"""Attack tables, outcome rolls and damage transforms for the combat simulation."""

import math
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

import numpy as np

from wowcore.common import (
    CRIT_MULTIPLIER_MELEE,
    DUAL_WIELD_MISS_PENALTY,
    MAX_ARMOR_REDUCTION,
    HitOutcome,
    ResolverError,
)

# Tolerance when checking that a table does not exceed a total probability of 1
TABLE_EPSILON = 1e-9

# Glancing blow damage by level difference between defender and attacker
GLANCING_MULTIPLIER = {0: 0.95, 1: 0.95, 2: 0.85, 3: 0.65}


class OutcomeTable:
    """
    Cumulative probability table over mutually exclusive hit outcomes.

    The table is built from an explicit ordered list of (outcome, probability)
    pairs. Whatever probability is left after the listed outcomes belongs to
    a normal hit, so the categories always sum to exactly 1.0. A single uniform
    draw in [0, 1) selects the outcome whose cumulative interval contains it.

    Raises:
        ResolverError: If a probability is negative or not finite, an outcome is
            listed twice, or the listed probabilities sum above 1.0
    """

    def __init__(self, entries: Sequence[Tuple[HitOutcome, float]]):
        outcomes: List[HitOutcome] = []
        probabilities: List[float] = []
        for outcome, probability in entries:
            if outcome == HitOutcome.HIT:
                raise ResolverError("A normal hit takes the remainder of the table and cannot be listed")
            if outcome in outcomes:
                raise ResolverError(f"Outcome {outcome.name} listed twice")
            if not math.isfinite(probability) or probability < 0:
                raise ResolverError(f"Invalid probability {probability} for {outcome.name}")
            outcomes.append(outcome)
            probabilities.append(float(probability))

        total = math.fsum(probabilities)
        if total > 1.0 + TABLE_EPSILON:
            raise ResolverError(
                f"Outcome probabilities sum to {total:.6f}: "
                + ", ".join(f"{o.name}={p:.4f}" for o, p in zip(outcomes, probabilities))
            )

        outcomes.append(HitOutcome.HIT)
        probabilities.append(max(0.0, 1.0 - total))

        self._outcomes = outcomes
        self._probabilities = probabilities
        self._thresholds = np.cumsum(probabilities)
        # The remainder bucket always closes the table at exactly 1.0
        self._thresholds[-1] = 1.0

    @property
    def outcomes(self) -> List[HitOutcome]:
        return list(self._outcomes)

    @property
    def probabilities(self) -> Dict[HitOutcome, float]:
        """Probability of every outcome in the table, normal hit included."""
        return dict(zip(self._outcomes, self._probabilities))

    def chance(self, outcome: HitOutcome) -> float:
        return self.probabilities.get(outcome, 0.0)

    def outcome_for(self, draw: float) -> HitOutcome:
        """Map a uniform draw in [0, 1) to an outcome."""
        if not 0.0 <= draw < 1.0:
            raise ResolverError(f"Random draw {draw} outside [0, 1)")
        index = int(np.searchsorted(self._thresholds, draw, side="right"))
        return self._outcomes[index]

    def roll(self, rng: np.random.Generator) -> HitOutcome:
        """Draw one uniform value from the trial's random stream and resolve it."""
        return self.outcome_for(float(rng.random()))

    def __repr__(self):
        rows = ", ".join(f"{o.name}={p:.4f}" for o, p in zip(self._outcomes, self._probabilities))
        return f"OutcomeTable({rows})"


@dataclass
class AttackerProfile:
    """Snapshot of the attacker's stats relevant to the attack table."""

    level: int
    weapon_skill: int
    hit: float = 0.0
    crit: float = 0.0
    expertise: float = 0.0
    dual_wield: bool = False


@dataclass
class DefenderProfile:
    """Snapshot of the defender's stats relevant to the attack table."""

    level: int
    armor: float = 0.0
    dodge: float = 0.05
    parry: float = 0.05
    block: float = 0.05
    block_value: float = 0.0
    can_parry: bool = True
    can_block: bool = True


class AttackTable:
    """
    Builds melee outcome tables for one attacker/defender pair.

    Special attacks (yellow) roll miss, dodge, parry, block, crit and hit.
    Auto attacks (white) additionally roll glancing blows and suffer the dual
    wield miss penalty. Parry and block are only possible when the attacker
    stands in front of the defender.
    """

    def __init__(self, attacker: AttackerProfile, defender: DefenderProfile, in_front: bool = False):
        self.attacker = attacker
        self.defender = defender
        self.in_front = in_front

    @property
    def skill_difference(self) -> int:
        """Defense skill of the defender minus weapon skill of the attacker, floored at 0."""
        return max(0, self.defender.level * 5 - self.attacker.weapon_skill)

    @property
    def level_difference(self) -> int:
        return max(0, self.defender.level - self.attacker.level)

    def miss_chance(self, white: bool) -> float:
        diff = self.skill_difference
        if diff > 10:
            base = 0.05 + diff * 0.002
            # The first 1% of hit is ignored against high level defenders
            hit = max(0.0, self.attacker.hit - 0.01)
        else:
            base = 0.05 + diff * 0.001
            hit = self.attacker.hit
        if white and self.attacker.dual_wield:
            base += DUAL_WIELD_MISS_PENALTY
        return max(0.0, base - hit)

    def dodge_chance(self) -> float:
        dodge = self.defender.dodge + self.skill_difference * 0.001
        return max(0.0, dodge - self.attacker.expertise * 0.01)

    def parry_chance(self) -> float:
        if not self.in_front or not self.defender.can_parry:
            return 0.0
        parry = self.defender.parry + self.skill_difference * 0.001
        return max(0.0, parry - self.attacker.expertise * 0.01)

    def block_chance(self) -> float:
        if not self.in_front or not self.defender.can_block:
            return 0.0
        return max(0.0, self.defender.block + self.skill_difference * 0.001)

    def glance_chance(self) -> float:
        return max(0.0, 0.1 + self.skill_difference * 0.02)

    @property
    def glance_multiplier(self) -> float:
        return GLANCING_MULTIPLIER.get(min(self.level_difference, 3), 0.65)

    def crit_chance(self, bonus_crit: float = 0.0) -> float:
        suppression = self.skill_difference * 0.002
        if self.level_difference >= 3:
            suppression += 0.018
        return max(0.0, self.attacker.crit + bonus_crit - suppression)

    def special_table(self, bonus_crit: float = 0.0) -> OutcomeTable:
        """Outcome table of a special (yellow) attack. Overflow is an error."""
        return OutcomeTable([
            (HitOutcome.MISS, self.miss_chance(white=False)),
            (HitOutcome.DODGE, self.dodge_chance()),
            (HitOutcome.PARRY, self.parry_chance()),
            (HitOutcome.BLOCK, self.block_chance()),
            (HitOutcome.CRIT, self.crit_chance(bonus_crit)),
        ])

    def white_table(self, bonus_crit: float = 0.0) -> OutcomeTable:
        """
        Outcome table of an auto attack.

        Critical strikes only occupy the space the avoidance and glancing rows
        leave on the table (crit cap); the avoidance rows themselves must fit.
        """
        rows = [
            (HitOutcome.MISS, self.miss_chance(white=True)),
            (HitOutcome.DODGE, self.dodge_chance()),
            (HitOutcome.PARRY, self.parry_chance()),
            (HitOutcome.GLANCE, self.glance_chance()),
            (HitOutcome.BLOCK, self.block_chance()),
        ]
        used = math.fsum(p for _, p in rows)
        crit = min(self.crit_chance(bonus_crit), max(0.0, 1.0 - used))
        rows.append((HitOutcome.CRIT, crit))
        return OutcomeTable(rows)


def crit_damage_multiplier(crit_damage_bonus: float = 0.0, base: float = CRIT_MULTIPLIER_MELEE) -> float:
    """
    Damage multiplier of a critical strike.

    A crit damage bonus such as Impale increases the bonus part of the crit,
    e.g. a 20% bonus turns a 2.0 multiplier into 2.2.
    """
    return 1.0 + (base - 1.0) * (1.0 + crit_damage_bonus)


def armor_damage_reduction(armor: float, attacker_level: int) -> float:
    """Fraction of physical damage removed by armor."""
    if armor <= 0:
        return 0.0
    reduction = armor / (armor + 400.0 + 85.0 * attacker_level)
    return min(MAX_ARMOR_REDUCTION, reduction)


def apply_outcome(
    outcome: HitOutcome,
    damage: float,
    crit_multiplier: float = CRIT_MULTIPLIER_MELEE,
    block_value: float = 0.0,
    glance_multiplier: float = 1.0,
) -> float:
    """
    Transform pre-outcome damage according to the rolled outcome.

    Args:
        outcome: The rolled outcome
        damage: Damage before the outcome is applied
        crit_multiplier: Multiplier of a critical strike
        block_value: Damage absorbed by a block
        glance_multiplier: Multiplier of a glancing blow

    Returns:
        float: Damage after the outcome, never negative
    """
    if damage < 0:
        raise ResolverError(f"Negative damage {damage} before outcome")
    if outcome in (HitOutcome.MISS, HitOutcome.DODGE, HitOutcome.PARRY):
        return 0.0
    if outcome == HitOutcome.BLOCK:
        return max(0.0, damage - block_value)
    if outcome == HitOutcome.GLANCE:
        return damage * glance_multiplier
    if outcome == HitOutcome.CRIT:
        return damage * crit_multiplier
    return damage

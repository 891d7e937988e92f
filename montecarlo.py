"""
Monte Carlo trial runner for damage distribution analysis.
Runs many independent, seeded trials of a scenario in process or across
worker processes and merges their results.
"""

import logging
import multiprocessing as mp
import sys
import time
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy import stats

from wowcore.common import ConfigurationError, ScenarioConfig, SimulationError
from wowcore.core import Rotation, Simulation, TrialResult
from wowcore.job import create_character
from wowcore.job.warrior import Warrior

log = logging.getLogger(__name__)

DEFAULT_QUANTILES = [0.25, 0.5, 0.75, 0.9, 0.95, 0.99, 0.999]
DEFAULT_CONFIDENCE = 0.95

# Trials per task submitted to the process pool
PARALLEL_BATCH_SIZE = 25


def build_trial(scenario: ScenarioConfig, trial_index: int = 0, base_seed: int = 0) -> Tuple[Simulation, Warrior]:
    """
    Build one trial of the scenario with its own units and random stream.

    Args:
        scenario: Plain data description of the fight
        trial_index: Index of the trial in its run
        base_seed: Seed shared by every trial of the run

    Returns:
        tuple: The simulation and its warrior, ready to run
    """
    sim = Simulation.for_trial(base_seed, trial_index, duration=scenario.encounter.duration)
    sim.add_targets(scenario.encounter.targets)

    warrior = create_character(entity_id=sim.next_entity_id(), config=scenario.character)
    sim.add_character(warrior)

    rotation = Rotation.from_dict(scenario.rotation)
    warrior.set_rotation(rotation)
    rotation.enable()
    return sim, warrior


# Helper functions for parallel processing - must be at module level for pickling
def run_trial(scenario: ScenarioConfig, trial_index: int, base_seed: int) -> TrialResult:
    """Build and run a single trial."""
    sim, _ = build_trial(scenario, trial_index, base_seed)
    return sim.run()


def run_trial_batch(args) -> List[TrialResult]:
    """Run a batch of trials.

    Args:
        args: Tuple of (scenario, trial indices, base seed)

    Returns:
        list: One TrialResult per trial index
    """
    scenario, trial_indices, base_seed = args
    return [run_trial(scenario, index, base_seed) for index in trial_indices]


class ProgressBar:
    """Simple progress bar for tracking simulation progress."""

    def __init__(self, total, prefix='Progress:', suffix='Complete', length=50, stream=None):
        self.total = total
        self.prefix = prefix
        self.suffix = suffix
        self.length = length
        self.stream = stream if stream is not None else sys.stdout
        self.start_time = time.time()
        self.current = 0

    def update(self, current=None, additional_info=None):
        if current is not None:
            self.current = current
        else:
            self.current += 1

        percent = 100 * (self.current / float(self.total))
        filled_length = int(self.length * self.current // self.total)
        bar = '█' * filled_length + '-' * (self.length - filled_length)

        # Calculate time elapsed and estimate time remaining
        elapsed = time.time() - self.start_time
        if self.current > 0:
            eta = elapsed * (self.total / self.current - 1)
            time_info = f" | {self._format_time(elapsed)}<{self._format_time(eta)}"
        else:
            time_info = ""

        info_str = f" | {additional_info}" if additional_info else ""

        self.stream.write(f'\r{self.prefix} |{bar}| {percent:.1f}%{time_info}{info_str} {self.suffix}')
        self.stream.flush()

        if self.current == self.total:
            self.stream.write('\n')

    def _format_time(self, seconds):
        """Format time in seconds to a readable string."""
        if seconds < 60:
            return f"{seconds:.1f}s"
        elif seconds < 3600:
            minutes = seconds // 60
            seconds %= 60
            return f"{int(minutes)}m{int(seconds)}s"
        else:
            hours = seconds // 3600
            seconds %= 3600
            minutes = seconds // 60
            return f"{int(hours)}h{int(minutes)}m"


def _sum_counts(dicts) -> Dict:
    total = {}
    for counts in dicts:
        for key, value in counts.items():
            total[key] = total.get(key, 0) + value
    return total


@dataclass
class AggregateResult:
    """
    Merged results of many trials.

    Trials are kept ordered by trial index and every statistic is reduced in
    that order, so the aggregate does not depend on the order in which the
    trials finished.

    Attributes:
        trials: Per-trial results, ordered by trial index
    """

    trials: List[TrialResult] = field(default_factory=list)

    @classmethod
    def from_trials(cls, trials: Sequence[TrialResult]) -> "AggregateResult":
        ordered = sorted(trials, key=lambda trial: trial.trial_index)
        indices = [trial.trial_index for trial in ordered]
        if len(set(indices)) != len(indices):
            raise SimulationError("The same trial index was merged twice")
        return cls(trials=ordered)

    def merge(self, other: "AggregateResult") -> "AggregateResult":
        return AggregateResult.from_trials(self.trials + other.trials)

    @property
    def num_trials(self) -> int:
        return len(self.trials)

    @property
    def dps(self) -> np.ndarray:
        return np.array([trial.dps for trial in self.trials])

    @property
    def tps(self) -> np.ndarray:
        return np.array([trial.tps for trial in self.trials])

    @property
    def mean_dps(self) -> float:
        return float(np.mean(self.dps))

    @property
    def std_dps(self) -> float:
        return float(np.std(self.dps, ddof=1)) if self.num_trials > 1 else 0.0

    @property
    def mean_tps(self) -> float:
        return float(np.mean(self.tps))

    @property
    def resolver_calls(self) -> int:
        return sum(trial.resolver_calls for trial in self.trials)

    @property
    def casts(self) -> Dict[str, int]:
        return _sum_counts(trial.casts for trial in self.trials)

    @property
    def outcome_counts(self) -> Dict[str, int]:
        return _sum_counts(trial.outcome_counts for trial in self.trials)

    @property
    def damage_by_action(self) -> Dict[str, float]:
        """Mean damage per trial of every action."""
        totals = _sum_counts(trial.damage_by_action for trial in self.trials)
        return {label: damage / self.num_trials for label, damage in totals.items()}

    @property
    def aura_uptime(self) -> Dict[str, float]:
        """Mean uptime fraction of every aura gained at least once."""
        totals = _sum_counts(trial.aura_uptime for trial in self.trials)
        return {label: uptime / self.num_trials for label, uptime in totals.items()}

    def confidence_interval(self, confidence: float = DEFAULT_CONFIDENCE) -> Tuple[float, float]:
        """Student's t confidence interval of the mean DPS."""
        return confidence_interval(self.dps, confidence)


def confidence_interval(values: np.ndarray, confidence: float = DEFAULT_CONFIDENCE) -> Tuple[float, float]:
    mean = float(np.mean(values))
    if len(values) < 2 or np.all(values == values[0]):
        return mean, mean
    low, high = stats.t.interval(confidence, len(values) - 1, loc=mean, scale=stats.sem(values))
    return float(low), float(high)


class MonteCarloSimulator:
    """
    Monte Carlo simulator running independent trials of one scenario.

    Trial i always uses the random stream derived from (base_seed, i), so a
    run is reproducible whatever the strategy:
    - Standard: Runs every trial in this process
    - Parallel: Spreads batches of trials over worker processes
    """

    def __init__(self, scenario: ScenarioConfig, show_progress: bool = True):
        """
        Initialize the simulator with the scenario to simulate.

        Args:
            scenario: Character, encounter, rotation and simulation settings
            show_progress: Print a progress bar while trials run
        """
        self.scenario = scenario
        self.show_progress = show_progress

    def _progress(self, total, prefix):
        return ProgressBar(total, prefix=prefix, suffix='Complete') if self.show_progress else None

    def run_standard(self, num_trials: int, base_seed: int = 0) -> AggregateResult:
        """
        Run every trial in this process.

        Args:
            num_trials: Number of trials
            base_seed: Seed the trial streams are derived from

        Returns:
            AggregateResult: Merged trial results
        """
        log.info("Running %d trials in process (seed %d)", num_trials, base_seed)
        progress = self._progress(num_trials, 'Trials:')

        trials = []
        for index in range(num_trials):
            trials.append(run_trial(self.scenario, index, base_seed))
            if progress is not None:
                progress.update(current=index + 1)

        return AggregateResult.from_trials(trials)

    def run_parallel(self, num_trials: int, base_seed: int = 0, max_workers: Optional[int] = None) -> AggregateResult:
        """
        Run the trials over a pool of worker processes.

        Args:
            num_trials: Number of trials
            base_seed: Seed the trial streams are derived from
            max_workers: Number of worker processes, None for the CPU count

        Returns:
            AggregateResult: Merged trial results
        """
        workers = max_workers or mp.cpu_count()
        log.info("Running %d trials on %d worker processes (seed %d)", num_trials, workers, base_seed)

        batches = [
            list(range(start, min(start + PARALLEL_BATCH_SIZE, num_trials)))
            for start in range(0, num_trials, PARALLEL_BATCH_SIZE)
        ]
        progress = self._progress(num_trials, 'Trials:')

        aggregate = AggregateResult()
        completed = 0
        with ProcessPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(run_trial_batch, (self.scenario, batch, base_seed)): batch
                for batch in batches
            }

            # Process results as they complete
            for future in as_completed(futures):
                batch = futures[future]
                try:
                    trials = future.result()
                except SimulationError:
                    log.error("Trials %d-%d failed, aborting the run", batch[0], batch[-1])
                    raise
                aggregate = aggregate.merge(AggregateResult.from_trials(trials))
                completed += len(trials)
                if progress is not None:
                    progress.update(current=completed)

        return aggregate

    def run(self, num_trials: Optional[int] = None, method: Optional[str] = None, base_seed: Optional[int] = None) -> AggregateResult:
        """
        Run a Monte Carlo simulation using the specified method.

        Args:
            num_trials: Number of trials, defaults to the scenario's settings
            method: Simulation method ('standard', 'parallel', 'auto')
            base_seed: Seed the trial streams are derived from

        Returns:
            AggregateResult: Merged trial results
        """
        settings = self.scenario.simulation
        num_trials = settings.num_trials if num_trials is None else num_trials
        method = settings.method if method is None else method
        base_seed = settings.base_seed if base_seed is None else base_seed

        if num_trials <= 0:
            raise ConfigurationError("At least one trial is required")

        # Choose method automatically if 'auto'
        if method == 'auto':
            if mp.cpu_count() > 1 and num_trials >= 2 * PARALLEL_BATCH_SIZE:
                method = 'parallel'
            else:
                method = 'standard'

        if method == 'standard':
            return self.run_standard(num_trials, base_seed)
        elif method == 'parallel':
            return self.run_parallel(num_trials, base_seed, settings.max_workers)
        else:
            raise ConfigurationError(f"Unknown simulation method: {method}")


def analyze_results(results: AggregateResult, quantiles=None, confidence: float = DEFAULT_CONFIDENCE):
    """
    Analyze Monte Carlo simulation results and print statistics.

    Args:
        results: Merged trial results
        quantiles: List of quantiles to compute
        confidence: Confidence level of the interval of the mean DPS

    Returns:
        tuple: Mean DPS, standard deviation, and quantile values
    """
    if quantiles is None:
        quantiles = DEFAULT_QUANTILES

    dps = results.dps
    mean = results.mean_dps
    std = results.std_dps
    low, high = results.confidence_interval(confidence)

    print(f"Trials: {results.num_trials:,}")
    print(f"DPS: {mean:.2f} ± {std:.2f}")
    print(f"{confidence:.0%} CI of the mean: [{low:.2f}, {high:.2f}]")
    print(f"TPS: {results.mean_tps:.2f}")

    quantile_results = np.quantile(dps, q=quantiles)
    for i, q in enumerate(quantiles):
        percent = (1 - q) * 100
        print(f"{round(percent, 6):>8}%: {quantile_results[i]:.2f}")

    print("\nDamage per trial by action:")
    for label, damage in sorted(results.damage_by_action.items(), key=lambda item: -item[1]):
        print(f"  {label:<24} {damage:>12,.1f}")

    print("\nOutcomes:")
    total_rolls = results.resolver_calls
    for name, count in sorted(results.outcome_counts.items()):
        print(f"  {name:<8} {count / total_rolls:>7.2%}")

    print("\nAura uptime:")
    for label, uptime in sorted(results.aura_uptime.items()):
        print(f"  {label:<24} {uptime:>7.2%}")

    return mean, std, quantile_results

"""
Example script demonstrating a warrior rotation simulation.

This script loads a scenario (character, encounter, rotation), runs one
detailed trial, then estimates the DPS distribution with Monte Carlo trials
and plots the results.
"""

import logging

import matplotlib.pyplot as plt
import numpy as np

from montecarlo import (
    DEFAULT_QUANTILES,
    MonteCarloSimulator,
    analyze_results,
    build_trial,
)
from wowcore.common import ScenarioConfig, format_ms

MINS = 60 * 1000
SECS = 1000


def track_damage_over_time(sim, interval=10 * SECS):
    """
    Run a trial to its end, sampling the cumulative damage at fixed intervals.

    Args:
        sim: The simulation to run
        interval: Time interval for damage sampling in milliseconds

    Returns:
        tuple: Lists of timestamps (seconds), cumulative damage and DPS so far
    """
    timestamps = []
    total_damage = []
    dps = []

    while sim.current_time < sim.duration:
        sim.step(frame_delta=min(interval, sim.duration - sim.current_time))
        damage = sum(record.damage for record in sim.metrics.outcomes)
        secs = sim.current_time / 1000
        timestamps.append(secs)
        total_damage.append(damage)
        dps.append(damage / secs if secs > 0 else 0)

    return timestamps, total_damage, dps


def plot_dps_over_time(timestamps, dps, title="DPS over Time"):
    """
    Create a plot showing the running DPS of one trial.

    Args:
        timestamps: List of time points in seconds
        dps: DPS so far at each time point
        title: Title for the plot
    """
    plt.figure(figsize=(12, 6))

    plt.plot(timestamps, dps, "b-", label="DPS so far")

    # Add grid for better readability
    plt.grid(True, linestyle="--", alpha=0.7)

    plt.xlabel("Time (seconds)")
    plt.ylabel("DPS")
    plt.title(title)
    plt.legend()

    # Ensure y-axis starts at 0
    plt.ylim(bottom=0)

    plt.savefig("dps_over_time.png", dpi=300, bbox_inches="tight")
    plt.show()


def plot_dps_distribution(dps, quantiles=None, title="DPS Distribution"):
    """
    Create a histogram of the DPS of every Monte Carlo trial.

    Args:
        dps: DPS of every trial
        quantiles: Quantiles to mark on the plot
        title: Title for the plot
    """
    plt.figure(figsize=(12, 6))

    plt.hist(dps, bins=min(100, max(10, len(dps) // 20)), color="r", alpha=0.6, label="trials")
    plt.axvline(np.mean(dps), color="k", linestyle="-", label="mean")
    for q in quantiles or []:
        plt.axvline(np.quantile(dps, q), color="k", linestyle=":", alpha=0.5)

    plt.grid(True, linestyle="--", alpha=0.7)
    plt.xlabel("DPS")
    plt.ylabel("Trials")
    plt.title(title)
    plt.legend()

    plt.savefig("dps_distribution.png", dpi=300, bbox_inches="tight")
    plt.show()


def run_warrior_rotation(file_path: str, num_trials=None, simulation_method=None, track_time_dps=False, dps_interval=10 * SECS):
    """
    Run a warrior scenario simulation and analyze the results.

    Args:
        file_path: Path to the scenario JSON file
        num_trials: Number of Monte Carlo trials, defaults to the scenario's settings
        simulation_method: Method to use for simulation ('standard', 'parallel' or 'auto')
        track_time_dps: Whether to track and plot DPS over time for the first trial
        dps_interval: Time interval for DPS tracking in milliseconds

    Returns:
        tuple: Mean DPS, standard deviation, and quantile values
    """
    scenario = ScenarioConfig.from_json(file_path)

    # One detailed trial
    sim, warrior = build_trial(scenario, trial_index=0, base_seed=scenario.simulation.base_seed)
    print(f"Starting {warrior.rotation.name} simulation against {len(sim.targets)} target(s)...")

    if track_time_dps:
        timestamps, _, dps = track_damage_over_time(sim, interval=dps_interval)
        sim.finish()
        result = sim.result()
        plot_dps_over_time(timestamps, dps, title=f"{warrior.rotation.name} DPS over Time")
    else:
        result = sim.run()

    print(f"\nDamage summary after {format_ms(result.duration)}:")
    for label, count in sorted(result.casts.items()):
        damage = result.damage_by_action.get(label, 0.0)
        print(f"  {label:<24} {count:>4} casts {damage:>12,.1f} damage")

    print("\nCharacter:")
    scenario.character.print()

    print(f"\nTotal damage: {result.damage:,.1f} ({result.duration / 1000:.2f}s)")
    print(f"DPS: {result.dps:.2f}  TPS: {result.tps:.2f}  DTPS: {result.dtps:.2f}")
    print(f"Rage spent: {result.rage_spent:.0f}")

    # Run Monte Carlo simulation
    print("\nMonte-Carlo Simulation:")
    simulator = MonteCarloSimulator(scenario)
    results = simulator.run(num_trials, method=simulation_method)

    analysis = analyze_results(results, DEFAULT_QUANTILES)
    plot_dps_distribution(results.dps, quantiles=[0.05, 0.5, 0.95], title=f"{warrior.rotation.name} DPS Distribution")
    return analysis


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    run_warrior_rotation(
        file_path="rotations/fury_aoe.json",
        simulation_method="auto",
        track_time_dps=True,
        dps_interval=5 * SECS,
    )

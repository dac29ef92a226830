"""Metrics utilities for opportunistic routing simulation.

This module provides functions for saving and comparing batch simulation
metrics, including delivery ratio, transmission counts and link losses.
"""

import csv
import json
import os
from typing import Any, Callable, Dict, List, Optional

from exor_sim.core.enums import ForwardingPolicy
from exor_sim.core.simulator import ExORSimulator


def serializable_metrics(metrics: Dict[str, Any]) -> Dict[str, Any]:
    """Convert metrics to JSON-serializable types.

    Args:
        metrics: Dictionary of metrics.

    Returns:
        A copy with tuple keys and node ids turned into strings.
    """
    result: Dict[str, Any] = {}
    for key, value in metrics.items():
        if key == "link_delivery_ratio":
            # Convert tuple keys to strings
            result[key] = {f"{src}->{dst}": ratio for (src, dst), ratio in value.items()}
        elif key in ("node_stats", "destination_batch_map"):
            result[key] = {str(k): v if isinstance(v, dict) else str(v) for k, v in value.items()}
        elif key == "forward_list":
            result[key] = [str(node_id) for node_id in value]
        else:
            result[key] = value
    return result


def save_metrics_to_json(
    metrics: Dict[str, Any], filename: str = "results/metrics.json"
) -> None:
    """Save metrics to a JSON file.

    Args:
        metrics: Dictionary of metrics to save.
        filename: Output filename.
    """
    directory = os.path.dirname(filename)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with open(filename, "w") as f:
        json.dump(serializable_metrics(metrics), f, indent=2)


def save_metrics_to_csv(
    metrics_list: List[Dict[str, Any]],
    filename: str = "results/metrics_comparison.csv",
) -> None:
    """Save a comparison of metrics from different policies to a CSV file.

    Args:
        metrics_list: List of metrics dictionaries from different simulations.
        filename: Output filename.
    """
    directory = os.path.dirname(filename)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with open(filename, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(
            ["Policy", "Seed", "Delivery Ratio", "Transmissions", "Link Losses", "Rounds"]
        )
        for metrics in metrics_list:
            writer.writerow(
                [
                    metrics["policy"],
                    metrics["seed"],
                    metrics["delivery_ratio"],
                    metrics["transmissions"],
                    metrics["link_losses"],
                    metrics["rounds"],
                ]
            )


def compare_policies(
    simulator_creator: Callable[[ForwardingPolicy], ExORSimulator],
    policies: Optional[List[ForwardingPolicy]] = None,
    output_dir: Optional[str] = None,
) -> Dict[str, List[Any]]:
    """Run the same scenario under each forwarding policy and compare.

    Args:
        simulator_creator: Builds a simulator, with a batch already created,
            for a given policy.
        policies: Policies to compare (all of them if omitted).
        output_dir: Directory to save per-policy JSON and a CSV summary.

    Returns:
        Dictionary of metric comparisons.
    """
    policies = policies or list(ForwardingPolicy)

    metrics_list = []
    for policy in policies:
        simulator = simulator_creator(policy)
        metrics_list.append(simulator.run())

    if output_dir:
        save_metrics_to_csv(metrics_list, os.path.join(output_dir, "policy_comparison.csv"))
        for metrics in metrics_list:
            save_metrics_to_json(
                metrics, os.path.join(output_dir, f"{metrics['policy'].lower()}_metrics.json")
            )

    return {
        "policies": [m["policy"] for m in metrics_list],
        "delivery_ratio": [m["delivery_ratio"] for m in metrics_list],
        "transmissions": [m["transmissions"] for m in metrics_list],
        "rounds": [m["rounds"] for m in metrics_list],
        "metrics": metrics_list,
    }


def transmissions_per_delivery(metrics: Dict[str, Any]) -> float:
    """Average number of transmissions spent per delivered packet.

    Args:
        metrics: Metrics of one run.

    Returns:
        Transmissions divided by delivered packets, or infinity if nothing arrived.
    """
    delivered = len(metrics["delivered"])
    if delivered == 0:
        return float("inf")
    return metrics["transmissions"] / delivered

"""Visualization utilities for opportunistic routing simulation.

This module provides functions for visualizing the simulated mesh and for
comparing the results of different forwarding policies.
"""

import os
from typing import Any, Dict, List, Optional, Sequence, Tuple

import matplotlib.pyplot as plt
import networkx as nx
import numpy as np

from exor_sim.core.simulator import ExORSimulator


def save_network_visualization(
    simulator: ExORSimulator,
    filename: Optional[str] = None,
    forward_list: Sequence[Any] = (),
    figsize: Tuple[int, int] = (10, 8),
    block=True,
) -> None:
    """Save mesh topology visualization to a file.

    Args:
        simulator: ExORSimulator instance.
        filename: Output filename, or None to show it immediately.
        forward_list: Forwarders to highlight, highest priority first.
        figsize: Figure size as (width, height) in inches.
    """
    fig = plt.figure(figsize=figsize)

    graph = simulator.graph
    pos = nx.spring_layout(graph, seed=simulator.seed)

    forwarders = set(forward_list)
    colors = ["orange" if n in forwarders else "lightblue" for n in graph.nodes()]
    nx.draw_networkx_nodes(graph, pos, node_size=500, node_color=colors)

    nx.draw_networkx_edges(
        graph,
        pos,
        edge_color="gray",
        connectionstyle="arc3,rad=0.1",
        arrows=True,
        arrowsize=15,
    )

    labels = {n: n for n in graph.nodes()}
    for priority, node_id in enumerate(forward_list):
        labels[node_id] = f"{node_id}\n#{priority}"
    nx.draw_networkx_labels(graph, pos, labels=labels, font_size=12)

    edge_labels = {(u, v): f"{graph[u][v]['probability']:.2f}" for u, v in graph.edges()}
    nx.draw_networkx_edge_labels(
        graph,
        pos,
        edge_labels=edge_labels,
        font_size=9,
        label_pos=0.3,
        bbox=dict(facecolor="white", edgecolor="none", alpha=0.7),
    )

    plt.axis("off")
    plt.tight_layout()

    if filename:
        directory = os.path.dirname(filename)
        if directory:
            os.makedirs(directory, exist_ok=True)
        fig.savefig(filename)
        plt.close(fig)
    else:
        plt.show(block=block)
        if not block:
            plt.pause(0.001)


def plot_metrics(
    metrics_list: List[Dict[str, Any]],
    output_dir: Optional[str] = None,
    show=True,
) -> None:
    """Plot and save performance metrics for different forwarding policies.

    Args:
        metrics_list: List of metrics dictionaries from different simulations.
        output_dir: Directory to save output plots.
        show: Whether to display the figure.
    """
    policies = [metrics["policy"] for metrics in metrics_list]

    fig, axes = plt.subplots(1, 3, figsize=(12, 5))

    delivery = [m["delivery_ratio"] for m in metrics_list]
    transmissions = [m["transmissions"] for m in metrics_list]
    rounds = [m["rounds"] for m in metrics_list]

    x = np.arange(len(policies))

    axes[0].bar(x, delivery, width=0.4)
    axes[0].set_ylabel("Delivery Ratio")
    axes[0].set_title("Delivery Ratio Comparison")
    axes[0].set_ylim(0, 1)

    axes[1].bar(x, transmissions, width=0.4, color="orange")
    axes[1].set_ylabel("Transmissions")
    axes[1].set_title("Transmission Count Comparison")

    axes[2].bar(x, rounds, width=0.4, color="green")
    axes[2].set_ylabel("Flush Rounds")
    axes[2].set_title("Rounds Until Settled")

    for ax in axes:
        ax.set_xlabel("Forwarding Policy")
        ax.set_xticks(x)
        ax.set_xticklabels(policies)

    plt.tight_layout()

    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
        fig.savefig(os.path.join(output_dir, "policy_comparison.png"))
    if show:
        plt.show()
    plt.close(fig)

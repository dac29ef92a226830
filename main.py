#!/usr/bin/env python3
"""Run ExOR batch simulations from the command line."""

import argparse
import logging
import os

import simpy

from exor_sim.config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_MAX_ROUNDS,
    DEFAULT_SEED,
    DEFAULT_SETTLE_ROUNDS,
    SimulationConfig,
)
from exor_sim.core.enums import ForwardingPolicy
from exor_sim.core.simulator import ExORSimulator
from exor_sim.topologies import TOPOLOGIES
from exor_sim.utils.metrics import (
    compare_policies,
    save_metrics_to_json,
    transmissions_per_delivery,
)
from exor_sim.utils.visualization import plot_metrics, save_network_visualization


def simulator_creator(args):
    """Build a function that instantiates a simulator with a batch ready to run.

    Args:
        args: Parsed command line arguments.

    Returns:
        Function taking a forwarding policy and returning an ExORSimulator.
    """

    def instantiate_simulator(policy: ForwardingPolicy) -> ExORSimulator:
        config = SimulationConfig(
            seed=args.seed,
            policy=policy,
            batch_size=args.batch_size,
            max_rounds=args.max_rounds,
            settle_rounds=args.settle_rounds,
        )
        simulator = ExORSimulator(simpy.Environment(), config)
        source, destination = TOPOLOGIES[args.topology](simulator)
        simulator.create_batch(source, destination)
        return simulator

    return instantiate_simulator


def print_metrics(metrics):
    """Print a short summary of one run"""
    print(f"\n{metrics['policy']} Results:")
    print(f"  Forward list:    {metrics['forward_list']}")
    print(f"  Delivered:       {metrics['delivered']}")
    print(f"  Delivery ratio:  {metrics['delivery_ratio'] * 100:.1f}%")
    print(f"  Transmissions:   {metrics['transmissions']}")
    print(f"  Tx per delivery: {transmissions_per_delivery(metrics):.2f}")
    print(f"  Link losses:     {metrics['link_losses']}/{metrics['link_attempts']}")
    print(f"  Flush rounds:    {metrics['rounds']}")


def main():
    """Main function to run simulations"""
    parser = argparse.ArgumentParser(description="ExOR Opportunistic Routing Simulator")
    parser.add_argument(
        "--topology", choices=sorted(TOPOLOGIES), default="triangle", help="Mesh to simulate"
    )
    parser.add_argument("--batch-size", type=int, default=DEFAULT_BATCH_SIZE)
    parser.add_argument(
        "--policy",
        choices=[p.name.lower() for p in ForwardingPolicy],
        default=ForwardingPolicy.UNCONDITIONAL.name.lower(),
        help="Forwarding policy applied on flush",
    )
    parser.add_argument("--seed", type=int, default=DEFAULT_SEED)
    parser.add_argument("--max-rounds", type=int, default=DEFAULT_MAX_ROUNDS)
    parser.add_argument(
        "--settle-rounds",
        type=int,
        default=DEFAULT_SETTLE_ROUNDS,
        help="Stop after this many rounds without change (0 disables)",
    )
    parser.add_argument("--compare", action="store_true", help="Compare all policies")
    parser.add_argument("--visualize", action="store_true", help="Save plots")
    parser.add_argument("--output-dir", default="results")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )

    args = parser.parse_args()
    logging.basicConfig(
        level=args.log_level, format="%(asctime)s %(name)s %(levelname)s %(message)s"
    )

    os.makedirs(args.output_dir, exist_ok=True)
    create = simulator_creator(args)

    if args.compare:
        print("\n=== Comparing Forwarding Policies ===")
        results = compare_policies(create, output_dir=args.output_dir)
        metrics_list = results["metrics"]
        for metrics in metrics_list:
            print_metrics(metrics)
    else:
        policy = ForwardingPolicy.from_name(args.policy)
        print(f"\n=== Running {args.topology} topology with {policy.name} policy ===")
        metrics = create(policy).run()
        save_metrics_to_json(
            metrics, os.path.join(args.output_dir, f"{policy.name.lower()}_metrics.json")
        )
        print_metrics(metrics)
        metrics_list = [metrics]

    if args.visualize:
        simulator = create(ForwardingPolicy.UNCONDITIONAL)
        save_network_visualization(
            simulator,
            os.path.join(args.output_dir, "topology.png"),
            forward_list=simulator.batches[-1].forward_list,
        )
        plot_metrics(metrics_list, args.output_dir, show=False)

    print(f"\nSimulation complete. Results saved to '{args.output_dir}' directory.")


if __name__ == "__main__":
    main()

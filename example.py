#!/usr/bin/env python3
"""Example ExOR batch driven by hand through the node API.

This script builds the three-node demo mesh, sends one batch from the source,
flushes each forwarder once and prints what reached the destination.
"""

import simpy

from exor_sim.config import SimulationConfig
from exor_sim.core.simulator import ExORSimulator
from exor_sim.topologies import build_triangle


def main() -> None:
    """Send a batch, flush the forwarders once and report the result."""
    env = simpy.Environment()
    simulator = ExORSimulator(env, SimulationConfig(seed=7, batch_size=10))
    source_id, destination_id = build_triangle(simulator)

    batch = simulator.create_batch(source_id, destination_id)
    print(f"Forward list: {batch.forward_list}")

    source = simulator.nodes[source_id]
    for packet in batch.packets:
        source.send(packet)

    for node in simulator.forwarders(batch):
        sent = node.flush()
        print(f"Node {node.id} flushed {sent} packets")

    destination = simulator.nodes[destination_id]
    print(f"Destination received: {destination.received_seqs}")
    print(f"Destination batch map: {destination.batch_map}")


if __name__ == "__main__":
    main()

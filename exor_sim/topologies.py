"""Topology builders for ExOR simulations.

Each builder adds nodes and lossy links to a simulator and returns the
(source, destination) pair the scenario is meant for.
"""

import math
from typing import Hashable, Tuple

import networkx as nx

from exor_sim.core.simulator import ExORSimulator


def build_chain(
    simulator: ExORSimulator, length: int = 3, probability: float = 1.0
) -> Tuple[Hashable, Hashable]:
    """Build a one-way chain 0 -> 1 -> ... -> length-1.

    Args:
        simulator: Simulator to populate.
        length: Number of nodes in the chain.
        probability: Delivery probability of every link.

    Returns:
        The first and last node of the chain.
    """
    if length < 2:
        raise ValueError("A chain needs at least two nodes")
    for node_id in range(length):
        simulator.add_node(node_id)
    for node_id in range(length - 1):
        simulator.add_link(node_id, node_id + 1, probability)
    return 0, length - 1


def build_triangle(simulator: ExORSimulator) -> Tuple[Hashable, Hashable]:
    """Build the three-node demo mesh with a strong relay and a weak direct link.

    Returns:
        Source 0 and destination 2; node 1 is the relay.
    """
    for node_id in range(3):
        simulator.add_node(node_id)
    simulator.add_link(0, 1, 0.8)
    simulator.add_link(0, 2, 0.1)
    simulator.add_link(1, 0, 0.8)
    simulator.add_link(1, 2, 0.9)
    simulator.add_link(2, 1, 0.9)
    simulator.add_link(2, 0, 0.1)
    return 0, 2


def build_grid(
    simulator: ExORSimulator, size: int = 3, decay: float = 0.5
) -> Tuple[Hashable, Hashable]:
    """Build a square grid where delivery probability fades with distance.

    Every pair of nodes within two grid units is linked both ways with
    probability ``exp(-decay * (distance - 1))``, so direct neighbours always
    hear each other and farther nodes only sometimes overhear.

    Args:
        simulator: Simulator to populate.
        size: Number of nodes per side.
        decay: How fast delivery probability fades with distance.

    Returns:
        Opposite corners of the grid.
    """
    if size < 2:
        raise ValueError("A grid needs at least two nodes per side")
    grid = nx.grid_2d_graph(size, size)
    ids = {(row, col): row * size + col for row, col in grid.nodes()}
    for node_id in sorted(ids.values()):
        simulator.add_node(node_id)

    positions = sorted(ids)
    for i, (r1, c1) in enumerate(positions):
        for r2, c2 in positions[i + 1:]:
            distance = math.hypot(r1 - r2, c1 - c2)
            if distance > 2.0:
                continue
            probability = math.exp(-decay * (distance - 1.0))
            simulator.add_bidirectional_link(ids[(r1, c1)], ids[(r2, c2)], probability)
    return ids[(0, 0)], ids[(size - 1, size - 1)]


def build_random_mesh(
    simulator: ExORSimulator, num_nodes: int = 10, radius: float = 0.5
) -> Tuple[Hashable, Hashable]:
    """Build a random geometric mesh seeded from the simulator's run seed.

    Nodes within ``radius`` of each other are linked both ways with a
    probability that falls linearly to zero at the edge of the radius.

    Returns:
        The two nodes farthest apart in hop count from node 0's component.
    """
    graph = nx.random_geometric_graph(num_nodes, radius, seed=simulator.seed)
    for node_id in graph.nodes():
        simulator.add_node(node_id)

    pos = nx.get_node_attributes(graph, "pos")
    for u, v in graph.edges():
        distance = math.dist(pos[u], pos[v])
        probability = max(0.05, 1.0 - distance / radius)
        simulator.add_bidirectional_link(u, v, round(probability, 3))

    component = nx.node_connected_component(graph, 0)
    lengths = nx.single_source_shortest_path_length(graph.subgraph(component), 0)
    source = max(lengths, key=lambda n: (lengths[n], -n))
    lengths = nx.single_source_shortest_path_length(graph.subgraph(component), source)
    destination = max(lengths, key=lambda n: (lengths[n], -n))
    if source == destination:
        raise ValueError("Random mesh is disconnected around node 0; try a larger radius")
    return source, destination


TOPOLOGIES = {
    "chain": build_chain,
    "triangle": build_triangle,
    "grid": build_grid,
    "random": build_random_mesh,
}

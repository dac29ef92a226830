"""ExOR simulator class for opportunistic routing simulation.

This module defines the ExORSimulator class, which builds the mesh, creates
batches and drives source transmissions and flush rounds on a SimPy clock.
"""

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, Hashable, List, Optional, Sequence, Tuple

import networkx as nx
import numpy as np
import simpy

from exor_sim.config import SimulationConfig
from exor_sim.core.link import Link
from exor_sim.core.node import Node
from exor_sim.core.packet import Batch, ExORPacket

logger = logging.getLogger(__name__)


def _etx_weight(u: Hashable, v: Hashable, data: Dict[str, Any]) -> Optional[float]:
    # Returning None hides links that can never deliver.
    if data["probability"] <= 0.0:
        return None
    return data["etx"]


class ExORSimulator:
    """Opportunistic routing simulation environment.

    Attributes:
        env: SimPy environment.
        config: Simulation parameters.
        seed: Seed of the shared generator for the current run.
        rng: Random generator shared by every link trial.
        graph: NetworkX directed graph mirroring the links.
        nodes: Node objects keyed by node ID.
        links: Link objects keyed by (source, target) tuple.
        batches: Batches created so far.
        rounds_run: Flush rounds completed in the last run.
        metrics: Performance metrics for the last run.
    """

    def __init__(
        self,
        env: simpy.Environment,
        config: Optional[SimulationConfig] = None,
    ):
        """Initialize the simulator.

        Args:
            env: SimPy environment.
            config: Simulation parameters (defaults if omitted).
        """
        self.env = env
        self.config = config or SimulationConfig()
        self.seed = self.config.seed
        self.rng = np.random.default_rng(self.seed)
        self.graph = nx.DiGraph()
        self.nodes: Dict[Hashable, Node] = {}
        self.links: Dict[Tuple[Hashable, Hashable], Link] = {}
        self.batches: List[Batch] = []
        self.rounds_run = 0
        self.link_attempts: Dict[Tuple[Hashable, Hashable], int] = defaultdict(int)
        self.link_deliveries: Dict[Tuple[Hashable, Hashable], int] = defaultdict(int)
        self.metrics: Dict[str, Any] = {}

        self.hooks: Dict[str, List[Callable[..., Any]]] = {
            "packet_transmitted": [],  # a node broadcasts a packet
            "packet_delivered": [],  # a link trial succeeds
            "packet_lost": [],  # a link trial fails
            "flush_round": [],  # every forwarder has flushed once
            "sim_end": [],  # the simulation ends
        }
        self.register_hook("packet_delivered", self._count_delivery)
        self.register_hook("packet_lost", self._count_loss)

    def add_node(self, node_id: Hashable) -> Node:
        """Add a node to the mesh.

        Args:
            node_id: Unique identifier for the node.

        Returns:
            The created Node object.
        """
        if node_id in self.nodes:
            raise ValueError(f"Node {node_id} already exists")
        node = Node(self.env, node_id, self.rng, self.config.policy, hooks=self.call_hooks)
        self.nodes[node_id] = node
        self.graph.add_node(node_id)
        return node

    def add_link(self, source: Hashable, target: Hashable, probability: float) -> Link:
        """Add a DIRECTED lossy link between nodes.

        Args:
            source: Source node ID.
            target: Target node ID.
            probability: Delivery probability in [0, 1].

        Returns:
            The created Link object.
        """
        if source not in self.nodes or target not in self.nodes:
            raise ValueError(f"Nodes {source} and/or {target} do not exist")

        link = self.nodes[source].add_link(self.nodes[target], probability)
        self.links[(source, target)] = link
        self.graph.add_edge(source, target, probability=link.probability, etx=link.etx)
        return link

    def add_bidirectional_link(
        self, source: Hashable, target: Hashable, probability: float
    ) -> Tuple[Link, Link]:
        """Add links in both directions with the same delivery probability.

        Returns:
            Tuple of created Link objects.
        """
        return (
            self.add_link(source, target, probability),
            self.add_link(target, source, probability),
        )

    def compute_forward_list(self, source: Hashable, destination: Hashable) -> List[Hashable]:
        """Pick and order the candidate forwarders for a source-destination pair.

        Candidates are the nodes reachable from the source that can still reach
        the destination, ordered by ETX distance to the destination. The
        destination itself comes first, so a holder closer to the destination
        always outranks one further upstream.

        Args:
            source: Source node ID.
            destination: Destination node ID.

        Returns:
            Node IDs of the forwarders, highest priority first.
        """
        if source not in self.nodes or destination not in self.nodes:
            raise ValueError(f"Nodes {source} and/or {destination} do not exist")
        if source == destination:
            raise ValueError("Source and destination must differ")

        from_source = nx.single_source_dijkstra_path_length(
            self.graph, source, weight=_etx_weight
        )
        if destination not in from_source:
            raise ValueError(f"Destination {destination} is unreachable from {source}")
        to_destination = nx.single_source_dijkstra_path_length(
            self.graph.reverse(copy=False), destination, weight=_etx_weight
        )

        candidates = [
            node_id
            for node_id in from_source
            if node_id not in (source, destination) and node_id in to_destination
        ]
        candidates.sort(key=lambda node_id: (to_destination[node_id], str(node_id)))
        return [destination] + candidates

    def create_batch(
        self,
        source: Hashable,
        destination: Hashable,
        forward_list: Optional[Sequence[Hashable]] = None,
        batch_size: Optional[int] = None,
        payload: Optional[bytes] = None,
    ) -> Batch:
        """Create a new batch.

        Args:
            source: Source node ID.
            destination: Destination node ID.
            forward_list: Forwarders, highest priority first. Computed from
                the topology when omitted.
            batch_size: Number of packets (config default when omitted).
            payload: Payload of every packet (config default when omitted).

        Returns:
            The created Batch object.
        """
        if source not in self.nodes or destination not in self.nodes:
            raise ValueError(f"Nodes {source} and/or {destination} do not exist")
        if forward_list is None:
            forward_list = self.compute_forward_list(source, destination)
        unknown = [node_id for node_id in forward_list if node_id not in self.nodes]
        if unknown:
            raise ValueError(f"Forward list names unknown nodes: {unknown}")

        batch = Batch.create(
            batch_id=len(self.batches),
            source=source,
            destination=destination,
            forward_list=forward_list,
            batch_size=batch_size if batch_size is not None else self.config.batch_size,
            payload=payload if payload is not None else self.config.payload,
        )
        self.batches.append(batch)
        return batch

    def forwarders(self, batch: Batch) -> List[Node]:
        """Nodes that flush for a batch, in forward-list order."""
        return [
            self.nodes[node_id]
            for node_id in batch.forward_list
            if node_id not in (batch.source, batch.destination)
        ]

    def process_batch(self, batch: Batch) -> simpy.events.Process:
        """Start the SimPy process that disseminates a batch.

        The source transmits each packet once, spaced by the send interval.
        Then every forwarder flushes once per round until the round limit is
        reached or the buffers and batch maps stop changing.

        Args:
            batch: The batch to disseminate.

        Returns:
            SimPy process for the batch.
        """

        def batch_dissemination(batch: Batch):
            source = self.nodes[batch.source]
            for packet in batch.packets:
                source.send(packet)
                yield self.env.timeout(self.config.send_interval)

            forwarders = self.forwarders(batch)
            participants = [self.nodes[node_id] for node_id in batch.forward_list]
            previous = [node.state_fingerprint() for node in participants]
            unchanged = 0

            for round_num in range(1, self.config.max_rounds + 1):
                yield self.env.timeout(self.config.flush_interval)
                sent = sum(node.flush() for node in forwarders)
                self.rounds_run = round_num
                self.call_hooks("flush_round", round_num, sent, self.env.now)

                current = [node.state_fingerprint() for node in participants]
                unchanged = unchanged + 1 if current == previous else 0
                previous = current
                if self.config.settle_rounds and unchanged >= self.config.settle_rounds:
                    logger.info(
                        "Batch %d settled after %d rounds", batch.batch_id, round_num
                    )
                    break

        return self.env.process(batch_dissemination(batch))

    def run(self, batch: Optional[Batch] = None) -> Dict[str, Any]:
        """Run the simulation for one batch until it finishes.

        Args:
            batch: The batch to disseminate (the most recent one if omitted).

        Returns:
            Dictionary of calculated metrics.
        """
        if batch is None:
            if not self.batches:
                raise ValueError("No batch to run; call create_batch first")
            batch = self.batches[-1]

        self.clear_counters()
        process = self.process_batch(batch)
        self.env.run(until=process)

        self.calculate_metrics(batch)
        logger.info(
            "Batch %d: %d/%d packets delivered in %d rounds",
            batch.batch_id,
            len(self.metrics["delivered"]),
            len(batch),
            self.rounds_run,
        )
        self.call_hooks("sim_end", self.metrics)
        return self.metrics

    def calculate_metrics(self, batch: Batch) -> Dict[str, Any]:
        """Calculate performance metrics for a batch.

        Args:
            batch: The batch to report on.

        Returns:
            Dictionary of calculated metrics.
        """
        destination = self.nodes[batch.destination]
        delivered = sorted(
            packet.seq for packet in destination.packets if packet.batch_id == batch.batch_id
        )

        attempts = sum(self.link_attempts.values())
        deliveries = sum(self.link_deliveries.values())
        link_delivery_ratio = {
            pair: self.link_deliveries[pair] / count
            for pair, count in sorted(self.link_attempts.items(), key=lambda x: str(x[0]))
            if count > 0
        }
        node_stats = {
            node_id: {
                "buffered": len(node.packets),
                "transmissions": node.transmissions,
                "transmission_rate": node.transmission_rate,
            }
            for node_id, node in self.nodes.items()
        }

        self.metrics = {
            "policy": self.config.policy.name,
            "seed": self.seed,
            "batch_id": batch.batch_id,
            "batch_size": len(batch),
            "forward_list": list(batch.forward_list),
            "delivered": delivered,
            "delivery_ratio": len(delivered) / len(batch),
            "transmissions": sum(node.transmissions for node in self.nodes.values()),
            "link_attempts": attempts,
            "link_losses": attempts - deliveries,
            "rounds": self.rounds_run,
            "duration": self.env.now,
            "link_delivery_ratio": link_delivery_ratio,
            "node_stats": node_stats,
            "destination_batch_map": dict(sorted(destination.batch_map.items())),
        }
        return self.metrics

    def reset(self, seed: Optional[int] = None) -> None:
        """Prepare for an independent run on the same topology.

        Args:
            seed: New seed for the shared generator (config seed if omitted).
        """
        self.seed = seed if seed is not None else self.config.seed
        self.env = simpy.Environment()
        self.rng = np.random.default_rng(self.seed)
        for node in self.nodes.values():
            node.env = self.env
            node.rng = self.rng
            node.reset()
        self.clear_counters()
        self.metrics = {}

    def clear_counters(self) -> None:
        """Zero the per-run transmission, link and round counters."""
        for node in self.nodes.values():
            node.transmissions = 0
        self.rounds_run = 0
        self.link_attempts.clear()
        self.link_deliveries.clear()

    def _count_delivery(self, sender: Node, receiver: Node, packet: ExORPacket) -> None:
        self.link_attempts[(sender.id, receiver.id)] += 1
        self.link_deliveries[(sender.id, receiver.id)] += 1

    def _count_loss(self, sender: Node, receiver: Node, packet: ExORPacket) -> None:
        self.link_attempts[(sender.id, receiver.id)] += 1

    def register_hook(self, event_type: str, callback: Callable[..., Any]) -> None:
        """Register a callback function for a specific event type.

        Args:
            event_type: The type of event to register for.
            callback: The function to call when the event occurs.
        """
        if event_type not in self.hooks:
            raise ValueError(f"Unknown hook type: {event_type}")
        self.hooks[event_type].append(callback)

    def call_hooks(self, event_type: str, *args: Any, **kwargs: Any) -> None:
        """Call all registered callbacks for the given event type.

        Args:
            event_type: The type of event that occurred.
            *args, **kwargs: Arguments to pass to the callback functions.
        """
        if event_type in self.hooks:
            for callback in self.hooks[event_type]:
                callback(*args, **kwargs)

"""Node class for opportunistic routing simulation.

This module defines the Node class, which represents a wireless mesh node
that may overhear, buffer and forward the packets of an ExOR batch.
"""

import logging
from typing import Any, Callable, Dict, Hashable, List, Optional, Tuple

import numpy as np
import simpy

from exor_sim.core.enums import ForwardingPolicy
from exor_sim.core.link import Link
from exor_sim.core.packet import ExORPacket, forward_priority

logger = logging.getLogger(__name__)

# Weight given to the previous rate estimate.
RATE_SMOOTHING = 0.9


class Node:
    """Represents a mesh node taking part in opportunistic forwarding.

    Attributes:
        env: SimPy environment whose clock timestamps arrivals.
        id: Unique identifier for the node.
        rng: Random generator shared by all link trials.
        policy: Forwarding policy applied on flush.
        links: Outgoing links.
        packets: Distinct packets received for the current batch, in arrival order.
        batch_id: Batch the buffered state belongs to.
        forward_list: Forwarder priority list learned from the last packet.
        batch_map: Best known holder of each packet, keyed by sequence number.
        last_packet_num: Sequence number of the last rate sample.
        last_packet_timestamp: Arrival time of the last rate sample.
        transmission_rate: Smoothed estimate of the sender's packet rate.
        transmissions: Number of packets this node has transmitted.
    """

    def __init__(
        self,
        env: simpy.Environment,
        node_id: Hashable,
        rng: np.random.Generator,
        policy: ForwardingPolicy = ForwardingPolicy.UNCONDITIONAL,
        hooks: Optional[Callable[..., None]] = None,
    ) -> None:
        """Initialize a mesh node.

        Args:
            env: SimPy environment.
            node_id: Unique identifier for the node.
            rng: Random generator used for every link trial.
            policy: Forwarding policy applied on flush.
            hooks: Callback invoked as ``hooks(event_type, *args)`` on
                transmissions, deliveries and losses.
        """
        self.env = env
        self.id = node_id
        self.rng = rng
        self.policy = policy
        self.hooks = hooks
        self.links: List[Link] = []
        self.transmissions = 0
        self.reset()

    def reset(self) -> None:
        """Clear all per-batch state, keeping the links and transmission count."""
        self.packets: List[ExORPacket] = []
        self.batch_id: Optional[int] = None
        self.forward_list: List[Hashable] = []
        self.batch_map: Dict[int, Hashable] = {}
        self.last_packet_num = -1
        self.last_packet_timestamp = 0.0
        self.transmission_rate = 0.0

    def add_link(self, node: "Node", probability: float) -> Link:
        """Add an outgoing link from this node.

        Args:
            node: The destination node for the link.
            probability: Delivery probability of the link.

        Returns:
            The new link.
        """
        if node is self or node.id == self.id:
            raise ValueError(f"Node {self.id} cannot link to itself.")
        if any(link.target.id == node.id for link in self.links):
            raise ValueError(f"Node {self.id} already has a link to {node.id}.")
        link = Link(node, probability)
        self.links.append(link)
        return link

    @property
    def received_seqs(self) -> List[int]:
        """Sequence numbers of the buffered packets, in arrival order."""
        return [packet.seq for packet in self.packets]

    def has_packet(self, seq: int) -> bool:
        return any(packet.seq == seq for packet in self.packets)

    def priority(self, node_id: Optional[Hashable]) -> float:
        """Priority of a node in this node's forward list (lower is better)."""
        return forward_priority(self.forward_list, node_id)

    def send(self, packet: ExORPacket) -> List[Hashable]:
        """Broadcast a packet over every outgoing link.

        Each link is tried independently, so a single transmission may reach
        any subset of the neighbours. Every receiver gets its own copy.

        Args:
            packet: The packet to transmit.

        Returns:
            Ids of the neighbours that received the packet.
        """
        self.transmissions += 1
        self._call_hooks("packet_transmitted", self, packet)

        delivered = []
        for link in self.links:
            if link.attempt_delivery(self.rng, packet.payload):
                self._call_hooks("packet_delivered", self, link.target, packet)
                link.target.receive(packet.copy_with_batch_map(packet.batch_map))
                delivered.append(link.target.id)
            else:
                self._call_hooks("packet_lost", self, link.target, packet)
        logger.debug("Node %s sent seq %d, reached %s", self.id, packet.seq, delivered)
        return delivered

    def receive(self, packet: ExORPacket) -> bool:
        """Handle a packet overheard on one of the incoming links.

        Nodes outside the packet's forward list ignore it. Otherwise the packet
        is buffered unless already held, the forward list is adopted, the
        packet's batch map is merged into this node's own, and the rate
        estimate is updated.

        Args:
            packet: The packet that has arrived.

        Returns:
            True if the node takes part in the packet's batch, False otherwise.
        """
        if self.id not in packet.forward_list:
            return False

        if self.batch_id is not None and packet.batch_id != self.batch_id:
            logger.debug("Node %s switching from batch %s to %s", self.id, self.batch_id, packet.batch_id)
            self.reset()
        self.batch_id = packet.batch_id

        was_empty = not self.packets
        if not self.has_packet(packet.seq):
            self.packets.append(packet)

        self.forward_list = list(packet.forward_list)
        self.merge_batch_map(packet.batch_map)
        # This node now holds the packet itself.
        self.record_holder(packet.seq, self.id)

        self._update_rate(packet.seq, was_empty)
        return True

    def merge_batch_map(self, batch_map: Dict[int, Hashable]) -> None:
        """Merge another node's batch map into this node's own.

        Args:
            batch_map: Candidate best holders keyed by sequence number.
        """
        for seq, candidate in batch_map.items():
            self.record_holder(seq, candidate)

    def record_holder(self, seq: int, candidate: Hashable) -> bool:
        """Record a candidate holder of a packet if it beats the known one.

        Candidates outside the forward list are never recorded, and a
        recorded candidate is only replaced by one with a strictly lower
        forward-list index.

        Returns:
            True if the batch map changed.
        """
        candidate_priority = self.priority(candidate)
        if candidate_priority == float("inf"):
            return False
        if candidate_priority < self.priority(self.batch_map.get(seq)):
            self.batch_map[seq] = candidate
            return True
        return False

    def _update_rate(self, seq: int, was_empty: bool) -> None:
        now = self.env.now
        if was_empty:
            self.last_packet_num = seq
            self.last_packet_timestamp = now
            return

        if seq <= self.last_packet_num:
            return
        elapsed_time = now - self.last_packet_timestamp
        if elapsed_time <= 0:
            return

        elapsed_packets = seq - self.last_packet_num
        self.transmission_rate = (
            RATE_SMOOTHING * self.transmission_rate
            + (1 - RATE_SMOOTHING) * (elapsed_packets / elapsed_time)
        )
        self.last_packet_num = seq
        self.last_packet_timestamp = now

    def should_forward(self, seq: int) -> bool:
        """Whether this node's policy lets it resend the given packet.

        Args:
            seq: Sequence number of a buffered packet.

        Returns:
            True if the packet should be transmitted on flush.
        """
        if self.policy is ForwardingPolicy.UNCONDITIONAL:
            return True
        holder = self.batch_map.get(seq)
        return holder is None or holder == self.id

    def flush(self) -> int:
        """Resend buffered packets with this node's current batch map attached.

        Returns:
            Number of packets transmitted.
        """
        sent = 0
        for packet in list(self.packets):
            if not self.should_forward(packet.seq):
                continue
            self.send(packet.copy_with_batch_map(self.batch_map))
            sent += 1
        logger.debug("Node %s flushed %d of %d buffered packets", self.id, sent, len(self.packets))
        return sent

    def state_fingerprint(self) -> Tuple[Any, ...]:
        """Summarize the buffer and batch map to detect changes between rounds."""
        return (
            tuple(self.received_seqs),
            tuple(sorted(self.batch_map.items(), key=lambda item: item[0])),
        )

    def _call_hooks(self, event_type: str, *args: Any) -> None:
        if self.hooks is not None:
            self.hooks(event_type, *args)

    def __repr__(self) -> str:
        """Return string representation of the node.

        Returns:
            String representation of the node.
        """
        return f"Node({self.id})"

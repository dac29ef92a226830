"""Packet and batch classes for opportunistic routing simulation.

This module defines ExORPacket, one fragment of a batch travelling through
the simulated mesh, and Batch, the set of packets a source disseminates.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, Hashable, List, Optional, Sequence, Tuple

NodeId = Hashable


def forward_priority(forward_list: Sequence[NodeId], node_id: Optional[NodeId]) -> float:
    """Return a node's priority in a forward list (lower is better).

    Nodes absent from the list are never preferred and get an infinite index.
    """
    try:
        return forward_list.index(node_id)
    except ValueError:
        return float("inf")


@dataclass
class ExORPacket:
    """Represents one packet of an ExOR batch.

    Attributes:
        batch_id: Identifier of the batch the packet belongs to.
        seq: Sequence number of the packet within its batch.
        batch_size: Number of packets in the batch.
        frag_num: Fragment index, reserved for payload splitting.
        frag_size: Fragment size, reserved for payload splitting.
        forward_list: Node ids of candidate forwarders, highest priority first.
        batch_map: Sender's view of the best known holder of each packet.
        payload: Opaque payload bytes.
    """

    batch_id: int
    seq: int
    batch_size: int
    frag_num: int = 0
    frag_size: int = 0
    forward_list: List[NodeId] = field(default_factory=list)
    batch_map: Dict[int, NodeId] = field(default_factory=dict)
    payload: bytes = b""

    @property
    def key(self) -> Tuple[int, int]:
        return self.batch_id, self.seq

    def copy_with_batch_map(self, batch_map: Dict[int, NodeId]) -> "ExORPacket":
        """Return a copy of the packet carrying a snapshot of the given batch map.

        Args:
            batch_map: The batch map to attach.

        Returns:
            A new packet sharing the payload but owning its own batch map.
        """
        return replace(
            self,
            forward_list=list(self.forward_list),
            batch_map=dict(batch_map),
        )

    def __repr__(self) -> str:
        return f"ExORPacket(batch={self.batch_id}, seq={self.seq}/{self.batch_size})"


@dataclass
class Batch:
    """A fixed set of packets sent from one source to one destination.

    Attributes:
        batch_id: Identifier of the batch.
        source: Node id of the source.
        destination: Node id of the destination.
        forward_list: Candidate forwarders, highest priority first.
        packets: One packet per sequence number.
    """

    batch_id: int
    source: NodeId
    destination: NodeId
    forward_list: List[NodeId]
    packets: List[ExORPacket] = field(default_factory=list)

    @classmethod
    def create(
        cls,
        batch_id: int,
        source: NodeId,
        destination: NodeId,
        forward_list: Sequence[NodeId],
        batch_size: int,
        payload: bytes = b"",
    ) -> "Batch":
        """Build a batch whose initial batch map names the source for every packet.

        Args:
            batch_id: Identifier of the batch.
            source: Node id of the source.
            destination: Node id of the destination.
            forward_list: Candidate forwarders, highest priority first.
            batch_size: Number of packets to create.
            payload: Payload carried by every packet.

        Returns:
            The new batch.

        Raises:
            ValueError: If the batch size is not positive, the forward list is
                empty or repeats a node, or the destination is not a forwarder.
        """
        if batch_size <= 0:
            raise ValueError(f"Batch size must be positive, got {batch_size}")
        forward_list = list(forward_list)
        if not forward_list:
            raise ValueError("Forward list must not be empty")
        if len(set(forward_list)) != len(forward_list):
            raise ValueError(f"Forward list contains duplicates: {forward_list}")
        if destination not in forward_list:
            raise ValueError(f"Destination {destination} is not in the forward list")

        batch_map = {seq: source for seq in range(batch_size)}
        packets = [
            ExORPacket(
                batch_id=batch_id,
                seq=seq,
                batch_size=batch_size,
                forward_list=list(forward_list),
                batch_map=dict(batch_map),
                payload=payload,
            )
            for seq in range(batch_size)
        ]
        return cls(batch_id, source, destination, forward_list, packets)

    def __len__(self) -> int:
        return len(self.packets)

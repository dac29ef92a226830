"""Link class for opportunistic routing simulation.

This module defines the Link class, which represents a lossy one-way
channel between two nodes in the simulated mesh.
"""

from typing import Optional, TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from exor_sim.core.node import Node


class Link:
    """Represents a directed, lossy link to a neighbouring node.

    Every delivery attempt is an independent Bernoulli trial; the link keeps
    no state between attempts.

    Attributes:
        target: Destination node (not owned by the link).
        probability: Delivery probability in [0, 1].
    """

    __slots__ = ("_target", "_probability")

    def __init__(self, target: "Node", probability: float) -> None:
        """Initialize a link.

        Args:
            target: Destination node.
            probability: Delivery probability in [0, 1].

        Raises:
            ValueError: If the probability lies outside [0, 1].
        """
        probability = float(probability)
        if not 0.0 <= probability <= 1.0:
            raise ValueError(f"Link probability must be in [0, 1], got {probability}")
        self._target = target
        self._probability = probability

    @property
    def target(self) -> "Node":
        return self._target

    @property
    def probability(self) -> float:
        return self._probability

    @property
    def etx(self) -> float:
        """Expected transmission count for one successful delivery."""
        if self._probability == 0.0:
            return float("inf")
        return 1.0 / self._probability

    def attempt_delivery(
        self, rng: np.random.Generator, payload: Optional[bytes] = None
    ) -> bool:
        """Decide whether one transmission over this link gets through.

        Args:
            rng: Shared random generator the draw is taken from.
            payload: Bytes being transmitted. The channel does not inspect them.

        Returns:
            True if the packet is delivered, False if it is lost.
        """
        return rng.random() < self._probability

    def __repr__(self) -> str:
        """Return string representation of the link.

        Returns:
            String representation of the link.
        """
        return f"Link(->{self._target.id}, p={self._probability:.2f})"

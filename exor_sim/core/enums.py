"""Enumerations for opportunistic routing simulation.

This module defines enumerations used throughout the simulator.
"""

from enum import Enum


class ForwardingPolicy(Enum):
    """Enum for the rule a forwarder applies when flushing its buffer.

    Attributes:
        UNCONDITIONAL: Resend every buffered packet on each flush.
        BEST_HOLDER: Resend a packet only if the batch map has no entry for it
            or names the flushing node as the best known holder.
    """

    UNCONDITIONAL = 1
    BEST_HOLDER = 2

    @classmethod
    def from_name(cls, name: str) -> "ForwardingPolicy":
        """Look up a policy by case-insensitive name.

        Raises:
            ValueError: If no policy has that name.
        """
        try:
            return cls[name.strip().upper().replace("-", "_")]
        except KeyError:
            choices = ", ".join(p.name.lower() for p in cls)
            raise ValueError(f"Unknown forwarding policy '{name}' (choose from {choices})") from None

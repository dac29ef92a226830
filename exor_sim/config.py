"""Configuration for ExOR batch simulations."""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict

from exor_sim.core.enums import ForwardingPolicy

DEFAULT_SEED = 42
DEFAULT_BATCH_SIZE = 10
DEFAULT_MAX_ROUNDS = 20
DEFAULT_SETTLE_ROUNDS = 3
DEFAULT_SEND_INTERVAL = 0.01  # seconds between source transmissions
DEFAULT_FLUSH_INTERVAL = 0.1  # seconds between flush rounds
DEFAULT_PAYLOAD = b"hello"


@dataclass
class SimulationConfig:
    """Parameters of a single batch simulation.

    Attributes:
        seed: Seed of the generator shared by every link trial.
        policy: Forwarding policy applied by every node on flush.
        batch_size: Number of packets in the batch.
        max_rounds: Upper bound on flush rounds.
        settle_rounds: Consecutive unchanged rounds that end the run early.
            Zero disables early stopping.
        send_interval: Simulated time between source transmissions.
        flush_interval: Simulated time between flush rounds.
        payload: Payload carried by every packet.
    """

    seed: int = DEFAULT_SEED
    policy: ForwardingPolicy = ForwardingPolicy.UNCONDITIONAL
    batch_size: int = DEFAULT_BATCH_SIZE
    max_rounds: int = DEFAULT_MAX_ROUNDS
    settle_rounds: int = DEFAULT_SETTLE_ROUNDS
    send_interval: float = DEFAULT_SEND_INTERVAL
    flush_interval: float = DEFAULT_FLUSH_INTERVAL
    payload: bytes = field(default=DEFAULT_PAYLOAD, repr=False)

    def __post_init__(self):
        if isinstance(self.policy, str):
            self.policy = ForwardingPolicy.from_name(self.policy)
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        if self.max_rounds < 0:
            raise ValueError(f"max_rounds must be non-negative, got {self.max_rounds}")
        if self.settle_rounds < 0:
            raise ValueError(f"settle_rounds must be non-negative, got {self.settle_rounds}")
        if self.send_interval <= 0 or self.flush_interval <= 0:
            raise ValueError("send_interval and flush_interval must be positive")

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-friendly view of the configuration."""
        data = asdict(self)
        data["policy"] = self.policy.name
        data["payload"] = self.payload.decode("utf-8", errors="replace")
        return data

import os
from dataclasses import dataclass, replace
from typing import Optional

from .errors import ConfigError

DEFAULT_QUEUE_DIR = "workload_dir/orphanqueue"


@dataclass(frozen=True)
class WorkloadConfig:
    # Number of times to open and close the queue.
    restarts: int = 5
    # Number of times per restart to read from the queue.
    reads: int = 20
    # Number of times to write to the queue, in parallel.
    writes: int = 5
    # Probability of not dequeueing an item after peeking it.
    probability: float = 0.25
    queue_dir: str = DEFAULT_QUEUE_DIR
    seed: Optional[int] = None

    @staticmethod
    def from_env() -> "WorkloadConfig":
        def _i(name: str, default: int) -> int:
            v = os.environ.get(name)
            if v is None:
                return default
            try:
                return int(v.strip())
            except ValueError:
                return default

        def _f(name: str, default: float) -> float:
            v = os.environ.get(name)
            if v is None:
                return default
            try:
                return float(v.strip())
            except ValueError:
                return default

        base = WorkloadConfig()
        seed_env = os.environ.get("ORPHAN_SEED")
        seed = None
        if seed_env is not None:
            try:
                seed = int(seed_env.strip())
            except ValueError:
                seed = None
        return WorkloadConfig(
            restarts=_i("ORPHAN_RESTARTS", base.restarts),
            reads=_i("ORPHAN_READS", base.reads),
            writes=_i("ORPHAN_WRITES", base.writes),
            probability=_f("ORPHAN_PROBABILITY", base.probability),
            queue_dir=os.environ.get("ORPHAN_QUEUE_DIR") or base.queue_dir,
            seed=seed,
        )

    def with_overrides(self, **kw) -> "WorkloadConfig":
        return replace(self, **{k: v for k, v in kw.items() if v is not None})

    def validate(self) -> "WorkloadConfig":
        for name in ("restarts", "reads", "writes"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must be >= 0 (got {getattr(self, name)})")
        if not 0.0 <= self.probability <= 1.0:
            raise ConfigError(f"probability must be in [0, 1] (got {self.probability})")
        if not self.queue_dir:
            raise ConfigError("queue_dir must not be empty")
        return self


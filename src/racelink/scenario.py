from __future__ import annotations

import enum
import math
import os
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence


class Verbosity(enum.IntEnum):
    """The output verbosity requested from the driver."""

    SILENT = 0
    MINIMAL = 1
    STANDARD = 2
    DEBUG = 3


@dataclass
class Scenario:
    """
    Racing scenario settings, inspired by irace's scenario file.

    The first group of fields is forwarded to the external driver in the
    `start` message. The second group only controls the host side of the
    bridge: how evaluations are dispatched and how faults are reported.

    It does NOT hold the parameter space or instances themselves; those are
    handed to the session separately.
    """

    max_experiments: int
    """
    The upper bound of experiments (configuration × instance × seed) the
    driver may request (tuning budget).
    """

    elitist: bool = True
    """Whether the driver should use elitist racing."""

    deterministic: bool = False
    """
    Whether the target algorithm is deterministic. A deterministic target is
    evaluated at most once per instance.
    """

    n_jobs: int = 1
    """
    Number of experiments the driver may request at once, and the number of
    workers used to evaluate them.
    - 1: Sequential execution (default).
    - -1: Use all available CPU cores.
    - >1: Use exact number of workers.
    """

    seed: Optional[int] = None
    """The initial RNG seed of the driver. None lets the driver choose."""

    verbose: Verbosity = Verbosity.SILENT
    """The verbosity of the driver output relayed to the log."""

    n_configurations: Optional[int] = None
    """
    Number of configurations in the first race. None lets the driver derive
    it from the budget.
    """

    first_test: int = 5
    """Number of instances evaluated before the first elimination test."""

    initial_configurations: Sequence[Mapping[str, Any]] = field(default_factory=tuple)
    """
    Configurations (native values) the driver must include in its first race,
    e.g. a known default setting of the target algorithm.
    """

    # =========================================================================
    # Host side
    # =========================================================================

    parallel_backend: str = "threading"
    """
    joblib backend used to evaluate a batch when n_jobs != 1. "threading"
    shares the runner between threads; "loky" runs evaluations in worker
    processes and requires a picklable runner and instances.
    """

    failure_cost: Optional[float] = None
    """
    Cost reported to the driver for a failed evaluation. None reports an
    explicit failure marker instead and lets the driver decide.
    """

    max_transport_errors: int = 3
    """
    Number of consecutive undecodable requests tolerated before the session is
    aborted.
    """

    start_timeout: float = 60.0
    """Seconds to wait for the driver to acknowledge the start message."""

    stop_timeout: float = 5.0
    """Seconds granted to the driver to exit before it is killed."""

    clone_per_evaluation: bool = False
    """
    Deep-copy the target runner and the instance before every evaluation.
    Use it for runners or instances that keep mutable state, so concurrent
    or successive experiments never observe each other's changes.
    """

    def __post_init__(self) -> None:
        if self.max_experiments <= 0:
            raise ValueError("max_experiments must be > 0")
        if self.n_jobs < 1 and self.n_jobs != -1:
            raise ValueError("n_jobs must be >= 1 or -1")
        if self.seed is not None and self.seed < 0:
            raise ValueError("seed must be >= 0 when provided")
        self.verbose = Verbosity(self.verbose)
        if self.n_configurations is not None and self.n_configurations < 1:
            raise ValueError("n_configurations must be >= 1 when provided")
        if self.first_test < 1:
            raise ValueError("first_test must be >= 1")
        if self.parallel_backend not in {"threading", "loky"}:
            raise ValueError("parallel_backend must be 'threading' or 'loky'")
        if self.failure_cost is not None and math.isnan(float(self.failure_cost)):
            raise ValueError("failure_cost must not be NaN")
        if self.max_transport_errors < 1:
            raise ValueError("max_transport_errors must be >= 1")
        if self.start_timeout <= 0 or self.stop_timeout <= 0:
            raise ValueError("start_timeout and stop_timeout must be > 0")
        self.initial_configurations = tuple(dict(c) for c in self.initial_configurations)

    @property
    def num_workers(self) -> int:
        if self.n_jobs == -1:
            return max(1, os.cpu_count() or 1)
        return self.n_jobs

    def to_wire(self, initial_configurations: Sequence[Mapping[str, Any]] = ()) -> dict[str, Any]:
        """Driver-facing part of the scenario, as sent in the start message."""
        return {
            "max_experiments": int(self.max_experiments),
            "elitist": bool(self.elitist),
            "deterministic": bool(self.deterministic),
            "n_jobs": int(self.num_workers),
            "seed": self.seed,
            "verbose": int(self.verbose),
            "n_configurations": self.n_configurations,
            "first_test": int(self.first_test),
            "initial_configurations": [dict(c) for c in initial_configurations],
        }


__all__ = ["Scenario", "Verbosity"]

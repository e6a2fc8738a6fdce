from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Iterator, Optional, Sequence, Tuple, TypeVar

from .param_space import Configuration

I = TypeVar("I")


class InstanceSet(Generic[I]):
    """
    The ordered, read-only problem instances of one racing session.

    The driver only ever sees an instance's index and display id; the objects
    themselves stay on this side of the boundary and are shared by all
    evaluations without locking.
    """

    def __init__(self, instances: Sequence[I], ids: Sequence[str] | None = None) -> None:
        self._items: Tuple[I, ...] = tuple(instances)
        if ids is None:
            ids = [str(i) for i in range(len(self._items))]
        ids = tuple(str(i) for i in ids)
        if len(ids) != len(self._items):
            raise ValueError(f"Got {len(ids)} instance ids for {len(self._items)} instances")
        if len(set(ids)) != len(ids):
            raise ValueError("Instance ids must be unique")
        self.ids: Tuple[str, ...] = ids

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[I]:
        return iter(self._items)

    def __getitem__(self, index: int) -> I:
        return self._items[index]

    def get(self, index: Optional[int]) -> Optional[I]:
        if index is None or not (0 <= index < len(self._items)):
            return None
        return self._items[index]

    def to_wire(self) -> list[dict[str, Any]]:
        return [{"index": idx, "id": ident} for idx, ident in enumerate(self.ids)]


@dataclass(frozen=True)
class Experiment(Generic[I]):
    """
    A single execution of the target runner.

    The experiment specifies the configuration, seed and problem instance
    to execute the target algorithm with. `id` correlates the experiment with
    its result on the driver side.
    """

    id: str
    configuration_id: str
    configuration: Configuration
    seed: int
    instance_index: Optional[int] = None
    instance_id: Optional[str] = None
    instance: Optional[I] = None

    @property
    def params(self) -> Configuration:
        return self.configuration


@dataclass(frozen=True)
class EvaluationResult:
    """
    Outcome of one experiment: a cost, or a failure with its message.

    `metrics` holds optional auxiliary values returned by the runner.
    """

    id: str
    cost: Optional[float]
    time: float = 0.0
    error: Optional[str] = None
    configuration_id: Optional[str] = None
    instance_id: Optional[str] = None
    seed: Optional[int] = None
    metrics: Dict[str, Any] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return self.error is not None

    @classmethod
    def success(cls, experiment: Experiment, cost: float, time: float, metrics: Dict[str, Any] | None = None) -> "EvaluationResult":
        return cls(
            id=experiment.id,
            cost=float(cost),
            time=time,
            configuration_id=experiment.configuration_id,
            instance_id=experiment.instance_id,
            seed=experiment.seed,
            metrics=dict(metrics or {}),
        )

    @classmethod
    def failure(cls, experiment_id: str, message: str, time: float = 0.0, experiment: Experiment | None = None) -> "EvaluationResult":
        return cls(
            id=experiment_id,
            cost=None,
            time=time,
            error=message,
            configuration_id=experiment.configuration_id if experiment else None,
            instance_id=experiment.instance_id if experiment else None,
            seed=experiment.seed if experiment else None,
        )

    def reported_cost(self, failure_cost: Optional[float]) -> Optional[float]:
        """The cost sent to the driver; failures map to the sentinel when one is configured."""
        if self.failed:
            return failure_cost
        if self.cost is None or math.isnan(self.cost):
            return failure_cost
        return self.cost


__all__ = ["Experiment", "EvaluationResult", "InstanceSet"]

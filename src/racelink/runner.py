from __future__ import annotations

import copy
import dataclasses
import inspect
import logging
import math
import numbers
import time
from collections.abc import Callable, Mapping
from typing import Any, Generic, Optional, Protocol, Sequence, TypeVar, runtime_checkable

import cloudpickle
import numpy as np

from .experiment import EvaluationResult, Experiment, InstanceSet
from .foundation.exceptions import ConfigurationError, ParameterSpaceError, RunnerError, TransportError
from .param_space import ParamSpace
from .protocol import json_safe
from .scenario import Scenario

I = TypeVar("I")


def _logger() -> logging.Logger:
    return logging.getLogger(__name__)


@runtime_checkable
class TargetRunner(Protocol[I]):
    """
    Executes the target algorithm for one experiment and returns its cost.

    The runner may also return `(cost, metrics)` where `metrics` is a mapping
    of auxiliary values; it signals a failed run by raising.
    """

    def run(self, scenario: Scenario, experiment: Experiment[I]) -> Any: ...


class FunctionRunner(Generic[I]):
    """
    Adapts a plain callable to the TargetRunner protocol.

    Two call shapes are accepted:
        fn(scenario, experiment)
        fn(configuration, instance, seed)
    """

    def __init__(self, fn: Callable[..., Any]) -> None:
        if not callable(fn):
            raise ConfigurationError(f"Target runner must be callable, got {type(fn).__name__}")
        self.fn = fn
        self._experiment_style = _accepts_n_positional(fn) == 2

    def run(self, scenario: Scenario, experiment: Experiment[I]) -> Any:
        if self._experiment_style:
            return self.fn(scenario, experiment)
        return self.fn(experiment.configuration, experiment.instance, experiment.seed)

    def __repr__(self) -> str:
        return f"FunctionRunner({getattr(self.fn, '__qualname__', self.fn)!r})"


def _accepts_n_positional(fn: Callable[..., Any]) -> int:
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return 3
    positional = [
        p
        for p in sig.parameters.values()
        if p.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
    ]
    if any(p.kind is inspect.Parameter.VAR_POSITIONAL for p in sig.parameters.values()):
        return 3
    return len(positional)


def as_target_runner(runner: Any) -> TargetRunner:
    """Return `runner` itself when it has a run() method, else wrap it as a FunctionRunner."""
    if isinstance(runner, TargetRunner) and not inspect.isfunction(runner):
        return runner
    return FunctionRunner(runner)


def _split_result(raw: Any) -> tuple[Any, Mapping[str, Any]]:
    if isinstance(raw, tuple) and len(raw) == 2 and isinstance(raw[1], Mapping):
        return raw[0], raw[1]
    return raw, {}


def _to_cost(raw: Any) -> float:
    # Objects such as single-objective wrappers expose their value through value().
    value = getattr(raw, "value", None)
    if callable(value):
        raw = value()
    if isinstance(raw, (bool, np.bool_)):
        raise RunnerError(f"Target runner returned a boolean ({raw!r}) instead of a cost")
    try:
        cost = float(raw)
    except (TypeError, ValueError):
        raise RunnerError(f"Target runner returned a non-numeric cost: {raw!r}") from None
    if math.isnan(cost):
        raise RunnerError("Target runner returned NaN")
    return cost


def _to_seed(raw: Any) -> int:
    if raw is None:
        return 0
    if isinstance(raw, (bool, np.bool_)) or not isinstance(raw, numbers.Real):
        raise ValueError(f"seed must be an integer, got {raw!r}")
    if isinstance(raw, numbers.Integral):
        return int(raw)
    if not math.isfinite(raw) or raw != int(raw):
        raise ValueError(f"seed must be an integer, got {raw!r}")
    return int(raw)


def _to_metrics(metrics: Mapping[str, Any]) -> dict[str, Any]:
    try:
        return json_safe(dict(metrics))
    except (TypeError, ValueError) as exc:
        raise RunnerError(f"Target runner returned metrics that cannot be sent to the driver: {exc}") from exc


class TargetAdapter(Generic[I]):
    """
    Wraps a target runner and its instances behind a uniform evaluate() contract.

    The adapter owns the runner and an immutable copy of the instance list for
    the lifetime of a session. It maps wire records to Experiments (decoding
    configurations against the parameter space) and never lets a runner
    fault escape: every exception becomes a failed EvaluationResult.
    """

    def __init__(
        self,
        runner: Any,
        instances: Sequence[I] | InstanceSet[I],
        scenario: Scenario,
        param_space: ParamSpace,
    ) -> None:
        if not param_space.is_flat():
            raise ParameterSpaceError("Nested parameter spaces must be flattened before racing; call flatten() first")
        if len(param_space) == 0:
            raise ParameterSpaceError("Parameter space is empty")
        self.runner: TargetRunner[I] = as_target_runner(runner)
        self.instances: InstanceSet[I] = instances if isinstance(instances, InstanceSet) else InstanceSet(instances)
        self.scenario = scenario
        self.param_space = param_space

    def experiment_from_record(self, record: Any) -> Experiment[I]:
        """Decode one wire record; raises TransportError when it cannot be understood."""
        if not isinstance(record, Mapping):
            raise TransportError("Experiment record must be an object", payload=record)
        if record.get("id") is None:
            raise TransportError("Experiment record has no id", payload=dict(record))
        ident = str(record["id"])
        try:
            configuration_id = str(record.get("configuration_id", ident))
            configuration = self.param_space.decode_configuration(record.get("configuration"), configuration_id)
            seed = _to_seed(record.get("seed"))
            index = record.get("instance")
            index = None if index is None else int(index)
        except (ParameterSpaceError, TypeError, ValueError) as exc:
            raise TransportError(f"Malformed experiment '{ident}': {exc}", payload=dict(record)) from exc
        if index is not None and not (0 <= index < len(self.instances)):
            raise TransportError(f"Experiment '{ident}' names unknown instance {index}", payload=dict(record))
        instance_id = record.get("instance_id")
        if instance_id is None and index is not None:
            instance_id = self.instances.ids[index]
        return Experiment(
            id=ident,
            configuration_id=configuration_id,
            configuration=configuration,
            seed=seed,
            instance_index=index,
            instance_id=None if instance_id is None else str(instance_id),
            instance=self.instances.get(index),
        )

    def evaluate(self, experiment: Experiment[I]) -> EvaluationResult:
        """Run the target runner once. Never raises for faults of the runner."""
        start = time.perf_counter()
        try:
            runner = self.runner
            if self.scenario.clone_per_evaluation:
                runner = copy.deepcopy(runner)
                experiment = dataclasses.replace(experiment, instance=copy.deepcopy(experiment.instance))
            raw, metrics = _split_result(runner.run(self.scenario, experiment))
            cost = _to_cost(raw)
            metrics = _to_metrics(metrics)
        except Exception as exc:  # noqa: BLE001 - every runner fault is reported to the driver
            elapsed = time.perf_counter() - start
            message = str(exc) if isinstance(exc, RunnerError) else f"{type(exc).__name__}: {exc}"
            _logger().debug("experiment %s failed: %s", experiment.id, message)
            return EvaluationResult.failure(experiment.id, message, elapsed, experiment)
        elapsed = time.perf_counter() - start
        return EvaluationResult.success(experiment, cost, elapsed, metrics)

    def evaluate_record(self, record: Any) -> EvaluationResult:
        """
        Decode and evaluate one wire record.

        A malformed record that still carries an id becomes a failed result so
        the driver can continue; one without an id raises TransportError.
        """
        try:
            experiment = self.experiment_from_record(record)
        except TransportError as exc:
            if isinstance(record, Mapping) and record.get("id") is not None:
                _logger().warning("%s", exc.message)
                return EvaluationResult.failure(str(record["id"]), exc.message)
            raise
        return self.evaluate(experiment)

    def check_transferable(self) -> None:
        """Raise ConfigurationError when runner or instances cannot be shipped to worker processes."""
        try:
            cloudpickle.dumps((self.runner, self.instances, self.scenario, self.param_space))
        except Exception as exc:  # noqa: BLE001 - pickling can fail with arbitrary errors
            raise ConfigurationError(
                f"Target runner or instances cannot be transferred to worker processes: {exc}",
                suggestion="Use picklable runner/instance objects or parallel_backend='threading'",
            ) from exc


def make_adapter(
    runner: Any,
    instances: Sequence[Any] | InstanceSet,
    scenario: Scenario,
    param_space: ParamSpace,
    instance_ids: Optional[Sequence[str]] = None,
) -> TargetAdapter:
    if not isinstance(instances, InstanceSet):
        instances = InstanceSet(list(instances), instance_ids)
    return TargetAdapter(runner, instances, scenario, param_space)


__all__ = ["TargetRunner", "FunctionRunner", "TargetAdapter", "as_target_runner", "make_adapter"]

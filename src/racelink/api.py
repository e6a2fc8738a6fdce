"""
User-facing API surface for racelink.

Entry points:
- `run`: race a runner over instances with a given budget and seed.
- `irace`: the classic call shape returning just the elite configurations.
- `multi_irace`: several independent races at once.
- `start_run`: race in a background thread; the returned handle can abort.

The external driver defaults to irace (Rscript). Set RACELINK_DRIVER to
"reference" (or pass `driver=`) to use the bundled reference driver.
"""
from __future__ import annotations

import dataclasses
import os
import threading
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Union

import numpy as np
from joblib import Parallel, delayed  # type: ignore[import-untyped]

from .drivers import Driver, resolve_driver
from .experiment import InstanceSet
from .foundation.exceptions import SessionError
from .param_space import Configuration, ParamSpace
from .results import RaceResult
from .runner import make_adapter
from .scenario import Scenario
from .session import DriverSession

DriverLike = Union[str, Driver, None]


def _driver(driver: DriverLike) -> Driver:
    if driver is None:
        driver = os.environ.get("RACELINK_DRIVER") or "irace"
    return resolve_driver(driver)


def _with_budget(scenario: Optional[Scenario], budget: int, seed: Optional[int]) -> Scenario:
    if scenario is None:
        return Scenario(max_experiments=budget, seed=seed)
    return dataclasses.replace(scenario, max_experiments=budget, seed=seed if seed is not None else scenario.seed)


def open_session(
    runner: Any,
    instances: Union[Sequence[Any], InstanceSet],
    scenario: Scenario,
    param_space: ParamSpace,
    *,
    driver: DriverLike = None,
    instance_ids: Optional[Sequence[str]] = None,
) -> DriverSession:
    """
    Build an unstarted DriverSession.

    Nested parameter spaces are flattened into a copy; the caller's space
    is left untouched.
    """
    adapter = make_adapter(runner, instances, scenario, param_space.flattened(), instance_ids)
    return DriverSession(adapter, _driver(driver))


def run(
    param_space: ParamSpace,
    instances: Union[Sequence[Any], InstanceSet],
    runner: Any,
    budget: int,
    seed: Optional[int] = None,
    *,
    scenario: Optional[Scenario] = None,
    driver: DriverLike = None,
    instance_ids: Optional[Sequence[str]] = None,
) -> RaceResult:
    """
    Race `runner` over `instances` with at most `budget` experiments.

    `scenario` supplies the remaining settings; its budget and seed are
    replaced by the arguments given here.
    """
    scenario = _with_budget(scenario, budget, seed)
    session = open_session(runner, instances, scenario, param_space, driver=driver, instance_ids=instance_ids)
    with session:
        return session.race()


def irace(
    runner: Any,
    instances: Union[Sequence[Any], InstanceSet],
    scenario: Scenario,
    param_space: ParamSpace,
    *,
    driver: DriverLike = None,
) -> List[Configuration]:
    """Race and return the elite configurations, best first."""
    session = open_session(runner, instances, scenario, param_space, driver=driver)
    with session:
        return list(session.race().elites)


@dataclass
class Run:
    """One independent race for multi_irace."""

    runner: Any
    instances: Union[Sequence[Any], InstanceSet]
    scenario: Scenario
    param_space: ParamSpace


def multi_irace(
    runs: Sequence[Run],
    n_jobs: int = 1,
    global_seed: Optional[int] = None,
    *,
    driver: DriverLike = None,
) -> List[List[Configuration]]:
    """
    Execute several races, `n_jobs` at a time, each with its own driver process.

    Runs without a seed get one drawn from `global_seed`, so the whole batch
    is reproducible. Results are returned in the order of `runs`.
    """
    runs = list(runs)
    rng = np.random.default_rng(global_seed)
    seeds = [int(s) for s in rng.integers(0, 2**31 - 1, size=len(runs))]
    seeded = [
        r if r.scenario.seed is not None else dataclasses.replace(r, scenario=dataclasses.replace(r.scenario, seed=s))
        for r, s in zip(runs, seeds)
    ]
    if n_jobs == 1 or len(seeded) <= 1:
        return [irace(r.runner, r.instances, r.scenario, r.param_space, driver=driver) for r in seeded]
    return list(
        Parallel(n_jobs=n_jobs, backend="threading")(
            delayed(irace)(r.runner, r.instances, r.scenario, r.param_space, driver=driver) for r in seeded
        )
    )


class RaceHandle:
    """A race running in a background thread."""

    def __init__(self, session: DriverSession) -> None:
        self.session = session
        self._result: Optional[RaceResult] = None
        self._error: Optional[BaseException] = None
        self._thread = threading.Thread(target=self._target, name="racelink-race", daemon=True)

    def _target(self) -> None:
        try:
            self._result = self.session.run()
        except BaseException as exc:  # noqa: BLE001 - re-raised by result()
            self._error = exc

    def start(self) -> "RaceHandle":
        self._thread.start()
        return self

    def abort(self) -> None:
        self.session.abort()

    def done(self) -> bool:
        return self._thread.ident is not None and not self._thread.is_alive()

    def result(self, timeout: Optional[float] = None) -> RaceResult:
        """Wait for the race; re-raises whatever ended it."""
        self._thread.join(timeout)
        if self._thread.is_alive():
            raise TimeoutError("Race is still running")
        if self._error is not None:
            raise self._error
        if self._result is None:
            raise SessionError("Race ended without a result")
        return self._result


def start_run(
    param_space: ParamSpace,
    instances: Union[Sequence[Any], InstanceSet],
    runner: Any,
    budget: int,
    seed: Optional[int] = None,
    *,
    scenario: Optional[Scenario] = None,
    driver: DriverLike = None,
    instance_ids: Optional[Sequence[str]] = None,
) -> RaceHandle:
    """Like run(), but returns immediately with an abortable RaceHandle."""
    scenario = _with_budget(scenario, budget, seed)
    session = open_session(runner, instances, scenario, param_space, driver=driver, instance_ids=instance_ids)
    return RaceHandle(session).start()


__all__ = ["run", "irace", "multi_irace", "Run", "RaceHandle", "start_run", "open_session"]

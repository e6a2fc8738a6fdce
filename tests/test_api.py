"""Tests for the top-level entry points."""

from __future__ import annotations

import pytest

from racelink import Run, Scenario, multi_irace, run, start_run
from racelink.api import RaceHandle, _with_budget
from racelink.foundation.exceptions import ProcessError, SessionError

ECHO_SCENARIO = """
sc = start["scenario"]
send({"type": "done", "elites": [{"configuration": {"x": 1 + (sc["seed"] or 0) % 10}}],
      "diagnostics": {"n_experiments": 0, "budget": sc["max_experiments"], "seed": sc["seed"]}})
wait_for_stop()
"""


class TestWithBudget:
    def test_builds_a_scenario(self):
        scenario = _with_budget(None, 30, 4)
        assert scenario.max_experiments == 30
        assert scenario.seed == 4

    def test_overrides_budget_and_keeps_other_settings(self):
        base = Scenario(max_experiments=10, seed=2, n_jobs=3, deterministic=True)
        scenario = _with_budget(base, 99, None)
        assert scenario.max_experiments == 99
        assert scenario.seed == 2
        assert scenario.n_jobs == 3 and scenario.deterministic
        assert base.max_experiments == 10


@pytest.mark.slow
class TestEntryPoints:
    def test_run_forwards_budget_and_seed(self, mock_driver, int_space):
        result = run(int_space, ["a"], lambda c, i, s: 0.0, 77, seed=5, driver=mock_driver(ECHO_SCENARIO))
        assert result.diagnostics.extra["budget"] == 77
        assert result.diagnostics.extra["seed"] == 5

    def test_multi_irace_draws_distinct_seeds(self, mock_driver, int_space):
        driver = mock_driver(ECHO_SCENARIO)
        runs = [Run(lambda c, i, s: 0.0, ["a"], Scenario(max_experiments=5), int_space) for _ in range(3)]
        runs.append(Run(lambda c, i, s: 0.0, ["a"], Scenario(max_experiments=5, seed=8), int_space))

        first = multi_irace(runs, n_jobs=2, global_seed=11, driver=driver)
        second = multi_irace(runs, n_jobs=1, global_seed=11, driver=driver)

        assert first == second
        assert first[3] == [{"x": 9}]
        assert all(len(elites) == 1 for elites in first)

    def test_start_run_returns_a_handle(self, mock_driver, int_space):
        handle = start_run(int_space, ["a"], lambda c, i, s: 0.0, 3, seed=1, driver=mock_driver(ECHO_SCENARIO))
        result = handle.result(timeout=30)
        assert handle.done()
        assert result.best == {"x": 2}


class TestRaceHandle:
    class _Session:
        def __init__(self, outcome):
            self.outcome = outcome

        def run(self):
            if isinstance(self.outcome, BaseException):
                raise self.outcome
            return self.outcome

    def test_missing_result_is_a_session_error(self):
        handle = RaceHandle(self._Session(None)).start()
        with pytest.raises(SessionError, match="without a result"):
            handle.result(timeout=10)

    def test_error_is_reraised(self):
        handle = RaceHandle(self._Session(ProcessError("driver crashed"))).start()
        with pytest.raises(ProcessError, match="driver crashed"):
            handle.result(timeout=10)

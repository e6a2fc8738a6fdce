"""Tests for result aggregation and persistence."""

from __future__ import annotations

import csv
import json
import math

import pytest

from racelink import ParamSpace
from racelink.experiment import EvaluationResult
from racelink.foundation.exceptions import ProtocolError
from racelink.results import aggregate, result_to_dict, save_history_csv, save_result_json


@pytest.fixture
def history():
    return [
        EvaluationResult(id="1", cost=2.5, time=0.1, configuration_id="1", instance_id="a", seed=7),
        EvaluationResult(id="2", cost=None, time=0.2, error="boom", configuration_id="2", instance_id="a", seed=7),
        EvaluationResult(id="3", cost=math.inf, time=0.3, configuration_id="3", instance_id="b", seed=9),
    ]


class TestAggregate:
    def test_elites_are_decoded_in_order(self, mixed_space, history):
        payload = {
            "elites": [
                {"configuration_id": "4", "configuration": {"temperature": 1.5, "size": 3, "local_search": True, "restart": "never"}, "score": 0.5},
                {"configuration_id": "9", "configuration": {"temperature": 2.0, "size": 4, "local_search": False, "restart": "always"}, "score": "Infinity"},
            ],
            "diagnostics": {"eliminated": {"2": 3}, "n_experiments": 40, "n_iterations": 2},
        }
        result = aggregate(payload, mixed_space, history)

        assert len(result) == 2
        assert result.best.configuration_id == "4"
        assert result.best["size"] == 3
        assert result.elites[1]["restart"] == "always"
        assert result.scores == (0.5, math.inf)
        assert result.diagnostics.eliminated == {"2": 3}
        assert result.diagnostics.n_experiments == 40
        assert result.diagnostics.n_failed == 1
        assert result.diagnostics.extra == {"n_iterations": 2}

    def test_missing_counts_fall_back_to_history(self, int_space, history):
        result = aggregate({"elites": [{"configuration": {"x": 2}}]}, int_space, history)
        assert result.diagnostics.n_experiments == 3
        assert result.scores == (None,)
        assert result.best.configuration_id is None

    @pytest.mark.parametrize(
        "payload, match",
        [
            ({}, "no elite"),
            ({"elites": []}, "no elite"),
            ({"elites": [3]}, "not an object"),
            ({"elites": [{"configuration": {"x": 11}}]}, "cannot be decoded"),
            ({"elites": [{"configuration": {"x": 2}, "score": "cheap"}]}, "cannot be decoded"),
            ({"elites": [{"configuration": {"x": 2}}], "diagnostics": []}, "must be an object"),
            ({"elites": [{"configuration": {"x": 2}}], "diagnostics": ""}, "must be an object"),
            ({"elites": [{"configuration": {"x": 2}}], "diagnostics": 0}, "must be an object"),
            ({"elites": [{"configuration": {"x": 2}}], "diagnostics": {"n_experiments": "many"}}, "Malformed"),
            ({"elites": [{"configuration": {"x": 2}}], "diagnostics": {"eliminated": []}}, "Malformed"),
        ],
    )
    def test_malformed_payloads_are_fatal(self, int_space, payload, match):
        with pytest.raises(ProtocolError, match=match):
            aggregate(payload, int_space)


class TestPersistence:
    def _result(self, int_space, history):
        payload = {"elites": [{"configuration_id": "1", "configuration": {"x": 3}, "score": 2.5}], "diagnostics": {"n_experiments": 3}}
        return aggregate(payload, int_space, history)

    def test_json(self, int_space, history, tmp_path):
        path = tmp_path / "out" / "result.json"
        save_result_json(self._result(int_space, history), int_space, path)

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["elites"] == [{"configuration_id": "1", "configuration": {"x": 3}, "score": 2.5}]
        assert data["diagnostics"]["n_failed"] == 1
        assert [h["cost"] for h in data["history"]] == [2.5, None, "Infinity"]
        assert data["history"][1]["error"] == "boom"

    def test_json_without_history(self, int_space, history):
        data = result_to_dict(self._result(int_space, history), int_space, include_history=False)
        assert "history" not in data

    def test_categorical_objects_are_written_by_label(self, tmp_path):
        space = ParamSpace().add_categorical("solver", [object(), object()], labels=["first", "second"])
        result = aggregate({"elites": [{"configuration": {"solver": "second"}}]}, space)
        data = result_to_dict(result, space)
        assert data["elites"][0]["configuration"] == {"solver": "second"}

    def test_csv(self, int_space, history, tmp_path):
        path = tmp_path / "history.csv"
        save_history_csv(self._result(int_space, history), path)

        with path.open(newline="", encoding="utf-8") as fh:
            rows = list(csv.DictReader(fh))
        assert [r["id"] for r in rows] == ["1", "2", "3"]
        assert [r["cost"] for r in rows] == ["2.5", "", "Infinity"]
        assert rows[1]["error"] == "boom"
        assert rows[2]["instance_id"] == "b"

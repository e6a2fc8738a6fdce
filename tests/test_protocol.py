"""Tests for the line-delimited JSON wire protocol."""

from __future__ import annotations

import json
import math

import numpy as np
import pytest

from racelink.experiment import EvaluationResult
from racelink.foundation.exceptions import ProtocolError, TransportError
from racelink.protocol import (
    PROTOCOL_VERSION,
    MessageType,
    decode_float,
    decode_message,
    encode_float,
    encode_message,
    experiment_records,
    result_message,
    start_message,
)


class TestFloats:
    @pytest.mark.parametrize("value", [0.1, 1e-300, 123456789.123456789, -2.5e17, 1 / 3])
    def test_finite_floats_are_exact(self, value):
        line = encode_message({"type": "result", "cost": value})
        assert decode_message(line)["cost"] == value

    def test_non_finite_are_strings(self):
        assert encode_float(math.inf) == "Infinity"
        assert encode_float(-math.inf) == "-Infinity"
        assert encode_float(math.nan) == "NaN"
        assert decode_float("Infinity") == math.inf
        assert decode_float("-Inf") == -math.inf
        assert math.isnan(decode_float("NaN"))
        assert decode_float(None) is None

    def test_decode_rejects_garbage(self):
        with pytest.raises(ValueError):
            decode_float("fast")
        with pytest.raises(ValueError):
            decode_float(True)

    def test_output_is_strict_json(self):
        line = encode_message({"type": "result", "cost": math.inf, "nested": [math.nan, {"v": -math.inf}]})
        # Strict parsers must accept it.
        data = json.loads(line, parse_constant=lambda name: pytest.fail(f"non-standard constant {name}"))
        assert data["cost"] == "Infinity"
        assert data["nested"] == ["NaN", {"v": "-Infinity"}]

    def test_numpy_scalars(self):
        line = encode_message({"type": "result", "cost": np.float64(2.5), "n": np.int64(3), "ok": np.bool_(True)})
        data = decode_message(line)
        assert data == {"type": "result", "cost": 2.5, "n": 3, "ok": True}


class TestMessages:
    def test_one_line_per_message(self):
        line = encode_message({"type": MessageType.STOP})
        assert line.endswith("\n") and line.count("\n") == 1
        assert decode_message(line) == {"type": "stop"}

    def test_missing_type(self):
        with pytest.raises(ValueError):
            encode_message({"id": "1"})
        with pytest.raises(TransportError):
            decode_message('{"id": "1"}')

    def test_undecodable_line(self):
        with pytest.raises(TransportError, match="Undecodable"):
            decode_message("{not json")

    def test_start_message(self):
        msg = start_message({"max_experiments": 5}, [{"name": "x", "type": "integer"}], [{"index": 0, "id": "a"}])
        assert msg["type"] == "start"
        assert msg["version"] == PROTOCOL_VERSION
        assert msg["parameters"][0]["name"] == "x"

    def test_result_message_success(self):
        msg = result_message(EvaluationResult(id="4", cost=1.25, time=0.5, metrics={"iterations": 10}))
        assert msg == {"type": "result", "id": "4", "cost": 1.25, "time": 0.5, "metrics": {"iterations": 10}}

    def test_result_message_failure_without_sentinel(self):
        msg = result_message(EvaluationResult.failure("9", "ValueError: boom"))
        assert msg["cost"] is None
        assert msg["error"] == "ValueError: boom"

    def test_result_message_failure_with_sentinel(self):
        msg = result_message(EvaluationResult.failure("9", "boom"), failure_cost=1e9)
        assert msg["cost"] == 1e9
        assert msg["error"] == "boom"


class TestExperimentRecords:
    def test_batch(self):
        records = experiment_records({"type": "evaluate", "experiments": [{"id": "1"}, {"id": "2"}]})
        assert [r["id"] for r in records] == ["1", "2"]

    def test_inline_single_experiment(self):
        records = experiment_records({"type": "evaluate", "id": "7", "configuration": {"x": 1}})
        assert records == [{"id": "7", "configuration": {"x": 1}}]

    def test_duplicate_ids_are_a_protocol_violation(self):
        with pytest.raises(ProtocolError, match="Duplicate"):
            experiment_records({"type": "evaluate", "experiments": [{"id": "1"}, {"id": 1}]})

    def test_no_experiments(self):
        with pytest.raises(TransportError):
            experiment_records({"type": "evaluate"})
        with pytest.raises(TransportError):
            experiment_records({"type": "evaluate", "experiments": {"id": "1"}})

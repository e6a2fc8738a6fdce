"""Tests for the call gateway: dispatch, correlation and fault accounting."""

from __future__ import annotations

import threading
import time

import pytest

from racelink.foundation.exceptions import SessionError, TransportError
from racelink.gateway import CallGateway


def _records(n):
    return [
        {"id": str(i), "configuration_id": str(i), "configuration": {"x": 1 + i % 10}, "instance": i % 3, "seed": i}
        for i in range(n)
    ]


class TestDispatch:
    def test_serial_batch_in_request_order(self, int_space, make_test_adapter):
        adapter = make_test_adapter(lambda c, i, s: float(c["x"]), int_space)
        gateway = CallGateway(adapter)
        results = gateway.dispatch(_records(5))
        assert [r.id for r in results] == ["0", "1", "2", "3", "4"]
        assert [r.cost for r in results] == [1.0, 2.0, 3.0, 4.0, 5.0]
        assert gateway.n_dispatched == 5

    def test_concurrent_batch_gets_one_result_per_request(self, int_space, make_test_adapter):
        active = 0
        peak = 0
        lock = threading.Lock()

        def runner(configuration, instance, seed):
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            # Later requests finish first.
            time.sleep(0.05 * (8 - seed % 8) / 8)
            with lock:
                active -= 1
            return float(seed)

        adapter = make_test_adapter(runner, int_space, n_jobs=4)
        gateway = CallGateway.from_scenario(adapter)
        results = gateway.dispatch(_records(16))

        assert len(results) == 16
        assert [r.id for r in results] == [str(i) for i in range(16)]
        assert [r.cost for r in results] == [float(i) for i in range(16)]
        assert peak > 1

    @pytest.mark.slow
    def test_process_backend_correlates_results(self, int_space, make_test_adapter):
        def runner(configuration, instance, seed):
            if seed == 5:
                raise RuntimeError("worker-side failure")
            return float(configuration["x"] * 100 + seed)

        adapter = make_test_adapter(runner, int_space, n_jobs=2, parallel_backend="loky")
        adapter.check_transferable()
        gateway = CallGateway.from_scenario(adapter)
        assert gateway.backend == "loky"

        records = _records(12)
        results = gateway.dispatch(records)
        assert [r.id for r in results] == [r["id"] for r in records]
        expected = [None if r["seed"] == 5 else float(r["configuration"]["x"] * 100 + r["seed"]) for r in records]
        assert [r.cost for r in results] == expected
        assert "worker-side failure" in results[5].error
        assert gateway.n_failed == 1

    def test_failures_are_counted(self, int_space, make_test_adapter):
        def runner(configuration, instance, seed):
            if seed % 2:
                raise ValueError("odd seed")
            return 0.0

        gateway = CallGateway(make_test_adapter(runner, int_space), failure_cost=1e6)
        results = gateway.dispatch(_records(4))
        assert [r.failed for r in results] == [False, True, False, True]
        assert gateway.n_failed == 2

        replies = gateway.reply(results)
        assert [m["cost"] for m in replies] == [0.0, 1e6, 0.0, 1e6]
        assert "error" in replies[1] and "error" not in replies[0]

    def test_send_single_experiment(self, int_space, make_test_adapter):
        adapter = make_test_adapter(lambda c, i, s: 2.0, int_space)
        gateway = CallGateway(adapter)
        experiment = adapter.experiment_from_record(_records(1)[0])
        assert gateway.send(experiment).cost == 2.0
        assert gateway.n_dispatched == 1


class TestTransportErrors:
    def test_records_without_id_are_skipped(self, int_space, make_test_adapter):
        gateway = CallGateway(make_test_adapter(lambda c, i, s: 1.0, int_space), max_transport_errors=5)
        results = gateway.dispatch([{"configuration": {"x": 1}}, _records(1)[0]])
        assert [r.id for r in results] == ["0"]

    def test_consecutive_errors_abort(self, int_space, make_test_adapter):
        gateway = CallGateway(make_test_adapter(lambda c, i, s: 1.0, int_space), max_transport_errors=2)
        gateway.record_transport_error(TransportError("bad line"))
        with pytest.raises(SessionError, match="2 consecutive"):
            gateway.record_transport_error(TransportError("bad line"))

    def test_successful_dispatch_resets_counter(self, int_space, make_test_adapter):
        gateway = CallGateway(make_test_adapter(lambda c, i, s: 1.0, int_space), max_transport_errors=2)
        gateway.record_transport_error(TransportError("bad line"))
        gateway.dispatch(_records(1))
        gateway.record_transport_error(TransportError("bad line"))

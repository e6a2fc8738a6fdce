from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from joblib import Parallel, delayed  # type: ignore[import-untyped]

from .experiment import EvaluationResult, Experiment
from .foundation.exceptions import SessionError, TransportError
from .protocol import result_message
from .runner import TargetAdapter


def _logger() -> logging.Logger:
    return logging.getLogger(__name__)


def _evaluate_worker(adapter: TargetAdapter, record: Dict[str, Any]) -> EvaluationResult:
    """Worker helper kept at module level for pickling."""
    return adapter.evaluate_record(record)


class CallGateway:
    """
    Routes evaluation requests from the driver to the target adapter and
    marshals their results back.

    A batch is evaluated serially when `n_jobs == 1`, otherwise through
    joblib with the configured backend. Results are matched to requests by
    id, so each request gets exactly one result regardless of completion
    order.
    """

    def __init__(
        self,
        adapter: TargetAdapter,
        *,
        n_jobs: int = 1,
        backend: str = "threading",
        failure_cost: Optional[float] = None,
        max_transport_errors: int = 3,
    ) -> None:
        self.adapter = adapter
        self.n_jobs = n_jobs
        self.backend = backend
        self.failure_cost = failure_cost
        self.max_transport_errors = max_transport_errors
        self._consecutive_transport_errors = 0
        self.n_dispatched = 0
        self.n_failed = 0

    @classmethod
    def from_scenario(cls, adapter: TargetAdapter) -> "CallGateway":
        scenario = adapter.scenario
        return cls(
            adapter,
            n_jobs=scenario.num_workers,
            backend=scenario.parallel_backend,
            failure_cost=scenario.failure_cost,
            max_transport_errors=scenario.max_transport_errors,
        )

    def record_transport_error(self, exc: TransportError) -> None:
        """
        Count a request that could not be decoded at all.

        Raises SessionError once too many of them arrive in a row.
        """
        self._consecutive_transport_errors += 1
        _logger().warning(
            "transport error %d/%d: %s",
            self._consecutive_transport_errors,
            self.max_transport_errors,
            exc.message,
        )
        if self._consecutive_transport_errors >= self.max_transport_errors:
            raise SessionError(
                f"Giving up after {self._consecutive_transport_errors} consecutive transport errors",
                details={"last_error": exc.message},
            ) from exc

    def send(self, experiment: Experiment) -> EvaluationResult:
        """Evaluate a single, already decoded experiment."""
        result = self.adapter.evaluate(experiment)
        self._account([result])
        return result

    def dispatch(self, records: Sequence[Any]) -> List[EvaluationResult]:
        """
        Evaluate one batch of wire records and return their results in request order.

        Records without an id cannot be answered; they count as transport
        errors and are skipped.
        """
        answerable: List[Dict[str, Any]] = []
        for record in records:
            if isinstance(record, dict) and record.get("id") is not None:
                answerable.append(record)
            else:
                self.record_transport_error(TransportError("Experiment record has no id", payload=record))
        if not answerable:
            return []

        n_workers = min(self.n_jobs, len(answerable))
        if n_workers <= 1:
            results = [self.adapter.evaluate_record(record) for record in answerable]
        else:
            results = Parallel(n_jobs=n_workers, backend=self.backend)(
                delayed(_evaluate_worker)(self.adapter, record) for record in answerable
            )

        by_id = {result.id: result for result in results}
        if len(by_id) != len(answerable) or any(str(r["id"]) not in by_id for r in answerable):
            raise SessionError("Evaluation results could not be matched to their requests")
        ordered = [by_id[str(record["id"])] for record in answerable]
        self._account(ordered)
        return ordered

    def reply(self, results: Sequence[EvaluationResult]) -> List[Dict[str, Any]]:
        """Marshal results into driver messages."""
        return [result_message(result, self.failure_cost) for result in results]

    def _account(self, results: Sequence[EvaluationResult]) -> None:
        self._consecutive_transport_errors = 0
        self.n_dispatched += len(results)
        self.n_failed += sum(1 for r in results if r.failed)


__all__ = ["CallGateway"]

from __future__ import annotations

import csv
import json
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .experiment import EvaluationResult
from .foundation.exceptions import ParameterSpaceError, ProtocolError
from .param_space import Configuration, ParamSpace
from .protocol import decode_float, encode_float


@dataclass(frozen=True)
class Diagnostics:
    """
    What the driver and the gateway reported about a finished race.

    `eliminated` maps a configuration id to the racing stage at which the
    driver discarded it.
    """

    eliminated: Mapping[str, int] = field(default_factory=dict)
    n_experiments: int = 0
    n_failed: int = 0
    extra: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RaceResult:
    """The ordered elite set (best first) plus diagnostics and evaluation history."""

    elites: Tuple[Configuration, ...]
    scores: Tuple[Optional[float], ...]
    diagnostics: Diagnostics
    history: Tuple[EvaluationResult, ...] = ()

    @property
    def best(self) -> Configuration:
        return self.elites[0]

    def __len__(self) -> int:
        return len(self.elites)


def aggregate(
    payload: Mapping[str, Any],
    param_space: ParamSpace,
    history: Sequence[EvaluationResult] = (),
) -> RaceResult:
    """
    Parse the driver's completion payload into a RaceResult.

    A malformed payload is fatal for the whole run: it raises ProtocolError
    and nothing is retried.
    """
    elites_raw = payload.get("elites")
    if not isinstance(elites_raw, list) or not elites_raw:
        raise ProtocolError("Completion payload has no elite configurations", payload=dict(payload))

    elites: List[Configuration] = []
    scores: List[Optional[float]] = []
    for position, entry in enumerate(elites_raw):
        if not isinstance(entry, Mapping) or not isinstance(entry.get("configuration"), Mapping):
            raise ProtocolError(f"Elite #{position} is not an object with a 'configuration'", payload=dict(payload))
        ident = entry.get("configuration_id")
        try:
            elites.append(param_space.decode_configuration(entry["configuration"], None if ident is None else str(ident)))
            scores.append(decode_float(entry.get("score")))
        except (ParameterSpaceError, ValueError) as exc:
            raise ProtocolError(f"Elite #{position} cannot be decoded: {exc}", payload=dict(payload)) from exc

    raw_diag = payload.get("diagnostics")
    if raw_diag is None:
        raw_diag = {}
    if not isinstance(raw_diag, Mapping):
        raise ProtocolError("Completion diagnostics must be an object", payload=dict(payload))
    raw_eliminated = raw_diag.get("eliminated")
    try:
        eliminated = {str(k): int(v) for k, v in (raw_eliminated if raw_eliminated is not None else {}).items()}
        n_experiments = int(raw_diag.get("n_experiments", len(history)))
    except (AttributeError, TypeError, ValueError) as exc:
        raise ProtocolError(f"Malformed completion diagnostics: {exc}", payload=dict(payload)) from exc
    extra = {k: v for k, v in raw_diag.items() if k not in {"eliminated", "n_experiments"}}
    diagnostics = Diagnostics(
        eliminated=eliminated,
        n_experiments=n_experiments,
        n_failed=sum(1 for r in history if r.failed),
        extra=extra,
    )
    return RaceResult(elites=tuple(elites), scores=tuple(scores), diagnostics=diagnostics, history=tuple(history))


def history_to_records(history: Sequence[EvaluationResult]) -> List[Dict[str, Any]]:
    """Convert evaluation results into JSON-serializable dicts."""
    return [
        {
            "id": r.id,
            "configuration_id": r.configuration_id,
            "instance_id": r.instance_id,
            "seed": r.seed,
            "cost": encode_float(r.cost),
            "time": r.time,
            "error": r.error,
        }
        for r in history
    ]


def result_to_dict(result: RaceResult, param_space: ParamSpace, *, include_history: bool = True) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "elites": [
            {
                "configuration_id": elite.configuration_id,
                "configuration": param_space.encode_configuration(elite),
                "score": encode_float(score),
            }
            for elite, score in zip(result.elites, result.scores)
        ],
        "diagnostics": {
            "eliminated": dict(result.diagnostics.eliminated),
            "n_experiments": result.diagnostics.n_experiments,
            "n_failed": result.diagnostics.n_failed,
            **dict(result.diagnostics.extra),
        },
    }
    if include_history:
        data["history"] = history_to_records(result.history)
    return data


def save_result_json(result: RaceResult, param_space: ParamSpace, path: str | Path, *, include_history: bool = True) -> None:
    """Persist elites, diagnostics and (optionally) the evaluation history to JSON."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = result_to_dict(result, param_space, include_history=include_history)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(data, fh, indent=2)


def save_history_csv(result: RaceResult, path: str | Path) -> None:
    """Persist the evaluation history to CSV."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as fh:
        writer = csv.writer(fh)
        writer.writerow(["id", "configuration_id", "instance_id", "seed", "cost", "time", "error"])
        for r in result.history:
            cost = "" if r.cost is None else (repr(r.cost) if math.isfinite(r.cost) else encode_float(r.cost))
            writer.writerow([r.id, r.configuration_id, r.instance_id, r.seed, cost, r.time, r.error or ""])


__all__ = [
    "Diagnostics",
    "RaceResult",
    "aggregate",
    "history_to_records",
    "result_to_dict",
    "save_result_json",
    "save_history_csv",
]

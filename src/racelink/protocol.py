"""
Line-delimited JSON protocol spoken with an external racing driver.

Every message is one JSON object on one line with a "type" key:

host -> driver
    start     {version, scenario, parameters, instances}
    result    {id, cost, time, error?, metrics?}
    stop      {}

driver -> host
    ready     {}
    evaluate  {experiments: [{id, configuration_id, configuration, instance, instance_id, seed}, ...]}
    log       {level, message}
    error     {message}
    done      {elites: [{configuration_id, configuration, score?}, ...], diagnostics}

The output is strict JSON: non-finite floats are written as the strings
"Infinity", "-Infinity" and "NaN". Finite floats use Python's shortest
round-trip repr, so no precision is lost in either direction.
"""
from __future__ import annotations

import enum
import json
import math
from collections.abc import Mapping, Sequence
from typing import Any, Dict, List, Optional

import numpy as np

from .foundation.exceptions import ProtocolError, TransportError

PROTOCOL_VERSION = 1


class MessageType(str, enum.Enum):
    START = "start"
    READY = "ready"
    EVALUATE = "evaluate"
    RESULT = "result"
    LOG = "log"
    ERROR = "error"
    DONE = "done"
    STOP = "stop"


_NON_FINITE = {"Infinity": math.inf, "-Infinity": -math.inf, "NaN": math.nan, "Inf": math.inf, "-Inf": -math.inf}


def encode_float(value: Optional[float]) -> Any:
    if value is None:
        return None
    v = float(value)
    if math.isnan(v):
        return "NaN"
    if math.isinf(v):
        return "Infinity" if v > 0 else "-Infinity"
    return v


def decode_float(value: Any) -> Optional[float]:
    """Parse a number written by encode_float (or by a driver); None stays None."""
    if value is None:
        return None
    if isinstance(value, str):
        if value in _NON_FINITE:
            return _NON_FINITE[value]
        raise ValueError(f"Not a number: {value!r}")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"Not a number: {value!r}")
    return float(value)


def _json_default(obj: Any) -> Any:
    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return encode_float(float(obj))
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, enum.Enum):
        return obj.value
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _sanitize(obj: Any) -> Any:
    if isinstance(obj, float):
        return encode_float(obj)
    if isinstance(obj, Mapping):
        return {str(k): _sanitize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_sanitize(v) for v in obj]
    return obj


def json_safe(obj: Any) -> Any:
    """
    Return a plain-JSON copy of `obj` as it will travel on the wire.

    Raises TypeError or ValueError for values that cannot be encoded.
    """
    return json.loads(json.dumps(_sanitize(obj), default=_json_default, allow_nan=False))


def encode_message(message: Mapping[str, Any]) -> str:
    """Serialize one message into a single newline-terminated line."""
    if "type" not in message:
        raise ValueError("message needs a 'type'")
    payload = dict(message)
    if isinstance(payload["type"], MessageType):
        payload["type"] = payload["type"].value
    return json.dumps(_sanitize(payload), default=_json_default, allow_nan=False, separators=(",", ":")) + "\n"


def decode_message(line: str) -> Dict[str, Any]:
    """Parse one line into a message dict; anything else is a transport fault."""
    text = line.strip()
    try:
        message = json.loads(text)
    except json.JSONDecodeError as exc:
        raise TransportError(f"Undecodable line from driver: {exc}", payload=text[:200]) from exc
    if not isinstance(message, dict) or not isinstance(message.get("type"), str):
        raise TransportError("Driver message is not an object with a 'type'", payload=text[:200])
    return message


def start_message(scenario: Mapping[str, Any], parameters: Sequence[Mapping[str, Any]], instances: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
    return {
        "type": MessageType.START.value,
        "version": PROTOCOL_VERSION,
        "scenario": dict(scenario),
        "parameters": [dict(p) for p in parameters],
        "instances": [dict(i) for i in instances],
    }


def result_message(result, failure_cost: Optional[float] = None) -> Dict[str, Any]:
    """Marshal an EvaluationResult for the driver."""
    message: Dict[str, Any] = {
        "type": MessageType.RESULT.value,
        "id": result.id,
        "cost": encode_float(result.reported_cost(failure_cost)),
        "time": float(result.time),
    }
    if result.failed:
        message["error"] = result.error
    if result.metrics:
        message["metrics"] = dict(result.metrics)
    return message


def stop_message() -> Dict[str, Any]:
    return {"type": MessageType.STOP.value}


def experiment_records(message: Mapping[str, Any]) -> List[Dict[str, Any]]:
    """
    Extract the experiment records of an evaluate message.

    A single experiment may also be sent inline (the message itself carries
    the experiment fields). Raises TransportError when the message holds no
    usable records and ProtocolError when ids are duplicated within a batch.
    """
    if "experiments" in message:
        records = message["experiments"]
    elif "id" in message:
        records = [{k: v for k, v in message.items() if k != "type"}]
    else:
        raise TransportError("Evaluate message carries no experiments", payload=dict(message))
    if not isinstance(records, list):
        raise TransportError("'experiments' must be a list", payload=dict(message))
    seen: set[str] = set()
    for record in records:
        if isinstance(record, dict) and record.get("id") is not None:
            ident = str(record["id"])
            if ident in seen:
                raise ProtocolError(f"Duplicate experiment id '{ident}' in one batch", payload=dict(message))
            seen.add(ident)
    return records


__all__ = [
    "PROTOCOL_VERSION",
    "MessageType",
    "encode_float",
    "decode_float",
    "json_safe",
    "encode_message",
    "decode_message",
    "start_message",
    "result_message",
    "stop_message",
    "experiment_records",
]

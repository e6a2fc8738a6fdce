"""
Reference racing driver.

Run as ``python -m racelink.drivers``. The process reads the
`start` message from stdin, answers `ready`, races with ReferenceRace and
requests every evaluation from the host through `evaluate` messages. It
finishes with a `done` message and then waits for `stop` (or EOF).
"""
from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO

from ..foundation.exceptions import ParameterSpaceError, TransportError
from ..param_space import ParamSpace
from ..protocol import PROTOCOL_VERSION, MessageType, decode_float, decode_message, encode_message
from .racing import RaceSettings, ReferenceRace

# Minimum verbosity at which a driver log level is forwarded to the host.
_LOG_THRESHOLDS = {"warning": 1, "info": 2, "debug": 3}


class StopRequested(Exception):
    """The host asked the driver to stop, or closed its end of the pipe."""


class DriverChannel:
    """Line-delimited JSON messages over a pair of text streams."""

    def __init__(self, stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None, verbose: int = 0) -> None:
        self.stdin = stdin if stdin is not None else sys.stdin
        self.stdout = stdout if stdout is not None else sys.stdout
        self.verbose = verbose

    def send(self, message: Dict[str, Any]) -> None:
        self.stdout.write(encode_message(message))
        self.stdout.flush()

    def receive(self) -> Optional[Dict[str, Any]]:
        """Next message from the host; None at EOF."""
        while True:
            line = self.stdin.readline()
            if not line:
                return None
            if line.strip():
                return decode_message(line)

    def log(self, level: str, message: str) -> None:
        if self.verbose >= _LOG_THRESHOLDS.get(level, 2):
            self.send({"type": MessageType.LOG.value, "level": level, "message": message})

    def evaluator(self, n_jobs: int):
        """Return an evaluate callback for ReferenceRace that asks the host in chunks of `n_jobs`."""

        def evaluate(experiments: List[Dict[str, Any]]) -> Dict[str, Optional[float]]:
            costs: Dict[str, Optional[float]] = {}
            for start in range(0, len(experiments), max(1, n_jobs)):
                chunk = experiments[start : start + max(1, n_jobs)]
                self.send({"type": MessageType.EVALUATE.value, "experiments": chunk})
                costs.update(self._collect({e["id"] for e in chunk}))
            return costs

        return evaluate

    def _collect(self, pending: set) -> Dict[str, Optional[float]]:
        costs: Dict[str, Optional[float]] = {}
        while pending:
            message = self.receive()
            if message is None or message["type"] == MessageType.STOP.value:
                raise StopRequested()
            if message["type"] != MessageType.RESULT.value:
                continue
            ident = str(message.get("id"))
            if ident not in pending:
                self.log("warning", f"ignoring result for unknown experiment {ident}")
                continue
            pending.discard(ident)
            try:
                costs[ident] = decode_float(message.get("cost"))
            except ValueError:
                costs[ident] = None
            if message.get("error"):
                self.log("debug", f"experiment {ident} failed: {message['error']}")
        return costs


def _elite_records(elites, n_blocks: int) -> List[Dict[str, Any]]:
    return [
        {
            "configuration_id": str(state.config_id),
            "configuration": dict(state.config),
            "score": state.mean_cost(n_blocks),
        }
        for state in elites
    ]


def main(stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None) -> int:
    channel = DriverChannel(stdin, stdout)
    try:
        start = channel.receive()
    except TransportError as exc:
        channel.send({"type": MessageType.ERROR.value, "message": exc.message})
        return 2
    if start is None:
        return 0
    if start.get("type") != MessageType.START.value:
        channel.send({"type": MessageType.ERROR.value, "message": f"expected 'start', got {start.get('type')!r}"})
        return 2
    if int(start.get("version", PROTOCOL_VERSION)) != PROTOCOL_VERSION:
        channel.send({"type": MessageType.ERROR.value, "message": f"unsupported protocol version {start.get('version')}"})
        return 2

    try:
        space = ParamSpace.from_wire(start.get("parameters") or [])
        settings = RaceSettings.from_wire(start.get("scenario") or {})
        instances = list(start.get("instances") or [])
        instance_ids = [str(i.get("id", idx)) for idx, i in enumerate(instances)]
    except (KeyError, TypeError, ValueError, ParameterSpaceError) as exc:
        channel.send({"type": MessageType.ERROR.value, "message": f"invalid start message: {exc}"})
        return 2
    channel.verbose = int((start.get("scenario") or {}).get("verbose") or 0)
    channel.send({"type": MessageType.READY.value})

    try:
        race = ReferenceRace(
            space,
            len(instances),
            settings,
            channel.evaluator(settings.n_jobs),
            log=channel.log,
            instance_ids=instance_ids,
        )
        elites, diagnostics = race.run()
    except StopRequested:
        return 0
    except (RuntimeError, ValueError) as exc:
        channel.send({"type": MessageType.ERROR.value, "message": str(exc)})
        return 1

    channel.log("info", f"race finished after {diagnostics['n_experiments']} experiments")
    channel.send(
        {
            "type": MessageType.DONE.value,
            "elites": _elite_records(elites, diagnostics["n_blocks"]),
            "diagnostics": diagnostics,
        }
    )

    # Wait for the host to release us.
    while True:
        try:
            message = channel.receive()
        except TransportError:
            continue
        if message is None or message["type"] == MessageType.STOP.value:
            return 0


@dataclass
class ReferenceDriver:
    """Launches the reference driver with the current (or a given) Python interpreter."""

    python: Optional[str] = None
    name: str = "reference"

    def command(self) -> List[str]:
        return [self.python or sys.executable, "-m", "racelink.drivers"]

    def environment(self) -> Optional[Dict[str, str]]:
        # Make the package importable from a source checkout as well.
        package_root = str(Path(__file__).resolve().parents[2])
        env = dict(os.environ)
        paths = [p for p in env.get("PYTHONPATH", "").split(os.pathsep) if p]
        if package_root not in paths:
            env["PYTHONPATH"] = os.pathsep.join([package_root, *paths])
        env.setdefault("PYTHONUNBUFFERED", "1")
        return env


__all__ = ["DriverChannel", "ReferenceDriver", "StopRequested", "main"]

"""
Driver session: owns one external driver process for one racing run.

States:
    IDLE -> STARTING -> RACING -> COMPLETED
    STARTING / RACING -> FAILED
    any non-terminal state -> ABORTED (abort() from any thread)

The session blocks the calling thread while racing. Two daemon threads
drain the driver's stdout (into a queue) and stderr (into a bounded tail
buffer and the log) so neither pipe can fill up.
"""
from __future__ import annotations

import enum
import logging
import os
import queue
import signal
import subprocess
import threading
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from .drivers.base import Driver
from .experiment import EvaluationResult
from .foundation.exceptions import (
    ConfigurationError,
    ProcessError,
    ProtocolError,
    SessionAborted,
    SessionError,
    TransportError,
)
from .foundation.logging import driver_logger
from .gateway import CallGateway
from .protocol import MessageType, decode_message, encode_message, experiment_records, start_message, stop_message
from .results import RaceResult, aggregate
from .runner import TargetAdapter

_EOF = object()
_ABORT = object()
_STDERR_TAIL = 50


def _logger() -> logging.Logger:
    return logging.getLogger(__name__)


class SessionState(enum.Enum):
    IDLE = "idle"
    STARTING = "starting"
    RACING = "racing"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in (SessionState.COMPLETED, SessionState.FAILED, SessionState.ABORTED)


class DriverSession:
    """
    Runs one race: launches the driver, serves its evaluation requests
    through a CallGateway and aggregates its completion payload.

    Use as a context manager so the driver process is torn down on every
    exit path:

        with DriverSession(adapter, ReferenceDriver()) as session:
            result = session.race()
    """

    def __init__(self, adapter: TargetAdapter, driver: Driver, *, gateway: Optional[CallGateway] = None) -> None:
        self.adapter = adapter
        self.driver = driver
        self.scenario = adapter.scenario
        self.gateway = gateway if gateway is not None else CallGateway.from_scenario(adapter)
        self.state = SessionState.IDLE
        self.history: List[EvaluationResult] = []
        self.result: Optional[RaceResult] = None
        self.last_request: Optional[str] = None

        self._proc: Optional[subprocess.Popen] = None
        self._messages: "queue.Queue[Any]" = queue.Queue()
        self._stderr_tail: Deque[str] = deque(maxlen=_STDERR_TAIL)
        self._threads: List[threading.Thread] = []
        self._lock = threading.Lock()
        self._abort_requested = threading.Event()
        self._closed = False

    # --- lifecycle ----------------------------------------------------------------

    @property
    def pid(self) -> Optional[int]:
        return None if self._proc is None else self._proc.pid

    @property
    def returncode(self) -> Optional[int]:
        return None if self._proc is None else self._proc.poll()

    def start(self) -> None:
        """Launch the driver, send the scenario and wait for it to acknowledge."""
        with self._lock:
            if self._abort_requested.is_set():
                self.state = SessionState.ABORTED
                raise SessionAborted()
            if self.state is not SessionState.IDLE:
                raise SessionError(f"Cannot start a session in state '{self.state.value}'")

        space = self.adapter.param_space
        initial = [space.encode_configuration(c) for c in self.scenario.initial_configurations]
        if self.scenario.parallel_backend == "loky" and self.gateway.n_jobs > 1:
            self.adapter.check_transferable()

        self._set_state(SessionState.STARTING)
        try:
            command = self.driver.command()
        except (ConfigurationError, ValueError):
            self._set_state(SessionState.FAILED)
            raise
        _logger().info("starting %s driver: %s", self.driver.name, " ".join(command))
        try:
            self._proc = subprocess.Popen(
                command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                env=self.driver.environment(),
                cwd=getattr(self.driver, "cwd", None),
                start_new_session=os.name == "posix",
            )
        except OSError as exc:
            self._set_state(SessionState.FAILED)
            raise ProcessError(f"Could not launch the {self.driver.name} driver: {exc}") from exc

        self._spawn_reader(self._read_stdout, self._proc.stdout, "stdout")
        self._spawn_reader(self._read_stderr, self._proc.stderr, "stderr")

        try:
            self._write(start_message(self.scenario.to_wire(initial), space.to_wire(), self.adapter.instances.to_wire()))
            message = self._next_message(timeout=self.scenario.start_timeout)
            if message["type"] != MessageType.READY.value:
                raise ProtocolError(f"Driver answered '{message['type']}' instead of 'ready'", payload=message)
            self._set_state(SessionState.RACING)
        except SessionAborted:
            self._finish(SessionState.ABORTED)
            raise
        except BaseException:
            self._finish(SessionState.FAILED)
            raise
        _logger().debug("driver %s is ready (pid %s)", self.driver.name, self.pid)

    def race(self) -> RaceResult:
        """Serve the driver until it reports completion; returns the aggregated result."""
        if self.state is SessionState.IDLE:
            self.start()
        if self.state is not SessionState.RACING:
            if self.state is SessionState.ABORTED:
                raise SessionAborted(self.last_request)
            raise SessionError(f"Cannot race in state '{self.state.value}'")

        try:
            while True:
                message = self._next_message()
                kind = message["type"]
                if kind == MessageType.EVALUATE.value:
                    self._handle_evaluate(message)
                elif kind == MessageType.LOG.value:
                    self._relay_log(message)
                elif kind == MessageType.DONE.value:
                    return self._complete(message)
                elif kind == MessageType.ERROR.value:
                    raise self._process_error(f"Driver reported an error: {message.get('message', '')}")
                else:
                    raise ProtocolError(
                        f"Unexpected message type '{kind}' while racing", payload=message, last_request=self.last_request
                    )
        except SessionAborted:
            self._finish(SessionState.ABORTED)
            raise
        except BaseException:
            self._finish(SessionState.FAILED)
            raise

    def run(self) -> RaceResult:
        """start() + race(), closing the driver afterwards."""
        try:
            return self.race()
        finally:
            self.close()

    def abort(self) -> None:
        """
        Stop the run from any thread.

        The driver process is killed right away; the thread blocked in race()
        raises SessionAborted once it regains control. An evaluation that is
        already running is not interrupted and its result is discarded.
        """
        self._abort_requested.set()
        with self._lock:
            if self.state.terminal:
                return
            self.state = SessionState.ABORTED
        _logger().info("aborting %s driver", self.driver.name)
        self._messages.put(_ABORT)
        self._kill()

    def close(self) -> None:
        """Release the driver process and the reader threads. Safe to call repeatedly."""
        with self._lock:
            if self._closed or self._proc is None:
                self._closed = True
                return
            self._closed = True
        proc = self._proc
        if proc.poll() is None:
            self._try_write(stop_message())
            try:
                proc.wait(timeout=self.scenario.stop_timeout)
            except subprocess.TimeoutExpired:
                _logger().warning("driver did not exit within %.1fs, terminating it", self.scenario.stop_timeout)
                self._terminate()
        self._join_readers()
        for stream in (proc.stdin, proc.stdout, proc.stderr):
            if stream is None:
                continue
            try:
                stream.close()
            except OSError:
                # The driver is gone; a failed flush of stdin is expected.
                pass
        proc.wait()
        if not self.state.terminal:
            self._set_state(SessionState.FAILED)

    def __enter__(self) -> "DriverSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False

    # --- message handling ---------------------------------------------------------

    def _handle_evaluate(self, message: Dict[str, Any]) -> None:
        try:
            records = experiment_records(message)
        except TransportError as exc:
            self.gateway.record_transport_error(exc)
            return
        ids = [str(r["id"]) for r in records if isinstance(r, dict) and r.get("id") is not None]
        if ids:
            self.last_request = ids[-1]
        _logger().debug("evaluating %d experiment(s)", len(records))
        results = self.gateway.dispatch(records)
        if self._abort_requested.is_set():
            raise SessionAborted(self.last_request)
        self.history.extend(results)
        for reply in self.gateway.reply(results):
            self._write(reply)

    def _relay_log(self, message: Dict[str, Any]) -> None:
        level = logging.getLevelName(str(message.get("level", "info")).upper())
        if not isinstance(level, int):
            level = logging.INFO
        driver_logger().log(level, "%s", message.get("message", ""))

    def _complete(self, message: Dict[str, Any]) -> RaceResult:
        try:
            result = aggregate(message, self.adapter.param_space, self.history)
        except ProtocolError as exc:
            exc.details["last_request"] = self.last_request
            raise
        self._try_write(stop_message())
        proc = self._proc
        try:
            returncode = proc.wait(timeout=self.scenario.stop_timeout)
        except subprocess.TimeoutExpired:
            _logger().warning("driver did not exit after completion, terminating it")
            self._terminate()
            returncode = 0
        if returncode != 0:
            raise self._process_error(f"Driver exited with status {returncode} after completion")
        self.result = result
        self._set_state(SessionState.COMPLETED)
        _logger().info(
            "race completed: %d elite(s), %d experiment(s), %d failed",
            len(result.elites),
            result.diagnostics.n_experiments,
            result.diagnostics.n_failed,
        )
        return result

    def _next_message(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        while True:
            if self._abort_requested.is_set():
                raise SessionAborted(self.last_request)
            try:
                item = self._messages.get(timeout=timeout)
            except queue.Empty:
                raise self._process_error(f"Driver did not answer within {timeout:.1f}s") from None
            if item is _ABORT or self._abort_requested.is_set():
                raise SessionAborted(self.last_request)
            if item is _EOF:
                raise self._process_error("Driver closed its output unexpectedly")
            try:
                return decode_message(item)
            except TransportError as exc:
                self.gateway.record_transport_error(exc)

    def _write(self, message: Dict[str, Any]) -> None:
        proc = self._proc
        if proc is None or proc.stdin is None:
            raise SessionError("Driver process is not running")
        try:
            proc.stdin.write(encode_message(message))
            proc.stdin.flush()
        except (OSError, ValueError) as exc:
            if self._abort_requested.is_set():
                raise SessionAborted(self.last_request) from exc
            raise self._process_error(f"Could not write to the driver: {exc}") from exc

    def _try_write(self, message: Dict[str, Any]) -> None:
        try:
            self._write(message)
        except SessionError as exc:
            _logger().debug("could not send '%s' to the driver: %s", message.get("type"), exc.message)

    def _process_error(self, message: str) -> ProcessError:
        proc = self._proc
        returncode = None
        if proc is not None:
            try:
                returncode = proc.wait(timeout=min(1.0, self.scenario.stop_timeout))
            except subprocess.TimeoutExpired:
                returncode = None
        for thread in self._threads:
            if thread.name.endswith("stderr"):
                thread.join(timeout=1.0)
        return ProcessError(
            message,
            returncode=returncode,
            stderr_tail=list(self._stderr_tail),
            last_request=self.last_request,
        )

    # --- process control ----------------------------------------------------------

    def _signal(self, sig: int) -> None:
        proc = self._proc
        if proc is None or proc.poll() is not None:
            return
        try:
            if os.name == "posix":
                os.killpg(proc.pid, sig)
            elif sig == getattr(signal, "SIGKILL", None):
                proc.kill()
            else:
                proc.terminate()
        except ProcessLookupError:
            # Exited between poll() and the signal.
            pass

    def _kill(self) -> None:
        self._signal(getattr(signal, "SIGKILL", signal.SIGTERM))

    def _terminate(self) -> None:
        proc = self._proc
        if proc is None:
            return
        self._signal(signal.SIGTERM)
        try:
            proc.wait(timeout=self.scenario.stop_timeout)
        except subprocess.TimeoutExpired:
            self._kill()
            proc.wait()

    def _finish(self, state: SessionState) -> None:
        with self._lock:
            if not self.state.terminal:
                self.state = state
        self.close()

    def _set_state(self, state: SessionState) -> None:
        with self._lock:
            if self.state is SessionState.ABORTED and state is not SessionState.ABORTED:
                raise SessionAborted(self.last_request)
            self.state = state

    # --- reader threads -----------------------------------------------------------

    def _spawn_reader(self, target, stream, label: str) -> None:
        thread = threading.Thread(target=target, args=(stream,), name=f"racelink-{self.driver.name}-{label}", daemon=True)
        thread.start()
        self._threads.append(thread)

    def _read_stdout(self, stream) -> None:
        try:
            for line in stream:
                if line.strip():
                    self._messages.put(line)
        except (OSError, ValueError) as exc:
            _logger().debug("driver stdout closed: %s", exc)
        finally:
            self._messages.put(_EOF)

    def _read_stderr(self, stream) -> None:
        log = driver_logger()
        try:
            for line in stream:
                line = line.rstrip("\n")
                self._stderr_tail.append(line)
                log.debug("%s", line)
        except (OSError, ValueError) as exc:
            _logger().debug("driver stderr closed: %s", exc)

    def _join_readers(self) -> None:
        for thread in self._threads:
            if thread is not threading.current_thread():
                thread.join(timeout=2.0)


__all__ = ["DriverSession", "SessionState"]

"""
racelink exception hierarchy.

Provides user-friendly exceptions with helpful error messages and suggestions.
All racelink-specific exceptions inherit from RacelinkError for easy catching.

Per-evaluation faults (RunnerError, TransportError) are contained by the
gateway and reported to the driver. Session faults (SessionError and its
subclasses) abort the whole run and reach the caller.

Example:
    try:
        result = run(space, instances, runner, budget=200, seed=1)
    except SessionError as e:
        print(f"Racing failed: {e}")
        print(f"Exit status: {e.details.get('returncode')}")
"""

from __future__ import annotations

from typing import Any


class RacelinkError(Exception):
    """
    Base exception for all racelink errors.

    Attributes:
        message: Human-readable error description
        suggestion: Optional suggestion for fixing the error
        details: Optional dict with additional context
    """

    def __init__(
        self,
        message: str,
        suggestion: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.suggestion = suggestion
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the full error message with suggestion."""
        msg = self.message
        if self.suggestion:
            msg += f"\n\nSuggestion: {self.suggestion}"
        return msg


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(RacelinkError):
    """Raised when a scenario, runner or driver setup is invalid."""

    pass


class ParameterSpaceError(ConfigurationError):
    """Raised when a parameter space or a configuration does not fit it."""

    def __init__(self, message: str, name: str | None = None) -> None:
        suggestion = "Check the parameter names, bounds and variants of your ParamSpace"
        super().__init__(message, suggestion, {"name": name})


class DriverNotAvailableError(ConfigurationError):
    """Raised when the executable of an external driver cannot be found."""

    def __init__(self, executable: str, driver: str) -> None:
        message = f"Executable '{executable}' required by the '{driver}' driver was not found."
        suggestion = "Install it or point the driver at it explicitly (e.g. RSCRIPT=/path/to/Rscript)"
        super().__init__(message, suggestion, {"executable": executable, "driver": driver})


# =============================================================================
# Per-evaluation Errors
# =============================================================================


class RunnerError(RacelinkError):
    """Raised when the user target runner faulted for one evaluation."""

    def __init__(self, message: str, experiment_id: str | None = None) -> None:
        super().__init__(message, None, {"experiment_id": experiment_id})


class TransportError(RacelinkError):
    """Raised when a single request could not be marshaled across the boundary."""

    def __init__(self, message: str, payload: Any = None) -> None:
        suggestion = "The driver sent a payload that could not be decoded"
        super().__init__(message, suggestion, {"payload": payload})


# =============================================================================
# Session Errors
# =============================================================================


class SessionError(RacelinkError):
    """Raised when a racing session cannot continue."""

    pass


class ProcessError(SessionError):
    """Raised when the external driver process crashed or exited abnormally."""

    def __init__(
        self,
        message: str,
        *,
        returncode: int | None = None,
        stderr_tail: list[str] | None = None,
        last_request: str | None = None,
    ) -> None:
        suggestion = "Inspect the driver output below or rerun with verbose logging"
        if stderr_tail:
            suggestion += "\n" + "\n".join(stderr_tail)
        super().__init__(
            message,
            suggestion,
            {"returncode": returncode, "stderr_tail": list(stderr_tail or []), "last_request": last_request},
        )


class ProtocolError(SessionError):
    """Raised when a start/stop or completion payload is malformed."""

    def __init__(self, message: str, payload: Any = None, last_request: str | None = None) -> None:
        super().__init__(message, None, {"payload": payload, "last_request": last_request})


class SessionAborted(SessionError):
    """Raised by a session whose abort() was requested by the caller."""

    def __init__(self, last_request: str | None = None) -> None:
        super().__init__("Racing session aborted by the caller.", None, {"last_request": last_request})


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    # Base
    "RacelinkError",
    # Configuration
    "ConfigurationError",
    "ParameterSpaceError",
    "DriverNotAvailableError",
    # Per-evaluation
    "RunnerError",
    "TransportError",
    # Session
    "SessionError",
    "ProcessError",
    "ProtocolError",
    "SessionAborted",
]

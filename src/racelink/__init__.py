from .api import RaceHandle, Run, irace, multi_irace, open_session, run, start_run
from .drivers import CommandDriver, Driver, IraceDriver, ReferenceDriver, resolve_driver
from .experiment import EvaluationResult, Experiment, InstanceSet
from .foundation.exceptions import (
    ConfigurationError,
    DriverNotAvailableError,
    ParameterSpaceError,
    ProcessError,
    ProtocolError,
    RacelinkError,
    RunnerError,
    SessionAborted,
    SessionError,
    TransportError,
)
from .foundation.logging import configure_racelink_logging
from .param_space import Bool, Categorical, Configuration, Integer, Nested, ParamSpace, Real
from .results import Diagnostics, RaceResult, save_result_json
from .runner import FunctionRunner, TargetAdapter, TargetRunner
from .scenario import Scenario, Verbosity
from .session import DriverSession, SessionState

__all__ = [
    "run",
    "irace",
    "multi_irace",
    "Run",
    "start_run",
    "RaceHandle",
    "open_session",
    "Driver",
    "CommandDriver",
    "IraceDriver",
    "ReferenceDriver",
    "resolve_driver",
    "Experiment",
    "EvaluationResult",
    "InstanceSet",
    "RacelinkError",
    "ConfigurationError",
    "ParameterSpaceError",
    "DriverNotAvailableError",
    "RunnerError",
    "TransportError",
    "SessionError",
    "ProcessError",
    "ProtocolError",
    "SessionAborted",
    "configure_racelink_logging",
    "ParamSpace",
    "Configuration",
    "Real",
    "Integer",
    "Bool",
    "Categorical",
    "Nested",
    "RaceResult",
    "Diagnostics",
    "save_result_json",
    "TargetRunner",
    "FunctionRunner",
    "TargetAdapter",
    "Scenario",
    "Verbosity",
    "DriverSession",
    "SessionState",
]

"""
Config loading utilities shared by the CLI and programmatic entrypoints.

A race file (YAML or JSON) looks like:

    scenario:
      max_experiments: 200
      seed: 1
      n_jobs: 4
    parameters:
      - {name: x, type: integer, lower: 1, upper: 10}
      - {name: temperature, type: real, lower: 0.01, upper: 100, log: true}
      - {name: restart, type: categorical, variants: [never, always]}
      - {name: local_search, type: bool}
      - name: mutation
        type: nested
        parameters:
          - {name: rate, type: real, lower: 0.0, upper: 1.0}
    instances: [inst-a, inst-b, inst-c]
    runner: mypackage.targets:run_solver
    driver: reference
"""
from __future__ import annotations

import importlib
import importlib.util
import json
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import yaml

from .foundation.exceptions import ConfigurationError, ParameterSpaceError
from .param_space import ParamSpace
from .scenario import Scenario

_SCENARIO_FIELDS = {f.name for f in fields(Scenario)}


@dataclass
class RaceConfig:
    """Everything a race file describes, ready to be passed to racelink.run()."""

    scenario: Scenario
    param_space: ParamSpace
    instances: List[Any]
    instance_ids: Optional[List[str]] = None
    runner: Optional[str] = None
    driver: Optional[str] = None


def load_spec_file(path: str | Path) -> Dict[str, Any]:
    """
    Load a YAML or JSON race specification.
    """
    spec_path = Path(path).expanduser().resolve()
    if not spec_path.exists():
        raise FileNotFoundError(f"Config file '{spec_path}' does not exist.")
    suffix = spec_path.suffix.lower()
    with spec_path.open("r", encoding="utf-8") as fh:
        if suffix in {".yaml", ".yml"}:
            data = yaml.safe_load(fh) or {}
        else:
            data = json.load(fh)
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Config file '{spec_path}' must contain a mapping at the top level.")
    return dict(data)


def parse_param_space(records: Sequence[Mapping[str, Any]]) -> ParamSpace:
    space = ParamSpace()
    if not isinstance(records, Sequence) or isinstance(records, (str, bytes)):
        raise ParameterSpaceError("'parameters' must be a list of parameter descriptions")
    for record in records:
        if not isinstance(record, Mapping) or "name" not in record or "type" not in record:
            raise ParameterSpaceError(f"Parameter description needs 'name' and 'type': {record!r}")
        name = str(record["name"])
        kind = str(record["type"]).lower()
        try:
            if kind == "real":
                space.add_real(name, float(record["lower"]), float(record["upper"]), bool(record.get("log", False)))
            elif kind in {"integer", "int"}:
                space.add_integer(name, int(record["lower"]), int(record["upper"]), bool(record.get("log", False)))
            elif kind in {"bool", "boolean"}:
                space.add_bool(name)
            elif kind == "categorical":
                space.add_categorical(name, list(record["variants"]), record.get("labels"))
            elif kind == "nested":
                space.add_nested(name, parse_param_space(record.get("parameters") or []))
            else:
                raise ParameterSpaceError(f"Unknown parameter type '{kind}' for '{name}'", name)
        except KeyError as exc:
            raise ParameterSpaceError(f"Parameter '{name}' is missing {exc}", name) from exc
        except (TypeError, ValueError) as exc:
            raise ParameterSpaceError(f"Parameter '{name}' is invalid: {exc}", name) from exc
    return space


def parse_scenario(data: Mapping[str, Any]) -> Scenario:
    unknown = sorted(set(data) - _SCENARIO_FIELDS)
    if unknown:
        raise ConfigurationError(
            f"Unknown scenario keys: {', '.join(unknown)}",
            suggestion=f"Valid keys are: {', '.join(sorted(_SCENARIO_FIELDS))}",
        )
    try:
        return Scenario(**dict(data))
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid scenario: {exc}") from exc


def parse_race_config(data: Mapping[str, Any]) -> RaceConfig:
    if "scenario" not in data or "parameters" not in data:
        raise ConfigurationError("A race file needs 'scenario' and 'parameters' sections.")
    instances = data.get("instances")
    if instances is None:
        instances = [None]
    if not isinstance(instances, list) or not instances:
        raise ConfigurationError("'instances' must be a non-empty list.")
    ids = data.get("instance_ids")
    return RaceConfig(
        scenario=parse_scenario(data["scenario"] or {}),
        param_space=parse_param_space(data["parameters"] or []),
        instances=list(instances),
        instance_ids=None if ids is None else [str(i) for i in ids],
        runner=data.get("runner"),
        driver=data.get("driver"),
    )


def load_race_config(path: str | Path) -> RaceConfig:
    return parse_race_config(load_spec_file(path))


def load_runner(target: str) -> Callable[..., Any]:
    """
    Resolve "package.module:function" or "path/to/file.py:function" to a callable.
    """
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(f"Runner '{target}' must look like 'module:function'.")
    if module_name.endswith(".py"):
        file_path = Path(module_name).expanduser().resolve()
        if not file_path.exists():
            raise ConfigurationError(f"Runner file '{file_path}' does not exist.")
        spec = importlib.util.spec_from_file_location(file_path.stem, file_path)
        if spec is None or spec.loader is None:
            raise ConfigurationError(f"Cannot import runner file '{file_path}'.")
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
    else:
        try:
            module = importlib.import_module(module_name)
        except ImportError as exc:
            raise ConfigurationError(f"Cannot import runner module '{module_name}': {exc}") from exc
    runner = module
    for part in attr.split("."):
        try:
            runner = getattr(runner, part)
        except AttributeError as exc:
            raise ConfigurationError(f"Runner '{target}' not found: {exc}") from exc
    if not callable(runner) and not hasattr(runner, "run"):
        raise ConfigurationError(f"Runner '{target}' is neither callable nor has a run() method.")
    return runner


__all__ = [
    "RaceConfig",
    "load_spec_file",
    "load_race_config",
    "parse_race_config",
    "parse_param_space",
    "parse_scenario",
    "load_runner",
]

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from .api import run
from .config import load_race_config, load_runner
from .foundation.exceptions import RacelinkError
from .foundation.logging import configure_racelink_logging
from .results import save_history_csv, save_result_json


def _check_space_cmd(args) -> int:
    config = load_race_config(args.config)
    space = config.param_space.flattened()
    print(f"{len(space)} parameter(s), {len(config.instances)} instance(s), budget {config.scenario.max_experiments}")
    for name in space:
        print(f"  {space.get_raw(name)}")
    for initial in config.scenario.initial_configurations:
        space.encode_configuration(initial)
    return 0


def _run_cmd(args) -> int:
    config = load_race_config(args.config)
    target = args.runner or config.runner
    if not target:
        print("No runner given: pass --runner module:function or set 'runner' in the config file.", file=sys.stderr)
        return 2
    runner = load_runner(target)
    instances, instance_ids = config.instances, config.instance_ids
    if args.instances:
        instances, instance_ids = list(args.instances), None
    result = run(
        config.param_space,
        instances,
        runner,
        args.budget or config.scenario.max_experiments,
        args.seed,
        scenario=config.scenario,
        driver=args.driver or config.driver,
        instance_ids=instance_ids,
    )
    space = config.param_space.flattened()
    for rank, (elite, score) in enumerate(zip(result.elites, result.scores), start=1):
        values = ", ".join(f"{k}={v!r}" for k, v in elite.items())
        shown = "n/a" if score is None else f"{score:.6g}"
        print(f"#{rank} [{elite.configuration_id}] score={shown}: {values}")
    print(f"{result.diagnostics.n_experiments} experiment(s), {result.diagnostics.n_failed} failed")
    if args.output:
        save_result_json(result, space, args.output)
        print(f"Result written to {args.output}")
    if args.history_csv:
        save_history_csv(result, args.history_csv)
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="racelink", description="Race a target runner with an external irace driver.")
    p.add_argument("-v", "--verbose", action="count", default=0, help="More log output (-vv for debug).")
    sub = p.add_subparsers(dest="cmd")

    run_p = sub.add_parser("run", help="Run a race described by a YAML/JSON file")
    run_p.add_argument("--config", required=True, help="Race file (YAML or JSON)")
    run_p.add_argument("--runner", help="Target runner as module:function or file.py:function")
    run_p.add_argument("--instances", nargs="+", help="Instances to race on, replacing those of the config file")
    run_p.add_argument("--driver", choices=["irace", "reference"], help="Driver to launch (default: irace)")
    run_p.add_argument("--budget", type=int, help="Override scenario.max_experiments")
    run_p.add_argument("--seed", type=int, help="Override scenario.seed")
    run_p.add_argument("--output", help="Write elites, diagnostics and history to this JSON file")
    run_p.add_argument("--history-csv", help="Write the evaluation history to this CSV file")

    check_p = sub.add_parser("check-space", help="Validate a race file and show its parameter space")
    check_p.add_argument("--config", required=True, help="Race file (YAML or JSON)")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        configure_racelink_logging(level=logging.DEBUG if args.verbose > 1 else logging.INFO)
    try:
        if args.cmd == "run":
            return _run_cmd(args)
        if args.cmd == "check-space":
            return _check_space_cmd(args)
    except (RacelinkError, FileNotFoundError) as exc:
        print(f"racelink: {exc}", file=sys.stderr)
        return 1
    parser.print_help()
    return 2


if __name__ == "__main__":
    sys.exit(main())

from __future__ import annotations

import sys
import textwrap
from pathlib import Path

import pytest

from racelink import CommandDriver, ParamSpace, Scenario
from racelink.runner import make_adapter

# Shared head of every mock driver script: a tiny protocol implementation
# that performs the start/ready handshake.
MOCK_PRELUDE = '''
import json
import sys


def send(msg):
    sys.stdout.write(json.dumps(msg) + "\\n")
    sys.stdout.flush()


def receive():
    line = sys.stdin.readline()
    if not line:
        sys.exit(0)
    return json.loads(line)


def wait_for_stop():
    while True:
        line = sys.stdin.readline()
        if not line or json.loads(line).get("type") == "stop":
            return


start = receive()
assert start["type"] == "start", start
send({"type": "ready"})
'''


@pytest.fixture
def mock_driver(tmp_path: Path):
    """
    Returns a factory building a CommandDriver around a Python script.

    The script body runs after the handshake; `start` holds the start message.
    """

    def factory(body: str, name: str = "mock") -> CommandDriver:
        script = tmp_path / f"{name}_driver.py"
        script.write_text(MOCK_PRELUDE + textwrap.dedent(body), encoding="utf-8")
        return CommandDriver([sys.executable, str(script)], name=name)

    return factory


@pytest.fixture
def int_space() -> ParamSpace:
    return ParamSpace().add_integer("x", 1, 10)


@pytest.fixture
def mixed_space() -> ParamSpace:
    return (
        ParamSpace()
        .with_real("temperature", 0.01, 100.0, log=True)
        .with_integer("size", 1, 8)
        .with_bool("local_search")
        .with_categorical_names("restart", ["never", "always"])
    )


@pytest.fixture
def make_test_adapter():
    def factory(runner, space: ParamSpace, instances=("a", "b", "c"), **scenario_kwargs):
        scenario_kwargs.setdefault("max_experiments", 20)
        return make_adapter(runner, list(instances), Scenario(**scenario_kwargs), space)

    return factory

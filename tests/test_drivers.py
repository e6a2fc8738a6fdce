"""Tests for driver launchers."""

from __future__ import annotations

import os
import stat
import sys
from pathlib import Path

import pytest

from racelink import CommandDriver, DriverNotAvailableError, IraceDriver, ReferenceDriver, Scenario, resolve_driver
from racelink.api import open_session
from racelink.drivers.irace import bundled_script, find_rscript
from racelink.session import SessionState


class TestResolveDriver:
    def test_names(self):
        assert isinstance(resolve_driver("reference"), ReferenceDriver)
        assert isinstance(resolve_driver("IRACE"), IraceDriver)
        assert isinstance(resolve_driver(None), IraceDriver)

    def test_objects_pass_through(self):
        driver = CommandDriver(["true"])
        assert resolve_driver(driver) is driver

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown driver"):
            resolve_driver("smac")

    def test_environment_selects_default(self, monkeypatch, int_space):
        monkeypatch.setenv("RACELINK_DRIVER", "reference")
        session = open_session(lambda c, i, s: 0.0, ["a"], Scenario(max_experiments=1), int_space)
        assert isinstance(session.driver, ReferenceDriver)


class TestIraceDriver:
    def test_bundled_script_ships_with_package(self):
        script = Path(bundled_script())
        assert script.name == "irace_driver.R"
        assert script.is_file()
        assert "library(irace)" in script.read_text(encoding="utf-8")

    def test_missing_rscript(self, monkeypatch, tmp_path):
        monkeypatch.setenv("RSCRIPT", str(tmp_path / "bin" / "Rscript"))
        with pytest.raises(DriverNotAvailableError) as info:
            IraceDriver().command()
        assert info.value.details["driver"] == "irace"

    def test_rscript_not_on_path(self, monkeypatch, tmp_path):
        monkeypatch.delenv("RSCRIPT", raising=False)
        monkeypatch.setenv("PATH", str(tmp_path))
        with pytest.raises(DriverNotAvailableError):
            find_rscript()

    @pytest.mark.skipif(os.name != "posix", reason="executable bit")
    def test_explicit_rscript(self, tmp_path):
        rscript = tmp_path / "Rscript"
        rscript.write_text("#!/bin/sh\n", encoding="utf-8")
        rscript.chmod(rscript.stat().st_mode | stat.S_IXUSR)
        driver = IraceDriver(rscript=str(rscript), r_libs="/opt/rlibs")
        assert driver.command() == [str(rscript), "--vanilla", bundled_script()]
        assert driver.environment()["R_LIBS_USER"].split(os.pathsep)[0] == "/opt/rlibs"

    def test_missing_rscript_fails_the_session(self, monkeypatch, tmp_path, int_space):
        monkeypatch.setenv("RSCRIPT", str(tmp_path / "Rscript"))
        session = open_session(lambda c, i, s: 0.0, ["a"], Scenario(max_experiments=1), int_space, driver="irace")
        with pytest.raises(DriverNotAvailableError):
            session.race()
        assert session.state is SessionState.FAILED
        assert session.pid is None


class TestOtherDrivers:
    def test_reference_driver_command(self):
        driver = ReferenceDriver()
        assert driver.command() == [sys.executable, "-m", "racelink.drivers"]
        env = driver.environment()
        assert env["PYTHONUNBUFFERED"] == "1"
        assert Path(env["PYTHONPATH"].split(os.pathsep)[0]).joinpath("racelink").is_dir()

    def test_command_driver(self):
        driver = CommandDriver(["prog", 1], extra_env={"FOO": "bar"})
        assert driver.command() == ["prog", "1"]
        assert driver.environment()["FOO"] == "bar"
        assert CommandDriver(["prog"]).environment() is None
        with pytest.raises(ValueError):
            CommandDriver([]).command()

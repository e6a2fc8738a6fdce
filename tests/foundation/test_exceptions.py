"""Tests for racelink exception hierarchy."""

from __future__ import annotations


class TestRacelinkError:
    """Test base RacelinkError class."""

    def test_basic_error(self):
        """RacelinkError should work with just a message."""
        from racelink.foundation.exceptions import RacelinkError

        err = RacelinkError("Something went wrong")
        assert "Something went wrong" in str(err)
        assert err.message == "Something went wrong"
        assert err.suggestion is None
        assert err.details == {}

    def test_error_with_suggestion(self):
        """RacelinkError should include suggestion in message."""
        from racelink.foundation.exceptions import RacelinkError

        err = RacelinkError("Something went wrong", suggestion="Try this instead")
        assert "Suggestion: Try this instead" in str(err)

    def test_error_with_details(self):
        from racelink.foundation.exceptions import RacelinkError

        err = RacelinkError("Error", details={"key": "value"})
        assert err.details == {"key": "value"}


class TestConfigurationErrors:
    def test_parameter_space_error(self):
        """ParameterSpaceError should name the parameter."""
        from racelink.foundation.exceptions import ParameterSpaceError

        err = ParameterSpaceError("out of bounds", "x")
        assert err.details["name"] == "x"
        assert "ParamSpace" in str(err)

    def test_driver_not_available(self):
        """DriverNotAvailableError should point at RSCRIPT."""
        from racelink.foundation.exceptions import DriverNotAvailableError

        err = DriverNotAvailableError("Rscript", "irace")
        assert "Rscript" in str(err)
        assert "RSCRIPT=" in str(err)
        assert err.details == {"executable": "Rscript", "driver": "irace"}


class TestSessionErrors:
    def test_process_error_carries_stderr_tail(self):
        """ProcessError should show the last driver output."""
        from racelink.foundation.exceptions import ProcessError

        err = ProcessError("Driver exited", returncode=3, stderr_tail=["line 1", "fatal"], last_request="12")
        assert "fatal" in str(err)
        assert err.details["returncode"] == 3
        assert err.details["last_request"] == "12"

    def test_protocol_error_keeps_payload(self):
        from racelink.foundation.exceptions import ProtocolError

        err = ProtocolError("bad done", payload={"elites": None})
        assert err.details["payload"] == {"elites": None}

    def test_session_aborted(self):
        from racelink.foundation.exceptions import SessionAborted

        assert "aborted" in str(SessionAborted(last_request="7"))


class TestExceptionHierarchy:
    """Test exception inheritance."""

    def test_all_inherit_from_racelink_error(self):
        """All custom exceptions should inherit from RacelinkError."""
        from racelink.foundation.exceptions import (
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

        for cls in (
            ConfigurationError,
            DriverNotAvailableError,
            ParameterSpaceError,
            ProcessError,
            ProtocolError,
            RunnerError,
            SessionAborted,
            SessionError,
            TransportError,
        ):
            assert issubclass(cls, RacelinkError)

    def test_session_faults_are_session_errors(self):
        """Only session faults should end a run."""
        from racelink.foundation.exceptions import (
            ProcessError,
            ProtocolError,
            RunnerError,
            SessionAborted,
            SessionError,
            TransportError,
        )

        assert issubclass(ProcessError, SessionError)
        assert issubclass(ProtocolError, SessionError)
        assert issubclass(SessionAborted, SessionError)
        assert not issubclass(RunnerError, SessionError)
        assert not issubclass(TransportError, SessionError)

    def test_catch_by_base_class(self):
        import pytest

        from racelink.foundation.exceptions import ConfigurationError, ParameterSpaceError

        with pytest.raises(ConfigurationError):
            raise ParameterSpaceError("bad", "x")

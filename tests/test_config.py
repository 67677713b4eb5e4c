"""Tests for server options."""

import pytest
from pydantic import ValidationError

from notebook_bind.config import ServerOptions


class TestServerOptions:
    def test_defaults(self):
        """Test the option defaults."""
        options = ServerOptions()
        assert options.host == "127.0.0.1"
        assert options.port is None
        assert options.simulated_lag == 0.0
        assert options.create_statefiles is False

    def test_reads_environment(self, monkeypatch):
        """Test that NOTEBOOK_BIND_* variables are picked up."""
        monkeypatch.setenv("NOTEBOOK_BIND_PORT", "4321")
        monkeypatch.setenv("NOTEBOOK_BIND_CREATE_STATEFILES", "true")
        monkeypatch.setenv("UNRELATED_PORT", "1")

        options = ServerOptions()

        assert options.port == 4321
        assert options.create_statefiles is True

    def test_from_env(self, monkeypatch):
        """Test that overrides win over the environment and None is skipped."""
        monkeypatch.setenv("NOTEBOOK_BIND_HOST", "0.0.0.0")
        monkeypatch.setenv("NOTEBOOK_BIND_SIMULATED_LAG", "1.5")
        monkeypatch.setenv("NOTEBOOK_BIND_COPY_TO_TEMP_BEFORE_RUNNING", "yes")

        options = ServerOptions.from_env(host="localhost", port=None)

        assert options.host == "localhost"
        assert options.simulated_lag == 1.5
        assert options.copy_to_temp_before_running is True

    def test_invalid_environment(self, monkeypatch):
        """Test that a malformed variable fails validation."""
        monkeypatch.setenv("NOTEBOOK_BIND_PORT", "not-a-port")
        with pytest.raises(ValidationError):
            ServerOptions()

    @pytest.mark.parametrize("values", [{"port": 70000}, {"simulated_lag": -1}])
    def test_rejects_invalid_values(self, values):
        """Test range checks on port and lag."""
        with pytest.raises(ValidationError):
            ServerOptions(**values)

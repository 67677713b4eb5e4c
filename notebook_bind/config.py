"""
Server configuration.

Options come from ``NOTEBOOK_BIND_*`` environment variables; keyword
arguments (the CLI flags) win over the environment.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PORT = 1234


class ServerOptions(BaseSettings):
    """Options for the bind server."""

    model_config = SettingsConfigDict(env_prefix="NOTEBOOK_BIND_", extra="ignore")

    host: str = "127.0.0.1"
    # None picks the first free port from DEFAULT_PORT upwards.
    port: Optional[int] = Field(default=None, ge=0, le=65535)
    # Seconds to wait before handling each bond update, to test slow clients.
    simulated_lag: float = Field(default=0.0, ge=0.0)
    copy_to_temp_before_running: bool = False
    create_statefiles: bool = False

    @classmethod
    def from_env(cls, **overrides) -> "ServerOptions":
        """Build options from the environment; overrides that are None are left out."""
        return cls(**{k: v for k, v in overrides.items() if v is not None})

"""
Configuration management (SSOT).

This module defines ALL configuration for the instant-docs example client.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- server.base_url is the example backend that lists documents and issues tokens
- engine.server_url is where the document engine itself is reachable
- The example backend expects an empty password
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class ServerConfig:
    """Example backend configuration.

    The backend stands in for your own server: it lists documents and
    issues per-layer authentication tokens (JWTs).
    """

    base_url: str = "http://localhost:3000"
    user_id: str = "test"
    password: str = ""


@dataclass
class EngineConfig:
    """Document engine configuration.

    server_url must be an absolute URL the document engine can be reached at.
    When the engine runs on a development machine, use its LAN address.
    """

    server_url: str = "http://localhost:5000"


@dataclass
class ClientConfig:
    """HTTP transport settings."""

    # None leaves timeouts to the transport
    timeout_seconds: float | None = None
    # Connectivity failures are surfaced, not retried, by default
    max_retries: int = 0
    # Worker threads for concurrent backend requests
    max_workers: int = 4


@dataclass
class Config:
    """Application configuration (SSOT)."""

    server: ServerConfig = field(default_factory=ServerConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    client: ClientConfig = field(default_factory=ClientConfig)

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if not self.server.base_url:
            errors.append("server.base_url is required")
        if not self.server.user_id:
            errors.append("server.user_id is required")
        if not self.engine.server_url:
            errors.append("engine.server_url is required")

        if self.client.timeout_seconds is not None and self.client.timeout_seconds <= 0:
            errors.append("client.timeout_seconds must be positive")
        if self.client.max_retries < 0:
            errors.append("client.max_retries must be >= 0")
        if self.client.max_workers < 1:
            errors.append("client.max_workers must be >= 1")

        return errors


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - INSTANT_SERVER_URL
    - INSTANT_USER_ID
    - INSTANT_PASSWORD
    - INSTANT_ENGINE_URL
    - INSTANT_TIMEOUT (request timeout in seconds)
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    server_data = data.get("server", {})
    server = ServerConfig(
        base_url=os.environ.get(
            "INSTANT_SERVER_URL", server_data.get("base_url", "http://localhost:3000")
        ),
        user_id=os.environ.get("INSTANT_USER_ID", server_data.get("user_id", "test")),
        password=os.environ.get("INSTANT_PASSWORD", server_data.get("password", "")),
    )

    engine_data = data.get("engine", {})
    engine = EngineConfig(
        server_url=os.environ.get(
            "INSTANT_ENGINE_URL", engine_data.get("server_url", "http://localhost:5000")
        ),
    )

    client_data = data.get("client", {})
    timeout = client_data.get("timeout_seconds")
    timeout_env = os.environ.get("INSTANT_TIMEOUT", "")
    if timeout_env:
        try:
            timeout = float(timeout_env)
        except ValueError:
            raise ConfigValidationError(f"INSTANT_TIMEOUT is not a number: {timeout_env!r}")

    client = ClientConfig(
        timeout_seconds=float(timeout) if timeout is not None else None,
        max_retries=int(client_data.get("max_retries", 0)),
        max_workers=int(client_data.get("max_workers", 4)),
    )

    config = Config(server=server, engine=engine, client=client)

    errors = config.validate()
    if errors:
        raise ConfigValidationError("; ".join(errors))

    return config


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# instant-docs configuration

# Example backend: lists documents and issues per-layer tokens.
# The example server expects an empty password.
server:
  base_url: "http://localhost:3000"
  user_id: "test"
  password: ""

# Document engine. Use your machine's LAN address when testing on a device.
engine:
  server_url: "http://localhost:5000"

# HTTP transport
client:
  timeout_seconds: null        # null: leave timeouts to the transport
  max_retries: 0               # connectivity failures are surfaced, not retried
  max_workers: 4               # concurrent backend requests
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)

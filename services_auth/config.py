"""Configuration loading for services-auth.

Settings come from the environment, optionally seeded from a .env file.
The protocol constants of the flow (client ID, redirect URI, paths) are
fixed and cannot be configured.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .oauth.flow import DEFAULT_HTTP_TIMEOUT
from .oauth.push import DEFAULT_PUSH_TIMEOUT
from .oauth.store import DEFAULT_STORE_DIR

ENV_STORE_DIR = "SERVICES_AUTH_STORE_DIR"
ENV_HTTP_TIMEOUT = "SERVICES_AUTH_HTTP_TIMEOUT"
ENV_PUSH_TIMEOUT = "SERVICES_AUTH_PUSH_TIMEOUT"

# Env file search paths in priority order
ENV_SEARCH_PATHS = [
    Path(".env"),
    Path.home() / ".config" / "services-auth" / ".env",
]


@dataclass
class Config:
    """services-auth configuration."""

    store_dir: Path = DEFAULT_STORE_DIR
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    push_timeout: float = DEFAULT_PUSH_TIMEOUT
    env_path: Path | None = None


def find_env_file(explicit_path: Path | None = None) -> Path | None:
    """Find the .env file, checking project then user level."""
    if explicit_path:
        if explicit_path.exists():
            return explicit_path
        return None

    for path in ENV_SEARCH_PATHS:
        if path.exists():
            return path
    return None


def _read_seconds(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default

    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number of seconds, got {raw!r}") from None

    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


def load_config(env_path: Path | None = None) -> Config:
    """Load configuration from the environment.

    Args:
        env_path: Explicit path to .env file (optional)

    Returns:
        Config with values from the environment or defaults

    Raises:
        ValueError: If a timeout variable is not a positive number
    """
    env_file = find_env_file(env_path)
    if env_file:
        load_dotenv(env_file)

    store_dir = os.environ.get(ENV_STORE_DIR, "").strip()

    return Config(
        store_dir=Path(store_dir).expanduser() if store_dir else DEFAULT_STORE_DIR,
        http_timeout=_read_seconds(ENV_HTTP_TIMEOUT, DEFAULT_HTTP_TIMEOUT),
        push_timeout=_read_seconds(ENV_PUSH_TIMEOUT, DEFAULT_PUSH_TIMEOUT),
        env_path=env_file,
    )

"""Process configuration sourced from the environment."""

from dataclasses import dataclass, field
from typing import Callable, Optional

LookupEnv = Callable[[str], Optional[str]]

DEFAULT_LISTEN_HOST = "0.0.0.0"
DEFAULT_SHUTDOWN_GRACE_SECONDS = 10.0
DEFAULT_READ_HEADER_TIMEOUT = 10.0
DEFAULT_SOCKET_TIMEOUT = 60.0
DEFAULT_UPSTREAM_TIMEOUT = 2.0
DEFAULT_LOG_LEVEL = "INFO"
LOG_FORMATS = ("json", "text")
DEFAULT_VERSION = "dev"

HEADER_DELIMITER = b"\r\n\r\n"
MAX_BODY_BYTES = 1024 * 1024
REAL_IP_HEADER = "x-real-ip"

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "same-origin",
}


class ConfigError(ValueError):
    """Raised when the environment does not describe a runnable process."""


@dataclass(frozen=True)
class ServerConfig:
    """Listener, timeout and logging settings, fixed for the process lifetime."""

    port: int
    host: str = DEFAULT_LISTEN_HOST
    shutdown_grace_seconds: float = DEFAULT_SHUTDOWN_GRACE_SECONDS
    read_header_timeout: float = DEFAULT_READ_HEADER_TIMEOUT
    socket_timeout: float = DEFAULT_SOCKET_TIMEOUT
    upstream_timeout: float = DEFAULT_UPSTREAM_TIMEOUT
    log_level: str = DEFAULT_LOG_LEVEL
    log_destination: Optional[str] = None
    log_json: bool = True


@dataclass(frozen=True)
class UpstreamCredentials:
    """Access-control API credentials shared read-only by every client call."""

    token: str = field(repr=False)
    base_host: str
    org_id: str


def _require(lookup_env: LookupEnv, name: str) -> str:
    value = lookup_env(name)
    if value is None:
        raise ConfigError(f"failed to find env {name}")
    return value


def _env_int(lookup_env: LookupEnv, name: str) -> int:
    raw = _require(lookup_env, name)
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"invalid env {name}: {raw!r} is not an integer") from exc


def _env_seconds(lookup_env: LookupEnv, name: str, default: float) -> float:
    raw = lookup_env(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"invalid env {name}: {raw!r} is not a number") from exc
    if value <= 0:
        raise ConfigError(f"invalid env {name}: must be positive")
    return value


def _log_format(lookup_env: LookupEnv) -> str:
    raw = (lookup_env("LOG_FORMAT") or LOG_FORMATS[0]).lower()
    if raw not in LOG_FORMATS:
        raise ConfigError(f"invalid env LOG_FORMAT: {raw!r} is not json or text")
    return raw


def load_config(lookup_env: LookupEnv) -> tuple[ServerConfig, UpstreamCredentials]:
    """Validate the environment once and return the immutable process settings."""
    port = _env_int(lookup_env, "PORT")
    if not 0 <= port <= 65535:
        raise ConfigError(f"invalid env PORT: {port} is out of range")

    credentials = UpstreamCredentials(
        token=_require(lookup_env, "PANGOLIN_TOKEN"),
        base_host=_require(lookup_env, "PANGOLIN_HOST").rstrip("/"),
        org_id=_require(lookup_env, "PANGOLIN_ORG"),
    )

    config = ServerConfig(
        port=port,
        host=lookup_env("LISTEN_HOST") or DEFAULT_LISTEN_HOST,
        shutdown_grace_seconds=_env_seconds(
            lookup_env, "SHUTDOWN_GRACE_SECONDS", DEFAULT_SHUTDOWN_GRACE_SECONDS
        ),
        read_header_timeout=_env_seconds(
            lookup_env, "READ_HEADER_TIMEOUT_SECONDS", DEFAULT_READ_HEADER_TIMEOUT
        ),
        socket_timeout=_env_seconds(
            lookup_env, "SOCKET_TIMEOUT_SECONDS", DEFAULT_SOCKET_TIMEOUT
        ),
        upstream_timeout=_env_seconds(
            lookup_env, "UPSTREAM_TIMEOUT_SECONDS", DEFAULT_UPSTREAM_TIMEOUT
        ),
        log_level=(lookup_env("LOG_LEVEL") or DEFAULT_LOG_LEVEL).upper(),
        log_destination=lookup_env("LOG_DESTINATION"),
        log_json=_log_format(lookup_env) == "json",
    )
    return config, credentials

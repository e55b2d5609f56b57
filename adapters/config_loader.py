"""Client configuration: layered defaults, YAML file, env overrides, and redaction.

Provides:
- Built-in defaults for the chat stream endpoint
- Optional .lobai.config.yaml layer (top-level key: stream)
- {env:VAR} interpolation restricted to LOBAI_* variables
- LOBAI_* environment overrides
- Redaction for safe logging (never leak bearer tokens)

Note: the access token is injected by the caller (argument or config). This
module reads it only from the explicit config layers above, never from an
ambient credential store.
"""

from __future__ import annotations

import copy
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import httpx
import yaml

logger = logging.getLogger("lobai.config_loader")

# Redaction sentinel
REDACTED = "***REDACTED***"

DEFAULT_CONFIG_FILE = ".lobai.config.yaml"

DEFAULTS: Dict[str, Any] = {
    "api_url": "http://localhost:8080/api",
    "stream_path": "/messages/stream",
    "encoding": "utf-8",
    "access_token": "",
    "timeouts": {
        "connect_ms": 5000,
        # Backend emitter gives up after 5 minutes
        "read_ms": 300000,
        "write_ms": 30000,
        "pool_ms": 5000,
    },
}

# Env var → config path
_ENV_OVERRIDES = {
    "LOBAI_API_URL": ("api_url",),
    "LOBAI_STREAM_PATH": ("stream_path",),
    "LOBAI_ENCODING": ("encoding",),
    "LOBAI_ACCESS_TOKEN": ("access_token",),
    "LOBAI_CONNECT_TIMEOUT_MS": ("timeouts", "connect_ms"),
    "LOBAI_READ_TIMEOUT_MS": ("timeouts", "read_ms"),
}

_ENV_ALLOWED_RE = re.compile(r"^LOBAI_")

# Regex for interpolation tokens: {env:VAR}
_INTERP_RE = re.compile(r"\{env:([^}]+)\}")

# Patterns that indicate sensitive keys (for redaction)
_SENSITIVE_KEY_RE = re.compile(
    r"(auth|key|secret|token|password|credential|bearer|cookie)",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class ClientConfig:
    """Resolved settings for the streaming client."""

    api_url: str = DEFAULTS["api_url"]
    stream_path: str = DEFAULTS["stream_path"]
    encoding: str = DEFAULTS["encoding"]
    access_token: str = ""
    connect_timeout_ms: int = 5000
    read_timeout_ms: int = 300000
    write_timeout_ms: int = 30000
    pool_timeout_ms: int = 5000

    @property
    def stream_url(self) -> str:
        return self.api_url.rstrip("/") + "/" + self.stream_path.lstrip("/")

    def timeout(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self.connect_timeout_ms / 1000.0,
            read=self.read_timeout_ms / 1000.0,
            write=self.write_timeout_ms / 1000.0,
            pool=self.pool_timeout_ms / 1000.0,
        )


# ── Interpolation ─────────────────────────────────────────────────────


def interpolate_value(value: str, env: Mapping[str, str] = os.environ) -> str:
    """Resolve {env:VAR} tokens in a string. Only LOBAI_* variables are allowed."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if not _ENV_ALLOWED_RE.search(var_name):
            raise ValueError(
                f"Environment variable '{var_name}' is not in the allowlist. "
                f"Allowed: ^LOBAI_.*"
            )
        val = env.get(var_name)
        if val is None:
            raise ValueError(f"Environment variable '{var_name}' is not set")
        return val

    return _INTERP_RE.sub(_replace, value)


def interpolate_config(
    config: Dict[str, Any], env: Mapping[str, str] = os.environ
) -> Dict[str, Any]:
    """Recursively interpolate all string values. Returns a new dict."""
    result = {}
    for key, value in config.items():
        if isinstance(value, str):
            result[key] = interpolate_value(value, env)
        elif isinstance(value, dict):
            result[key] = interpolate_config(value, env)
        else:
            result[key] = value
    return result


# ── Deep merge ────────────────────────────────────────────────────────


def deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge overlay into base. Overlay values win.

    Returns a new dict (base and overlay are not modified).
    """
    result = copy.deepcopy(base)
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


# ── Loading ───────────────────────────────────────────────────────────


def read_config_file(path: str) -> Dict[str, Any]:
    """Read the `stream` section of a YAML config file."""
    with open(path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping: {path}")
    section = data.get("stream", {})
    if not isinstance(section, dict):
        raise ValueError(f"'stream' section must be a mapping: {path}")
    return section


def env_overrides(env: Mapping[str, str] = os.environ) -> Dict[str, Any]:
    """Build a config overlay from LOBAI_* environment variables."""
    overlay: Dict[str, Any] = {}
    for var_name, path in _ENV_OVERRIDES.items():
        value = env.get(var_name)
        if value is None or value == "":
            continue
        target = overlay
        for part in path[:-1]:
            target = target.setdefault(part, {})
        target[path[-1]] = value
    return overlay


def _as_int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"Config value '{name}' must be an integer, got {value!r}") from None


def load_config(
    path: Optional[str] = None, env: Mapping[str, str] = os.environ
) -> ClientConfig:
    """Resolve ClientConfig: defaults → YAML file → environment.

    Without an explicit path, .lobai.config.yaml in the working directory is
    used when present. An explicit path that does not exist is an error.
    """
    merged = copy.deepcopy(DEFAULTS)

    if path is None and Path(DEFAULT_CONFIG_FILE).is_file():
        path = DEFAULT_CONFIG_FILE
    if path is not None:
        if not Path(path).is_file():
            raise ValueError(f"Config not found: {path}")
        file_layer = interpolate_config(read_config_file(path), env)
        merged = deep_merge(merged, file_layer)

    merged = deep_merge(merged, env_overrides(env))
    logger.debug("Resolved client config: %s", redact_config(merged))

    timeouts = merged.get("timeouts", {})
    return ClientConfig(
        api_url=str(merged["api_url"]),
        stream_path=str(merged["stream_path"]),
        encoding=str(merged["encoding"]),
        access_token=str(merged.get("access_token") or ""),
        connect_timeout_ms=_as_int(timeouts.get("connect_ms"), "timeouts.connect_ms"),
        read_timeout_ms=_as_int(timeouts.get("read_ms"), "timeouts.read_ms"),
        write_timeout_ms=_as_int(timeouts.get("write_ms"), "timeouts.write_ms"),
        pool_timeout_ms=_as_int(timeouts.get("pool_ms"), "timeouts.pool_ms"),
    )


# ── Redaction ─────────────────────────────────────────────────────────


def redact_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """Create a redacted copy of config for display/logging."""
    result = {}
    for key, value in config.items():
        if isinstance(value, dict):
            result[key] = redact_config(value)
        elif _SENSITIVE_KEY_RE.search(key):
            result[key] = REDACTED if value else value
        else:
            result[key] = value
    return result


def redact_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Return a copy of headers with sensitive values redacted."""
    redacted = {}
    for key, value in headers.items():
        if _SENSITIVE_KEY_RE.search(key):
            redacted[key] = REDACTED
        else:
            redacted[key] = value
    return redacted

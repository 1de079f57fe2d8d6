"""TOML-based controller configuration.

Loads ~/.asgctl/config.toml (global) and asgctl.toml (project), merges
them, applies ASGCTL_* environment variables and finally explicit
overrides (CLI flags), and builds a ControllerConfig.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from asgctl.constants import (
    DEFAULT_BIND_ADDRESS,
    DEFAULT_ORIGINAL_TEMPLATE_SUFFIX,
    DEFAULT_RECOMMENDER_URL,
    DEFAULT_REGION,
    GROUP_PENDING_POLL_INTERVAL,
    GROUP_PENDING_POLL_TIMEOUT,
    INSTANCE_RUNNING_POLL_INTERVAL,
    INSTANCE_RUNNING_POLL_TIMEOUT,
    SPOT_REQUEST_POLL_INTERVAL,
    SPOT_REQUEST_POLL_TIMEOUT,
)
from asgctl.core import ConfigurationError
from asgctl.polling import PollingPolicy

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".asgctl" / "config.toml"
PROJECT_CONFIG_NAME = "asgctl.toml"
ENV_PREFIX = "ASGCTL_"

_LOG_LEVELS = frozenset({"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"})


@dataclass(frozen=True, slots=True)
class PollingConfig:
    """Per-barrier polling policies."""

    spot_request: PollingPolicy = PollingPolicy(SPOT_REQUEST_POLL_INTERVAL, SPOT_REQUEST_POLL_TIMEOUT)
    instance_running: PollingPolicy = PollingPolicy(
        INSTANCE_RUNNING_POLL_INTERVAL, INSTANCE_RUNNING_POLL_TIMEOUT,
    )
    group_pending: PollingPolicy = PollingPolicy(GROUP_PENDING_POLL_INTERVAL, GROUP_PENDING_POLL_TIMEOUT)


@dataclass(frozen=True, slots=True)
class ControllerConfig:
    """Controller settings.

    Args:
        region: AWS region of the managed groups and the recommender query.
        recommender_url: Base URL of the recommendation service.
        bind_address: ``host:port`` of the alert endpoint; empty host binds all.
        log_level: loguru level name.
        log_file: Optional log file path, rotated daily.
        original_template_suffix: Suffix of the preserved launch template
            consulted for the rebalancer's baseline instance type.
        request_timeout: Timeout of a single AWS or recommender call, in seconds.
        polling: Interval and deadline of each polling barrier.
    """

    region: str = DEFAULT_REGION
    recommender_url: str = DEFAULT_RECOMMENDER_URL
    bind_address: str = DEFAULT_BIND_ADDRESS
    log_level: str = "INFO"
    log_file: str | None = None
    original_template_suffix: str = DEFAULT_ORIGINAL_TEMPLATE_SUFFIX
    request_timeout: int = 30
    polling: PollingConfig = field(default_factory=PollingConfig)

    @property
    def bind_host(self) -> str:
        host, _, _ = self.bind_address.rpartition(":")
        return host or "0.0.0.0"

    @property
    def bind_port(self) -> int:
        _, _, port = self.bind_address.rpartition(":")
        return int(port)


# =============================================================================
# Raw loading
# =============================================================================


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def _from_env(environ: Mapping[str, str]) -> RawConfig:
    """ASGCTL_<KEY> for top-level keys, ASGCTL_POLLING__<NAME>__<FIELD> for polling."""
    raw: RawConfig = {}
    for name, value in environ.items():
        if not name.startswith(ENV_PREFIX):
            continue
        path = name.removeprefix(ENV_PREFIX).lower().split("__")
        target = raw
        for part in path[:-1]:
            target = target.setdefault(part, {})
        target[path[-1]] = value
    return raw


def load_raw_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_cfg = _read_toml((project_dir or Path.cwd()) / PROJECT_CONFIG_NAME)
    env_cfg = _from_env(os.environ if environ is None else environ)
    return _deep_merge(_deep_merge(global_cfg, project_cfg), env_cfg)


# =============================================================================
# Building
# =============================================================================


def _build_policy(name: str, raw: Any, default: PollingPolicy) -> PollingPolicy:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"[polling.{name}] must be a table")
    unknown = set(raw) - {"interval", "timeout"}
    if unknown:
        raise ConfigurationError(f"Unknown keys in [polling.{name}]: {', '.join(sorted(unknown))}")
    try:
        return PollingPolicy(
            interval=float(raw.get("interval", default.interval)),
            timeout=float(raw.get("timeout", default.timeout)),
        )
    except ValueError as e:
        raise ConfigurationError(f"[polling.{name}]: {e}") from e


def _build_polling(raw: Any) -> PollingConfig:
    if raw is None:
        return PollingConfig()
    if not isinstance(raw, dict):
        raise ConfigurationError("[polling] must be a table")

    defaults = PollingConfig()
    names = {f.name for f in fields(PollingConfig)}
    unknown = set(raw) - names
    if unknown:
        raise ConfigurationError(f"Unknown polling barriers: {', '.join(sorted(unknown))}")
    return PollingConfig(**{
        name: _build_policy(name, raw[name], getattr(defaults, name))
        for name in names
        if name in raw
    })


def build_config(raw: RawConfig) -> ControllerConfig:
    """Validate a merged raw mapping into a ControllerConfig."""
    raw = {k: v for k, v in raw.items() if v is not None}
    polling = _build_polling(raw.pop("polling", None))

    known = {f.name for f in fields(ControllerConfig)} - {"polling"}
    unknown = set(raw) - known
    if unknown:
        raise ConfigurationError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

    if "request_timeout" in raw:
        try:
            raw["request_timeout"] = int(raw["request_timeout"])
        except ValueError as e:
            raise ConfigurationError(f"request_timeout must be an integer: {e}") from e
    if "log_level" in raw:
        raw["log_level"] = str(raw["log_level"]).upper()
        if raw["log_level"] not in _LOG_LEVELS:
            raise ConfigurationError(f"Unknown log level '{raw['log_level']}'")

    config = ControllerConfig(polling=polling, **raw)
    try:
        config.bind_port
    except ValueError as e:
        raise ConfigurationError(f"Invalid bind_address '{config.bind_address}'") from e
    return config


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> ControllerConfig:
    """Files, then environment, then ``overrides``; later sources win."""
    raw = load_raw_config(project_dir=project_dir, global_path=global_path, environ=environ)
    if overrides:
        raw = _deep_merge(raw, {k: v for k, v in overrides.items() if v is not None})
    return build_config(raw)


__all__ = [
    "ControllerConfig",
    "PollingConfig",
    "build_config",
    "load_config",
    "load_raw_config",
]

"""TOML-based driver configuration.

Loads ~/.lke-driver/defaults.toml (global) and lke-driver.toml (project),
merges them, and resolves the ``[driver]`` table into a DriverConfig.

Example ``lke-driver.toml``::

    [driver]
    api_url = "https://api.linode.com/v4"
    retry_interval = 5
    cluster_ready_timeout = 1200
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from lke_driver.constants import (
    CLUSTER_READY_TIMEOUT,
    DEFAULT_LINODE_URL,
    DEFAULT_REGION,
    REMOVE_TIMEOUT,
    RETRY_INTERVAL,
    SECRET_POLL_INTERVAL,
    SECRET_TIMEOUT,
    SERVICE_ACCOUNT_TIMEOUT,
    USER_AGENT,
)

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".lke-driver" / "defaults.toml"
PROJECT_CONFIG_NAME = "lke-driver.toml"
API_URL_ENV = "LINODE_API_URL"


@dataclass(frozen=True, slots=True)
class DriverConfig:
    """Immutable driver settings.

    Args:
        api_url: Linode API v4 base URL.
        user_agent: User-Agent sent with every API request.
        request_timeout: Per-request HTTP timeout in seconds.
        retry_interval: Fixed interval between readiness polls.
        cluster_ready_timeout: Bound for "cluster has a ready node".
        remove_timeout: Bound for the post-delete status poll.
        service_account_timeout: Bound for the whole credential bootstrap loop.
        secret_poll_interval: Interval between token secret reads.
        secret_timeout: Bound for the token secret to be populated.
        default_region: Region used when the options do not name one.
    """

    api_url: str = DEFAULT_LINODE_URL
    user_agent: str = USER_AGENT
    request_timeout: float = 30.0
    retry_interval: float = RETRY_INTERVAL
    cluster_ready_timeout: float = CLUSTER_READY_TIMEOUT
    remove_timeout: float = REMOVE_TIMEOUT
    service_account_timeout: float = SERVICE_ACCOUNT_TIMEOUT
    secret_poll_interval: float = SECRET_POLL_INTERVAL
    secret_timeout: float = SECRET_TIMEOUT
    default_region: str = DEFAULT_REGION


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
    with path.open("rb") as f:
        return tomllib.load(f)


def load_raw_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault("driver", {})
    return merged


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> DriverConfig:
    """Resolve the effective DriverConfig from TOML files and environment."""
    raw = dict(load_raw_config(project_dir=project_dir, global_path=global_path)["driver"])

    known = {f.name for f in fields(DriverConfig)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValueError(
            f"Unknown driver setting(s): {', '.join(unknown)}. "
            f"Valid: {', '.join(sorted(known))}"
        )

    if url := os.environ.get(API_URL_ENV):
        raw["api_url"] = url

    return DriverConfig(**raw)

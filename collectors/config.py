# Runtime settings, resolved once at startup and passed into every collector.

import getpass
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr

DEFAULT_DOCKER_PATHS = [
    "/usr/local/bin/docker",
    "/opt/homebrew/bin/docker",
    "/usr/bin/docker",
]

DEFAULT_SYSTEM_PREFIXES = [
    "/System/",
    "/usr/libexec/",
    "/usr/sbin/",
    "/sbin/",
]


class Timeouts(BaseModel):
    """Per-tool timeouts in seconds."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    default: float = Field(default=2.0, gt=0)
    socket_listing: float = Field(default=4.0, gt=0)
    process_metadata: float = Field(default=2.5, gt=0)
    owner_lookup: float = Field(default=2.0, gt=0)
    runtime_probe: float = Field(default=1.0, gt=0)
    container_listing: float = Field(default=3.0, gt=0)
    container_stats: float = Field(default=3.5, gt=0)
    container_control: float = Field(default=15.0, gt=0)


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    lsof_path: StrictStr = "lsof"
    ps_path: StrictStr = "ps"
    docker_paths: list[StrictStr] = Field(default_factory=lambda: list(DEFAULT_DOCKER_PATHS))
    timeouts: Timeouts = Field(default_factory=Timeouts)
    max_workers: StrictInt = Field(default=8, ge=1)
    cpu_sample_interval: float = Field(default=0.1, ge=0)
    current_user: StrictStr = ""
    system_uid_threshold: StrictInt = 500
    system_path_prefixes: list[StrictStr] = Field(default_factory=lambda: list(DEFAULT_SYSTEM_PREFIXES))
    display_names_path: Optional[StrictStr] = None


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return ""


def settings_from_dict(data: dict[str, Any]) -> Settings:
    # null in YAML means "use the default"
    known = {k: v for k, v in data.items() if v is not None}
    if not known.get("current_user"):
        known["current_user"] = _current_user()
    return Settings.model_validate(known)


def load_config(path: str | Path | None = None) -> Settings:
    if path is None:
        return settings_from_dict({})

    config_path = Path(path).expanduser()
    if not config_path.exists():
        raise ValueError(f"Config file not found: {config_path}")

    with open(config_path, encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping: {config_path}")

    return settings_from_dict(data)

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field

PORT_ENV = "PORT"


class RelayConfig(BaseModel):
    """Runtime settings for the signaling relay."""

    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=0, le=65535)
    heartbeat_secs: float = Field(default=30.0, gt=0)
    status_interval_secs: float = Field(default=60.0, gt=0)
    close_timeout_secs: float = Field(default=10.0, ge=0)
    send_timeout_secs: float = Field(default=10.0, gt=0)
    bind_sender: bool = False
    log_level: str = "INFO"

    model_config = ConfigDict(extra="forbid")


def load_config(
    path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    **overrides: Any,
) -> RelayConfig:
    """Layer YAML file < environment < explicit overrides.

    ``None`` overrides are ignored so argparse defaults can be passed through.
    """

    env = os.environ if env is None else env
    values: Dict[str, Any] = {}
    if path is not None:
        values.update(yaml.safe_load(Path(path).read_text()) or {})
    if env.get(PORT_ENV):
        values["port"] = env[PORT_ENV]
    values.update({k: v for k, v in overrides.items() if v is not None})
    return RelayConfig.model_validate(values)


__all__ = ["RelayConfig", "load_config", "PORT_ENV"]

from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    CONFIG_ENV_VAR,
    DATABASE_URL_ENV_VARS,
    DEFAULT_CONFIG_PATH,
    DEFAULT_LOG_LEVEL,
    DEFAULT_MAX_REWORK_ATTEMPTS,
)


class WorkflowConfig(BaseModel):
    """Policies applied by the workflow engine."""

    progress_policy: Literal["retain", "reset"] = "retain"
    max_rework_attempts: Optional[int] = Field(
        default=DEFAULT_MAX_REWORK_ATTEMPTS, ge=1
    )


class PanelflowConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    log_level: str = DEFAULT_LOG_LEVEL
    workflow: WorkflowConfig = WorkflowConfig()


def load_config(path: Optional[str] = None) -> PanelflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to PANELFLOW_CONFIG env
            variable or 'panelflow.yaml' in the current directory.
    """

    config_path = path or os.getenv(CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH)
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = PanelflowConfig(**data)
    else:
        config = PanelflowConfig()

    for var in DATABASE_URL_ENV_VARS:
        env_db_url = os.getenv(var)
        if env_db_url:
            config.database_url = env_db_url
            break
    return config

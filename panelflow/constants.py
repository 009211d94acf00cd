"""Shared constants for panelflow."""

PRODUCTION_LINES = (1, 2)

CONFIG_ENV_VAR = "PANELFLOW_CONFIG"
DEFAULT_CONFIG_PATH = "panelflow.yaml"
DATABASE_URL_ENV_VARS = ("PANELFLOW_DATABASE_URL", "DATABASE_URL")

DEFAULT_LOG_LEVEL = "WARNING"

# Unlimited when None.
DEFAULT_MAX_REWORK_ATTEMPTS = None

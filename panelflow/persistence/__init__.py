"""Persistence layer for panel workflows."""

from __future__ import annotations

import logging
import os
from typing import Optional

from ..config import PanelflowConfig, load_config
from ..constants import DATABASE_URL_ENV_VARS
from ..db import WorkflowDB
from .inmemory import InMemoryWorkflowRepository
from .repository import WorkflowRepository
from .sqlite import SQLiteWorkflowRepository

logger = logging.getLogger(__name__)

_repository_instance: WorkflowRepository | None = None
_repository_url: Optional[str] = None

# URL prefixes served by the SQLAlchemy async store
_SQLALCHEMY_PREFIXES = ("sqlite+aiosqlite://", "postgresql+asyncpg://")


def get_repository(
    database_url: Optional[str] = None, config: Optional[PanelflowConfig] = None
) -> WorkflowRepository:
    """Factory function to obtain a workflow repository.

    The repository backend is selected based on ``database_url`` which can be
    provided explicitly, via environment variable ``PANELFLOW_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory repository is returned.
    """

    global _repository_instance, _repository_url
    # a config naming a different database replaces the cached repository
    if _repository_instance is not None and database_url is None:
        if config is None or config.database_url in (None, _repository_url):
            return _repository_instance

    config = config or load_config()
    database_url = (
        database_url
        or next((os.getenv(v) for v in DATABASE_URL_ENV_VARS if os.getenv(v)), None)
        or getattr(config, "database_url", None)
    )

    if not database_url:
        _repository_instance = InMemoryWorkflowRepository()
    elif database_url.startswith(_SQLALCHEMY_PREFIXES):
        scheme = database_url.split("://", 1)[0]
        try:
            _repository_instance = WorkflowDB(database_url)
        except ImportError as exc:
            raise RuntimeError(f"{scheme} support not available: {exc}") from exc
    elif database_url.startswith("sqlite://"):
        # sqlite:///relative.db and sqlite:////absolute/path.db
        if database_url.startswith("sqlite:///"):
            path = database_url[len("sqlite:///"):]
        else:
            path = database_url.replace("sqlite://", "", 1)
        _repository_instance = SQLiteWorkflowRepository(path)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    _repository_url = database_url or None
    logger.debug(f"Using {type(_repository_instance).__name__} repository")
    return _repository_instance


def reset_repository() -> None:
    """Forget the cached repository instance."""
    global _repository_instance, _repository_url
    _repository_instance = None
    _repository_url = None


__all__ = [
    "WorkflowRepository",
    "SQLiteWorkflowRepository",
    "InMemoryWorkflowRepository",
    "get_repository",
    "reset_repository",
]

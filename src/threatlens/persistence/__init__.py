"""Persistence layer for ThreatLens - relational store on PostgreSQL."""

from threatlens.persistence.database import (
    close_db,
    configure_database,
    get_async_engine,
    get_async_session,
    init_db,
)
from threatlens.persistence.models import (
    AlertIncidentMap,
    AlertRecord,
    IncidentActivityRecord,
    IncidentRecord,
)
from threatlens.persistence.repository import (
    AlertNotFoundError,
    IncidentNotFoundError,
    PersistenceError,
    TriageRepository,
    TriageStore,
)

__all__ = [
    # Database
    "close_db",
    "configure_database",
    "get_async_engine",
    "get_async_session",
    "init_db",
    # Tables
    "AlertIncidentMap",
    "AlertRecord",
    "IncidentActivityRecord",
    "IncidentRecord",
    # Store
    "TriageRepository",
    "TriageStore",
    # Errors
    "AlertNotFoundError",
    "IncidentNotFoundError",
    "PersistenceError",
]

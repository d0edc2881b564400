"""
Business logic services.

Each service handles one stage of the import workflow.
"""

from services.import_service import ImportService, get_import_service
from services.import_profiles import ImportProfile, get_import_profile, list_import_profiles
from services.import_session_store import (
    ImportSession,
    SessionStatus,
    InMemorySessionStore,
    SupabaseSessionStore,
    get_session_store,
)
from services.entity_store import SupabaseEntityStore, get_entity_store
from services.import_history_service import ImportHistoryService, get_import_history_service

__all__ = [
    "ImportService",
    "get_import_service",
    "ImportProfile",
    "get_import_profile",
    "list_import_profiles",
    "ImportSession",
    "SessionStatus",
    "InMemorySessionStore",
    "SupabaseSessionStore",
    "get_session_store",
    "SupabaseEntityStore",
    "get_entity_store",
    "ImportHistoryService",
    "get_import_history_service",
]

"""
Database module for the Tariff & Insurance Adjudication Engine.

Exports engine and session management.
"""

from tariff_engine.db.connection import (
    check_db_connection,
    create_all,
    create_engine_from_settings,
    dispose_engine,
    get_engine,
    get_session_maker,
    make_session_maker,
    session_scope,
)

__all__ = [
    "get_engine",
    "get_session_maker",
    "make_session_maker",
    "session_scope",
    "create_engine_from_settings",
    "create_all",
    "dispose_engine",
    "check_db_connection",
]

"""Persistence contracts used by the sync engine."""

from app.stores.project_store import ProjectStore, SQLAlchemyProjectStore, SyncCompletion, SyncLogEntry

__all__ = ["ProjectStore", "SQLAlchemyProjectStore", "SyncCompletion", "SyncLogEntry"]

"""Adapters - storage integrations for the audit trail engine.

Contains:
- sql_store.py - SQLAlchemy async engine lifecycle and SqlAuditLogStore
"""

__all__: list[str] = []

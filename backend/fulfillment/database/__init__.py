"""
Database package: engine/session management and ORM models.

Import submodules explicitly to avoid circular imports between models
and services.
"""

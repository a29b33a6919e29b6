"""
Database package initialization.

The package follows a modular structure:
- base: declarative base, mixins and snapshot serialization
- connection: async engine and transactional session management
- models: SQLAlchemy ORM models for all entities
"""

__all__ = []

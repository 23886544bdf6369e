"""Persistence layer - document store adapters."""

from contentforge.persistence.adapter import WHERE_OPERATORS, PersistenceAdapter
from contentforge.persistence.config import DatabaseConfig, create_adapter

__all__ = ["PersistenceAdapter", "DatabaseConfig", "WHERE_OPERATORS", "create_adapter"]

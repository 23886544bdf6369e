"""Database configuration and adapter factory."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from contentforge.persistence.adapter import PersistenceAdapter


@dataclass
class DatabaseConfig:
    """Database connection configuration.

    Supports sqlite:/// URLs, including sqlite:///:memory:.
    """

    url: str

    @classmethod
    def from_env(cls, base_path: Path | None = None) -> DatabaseConfig:
        """Create config from environment variables.

        Resolution order:
        1. DATABASE_URL env var (standard)
        2. CONTENTFORGE_DB_PATH env var (converted to sqlite:/// URL)
        3. Default: sqlite:///{base_path}/data/contentforge.db
        """
        url = os.environ.get("DATABASE_URL")
        if url:
            return cls(url=url)

        db_path = os.environ.get("CONTENTFORGE_DB_PATH")
        if db_path:
            return cls(url=f"sqlite:///{db_path}")

        if base_path:
            return cls(url=f"sqlite:///{base_path / 'data' / 'contentforge.db'}")

        return cls(url="sqlite:///contentforge.db")

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def sqlite_path(self) -> str:
        """Filesystem path of a sqlite:/// URL (":memory:" if empty)."""
        path = self.url.replace("sqlite:///", "", 1)
        return path or ":memory:"


def create_adapter(config: DatabaseConfig) -> PersistenceAdapter:
    """Create a persistence adapter based on the database URL scheme.

    Args:
        config: Database configuration with URL.

    Returns:
        A PersistenceAdapter instance (not yet connected).

    Raises:
        ValueError: For unsupported URL schemes.
    """
    if config.is_sqlite:
        from contentforge.persistence.sqlite import SQLiteAdapter

        path = config.sqlite_path
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        return SQLiteAdapter(path)

    raise ValueError(f"Unsupported database URL scheme: {config.url}")

"""Document lifecycle orchestration."""

from contentforge.engine.orchestrator import DocumentEngine, PersistenceLookup, parse_sort
from contentforge.engine.results import OperationResult

__all__ = ["DocumentEngine", "OperationResult", "PersistenceLookup", "parse_sort"]

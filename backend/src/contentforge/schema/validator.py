"""
schema/validator.py - JSON Schema validation for collection YAML files.

Usage:
    from contentforge.schema.validator import validate_definitions_dir

    issues = validate_definitions_dir(Path("metadata"))
    for issue in issues:
        print(issue)

PyYAML quirk: the bare key ``on:`` is parsed as boolean ``True``, not the string
``"on"``.  We preprocess loaded dicts to rename that key before schema validation.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

logger = logging.getLogger(__name__)

_SCHEMAS_DIR = Path(__file__).parent / "schemas"
COLLECTION_SCHEMA = "collection.schema.json"


@dataclass
class DefinitionIssue:
    """A single validation finding for a collection YAML file."""

    file: Path
    message: str
    path: str = ""          # location within the document, e.g. "fields[2]/options"
    severity: str = "error" # "error" | "warning"

    def __str__(self) -> str:
        loc = f" at {self.path}" if self.path else ""
        return f"[{self.severity.upper()}] {self.file}{loc}: {self.message}"


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _load_schema(name: str) -> dict[str, Any]:
    with (_SCHEMAS_DIR / name).open() as fh:
        return json.load(fh)


def _load_registry() -> Registry:
    """Build a jsonschema Registry containing the bundled schemas."""
    schema = _load_schema(COLLECTION_SCHEMA)
    return Registry().with_resource(
        schema["$id"], Resource(contents=schema, specification=DRAFT202012)
    )


def _preprocess_on_key(obj: Any) -> Any:
    """Recursively rename the boolean key ``True`` to ``"on"``."""
    if isinstance(obj, dict):
        return {
            ("on" if k is True else k): _preprocess_on_key(v)
            for k, v in obj.items()
        }
    if isinstance(obj, list):
        return [_preprocess_on_key(item) for item in obj]
    return obj


def _json_path(error: ValidationError) -> str:
    """Convert a jsonschema ValidationError path to a readable string."""
    parts = []
    for p in error.absolute_path:
        if isinstance(p, int):
            parts.append(f"[{p}]")
        else:
            parts.append(str(p))
    return "/".join(parts).replace("/[", "[")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_yaml_file(
    yaml_path: Path,
    *,
    registry: Registry | None = None,
) -> list[DefinitionIssue]:
    """
    Validate a single collection YAML file.

    Returns:
        A list of :class:`DefinitionIssue` objects (empty on success).
    """
    try:
        with yaml_path.open() as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        return [DefinitionIssue(file=yaml_path, message=f"YAML parse error: {exc}")]

    if raw is None:
        return [
            DefinitionIssue(file=yaml_path, message="File is empty or contains only whitespace")
        ]

    doc = _preprocess_on_key(raw)

    if registry is None:
        registry = _load_registry()
    validator = Draft202012Validator(_load_schema(COLLECTION_SCHEMA), registry=registry)

    return [
        DefinitionIssue(file=yaml_path, message=error.message, path=_json_path(error))
        for error in sorted(validator.iter_errors(doc), key=lambda e: list(e.path))
    ]


def validate_definitions_dir(metadata_dir: Path) -> list[DefinitionIssue]:
    """
    Validate every ``collections/*.yaml`` file under *metadata_dir*.

    Also flags slugs declared by more than one file.

    Returns:
        A flat list of :class:`DefinitionIssue` objects across all files.
        Empty list means all files are valid.
    """
    collections_dir = metadata_dir / "collections"
    if not collections_dir.is_dir():
        return [
            DefinitionIssue(
                file=collections_dir,
                message=f"Collections directory does not exist: {collections_dir}",
            )
        ]

    try:
        registry = _load_registry()
    except (FileNotFoundError, json.JSONDecodeError) as exc:
        return [
            DefinitionIssue(
                file=_SCHEMAS_DIR,
                message=f"Failed to load JSON Schema files: {exc}",
            )
        ]

    all_issues: list[DefinitionIssue] = []
    seen: dict[str, Path] = {}

    for yaml_file in sorted(collections_dir.glob("*.yaml")):
        file_issues = validate_yaml_file(yaml_file, registry=registry)
        all_issues.extend(file_issues)
        if file_issues:
            continue

        with yaml_file.open() as fh:
            slug = (yaml.safe_load(fh) or {}).get("collection")
        if slug in seen:
            all_issues.append(DefinitionIssue(
                file=yaml_file,
                message=f"Collection '{slug}' is already defined in {seen[slug].name}",
                path="collection",
            ))
        else:
            seen[slug] = yaml_file

    return all_issues

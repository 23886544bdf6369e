"""Load collection definitions from YAML files.

A definition file describes one collection:

    collection: blog
    useAsTitle: title
    access:
      read: public
      create: {minRole: editor}
    hooks:
      beforeChange:
        - name: deriveExcerpt
    fields:
      - name: title
        type: text
        required: true

Access rules, hook names and validator names are resolved through their
registries, so built-ins and application hooks must be registered first.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from contentforge.access.predicates import PredicateRegistry
from contentforge.core.errors import DuplicateSlug, SchemaError
from contentforge.core.types import Operation, isoformat
from contentforge.hooks.registry import HookRegistry
from contentforge.hooks.types import HookBinding, HookStage
from contentforge.schema.fields import (
    CollectionSchema,
    FieldDescriptor,
    FieldKind,
    SelectOption,
    SizeProfile,
    UploadConfig,
)
from contentforge.schema.registry import CollectionRegistry
from contentforge.validation.registry import FieldValidatorRegistry

logger = logging.getLogger(__name__)


def _now() -> str:
    return isoformat(datetime.now(timezone.utc))


# Producers usable through `auto:` on a field
AUTO_PRODUCERS = {"now": _now}


class CollectionLoader:
    """Loads collection definitions from {metadata_path}/collections/*.yaml."""

    def __init__(self, metadata_path: Path):
        self.metadata_path = Path(metadata_path)
        self.schemas: dict[str, CollectionSchema] = {}

    @property
    def collections_path(self) -> Path:
        return self.metadata_path / "collections"

    def load_all(self) -> list[CollectionSchema]:
        """Parse every definition file in file-name order.

        Raises:
            DuplicateSlug: If two files declare the same collection slug
            SchemaError: If a file cannot be parsed or references unknown
                hooks, validators or access rules
        """
        if not self.collections_path.exists():
            logger.warning("No collection definitions at %s", self.collections_path)
            return []

        self.schemas = {}
        for yaml_file in sorted(self.collections_path.glob("*.yaml")):
            with open(yaml_file) as f:
                try:
                    data = yaml.safe_load(f)
                except yaml.YAMLError as e:
                    raise SchemaError(f"{yaml_file.name}: YAML parse error: {e}") from e
            if not data or "collection" not in data:
                continue
            try:
                schema = self.resolve_collection(data)
            except (KeyError, TypeError, ValueError) as e:
                raise SchemaError(f"{yaml_file.name}: {e}") from e
            except SchemaError as e:
                raise SchemaError(f"{yaml_file.name}: {e.message}") from e
            if schema.slug in self.schemas:
                raise DuplicateSlug(schema.slug, yaml_file.name)
            self.schemas[schema.slug] = schema

        return list(self.schemas.values())

    def load(self, registry: CollectionRegistry) -> CollectionRegistry:
        """Load all definitions into registry and return it."""
        for schema in self.load_all():
            registry.register(schema)
        logger.info("Loaded %d collections from %s", len(self.schemas), self.collections_path)
        return registry

    # =========================================================================
    # Resolution
    # =========================================================================

    def resolve_collection(self, data: dict[str, Any]) -> CollectionSchema:
        """Convert one definition dict to a CollectionSchema."""
        slug = data["collection"]
        fields = [self._resolve_field(f) for f in data.get("fields", [])]

        access: dict[Operation, Any] = {}
        for op_name, spec in (data.get("access") or {}).items():
            access[Operation(op_name)] = PredicateRegistry.resolve(spec)

        return CollectionSchema(
            slug=slug,
            fields=fields,
            access=access,
            hooks=self._resolve_hooks(data.get("hooks") or {}),
            timestamped=data.get("timestamps", True),
            unique_fields=set(data.get("uniqueFields", [])),
            upload=self._resolve_upload(data.get("upload")),
            labels=data.get("labels", {}),
            use_as_title=data.get("useAsTitle"),
        )

    def _resolve_field(self, data: dict[str, Any]) -> FieldDescriptor:
        """Convert field dict to FieldDescriptor."""
        kind = FieldKind(data.get("type", "text"))

        default = data.get("default")
        auto = data.get("auto")
        if auto:
            if auto not in AUTO_PRODUCERS:
                raise ValueError(f"Unknown auto producer '{auto}' on field '{data['name']}'")
            default = AUTO_PRODUCERS[auto]

        return FieldDescriptor(
            name=data["name"],
            kind=kind,
            required=data.get("required", False),
            default=default,
            validators=[FieldValidatorRegistry.get(v) for v in data.get("validators", [])],
            hooks=self._resolve_hooks(data.get("hooks") or {}, field_level=True),
            options=[self._resolve_option(o) for o in data.get("options", [])],
            fields=[self._resolve_field(f) for f in data.get("fields", [])],
            relation_to=data.get("relationTo"),
            min=data.get("min"),
            max=data.get("max"),
            min_length=data.get("minLength"),
            max_length=data.get("maxLength"),
            pattern=data.get("pattern"),
            min_rows=data.get("minRows"),
            max_rows=data.get("maxRows"),
            unique=data.get("unique", False),
            label=data.get("label"),
        )

    def _resolve_option(self, data: Any) -> SelectOption:
        if isinstance(data, dict):
            return SelectOption(value=str(data["value"]), label=data.get("label", ""))
        return SelectOption(value=str(data))

    def _resolve_upload(self, data: dict[str, Any] | None) -> UploadConfig | None:
        if data is None:
            return None
        if data is True:
            return UploadConfig()
        return UploadConfig(
            size_profiles=[
                SizeProfile(
                    name=s["name"],
                    width=s.get("width"),
                    height=s.get("height"),
                    position=s.get("position", "centre"),
                )
                for s in data.get("imageSizes", [])
            ],
            mime_types=data.get("mimeTypes", []),
            max_file_size=data.get("maxFileSize"),
        )

    def _resolve_hooks(
        self, data: dict[str, Any], field_level: bool = False
    ) -> dict[HookStage, list[HookBinding]]:
        """Convert a hooks dict to bindings keyed by stage."""
        hooks: dict[HookStage, list[HookBinding]] = {}
        for stage_name, hook_list in data.items():
            stage = HookStage(stage_name)
            if field_level and not stage.allows_field_hooks:
                raise ValueError(f"Field hooks are not supported at '{stage_name}'")
            hooks[stage] = [self._resolve_hook(h) for h in hook_list or []]
        return hooks

    def _resolve_hook(self, data: Any) -> HookBinding:
        if isinstance(data, str):
            return HookRegistry.bind(data)
        on = self._get_on(data)
        return HookRegistry.bind(
            data["name"],
            on=[Operation(op) for op in on] if on else None,
            params=data.get("params") or {},
            description=data.get("description", ""),
        )

    def _get_on(self, data: dict[str, Any]) -> list[str] | None:
        """Extract the 'on' field from a YAML dict.

        PyYAML parses the bare key `on:` as boolean True, so we check
        both the string key "on" and the boolean key True.
        """
        on = data.get("on") or data.get(True)
        if isinstance(on, str):
            on = [on]
        return on

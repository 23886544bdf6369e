"""Document lifecycle orchestrator.

DocumentEngine executes create/read/update/delete operations against a
collection. For writes the order is fixed:

    resolve schema -> access -> defaults (create) -> beforeValidate hooks
    -> pending uploads stored -> field validation -> beforeChange hooks
    -> timestamps -> uniqueness pre-check -> persist -> afterChange hooks

Any failure before persist aborts the operation with no write; upload
documents created for it are removed again and their afterChange hooks
never run. Failures after persist (afterChange hooks, blob cleanup,
secondary writes) are logged and returned as warnings on the result.
"""

import copy
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from fnmatch import fnmatch
from typing import Any, Callable

from contentforge.access import Deny, ScopedFilter, apply_scope, evaluate
from contentforge.core.errors import (
    AccessDenied,
    DanglingReference,
    DocumentNotFound,
    DuplicateKey,
    FieldError,
    SchemaError,
    StorageError,
    UniquenessViolation,
    ValidationError,
)
from contentforge.core.types import (
    ANONYMOUS,
    AssetReference,
    Document,
    Operation,
    Page,
    PendingUpload,
    Principal,
    isoformat,
)
from contentforge.engine.results import OperationResult
from contentforge.hooks import HookContext, HookService, HookStage, HookWarning
from contentforge.persistence.adapter import PersistenceAdapter
from contentforge.schema.fields import CollectionSchema, FieldDescriptor, FieldKind
from contentforge.schema.registry import CollectionRegistry
from contentforge.storage.service import AssetService
from contentforge.validation import DocumentValidator, ValidationContext, is_empty

logger = logging.getLogger(__name__)

# Keys the engine manages; callers cannot set them
SYSTEM_KEYS = ("id", "createdAt", "updatedAt")

# Keys an upload-collection document carries for its stored file
UPLOAD_KEYS = ("filename", "url", "mimeType", "filesize", "sizes")

# Payload key carrying the binary of an upload-collection document
FILE_KEY = "file"


def parse_sort(sort: str | list[dict[str, str]] | None) -> list[dict[str, str]] | None:
    """Accept "-createdAt,title" style strings as well as sort dict lists."""
    if sort is None or isinstance(sort, list):
        return sort
    result = []
    for part in sort.split(","):
        part = part.strip()
        if not part:
            continue
        if part.startswith("-"):
            result.append({"field": part[1:], "direction": "desc"})
        else:
            result.append({"field": part.lstrip("+"), "direction": "asc"})
    return result or None


class PersistenceLookup:
    """Reference existence checks backed by the persistence adapter."""

    def __init__(self, adapter: PersistenceAdapter):
        self.adapter = adapter

    async def find_by_id(self, collection: str, document_id: str) -> dict[str, Any] | None:
        return self.adapter.find_by_id(collection, document_id)


@dataclass
class _StagedDocument:
    """An upload document created on behalf of a write that has not committed."""

    schema: CollectionSchema
    document: Document
    principal: Principal
    now: datetime


class DocumentEngine:
    """Executes document operations for the collections of a registry.

    Args:
        registry: Collection registry; frozen on construction
        adapter: Connected persistence adapter
        assets: Asset service for upload fields (None disables uploads)
        clock: Returns the current time; defaults to UTC now
    """

    def __init__(
        self,
        registry: CollectionRegistry,
        adapter: PersistenceAdapter,
        assets: AssetService | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        registry.freeze()
        self.registry = registry
        self.adapter = adapter
        self.assets = assets
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.hooks = HookService()
        self.references = PersistenceLookup(adapter)

    def initialize_storage(self) -> None:
        """Create tables and indexes for every registered collection."""
        for schema in self.registry:
            self.adapter.initialize_collection(schema)

    # =========================================================================
    # Entry point
    # =========================================================================

    async def execute(
        self,
        collection: str,
        operation: Operation,
        principal: Principal = ANONYMOUS,
        payload: dict[str, Any] | None = None,
        target_id: str | None = None,
        *,
        where: dict[str, Any] | None = None,
        sort: str | list[dict[str, str]] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> OperationResult:
        """Execute one operation against a collection.

        Raises:
            UnknownCollection: If the collection is not registered
            AccessDenied: If the principal may not perform the operation
            DocumentNotFound: If target_id does not exist
            ValidationError: With every field problem (incl. subtypes
                UniquenessViolation, DanglingReference)
            HookAborted: If a before-stage hook refuses the operation
            StorageError: If storing an upload fails
            PersistenceError: If the backing store fails
        """
        schema = self.registry.resolve(collection)

        decision = evaluate(schema, operation, principal)
        if isinstance(decision, Deny):
            raise AccessDenied(schema.slug, operation.value)
        scope = decision.criteria if isinstance(decision, ScopedFilter) else None

        if operation == Operation.READ:
            if target_id is not None:
                return self._read_one(schema, target_id, scope)
            return self._read_many(
                schema, apply_scope(where, decision), parse_sort(sort), limit, offset
            )

        if operation == Operation.CREATE:
            return await self._create(schema, principal, payload or {})

        if target_id is None:
            raise ValueError(f"{operation.value} requires a target document id")
        original = self._load_target(schema, target_id, operation, scope)

        if operation == Operation.UPDATE:
            return await self._update(schema, principal, payload or {}, original, scope)
        return await self._delete(schema, principal, original, scope)

    # =========================================================================
    # Convenience wrappers
    # =========================================================================

    async def create(
        self, collection: str, data: dict[str, Any], principal: Principal = ANONYMOUS
    ) -> Document:
        result = await self.execute(collection, Operation.CREATE, principal, payload=data)
        return result.document

    async def find(
        self,
        collection: str,
        principal: Principal = ANONYMOUS,
        where: dict[str, Any] | None = None,
        sort: str | list[dict[str, str]] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> OperationResult:
        return await self.execute(
            collection, Operation.READ, principal,
            where=where, sort=sort, limit=limit, offset=offset,
        )

    async def find_by_id(
        self, collection: str, document_id: str, principal: Principal = ANONYMOUS
    ) -> Document:
        result = await self.execute(
            collection, Operation.READ, principal, target_id=document_id
        )
        return result.document

    async def find_by_slug(
        self,
        collection: str,
        slug: str,
        principal: Principal = ANONYMOUS,
        field: str = "slug",
    ) -> Document:
        """Look a document up by a human-readable unique field.

        Raises:
            DocumentNotFound: If no readable document has that value
        """
        result = await self.find(
            collection, principal, where={field: {"eq": slug}}, limit=1
        )
        if not result.documents:
            raise DocumentNotFound(collection, slug)
        return result.documents[0]

    async def update(
        self,
        collection: str,
        document_id: str,
        data: dict[str, Any],
        principal: Principal = ANONYMOUS,
    ) -> Document:
        result = await self.execute(
            collection, Operation.UPDATE, principal, payload=data, target_id=document_id
        )
        return result.document

    async def delete(
        self, collection: str, document_id: str, principal: Principal = ANONYMOUS
    ) -> OperationResult:
        return await self.execute(
            collection, Operation.DELETE, principal, target_id=document_id
        )

    # =========================================================================
    # Reads
    # =========================================================================

    def _read_one(
        self, schema: CollectionSchema, document_id: str, scope: dict[str, Any] | None
    ) -> OperationResult:
        raw = self.adapter.find_by_id(schema.slug, document_id, where=scope)
        if raw is None:
            raise DocumentNotFound(schema.slug, document_id)
        return OperationResult(
            collection=schema.slug,
            operation=Operation.READ,
            document=self._to_document(schema, raw),
        )

    def _read_many(
        self,
        schema: CollectionSchema,
        where: dict[str, Any] | None,
        sort: list[dict[str, str]] | None,
        limit: int | None,
        offset: int,
    ) -> OperationResult:
        result = self.adapter.find(
            schema.slug, where=where, sort=sort, limit=limit, offset=offset
        )
        documents = [self._to_document(schema, raw) for raw in result["data"]]
        pagination = result["pagination"]
        return OperationResult(
            collection=schema.slug,
            operation=Operation.READ,
            documents=documents,
            page=Page(
                total=pagination["total"],
                limit=limit,
                offset=offset,
                returned=len(documents),
            ),
        )

    def _load_target(
        self,
        schema: CollectionSchema,
        document_id: str,
        operation: Operation,
        scope: dict[str, Any] | None,
    ) -> dict[str, Any]:
        original = self.adapter.find_by_id(schema.slug, document_id)
        if original is None:
            raise DocumentNotFound(schema.slug, document_id)
        if scope is not None and self.adapter.find_by_id(
            schema.slug, document_id, where=scope
        ) is None:
            raise AccessDenied(schema.slug, operation.value)
        return original

    # =========================================================================
    # Writes
    # =========================================================================

    async def _create(
        self,
        schema: CollectionSchema,
        principal: Principal,
        payload: dict[str, Any],
        deferred: list[_StagedDocument] | None = None,
    ) -> OperationResult:
        """Create a document.

        When deferred is given, afterChange hooks are not run; the created
        document is appended to it for the caller to commit or discard.
        """
        now = self.clock()
        data = _strip_system_keys(payload)
        _apply_defaults(schema.fields, data)

        context = HookContext(
            collection=schema.slug,
            operation=Operation.CREATE,
            data=data,
            principal=principal,
            now=now,
        )
        await self._run_before(HookStage.BEFORE_VALIDATE, schema, context)

        upload_keys: dict[str, Any] = {}
        if schema.is_upload_collection:
            upload_keys = await self._store_own_file(schema, context.data, required=True)
        staged: list[_StagedDocument] = []
        try:
            await self._store_pending_uploads(schema, context.data, principal, staged)

            body = await self._validate(schema, Operation.CREATE, context.data)
            body.update(upload_keys)

            context.data = body
            await self._run_before(HookStage.BEFORE_CHANGE, schema, context)
            body = context.data

            if schema.timestamped:
                body["createdAt"] = isoformat(now)
                body["updatedAt"] = isoformat(now)

            self._check_unique(schema, body)
            try:
                stored = self.adapter.insert(schema.slug, body)
            except DuplicateKey as e:
                raise _uniqueness_error(schema, e.fields, body) from e
        except Exception:
            await self._discard(schema, upload_keys, staged)
            raise

        document = self._to_document(schema, stored)
        logger.debug("Created %s/%s", schema.slug, document.id)

        if deferred is not None:
            deferred.extend(staged)
            deferred.append(_StagedDocument(schema, document, principal, now))
            return OperationResult(
                collection=schema.slug, operation=Operation.CREATE, document=document
            )

        warnings = await self._commit_staged(staged)
        warnings.extend(await self._run_after(
            HookStage.AFTER_CHANGE, schema, Operation.CREATE, document, None, principal, now
        ))
        return OperationResult(
            collection=schema.slug,
            operation=Operation.CREATE,
            document=document,
            warnings=warnings,
        )

    async def _update(
        self,
        schema: CollectionSchema,
        principal: Principal,
        payload: dict[str, Any],
        original: dict[str, Any],
        scope: dict[str, Any] | None,
    ) -> OperationResult:
        now = self.clock()
        document_id = original["id"]

        # Partial update: payload is merged over the stored document
        data = {k: v for k, v in copy.deepcopy(original).items() if k not in SYSTEM_KEYS}
        data.update(_strip_system_keys(payload))

        context = HookContext(
            collection=schema.slug,
            operation=Operation.UPDATE,
            data=data,
            original=copy.deepcopy(original),
            principal=principal,
            now=now,
        )
        await self._run_before(HookStage.BEFORE_VALIDATE, schema, context)

        new_file: dict[str, Any] = {}
        upload_keys: dict[str, Any] = {}
        if schema.is_upload_collection:
            if isinstance(context.data.get(FILE_KEY), PendingUpload):
                upload_keys = new_file = await self._store_own_file(
                    schema, context.data, required=False
                )
            else:
                context.data.pop(FILE_KEY, None)
                upload_keys = {k: original[k] for k in UPLOAD_KEYS if k in original}
        staged: list[_StagedDocument] = []
        try:
            await self._store_pending_uploads(schema, context.data, principal, staged)

            body = await self._validate(schema, Operation.UPDATE, context.data)
            body.update(upload_keys)

            context.data = body
            await self._run_before(HookStage.BEFORE_CHANGE, schema, context)
            body = context.data

            if schema.timestamped:
                if "createdAt" in original:
                    body["createdAt"] = original["createdAt"]
                body["updatedAt"] = isoformat(now)

            self._check_unique(schema, body, exclude_id=document_id)
            try:
                stored = self.adapter.update_by_id(schema.slug, document_id, body, where=scope)
            except DuplicateKey as e:
                raise _uniqueness_error(schema, e.fields, body) from e
            if stored is None:
                raise DocumentNotFound(schema.slug, document_id)
        except Exception:
            await self._discard(schema, new_file, staged)
            raise

        document = self._to_document(schema, stored)
        logger.debug("Updated %s/%s", schema.slug, document_id)

        warnings = await self._commit_staged(staged)
        if new_file:
            warnings.extend(await self._delete_asset(
                AssetReference.from_upload_document(original), schema.slug
            ))

        warnings.extend(await self._run_after(
            HookStage.AFTER_CHANGE, schema, Operation.UPDATE, document, original, principal, now
        ))
        return OperationResult(
            collection=schema.slug,
            operation=Operation.UPDATE,
            document=document,
            warnings=warnings,
        )

    async def _delete(
        self,
        schema: CollectionSchema,
        principal: Principal,
        original: dict[str, Any],
        scope: dict[str, Any] | None,
    ) -> OperationResult:
        now = self.clock()
        document_id = original["id"]

        context = HookContext(
            collection=schema.slug,
            operation=Operation.DELETE,
            data=copy.deepcopy(original),
            original=copy.deepcopy(original),
            principal=principal,
            now=now,
        )
        await self._run_before(HookStage.BEFORE_DELETE, schema, context)

        if not self.adapter.delete_by_id(schema.slug, document_id, where=scope):
            raise DocumentNotFound(schema.slug, document_id)
        logger.debug("Deleted %s/%s", schema.slug, document_id)

        document = self._to_document(schema, original)

        # Assets go only after the document delete has committed
        warnings: list[HookWarning] = []
        if schema.is_upload_collection:
            warnings.extend(await self._delete_asset(
                AssetReference.from_upload_document(original), schema.slug
            ))
        for field in schema.upload_fields():
            value = original.get(field.name)
            if isinstance(value, dict):
                warnings.extend(
                    await self._delete_referenced_asset(field, value, principal)
                )

        warnings.extend(await self._run_after(
            HookStage.AFTER_DELETE, schema, Operation.DELETE, document, original, principal, now
        ))
        return OperationResult(
            collection=schema.slug,
            operation=Operation.DELETE,
            document=document,
            warnings=warnings,
        )

    # =========================================================================
    # Pipeline steps
    # =========================================================================

    async def _run_before(
        self, stage: HookStage, schema: CollectionSchema, context: HookContext
    ) -> None:
        """Field-level hooks first (declaration order), then collection hooks."""
        if stage.allows_field_hooks:
            await self.hooks.run_field_hooks(
                stage,
                schema.fields,
                context.data,
                collection=schema.slug,
                operation=context.operation,
                original=context.original,
                principal=context.principal,
                now=context.now,
            )
        await self.hooks.run_hooks(stage, schema.hooks_for(stage), context)

    async def _run_after(
        self,
        stage: HookStage,
        schema: CollectionSchema,
        operation: Operation,
        document: Document,
        original: dict[str, Any] | None,
        principal: Principal,
        now: datetime,
    ) -> list[HookWarning]:
        bindings = schema.hooks_for(stage)
        if not bindings:
            return []
        context = HookContext(
            collection=schema.slug,
            operation=operation,
            data=copy.deepcopy(document.to_dict()),
            original=copy.deepcopy(original),
            principal=principal,
            now=now,
            engine=self,
        )
        return await self.hooks.run_after_hooks(stage, bindings, context)

    async def _validate(
        self, schema: CollectionSchema, operation: Operation, data: dict[str, Any]
    ) -> dict[str, Any]:
        validator = DocumentValidator(ValidationContext(
            collection=schema.slug,
            operation=operation,
            registry=self.registry,
            references=self.references,
        ))
        body, errors = await validator.validate(schema.fields, data)
        if errors:
            if all(e.code == "DANGLING_REFERENCE" for e in errors):
                raise DanglingReference(errors)
            raise ValidationError(errors)
        return body

    def _check_unique(
        self,
        schema: CollectionSchema,
        body: dict[str, Any],
        exclude_id: str | None = None,
    ) -> None:
        """Advisory pre-check; the persistence unique index is authoritative."""
        conflicts: list[str] = []
        for name in sorted(schema.unique_fields):
            value = body.get(name)
            if is_empty(value):
                continue
            where: dict[str, Any] = {name: {"eq": value}}
            if exclude_id is not None:
                where["id"] = {"neq": exclude_id}
            if self.adapter.count_matching(schema.slug, where) > 0:
                conflicts.append(name)
        if conflicts:
            raise _uniqueness_error(schema, conflicts, body)

    # =========================================================================
    # Uploads
    # =========================================================================

    async def _store_own_file(
        self, schema: CollectionSchema, data: dict[str, Any], required: bool
    ) -> dict[str, Any]:
        """Store the binary of an upload-collection document.

        Returns:
            The upload keys (filename, url, mimeType, filesize, sizes)
        """
        pending = data.pop(FILE_KEY, None)
        if not isinstance(pending, PendingUpload):
            if required:
                raise ValidationError([
                    FieldError(message="A file is required", code="REQUIRED", field=FILE_KEY)
                ])
            return {}

        config = schema.upload
        errors: list[FieldError] = []
        if config.mime_types and not any(
            fnmatch(pending.content_type, pattern) for pattern in config.mime_types
        ):
            errors.append(FieldError(
                message=f"File type '{pending.content_type}' is not allowed",
                code="INVALID_MIME_TYPE",
                field=FILE_KEY,
            ))
        if config.max_file_size is not None and pending.size > config.max_file_size:
            errors.append(FieldError(
                message=f"File exceeds the maximum size of {config.max_file_size} bytes",
                code="FILE_TOO_LARGE",
                field=FILE_KEY,
            ))
        if errors:
            raise ValidationError(errors)

        if self.assets is None:
            raise StorageError(f"No blob storage configured for '{schema.slug}' uploads")

        reference = await self.assets.put(
            pending.content,
            pending.filename,
            pending.content_type,
            config.size_profiles,
        )
        return {
            "filename": reference.filename,
            "url": reference.url,
            "mimeType": reference.mime_type,
            "filesize": reference.size,
            "sizes": reference.derived_size_variants,
        }

    async def _store_pending_uploads(
        self,
        schema: CollectionSchema,
        data: dict[str, Any],
        principal: Principal,
        staged: list[_StagedDocument],
    ) -> None:
        """Replace PendingUpload values of upload fields with AssetReferences.

        Each upload becomes a document in the field's upload collection,
        created with the same principal so that collection's access rules
        apply. The documents are appended to staged; their afterChange
        hooks wait until the owning write commits.
        """
        for field in schema.upload_fields():
            pending = data.get(field.name)
            if not isinstance(pending, PendingUpload):
                continue
            target = self.registry.resolve(field.relation_to)
            if not target.is_upload_collection:
                raise SchemaError(
                    f"Upload field '{field.name}' targets '{target.slug}', "
                    "which is not an upload collection"
                )
            if isinstance(evaluate(target, Operation.CREATE, principal), Deny):
                raise AccessDenied(target.slug, Operation.CREATE.value)
            result = await self._create(
                target,
                principal,
                {**pending.fields, FILE_KEY: pending},
                deferred=staged,
            )
            data[field.name] = AssetReference.from_upload_document(
                result.document.to_dict()
            ).to_dict()

    async def _commit_staged(self, staged: list[_StagedDocument]) -> list[HookWarning]:
        """Run the deferred afterChange hooks of documents created for a write."""
        warnings: list[HookWarning] = []
        for entry in staged:
            warnings.extend(await self._run_after(
                HookStage.AFTER_CHANGE,
                entry.schema,
                Operation.CREATE,
                entry.document,
                None,
                entry.principal,
                entry.now,
            ))
        return warnings

    async def _discard(
        self,
        schema: CollectionSchema,
        upload_keys: dict[str, Any],
        staged: list[_StagedDocument],
    ) -> None:
        """Undo the side effects of a write that failed before it persisted.

        Upload documents created for it are deleted without hooks, and the
        blobs stored for it are removed. Cleanup failures are logged.
        """
        for entry in reversed(staged):
            try:
                self.adapter.delete_by_id(entry.schema.slug, entry.document.id)
            except Exception as e:
                logger.warning(
                    "Could not remove %s/%s after a failed write: %s",
                    entry.schema.slug, entry.document.id, e,
                )
            await self._delete_asset(
                AssetReference.from_upload_document(entry.document.to_dict()),
                entry.schema.slug,
            )
        if upload_keys.get("url"):
            await self._delete_asset(
                AssetReference.from_upload_document({"id": None, **upload_keys}),
                schema.slug,
            )

    async def _delete_asset(
        self, reference: AssetReference, collection: str
    ) -> list[HookWarning]:
        if self.assets is None or not reference.url:
            return []
        try:
            await self.assets.delete(reference)
        except StorageError as e:
            logger.warning(
                "Orphaned asset %s of '%s' left in storage: %s",
                reference.url, collection, e,
            )
            return [HookWarning(hook="assets.delete", stage=HookStage.AFTER_DELETE, message=str(e))]
        return []

    async def _delete_referenced_asset(
        self, field: FieldDescriptor, value: dict[str, Any], principal: Principal
    ) -> list[HookWarning]:
        """Delete the upload document (and so the blob) behind an upload field."""
        reference = AssetReference.from_value(value)
        if reference.document_id is None:
            return await self._delete_asset(reference, field.relation_to)
        try:
            result = await self.execute(
                field.relation_to, Operation.DELETE, principal, target_id=reference.document_id
            )
        except DocumentNotFound:
            return []
        except Exception as e:
            logger.warning(
                "Could not delete %s/%s referenced by '%s': %s",
                field.relation_to, reference.document_id, field.name, e,
            )
            return [HookWarning(
                hook=f"{field.relation_to}.delete", stage=HookStage.AFTER_DELETE, message=str(e)
            )]
        return result.warnings

    # =========================================================================
    # Helpers
    # =========================================================================

    def _to_document(self, schema: CollectionSchema, raw: dict[str, Any]) -> Document:
        document = Document.from_raw(schema.slug, raw)
        if not schema.timestamped:
            document.created_at = None
            document.updated_at = None
        return document


def _strip_system_keys(payload: dict[str, Any]) -> dict[str, Any]:
    return {k: copy.deepcopy(v) for k, v in payload.items() if k not in SYSTEM_KEYS}


def _apply_defaults(fields: list[FieldDescriptor], data: dict[str, Any]) -> None:
    """Fill missing or empty values from field defaults, recursing into groups and rows."""
    for descriptor in fields:
        value = data.get(descriptor.name)
        if is_empty(value) and descriptor.default is not None:
            data[descriptor.name] = copy.deepcopy(descriptor.default_value())
            continue

        if descriptor.kind == FieldKind.GROUP:
            if value is None and _has_defaults(descriptor.fields):
                value = data[descriptor.name] = {}
            if isinstance(value, dict):
                _apply_defaults(descriptor.fields, value)
        elif descriptor.kind == FieldKind.ARRAY and isinstance(value, list):
            for row in value:
                if isinstance(row, dict):
                    _apply_defaults(descriptor.fields, row)


def _has_defaults(fields: list[FieldDescriptor]) -> bool:
    return any(
        f.default is not None or (f.kind == FieldKind.GROUP and _has_defaults(f.fields))
        for f in fields
    )


def _uniqueness_error(
    schema: CollectionSchema, fields: list[str], body: dict[str, Any]
) -> UniquenessViolation:
    errors = []
    for name in fields:
        descriptor = schema.get_field(name)
        label = descriptor.display_name if descriptor else name
        errors.append(FieldError(
            message=f"{label} '{body.get(name)}' is already in use",
            code="UNIQUE",
            field=name,
        ))
    return UniquenessViolation(errors)

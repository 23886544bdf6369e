"""FastAPI application.

A thin HTTP surface over DocumentEngine. Authentication happens upstream;
the principal of each request comes from a resolver callable (by default
the X-Principal-Id / X-Principal-Role headers set by the auth proxy).
"""

import base64
import binascii
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Callable

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from contentforge.core.errors import (
    AccessDenied,
    DocumentNotFound,
    EngineError,
    HookAborted,
    PersistenceError,
    StorageError,
    UniquenessViolation,
    UnknownCollection,
    ValidationError,
)
from contentforge.core.types import Operation, PendingUpload, Principal
from contentforge.engine import DocumentEngine
from contentforge.hooks import register_builtin_hooks
from contentforge.persistence import DatabaseConfig, create_adapter
from contentforge.schema.loader import CollectionLoader
from contentforge.schema.registry import CollectionRegistry
from contentforge.schema.validator import validate_definitions_dir
from contentforge.storage import AssetService, StorageConfig, create_blob_adapter
from contentforge.validation import register_builtin_validators

logger = logging.getLogger(__name__)

PrincipalResolver = Callable[[Request], Principal]

# Most specific classes first
ERROR_STATUS: list[tuple[type[EngineError], int]] = [
    (UnknownCollection, 404),
    (DocumentNotFound, 404),
    (AccessDenied, 403),
    (UniquenessViolation, 409),
    (ValidationError, 400),
    (HookAborted, 400),
    (StorageError, 502),
    (PersistenceError, 503),
]


def status_for(error: EngineError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


def header_principal_resolver(request: Request) -> Principal:
    """Principal from headers set by an upstream authenticating proxy.

    The headers are not verified here; any client that reaches the app
    directly can claim any id and role.
    """
    return Principal(
        id=request.headers.get("x-principal-id") or None,
        role=request.headers.get("x-principal-role") or None,
    )


# --- Request bodies ---


class FilePayload(BaseModel):
    """Binary content for upload collections, base64-encoded."""
    filename: str
    contentType: str = "application/octet-stream"
    content: str


class WriteRequest(BaseModel):
    """Request body for create and update operations."""
    data: dict[str, Any] = {}
    file: FilePayload | None = None


class QueryRequest(BaseModel):
    where: dict[str, Any] | None = None
    sort: str | None = None
    limit: int | None = 25
    offset: int = 0


def _payload(request: WriteRequest) -> dict[str, Any]:
    payload = dict(request.data)
    if request.file is not None:
        try:
            content = base64.b64decode(request.file.content, validate=True)
        except (binascii.Error, ValueError):
            raise HTTPException(400, "File content must be base64-encoded")
        payload["file"] = PendingUpload(
            content=content,
            filename=request.file.filename,
            content_type=request.file.contentType,
        )
    return payload


def create_app(
    engine: DocumentEngine,
    resolve_principal: PrincipalResolver = header_principal_resolver,
    lifespan: Any = None,
) -> FastAPI:
    """Build the HTTP app around an engine.

    Args:
        engine: Engine with an initialized persistence adapter
        resolve_principal: Maps a request to its Principal
        lifespan: Optional FastAPI lifespan (used by build_app_from_env)
    """
    app = FastAPI(title="ContentForge API", lifespan=lifespan)
    app.state.engine = engine

    origins = os.environ.get("CONTENTFORGE_CORS_ORIGINS", "http://localhost:3000")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in origins.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def principal(request: Request) -> Principal:
        return resolve_principal(request)

    @app.exception_handler(EngineError)
    async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
        status = status_for(exc)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status, content={"error": exc.to_dict()})

    # --- Metadata ---

    @app.get("/api/metadata")
    async def list_collections() -> dict[str, Any]:
        """List registered collections."""
        return {
            "data": [
                {
                    "slug": schema.slug,
                    "label": schema.singular_label,
                    "useAsTitle": schema.use_as_title,
                    "fields": [f.name for f in schema.fields],
                    "timestamps": schema.timestamped,
                    "upload": schema.is_upload_collection,
                }
                for schema in engine.registry
            ]
        }

    # --- Reads ---

    @app.get("/api/{collection}")
    async def list_documents(
        collection: str,
        limit: int | None = 25,
        offset: int = 0,
        sort: str | None = None,
        who: Principal = Depends(principal),
    ) -> dict[str, Any]:
        result = await engine.execute(
            collection, Operation.READ, who, sort=sort, limit=limit, offset=offset
        )
        return result.to_dict()

    @app.post("/api/{collection}/query")
    async def query_documents(
        collection: str,
        query: QueryRequest,
        who: Principal = Depends(principal),
    ) -> dict[str, Any]:
        """Query documents with a where filter, sorting, and pagination."""
        result = await engine.execute(
            collection,
            Operation.READ,
            who,
            where=query.where,
            sort=query.sort,
            limit=query.limit,
            offset=query.offset,
        )
        return result.to_dict()

    @app.get("/api/{collection}/slug/{slug}")
    async def get_by_slug(
        collection: str, slug: str, who: Principal = Depends(principal)
    ) -> dict[str, Any]:
        document = await engine.find_by_slug(collection, slug, who)
        return {"data": document.to_dict(), "warnings": []}

    @app.get("/api/{collection}/{id}")
    async def get_document(
        collection: str, id: str, who: Principal = Depends(principal)
    ) -> dict[str, Any]:
        result = await engine.execute(collection, Operation.READ, who, target_id=id)
        return result.to_dict()

    # --- Writes ---

    @app.post("/api/{collection}")
    async def create_document(
        collection: str, request: WriteRequest, who: Principal = Depends(principal)
    ):
        result = await engine.execute(
            collection, Operation.CREATE, who, payload=_payload(request)
        )
        return JSONResponse(status_code=201, content=result.to_dict())

    @app.patch("/api/{collection}/{id}")
    async def update_document(
        collection: str,
        id: str,
        request: WriteRequest,
        who: Principal = Depends(principal),
    ) -> dict[str, Any]:
        result = await engine.execute(
            collection, Operation.UPDATE, who, payload=_payload(request), target_id=id
        )
        return result.to_dict()

    @app.delete("/api/{collection}/{id}")
    async def delete_document(
        collection: str, id: str, who: Principal = Depends(principal)
    ) -> dict[str, Any]:
        result = await engine.execute(collection, Operation.DELETE, who, target_id=id)
        return result.to_dict()

    return app


def _base_path() -> Path:
    """Repository root; the dev server may be started from backend/."""
    cwd = Path.cwd()
    return cwd.parent if cwd.name == "backend" else cwd


def build_app_from_env(
    base_path: Path | None = None,
    resolve_principal: PrincipalResolver = header_principal_resolver,
) -> FastAPI:
    """Wire configuration, collection definitions and storage into an app.

    The default resolver trusts the X-Principal-Id and X-Principal-Role
    headers as sent. Serve the app only behind a proxy that authenticates
    callers and overwrites those headers, or pass a resolver that checks
    credentials itself.

    Environment:
        CONTENTFORGE_METADATA: definitions root (default {base}/metadata)
        DATABASE_URL / CONTENTFORGE_DB_PATH: see DatabaseConfig
        CONTENTFORGE_STORAGE and friends: see StorageConfig
    """
    base_path = base_path or _base_path()
    metadata_path = Path(os.environ.get("CONTENTFORGE_METADATA", base_path / "metadata"))

    register_builtin_validators()
    register_builtin_hooks()

    # Validate definition files (warn on errors, the loader fails hard on real problems)
    issues = validate_definitions_dir(metadata_path)
    for issue in issues:
        logger.error("Collection definition error: %s", issue)
    if issues:
        logger.warning(
            "Collection validation: %d issue(s). "
            "Run 'contentforge collections validate' for details.",
            len(issues),
        )

    registry = CollectionLoader(metadata_path).load(CollectionRegistry())

    adapter = create_adapter(DatabaseConfig.from_env(base_path))
    assets = AssetService(create_blob_adapter(StorageConfig.from_env(base_path)))
    engine = DocumentEngine(registry, adapter, assets=assets)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Connect and create tables on startup, close on shutdown."""
        adapter.connect()
        engine.initialize_storage()
        yield
        adapter.close()

    return create_app(engine, resolve_principal, lifespan=lifespan)

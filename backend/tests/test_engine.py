"""Tests for the document engine (create/read/update/delete pipeline)."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from contentforge.access import allow_all, authenticated, owner_or_role
from contentforge.core.errors import (
    AccessDenied,
    DanglingReference,
    DocumentNotFound,
    HookAborted,
    StorageError,
    UniquenessViolation,
    UnknownCollection,
    ValidationError,
)
from contentforge.core.types import ANONYMOUS, Operation, PendingUpload, Principal
from contentforge.engine import DocumentEngine, parse_sort
from contentforge.hooks import (
    HookBinding,
    HookResult,
    HookStage,
    register_builtin_hooks,
)
from contentforge.hooks.builtin import derive_excerpt, derive_slug
from contentforge.persistence.sqlite import SQLiteAdapter
from contentforge.schema import (
    CollectionRegistry,
    CollectionSchema,
    FieldDescriptor,
    FieldKind,
    SelectOption,
    SizeProfile,
    UploadConfig,
)
from contentforge.schema.loader import CollectionLoader
from contentforge.storage import AssetService, BlobAdapter, StoredBlob, TransformedImage
from contentforge.validation import register_builtin_validators

_METADATA_DIR = Path(__file__).resolve().parents[2] / "metadata"

EDITOR = Principal(id="u1", role="editor")
OTHER = Principal(id="u2", role="user")
ADMIN = Principal(id="a1", role="admin")

START = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class MemoryBlobAdapter(BlobAdapter):
    def __init__(self):
        self.blobs: dict[str, bytes] = {}
        self.deleted: list[str] = []

    async def put(self, content, name, content_type):
        self.blobs[name] = content
        return StoredBlob(
            name=name, url=f"https://cdn.test/{name}", size=len(content), content_type=content_type
        )

    async def delete(self, name_or_url):
        self.deleted.append(name_or_url)


class ShrinkingTransformer:
    async def transform(self, content, content_type, profile):
        return TransformedImage(content=content[:1], content_type=content_type)


def rich(text: str) -> dict:
    return {"root": {"type": "root", "children": [
        {"type": "paragraph", "children": [{"type": "text", "text": text}]},
    ]}}


def png(name: str = "photo.png", size: int = 8, **fields) -> PendingUpload:
    return PendingUpload(
        content=b"\x89PNG" + b"0" * (size - 4),
        filename=name,
        content_type="image/png",
        fields=fields,
    )


WRITERS = {
    Operation.READ: allow_all,
    Operation.CREATE: authenticated,
    Operation.UPDATE: authenticated,
    Operation.DELETE: authenticated,
}


def build_registry(post_hooks=None, media_hooks=None) -> CollectionRegistry:
    registry = CollectionRegistry()
    registry.register(CollectionSchema(
        slug="media",
        fields=[FieldDescriptor(name="alt", kind=FieldKind.TEXT)],
        access={op: allow_all for op in Operation},
        upload=UploadConfig(
            size_profiles=[SizeProfile(name="thumbnail", width=100, height=100)],
            mime_types=["image/*"],
            max_file_size=64,
        ),
        hooks=media_hooks or {},
    ))
    registry.register(CollectionSchema(
        slug="authors",
        fields=[FieldDescriptor(name="name", kind=FieldKind.TEXT, required=True)],
        access=WRITERS,
    ))
    registry.register(CollectionSchema(
        slug="posts",
        fields=[
            FieldDescriptor(name="title", kind=FieldKind.TEXT, required=True),
            FieldDescriptor(
                name="slug",
                kind=FieldKind.TEXT,
                unique=True,
                hooks={HookStage.BEFORE_VALIDATE: [
                    HookBinding(name="deriveSlug", fn=derive_slug, params={"from": "title"}),
                ]},
            ),
            FieldDescriptor(
                name="status",
                kind=FieldKind.SELECT,
                default="draft",
                options=[SelectOption("draft"), SelectOption("published")],
            ),
            FieldDescriptor(name="views", kind=FieldKind.NUMBER, default=0, min=0),
            FieldDescriptor(name="author", kind=FieldKind.RELATION, relation_to="authors"),
            FieldDescriptor(name="image", kind=FieldKind.UPLOAD, relation_to="media"),
        ],
        access=WRITERS,
        hooks=post_hooks or {},
    ))
    registry.register(CollectionSchema(
        slug="notes",
        fields=[
            FieldDescriptor(name="body", kind=FieldKind.TEXTAREA),
            FieldDescriptor(name="owner", kind=FieldKind.TEXT),
        ],
        access={
            Operation.READ: owner_or_role("owner", "admin"),
            Operation.CREATE: authenticated,
            Operation.UPDATE: owner_or_role("owner", "admin"),
            Operation.DELETE: owner_or_role("owner", "admin"),
        },
        timestamped=False,
    ))
    return registry


def make_engine(registry, assets=None, clock=None) -> DocumentEngine:
    adapter = SQLiteAdapter(":memory:")
    adapter.connect()
    engine = DocumentEngine(registry, adapter, assets=assets, clock=clock or Clock(START))
    engine.initialize_storage()
    return engine


@pytest.fixture(autouse=True)
def builtins():
    register_builtin_hooks()
    register_builtin_validators()


@pytest.fixture
def clock():
    return Clock(START)


@pytest.fixture
def blobs():
    return MemoryBlobAdapter()


@pytest.fixture
def engine(clock, blobs):
    engine = make_engine(
        build_registry(), AssetService(blobs, ShrinkingTransformer()), clock
    )
    yield engine
    engine.adapter.close()


# =============================================================================
# Create
# =============================================================================


class TestCreate:
    @pytest.mark.asyncio
    async def test_applies_defaults_and_timestamps(self, engine):
        doc = await engine.create("posts", {"title": "Hello World"}, EDITOR)

        assert doc.collection == "posts"
        assert doc.fields["slug"] == "hello-world"
        assert doc.fields["status"] == "draft"
        assert doc.fields["views"] == 0
        assert doc.created_at == START.isoformat()
        assert doc.updated_at == START.isoformat()

    @pytest.mark.asyncio
    async def test_read_back_matches(self, engine):
        doc = await engine.create("posts", {"title": "Hi"}, EDITOR)
        again = await engine.find_by_id("posts", doc.id)
        assert again.to_dict() == doc.to_dict()

    @pytest.mark.asyncio
    async def test_system_and_undeclared_keys_are_dropped(self, engine):
        doc = await engine.create("posts", {
            "id": "forced",
            "createdAt": "1999-01-01T00:00:00+00:00",
            "title": "Hi",
            "hacker": True,
        }, EDITOR)

        assert doc.id != "forced"
        assert doc.created_at == START.isoformat()
        assert "hacker" not in doc.fields

    @pytest.mark.asyncio
    async def test_values_are_coerced(self, engine):
        doc = await engine.create("posts", {"title": "Hi", "views": "12"}, EDITOR)
        assert doc.fields["views"] == 12

    @pytest.mark.asyncio
    async def test_untimestamped_collection(self, engine):
        doc = await engine.create("notes", {"body": "x", "owner": "u1"}, EDITOR)
        assert doc.created_at is None
        assert "createdAt" not in doc.to_dict()

    @pytest.mark.asyncio
    async def test_anonymous_cannot_create(self, engine):
        with pytest.raises(AccessDenied):
            await engine.create("posts", {"title": "Hi"}, ANONYMOUS)
        assert engine.adapter.count_matching("posts") == 0

    @pytest.mark.asyncio
    async def test_unknown_collection(self, engine):
        with pytest.raises(UnknownCollection):
            await engine.create("nope", {}, EDITOR)

    @pytest.mark.asyncio
    async def test_all_field_errors_reported_together(self, engine):
        with pytest.raises(ValidationError) as exc:
            await engine.create("posts", {"status": "bogus", "views": -1}, EDITOR)

        codes = {e.field: e.code for e in exc.value.errors}
        assert codes == {
            "title": "REQUIRED",
            "status": "INVALID_OPTION",
            "views": "MIN_VALUE",
        }
        assert engine.adapter.count_matching("posts") == 0

    @pytest.mark.asyncio
    async def test_dangling_relation(self, engine):
        with pytest.raises(DanglingReference) as exc:
            await engine.create("posts", {"title": "Hi", "author": "ghost"}, EDITOR)
        assert exc.value.fields == ["author"]

    @pytest.mark.asyncio
    async def test_existing_relation(self, engine):
        author = await engine.create("authors", {"name": "Ann"}, EDITOR)
        doc = await engine.create("posts", {"title": "Hi", "author": author.id}, EDITOR)
        assert doc.fields["author"] == author.id

    @pytest.mark.asyncio
    async def test_dangling_mixed_with_other_errors_is_validation_error(self, engine):
        with pytest.raises(ValidationError) as exc:
            await engine.create("posts", {"author": "ghost"}, EDITOR)
        assert not isinstance(exc.value, DanglingReference)
        assert set(exc.value.fields) == {"title", "author"}


class TestUniqueness:
    @pytest.mark.asyncio
    async def test_duplicate_slug_rejected(self, engine):
        await engine.create("posts", {"title": "Same"}, EDITOR)
        with pytest.raises(UniquenessViolation) as exc:
            await engine.create("posts", {"title": "Same"}, EDITOR)

        error = exc.value.errors[0]
        assert error.code == "UNIQUE"
        assert error.field == "slug"
        assert "'same' is already in use" in error.message
        assert engine.adapter.count_matching("posts") == 1

    @pytest.mark.asyncio
    async def test_store_constraint_maps_to_uniqueness_violation(self, engine, monkeypatch):
        await engine.create("posts", {"title": "Same"}, EDITOR)
        monkeypatch.setattr(engine, "_check_unique", lambda *args, **kwargs: None)

        with pytest.raises(UniquenessViolation):
            await engine.create("posts", {"title": "Same"}, EDITOR)

    @pytest.mark.asyncio
    async def test_update_keeping_own_value_is_fine(self, engine):
        doc = await engine.create("posts", {"title": "Same"}, EDITOR)
        updated = await engine.update("posts", doc.id, {"views": 3}, EDITOR)
        assert updated.fields["slug"] == "same"

    @pytest.mark.asyncio
    async def test_update_to_taken_value(self, engine):
        await engine.create("posts", {"title": "Taken"}, EDITOR)
        doc = await engine.create("posts", {"title": "Free"}, EDITOR)
        with pytest.raises(UniquenessViolation):
            await engine.update("posts", doc.id, {"slug": "taken"}, EDITOR)


# =============================================================================
# Hooks
# =============================================================================


class TestHooksInPipeline:
    @pytest.mark.asyncio
    async def test_abort_prevents_write(self, clock):
        async def closed(ctx):
            return HookResult(abort="Submissions are closed")

        engine = make_engine(build_registry({
            HookStage.BEFORE_CHANGE: [HookBinding(name="closed", fn=closed)],
        }), clock=clock)

        with pytest.raises(HookAborted) as exc:
            await engine.create("posts", {"title": "Hi"}, EDITOR)

        assert exc.value.reason == "Submissions are closed"
        assert exc.value.hook == "closed"
        assert engine.adapter.count_matching("posts") == 0

    @pytest.mark.asyncio
    async def test_raising_before_hook_aborts(self, clock):
        async def broken(ctx):
            raise RuntimeError("boom")

        engine = make_engine(build_registry({
            HookStage.BEFORE_VALIDATE: [HookBinding(name="broken", fn=broken)],
        }), clock=clock)

        with pytest.raises(HookAborted, match="boom"):
            await engine.create("posts", {"title": "Hi"}, EDITOR)
        assert engine.adapter.count_matching("posts") == 0

    @pytest.mark.asyncio
    async def test_stage_order(self, clock):
        seen = {}

        async def before_validate(ctx):
            seen["slug"] = ctx.data.get("slug")
            seen["views"] = ctx.data.get("views")

        async def before_change(ctx):
            seen["coerced_views"] = ctx.data["views"]
            return HookResult(update={"status": "published"})

        engine = make_engine(build_registry({
            HookStage.BEFORE_VALIDATE: [HookBinding(name="bv", fn=before_validate)],
            HookStage.BEFORE_CHANGE: [HookBinding(name="bc", fn=before_change)],
        }), clock=clock)

        doc = await engine.create("posts", {"title": "Hi There", "views": "4"}, EDITOR)

        # field hooks ran before the collection hook; validation before beforeChange
        assert seen == {"slug": "hi-there", "views": "4", "coerced_views": 4}
        assert doc.fields["status"] == "published"

    @pytest.mark.asyncio
    async def test_after_change_failure_becomes_warning(self, clock):
        calls = []

        async def notify(ctx):
            calls.append((ctx.operation, ctx.data["id"], ctx.engine))
            raise ConnectionError("mail server down")

        engine = make_engine(build_registry({
            HookStage.AFTER_CHANGE: [HookBinding(name="notify", fn=notify)],
        }), clock=clock)

        result = await engine.execute(
            "posts", Operation.CREATE, EDITOR, payload={"title": "Hi"}
        )

        assert result.document is not None
        assert engine.adapter.count_matching("posts") == 1
        assert [w.to_dict() for w in result.warnings] == [{
            "hook": "notify", "stage": "afterChange", "message": "mail server down",
        }]
        assert calls == [(Operation.CREATE, result.document.id, engine)]

    @pytest.mark.asyncio
    async def test_on_filter(self, clock):
        calls = []

        async def on_update(ctx):
            calls.append(ctx.operation)

        engine = make_engine(build_registry({
            HookStage.AFTER_CHANGE: [
                HookBinding(name="onUpdate", fn=on_update, on=[Operation.UPDATE]),
            ],
        }), clock=clock)

        doc = await engine.create("posts", {"title": "Hi"}, EDITOR)
        await engine.update("posts", doc.id, {"views": 1}, EDITOR)
        assert calls == [Operation.UPDATE]

    @pytest.mark.asyncio
    async def test_before_delete_abort_keeps_document(self, clock):
        async def keep(ctx):
            return HookResult(abort="Published posts cannot be deleted")

        engine = make_engine(build_registry({
            HookStage.BEFORE_DELETE: [HookBinding(name="keep", fn=keep)],
        }), clock=clock)
        doc = await engine.create("posts", {"title": "Hi"}, EDITOR)

        with pytest.raises(HookAborted):
            await engine.delete("posts", doc.id, EDITOR)
        assert (await engine.find_by_id("posts", doc.id)).id == doc.id


# =============================================================================
# Reads
# =============================================================================


class TestReads:
    @pytest.mark.asyncio
    async def test_find_with_filter_sort_and_pagination(self, engine):
        for title, views in [("A", 5), ("B", 50), ("C", 20), ("D", 1)]:
            await engine.create("posts", {"title": title, "views": views}, EDITOR)

        result = await engine.find(
            "posts", where={"views": {"gte": 5}}, sort="-views", limit=2
        )

        assert [d.fields["title"] for d in result.documents] == ["B", "C"]
        assert result.page.to_dict() == {
            "total": 3, "limit": 2, "offset": 0, "hasMore": True,
        }
        assert result.to_dict()["pagination"]["total"] == 3

    @pytest.mark.asyncio
    async def test_missing_document(self, engine):
        with pytest.raises(DocumentNotFound):
            await engine.find_by_id("posts", "nope")

    @pytest.mark.asyncio
    async def test_find_by_slug(self, engine):
        doc = await engine.create("posts", {"title": "Find Me"}, EDITOR)
        found = await engine.find_by_slug("posts", "find-me")
        assert found.id == doc.id

        with pytest.raises(DocumentNotFound):
            await engine.find_by_slug("posts", "lost")

    @pytest.mark.asyncio
    async def test_scoped_reads(self, engine):
        mine = await engine.create("notes", {"body": "mine", "owner": "u1"}, EDITOR)
        theirs = await engine.create("notes", {"body": "theirs", "owner": "u2"}, OTHER)

        result = await engine.find("notes", EDITOR)
        assert [d.id for d in result.documents] == [mine.id]
        assert result.page.total == 1

        admin_view = await engine.find("notes", ADMIN)
        assert admin_view.page.total == 2

        with pytest.raises(DocumentNotFound):
            await engine.find_by_id("notes", theirs.id, EDITOR)

        with pytest.raises(AccessDenied):
            await engine.find("notes", ANONYMOUS)

    @pytest.mark.asyncio
    async def test_scope_is_combined_with_caller_filter(self, engine):
        await engine.create("notes", {"body": "x", "owner": "u1"}, EDITOR)
        await engine.create("notes", {"body": "x", "owner": "u2"}, OTHER)

        result = await engine.find("notes", EDITOR, where={"body": "x"})
        assert [d.fields["owner"] for d in result.documents] == ["u1"]

    def test_parse_sort(self):
        assert parse_sort("-createdAt, title") == [
            {"field": "createdAt", "direction": "desc"},
            {"field": "title", "direction": "asc"},
        ]
        assert parse_sort(None) is None
        assert parse_sort("") is None


# =============================================================================
# Update / delete
# =============================================================================


class TestUpdate:
    @pytest.mark.asyncio
    async def test_partial_update(self, engine, clock):
        doc = await engine.create("posts", {"title": "Hi", "views": 1}, EDITOR)
        clock.advance(hours=1)

        updated = await engine.update("posts", doc.id, {"views": 2}, EDITOR)

        assert updated.fields["title"] == "Hi"
        assert updated.fields["views"] == 2
        assert updated.created_at == START.isoformat()
        assert updated.updated_at == (START + timedelta(hours=1)).isoformat()

    @pytest.mark.asyncio
    async def test_update_validates_merged_document(self, engine):
        doc = await engine.create("posts", {"title": "Hi"}, EDITOR)
        with pytest.raises(ValidationError):
            await engine.update("posts", doc.id, {"title": ""}, EDITOR)
        assert (await engine.find_by_id("posts", doc.id)).fields["title"] == "Hi"

    @pytest.mark.asyncio
    async def test_update_missing(self, engine):
        with pytest.raises(DocumentNotFound):
            await engine.update("posts", "nope", {"title": "x"}, EDITOR)

    @pytest.mark.asyncio
    async def test_scoped_update_of_foreign_document(self, engine):
        theirs = await engine.create("notes", {"body": "theirs", "owner": "u2"}, OTHER)
        with pytest.raises(AccessDenied):
            await engine.update("notes", theirs.id, {"body": "mine now"}, EDITOR)

        updated = await engine.update("notes", theirs.id, {"body": "edited"}, OTHER)
        assert updated.fields["body"] == "edited"

    @pytest.mark.asyncio
    async def test_update_requires_target(self, engine):
        with pytest.raises(ValueError, match="requires a target document id"):
            await engine.execute("posts", Operation.UPDATE, EDITOR, payload={})


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete(self, engine):
        doc = await engine.create("posts", {"title": "Bye"}, EDITOR)
        result = await engine.delete("posts", doc.id, EDITOR)

        assert result.document.id == doc.id
        assert result.warnings == []
        with pytest.raises(DocumentNotFound):
            await engine.find_by_id("posts", doc.id)

    @pytest.mark.asyncio
    async def test_delete_missing(self, engine):
        with pytest.raises(DocumentNotFound):
            await engine.delete("posts", "nope", EDITOR)

    @pytest.mark.asyncio
    async def test_scoped_delete_of_foreign_document(self, engine):
        theirs = await engine.create("notes", {"body": "x", "owner": "u2"}, OTHER)
        with pytest.raises(AccessDenied):
            await engine.delete("notes", theirs.id, EDITOR)
        await engine.delete("notes", theirs.id, ADMIN)


# =============================================================================
# Uploads
# =============================================================================


class TestUploads:
    @pytest.mark.asyncio
    async def test_upload_field_creates_media_document(self, engine, blobs):
        doc = await engine.create(
            "posts", {"title": "Pic", "image": png(alt="A cat")}, EDITOR
        )

        image = doc.fields["image"]
        assert image["url"] == "https://cdn.test/photo.png"
        assert image["mimeType"] == "image/png"
        assert image["size"] == 8
        assert image["derivedSizeVariants"] == {
            "thumbnail": "https://cdn.test/photo-thumbnail.png",
        }

        media = await engine.find_by_id("media", image["documentId"])
        assert media.fields["alt"] == "A cat"
        assert media.fields["filename"] == "photo.png"
        assert set(blobs.blobs) == {"photo.png", "photo-thumbnail.png"}

    @pytest.mark.asyncio
    async def test_existing_asset_reference(self, engine):
        media = await engine.create("media", {"file": png()}, EDITOR)
        doc = await engine.create(
            "posts", {"title": "Pic", "image": media.id}, EDITOR
        )
        assert doc.fields["image"]["documentId"] == media.id
        assert doc.fields["image"]["url"] == media.fields["url"]

    @pytest.mark.asyncio
    async def test_dangling_asset(self, engine):
        with pytest.raises(DanglingReference):
            await engine.create("posts", {"title": "Pic", "image": "ghost"}, EDITOR)

    @pytest.mark.asyncio
    async def test_upload_collection_requires_file(self, engine):
        with pytest.raises(ValidationError) as exc:
            await engine.create("media", {"alt": "nothing"}, EDITOR)
        assert exc.value.errors[0].code == "REQUIRED"
        assert exc.value.errors[0].field == "file"

    @pytest.mark.asyncio
    async def test_mime_type_and_size_limits(self, engine, blobs):
        upload = PendingUpload(
            content=b"x" * 100, filename="doc.pdf", content_type="application/pdf"
        )
        with pytest.raises(ValidationError) as exc:
            await engine.create("media", {"file": upload}, EDITOR)

        assert {e.code for e in exc.value.errors} == {"INVALID_MIME_TYPE", "FILE_TOO_LARGE"}
        assert blobs.blobs == {}

    @pytest.mark.asyncio
    async def test_no_asset_service(self, clock):
        engine = make_engine(build_registry(), clock=clock)
        with pytest.raises(StorageError):
            await engine.create("media", {"file": png()}, EDITOR)

    @pytest.mark.asyncio
    async def test_replacing_file_deletes_old_asset(self, engine, blobs):
        media = await engine.create("media", {"file": png("old.png")}, EDITOR)
        updated = await engine.update("media", media.id, {"file": png("new.png")}, EDITOR)

        assert updated.fields["url"] == "https://cdn.test/new.png"
        assert blobs.deleted == [
            "https://cdn.test/old.png",
            "https://cdn.test/old-thumbnail.png",
        ]

    @pytest.mark.asyncio
    async def test_update_without_file_keeps_asset(self, engine, blobs):
        media = await engine.create("media", {"file": png()}, EDITOR)
        updated = await engine.update("media", media.id, {"alt": "Now described"}, EDITOR)

        assert updated.fields["url"] == media.fields["url"]
        assert updated.fields["sizes"] == media.fields["sizes"]
        assert blobs.deleted == []

    @pytest.mark.asyncio
    async def test_delete_cascades_to_assets(self, engine, blobs):
        doc = await engine.create("posts", {"title": "Pic", "image": png()}, EDITOR)
        media_id = doc.fields["image"]["documentId"]

        result = await engine.delete("posts", doc.id, EDITOR)

        assert result.warnings == []
        assert engine.adapter.count_matching("media") == 0
        assert blobs.deleted == [
            "https://cdn.test/photo.png",
            "https://cdn.test/photo-thumbnail.png",
        ]
        with pytest.raises(DocumentNotFound):
            await engine.find_by_id("media", media_id)

    @pytest.mark.asyncio
    async def test_failed_blob_delete_is_a_warning(self, engine, blobs):
        async def refuse(name_or_url):
            raise StorageError("bucket is read-only")

        media = await engine.create("media", {"file": png()}, EDITOR)
        blobs.delete = refuse

        result = await engine.delete("media", media.id, EDITOR)

        assert engine.adapter.count_matching("media") == 0
        assert len(result.warnings) == 1
        assert "read-only" in result.warnings[0].message

    @pytest.mark.asyncio
    async def test_failed_create_removes_upload_document(self, engine, blobs):
        with pytest.raises(ValidationError):
            await engine.create("posts", {"image": png(alt="orphan")}, EDITOR)

        assert engine.adapter.count_matching("media") == 0
        assert blobs.deleted == [
            "https://cdn.test/photo.png",
            "https://cdn.test/photo-thumbnail.png",
        ]

    @pytest.mark.asyncio
    async def test_duplicate_parent_removes_upload_document(self, engine):
        await engine.create("posts", {"title": "Pic"}, EDITOR)
        with pytest.raises(UniquenessViolation):
            await engine.create("posts", {"title": "Pic", "image": png()}, EDITOR)

        assert engine.adapter.count_matching("media") == 0

    @pytest.mark.asyncio
    async def test_failed_update_removes_upload_document(self, engine):
        doc = await engine.create("posts", {"title": "Pic"}, EDITOR)
        with pytest.raises(ValidationError):
            await engine.update("posts", doc.id, {"views": -1, "image": png()}, EDITOR)

        assert engine.adapter.count_matching("media") == 0
        assert (await engine.find_by_id("posts", doc.id)).fields.get("image") is None

    @pytest.mark.asyncio
    async def test_upload_after_change_waits_for_parent(self, clock, blobs):
        seen = []

        async def record(ctx):
            seen.append(ctx.engine.adapter.count_matching("posts"))

        engine = make_engine(
            build_registry(media_hooks={HookStage.AFTER_CHANGE: [
                HookBinding(name="record", fn=record),
            ]}),
            AssetService(blobs),
            clock,
        )

        with pytest.raises(ValidationError):
            await engine.create("posts", {"image": png()}, EDITOR)
        assert seen == []

        await engine.create("posts", {"title": "Pic", "image": png()}, EDITOR)
        assert seen == [1]
        engine.adapter.close()


# =============================================================================
# Posts with derived fields
# =============================================================================


class TestPostDerivations:
    @pytest.fixture
    def posts(self, clock):
        registry = CollectionRegistry([CollectionSchema(
            slug="posts",
            fields=[
                FieldDescriptor(name="title", kind=FieldKind.TEXT, required=True),
                FieldDescriptor(
                    name="slug",
                    kind=FieldKind.TEXT,
                    unique=True,
                    hooks={HookStage.BEFORE_VALIDATE: [
                        HookBinding(name="deriveSlug", fn=derive_slug, params={"from": "title"}),
                    ]},
                ),
                FieldDescriptor(name="content", kind=FieldKind.RICHTEXT),
                FieldDescriptor(name="excerpt", kind=FieldKind.TEXTAREA),
            ],
            access=WRITERS,
            hooks={HookStage.BEFORE_CHANGE: [
                HookBinding(
                    name="deriveExcerpt",
                    fn=derive_excerpt,
                    params={"source": "content", "target": "excerpt"},
                ),
            ]},
        )])
        engine = make_engine(registry, clock=clock)
        yield engine
        engine.adapter.close()

    @pytest.mark.asyncio
    async def test_title_only_post(self, posts):
        doc = await posts.create("posts", {"title": "Hello World"}, EDITOR)

        assert doc.fields["slug"] == "hello-world"
        assert doc.fields["excerpt"] == ""
        assert doc.created_at == START.isoformat()

    @pytest.mark.asyncio
    async def test_same_title_twice(self, posts):
        await posts.create("posts", {"title": "Hello World"}, EDITOR)
        with pytest.raises(UniquenessViolation) as exc:
            await posts.create("posts", {"title": "Hello World"}, EDITOR)

        assert [e.field for e in exc.value.errors] == ["slug"]
        assert posts.adapter.count_matching("posts") == 1

    @pytest.mark.asyncio
    async def test_long_content_excerpt(self, posts):
        doc = await posts.create(
            "posts", {"title": "Long", "content": rich("word " * 100)}, EDITOR
        )
        assert len(doc.fields["excerpt"]) == 203
        assert doc.fields["excerpt"].endswith("...")


# =============================================================================
# Bundled collections
# =============================================================================


class TestBundledCollections:
    @pytest.fixture
    def site(self, clock):
        registry = CollectionLoader(_METADATA_DIR).load(CollectionRegistry())
        engine = make_engine(registry, AssetService(MemoryBlobAdapter()), clock)
        yield engine
        engine.adapter.close()

    def test_registry_is_frozen(self, site):
        assert site.registry.frozen

    @pytest.mark.asyncio
    async def test_blog_post_derivations(self, site):
        doc = await site.create("blog", {
            "title": "Fixing a Cracked Screen!",
            "content": rich("Start by powering the phone off."),
        }, EDITOR)

        assert doc.fields["slug"] == "fixing-a-cracked-screen"
        assert doc.fields["excerpt"] == "Start by powering the phone off."
        assert doc.fields["readTime"] == 1
        assert doc.fields["status"] == "draft"
        assert doc.fields["author"]["name"] == "Admin"
        assert doc.fields["publishedDate"]

        found = await site.find_by_slug("blog", "fixing-a-cracked-screen")
        assert found.id == doc.id

    @pytest.mark.asyncio
    async def test_public_booking(self, site, caplog):
        caplog.set_level("INFO", logger="contentforge.hooks.builtin")
        result = await site.execute("service-bookings", Operation.CREATE, ANONYMOUS, payload={
            "fullName": "Ann Example",
            "email": "ann@example.com",
            "phone": "+44 7700 900123",
            "serviceType": "phone-repair",
        })

        assert result.document.fields["status"] == "pending"
        assert result.document.fields["whatsappMessageSent"] is False
        assert "New service booking created: Ann Example - phone-repair" in caplog.text

        with pytest.raises(AccessDenied):
            await site.update(
                "service-bookings", result.document.id, {"status": "confirmed"}
            )

    @pytest.mark.asyncio
    async def test_contact_submission_is_stamped(self, site, clock):
        doc = await site.create("contact-submissions", {
            "name": "Bob",
            "email": "bob@example.com",
            "phoneNumber": "+44 20 7946 0018",
            "message": "My laptop will not boot",
        }, ANONYMOUS)

        assert doc.fields["submittedAt"] == clock.now.isoformat()
        assert doc.fields["status"] == "new"

        with pytest.raises(AccessDenied):
            await site.find("contact-submissions", ANONYMOUS)

    @pytest.mark.asyncio
    async def test_invalid_phone(self, site):
        with pytest.raises(ValidationError) as exc:
            await site.create("service-bookings", {
                "fullName": "Ann",
                "email": "ann@example.com",
                "phone": "call me",
                "serviceType": "other",
            })
        assert exc.value.fields == ["phone"]

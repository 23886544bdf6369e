"""Framework-provided hooks.

Registered by name so collection definitions can bind them:

    fields:
      - name: slug
        type: text
        hooks:
          beforeValidate:
            - name: deriveSlug
              params: {from: title}
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any

from contentforge.core.types import Operation, isoformat
from contentforge.hooks.registry import HookRegistry
from contentforge.hooks.types import FieldHookContext, HookContext, HookResult
from contentforge.validation import richtext
from contentforge.validation.fields import is_empty

logger = logging.getLogger(__name__)

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9]+")

# Fields tried, in order, when deriveSlug has no explicit source
SLUG_SOURCES = ("title", "name", "pageTitle")


def slugify(text: str) -> str:
    """Lower-case text, collapse non-alphanumeric runs to '-', trim '-'.

    slugify(slugify(x)) == slugify(x).
    """
    return _NON_ALPHANUMERIC.sub("-", text.lower()).strip("-")


async def derive_slug(ctx: FieldHookContext) -> str | None:
    """Fill an empty or missing slug from a title-like sibling field.

    A supplied slug is never overwritten.
    """
    if not is_empty(ctx.value):
        return None

    source_field = ctx.params.get("from")
    candidates = (source_field,) if source_field else SLUG_SOURCES
    for name in candidates:
        source = ctx.data.get(name)
        if isinstance(source, str) and source.strip():
            return slugify(source) or None
    return None


async def stamp_on_create(ctx: FieldHookContext) -> str | None:
    """Set the field to the operation timestamp on create."""
    if ctx.operation != Operation.CREATE:
        return None
    return isoformat(ctx.now or datetime.now(timezone.utc))


async def derive_excerpt(ctx: HookContext) -> HookResult | None:
    """Fill an empty excerpt with the start of a rich text field's text."""
    source = ctx.params.get("source", "content")
    target = ctx.params.get("target", "excerpt")
    length = int(ctx.params.get("length", richtext.DEFAULT_EXCERPT_LENGTH))

    if not is_empty(ctx.data.get(target)):
        return None

    text = richtext.extract_plain_text(ctx.data.get(source))
    return HookResult(update={target: richtext.make_excerpt(text, length)})


async def derive_reading_time(ctx: HookContext) -> HookResult | None:
    """Recompute reading time in whole minutes from a rich text field.

    Leaves the target untouched when the source has no text.
    """
    source = ctx.params.get("source", "content")
    target = ctx.params.get("target", "readTime")
    wpm = int(ctx.params.get("wordsPerMinute", richtext.DEFAULT_WORDS_PER_MINUTE))

    text = richtext.extract_plain_text(ctx.data.get(source))
    if not text:
        return None
    return HookResult(update={target: richtext.reading_time_minutes(text, wpm)})


async def log_creation(ctx: HookContext) -> None:
    """Log newly created documents, e.g. "New service booking created: Ann - other"."""
    if ctx.operation != Operation.CREATE:
        return None

    label = ctx.params.get("label", ctx.collection)
    fields: list[str] = ctx.params.get("fields", ["id"])
    summary = " - ".join(_as_text(ctx.data.get(name)) for name in fields)
    logger.info("New %s created: %s", label, summary)
    return None


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


def register_builtin_hooks() -> None:
    """Register framework-provided hooks.

    Called at application startup, before collection definitions load.
    """
    HookRegistry.register("deriveSlug", derive_slug)
    HookRegistry.register("stampOnCreate", stamp_on_create)
    HookRegistry.register("deriveExcerpt", derive_excerpt)
    HookRegistry.register("deriveReadingTime", derive_reading_time)
    HookRegistry.register("logCreation", log_creation)

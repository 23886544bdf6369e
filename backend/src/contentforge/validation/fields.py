"""Per-kind field validation and coercion.

DocumentValidator walks a collection's field descriptors and returns the
coerced document together with every problem found. Nested group and
array fields are validated recursively and all child errors are
collected; nothing fails fast.
"""

import logging
import math
import re
from datetime import date, datetime, timezone
from typing import Any

from contentforge.core.errors import FieldError, SchemaError
from contentforge.core.types import AssetReference, PendingUpload
from contentforge.schema.fields import STRING_KINDS, FieldDescriptor, FieldKind
from contentforge.validation import richtext
from contentforge.validation.registry import EMAIL_PATTERN
from contentforge.validation.types import ValidationContext

logger = logging.getLogger(__name__)

_NOT_SET = object()


def is_empty(value: Any) -> bool:
    """Check if a value is considered empty for required checks."""
    if value is None:
        return True
    if isinstance(value, str) and value.strip() == "":
        return True
    if isinstance(value, (list, dict)) and len(value) == 0:
        return True
    return False


def parse_timestamp(value: Any) -> datetime | None:
    """Parse anything that denotes an absolute point in time.

    Accepts datetimes, dates, ISO-8601 strings (with or without a trailing
    Z) and epoch seconds. Naive values are taken as UTC.
    """
    parsed: datetime | None = None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            parsed = datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None

    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class DocumentValidator:
    """Validates and coerces document payloads against field descriptors."""

    def __init__(self, ctx: ValidationContext):
        self.ctx = ctx

    async def validate(
        self,
        fields: list[FieldDescriptor],
        data: dict[str, Any],
        prefix: str = "",
    ) -> tuple[dict[str, Any], list[FieldError]]:
        """Validate every declared field of data.

        Undeclared keys are dropped from the result.

        Returns:
            (coerced data, all field errors)
        """
        coerced: dict[str, Any] = {}
        errors: list[FieldError] = []

        for descriptor in fields:
            path = f"{prefix}{descriptor.name}"
            raw = data.get(descriptor.name, _NOT_SET)
            value = None if raw is _NOT_SET else raw
            result, field_errors = await self.validate_field(descriptor, value, path)
            errors.extend(field_errors)
            if raw is not _NOT_SET or result is not None:
                coerced[descriptor.name] = result

        return coerced, errors

    async def validate_field(
        self,
        descriptor: FieldDescriptor,
        value: Any,
        path: str,
    ) -> tuple[Any, list[FieldError]]:
        """Validate one field value. Returns (coerced value, errors)."""
        empty = is_empty(value) or (
            descriptor.kind == FieldKind.RICHTEXT and richtext.is_empty(value)
        )
        if empty:
            if descriptor.required:
                return value, [FieldError(
                    message=f"{descriptor.display_name} is required",
                    code="REQUIRED",
                    field=path,
                )]
            return value, []

        handler = _KIND_HANDLERS[descriptor.kind]
        result, errors = await handler(self, descriptor, value, path)
        if errors:
            return value, errors

        custom_errors = self._run_custom_validators(descriptor, result, path)
        return result, custom_errors

    # -------------------------------------------------------------------------
    # Scalar kinds
    # -------------------------------------------------------------------------

    async def _validate_string(self, d: FieldDescriptor, value: Any, path: str):
        if not isinstance(value, str):
            return value, [_error(d, path, "must be text", "INVALID_TEXT")]

        errors: list[FieldError] = []
        if d.kind == FieldKind.EMAIL and not EMAIL_PATTERN.match(value):
            errors.append(_error(d, path, "must be a valid email address", "INVALID_EMAIL"))

        if d.min_length is not None and len(value) < d.min_length:
            errors.append(_error(
                d, path, f"must be at least {d.min_length} characters", "MIN_LENGTH"
            ))
        if d.max_length is not None and len(value) > d.max_length:
            errors.append(_error(
                d, path, f"must be at most {d.max_length} characters", "MAX_LENGTH"
            ))

        if d.pattern:
            try:
                if not re.match(d.pattern, value):
                    errors.append(_error(d, path, "format is invalid", "PATTERN_MISMATCH"))
            except re.error:
                logger.warning("Invalid pattern on field '%s': %s", path, d.pattern)

        return value, errors

    async def _validate_number(self, d: FieldDescriptor, value: Any, path: str):
        number: int | float | None = None
        if isinstance(value, bool):
            number = None
        elif isinstance(value, (int, float)):
            number = value
        elif isinstance(value, str):
            try:
                number = int(value)
            except ValueError:
                try:
                    number = float(value)
                except ValueError:
                    number = None

        if number is None or (isinstance(number, float) and not math.isfinite(number)):
            return value, [_error(d, path, "must be a number", "INVALID_NUMBER")]

        errors: list[FieldError] = []
        if d.min is not None and number < d.min:
            errors.append(_error(d, path, f"must be at least {_fmt(d.min)}", "MIN_VALUE"))
        if d.max is not None and number > d.max:
            errors.append(_error(d, path, f"must be at most {_fmt(d.max)}", "MAX_VALUE"))
        return number, errors

    async def _validate_boolean(self, d: FieldDescriptor, value: Any, path: str):
        if isinstance(value, bool):
            return value, []
        if value in (0, 1) and not isinstance(value, float):
            return bool(value), []
        if isinstance(value, str) and value.lower() in ("true", "false"):
            return value.lower() == "true", []
        return value, [_error(d, path, "must be a boolean", "INVALID_BOOLEAN")]

    async def _validate_date(self, d: FieldDescriptor, value: Any, path: str):
        parsed = parse_timestamp(value)
        if parsed is None:
            return value, [_error(d, path, "must be a valid date", "INVALID_DATE")]
        return parsed.isoformat(), []

    async def _validate_select(self, d: FieldDescriptor, value: Any, path: str):
        if not isinstance(value, str) or value not in d.option_values:
            return value, [FieldError(
                message=f"'{value}' is not a valid option for {d.display_name}",
                code="INVALID_OPTION",
                field=path,
            )]
        return value, []

    async def _validate_richtext(self, d: FieldDescriptor, value: Any, path: str):
        nodes = richtext.root_nodes(value)
        if nodes is None:
            return value, [_error(d, path, "must be a rich text tree", "INVALID_RICHTEXT")]
        problems: list[str] = []
        for i, node in enumerate(nodes):
            problems.extend(richtext.node_problems(node, str(i)))
        if problems:
            return value, [FieldError(
                message=f"{d.display_name} is malformed ({'; '.join(problems)})",
                code="INVALID_RICHTEXT",
                field=path,
            )]
        return value, []

    # -------------------------------------------------------------------------
    # Nested kinds
    # -------------------------------------------------------------------------

    async def _validate_group(self, d: FieldDescriptor, value: Any, path: str):
        if not isinstance(value, dict):
            return value, [_error(d, path, "must be an object", "INVALID_GROUP")]
        return await self.validate(d.fields, value, prefix=f"{path}.")

    async def _validate_array(self, d: FieldDescriptor, value: Any, path: str):
        if not isinstance(value, list):
            return value, [_error(d, path, "must be a list", "INVALID_ARRAY")]

        errors: list[FieldError] = []
        if d.min_rows is not None and len(value) < d.min_rows:
            errors.append(_error(d, path, f"needs at least {d.min_rows} rows", "MIN_ROWS"))
        if d.max_rows is not None and len(value) > d.max_rows:
            errors.append(_error(d, path, f"allows at most {d.max_rows} rows", "MAX_ROWS"))

        rows: list[dict[str, Any]] = []
        for i, row in enumerate(value):
            row_path = f"{path}.{i}"
            if not isinstance(row, dict):
                errors.append(FieldError(
                    message=f"{d.display_name} row {i + 1} must be an object",
                    code="INVALID_ROW",
                    field=row_path,
                ))
                continue
            coerced_row, row_errors = await self.validate(
                d.fields, row, prefix=f"{row_path}."
            )
            if "id" in row:
                coerced_row = {"id": row["id"], **coerced_row}
            rows.append(coerced_row)
            errors.extend(row_errors)

        return rows, errors

    # -------------------------------------------------------------------------
    # Reference kinds
    # -------------------------------------------------------------------------

    async def _validate_relation(self, d: FieldDescriptor, value: Any, path: str):
        target = self.ctx.registry.resolve(d.relation_to)
        if isinstance(value, dict):
            value = value.get("id")
        if not isinstance(value, str) or not value:
            return value, [_error(d, path, "must be a document id", "INVALID_RELATION")]

        found = await self.ctx.references.find_by_id(target.slug, value)
        if found is None:
            return value, [_dangling(d, path, target.slug, value)]
        return value, []

    async def _validate_upload(self, d: FieldDescriptor, value: Any, path: str):
        target = self.ctx.registry.resolve(d.relation_to)
        if not target.is_upload_collection:
            raise SchemaError(
                f"Upload field '{path}' targets '{target.slug}', "
                "which is not an upload collection"
            )

        if isinstance(value, PendingUpload):
            return value, [_error(d, path, "upload was not stored", "INVALID_UPLOAD")]
        if isinstance(value, AssetReference):
            value = value.to_dict()

        document_id: Any = None
        if isinstance(value, str):
            document_id = value
        elif isinstance(value, dict):
            document_id = value.get("documentId") or value.get("id")
        if not isinstance(document_id, str) or not document_id:
            return value, [_error(d, path, "must reference an uploaded asset", "INVALID_UPLOAD")]

        found = await self.ctx.references.find_by_id(target.slug, document_id)
        if found is None:
            return value, [_dangling(d, path, target.slug, document_id)]
        return AssetReference.from_upload_document(found).to_dict(), []

    # -------------------------------------------------------------------------
    # Custom validators
    # -------------------------------------------------------------------------

    def _run_custom_validators(
        self, d: FieldDescriptor, value: Any, path: str
    ) -> list[FieldError]:
        errors: list[FieldError] = []
        for fn in d.validators:
            try:
                outcome = fn(value)
            except Exception as e:
                errors.append(FieldError(
                    message=f"Field validator error: {e}",
                    code="VALIDATOR_ERROR",
                    field=path,
                ))
                continue
            if outcome is None or outcome is True:
                continue
            message = outcome if isinstance(outcome, str) else f"{d.display_name} is invalid"
            errors.append(FieldError(message=message, code="CUSTOM", field=path))
        return errors


def _error(d: FieldDescriptor, path: str, text: str, code: str) -> FieldError:
    return FieldError(message=f"{d.display_name} {text}", code=code, field=path)


def _dangling(d: FieldDescriptor, path: str, target: str, document_id: str) -> FieldError:
    return FieldError(
        message=f"{d.display_name} references missing {target} document '{document_id}'",
        code="DANGLING_REFERENCE",
        field=path,
    )


def _fmt(bound: float) -> str:
    return str(int(bound)) if float(bound).is_integer() else str(bound)


_KIND_HANDLERS = {
    **{kind: DocumentValidator._validate_string for kind in STRING_KINDS},
    FieldKind.NUMBER: DocumentValidator._validate_number,
    FieldKind.BOOLEAN: DocumentValidator._validate_boolean,
    FieldKind.DATE: DocumentValidator._validate_date,
    FieldKind.SELECT: DocumentValidator._validate_select,
    FieldKind.RICHTEXT: DocumentValidator._validate_richtext,
    FieldKind.GROUP: DocumentValidator._validate_group,
    FieldKind.ARRAY: DocumentValidator._validate_array,
    FieldKind.RELATION: DocumentValidator._validate_relation,
    FieldKind.UPLOAD: DocumentValidator._validate_upload,
}

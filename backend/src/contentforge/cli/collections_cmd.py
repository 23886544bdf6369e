"""Collection CLI commands - validate and list definitions."""

from pathlib import Path

import click

from contentforge.core.errors import EngineError
from contentforge.hooks import register_builtin_hooks
from contentforge.schema.loader import CollectionLoader
from contentforge.schema.registry import CollectionRegistry
from contentforge.schema.validator import validate_definitions_dir
from contentforge.validation import register_builtin_validators


def _resolve_metadata_path(path: Path | None) -> Path:
    """Resolve the metadata directory from --path or cwd."""
    if path is not None:
        return path
    cwd = Path.cwd()
    base_path = cwd.parent if cwd.name == "backend" else cwd
    return base_path / "metadata"


def _load_registry(metadata_path: Path) -> CollectionRegistry:
    register_builtin_validators()
    register_builtin_hooks()
    return CollectionLoader(metadata_path).load(CollectionRegistry())


path_option = click.option(
    "--path",
    "metadata_path",
    default=None,
    type=click.Path(file_okay=False, path_type=Path),
    help="Metadata directory containing collections/ (default: ./metadata).",
)


@click.group()
def collections():
    """Collection definition commands."""
    pass


@collections.command()
@path_option
def validate(metadata_path: Path | None):
    """Validate collection YAML files against the JSON Schema, then load them."""
    metadata_path = _resolve_metadata_path(metadata_path)

    # ── Schema (JSON Schema) validation ─────────────────────────────────────
    issues = validate_definitions_dir(metadata_path)
    for issue in issues:
        click.echo(click.style(str(issue), fg="red"))

    if issues:
        click.echo(
            click.style(f"\n{len(issues)} schema error(s) found", fg="red", bold=True)
        )
        raise SystemExit(1)

    # ── Semantic (loader) validation ─────────────────────────────────────────
    try:
        registry = _load_registry(metadata_path)
    except EngineError as e:
        click.echo(click.style(f"\nSemantic validation failed: {e}", fg="red"), err=True)
        raise SystemExit(1)

    click.echo(f"\nLoaded {len(registry)} collections:")
    for slug in registry.slugs():
        schema = registry.resolve(slug)
        click.echo(f"  ✓ {slug} ({len(schema.fields)} fields)")

    click.echo(click.style("\nAll collections are valid.", fg="green", bold=True))


@collections.command("list")
@path_option
def list_cmd(metadata_path: Path | None):
    """List collections with their field counts and flags."""
    metadata_path = _resolve_metadata_path(metadata_path)

    try:
        registry = _load_registry(metadata_path)
    except EngineError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    if not len(registry):
        click.echo("No collections defined.")
        return

    for slug in registry.slugs():
        schema = registry.resolve(slug)
        flags = []
        if schema.timestamped:
            flags.append("timestamps")
        if schema.is_upload_collection:
            flags.append("upload")
        if schema.unique_fields:
            flags.append(f"unique: {', '.join(sorted(schema.unique_fields))}")
        operations = ", ".join(op.value for op in schema.access) or "none"
        click.echo(
            f"{slug:<24} {len(schema.fields):>3} fields  "
            f"[{'; '.join(flags)}]  access: {operations}"
        )

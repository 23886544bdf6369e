"""ContentForge CLI entry point."""

import click


@click.group()
def cli():
    """ContentForge - headless collection engine CLI."""
    pass


# Register subcommand groups
from contentforge.cli.collections_cmd import collections  # noqa: E402

cli.add_command(collections)

"""CLI entry point for the webmail database admin utilities."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click
from sqlalchemy.exc import SQLAlchemyError

from .config import Settings
from .db import Database, DatabaseConnectionError, connect
from .hosts import HostResolutionError, resolve_host
from .mail_db.migrations import (
    SchemaDirectoryNotFoundError,
    SchemaFileNotFoundError,
    SchemaInstallError,
    SchemaUpgradeError,
    get_version,
    init_schema,
    update_schema,
)
from .mail_db.operations import (
    UserNotFoundError,
    clean_deleted,
    find_user_id,
    modify_preference,
    reindex_contacts,
)


def _load_settings() -> Settings:
    return Settings()


def _open_database(settings: Settings) -> Database:
    settings.ensure_sqlite_parent()
    try:
        return connect(settings)
    except DatabaseConnectionError as exc:
        raise click.ClickException(str(exc)) from exc


def _describe_version(version: Optional[int]) -> str:
    return "not versioned" if version is None else str(version)


@click.group()
def cli() -> None:
    """Webmail database administration CLI."""


@cli.command("initdb")
@click.option(
    "--dir",
    "schema_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding <provider>.initial.sql (defaults to the configured schema dir).",
)
def initdb_command(schema_dir: Optional[Path]) -> None:
    """Create the database schema on an empty database."""
    settings = _load_settings()
    directory = schema_dir or settings.schema_dir
    with _open_database(settings) as db:
        try:
            init_schema(db, directory)
        except (SchemaFileNotFoundError, SchemaInstallError) as exc:
            raise click.ClickException(str(exc)) from exc


@cli.command("updatedb")
@click.option(
    "--dir",
    "schema_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding per-provider upgrade folders (defaults to the configured schema dir).",
)
@click.option(
    "--package",
    "package",
    default=None,
    help="Component name whose schema version is tracked (defaults to the configured package).",
)
@click.option(
    "--version",
    "release",
    default=None,
    help="Release string of an install that predates schema version tracking (e.g. 0.8.4).",
)
@click.option(
    "--strict/--no-strict",
    default=None,
    help="Abort on the first failed upgrade with an error (overrides configuration).",
)
@click.option("--quiet", is_flag=True, default=False, help="Suppress per-file progress.")
def updatedb_command(
    schema_dir: Optional[Path],
    package: Optional[str],
    release: Optional[str],
    strict: Optional[bool],
    quiet: bool,
) -> None:
    """Apply pending numbered SQL upgrade files."""
    settings = _load_settings()
    directory = schema_dir or settings.schema_dir
    component = package or settings.package
    fatal = settings.upgrade_errors_fatal if strict is None else strict

    with _open_database(settings) as db:
        try:
            success = update_schema(
                db, directory, component, release, errors=fatal, quiet=quiet
            )
        except (SchemaDirectoryNotFoundError, SchemaUpgradeError, SQLAlchemyError) as exc:
            raise click.ClickException(str(exc)) from exc

        if not success:
            click.echo(
                f"Database schema update for {component} did not complete.", err=True
            )
            raise SystemExit(1)

        if not quiet:
            version = get_version(db, component)
            click.echo(
                f"Database schema for {component} is up to date "
                f"({_describe_version(version)})."
            )


@cli.command("db-version")
@click.option(
    "--package",
    "package",
    default=None,
    help="Component name to look up (defaults to the configured package).",
)
def db_version_command(package: Optional[str]) -> None:
    """Print the tracked schema version of a component."""
    settings = _load_settings()
    component = package or settings.package
    with _open_database(settings) as db:
        try:
            version = get_version(db, component)
        except SQLAlchemyError as exc:
            raise click.ClickException(str(exc)) from exc
    click.echo(f"{component}: {_describe_version(version)}")


@cli.command("cleandb")
@click.option(
    "--days",
    type=click.IntRange(min=1),
    default=None,
    help="Purge deleted records last changed more than this many days ago.",
)
def cleandb_command(days: Optional[int]) -> None:
    """Remove soft-deleted contacts, groups, identities and responses."""
    settings = _load_settings()
    retention = days or settings.retention_days
    with _open_database(settings) as db:
        try:
            clean_deleted(db, retention)
        except (SQLAlchemyError, ValueError) as exc:
            raise click.ClickException(str(exc)) from exc


@cli.command("indexcontacts")
def indexcontacts_command() -> None:
    """Rebuild the address book search index for every user."""
    settings = _load_settings()
    with _open_database(settings) as db:
        try:
            reindex_contacts(db)
        except SQLAlchemyError as exc:
            raise click.ClickException(str(exc)) from exc


@cli.command("moduserprefs")
@click.argument("name")
@click.argument("value")
@click.option(
    "--user",
    "user_id",
    type=click.IntRange(min=1),
    default=None,
    help="Only update this user id.",
)
@click.option(
    "--username",
    default=None,
    help="Only update this account (looked up together with --host).",
)
@click.option(
    "--host",
    default=None,
    help="IMAP host of --username (defaults to the single configured host).",
)
@click.option(
    "--type",
    "value_type",
    default="string",
    show_default=True,
    help="Value type: bool, int or string.",
)
def moduserprefs_command(
    name: str,
    value: str,
    user_id: Optional[int],
    username: Optional[str],
    host: Optional[str],
    value_type: str,
) -> None:
    """Set preference NAME to VALUE for all users or a single one."""
    if user_id is not None and username:
        raise click.ClickException("Use either --user or --username, not both.")

    settings = _load_settings()
    with _open_database(settings) as db:
        try:
            if username:
                target_host = resolve_host(settings.imap_host, host)
                user_id = find_user_id(db, username, target_host)
            results = modify_preference(
                db, name, value, user_id=user_id, value_type=value_type
            )
        except (
            HostResolutionError,
            UserNotFoundError,
            SQLAlchemyError,
            ValueError,
        ) as exc:
            raise click.ClickException(str(exc)) from exc

    if not results:
        click.echo("No matching users found.")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()

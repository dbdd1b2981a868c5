"""Schema installation and numbered SQL upgrades for the webmail database."""

from __future__ import annotations

import re
from pathlib import Path
from types import MappingProxyType
from typing import Callable, List, Mapping, Optional

import click
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from ..db import Database
from .schema import LAST_UNTRACKED_VERSION, VERSION_TRACKING_SINCE, system


Echo = Callable[..., None]

UPGRADE_FILE_PATTERN = re.compile(r"^([0-9]+)\.sql$")

# Releases that predate the system table, mapped to their schema version.
# Kept for upgrading old installs only; new releases are never added here.
LEGACY_RELEASE_VERSIONS: Mapping[str, int] = MappingProxyType(
    {
        "0.1-stable": 1,
        "0.1.1": 2008030300,
        "0.2-alpha": 2008040500,
        "0.2-beta": 2008060900,
        "0.2-stable": 2008092100,
        "0.2.1": 2008092100,
        "0.2.2": 2008092100,
        "0.3-stable": 2008092100,
        "0.3.1": 2009090400,
        "0.4-beta": 2009103100,
        "0.4": 2010042300,
        "0.4.1": 2010042300,
        "0.4.2": 2010042300,
        "0.5-beta": 2010100600,
        "0.5": 2010100600,
        "0.5.1": 2010100600,
        "0.5.2": 2010100600,
        "0.5.3": 2010100600,
        "0.5.4": 2010100600,
        "0.6-beta": 2011011200,
        "0.6": 2011011200,
        "0.7-beta": 2011092800,
        "0.7": 2011111600,
        "0.7.1": 2011111600,
        "0.7.2": 2011111600,
        "0.7.3": 2011111600,
        "0.7.4": 2011111600,
        "0.8-beta": 2011121400,
        "0.8-rc": 2011121400,
        "0.8.0": 2011121400,
        "0.8.1": 2011121400,
        "0.8.2": 2011121400,
        "0.8.3": 2011121400,
        "0.8.4": 2011121400,
        "0.8.5": 2011121400,
        "0.8.6": 2011121400,
        "0.9-beta": LAST_UNTRACKED_VERSION,
    }
)


class SchemaFileNotFoundError(FileNotFoundError):
    """Raised when the initial DDL file for the database provider is missing."""


class SchemaInstallError(RuntimeError):
    """Raised when the initial DDL file cannot be read or executed."""


class SchemaDirectoryNotFoundError(FileNotFoundError):
    """Raised when a schema or per-provider upgrade directory is missing."""


class SchemaUpgradeError(RuntimeError):
    """Raised when an upgrade file fails and errors are fatal."""


def _version_key(component: str) -> str:
    return f"{component}-version"


def init_schema(db: Database, directory: Path, *, echo: Echo = click.echo) -> None:
    """Create the base tables from ``<directory>/<provider>.initial.sql``."""
    ddl_file = Path(directory) / f"{db.provider}.initial.sql"
    if not ddl_file.exists():
        raise SchemaFileNotFoundError(f"DDL file {ddl_file} not found")

    echo("Creating database schema... ", nl=False)

    error: Optional[str] = None
    try:
        sql = ddl_file.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        sql = ""
    if sql.strip():
        result = db.exec_script(sql)
        if not result.ok:
            error = result.error
    else:
        error = f"Unable to read file {ddl_file} or it is empty"

    if error:
        echo("[FAILED]")
        raise SchemaInstallError(error)
    echo("[OK]")


def get_version(db: Database, component: str) -> Optional[int]:
    """Return the tracked schema version for ``component``.

    ``None`` means the component was never versioned: either the system table
    does not exist yet or it holds no row for the component.
    """
    if not db.has_table(system.name):
        return None

    value = db.execute(
        select(system.c.value).where(system.c.name == _version_key(component))
    ).scalar_one_or_none()
    if value is None:
        return None
    digits = re.sub(r"[^0-9]", "", str(value))
    if not digits:
        return None
    return int(digits)


def set_version(db: Database, component: str, version: int) -> None:
    """Record ``version`` for ``component``, inserting the row on first use."""
    key = _version_key(component)
    result = db.execute(
        update(system).where(system.c.name == key).values(value=str(version))
    )
    if result.rowcount == 0:
        db.execute(system.insert().values(name=key, value=str(version)))


def resolve_start_version(
    db: Database, component: str, release: Optional[str] = None
) -> int:
    """Return the version upgrades start after."""
    version = get_version(db, component)
    if version is None and release:
        version = LEGACY_RELEASE_VERSIONS.get(release)
    if version is None:
        version = LAST_UNTRACKED_VERSION
    return version


def pending_versions(directory: Path, current: int) -> List[int]:
    """Return upgrade file versions above ``current`` in ascending order."""
    versions: List[int] = []
    for path in Path(directory).iterdir():
        match = UPGRADE_FILE_PATTERN.match(path.name)
        if not match or not path.is_file():
            continue
        version = int(match.group(1))
        if version > current:
            versions.append(version)
    return sorted(versions)


def apply_upgrade_file(
    db: Database, component: str, version: int, path: Path
) -> Optional[str]:
    """Run a single upgrade file; return the error message or ``None``."""
    try:
        sql = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        return f"Unable to read file {path}: {exc}"
    if sql.strip():
        result = db.exec_script(sql)
        if not result.ok:
            return result.error

    # Files older than the system table are applied without a version row.
    if version < VERSION_TRACKING_SINCE:
        return None

    try:
        set_version(db, component, version)
    except SQLAlchemyError as exc:
        return str(getattr(exc, "orig", None) or exc)
    return None


def update_schema(
    db: Database,
    directory: Path,
    component: str,
    release: Optional[str] = None,
    *,
    errors: bool = False,
    quiet: bool = False,
    echo: Echo = click.echo,
) -> bool:
    """Apply pending ``<directory>/<provider>/<version>.sql`` upgrades.

    Files are applied in ascending numeric order and the walk stops at the
    first failing file. With ``errors`` a failure raises instead of returning
    ``False``.
    """
    directory = Path(directory)
    if not directory.is_dir():
        if errors:
            raise SchemaDirectoryNotFoundError(
                "Specified database schema directory doesn't exist."
            )
        return False

    version = resolve_start_version(db, component, release)

    upgrade_dir = directory / db.provider
    if not upgrade_dir.is_dir():
        if errors:
            raise SchemaDirectoryNotFoundError(
                f"DDL Upgrade files for {db.provider} driver not found."
            )
        return False

    for pending in pending_versions(upgrade_dir, version):
        if not quiet:
            echo(
                f"Updating database schema for {component} ({pending})... ", nl=False
            )

        error = apply_upgrade_file(db, component, pending, upgrade_dir / f"{pending}.sql")

        if error:
            if not quiet:
                echo("[FAILED]")
            if errors:
                raise SchemaUpgradeError(f"Error in DDL upgrade {pending}: {error}")
            return False
        if not quiet:
            echo("[OK]")

    return True


__all__ = [
    "LEGACY_RELEASE_VERSIONS",
    "SchemaDirectoryNotFoundError",
    "SchemaFileNotFoundError",
    "SchemaInstallError",
    "SchemaUpgradeError",
    "apply_upgrade_file",
    "get_version",
    "init_schema",
    "pending_versions",
    "resolve_start_version",
    "set_version",
    "update_schema",
]

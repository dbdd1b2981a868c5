"""Maintenance operations run against the webmail database."""

from __future__ import annotations

import json
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import click
from sqlalchemy import select, update

from ..db import Database
from ..words import normalize_words
from .schema import CONTACT_SEARCH_FIELDS, SOFT_DELETE_TABLES, contacts, users

Echo = Callable[..., None]

FALSE_STRINGS = {"false", "0", "no", "off", "nein", ""}


class UserNotFoundError(LookupError):
    """Raised when a user account cannot be found in the users table."""


@dataclass(frozen=True)
class PreferenceChangeResult:
    """Outcome of a preference edit for one user."""

    user_id: int
    changed: bool


def retention_threshold(days: int, now: Optional[datetime] = None) -> datetime:
    """Return midnight of the day ``days`` days before ``now``."""
    now = now or datetime.now()
    cutoff = now - timedelta(days=days)
    return cutoff.replace(hour=0, minute=0, second=0, microsecond=0)


def clean_deleted(
    db: Database,
    days: int,
    *,
    now: Optional[datetime] = None,
    echo: Echo = click.echo,
) -> Dict[str, int]:
    """Remove soft-deleted rows last changed before the retention threshold.

    Returns the number of rows deleted per table.
    """
    if days <= 0:
        raise ValueError(f"Retention days must be positive (got {days}).")

    threshold = retention_threshold(days, now)
    deleted: Dict[str, int] = OrderedDict()
    for table in SOFT_DELETE_TABLES:
        result = db.execute(
            table.delete()
            .where(table.c["del"] == 1)
            .where(table.c.changed < threshold)
        )
        deleted[table.name] = result.rowcount
        echo(f"{result.rowcount} records deleted from '{table.name}'")
    return deleted


def reindex_contacts(db: Database, *, echo: Echo = click.echo) -> Dict[int, int]:
    """Recompute the contacts.words search column for every user.

    Returns the number of contacts reindexed per user id.
    """
    reindexed: Dict[int, int] = OrderedDict()
    user_ids = db.execute(
        select(users.c.user_id).order_by(users.c.user_id)
    ).scalars().all()

    for user_id in user_ids:
        echo(f"Indexing contacts for user {user_id}...")
        rows = db.execute(
            select(
                contacts.c.contact_id,
                contacts.c.words,
                *(contacts.c[field] for field in CONTACT_SEARCH_FIELDS),
            )
            .where(contacts.c.user_id == user_id)
            .where(contacts.c["del"] != 1)
            .order_by(contacts.c.contact_id)
        ).mappings().all()

        count = 0
        for row in rows:
            record = dict(row)
            contact_id = record.pop("contact_id")
            # the cached value must not feed into its own recomputation
            record.pop("words", None)
            record["words"] = normalize_words(
                record.get(field) for field in CONTACT_SEARCH_FIELDS
            )
            db.execute(
                update(contacts)
                .where(contacts.c.contact_id == contact_id)
                .where(contacts.c.user_id == user_id)
                .values(changed=datetime.now(), **record)
            )
            count += 1
        reindexed[user_id] = count

    echo("done.")
    return reindexed


def get_boolean(value: Any) -> bool:
    """Interpret an operator-supplied string as a boolean."""
    return str(value).strip().lower() not in FALSE_STRINGS


def coerce_value(value: Any, value_type: str = "string") -> Any:
    """Convert ``value`` to the named type; unknown type names mean string."""
    value_type = (value_type or "string").strip().lower()
    if value_type in {"bool", "boolean"}:
        return get_boolean(value)
    if value_type in {"int", "integer"}:
        try:
            return int(str(value).strip())
        except ValueError as exc:
            raise ValueError(f"Invalid integer value {value!r}.") from exc
    return str(value)


def load_preferences(raw: Optional[str]) -> Dict[str, Any]:
    """Decode a users.preferences blob; empty values read as no preferences."""
    if not raw:
        return {}
    prefs = json.loads(raw)
    if not isinstance(prefs, dict):
        raise ValueError("User preferences must decode to a mapping.")
    return prefs


def dump_preferences(prefs: Dict[str, Any]) -> str:
    return json.dumps(prefs, sort_keys=True)


def find_user_id(db: Database, username: str, host: str) -> int:
    """Return the id of the account ``username`` on ``host``."""
    user_id = db.execute(
        select(users.c.user_id)
        .where(users.c.username == username)
        .where(users.c.mail_host == host)
    ).scalar_one_or_none()
    if user_id is None:
        raise UserNotFoundError(f"User {username!r} on host {host!r} not found.")
    return user_id


def modify_preference(
    db: Database,
    name: str,
    value: Any,
    *,
    user_id: Optional[int] = None,
    value_type: str = "string",
    echo: Echo = click.echo,
) -> List[PreferenceChangeResult]:
    """Set preference ``name`` for all users, or only for ``user_id``.

    A user's row is only written when the preference mapping actually changes.
    """
    new_value = coerce_value(value, value_type)

    query = select(users.c.user_id, users.c.preferences).order_by(users.c.user_id)
    if user_id is not None:
        query = query.where(users.c.user_id == int(user_id))

    results: List[PreferenceChangeResult] = []
    for row in db.execute(query).all():
        echo(f"Updating prefs for user {row.user_id}...", nl=False)

        old_prefs = load_preferences(row.preferences)
        prefs = dict(old_prefs)
        prefs[name] = new_value

        if prefs != old_prefs:
            db.execute(
                update(users)
                .where(users.c.user_id == row.user_id)
                .values(preferences=dump_preferences(prefs))
            )
            echo("saved.")
            results.append(PreferenceChangeResult(user_id=row.user_id, changed=True))
        else:
            echo("nothing changed.")
            results.append(PreferenceChangeResult(user_id=row.user_id, changed=False))
    return results


__all__ = [
    "PreferenceChangeResult",
    "UserNotFoundError",
    "clean_deleted",
    "coerce_value",
    "dump_preferences",
    "find_user_id",
    "get_boolean",
    "load_preferences",
    "modify_preference",
    "reindex_contacts",
    "retention_threshold",
]

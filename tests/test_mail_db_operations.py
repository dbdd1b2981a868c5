"""Tests for retention pruning, contact reindexing and preference edits."""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional

import pytest
from sqlalchemy import select

from mailadmin.config import PACKAGE_DIR, Settings
from mailadmin.db import connect
from mailadmin.mail_db.migrations import init_schema
from mailadmin.mail_db.operations import (
    PreferenceChangeResult,
    UserNotFoundError,
    clean_deleted,
    coerce_value,
    find_user_id,
    get_boolean,
    modify_preference,
    reindex_contacts,
    retention_threshold,
)
from mailadmin.mail_db.schema import (
    contactgroups,
    contacts,
    identities,
    responses,
    users,
)

NOW = datetime(2024, 6, 15, 12, 0, 0)


def _collector():
    output: List[str] = []

    def echo(message: str = "", nl: bool = True) -> None:
        output.append(message + ("\n" if nl else ""))

    return output, echo


def _open_initialized(tmp_path: Path):
    settings = Settings().with_overrides(
        db_dsnw=f"sqlite:///{tmp_path / 'webmail.sqlite'}", sql_debug=False
    )
    db = connect(settings)
    init_schema(db, PACKAGE_DIR / "SQL", echo=lambda *args, **kwargs: None)
    return db


def _seed_user(
    db, user_id: int, *, username: Optional[str] = None, preferences: Optional[str] = None
) -> None:
    db.execute(
        users.insert().values(
            user_id=user_id,
            username=username or f"user{user_id}@example.com",
            mail_host="imap.example.com",
            preferences=preferences,
        )
    )


def _seed_contact(db, contact_id: int, user_id: int, **values) -> None:
    row = {
        "contact_id": contact_id,
        "user_id": user_id,
        "changed": NOW,
        "del": 0,
        "name": "",
        "email": "",
        "firstname": "",
        "surname": "",
        "words": "",
    }
    row.update(values)
    db.execute(contacts.insert().values(**row))


def test_retention_threshold_truncates_to_midnight() -> None:
    assert retention_threshold(30, NOW) == datetime(2024, 5, 16)


def test_clean_deleted_honours_threshold_and_flag(tmp_path) -> None:
    output, echo = _collector()
    with _open_initialized(tmp_path) as db:
        _seed_user(db, 1)
        _seed_contact(db, 1, 1, **{"del": 1, "changed": NOW - timedelta(days=31)})
        _seed_contact(db, 2, 1, **{"del": 1, "changed": NOW - timedelta(days=29)})
        _seed_contact(db, 3, 1, **{"del": 0, "changed": NOW - timedelta(days=400)})
        db.execute(
            contactgroups.insert().values(
                contactgroup_id=1,
                user_id=1,
                changed=NOW - timedelta(days=60),
                name="old group",
                **{"del": 1},
            )
        )
        db.execute(
            identities.insert().values(
                identity_id=1,
                user_id=1,
                changed=datetime(2024, 5, 16),
                email="user1@example.com",
                **{"del": 1},
            )
        )
        db.execute(
            responses.insert().values(
                response_id=1,
                user_id=1,
                changed=datetime(2024, 5, 15, 23, 59, 59),
                name="Thanks",
                data="Thank you!",
                **{"del": 1},
            )
        )

        deleted = clean_deleted(db, 30, now=NOW, echo=echo)

        assert deleted == {
            "contacts": 1,
            "contactgroups": 1,
            "identities": 0,
            "responses": 1,
        }
        remaining = db.execute(
            select(contacts.c.contact_id).order_by(contacts.c.contact_id)
        ).scalars().all()
        assert remaining == [2, 3]

    assert "".join(output) == (
        "1 records deleted from 'contacts'\n"
        "1 records deleted from 'contactgroups'\n"
        "0 records deleted from 'identities'\n"
        "1 records deleted from 'responses'\n"
    )


def test_clean_deleted_keeps_row_changed_exactly_at_cutoff(tmp_path) -> None:
    with _open_initialized(tmp_path) as db:
        _seed_user(db, 1)
        # rows written by the webmail carry second-precision text timestamps
        db.connection.exec_driver_sql(
            "INSERT INTO contacts (contact_id, user_id, changed, del, name) VALUES "
            "(1, 1, '2024-05-16 00:00:00', 1, 'at cutoff'), "
            "(2, 1, '2024-05-15 23:59:59', 1, 'just before')"
        )

        deleted = clean_deleted(db, 30, now=NOW, echo=lambda *args, **kwargs: None)

        assert deleted["contacts"] == 1
        remaining = db.execute(select(contacts.c.contact_id)).scalars().all()
        assert remaining == [1]


def test_reindex_contacts_writes_second_precision_timestamps(tmp_path) -> None:
    with _open_initialized(tmp_path) as db:
        _seed_user(db, 1)
        _seed_contact(db, 1, 1, name="Ann Lee")

        reindex_contacts(db, echo=lambda *args, **kwargs: None)

        raw = db.connection.exec_driver_sql(
            "SELECT changed FROM contacts WHERE contact_id = 1"
        ).scalar_one()
        assert len(raw) == len("2024-06-15 12:00:00")
        assert "." not in raw


def test_clean_deleted_rejects_non_positive_days(tmp_path) -> None:
    with _open_initialized(tmp_path) as db:
        with pytest.raises(ValueError):
            clean_deleted(db, 0, echo=lambda *args, **kwargs: None)


def test_reindex_contacts_rebuilds_words_per_user(tmp_path) -> None:
    output, echo = _collector()
    with _open_initialized(tmp_path) as db:
        _seed_user(db, 2)
        _seed_user(db, 1)
        _seed_contact(
            db,
            1,
            1,
            name="José Müller",
            firstname="José",
            surname="Müller",
            email="jose@example.com",
            words="stale",
        )
        _seed_contact(db, 2, 1, name="Gone", words="stale", **{"del": 1})
        _seed_contact(db, 3, 2, name="Ann O'Neil", email="ann@example.org")

        reindexed = reindex_contacts(db, echo=echo)

        assert reindexed == {1: 1, 2: 1}
        words = dict(
            db.execute(select(contacts.c.contact_id, contacts.c.words)).all()
        )
        assert words[1] == " jose muller jose@example.com "
        assert words[2] == "stale"
        assert words[3] == " ann neil ann@example.org "

    assert "".join(output) == (
        "Indexing contacts for user 1...\n"
        "Indexing contacts for user 2...\n"
        "done.\n"
    )


@pytest.mark.parametrize(
    "value, expected",
    [("true", True), ("1", True), ("Yes", True), ("off", False), ("NO", False), ("nein", False), ("", False)],
)
def test_get_boolean(value: str, expected: bool) -> None:
    assert get_boolean(value) is expected


def test_coerce_value_types() -> None:
    assert coerce_value("0", "bool") is False
    assert coerce_value("on", "Boolean") is True
    assert coerce_value("25", "int") == 25
    assert coerce_value("25", "INTEGER") == 25
    assert coerce_value("1.5", "float") == "1.5"
    with pytest.raises(ValueError):
        coerce_value("many", "int")


def test_modify_preference_saves_only_changed_users(tmp_path) -> None:
    output, echo = _collector()
    with _open_initialized(tmp_path) as db:
        _seed_user(db, 1, preferences='{"timezone":"auto"}')
        _seed_user(db, 2, preferences=None)

        results = modify_preference(db, "timezone", "auto", echo=echo)

        assert results == [
            PreferenceChangeResult(user_id=1, changed=False),
            PreferenceChangeResult(user_id=2, changed=True),
        ]
        stored = dict(db.execute(select(users.c.user_id, users.c.preferences)).all())
        # untouched rows keep their original serialization
        assert stored[1] == '{"timezone":"auto"}'
        assert json.loads(stored[2]) == {"timezone": "auto"}

    assert "".join(output) == (
        "Updating prefs for user 1...nothing changed.\n"
        "Updating prefs for user 2...saved.\n"
    )


def test_modify_preference_single_user_with_type(tmp_path) -> None:
    with _open_initialized(tmp_path) as db:
        _seed_user(db, 1, preferences='{"mail_pagesize": 50, "skin": "elastic"}')
        _seed_user(db, 2, preferences='{"mail_pagesize": 50}')

        results = modify_preference(
            db,
            "mail_pagesize",
            "100",
            user_id=1,
            value_type="int",
            echo=lambda *args, **kwargs: None,
        )

        assert results == [PreferenceChangeResult(user_id=1, changed=True)]
        stored = dict(db.execute(select(users.c.user_id, users.c.preferences)).all())
        assert json.loads(stored[1]) == {"mail_pagesize": 100, "skin": "elastic"}
        assert json.loads(stored[2]) == {"mail_pagesize": 50}


def test_modify_preference_user_zero_matches_no_account(tmp_path) -> None:
    with _open_initialized(tmp_path) as db:
        _seed_user(db, 1, preferences='{"skin":"elastic"}')

        results = modify_preference(
            db, "skin", "larry", user_id=0, echo=lambda *args, **kwargs: None
        )

        assert results == []
        stored = db.execute(select(users.c.preferences)).scalar_one()
        assert stored == '{"skin":"elastic"}'


def test_find_user_id(tmp_path) -> None:
    with _open_initialized(tmp_path) as db:
        _seed_user(db, 7, username="ann@example.org")

        assert find_user_id(db, "ann@example.org", "imap.example.com") == 7
        with pytest.raises(UserNotFoundError):
            find_user_id(db, "ann@example.org", "other.example.com")

"""SQLAlchemy table definitions for the webmail tables the admin tools touch.

Only the columns read or written here are declared; the full DDL lives in the
``<dialect>.initial.sql`` scripts.
"""

from __future__ import annotations

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    SmallInteger,
    String,
    Table,
    Text,
)
from sqlalchemy.dialects.sqlite import DATETIME as SQLITE_DATETIME

metadata = MetaData()

# Timestamps are kept in the second-precision text form the webmail writes
# (Y-m-d H:i:s) so text comparisons against them stay exact on SQLite.
ChangedTimestamp = DateTime().with_variant(
    SQLITE_DATETIME(
        storage_format="%(year)04d-%(month)02d-%(day)02d "
        "%(hour)02d:%(minute)02d:%(second)02d"
    ),
    "sqlite",
)

# Last schema version shipped before the system table existed.
LAST_UNTRACKED_VERSION = 2012080700
# First upgrade file that records its version in the system table.
VERSION_TRACKING_SINCE = 2013011000

system = Table(
    "system",
    metadata,
    Column("name", String(64), primary_key=True),
    Column("value", Text),
)

users = Table(
    "users",
    metadata,
    Column("user_id", Integer, primary_key=True),
    Column("username", String(128), nullable=False),
    Column("mail_host", String(128), nullable=False),
    Column("preferences", Text),
)

contacts = Table(
    "contacts",
    metadata,
    Column("contact_id", Integer, primary_key=True),
    Column("user_id", Integer, nullable=False),
    Column("changed", ChangedTimestamp, nullable=False),
    Column("del", SmallInteger, nullable=False),
    Column("name", String(128)),
    Column("email", Text),
    Column("firstname", String(128)),
    Column("surname", String(128)),
    Column("words", Text),
)

contactgroups = Table(
    "contactgroups",
    metadata,
    Column("contactgroup_id", Integer, primary_key=True),
    Column("user_id", Integer, nullable=False),
    Column("changed", ChangedTimestamp, nullable=False),
    Column("del", SmallInteger, nullable=False),
    Column("name", String(128)),
)

identities = Table(
    "identities",
    metadata,
    Column("identity_id", Integer, primary_key=True),
    Column("user_id", Integer, nullable=False),
    Column("changed", ChangedTimestamp, nullable=False),
    Column("del", SmallInteger, nullable=False),
    Column("email", String(128)),
)

responses = Table(
    "responses",
    metadata,
    Column("response_id", Integer, primary_key=True),
    Column("user_id", Integer, nullable=False),
    Column("changed", ChangedTimestamp, nullable=False),
    Column("del", SmallInteger, nullable=False),
    Column("name", String(255)),
    Column("data", Text),
)

# Tables carrying the soft-delete flag, purged by clean_deleted().
SOFT_DELETE_TABLES = (
    contacts,
    contactgroups,
    identities,
    responses,
)

# Text fields that feed the contacts.words search column.
CONTACT_SEARCH_FIELDS = ("name", "firstname", "surname", "email")

ALL_TABLES = (
    system,
    users,
    contacts,
    contactgroups,
    identities,
    responses,
)

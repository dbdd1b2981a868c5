"""Schema metadata, migrations and maintenance operations for the webmail database."""

from .migrations import get_version, init_schema, set_version, update_schema
from .operations import clean_deleted, modify_preference, reindex_contacts
from .schema import (
    ALL_TABLES,
    LAST_UNTRACKED_VERSION,
    VERSION_TRACKING_SINCE,
    contactgroups,
    contacts,
    identities,
    metadata,
    responses,
    system,
    users,
)

__all__ = [
    "ALL_TABLES",
    "LAST_UNTRACKED_VERSION",
    "VERSION_TRACKING_SINCE",
    "metadata",
    "system",
    "users",
    "contacts",
    "contactgroups",
    "identities",
    "responses",
    "init_schema",
    "get_version",
    "set_version",
    "update_schema",
    "clean_deleted",
    "reindex_contacts",
    "modify_preference",
]

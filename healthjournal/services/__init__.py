"""
Core services for the health journal.

This package contains the persistence port, the consistency engine for the
medication catalog, the import/export codec, the per-user journal service and
user administration.
"""

from .accounts import AccountService
from .codec import decode_token, encode_token, export_bundle, parse_json, validate_bundle
from .consistency import (
    CatalogChange,
    add_medication,
    apply_pattern,
    clean_pattern,
    delete_medication,
    rename_medication,
)
from .journal import JournalService, start_session
from .persistence import PersistencePort, Result

__all__ = [
    "AccountService",
    "CatalogChange",
    "JournalService",
    "PersistencePort",
    "Result",
    "add_medication",
    "apply_pattern",
    "clean_pattern",
    "decode_token",
    "delete_medication",
    "encode_token",
    "export_bundle",
    "parse_json",
    "rename_medication",
    "start_session",
    "validate_bundle",
]

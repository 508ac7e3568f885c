"""Import Committer - writes confirmed extractions as business records.

Usage:
    from importer import ImportCommitter, init_import_db

    init_import_db(db_path)
    committer = ImportCommitter(db_path)
    record = await committer.commit(extraction, ImportOptions(mark_as_received=True))
"""

from importer.committer import ImportCommitter
from importer.db import connect, count_rows, init_import_db
from importer.fingerprint import compute_fingerprint, normalize_natural_key, party_scope
from importer.history import ImportHistoryStore

__all__ = [
    "ImportCommitter",
    "ImportHistoryStore",
    "compute_fingerprint",
    "normalize_natural_key",
    "party_scope",
    "connect",
    "count_rows",
    "init_import_db",
]

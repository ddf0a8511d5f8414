"""Resumable, lock-coordinated importer for WXZ content archives."""

from .archive import WxzArchive, build_entry_index
from .config import ImportProfile
from .cursor import ProgressCursor
from .errors import ImporterError
from .importers import ImportContext, Importer, ImporterRegistry
from .lock import OptionLock
from .models import Claim, ClaimStatus, RecordType, RunReport, Stage
from .runner import WxzImport
from .store import LocalOptionStore, MemoryOptionStore, SqliteOptionStore, build_option_store

__all__ = [
    "Claim",
    "ClaimStatus",
    "ImportContext",
    "ImportProfile",
    "Importer",
    "ImporterError",
    "ImporterRegistry",
    "LocalOptionStore",
    "MemoryOptionStore",
    "OptionLock",
    "ProgressCursor",
    "RecordType",
    "RunReport",
    "SqliteOptionStore",
    "Stage",
    "WxzArchive",
    "WxzImport",
    "build_entry_index",
    "build_option_store",
]

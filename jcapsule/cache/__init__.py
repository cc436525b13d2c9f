"""
Application cache and cross-process locking.
"""

from .app_cache import (
    APP_CACHE_NAME,
    DEPS_CACHE_NAME,
    LOCK_FILE_NAME,
    TIMESTAMP_FILE_NAME,
    AppCache,
    CacheState,
    init_cache_root,
    open_cache_root,
    should_extract_entry,
)
from .lock import FileLock

__all__ = [
    "APP_CACHE_NAME",
    "DEPS_CACHE_NAME",
    "LOCK_FILE_NAME",
    "TIMESTAMP_FILE_NAME",
    "AppCache",
    "CacheState",
    "FileLock",
    "init_cache_root",
    "open_cache_root",
    "should_extract_entry",
]

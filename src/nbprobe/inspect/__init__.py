"""Object inspection and caching package."""

from .types import CacheEntry, EntryMetadata, is_detailed_entry, merge_entries
from .cache import CacheStore, EntryResult, RefreshResult, create_cache_store
from .queries import build_query_code

__all__ = [
    "CacheEntry",
    "EntryMetadata",
    "is_detailed_entry",
    "merge_entries",
    "CacheStore",
    "EntryResult",
    "RefreshResult",
    "create_cache_store",
    "build_query_code",
]

"""Per-notebook cache of inspected objects.

Reads are synchronous and never touch the kernel. Whole-notebook refreshes are
debounced and coalesced; single-entry refreshes are coalesced per variable.
All bookkeeping maps are keyed by notebook identity and cleaned up on both
success and failure.
"""

import asyncio
import json
import time
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Optional

import structlog

from nbprobe.inspect.identifiers import is_valid_identifier
from nbprobe.inspect.queries import build_query_code
from nbprobe.inspect.types import (
    ARRAY_TYPES,
    CacheEntry,
    EntryMetadata,
    is_detailed_entry,
    merge_entries,
)
from nbprobe.kernel.engine import ExecutionEngine, ExecutionOptions
from nbprobe.kernel.errors import KernelError
from nbprobe.kernel.outputs import extract_last_json_line

logger = structlog.get_logger(__name__)

REFRESH_DEBOUNCE = 0.3

NO_RESPONSE_MESSAGE = "No response from the kernel. Run a cell and refresh."
UNEXPECTED_DATA_MESSAGE = "Kernel returned unexpected data."
QUERY_FAILED_MESSAGE = "Failed to query the kernel. Ensure the kernel is running."
DISPOSED_MESSAGE = "Notebook cache was disposed."

QueryBuilder = Callable[..., str]
PendingKey = tuple[str, Optional[str]]


@dataclass
class RefreshResult:
    entries: list[CacheEntry] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class EntryResult:
    entry: Optional[CacheEntry] = None
    error: Optional[str] = None


def parse_query_response(output: str, require_details: bool = False) -> RefreshResult:
    """Parse the JSON line printed by a query into entries.

    Malformed items are dropped. With ``require_details``, array entries that
    lack detail fields are dropped too.
    """
    line = extract_last_json_line(output)
    if line is None:
        return RefreshResult(error=NO_RESPONSE_MESSAGE)

    try:
        parsed = json.loads(line)
    except ValueError:
        return RefreshResult(error=UNEXPECTED_DATA_MESSAGE)

    if not isinstance(parsed, list):
        error = parsed.get("error") if isinstance(parsed, dict) else None
        return RefreshResult(error=str(error) if error else UNEXPECTED_DATA_MESSAGE)

    entries = []
    for payload in parsed:
        entry = CacheEntry.from_payload(payload)
        if entry is None:
            continue
        if require_details and entry.type in ARRAY_TYPES and not is_detailed_entry(entry):
            continue
        entries.append(entry)
    return RefreshResult(entries=entries)


class CacheStore:
    """Object cache for every open notebook, owned by one host process."""

    def __init__(
        self,
        engine: ExecutionEngine,
        query_builder: QueryBuilder = build_query_code,
        debounce: float = REFRESH_DEBOUNCE,
        options: Optional[ExecutionOptions] = None,
        refresh_details: bool = True,
    ):
        self.engine = engine
        self.query_builder = query_builder
        self.debounce = debounce
        self.options = options or engine.default_options
        self.refresh_details = refresh_details

        self._entries: dict[str, dict[str, CacheEntry]] = {}
        self._metadata: dict[str, dict[str, EntryMetadata]] = {}
        self._pending: dict[PendingKey, asyncio.Future] = {}
        self._tasks: dict[PendingKey, asyncio.Task] = {}
        self._debounce_timers: dict[str, asyncio.TimerHandle] = {}

    # ------------------------------------------------------------------
    # Synchronous reads

    def get(self, notebook_id: str, variable_name: str) -> Optional[CacheEntry]:
        return self._entries.get(notebook_id, {}).get(variable_name)

    def has(self, notebook_id: str, variable_name: str) -> bool:
        return variable_name in self._entries.get(notebook_id, {})

    def entries(self, notebook_id: str) -> list[CacheEntry]:
        return list(self._entries.get(notebook_id, {}).values())

    def metadata(self, notebook_id: str, variable_name: str) -> Optional[EntryMetadata]:
        return self._metadata.get(notebook_id, {}).get(variable_name)

    def get_pending_refresh(self, notebook_id: str) -> Optional[asyncio.Future]:
        """The in-flight refresh for a notebook, without triggering one."""
        return self._pending.get((notebook_id, None))

    # ------------------------------------------------------------------
    # Refresh

    async def refresh(self, notebook_id: str) -> RefreshResult:
        """Re-query the notebook's namespace.

        Calls inside the debounce window push the timer back and share one
        result; calls while the query runs share its result.
        """
        key: PendingKey = (notebook_id, None)
        loop = asyncio.get_running_loop()
        future = self._pending.get(key)
        timer = self._debounce_timers.pop(notebook_id, None)

        if future is not None and timer is None:
            logger.debug("reusing in-flight refresh", notebook=notebook_id)
            return await asyncio.shield(future)

        if timer is not None:
            timer.cancel()
        if future is None:
            future = loop.create_future()
            self._pending[key] = future
        self._debounce_timers[notebook_id] = loop.call_later(
            self.debounce, self._start_refresh, notebook_id, future
        )
        return await asyncio.shield(future)

    def _start_refresh(self, notebook_id: str, future: asyncio.Future) -> None:
        self._debounce_timers.pop(notebook_id, None)
        self._launch((notebook_id, None), future, self._do_refresh(notebook_id))

    async def refresh_entry(
        self, notebook_id: str, variable_name: str, include_details: bool = True
    ) -> EntryResult:
        """Re-query one variable, merging the result into the cache."""
        if not is_valid_identifier(variable_name):
            return EntryResult(error=f"Invalid variable name: {variable_name!r}")

        key: PendingKey = (notebook_id, variable_name)
        pending = self._pending.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        future = asyncio.get_running_loop().create_future()
        self._pending[key] = future
        self._launch(key, future, self._do_refresh_entry(notebook_id, variable_name, include_details))
        return await asyncio.shield(future)

    def _launch(self, key: PendingKey, future: asyncio.Future, coro: Awaitable[Any]) -> None:
        self._tasks[key] = asyncio.ensure_future(self._settle(key, future, coro))

    async def _settle(self, key: PendingKey, future: asyncio.Future, coro: Awaitable[Any]) -> None:
        try:
            result = await coro
        except asyncio.CancelledError:
            if not future.done():
                future.cancel()
            raise
        except Exception as e:
            if not future.done():
                future.set_exception(e)
        else:
            if not future.done():
                future.set_result(result)
        finally:
            if self._pending.get(key) is future:
                del self._pending[key]
            if self._tasks.get(key) is asyncio.current_task():
                del self._tasks[key]

    def _query_options(self, operation: str) -> ExecutionOptions:
        if self.options.operation:
            return self.options
        return replace(self.options, operation=operation)

    async def _do_refresh(self, notebook_id: str) -> RefreshResult:
        logger.info("refreshing object cache", notebook=notebook_id)
        code = self.query_builder(variable_name=None, include_details=self.refresh_details)

        try:
            output = await self.engine.run_for_result(
                notebook_id, code, self._query_options("object-query")
            )
        except KernelError as e:
            self.clear(notebook_id)
            message = e.message or QUERY_FAILED_MESSAGE
            logger.error("object cache refresh error", notebook=notebook_id, error=message)
            return RefreshResult(error=message)

        parsed = parse_query_response(output, require_details=self.refresh_details)
        if parsed.error:
            # On error, clear the cache for this notebook
            self.clear(notebook_id)
            logger.warning("object cache refresh failed", notebook=notebook_id, error=parsed.error)
            return RefreshResult(error=parsed.error)

        entries = self._replace_all(notebook_id, parsed.entries)
        logger.debug("object cache updated", notebook=notebook_id, count=len(entries))
        return RefreshResult(entries=entries)

    async def _do_refresh_entry(
        self, notebook_id: str, variable_name: str, include_details: bool
    ) -> EntryResult:
        code = self.query_builder(variable_name=variable_name, include_details=include_details)
        try:
            output = await self.engine.run_for_result(
                notebook_id, code, self._query_options("object-detail")
            )
        except KernelError as e:
            self.invalidate(notebook_id, variable_name)
            message = e.message or QUERY_FAILED_MESSAGE
            logger.warning(
                "object query failed", notebook=notebook_id, variable=variable_name, error=message
            )
            return EntryResult(error=message)

        parsed = parse_query_response(output, require_details=include_details)
        if parsed.error:
            self.invalidate(notebook_id, variable_name)
            return EntryResult(error=parsed.error)

        match = next((e for e in parsed.entries if e.variable_name == variable_name), None)
        if match is None:
            self.invalidate(notebook_id, variable_name)
            return EntryResult()
        return EntryResult(entry=self._merge_one(notebook_id, match))

    # ------------------------------------------------------------------
    # Merge

    def _merged(
        self, notebook_id: str, incoming: CacheEntry, now: float
    ) -> tuple[CacheEntry, EntryMetadata]:
        existing = self.get(notebook_id, incoming.variable_name)
        previous = self.metadata(notebook_id, incoming.variable_name)
        merged = merge_entries(existing, incoming)
        had_details = (
            previous is not None
            and previous.has_details
            and existing is not None
            and existing.type == incoming.type
        )
        return merged, EntryMetadata(updated_at=now, has_details=had_details or is_detailed_entry(merged))

    def _replace_all(self, notebook_id: str, incoming: list[CacheEntry]) -> list[CacheEntry]:
        """Merge a full scan; variables missing from it are pruned."""
        now = time.time()
        entries: dict[str, CacheEntry] = {}
        metadata: dict[str, EntryMetadata] = {}
        for entry in incoming:
            merged, meta = self._merged(notebook_id, entry, now)
            entries[entry.variable_name] = merged
            metadata[entry.variable_name] = meta
        self._entries[notebook_id] = entries
        self._metadata[notebook_id] = metadata
        return list(entries.values())

    def _merge_one(self, notebook_id: str, incoming: CacheEntry) -> CacheEntry:
        merged, meta = self._merged(notebook_id, incoming, time.time())
        self._entries.setdefault(notebook_id, {})[incoming.variable_name] = merged
        self._metadata.setdefault(notebook_id, {})[incoming.variable_name] = meta
        return merged

    # ------------------------------------------------------------------
    # Invalidation and lifecycle

    def invalidate(self, notebook_id: str, variable_name: str) -> None:
        """Drop one entry (e.g. after watch/unwatch or a known mutation)."""
        self._entries.get(notebook_id, {}).pop(variable_name, None)
        self._metadata.get(notebook_id, {}).pop(variable_name, None)

    def clear(self, notebook_id: str) -> None:
        """Drop a notebook's entries and staleness metadata."""
        self._entries.pop(notebook_id, None)
        self._metadata.pop(notebook_id, None)

    def dispose(self, notebook_id: str) -> None:
        """Tear down everything held for a notebook (e.g. when it closes)."""
        timer = self._debounce_timers.pop(notebook_id, None)
        if timer is not None:
            timer.cancel()

        for key in [key for key in self._pending if key[0] == notebook_id]:
            future = self._pending.pop(key)
            if not future.done():
                result = RefreshResult if key[1] is None else EntryResult
                future.set_result(result(error=DISPOSED_MESSAGE))
            task = self._tasks.pop(key, None)
            if task is not None:
                task.cancel()

        self.clear(notebook_id)

    def close(self) -> None:
        """Dispose every notebook."""
        notebooks = set(self._entries) | set(self._debounce_timers)
        notebooks.update(key[0] for key in self._pending)
        for notebook_id in notebooks:
            self.dispose(notebook_id)


def create_cache_store(engine: ExecutionEngine, settings: Any = None) -> CacheStore:
    """Build the process-wide cache store from settings (or defaults)."""
    if settings is None:
        return CacheStore(engine)
    return CacheStore(
        engine,
        debounce=settings.refresh_debounce,
        refresh_details=settings.refresh_details,
    )

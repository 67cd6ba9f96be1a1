"""Kernel-scoped capability checks (e.g. "is module X importable here?").

Results are cached per kernel handle, not per notebook, because a notebook's
live kernel can change. A notebook-scoped last-known value backs synchronous
reads and remembers which kernel produced it.
"""

import asyncio
import json
import weakref
from typing import Optional

import structlog

from nbprobe.kernel.engine import ExecutionEngine, ExecutionOptions
from nbprobe.kernel.errors import KernelError
from nbprobe.kernel.outputs import extract_last_json_line
from nbprobe.kernel.types import KernelHandle

logger = structlog.get_logger(__name__)


def build_module_check_code(module: str) -> str:
    return "\n".join([
        "import importlib.util",
        "import json",
        f'print(json.dumps({{"available": importlib.util.find_spec({module!r}) is not None}}))',
    ])


class ModuleProbe:
    """Check once per kernel whether ``module`` can be imported."""

    def __init__(
        self,
        engine: ExecutionEngine,
        module: str,
        options: Optional[ExecutionOptions] = None,
    ):
        self.engine = engine
        self.module = module
        self.options = options or ExecutionOptions(
            timeout=1.5,
            warn_after=1.2,
            interrupt_on_timeout=False,
            operation=f"{module}-check",
        )
        self._by_kernel: "weakref.WeakKeyDictionary[KernelHandle, bool]" = weakref.WeakKeyDictionary()
        self._pending: "weakref.WeakKeyDictionary[KernelHandle, asyncio.Future]" = weakref.WeakKeyDictionary()
        self._by_notebook: dict[str, tuple[bool, Optional[weakref.ref]]] = {}

    def cached(self, notebook_id: str) -> Optional[bool]:
        """Last known availability for a notebook (synchronous, no kernel query)."""
        entry = self._by_notebook.get(notebook_id)
        return entry[0] if entry else None

    def _remember(self, notebook_id: str, available: bool, handle: Optional[KernelHandle] = None) -> None:
        ref = weakref.ref(handle) if handle is not None else None
        self._by_notebook[notebook_id] = (available, ref)

    def _notebook_kernel(self, notebook_id: str) -> Optional[KernelHandle]:
        entry = self._by_notebook.get(notebook_id)
        if entry is None or entry[1] is None:
            return None
        return entry[1]()

    async def check(
        self, notebook_id: str, handle: KernelHandle, force: bool = False
    ) -> Optional[bool]:
        """Query the kernel, reusing the per-kernel result unless ``force``.

        Returns None when the check itself fails.
        """
        cached = self._by_kernel.get(handle)
        if not force and cached is not None:
            self._remember(notebook_id, cached, handle)
            return cached

        pending = self._pending.get(handle)
        if pending is not None:
            return await asyncio.shield(pending)

        future = asyncio.ensure_future(self._run_check(notebook_id, handle))
        self._pending[handle] = future
        return await asyncio.shield(future)

    async def _run_check(self, notebook_id: str, handle: KernelHandle) -> Optional[bool]:
        try:
            output = await self.engine.run_for_result(
                notebook_id, build_module_check_code(self.module), self.options
            )
            line = extract_last_json_line(output)
            if line is None:
                raise ValueError(f"Missing {self.module} availability response.")
            parsed = json.loads(line)
            available = parsed.get("available") if isinstance(parsed, dict) else None
            if not isinstance(available, bool):
                raise ValueError(f"Invalid {self.module} availability response.")
        except (KernelError, ValueError) as e:
            logger.debug("module check failed", module=self.module, error=str(e))
            return None
        finally:
            self._pending.pop(handle, None)

        self._by_kernel[handle] = available
        self._remember(notebook_id, available, handle)
        return available

    async def update(self, notebook_id: str, force: bool = False) -> Optional[bool]:
        """Refresh availability for the notebook's current kernel.

        A kernel swap discards the notebook's previous answer before re-checking.
        """
        resolution = await self.engine.resolver.resolve(notebook_id)
        if resolution.access is None:
            self._remember(notebook_id, False)
            return False
        handle = resolution.access.handle

        if self._notebook_kernel(notebook_id) is not handle:
            known = self._by_kernel.get(handle)
            if not force and known is not None:
                self._remember(notebook_id, known, handle)
                return known
            self._remember(notebook_id, False, handle)

        return await self.check(notebook_id, handle, force=force)

    def forget(self, notebook_id: str) -> None:
        self._by_notebook.pop(notebook_id, None)

"""Inspected-object entry types."""

from dataclasses import asdict, dataclass, fields
from typing import Any, Optional

from nbprobe.inspect.identifiers import is_valid_identifier

# Objects the inspector reports. Array types carry detail fields.
OBJECT_TYPES = ("DataArray", "Dataset", "DataTree", "ndarray")
ARRAY_TYPES = ("DataArray", "ndarray")

DETAIL_FIELDS = ("dims", "sizes", "shape", "dtype", "ndim")


@dataclass
class CacheEntry:
    """Summary of one inspectable object in a kernel namespace.

    - DataArray/ndarray: may carry shape, dtype and ndim (DataArray also dims
      and sizes) once details have been queried
    - Dataset/DataTree: variable name, type and name only
    """
    variable_name: str
    type: str
    name: Optional[str] = None
    dims: Optional[list[str]] = None
    sizes: Optional[dict[str, int]] = None
    shape: Optional[list[int]] = None
    dtype: Optional[str] = None
    ndim: Optional[int] = None
    watched: Optional[bool] = None

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["CacheEntry"]:
        """Build an entry from one item of a kernel query, or None if malformed."""
        if not isinstance(payload, dict):
            return None
        variable_name = payload.get("variableName")
        object_type = payload.get("type")
        if not isinstance(variable_name, str) or object_type not in OBJECT_TYPES:
            return None
        if not is_valid_identifier(variable_name):
            return None

        entry = cls(variable_name=variable_name, type=object_type)
        name = payload.get("name")
        entry.name = str(name) if name is not None else None
        watched = payload.get("watched")
        entry.watched = watched if isinstance(watched, bool) else None
        if object_type not in ARRAY_TYPES:
            return entry

        if isinstance(payload.get("dims"), list):
            entry.dims = [str(dim) for dim in payload["dims"]]
        if isinstance(payload.get("sizes"), dict):
            entry.sizes = {str(k): v for k, v in payload["sizes"].items() if isinstance(v, int)}
        if isinstance(payload.get("shape"), list):
            entry.shape = [int(n) for n in payload["shape"] if isinstance(n, int)]
        if isinstance(payload.get("dtype"), str):
            entry.dtype = payload["dtype"]
        if isinstance(payload.get("ndim"), int) and not isinstance(payload.get("ndim"), bool):
            entry.ndim = payload["ndim"]
        return entry

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class EntryMetadata:
    """Cache-private staleness bookkeeping for one entry."""
    updated_at: float
    has_details: bool = False


def is_detailed_entry(entry: CacheEntry) -> bool:
    """True when an array entry carries every detail field it needs."""
    if entry.type not in ARRAY_TYPES:
        return False
    complete = (
        isinstance(entry.shape, list)
        and isinstance(entry.dtype, str)
        and isinstance(entry.ndim, int)
    )
    if entry.type == "DataArray":
        complete = complete and isinstance(entry.dims, list) and isinstance(entry.sizes, dict)
    return complete


def merge_entries(existing: Optional[CacheEntry], incoming: CacheEntry) -> CacheEntry:
    """Merge a fresh entry over a cached one, never dropping detail fields.

    Entries of different types describe different objects and are not merged.
    """
    if existing is None or existing.type != incoming.type:
        return incoming
    merged = CacheEntry(**{f.name: getattr(incoming, f.name) for f in fields(CacheEntry)})
    for name in DETAIL_FIELDS:
        if getattr(merged, name) is None:
            setattr(merged, name, getattr(existing, name))
    if merged.watched is None:
        merged.watched = existing.watched
    return merged

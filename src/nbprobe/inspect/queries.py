"""Python query code for listing and describing inspectable objects.

The generated code prints one JSON line: a list of entry dicts, or
``{"error": "..."}`` if the query itself failed. Only modules the user has
already imported are consulted; the query never imports numpy or xarray.
Each entry reports whether the `%watch` magic is tracking the variable;
without that magic nothing is watched.
"""

from typing import Optional

QUERY_FUNCTION = '''
def __nbprobe_tmp__query(target, details):
    import sys
    xr = sys.modules.get("xarray")
    np = sys.modules.get("numpy")

    try:
        ip = get_ipython()
    except NameError:
        ip = None

    watched = set()
    try:
        magic = ip.find_line_magic("watch") if ip is not None else None
        watcher = getattr(getattr(magic, "__self__", None), "_watcher", None)
        watched = set(getattr(watcher, "watched_vars", None) or [])
    except Exception:
        watched = set()

    def describe(varname, obj):
        kind = None
        if xr is not None:
            if isinstance(obj, xr.DataArray):
                kind = "DataArray"
            elif isinstance(obj, xr.Dataset):
                kind = "Dataset"
            elif hasattr(xr, "DataTree") and isinstance(obj, xr.DataTree):
                kind = "DataTree"
        if kind is None and np is not None and isinstance(obj, np.ndarray):
            kind = "ndarray"
        if kind is None:
            return None

        entry = {
            "variableName": varname,
            "type": kind,
            "name": None,
            "watched": varname in watched,
        }
        if kind == "DataArray" and obj.name is not None:
            entry["name"] = str(obj.name)
        if details and kind in ("DataArray", "ndarray"):
            entry["shape"] = [int(n) for n in obj.shape]
            entry["dtype"] = str(obj.dtype)
            entry["ndim"] = int(obj.ndim)
            if kind == "DataArray":
                entry["dims"] = [str(dim) for dim in obj.dims]
                entry["sizes"] = {str(k): int(v) for k, v in obj.sizes.items()}
        return entry

    user_ns = getattr(ip, "user_ns", None)
    if user_ns is None:
        user_ns = globals()

    if target is not None:
        if target not in user_ns:
            raise NameError(f"name {target!r} is not defined")
        entry = describe(target, user_ns[target])
        return [entry] if entry is not None else []

    result = []
    for varname in tuple(user_ns.keys()):
        if varname.startswith("_"):
            continue
        entry = describe(varname, user_ns.get(varname))
        if entry is not None:
            result.append(entry)
    return result
'''


def build_query_code(
    variable_name: Optional[str] = None, include_details: Optional[bool] = None
) -> str:
    """Build a namespace scan, or a single-variable query if a name is given.

    Detail fields (shape, dtype, ndim, dims, sizes) are included by default
    only for single-variable queries.
    """
    details = include_details if include_details is not None else variable_name is not None
    return "\n".join([
        "import json as __nbprobe_tmp__json",
        QUERY_FUNCTION.strip(),
        "try:",
        f"    print(__nbprobe_tmp__json.dumps(__nbprobe_tmp__query({variable_name!r}, {details!r})))",
        "except Exception as __nbprobe_tmp__exc:",
        '    print(__nbprobe_tmp__json.dumps({"error": str(__nbprobe_tmp__exc)}))',
        "finally:",
        "    del __nbprobe_tmp__query",
    ])

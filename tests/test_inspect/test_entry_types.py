"""Tests for cache entry parsing and merging."""

from nbprobe.inspect.types import CacheEntry, is_detailed_entry, merge_entries


def _array(**details):
    return CacheEntry(variable_name="arr", type="ndarray", **details)


class TestFromPayload:
    def test_ndarray_with_details(self):
        entry = CacheEntry.from_payload({
            "variableName": "arr", "type": "ndarray", "name": None,
            "shape": [10, 20], "dtype": "float64", "ndim": 2,
        })
        assert entry.shape == [10, 20]
        assert entry.ndim == 2
        assert is_detailed_entry(entry)

    def test_dataset_ignores_detail_fields(self):
        entry = CacheEntry.from_payload({"variableName": "ds", "type": "Dataset", "shape": [1]})
        assert entry.shape is None
        assert not is_detailed_entry(entry)

    def test_rejects_malformed(self):
        assert CacheEntry.from_payload("nope") is None
        assert CacheEntry.from_payload({"variableName": "x", "type": "DataFrame"}) is None
        assert CacheEntry.from_payload({"variableName": "class", "type": "ndarray"}) is None
        assert CacheEntry.from_payload({"type": "ndarray"}) is None

    def test_data_array_needs_dims_and_sizes(self):
        entry = CacheEntry.from_payload({
            "variableName": "da", "type": "DataArray", "name": "temp",
            "shape": [3], "dtype": "int64", "ndim": 1,
        })
        assert entry.name == "temp"
        assert not is_detailed_entry(entry)
        entry.dims = ["t"]
        entry.sizes = {"t": 3}
        assert is_detailed_entry(entry)

    def test_to_dict_drops_unset_fields(self):
        assert CacheEntry(variable_name="ds", type="Dataset").to_dict() == {
            "variable_name": "ds", "type": "Dataset",
        }


class TestMergeEntries:
    def test_keeps_existing_details(self):
        existing = _array(shape=[10, 20], dtype="float64", ndim=2, watched=True)
        merged = merge_entries(existing, _array())
        assert merged.shape == [10, 20]
        assert merged.dtype == "float64"
        assert merged.watched is True

    def test_incoming_details_win(self):
        merged = merge_entries(_array(shape=[1], dtype="int8", ndim=1), _array(shape=[2], dtype="int8", ndim=1))
        assert merged.shape == [2]

    def test_type_change_replaces(self):
        existing = _array(shape=[10], dtype="float64", ndim=1)
        incoming = CacheEntry(variable_name="arr", type="Dataset")
        assert merge_entries(existing, incoming) is incoming

    def test_no_existing(self):
        incoming = _array()
        assert merge_entries(None, incoming) is incoming

import json
import math
import sqlite3

import pytest

from axechart.config import StorageKeys, UiDefaults
from axechart.models import PersistedChartState
from axechart.storage import (
    ChartStorage,
    KeyValueStore,
    MemoryKeyValueStore,
    SqliteKeyValueStore,
    normalize_persisted_state,
)

NAN = float("nan")


def _state() -> PersistedChartState:
    return PersistedChartState(
        labels=[1000.0, 2000.0, 3000.0],
        dataData1m=[1e12, NAN, 1.1e12],
        dataData10m=[1e12, 1e12, 1e12],
        dataData1h=[1e12, 1e12, 1e12],
        dataData1d=[1e12, 1e12, 1e12],
        dataVregTemp=[50.0, NAN, 51.0],
        dataAsicTemp=[60.0, NAN, 61.0],
    )


@pytest.fixture(params=["memory", "sqlite"])
def kv_store(request):
    if request.param == "memory":
        yield MemoryKeyValueStore()
    else:
        store = SqliteKeyValueStore(":memory:")
        yield store
        store.close()


def test_persisted_state_round_trip(kv_store) -> None:
    storage = ChartStorage(kv_store)
    storage.save_persisted_state(_state())

    loaded = storage.load_persisted_state()
    assert loaded is not None
    assert loaded.labels == [1000.0, 2000.0, 3000.0]
    assert loaded.dataData1m[0] == 1e12
    assert math.isnan(loaded.dataData1m[1])
    assert math.isnan(loaded.dataAsicTemp[1])


def test_saved_payload_is_strict_json(store) -> None:
    storage = ChartStorage(store)
    storage.save_persisted_state(_state())

    payload = json.loads(store.items[StorageKeys().chart_data])
    assert payload["v"] == 2
    assert payload["state"]["dataData1m"][1] is None
    assert "NaN" not in store.items[StorageKeys().chart_data]


@pytest.mark.parametrize("raw", [
    "not json",
    json.dumps({"v": 1, "state": {"labels": [1]}}),
    json.dumps({"v": 2, "state": "oops"}),
    json.dumps([1, 2, 3]),
    "",
])
def test_unknown_or_garbage_state_loads_as_none(raw) -> None:
    store = MemoryKeyValueStore({StorageKeys().chart_data: raw})
    assert ChartStorage(store).load_persisted_state() is None


def test_missing_state_loads_as_none() -> None:
    assert ChartStorage(MemoryKeyValueStore()).load_persisted_state() is None


def test_normalize_pads_truncates_and_drops_bad_labels() -> None:
    raw = {
        "labels": [1000, "x", 3000, 4000],
        "dataData1m": [1.0, 2.0],
        "dataVregTemp": [1.0, 2.0, 3.0, 4.0, 5.0, 6.0],
    }
    state = normalize_persisted_state(raw, max_points=100)

    assert state.labels == [1000.0, 3000.0, 4000.0]
    assert state.dataData1m[0] == 1.0
    assert all(math.isnan(v) for v in state.dataData1m[1:])
    assert state.dataVregTemp == [1.0, 3.0, 4.0]
    assert len(state.dataAsicTemp) == 3


def test_normalize_keeps_newest_points() -> None:
    raw = {"labels": [1, 2, 3, 4, 5], "dataData1m": [10, 20, 30, 40, 50]}
    state = normalize_persisted_state(raw, max_points=2)
    assert state.labels == [4.0, 5.0]
    assert state.dataData1m == [40.0, 50.0]


def test_clear_persisted_state(store) -> None:
    storage = ChartStorage(store)
    storage.save_persisted_state(_state())
    storage.clear_persisted_state()
    assert storage.load_persisted_state() is None


def test_timestamps(storage) -> None:
    assert storage.load_last_timestamp() is None
    storage.save_last_timestamp(1234.9)
    assert storage.load_last_timestamp() == 1234
    storage.save_last_timestamp(NAN)
    assert storage.load_last_timestamp() == 1234
    storage.clear_last_timestamp()
    assert storage.load_last_timestamp() is None

    storage.save_min_history_timestamp_ms(0)
    assert storage.load_min_history_timestamp_ms() is None
    storage.save_min_history_timestamp_ms(5000)
    assert storage.load_min_history_timestamp_ms() == 5000
    storage.clear_min_history_timestamp_ms()
    assert storage.load_min_history_timestamp_ms() is None


def test_view_mode(storage) -> None:
    assert storage.load_view_mode() is None
    storage.save_view_mode("gauge")
    assert storage.load_view_mode() == "gauge"
    with pytest.raises(ValueError):
        storage.save_view_mode("pie")


def test_ui_preferences_fall_back_to_defaults(store) -> None:
    storage = ChartStorage(store)
    defaults = UiDefaults()
    assert storage.load_ui_preferences(defaults) == defaults

    storage.save_legend_visibility([True] * 6)
    storage.save_view_mode("gauge")
    prefs = storage.load_ui_preferences(defaults)
    assert prefs.legend_hidden == [True] * 6
    assert prefs.view_mode == "gauge"
    assert defaults.view_mode == "bars"

    # Wrong length is ignored
    storage.save_legend_visibility([True])
    assert storage.load_ui_preferences(defaults).legend_hidden == defaults.legend_hidden


class _BrokenStore(KeyValueStore):
    def get_item(self, key):
        raise sqlite3.OperationalError("database is locked")

    def set_item(self, key, value):
        raise OSError("disk full")

    def remove_item(self, key):
        raise sqlite3.OperationalError("database is locked")


def test_storage_errors_are_swallowed() -> None:
    storage = ChartStorage(_BrokenStore())
    storage.save_persisted_state(_state())
    storage.clear_persisted_state()
    assert storage.load_persisted_state() is None
    assert storage.load_last_timestamp() is None


def test_sqlite_store_overwrites_and_removes(tmp_path) -> None:
    store = SqliteKeyValueStore(str(tmp_path / "state" / "chart.db"))
    store.set_item("k", "1")
    store.set_item("k", "2")
    assert store.get_item("k") == "2"
    store.remove_item("k")
    assert store.get_item("k") is None
    store.close()

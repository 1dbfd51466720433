"""Chart persistence: versioned JSON envelope over a key/value store."""

import json
import logging
import math
import sqlite3
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import StorageKeys, UiDefaults
from .models import PersistedChartState
from .sanitizer import to_float

logger = logging.getLogger(__name__)

ENVELOPE_VERSION = 2
VIEW_MODES = ("gauge", "bars")


class KeyValueStore:
    """Minimal string key/value interface used by ChartStorage."""

    def get_item(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set_item(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove_item(self, key: str) -> None:
        raise NotImplementedError


class MemoryKeyValueStore(KeyValueStore):
    """In-process store (tests, or running without a state file)."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.items: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self.items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.items[key] = value

    def remove_item(self, key: str) -> None:
        self.items.pop(key, None)


class SqliteKeyValueStore(KeyValueStore):
    """SQLite-backed key/value store for chart state."""

    def __init__(self, db_path: str):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database file (":memory:" is accepted)
        """
        self.db_path = db_path

        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.init_schema()
        logger.info(f"Chart state store initialized at {db_path}")

    def init_schema(self):
        """Create the key/value table."""
        cursor = self.conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS chart_state (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        self.conn.commit()

    def get_item(self, key: str) -> Optional[str]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT value FROM chart_state WHERE key = ?", (key,))
        row = cursor.fetchone()
        return row["value"] if row else None

    def set_item(self, key: str, value: str) -> None:
        cursor = self.conn.cursor()
        cursor.execute("""
            INSERT INTO chart_state (key, value, updated_at)
            VALUES (?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP
        """, (key, value))
        self.conn.commit()

    def remove_item(self, key: str) -> None:
        cursor = self.conn.cursor()
        cursor.execute("DELETE FROM chart_state WHERE key = ?", (key,))
        self.conn.commit()

    def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            logger.info("Chart state store closed")


def _to_number_list(v: Any) -> Optional[List[float]]:
    if not isinstance(v, list):
        return None
    return [to_float(x) for x in v]


def _normalize_len(values: Optional[List[float]], length: int) -> List[float]:
    if values is None:
        return [math.nan] * length
    if len(values) >= length:
        return values[:length]
    return values + [math.nan] * (length - len(values))


def _json_safe(values: List[float]) -> List[Optional[float]]:
    return [v if math.isfinite(v) else None for v in values]


def normalize_persisted_state(raw: Dict[str, Any], max_points: int) -> PersistedChartState:
    """Length-normalize every series to ``labels`` and keep the newest ``max_points``.

    Entries whose label is not a finite number are dropped from every series.
    """
    labels = _to_number_list(raw.get("labels")) or []
    series = [
        _normalize_len(_to_number_list(raw.get(name)), len(labels))
        for name in PersistedChartState.SERIES_FIELDS
    ]

    keep = [i for i, t in enumerate(labels) if math.isfinite(t)]
    if len(keep) != len(labels):
        labels = [labels[i] for i in keep]
        series = [[values[i] for i in keep] for values in series]

    cap = max(0, int(max_points))
    start = max(0, len(labels) - cap)

    state = PersistedChartState(labels=labels[start:])
    for name, values in zip(PersistedChartState.SERIES_FIELDS, series):
        setattr(state, name, values[start:])
    return state


class ChartStorage:
    """Load/save chart state and UI preferences.

    Storage problems never propagate: a failed write is logged and dropped,
    a malformed value reads back as None.
    """

    def __init__(self, store: KeyValueStore, keys: Optional[StorageKeys] = None,
                 max_persisted_points: int = 20000):
        self.store = store
        self.keys = keys or StorageKeys()
        self.max_persisted_points = max_persisted_points

    def _get(self, key: str) -> Optional[str]:
        try:
            return self.store.get_item(key)
        except (sqlite3.Error, OSError) as e:
            logger.debug(f"Storage read failed for {key}: {e}")
            return None

    def _set(self, key: str, value: str) -> None:
        try:
            self.store.set_item(key, value)
        except (sqlite3.Error, OSError) as e:
            logger.debug(f"Storage write dropped for {key}: {e}")

    def _remove(self, key: str) -> None:
        try:
            self.store.remove_item(key)
        except (sqlite3.Error, OSError) as e:
            logger.debug(f"Storage remove failed for {key}: {e}")

    def _get_number(self, key: str) -> Optional[float]:
        raw = self._get(key)
        if not raw:
            return None
        n = to_float(raw)
        return n if math.isfinite(n) else None

    def load_persisted_state(self) -> Optional[PersistedChartState]:
        """Return the normalized persisted state, or None if absent/unknown/garbage."""
        raw = self._get(self.keys.chart_data)
        if not raw:
            return None
        try:
            parsed = json.loads(raw)
        except ValueError:
            return None

        if not isinstance(parsed, dict) or parsed.get("v") != ENVELOPE_VERSION:
            return None
        state = parsed.get("state")
        if not isinstance(state, dict):
            return None
        return normalize_persisted_state(state, self.max_persisted_points)

    def save_persisted_state(self, state: PersistedChartState) -> None:
        try:
            normalized = normalize_persisted_state(state.model_dump(by_alias=True), self.max_persisted_points)
            body = {"schema": 1, "labels": normalized.labels}
            for name in PersistedChartState.SERIES_FIELDS:
                body[name] = _json_safe(getattr(normalized, name))
            payload = {"v": ENVELOPE_VERSION, "ts": int(time.time() * 1000), "state": body}
            text = json.dumps(payload, allow_nan=False)
        except (TypeError, ValueError) as e:
            logger.debug(f"Chart state not persisted: {e}")
            return
        self._set(self.keys.chart_data, text)

    def clear_persisted_state(self) -> None:
        self._remove(self.keys.chart_data)

    def load_last_timestamp(self) -> Optional[float]:
        return self._get_number(self.keys.last_timestamp)

    def save_last_timestamp(self, timestamp_ms: float) -> None:
        if timestamp_ms is None or not math.isfinite(timestamp_ms):
            return
        self._set(self.keys.last_timestamp, str(int(timestamp_ms)))

    def clear_last_timestamp(self) -> None:
        self._remove(self.keys.last_timestamp)

    def load_legend_visibility(self) -> Optional[List[bool]]:
        """Hidden flags per dataset (True = hidden)."""
        raw = self._get(self.keys.legend_visibility)
        if not raw:
            return None
        try:
            parsed = json.loads(raw)
        except ValueError:
            return None
        if not isinstance(parsed, list):
            return None
        return [bool(x) for x in parsed]

    def save_legend_visibility(self, hidden_flags: List[bool]) -> None:
        self._set(self.keys.legend_visibility, json.dumps([bool(x) for x in hidden_flags]))

    def load_view_mode(self) -> Optional[str]:
        mode = self._get(self.keys.view_mode)
        return mode if mode in VIEW_MODES else None

    def save_view_mode(self, mode: str) -> None:
        if mode not in VIEW_MODES:
            raise ValueError(f"Unknown view mode: {mode}")
        self._set(self.keys.view_mode, mode)

    def load_min_history_timestamp_ms(self) -> Optional[float]:
        return self._get_number(self.keys.min_history_timestamp_ms)

    def save_min_history_timestamp_ms(self, ts: float) -> None:
        if ts is None or not math.isfinite(ts) or ts <= 0:
            return
        self._set(self.keys.min_history_timestamp_ms, str(int(ts)))

    def clear_min_history_timestamp_ms(self) -> None:
        self._remove(self.keys.min_history_timestamp_ms)

    def load_ui_preferences(self, defaults: Optional[UiDefaults] = None) -> UiDefaults:
        """Stored view mode and legend flags, falling back to defaults."""
        defaults = defaults or UiDefaults()
        prefs = defaults.model_copy(deep=True)
        mode = self.load_view_mode()
        if mode is not None:
            prefs.view_mode = mode
        hidden = self.load_legend_visibility()
        if hidden is not None and len(hidden) == len(defaults.legend_hidden):
            prefs.legend_hidden = hidden
        return prefs

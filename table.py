from __future__ import annotations

import base64
import copy
import json
import logging
import math
from collections import OrderedDict
from typing import Any

import pandas as pd

logger = logging.getLogger(__name__)

FILTER_IN = "in"
FILTER_EQUALS = "equals"
FILTER_RANGE = "range"
FILTER_INCLUDES_SOME = "includes_some"

STAT_RANGE_MIN = -10
STAT_RANGE_MAX = 10

COLUMNS: dict[str, dict[str, Any]] = {
    "id": {"filter": FILTER_IN, "sortable": True},
    "name": {"filter": FILTER_IN, "sortable": True, "filter_column": "id"},
    "institution": {"filter": FILTER_IN, "sortable": True},
    "pass": {"filter": FILTER_EQUALS, "sortable": False},
    "UQ": {"filter": FILTER_RANGE, "sortable": True},
    "M": {"filter": FILTER_RANGE, "sortable": True},
    "LQ": {"filter": FILTER_RANGE, "sortable": True},
    "study_areas": {"filter": FILTER_INCLUDES_SOME, "sortable": False},
}

DEFAULT_STATE: dict[str, Any] = {
    "pagination": {"page_index": 0, "page_size": 10},
    "sorting": [],
    "filters": [],
}


def default_state() -> dict[str, Any]:
    return copy.deepcopy(DEFAULT_STATE)


def _column(column_id: str) -> dict[str, Any]:
    options = COLUMNS.get(column_id)
    if options is None:
        raise ValueError(f"Unknown column: {column_id}")
    return options


def filter_column(column_id: str) -> str:
    return _column(column_id).get("filter_column", column_id)


def should_auto_remove(kind: str, value: Any) -> bool:
    if value is None:
        return True
    if kind in (FILTER_IN, FILTER_INCLUDES_SOME):
        return not value
    if kind == FILTER_RANGE:
        return not value or all(endpoint is None for endpoint in value)
    return False


def _normalize_filter_value(kind: str, value: Any) -> Any:
    if kind in (FILTER_IN, FILTER_INCLUDES_SOME):
        return list(value)
    if kind == FILTER_RANGE:
        low, high = (list(value) + [None, None])[:2]
        return [low, high]
    return value


def set_filter(state: dict[str, Any], column_id: str, value: Any) -> dict[str, Any]:
    target = filter_column(column_id)
    kind = _column(target)["filter"]
    filters = [f for f in state.get("filters", []) if f["id"] != target]
    if not should_auto_remove(kind, value):
        filters.append({"id": target, "value": _normalize_filter_value(kind, value)})
    return {**state, "filters": filters}


def get_filter(state: dict[str, Any], column_id: str) -> Any:
    target = filter_column(column_id)
    for item in state.get("filters", []):
        if item["id"] == target:
            return item["value"]
    return None


def is_filter_active(state: dict[str, Any], column_id: str) -> bool:
    return get_filter(state, column_id) is not None


def stat_range_filter(
    value1: float,
    value2: float,
    minimum: float = STAT_RANGE_MIN,
    maximum: float = STAT_RANGE_MAX,
) -> list[float | None] | None:
    low, high = sorted([value1, value2])
    bounds: list[float | None] = [low, high]
    if low != high:
        if low == minimum:
            bounds[0] = None
        if high == maximum:
            bounds[1] = None
    if bounds[0] is None and bounds[1] is None:
        return None
    return bounds


def toggle_sort(state: dict[str, Any], column_id: str, multi: bool = False) -> dict[str, Any]:
    if not _column(column_id)["sortable"]:
        return state
    current = {item["id"]: item for item in state.get("sorting", [])}
    existing = current.get(column_id)
    if existing is None:
        entry = [{"id": column_id, "desc": False}]
    elif not existing["desc"]:
        entry = [{"id": column_id, "desc": True}]
    else:
        entry = []

    if multi:
        sorting = [item for item in state.get("sorting", []) if item["id"] != column_id] + entry
    else:
        sorting = entry
    return {**state, "sorting": sorting}


def set_pagination(state: dict[str, Any], page_index: int | None = None, page_size: int | None = None) -> dict[str, Any]:
    pagination = dict(state.get("pagination") or DEFAULT_STATE["pagination"])
    if page_index is not None:
        pagination["page_index"] = max(0, int(page_index))
    if page_size is not None:
        pagination["page_size"] = max(1, int(page_size))
    return {**state, "pagination": pagination}


def _filter_mask(series: pd.Series, kind: str, value: Any) -> pd.Series:
    if kind == FILTER_IN:
        return series.isin(value)
    if kind == FILTER_EQUALS:
        return series.map(lambda cell: cell == value).astype(bool)
    if kind == FILTER_RANGE:
        low, high = value
        if low is not None and high is not None and low > high:
            low, high = high, low
        numeric = pd.to_numeric(series, errors="coerce")
        mask = numeric.notna()
        if low is not None:
            mask &= numeric >= low
        if high is not None:
            mask &= numeric <= high
        return mask
    if kind == FILTER_INCLUDES_SOME:
        wanted = set(value)
        return series.map(lambda cell: bool(wanted.intersection(cell or []))).astype(bool)
    raise ValueError(f"Unknown filter kind: {kind}")


def _frame(rows: list[dict[str, Any]]) -> pd.DataFrame:
    columns = list(COLUMNS)
    return pd.DataFrame(
        [{key: row.get(key) for key in columns} for row in rows],
        columns=columns,
        index=range(len(rows)),
    )


def _apply_filters(frame: pd.DataFrame, filters: list[dict[str, Any]], skip: str | None = None) -> pd.DataFrame:
    mask = pd.Series(True, index=frame.index, dtype=bool)
    for item in filters:
        column_id = item["id"]
        if column_id == skip:
            continue
        kind = _column(column_id)["filter"]
        if should_auto_remove(kind, item.get("value")):
            continue
        mask &= _filter_mask(frame[column_id], kind, item["value"])
    return frame[mask]


def _apply_sorting(frame: pd.DataFrame, sorting: list[dict[str, Any]]) -> pd.DataFrame:
    keys = [item for item in sorting if _column(item["id"])["sortable"]]
    if not keys or frame.empty:
        return frame
    return frame.sort_values(
        by=[item["id"] for item in keys],
        ascending=[not item.get("desc", False) for item in keys],
        kind="stable",
        na_position="last",
    )


def apply_table_state(rows: list[dict[str, Any]], state: dict[str, Any] | None = None) -> dict[str, Any]:
    state = state or DEFAULT_STATE
    pagination = {**DEFAULT_STATE["pagination"], **(state.get("pagination") or {})}
    frame = _frame(rows)
    frame = _apply_filters(frame, state.get("filters") or [])
    frame = _apply_sorting(frame, state.get("sorting") or [])

    total = len(frame)
    page_size = max(1, int(pagination["page_size"]))
    page_count = max(1, math.ceil(total / page_size))
    page_index = min(max(0, int(pagination["page_index"])), page_count - 1)
    start = page_index * page_size
    positions = list(frame.index[start : start + page_size])

    return {
        "rows": [rows[i] for i in positions],
        "total": total,
        "page_index": page_index,
        "page_size": page_size,
        "page_count": page_count,
    }


def facet_counts(rows: list[dict[str, Any]], column_id: str, state: dict[str, Any] | None = None) -> dict[Any, int]:
    target = filter_column(column_id)
    frame = _apply_filters(_frame(rows), (state or DEFAULT_STATE).get("filters") or [], skip=target)
    series = frame[target]
    if _column(target)["filter"] == FILTER_INCLUDES_SOME:
        series = series.explode().dropna()
    counts = series.value_counts()
    return {key: int(counts[key]) for key in sorted(counts.index)}


def visible_stat_columns(rows: list[dict[str, Any]]) -> dict[str, bool]:
    return {key: any((row.get("statistics") or {}).get(key) for row in rows) for key in ("UQ", "M", "LQ")}


def encode_state(state: dict[str, Any]) -> str:
    payload = json.dumps(state, separators=(",", ":"), ensure_ascii=True).encode("utf-8")
    return base64.urlsafe_b64encode(payload).rstrip(b"=").decode("ascii")


def decode_state(encoded: str) -> dict[str, Any]:
    padded = encoded + "=" * (-len(encoded) % 4)
    try:
        decoded = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    except (ValueError, UnicodeError) as exc:
        raise ValueError(f"Invalid table state: {encoded!r}") from exc
    if not isinstance(decoded, dict):
        raise ValueError(f"Invalid table state: {encoded!r}")
    return decoded


def _merge_defaults(value: dict[str, Any], defaults: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(defaults)
    for key, item in value.items():
        if isinstance(item, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge_defaults(item, merged[key])
        else:
            merged[key] = item
    return merged


def _valid_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _valid_sort(item: Any) -> bool:
    return isinstance(item, dict) and item.get("id") in COLUMNS and isinstance(item.get("desc", False), bool)


def _valid_filter(item: Any) -> bool:
    if not isinstance(item, dict) or item.get("id") not in COLUMNS:
        return False
    kind = COLUMNS[item["id"]]["filter"]
    value = item.get("value")
    if kind in (FILTER_IN, FILTER_INCLUDES_SOME):
        return isinstance(value, list)
    if kind == FILTER_RANGE:
        return isinstance(value, list) and len(value) == 2 and all(
            endpoint is None or (isinstance(endpoint, (int, float)) and not isinstance(endpoint, bool))
            for endpoint in value
        )
    return True


def sanitize_state(state: dict[str, Any]) -> tuple[dict[str, Any], list[str]]:
    """Reset malformed sections to defaults and drop entries for unknown columns.

    Returns the cleaned state and the names of the sections that changed.
    """
    clean = _merge_defaults(state, DEFAULT_STATE)
    changed: list[str] = []

    pagination = clean["pagination"]
    if not isinstance(pagination, dict) or not all(
        _valid_count(pagination.get(key)) for key in ("page_index", "page_size")
    ):
        clean["pagination"] = copy.deepcopy(DEFAULT_STATE["pagination"])
        changed.append("pagination")

    for section, valid in (("sorting", _valid_sort), ("filters", _valid_filter)):
        value = clean[section]
        entries = [item for item in value if valid(item)] if isinstance(value, list) else []
        if entries != value:
            changed.append(section)
        clean[section] = entries
    return clean, changed


class TableStateCodec:
    """Encodes table state for URLs and memoizes recent decodes."""

    def __init__(self, max_entries: int = 128) -> None:
        self.max_entries = max_entries
        self._decoded: OrderedDict[str, dict[str, Any]] = OrderedDict()

    def _remember(self, encoded: str, state: dict[str, Any]) -> None:
        self._decoded[encoded] = copy.deepcopy(state)
        self._decoded.move_to_end(encoded)
        while len(self._decoded) > self.max_entries:
            self._decoded.popitem(last=False)

    def encode(self, state: dict[str, Any]) -> str:
        encoded = encode_state(state)
        self._remember(encoded, state)
        return encoded

    def decode(self, encoded: str) -> dict[str, Any]:
        cached = self._decoded.get(encoded)
        if cached is None:
            cached = decode_state(encoded)
            self._remember(encoded, cached)
        else:
            self._decoded.move_to_end(encoded)
        return copy.deepcopy(cached)

    def decode_or_default(self, encoded: str | None) -> dict[str, Any]:
        if not encoded:
            return default_state()
        try:
            decoded = self.decode(encoded)
        except ValueError:
            logger.warning("Discarding undecodable table state")
            return default_state()
        state, changed = sanitize_state(decoded)
        if changed:
            logger.warning("Reset invalid table state sections: %s", ", ".join(changed))
        return state

"""
Payload normalisation for spreadsheet export.

Turns an arbitrary JSON payload into a ``NormalizedTable`` (column
definitions plus row records keyed by the column keys). The payload shape
is classified once into one of three variants and each variant has its
own row builder:

- ``ConversationPayload``: ``{"conversations": [...]}``, one row per turn
- ``TabularPayload``: ``{"data": [...]}``, columns from the first record
- ``FreeFormPayload``: anything else, flattened into dotted property paths

Normalisation never raises; unexpected values fall back to defaults.
"""
import json
import logging
from typing import Any, Dict, Iterator, List, Tuple, Union

from pydantic import BaseModel

from utils.clock import utc_timestamp

logger = logging.getLogger(__name__)

CONVERSATION_FIELD = "conversations"
TABULAR_FIELD = "data"

DEFAULT_ROLE = "unknown"
DEFAULT_CONTENT = ""
DEFAULT_TOKENS = 0
TABULAR_COLUMN_WIDTH = 20


class ColumnDefinition(BaseModel):
    """
    A single spreadsheet column.

    Attributes:
        header: Display label written in the header row
        key: Field key used to look the value up in each row record
        width: Requested display width (the writer clamps it)
    """
    header: str
    key: str
    width: int = TABULAR_COLUMN_WIDTH


class NormalizedTable(BaseModel):
    """
    Tabular form of a payload, ready for the spreadsheet writer.

    Attributes:
        kind: Payload variant that produced the table
        columns: Ordered column definitions
        rows: Ordered row records keyed by the column keys
    """
    kind: str
    columns: List[ColumnDefinition] = []
    rows: List[Dict[str, Any]] = []

    @property
    def row_count(self) -> int:
        return len(self.rows)


CONVERSATION_COLUMNS = [
    ColumnDefinition(header="Timestamp", key="timestamp", width=20),
    ColumnDefinition(header="Role", key="role", width=15),
    ColumnDefinition(header="Content", key="content", width=80),
    ColumnDefinition(header="Token Count", key="tokens", width=15),
]

FREE_FORM_COLUMNS = [
    ColumnDefinition(header="Property", key="property", width=30),
    ColumnDefinition(header="Value", key="value", width=50),
]


class ConversationPayload(BaseModel):
    """Payload carrying a list of chat turns."""
    kind: str = "conversation"
    turns: List[Any]


class TabularPayload(BaseModel):
    """Payload carrying a list of uniformly keyed records."""
    kind: str = "tabular"
    records: List[Any]


class FreeFormPayload(BaseModel):
    """Any other payload; flattened property by property."""
    kind: str = "free_form"
    value: Any = None


PayloadVariant = Union[ConversationPayload, TabularPayload, FreeFormPayload]


def classify_payload(payload: Any) -> PayloadVariant:
    """
    Inspect the payload shape once and return its variant.

    Detection order is conversations, then data, then free-form. Only a
    list-valued field counts as a match.

    Args:
        payload: Decoded JSON value of any type

    Returns:
        PayloadVariant: The matching variant wrapping the relevant part of the payload
    """
    if isinstance(payload, dict):
        turns = payload.get(CONVERSATION_FIELD)
        if isinstance(turns, list):
            return ConversationPayload(turns=turns)
        records = payload.get(TABULAR_FIELD)
        if isinstance(records, list):
            return TabularPayload(records=records)
    return FreeFormPayload(value=payload)


def normalize_payload(payload: Any) -> NormalizedTable:
    """
    Convert a payload into columns and rows for spreadsheet export.

    Args:
        payload: Decoded JSON value of any type

    Returns:
        NormalizedTable: Columns and rows; possibly empty, never an error
    """
    variant = classify_payload(payload)

    if isinstance(variant, ConversationPayload):
        table = NormalizedTable(
            kind=variant.kind,
            columns=list(CONVERSATION_COLUMNS),
            rows=[_conversation_row(turn) for turn in variant.turns],
        )
    elif isinstance(variant, TabularPayload):
        table = _tabular_table(variant.records)
    else:
        table = NormalizedTable(
            kind=variant.kind,
            columns=list(FREE_FORM_COLUMNS),
            rows=flatten_payload(variant.value),
        )

    logger.info(
        "Normalized payload",
        extra={"payload_kind": table.kind, "column_count": len(table.columns), "row_count": table.row_count}
    )
    return table


def _conversation_row(turn: Any) -> Dict[str, Any]:
    # Falsy values fall through to the next candidate, so "" and 0 get defaults too
    if not isinstance(turn, dict):
        turn = {}
    return {
        "timestamp": turn.get("timestamp") or utc_timestamp(),
        "role": turn.get("role") or DEFAULT_ROLE,
        "content": turn.get("content") or turn.get("message") or DEFAULT_CONTENT,
        "tokens": turn.get("token_count") or turn.get("tokens") or DEFAULT_TOKENS,
    }


def _capitalize(key: str) -> str:
    return key[:1].upper() + key[1:]


def _tabular_table(records: List[Any]) -> NormalizedTable:
    if not records:
        return NormalizedTable(kind="tabular")

    first = records[0]
    keys = [str(key) for key in first] if isinstance(first, dict) else []
    columns = [ColumnDefinition(header=_capitalize(key), key=key) for key in keys]

    rows = []
    for record in records:
        if not isinstance(record, dict):
            record = {}
        # Keys missing from a record stay None (empty cell); extra keys are dropped
        rows.append({key: record.get(key) for key in keys})

    return NormalizedTable(kind="tabular", columns=columns, rows=rows)


def _plain_number(value: Any) -> Any:
    # JSON has a single number type: 1.0 and 1 both read back as 1
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return int(value)
    return value


def _plain_numbers(value: Any) -> Any:
    if isinstance(value, list):
        return [_plain_numbers(item) for item in value]
    if isinstance(value, dict):
        return {key: _plain_numbers(item) for key, item in value.items()}
    return _plain_number(value)


def json_text(value: Any) -> str:
    """Serialize a list or mapping as compact JSON, whole-number floats as integers."""
    return json.dumps(_plain_numbers(value), separators=(",", ":"), ensure_ascii=False, default=str)


def render_value(value: Any) -> str:
    """
    Render a leaf value as cell text.

    Lists become compact JSON, ``None`` becomes an empty string, booleans
    use their JSON spelling, whole-number floats drop their fraction and
    everything else uses ``str()``.
    """
    if isinstance(value, list):
        return json_text(value)
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(_plain_number(value))


def _top_level_entries(payload: Any) -> Iterator[Tuple[str, Any]]:
    if isinstance(payload, dict):
        return iter(payload.items())
    if isinstance(payload, list):
        return ((str(index), item) for index, item in enumerate(payload))
    return iter(())


def flatten_payload(payload: Any) -> List[Dict[str, str]]:
    """
    Flatten a nested mapping into ``{"property", "value"}`` rows.

    Nested mappings extend the dotted key path; every other value becomes
    one row. Uses an explicit stack of ``(prefix, entries)`` iterators so
    nesting depth is not limited by the interpreter's recursion limit, and
    rows come out in the same order a depth-first walk of the keys gives.

    Args:
        payload: Mapping to flatten. A top-level list is flattened with its
            indices as keys; any other top-level value yields no rows.

    Returns:
        List[Dict[str, str]]: Rows in key-traversal order
    """
    rows: List[Dict[str, str]] = []
    stack: List[Tuple[str, Iterator[Tuple[Any, Any]]]] = [("", _top_level_entries(payload))]

    while stack:
        prefix, entries = stack[-1]
        entry = next(entries, None)
        if entry is None:
            stack.pop()
            continue

        key, value = entry
        full_key = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict):
            stack.append((full_key, iter(value.items())))
        else:
            rows.append({"property": full_key, "value": render_value(value)})

    return rows

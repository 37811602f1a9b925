"""Snapshot file format.

A snapshot is a line-oriented UTF-8 text stream, optionally gzip-compressed::

    -- SNAPSHOT {"format": 1, "backup_id": "...", "created_at": "...", ...}
    -- SEGMENT {"table": "customers", "rows": 2}
    INSERT INTO "customers" {"columns": ["id", "name"], "values": [1, "Ada"]}
    INSERT INTO "customers" {"columns": ["id", "name"], "values": [2, "Lin"]}
    -- SEGMENT {"table": "orders", "rows": 0}
    -- END {"tables": 2, "rows": 2}

Segments appear in lexicographic table order and each segment marker
declares how many ``INSERT INTO`` lines follow.  Every row statement carries
its own table, column names and values, so it can be replayed on its own.

Values are JSON with a small set of tagged objects for types JSON cannot
represent (``{"$decimal": "9.99"}``, ``{"$datetime": "..."}``, ...), so a
restored row compares equal to the captured one.

Usage:
    from db_backup.backup.snapshot import RowStatement, parse_line

    stmt = RowStatement.from_row("orders", {"id": 1, "total": Decimal("9.99")})
    line = stmt.to_line()
    assert parse_line(line) == stmt
"""

import base64
import gzip
import json
import math
import zlib
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from pathlib import Path
from typing import IO, Any, Iterator
from uuid import UUID

from db_backup.backup.errors import CorruptionError
from db_backup.backup.models import TableManifestEntry

FORMAT_VERSION = 1

HEADER_PREFIX = "-- SNAPSHOT "
SEGMENT_PREFIX = "-- SEGMENT "
END_PREFIX = "-- END "
INSERT_PREFIX = "INSERT INTO "


# ------------------------------------------------------------------
# Value encoding
# ------------------------------------------------------------------


def encode_value(value: Any) -> Any:
    """Convert a column value into a JSON-serialisable form.

    Raises:
        TypeError: If the value has no snapshot representation.
    """
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        if math.isfinite(value):
            return value
        return {"$float": repr(value)}
    if isinstance(value, Decimal):
        return {"$decimal": str(value)}
    # datetime is a subclass of date -- check it first
    if isinstance(value, datetime):
        return {"$datetime": value.isoformat()}
    if isinstance(value, date):
        return {"$date": value.isoformat()}
    if isinstance(value, time):
        return {"$time": value.isoformat()}
    if isinstance(value, timedelta):
        return {"$timedelta": [value.days, value.seconds, value.microseconds]}
    if isinstance(value, UUID):
        return {"$uuid": str(value)}
    if isinstance(value, (bytes, bytearray, memoryview)):
        return {"$bytes": base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, dict):
        for key in value:
            if not isinstance(key, str):
                raise TypeError(f"Mapping keys must be strings, got {key!r}")
        return {"$map": {k: encode_value(v) for k, v in value.items()}}
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    raise TypeError(f"Unsupported value type: {type(value).__name__}")


_DECODERS = {
    "$float": float,
    "$decimal": Decimal,
    "$datetime": datetime.fromisoformat,
    "$date": date.fromisoformat,
    "$time": time.fromisoformat,
    "$timedelta": lambda parts: timedelta(
        days=parts[0], seconds=parts[1], microseconds=parts[2]
    ),
    "$uuid": UUID,
    "$bytes": lambda text: base64.b64decode(text.encode("ascii"), validate=True),
    "$map": lambda items: {k: decode_value(v) for k, v in items.items()},
}


def decode_value(value: Any) -> Any:
    """Inverse of ``encode_value``.

    Raises:
        ValueError: If a tagged object is unknown or malformed.
    """
    if isinstance(value, list):
        return [decode_value(v) for v in value]
    if isinstance(value, dict):
        if len(value) != 1:
            raise ValueError(f"Malformed tagged value: {value!r}")
        tag, payload = next(iter(value.items()))
        decoder = _DECODERS.get(tag)
        if decoder is None:
            raise ValueError(f"Unknown value tag: {tag}")
        try:
            return decoder(payload)
        except (TypeError, ValueError, ArithmeticError, IndexError) as e:
            raise ValueError(f"Malformed {tag} value: {payload!r}") from e
    return value


def _dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(", ", ": "), allow_nan=False)


# ------------------------------------------------------------------
# Statements and markers
# ------------------------------------------------------------------


@dataclass(frozen=True)
class ClearTable:
    """Remove every row of ``table``; first statement of a restore."""

    table: str


@dataclass(frozen=True)
class RowStatement:
    """One captured row, replayable on its own."""

    table: str
    columns: list[str]
    values: list[Any]

    @classmethod
    def from_row(cls, table: str, row: dict[str, Any]) -> "RowStatement":
        return cls(table=table, columns=list(row.keys()), values=list(row.values()))

    def as_row(self) -> dict[str, Any]:
        """Column -> value mapping for this row."""
        return dict(zip(self.columns, self.values))

    def to_line(self) -> str:
        payload = {
            "columns": self.columns,
            "values": [encode_value(v) for v in self.values],
        }
        return f"{INSERT_PREFIX}{_dumps(self.table)} {_dumps(payload)}"


Statement = ClearTable | RowStatement


@dataclass(frozen=True)
class SnapshotHeader:
    """First line of every snapshot."""

    backup_id: str
    created_at: str
    description: str = ""
    tables: list[str] = field(default_factory=list)
    format: int = FORMAT_VERSION

    def to_line(self) -> str:
        return HEADER_PREFIX + _dumps(
            {
                "format": self.format,
                "backup_id": self.backup_id,
                "created_at": self.created_at,
                "description": self.description,
                "tables": self.tables,
            }
        )


@dataclass(frozen=True)
class SegmentMarker:
    """Start of a table segment."""

    table: str
    rows: int

    def to_line(self) -> str:
        return SEGMENT_PREFIX + _dumps({"table": self.table, "rows": self.rows})


@dataclass(frozen=True)
class EndMarker:
    """Last line of a complete snapshot."""

    tables: int
    rows: int

    def to_line(self) -> str:
        return END_PREFIX + _dumps({"tables": self.tables, "rows": self.rows})


SnapshotLine = SnapshotHeader | SegmentMarker | RowStatement | EndMarker


def _load_object(text: str) -> dict[str, Any]:
    obj = json.loads(text)
    if not isinstance(obj, dict):
        raise ValueError("expected a JSON object")
    return obj


def _require(obj: dict[str, Any], key: str, kind: type) -> Any:
    value = obj.get(key)
    # bool is an int subclass; a row count of `true` is not a count
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise ValueError(f"'{key}' must be {kind.__name__}")
    return value


def _parse_insert(body: str) -> RowStatement:
    decoder = json.JSONDecoder()
    table, end = decoder.raw_decode(body)
    if not isinstance(table, str) or not table:
        raise ValueError("row statement has no table name")
    payload = _load_object(body[end:].strip())
    columns = _require(payload, "columns", list)
    values = _require(payload, "values", list)
    if not columns or len(columns) != len(values):
        raise ValueError(
            f"row statement has {len(columns)} columns and {len(values)} values"
        )
    if not all(isinstance(c, str) and c for c in columns):
        raise ValueError("column names must be non-empty strings")
    if len(set(columns)) != len(columns):
        raise ValueError("duplicate column names")
    return RowStatement(
        table=table,
        columns=columns,
        values=[decode_value(v) for v in values],
    )


def parse_line(line: str) -> SnapshotLine:
    """Parse one snapshot line.

    Raises:
        ValueError: If the line is not a well-formed snapshot line.
    """
    if line.startswith(INSERT_PREFIX):
        return _parse_insert(line[len(INSERT_PREFIX):])
    if line.startswith(SEGMENT_PREFIX):
        obj = _load_object(line[len(SEGMENT_PREFIX):])
        rows = _require(obj, "rows", int)
        if rows < 0:
            raise ValueError("negative row count")
        return SegmentMarker(table=_require(obj, "table", str), rows=rows)
    if line.startswith(END_PREFIX):
        obj = _load_object(line[len(END_PREFIX):])
        return EndMarker(tables=_require(obj, "tables", int), rows=_require(obj, "rows", int))
    if line.startswith(HEADER_PREFIX):
        obj = _load_object(line[len(HEADER_PREFIX):])
        return SnapshotHeader(
            backup_id=_require(obj, "backup_id", str),
            created_at=_require(obj, "created_at", str),
            description=obj.get("description", ""),
            tables=_require(obj, "tables", list),
            format=_require(obj, "format", int),
        )
    preview = line[:40]
    raise ValueError(f"unrecognized statement: {preview!r}")


# ------------------------------------------------------------------
# File access
# ------------------------------------------------------------------


def open_snapshot(path: str | Path, mode: str, compressed: bool) -> IO[bytes]:
    """Open a snapshot file in binary mode, decompressing transparently."""
    if compressed:
        return gzip.open(path, mode)
    return open(path, mode)


class LineWriter:
    """Writes snapshot lines and tracks uncompressed byte offsets."""

    def __init__(self, fh: IO[bytes]) -> None:
        self._fh = fh
        self.position = 0

    def write(self, line: str) -> int:
        """Write one line and return the offset it starts at."""
        offset = self.position
        data = line.encode("utf-8") + b"\n"
        self._fh.write(data)
        self.position += len(data)
        return offset


def iter_lines(fh: IO[bytes], start: int = 0) -> Iterator[tuple[int, str]]:
    """Yield ``(offset, line)`` pairs from an open snapshot.

    ``start`` is the stream position of ``fh`` when iteration begins.

    Raises:
        CorruptionError: If a line is not valid UTF-8 or the final line has
            no terminating newline (truncated write).
    """
    offset = start
    for raw in fh:
        if not raw.endswith(b"\n"):
            raise CorruptionError("Truncated line at end of file", offset=offset)
        try:
            text = raw[:-1].decode("utf-8")
        except UnicodeDecodeError as e:
            raise CorruptionError(f"Invalid UTF-8: {e}", offset=offset) from e
        yield offset, text
        offset += len(raw)


def read_segment(
    path: str | Path,
    compressed: bool,
    entry: TableManifestEntry,
) -> list[RowStatement]:
    """Read the row statements of one table by seeking to its segment.

    Only the requested segment is decoded.

    Raises:
        CorruptionError: If the segment at ``entry.offset`` does not match the
            manifest entry, one of its statements is malformed, or the file
            cannot be opened.
    """
    table = entry.name
    try:
        with open_snapshot(path, "rb", compressed) as fh:
            fh.seek(entry.offset)
            lines = iter_lines(fh, start=entry.offset)
            offset, text = next(lines, (entry.offset, ""))
            marker = parse_line(text)
            if not isinstance(marker, SegmentMarker) or marker.table != table:
                raise CorruptionError(
                    "Segment marker not found at manifest offset",
                    table=table,
                    offset=offset,
                )
            if marker.rows != entry.row_count:
                raise CorruptionError(
                    f"Segment declares {marker.rows} rows, manifest has "
                    f"{entry.row_count}",
                    table=table,
                    offset=offset,
                )
            statements: list[RowStatement] = []
            for _ in range(marker.rows):
                offset, text = next(lines, (offset, ""))
                stmt = parse_line(text)
                if not isinstance(stmt, RowStatement) or stmt.table != table:
                    raise CorruptionError(
                        "Expected row statement", table=table, offset=offset
                    )
                statements.append(stmt)
    except ValueError as e:
        raise CorruptionError(str(e), table=table, offset=entry.offset) from e
    except (OSError, EOFError, zlib.error) as e:
        raise CorruptionError(
            f"Unreadable snapshot: {e}", table=table, offset=entry.offset
        ) from e
    return statements

"""Tests for the snapshot file format.

Covers typed value encoding, line parsing, offset tracking, and seeking to a
single table segment.
"""

import gzip
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from uuid import UUID

import pytest

from db_backup.backup.errors import CorruptionError
from db_backup.backup.models import TableManifestEntry
from db_backup.backup.snapshot import (
    EndMarker,
    LineWriter,
    RowStatement,
    SegmentMarker,
    SnapshotHeader,
    decode_value,
    encode_value,
    iter_lines,
    open_snapshot,
    parse_line,
    read_segment,
)


def _write_snapshot(path, compressed=False):
    """Two-table snapshot; returns the manifest."""
    manifest = []
    with open_snapshot(path, "wb", compressed) as fh:
        out = LineWriter(fh)
        out.write(SnapshotHeader("b1", "2026-01-15T09:30:00+00:00", tables=["a", "b"]).to_line())
        offset = out.write(SegmentMarker("a", 2).to_line())
        out.write(RowStatement("a", ["id"], [1]).to_line())
        out.write(RowStatement("a", ["id"], [2]).to_line())
        manifest.append(TableManifestEntry(name="a", row_count=2, offset=offset))
        offset = out.write(SegmentMarker("b", 1).to_line())
        out.write(RowStatement("b", ["id", "name"], [7, "seven"]).to_line())
        manifest.append(TableManifestEntry(name="b", row_count=1, offset=offset))
        out.write(EndMarker(2, 3).to_line())
    return manifest


# ------------------------------------------------------------------
# Value encoding
# ------------------------------------------------------------------


class TestValueEncoding:
    """Values keep their Python types through a row statement line."""

    def test_row_with_every_supported_type(self):
        """A row survives to_line/parse_line unchanged."""
        row = {
            "id": 1,
            "active": True,
            "note": None,
            "ratio": 0.25,
            "price": Decimal("19.99"),
            "created": datetime(2026, 1, 15, 9, 30, tzinfo=timezone.utc),
            "birthday": date(1990, 5, 17),
            "opens": time(8, 30),
            "ttl": timedelta(days=1, seconds=30),
            "uid": UUID("12345678-1234-5678-1234-567812345678"),
            "blob": b"\x00\xffdata",
            "attrs": {"tags": ["a", "b"], "price": Decimal("1.5")},
            "name": "Zoë \"quoted\"\nnewline",
        }
        stmt = RowStatement.from_row("products", row)
        parsed = parse_line(stmt.to_line())
        assert isinstance(parsed, RowStatement)
        assert parsed.as_row() == row
        assert type(parsed.as_row()["price"]) is Decimal
        assert type(parsed.as_row()["created"]) is datetime

    def test_line_has_no_embedded_newline(self):
        """Strings with newlines stay on one line."""
        line = RowStatement("t", ["s"], ["a\nb"]).to_line()
        assert "\n" not in line

    def test_non_finite_floats(self):
        """inf and nan are tagged instead of emitted as invalid JSON."""
        assert decode_value(encode_value(float("inf"))) == float("inf")
        assert encode_value(float("nan")) == {"$float": "nan"}

    def test_unsupported_type_raises(self):
        """Objects without a representation raise TypeError."""
        with pytest.raises(TypeError):
            encode_value(object())

    def test_non_string_mapping_keys_raise(self):
        with pytest.raises(TypeError):
            encode_value({1: "a"})

    def test_unknown_tag_raises(self):
        with pytest.raises(ValueError, match="Unknown value tag"):
            decode_value({"$nope": 1})

    def test_malformed_tag_payload_raises(self):
        with pytest.raises(ValueError, match="Malformed"):
            decode_value({"$decimal": "not-a-number"})


# ------------------------------------------------------------------
# Line parsing
# ------------------------------------------------------------------


class TestParseLine:
    """parse_line recognizes each line type and rejects everything else."""

    def test_markers(self):
        header = SnapshotHeader("b1", "2026-01-15T09:30:00", "desc", ["a"])
        assert parse_line(header.to_line()) == header
        assert parse_line(SegmentMarker("a", 3).to_line()) == SegmentMarker("a", 3)
        assert parse_line(EndMarker(1, 3).to_line()) == EndMarker(1, 3)

    def test_table_names_with_quotes(self):
        """Table names are JSON strings, so quotes and spaces survive."""
        stmt = RowStatement('odd "table" name', ["id"], [1])
        assert parse_line(stmt.to_line()) == stmt

    def test_mangled_insert_keyword(self):
        """A damaged INSERT INTO keyword is an unrecognized statement."""
        line = RowStatement("a", ["id"], [1]).to_line().replace("INSERT INTO", "INSRT INTO")
        with pytest.raises(ValueError, match="unrecognized statement"):
            parse_line(line)

    def test_column_value_count_mismatch(self):
        with pytest.raises(ValueError, match="columns"):
            parse_line('INSERT INTO "a" {"columns": ["id", "x"], "values": [1]}')

    def test_negative_row_count(self):
        with pytest.raises(ValueError, match="negative"):
            parse_line('-- SEGMENT {"table": "a", "rows": -1}')

    def test_boolean_row_count_rejected(self):
        with pytest.raises(ValueError):
            parse_line('-- SEGMENT {"table": "a", "rows": true}')


# ------------------------------------------------------------------
# File access
# ------------------------------------------------------------------


class TestFileAccess:
    """Offsets, truncation detection, and segment seeking."""

    def test_line_writer_offsets(self, tmp_path):
        """LineWriter returns the byte offset each line starts at."""
        path = tmp_path / "s.snapshot"
        with open(path, "wb") as fh:
            out = LineWriter(fh)
            assert out.write("abc") == 0
            assert out.write("é") == 4
            assert out.position == 7

    def test_iter_lines_offsets(self, tmp_path):
        path = tmp_path / "s.snapshot"
        path.write_bytes(b"one\ntwo\n")
        with open(path, "rb") as fh:
            assert list(iter_lines(fh)) == [(0, "one"), (4, "two")]

    def test_iter_lines_truncated_last_line(self, tmp_path):
        """A final line without newline means the write was cut short."""
        path = tmp_path / "s.snapshot"
        path.write_bytes(b"one\ntw")
        with open(path, "rb") as fh:
            with pytest.raises(CorruptionError, match="Truncated") as exc:
                list(iter_lines(fh))
        assert exc.value.offset == 4

    @pytest.mark.parametrize("compressed", [False, True])
    def test_read_segment_seeks_to_table(self, tmp_path, compressed):
        """Only the requested segment is returned, from plain or gzip files."""
        path = tmp_path / "s.snapshot"
        manifest = _write_snapshot(path, compressed)
        rows = read_segment(path, compressed, manifest[1])
        assert rows == [RowStatement("b", ["id", "name"], [7, "seven"])]

    def test_gzip_file_is_compressed(self, tmp_path):
        path = tmp_path / "s.snapshot.gz"
        _write_snapshot(path, compressed=True)
        with gzip.open(path, "rb") as fh:
            assert fh.readline().startswith(b"-- SNAPSHOT ")

    def test_read_segment_wrong_offset(self, tmp_path):
        path = tmp_path / "s.snapshot"
        manifest = _write_snapshot(path)
        bad = manifest[1].model_copy(update={"offset": manifest[0].offset})
        with pytest.raises(CorruptionError, match="Segment marker not found") as exc:
            read_segment(path, False, bad)
        assert exc.value.table == "b"

    def test_read_segment_count_mismatch(self, tmp_path):
        path = tmp_path / "s.snapshot"
        manifest = _write_snapshot(path)
        bad = manifest[0].model_copy(update={"row_count": 5})
        with pytest.raises(CorruptionError, match="declares 2 rows"):
            read_segment(path, False, bad)

    def test_read_segment_missing_file(self, tmp_path):
        entry = TableManifestEntry(name="a", row_count=1, offset=0)
        with pytest.raises(CorruptionError, match="Unreadable snapshot") as exc:
            read_segment(tmp_path / "gone.snapshot", False, entry)
        assert exc.value.table == "a"

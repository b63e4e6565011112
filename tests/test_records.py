"""Tests for tolerant bulk record parsing."""

from __future__ import annotations

import gzip
from pathlib import Path

import pytest

from fetchcache.exceptions import CacheIOError, ParseError
from fetchcache.records import DEFAULT_MAX_ERRORS, parse_record_file, parse_records, read_lines

HEADER = "typeID,sellMedian,buyMedian"


def parse_median(fields: list[str]) -> tuple[int, tuple[float, float]]:
    return int(fields[0]), (float(fields[1]), float(fields[2]))


class TestParseRecords:
    def test_parses_rows_and_skips_header(self) -> None:
        lines = [HEADER, "34,4.5,4.1", "35,9.0,8.2"]
        assert parse_records(lines, parse_median) == {34: (4.5, 4.1), 35: (9.0, 8.2)}

    def test_blank_lines_ignored(self) -> None:
        assert parse_records([HEADER, "", "34,1,2", "   "], parse_median) == {34: (1.0, 2.0)}

    def test_keep_first_line_when_no_header(self) -> None:
        records = parse_records(["34,1,2"], parse_median, skip_header=False)
        assert records == {34: (1.0, 2.0)}

    def test_short_lines_skipped_without_counting(self) -> None:
        lines = [HEADER] + ["34"] * 50 + ["35,1,2"]
        assert parse_records(lines, parse_median, min_fields=3) == {35: (1.0, 2.0)}

    def test_tolerates_up_to_limit(self) -> None:
        bad = ["x,y,z"] * DEFAULT_MAX_ERRORS
        records = parse_records([HEADER, *bad, "34,1,2"], parse_median)
        assert records == {34: (1.0, 2.0)}

    def test_aborts_past_limit(self) -> None:
        bad = ["x,y,z"] * (DEFAULT_MAX_ERRORS + 1)
        with pytest.raises(ParseError, match=r"Aborted after 21 malformed records \(limit 20\)"):
            parse_records([HEADER, *bad, "34,1,2"], parse_median)

    def test_custom_limit_and_delimiter(self) -> None:
        with pytest.raises(ParseError):
            parse_records([HEADER, "a|b|c", "d|e|f"], parse_median, delimiter="|", max_errors=1)

    def test_later_duplicates_win(self) -> None:
        records = parse_records([HEADER, "34,1,2", "34,3,4"], parse_median)
        assert records == {34: (3.0, 4.0)}


class TestRecordFiles:
    def test_plain_file(self, tmp_path: Path) -> None:
        path = tmp_path / "medians.txt"
        path.write_text(f"{HEADER}\n34,4.5,4.1\r\n", encoding="utf-8")
        assert parse_record_file(path, parse_median) == {34: (4.5, 4.1)}

    def test_gzip_file(self, tmp_path: Path) -> None:
        path = tmp_path / "medians.txt.gz"
        with gzip.open(path, "wt", encoding="utf-8") as fh:
            fh.write(f"{HEADER}\n34,4.5,4.1\n35,9.0,8.2\n")
        assert parse_record_file(path, parse_median) == {34: (4.5, 4.1), 35: (9.0, 8.2)}

    def test_corrupt_gzip(self, tmp_path: Path) -> None:
        path = tmp_path / "medians.txt.gz"
        path.write_bytes(b"definitely not gzip")
        with pytest.raises(CacheIOError):
            list(read_lines(path))

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(CacheIOError):
            parse_record_file(tmp_path / "nope.txt", parse_median)

    def test_invalid_encoding_is_parse_error(self, tmp_path: Path) -> None:
        path = tmp_path / "medians.txt"
        path.write_bytes(b"h\n34,\xff\xfe,1\n")
        with pytest.raises(ParseError, match="not valid utf-8"):
            parse_record_file(path, lambda fields: (int(fields[0]), fields[1]))

    def test_latin1_dump_with_explicit_encoding(self, tmp_path: Path) -> None:
        path = tmp_path / "names.txt"
        path.write_bytes(b"h\n34,Tritanium \xe9\n")
        lines = list(read_lines(path, encoding="latin-1"))
        assert lines[1] == "34,Tritanium é"

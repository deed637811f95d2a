from __future__ import annotations

import sqlite3
import sys
from dataclasses import dataclass
from pathlib import Path

import openpyxl
import polars as pl
import pytest

# Ensure src-layout imports work when running tests from repo checkout.
SRC_DIR = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_DIR))

from sheetkit.errors import (  # noqa: E402
    SheetArgumentError,
    SheetInvalidOperationError,
    SheetNotSupportedError,
)
from sheetkit.io.spec import SpecWriteOptions, WriteOperation  # noqa: E402
from sheetkit.io.xlsx import read_excel, read_excel_many, write_excel  # noqa: E402


@dataclass
class Score:
    player: str
    points: int


def _cursor_with_rows() -> sqlite3.Cursor:
    conn = sqlite3.connect(":memory:")
    conn.execute("CREATE TABLE t (name TEXT, qty INTEGER)")
    conn.executemany("INSERT INTO t VALUES (?, ?)", [("a", 1), ("b", 2), ("c", 3)])
    return conn.execute("SELECT name, qty FROM t ORDER BY name")


def _header(path_out: Path, sheet_index: int = 0) -> list[object]:
    wb = openpyxl.load_workbook(path_out, read_only=True)
    try:
        ws = wb.worksheets[sheet_index]
        return [_c.value for _c in next(ws.iter_rows(min_row=1, max_row=1))]
    finally:
        wb.close()


def test_dataframe_cells_follow_column_dtypes(tmp_path: Path) -> None:
    path_out = tmp_path / "frame.xlsx"
    df = pl.DataFrame(
        {
            "small": pl.Series([1, 2], dtype=pl.Int32),
            "wide": pl.Series([1, 2], dtype=pl.Int64),
            "name": ["x", None],
        }
    )

    report = write_excel(df, path_out)
    l_read = read_excel(path_out)

    assert report.n_records == 2
    assert l_read[0] == {"small": 1, "wide": "1", "name": "x"}
    assert l_read[1]["name"] is None


def test_dataframe_titles_select_and_rename_columns(tmp_path: Path) -> None:
    path_out = tmp_path / "frame.xlsx"
    df = pl.DataFrame({"a": [1], "b": ["y"]})

    write_excel(df, path_out, titles={"b": "Bee"})

    assert _header(path_out) == ["Bee"]
    assert read_excel(path_out) == [{"Bee": "y"}]


def test_cursor_requires_titles_and_is_closed_after_write(tmp_path: Path) -> None:
    cursor = _cursor_with_rows()
    with pytest.raises(SheetArgumentError):
        write_excel(cursor, tmp_path / "no_titles.xlsx")

    cursor = _cursor_with_rows()
    path_out = tmp_path / "cursor.xlsx"
    report = write_excel(
        cursor,
        path_out,
        titles={"qty": "Quantity", "name": "Name"},
        options=SpecWriteOptions(sheet_max_record=2, row_access_size=2),
    )

    assert report.sheets == ["sheet0", "sheet1"]
    assert _header(path_out) == ["Quantity", "Name"]
    assert read_excel(path_out, sheet_index=1) == [{"Quantity": "3", "Name": "c"}]
    with pytest.raises(sqlite3.ProgrammingError):
        cursor.fetchone()


def test_tuple_source_writes_one_sheet_per_element(tmp_path: Path) -> None:
    path_out = tmp_path / "tuple.xlsx"

    report = write_excel(
        ([Score("ann", 3)], [{"k": "v"}], [7, 8]),
        path_out,
        titles=[{"player": "Who", "points": "Pts"}, {"k": "Key"}, {"A": "Number"}],
    )

    assert report.sheets == ["sheet0", "sheet1", "sheet2"]
    assert _header(path_out, 0) == ["Who", "Pts"]
    assert read_excel_many(path_out, dict, dict, int) == (
        [{"Who": "ann", "Pts": "3"}],
        [{"Key": "v"}],
        [7, 8],
    )
    # renamed headers no longer bind to the record's own titles
    assert read_excel(path_out, Score) == [Score("", 0)]


def test_tuple_source_limits(tmp_path: Path) -> None:
    with pytest.raises(SheetNotSupportedError):
        write_excel(tuple([[1]] * 8), tmp_path / "too_many.xlsx")

    path_out = tmp_path / "too_big.xlsx"
    with pytest.raises(SheetInvalidOperationError):
        write_excel(
            ([1, 2, 3], [4]),
            path_out,
            options=SpecWriteOptions(sheet_max_record=2),
        )
    assert not path_out.exists()

    with pytest.raises(SheetArgumentError):
        write_excel(([1], [2]), tmp_path / "titles.xlsx", titles=[{"A": "x"}])


def test_tuple_cursor_element_stays_on_its_own_sheet(tmp_path: Path) -> None:
    cursor = _cursor_with_rows()
    path_out = tmp_path / "tuple_cursor.xlsx"

    report = write_excel(
        (cursor, [9]),
        path_out,
        titles=[{"name": "Name"}, {"A": "A"}],
        options=SpecWriteOptions(row_access_size=2),
    )

    assert report.sheets == ["sheet0", "sheet1"]
    assert read_excel_many(path_out, str, int) == (["a", "b", "c"], [9])
    with pytest.raises(sqlite3.ProgrammingError):
        cursor.fetchone()


def test_tuple_cursor_element_over_capacity_is_rejected(tmp_path: Path) -> None:
    cursor = _cursor_with_rows()
    path_out = tmp_path / "tuple_cursor.xlsx"

    with pytest.raises(SheetInvalidOperationError):
        write_excel(
            (cursor, [9]),
            path_out,
            titles=[{"name": "Name"}, {"A": "A"}],
            options=SpecWriteOptions(sheet_max_record=2),
        )
    assert not path_out.exists()
    with pytest.raises(sqlite3.ProgrammingError):
        cursor.fetchone()


def test_append_adds_sheet_to_existing_workbook(tmp_path: Path) -> None:
    path_out = tmp_path / "book.xlsx"
    write_excel([Score("ann", 3)], path_out)

    with pytest.raises(SheetInvalidOperationError):
        write_excel([Score("bob", 4)], path_out)

    report = write_excel(
        [Score("bob", 4)],
        path_out,
        options=SpecWriteOptions(allow_append=WriteOperation.APPEND),
    )

    assert report.sheets == ["sheet1"]
    assert read_excel(path_out, Score, sheet_index=0) == [Score("ann", 3)]
    assert read_excel(path_out, Score, sheet_index=1) == [Score("bob", 4)]


def test_append_keeps_leading_equals_as_text(tmp_path: Path) -> None:
    path_out = tmp_path / "book.xlsx"
    write_excel(["first"], path_out)

    write_excel(
        ["=SUM(1,2)"],
        path_out,
        options=SpecWriteOptions(allow_append="append"),
    )

    assert read_excel(path_out, str, sheet_index=1) == ["=SUM(1,2)"]


@pytest.mark.parametrize("source", [{"a": 1}, {1, 2}, 42, "text"])
def test_unsupported_sources_are_rejected(tmp_path: Path, source: object) -> None:
    with pytest.raises(SheetNotSupportedError):
        write_excel(source, tmp_path / "bad.xlsx")


def test_write_argument_errors(tmp_path: Path) -> None:
    with pytest.raises(SheetArgumentError):
        write_excel(None, tmp_path / "none.xlsx")
    with pytest.raises(SheetNotSupportedError):
        write_excel([1], tmp_path / "out.ods")
    with pytest.raises(SheetInvalidOperationError, match="Can't find title"):
        write_excel([Score("ann", 3)], tmp_path / "out.xlsx", titles={"rank": "R"})


def test_empty_collection_writes_header_only_sheet(tmp_path: Path) -> None:
    path_out = tmp_path / "nested" / "dir" / "empty.xlsx"

    report = write_excel([], path_out, record_type=Score)

    assert path_out.is_file()
    assert report.sheets == ["sheet0"]
    assert report.n_records == 0
    assert _header(path_out) == ["player", "points"]
    assert read_excel(path_out, Score) == []


def test_sheet_max_record_is_clamped_with_warning(tmp_path: Path) -> None:
    report = write_excel(
        [1, 2],
        tmp_path / "clamped.xlsx",
        options=SpecWriteOptions(sheet_max_record=2_000_000),
    )

    assert report.sheets == ["sheet0"]
    assert len(report.warnings) == 1

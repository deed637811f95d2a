from __future__ import annotations

import io
import sys
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Annotated
from uuid import UUID

import openpyxl
import polars as pl
import pytest

# Ensure src-layout imports work when running tests from repo checkout.
SRC_DIR = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_DIR))

from sheetkit.errors import (  # noqa: E402
    SheetArgumentError,
    SheetFormatError,
    SheetInvalidOperationError,
    SheetNotFoundError,
    SheetNotSupportedError,
)
from sheetkit.io.header import column  # noqa: E402
from sheetkit.io.spec import SpecWriteOptions  # noqa: E402
from sheetkit.io.xlsx import read_excel, read_excel_many, write_excel  # noqa: E402


class Level(Enum):
    LOW = 1
    HIGH = 2


@dataclass
class Sample:
    sample_id: Annotated[int, pl.Int32] = column("Sample ID", default=0)
    big: int = 0
    ratio: float = 0.0
    price: Decimal = Decimal(0)
    ok: bool = False
    measured_at: datetime = datetime(2000, 1, 1)
    day: date = date(2000, 1, 1)
    label: str = ""
    level: Level = Level.LOW
    token: UUID = UUID(int=0)
    comment: str | None = None


@dataclass
class Score:
    player: str
    points: Annotated[int, pl.Int16]


@dataclass
class ScoreWithExtras:
    player: str
    bonus: int = 5
    rank: int = field(default=0)
    missing_required: float = field(default=1.0)


@dataclass
class ScoreNeedsRank:
    player: str
    rank: int


@dataclass
class StrictPoints:
    points: int


def _samples() -> list[Sample]:
    return [
        Sample(
            sample_id=1,
            big=2**62 + 3,
            ratio=0.1,
            price=Decimal("12.340"),
            ok=True,
            measured_at=datetime(2024, 1, 2, 3, 4, 5, 123_000),
            day=date(2024, 2, 29),
            label="=1+1",
            level=Level.HIGH,
            token=UUID("12345678-1234-5678-1234-567812345678"),
            comment=None,
        ),
        Sample(
            sample_id=2,
            big=-5,
            ratio=1 / 3,
            price=Decimal("-0.5"),
            ok=False,
            measured_at=datetime(1999, 12, 31, 23, 59, 59),
            day=date(1999, 12, 31),
            label="名前, with comma",
            level=Level.LOW,
            token=UUID(int=42),
            comment="note",
        ),
    ]


def test_typed_records_round_trip_through_xlsx(tmp_path: Path) -> None:
    path_out = tmp_path / "samples.xlsx"

    report = write_excel(_samples(), path_out)
    l_read = read_excel(path_out, Sample)

    assert report.sheets == ["sheet0"]
    assert report.n_records == 2
    assert l_read == _samples()


def test_header_row_uses_titles_and_numeric_cells_for_narrow_ints(tmp_path: Path) -> None:
    path_out = tmp_path / "samples.xlsx"
    write_excel(_samples(), path_out)

    wb = openpyxl.load_workbook(path_out)
    ws = wb.worksheets[0]
    l_header = [_c.value for _c in ws[1]]

    assert l_header[:3] == ["Sample ID", "big", "ratio"]
    assert ws["A2"].value == 1
    assert ws["B2"].value == str(2**62 + 3)
    assert ws["E2"].value is True
    assert ws["A1"].font.b is True
    wb.close()


def test_dynamic_read_returns_sanitized_keys_and_raw_values(tmp_path: Path) -> None:
    path_out = tmp_path / "samples.xlsx"
    write_excel(_samples(), path_out)

    l_read = read_excel(path_out)

    assert list(l_read[0])[:3] == ["Sample_ID", "big", "ratio"]
    assert l_read[0]["Sample_ID"] == 1.0
    assert l_read[0]["ok"] is True
    assert l_read[0]["label"] == "=1+1"
    assert l_read[0]["comment"] is None
    assert read_excel(path_out, object) == l_read


def test_scalar_collections_round_trip(tmp_path: Path) -> None:
    path_ints = tmp_path / "ints.xlsx"
    path_texts = tmp_path / "texts.xlsx"

    write_excel([3, 1, 2], path_ints)
    write_excel(["x", "y"], path_texts)

    assert read_excel(path_ints, int) == [3, 1, 2]
    assert read_excel(path_texts, str) == ["x", "y"]
    assert read_excel(path_texts) == [{"A": "x"}, {"A": "y"}]


def test_read_from_stream_and_bytes(tmp_path: Path) -> None:
    path_out = tmp_path / "scores.xlsx"
    write_excel([Score("ann", 3)], path_out)

    data = path_out.read_bytes()
    stream = io.BytesIO(data)

    assert read_excel(stream, Score) == [Score("ann", 3)]
    assert not stream.closed
    assert read_excel(data, Score) == [Score("ann", 3)]


def test_unmatched_members_keep_defaults_or_zero_values(tmp_path: Path) -> None:
    path_out = tmp_path / "scores.xlsx"
    write_excel([Score("ann", 3)], path_out)

    assert read_excel(path_out, ScoreWithExtras) == [
        ScoreWithExtras(player="ann", bonus=5, rank=0, missing_required=1.0)
    ]
    assert read_excel(path_out, ScoreNeedsRank) == [ScoreNeedsRank("ann", 0)]


def test_blank_cell_into_non_nullable_member_raises(tmp_path: Path) -> None:
    path_out = tmp_path / "blank.xlsx"
    write_excel([{"points": None}], path_out)

    with pytest.raises(SheetFormatError):
        read_excel(path_out, StrictPoints)


def test_first_row_is_first_data_row_below_fixed_header(tmp_path: Path) -> None:
    path_out = tmp_path / "offset.xlsx"
    write_excel([Score("a", 1), Score("b", 2), Score("c", 3)], path_out)

    assert read_excel(path_out, Score, first_row=2) == [Score("b", 2), Score("c", 3)]
    assert read_excel_many(path_out, Score, first_row=3) == ([Score("c", 3)],)


def test_absent_rows_between_data_rows_are_skipped(tmp_path: Path) -> None:
    path_out = tmp_path / "gaps.xlsx"
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.append(["player", "points"])
    ws.append(["bo", 9])
    ws.append([])
    ws.append(["cy", 4])
    wb.save(path_out)

    assert read_excel(path_out, Score) == [Score("bo", 9), Score("cy", 4)]


def test_sheet_without_header_row_reads_empty(tmp_path: Path) -> None:
    path_out = tmp_path / "no_header.xlsx"
    wb = openpyxl.Workbook()
    ws = wb.active
    ws["A3"] = "bo"
    ws["B3"] = 9
    ws["A4"] = "cy"
    ws["B4"] = 4
    wb.save(path_out)

    assert read_excel(path_out, Score) == []
    assert read_excel(path_out) == []


def test_dynamic_records_skip_absent_cells(tmp_path: Path) -> None:
    path_out = tmp_path / "sparse.xlsx"
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.append(["a", "b", "c"])
    ws.append([1])
    ws["C3"] = "z"
    wb.save(path_out)

    assert read_excel(path_out) == [{"a": 1.0}, {"c": "z"}]


def test_read_excel_many_reads_sheet_per_type(tmp_path: Path) -> None:
    path_out = tmp_path / "multi.xlsx"
    write_excel((_samples(), [Score("ann", 3), Score("bob", 4)]), path_out)

    l_samples, l_scores = read_excel_many(path_out, Sample, Score)

    assert l_samples == _samples()
    assert l_scores == [Score("ann", 3), Score("bob", 4)]


def test_read_excel_argument_errors(tmp_path: Path) -> None:
    path_out = tmp_path / "scores.xlsx"
    write_excel([Score("ann", 3)], path_out)

    with pytest.raises(SheetArgumentError):
        read_excel(path_out, Score, first_row=0)
    with pytest.raises(SheetArgumentError):
        read_excel(path_out, Score, sheet_index=1)
    with pytest.raises(SheetArgumentError):
        read_excel(None)  # type: ignore[arg-type]
    with pytest.raises(SheetNotFoundError):
        read_excel(tmp_path / "missing.xlsx")
    with pytest.raises(SheetNotSupportedError):
        read_excel(b"not a workbook")
    with pytest.raises(SheetNotSupportedError):
        read_excel_many(path_out, *([Score] * 8))


def test_unsupported_target_is_rejected_before_reading(tmp_path: Path) -> None:
    with pytest.raises(SheetNotSupportedError):
        read_excel(tmp_path / "missing.xlsx", list)
    with pytest.raises(SheetNotSupportedError):
        read_excel(tmp_path / "missing.xlsx", list[int])


def test_pagination_spreads_records_over_sheets(tmp_path: Path) -> None:
    path_out = tmp_path / "paged.xlsx"
    l_counts: list[int] = []

    report = write_excel(
        [Score(f"p{_i}", _i) for _i in range(5)],
        path_out,
        options=SpecWriteOptions(sheet_max_record=2),
        callback=l_counts.append,
    )

    assert report.sheets == ["sheet0", "sheet1", "sheet2"]
    assert l_counts == [1, 2, 3, 4, 5]
    assert read_excel(path_out, Score, sheet_index=0) == [Score("p0", 0), Score("p1", 1)]
    assert read_excel(path_out, Score, sheet_index=2) == [Score("p4", 4)]


def test_generator_source_paginates_while_streaming(tmp_path: Path) -> None:
    path_out = tmp_path / "stream.xlsx"

    report = write_excel(
        (Score(f"p{_i}", _i) for _i in range(3)),
        path_out,
        options=SpecWriteOptions(sheet_max_record=2, row_access_size=0),
    )

    assert report.sheets == ["sheet0", "sheet1"]
    assert read_excel(path_out, Score, sheet_index=1) == [Score("p2", 2)]


def test_formula_and_error_cells(tmp_path: Path) -> None:
    xlsxwriter = pytest.importorskip("xlsxwriter")
    path_out = tmp_path / "formulas.xlsx"
    wb = xlsxwriter.Workbook(path_out.as_posix())
    ws = wb.add_worksheet()
    ws.write_row(0, 0, ["player", "points"])
    ws.write_string(1, 0, "ann")
    ws.write_formula(1, 1, "=1+1", None, 2)
    ws.write_string(2, 0, "bob")
    ws.write_formula(2, 1, "=1/0", None, "#DIV/0!")
    wb.close()

    with pytest.raises(SheetInvalidOperationError):
        read_excel(path_out, Score)

    path_error = tmp_path / "error.xlsx"
    wb_error = openpyxl.Workbook()
    ws_error = wb_error.active
    ws_error.append(["player", "points"])
    ws_error["A2"] = "ann"
    ws_error["B2"] = "#N/A"
    wb_error.save(path_error)

    with pytest.raises(SheetArgumentError):
        read_excel(path_error, Score)


def test_formula_cached_value_is_decoded(tmp_path: Path) -> None:
    xlsxwriter = pytest.importorskip("xlsxwriter")
    path_out = tmp_path / "formula_ok.xlsx"
    wb = xlsxwriter.Workbook(path_out.as_posix())
    ws = wb.add_worksheet()
    ws.write_row(0, 0, ["player", "points"])
    ws.write_string(1, 0, "ann")
    ws.write_formula(1, 1, "=1+1", None, 2)
    wb.close()

    assert read_excel(path_out, Score) == [Score("ann", 2)]


def test_date_formatted_cells_read_as_datetime(tmp_path: Path) -> None:
    path_out = tmp_path / "dates.xlsx"
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.append(["when"])
    ws.append([datetime(2024, 3, 4, 5, 6, 7)])
    wb.save(path_out)

    assert read_excel(path_out) == [{"when": datetime(2024, 3, 4, 5, 6, 7)}]
    assert read_excel(path_out, str) == ["2024-03-04 05:06:07.000"]

import math
from collections.abc import Iterable, Iterator

import polars as pl
from loguru import logger

from ..conf import (
    C_SHEET_NAME_PREFIX,
    DICT_NROWS_MAX_BY_VERSION,
    N_LEN_EXCEL_SHEET_NAME_MAX,
    N_WIDTH_HEADER_MAX,
    N_WIDTH_HEADER_MIN,
    TUP_EXCEL_ILLEGAL,
)
from ..spec import ExcelVersion, SpecSheetSegment, SpecWriteReport

################################################################################
# #region SheetNames


def normalize_sheet_name(name: str, *, replace_to: str = "_") -> str:
    for ch in TUP_EXCEL_ILLEGAL:
        name = name.replace(ch, replace_to)
    name = name.strip() or C_SHEET_NAME_PREFIX
    return name[:N_LEN_EXCEL_SHEET_NAME_MAX]


def create_unique_sheet_name(existing_names: Iterable[str], base_name: str) -> str:
    """Return ``base_name`` or ``base_name_<k>`` avoiding ``existing_names``.

    Excel compares sheet names case-insensitively.
    """
    set_names_lower = {_name.lower() for _name in existing_names}
    c_base = normalize_sheet_name(base_name)
    if c_base.lower() not in set_names_lower:
        return c_base

    n_suffix = 1
    while True:
        c_suffix = f"_{n_suffix}"
        c_name = f"{c_base[: N_LEN_EXCEL_SHEET_NAME_MAX - len(c_suffix)]}{c_suffix}"
        if c_name.lower() not in set_names_lower:
            return c_name
        n_suffix += 1


def make_default_sheet_name(n_sheets_existing: int) -> str:
    return f"{C_SHEET_NAME_PREFIX}{n_sheets_existing}"


# #endregion
################################################################################
# #region Pagination


def plan_sheet_segments(
    *,
    n_records: int,
    n_records_per_sheet_max: int,
) -> list[SpecSheetSegment]:
    """
    Split ``n_records`` records into per-sheet segments.

    Sheets are filled in order, each with up to ``n_records_per_sheet_max``
    records; the last segment holds the remainder. An empty record set still
    yields one (empty) segment so a header-only sheet gets written.

    Raises:
        ValueError: ``n_records < 0`` or ``n_records_per_sheet_max <= 0``.
    """
    if n_records < 0:
        raise ValueError(f"n_records must be >= 0, got {n_records}.")
    if n_records_per_sheet_max <= 0:
        raise ValueError(
            f"n_records_per_sheet_max must be > 0, got {n_records_per_sheet_max}."
        )
    if n_records == 0:
        return [SpecSheetSegment(0, 0, 0)]

    n_segments = math.ceil(n_records / n_records_per_sheet_max)
    l_segments: list[SpecSheetSegment] = []
    for _offset in range(n_segments):
        n_start = _offset * n_records_per_sheet_max
        n_end = min(n_records, n_start + n_records_per_sheet_max)
        l_segments.append(SpecSheetSegment(_offset, n_start, n_end))
    return l_segments


def locate_record(record_idx: int, *, n_records_per_sheet_max: int) -> tuple[int, int]:
    """Return ``(sheet_offset, row_idx)`` of a record; row 0 is the header."""
    if record_idx < 0:
        raise ValueError(f"record_idx must be >= 0, got {record_idx}.")
    if n_records_per_sheet_max <= 0:
        raise ValueError(
            f"n_records_per_sheet_max must be > 0, got {n_records_per_sheet_max}."
        )
    n_offset, n_row = divmod(record_idx, n_records_per_sheet_max)
    return n_offset, n_row + 1


def resolve_sheet_capacity(
    sheet_max_record: int,
    version: ExcelVersion,
    report: SpecWriteReport | None = None,
) -> int:
    """Clamp the requested records-per-sheet to the format's row limit.

    One row per sheet is reserved for the header.
    """
    n_capacity_max = DICT_NROWS_MAX_BY_VERSION[version] - 1
    if sheet_max_record <= n_capacity_max:
        return sheet_max_record

    c_msg = (
        f"sheet_max_record={sheet_max_record} exceeds the {version} limit; "
        f"clamped to {n_capacity_max} records per sheet."
    )
    logger.warning(c_msg)
    if report is not None:
        report.warn(c_msg)
    return n_capacity_max


# #endregion
################################################################################
# #region Header


def calculate_header_width(title: str) -> int:
    """Column width in characters: UTF-8 byte length, clamped to [10, 100]."""
    n_len = len(str(title).encode("utf-8"))
    return max(N_WIDTH_HEADER_MIN, min(N_WIDTH_HEADER_MAX, n_len))


# #endregion
################################################################################
# #region RowChunks


def generate_row_chunks(
    df: pl.DataFrame, *, size_rows_chunk: int
) -> Iterator[tuple[int, pl.DataFrame]]:
    """Yield ``(row_offset, df_chunk)`` slices of at most ``size_rows_chunk`` rows."""
    if size_rows_chunk <= 0:
        raise ValueError(f"size_rows_chunk must be > 0, got {size_rows_chunk}.")
    n_rows_total = df.height
    n_row_cursor = 0
    while n_row_cursor < n_rows_total:
        n_rows_per_chunk = min(size_rows_chunk, n_rows_total - n_row_cursor)
        yield n_row_cursor, df.slice(offset=n_row_cursor, length=n_rows_per_chunk)
        n_row_cursor += n_rows_per_chunk


# #endregion
################################################################################

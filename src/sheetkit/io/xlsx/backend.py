"""Workbook backends.

Writers: ``xlsxwriter`` for new ``.xlsx`` files, ``openpyxl`` to append sheets
to an existing ``.xlsx`` and ``xlwt`` for ``.xls``. Readers: ``openpyxl``
(read-only mode) for ``.xlsx`` and ``xlrd`` for ``.xls``.
"""

import os
from collections.abc import Iterator, Sequence
from datetime import date, datetime, time, timedelta
from io import BytesIO
from pathlib import Path
from types import ModuleType, TracebackType
from typing import Any, Protocol, Self

import openpyxl
import xlsxwriter
import xlsxwriter.worksheet
from loguru import logger
from openpyxl.cell.read_only import EmptyCell
from openpyxl.styles import Alignment, Font
from openpyxl.utils import get_column_letter

from ..._optional_deps import import_optional_module
from ...errors import SheetNotSupportedError
from ..conf import (
    BYTES_MAGIC_XLS,
    BYTES_MAGIC_XLSX,
    DICT_HEADER_FORMAT,
    DICT_NROWS_MAX_BY_VERSION,
    N_LEN_CELL_TEXT_MAX,
    N_WIDTH_XLS_UNIT,
)
from ..spec import CellTag, ExcelVersion, SpecCellValue, SpecReadCell
from .util import calculate_header_width

################################################################################
# #region Protocols


class SheetSink(Protocol):
    def write_header(self, titles: Sequence[str]) -> None: ...

    def write_row(self, row_idx: int, cells: Sequence[SpecCellValue]) -> None: ...


class WorkbookSink(Protocol):
    version: ExcelVersion
    n_rows_sheet_max: int

    def sheet_names(self) -> list[str]: ...

    def create_sheet(self, name: str) -> SheetSink: ...

    def save(self) -> None: ...

    def close(self) -> None: ...


class WorkbookSource(Protocol):
    n_sheets: int

    def iter_rows(
        self, sheet_index: int
    ) -> Iterator[tuple[int, list[SpecReadCell | None] | None]]: ...

    def close(self) -> None: ...


def _import_xlrd() -> ModuleType:
    return import_optional_module(
        "xlrd", feature="Reading .xls workbooks", requires=("xlrd",), extra="xls"
    )


def _import_xlwt() -> ModuleType:
    return import_optional_module(
        "xlwt", feature="Writing .xls workbooks", requires=("xlwt",), extra="xls"
    )


def _truncate_text(value: str) -> str:
    if len(value) <= N_LEN_CELL_TEXT_MAX:
        return value
    logger.warning(
        f"Cell text of {len(value)} chars truncated to {N_LEN_CELL_TEXT_MAX}."
    )
    return value[:N_LEN_CELL_TEXT_MAX]


class _WorkbookSinkBase:
    version: ExcelVersion

    def __init__(self, file_out: os.PathLike[str] | str):
        self.file_out = Path(file_out)
        self.n_rows_sheet_max = DICT_NROWS_MAX_BY_VERSION[self.version]
        self._is_closed = False

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self, exc_type: type | None, exc: BaseException | None, tb: TracebackType | None
    ) -> None:
        self.close()


# #endregion
################################################################################
# #region XlsxWriterSink


class _XlsxWriterSheet:
    def __init__(
        self,
        ws: xlsxwriter.worksheet.Worksheet,
        *,
        fmt_header: Any,
        fmt_blank: Any,
    ):
        self.ws = ws
        self.fmt_header = fmt_header
        self.fmt_blank = fmt_blank

    def write_header(self, titles: Sequence[str]) -> None:
        for _col_idx, _title in enumerate(titles):
            self.ws.write_string(0, _col_idx, _truncate_text(_title), self.fmt_header)
            n_width = calculate_header_width(_title)
            self.ws.set_column(_col_idx, _col_idx, n_width)

    def write_row(self, row_idx: int, cells: Sequence[SpecCellValue]) -> None:
        for _col_idx, _cell in enumerate(cells):
            match _cell.tag:
                case CellTag.BLANK:
                    # a formatted blank keeps the cell present in the sheet
                    self.ws.write_blank(row_idx, _col_idx, None, self.fmt_blank)
                case CellTag.NUMERIC:
                    self.ws.write_number(row_idx, _col_idx, _cell.value)
                case CellTag.BOOLEAN:
                    self.ws.write_boolean(row_idx, _col_idx, _cell.value)
                case _:
                    self.ws.write_string(
                        row_idx,
                        _col_idx,
                        _truncate_text(str(_cell.value)),
                        self.fmt_blank,
                    )


class XlsxWriterWorkbookSink(_WorkbookSinkBase):
    """New ``.xlsx`` workbook written through ``xlsxwriter``.

    With ``row_access_size > 0`` the workbook runs in ``constant_memory`` mode:
    rows are flushed as soon as the next row starts, so each sheet must be
    written top to bottom.
    """

    version = ExcelVersion.XLSX

    def __init__(self, file_out: os.PathLike[str] | str, *, row_access_size: int):
        super().__init__(file_out)
        self.wb = xlsxwriter.Workbook(
            self.file_out.as_posix(),
            {
                "constant_memory": row_access_size > 0,
                "strings_to_numbers": False,
                "strings_to_formulas": False,
                "strings_to_urls": False,
                "nan_inf_to_errors": False,
            },
        )
        self.fmt_header = self.wb.add_format(dict(DICT_HEADER_FORMAT))
        self.fmt_blank = self.wb.add_format({"valign": "bottom"})
        self._l_sheet_names: list[str] = []

    def sheet_names(self) -> list[str]:
        return list(self._l_sheet_names)

    def create_sheet(self, name: str) -> _XlsxWriterSheet:
        ws = self.wb.add_worksheet(name)
        self._l_sheet_names.append(name)
        logger.debug(f"Created sheet `{name}` in `{self.file_out.name}`.")
        return _XlsxWriterSheet(ws, fmt_header=self.fmt_header, fmt_blank=self.fmt_blank)

    def save(self) -> None:
        if not self._is_closed:
            # xlsxwriter assembles the file on close
            self.wb.close()
            self._is_closed = True

    def close(self) -> None:
        self.save()


# #endregion
################################################################################
# #region OpenpyxlSink


class _OpenpyxlSheet:
    def __init__(self, ws: Any):
        self.ws = ws
        self.font_header = Font(
            bold=bool(DICT_HEADER_FORMAT["bold"]),
            size=DICT_HEADER_FORMAT["font_size"],
        )
        self.align_header = Alignment(horizontal=DICT_HEADER_FORMAT["align"])

    def write_header(self, titles: Sequence[str]) -> None:
        for _col_idx, _title in enumerate(titles, start=1):
            cell = self.ws.cell(row=1, column=_col_idx)
            cell.value = _truncate_text(_title)
            cell.data_type = "s"
            cell.font = self.font_header
            cell.alignment = self.align_header
            n_width = calculate_header_width(_title)
            self.ws.column_dimensions[get_column_letter(_col_idx)].width = n_width

    def write_row(self, row_idx: int, cells: Sequence[SpecCellValue]) -> None:
        for _col_idx, _cell in enumerate(cells, start=1):
            # accessing the cell materializes it, so a BLANK stays present
            cell = self.ws.cell(row=row_idx + 1, column=_col_idx)
            match _cell.tag:
                case CellTag.BLANK:
                    cell.value = None
                case CellTag.NUMERIC | CellTag.BOOLEAN:
                    cell.value = _cell.value
                case _:
                    cell.value = _truncate_text(str(_cell.value))
                    # text starting with "=" must not turn into a formula
                    cell.data_type = "s"


class OpenpyxlWorkbookSink(_WorkbookSinkBase):
    """Existing ``.xlsx`` workbook opened through ``openpyxl`` to append sheets."""

    version = ExcelVersion.XLSX

    def __init__(self, file_out: os.PathLike[str] | str):
        super().__init__(file_out)
        self.wb = openpyxl.load_workbook(self.file_out)

    def sheet_names(self) -> list[str]:
        return list(self.wb.sheetnames)

    def create_sheet(self, name: str) -> _OpenpyxlSheet:
        ws = self.wb.create_sheet(title=name)
        logger.debug(f"Appended sheet `{name}` to `{self.file_out.name}`.")
        return _OpenpyxlSheet(ws)

    def save(self) -> None:
        self.wb.save(self.file_out)

    def close(self) -> None:
        if not self._is_closed:
            self.wb.close()
            self._is_closed = True


# #endregion
################################################################################
# #region XlwtSink


class _XlwtSheet:
    def __init__(self, ws: Any, *, style_header: Any):
        self.ws = ws
        self.style_header = style_header

    def write_header(self, titles: Sequence[str]) -> None:
        for _col_idx, _title in enumerate(titles):
            self.ws.write(0, _col_idx, _truncate_text(_title), self.style_header)
            n_width = calculate_header_width(_title)
            self.ws.col(_col_idx).width = n_width * N_WIDTH_XLS_UNIT

    def write_row(self, row_idx: int, cells: Sequence[SpecCellValue]) -> None:
        for _col_idx, _cell in enumerate(cells):
            match _cell.tag:
                case CellTag.BLANK:
                    # xlwt stores None as a BLANK record
                    self.ws.write(row_idx, _col_idx, None)
                case CellTag.NUMERIC | CellTag.BOOLEAN:
                    self.ws.write(row_idx, _col_idx, _cell.value)
                case _:
                    self.ws.write(row_idx, _col_idx, _truncate_text(str(_cell.value)))


class XlwtWorkbookSink(_WorkbookSinkBase):
    """``.xls`` workbook written through ``xlwt``.

    ``xlwt`` cannot edit files, so appending copies the cell values of every
    existing sheet (read with ``xlrd``) into the new workbook first. Cell
    formatting of the copied sheets is not carried over.
    """

    version = ExcelVersion.XLS

    def __init__(self, file_out: os.PathLike[str] | str, *, copy_existing: bool = False):
        super().__init__(file_out)
        self.xlwt = _import_xlwt()
        self.wb = self.xlwt.Workbook(encoding="utf-8")
        c_font = (
            f"font: bold {'on' if DICT_HEADER_FORMAT['bold'] else 'off'}, "
            f"height {DICT_HEADER_FORMAT['font_size'] * 20}"
        )
        self.style_header = self.xlwt.easyxf(
            f"{c_font}; align: horiz {DICT_HEADER_FORMAT['align']}"
        )
        self.style_date = self.xlwt.easyxf(num_format_str="yyyy-mm-dd hh:mm:ss")
        self._l_sheet_names: list[str] = []
        if copy_existing:
            self._copy_existing_sheets()

    def _copy_existing_sheets(self) -> None:
        xlrd = _import_xlrd()
        book = xlrd.open_workbook(self.file_out.as_posix(), formatting_info=True)
        try:
            for _sheet in book.sheets():
                ws = self.wb.add_sheet(_sheet.name, cell_overwrite_ok=True)
                self._l_sheet_names.append(_sheet.name)
                for _row_idx in range(_sheet.nrows):
                    for _col_idx, _cell in enumerate(_sheet.row(_row_idx)):
                        self._copy_cell(xlrd, book, ws, _row_idx, _col_idx, _cell)
        finally:
            book.release_resources()
        logger.debug(
            f"Copied {len(self._l_sheet_names)} existing sheet(s) of "
            f"`{self.file_out.name}` for appending."
        )

    def _copy_cell(
        self, xlrd: ModuleType, book: Any, ws: Any, row_idx: int, col_idx: int, cell: Any
    ) -> None:
        match cell.ctype:
            case xlrd.XL_CELL_EMPTY:
                return
            case xlrd.XL_CELL_BLANK:
                ws.write(row_idx, col_idx, None)
            case xlrd.XL_CELL_DATE:
                try:
                    value = xlrd.xldate.xldate_as_datetime(cell.value, book.datemode)
                except (xlrd.xldate.XLDateError, ValueError, OverflowError):
                    ws.write(row_idx, col_idx, cell.value)
                    return
                ws.write(row_idx, col_idx, value, self.style_date)
            case xlrd.XL_CELL_BOOLEAN:
                ws.write(row_idx, col_idx, bool(cell.value))
            case xlrd.XL_CELL_ERROR:
                c_error = xlrd.error_text_from_code.get(cell.value, "#N/A")
                logger.warning(
                    f"Error cell {c_error} at ({row_idx}, {col_idx}) copied as text."
                )
                ws.write(row_idx, col_idx, c_error)
            case _:
                ws.write(row_idx, col_idx, cell.value)

    def sheet_names(self) -> list[str]:
        return list(self._l_sheet_names)

    def create_sheet(self, name: str) -> _XlwtSheet:
        ws = self.wb.add_sheet(name, cell_overwrite_ok=True)
        self._l_sheet_names.append(name)
        logger.debug(f"Created sheet `{name}` in `{self.file_out.name}`.")
        return _XlwtSheet(ws, style_header=self.style_header)

    def save(self) -> None:
        self.wb.save(self.file_out.as_posix())

    def close(self) -> None:
        self._is_closed = True


# #endregion
################################################################################
# #region Sources


def _convert_openpyxl_value(cell: Any) -> SpecReadCell:
    value = cell.value
    if cell.data_type == "e":
        return SpecReadCell(CellTag.ERROR, value)
    if value is None:
        return SpecReadCell(CellTag.BLANK)
    if isinstance(value, bool):
        return SpecReadCell(CellTag.BOOLEAN, value)
    if isinstance(value, datetime):
        return SpecReadCell(CellTag.TEMPORAL, value)
    if isinstance(value, date):
        return SpecReadCell(CellTag.TEMPORAL, datetime(value.year, value.month, value.day))
    if isinstance(value, (time, timedelta)):
        # time-only formats carry no date
        return SpecReadCell(CellTag.TEMPORAL, None)
    if isinstance(value, (int, float)):
        return SpecReadCell(CellTag.NUMERIC, float(value))
    return SpecReadCell(CellTag.TEXT, str(value))


class OpenpyxlWorkbookSource:
    """``.xlsx`` reader on two read-only ``openpyxl`` workbooks.

    One workbook yields cached values (``data_only=True``), the other yields
    formulas, so a formula cell is reported with its cached result.
    """

    def __init__(self, data: bytes):
        self.wb_values = openpyxl.load_workbook(
            BytesIO(data), read_only=True, data_only=True
        )
        self.wb_formulas = openpyxl.load_workbook(
            BytesIO(data), read_only=True, data_only=False
        )
        self.n_sheets = len(self.wb_values.worksheets)

    def iter_rows(
        self, sheet_index: int
    ) -> Iterator[tuple[int, list[SpecReadCell | None] | None]]:
        ws_values = self.wb_values.worksheets[sheet_index]
        ws_formulas = self.wb_formulas.worksheets[sheet_index]
        for _row_idx, (_row_values, _row_formulas) in enumerate(
            zip(ws_values.iter_rows(), ws_formulas.iter_rows())
        ):
            l_cells: list[SpecReadCell | None] = []
            for _cell_value, _cell_formula in zip(_row_values, _row_formulas):
                if isinstance(_cell_value, EmptyCell):
                    l_cells.append(None)
                    continue
                cell = _convert_openpyxl_value(_cell_value)
                if getattr(_cell_formula, "data_type", None) == "f":
                    cell = SpecReadCell(CellTag.FORMULA, cell.value, cached_tag=cell.tag)
                l_cells.append(cell)
            yield _row_idx, (l_cells if any(l_cells) else None)

    def close(self) -> None:
        self.wb_values.close()
        self.wb_formulas.close()


class XlrdWorkbookSource:
    """``.xls`` reader through ``xlrd``.

    ``xlrd`` exposes cached formula results only, so a formula that cached an
    error reads as a plain error cell and raises ``SheetArgumentError`` rather
    than ``SheetInvalidOperationError``.
    """

    def __init__(self, data: bytes):
        self.xlrd = _import_xlrd()
        self.book = self.xlrd.open_workbook(file_contents=data, formatting_info=True)
        self.n_sheets = self.book.nsheets

    def _convert_cell(self, cell: Any) -> SpecReadCell | None:
        xlrd = self.xlrd
        match cell.ctype:
            case xlrd.XL_CELL_EMPTY:
                return None
            case xlrd.XL_CELL_BLANK:
                return SpecReadCell(CellTag.BLANK)
            case xlrd.XL_CELL_NUMBER:
                return SpecReadCell(CellTag.NUMERIC, float(cell.value))
            case xlrd.XL_CELL_DATE:
                try:
                    value = xlrd.xldate.xldate_as_datetime(cell.value, self.book.datemode)
                except (xlrd.xldate.XLDateError, ValueError, OverflowError):
                    value = None
                return SpecReadCell(CellTag.TEMPORAL, value)
            case xlrd.XL_CELL_BOOLEAN:
                return SpecReadCell(CellTag.BOOLEAN, bool(cell.value))
            case xlrd.XL_CELL_ERROR:
                return SpecReadCell(
                    CellTag.ERROR, xlrd.error_text_from_code.get(cell.value)
                )
            case _:
                return SpecReadCell(CellTag.TEXT, str(cell.value))

    def iter_rows(
        self, sheet_index: int
    ) -> Iterator[tuple[int, list[SpecReadCell | None] | None]]:
        sheet = self.book.sheet_by_index(sheet_index)
        for _row_idx in range(sheet.nrows):
            l_cells = [self._convert_cell(_cell) for _cell in sheet.row(_row_idx)]
            yield _row_idx, (l_cells if any(l_cells) else None)

    def close(self) -> None:
        self.book.release_resources()


# #endregion
################################################################################
# #region Factories


def detect_excel_version(data: bytes) -> ExcelVersion:
    if data.startswith(BYTES_MAGIC_XLSX):
        return ExcelVersion.XLSX
    if data.startswith(BYTES_MAGIC_XLS):
        return ExcelVersion.XLS
    raise SheetNotSupportedError("Source is neither an .xlsx nor an .xls workbook.")


def create_workbook(
    file_out: os.PathLike[str] | str,
    version: ExcelVersion,
    row_access_size: int,
) -> WorkbookSink:
    """Create a new, empty workbook for ``version`` at ``file_out``."""
    match version:
        case ExcelVersion.XLSX:
            return XlsxWriterWorkbookSink(file_out, row_access_size=row_access_size)
        case ExcelVersion.XLS:
            return XlwtWorkbookSink(file_out)
        case _:
            raise SheetNotSupportedError(f"Unsupported workbook version: {version}")


def open_workbook(file_out: os.PathLike[str] | str) -> WorkbookSink:
    """Open an existing workbook so new sheets can be appended to it."""
    path_file = Path(file_out)
    with path_file.open("rb") as f:
        version = detect_excel_version(f.read(len(BYTES_MAGIC_XLS)))
    match version:
        case ExcelVersion.XLSX:
            return OpenpyxlWorkbookSink(path_file)
        case _:
            return XlwtWorkbookSink(path_file, copy_existing=True)


def open_workbook_source(data: bytes) -> WorkbookSource:
    match detect_excel_version(data):
        case ExcelVersion.XLSX:
            return OpenpyxlWorkbookSource(data)
        case _:
            return XlrdWorkbookSource(data)


# #endregion
################################################################################

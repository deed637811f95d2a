import os
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import IO, Any

from .io.csv.reader import read_csv
from .io.csv.writer import write_csv
from .io.spec import ExcelVersion, SpecWriteOptions, SpecWriteReport
from .io.xlsx.backend import WorkbookSink, create_workbook
from .io.xlsx.reader import ExcelSource, read_excel, read_excel_many
from .io.xlsx.writer import TitlesLike, write_excel


class SheetMarshal:
    """
    Stateful entry point holding default write options.

    Examples:
        >>> marshal = SheetMarshal(SpecWriteOptions(sheet_max_record=50_000))
        >>> marshal.write(records, "out.xlsx")
        >>> people = marshal.read("out.xlsx", Person)
    """

    def __init__(self, options: SpecWriteOptions | None = None):
        self.options = options or SpecWriteOptions()

    def update_options(self, **changes: Any) -> SpecWriteOptions:
        self.options = self.options.with_(**changes)
        return self.options

    def write(
        self,
        source: Any,
        file_out: os.PathLike[str] | str,
        *,
        titles: TitlesLike = None,
        options: SpecWriteOptions | None = None,
        callback: Callable[[int], None] | None = None,
        record_type: Any = None,
    ) -> SpecWriteReport:
        return write_excel(
            source,
            file_out,
            titles=titles,
            options=options or self.options,
            callback=callback,
            record_type=record_type,
        )

    def read(
        self,
        source: ExcelSource,
        record_type: Any = dict,
        *,
        first_row: int = 1,
        sheet_index: int = 0,
    ) -> list[Any]:
        return read_excel(
            source, record_type, first_row=first_row, sheet_index=sheet_index
        )

    def read_many(
        self, source: ExcelSource, *record_types: Any, first_row: int = 1
    ) -> tuple[list[Any], ...]:
        return read_excel_many(source, *record_types, first_row=first_row)

    def write_csv(
        self,
        source: Any,
        file_out: os.PathLike[str] | str,
        *,
        titles: Mapping[str, str] | None = None,
        callback: Callable[[int], None] | None = None,
        record_type: Any = None,
    ) -> Path:
        return write_csv(
            source, file_out, titles=titles, callback=callback, record_type=record_type
        )

    def read_csv(
        self, source: os.PathLike[str] | str | IO[str], *, first_row: int = 1
    ) -> list[dict[str, str]]:
        return read_csv(source, first_row=first_row)

    def create_workbook(
        self, file_out: os.PathLike[str] | str, version: ExcelVersion = ExcelVersion.XLSX
    ) -> WorkbookSink:
        return create_workbook(file_out, version, self.options.row_access_size)

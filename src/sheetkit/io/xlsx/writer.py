import itertools
import os
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence, Set, Sized
from dataclasses import dataclass, fields, is_dataclass
from pathlib import Path
from typing import Any

import polars as pl
from loguru import logger

from ...errors import (
    SheetArgumentError,
    SheetInvalidOperationError,
    SheetNotSupportedError,
)
from ..conf import DEFAULT_WRITE_OPTIONS, DICT_VERSION_BY_SUFFIX, N_TUPLE_ARITY_MAX
from ..header import resolve_record_fields, resolve_titles, resolve_titles_from_mapping
from ..spec import (
    ExcelVersion,
    SpecCellValue,
    SpecWriteOptions,
    SpecWriteReport,
    ValueKind,
    WriteOperation,
)
from ..value_conversion import (
    encode_cell_value,
    is_simple_type,
    resolve_kind_from_dtype,
    resolve_kind_from_value,
)
from .backend import SheetSink, WorkbookSink, create_workbook, open_workbook
from .util import (
    create_unique_sheet_name,
    generate_row_chunks,
    locate_record,
    make_default_sheet_name,
    plan_sheet_segments,
    resolve_sheet_capacity,
)

TitlesLike = Mapping[str, str] | Sequence[Mapping[str, str]] | None
ProgressCallback = Callable[[int], None]

_NO_RECORD = object()

################################################################################
# #region Regions


@dataclass(slots=True)
class _SpecRegion:
    """One record set: header map, encoded rows and, when known, the row count."""

    titles: dict[str, str]
    rows: Iterator[list[SpecCellValue]]
    n_records: int | None = None


def is_cursor(source: Any) -> bool:
    return hasattr(source, "description") and hasattr(source, "fetchmany")


def is_record_collection(source: Any) -> bool:
    if isinstance(source, pl.DataFrame):
        return True
    return isinstance(source, Iterable) and not isinstance(
        source, (str, bytes, bytearray, Mapping, Set)
    )


def _encode_runtime_value(value: Any) -> SpecCellValue:
    return encode_cell_value(value, resolve_kind_from_value(value))


def _validate_titles(titles: Mapping[str, str], members: Iterable[str]) -> None:
    set_members = set(members)
    for _key in titles:
        if _key not in set_members:
            raise SheetInvalidOperationError(f"Can't find title {_key}'s value")


def _build_frame_region(
    df: pl.DataFrame, titles: Mapping[str, str] | None, row_access_size: int
) -> _SpecRegion:
    dict_titles = dict(titles) if titles else {_c: _c for _c in df.columns}
    _validate_titles(dict_titles, df.columns)
    l_keys = list(dict_titles)
    l_kinds = [resolve_kind_from_dtype(df.schema[_key]) for _key in l_keys]
    df_selected = df.select(l_keys)
    size_rows_chunk = row_access_size or max(df.height, 1)

    def _iter_rows() -> Iterator[list[SpecCellValue]]:
        for _, _df_chunk in generate_row_chunks(
            df_selected, size_rows_chunk=size_rows_chunk
        ):
            for _row in _df_chunk.iter_rows():
                yield [encode_cell_value(_v, _k) for _v, _k in zip(_row, l_kinds)]

    return _SpecRegion(dict_titles, _iter_rows(), df.height)


def _build_cursor_region(
    cursor: Any, titles: Mapping[str, str] | None, row_access_size: int
) -> _SpecRegion:
    if not titles:
        raise SheetArgumentError("titles are required to write a database cursor.")
    l_names = [str(_d[0]) for _d in (cursor.description or ())]
    _validate_titles(titles, l_names)
    dict_titles = dict(titles)
    l_col_indices = [l_names.index(_key) for _key in dict_titles]
    n_fetch = row_access_size or DEFAULT_WRITE_OPTIONS.row_access_size

    def _iter_rows() -> Iterator[list[SpecCellValue]]:
        while l_rows := cursor.fetchmany(n_fetch):
            for _row in l_rows:
                yield [_encode_runtime_value(_row[_i]) for _i in l_col_indices]

    return _SpecRegion(dict_titles, _iter_rows(), None)


def _build_collection_region(
    records: Iterable[Any],
    titles: Mapping[str, str] | None,
    record_type: type | None,
) -> _SpecRegion:
    n_records = len(records) if isinstance(records, Sized) else None
    it_records = iter(records)
    first = next(it_records, _NO_RECORD)
    if first is not _NO_RECORD:
        it_records = itertools.chain([first], it_records)
        record_type = record_type or type(first)
    elif record_type is None:
        return _SpecRegion(dict(titles or {}), iter(()), 0)
    if not isinstance(record_type, type):
        raise SheetNotSupportedError(f"Unsupported record type: {record_type!r}")

    if issubclass(record_type, Mapping):
        dict_titles_derived = (
            resolve_titles_from_mapping(first) if first is not _NO_RECORD else {}
        )
        dict_titles = dict(titles) if titles else dict_titles_derived
        if first is not _NO_RECORD:
            _validate_titles(dict_titles, dict_titles_derived)
        l_keys = list(dict_titles)
        rows = (
            [_encode_runtime_value(_record.get(_key)) for _key in l_keys]
            for _record in it_records
        )
        return _SpecRegion(dict_titles, rows, n_records)

    if is_dataclass(record_type):
        dict_kinds = {_d.name: _d.kind for _d in resolve_record_fields(record_type)}
        dict_titles = dict(titles) if titles else resolve_titles(record_type)
        _validate_titles(dict_titles, (_f.name for _f in fields(record_type)))
        l_keys = list(dict_titles)
        l_kinds = [dict_kinds.get(_key, ValueKind.OBJECT) for _key in l_keys]
        rows = (
            [
                encode_cell_value(getattr(_record, _key, None), _kind)
                for _key, _kind in zip(l_keys, l_kinds)
            ]
            for _record in it_records
        )
        return _SpecRegion(dict_titles, rows, n_records)

    if is_simple_type(record_type):
        dict_titles = dict(titles) if titles else resolve_titles(record_type)
        _validate_titles(dict_titles, resolve_titles(record_type))
        rows = ([_encode_runtime_value(_record)] for _record in it_records)
        return _SpecRegion(dict_titles, rows, n_records)

    raise SheetNotSupportedError(
        f"Unsupported record type: {getattr(record_type, '__name__', record_type)!r}"
    )


def _build_region(
    source: Any,
    titles: Mapping[str, str] | None,
    record_type: type | None,
    row_access_size: int,
) -> _SpecRegion:
    if isinstance(source, pl.DataFrame):
        return _build_frame_region(source, titles, row_access_size)
    if is_cursor(source):
        return _build_cursor_region(source, titles, row_access_size)
    if is_record_collection(source):
        return _build_collection_region(source, titles, record_type)
    raise SheetNotSupportedError(
        f"Unsupported source type: {type(source).__name__}"
    )


def _split_tuple_titles(titles: TitlesLike, n_elements: int) -> list[Mapping[str, str] | None]:
    if titles is None or isinstance(titles, Mapping):
        return [titles] * n_elements
    l_titles = list(titles)
    if len(l_titles) != n_elements:
        raise SheetArgumentError(
            f"Got {len(l_titles)} title maps for {n_elements} tuple elements."
        )
    return l_titles


def _is_multi_region(source: Any) -> bool:
    return (
        isinstance(source, tuple)
        and len(source) > 0
        and all(is_record_collection(_x) for _x in source)
    )


def _build_tuple_regions(
    source: tuple[Any, ...],
    titles: TitlesLike,
    record_type: Any,
    row_access_size: int,
) -> list[_SpecRegion]:
    if len(source) > N_TUPLE_ARITY_MAX:
        raise SheetNotSupportedError(
            f"Tuple sources hold 1-{N_TUPLE_ARITY_MAX} collections, got {len(source)}."
        )
    l_titles = _split_tuple_titles(titles, len(source))
    l_record_types = (
        list(record_type)
        if isinstance(record_type, (tuple, list))
        else [record_type] * len(source)
    )

    l_regions: list[_SpecRegion] = []
    for _element, _titles, _record_type in zip(source, l_titles, l_record_types):
        # materialize so every element can be sized before writing
        if is_cursor(_element):
            region = _build_cursor_region(_element, _titles, row_access_size)
            l_rows = list(region.rows)
            l_regions.append(_SpecRegion(region.titles, iter(l_rows), len(l_rows)))
            continue
        if not isinstance(_element, (pl.DataFrame, Sized)):
            _element = list(_element)
        l_regions.append(
            _build_region(_element, _titles, _record_type, row_access_size)
        )
    return l_regions


# #endregion
################################################################################
# #region SheetWriter


class SheetWriter:
    """
    Streams encoded record sets into a workbook, one header row per sheet.

    Record sets of known size are laid out with :func:`plan_sheet_segments`;
    streaming record sets (cursors, generators) start a new sheet whenever
    :func:`locate_record` moves to the next sheet offset.
    """

    def __init__(
        self,
        wb: WorkbookSink,
        *,
        n_records_per_sheet_max: int,
        report: SpecWriteReport,
        callback: ProgressCallback | None = None,
    ):
        self.wb = wb
        self.n_records_per_sheet_max = n_records_per_sheet_max
        self.report = report
        self.callback = callback

    def _create_sheet(self, titles: Mapping[str, str]) -> SheetSink:
        l_names = self.wb.sheet_names()
        c_name = create_unique_sheet_name(l_names, make_default_sheet_name(len(l_names)))
        ws = self.wb.create_sheet(c_name)
        ws.write_header(list(titles.values()))
        self.report.sheets.append(c_name)
        return ws

    def _write_record(self, ws: SheetSink, row_idx: int, cells: list[SpecCellValue]) -> None:
        ws.write_row(row_idx, cells)
        self.report.n_records += 1
        if self.callback is not None:
            self.callback(self.report.n_records)

    def write_region(self, region: _SpecRegion) -> None:
        if region.n_records is not None:
            l_segments = plan_sheet_segments(
                n_records=region.n_records,
                n_records_per_sheet_max=self.n_records_per_sheet_max,
            )
            logger.debug(
                f"Writing {region.n_records} records over {len(l_segments)} sheet(s)."
            )
            for _segment in l_segments:
                ws = self._create_sheet(region.titles)
                for _row_idx, _cells in enumerate(
                    itertools.islice(region.rows, _segment.n_records), start=1
                ):
                    self._write_record(ws, _row_idx, _cells)
            return

        ws_current: SheetSink | None = None
        n_offset_current = -1
        for _record_idx, _cells in enumerate(region.rows):
            n_offset, n_row = locate_record(
                _record_idx, n_records_per_sheet_max=self.n_records_per_sheet_max
            )
            if ws_current is None or n_offset != n_offset_current:
                ws_current = self._create_sheet(region.titles)
                n_offset_current = n_offset
            self._write_record(ws_current, n_row, _cells)
        if ws_current is None:
            self._create_sheet(region.titles)


# #endregion
################################################################################
# #region Dispatch


def resolve_excel_version(file_out: os.PathLike[str] | str) -> ExcelVersion:
    c_suffix = Path(file_out).suffix.lower()
    version = DICT_VERSION_BY_SUFFIX.get(c_suffix)
    if version is None:
        raise SheetNotSupportedError(
            f"Unsupported workbook extension {c_suffix!r}; use .xlsx or .xls."
        )
    return version


def _prepare_workbook(
    path_out: Path, version: ExcelVersion, options: SpecWriteOptions
) -> WorkbookSink:
    if path_out.exists():
        if options.allow_append is not WriteOperation.APPEND:
            raise SheetInvalidOperationError(
                f"File already exists and appending is not allowed: {path_out}"
            )
        return open_workbook(path_out)
    path_out.parent.mkdir(parents=True, exist_ok=True)
    return create_workbook(path_out, version, options.row_access_size)


def write_excel(
    source: Any,
    file_out: os.PathLike[str] | str,
    *,
    titles: TitlesLike = None,
    options: SpecWriteOptions | None = None,
    callback: ProgressCallback | None = None,
    record_type: Any = None,
) -> SpecWriteReport:
    """
    Write records into an ``.xlsx`` / ``.xls`` workbook.

    Args:
        source: Records to write. One of:
            - ``polars.DataFrame``;
            - DB-API cursor (``description`` + ``fetchmany``), requires ``titles``;
            - collection of dataclass instances, dicts or simple scalars;
            - tuple of 1-7 collections or cursors, element ``i`` goes to its own
              sheet; cursor elements are drained before anything is written.
        file_out: Destination; the extension selects the workbook format.
        titles: Ordered member -> display title map. For tuple sources either
            one map for every element or one map per element. Derived from the
            records when omitted.
        options: Append mode, records per sheet and streaming chunk size.
        callback: Called with the cumulative record count after every record.
        record_type: Record type for empty collections (header only sheets).

    Returns:
        SpecWriteReport: Written sheet names, record count and warnings.

    Raises:
        SheetArgumentError: ``source`` is ``None``; cursor without titles.
        SheetNotSupportedError: unsupported source shape or file extension.
        SheetInvalidOperationError: destination exists and appending is not
            allowed; a tuple element exceeds one sheet; titles name missing
            members.
    """
    if source is None:
        raise SheetArgumentError("source must not be None.")

    cfg_options = options or DEFAULT_WRITE_OPTIONS
    path_out = Path(file_out)
    try:
        version = resolve_excel_version(path_out)
        b_multi_region = _is_multi_region(source)
        if b_multi_region:
            l_regions = _build_tuple_regions(
                source, titles, record_type, cfg_options.row_access_size
            )
        else:
            if titles is not None and not isinstance(titles, Mapping):
                raise SheetArgumentError("titles must be a mapping of member -> title.")
            l_regions = [
                _build_region(source, titles, record_type, cfg_options.row_access_size)
            ]
        logger.debug(
            f"Dispatching {type(source).__name__} source as {len(l_regions)} region(s)."
        )

        report = SpecWriteReport(file_out=path_out)
        n_capacity = resolve_sheet_capacity(
            cfg_options.sheet_max_record, version, report
        )
        if b_multi_region:
            for _idx, _region in enumerate(l_regions):
                if (_region.n_records or 0) > n_capacity:
                    raise SheetInvalidOperationError(
                        f"Tuple element {_idx} holds {_region.n_records} records, "
                        f"more than the {n_capacity} one sheet can hold."
                    )

        wb = _prepare_workbook(path_out, version, cfg_options)
        try:
            writer = SheetWriter(
                wb, n_records_per_sheet_max=n_capacity, report=report, callback=callback
            )
            for _region in l_regions:
                writer.write_region(_region)
            wb.save()
        finally:
            wb.close()
    finally:
        l_sources = list(source) if isinstance(source, tuple) else [source]
        for _source in l_sources:
            if is_cursor(_source) and hasattr(_source, "close"):
                _source.close()

    logger.info(
        f"Wrote {report.n_records} records to `{path_out}` "
        f"({len(report.sheets)} sheet(s))."
    )
    return report


# #endregion
################################################################################

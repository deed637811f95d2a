import os
from collections.abc import Callable, Iterator, Sequence
from dataclasses import MISSING, dataclass, fields, is_dataclass
from pathlib import Path
from typing import IO, Any

from loguru import logger

from ...errors import (
    SheetArgumentError,
    SheetFormatError,
    SheetNotFoundError,
    SheetNotSupportedError,
)
from ..conf import N_TUPLE_ARITY_MAX
from ..header import build_dynamic_keys, map_header_columns, resolve_record_fields, sanitize_key
from ..spec import CellTag, SpecFieldDescriptor, SpecReadCell, ValueKind
from ..value_conversion import decode_cell_value, default_value_for, resolve_value_kind
from .backend import WorkbookSource, open_workbook_source

ExcelSource = os.PathLike[str] | str | bytes | IO[bytes]
RowCells = list[SpecReadCell | None]

################################################################################
# #region Source


def read_source_bytes(source: ExcelSource | None) -> bytes:
    """Load a workbook path, raw bytes or binary stream into memory.

    Caller-owned streams are read but not closed.
    """
    if source is None:
        raise SheetArgumentError("source must not be None.")
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    if isinstance(source, (str, os.PathLike)):
        path_source = Path(source)
        if not path_source.is_file():
            raise SheetNotFoundError(f"Workbook not found: {path_source}")
        return path_source.read_bytes()
    if hasattr(source, "read"):
        data = source.read()
        if not isinstance(data, (bytes, bytearray)):
            raise SheetNotSupportedError("Workbook streams must be opened in binary mode.")
        return bytes(data)
    raise SheetNotSupportedError(f"Unsupported workbook source: {type(source).__name__}")


def _get_cell(cells: RowCells, col_idx: int) -> SpecReadCell | None:
    return cells[col_idx] if col_idx < len(cells) else None


def _header_text(cell: SpecReadCell | None) -> str | None:
    if cell is None:
        return None
    tag = cell.cached_tag if cell.tag is CellTag.FORMULA else cell.tag
    if tag in (None, CellTag.ERROR, CellTag.BLANK) or cell.value is None:
        return None
    return decode_cell_value(SpecReadCell(tag, cell.value), ValueKind.STRING)


# #endregion
################################################################################
# #region RecordBuilders


@dataclass(frozen=True, slots=True)
class _SpecReadTarget:
    """How one sheet's rows become records; built before any cell is read."""

    record_type: Any
    build: Callable[[Sequence[str | None]], Callable[[RowCells], Any]]


def _decode_member(
    cell: SpecReadCell,
    kind: ValueKind,
    *,
    enum_type: type | None,
    is_nullable: bool,
    name: str,
) -> Any:
    value = decode_cell_value(cell, kind, enum_type=enum_type)
    if value is not None or is_nullable:
        return value
    if kind is ValueKind.STRING:
        return ""
    raise SheetFormatError(
        f"Blank cell cannot be assigned to non-nullable member {name!r} ({kind})."
    )


def _zero_value(descriptor: SpecFieldDescriptor | None) -> Any:
    if descriptor is None or descriptor.is_nullable:
        return None
    return default_value_for(descriptor.kind, descriptor.enum_type)


def _build_typed_target(record_type: type) -> _SpecReadTarget:
    tup_descriptors = resolve_record_fields(record_type)
    dict_descriptor_by_name = {_d.name: _d for _d in tup_descriptors}
    # required init fields the sheet may not provide
    dict_fallbacks = {
        _f.name: _zero_value(dict_descriptor_by_name.get(_f.name))
        for _f in fields(record_type)
        if _f.init and _f.default is MISSING and _f.default_factory is MISSING
    }

    def _build(header_texts: Sequence[str | None]) -> Callable[[RowCells], Any]:
        l_bound = sorted(map_header_columns(tup_descriptors, header_texts).items())

        def _convert_row(cells: RowCells) -> Any:
            dict_kwargs: dict[str, Any] = {}
            dict_post_init: dict[str, Any] = {}
            for _col_idx, _descriptor in l_bound:
                cell = _get_cell(cells, _col_idx)
                if cell is None:
                    continue
                value = _decode_member(
                    cell,
                    _descriptor.kind,
                    enum_type=_descriptor.enum_type,
                    is_nullable=_descriptor.is_nullable,
                    name=_descriptor.name,
                )
                if _descriptor.is_init:
                    dict_kwargs[_descriptor.name] = value
                else:
                    dict_post_init[_descriptor.name] = value
            for _name, _value in dict_fallbacks.items():
                dict_kwargs.setdefault(_name, _value)
            record = record_type(**dict_kwargs)
            for _name, _value in dict_post_init.items():
                object.__setattr__(record, _name, _value)
            return record

        return _convert_row

    return _SpecReadTarget(record_type, _build)


def _build_dynamic_target(record_type: type) -> _SpecReadTarget:
    def _build(header_texts: Sequence[str | None]) -> Callable[[RowCells], Any]:
        l_keys = build_dynamic_keys(header_texts)

        def _convert_row(cells: RowCells) -> dict[str, Any]:
            # duplicate keys: the rightmost column wins
            dict_record: dict[str, Any] = {}
            for _col_idx, _cell in enumerate(cells):
                if _cell is None:
                    continue
                c_key = (
                    l_keys[_col_idx]
                    if _col_idx < len(l_keys)
                    else sanitize_key(None, _col_idx)
                )
                dict_record[c_key] = decode_cell_value(_cell, ValueKind.OBJECT)
            return dict_record

        return _convert_row

    return _SpecReadTarget(record_type, _build)


def _build_scalar_target(
    record_type: Any, kind: ValueKind, is_nullable: bool, enum_type: type | None
) -> _SpecReadTarget:
    def _build(header_texts: Sequence[str | None]) -> Callable[[RowCells], Any]:
        def _convert_row(cells: RowCells) -> Any:
            cell = _get_cell(cells, 0)
            if cell is None:
                return None if is_nullable else default_value_for(kind, enum_type)
            return _decode_member(
                cell, kind, enum_type=enum_type, is_nullable=is_nullable, name="A"
            )

        return _convert_row

    return _SpecReadTarget(record_type, _build)


def resolve_read_target(record_type: Any) -> _SpecReadTarget:
    """Classify ``record_type`` as typed, dynamic or scalar.

    Raises:
        SheetNotSupportedError: none of the three shapes.
    """
    if record_type is dict or record_type is object:
        return _build_dynamic_target(record_type)
    if isinstance(record_type, type) and is_dataclass(record_type):
        return _build_typed_target(record_type)
    resolved = resolve_value_kind(record_type)
    if resolved is not None:
        return _build_scalar_target(record_type, *resolved)
    raise SheetNotSupportedError(f"Unsupported record type: {record_type!r}")


# #endregion
################################################################################
# #region Read


def _iter_sheet_records(
    wb: WorkbookSource, sheet_index: int, target: _SpecReadTarget, first_row: int
) -> Iterator[Any]:
    # the header is always the sheet's first row
    it_rows = wb.iter_rows(sheet_index)
    _, header_cells = next(it_rows, (0, None))
    if header_cells is None:
        logger.debug(f"Sheet {sheet_index} has no header row; nothing to read.")
        return
    convert_row = target.build([_header_text(_c) for _c in header_cells])
    for _row_idx, _cells in it_rows:
        if _row_idx < first_row or _cells is None:
            continue
        yield convert_row(_cells)


def _validate_sheet_index(wb: WorkbookSource, sheet_index: int) -> None:
    if not 0 <= sheet_index < wb.n_sheets:
        raise SheetArgumentError(
            f"sheet_index {sheet_index} out of range; workbook has {wb.n_sheets} sheet(s)."
        )


def _validate_first_row(first_row: int) -> None:
    if first_row < 1:
        raise SheetArgumentError(f"first_row must be >= 1, got {first_row}.")


def read_excel(
    source: ExcelSource,
    record_type: Any = dict,
    *,
    first_row: int = 1,
    sheet_index: int = 0,
) -> list[Any]:
    """
    Read one sheet of an ``.xlsx`` / ``.xls`` workbook into records.

    Args:
        source: Path, raw bytes or binary stream; the format is detected from
            the file signature.
        record_type: Dataclass type (typed records), ``dict`` / ``object``
            (dynamic records keyed by sanitized header text) or a simple type
            such as ``int`` / ``str`` (first column only).
        first_row: 0-based index of the first data row. The header is always
            the sheet's first row (index 0); rows between it and
            ``first_row`` are skipped. A sheet without a header row reads as
            an empty list.
        sheet_index: 0-based sheet to read.

    Returns:
        list: One record per populated row below the header.

    Raises:
        SheetNotFoundError: ``source`` path does not exist.
        SheetNotSupportedError: unsupported record type or file format.
        SheetArgumentError: ``None`` source, bad ``first_row`` / ``sheet_index``
            or an error cell.
        SheetFormatError: a cell cannot be converted to its member type.
        SheetInvalidOperationError: a formula cell caches an error.
    """
    target = resolve_read_target(record_type)
    _validate_first_row(first_row)
    wb = open_workbook_source(read_source_bytes(source))
    try:
        _validate_sheet_index(wb, sheet_index)
        l_records = list(_iter_sheet_records(wb, sheet_index, target, first_row))
    finally:
        wb.close()
    logger.info(f"Read {len(l_records)} records from sheet {sheet_index}.")
    return l_records


def read_excel_many(
    source: ExcelSource,
    *record_types: Any,
    first_row: int = 1,
) -> tuple[list[Any], ...]:
    """Read sheet ``i`` into ``record_types[i]`` for 1-7 record types."""
    if not 1 <= len(record_types) <= N_TUPLE_ARITY_MAX:
        raise SheetNotSupportedError(
            f"Read 1-{N_TUPLE_ARITY_MAX} sheets at once, got {len(record_types)} types."
        )
    l_targets = [resolve_read_target(_record_type) for _record_type in record_types]
    _validate_first_row(first_row)
    wb = open_workbook_source(read_source_bytes(source))
    try:
        l_results: list[list[Any]] = []
        for _sheet_index, _target in enumerate(l_targets):
            _validate_sheet_index(wb, _sheet_index)
            l_results.append(
                list(_iter_sheet_records(wb, _sheet_index, _target, first_row))
            )
    finally:
        wb.close()
    logger.info(f"Read {sum(map(len, l_results))} records from {len(l_results)} sheets.")
    return tuple(l_results)


# #endregion
################################################################################

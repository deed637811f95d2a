import os
from collections.abc import Iterable
from pathlib import Path
from typing import IO

from loguru import logger

from ...errors import SheetArgumentError, SheetNotFoundError, SheetNotSupportedError
from ..conf import C_CSV_ENCODING, C_DYNAMIC_COLUMN_PREFIX
from .tokenizer import split_csv_line


def _build_header_keys(header_fields: list[str]) -> list[str]:
    # untitled columns are numbered over the empty slots only
    l_keys: list[str] = []
    n_untitled = 0
    for _field in header_fields:
        if _field.strip():
            l_keys.append(_field)
            continue
        n_untitled += 1
        l_keys.append(f"{C_DYNAMIC_COLUMN_PREFIX}{n_untitled}")
    return l_keys


def _parse_lines(lines: Iterable[str], first_row: int) -> list[dict[str, str]]:
    l_keys: list[str] | None = None
    l_records: list[dict[str, str]] = []
    for _line_no, _line in enumerate(lines, start=1):
        if _line_no < first_row:
            continue
        if l_keys is None:
            l_keys = _build_header_keys(split_csv_line(_line))
            continue
        if not _line.strip("\r\n"):
            continue
        dict_record: dict[str, str] = {}
        for _idx, _value in enumerate(split_csv_line(_line)):
            c_key = (
                l_keys[_idx]
                if _idx < len(l_keys)
                else f"{C_DYNAMIC_COLUMN_PREFIX}{_idx}"
            )
            dict_record[c_key] = _value
        l_records.append(dict_record)
    return l_records


def read_csv(
    source: os.PathLike[str] | str | IO[str], *, first_row: int = 1
) -> list[dict[str, str]]:
    """
    Read a CSV file into dynamic records of strings.

    Args:
        source: Path or text stream. Paths are decoded as UTF-8, a BOM is
            skipped.
        first_row: 1-based line number of the header line.

    Returns:
        list[dict[str, str]]: One record per non-empty data line. Fields past
        the header width are keyed ``Column<index>``; duplicate header names
        keep the rightmost value.

    Raises:
        SheetArgumentError: ``source`` is ``None`` or ``first_row < 1``.
        SheetNotFoundError: ``source`` path does not exist.
    """
    if source is None:
        raise SheetArgumentError("source must not be None.")
    if first_row < 1:
        raise SheetArgumentError(f"first_row must be >= 1, got {first_row}.")

    if isinstance(source, (str, os.PathLike)):
        path_source = Path(source)
        if not path_source.is_file():
            raise SheetNotFoundError(f"CSV file not found: {path_source}")
        with path_source.open("r", encoding=C_CSV_ENCODING, newline="") as f:
            l_records = _parse_lines(f, first_row)
    elif hasattr(source, "readline"):
        l_records = _parse_lines(source, first_row)
    else:
        raise SheetNotSupportedError(f"Unsupported CSV source: {type(source).__name__}")

    logger.info(f"Read {len(l_records)} CSV records.")
    return l_records

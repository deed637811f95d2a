import itertools
import os
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import fields, is_dataclass
from pathlib import Path
from typing import Any

import polars as pl
from loguru import logger

from ...errors import (
    SheetArgumentError,
    SheetInvalidOperationError,
    SheetNotSupportedError,
)
from ..conf import C_CSV_ENCODING
from ..header import resolve_record_fields, resolve_titles, resolve_titles_from_mapping
from ..spec import ValueKind
from ..value_conversion import (
    encode_text,
    is_simple_type,
    resolve_kind_from_dtype,
    resolve_kind_from_value,
)
from .tokenizer import join_csv_fields

_NO_RECORD = object()


def _check_titles(titles: Mapping[str, str], members: Iterable[str]) -> None:
    set_members = set(members)
    for _key in titles:
        if _key not in set_members:
            raise SheetInvalidOperationError(f"Can't find title {_key}'s value")


def _encode_runtime_text(value: Any) -> str:
    return encode_text(value, resolve_kind_from_value(value))


def _prepare_text_rows(
    source: Any,
    titles: Mapping[str, str] | None,
    record_type: Any,
) -> tuple[dict[str, str], Iterator[list[str]]]:
    """Resolve the header map and a lazy iterator of encoded CSV fields."""
    if isinstance(source, pl.DataFrame):
        dict_titles = dict(titles) if titles else {_c: _c for _c in source.columns}
        _check_titles(dict_titles, source.columns)
        l_kinds = [resolve_kind_from_dtype(source.schema[_key]) for _key in dict_titles]
        rows = (
            [encode_text(_v, _k) for _v, _k in zip(_row, l_kinds)]
            for _row in source.select(list(dict_titles)).iter_rows()
        )
        return dict_titles, rows

    if isinstance(source, (str, bytes, bytearray, Mapping)) or not isinstance(
        source, Iterable
    ):
        raise SheetNotSupportedError(f"Unsupported source type: {type(source).__name__}")

    it_records = iter(source)
    first = next(it_records, _NO_RECORD)
    if first is not _NO_RECORD:
        it_records = itertools.chain([first], it_records)
        record_type = record_type or type(first)
    elif record_type is None:
        return dict(titles or {}), iter(())
    if not isinstance(record_type, type):
        raise SheetNotSupportedError(f"Unsupported record type: {record_type!r}")

    if issubclass(record_type, Mapping):
        dict_titles_derived = (
            resolve_titles_from_mapping(first) if first is not _NO_RECORD else {}
        )
        dict_titles = dict(titles) if titles else dict_titles_derived
        if first is not _NO_RECORD:
            _check_titles(dict_titles, dict_titles_derived)
        rows = (
            [_encode_runtime_text(_record.get(_key)) for _key in dict_titles]
            for _record in it_records
        )
        return dict_titles, rows

    if is_dataclass(record_type):
        dict_kinds = {_d.name: _d.kind for _d in resolve_record_fields(record_type)}
        dict_titles = dict(titles) if titles else resolve_titles(record_type)
        _check_titles(dict_titles, (_f.name for _f in fields(record_type)))
        l_pairs = [(_key, dict_kinds.get(_key, ValueKind.OBJECT)) for _key in dict_titles]
        rows = (
            [encode_text(getattr(_record, _key, None), _kind) for _key, _kind in l_pairs]
            for _record in it_records
        )
        return dict_titles, rows

    if is_simple_type(record_type):
        dict_titles = dict(titles) if titles else resolve_titles(record_type)
        _check_titles(dict_titles, resolve_titles(record_type))
        return dict_titles, ([_encode_runtime_text(_record)] for _record in it_records)

    raise SheetNotSupportedError(f"Unsupported record type: {record_type.__name__!r}")


def write_csv(
    source: Any,
    file_out: os.PathLike[str] | str,
    *,
    titles: Mapping[str, str] | None = None,
    callback: Callable[[int], None] | None = None,
    record_type: Any = None,
) -> Path:
    """
    Write records as a UTF-8 (with BOM) CSV file.

    The extension of ``file_out`` is replaced by ``.csv``. Empty or missing
    ``titles`` are derived from the record type.

    Returns:
        Path: The file written.

    Raises:
        SheetArgumentError: ``source`` is ``None``.
        SheetInvalidOperationError: the destination already exists; titles
            name missing members.
        SheetNotSupportedError: unsupported source or record type.
    """
    if source is None:
        raise SheetArgumentError("source must not be None.")
    path_out = Path(file_out).with_suffix(".csv")
    if path_out.exists():
        raise SheetInvalidOperationError(f"File already exists: {path_out}")

    dict_titles, rows = _prepare_text_rows(source, titles, record_type)
    path_out.parent.mkdir(parents=True, exist_ok=True)

    n_records = 0
    with path_out.open("w", encoding=C_CSV_ENCODING, newline="") as f:
        f.write(join_csv_fields(dict_titles.values()) + "\n")
        for _fields in rows:
            f.write(join_csv_fields(_fields) + "\n")
            n_records += 1
            if callback is not None:
                callback(n_records)

    logger.info(f"Wrote {n_records} records to `{path_out}`.")
    return path_out

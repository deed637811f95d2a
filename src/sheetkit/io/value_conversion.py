import math
import re
import types
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal, localcontext
from enum import Enum
from types import MappingProxyType
from typing import Annotated, Any, Union, get_args, get_origin
from uuid import UUID

import polars as pl

from ..errors import (
    SheetArgumentError,
    SheetFormatError,
    SheetInvalidOperationError,
)
from .conf import (
    N_DIGITS_DECIMAL,
    N_DIGITS_FLOAT32,
    N_DIGITS_FLOAT64,
    TUP_DATETIME_PARSE_FMTS,
)
from .spec import CellTag, SpecCellValue, SpecReadCell, ValueKind

################################################################################
# #region KindTables

_TUP_KIND_BY_DTYPE: tuple[tuple[Any, ValueKind], ...] = (
    (pl.Int8, ValueKind.INT8),
    (pl.UInt8, ValueKind.UINT8),
    (pl.Int16, ValueKind.INT16),
    (pl.UInt16, ValueKind.UINT16),
    (pl.Int32, ValueKind.INT32),
    (pl.UInt32, ValueKind.UINT32),
    (pl.Int64, ValueKind.INT64),
    (pl.UInt64, ValueKind.UINT64),
    (pl.Float32, ValueKind.FLOAT32),
    (pl.Float64, ValueKind.FLOAT64),
    (pl.Decimal, ValueKind.DECIMAL),
    (pl.Boolean, ValueKind.BOOLEAN),
    (pl.Datetime, ValueKind.DATETIME),
    (pl.Date, ValueKind.DATE),
    (pl.String, ValueKind.STRING),
    (pl.Categorical, ValueKind.STRING),
    (pl.Enum, ValueKind.STRING),
    (pl.Null, ValueKind.STRING),
)

DICT_INT_BOUNDS: Mapping[ValueKind, tuple[int, int]] = MappingProxyType(
    {
        ValueKind.INT8: (-(2**7), 2**7 - 1),
        ValueKind.UINT8: (0, 2**8 - 1),
        ValueKind.INT16: (-(2**15), 2**15 - 1),
        ValueKind.UINT16: (0, 2**16 - 1),
        ValueKind.INT32: (-(2**31), 2**31 - 1),
        ValueKind.UINT32: (0, 2**32 - 1),
        ValueKind.INT64: (-(2**63), 2**63 - 1),
        ValueKind.UINT64: (0, 2**64 - 1),
    }
)

# Kinds stored as numeric cells; every other kind is stored as text
# (except BOOLEAN).
SET_NUMERIC_CELL_KINDS = frozenset(
    {
        ValueKind.INT8,
        ValueKind.UINT8,
        ValueKind.INT16,
        ValueKind.UINT16,
        ValueKind.INT32,
        ValueKind.UINT32,
    }
)
SET_INTEGER_KINDS = frozenset(DICT_INT_BOUNDS)

_RE_INTEGER = re.compile(r"^[+-]?\d+$")

# #endregion
################################################################################
# #region KindResolution


def resolve_kind_from_dtype(dtype: Any) -> ValueKind:
    """Map a polars dtype (class or instance) onto a :class:`ValueKind`.

    Unlisted dtypes (lists, structs, objects ...) fall back to ``OBJECT`` and
    are written through ``str()``.
    """
    for _dtype, _kind in _TUP_KIND_BY_DTYPE:
        if dtype == _dtype:
            return _kind
    return ValueKind.OBJECT


def _resolve_kind_from_type(tp: Any) -> ValueKind | None:
    if not isinstance(tp, type) or get_origin(tp) is not None:
        return None
    # Order matters: bool is an int, IntEnum/StrEnum are int/str, datetime is a date.
    if issubclass(tp, bool):
        return ValueKind.BOOLEAN
    if issubclass(tp, Enum):
        return ValueKind.ENUM
    if issubclass(tp, int):
        return ValueKind.INT64
    if issubclass(tp, float):
        return ValueKind.FLOAT64
    if issubclass(tp, Decimal):
        return ValueKind.DECIMAL
    if issubclass(tp, str):
        return ValueKind.STRING
    if issubclass(tp, datetime):
        return ValueKind.DATETIME
    if issubclass(tp, date):
        return ValueKind.DATE
    if issubclass(tp, UUID):
        return ValueKind.UUID
    return None


def _resolve_kind_from_marker(marker: Any) -> ValueKind | None:
    if isinstance(marker, ValueKind):
        return marker
    if isinstance(marker, pl.DataType) or (
        isinstance(marker, type) and issubclass(marker, pl.DataType)
    ):
        return resolve_kind_from_dtype(marker)
    return None


def is_simple_type(tp: Any) -> bool:
    return _resolve_kind_from_type(tp) is not None


def resolve_value_kind(annotation: Any) -> tuple[ValueKind, bool, type | None] | None:
    """
    Resolve a type annotation into ``(kind, is_nullable, enum_type)``.

    ``Optional[X]`` / ``X | None`` mark the value nullable. A polars dtype or a
    :class:`ValueKind` in ``Annotated`` metadata overrides the storage kind,
    e.g. ``Annotated[int, pl.Int32]`` is written as a numeric cell.

    Returns:
        ``None`` when the annotation is not a simple (cell-sized) type.
    """
    b_nullable = False
    kind_marker: ValueKind | None = None
    while True:
        origin = get_origin(annotation)
        if origin is Annotated:
            tup_args = get_args(annotation)
            annotation = tup_args[0]
            for _marker in tup_args[1:]:
                kind_marker = _resolve_kind_from_marker(_marker) or kind_marker
            continue
        if origin is Union or origin is types.UnionType:
            tup_args = get_args(annotation)
            l_args = [_arg for _arg in tup_args if _arg is not type(None)]
            if len(l_args) != len(tup_args):
                b_nullable = True
            if len(l_args) != 1:
                return None
            annotation = l_args[0]
            continue
        break

    kind_base = _resolve_kind_from_type(annotation)
    if kind_base is None:
        return None
    enum_type = annotation if kind_base is ValueKind.ENUM else None
    return (kind_marker or kind_base), b_nullable, enum_type


def resolve_kind_from_value(value: Any) -> ValueKind:
    if value is None:
        return ValueKind.OBJECT
    return _resolve_kind_from_type(type(value)) or ValueKind.OBJECT


def default_value_for(kind: ValueKind, enum_type: type | None = None) -> Any:
    if kind in SET_INTEGER_KINDS:
        return 0
    match kind:
        case ValueKind.FLOAT32 | ValueKind.FLOAT64:
            return 0.0
        case ValueKind.DECIMAL:
            return Decimal(0)
        case ValueKind.BOOLEAN:
            return False
        case ValueKind.DATETIME:
            return datetime.min
        case ValueKind.DATE:
            return date.min
        case ValueKind.STRING:
            return ""
        case ValueKind.UUID:
            return UUID(int=0)
        case ValueKind.ENUM if enum_type is not None:
            return next(iter(enum_type))  # type: ignore[call-overload]
        case _:
            return None


# #endregion
################################################################################
# #region Encode


def _format_datetime(value: datetime) -> str:
    # manual formatting keeps 4-digit years for datetime.min
    return (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d} "
        f"{value.hour:02d}:{value.minute:02d}:{value.second:02d}."
        f"{value.microsecond // 1000:03d}"
    )


def _format_decimal(value: Any) -> str:
    dec_value = value if isinstance(value, Decimal) else Decimal(str(value))
    with localcontext() as ctx:
        ctx.prec = N_DIGITS_DECIMAL
        dec_value = +dec_value
    return format(dec_value, "f")


def _format_number(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def encode_text(value: Any, kind: ValueKind) -> str:
    """Render ``value`` with the culture-invariant text rules of ``kind``.

    Used for text cells and for every CSV field. ``None`` renders as ``""``.
    """
    if value is None:
        return ""
    if kind in SET_NUMERIC_CELL_KINDS:
        return _format_number(value)
    match kind:
        case ValueKind.INT64 | ValueKind.UINT64:
            return str(int(value))
        case ValueKind.FLOAT64:
            return format(float(value), f".{N_DIGITS_FLOAT64}g")
        case ValueKind.FLOAT32:
            return format(float(value), f".{N_DIGITS_FLOAT32}g")
        case ValueKind.DECIMAL:
            return _format_decimal(value)
        case ValueKind.BOOLEAN:
            return "True" if value else "False"
        case ValueKind.DATETIME:
            if isinstance(value, str):
                value = parse_datetime(value)
            elif not isinstance(value, datetime) and isinstance(value, date):
                value = datetime(value.year, value.month, value.day)
            return _format_datetime(value)
        case ValueKind.DATE:
            if isinstance(value, str):
                value = parse_datetime(value)
            if isinstance(value, datetime):
                value = value.date()
            return value.isoformat()
        case ValueKind.ENUM:
            return value.name if isinstance(value, Enum) else str(value)
        case _:
            return str(value)


def encode_cell_value(value: Any, kind: ValueKind) -> SpecCellValue:
    """Choose the cell tag for ``value`` from its declared ``kind``.

    64-bit integers, floats, decimals and datetimes are stored as text so the
    exact value survives the round trip through Excel's double-precision
    numbers.
    """
    if value is None:
        return SpecCellValue(CellTag.BLANK)
    if kind in SET_NUMERIC_CELL_KINDS:
        n_value = float(value)
        if not math.isfinite(n_value):
            return SpecCellValue(CellTag.BLANK)
        return SpecCellValue(CellTag.NUMERIC, n_value)
    if kind is ValueKind.BOOLEAN:
        return SpecCellValue(CellTag.BOOLEAN, bool(value))
    return SpecCellValue(CellTag.TEXT, encode_text(value, kind))


# #endregion
################################################################################
# #region Decode


def parse_datetime(text: str) -> datetime:
    c_text = text.strip()
    try:
        return datetime.fromisoformat(c_text)
    except ValueError:
        pass
    for _fmt in TUP_DATETIME_PARSE_FMTS:
        try:
            return datetime.strptime(c_text, _fmt)
        except ValueError:
            continue
    raise ValueError(f"Unrecognized datetime text: {text!r}")


def _parse_enum(value: Any, enum_type: type | None) -> Enum:
    if enum_type is None or not issubclass(enum_type, Enum):
        raise SheetFormatError(f"No enum type given to convert {value!r}.")
    if isinstance(value, enum_type):
        return value
    if isinstance(value, str):
        c_text = value.strip()
        if c_text in enum_type.__members__:
            return enum_type[c_text]
        try:
            return enum_type(c_text)
        except ValueError:
            pass
        c_number = c_text.strip("\"'")
        if _RE_INTEGER.fullmatch(c_number):
            return enum_type(int(c_number))
        c_lower = c_text.lower()
        for _name, _member in enum_type.__members__.items():
            if _name.lower() == c_lower:
                return _member
        raise ValueError(f"{value!r} is not a member of {enum_type.__name__}")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return enum_type(value)


def _convert_to_int(value: Any, kind: ValueKind) -> int:
    if isinstance(value, bool):
        n_value = int(value)
    elif isinstance(value, int):
        n_value = value
    elif isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"{value!r} is not a finite number")
        # round half to even, like Excel-side numeric conversion
        n_value = int(round(value))
    elif isinstance(value, str):
        n_value = int(value.strip())
    else:
        raise TypeError(f"{type(value).__name__} is not convertible to {kind}")

    n_min, n_max = DICT_INT_BOUNDS[kind]
    if not n_min <= n_value <= n_max:
        raise SheetFormatError(f"Value {n_value} is out of range for {kind}.")
    return n_value


def _convert_to_str(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "True" if value else "False"
    if isinstance(value, float):
        return _format_number(value)
    if isinstance(value, datetime):
        return _format_datetime(value)
    return str(value)


def _convert_raw(value: Any, kind: ValueKind, enum_type: type | None) -> Any:
    if kind in SET_INTEGER_KINDS:
        return _convert_to_int(value, kind)
    match kind:
        case ValueKind.FLOAT32 | ValueKind.FLOAT64:
            if isinstance(value, (datetime, date)):
                raise TypeError(f"{type(value).__name__} is not convertible to {kind}")
            return float(value.strip() if isinstance(value, str) else value)
        case ValueKind.DECIMAL:
            if isinstance(value, float):
                return Decimal(repr(value))
            if isinstance(value, str):
                return Decimal(value.strip())
            if isinstance(value, (int, Decimal)):
                return Decimal(value)
            raise TypeError(f"{type(value).__name__} is not convertible to {kind}")
        case ValueKind.BOOLEAN:
            if isinstance(value, (bool, int, float)):
                return bool(value)
            c_lower = str(value).strip().lower()
            if c_lower in ("true", "false"):
                return c_lower == "true"
            raise ValueError(f"{value!r} is not a valid boolean")
        case ValueKind.DATETIME:
            if isinstance(value, datetime):
                return value
            if isinstance(value, date):
                return datetime(value.year, value.month, value.day)
            if isinstance(value, str):
                return parse_datetime(value)
            raise TypeError(f"{type(value).__name__} is not convertible to {kind}")
        case ValueKind.DATE:
            if isinstance(value, datetime):
                return value.date()
            if isinstance(value, date):
                return value
            if isinstance(value, str):
                return parse_datetime(value).date()
            raise TypeError(f"{type(value).__name__} is not convertible to {kind}")
        case ValueKind.STRING:
            return _convert_to_str(value)
        case ValueKind.UUID:
            return UUID(str(value).strip())
        case ValueKind.ENUM:
            return _parse_enum(value, enum_type)
        case _:
            return value


def decode_cell_value(
    cell: SpecReadCell | None,
    kind: ValueKind,
    *,
    enum_type: type | None = None,
) -> Any:
    """
    Decode a cell into a value of ``kind``.

    The decode path follows the cell's own tag: a numeric cell can still be
    read into a string member and a text cell is parsed into numbers, enums,
    UUIDs and datetimes.

    Args:
        cell: Cell as read from the workbook, ``None`` when the cell is absent.
        kind: Declared kind of the target member. ``OBJECT`` returns the raw
            value.
        enum_type: Enum class when ``kind`` is ``ENUM``.

    Returns:
        The decoded value, ``None`` for absent and blank cells and for dates
        whose backing number does not resolve.

    Raises:
        SheetInvalidOperationError: formula whose cached result is an error.
        SheetArgumentError: error cell that is not a formula result.
        SheetFormatError: value cannot be converted to ``kind``.
    """
    if cell is None:
        return None

    tag = cell.tag
    if tag is CellTag.FORMULA:
        if cell.cached_tag in (None, CellTag.ERROR, CellTag.FORMULA):
            raise SheetInvalidOperationError("Formula resulted in an error.")
        return decode_cell_value(
            SpecReadCell(cell.cached_tag, cell.value), kind, enum_type=enum_type
        )
    if tag is CellTag.ERROR:
        raise SheetArgumentError(f"Unknown cell type: {tag}")
    if tag is CellTag.BLANK or cell.value is None:
        return None
    if kind is ValueKind.OBJECT:
        return cell.value

    try:
        return _convert_raw(cell.value, kind, enum_type)
    except SheetFormatError:
        raise
    except (ValueError, TypeError, ArithmeticError) as e:
        raise SheetFormatError(
            f"Cannot convert value {cell.value!r} ({tag} cell) to {kind}: {e}"
        ) from e


# #endregion
################################################################################

# "Facts/Results/Plans" shared by the spreadsheet and CSV marshaling paths.

from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from enum import StrEnum
from pathlib import Path
from typing import Any

from ..errors import SheetArgumentError

################################################################################
# #region Enums


class WriteOperation(StrEnum):
    NONE = "none"
    APPEND = "append"


class ExcelVersion(StrEnum):
    XLSX = "xlsx"
    XLS = "xls"
    CSV = "csv"


class CellTag(StrEnum):
    BLANK = "blank"
    NUMERIC = "numeric"
    TEXT = "text"
    BOOLEAN = "boolean"
    TEMPORAL = "temporal"
    FORMULA = "formula"
    ERROR = "error"


class ValueKind(StrEnum):
    INT8 = "int8"
    UINT8 = "uint8"
    INT16 = "int16"
    UINT16 = "uint16"
    INT32 = "int32"
    UINT32 = "uint32"
    INT64 = "int64"
    UINT64 = "uint64"
    FLOAT32 = "float32"
    FLOAT64 = "float64"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    DATE = "date"
    STRING = "string"
    ENUM = "enum"
    UUID = "uuid"
    OBJECT = "object"


# #endregion
################################################################################
# #region WriteOptions

_OPTION_KEY_ALIASES: Mapping[str, str] = {
    "AllowAppend": "allow_append",
    "SheetMaxRecord": "sheet_max_record",
    "RowAccessSize": "row_access_size",
}


@dataclass(frozen=True, slots=True)
class SpecWriteOptions:
    allow_append: WriteOperation = WriteOperation.NONE
    sheet_max_record: int = 1_000_000
    row_access_size: int = 1_000

    def __post_init__(self) -> None:
        if self.sheet_max_record <= 0:
            raise SheetArgumentError(
                f"sheet_max_record must be > 0, got {self.sheet_max_record}."
            )
        if self.row_access_size < 0:
            raise SheetArgumentError(
                f"row_access_size must be >= 0, got {self.row_access_size}."
            )
        # accept plain strings such as "append" from config files
        object.__setattr__(self, "allow_append", WriteOperation(self.allow_append))

    def with_(self, **kwargs: Any) -> "SpecWriteOptions":
        return replace(self, **kwargs)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "SpecWriteOptions":
        """Bind options from a configuration mapping.

        Keys may be snake_case field names or the PascalCase names used by
        configuration files (``SheetMaxRecord`` ...).
        """
        set_field_names = {_f.name for _f in fields(cls)}
        dict_kwargs: dict[str, Any] = {}
        for _key, _value in mapping.items():
            c_name = _OPTION_KEY_ALIASES.get(_key, _key)
            if c_name not in set_field_names:
                raise SheetArgumentError(f"Unknown write option: {_key!r}")
            if c_name == "allow_append" and isinstance(_value, str):
                _value = _value.lower()
            dict_kwargs[c_name] = _value
        return cls(**dict_kwargs)


# #endregion
################################################################################
# #region CellValues


@dataclass(frozen=True, slots=True)
class SpecCellValue:
    """Encoded cell content ready to be handed to a workbook backend."""

    tag: CellTag
    value: Any = None


@dataclass(frozen=True, slots=True)
class SpecReadCell:
    """Cell content as read from a workbook backend.

    ``cached_tag`` is only set for formula cells and names the type of the
    cached formula result held in ``value``.
    """

    tag: CellTag
    value: Any = None
    cached_tag: CellTag | None = None


# #endregion
################################################################################
# #region Records


@dataclass(frozen=True, slots=True)
class SpecFieldDescriptor:
    name: str
    title: str
    kind: ValueKind
    is_nullable: bool = False
    enum_type: type | None = None
    is_init: bool = True


# #endregion
################################################################################
# #region SheetLayout


@dataclass(frozen=True, slots=True)
class SpecSheetSegment:
    sheet_offset: int
    record_start_inclusive: int
    record_end_exclusive: int

    @property
    def n_records(self) -> int:
        return self.record_end_exclusive - self.record_start_inclusive


# #endregion
################################################################################
# #region Report


@dataclass(slots=True)
class SpecWriteReport:
    file_out: Path
    sheets: list[str] = field(default_factory=list)
    n_records: int = 0
    warnings: list[str] = field(default_factory=list)

    def warn(self, msg: str) -> None:
        self.warnings.append(str(msg))


# #endregion
################################################################################

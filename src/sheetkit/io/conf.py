from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from .spec import ExcelVersion, SpecWriteOptions

N_NROWS_XLSX_MAX = 1_048_576
N_NROWS_XLS_MAX = 65_536
N_LEN_EXCEL_SHEET_NAME_MAX = 31
N_LEN_CELL_TEXT_MAX = 32_767
N_TUPLE_ARITY_MAX = 7
TUP_EXCEL_ILLEGAL = ("*", ":", "?", "/", "\\", "[", "]")

DICT_NROWS_MAX_BY_VERSION: Mapping[ExcelVersion, int] = MappingProxyType(
    {
        ExcelVersion.XLSX: N_NROWS_XLSX_MAX,
        ExcelVersion.XLS: N_NROWS_XLS_MAX,
    }
)
DICT_VERSION_BY_SUFFIX: Mapping[str, ExcelVersion] = MappingProxyType(
    {
        ".xlsx": ExcelVersion.XLSX,
        ".xls": ExcelVersion.XLS,
    }
)

# Workbook file signatures: zip container (xlsx) and OLE2 compound document (xls).
BYTES_MAGIC_XLSX = b"PK\x03\x04"
BYTES_MAGIC_XLS = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"

# Strategy/Preference/Adjustable Parameters for marshaling.

C_SHEET_NAME_PREFIX = "sheet"
C_SCALAR_COLUMN_KEY = "A"
C_DYNAMIC_COLUMN_PREFIX = "Column"
C_TITLE_METADATA_KEY = "title"
C_CSV_ENCODING = "utf-8-sig"
C_CSV_DELIMITER = ","
C_CSV_QUOTE = '"'

TUP_DATETIME_PARSE_FMTS = (
    "%Y-%m-%d %H:%M:%S.%f",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y/%m/%d %H:%M:%S.%f",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y",
)

N_DIGITS_FLOAT64 = 17
N_DIGITS_FLOAT32 = 9
N_DIGITS_DECIMAL = 29

N_WIDTH_HEADER_MIN = 10
N_WIDTH_HEADER_MAX = 100
N_WIDTH_XLS_UNIT = 256

# 字段名对齐 XlsxWriter format properties keys
DICT_HEADER_FORMAT: Mapping[str, Any] = MappingProxyType(
    {"bold": True, "align": "center", "font_size": 10}
)

DEFAULT_WRITE_OPTIONS = SpecWriteOptions()

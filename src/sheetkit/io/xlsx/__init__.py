from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sheetkit._optional_deps import import_optional_attr

__all__ = [
    "write_excel",
    "read_excel",
    "read_excel_many",
    "create_workbook",
    "open_workbook",
    "plan_sheet_segments",
    "locate_record",
]

if TYPE_CHECKING:
    from .backend import create_workbook, open_workbook
    from .reader import read_excel, read_excel_many
    from .util import locate_record, plan_sheet_segments
    from .writer import write_excel

_DICT_ATTR_MODULES: dict[str, str] = {
    "write_excel": ".writer",
    "read_excel": ".reader",
    "read_excel_many": ".reader",
    "create_workbook": ".backend",
    "open_workbook": ".backend",
    "plan_sheet_segments": ".util",
    "locate_record": ".util",
}


def __getattr__(name: str) -> Any:
    module_name = _DICT_ATTR_MODULES.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    return import_optional_attr(
        module_name,
        name,
        package=__name__,
        feature="sheetkit.io.xlsx",
        requires=("polars", "xlsxwriter", "openpyxl"),
    )

from __future__ import annotations

from importlib import import_module
from importlib.metadata import PackageNotFoundError, version
from types import ModuleType
from typing import TYPE_CHECKING, Any

from .errors import (
    SheetArgumentError,
    SheetFormatError,
    SheetInvalidOperationError,
    SheetKitError,
    SheetNotFoundError,
    SheetNotSupportedError,
)

__all__ = [
    "__version__",
    "io_xlsx",
    "io_csv",
    "cli_console",
    "SheetMarshal",
    "SpecWriteOptions",
    "WriteOperation",
    "ExcelVersion",
    "ValueKind",
    "column",
    "write_excel",
    "read_excel",
    "read_excel_many",
    "write_csv",
    "read_csv",
    "SheetKitError",
    "SheetNotFoundError",
    "SheetNotSupportedError",
    "SheetInvalidOperationError",
    "SheetFormatError",
    "SheetArgumentError",
]

try:
    __version__ = version("sheetkit")
except PackageNotFoundError:
    __version__ = "0.0.0"

if TYPE_CHECKING:
    import sheetkit.cli.console as cli_console
    import sheetkit.io.csv as io_csv
    import sheetkit.io.xlsx as io_xlsx

    from .io.csv.reader import read_csv
    from .io.csv.writer import write_csv
    from .io.header import column
    from .io.spec import ExcelVersion, SpecWriteOptions, ValueKind, WriteOperation
    from .io.xlsx.reader import read_excel, read_excel_many
    from .io.xlsx.writer import write_excel
    from .marshal import SheetMarshal

_ALIAS_MODULES: dict[str, str] = {
    "cli_console": "sheetkit.cli.console",
    "io_xlsx": "sheetkit.io.xlsx",
    "io_csv": "sheetkit.io.csv",
}

_ATTR_MODULES: dict[str, str] = {
    "SheetMarshal": "sheetkit.marshal",
    "SpecWriteOptions": "sheetkit.io.spec",
    "WriteOperation": "sheetkit.io.spec",
    "ExcelVersion": "sheetkit.io.spec",
    "ValueKind": "sheetkit.io.spec",
    "column": "sheetkit.io.header",
    "write_excel": "sheetkit.io.xlsx.writer",
    "read_excel": "sheetkit.io.xlsx.reader",
    "read_excel_many": "sheetkit.io.xlsx.reader",
    "write_csv": "sheetkit.io.csv.writer",
    "read_csv": "sheetkit.io.csv.reader",
}


def __getattr__(name: str) -> Any:
    module_name = _ALIAS_MODULES.get(name)
    if module_name is not None:
        module_loaded: ModuleType = import_module(module_name)
        globals()[name] = module_loaded
        return module_loaded

    module_name = _ATTR_MODULES.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    attr = getattr(import_module(module_name), name)
    globals()[name] = attr
    return attr


def __dir__() -> list[str]:
    return sorted(set(globals()) | set(__all__))

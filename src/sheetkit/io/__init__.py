from __future__ import annotations

from importlib import import_module
from types import ModuleType
from typing import TYPE_CHECKING, Any

__all__ = ["xlsx", "csv"]

if TYPE_CHECKING:
    import sheetkit.io.csv as csv
    import sheetkit.io.xlsx as xlsx

_ALIAS_MODULES: dict[str, str] = {
    "xlsx": "sheetkit.io.xlsx",
    "csv": "sheetkit.io.csv",
}


def __getattr__(name: str) -> Any:
    module_name = _ALIAS_MODULES.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

    module_loaded: ModuleType = import_module(module_name)
    globals()[name] = module_loaded
    return module_loaded


def __dir__() -> list[str]:
    return sorted(set(globals()) | set(__all__))

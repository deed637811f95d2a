from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sheetkit._optional_deps import import_optional_attr

__all__ = ["write_csv", "read_csv", "split_csv_line", "join_csv_fields"]

if TYPE_CHECKING:
    from .reader import read_csv
    from .tokenizer import join_csv_fields, split_csv_line
    from .writer import write_csv

_DICT_ATTR_MODULES: dict[str, str] = {
    "write_csv": ".writer",
    "read_csv": ".reader",
    "split_csv_line": ".tokenizer",
    "join_csv_fields": ".tokenizer",
}


def __getattr__(name: str) -> Any:
    module_name = _DICT_ATTR_MODULES.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    return import_optional_attr(
        module_name,
        name,
        package=__name__,
        feature="sheetkit.io.csv",
        requires=("polars",),
    )

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure src-layout imports work when running tests from repo checkout.
SRC_DIR = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_DIR))

from sheetkit._optional_deps import import_optional_attr, import_optional_module  # noqa: E402


def test_missing_extra_names_the_install_command() -> None:
    with pytest.raises(ModuleNotFoundError) as exc_info:
        import_optional_module(
            "sheetkit_missing_writer",
            feature="Writing .xls workbooks",
            requires=("sheetkit_missing_writer",),
            extra="xls",
        )

    message = str(exc_info.value)
    assert "Writing .xls workbooks is unavailable" in message
    assert 'pip install "sheetkit[xls]"' in message
    assert exc_info.value.name == "sheetkit_missing_writer"


def test_missing_core_dependency_points_to_plain_install() -> None:
    with pytest.raises(ModuleNotFoundError, match="`pip install sheetkit`"):
        import_optional_module(
            "sheetkit_missing_core.sub",
            feature="sheetkit.io.xlsx",
            requires=("sheetkit_missing_core",),
        )


def test_unrelated_missing_module_is_reraised_untouched() -> None:
    with pytest.raises(ModuleNotFoundError) as exc_info:
        import_optional_module(
            "definitely_not_installed_pkg",
            feature="sheetkit.io.xlsx",
            requires=("xlrd",),
            extra="xls",
        )

    assert "is unavailable" not in str(exc_info.value)


def test_attr_is_loaded_from_relative_module() -> None:
    split_csv_line = import_optional_attr(
        ".tokenizer",
        "split_csv_line",
        package="sheetkit.io.csv",
        feature="sheetkit.io.csv",
        requires=("polars",),
    )

    assert split_csv_line('a,"b,c"') == ["a", "b,c"]

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure src-layout imports work when running tests from repo checkout.
SRC_DIR = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_DIR))

from sheetkit.io.csv.tokenizer import join_csv_fields, split_csv_line  # noqa: E402


@pytest.mark.parametrize(
    ("line", "expected"),
    [
        ("a,b,c", ["a", "b", "c"]),
        ('a,"b,c",d', ["a", "b,c", "d"]),
        ("a,,b", ["a", "", "b"]),
        ("", [""]),
        ("x,y\r\n", ["x", "y"]),
        ('say "hi",there', ["say hi", "there"]),
        ('"1,2,3"', ["1,2,3"]),
    ],
)
def test_split_csv_line(line: str, expected: list[str]) -> None:
    assert split_csv_line(line) == expected


def test_join_csv_fields_quotes_only_fields_with_commas() -> None:
    assert join_csv_fields(["a", "b,c", ""]) == 'a,"b,c",'


def test_join_then_split_restores_fields_without_quotes() -> None:
    l_fields = ["Smith, John", "42", "", "plain"]
    assert split_csv_line(join_csv_fields(l_fields)) == l_fields

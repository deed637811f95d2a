from __future__ import annotations

import sys
from pathlib import Path

import pytest

pytest.importorskip("rich_argparse")

# Ensure src-layout imports work when running tests from repo checkout.
SRC_DIR = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_DIR))

from sheetkit.cli.main import build_parser, main  # noqa: E402
from sheetkit.io.xlsx import read_excel  # noqa: E402


def _write_source_csv(tmp_path: Path) -> Path:
    path_src = tmp_path / "people.csv"
    path_src.write_text("name,age\nann,41\nbob,7\n", encoding="utf-8-sig")
    return path_src


def test_parser_subcommands_and_defaults() -> None:
    parser = build_parser()

    args = parser.parse_args(["head", "in.xlsx"])
    assert args.command == "head"
    assert args.rows == 10
    assert args.sheet_index == 0
    assert args.first_row == 1

    args = parser.parse_args(["convert", "in.csv", "out.xlsx", "--append"])
    assert args.command == "convert"
    assert args.dst == Path("out.xlsx")
    assert args.append is True


def test_convert_csv_to_xlsx(tmp_path: Path) -> None:
    path_src = _write_source_csv(tmp_path)
    path_dst = tmp_path / "people.xlsx"

    assert main(["convert", str(path_src), str(path_dst)]) == 0
    assert read_excel(path_dst) == [
        {"name": "ann", "age": "41"},
        {"name": "bob", "age": "7"},
    ]


def test_convert_xlsx_back_to_csv(tmp_path: Path) -> None:
    path_src = _write_source_csv(tmp_path)
    path_xlsx = tmp_path / "people.xlsx"
    path_csv = tmp_path / "copy.csv"

    assert main(["convert", str(path_src), str(path_xlsx)]) == 0
    assert main(["convert", str(path_xlsx), str(path_csv)]) == 0
    assert path_csv.read_text(encoding="utf-8-sig") == "name,age\nann,41\nbob,7\n"


def test_head_prints_records(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path_src = _write_source_csv(tmp_path)

    assert main(["head", str(path_src), "-n", "1"]) == 0

    c_out = capsys.readouterr().out
    assert "ann" in c_out
    assert "bob" not in c_out
    assert "2 records" in c_out


def test_errors_return_non_zero(tmp_path: Path) -> None:
    assert main(["head", str(tmp_path / "missing.xlsx")]) == 1

    path_src = _write_source_csv(tmp_path)
    path_dst = tmp_path / "people.xlsx"
    assert main(["convert", str(path_src), str(path_dst)]) == 0
    assert main(["convert", str(path_src), str(path_dst)]) == 1


def test_bad_arguments_exit_with_usage_error() -> None:
    with pytest.raises(SystemExit) as exc_info:
        main(["convert", "only-one-path.csv"])
    assert exc_info.value.code == 2

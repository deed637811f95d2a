"""``sheetkit`` command line tool.

Subcommands:

- ``head``: print the first records of a sheet or CSV file as a table.
- ``convert``: re-marshal dynamic records between ``.csv``, ``.xlsx`` and ``.xls``.
"""

import argparse
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich_argparse import ArgumentDefaultsRichHelpFormatter, RawTextRichHelpFormatter

from ..errors import SheetKitError
from ..io.csv.reader import read_csv
from ..io.csv.writer import write_csv
from ..io.spec import SpecWriteOptions, WriteOperation
from ..io.xlsx.reader import read_excel
from ..io.xlsx.writer import write_excel
from .console import CliHeadings, build_records_table


class SmartFormatter(ArgumentDefaultsRichHelpFormatter, RawTextRichHelpFormatter):
    """
    Keep manual newlines/indentation AND show (default: ...) in help.
    """

    pass


def _read_records(path_src: Path, *, sheet_index: int, first_row: int) -> list[Any]:
    if path_src.suffix.lower() == ".csv":
        return read_csv(path_src, first_row=first_row)
    return read_excel(path_src, dict, first_row=first_row, sheet_index=sheet_index)


def _add_source_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("src", type=Path, help="Source .xlsx / .xls / .csv file.")
    parser.add_argument(
        "--sheet-index",
        type=int,
        default=0,
        help="0-based sheet to read (workbooks only).",
    )
    parser.add_argument(
        "--first-row",
        type=int,
        default=1,
        help="Workbooks: 0-based index of the first data row (the header is row 0).\n"
        "CSV: 1-based line number of the header.",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sheetkit",
        description="Marshal records between spreadsheets and CSV files.",
        formatter_class=SmartFormatter,
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Log debug messages to stderr."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    parser_head = subparsers.add_parser(
        "head",
        help="Print the first records as a table.",
        formatter_class=SmartFormatter,
    )
    _add_source_args(parser_head)
    parser_head.add_argument(
        "-n", "--rows", type=int, default=10, help="Number of records to print."
    )
    parser_head.set_defaults(func=_run_head)

    parser_convert = subparsers.add_parser(
        "convert",
        help="Convert records to another format.\n"
        "The destination extension (.csv / .xlsx / .xls) selects the format.",
        formatter_class=SmartFormatter,
    )
    _add_source_args(parser_convert)
    parser_convert.add_argument("dst", type=Path, help="Destination file.")
    parser_convert.add_argument(
        "--append",
        action="store_true",
        help="Append sheets to an existing workbook.",
    )
    parser_convert.add_argument(
        "--sheet-max-record",
        type=int,
        default=SpecWriteOptions().sheet_max_record,
        help="Records per sheet before continuing on a new sheet.",
    )
    parser_convert.set_defaults(func=_run_convert)
    return parser


def _run_head(args: argparse.Namespace, headings: CliHeadings) -> int:
    l_records = _read_records(
        args.src, sheet_index=args.sheet_index, first_row=args.first_row
    )
    headings.h1(args.src.name)
    headings.console.print(build_records_table(l_records[: max(args.rows, 0)]))
    headings.h2(f"{len(l_records)} records")
    return 0


def _run_convert(args: argparse.Namespace, headings: CliHeadings) -> int:
    l_records = _read_records(
        args.src, sheet_index=args.sheet_index, first_row=args.first_row
    )
    if args.dst.suffix.lower() == ".csv":
        path_out = write_csv(l_records, args.dst, record_type=dict)
        headings.console.print(f"Wrote {len(l_records)} records to {path_out}")
        return 0

    cfg_options = SpecWriteOptions(
        allow_append=WriteOperation.APPEND if args.append else WriteOperation.NONE,
        sheet_max_record=args.sheet_max_record,
    )
    report = write_excel(l_records, args.dst, options=cfg_options, record_type=dict)
    headings.console.print(
        f"Wrote {report.n_records} records to {report.file_out} "
        f"({', '.join(report.sheets)})"
    )
    for _warning in report.warnings:
        headings.console.print(f"[yellow]warning:[/yellow] {_warning}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if args.verbose else "WARNING")

    headings = CliHeadings(console=Console())
    try:
        return args.func(args, headings)
    except SheetKitError as e:
        headings.console.print(f"[red]error:[/red] {escape(str(e))}")
        return 1


if __name__ == "__main__":
    sys.exit(main())

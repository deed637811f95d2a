from collections.abc import Iterable

from ..conf import C_CSV_DELIMITER, C_CSV_QUOTE


def split_csv_line(line: str) -> list[str]:
    """
    Split one CSV line into fields.

    A double quote toggles the quoted state and is dropped from the value;
    delimiters inside quotes do not split. Escaped quotes (``""``) are not
    recognized.

    Examples:
        >>> split_csv_line('a,"b,c",d')
        ['a', 'b,c', 'd']
    """
    l_fields: list[str] = []
    l_chars: list[str] = []
    b_in_quotes = False
    for _char in line.rstrip("\r\n"):
        if _char == C_CSV_QUOTE:
            b_in_quotes = not b_in_quotes
            continue
        if _char == C_CSV_DELIMITER and not b_in_quotes:
            l_fields.append("".join(l_chars))
            l_chars = []
            continue
        l_chars.append(_char)
    l_fields.append("".join(l_chars))
    return l_fields


def join_csv_fields(fields: Iterable[str]) -> str:
    """Join fields with commas, quoting the ones that contain a comma."""
    return C_CSV_DELIMITER.join(
        f"{C_CSV_QUOTE}{_field}{C_CSV_QUOTE}" if C_CSV_DELIMITER in _field else _field
        for _field in fields
    )

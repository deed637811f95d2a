"""Header maps: member name -> display title, for typed and dynamic records."""

import re
from collections.abc import Mapping, Sequence
from dataclasses import MISSING, field, fields, is_dataclass
from functools import cache
from typing import Any, get_type_hints

from loguru import logger

from ..errors import SheetNotSupportedError
from .conf import C_DYNAMIC_COLUMN_PREFIX, C_SCALAR_COLUMN_KEY, C_TITLE_METADATA_KEY
from .spec import SpecFieldDescriptor
from .value_conversion import is_simple_type, resolve_value_kind

_RE_NON_WORD = re.compile(r"\W")
_RE_UNDERSCORE_RUN = re.compile(r"_+")


def column(
    title: str | None = None,
    *,
    default: Any = MISSING,
    default_factory: Any = MISSING,
    **kwargs: Any,
) -> Any:
    """``dataclasses.field`` carrying a display title.

    Examples:
        >>> @dataclass
        ... class Person:
        ...     name: str = column("Full Name", default="")
    """
    dict_metadata = dict(kwargs.pop("metadata", None) or {})
    if title is not None:
        dict_metadata[C_TITLE_METADATA_KEY] = title
    return field(
        default=default,
        default_factory=default_factory,
        metadata=dict_metadata,
        **kwargs,
    )


@cache
def resolve_record_fields(record_type: type) -> tuple[SpecFieldDescriptor, ...]:
    """
    Describe the simple-typed fields of a dataclass, in declaration order.

    Fields whose annotation is not a simple type (lists, nested records ...)
    are skipped. Results are cached per type.

    Raises:
        SheetNotSupportedError: ``record_type`` is not a dataclass type.
    """
    if not (isinstance(record_type, type) and is_dataclass(record_type)):
        raise SheetNotSupportedError(
            f"Record type must be a dataclass, got {record_type!r}."
        )

    dict_hints = get_type_hints(record_type, include_extras=True)
    l_descriptors: list[SpecFieldDescriptor] = []
    for _field in fields(record_type):
        resolved = resolve_value_kind(dict_hints.get(_field.name, _field.type))
        if resolved is None:
            logger.debug(
                f"Skip non-simple field `{record_type.__name__}.{_field.name}`."
            )
            continue
        kind, b_nullable, enum_type = resolved
        c_title = _field.metadata.get(C_TITLE_METADATA_KEY) or _field.name
        l_descriptors.append(
            SpecFieldDescriptor(
                name=_field.name,
                title=str(c_title),
                kind=kind,
                is_nullable=b_nullable,
                enum_type=enum_type,
                is_init=_field.init,
            )
        )
    return tuple(l_descriptors)


def resolve_titles(record_type: type) -> dict[str, str]:
    if is_simple_type(record_type):
        return {C_SCALAR_COLUMN_KEY: C_SCALAR_COLUMN_KEY}
    return {_d.name: _d.title for _d in resolve_record_fields(record_type)}


def resolve_titles_from_mapping(record: Mapping[Any, Any]) -> dict[str, str]:
    return {str(_key): str(_key) for _key in record}


def sanitize_key(title: Any, col_idx: int) -> str:
    """
    Turn a header cell into a dynamic record key.

    Args:
        title: Header cell content; ``None`` or blank text means "untitled".
        col_idx: 0-based column index.

    Examples:
        >>> sanitize_key("Unit Price ($)", 0)
        'Unit_Price'
        >>> sanitize_key("1st", 2)
        '_1st'
        >>> sanitize_key(None, 2)
        'Column3'
    """
    c_title = "" if title is None else str(title)
    if not c_title.strip():
        return f"{C_DYNAMIC_COLUMN_PREFIX}{col_idx + 1}"

    c_key = _RE_NON_WORD.sub("_", c_title)
    c_key = _RE_UNDERSCORE_RUN.sub("_", c_key).strip("_")
    if not c_key:
        return f"_{col_idx + 1}"
    if c_key[0].isdigit():
        c_key = f"_{c_key}"
    return c_key


def build_dynamic_keys(header_cells: Sequence[Any]) -> list[str]:
    return [sanitize_key(_title, _idx) for _idx, _title in enumerate(header_cells)]


def map_header_columns(
    descriptors: Sequence[SpecFieldDescriptor],
    header_cells: Sequence[Any],
) -> dict[int, SpecFieldDescriptor]:
    """Bind header columns to fields: display title first, then field name.

    The leftmost header cell wins when a text occurs twice.
    """
    dict_col_by_text: dict[str, int] = {}
    for _idx, _cell in enumerate(header_cells):
        if _cell is None:
            continue
        dict_col_by_text.setdefault(str(_cell).strip(), _idx)

    dict_field_by_col: dict[int, SpecFieldDescriptor] = {}
    for _descriptor in descriptors:
        col_idx = dict_col_by_text.get(_descriptor.title)
        if col_idx is None:
            col_idx = dict_col_by_text.get(_descriptor.name)
        if col_idx is None or col_idx in dict_field_by_col:
            continue
        dict_field_by_col[col_idx] = _descriptor
    return dict_field_by_col

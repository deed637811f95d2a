from __future__ import annotations

from collections.abc import Sequence
from importlib import import_module
from types import ModuleType
from typing import Any


def _install_hint(extra: str | None) -> str:
    return f'pip install "sheetkit[{extra}]"' if extra else "pip install sheetkit"


def import_optional_module(
    module_name: str,
    *,
    feature: str,
    requires: Sequence[str],
    extra: str | None = None,
    package: str | None = None,
) -> ModuleType:
    """Import ``module_name``, turning a missing distribution from ``requires``
    into an install hint.

    Any other missing module is re-raised untouched.
    """
    try:
        return import_module(module_name, package=package)
    except ModuleNotFoundError as exc:
        c_missing = exc.name or ""
        set_required = {_name.partition(".")[0] for _name in requires}
        if c_missing.partition(".")[0] not in set_required:
            raise
        raise ModuleNotFoundError(
            f"{feature} is unavailable: missing `{c_missing}`. "
            f"Install it with `{_install_hint(extra)}`.",
            name=c_missing,
        ) from exc


def import_optional_attr(module_name: str, attr_name: str, **kwargs: Any) -> Any:
    return getattr(import_optional_module(module_name, **kwargs), attr_name)

"""Exception hierarchy for sheetkit.

Every error derives from :class:`SheetKitError` and from the closest builtin
exception, so callers may catch either ``SheetNotFoundError`` or plain
``FileNotFoundError``.
"""

from __future__ import annotations


class SheetKitError(Exception):
    """Base exception for sheetkit."""


class SheetNotFoundError(SheetKitError, FileNotFoundError):
    """Source file or stream does not exist."""


class SheetNotSupportedError(SheetKitError, TypeError):
    """Source shape, target type, extension or file format is not supported."""


class SheetInvalidOperationError(SheetKitError, RuntimeError):
    """The request cannot be carried out in the current state.

    Raised when the destination exists and appending is not allowed, when a
    tuple element does not fit on one sheet, when a formula cell caches an
    error, and when titles name members the records do not have.
    """


class SheetFormatError(SheetKitError, ValueError):
    """A value cannot be converted into the requested type."""


class SheetArgumentError(SheetKitError, ValueError):
    """An argument is missing or invalid."""

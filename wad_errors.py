"""Exception types raised while reading IWAD containers and decoding their lumps."""
from __future__ import annotations

from typing import Optional


class FormatError(ValueError):
    """Base class for malformed or unsupported input."""

    def __init__(self, message: str, lump: Optional[str] = None) -> None:
        if lump is not None:
            message = f"{lump}: {message}"
        super().__init__(message)
        self.lump = lump


# Container-level errors. Construction is all-or-nothing.


class InvalidSignature(FormatError):
    pass


class TruncatedHeader(FormatError):
    pass


class TruncatedDirectoryEntry(FormatError):
    pass


class MissingPalette(FormatError):
    pass


# Decode-level errors, scoped to a single lump.


class MalformedHeader(FormatError):
    pass


class MalformedColumn(FormatError):
    pass


class LumpNotFound(KeyError):
    """Raised when a lump name is not present in the directory."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.lump = name

    def __str__(self) -> str:
        return f"Lump not found: {self.lump!r}"

"""Error taxonomy.

Each category maps to its own CLI exit code. ``NotCovered`` and ``Ambiguous``
calls are ordinary classification results and never raise.
"""

from __future__ import annotations

from typing import Optional


class LinkedMutError(Exception):
    """Base class for all linkedmut errors."""

    exit_code = 2


class ValidationError(LinkedMutError):
    """Malformed positions input. Raised before any scoring starts."""

    exit_code = 3

    def __init__(self, message: str, *, line_no: Optional[int] = None, field: Optional[str] = None) -> None:
        self.line_no = line_no
        self.field = field
        prefix = []
        if line_no is not None:
            prefix.append(f"line {line_no}")
        if field is not None:
            prefix.append(f"field '{field}'")
        if prefix:
            message = f"{', '.join(prefix)}: {message}"
        super().__init__(message)


class DecodeError(LinkedMutError):
    """Corrupt or truncated alignment input."""

    exit_code = 4


class OutputError(LinkedMutError):
    """The result sink could not be written."""

    exit_code = 5


class CoordinateAnomaly(LinkedMutError):
    """A record's CIGAR is inconsistent with its sequence or declared span.

    Per-record and non-fatal: the runner skips and counts the record.
    """

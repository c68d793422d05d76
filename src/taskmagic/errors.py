"""Error taxonomy for parsing, loading, and watching task projects."""

from __future__ import annotations

import reprlib
from enum import Enum
from typing import Any


class ParseErrorKind(str, Enum):
    MISSING_FRONTMATTER = "missing_frontmatter"
    INVALID_YAML = "invalid_yaml"
    MISSING_FIELD = "missing_field"
    INVALID_ENUM = "invalid_enum"
    INVALID_TYPE = "invalid_type"


class TaskMagicError(Exception):
    """Base class for taskmagic errors."""


class ParseError(TaskMagicError):
    """A single document is malformed. Callers recover by skipping it."""

    def __init__(
        self,
        kind: ParseErrorKind,
        field: str | None = None,
        value: Any = None,
        *,
        detail: str = "",
    ) -> None:
        self.kind = kind
        self.field = field
        self.value = value
        self.detail = detail
        super().__init__(self._format())

    def _format(self) -> str:
        match self.kind:
            case ParseErrorKind.MISSING_FRONTMATTER:
                msg = "No YAML frontmatter found"
            case ParseErrorKind.INVALID_YAML:
                msg = "Failed to parse YAML frontmatter"
            case ParseErrorKind.MISSING_FIELD:
                msg = f"Missing required field: {self.field}"
            case ParseErrorKind.INVALID_ENUM:
                msg = f"Invalid {self.field}: {reprlib.repr(self.value)}"
            case ParseErrorKind.INVALID_TYPE:
                msg = f"Invalid type for {self.field}: {type(self.value).__name__}"
            case _:
                msg = self.kind.value
        if self.detail:
            msg = f"{msg} ({self.detail})"
        return msg


class ProjectLoadError(TaskMagicError):
    """The project root exists but cannot be traversed."""


class WatchError(TaskMagicError):
    """The filesystem change feed failed; watching is considered stopped."""

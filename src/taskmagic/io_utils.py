"""Wrappers for text file I/O with consistent encoding (UTF-8)."""

from __future__ import annotations

from pathlib import Path
from typing import Any

PathLike = Path | str


def read_text(path: PathLike, errors: str = "strict", **kwargs: Any) -> str:
    """Read path as text with UTF-8 encoding. Forwards extra kwargs to Path.read_text."""
    p = path if isinstance(path, Path) else Path(path)
    return p.read_text(encoding="utf-8", errors=errors, **kwargs)


def list_markdown(directory: Path) -> list[Path]:
    """Return the ``*.md`` files directly inside *directory*, sorted by name.

    Raises ``OSError`` when the directory exists but cannot be listed.
    """
    return sorted(
        (p for p in directory.iterdir() if p.suffix == ".md" and p.is_file()),
        key=lambda p: p.name,
    )

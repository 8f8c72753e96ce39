"""Snapshot sources feeding the rebuild pipeline."""

from __future__ import annotations

from pathlib import Path
from typing import TextIO

from promotion_cache.utils.errors import SourceUnavailableError


class FileSnapshotSource:
    """
    Flat-file snapshot, one ``id,price,timestamp offset`` record per line.

    ``open()`` returns a context manager that iterates over raw lines.
    Any object with the same ``open()``/``describe()`` shape can stand in
    for it.
    """

    def __init__(self, path: str | Path, encoding: str = "utf-8") -> None:
        self.path = Path(path)
        self.encoding = encoding

    def describe(self) -> str:
        return str(self.path)

    def open(self) -> TextIO:
        try:
            return self.path.open("r", encoding=self.encoding, newline="")
        except OSError as exc:
            raise SourceUnavailableError(
                f"Can't open the file: {exc.strerror or exc}",
                path=str(self.path),
            ) from exc

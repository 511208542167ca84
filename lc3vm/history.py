"""Command-line history: a bounded list of previously entered lines."""

from __future__ import annotations

import os
from collections.abc import Iterator

DEFAULT_MAX_LEN = 100
MAX_LINE = 4096


class History:
    """Recently entered lines, oldest first, capped at ``max_len`` entries."""

    def __init__(self, max_len: int = DEFAULT_MAX_LEN) -> None:
        if max_len < 0:
            raise ValueError(f"history length must not be negative: {max_len}")
        self._max_len = max_len
        self._lines: list[str] = []

    @property
    def max_len(self) -> int:
        return self._max_len

    def add(self, line: str) -> bool:
        """Append ``line``; return False if it was not added.

        A line equal to the newest entry is ignored. When the history is
        full the oldest entry is dropped to make room.
        """
        if self._max_len == 0:
            return False
        if self._lines and self._lines[-1] == line:
            return False
        if len(self._lines) == self._max_len:
            del self._lines[0]
        self._lines.append(line)
        return True

    def set_max_len(self, length: int) -> None:
        """Change the capacity, keeping only the newest ``length`` entries."""
        if length < 1:
            raise ValueError(f"history length must be at least 1: {length}")
        if len(self._lines) > length:
            del self._lines[: len(self._lines) - length]
        self._max_len = length

    def save(self, filename: str | os.PathLike[str]) -> None:
        """Write the history to ``filename``, one line each, readable only by the owner."""
        old_umask = os.umask(0o177)
        try:
            with open(filename, "w", encoding="utf-8", newline="") as fp:
                os.chmod(filename, 0o600)
                for line in self._lines:
                    fp.write(f"{line}\n")
        finally:
            os.umask(old_umask)

    def load(self, filename: str | os.PathLike[str]) -> None:
        """Add every line of ``filename`` to the history.

        Each line is cut at its first carriage return, or else at its
        newline. Lines longer than the editing buffer are split into
        several entries.
        """
        chunk = MAX_LINE - 1
        with open(filename, encoding="utf-8", errors="surrogateescape", newline="") as fp:
            for raw in fp:
                for start in range(0, len(raw), chunk):
                    self.add(_strip_line_end(raw[start : start + chunk]))

    def replace(self, index: int, line: str) -> None:
        """Overwrite the entry at ``index``."""
        self._lines[index] = line

    def pop(self) -> str:
        """Remove and return the newest entry."""
        if not self._lines:
            raise IndexError("pop from empty history")
        return self._lines.pop()

    def __len__(self) -> int:
        return len(self._lines)

    def __getitem__(self, index: int) -> str:
        return self._lines[index]

    def __iter__(self) -> Iterator[str]:
        return iter(self._lines)


def _strip_line_end(text: str) -> str:
    cut = text.find("\r")
    if cut < 0:
        cut = text.find("\n")
    return text if cut < 0 else text[:cut]
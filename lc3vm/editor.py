"""Line editing state machine: key handling and screen refresh for one prompt."""

from __future__ import annotations

import enum
import sys
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Optional, TextIO

from lc3vm.history import MAX_LINE, History


class Refresh(enum.IntFlag):
    """What a refresh does to the line on screen."""

    CLEAN = 1
    WRITE = 2
    ALL = CLEAN | WRITE


class HistoryDirection(enum.IntEnum):
    """Which way to walk through the history."""

    NEXT = 0
    PREV = 1


@dataclass(frozen=True)
class Hint:
    """Text shown to the right of the edited line, with optional colour."""

    text: str
    color: int = -1
    bold: int = 0


class EditInterrupted(Exception):
    """The user pressed Ctrl-C while editing."""


class _Key(enum.IntEnum):
    CTRL_A = 1
    CTRL_B = 2
    CTRL_C = 3
    CTRL_D = 4
    CTRL_E = 5
    CTRL_F = 6
    CTRL_H = 8
    TAB = 9
    CTRL_K = 11
    CTRL_L = 12
    ENTER = 13
    CTRL_N = 14
    CTRL_P = 16
    CTRL_T = 20
    CTRL_U = 21
    CTRL_W = 23
    ESC = 27
    BACKSPACE = 127


CompletionCallback = Callable[[str], Sequence[str]]
HintsCallback = Callable[[str], Optional[Hint]]


def _stderr_beep() -> None:
    sys.stderr.write("\x07")
    sys.stderr.flush()


class LineEditor:
    """Edits a single line, writing terminal escape sequences to ``output``.

    Optional behaviour is set through attributes: ``completion`` (text to
    candidate list), ``hints`` (text to :class:`Hint` or None),
    ``multiline`` and ``mask``.
    """

    def __init__(self, output: TextIO, history: History, cols: int = 80) -> None:
        self.output = output
        self.history = history
        self.cols = cols
        self.completion: CompletionCallback | None = None
        self.hints: HintsCallback | None = None
        self.multiline = False
        self.mask = False
        self.beep: Callable[[], None] = _stderr_beep
        self.max_length = MAX_LINE - 1
        self.prompt = ""
        self.buffer = ""
        self.pos = 0
        self.oldpos = 0
        self.oldrows = 0
        self.history_index = 0
        self.in_completion = False
        self.completion_index = 0

    # ------------------------------------------------------------------ output

    def _write(self, text: str) -> None:
        self.output.write(text)
        self.output.flush()

    def _fit(self, text: str) -> str:
        return text[: self.max_length - 1]

    # ----------------------------------------------------------------- session

    def start(self, prompt: str) -> None:
        """Begin editing a new, empty line and show ``prompt``."""
        self.prompt = prompt
        self.buffer = ""
        self.pos = 0
        self.oldpos = 0
        self.oldrows = 0
        self.history_index = 0
        self.in_completion = False
        self.completion_index = 0
        self.history.add("")
        self._write(prompt)

    # ----------------------------------------------------------------- refresh

    def _hint_sequence(self, plen: int) -> str:
        length = len(self.buffer)
        if self.hints is None or plen + length >= self.cols:
            return ""
        hint = self.hints(self.buffer)
        if hint is None:
            return ""
        text = hint.text[: self.cols - (plen + length)]
        color, bold = hint.color, hint.bold
        if bold == 1 and color == -1:
            color = 37
        if color != -1 or bold != 0:
            return f"\033[{bold};{color};49m{text}\033[0m"
        return text

    def _refresh_single(self, flags: Refresh) -> None:
        plen = len(self.prompt)
        cols = self.cols
        pos = self.pos
        length = len(self.buffer)
        start = 0
        while plen + pos >= cols and pos > 0:
            start += 1
            length -= 1
            pos -= 1
        while plen + length > cols and length > 0:
            length -= 1

        parts = ["\r"]
        if flags & Refresh.WRITE:
            parts.append(self.prompt)
            parts.append("*" * length if self.mask else self.buffer[start : start + length])
            parts.append(self._hint_sequence(plen))
        parts.append("\x1b[0K")
        if flags & Refresh.WRITE:
            parts.append(f"\r\x1b[{pos + plen}C")
        self._write("".join(parts))

    def _refresh_multi(self, flags: Refresh) -> None:
        plen = len(self.prompt)
        cols = self.cols
        length = len(self.buffer)
        rows = (plen + length + cols - 1) // cols
        rpos = (plen + self.oldpos + cols) // cols
        old_rows = self.oldrows
        self.oldrows = rows

        parts: list[str] = []
        if flags & Refresh.CLEAN:
            if old_rows - rpos > 0:
                parts.append(f"\x1b[{old_rows - rpos}B")
            parts.extend("\r\x1b[0K\x1b[1A" for _ in range(old_rows - 1))

        if flags & Refresh.ALL:
            parts.append("\r\x1b[0K")

        if flags & Refresh.WRITE:
            parts.append(self.prompt)
            parts.append("*" * length if self.mask else self.buffer)
            parts.append(self._hint_sequence(plen))

            if self.pos and self.pos == length and (self.pos + plen) % cols == 0:
                parts.append("\n\r")
                rows += 1
                if rows > self.oldrows:
                    self.oldrows = rows

            rpos2 = (plen + self.pos + cols) // cols
            if rows - rpos2 > 0:
                parts.append(f"\x1b[{rows - rpos2}A")

            col = (plen + self.pos) % cols
            parts.append(f"\r\x1b[{col}C" if col else "\r")

        self.oldpos = self.pos
        self._write("".join(parts))

    def refresh(self, flags: Refresh = Refresh.ALL) -> None:
        """Redraw the line in the current mode."""
        if self.multiline:
            self._refresh_multi(flags)
        else:
            self._refresh_single(flags)

    def hide(self) -> None:
        """Remove the line from the screen."""
        self.refresh(Refresh.CLEAN)

    def show(self) -> None:
        """Draw the line again after :meth:`hide`."""
        if self.in_completion:
            self._refresh_with_completion(None, Refresh.WRITE)
        else:
            self.refresh(Refresh.WRITE)

    # ----------------------------------------------------------------- editing

    def insert(self, char: str) -> None:
        """Insert ``char`` at the cursor, if the line has room."""
        length = len(self.buffer)
        if length >= self.max_length:
            return
        if self.pos == length:
            self.buffer += char
            self.pos += 1
            if (
                not self.multiline
                and len(self.prompt) + len(self.buffer) < self.cols
                and self.hints is None
            ):
                self._write("*" if self.mask else char)
            else:
                self.refresh()
        else:
            self.buffer = self.buffer[: self.pos] + char + self.buffer[self.pos :]
            self.pos += 1
            self.refresh()

    def move_left(self) -> None:
        if self.pos > 0:
            self.pos -= 1
            self.refresh()

    def move_right(self) -> None:
        if self.pos != len(self.buffer):
            self.pos += 1
            self.refresh()

    def move_home(self) -> None:
        if self.pos != 0:
            self.pos = 0
            self.refresh()

    def move_end(self) -> None:
        if self.pos != len(self.buffer):
            self.pos = len(self.buffer)
            self.refresh()

    def history_next(self, direction: HistoryDirection) -> None:
        """Replace the line with the neighbouring history entry."""
        count = len(self.history)
        if count <= 1:
            return
        self.history.replace(count - 1 - self.history_index, self.buffer)
        self.history_index += 1 if direction == HistoryDirection.PREV else -1
        if self.history_index < 0:
            self.history_index = 0
            return
        if self.history_index >= count:
            self.history_index = count - 1
            return
        self.buffer = self._fit(self.history[count - 1 - self.history_index])
        self.pos = len(self.buffer)
        self.refresh()

    def delete(self) -> None:
        """Delete the character under the cursor."""
        if self.buffer and self.pos < len(self.buffer):
            self.buffer = self.buffer[: self.pos] + self.buffer[self.pos + 1 :]
            self.refresh()

    def backspace(self) -> None:
        """Delete the character left of the cursor."""
        if self.pos > 0 and self.buffer:
            self.buffer = self.buffer[: self.pos - 1] + self.buffer[self.pos :]
            self.pos -= 1
            self.refresh()

    def delete_prev_word(self) -> None:
        """Delete the word before the cursor, with the spaces after it."""
        old_pos = self.pos
        while self.pos > 0 and self.buffer[self.pos - 1] == " ":
            self.pos -= 1
        while self.pos > 0 and self.buffer[self.pos - 1] != " ":
            self.pos -= 1
        self.buffer = self.buffer[: self.pos] + self.buffer[old_pos:]
        self.refresh()

    def transpose(self) -> None:
        """Swap the character under the cursor with the one before it."""
        length = len(self.buffer)
        if 0 < self.pos < length:
            chars = list(self.buffer)
            chars[self.pos - 1], chars[self.pos] = chars[self.pos], chars[self.pos - 1]
            self.buffer = "".join(chars)
            if self.pos != length - 1:
                self.pos += 1
            self.refresh()

    def kill_line(self) -> None:
        """Delete the whole line."""
        self.buffer = ""
        self.pos = 0
        self.refresh()

    def kill_to_end(self) -> None:
        """Delete from the cursor to the end of the line."""
        self.buffer = self.buffer[: self.pos]
        self.refresh()

    def clear_screen(self) -> None:
        """Clear the screen and redraw the line at the top."""
        self._write("\x1b[H\x1b[2J")
        self.refresh()

    # -------------------------------------------------------------- completion

    def _refresh_with_completion(
        self, completions: Sequence[str] | None, flags: Refresh
    ) -> None:
        if completions is None:
            completions = list(self.completion(self.buffer)) if self.completion else []
        if self.completion_index < len(completions):
            saved_buffer, saved_pos = self.buffer, self.pos
            self.buffer = completions[self.completion_index]
            self.pos = len(self.buffer)
            try:
                self.refresh(flags)
            finally:
                self.buffer, self.pos = saved_buffer, saved_pos
        else:
            self.refresh(flags)

    def complete(self, key: str) -> str | None:
        """Handle ``key`` while completing.

        Returns the key when it still has to be processed as ordinary
        input, or None when completion consumed it.
        """
        completions = list(self.completion(self.buffer)) if self.completion else []
        if not completions:
            self.beep()
            self.in_completion = False
            return key

        count = len(completions)
        result: str | None = key
        if key == "\t":
            if not self.in_completion:
                self.in_completion = True
                self.completion_index = 0
            else:
                self.completion_index = (self.completion_index + 1) % (count + 1)
                if self.completion_index == count:
                    self.beep()
            result = None
        elif key == chr(_Key.ESC):
            if self.completion_index < count:
                self.refresh()
            self.in_completion = False
            result = None
        else:
            if self.completion_index < count:
                self.buffer = self._fit(completions[self.completion_index])
                self.pos = len(self.buffer)
            self.in_completion = False

        if self.in_completion and self.completion_index < count:
            self._refresh_with_completion(completions, Refresh.ALL)
        else:
            self.refresh()
        return result

    # -------------------------------------------------------------------- keys

    def _finish(self) -> str:
        if len(self.history):
            self.history.pop()
        if self.multiline:
            self.move_end()
        if self.hints is not None:
            saved = self.hints
            self.hints = None
            try:
                self.refresh()
            finally:
                self.hints = saved
        return self.buffer

    def _escape(self, read_next: Callable[[], str]) -> None:
        first = read_next()
        if not first:
            return
        second = read_next()
        if not second:
            return
        if first == "[":
            if "0" <= second <= "9":
                third = read_next()
                if third == "~" and second == "3":
                    self.delete()
                return
            actions = {
                "A": lambda: self.history_next(HistoryDirection.PREV),
                "B": lambda: self.history_next(HistoryDirection.NEXT),
                "C": self.move_right,
                "D": self.move_left,
                "H": self.move_home,
                "F": self.move_end,
            }
        elif first == "O":
            actions = {"H": self.move_home, "F": self.move_end}
        else:
            return
        action = actions.get(second)
        if action is not None:
            action()

    def feed(self, char: str, read_next: Callable[[], str]) -> str | None:
        """Process one typed character.

        ``read_next`` supplies the following characters of an escape
        sequence, or an empty string when there are none. Returns the
        finished line on Enter and None while editing goes on. Raises
        :class:`EditInterrupted` on Ctrl-C and :class:`EOFError` on
        Ctrl-D with an empty line.
        """
        if (self.in_completion or char == "\t") and self.completion is not None:
            pending = self.complete(char)
            if pending is None:
                return None
            char = pending

        code = ord(char)
        if code == _Key.ENTER:
            return self._finish()
        if code == _Key.CTRL_C:
            raise EditInterrupted("editing interrupted")
        if code in (_Key.BACKSPACE, _Key.CTRL_H):
            self.backspace()
        elif code == _Key.CTRL_D:
            if self.buffer:
                self.delete()
            else:
                if len(self.history):
                    self.history.pop()
                raise EOFError("end of input")
        elif code == _Key.CTRL_T:
            self.transpose()
        elif code == _Key.CTRL_B:
            self.move_left()
        elif code == _Key.CTRL_F:
            self.move_right()
        elif code == _Key.CTRL_P:
            self.history_next(HistoryDirection.PREV)
        elif code == _Key.CTRL_N:
            self.history_next(HistoryDirection.NEXT)
        elif code == _Key.ESC:
            self._escape(read_next)
        elif code == _Key.CTRL_U:
            self.kill_line()
        elif code == _Key.CTRL_K:
            self.kill_to_end()
        elif code == _Key.CTRL_A:
            self.move_home()
        elif code == _Key.CTRL_E:
            self.move_end()
        elif code == _Key.CTRL_L:
            self.clear_screen()
        elif code == _Key.CTRL_W:
            self.delete_prev_word()
        else:
            self.insert(char)
        return None
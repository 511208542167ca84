"""Terminal access for line editing: raw mode, size queries and line reading."""

from __future__ import annotations

import codecs
import contextlib
import errno
import os
import re
import sys
import termios
from collections.abc import Iterator
from typing import TextIO

from lc3vm.editor import CompletionCallback, HintsCallback, LineEditor
from lc3vm.history import MAX_LINE, History

UNSUPPORTED_TERMS = ("dumb", "cons25", "emacs")
DEFAULT_COLUMNS = 80

_POSITION = re.compile(r"\s*([+-]?\d+);\s*([+-]?\d+)")


def is_unsupported_term(term: str | None) -> bool:
    """Return True if ``term`` names a terminal known to lack escape sequences."""
    if term is None:
        return False
    return term.lower() in UNSUPPORTED_TERMS


@contextlib.contextmanager
def raw_mode(fd: int) -> Iterator[None]:
    """Put the terminal on ``fd`` in raw mode for the duration of the block."""
    if not os.isatty(fd):
        raise OSError(errno.ENOTTY, os.strerror(errno.ENOTTY))
    try:
        original = termios.tcgetattr(fd)
        raw = termios.tcgetattr(fd)
    except termios.error as exc:
        raise OSError(errno.ENOTTY, os.strerror(errno.ENOTTY)) from exc

    raw[0] &= ~(termios.BRKINT | termios.ICRNL | termios.INPCK | termios.ISTRIP | termios.IXON)
    raw[1] &= ~termios.OPOST
    raw[2] |= termios.CS8
    raw[3] &= ~(termios.ECHO | termios.ICANON | termios.IEXTEN | termios.ISIG)
    raw[6][termios.VMIN] = 1
    raw[6][termios.VTIME] = 0

    try:
        termios.tcsetattr(fd, termios.TCSAFLUSH, raw)
    except termios.error as exc:
        raise OSError(errno.ENOTTY, os.strerror(errno.ENOTTY)) from exc
    try:
        yield
    finally:
        with contextlib.suppress(termios.error):
            termios.tcsetattr(fd, termios.TCSAFLUSH, original)


def get_cursor_position(ifd: int, ofd: int) -> int:
    """Ask the terminal where the cursor is and return its column.

    Raises :class:`OSError` if the terminal gives no usable answer.
    """
    if os.write(ofd, b"\x1b[6n") != 4:
        raise OSError("could not request the cursor position")
    response = bytearray()
    while len(response) < 31:
        byte = os.read(ifd, 1)
        if not byte or byte == b"R":
            break
        response += byte
    if not response.startswith(b"\x1b["):
        raise OSError("invalid cursor position report")
    match = _POSITION.match(response[2:].decode("ascii", "replace"))
    if match is None:
        raise OSError("invalid cursor position report")
    return int(match.group(2))


def get_columns(ifd: int, ofd: int) -> int:
    """Return the terminal width, or 80 if it cannot be found out."""
    try:
        cols = os.get_terminal_size(ofd).columns
    except OSError:
        cols = 0
    if cols:
        return cols

    try:
        start = get_cursor_position(ifd, ofd)
        if os.write(ofd, b"\x1b[999C") != 6:
            return DEFAULT_COLUMNS
        cols = get_cursor_position(ifd, ofd)
    except OSError:
        return DEFAULT_COLUMNS

    if cols > start:
        with contextlib.suppress(OSError):
            os.write(ofd, f"\x1b[{cols - start}D".encode("ascii"))
    return cols


def read_line_no_tty(stream: TextIO) -> str:
    """Read one line of any length from ``stream``, without its newline.

    Raises :class:`EOFError` when the stream is exhausted before any
    character was read.
    """
    chars: list[str] = []
    while True:
        char = stream.read(1)
        if not char:
            if not chars:
                raise EOFError("end of input")
            return "".join(chars)
        if char == "\n":
            return "".join(chars)
        chars.append(char)


def print_key_codes(stdin_fd: int = 0, stdout: TextIO | None = None) -> None:
    """Show the code of every key pressed until ``quit`` is typed."""
    out = sys.stdout if stdout is None else stdout
    out.write(
        "Linenoise key codes debugging mode.\n"
        "Press keys to see scan codes. Type 'quit' at any time to exit.\n"
    )
    out.flush()
    try:
        guard = raw_mode(stdin_fd)
        guard.__enter__()
    except OSError:
        return
    try:
        window = b"    "
        while True:
            byte = os.read(stdin_fd, 1)
            if not byte:
                continue
            window = window[1:] + byte
            if window == b"quit":
                break
            value = byte[0]
            signed = value - 256 if value >= 128 else value
            shown = chr(value) if 32 <= value <= 126 else "?"
            out.write(f"'{shown}' {signed & 0xFFFFFFFF:02x} ({signed}) (type quit to exit)\n")
            out.write("\r")
            out.flush()
    finally:
        guard.__exit__(None, None, None)


class _FdWriter:
    """Unbuffered text output straight to a file descriptor."""

    def __init__(self, fd: int) -> None:
        self.fd = fd

    def write(self, text: str) -> int:
        data = memoryview(text.encode("utf-8", "surrogateescape"))
        while data:
            written = os.write(self.fd, data)
            data = data[written:]
        return len(text)

    def flush(self) -> None:
        pass


class LineReader:
    """Reads lines from a terminal with editing, or plainly from a pipe.

    ``completion``, ``hints``, ``multiline`` and ``mask`` are passed on to
    the editor of each line.
    """

    def __init__(self, history: History, stdin_fd: int = 0, stdout_fd: int = 1) -> None:
        self.history = history
        self.stdin_fd = stdin_fd
        self.stdout_fd = stdout_fd
        self.completion: CompletionCallback | None = None
        self.hints: HintsCallback | None = None
        self.multiline = False
        self.mask = False
        self._output = _FdWriter(stdout_fd)
        self._input: TextIO | None = None

    def _stream(self) -> TextIO:
        if self._input is None:
            self._input = open(
                self.stdin_fd,
                encoding="utf-8",
                errors="surrogateescape",
                newline="",
                closefd=False,
            )
        return self._input

    def read_line(self, prompt: str) -> str:
        """Show ``prompt`` and return the line the user entered.

        Raises :class:`EOFError` at end of input and
        :class:`~lc3vm.editor.EditInterrupted` on Ctrl-C.
        """
        sys.stdout.flush()
        if not os.isatty(self.stdin_fd):
            return read_line_no_tty(self._stream())
        if is_unsupported_term(os.environ.get("TERM")):
            return self._read_plain(prompt)
        return self._read_edited(prompt)

    def _read_plain(self, prompt: str) -> str:
        self._output.write(prompt)
        line = self._stream().readline(MAX_LINE - 1)
        if not line:
            raise EOFError("end of input")
        return line.rstrip("\r\n")

    def _read_edited(self, prompt: str) -> str:
        editor = LineEditor(
            self._output, self.history, get_columns(self.stdin_fd, self.stdout_fd)
        )
        editor.completion = self.completion
        editor.hints = self.hints
        editor.multiline = self.multiline
        editor.mask = self.mask

        try:
            with raw_mode(self.stdin_fd):
                editor.start(prompt)
                line = self._edit(editor)
        except BaseException:
            if editor.prompt == prompt:
                self._output.write("\n")
            raise
        self._output.write("\n")
        return line

    def _edit(self, editor: LineEditor) -> str:
        decoder = codecs.getincrementaldecoder("utf-8")("surrogateescape")
        pending: list[str] = []

        def read_char() -> str:
            while not pending:
                byte = os.read(self.stdin_fd, 1)
                if not byte:
                    return ""
                pending.extend(decoder.decode(byte))
            return pending.pop(0)

        while True:
            char = read_char()
            if not char:
                raise EOFError("end of input")
            line = editor.feed(char, read_char)
            if line is not None:
                return line
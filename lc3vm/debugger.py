"""Interactive single-step debugger and command-line entry point for the VM."""

from __future__ import annotations

import enum
import os
import signal
import sys
import termios
from collections.abc import Callable
from typing import Protocol, TextIO

from lc3vm.editor import EditInterrupted
from lc3vm.history import History
from lc3vm.machine import IllegalOpcode, InvalidTrap, Machine, Register
from lc3vm.terminal import LineReader

PROMPT = "(lc3vm) "
HISTORY_LENGTH = 1024

HELP_TEXT = (
    "lc3vm commands:\n"
    "help\t\t\t-- Print this help page.\n"
    "continue\t\t-- Continue execution. Get back here with ^C.\n"
    "step\t\t\t-- Step forward one instruction.\n"
    "memory [addr] [n]\t-- Display n words of memory starting from addr.\n"
    "reg\t\t\t-- Display the contents of the registers.\n"
    "\nPress ^C or ^D to exit. You can abbreviate commands with their first letters.\n"
)

_HEX_DIGITS = frozenset("0123456789ABCDEF")
_DEC_DIGITS = frozenset("0123456789")


class Mode(enum.IntEnum):
    """How the machine runs."""

    OFF = 0
    STEP = 1
    TURBO = 2


class Action(enum.Enum):
    """What the debugger does after a command."""

    PROMPT = "prompt"
    STEP = "step"
    CONTINUE = "continue"


class _Terminal(Protocol):
    def disable(self) -> None: ...

    def restore(self) -> None: ...


class _InputBuffering:
    """Switches line buffering and echo of a terminal off and back on."""

    def __init__(self, fd: int) -> None:
        self.fd = fd
        self._original: list | None = None
        if os.isatty(fd):
            try:
                self._original = termios.tcgetattr(fd)
            except termios.error:
                self._original = None

    def disable(self) -> None:
        if self._original is None:
            return
        attrs = termios.tcgetattr(self.fd)
        attrs[3] &= ~(termios.ICANON | termios.ECHO)
        termios.tcsetattr(self.fd, termios.TCSANOW, attrs)

    def restore(self) -> None:
        if self._original is None:
            return
        termios.tcsetattr(self.fd, termios.TCSANOW, self._original)


def parse_memory_command(line: str) -> tuple[int, int]:
    """Parse ``memory ADDR N`` into the start address and word count.

    Raises :class:`ValueError` with a message for the user when the
    command is malformed.
    """
    spaces = 0
    consecutive = False
    last = ""
    for char in line:
        if char == " ":
            spaces += 1
            if last == " ":
                consecutive = True
                break
        last = char
    if spaces != 2 or consecutive or line.endswith(" "):
        raise ValueError("Invalid format for memory command; type 'help' for help")

    _, address_text, count_text = line.split(" ")
    if len(address_text) == 6:
        address_text = address_text[2:]
    elif len(address_text) != 4:
        raise ValueError("Unrecognized address; use format 0xA2B4 or BE1F")

    if not set(address_text) <= _HEX_DIGITS:
        raise ValueError("Address does not appear to be valid hex; use uppercase letters")
    if not set(count_text) <= _DEC_DIGITS:
        raise ValueError("Number of words does not appear to be valid decimal")

    count = int(count_text) if count_text else 0
    return int(address_text, 16), count


def format_registers(machine: Machine) -> list[str]:
    """Return one line per register, as shown by the ``reg`` command."""
    lines = [f"R{index}:\t 0x{machine.reg[index]:04X}" for index in range(8)]
    lines.append(f"PC:\t 0x{machine.reg[Register.PC]:04X}")
    lines.append(f"COND:\t 0x{machine.reg[Register.COND]:04X}")
    return lines


class Debugger:
    """Runs a machine, stopping before each instruction while in step mode.

    ``read_line`` is called with the prompt and returns a command; it
    raises :class:`EOFError` or :class:`EditInterrupted` to end the session.
    """

    def __init__(
        self,
        machine: Machine,
        read_line: Callable[[str], str],
        out: TextIO | None = None,
    ) -> None:
        self.machine = machine
        self.read_line = read_line
        self.out = sys.stdout if out is None else out
        self.mode = Mode.STEP
        self.next_mode = Mode.STEP
        self.history: History | None = None
        self.terminal: _Terminal | None = None

    def _write(self, text: str) -> None:
        self.out.write(text)

    def handle_command(self, line: str) -> Action:
        """Carry out one debugger command and say what happens next."""
        if line.startswith("h"):
            self._write(HELP_TEXT)
        elif line.startswith("c"):
            self.next_mode = Mode(min(self.next_mode + 1, Mode.TURBO))
            return Action.CONTINUE
        elif line.startswith("s"):
            return Action.STEP
        elif line.startswith("r"):
            self._write("".join(f"{text}\n" for text in format_registers(self.machine)))
        elif line.startswith("m"):
            try:
                address, count = parse_memory_command(line)
            except ValueError as exc:
                self._write(f"{exc}\n")
            else:
                for offset in range(count):
                    target = (address + offset) & 0xFFFF
                    value = self.machine.mem_read(target)
                    self._write(f"Address 0x{target:04X}: 0x{value:04X}\n")
        else:
            self._write(f"Unrecognized command: {line} (type 'help' for help)\n")
        return Action.PROMPT

    def interrupt(self) -> None:
        """React to Ctrl-C: drop from full speed to step mode, or quit."""
        self.next_mode = Mode(max(self.next_mode - 1, Mode.OFF))
        if self.mode == Mode.OFF:
            if self.terminal is not None:
                self.terminal.restore()
            self._write("\n")
            self.out.flush()
            raise SystemExit(-2)
        self._write("Dropped into single-step mode. Press ^C again to quit.\n")
        self.out.flush()

    def _prompt(self) -> bool:
        while True:
            self.out.flush()
            try:
                line = self.read_line(PROMPT)
            except (EOFError, EditInterrupted):
                return False
            if self.history is not None:
                self.history.add(line)
            if self.handle_command(line) is not Action.PROMPT:
                return True
            if self.terminal is not None:
                self.terminal.disable()

    def run(self) -> None:
        """Run until the machine halts, fails, or the user quits."""
        machine = self.machine
        try:
            while self.mode:
                stepping = self.mode == Mode.STEP
                previous = machine.snapshot() if stepping else None

                instr = machine.fetch()
                if stepping:
                    if self.terminal is not None:
                        self.terminal.restore()
                    address = (machine.reg[Register.PC] - 1) & 0xFFFF
                    self._write(
                        f"\nFetched instruction from 0x{address:04X}, "
                        f"containing 0x{instr:04X}.\n"
                    )
                    if not self._prompt():
                        return

                machine.trace = stepping
                try:
                    machine.execute(instr)
                except (IllegalOpcode, InvalidTrap) as exc:
                    self._write(f"{exc}\n")
                    return
                if machine.halted:
                    self.next_mode = Mode.OFF

                if previous is not None:
                    self._write("".join(f"{text}\n" for text in machine.changes(previous)))
                self.mode = self.next_mode
        finally:
            self.out.flush()
            if self.terminal is not None:
                self.terminal.restore()


def main(argv: list[str] | None = None) -> int:
    """Load the given image files and debug them; return the exit status."""
    args = sys.argv[1:] if argv is None else list(argv)
    out = sys.stdout
    if not args:
        out.write("Usage: lc3vm [image-file1] ...\n")
        return 2

    machine = Machine()
    for number, path in enumerate(args, 1):
        out.write(f"Loading image file #{number}: '{path}'...\n")
        try:
            machine.load_image_file(path)
        except (OSError, ValueError):
            out.write(f"Failed to load image: {path}.\n")
            return 1

    out.write("You are in single-step mode. Type (h)elp for help.\n")

    history = History()
    history.set_max_len(HISTORY_LENGTH)
    reader = LineReader(history)
    debugger = Debugger(machine, reader.read_line, out)
    debugger.history = history

    try:
        stdin_fd = sys.stdin.fileno()
    except (AttributeError, OSError, ValueError):
        stdin_fd = None
    if stdin_fd is not None:
        debugger.terminal = _InputBuffering(stdin_fd)
        debugger.terminal.disable()

    previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: debugger.interrupt())
    try:
        debugger.run()
    finally:
        signal.signal(signal.SIGINT, previous_handler)
    return 0
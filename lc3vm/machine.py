"""The LC-3 virtual machine: memory, registers and instruction execution."""

from __future__ import annotations

import enum
import os
import select
import sys
from collections.abc import Callable
from dataclasses import dataclass
from typing import TextIO

MEMORY_MAX = 1 << 16
PC_START = 0x3000
MR_KBSR = 0xFE00
MR_KBDR = 0xFE02
_EOF = 0xFFFF


class Register(enum.IntEnum):
    """Register indices; PC and COND follow the eight general registers."""

    R0 = 0
    R1 = 1
    R2 = 2
    R3 = 3
    R4 = 4
    R5 = 5
    R6 = 6
    R7 = 7
    PC = 8
    COND = 9


class Opcode(enum.IntEnum):
    """The top four bits of an instruction."""

    BR = 0
    ADD = 1
    LD = 2
    ST = 3
    JSR = 4
    AND = 5
    LDR = 6
    STR = 7
    RTI = 8
    NOT = 9
    LDI = 10
    STI = 11
    JMP = 12
    RES = 13
    LEA = 14
    TRAP = 15


class Flag(enum.IntFlag):
    """Condition flags."""

    POS = 1 << 0
    ZRO = 1 << 1
    NEG = 1 << 2


class Trap(enum.IntEnum):
    """Trap vectors."""

    GETC = 0x20
    OUT = 0x21
    PUTS = 0x22
    IN = 0x23
    PUTSP = 0x24
    HALT = 0x25


class IllegalOpcode(Exception):
    """The instruction uses a reserved or unsupported opcode."""

    def __init__(self, opcode: int) -> None:
        super().__init__(f"illegal opcode: 0x{opcode:01X}")
        self.opcode = opcode


class InvalidTrap(Exception):
    """A TRAP instruction named an unknown vector."""

    def __init__(self, vector: int) -> None:
        super().__init__(f"invalid trap vector: 0x{vector:04X}")
        self.vector = vector


def sign_extend(value: int, bit_count: int) -> int:
    """Sign-extend the low ``bit_count`` bits of ``value`` to 16 bits."""
    value &= 0xFFFF
    if (value >> (bit_count - 1)) & 1:
        value |= (0xFFFF << bit_count) & 0xFFFF
    return value


def swap16(value: int) -> int:
    """Swap the two bytes of a 16-bit word."""
    value &= 0xFFFF
    return ((value << 8) | (value >> 8)) & 0xFFFF


@dataclass(frozen=True)
class Snapshot:
    """A copy of memory and registers taken before an instruction."""

    memory: tuple[int, ...]
    registers: tuple[int, ...]


def _stdin_key_ready() -> bool:
    try:
        fd = sys.stdin.fileno()
    except (AttributeError, OSError, ValueError):
        return False
    try:
        ready, _, _ = select.select([fd], [], [], 0)
    except (OSError, ValueError):
        return False
    return bool(ready)


class Machine:
    """An LC-3 machine with 64K words of memory.

    When ``trace`` is set every instruction reports what it did on
    ``stdout``. ``halted`` becomes True after the HALT trap.
    """

    def __init__(
        self,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
        key_ready: Callable[[], bool] | None = None,
    ) -> None:
        self.stdin = sys.stdin if stdin is None else stdin
        self.stdout = sys.stdout if stdout is None else stdout
        self.key_ready = _stdin_key_ready if key_ready is None else key_ready
        self.memory = [0] * MEMORY_MAX
        self.reg = [0] * len(Register)
        self.reg[Register.COND] = Flag.ZRO
        self.reg[Register.PC] = PC_START
        self.trace = False
        self.halted = False

    # ---------------------------------------------------------------- helpers

    def _write(self, text: str) -> None:
        self.stdout.write(text)

    def _log(self, text: str) -> None:
        if self.trace:
            self._write(text + "\n")

    def _getchar(self) -> int:
        char = self.stdin.read(1)
        if not char:
            return _EOF
        return ord(char) & 0xFFFF

    # ----------------------------------------------------------------- images

    def load_image(self, data: bytes) -> int:
        """Load a big-endian image whose first word is its origin; return the origin."""
        if len(data) < 2:
            raise ValueError("image is too short to hold an origin")
        origin = (data[0] << 8) | data[1]
        self._write(f"Putting file at 0x{origin:04X}.\n")
        # The word count is held in 16 bits, so an origin of 0 loads nothing.
        max_read = (MEMORY_MAX - origin) & 0xFFFF
        body = data[2:]
        count = min(max_read, len(body) // 2)
        for offset in range(count):
            high, low = body[2 * offset], body[2 * offset + 1]
            self.memory[origin + offset] = (high << 8) | low
        return origin

    def load_image_file(self, path: str | os.PathLike[str]) -> int:
        """Load the image file at ``path``; return its origin."""
        with open(path, "rb") as fp:
            data = fp.read()
        return self.load_image(data)

    # ----------------------------------------------------------------- memory

    def mem_read(self, address: int) -> int:
        """Read a word, polling the keyboard for the status register."""
        address &= 0xFFFF
        if address == MR_KBSR:
            if self.key_ready():
                self.memory[MR_KBSR] = 1 << 15
                self.memory[MR_KBDR] = self._getchar()
            else:
                self.memory[MR_KBSR] = 0
        return self.memory[address]

    def mem_write(self, address: int, value: int) -> None:
        self.memory[address & 0xFFFF] = value & 0xFFFF

    def update_flags(self, register: int) -> None:
        """Set COND from the sign of ``register``."""
        value = self.reg[register]
        if value == 0:
            self.reg[Register.COND] = Flag.ZRO
        elif value >> 15:
            self.reg[Register.COND] = Flag.NEG
        else:
            self.reg[Register.COND] = Flag.POS
        self._log(f"Set R_COND to 0x{self.reg[Register.COND]:04X}.")

    # -------------------------------------------------------------- execution

    def fetch(self) -> int:
        """Read the instruction at PC and advance PC."""
        instr = self.mem_read(self.reg[Register.PC])
        self.reg[Register.PC] = (self.reg[Register.PC] + 1) & 0xFFFF
        return instr

    def _set(self, register: int, value: int) -> None:
        self.reg[register] = value & 0xFFFF

    def execute(self, instr: int) -> None:
        """Execute one instruction."""
        instr &= 0xFFFF
        op = instr >> 12
        dr = (instr >> 9) & 0x7
        sr1 = (instr >> 6) & 0x7
        pc = self.reg[Register.PC]
        pc_offset = sign_extend(instr & 0x1FF, 9)

        if op in (Opcode.ADD, Opcode.AND):
            name, joiner = ("ADDed", "to") if op == Opcode.ADD else ("ANDed", "with")
            combine = (lambda a, b: a + b) if op == Opcode.ADD else (lambda a, b: a & b)
            if (instr >> 5) & 0x1:
                imm5 = sign_extend(instr & 0x1F, 5)
                self._set(dr, combine(self.reg[sr1], imm5))
                operand, label = imm5, "SEXT(imm5)"
            else:
                sr2 = instr & 0x7
                self._set(dr, combine(self.reg[sr1], self.reg[sr2]))
                operand, label = sr2, "SR2"
            self._log(
                f"{name} 0x{sr1:04X} (SR1) {joiner} 0x{operand:04X} ({label}) and stored "
                f"0x{self.reg[dr]:04X} (result) in 0x{dr:04X} (DR)."
            )
            self.update_flags(dr)
        elif op == Opcode.NOT:
            self._set(dr, ~self.reg[sr1])
            self._log(
                f"NOTed 0x{sr1:04X} (SR) and stored 0x{self.reg[dr]:04X} (result) in 0x{dr:04X} (DR)."
            )
            self.update_flags(dr)
        elif op == Opcode.BR:
            cond_flag = dr
            if cond_flag & self.reg[Register.COND]:
                self._set(Register.PC, pc + pc_offset)
                self._log(
                    f"Took BRanch with flag 0x{cond_flag:04X} (n/z/p cond flag) and added "
                    f"0x{pc_offset:04X} (SEXT(PCoffset9)) to PC."
                )
            else:
                self._log(
                    f"Did not take BRanch with flag 0x{cond_flag:04X} (n/z/p cond flag) and "
                    f"offset 0x{pc_offset:04X} (SEXT(PCoffset9))."
                )
        elif op == Opcode.JMP:
            self._set(Register.PC, self.reg[sr1])
            self._log(f"JMPed (or maybe RETed) to address at contents of 0x{sr1:04X} (BaseR).")
        elif op == Opcode.JSR:
            self._set(Register.R7, pc)
            if (instr >> 11) & 1:
                long_offset = sign_extend(instr & 0x7FF, 11)
                self._set(Register.PC, pc + long_offset)
                self._log(
                    f"JSRed to PC + 0x{long_offset:04X} (SEXT(PCoffset11)) and stored "
                    "incremented PC in R7."
                )
            else:
                self._set(Register.PC, self.reg[sr1])
                self._log(
                    f"JSRRed to address at contents of 0x{sr1:04X} (BaseR) and stored "
                    "incremented PC in R7."
                )
        elif op == Opcode.LD:
            self._set(dr, self.mem_read(pc + pc_offset))
            self._log(
                f"LDed contents of address PC + 0x{pc_offset:04X} (SEXT(PCoffset9)) "
                f"into 0x{dr:04X} (DR)."
            )
            self.update_flags(dr)
        elif op == Opcode.LDI:
            self._set(dr, self.mem_read(self.mem_read(pc + pc_offset)))
            self._log(
                f"LDIed contents of address at contents of address PC + 0x{pc_offset:04X} "
                f"(SEXT(PCoffset9)) into 0x{dr:04X} (DR)."
            )
            self.update_flags(dr)
        elif op == Opcode.LDR:
            offset = sign_extend(instr & 0x3F, 6)
            self._set(dr, self.mem_read(self.reg[sr1] + offset))
            self._log(
                f"LDRed contents of address at register 0x{sr1:04X} (BaseR) + "
                f"0x{offset:04X} (SEXT(offset6)) into 0x{dr:04X} (DR)."
            )
            self.update_flags(dr)
        elif op == Opcode.LEA:
            self._set(dr, pc + pc_offset)
            self._log(
                f"LEAed address (not contents of addr.) PC + 0x{pc_offset:04X} "
                f"(SEXT(PCoffset9)) into 0x{dr:04X} (DR)."
            )
            self.update_flags(dr)
        elif op == Opcode.ST:
            target = (pc + pc_offset) & 0xFFFF
            self.mem_write(target, self.reg[dr])
            self._log(
                f"STed contents of register 0x{dr:04X} (SR) into address PC + "
                f"0x{pc_offset:04X} (SEXT(PCoffset9)) = 0x{target:04X}."
            )
        elif op == Opcode.STI:
            self.mem_write(self.mem_read(pc + pc_offset), self.reg[dr])
            self._log(
                f"STIed contents of register 0x{dr:04X} (SR) into address at contents of "
                f"address PC + 0x{pc_offset:04X} (SEXT(PCoffset9))."
            )
        elif op == Opcode.STR:
            offset = sign_extend(instr & 0x3F, 6)
            self.mem_write(self.reg[sr1] + offset, self.reg[dr])
            self._log(
                f"STRed contents of register 0x{dr:04X} (SR) into address 0x{offset:04X} "
                f"(SEXT(offset6)) + 0x{sr1:04X} (BaseR)."
            )
        elif op == Opcode.TRAP:
            self._set(Register.R7, pc)
            vector = instr & 0xFF
            self._trap(vector)
            self._log(f"TRAPed with vector 0x{vector:04X}.")
        else:
            raise IllegalOpcode(op)

    def _trap(self, vector: int) -> None:
        if vector == Trap.GETC:
            self._set(Register.R0, self._getchar())
            self.update_flags(Register.R0)
        elif vector == Trap.OUT:
            self._write(chr(self.reg[Register.R0] & 0xFF))
            self.stdout.flush()
        elif vector == Trap.PUTS:
            self._write("".join(chr(word & 0xFF) for word in self._string_words()))
            self.stdout.flush()
        elif vector == Trap.IN:
            self._write("Enter a character: ")
            code = self._getchar()
            if code != _EOF:
                self._write(chr(code))
                if 0x80 <= code <= 0xFF:
                    code |= 0xFF00
            self.stdout.flush()
            self._set(Register.R0, code)
            self.update_flags(Register.R0)
        elif vector == Trap.PUTSP:
            chars = []
            for word in self._string_words():
                chars.append(chr(word & 0xFF))
                high = word >> 8
                if high:
                    chars.append(chr(high))
            self._write("".join(chars))
            self.stdout.flush()
        elif vector == Trap.HALT:
            self._write("HALT\n")
            self.stdout.flush()
            self.halted = True
        else:
            raise InvalidTrap(vector)

    def _string_words(self) -> list[int]:
        words = []
        address = self.reg[Register.R0]
        for _ in range(MEMORY_MAX):
            word = self.memory[address]
            if not word:
                break
            words.append(word)
            address = (address + 1) & 0xFFFF
        return words

    # --------------------------------------------------------------- changes

    def snapshot(self) -> Snapshot:
        """Copy memory and registers for a later :meth:`changes`."""
        return Snapshot(tuple(self.memory), tuple(self.reg))

    def changes(self, previous: Snapshot) -> list[str]:
        """Describe every word of memory and every register that differs from ``previous``."""
        lines = [
            f"Changed memory at address 0x{address:04X} from 0x{old:04X} to 0x{new:04X}."
            for address, (old, new) in enumerate(zip(previous.memory, self.memory))
            if old != new
        ]
        for index, (old, new) in enumerate(zip(previous.registers, self.reg)):
            if old == new:
                continue
            if index == Register.PC:
                lines.append(f"Changed PC from 0x{old:04X} to 0x{new:04X}.")
            elif index == Register.COND:
                lines.append(f"Changed COND from 0x{old:04X} to 0x{new:04X}.")
            else:
                lines.append(
                    f"Changed register 0x{index:04X} from 0x{old:04X} to 0x{new:04X}."
                )
        return lines
# lc3vm

A virtual machine for the LC-3 educational computer. It comes with an
interactive single-step debugger, so you can watch each instruction
change registers and memory. It needs a POSIX system, because it uses
`termios` for terminal control.

## Installation

```
pip install .
```

## Running a program

Pass one or more assembled LC-3 object files. Each file holds big-endian
16-bit words, and the first word gives the load address:

```
lc3vm program.obj
```

The images are loaded in order, and each load prints the address it was
put at. If a file cannot be read, the command prints
`Failed to load image: ...` and exits with status 1. With no arguments it
prints a usage line and exits with status 2.

Execution starts at `0x3000` in single-step mode. Before each instruction
runs, the fetched word is shown and you get a `(lc3vm) ` prompt.

## Debugger commands

Only the first letter of a command is checked, so each command can be
shortened to that letter.

| Command         | Effect                                                   |
|-----------------|----------------------------------------------------------|
| `help`          | Print the command list.                                  |
| `continue`      | Run at full speed.                                       |
| `step`          | Execute one instruction.                                 |
| `memory ADDR N` | Show N words from ADDR.                                  |
| `reg`           | Show R0–R7, PC and COND.                                 |

For `memory`, ADDR is four hex digits in upper case, with or without a
two-character prefix such as `0x` (`0x3000` or `3000`). N is a decimal
number. The parts must be separated by single spaces.

In single-step mode the debugger reports each instruction it executes and
each condition-flag update. It then lists every register and memory word
that changed. Ctrl-C or Ctrl-D at the prompt ends the session. Ctrl-C
while the program runs at full speed drops you back into single-step
mode. The machine stops on the HALT trap, on an illegal opcode (RTI and
the reserved opcode are refused) and on an unknown trap vector.

The prompt supports line editing with Emacs-style keys: Ctrl-A, E, B, F,
K, U, W, T, H and L, the arrow keys, and Home, End and Delete. It keeps a
history of up to 1024 commands for the session. The Up and Down arrows,
or Ctrl-P and Ctrl-N, move through earlier commands. If standard input is
not a terminal, commands are read line by line without editing.

## Using the machine from Python

```python
from lc3vm.machine import Machine

machine = Machine()
machine.load_image_file("program.obj")
while not machine.halted:
    machine.execute(machine.fetch())
```

`Machine.load_image(data)` loads an image from bytes. `mem_read` and
`mem_write` give access to memory, where reading `0xFE00` polls the
keyboard. Set `machine.trace = True` to have every instruction describe
itself on the machine's output. `Machine.snapshot()` and
`Machine.changes(snapshot)` report what one instruction altered.
`IllegalOpcode` and `InvalidTrap` are raised for instructions that cannot
run.

`lc3vm.debugger.Debugger(machine, read_line)` puts the interactive loop
around a machine. `read_line` is any callable that takes a prompt and
returns a command.

The line editing lives in `lc3vm.terminal.LineReader`, which works on a
`lc3vm.history.History`, and in `lc3vm.editor.LineEditor`. The editor
also offers tab completion (`completion`), hints (`hints`), multi-line
display (`multiline`) and masked input (`mask`). The debugger does not
use these. `lc3vm.terminal.print_key_codes()` shows the codes of the
keys you press until you type `quit`.

## What it does not do

There is no assembler: programs must be assembled elsewhere. The debugger
has no breakpoints, and it cannot change registers or memory. Command
history lasts only for the session. `History.save` and `History.load`
exist, but the `lc3vm` command does not use them.
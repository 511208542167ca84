import io

import pytest

from lc3vm.debugger import (
    HELP_TEXT,
    PROMPT,
    Action,
    Debugger,
    Mode,
    format_registers,
    main,
    parse_memory_command,
)
from lc3vm.editor import EditInterrupted
from lc3vm.history import History
from lc3vm.machine import Machine, Register

ADD_R0_1 = 0x1021  # ADD R0, R0, #1
HALT = 0xF025


def make_machine(out):
    return Machine(stdin=io.StringIO(""), stdout=out, key_ready=lambda: False)


class Script:
    def __init__(self, lines):
        self.lines = list(lines)
        self.prompts = []

    def __call__(self, prompt):
        self.prompts.append(prompt)
        if not self.lines:
            raise EOFError("done")
        return self.lines.pop(0)


def make_debugger(lines, program=()):
    out = io.StringIO()
    machine = make_machine(out)
    for offset, word in enumerate(program):
        machine.mem_write(0x3000 + offset, word)
    script = Script(lines)
    return Debugger(machine, script, out), script, out


@pytest.mark.parametrize(
    "line, expected",
    [
        ("memory 0x3000 2", (0x3000, 2)),
        ("m 3000 5", (0x3000, 5)),
        ("m 0xBE1F 10", (0xBE1F, 10)),
    ],
)
def test_parse_memory_command_valid(line, expected):
    assert parse_memory_command(line) == expected


@pytest.mark.parametrize(
    "line, message",
    [
        ("m 3000", "Invalid format"),
        ("m  3000 2", "Invalid format"),
        ("m 3000 2 ", "Invalid format"),
        ("m 30000 2", "Unrecognized address"),
        ("m 3a00 2", "valid hex"),
        ("m 30G0 2", "valid hex"),
        ("m 3000 x", "valid decimal"),
    ],
)
def test_parse_memory_command_errors(line, message):
    with pytest.raises(ValueError, match=message):
        parse_memory_command(line)


def test_format_registers_lists_all_registers():
    machine = make_machine(io.StringIO())
    machine.reg[Register.R3] = 0xABCD
    lines = format_registers(machine)
    assert len(lines) == 10
    assert lines[3] == "R3:\t 0xABCD"
    assert lines[8] == "PC:\t 0x3000"
    assert lines[9].startswith("COND:\t 0x")


def test_help_command():
    debugger, _, out = make_debugger([])
    assert debugger.handle_command("help") is Action.PROMPT
    assert out.getvalue() == HELP_TEXT


def test_step_and_continue_commands():
    debugger, _, _ = make_debugger([])
    assert debugger.handle_command("step") is Action.STEP
    assert debugger.next_mode == Mode.STEP
    assert debugger.handle_command("c") is Action.CONTINUE
    assert debugger.next_mode == Mode.TURBO


def test_reg_command_prints_registers():
    debugger, _, out = make_debugger([])
    debugger.handle_command("reg")
    assert "PC:\t 0x3000\n" in out.getvalue()


def test_memory_command_prints_words():
    debugger, _, out = make_debugger([])
    debugger.machine.mem_write(0x4000, 0x1234)
    debugger.handle_command("m 0x4000 2")
    assert out.getvalue() == "Address 0x4000: 0x1234\nAddress 0x4001: 0x0000\n"


def test_memory_command_reports_bad_input():
    debugger, _, out = make_debugger([])
    assert debugger.handle_command("m 3000") is Action.PROMPT
    assert out.getvalue() == "Invalid format for memory command; type 'help' for help\n"


def test_unrecognized_command():
    debugger, _, out = make_debugger([])
    assert debugger.handle_command("x") is Action.PROMPT
    assert out.getvalue() == "Unrecognized command: x (type 'help' for help)\n"


def test_run_steps_until_halt():
    debugger, script, out = make_debugger(["s", "s"], [ADD_R0_1, HALT])
    debugger.run()
    text = out.getvalue()
    assert debugger.machine.reg[Register.R0] == 1
    assert "HALT\n" in text
    assert "Fetched instruction from 0x3000, containing 0x1021." in text
    assert "Changed register 0x0000 from 0x0000 to 0x0001." in text
    assert script.prompts == [PROMPT, PROMPT]
    assert debugger.mode == Mode.OFF


def test_run_continue_uses_one_prompt():
    debugger, script, out = make_debugger(["c"], [ADD_R0_1, ADD_R0_1, HALT])
    debugger.run()
    assert len(script.prompts) == 1
    assert debugger.machine.reg[Register.R0] == 2
    assert out.getvalue().count("Fetched instruction") == 1


def test_run_ends_on_eof():
    debugger, _, _ = make_debugger([], [ADD_R0_1])
    debugger.run()
    assert debugger.machine.reg[Register.R0] == 0
    assert debugger.machine.reg[Register.PC] == 0x3001


def test_run_ends_on_interrupted_edit():
    debugger, _, _ = make_debugger([], [ADD_R0_1])

    def read_line(prompt):
        raise EditInterrupted("stop")

    debugger.read_line = read_line
    debugger.run()
    assert debugger.machine.reg[Register.R0] == 0


def test_run_records_history():
    debugger, _, _ = make_debugger(["help", "s"], [HALT])
    debugger.history = History()
    debugger.run()
    assert list(debugger.history) == ["help", "s"]


def test_run_reports_illegal_opcode():
    debugger, _, out = make_debugger(["c"], [0xD000])
    debugger.run()
    assert "illegal opcode: 0xD\n" in out.getvalue()


def test_interrupt_in_turbo_drops_to_step():
    debugger, _, out = make_debugger([])
    debugger.mode = debugger.next_mode = Mode.TURBO
    debugger.interrupt()
    assert debugger.next_mode == Mode.STEP
    assert out.getvalue() == "Dropped into single-step mode. Press ^C again to quit.\n"


def test_interrupt_when_off_exits():
    debugger, _, _ = make_debugger([])
    debugger.mode = debugger.next_mode = Mode.OFF
    with pytest.raises(SystemExit):
        debugger.interrupt()


def test_main_without_arguments(capsys):
    assert main([]) == 2
    assert capsys.readouterr().out == "Usage: lc3vm [image-file1] ...\n"


def test_main_with_missing_file(tmp_path, capsys):
    missing = tmp_path / "missing.obj"
    assert main([str(missing)]) == 1
    assert f"Failed to load image: {missing}." in capsys.readouterr().out
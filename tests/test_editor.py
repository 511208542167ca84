import io

import pytest

from lc3vm.editor import (
    EditInterrupted,
    Hint,
    HistoryDirection,
    LineEditor,
    Refresh,
)
from lc3vm.history import History


def make_editor(prompt="> ", cols=80, history=None):
    out = io.StringIO()
    hist = history if history is not None else History()
    editor = LineEditor(out, hist, cols)
    editor.start(prompt)
    return editor, out


def type_keys(editor, keys):
    it = iter(keys)
    result = None
    for ch in it:
        result = editor.feed(ch, lambda: next(it, ""))
        if result is not None:
            return result
    return result


def test_start_writes_prompt_and_adds_empty_history_entry():
    editor, out = make_editor("(lc3vm) ")
    assert out.getvalue() == "(lc3vm) "
    assert list(editor.history) == [""]
    assert editor.buffer == ""
    assert editor.pos == 0


def test_trivial_insert_echoes_characters():
    editor, out = make_editor("> ")
    type_keys(editor, "ab")
    assert out.getvalue() == "> ab"
    assert editor.buffer == "ab"
    assert editor.pos == 2


def test_mask_mode_echoes_asterisks():
    editor, out = make_editor("> ")
    editor.mask = True
    type_keys(editor, "pw")
    assert out.getvalue() == "> **"
    assert editor.buffer == "pw"


def test_enter_returns_line_and_pops_placeholder():
    history = History()
    history.add("old")
    editor, _ = make_editor(history=history)
    assert list(history) == ["old", ""]
    result = type_keys(editor, "step\r")
    assert result == "step"
    assert list(history) == ["old"]


def test_ctrl_c_raises_interrupted():
    editor, _ = make_editor()
    with pytest.raises(EditInterrupted):
        type_keys(editor, "ab\x03")
    assert editor.buffer == "ab"
    assert editor.pos == 2


def test_ctrl_d_on_empty_line_raises_eof_and_pops_history():
    editor, _ = make_editor()
    with pytest.raises(EOFError):
        type_keys(editor, "\x04")
    assert len(editor.history) == 0


def test_ctrl_d_deletes_under_cursor():
    editor, _ = make_editor()
    type_keys(editor, "abc\x01\x04")
    assert editor.buffer == "bc"
    assert editor.pos == 0


def test_backspace_and_ctrl_h():
    editor, _ = make_editor()
    type_keys(editor, "abcd\x7f\x08")
    assert editor.buffer == "ab"
    assert editor.pos == 2


def test_insert_in_middle_after_left_arrow():
    editor, _ = make_editor()
    type_keys(editor, "ac\x1b[Db")
    assert editor.buffer == "abc"
    assert editor.pos == 2


def test_home_end_escape_sequences():
    editor, _ = make_editor()
    type_keys(editor, "hello\x1b[H")
    assert editor.pos == 0
    type_keys(editor, "\x1bOF")
    assert editor.pos == len("hello")
    type_keys(editor, "\x1bOH\x1b[C")
    assert editor.pos == 1


def test_delete_key_sequence():
    editor, _ = make_editor()
    type_keys(editor, "xyz\x01\x1b[3~")
    assert editor.buffer == "yz"


def test_transpose_swaps_characters():
    editor, _ = make_editor()
    type_keys(editor, "abc\x02\x02\x14")
    assert editor.buffer == "bac"
    assert editor.pos == 2


def test_kill_line_and_kill_to_end():
    editor, _ = make_editor()
    type_keys(editor, "hello world\x01\x06\x06\x0b")
    assert editor.buffer == "he"
    type_keys(editor, "\x15")
    assert editor.buffer == ""
    assert editor.pos == 0


def test_delete_prev_word():
    editor, _ = make_editor()
    type_keys(editor, "memory 3000  \x17")
    assert editor.buffer == "memory "
    assert editor.pos == len("memory ")


def test_history_navigation():
    history = History()
    history.add("one")
    history.add("two")
    editor, _ = make_editor(history=history)
    editor.history_next(HistoryDirection.PREV)
    assert editor.buffer == "two"
    editor.history_next(HistoryDirection.PREV)
    assert editor.buffer == "one"
    editor.history_next(HistoryDirection.PREV)
    assert editor.buffer == "one"
    type_keys(editor, "\x1b[B")
    assert editor.buffer == "two"
    assert editor.pos == len("two")


def test_history_keeps_edits_to_entries():
    history = History()
    history.add("one")
    editor, _ = make_editor(history=history)
    type_keys(editor, "new\x10")
    assert editor.buffer == "one"
    type_keys(editor, "\x0e")
    assert editor.buffer == "new"


def test_single_line_refresh_output():
    editor, out = make_editor("> ")
    editor.buffer = "abc"
    editor.pos = 3
    out.truncate(0)
    out.seek(0)
    editor.refresh(Refresh.ALL)
    assert out.getvalue() == "\r> abc\x1b[0K\r\x1b[5C"


def test_hide_only_erases():
    editor, out = make_editor("> ")
    type_keys(editor, "abc")
    out.truncate(0)
    out.seek(0)
    editor.hide()
    assert out.getvalue() == "\r\x1b[0K"


def test_show_rewrites_prompt_and_text():
    editor, out = make_editor("> ")
    type_keys(editor, "abc")
    out.truncate(0)
    out.seek(0)
    editor.show()
    assert out.getvalue().startswith("\r> abc")


def test_single_line_scrolls_to_keep_cursor_visible():
    editor, out = make_editor("> ", cols=10)
    text = "abcdefghijklmno"
    type_keys(editor, text)
    out.truncate(0)
    out.seek(0)
    editor.refresh()
    shown = out.getvalue().split("\x1b[0K")[0]
    assert shown.endswith(text[-7:])
    assert len(shown) - 1 <= editor.cols


def test_hints_are_coloured():
    editor, out = make_editor("> ")
    editor.hints = lambda text: Hint(" <addr> <n>", color=35) if text == "m" else None
    type_keys(editor, "m")
    assert "\x1b[0;35;49m <addr> <n>\x1b[0m" in out.getvalue()


def test_enter_refreshes_without_hints():
    editor, out = make_editor("> ")
    editor.hints = lambda text: Hint("HINT")
    type_keys(editor, "x")
    out.truncate(0)
    out.seek(0)
    assert type_keys(editor, "\r") == "x"
    assert "HINT" not in out.getvalue()
    assert editor.hints is not None and editor.hints("x").text == "HINT"


def test_completion_cycles_and_accepts():
    editor, out = make_editor("> ")
    beeps = []
    editor.beep = lambda: beeps.append(1)
    editor.completion = lambda text: ["hello", "help"] if text.startswith("he") else []
    type_keys(editor, "he\t")
    assert editor.in_completion
    assert "hello" in out.getvalue()
    assert editor.buffer == "he"
    type_keys(editor, "\t")
    assert editor.completion_index == 1
    type_keys(editor, "x")
    assert editor.buffer == "helpx"
    assert not editor.in_completion
    assert beeps == []


def test_completion_wraps_to_original_with_beep():
    editor, _ = make_editor("> ")
    beeps = []
    editor.beep = lambda: beeps.append(1)
    editor.completion = lambda text: ["one", "two"]
    type_keys(editor, "o\t\t\t")
    assert editor.completion_index == 2
    assert beeps == [1]
    type_keys(editor, "\r")
    assert editor.buffer == "o"


def test_completion_escape_restores_original():
    editor, _ = make_editor("> ")
    editor.beep = lambda: None
    editor.completion = lambda text: ["continue"]
    type_keys(editor, "c\t\x1b")
    assert not editor.in_completion
    assert editor.buffer == "c"


def test_completion_without_candidates_beeps_and_inserts_tab():
    editor, _ = make_editor("> ")
    beeps = []
    editor.beep = lambda: beeps.append(1)
    editor.completion = lambda text: []
    type_keys(editor, "z\t")
    assert beeps == [1]
    assert editor.buffer == "z\t"


def test_clear_screen_sequence():
    editor, out = make_editor("> ")
    out.truncate(0)
    out.seek(0)
    type_keys(editor, "\x0c")
    assert out.getvalue().startswith("\x1b[H\x1b[2J")


def test_max_length_limits_insertion():
    editor, _ = make_editor()
    editor.max_length = 3
    type_keys(editor, "abcdef")
    assert editor.buffer == "abc"


def test_multiline_tracks_rows():
    editor, out = make_editor("> ", cols=10)
    editor.multiline = True
    type_keys(editor, "a" * 15)
    assert editor.oldrows == 2
    assert editor.oldpos == 15
    out.truncate(0)
    out.seek(0)
    editor.hide()
    assert "\x1b[1A" in out.getvalue()
    assert "a" not in out.getvalue()


def test_multiline_enter_moves_to_end():
    editor, _ = make_editor("> ", cols=10)
    editor.multiline = True
    type_keys(editor, "abc\x01")
    assert editor.pos == 0
    assert type_keys(editor, "\r") == "abc"
    assert editor.pos == 3
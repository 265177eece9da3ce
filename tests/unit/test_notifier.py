"""Unit tests for captured-output cleanup."""

from tmux_bridge.notifier import clean_output, strip_ansi


def test_strip_ansi_colors_and_cursor_moves():
    assert strip_ansi("\x1b[1;32mok\x1b[0m") == "ok"
    assert strip_ansi("\x1b[?25lhidden\x1b[?25h") == "hidden"
    assert strip_ansi("\x1b]0;title\x07body") == "body"


def test_strip_ansi_keeps_newlines_and_tabs():
    assert strip_ansi("a\tb\nc") == "a\tb\nc"


def test_clean_output_removes_box_drawing_and_spinners():
    text = "╭────────╮\n│ hello  │\n╰────────╯\n⠋ Thinking"
    cleaned = clean_output(text)

    assert cleaned.startswith("hello")
    assert cleaned.endswith("Thinking")
    assert not any(ch in cleaned for ch in "╭╮╰╯│─⠋")


def test_clean_output_drops_status_bar():
    text = "answer\nUsing: 2 GEMINI.md files | 1 MCP server\nYOLO mode (ctrl + y to toggle)"
    assert clean_output(text) == "answer"


def test_clean_output_normalizes_paragraph_spacing():
    assert clean_output("one\n\n\n\ntwo\nthree") == "one\n\ntwo\n\nthree"


def test_clean_output_empty_for_pure_furniture():
    assert clean_output("\x1b[2m│ ─ │\x1b[0m\n\n") == ""

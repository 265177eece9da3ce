"""Cosmetic cleanup of captured pane text before it goes to chat."""

import re

# Regex to match ANSI escape codes (comprehensive)
ANSI_ESCAPE_RE = re.compile(
    r'\x1b\[[0-9;?]*[a-zA-Z]|'  # CSI sequences (including private modes like ?2026h)
    r'\x1b\][^\x07]*\x07|'       # OSC sequences (title, etc.)
    r'\x1b[PX^_].*?\x1b\\|'      # DCS, SOS, PM, APC sequences
    r'\x1b[\(\)][AB012]|'        # Character set selection
    r'\x1b[=>]|'                 # Keypad modes
    r'\x1b[78]|'                 # Save/restore cursor
    r'\x1b[DMEHc]|'              # Various single-char commands
    r'[\x00-\x08\x0b\x0c\x0e-\x1f]'  # Other control characters
)

# Box drawing, spinner frames and status glyphs the TUI draws around replies
UI_CHARS_RE = re.compile(r'[│─╭╮╰╯╼╽╾╿┌┐└┘├┤┬┴┼═║╒╓╔╕╖╗╘╙╚╛╜╝╞╟╠╡╢╣╤╥╦╧╨╩╪╫╬⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏•✓✖⚠]')

# Status-bar lines of the Gemini CLI
STATUS_LINE_PATTERNS = [
    r'Using: \d+ GEMINI\.md files.*$',
    r'YOLO mode \(ctrl \+ y to toggle\).*$',
    r'\* +Type your message or @path/to/file.*$',
    r'~/.*no sandbox.*Auto.*$',
]
_status_line_re = re.compile('|'.join(STATUS_LINE_PATTERNS), re.MULTILINE)


def strip_ansi(text: str) -> str:
    """Remove ANSI escape codes and control characters from text."""
    text = ANSI_ESCAPE_RE.sub('', text)
    # Second pass: remove any remaining escape sequences we might have missed
    text = re.sub(r'\x1b[^a-zA-Z]*[a-zA-Z]', '', text)
    return text


def clean_output(text: str) -> str:
    """
    Make captured pane text readable in a chat bubble.

    Strips escape codes, box-drawing and spinner glyphs, and the CLI's status
    bar, then spaces paragraphs with exactly one blank line.
    """
    clean = strip_ansi(text)
    clean = UI_CHARS_RE.sub('', clean)
    clean = _status_line_re.sub('', clean)
    clean = re.sub(r'\n+', '\n\n', clean)
    return clean.strip()

"""
Tail reader for append-only agent logs.

The logs are raw pane output from pipe-pane, so they contain terminal escape
sequences; these are stripped before lines are returned.
"""

import os
import re

__all__ = [
    'ANSI_PATTERN',
    'strip_ansi',
    'tail_file',
]

CHUNK_SIZE = 64 * 1024

# CSI sequences, OSC sequences (BEL or ST terminated), charset selection, keypad modes, CR
ANSI_PATTERN = re.compile(r'\x1b\[[0-9;?]*[a-zA-Z]|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)|\x1b[()][AB012]|\x1b[=>]|\r')


def strip_ansi(text: str) -> str:
    return ANSI_PATTERN.sub('', text)


def tail_file(path: str, max_lines: int = 200, strip_codes: bool = True) -> str:
    """
    Return the last non-blank lines of a file without reading all of it.

    Reads backwards in 64 KiB chunks until enough newlines have been seen.

    Args:
        path: File to read
        max_lines: Number of non-blank lines wanted (at least 1)
        strip_codes: Remove ANSI escape sequences first

    Returns:
        The lines joined with newlines, or "" if the file is missing or empty
    """
    try:
        wanted = max(1, int(max_lines))
    except (TypeError, ValueError):
        wanted = 200
    if not os.path.exists(path):
        return ''

    with open(path, 'rb') as f:
        f.seek(0, os.SEEK_END)
        position = f.tell()
        if position <= 0:
            return ''

        chunks = []
        remaining = wanted + 1
        while position > 0 and remaining > 0:
            read_size = min(CHUNK_SIZE, position)
            position -= read_size
            f.seek(position)
            chunk = f.read(read_size)
            chunks.append(chunk)
            remaining -= chunk.count(b'\n')

    text = b''.join(reversed(chunks)).decode('utf-8', errors='replace')
    if strip_codes:
        text = strip_ansi(text)
    lines = [line for line in text.split('\n') if line.strip()]
    return '\n'.join(lines[-wanted:])

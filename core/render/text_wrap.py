"""Word wrapping for multi-line fields."""

from __future__ import annotations

import textwrap


def wrap_text(text: str, max_chars: int) -> list[str]:
    """Split ``text`` into lines of at most ``max_chars`` characters.

    Lines break at whitespace; a word longer than ``max_chars`` is split
    across lines. Explicit newlines always start a new line. Blank input
    yields no lines.
    """

    if max_chars <= 0:
        raise ValueError(f"max_chars must be positive: {max_chars}")

    lines: list[str] = []
    for paragraph in text.splitlines():
        lines.extend(
            textwrap.wrap(paragraph, max_chars, break_long_words=True)
            if paragraph.strip()
            else [""]
        )

    while lines and not lines[-1]:
        lines.pop()
    while lines and not lines[0]:
        lines.pop(0)
    return lines

"""Line wrapping that keeps each line's indentation."""

from __future__ import annotations

__all__ = ["wrap_text", "leading_whitespace", "visible_len"]


def visible_len(text: str) -> int:
    """Return the number of visible character positions in ``text``."""
    return len(text)


def leading_whitespace(text: str) -> str:
    """Return the run of whitespace at the start of ``text``."""
    for index, char in enumerate(text):
        if not char.isspace():
            return text[:index]
    return text


def _chunks(word: str, avail: int) -> list[str]:
    return [word[start:start + avail] for start in range(0, len(word), avail)]


def _wrap_line(indent: str, body: str, width: int) -> str:
    avail = max(width - visible_len(indent), 1)
    rows: list[str] = []
    current: str | None = None

    def place(word: str) -> str:
        # Words wider than the space available are broken into chunks;
        # every chunk but the last becomes a full row of its own.
        if visible_len(word) > avail:
            *full, last = _chunks(word, avail)
            rows.extend(indent + chunk for chunk in full)
            return last
        return word

    for word in body.split():
        if current is None:
            current = place(word)
        elif visible_len(current) + 1 + visible_len(word) <= avail:
            current = f"{current} {word}"
        else:
            rows.append(indent + current)
            current = place(word)

    if current is not None:
        rows.append(indent + current)
    return "\n".join(rows)


def wrap_text(text: str, width: int) -> str:
    """Wrap ``text`` to ``width`` columns.

    Existing line breaks are kept and each line's leading whitespace is
    repeated on its continuation lines. Words longer than the available
    width are broken. A width of zero or less returns ``text`` unchanged.
    """
    if width <= 0:
        return text

    out: list[str] = []
    for line in text.split("\n"):
        if not line:
            out.append("")
            continue
        indent = leading_whitespace(line)
        body = line[len(indent):]
        if not body:
            out.append(line)
            continue
        out.append(_wrap_line(indent, body, width))
    return "\n".join(out)
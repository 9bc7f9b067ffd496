"""Conditional blocks, section markers and command markers in text templates.

Directives are HTML comments on lines of their own:

* ``<!-- IF key == value -->`` ... ``<!-- END -->`` keeps its body only when
  ``resolve(key) == value``.
* ``<!-- NAME -->`` calls the matching section callback.
* ``<!-- bw arg1 arg2 -->`` calls the command callback with the arguments.

Any other comment, single or multi-line, is removed, and runs of blank
content lines collapse to one.
"""

from __future__ import annotations

import io
from typing import Callable, Mapping, Optional, TextIO

__all__ = ["process", "process_with_commands", "render"]

Resolver = Optional[Callable[[str], str]]
Sections = Optional[Mapping[str, Callable[[TextIO], None]]]
Command = Optional[Callable[[list, TextIO], None]]

_OPEN = "<!-- "
_CLOSE = " -->"


def _between(trimmed: str, prefix: str) -> Optional[str]:
    if not trimmed.startswith(prefix):
        return None
    rest = trimmed[len(prefix):]
    if not rest.endswith(_CLOSE):
        return None
    return rest[: -len(_CLOSE)]


def _parse_if(trimmed: str) -> Optional[str]:
    return _between(trimmed, "<!-- IF ")


def _parse_section(trimmed: str) -> Optional[str]:
    name = _between(trimmed, _OPEN)
    if name is None or " " in name:
        return None
    return name


def _parse_command(trimmed: str) -> Optional[list]:
    body = _between(trimmed, "<!-- bw ")
    if body is None:
        return None
    return body.split() or None


def _eval_condition(condition: str, resolve: Resolver) -> bool:
    key, sep, value = condition.partition("==")
    if not sep:
        return False
    key, value = key.strip(), value.strip()
    if resolve is None:
        return value == ""
    return resolve(key) == value


def process_with_commands(
    out: TextIO,
    text: str,
    resolve: Resolver = None,
    sections: Sections = None,
    command: Command = None,
) -> None:
    """Evaluate ``text`` and write the result to ``out``."""
    sections = sections or {}
    skip_depth = 0
    in_comment = False
    first = True
    last_blank = False

    def separate() -> None:
        nonlocal first
        if not first:
            out.write("\n")
        first = False

    for line in text.split("\n"):
        trimmed = line.strip()

        if in_comment:
            if "-->" in trimmed:
                in_comment = False
            continue

        condition = _parse_if(trimmed)
        if condition is not None:
            if skip_depth > 0:
                skip_depth += 1
            elif not _eval_condition(condition, resolve):
                skip_depth = 1
            continue

        if trimmed == "<!-- END -->":
            if skip_depth > 0:
                skip_depth -= 1
            continue

        name = _parse_section(trimmed)
        if name is not None:
            callback = sections.get(name)
            if skip_depth == 0 and callback is not None:
                separate()
                callback(out)
            continue

        args = _parse_command(trimmed)
        if args is not None:
            if skip_depth == 0 and command is not None:
                separate()
                command(args, out)
            continue

        if trimmed.startswith("<!--"):
            if "-->" not in trimmed:
                in_comment = True
            continue

        if skip_depth == 0:
            blank = trimmed == ""
            if blank and last_blank:
                continue
            last_blank = blank
            separate()
            out.write(line)


def process(
    out: TextIO,
    text: str,
    resolve: Resolver = None,
    sections: Sections = None,
) -> None:
    """Evaluate conditionals and sections in ``text``, writing to ``out``."""
    process_with_commands(out, text, resolve, sections, None)


def render(
    text: str,
    resolve: Resolver = None,
    sections: Sections = None,
    command: Command = None,
) -> str:
    """Evaluate ``text`` and return the result as a string."""
    buffer = io.StringIO()
    process_with_commands(buffer, text, resolve, sections, command)
    return buffer.getvalue()
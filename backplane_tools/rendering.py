"""Rendering of tables and JSON to a text stream."""

from __future__ import annotations

import base64
import dataclasses
import json
import os
import sys
import textwrap
from collections.abc import Sequence
from itertools import zip_longest
from typing import Any, TextIO

COLUMN_PADDING = 2
FALLBACK_COLUMN_WIDTH = 200
_ELLIPSIS = "..."
_WRAP_WIDTH = 30
_JSON_ESCAPES = (
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("&", "\\u0026"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)


def _truncating_div(a: int, b: int) -> int:
    quotient = abs(a) // abs(b)
    return quotient if (a >= 0) == (b > 0) else -quotient


def optimal_column_width(
    rows: Sequence[Sequence[str]], padding: int, terminal_width: int | None
) -> int:
    """Width for every column after the first, sharing what the first column leaves free."""
    if terminal_width is None:
        return FALLBACK_COLUMN_WIDTH
    first_width = max((len(row[0]) for row in rows), default=0)
    available = terminal_width - first_width - padding
    return _truncating_div(available, len(rows[0]) - 1) - len(_ELLIPSIS)


def truncate_columns(row: Sequence[str], max_width: int) -> list[str]:
    """Cut every column but the first at a newline or at max_width, marking the cut."""
    processed = [row[0]] if row else []
    for content in row[1:]:
        newline = content.find("\n")
        if newline >= 0 and newline >= max_width:
            content = content[:max_width] + _ELLIPSIS
        elif newline >= 0:
            content = content[:newline] + _ELLIPSIS
        elif len(content) >= max_width:
            content = content[:max_width] + _ELLIPSIS
        processed.append(content)
    return processed


def _terminal_width() -> int | None:
    try:
        return os.get_terminal_size(0).columns
    except (OSError, ValueError):
        return None


def _align_tabbed(text: str, padding: int) -> str:
    """Align tab-terminated cells into columns, as an elastic tab stop writer does."""
    lines = [line.split("\t") for line in text.split("\n")]
    widths: list[int] = []
    rendered: list[str] = []

    def write_lines(start: int, end: int) -> None:
        for cells in lines[start:end]:
            parts = []
            leading = True
            for j, cell in enumerate(cells):
                if not cell:
                    if j < len(widths) and not leading:
                        parts.append(" " * widths[j])
                    continue
                leading = False
                parts.append(cell)
                if j < len(widths):
                    parts.append(" " * (widths[j] - len(cell)))
            rendered.append("".join(parts))

    def format_block(line0: int, line1: int, column: int) -> None:
        current = line0
        while current < line1:
            if column >= len(lines[current]) - 1:
                current += 1
                continue
            write_lines(line0, current)
            line0 = current
            width = 0
            while current < line1 and column < len(lines[current]) - 1:
                width = max(width, len(lines[current][column]) + padding)
                current += 1
            widths.append(width)
            format_block(line0, current, column + 1)
            widths.pop()
            line0 = current
        write_lines(line0, line1)

    format_block(0, len(lines), 0)
    return "\n".join(rendered)


def render_tabbed_table(
    headers: Sequence[str], rows: Sequence[Sequence[str]], out: TextIO | None = None
) -> None:
    """Write a tab-aligned table that fits the terminal, keeping the first column whole."""
    out = sys.stdout if out is None else out
    max_width = optimal_column_width(rows, COLUMN_PADDING, _terminal_width())
    lines = ["\t".join(headers)]
    lines.extend("\t".join(truncate_columns(row, max_width)) for row in rows)
    out.write(_align_tabbed("\n".join(lines) + "\n", COLUMN_PADDING))


def _is_num_or_space(char: str) -> bool:
    return char.isdigit() or char.isspace()


def _title(name: str) -> str:
    chars = list(name)
    for position, char in enumerate(name):
        if char == "_":
            chars[position] = " "
        elif char == ".":
            before = position != 0 and not _is_num_or_space(name[position - 1])
            after = position != len(name) - 1 and not _is_num_or_space(name[position + 1])
            if before or after:
                chars[position] = " "
    titled = "".join(chars).strip()
    if not titled and name:
        titled = " "
    return titled.upper()


def _wrap_cell(text: str) -> list[str]:
    wrapped: list[str] = []
    for line in text.split("\n"):
        if len(line) <= _WRAP_WIDTH:
            wrapped.append(line)
            continue
        longest_word = max((len(word) for word in line.split()), default=0)
        pieces = textwrap.wrap(
            line,
            width=max(_WRAP_WIDTH, longest_word),
            break_long_words=False,
            break_on_hyphens=False,
        )
        wrapped.extend(pieces or [""])
    return wrapped


def render_table(
    headers: Sequence[str], rows: Sequence[Sequence[str]], out: TextIO | None = None
) -> None:
    """Write a borderless, left-aligned table with upper-case headers and tab-separated cells."""
    out = sys.stdout if out is None else out
    column_count = max([len(headers), *(len(row) for row in rows)])

    def cell_lines(cells: Sequence[str]) -> list[list[str]]:
        padded = list(cells) + [""] * (column_count - len(cells))
        return [_wrap_cell(cell) for cell in padded]

    header_lines = cell_lines([_title(header) for header in headers]) if headers else None
    body = [cell_lines(row) for row in rows]
    table = ([header_lines] if header_lines else []) + body

    widths = [0] * column_count
    for record in table:
        widths = [
            max(width, *(len(line) for line in lines))
            for width, lines in zip(widths, record)
        ]

    for record in table:
        for line_cells in zip_longest(*record, fillvalue=""):
            out.write("".join(cell.ljust(width) + "\t" for cell, width in zip(line_cells, widths)))
            out.write("\n")


def _encode_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def render_json(data: Any, out: TextIO | None = None) -> None:
    """Write data as indented JSON; bytes are written as base64 text."""
    out = sys.stdout if out is None else out
    text = json.dumps(
        data, indent=2, ensure_ascii=False, allow_nan=False, default=_encode_default
    )
    for char, escaped in _JSON_ESCAPES:
        text = text.replace(char, escaped)
    out.write(text + "\n")
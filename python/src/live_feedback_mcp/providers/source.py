"""
Source text helpers shared by the rule-based providers.

Contains:
- Comment/string masking that preserves offsets and line breaks
- Offset to line/column conversion
- Function body extraction by brace matching
"""

import re
from dataclasses import dataclass
from typing import Iterator


FUNCTION_HEADER = re.compile(r"\bfunction\s+(\w+)\s*\(([^)]*)\)([^{;]*)([{;])")


def mask_comments_and_strings(content: str) -> str:
    """
    Replace comment and string literal characters with spaces.

    Newlines are kept so offsets and line numbers stay valid for the
    original content.
    """
    out = list(content)
    i = 0
    n = len(content)

    while i < n:
        ch = content[i]
        nxt = content[i + 1] if i + 1 < n else ""

        if ch == "/" and nxt == "/":
            while i < n and content[i] != "\n":
                out[i] = " "
                i += 1
        elif ch == "/" and nxt == "*":
            end = content.find("*/", i + 2)
            end = n if end == -1 else end + 2
            for j in range(i, end):
                if content[j] != "\n":
                    out[j] = " "
            i = end
        elif ch in ("'", '"'):
            quote = ch
            out[i] = " "
            i += 1
            while i < n and content[i] != quote and content[i] != "\n":
                if content[i] == "\\" and i + 1 < n:
                    out[i] = " "
                    i += 1
                out[i] = " "
                i += 1
            if i < n and content[i] == quote:
                out[i] = " "
                i += 1
        else:
            i += 1

    return "".join(out)


def line_col(content: str, offset: int) -> tuple[int, int]:
    """1-based line and 0-based column of an offset."""
    line = content.count("\n", 0, offset) + 1
    line_start = content.rfind("\n", 0, offset) + 1
    return line, offset - line_start


def find_matching_brace(masked: str, open_index: int) -> int:
    """Index of the brace closing the one at open_index, or -1."""
    depth = 0
    for i in range(open_index, len(masked)):
        if masked[i] == "{":
            depth += 1
        elif masked[i] == "}":
            depth -= 1
            if depth == 0:
                return i
    return -1


@dataclass
class FunctionBody:
    name: str
    params: str
    modifiers: str
    header_start: int
    body_start: int
    body_end: int


def iter_functions(masked: str) -> Iterator[FunctionBody]:
    """Yield function declarations that have a body."""
    for match in FUNCTION_HEADER.finditer(masked):
        if match.group(4) != "{":
            continue
        open_index = match.end() - 1
        close_index = find_matching_brace(masked, open_index)
        yield FunctionBody(
            name=match.group(1),
            params=match.group(2),
            modifiers=match.group(3),
            header_start=match.start(),
            body_start=open_index + 1,
            body_end=close_index if close_index != -1 else len(masked),
        )


def has_natspec(lines: list[str], line_number: int) -> bool:
    """True if the line above a declaration is a NatSpec comment."""
    index = line_number - 2
    while index >= 0 and not lines[index].strip():
        index -= 1
    if index < 0:
        return False
    previous = lines[index].strip()
    return previous.startswith("///") or previous.endswith("*/")

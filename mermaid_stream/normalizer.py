"""Declaration normalizer.

Guarantees the first non-comment line of a candidate is a declaration for
the requested diagram type.
"""

import re
from typing import Optional

from .models import DiagramTypeDefinition

COMMENT_PREFIX = "%%"
FRONT_MATTER = "---"

_DIRECTION_RE = re.compile(r"([A-Za-z]+)(.*)$")


def is_comment(line: str) -> bool:
    return line.strip().startswith(COMMENT_PREFIX)


def front_matter_end(lines: list[str]) -> int:
    """Index of the first line after a leading ``---`` block, or 0."""
    if not lines or lines[0].strip() != FRONT_MATTER:
        return 0
    for i in range(1, len(lines)):
        if lines[i].strip() == FRONT_MATTER:
            return i + 1
    return 0


def first_content_index(lines: list[str]) -> Optional[int]:
    """Index of the first line that is not front matter, blank or a comment."""
    for i in range(front_matter_end(lines), len(lines)):
        if lines[i].strip() and not is_comment(lines[i]):
            return i
    return None


def parse_declaration(line: str, definition: DiagramTypeDefinition) -> Optional[tuple[str, str]]:
    """Split a declaration line into (keyword, rest); None if it is not one.

    The rest must be empty or start with one of the type's direction tokens,
    so body lines that merely begin with the keyword do not count.
    """
    keyword = definition.match_keyword(line)
    if keyword is None:
        return None
    rest = line.strip()[len(keyword):].strip()
    if not rest or rest.startswith(";"):
        return keyword, rest
    m = _DIRECTION_RE.match(rest)
    if m and m.group(1).upper() in {d.upper() for d in definition.directions}:
        return keyword, m.group(1).upper() + m.group(2)
    return None


def canonical_line(keyword: str, rest: str, definition: DiagramTypeDefinition) -> str:
    if definition.default_direction and (not rest or rest.startswith(";")):
        rest = definition.default_direction + rest
    if not rest:
        return keyword
    if rest.startswith(";"):
        return keyword + rest
    return f"{keyword} {rest}"


def normalize_declaration(text: str, definition: DiagramTypeDefinition) -> str:
    """Make the declaration the first semantic line of ``text``.

    - declaration missing everywhere: the canonical declaration is inserted
      before the first content line
    - declaration present further down: stray content lines before it are
      dropped, comments are kept
    - keyword spelling is canonicalized and directional types get their
      default direction when none is given
    """
    lines = [ln.rstrip() for ln in (text or "").splitlines()]
    while lines and not lines[0].strip():
        lines.pop(0)
    while lines and not lines[-1].strip():
        lines.pop()
    start = front_matter_end(lines)

    decl_index = None
    parsed = None
    for i in range(start, len(lines)):
        if is_comment(lines[i]):
            continue
        parsed = parse_declaration(lines[i], definition)
        if parsed is not None:
            decl_index = i
            break

    if decl_index is None:
        body_start = first_content_index(lines)
        if body_start is None:
            body_start = len(lines)
        declaration = definition.canonical_declaration
        rest = lines[body_start:]
    else:
        body_start = decl_index
        declaration = canonical_line(parsed[0], parsed[1], definition)
        rest = lines[decl_index + 1:]

    preamble = [ln for ln in lines[start:body_start] if is_comment(ln)]
    return "\n".join(lines[:start] + preamble + [declaration] + rest)

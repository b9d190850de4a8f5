"""Type-specific sanitizers applied after declaration normalization.

Each rule repairs a structural minimum the renderer insists on. Every rule
is idempotent, so sanitizing already-sanitized text changes nothing.
"""

import re
from typing import Callable

from .models import DiagramTypeDefinition
from .normalizer import first_content_index, is_comment

# ---------- gantt ----------

GANTT_DATE_FORMAT = "dateFormat YYYY-MM-DD"
GANTT_DEFAULT_SECTION = "section Tasks"

_GANTT_DIRECTIVES = (
    "title", "dateformat", "axisformat", "tickinterval", "excludes", "includes",
    "todaymarker", "weekday", "weekend", "displaymode", "inclusiveenddates",
    "topaxis", "section", "acctitle", "accdescr", "click",
)
_DATE_FORMAT_RE = re.compile(r"^\s*dateFormat\b", re.IGNORECASE)
_SECTION_RE = re.compile(r"^\s*section\b", re.IGNORECASE)


def _body_indent(lines: list[str], start: int) -> str:
    for ln in lines[start:]:
        if ln.strip():
            return ln[: len(ln) - len(ln.lstrip())]
    return "    "


def _is_gantt_directive(line: str) -> bool:
    stripped = line.strip()
    if not stripped or is_comment(line):
        return False
    return re.split(r"[\s:]", stripped, maxsplit=1)[0].lower() in _GANTT_DIRECTIVES


def _is_gantt_task(line: str) -> bool:
    stripped = line.strip()
    if not stripped or is_comment(line) or ":" not in stripped:
        return False
    first = re.split(r"[\s:]", stripped, maxsplit=1)[0].lower()
    return first not in _GANTT_DIRECTIVES


def sanitize_gantt(lines: list[str], decl: int) -> list[str]:
    indent = _body_indent(lines, decl + 1)
    if not any(_DATE_FORMAT_RE.match(ln) for ln in lines[decl + 1:]):
        lines.insert(decl + 1, indent + GANTT_DATE_FORMAT)
    if not any(_SECTION_RE.match(ln) for ln in lines[decl + 1:]):
        for i in range(decl + 1, len(lines)):
            if _is_gantt_task(lines[i]):
                lines.insert(i, indent + GANTT_DEFAULT_SECTION)
                break
        else:
            # No recognizable task: open the section after the last directive.
            last = max(i for i in range(decl + 1, len(lines)) if _is_gantt_directive(lines[i]))
            lines.insert(last + 1, indent + GANTT_DEFAULT_SECTION)
    return lines


# ---------- architecture ----------

_AMPERSAND_RE = re.compile(r"\s*&\s*")
_ARCH_EDGE_RE = re.compile(
    r"^(?P<indent>\s*)"
    r"(?P<left>[\w{}]+)(?::(?P<lport>[TBLRtblr]))?"
    r"\s*(?P<op><?[-.=]+>?)\s*"
    r"(?:(?P<rport>[TBLRtblr]):)?(?P<right>[\w{}]+)\s*$"
)


def _canonical_arch_edge(m: "re.Match[str]") -> str:
    op = m.group("op")
    arrow = ("<" if op.startswith("<") else "") + "--" + (">" if op.endswith(">") else "")
    lport = (m.group("lport") or "R").upper()
    rport = (m.group("rport") or "L").upper()
    return f"{m.group('indent')}{m.group('left')}:{lport} {arrow} {rport}:{m.group('right')}"


def sanitize_architecture(lines: list[str], decl: int) -> list[str]:
    for i in range(decl + 1, len(lines)):
        line = lines[i]
        if is_comment(line) or not line.strip():
            continue
        line = _AMPERSAND_RE.sub(" and ", line).replace("/", "-")
        m = _ARCH_EDGE_RE.match(line)
        if m:
            line = _canonical_arch_edge(m)
        lines[i] = line
    return lines


# ---------- flowchart ----------

_CLASSDEF_END_RE = re.compile(r"^(\s*classDef\s+)end\b")
_CLASS_END_RE = re.compile(r"^(\s*class\s+\S+\s+)end(\s*;?\s*)$")
_INLINE_END_RE = re.compile(r":::end\b")


def sanitize_flowchart(lines: list[str], decl: int) -> list[str]:
    for i in range(decl + 1, len(lines)):
        line = _CLASSDEF_END_RE.sub(r"\1endClass", lines[i])
        line = _CLASS_END_RE.sub(r"\1endClass\2", line)
        lines[i] = _INLINE_END_RE.sub(":::endClass", line)
    return lines


# ---------- mindmap ----------

def sanitize_mindmap(lines: list[str], decl: int) -> list[str]:
    return lines[: decl + 1] + [ln for ln in lines[decl + 1:] if "-->" not in ln]


# ---------- sequence ----------

_SEQUENCE_MESSAGE_RE = re.compile(r"\S\s*(?:-->>|->>|--x|-x|--\)|-\)|-->|->)\s*[+-]?\s*\S")
_SEQUENCE_KEYWORDS = {
    "participant", "actor", "note", "loop", "alt", "else", "opt", "par", "and",
    "rect", "end", "critical", "break", "activate", "deactivate", "autonumber",
    "box", "create", "destroy", "title", "link", "links",
}


def sanitize_sequence(lines: list[str], decl: int) -> list[str]:
    for i in range(decl + 1, len(lines)):
        line = lines[i]
        if is_comment(line) or ":" in line or not line.strip():
            continue
        if line.split()[0].lower() in _SEQUENCE_KEYWORDS:
            continue
        if _SEQUENCE_MESSAGE_RE.search(line):
            lines[i] = line.rstrip() + ": call"
    return lines


SANITIZERS: dict[str, Callable[[list[str], int], list[str]]] = {
    "gantt": sanitize_gantt,
    "architecture": sanitize_architecture,
    "flowchart": sanitize_flowchart,
    "mindmap": sanitize_mindmap,
    "sequence": sanitize_sequence,
}


def sanitize(text: str, definition: DiagramTypeDefinition) -> str:
    """Apply the sanitizer registered for ``definition``; others pass through."""
    rule = SANITIZERS.get(definition.id)
    if rule is None:
        return text
    lines = text.splitlines()
    decl = first_content_index(lines)
    if decl is None:
        return text
    return "\n".join(rule(list(lines), decl))

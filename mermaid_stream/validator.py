"""Validator adapter.

``validate(text, definition) -> ValidationResult`` is called exactly once per
completed candidate, before anything is persisted. The structural validator
runs in-process; the Mermaid CLI validator shells out to ``mmdc``.
"""

import asyncio
import logging
import os
import re
import subprocess
import tempfile
from dataclasses import dataclass
from typing import Optional, Protocol

from .config import GenerationSettings
from .models import DiagramTypeDefinition
from .normalizer import first_content_index, is_comment, parse_declaration

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    message: Optional[str] = None


VALID = ValidationResult(valid=True)


def _error(line_no: int, message: str) -> ValidationResult:
    return ValidationResult(valid=False, message=f"Error on line {line_no}: {message}")


class Validator(Protocol):
    async def validate(self, text: str, definition: DiagramTypeDefinition) -> ValidationResult: ...


_PAIRS = {")": "(", "]": "[", "}": "{"}
_QUOTED_RE = re.compile(r'"[^"]*"')
_ER_CARDINALITY_RE = re.compile(r"(?:\|o|\|\||\}o|\}\|)(?:--|\.\.)(?:o\||\|\||o\{|\|\{)")
# id>label] opens with '>' and closes with ']'.
_ASYMMETRIC_NODE_RE = re.compile(r"(?<=\w)>[^\]\n]*\]")
_ARCH_EDGE_RE = re.compile(r"^\s*[\w{}]+:[TBLR]\s+<?-->?\s+[TBLR]:[\w{}]+\s*$")
_DATE_FORMAT_RE = re.compile(r"^\s*dateFormat\s+\S", re.IGNORECASE)
_SECTION_RE = re.compile(r"^\s*section\b", re.IGNORECASE)

# Types whose lines carry free text after ':' that is not bracket-checked.
_FREE_TEXT_AFTER_COLON = {"sequence", "state"}
# Types whose syntax does not use bracket pairs structurally.
_NO_BRACKET_CHECK = {"gantt", "timeline", "sankey", "git"}


class StructuralValidator:
    """Cheap in-process checks that catch the common model mistakes."""

    async def validate(self, text: str, definition: DiagramTypeDefinition) -> ValidationResult:
        return self.check(text, definition)

    def check(self, text: str, definition: DiagramTypeDefinition) -> ValidationResult:
        lines = (text or "").splitlines()
        if not (text or "").strip():
            return _error(1, "diagram is empty")

        decl = first_content_index(lines)
        if decl is None:
            return _error(1, "missing diagram declaration")
        if parse_declaration(lines[decl], definition) is None:
            return _error(
                decl + 1,
                f"expected '{definition.canonical_declaration}' declaration, "
                f"found '{lines[decl].strip()}'",
            )

        body = [
            (i, ln) for i, ln in enumerate(lines)
            if i > decl and ln.strip() and not is_comment(ln)
        ]
        if not body:
            return _error(decl + 1, "diagram has no content")

        if definition.id not in _NO_BRACKET_CHECK:
            result = self._check_brackets(body, definition)
            if not result.valid:
                return result
        return self._check_type_rules(body, decl, definition)

    def _check_brackets(self, body, definition: DiagramTypeDefinition) -> ValidationResult:
        stack: list[tuple[str, int]] = []
        for i, line in body:
            if definition.id in _FREE_TEXT_AFTER_COLON:
                line = line.split(":", 1)[0]
            if definition.id == "erd":
                line = _ER_CARDINALITY_RE.sub(" ", line)
            elif definition.id == "flowchart":
                line = _ASYMMETRIC_NODE_RE.sub("", line)
            line = _QUOTED_RE.sub('""', line)
            for ch in line:
                if ch in "([{":
                    stack.append((ch, i + 1))
                elif ch in _PAIRS:
                    if not stack or stack[-1][0] != _PAIRS[ch]:
                        return _error(i + 1, f"unexpected '{ch}'")
                    stack.pop()
        if stack:
            ch, line_no = stack[-1]
            return _error(line_no, f"unclosed '{ch}'")
        return VALID

    def _check_type_rules(self, body, decl: int, definition: DiagramTypeDefinition) -> ValidationResult:
        if definition.id == "gantt":
            if not any(_DATE_FORMAT_RE.match(ln) for _, ln in body):
                return _error(decl + 1, "gantt chart requires a dateFormat directive")
            if not any(_SECTION_RE.match(ln) for _, ln in body):
                return _error(decl + 1, "gantt chart requires at least one section")
        elif definition.id == "mindmap":
            for i, ln in body:
                if "-->" in ln:
                    return _error(i + 1, "arrows are not allowed in a mindmap")
        elif definition.id == "architecture":
            for i, ln in body:
                if "&" in ln:
                    return _error(i + 1, "'&' is not allowed in architecture labels")
                if "--" in ln and not _ARCH_EDGE_RE.match(ln):
                    return _error(i + 1, f"malformed edge '{ln.strip()}'")
        return VALID


_PARSE_ERROR_RE = re.compile(r"(Parse error on line \d+:.*?)(?:\n\s*\n|\Z)", re.DOTALL)


def parse_cli_error(stderr: str) -> str:
    """Pull the parser's message out of mmdc's stderr."""
    m = _PARSE_ERROR_RE.search(stderr or "")
    if m:
        return m.group(1).strip()
    lines = [ln.strip() for ln in (stderr or "").splitlines() if ln.strip()]
    return lines[-1] if lines else "Mermaid CLI rejected the diagram"


class MermaidCliValidator:
    """Validates by rendering with the Mermaid CLI in a subprocess."""

    def __init__(self, cli_path: str = "mmdc", timeout: float = 60.0):
        self.cli_path = cli_path
        self.timeout = timeout

    async def validate(self, text: str, definition: DiagramTypeDefinition) -> ValidationResult:
        return await asyncio.to_thread(self.run, text)

    def run(self, text: str) -> ValidationResult:
        with tempfile.TemporaryDirectory() as tmp:
            src = os.path.join(tmp, "diagram.mmd")
            out = os.path.join(tmp, "diagram.svg")
            with open(src, "w", encoding="utf-8") as f:
                f.write(text)
            try:
                result = subprocess.run(
                    [self.cli_path, "-i", src, "-o", out, "-q"],
                    capture_output=True, text=True, timeout=self.timeout
                )
            except subprocess.TimeoutExpired:
                return ValidationResult(False, f"Mermaid CLI timed out after {self.timeout:g}s")
        if result.returncode == 0:
            return VALID
        message = parse_cli_error(result.stderr)
        log.info("validator.cli_rejected", extra={"returncode": result.returncode, "error": message})
        return ValidationResult(False, message)


def get_validator(settings: Optional[GenerationSettings] = None) -> Validator:
    """Build the validator named by ``settings.validator``."""
    settings = settings or GenerationSettings.from_env()
    if settings.validator == "structural":
        return StructuralValidator()
    if settings.validator == "mmdc":
        return MermaidCliValidator(cli_path=settings.mermaid_cli_path)
    raise ValueError(f"Unknown validator: {settings.validator}")

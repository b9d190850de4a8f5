"""Tests for the validator adapters."""

import os
import sys
from dataclasses import replace

import pytest

from mermaid_stream.validator import (
    MermaidCliValidator,
    StructuralValidator,
    ValidationResult,
    get_validator,
    parse_cli_error,
)


@pytest.fixture
def check(registry):
    validator = StructuralValidator()

    def _check(type_id, text):
        return validator.check(text, registry.resolve(type_id))
    return _check


class TestStructuralValidator:
    def test_valid_flowchart(self, check):
        text = (
            "flowchart TD\n"
            "    A[Start] --> B{Valid?}\n"
            "    B -->|yes| C(Done)\n"
            '    B -->|no| D["Retry (once)"]\n'
            "    D --> E>Flag]"
        )
        assert check("flowchart", text) == ValidationResult(valid=True)

    def test_empty(self, check):
        assert check("flowchart", "  \n").message == "Error on line 1: diagram is empty"

    def test_only_comments(self, check):
        assert check("flowchart", "%% nothing here").message == "Error on line 1: missing diagram declaration"

    def test_wrong_declaration(self, check):
        result = check("flowchart", "sequenceDiagram\n    A->>B: hi")
        assert not result.valid
        assert result.message == "Error on line 1: expected 'flowchart TD' declaration, found 'sequenceDiagram'"

    def test_no_content(self, check):
        assert check("flowchart", "flowchart TD\n%% todo").message == "Error on line 1: diagram has no content"

    def test_unclosed_bracket(self, check):
        result = check("flowchart", "flowchart TD\n    A[Start --> B\n    B --> C")
        assert result.message == "Error on line 2: unclosed '['"

    def test_unexpected_bracket(self, check):
        result = check("flowchart", "flowchart TD\n    A --> B]")
        assert result.message == "Error on line 2: unexpected ']'"

    def test_erd_cardinality_is_not_a_bracket(self, check):
        text = (
            "erDiagram\n"
            "    CUSTOMER ||--o{ ORDER : places\n"
            "    ORDER }|..|{ LINE-ITEM : contains\n"
            "    CUSTOMER {\n"
            "        string name\n"
            "    }"
        )
        assert check("erd", text).valid

    def test_sequence_message_text_is_free(self, check):
        assert check("sequence", "sequenceDiagram\n    Alice->>Bob: hello (world").valid

    def test_gantt_requires_date_format(self, check):
        result = check("gantt", "gantt\n    section A\n    Task :a1, 2024-01-01, 1d")
        assert result.message == "Error on line 1: gantt chart requires a dateFormat directive"

    def test_gantt_requires_section(self, check):
        result = check("gantt", "gantt\n    dateFormat YYYY-MM-DD\n    Task :a1, 2024-01-01, 1d")
        assert result.message == "Error on line 1: gantt chart requires at least one section"

    def test_mindmap_arrows(self, check):
        result = check("mindmap", "mindmap\n  root\n    a --> b")
        assert result.message == "Error on line 3: arrows are not allowed in a mindmap"

    def test_architecture_rules(self, check):
        assert check("architecture", "architecture-beta\n    service a(server)[A & B]").message == (
            "Error on line 2: '&' is not allowed in architecture labels"
        )
        assert check("architecture", "architecture-beta\n    a --> b").message == (
            "Error on line 2: malformed edge 'a --> b'"
        )
        assert check("architecture", "architecture-beta\n    service a(server)[A]\n    a:R --> L:b").valid

    @pytest.mark.asyncio
    async def test_validate_is_async(self, flowchart):
        result = await StructuralValidator().validate("flowchart TD\n    A --> B", flowchart)
        assert result.valid


class TestParseCliError:
    def test_parse_error_block(self):
        stderr = (
            "Error: Parse error on line 2:\n"
            "...A --> B]\n"
            "-------^\n"
            "Expecting 'SEMI', got ']'\n"
            "\n"
            "    at Parser.parseError (mermaid.js:1:2)"
        )
        assert parse_cli_error(stderr) == (
            "Parse error on line 2:\n...A --> B]\n-------^\nExpecting 'SEMI', got ']'"
        )

    def test_falls_back_to_last_line(self):
        assert parse_cli_error("something\nwent wrong\n") == "went wrong"

    def test_empty(self):
        assert parse_cli_error("") == "Mermaid CLI rejected the diagram"


@pytest.mark.skipif(sys.platform == "win32", reason="uses a shell script as the CLI")
class TestMermaidCliValidator:
    def _script(self, tmp_path, body):
        path = tmp_path / "fake-mmdc"
        path.write_text("#!/bin/sh\n" + body)
        os.chmod(path, 0o755)
        return str(path)

    @pytest.mark.asyncio
    async def test_rejection(self, tmp_path, flowchart):
        cli = self._script(tmp_path, "echo 'Parse error on line 2:' >&2\necho 'bad token' >&2\nexit 1\n")
        result = await MermaidCliValidator(cli_path=cli).validate("flowchart TD\n    A --> B]", flowchart)
        assert result == ValidationResult(False, "Parse error on line 2:\nbad token")

    @pytest.mark.asyncio
    async def test_success(self, tmp_path, flowchart):
        cli = self._script(tmp_path, "exit 0\n")
        result = await MermaidCliValidator(cli_path=cli).validate("flowchart TD\n    A --> B", flowchart)
        assert result.valid


class TestGetValidator:
    def test_structural(self, settings):
        assert isinstance(get_validator(settings), StructuralValidator)

    def test_cli(self, settings):
        validator = get_validator(replace(settings, validator="mmdc", mermaid_cli_path="/opt/mmdc"))
        assert isinstance(validator, MermaidCliValidator)
        assert validator.cli_path == "/opt/mmdc"

    def test_unknown(self, settings):
        with pytest.raises(ValueError, match="Unknown validator: nope"):
            get_validator(replace(settings, validator="nope"))

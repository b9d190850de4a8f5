"""Tests for the diagram type registry."""

import pytest

from mermaid_stream.errors import UnknownDiagramTypeError
from mermaid_stream.registry import DiagramTypeRegistry, get_default_registry

EXPECTED_TYPES = {
    "flowchart", "sequence", "class", "state", "erd", "gantt",
    "mindmap", "timeline", "sankey", "git", "architecture",
}


class TestDefaultRegistry:
    def test_all_types_loaded(self, registry):
        assert set(registry.ids()) == EXPECTED_TYPES
        assert len(registry) == len(EXPECTED_TYPES)

    def test_loaded_once(self):
        assert get_default_registry() is get_default_registry()

    def test_every_example_starts_with_a_keyword(self, registry):
        for definition in registry:
            first = definition.example.strip().splitlines()[0]
            assert definition.match_keyword(first), definition.id

    def test_canonical_declarations(self, registry):
        assert registry.resolve("flowchart").canonical_declaration == "flowchart TD"
        assert registry.resolve("state").canonical_declaration == "stateDiagram-v2"
        assert registry.resolve("architecture").canonical_declaration == "architecture-beta"


class TestResolve:
    @pytest.mark.parametrize("raw,expected", [
        ("flowchart", "flowchart"),
        ("  FlowChart ", "flowchart"),
        ("graph", "flowchart"),
        ("er", "erd"),
        ("ERD", "erd"),
        ("sequenceDiagram", "sequence"),
    ])
    def test_aliases_and_case(self, registry, raw, expected):
        assert registry.resolve(raw).id == expected

    def test_unknown(self, registry):
        with pytest.raises(UnknownDiagramTypeError, match="Unsupported diagram type: pie"):
            registry.resolve("pie")
        assert "pie" not in registry
        assert registry.find(None) is None

    def test_mapping_is_read_only(self, registry):
        with pytest.raises(TypeError):
            registry.definitions["pie"] = registry.resolve("flowchart")


class TestLoad:
    def test_load_custom_file(self, tmp_path):
        path = tmp_path / "types.yml"
        path.write_text(
            "types:\n"
            "  pie:\n"
            "    title: Pie chart\n"
            "    declaration_keywords: [pie]\n"
            "    canonical_declaration: pie\n"
            "    aliases: [donut]\n"
        )
        reg = DiagramTypeRegistry.load(path)
        assert reg.resolve("donut").id == "pie"
        assert reg.resolve("pie").directions == ()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            DiagramTypeRegistry.load(tmp_path / "nope.yml")

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yml"
        path.write_text("")
        with pytest.raises(ValueError):
            DiagramTypeRegistry.load(path)

"""Tests for the command-line interface."""

import json
import sys

import pytest

from mermaid_stream import cli
from mermaid_stream.cli import CLI_PROJECT, CliSession

VALID = "flowchart TD\n    A --> B\n    B --> C"
INVALID = "flowchart TD\n    A[Start --> B"


@pytest.fixture
def session_for(settings):
    def _make(stream, diagram_type="flowchart"):
        return CliSession(diagram_type, token_stream=stream, settings=settings)
    return _make


class TestCliSession:
    @pytest.mark.asyncio
    async def test_success_updates_conversation(self, session_for, fake_stream, chunk, fence, capsys):
        session = session_for(fake_stream(chunk(fence(VALID))))
        assert await session.send("user logs in") is True

        out = capsys.readouterr().out
        assert "SUCCESS (" in out
        assert VALID in out
        assert session.current == VALID
        assert [m.role for m in session.chat] == ["user", "assistant"]
        assert len(session.store.history(CLI_PROJECT)) == 1

    @pytest.mark.asyncio
    async def test_follow_up_sends_history(self, session_for, fake_stream, chunk, fence):
        stream = fake_stream(chunk(fence(VALID)), chunk(fence(VALID + "\n    C --> D")))
        session = session_for(stream)
        await session.send("user logs in")
        await session.send("add a step")
        assert len(stream.prompts[1].history) == 2
        assert len(session.store.history(CLI_PROJECT)) == 2

    @pytest.mark.asyncio
    async def test_failure_then_manual_retry(self, session_for, fake_stream, chunk, fence, capsys):
        stream = fake_stream(chunk(fence(INVALID)), chunk(fence(INVALID)), chunk(fence(VALID)))
        session = session_for(stream)
        assert await session.send("user logs in") is False

        out = capsys.readouterr().out
        assert "Retrying automatically..." in out
        assert "Type 'retry'" in out
        assert session.last_failure == "Error on line 2: unclosed '['"
        assert session.chat == []

        assert await session.send(session.last_prompt, is_retry=True) is True
        assert "Error on line 2: unclosed '['" in stream.prompts[2].user

    @pytest.mark.asyncio
    async def test_json_output(self, session_for, fake_stream, chunk, fence, capsys):
        session = session_for(fake_stream(chunk(fence(VALID))))
        await session.send("user logs in", as_json=True)
        events = [json.loads(line) for line in capsys.readouterr().out.splitlines() if line]
        assert events[-1]["isComplete"] is True
        assert events[-1]["mermaidSyntax"] == VALID


class TestMain:
    @pytest.fixture(autouse=True)
    def no_logging_setup(self, monkeypatch):
        monkeypatch.setattr(cli, "setup_logging", lambda level=None: None)

    def test_list_types(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["mermaid-stream", "--list-types"])
        cli.main()
        out = capsys.readouterr().out
        assert "flowchart" in out
        assert "sequenceDiagram" in out
        assert "aliases: er" in out

    def test_unknown_type(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["mermaid-stream", "-t", "pie", "-p", "x"])
        with pytest.raises(SystemExit) as exc:
            cli.main()
        assert exc.value.code == 2
        assert "Unsupported diagram type: pie" in capsys.readouterr().err

    def test_config(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["mermaid-stream", "--config"])
        cli.main()
        assert "Validator:" in capsys.readouterr().out

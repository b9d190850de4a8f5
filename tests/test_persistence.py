"""Tests for the artifact store and the persistence sink."""

import asyncio
import logging

import pytest

from mermaid_stream.errors import ErrorKind, PersistenceError, QuotaExceededError
from mermaid_stream.models import CommitRecord, HistoryEntry
from mermaid_stream.persistence import InMemoryArtifactStore, PersistenceSink


def record(request_id="req-1", text="flowchart TD\n    A --> B", project_id="proj-1", user_id="user-1"):
    return CommitRecord(
        request_id=request_id,
        user_id=user_id,
        project_id=project_id,
        entry=HistoryEntry(prompt="login flow", diagram_text=text),
        quota_unit=1000,
    )


class FlakyStore(InMemoryArtifactStore):
    """Fails the first ``failures`` writes with a retryable error."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures
        self.attempts = 0

    async def commit(self, record):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise PersistenceError(f"write conflict #{self.attempts}")
        return await super().commit(record)

    async def save_preview(self, project_id, image, artifact_id=None):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise PersistenceError("bucket unavailable")
        await super().save_preview(project_id, image, artifact_id)


def flaky(failures):
    s = FlakyStore(failures)
    s.add_user("user-1", quota_balance=5000)
    s.add_project("proj-1", owner_id="user-1")
    return s


class TestInMemoryStore:
    @pytest.mark.asyncio
    async def test_commit_writes_everything(self, store):
        rec = record()
        artifact_id = await store.commit(rec)
        assert artifact_id == rec.entry.id
        project = await store.get_project("proj-1")
        assert project.current_diagram == rec.entry.diagram_text
        assert [e.id for e in project.history] == [artifact_id]
        assert (await store.get_user("user-1")).quota_balance == 4000

    @pytest.mark.asyncio
    async def test_commit_is_idempotent_per_request(self, store):
        first = await store.commit(record())
        second = await store.commit(record())
        assert first == second
        assert len(store.history("proj-1")) == 1
        assert (await store.get_user("user-1")).quota_balance == 4000

    @pytest.mark.asyncio
    async def test_history_keeps_thirty_newest_first(self, store):
        for i in range(30):
            await store.append_history("proj-1", HistoryEntry(diagram_text=f"flowchart TD\n    n{i}"))
        oldest = store.history("proj-1")[-1]
        artifact_id = await store.commit(record())

        history = store.history("proj-1")
        assert len(history) == 30
        assert history[0].id == artifact_id
        assert history[1].diagram_text.endswith("n29")
        assert oldest.id not in {e.id for e in history}

    @pytest.mark.asyncio
    async def test_commit_checks_quota_before_writing(self, store):
        store.users["user-1"].quota_balance = 999
        with pytest.raises(QuotaExceededError):
            await store.commit(record())
        assert store.history("proj-1") == []
        assert store.projects["proj-1"].current_diagram is None

    @pytest.mark.asyncio
    async def test_getters_return_copies(self, store):
        project = await store.get_project("proj-1")
        project.current_diagram = "changed"
        assert store.projects["proj-1"].current_diagram is None
        assert await store.get_project("missing") is None
        assert await store.get_user("missing") is None

    @pytest.mark.asyncio
    async def test_preview_fills_entry_once(self, store):
        artifact_id = await store.commit(record())
        await store.save_preview("proj-1", "<svg>1</svg>", artifact_id)
        await store.save_preview("proj-1", "<svg>2</svg>", artifact_id)
        assert store.history("proj-1")[0].rendered_image == "<svg>1</svg>"
        assert store.projects["proj-1"].preview_image == "<svg>2</svg>"

    @pytest.mark.asyncio
    async def test_concurrent_commits_never_overdraw(self, store):
        store.users["user-1"].quota_balance = 1000
        sink = PersistenceSink(store)
        results = await asyncio.gather(sink.commit(record("a")), sink.commit(record("b")))
        assert sorted(r.ok for r in results) == [False, True]
        assert store.users["user-1"].quota_balance == 0
        assert len(store.history("proj-1")) == 1


class TestPersistenceSink:
    @pytest.mark.asyncio
    async def test_commit_ok(self, store, settings):
        result = await PersistenceSink(store, settings).commit(record())
        assert result.ok
        assert result.value == store.history("proj-1")[0].id

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, settings, caplog):
        s = flaky(failures=2)
        with caplog.at_level(logging.WARNING, logger="mermaid_stream.persistence"):
            result = await PersistenceSink(s, settings).commit(record())
        assert result.ok
        assert s.attempts == 3
        assert s.users["user-1"].quota_balance == 4000
        assert len([r for r in caplog.records if r.getMessage() == "persistence.retry"]) == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries(self, settings):
        s = flaky(failures=10)
        result = await PersistenceSink(s, settings).commit(record())
        assert result.kind is ErrorKind.PERSISTENCE
        assert result.message.startswith("The diagram is valid but could not be saved:")
        assert result.candidate == "flowchart TD\n    A --> B"
        assert s.attempts == settings.persist_attempts
        assert s.history("proj-1") == []

    @pytest.mark.asyncio
    async def test_quota(self, store, settings):
        store.users["user-1"].quota_balance = 10
        result = await PersistenceSink(store, settings).commit(record())
        assert result.kind is ErrorKind.QUOTA
        assert "10 available, 1000 required" in result.message

    @pytest.mark.asyncio
    async def test_missing_project_is_not_retried(self, store, settings):
        result = await PersistenceSink(store, settings).commit(record(project_id="nope"))
        assert result.kind is ErrorKind.PERSISTENCE
        assert "Project not found: nope" in result.message

    @pytest.mark.asyncio
    async def test_preview_failure_is_logged(self, settings, caplog):
        s = flaky(failures=10)
        with caplog.at_level(logging.WARNING, logger="mermaid_stream.persistence"):
            saved = await PersistenceSink(s, settings).save_preview("proj-1", "<svg/>")
        assert saved is False
        assert any(r.getMessage() == "persistence.preview_failed" for r in caplog.records)
        assert s.projects["proj-1"].preview_image is None

    @pytest.mark.asyncio
    async def test_preview_ok(self, store, settings):
        assert await PersistenceSink(store, settings).save_preview("proj-1", "<svg/>") is True
        assert store.projects["proj-1"].preview_image == "<svg/>"

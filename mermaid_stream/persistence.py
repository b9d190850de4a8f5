"""Persistence sink and the artifact store it writes to.

The primary commit (history head, current diagram, quota decrement) is one
atomic, idempotent store operation keyed by the logical request id. Writes
are retried with exponential backoff on ``PersistenceError``.
"""

import asyncio
import logging
from typing import Optional, Protocol

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import GenerationSettings
from .errors import (
    Err,
    ErrorKind,
    Ok,
    PersistenceError,
    ProjectNotFoundError,
    QuotaExceededError,
    Result,
    UserNotFoundError,
)
from .models import CommitRecord, HistoryEntry, ProjectRecord, UserAccount

log = logging.getLogger(__name__)


class ArtifactStore(Protocol):
    """Operations the pipeline needs from the store. All are safe to retry."""

    async def get_project(self, project_id: str) -> Optional[ProjectRecord]: ...

    async def get_user(self, user_id: str) -> Optional[UserAccount]: ...

    async def append_history(self, project_id: str, entry: HistoryEntry, limit: int = 30) -> None: ...

    async def decrement_quota(self, user_id: str, amount: int) -> int: ...

    async def upsert_current_diagram(self, project_id: str, diagram_text: str) -> None: ...

    async def save_preview(self, project_id: str, image: str, artifact_id: Optional[str] = None) -> None: ...

    async def commit(self, record: CommitRecord) -> str: ...


class InMemoryArtifactStore:
    """Process-local store; one lock serializes every mutation."""

    def __init__(self):
        self.projects: dict[str, ProjectRecord] = {}
        self.users: dict[str, UserAccount] = {}
        self._commits: dict[str, str] = {}
        self._lock = asyncio.Lock()

    # ---------- setup ----------

    def add_user(self, user_id: str, quota_balance: int = 0) -> UserAccount:
        user = UserAccount(user_id=user_id, quota_balance=quota_balance)
        self.users[user_id] = user
        return user

    def add_project(
        self,
        project_id: str,
        owner_id: Optional[str] = None,
        diagram_type: Optional[str] = None,
    ) -> ProjectRecord:
        project = ProjectRecord(project_id=project_id, owner_id=owner_id, diagram_type=diagram_type)
        self.projects[project_id] = project
        return project

    # ---------- unlocked helpers ----------

    def _project(self, project_id: str) -> ProjectRecord:
        project = self.projects.get(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    def _user(self, user_id: str) -> UserAccount:
        user = self.users.get(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    def _append(self, project_id: str, entry: HistoryEntry, limit: int) -> None:
        project = self._project(project_id)
        if any(e.id == entry.id for e in project.history):
            return
        project.history.insert(0, entry)
        del project.history[limit:]

    def _upsert(self, project_id: str, diagram_text: str) -> None:
        self._project(project_id).current_diagram = diagram_text

    def _decrement(self, user_id: str, amount: int) -> int:
        user = self._user(user_id)
        if user.quota_balance < amount:
            raise QuotaExceededError(user_id, user.quota_balance, amount)
        user.quota_balance -= amount
        return user.quota_balance

    # ---------- store protocol ----------

    async def get_project(self, project_id: str) -> Optional[ProjectRecord]:
        project = self.projects.get(project_id)
        return project.model_copy(deep=True) if project else None

    async def get_user(self, user_id: str) -> Optional[UserAccount]:
        user = self.users.get(user_id)
        return user.model_copy() if user else None

    async def append_history(self, project_id: str, entry: HistoryEntry, limit: int = 30) -> None:
        async with self._lock:
            self._append(project_id, entry, limit)

    async def decrement_quota(self, user_id: str, amount: int) -> int:
        async with self._lock:
            return self._decrement(user_id, amount)

    async def upsert_current_diagram(self, project_id: str, diagram_text: str) -> None:
        async with self._lock:
            self._upsert(project_id, diagram_text)

    async def save_preview(self, project_id: str, image: str, artifact_id: Optional[str] = None) -> None:
        async with self._lock:
            project = self._project(project_id)
            project.preview_image = image
            if artifact_id is None:
                return
            for entry in project.history:
                if entry.id == artifact_id and entry.rendered_image is None:
                    entry.rendered_image = image
                    break

    async def commit(self, record: CommitRecord) -> str:
        async with self._lock:
            existing = self._commits.get(record.request_id)
            if existing is not None:
                return existing
            self._project(record.project_id)
            user = self._user(record.user_id)
            if user.quota_balance < record.quota_unit:
                raise QuotaExceededError(record.user_id, user.quota_balance, record.quota_unit)

            self._append(record.project_id, record.entry, record.history_limit)
            self._upsert(record.project_id, record.entry.diagram_text)
            self._decrement(record.user_id, record.quota_unit)
            self._commits[record.request_id] = record.entry.id
            return record.entry.id

    def history(self, project_id: str) -> list[HistoryEntry]:
        return list(self._project(project_id).history)


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    log.warning("persistence.retry", extra={
        "attempt": retry_state.attempt_number,
        "error": str(exc),
    })


class PersistenceSink:
    """Commits accepted artifacts through a bounded retry policy."""

    def __init__(self, store: ArtifactStore, settings: Optional[GenerationSettings] = None):
        self.store = store
        self.settings = settings or GenerationSettings()

    def retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception_type(PersistenceError),
            stop=stop_after_attempt(self.settings.persist_attempts),
            wait=wait_exponential(
                multiplier=self.settings.persist_backoff,
                max=self.settings.persist_max_backoff,
            ),
            before_sleep=_log_retry,
            reraise=True,
        )

    async def commit(self, record: CommitRecord) -> Result[str]:
        """Commit once; returns the durable artifact id."""
        try:
            async for attempt in self.retrying():
                with attempt:
                    artifact_id = await self.store.commit(record)
        except QuotaExceededError as e:
            log.warning("persistence.quota_exhausted", extra={"user_id": record.user_id})
            return Err(ErrorKind.QUOTA, str(e), candidate=record.entry.diagram_text)
        except (PersistenceError, ProjectNotFoundError, UserNotFoundError) as e:
            log.error("persistence.commit_failed", extra={
                "request_id": record.request_id,
                "error": str(e),
            })
            return Err(
                ErrorKind.PERSISTENCE,
                f"The diagram is valid but could not be saved: {e}",
                candidate=record.entry.diagram_text,
            )
        log.info("persistence.committed", extra={
            "request_id": record.request_id,
            "project_id": record.project_id,
            "artifact_id": artifact_id,
        })
        return Ok(artifact_id)

    async def save_preview(self, project_id: str, image: str, artifact_id: Optional[str] = None) -> bool:
        """Store a rendered preview; an exhausted retry is logged, not raised."""
        try:
            async for attempt in self.retrying():
                with attempt:
                    await self.store.save_preview(project_id, image, artifact_id)
        except PersistenceError as e:
            log.warning("persistence.preview_failed", extra={
                "project_id": project_id,
                "artifact_id": artifact_id,
                "error": str(e),
            })
            return False
        return True

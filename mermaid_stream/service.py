"""Diagram generation service: request checks plus the streaming pipeline."""

import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional
from uuid import uuid4

from .config import GenerationSettings
from .emitter import DisconnectCheck
from .detect import TypeDetector
from .errors import (
    InvalidRequestError,
    ProjectNotFoundError,
    QuotaExceededError,
    Result,
    UnauthorizedError,
    UserNotFoundError,
)
from .llm import PydanticAITokenStream, TokenStream
from .log_utils import preview
from .models import (
    CommitRecord,
    ConversationMessage,
    DiagramArtifact,
    DiagramRequestBody,
    DetectTypeRequestBody,
    DiagramTypeDefinition,
    GenerationRequest,
    HistoryEntry,
    HistoryKind,
    PreviewRequestBody,
    SamplingParams,
)
from .persistence import ArtifactStore, InMemoryArtifactStore, PersistenceSink
from .prompts import PromptCompiler
from .registry import DiagramTypeRegistry, get_default_registry
from .retry import RetryController
from .validator import Validator, get_validator

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreparedRequest:
    """A logical request that passed every pre-stream check."""
    request_id: str
    user_id: str
    project_id: str
    definition: DiagramTypeDefinition
    generation: GenerationRequest
    client_rendered_image: Optional[str] = None


class DiagramService:
    """Wires registry, compiler, provider, validator and store together."""

    def __init__(
        self,
        store: Optional[ArtifactStore] = None,
        token_stream: Optional[TokenStream] = None,
        validator: Optional[Validator] = None,
        registry: Optional[DiagramTypeRegistry] = None,
        settings: Optional[GenerationSettings] = None,
        detector: Optional[TypeDetector] = None,
    ):
        self.settings = settings or GenerationSettings.from_env()
        self.registry = registry or get_default_registry()
        self.store = store if store is not None else InMemoryArtifactStore()
        self.token_stream = token_stream or PydanticAITokenStream()
        self.validator = validator or get_validator(self.settings)
        self.compiler = PromptCompiler(self.registry, self.settings.chat_context_limit)
        self.sink = PersistenceSink(self.store, self.settings)
        self.detector = detector or TypeDetector(self.registry)

    def sampling(self) -> SamplingParams:
        return SamplingParams(
            temperature=self.settings.temperature,
            top_p=self.settings.top_p,
            max_tokens=self.settings.max_tokens,
        )

    async def prepare(self, body: DiagramRequestBody, user_id: Optional[str]) -> PreparedRequest:
        """Run the pre-stream checks in order: caller, type, quota, project."""
        if not user_id:
            raise UnauthorizedError("Unauthorized")
        definition = self.registry.resolve(body.diagram_type)

        user = await self.store.get_user(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        if user.quota_balance < self.settings.quota_unit:
            raise QuotaExceededError(user_id, user.quota_balance, self.settings.quota_unit)

        if await self.store.get_project(body.project_id) is None:
            raise ProjectNotFoundError(body.project_id)

        prior: list[ConversationMessage] = [] if body.clear_cache else body.chat_history
        generation = GenerationRequest(
            prompt=body.text_prompt,
            diagram_type=definition.id,
            prior_messages=tuple(prior),
            is_retry=body.is_retry,
            failure_reason=body.failure_reason if body.is_retry else None,
            sampling=self.sampling(),
        )
        prepared = PreparedRequest(
            request_id=uuid4().hex,
            user_id=user_id,
            project_id=body.project_id,
            definition=definition,
            generation=generation,
            client_rendered_image=body.client_rendered_image,
        )
        log.info("diagram.request", extra={
            "request_id": prepared.request_id,
            "project_id": prepared.project_id,
            "diagram_type": definition.id,
            "is_retry": body.is_retry,
            "clear_cache": body.clear_cache,
            "history_len": len(prior),
            "prompt": preview(body.text_prompt, 100),
        })
        return prepared

    def controller(self, is_disconnected: Optional[DisconnectCheck] = None) -> RetryController:
        return RetryController(
            compiler=self.compiler,
            token_stream=self.token_stream,
            validator=self.validator,
            settings=self.settings,
            is_disconnected=is_disconnected,
        )

    async def stream(
        self,
        prepared: PreparedRequest,
        is_disconnected: Optional[DisconnectCheck] = None,
        controller: Optional[RetryController] = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield partial and terminal event dicts for one logical request."""
        controller = controller or self.controller(is_disconnected)

        async def commit(artifact: DiagramArtifact) -> Result[str]:
            entry = HistoryEntry(
                prompt=prepared.generation.prompt,
                diagram_text=artifact.normalized_text,
                kind=HistoryKind.CHAT,
            )
            record = CommitRecord(
                request_id=prepared.request_id,
                user_id=prepared.user_id,
                project_id=prepared.project_id,
                entry=entry,
                quota_unit=self.settings.quota_unit,
                history_limit=self.settings.history_limit,
            )
            result = await self.sink.commit(record)
            if result.ok and prepared.client_rendered_image:
                await self.sink.save_preview(prepared.project_id, prepared.client_rendered_image, result.value)
            return result

        async for event in controller.run(prepared.generation, commit):
            yield event

    async def generate(self, body: DiagramRequestBody, user_id: Optional[str]) -> list[dict[str, Any]]:
        """Run one logical request to completion and collect its events."""
        prepared = await self.prepare(body, user_id)
        return [event async for event in self.stream(prepared)]

    async def save_preview(self, body: PreviewRequestBody, user_id: Optional[str]) -> bool:
        if not user_id:
            raise UnauthorizedError("Unauthorized")
        if await self.store.get_project(body.project_id) is None:
            raise ProjectNotFoundError(body.project_id)
        return await self.sink.save_preview(body.project_id, body.image, body.artifact_id)

    async def detect_type(self, body: DetectTypeRequestBody, user_id: Optional[str]) -> DiagramTypeDefinition:
        """Pick the registered diagram type that best fits a free-text request."""
        if not user_id:
            raise UnauthorizedError("Unauthorized")
        if not body.prompt.strip():
            raise InvalidRequestError("Prompt is required")
        return await self.detector.detect(body.prompt)

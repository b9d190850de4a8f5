"""Retry controller for one logical request.

Runs the first attempt and, when it fails validation or yields no diagram,
exactly one automatic regeneration with the failure reason fed back into the
prompt and a higher sampling temperature. Each attempt gets a fresh stream
session. Transport failures and timeouts are terminal and leave the retry
budget untouched.
"""

import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from .config import GenerationSettings
from .emitter import DisconnectCheck, LineEmitter
from .errors import Err, ErrorKind, Ok, Result
from .llm import TokenStream
from .models import DiagramArtifact, DiagramTypeDefinition, FailureEvent, GenerationRequest, RetryState, SuccessEvent
from .normalizer import normalize_declaration
from .prompts import PromptCompiler
from .sanitizer import sanitize
from .validator import Validator

log = logging.getLogger(__name__)

CommitFn = Callable[[DiagramArtifact], Awaitable[Result[str]]]


class RetryController:
    """Drives up to ``1 + max_auto_retries`` attempts and yields event dicts.

    After ``run`` is exhausted, ``outcome`` is ``Ok(artifact)`` for a
    validated diagram or the final ``Err``; ``artifact_id`` is set only once
    the diagram was committed.
    """

    def __init__(
        self,
        compiler: PromptCompiler,
        token_stream: TokenStream,
        validator: Validator,
        settings: GenerationSettings,
        is_disconnected: Optional[DisconnectCheck] = None,
    ):
        self.compiler = compiler
        self.token_stream = token_stream
        self.validator = validator
        self.settings = settings
        self.is_disconnected = is_disconnected
        self.retry_state = RetryState(max_attempts=settings.max_auto_retries)
        self.outcome: Optional[Result[DiagramArtifact]] = None
        self.artifact_id: Optional[str] = None

    async def finalize(self, raw: str, definition: DiagramTypeDefinition) -> Result[DiagramArtifact]:
        """Normalize, sanitize and validate a completed candidate."""
        text = raw.strip()
        if not text:
            return Err(ErrorKind.EMPTY_ARTIFACT, "The diagram block was empty")
        normalized = sanitize(normalize_declaration(text, definition), definition)
        result = await self.validator.validate(normalized, definition)
        if not result.valid:
            return Err(
                ErrorKind.VALIDATION,
                result.message or "Diagram failed validation",
                candidate=text,
            )
        return Ok(DiagramArtifact(
            diagram_type=definition.id,
            raw_text=raw,
            normalized_text=normalized,
            is_valid=True,
        ))

    async def run(self, request: GenerationRequest, commit: CommitFn) -> AsyncIterator[dict[str, Any]]:
        definition = self.compiler.registry.resolve(request.diagram_type)
        current = request

        while True:
            log.info("retry.attempt", extra={
                "attempt": self.retry_state.attempt,
                "diagram_type": definition.id,
                "is_retry": current.is_retry,
                "temperature": current.sampling.temperature,
            })
            emitter = LineEmitter(self.settings, self.is_disconnected)
            prompt = self.compiler.compile(current)
            async for event in emitter.run(self.token_stream(prompt)):
                yield event.to_dict()

            result = emitter.result
            if result.ok:
                result = await self.finalize(result.value, definition)
            if result.ok:
                committed = await commit(result.value)
                if committed.ok:
                    self.outcome = result
                    self.artifact_id = committed.value
                    yield SuccessEvent(
                        mermaid_syntax=result.value.normalized_text,
                        artifact_id=committed.value,
                    ).to_dict()
                    return
                if committed.kind is ErrorKind.PERSISTENCE:
                    # The sink already logged the failed save; deliver the valid text.
                    self.outcome = result
                    yield SuccessEvent(mermaid_syntax=result.value.normalized_text).to_dict()
                    return
                result = committed

            if result.kind is ErrorKind.CANCELLED:
                self.outcome = result
                log.info("retry.cancelled", extra={"attempt": self.retry_state.attempt})
                return

            auto_retry = result.kind.consumes_retry and self.retry_state.can_retry
            yield FailureEvent(
                error_message=result.message,
                error_kind=result.kind.value,
                mermaid_syntax=result.candidate,
                needs_retry=result.kind.consumes_retry,
                auto_retry=auto_retry,
            ).to_dict()
            if not auto_retry:
                self.outcome = result
                log.info("retry.terminal_failure", extra={
                    "kind": result.kind.value,
                    "attempt": self.retry_state.attempt,
                })
                return

            self.retry_state = self.retry_state.advance(result.message)
            current = current.as_retry(result.message, self.settings.retry_temperature_step)

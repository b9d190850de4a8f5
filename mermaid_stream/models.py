"""Pydantic models for requests, artifacts, history and stream events."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


def _new_id() -> str:
    return uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DiagramTypeDefinition(BaseModel):
    """A supported diagram kind, as loaded from the registry file."""
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    declaration_keywords: tuple[str, ...] = Field(..., min_length=1)
    canonical_declaration: str
    default_direction: Optional[str] = None
    directions: tuple[str, ...] = ()
    aliases: tuple[str, ...] = ()
    description: str = ""
    prompt_template: Optional[str] = None
    example: str = ""

    def match_keyword(self, line: str) -> Optional[str]:
        """Return the declaration keyword ``line`` starts with, if any.

        Matching is case-insensitive, tolerates leading whitespace and requires
        a word boundary after the keyword.
        """
        stripped = line.lstrip().lower()
        for keyword in sorted(self.declaration_keywords, key=len, reverse=True):
            kw = keyword.lower()
            if not stripped.startswith(kw):
                continue
            rest = stripped[len(kw):]
            if not rest or not (rest[0].isalnum() or rest[0] == "_"):
                return keyword
        return None


class ConversationMessage(BaseModel):
    """A message in the conversation."""
    model_config = ConfigDict(extra="ignore")

    role: str = Field(..., description="'user' or 'assistant'")
    content: str = ""
    error: Optional[str] = None


class SamplingParams(BaseModel):
    """Sampling parameters forwarded to the completion provider."""
    model_config = ConfigDict(frozen=True)

    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    top_p: float = Field(default=0.95, gt=0.0, le=1.0)
    max_tokens: int = Field(default=4000, gt=0)


class GenerationRequest(BaseModel):
    """One physical generation attempt's input."""
    model_config = ConfigDict(frozen=True)

    prompt: str
    diagram_type: str
    prior_messages: tuple[ConversationMessage, ...] = ()
    is_retry: bool = False
    failure_reason: Optional[str] = None
    sampling: SamplingParams = Field(default_factory=SamplingParams)

    def as_retry(self, failure_reason: str, temperature_step: float) -> "GenerationRequest":
        """Request for the next attempt, steered away from ``failure_reason``."""
        temperature = min(1.0, self.sampling.temperature + temperature_step)
        return self.model_copy(update={
            "is_retry": True,
            "failure_reason": failure_reason,
            "sampling": self.sampling.model_copy(update={"temperature": temperature}),
        })


class DiagramArtifact(BaseModel):
    """A completed candidate after normalization and validation."""
    model_config = ConfigDict(frozen=True)

    diagram_type: str
    raw_text: str
    normalized_text: str
    is_valid: bool
    validation_message: Optional[str] = None


class HistoryKind(str, Enum):
    """How a history entry came to be."""
    CHAT = "chat"
    CODE = "code"
    REVERSION = "reversion"


class HistoryEntry(BaseModel):
    """One committed diagram in a project's history."""
    id: str = Field(default_factory=_new_id)
    prompt: Optional[str] = None
    diagram_text: str
    rendered_image: Optional[str] = None
    kind: HistoryKind = HistoryKind.CHAT
    timestamp: datetime = Field(default_factory=_utcnow)


class RetryState(BaseModel):
    """Automatic retry budget for one logical request."""
    model_config = ConfigDict(frozen=True)

    attempt: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=1, ge=0)
    last_failure_reason: Optional[str] = None

    @property
    def can_retry(self) -> bool:
        return self.attempt < self.max_attempts

    def advance(self, failure_reason: str) -> "RetryState":
        if not self.can_retry:
            raise ValueError(
                f"Retry budget exhausted ({self.attempt}/{self.max_attempts})"
            )
        return self.model_copy(update={
            "attempt": self.attempt + 1,
            "last_failure_reason": failure_reason,
        })


class ProjectRecord(BaseModel):
    """Store-side view of a project."""
    project_id: str
    owner_id: Optional[str] = None
    diagram_type: Optional[str] = None
    current_diagram: Optional[str] = None
    preview_image: Optional[str] = None
    history: list[HistoryEntry] = Field(default_factory=list)


class UserAccount(BaseModel):
    """Store-side view of a user's generation balance."""
    user_id: str
    quota_balance: int = 0


class CommitRecord(BaseModel):
    """Everything the store needs to commit one accepted artifact."""
    model_config = ConfigDict(frozen=True)

    request_id: str
    user_id: str
    project_id: str
    entry: HistoryEntry
    quota_unit: int
    history_limit: int = 30


# ============================================================================
# HTTP contracts
# ============================================================================

class DiagramRequestBody(BaseModel):
    """Inbound JSON body for a generation request."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    text_prompt: str = Field(..., alias="textPrompt", min_length=1)
    diagram_type: str = Field(..., alias="diagramType")
    project_id: str = Field(..., alias="projectId")
    client_rendered_image: Optional[str] = Field(
        default=None,
        alias="clientRenderedImage",
        validation_alias=AliasChoices("clientRenderedImage", "clientSvg"),
    )
    chat_history: list[ConversationMessage] = Field(default_factory=list, alias="chatHistory")
    is_retry: bool = Field(default=False, alias="isRetry")
    clear_cache: bool = Field(default=False, alias="clearCache")
    failure_reason: Optional[str] = Field(default=None, alias="failureReason")


class PreviewRequestBody(BaseModel):
    """Inbound JSON body for attaching a rendered preview."""
    model_config = ConfigDict(populate_by_name=True)

    project_id: str = Field(..., alias="projectId")
    artifact_id: Optional[str] = Field(default=None, alias="artifactId")
    image: str = Field(..., min_length=1)


class DetectTypeRequestBody(BaseModel):
    """Inbound JSON body for diagram type detection."""
    prompt: str = ""


class _StreamEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return self.model_dump(by_alias=True, exclude_none=True)


class PartialEvent(_StreamEvent):
    """Cumulative partial diagram text while the fence is open."""
    mermaid_syntax: str = Field(..., alias="mermaidSyntax")
    is_complete: Literal[False] = Field(default=False, alias="isComplete")


class SuccessEvent(_StreamEvent):
    """Terminal event for a validated diagram.

    ``artifact_id`` is absent when the diagram could not be saved.
    """
    mermaid_syntax: str = Field(..., alias="mermaidSyntax")
    artifact_id: Optional[str] = Field(default=None, alias="artifactId")
    is_complete: Literal[True] = Field(default=True, alias="isComplete")


class FailureEvent(_StreamEvent):
    """Terminal event for a failed attempt.

    ``auto_retry`` is set when the server regenerates right after this event
    within the same stream.
    """
    error: Literal[True] = True
    error_message: str = Field(..., alias="errorMessage")
    error_kind: str = Field(..., alias="errorKind")
    mermaid_syntax: Optional[str] = Field(default=None, alias="mermaidSyntax")
    needs_retry: bool = Field(default=False, alias="needsRetry")
    auto_retry: bool = Field(default=False, alias="autoRetry")
    is_complete: Literal[True] = Field(default=True, alias="isComplete")

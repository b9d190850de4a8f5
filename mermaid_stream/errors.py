"""Error taxonomy and pipeline result values.

Exceptions are raised at the edges (provider, store, request checks).
Inside the pipeline every stage returns an ``Ok`` or ``Err`` so the retry
controller can branch on the failure kind instead of catching.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Failure kinds a generation attempt can end with."""
    STREAM_TRANSPORT = "stream_transport"
    TIMEOUT = "timeout"
    VALIDATION = "validation"
    EMPTY_ARTIFACT = "empty_artifact"
    CANCELLED = "cancelled"
    PERSISTENCE = "persistence"
    QUOTA = "quota"

    @property
    def consumes_retry(self) -> bool:
        """Whether this failure may be answered with an automatic regeneration."""
        return self in (ErrorKind.VALIDATION, ErrorKind.EMPTY_ARTIFACT)


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    message: str
    candidate: Optional[str] = None

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]


class MermaidStreamError(Exception):
    """Base class for package errors."""


class StreamTransportError(MermaidStreamError):
    """The completion provider or the network failed mid-stream."""


class PersistenceError(MermaidStreamError):
    """A write to the artifact store failed and may be retried."""


class QuotaExceededError(MermaidStreamError):
    """The caller's generation balance cannot cover one more diagram."""

    def __init__(self, user_id: str, balance: int, required: int):
        super().__init__(
            f"Insufficient generation balance for user '{user_id}': "
            f"{balance} available, {required} required"
        )
        self.user_id = user_id
        self.balance = balance
        self.required = required


class UnknownDiagramTypeError(MermaidStreamError, ValueError):
    """Requested diagram type is not in the registry."""

    def __init__(self, diagram_type: str):
        super().__init__(f"Unsupported diagram type: {diagram_type}")
        self.diagram_type = diagram_type


class UnauthorizedError(MermaidStreamError):
    """No caller identity was supplied."""


class UserNotFoundError(MermaidStreamError, LookupError):
    """Caller has no account in the artifact store."""

    def __init__(self, user_id: str):
        super().__init__(f"User not found: {user_id}")
        self.user_id = user_id


class ProjectNotFoundError(MermaidStreamError, LookupError):
    """Project id does not exist in the artifact store."""

    def __init__(self, project_id: str):
        super().__init__(f"Project not found: {project_id}")
        self.project_id = project_id


class DiagramTypeNotDetectedError(MermaidStreamError, ValueError):
    """The model's answer did not name a registered diagram type."""

    def __init__(self, answer: str):
        super().__init__("Could not determine diagram type")
        self.answer = answer


class DetectionFailedError(MermaidStreamError):
    """The provider call for type detection failed."""


class InvalidRequestError(MermaidStreamError, ValueError):
    """The request body is missing a required value."""

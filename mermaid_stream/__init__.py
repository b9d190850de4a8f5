"""mermaid-stream - streaming LLM to validated Mermaid diagrams."""

from .models import (
    DiagramTypeDefinition,
    ConversationMessage,
    SamplingParams,
    GenerationRequest,
    DiagramArtifact,
    HistoryKind,
    HistoryEntry,
    RetryState,
    DiagramRequestBody,
    PreviewRequestBody,
    DetectTypeRequestBody,
    PartialEvent,
    SuccessEvent,
    FailureEvent,
)

from .config import (
    ModelProvider,
    GenerationSettings,
    get_model_name,
    get_ollama_base_url,
    print_config,
)

from .errors import (
    ErrorKind,
    Ok,
    Err,
    MermaidStreamError,
    StreamTransportError,
    PersistenceError,
    QuotaExceededError,
    UnknownDiagramTypeError,
    ProjectNotFoundError,
)

from .registry import DiagramTypeRegistry, get_default_registry
from .prompts import PromptCompiler, CompiledPrompt
from .extractor import ExtractorState, Phase, advance, finish
from .emitter import LineEmitter
from .normalizer import normalize_declaration
from .sanitizer import sanitize
from .validator import StructuralValidator, MermaidCliValidator, ValidationResult, get_validator
from .llm import PydanticAITokenStream
from .detect import TypeDetector
from .persistence import InMemoryArtifactStore, PersistenceSink
from .retry import RetryController
from .service import DiagramService

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Models
    "DiagramTypeDefinition",
    "ConversationMessage",
    "SamplingParams",
    "GenerationRequest",
    "DiagramArtifact",
    "HistoryKind",
    "HistoryEntry",
    "RetryState",
    "DiagramRequestBody",
    "PreviewRequestBody",
    "DetectTypeRequestBody",
    "PartialEvent",
    "SuccessEvent",
    "FailureEvent",
    # Config
    "ModelProvider",
    "GenerationSettings",
    "get_model_name",
    "get_ollama_base_url",
    "print_config",
    # Errors
    "ErrorKind",
    "Ok",
    "Err",
    "MermaidStreamError",
    "StreamTransportError",
    "PersistenceError",
    "QuotaExceededError",
    "UnknownDiagramTypeError",
    "ProjectNotFoundError",
    # Pipeline
    "DiagramTypeRegistry",
    "get_default_registry",
    "PromptCompiler",
    "CompiledPrompt",
    "ExtractorState",
    "Phase",
    "advance",
    "finish",
    "LineEmitter",
    "normalize_declaration",
    "sanitize",
    "StructuralValidator",
    "MermaidCliValidator",
    "ValidationResult",
    "get_validator",
    "PydanticAITokenStream",
    "TypeDetector",
    "InMemoryArtifactStore",
    "PersistenceSink",
    "RetryController",
    "DiagramService",
]

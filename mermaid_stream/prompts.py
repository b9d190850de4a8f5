"""Prompt templates and the prompt compiler.

Templates use {diagram_type}, {description}, {example}, {prompt} and
{failure_reason} placeholders. They are filled by plain string replacement
because the embedded Mermaid examples contain braces of their own.
"""

from dataclasses import dataclass
from typing import Optional

from .models import ConversationMessage, DiagramTypeDefinition, GenerationRequest, SamplingParams
from .registry import DiagramTypeRegistry, get_default_registry

SYSTEM_TEMPLATE = """You are an expert Mermaid.js author. Your task is to write one {diagram_type}.

Follow this guidance for the diagram type:
{description}

Reference example:
{example}

OUTPUT RULES:
1. Put the complete diagram in ONE fenced block that starts with ```mermaid and ends with ```
2. The first line inside the block is the diagram declaration (for example "{declaration}")
3. Do not put any other fenced blocks in your answer
4. Keep any explanation short and outside the fence

CONVERSATION RULES:
1. This is a continuous conversation. Earlier assistant messages contain the current diagram.
2. When the user asks for changes, modify the existing diagram instead of starting over.
3. Keep existing elements and structure unless the user asks to remove or change them."""


USER_TEMPLATE = """Create a Mermaid {diagram_type} for the following request:

{prompt}

Use the example as guidance:
{example}"""


FENCE_REMINDER = """

Start your diagram with ```mermaid and end it with ```."""


RETRY_TEMPLATE = """

The previous attempt produced a diagram that failed validation with this error:
{failure_reason}

Generate the diagram again. Use simpler, more conservative syntax:
- Only the basic constructs shown in the example
- Plain alphanumeric node ids, no reserved words such as "end"
- Quote labels that contain punctuation
- No styling, click handlers or experimental features"""


DETECT_TYPE_TEMPLATE = """You are a diagram type detection expert. Your task is to analyze the user's request and determine the most appropriate diagram type from the available options. Choose the single best matching type.

Available diagram types:
{catalog}

Respond with ONLY the diagram type name, nothing else. For example: "flowchart" or "sequence" or "class"."""


def type_catalog(registry: DiagramTypeRegistry) -> str:
    """One ``id: summary`` line per registered type."""
    lines = []
    for d in registry:
        summary = d.description.strip().split("\n")[0] if d.description.strip() else d.title
        lines.append(f"{d.id}: {summary}")
    return "\n".join(lines)


def fill_template(template: str, **values: Optional[str]) -> str:
    """Replace ``{name}`` placeholders without interpreting other braces."""
    result = template
    for name, value in values.items():
        result = result.replace("{" + name + "}", value or "")
    return result


@dataclass(frozen=True)
class CompiledPrompt:
    """Everything one provider call needs."""
    system: str
    user: str
    history: tuple[ConversationMessage, ...]
    sampling: SamplingParams


class PromptCompiler:
    """Builds provider prompts from a generation request."""

    def __init__(self, registry: Optional[DiagramTypeRegistry] = None, context_limit: int = 10):
        self.registry = registry or get_default_registry()
        self.context_limit = context_limit

    def system_prompt(self, definition: DiagramTypeDefinition) -> str:
        return fill_template(
            SYSTEM_TEMPLATE,
            diagram_type=definition.title,
            description=definition.description.strip(),
            example=definition.example.rstrip(),
            declaration=definition.canonical_declaration,
        )

    def user_prompt(self, definition: DiagramTypeDefinition, request: GenerationRequest) -> str:
        template = definition.prompt_template or USER_TEMPLATE
        user = fill_template(
            template.rstrip(),
            prompt=request.prompt.strip(),
            diagram_type=definition.title,
            example=definition.example.rstrip(),
        )
        user += FENCE_REMINDER
        if request.is_retry:
            user += fill_template(
                RETRY_TEMPLATE,
                failure_reason=request.failure_reason or "unknown error",
            )
        return user

    def select_history(self, messages) -> tuple[ConversationMessage, ...]:
        """Keep the most recent user/assistant turns that were not errors."""
        kept = [
            m for m in messages
            if m.role in ("user", "assistant") and not m.error and m.content.strip()
        ]
        if self.context_limit <= 0:
            return ()
        return tuple(kept[-self.context_limit:])

    def compile(self, request: GenerationRequest) -> CompiledPrompt:
        definition = self.registry.resolve(request.diagram_type)
        return CompiledPrompt(
            system=self.system_prompt(definition),
            user=self.user_prompt(definition, request),
            history=self.select_history(request.prior_messages),
            sampling=request.sampling,
        )

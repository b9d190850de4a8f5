"""Token stream reader: streams text deltas from the completion provider."""

import asyncio
import logging
from typing import AsyncIterator, Iterable, Optional, Protocol, Union

import httpx
from pydantic_ai import Agent
from pydantic_ai.exceptions import AgentRunError
from pydantic_ai.messages import ModelMessage, ModelRequest, ModelResponse, TextPart, UserPromptPart
from pydantic_ai.models import Model
from pydantic_ai.settings import ModelSettings

from .config import get_model_name
from .errors import StreamTransportError
from .log_utils import preview, verbose_llm
from .models import ConversationMessage
from .prompts import CompiledPrompt

log = logging.getLogger(__name__)


class TokenStream(Protocol):
    """Callable producing the provider's text deltas for one prompt.

    Implementations raise ``StreamTransportError`` for provider or network
    failures. Closing the returned iterator must stop provider consumption.
    """

    def __call__(self, prompt: CompiledPrompt) -> AsyncIterator[str]: ...


def to_model_messages(history: Iterable[ConversationMessage]) -> list[ModelMessage]:
    """Convert chat history into pydantic-ai message history."""
    messages: list[ModelMessage] = []
    for m in history:
        if m.role == "user":
            messages.append(ModelRequest(parts=[UserPromptPart(content=m.content)]))
        elif m.role == "assistant":
            messages.append(ModelResponse(parts=[TextPart(content=m.content)]))
    return messages


def to_model_settings(prompt: CompiledPrompt) -> ModelSettings:
    return ModelSettings(
        temperature=prompt.sampling.temperature,
        top_p=prompt.sampling.top_p,
        max_tokens=prompt.sampling.max_tokens,
    )


_END = object()  # marks end of queue


class AgentDeltaStream:
    """Async iterator over the text deltas of one agent run.

    A producer task owns the ``run_stream`` context and feeds a queue, so the
    consumer may stop early: ``aclose`` cancels the producer, which leaves the
    agent context through ordinary task cancellation.
    """

    def __init__(self, agent: Agent, prompt: CompiledPrompt):
        self.agent = agent
        self.prompt = prompt
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._task: Optional[asyncio.Task] = None
        self._finished = False

    def __aiter__(self) -> "AgentDeltaStream":
        return self

    async def __anext__(self) -> str:
        if self._finished:
            raise StopAsyncIteration
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._produce())
        item = await self._queue.get()
        if item is _END:
            self._finished = True
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            self._finished = True
            raise item
        return item

    async def _produce(self) -> None:
        history = to_model_messages(self.prompt.history)
        try:
            async with self.agent.run_stream(
                self.prompt.user,
                message_history=history or None,
                model_settings=to_model_settings(self.prompt),
            ) as result:
                async for delta in result.stream_text(delta=True, debounce_by=None):
                    await self._queue.put(delta)
        except (AgentRunError, httpx.HTTPError) as e:
            log.warning("llm.stream_failed", extra={"error": str(e)})
            error = StreamTransportError(str(e))
            error.__cause__ = e
            await self._queue.put(error)
            return
        except Exception as e:
            await self._queue.put(e)
            return
        await self._queue.put(_END)

    async def aclose(self) -> None:
        """Stop the provider run; safe to call at any point."""
        self._finished = True
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        log.debug("llm.stream_closed")


class PydanticAITokenStream:
    """Streams plain-text completions through a pydantic-ai agent."""

    def __init__(self, model: Optional[Union[str, Model]] = None):
        self.model = model
        self._agents: dict[str, Agent] = {}

    def get_agent(self, system: str) -> Agent:
        # One agent per distinct system prompt, i.e. per diagram type.
        agent = self._agents.get(system)
        if agent is None:
            agent = Agent(self.model or get_model_name(), instructions=system)
            self._agents[system] = agent
        return agent

    def __call__(self, prompt: CompiledPrompt) -> AgentDeltaStream:
        agent = self.get_agent(prompt.system)
        log.info("llm.request", extra={
            "model": str(self.model or get_model_name()),
            "history_len": len(prompt.history),
            "temperature": prompt.sampling.temperature,
            "user_preview": preview(prompt.user, 2000 if verbose_llm() else 200),
        })
        return AgentDeltaStream(agent, prompt)

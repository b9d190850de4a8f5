"""Async driver for the fence extractor.

Reads provider deltas, applies the settle and pacing delays, yields partial
events and checks for client disconnection at every suspension point.
"""

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional

from .config import GenerationSettings
from .errors import Err, ErrorKind, Ok, Result, StreamTransportError
from .extractor import ExtractorState, FenceClosed, FenceOpened, PartialFlush, advance, finish
from .models import PartialEvent

log = logging.getLogger(__name__)

DisconnectCheck = Callable[[], Awaitable[bool]]


class LineEmitter:
    """Drives one stream session.

    Iterate ``run(deltas)`` for partial events; once it is exhausted,
    ``result`` holds ``Ok(raw_candidate)`` or an ``Err``.
    """

    def __init__(
        self,
        settings: GenerationSettings,
        is_disconnected: Optional[DisconnectCheck] = None,
    ):
        self.settings = settings
        self._is_disconnected = is_disconnected
        self.state = ExtractorState()
        self.result: Optional[Result[str]] = None
        self.fence_opened = False

    async def cancelled(self) -> bool:
        if self._is_disconnected is None:
            return False
        return await self._is_disconnected()

    def _candidate(self) -> Optional[str]:
        return self.state.emitted_text or None

    def _fail(self, kind: ErrorKind, message: str) -> None:
        self.result = Err(kind, message, candidate=self._candidate())
        log.info("stream.failed", extra={
            "kind": kind.value,
            "error": message,
            "phase": self.state.phase.value,
            "emitted_length": self.state.emitted_length,
        })

    async def run(self, deltas: AsyncIterator[str]) -> AsyncIterator[PartialEvent]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.request_timeout
        iterator = deltas.__aiter__()
        try:
            while True:
                if await self.cancelled():
                    self._fail(ErrorKind.CANCELLED, "Client disconnected")
                    return
                remaining = deadline - loop.time()
                if remaining <= 0:
                    self._fail(ErrorKind.TIMEOUT, self._timeout_message())
                    return
                try:
                    delta = await asyncio.wait_for(iterator.__anext__(), timeout=remaining)
                except StopAsyncIteration:
                    break
                except asyncio.TimeoutError:
                    self._fail(ErrorKind.TIMEOUT, self._timeout_message())
                    return
                except StreamTransportError as e:
                    self._fail(ErrorKind.STREAM_TRANSPORT, f"Stream error: {e}")
                    return
                except Exception as e:
                    log.exception("stream.provider_error", extra={"error_type": type(e).__name__})
                    self._fail(ErrorKind.STREAM_TRANSPORT, f"Stream error: {e}")
                    return

                self.state, emissions = advance(self.state, delta)
                for emission in emissions:
                    if isinstance(emission, FenceOpened):
                        self.fence_opened = True
                        log.info("stream.fence_opened")
                        await asyncio.sleep(self.settings.settle_delay)
                    elif isinstance(emission, PartialFlush):
                        if await self.cancelled():
                            self._fail(ErrorKind.CANCELLED, "Client disconnected")
                            return
                        log.debug("stream.partial", extra={
                            "lines": len(emission.lines),
                            "emitted_length": len(emission.text),
                        })
                        yield PartialEvent(mermaid_syntax=emission.text)
                        await asyncio.sleep(self.settings.pacing_delay)
                    elif isinstance(emission, FenceClosed):
                        log.info("stream.fence_closed", extra={"raw_length": len(emission.raw)})
                        await asyncio.sleep(self.settings.completion_delay)
                        self.result = Ok(emission.raw)
                        return

            self.state, _ = finish(self.state)
            self._fail(ErrorKind.EMPTY_ARTIFACT, self._aborted_message())
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    def _timeout_message(self) -> str:
        return f"Generation timed out after {self.settings.request_timeout:g}s"

    def _aborted_message(self) -> str:
        if self.fence_opened:
            return "The response ended before the diagram was complete"
        return "No mermaid code block found in the response"

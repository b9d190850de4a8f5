"""Fence extractor.

A pure state machine that pulls one ```mermaid fenced block out of an
incrementally arriving completion::

    SEEKING_FENCE -> COLLECTING -> DONE
          \\              \\
           +--------------+--> ABORTED   (stream ended first)

``advance`` consumes one text delta and ``finish`` marks the end of the
stream. Both return the next state plus the emissions the driver must act
on; neither performs I/O.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Union

OPEN_MARKER = "```mermaid"
CLOSE_MARKER = "```"

MIN_FLUSH_LINES = 2


class Phase(str, Enum):
    SEEKING_FENCE = "seeking_fence"
    COLLECTING = "collecting"
    DONE = "done"
    ABORTED = "aborted"


@dataclass(frozen=True)
class FenceOpened:
    """The opening marker was found."""


@dataclass(frozen=True)
class PartialFlush:
    """Buffered lines became visible; ``text`` is the cumulative partial."""
    text: str
    lines: tuple[str, ...]


@dataclass(frozen=True)
class FenceClosed:
    """The closing marker was found; ``raw`` is the complete candidate."""
    raw: str


Emission = Union[FenceOpened, PartialFlush, FenceClosed]


@dataclass(frozen=True)
class ExtractorState:
    """Session state for one stream.

    ``accumulated_text`` holds text not yet consumed: a bounded tail while
    seeking, the current incomplete line while collecting.
    """
    phase: Phase = Phase.SEEKING_FENCE
    accumulated_text: str = ""
    line_buffer: tuple[str, ...] = ()
    emitted_text: str = ""
    raw: Optional[str] = None
    header_pending: bool = False

    @property
    def in_fence(self) -> bool:
        return self.phase is Phase.COLLECTING

    @property
    def emitted_length(self) -> int:
        return len(self.emitted_text)

    @property
    def terminal(self) -> bool:
        return self.phase in (Phase.DONE, Phase.ABORTED)


def _flush(state: ExtractorState, lines: tuple[str, ...]) -> tuple[ExtractorState, PartialFlush]:
    text = state.emitted_text + "\n".join(lines) + "\n"
    return replace(state, emitted_text=text, line_buffer=()), PartialFlush(text=text, lines=lines)


def _seek(state: ExtractorState, delta: str) -> tuple[ExtractorState, list[Emission]]:
    text = state.accumulated_text + delta
    idx = text.find(OPEN_MARKER)
    if idx < 0:
        # Keep just enough to catch a marker split across deltas.
        keep = len(OPEN_MARKER) - 1
        return replace(state, accumulated_text=text[-keep:]), []

    opened = replace(
        state,
        phase=Phase.COLLECTING,
        accumulated_text="",
        header_pending=True,
    )
    state, emissions = _collect(opened, text[idx + len(OPEN_MARKER):])
    return state, [FenceOpened(), *emissions]


def _close(state: ExtractorState, body_tail: str) -> tuple[ExtractorState, list[Emission]]:
    lines = list(state.line_buffer)
    parts = body_tail.split("\n")
    lines.extend(parts[:-1])
    if parts[-1].strip():
        lines.append(parts[-1])

    emissions: list[Emission] = []
    if lines:
        state, flush = _flush(state, tuple(lines))
        emissions.append(flush)
    state = replace(
        state,
        phase=Phase.DONE,
        accumulated_text="",
        line_buffer=(),
        raw=state.emitted_text,
        header_pending=False,
    )
    emissions.append(FenceClosed(raw=state.emitted_text))
    return state, emissions


def _collect(state: ExtractorState, delta: str) -> tuple[ExtractorState, list[Emission]]:
    pending = state.accumulated_text + delta

    if state.header_pending:
        newline = pending.find("\n")
        close = pending.find(CLOSE_MARKER)
        if close >= 0 and (newline < 0 or close < newline):
            # Whole diagram on the fence line.
            return _close(replace(state, header_pending=False), pending[:close].strip())
        if newline < 0:
            return replace(state, accumulated_text=pending), []
        state = replace(state, header_pending=False)
        pending = pending[newline + 1:]

    close = pending.find(CLOSE_MARKER)
    if close >= 0:
        return _close(state, pending[:close])

    parts = pending.split("\n")
    buffer = state.line_buffer + tuple(parts[:-1])
    state = replace(state, accumulated_text=parts[-1], line_buffer=buffer)
    if len(buffer) >= MIN_FLUSH_LINES:
        state, flush = _flush(state, buffer)
        return state, [flush]
    return state, []


def advance(state: ExtractorState, delta: str) -> tuple[ExtractorState, list[Emission]]:
    """Consume one delta. Terminal states ignore further input."""
    if state.terminal or not delta:
        return state, []
    if state.phase is Phase.SEEKING_FENCE:
        return _seek(state, delta)
    return _collect(state, delta)


def finish(state: ExtractorState) -> tuple[ExtractorState, list[Emission]]:
    """Mark the end of the stream; anything short of DONE becomes ABORTED."""
    if state.terminal:
        return state, []
    return replace(state, phase=Phase.ABORTED, line_buffer=(), accumulated_text=""), []


def extract(deltas) -> ExtractorState:
    """Run a complete, already-buffered sequence of deltas through the machine."""
    state = ExtractorState()
    for delta in deltas:
        state, _ = advance(state, delta)
        if state.terminal:
            return state
    state, _ = finish(state)
    return state

"""Stream transport — delivers a round as content frames plus one complete frame.

Wire format (one JSON object per line):

    {"type": "content", "data": "<fragment>"}         repeated
    {"type": "complete", "choices": [{"id": ..., "text": ...}, ...]}

Two frame sources share the `stream(request)` async-iterator signature:

    LocalTransport  — calls a generator in-process and chops its markup into
                      small random fragments with random delays, the way a
                      token stream arrives. Fast mode sends one fragment.
    HttpTransport   — POSTs to a story server and decodes its NDJSON stream.

The transport never looks inside the payload. A failed generator or a
broken connection raises TransportError; there are no retries and no
complete frame is ever produced for a failed round.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from typing import Protocol

import httpx
from pydantic import BaseModel, Field, TypeAdapter, ValidationError, model_validator

from story_engine.generators import Generator
from story_engine.models import CompleteFrame, ContentFrame, Frame, RoundRequest

logger = logging.getLogger(__name__)

_frame_adapter = TypeAdapter(Frame)


class TransportError(RuntimeError):
    """Raised when a round cannot be delivered."""


class FramePolicy(BaseModel):
    """How the markup is cut into frames and paced."""

    min_chunk: int = Field(1, ge=1)
    max_chunk: int = Field(3, ge=1)
    min_delay: float = Field(0.02, ge=0)
    max_delay: float = Field(0.1, ge=0)
    initial_delay: float = Field(0.0, ge=0)
    fast: bool = False

    @model_validator(mode="after")
    def _check_ranges(self) -> FramePolicy:
        if self.min_chunk > self.max_chunk:
            raise ValueError("min_chunk must not exceed max_chunk")
        if self.min_delay > self.max_delay:
            raise ValueError("min_delay must not exceed max_delay")
        return self


class FrameSource(Protocol):
    def stream(self, request: RoundRequest) -> AsyncIterator[Frame]: ...


def split_markup(markup: str, policy: FramePolicy, rng: random.Random) -> list[str]:
    """Cut markup into payloads of min_chunk..max_chunk characters.

    Only the final payload may be shorter, when the string runs out.
    """
    if not markup:
        return []
    if policy.fast:
        return [markup]
    payloads: list[str] = []
    pos = 0
    while pos < len(markup):
        size = rng.randint(policy.min_chunk, policy.max_chunk)
        payloads.append(markup[pos:pos + size])
        pos += size
    return payloads


# ---------------------------------------------------------------------------
# Wire codec
# ---------------------------------------------------------------------------

def encode_frame(frame: ContentFrame | CompleteFrame) -> str:
    return frame.model_dump_json() + "\n"


def decode_frame(line: str) -> ContentFrame | CompleteFrame:
    return _frame_adapter.validate_json(line)


async def read_frames(lines: AsyncIterable[str]) -> AsyncIterator[ContentFrame | CompleteFrame]:
    """Decode an NDJSON line stream into frames.

    Malformed lines are skipped. The stream must end with a complete frame;
    anything after it is ignored.
    """
    completed = False
    async for line in lines:
        if not line.strip():
            continue
        if completed:
            logger.warning("Ignoring frame after complete: %r", line[:80])
            continue
        try:
            frame = decode_frame(line)
        except ValidationError as e:
            logger.warning("Skipping malformed frame %r: %s", line[:80], e)
            continue
        if isinstance(frame, CompleteFrame):
            completed = True
        yield frame
    if not completed:
        raise TransportError("Stream ended before the complete frame")


# ---------------------------------------------------------------------------
# LocalTransport
# ---------------------------------------------------------------------------

class LocalTransport:
    """Runs a generator in-process and streams its output as frames.

    Args:
        generator: Produces the round's markup and choices.
        policy:    Chunk sizes and delays. Defaults to FramePolicy().
        rng:       Random source for chunk sizes and delays.
        sleep:     Awaitable delay function; tests pass a no-op.
    """

    def __init__(
        self,
        generator: Generator,
        policy: FramePolicy | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self._generator = generator
        self._policy = policy or FramePolicy()
        self._rng = rng or random.Random()
        self._sleep = sleep

    @property
    def policy(self) -> FramePolicy:
        return self._policy

    async def stream(self, request: RoundRequest) -> AsyncIterator[ContentFrame | CompleteFrame]:
        policy = self._policy
        if request.fast_mode and not policy.fast:
            policy = policy.model_copy(update={"fast": True})

        try:
            script = await self._generator(request)
        except Exception as e:
            logger.error("Generator failed for %r: %s", request.utterance, e)
            raise TransportError(f"Story generation failed: {e}") from e

        payloads = split_markup(script.markup, policy, self._rng)
        logger.debug(
            "streaming round frames=%d chars=%d fast=%s",
            len(payloads), len(script.markup), policy.fast,
        )
        if policy.initial_delay and not policy.fast:
            await self._sleep(policy.initial_delay)
        for i, payload in enumerate(payloads):
            if i and not policy.fast:
                await self._sleep(self._rng.uniform(policy.min_delay, policy.max_delay))
            yield ContentFrame(data=payload)
        yield CompleteFrame(choices=script.choices)


# ---------------------------------------------------------------------------
# HttpTransport
# ---------------------------------------------------------------------------

class HttpTransport:
    """Reads rounds from a story server's POST /api/story endpoint."""

    def __init__(self, base_url: str, timeout: float = 120.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    async def stream(self, request: RoundRequest) -> AsyncIterator[ContentFrame | CompleteFrame]:
        url = f"{self._base_url}/api/story"
        logger.debug("requesting round url=%s utterance=%r", url, request.utterance)
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                async with client.stream("POST", url, json=request.model_dump()) as resp:
                    resp.raise_for_status()
                    async for frame in read_frames(resp.aiter_lines()):
                        yield frame
        except httpx.ConnectError as e:
            raise TransportError(f"Cannot connect to story server at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"Story server returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise TransportError(f"Story server timed out after {self._timeout}s") from e
        except httpx.TransportError as e:
            raise TransportError(f"Story stream interrupted: {e}") from e

# health_explorer/runtime/decoder.py
from __future__ import annotations

import enum
import logging
from typing import AsyncIterable, Callable, List, Optional

from health_explorer.runtime.grammar import ResponseParser, parse_response
from health_explorer.schemas.chat import ParsedResponse

logger = logging.getLogger(__name__)

TextCallback = Callable[[str], None]

_OPEN = "<reasoning>"
_CLOSE = "</reasoning>"


class EmptyResponseError(RuntimeError):
    """The model stream ended without any usable text."""


class DecoderStateError(RuntimeError):
    pass


class DecoderState(str, enum.Enum):
    ACCUMULATING = "accumulating"
    COMPLETE = "complete"
    FAILED = "failed"


def _strip_partial_close(text: str) -> str:
    """Drop a trailing prefix of ``</reasoning>`` that is still streaming in."""
    for n in range(min(len(_CLOSE) - 1, len(text)), 0, -1):
        if text.endswith(_CLOSE[:n]):
            return text[:-n]
    return text


class ReasoningScanner:
    """Follows the first ``<reasoning>`` region across stream increments.

    Only the new increment plus a tag-sized tail of the previous text is
    searched on each call, so tags split across increments are still found.
    """

    def __init__(self) -> None:
        self._tail = ""
        self._interior: Optional[str] = None
        self._closed = False
        self._last = ""

    @property
    def closed(self) -> bool:
        return self._closed

    def update(self, chunk: str) -> Optional[str]:
        """Feed one increment; return the trimmed interior if it changed."""
        if self._closed or not chunk:
            return None

        if self._interior is None:
            window = self._tail + chunk
            at = window.find(_OPEN)
            if at < 0:
                self._tail = window[-(len(_OPEN) - 1):]
                return None
            self._interior = ""
            self._tail = ""
            chunk = window[at + len(_OPEN):]

        window = self._tail + chunk
        end = window.find(_CLOSE)
        if end >= 0:
            self._interior += window[:end]
            self._tail = ""
            self._closed = True
            current = self._interior
        else:
            keep = len(_CLOSE) - 1
            if len(window) > keep:
                self._interior += window[:-keep]
                self._tail = window[-keep:]
            else:
                self._tail = window
            current = self._interior + _strip_partial_close(self._tail)

        current = current.strip()
        if not current or current == self._last:
            return None
        self._last = current
        return current


class StreamingDecoder:
    """ACCUMULATING -> COMPLETE on :meth:`finish`, or -> FAILED on :meth:`fail`.

    ``on_text`` receives every increment in arrival order; ``on_reasoning``
    receives the live reasoning excerpt whenever it grows. The final parse in
    :meth:`finish` is authoritative.
    """

    def __init__(
        self,
        on_text: Optional[TextCallback] = None,
        on_reasoning: Optional[TextCallback] = None,
        *,
        parser: Optional[ResponseParser] = None,
    ) -> None:
        self.on_text = on_text
        self.on_reasoning = on_reasoning
        self.parser = parser
        self.state = DecoderState.ACCUMULATING
        self.result: Optional[ParsedResponse] = None
        self.error: Optional[BaseException] = None
        self._chunks: List[str] = []
        self._scanner = ReasoningScanner()

    @property
    def text(self) -> str:
        return "".join(self._chunks)

    def _require_accumulating(self) -> None:
        if self.state is not DecoderState.ACCUMULATING:
            raise DecoderStateError(f"decoder is {self.state.value}")

    def feed(self, text: str) -> None:
        self._require_accumulating()
        if not text:
            return
        self._chunks.append(text)
        if self.on_text is not None:
            self.on_text(text)
        reasoning = self._scanner.update(text)
        if reasoning is not None and self.on_reasoning is not None:
            self.on_reasoning(reasoning)

    def finish(self) -> ParsedResponse:
        self._require_accumulating()
        full = self.text
        if not full.strip():
            exc = EmptyResponseError("model returned an empty response")
            self.fail(exc)
            raise exc
        self.result = self.parser.parse(full) if self.parser else parse_response(full)
        self.state = DecoderState.COMPLETE
        return self.result

    def fail(self, exc: BaseException) -> None:
        self._require_accumulating()
        self.state = DecoderState.FAILED
        self.error = exc
        logger.warning("Response stream failed after %d chunks: %s", len(self._chunks), exc)


async def decode_stream(
    source: AsyncIterable[str],
    on_text: Optional[TextCallback] = None,
    on_reasoning: Optional[TextCallback] = None,
    *,
    parser: Optional[ResponseParser] = None,
) -> ParsedResponse:
    """Drain ``source`` through a :class:`StreamingDecoder` and return the final parse.

    Transport errors propagate unchanged; the partial buffer is never parsed.
    """
    decoder = StreamingDecoder(on_text, on_reasoning, parser=parser)
    try:
        async for chunk in source:
            decoder.feed(chunk)
    except Exception as exc:
        decoder.fail(exc)
        raise
    return decoder.finish()

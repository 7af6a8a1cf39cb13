"""
aistream - SSE Frame Tokenizer

Turns an arbitrarily chunked byte stream into Server-Sent Event frames.

A frame is an optional `event:` line plus one or more `data:` lines,
terminated by a blank line. The tokenizer buffers the unconsumed tail
between reads, so the output is identical however the bytes were split,
including splits inside a line or inside a multi-byte UTF-8 character.

Usage:
    tokenizer = FrameTokenizer()
    async for raw in response.aiter_bytes():
        for frame in tokenizer.feed(raw):
            handle(frame.event, frame.payload)
    for frame in tokenizer.close():
        handle(frame.event, frame.payload)
"""

import codecs
import json
from dataclasses import dataclass, field
from typing import Any, List, Optional


DONE_SENTINEL = "[DONE]"


@dataclass
class SSEFrame:
    """One dispatched SSE event."""
    event: str = ""
    data_lines: List[str] = field(default_factory=list)

    @property
    def data(self) -> str:
        return "\n".join(self.data_lines)

    @property
    def is_done_sentinel(self) -> bool:
        return self.data.strip() == DONE_SENTINEL

    @property
    def payload(self) -> Optional[Any]:
        """Parsed JSON data, or None when the data is not JSON."""
        data = self.data.strip()
        if not data or data == DONE_SENTINEL:
            return None
        try:
            return json.loads(data)
        except ValueError:
            return None


class FrameTokenizer:
    """Incremental SSE parser; feed bytes in, get complete frames out."""

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._event = ""
        self._data_lines: List[str] = []
        self._closed = False

    def feed(self, chunk: bytes) -> List[SSEFrame]:
        """Consume one network read and return the frames it completed."""
        if self._closed:
            raise RuntimeError("FrameTokenizer is closed")
        self._buffer += self._decoder.decode(chunk)
        return self._drain_lines()

    def close(self) -> List[SSEFrame]:
        """
        Flush at end of body.

        A final frame whose blank-line terminator never arrived is still
        dispatched, since some servers close right after the last data line.
        """
        if self._closed:
            return []
        self._buffer += self._decoder.decode(b"", final=True)
        frames = self._drain_lines()
        if self._buffer:
            self._process_line(self._buffer.rstrip("\r"))
            self._buffer = ""
        pending = self._dispatch()
        if pending is not None:
            frames.append(pending)
        self._closed = True
        return frames

    def _drain_lines(self) -> List[SSEFrame]:
        frames = []
        while True:
            newline = self._buffer.find("\n")
            if newline < 0:
                break
            line = self._buffer[:newline].rstrip("\r")
            self._buffer = self._buffer[newline + 1:]
            if line == "":
                frame = self._dispatch()
                if frame is not None:
                    frames.append(frame)
            else:
                self._process_line(line)
        return frames

    def _process_line(self, line: str) -> None:
        if line.startswith(":"):
            return  # comment / keep-alive

        name, sep, value = line.partition(":")
        if not sep:
            name, value = line, ""
        elif value.startswith(" "):
            value = value[1:]

        if name == "event":
            self._event = value.strip()
        elif name == "data":
            self._data_lines.append(value)
        # id/retry and unknown fields are ignored

    def _dispatch(self) -> Optional[SSEFrame]:
        if not self._data_lines:
            self._event = ""
            return None
        frame = SSEFrame(event=self._event, data_lines=self._data_lines)
        self._event = ""
        self._data_lines = []
        return frame

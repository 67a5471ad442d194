"""Code generation into a primary buffer that overflows into fixed-size segments."""

from __future__ import annotations

import enum
import os
from pathlib import Path
from typing import BinaryIO

from blazec.x64 import CodeBuffer

DEFAULT_INITIAL_SIZE = 1024 * 1024
DEFAULT_SEGMENT_SIZE = 1024 * 1024
DEFAULT_MAX_SEGMENTS = 1024
DEFAULT_STREAM_THRESHOLD = 64 * 1024 * 1024


class StreamingMode(enum.Enum):
    """How generated code reaches the output file."""

    MEMORY = "memory"
    THRESHOLD = "threshold"


class ScalableError(RuntimeError):
    """Raised when code generation cannot continue."""


class ScalableCodeGen:
    """Emits bytes into a primary buffer, then into overflow segments.

    Once an error has occurred every further operation raises
    :class:`ScalableError` with the original message.
    """

    def __init__(
        self,
        initial_size: int = 0,
        mode: StreamingMode = StreamingMode.MEMORY,
        segment_size: int = DEFAULT_SEGMENT_SIZE,
        max_segments: int = DEFAULT_MAX_SEGMENTS,
    ) -> None:
        if initial_size < 0:
            raise ValueError("initial_size must not be negative")
        if segment_size <= 0:
            raise ValueError("segment_size must be positive")
        if max_segments < 0:
            raise ValueError("max_segments must not be negative")
        self.capacity = initial_size or DEFAULT_INITIAL_SIZE
        self.segment_size = segment_size
        self.max_segments = max_segments
        self.stream_mode = mode
        self.stream_threshold = DEFAULT_STREAM_THRESHOLD

        self.primary = bytearray()
        self.segments: list[bytearray] = []

        self.total_size = 0
        self.segments_allocated = 0
        self.bytes_streamed = 0
        self.peak_memory = self.capacity

        self.error: str | None = None
        self.output: BinaryIO | None = None
        self.output_path: str | None = None

    # -- error handling -------------------------------------------------

    def _check(self) -> None:
        if self.error is not None:
            raise ScalableError(self.error)

    def _fail(self, message: str) -> None:
        self.error = message
        raise ScalableError(message)

    # -- buffer management ----------------------------------------------

    def allocate_segment(self) -> bytearray:
        """Append a new, empty overflow segment and return it."""
        self._check()
        if len(self.segments) >= self.max_segments:
            self._fail("Maximum segment count reached")
        segment = bytearray()
        self.segments.append(segment)
        self.segments_allocated += 1
        in_use = self.capacity + len(self.segments) * self.segment_size
        self.peak_memory = max(self.peak_memory, in_use)
        return segment

    def _active(self) -> tuple[bytearray, int] | None:
        if len(self.primary) < self.capacity:
            return self.primary, self.capacity - len(self.primary)
        if self.segments and len(self.segments[-1]) < self.segment_size:
            current = self.segments[-1]
            return current, self.segment_size - len(current)
        return None

    # -- emission ---------------------------------------------------------

    def emit_bytes(self, data: bytes) -> None:
        """Append ``data``, spilling into new segments as buffers fill."""
        self._check()
        view = memoryview(bytes(data))
        while view:
            active = self._active()
            if active is None:
                self.allocate_segment()
                continue
            target, free = active
            chunk = view[:free]
            target += chunk
            self.total_size += len(chunk)
            view = view[len(chunk):]

    def emit_byte(self, value: int) -> None:
        self.emit_bytes(bytes((value & 0xFF,)))

    def emit_word(self, value: int) -> None:
        self.emit_bytes((value & 0xFFFF).to_bytes(2, "little"))

    def emit_dword(self, value: int) -> None:
        self.emit_bytes((value & 0xFFFFFFFF).to_bytes(4, "little"))

    def emit_qword(self, value: int) -> None:
        self.emit_bytes((value & 0xFFFFFFFFFFFFFFFF).to_bytes(8, "little"))

    def position(self) -> int:
        """Total number of bytes emitted so far."""
        return self.total_size

    # -- output -----------------------------------------------------------

    def setup_streaming(self, path: str | os.PathLike[str]) -> None:
        """Open ``path`` (truncating it) as the destination of :meth:`finalize`."""
        self._check()
        try:
            fd = os.open(Path(path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o755)
        except OSError as exc:
            self.error = "Failed to open output file for streaming"
            raise ScalableError(self.error) from exc
        self.output = os.fdopen(fd, "wb")
        self.output_path = os.fspath(path)

    def finalize(self) -> int:
        """Write every buffer to the output file, if any; return bytes streamed."""
        self._check()
        if self.output is None:
            return self.bytes_streamed
        chunks = [("Failed to write primary buffer", self.primary)]
        chunks += [("Failed to write segment", segment) for segment in self.segments]
        for message, chunk in chunks:
            if not chunk:
                continue
            try:
                written = self.output.write(chunk)
            except OSError as exc:
                self.error = message
                raise ScalableError(message) from exc
            if written != len(chunk):
                self._fail(message)
            self.bytes_streamed += written
        self.output.flush()
        return self.bytes_streamed

    def close(self) -> None:
        """Close the output file and release all buffers."""
        if self.output is not None:
            self.output.close()
            self.output = None
        self.output_path = None
        self.primary = bytearray()
        self.segments = []

    def __enter__(self) -> ScalableCodeGen:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # -- reporting and compatibility -------------------------------------

    def stats(self) -> dict[str, int | None]:
        """Counters describing the generation run."""
        efficiency = None
        if self.total_size > 0:
            efficiency = self.bytes_streamed * 100 // self.total_size
        return {
            "total_size": self.total_size,
            "segments_allocated": self.segments_allocated,
            "peak_memory": self.peak_memory,
            "bytes_streamed": self.bytes_streamed,
            "streaming_efficiency": efficiency,
        }

    def wrap_buffer(self, buf: CodeBuffer) -> None:
        """Adopt the contents of ``buf`` as the primary buffer."""
        self._check()
        self.primary = bytearray(buf.code)
        self.capacity = max(self.capacity, len(self.primary))
        self.total_size = len(self.primary) + sum(len(s) for s in self.segments)

    def getvalue(self) -> bytes:
        """All emitted bytes, primary buffer first."""
        return b"".join([bytes(self.primary), *map(bytes, self.segments)])
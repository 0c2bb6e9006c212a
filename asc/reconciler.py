"""Incremental rendering of a streamed markdown answer.

Each streamed line is appended to the accumulated text and the whole text is
re-rendered. Only lines that have moved out of the trailing withheld window
are written; the withheld tail is flushed once the stream completes.
"""
import enum
import sys
from typing import Callable, List, Optional, Tuple

from asc.errors import RenderError
from asc.log_utils import get_logger
from asc.renderer import Renderer

HELD_OUT_LINE_COUNT = 4

logger = get_logger("asc.reconciler")


class ReconcilerState(enum.Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


def emit_range(previous_total: int, current_total: int, held_out: int = HELD_OUT_LINE_COUNT) -> Tuple[int, int]:
    """Half-open range of rendered lines that became stable since the previous render."""
    return max(0, previous_total - held_out), current_total - held_out


def _write_stdout(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()


class StreamReconciler:
    def __init__(
        self,
        renderer: Renderer,
        held_out: int = HELD_OUT_LINE_COUNT,
        write: Optional[Callable[[str], None]] = None,
    ) -> None:
        if held_out < 1:
            raise ValueError("held_out must be a positive integer")
        self.renderer = renderer
        self.held_out = held_out
        self.write = write or _write_stdout
        self.state = ReconcilerState.IDLE
        self.fragments = 0
        self.emitted = 0
        self._buffer: List[str] = []
        self._rendered: List[str] = []

    @property
    def accumulated(self) -> str:
        return "".join(self._buffer)

    @property
    def rendered(self) -> List[str]:
        return list(self._rendered)

    def _check_open(self) -> None:
        if self.state in (ReconcilerState.COMPLETED, ReconcilerState.FAILED):
            raise RuntimeError(f"reconciler session already {self.state.value}")

    def _emit(self, lines: List[str], start: int, end: int) -> None:
        start = max(start, self.emitted)
        for i in range(start, end):
            self.write(lines[i])
        if end > start:
            self.emitted = end

    def on_fragment(self, fragment: str) -> None:
        self._check_open()
        index = self.fragments
        self.state = ReconcilerState.STREAMING
        self._buffer.append(fragment + "\n")
        self.fragments += 1
        try:
            current = self.renderer.render(self.accumulated)
        except RenderError as exc:
            self.state = ReconcilerState.FAILED
            exc.fragment_index = index
            logger.error("render failed at fragment %d: %s", index, exc)
            raise
        if current == self._rendered:
            return
        start, end = emit_range(len(self._rendered), len(current), self.held_out)
        self._emit(current, start, end)
        self._rendered = current

    def on_complete(self) -> str:
        self._check_open()
        start, _ = emit_range(len(self._rendered), 0, self.held_out)
        self._emit(self._rendered, start, len(self._rendered))
        self.state = ReconcilerState.COMPLETED
        logger.debug("stream complete: %d fragments, %d rendered lines", self.fragments, len(self._rendered))
        return self.accumulated.rstrip("\r\n")

    def fail(self, error: Optional[BaseException] = None) -> None:
        """Abort after an upstream error; the withheld tail is never shown."""
        self._check_open()
        self.state = ReconcilerState.FAILED
        if error is not None:
            logger.error("stream aborted after %d fragments: %s", self.fragments, error)

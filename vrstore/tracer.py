"""Latency tracing of requests split into numbered stages."""

from __future__ import annotations

import sys
import time
from dataclasses import dataclass, field
from typing import Callable, TextIO

__all__ = ["RequestTrace", "Tracer"]

MAX_STAGES = 16


def _now_us() -> int:
    return time.time_ns() // 1000


@dataclass
class RequestTrace:
    """Accumulated stage timings for one kind of request."""

    is_tracing: bool = False
    start_time: int = -1
    curr_stage: int = -1
    max_stage: int = 0
    stage: list[int] = field(default_factory=lambda: [0] * MAX_STAGES)
    n_traces: int = 0


class Tracer:
    """A registry of named request traces, timed in microseconds."""

    def __init__(self, clock: Callable[[], int] = _now_us, stream: TextIO | None = None):
        self._clock = clock
        self._stream = stream
        self.traces: dict[str, RequestTrace] = {}

    @property
    def stream(self) -> TextIO:
        return self._stream if self._stream is not None else sys.stderr

    def register(self, name: str) -> RequestTrace:
        """Create (or reset) the trace called ``name``."""
        trace = RequestTrace()
        self.traces[name] = trace
        return trace

    def start(self, name: str) -> None:
        trace = self.traces[name]
        trace.is_tracing = True
        trace.start_time = self._clock()
        trace.curr_stage = 0

    def save(self, name: str, index: int = 0) -> None:
        """Close the current stage; warn if ``index`` does not match the next stage."""
        trace = self.traces[name]
        trace.stage[trace.curr_stage] += self._clock() - trace.start_time
        trace.curr_stage += 1
        if index > 0 and index != trace.curr_stage:
            self.stream.write(f"Mismatch index on {index}, {trace.curr_stage}\n")

    def stop(self, name: str) -> None:
        trace = self.traces[name]
        trace.stage[trace.curr_stage] += self._clock() - trace.start_time
        if trace.curr_stage >= trace.max_stage:
            trace.max_stage = trace.curr_stage + 1
        trace.n_traces += 1
        trace.is_tracing = False

    def flush(self, name: str, stream: TextIO | None = None) -> list[int]:
        """Average the stages, write a report and return the per-stage latencies."""
        trace = self.traces[name]
        out = stream if stream is not None else self.stream
        for i in range(trace.max_stage):
            trace.stage[i] //= trace.n_traces
        breakdown = [
            trace.stage[i] - (trace.stage[i - 1] if i > 0 else 0)
            for i in range(trace.max_stage)
        ]
        out.write(f"## Latency Stats for {name}\n")
        out.write(f"## Number of samples: {trace.n_traces}\n")
        out.write(f"## Number of stages: {trace.max_stage}\n")
        out.write(f"## {name} Stage Breakdown:")
        out.write("".join(f" {value}" for value in breakdown))
        out.write("\n")
        return breakdown
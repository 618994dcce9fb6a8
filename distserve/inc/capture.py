# distserve/inc/capture.py
# Per-request observer of the response status flush.
# aiohttp fires `on_response_prepare` exactly once per response, right before the
# status line and headers go out. `record_status` hooks that signal, looks up the
# request's capture and records the code; the response itself is left untouched.

from __future__ import annotations
import time
from dataclasses import dataclass, field
from typing import Callable, Optional
from aiohttp import web

# Logged when nothing ever flushed a status line.
DEFAULT_STATUS = 0

@dataclass
class ResponseCapture:
    clock: Callable[[], float] = field(default=time.perf_counter, repr=False)
    started: float = 0.0
    status: Optional[int] = None
    header_latency: Optional[float] = None

    def __post_init__(self):
        if not self.started:
            self.started = self.clock()

    @classmethod
    def begin(cls, request: web.Request, clock: Callable[[], float] = time.perf_counter) -> "ResponseCapture":
        cap = cls(clock=clock)
        request[capture_key] = cap
        return cap

    @property
    def recorded(self) -> bool:
        return self.status is not None

    def record(self, status: int) -> bool:
        """First write wins; returns False when a status was already captured."""
        if self.status is not None:
            return False
        self.status = int(status)
        self.header_latency = max(0.0, self.clock() - self.started)
        return True

capture_key = web.RequestKey("capture", ResponseCapture)

def capture_of(request: web.Request) -> Optional[ResponseCapture]:
    return request.get(capture_key)

async def record_status(request: web.Request, response: web.StreamResponse):
    cap = capture_of(request)
    if cap is not None:
        cap.record(response.status)

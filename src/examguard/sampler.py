"""
FrameSampler: fixed-cadence periodic timer on the asyncio loop.

Ticks are time-driven, not completion-driven. Each tick runs as its own task,
so a slow tick never delays the next one and ticks may overlap.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

TickCallback = Callable[[], Awaitable[None]]


class FrameSampler:
    def __init__(self, name: str) -> None:
        self.name = name
        self._timer: asyncio.Task | None = None
        self._in_flight: set[asyncio.Task] = set()
        self.ticks_fired = 0

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def start(self, interval_s: float, on_tick: TickCallback) -> None:
        """Start firing ``on_tick`` every ``interval_s`` seconds. No-op if already running."""
        if self.running:
            return
        if interval_s < 0:
            raise ValueError(f"interval_s must be >= 0, got {interval_s}")
        self._timer = asyncio.get_running_loop().create_task(
            self._run(interval_s, on_tick), name=f"sampler:{self.name}"
        )
        logger.debug("sampler %s started (%.3fs)", self.name, interval_s)

    def stop(self) -> None:
        """Stop future ticks. Ticks already in flight are left to finish."""
        if self._timer is None:
            return
        self._timer.cancel()
        self._timer = None
        logger.debug("sampler %s stopped", self.name)

    async def drain(self) -> None:
        """Wait for every in-flight tick to complete."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def _run(self, interval_s: float, on_tick: TickCallback) -> None:
        loop = asyncio.get_running_loop()
        while True:
            task = loop.create_task(self._guarded(on_tick))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)
            self.ticks_fired += 1
            await asyncio.sleep(interval_s)

    async def _guarded(self, on_tick: TickCallback) -> None:
        try:
            await on_tick()
        except asyncio.CancelledError:
            raise
        except Exception:
            # A bad tick must never take the sampler (or its owner) down.
            logger.exception("sampler %s: tick failed", self.name)

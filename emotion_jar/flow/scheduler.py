from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, TypeVar

from emotion_jar.internal_core.contracts import AppState

T = TypeVar("T")


class Scheduler(ABC):
    @abstractmethod
    async def sleep(self, seconds: float) -> None: ...

    @abstractmethod
    def name(self) -> str: ...


class AsyncioScheduler(Scheduler):
    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, float(seconds)))

    def name(self) -> str:
        return "asyncio"


class InstantScheduler(Scheduler):
    """Skips cosmetic delays but remembers every one that was asked for."""

    def __init__(self) -> None:
        self.requested: list[float] = []

    async def sleep(self, seconds: float) -> None:
        self.requested.append(float(seconds))
        await asyncio.sleep(0)

    def name(self) -> str:
        return "instant"


@dataclass(frozen=True)
class TimedStep:
    name: str
    source: AppState
    target: AppState
    delay_sec: float


@dataclass(frozen=True)
class FlowTiming:
    crumple_sec: float = 1.5
    throw_sec: float = 1.0
    floor_sec: float = 2.6

    def crumple_step(self) -> TimedStep:
        return TimedStep("crumple", "PROCESSING_CRUMPLE", "PROCESSING_THROW", self.crumple_sec)

    def throw_step(self) -> TimedStep:
        return TimedStep("throw", "PROCESSING_THROW", "REVIEW_PROMPT", self.throw_sec)


async def join_with_floor(operation: Awaitable[T], floor_sec: float, scheduler: Scheduler) -> T:
    """
    Wait for both `operation` and a `floor_sec` timer, return the operation result.

    If the operation raises, the error propagates without waiting for the
    floor. The gateway never raises, so its callers always see the full floor.
    """

    result, _ = await asyncio.gather(operation, scheduler.sleep(floor_sec))
    return result

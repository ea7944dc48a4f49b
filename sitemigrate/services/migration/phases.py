from __future__ import annotations

import time
from enum import Enum
from typing import Callable


class ExportPhase(str, Enum):
    CONFIG = "config"
    DATABASE = "database"
    ENUMERATE = "enumerate"
    ARCHIVE = "archive"
    FINALIZE = "finalize"
    COMPLETE = "complete"


class RestorePhase(str, Enum):
    CHECKPOINT = "checkpoint"
    DATABASE = "database"
    FILES = "files"
    COMPLETE = "complete"


class PhaseOutcome(str, Enum):
    DONE = "done"
    PENDING = "pending"
    SKIPPED = "skipped"


EXPORT_TRANSITIONS: dict[tuple[ExportPhase, PhaseOutcome], ExportPhase] = {
    (ExportPhase.CONFIG, PhaseOutcome.DONE): ExportPhase.DATABASE,
    (ExportPhase.DATABASE, PhaseOutcome.DONE): ExportPhase.ENUMERATE,
    (ExportPhase.DATABASE, PhaseOutcome.SKIPPED): ExportPhase.ENUMERATE,
    (ExportPhase.DATABASE, PhaseOutcome.PENDING): ExportPhase.DATABASE,
    (ExportPhase.ENUMERATE, PhaseOutcome.DONE): ExportPhase.ARCHIVE,
    (ExportPhase.ARCHIVE, PhaseOutcome.DONE): ExportPhase.FINALIZE,
    (ExportPhase.ARCHIVE, PhaseOutcome.PENDING): ExportPhase.ARCHIVE,
    (ExportPhase.FINALIZE, PhaseOutcome.DONE): ExportPhase.COMPLETE,
}

RESTORE_TRANSITIONS: dict[tuple[RestorePhase, PhaseOutcome], RestorePhase] = {
    (RestorePhase.CHECKPOINT, PhaseOutcome.DONE): RestorePhase.DATABASE,
    (RestorePhase.DATABASE, PhaseOutcome.DONE): RestorePhase.FILES,
    (RestorePhase.DATABASE, PhaseOutcome.SKIPPED): RestorePhase.FILES,
    (RestorePhase.FILES, PhaseOutcome.DONE): RestorePhase.COMPLETE,
    (RestorePhase.FILES, PhaseOutcome.SKIPPED): RestorePhase.COMPLETE,
    (RestorePhase.FILES, PhaseOutcome.PENDING): RestorePhase.FILES,
}

# Percent at which each phase starts.
EXPORT_PROGRESS = {
    ExportPhase.CONFIG: 0,
    ExportPhase.DATABASE: 5,
    ExportPhase.ENUMERATE: 30,
    ExportPhase.ARCHIVE: 35,
    ExportPhase.FINALIZE: 95,
    ExportPhase.COMPLETE: 100,
}

RESTORE_PROGRESS = {
    RestorePhase.CHECKPOINT: 0,
    RestorePhase.DATABASE: 10,
    RestorePhase.FILES: 50,
    RestorePhase.COMPLETE: 100,
}


def next_phase(table: dict, phase: Enum, outcome: PhaseOutcome):
    try:
        return table[(phase, outcome)]
    except KeyError:
        raise ValueError(f"no transition from {phase.value!r} on {outcome.value!r}") from None


def interpolate(start: int, end: int, done: int, total: int) -> int:
    if total <= 0:
        return start
    ratio = min(1.0, max(0.0, done / total))
    return start + int((end - start) * ratio)


class SliceClock:
    """
    Wall-clock budget for one slice, measured from construction.

    `should_yield()` is asked at every yield point (before a table, a row batch, a manifest
    line, a container entry). It only reports True once at least one unit of work was done
    in this slice, so a budget smaller than a single unit still makes forward progress.
    """

    def __init__(self, budget_s: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.budget_s = float(budget_s)
        self._clock = clock
        self._start = clock()
        self.units = 0

    def elapsed(self) -> float:
        return self._clock() - self._start

    def tick(self, n: int = 1) -> None:
        self.units += n

    def expired(self) -> bool:
        return self.elapsed() >= self.budget_s

    def should_yield(self) -> bool:
        return self.units > 0 and self.expired()

"""Staged progress reporting for long-running analysis pipelines.

A ``ProgressTracker`` walks a fixed sequence of stages. Callers advance it as
work proceeds; a stage left active longer than its estimate plus a buffer is
force-advanced so observers never see a stuck pipeline. That guard only moves
the indicator, never past the last working stage, and never touches the
underlying work; callers that later report a stage it already passed are
ignored.

A ``ProgressStore`` owns the trackers of in-flight submissions and evicts them
after a time-to-live.
"""
from __future__ import annotations

import math
import threading
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from payment_analyzer.config import SETTINGS
from payment_analyzer.logging_setup import get_logger

logger = get_logger(__name__)

Clock = Callable[[], float]


class Stage(str, Enum):
    INITIALIZING = "initializing"
    LOADING_RULES = "loading-rules"
    READING_DOCUMENTS = "reading-documents"
    EXTRACTING_DATA = "extracting-data"
    PROCESSING = "processing"
    VALIDATING = "validating"
    CALCULATING = "calculating"
    GENERATING_REPORT = "generating-report"
    COMPLETE = "complete"


@dataclass(frozen=True)
class StageDefinition:
    stage: Stage
    title: str
    description: str
    estimated_duration: float


STAGE_DEFINITIONS: tuple[StageDefinition, ...] = (
    StageDefinition(Stage.INITIALIZING, "Initializing", "Setting up the analysis and validating input", 0.5),
    StageDefinition(Stage.LOADING_RULES, "Loading Rules", "Loading payment rules", 0.3),
    StageDefinition(Stage.READING_DOCUMENTS, "Reading Documents", "Opening submitted documents", 2.0),
    StageDefinition(Stage.EXTRACTING_DATA, "Extracting Data", "Extracting consignment and payment data", 3.0),
    StageDefinition(Stage.PROCESSING, "Processing", "Organising extracted data by date", 1.5),
    StageDefinition(Stage.VALIDATING, "Validating", "Checking data integrity", 0.8),
    StageDefinition(Stage.CALCULATING, "Calculating", "Calculating payments and totals", 1.0),
    StageDefinition(Stage.GENERATING_REPORT, "Generating Report", "Preparing analysis results", 0.7),
    StageDefinition(Stage.COMPLETE, "Complete", "Analysis completed", 0.2),
)

_ORDER = {definition.stage: index for index, definition in enumerate(STAGE_DEFINITIONS)}
_LAST_WORKING_INDEX = len(STAGE_DEFINITIONS) - 2


@dataclass(frozen=True)
class StageSnapshot:
    stage: Stage
    title: str
    description: str
    estimated_duration: float
    is_active: bool = False
    is_complete: bool = False
    started_at: float | None = None
    ended_at: float | None = None
    error: str | None = None
    details: str | None = None

    @property
    def duration(self) -> float | None:
        if self.started_at is None or self.ended_at is None:
            return None
        return self.ended_at - self.started_at


@dataclass(frozen=True)
class ProgressSnapshot:
    current_stage: Stage | None
    stages: tuple[StageSnapshot, ...]
    is_active: bool
    started_at: float | None
    estimated_completion: float | None
    overall_progress: int

    @property
    def error(self) -> str | None:
        for stage in self.stages:
            if stage.error:
                return stage.error
        return None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def finished(self) -> bool:
        return self.current_stage is Stage.COMPLETE

    def stage(self, stage: Stage) -> StageSnapshot:
        return self.stages[_ORDER[stage]]


@dataclass(frozen=True)
class StageTiming:
    stage: Stage
    title: str
    duration: float


@dataclass(frozen=True)
class PerformanceStats:
    total_time: float
    average_stage_time: float
    slowest_stage: StageTiming | None = None
    fastest_stage: StageTiming | None = None


@dataclass(slots=True)
class _StageState:
    definition: StageDefinition
    is_active: bool = False
    is_complete: bool = False
    started_at: float | None = None
    ended_at: float | None = None
    error: str | None = None
    details: str | None = None

    def freeze(self) -> StageSnapshot:
        return StageSnapshot(
            stage=self.definition.stage,
            title=self.definition.title,
            description=self.definition.description,
            estimated_duration=self.definition.estimated_duration,
            is_active=self.is_active,
            is_complete=self.is_complete,
            started_at=self.started_at,
            ended_at=self.ended_at,
            error=self.error,
            details=self.details,
        )


ProgressCallback = Callable[[ProgressSnapshot], None]


class ProgressTracker:
    def __init__(
        self,
        clock: Clock = time.monotonic,
        buffer: float | None = None,
        auto_advance: bool = True,
    ) -> None:
        self._clock = clock
        self._buffer = SETTINGS.stage_timeout_buffer if buffer is None else buffer
        self._auto_advance = auto_advance
        self._lock = threading.RLock()
        self._callbacks: list[ProgressCallback] = []
        self._timer: threading.Timer | None = None
        self._init_state()

    def _init_state(self) -> None:
        self._stages = [_StageState(definition) for definition in STAGE_DEFINITIONS]
        self._current: int | None = None
        self._forced_to: int | None = None
        self._active = False
        self._started_at: float | None = None
        self._estimated_completion: float | None = None

    # observers

    def subscribe(self, callback: ProgressCallback) -> Callable[[], None]:
        """Register ``callback``; it receives the current snapshot immediately."""
        with self._lock:
            self._callbacks.append(callback)
            snapshot = self._snapshot()
        self._deliver(callback, snapshot)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return unsubscribe

    def _deliver(self, callback: ProgressCallback, snapshot: ProgressSnapshot) -> None:
        try:
            callback(snapshot)
        except Exception:
            logger.exception("Progress callback failed")

    def _notify(self) -> ProgressSnapshot:
        with self._lock:
            snapshot = self._snapshot()
            callbacks = list(self._callbacks)
        for callback in callbacks:
            self._deliver(callback, snapshot)
        return snapshot

    # transitions

    def start(self) -> ProgressSnapshot:
        with self._lock:
            self._cancel_timer()
            self._init_state()
            self._active = True
            self._started_at = self._clock()
            total = sum(state.definition.estimated_duration for state in self._stages[:-1])
            self._estimated_completion = self._started_at + total
        self._notify()
        return self.advance_to(Stage.INITIALIZING)

    def advance_to(self, stage: Stage, details: str | None = None) -> ProgressSnapshot:
        """Make ``stage`` active and mark every earlier stage complete.

        Moving backwards raises ``ValueError``, unless the timeout guard has
        already moved past ``stage``; then the call is ignored. A tracker that
        is not active (never started, failed, aborted or completed) ignores it
        as well.
        """
        return self._advance(stage, details, forced=False)

    def _advance(self, stage: Stage, details: str | None, forced: bool) -> ProgressSnapshot:
        target = _ORDER[stage]
        with self._lock:
            if not self._active:
                logger.debug("Ignoring advance to %s on inactive tracker", stage.value)
                return self._snapshot()
            if self._current is not None and target < self._current and self._forced_to is not None:
                logger.debug("Ignoring advance to %s; already auto-advanced past it", stage.value)
                return self._snapshot()
            if self._current is not None and target < self._current:
                raise ValueError(
                    f"Cannot move progress back from {self._stages[self._current].definition.stage.value} "
                    f"to {stage.value}"
                )
            now = self._clock()
            for state in self._stages[:target]:
                if not state.is_complete:
                    state.is_complete = True
                    state.is_active = False
                    state.ended_at = now
                    if state.started_at is None:
                        state.started_at = now
            current = self._stages[target]
            current.is_active = True
            current.is_complete = False
            current.started_at = now
            current.details = details
            current.error = None
            self._current = target
            self._forced_to = target if forced else None
            self._schedule_timeout(target)
        suffix = f" ({details})" if details else ""
        logger.info("Progress: stage %d %s%s", target, current.definition.title, suffix)
        return self._notify()

    def update_details(self, stage: Stage, details: str) -> ProgressSnapshot:
        with self._lock:
            self._stages[_ORDER[stage]].details = details
        return self._notify()

    def fail(self, stage: Stage, error: str) -> ProgressSnapshot:
        with self._lock:
            state = self._stages[_ORDER[stage]]
            state.error = error
            state.is_active = False
            state.ended_at = self._clock()
            self._active = False
            self._cancel_timer()
        logger.error("Stage %s failed: %s", stage.value, error)
        return self._notify()

    def complete(self) -> ProgressSnapshot:
        with self._lock:
            now = self._clock()
            for state in self._stages[:-1]:
                if not state.is_complete:
                    state.is_complete = True
                    state.is_active = False
                    state.ended_at = now
                    if state.started_at is None:
                        state.started_at = now
            final = self._stages[-1]
            final.is_active = True
            final.started_at = now
            self._current = len(self._stages) - 1
            self._active = False
            self._cancel_timer()
        logger.info("Progress tracking completed")
        return self._notify()

    def abort(self, reason: str | None = None) -> ProgressSnapshot:
        with self._lock:
            current = self._current
            if current is None:
                self._active = False
                self._cancel_timer()
        if current is None:
            logger.info("Progress tracking aborted before start: %s", reason)
            return self._notify()
        return self.fail(STAGE_DEFINITIONS[current].stage, reason or "Analysis aborted")

    def reset(self) -> ProgressSnapshot:
        with self._lock:
            self._cancel_timer()
            self._init_state()
        return self._notify()

    def close(self) -> None:
        with self._lock:
            self._cancel_timer()

    # liveness guard

    def _schedule_timeout(self, index: int) -> None:
        self._cancel_timer()
        if not self._auto_advance or index >= _LAST_WORKING_INDEX:
            return
        delay = self._stages[index].definition.estimated_duration + self._buffer
        timer = threading.Timer(delay, self._on_timeout, args=(index,))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timeout(self, index: int) -> None:
        with self._lock:
            if not self._active or self._current != index:
                return
        self._force_advance(index)

    def _force_advance(self, index: int) -> None:
        logger.warning(
            "Auto-advancing from stage %s after timeout", STAGE_DEFINITIONS[index].stage.value
        )
        self._advance(STAGE_DEFINITIONS[index + 1].stage, None, forced=True)

    def check_timeouts(self, now: float | None = None) -> bool:
        """Force-advance the active stage if it has overrun; returns whether it did."""
        with self._lock:
            if not self._active or self._current is None or self._current >= _LAST_WORKING_INDEX:
                return False
            state = self._stages[self._current]
            now = self._clock() if now is None else now
            if state.started_at is None:
                return False
            overdue = now - state.started_at >= state.definition.estimated_duration + self._buffer
            index = self._current
        if overdue:
            self._force_advance(index)
        return overdue

    # queries

    def _overall_progress(self) -> int:
        if self._current == len(self._stages) - 1 and not self._active and self._stages[-1].is_active:
            return 100
        working = self._stages[:-1]
        completed = sum(1 for state in working if state.is_complete)
        credit = 0.5 if self._current is not None and self._current <= _LAST_WORKING_INDEX else 0.0
        return int(math.floor((completed + credit) / len(working) * 100 + 0.5))

    def _snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(
            current_stage=STAGE_DEFINITIONS[self._current].stage if self._current is not None else None,
            stages=tuple(state.freeze() for state in self._stages),
            is_active=self._active,
            started_at=self._started_at,
            estimated_completion=self._estimated_completion,
            overall_progress=self._overall_progress(),
        )

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            return self._snapshot()

    def estimated_time_remaining(self, now: float | None = None) -> float:
        with self._lock:
            if not self._active or self._current is None:
                return 0.0
            now = self._clock() if now is None else now
            current = self._stages[self._current]
            remaining = 0.0
            if current.started_at is not None:
                remaining += max(0.0, current.definition.estimated_duration - (now - current.started_at))
            remaining += sum(state.definition.estimated_duration for state in self._stages[self._current + 1:-1])
            return remaining

    def performance_stats(self, now: float | None = None) -> PerformanceStats:
        with self._lock:
            timings = [
                StageTiming(state.definition.stage, state.definition.title, state.ended_at - state.started_at)
                for state in self._stages
                if state.is_complete and state.started_at is not None and state.ended_at is not None
            ]
            if not timings:
                return PerformanceStats(total_time=0.0, average_stage_time=0.0)
            now = self._clock() if now is None else now
            total = now - self._started_at if self._started_at is not None else 0.0
        return PerformanceStats(
            total_time=total,
            average_stage_time=sum(item.duration for item in timings) / len(timings),
            slowest_stage=max(timings, key=lambda item: item.duration),
            fastest_stage=min(timings, key=lambda item: item.duration),
        )


@dataclass(slots=True)
class _StoreEntry:
    tracker: ProgressTracker
    created_at: float


class ProgressStore:
    """Trackers for in-flight submissions, keyed by an opaque submission id."""

    def __init__(
        self,
        ttl: float | None = None,
        clock: Clock = time.monotonic,
        tracker_factory: Callable[[], ProgressTracker] | None = None,
    ) -> None:
        self._ttl = SETTINGS.progress_ttl if ttl is None else ttl
        self._clock = clock
        self._factory = tracker_factory or (lambda: ProgressTracker(clock=clock))
        self._entries: dict[str, _StoreEntry] = {}
        self._lock = threading.Lock()

    def create(self, submission_id: str | None = None) -> tuple[str, ProgressTracker]:
        self.evict_expired()
        submission_id = submission_id or uuid.uuid4().hex
        tracker = self._factory()
        with self._lock:
            previous = self._entries.get(submission_id)
            self._entries[submission_id] = _StoreEntry(tracker=tracker, created_at=self._clock())
        if previous is not None:
            previous.tracker.close()
        return submission_id, tracker

    def get(self, submission_id: str) -> ProgressTracker | None:
        self.evict_expired()
        with self._lock:
            entry = self._entries.get(submission_id)
        return entry.tracker if entry else None

    def discard(self, submission_id: str) -> bool:
        with self._lock:
            entry = self._entries.pop(submission_id, None)
        if entry is None:
            return False
        entry.tracker.close()
        return True

    def evict_expired(self, now: float | None = None) -> list[str]:
        now = self._clock() if now is None else now
        with self._lock:
            expired = [key for key, entry in self._entries.items() if now - entry.created_at >= self._ttl]
            removed = [self._entries.pop(key) for key in expired]
        for entry in removed:
            entry.tracker.close()
        return expired

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

"""Scheduling Simulator — replays an execution plan through a two-queue event loop.

Phase 1 runs the main script in order.  Phase 2 drains the queues: every
pending microtask runs before any macrotask, and after each single macrotask
control returns to the microtask queue.  Running a trigger appends its
continuation to the microtask queue (``MicroTask``) or the macrotask queue
(``MacroTask``).

The loop is exposed as a generator of ``SimulatorSnapshot`` values, one per
atomic transition, so a presentation layer can pace or animate it.  Pacing is
not part of this module: ``run()`` consumes the generator without delay.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, Optional, Union

from loopscope.extractor import MAIN, MICRO_TASK, TaskRecord

logger = logging.getLogger(__name__)

# ── Constants ──

# Simulation phases
PHASE_MAIN = "main"
PHASE_MICROTASK = "microtask"
PHASE_MACROTASK = "macrotask"

# Transition kinds
ACTION_START = "start"
ACTION_PUSH = "push"
ACTION_SCHEDULE = "schedule"
ACTION_POP = "pop"
ACTION_MAIN_DONE = "main-done"
ACTION_FINISH = "finish"

_READY_LOG = "Analysis loaded. Ready to run."
_START_LOG = "Event loop started."
_MAIN_DONE_LOG = "Main script done. Checking queues..."
_FINISH_LOG = "Both queues empty. Event loop idle."


# ── Exceptions ──


class SimulatorError(Exception):
    """Base exception for simulator errors."""


class NotInitializedError(SimulatorError):
    """The simulator was driven before ``initialize`` loaded a plan."""


# ── Data Classes ──


@dataclass(frozen=True)
class Scenario:
    """An execution plan split into the main script and per-trigger continuations.

    Attributes:
        main_script: Records with run_context "Main" or no parent_id, in order.
        callback_map: Trigger id -> records whose parent_id is that id, in order.
            Read-only view.
    """

    main_script: tuple[TaskRecord, ...] = ()
    callback_map: Mapping[str, tuple[TaskRecord, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @classmethod
    def from_plan(cls, plan: Iterable[TaskRecord]) -> "Scenario":
        main_script: list[TaskRecord] = []
        callbacks: dict[str, list[TaskRecord]] = {}
        for record in plan:
            if record.run_context == MAIN or not record.parent_id:
                main_script.append(record)
            else:
                callbacks.setdefault(record.parent_id, []).append(record)
        return cls(
            main_script=tuple(main_script),
            callback_map=MappingProxyType({k: tuple(v) for k, v in callbacks.items()}),
        )

    def continuation_of(self, record: TaskRecord) -> tuple[TaskRecord, ...]:
        """Records scheduled by ``record``; empty for plain calls and unknown ids."""
        if not record.is_trigger:
            return ()
        return self.callback_map.get(record.task_id, ())


@dataclass(frozen=True)
class SimulatorSnapshot:
    """Simulator state right after one fully applied transition.

    Attributes:
        step: 0-based transition index within the run.
        action: Transition kind ("push", "schedule", "pop", ...).
        phase: "main", "microtask" or "macrotask".
        task: Record the transition concerned, if any.
        call_stack: Currently executing record(s).
        micro_queue: Pending microtasks, head first.
        macro_queue: Pending macrotasks, head first.
        log: Trace line produced by this transition.
    """

    step: int
    action: str
    phase: str
    task: Optional[TaskRecord]
    call_stack: tuple[TaskRecord, ...]
    micro_queue: tuple[TaskRecord, ...]
    macro_queue: tuple[TaskRecord, ...]
    log: str = ""


PlanInput = Iterable[Union[TaskRecord, dict]]


def _coerce_plan(plan: PlanInput) -> list[TaskRecord]:
    return [
        item if isinstance(item, TaskRecord) else TaskRecord.from_dict(item)
        for item in plan
    ]


def _label(record: TaskRecord) -> str:
    return f"{record.name} (line {record.line})"


# ── Simulator ──


class EventLoopSimulator:
    """Deterministic call stack / microtask queue / macrotask queue state machine.

    Usage::

        sim = EventLoopSimulator()
        sim.initialize(plan)
        for snapshot in sim.steps():
            render(snapshot)

    or ``sim.run()`` to drive to completion in one call.  State is owned by
    the instance; independent runs need independent simulators.
    """

    def __init__(self) -> None:
        self._scenario: Optional[Scenario] = None
        self._call_stack: list[TaskRecord] = []
        self._micro_queue: deque[TaskRecord] = deque()
        self._macro_queue: deque[TaskRecord] = deque()
        self._logs: list[str] = []
        self._executed: list[tuple[str, TaskRecord]] = []
        self._is_running = False
        self._step = 0

    # ── Read access ──

    @property
    def scenario(self) -> Optional[Scenario]:
        return self._scenario

    @property
    def call_stack(self) -> tuple[TaskRecord, ...]:
        return tuple(self._call_stack)

    @property
    def micro_queue(self) -> tuple[TaskRecord, ...]:
        return tuple(self._micro_queue)

    @property
    def macro_queue(self) -> tuple[TaskRecord, ...]:
        return tuple(self._macro_queue)

    @property
    def logs(self) -> tuple[str, ...]:
        return tuple(self._logs)

    @property
    def executed(self) -> tuple[tuple[str, TaskRecord], ...]:
        """(phase, record) for every record run so far, in execution order."""
        return tuple(self._executed)

    @property
    def is_running(self) -> bool:
        return self._is_running

    # ── Driving ──

    def initialize(self, plan: PlanInput) -> Scenario:
        """Load ``plan`` and reset all queues, logs and history."""
        self._scenario = Scenario.from_plan(_coerce_plan(plan))
        self._call_stack = []
        self._micro_queue = deque()
        self._macro_queue = deque()
        self._logs = [_READY_LOG]
        self._executed = []
        self._is_running = False
        self._step = 0
        logger.info(
            "Simulator initialized: %d main-script records, %d continuations",
            len(self._scenario.main_script), len(self._scenario.callback_map),
        )
        return self._scenario

    def steps(self) -> Iterator[SimulatorSnapshot]:
        """Iterate the run one transition at a time.

        Closing the iterator early stops the run; every snapshot already
        yielded reflects a complete transition.

        Raises NotInitializedError if no plan has been loaded.
        """
        if self._scenario is None:
            raise NotInitializedError(
                "Simulator has no plan. Call initialize(plan) before running."
            )
        return self._iter_steps(self._scenario)

    def run(self) -> list[SimulatorSnapshot]:
        """Drive the loop to completion and return every snapshot."""
        snapshots = list(self.steps())
        logger.info(
            "Simulation finished: %d transitions, %d tasks executed",
            len(snapshots), len(self._executed),
        )
        return snapshots

    # ── State machine ──

    def _iter_steps(self, scenario: Scenario) -> Iterator[SimulatorSnapshot]:
        self._is_running = True
        try:
            yield self._transition(ACTION_START, PHASE_MAIN, None, _START_LOG)

            for record in scenario.main_script:
                yield from self._execute(scenario, record, PHASE_MAIN)

            yield self._transition(ACTION_MAIN_DONE, PHASE_MAIN, None, _MAIN_DONE_LOG)

            while True:
                if self._micro_queue:
                    record = self._micro_queue.popleft()
                    yield from self._execute(scenario, record, PHASE_MICROTASK)
                elif self._macro_queue:
                    record = self._macro_queue.popleft()
                    yield from self._execute(scenario, record, PHASE_MACROTASK)
                else:
                    break

            yield self._transition(ACTION_FINISH, PHASE_MAIN, None, _FINISH_LOG)
        finally:
            self._call_stack = []
            self._is_running = False

    def _execute(
        self, scenario: Scenario, record: TaskRecord, phase: str,
    ) -> Iterator[SimulatorSnapshot]:
        """Push, schedule the continuation if ``record`` is a trigger, pop."""
        self._call_stack = [record]
        self._executed.append((phase, record))
        yield self._transition(
            ACTION_PUSH, phase, record, f"Run {phase}: {_label(record)}",
        )

        if record.is_trigger:
            callbacks = scenario.continuation_of(record)
            if record.category == MICRO_TASK:
                self._micro_queue.extend(callbacks)
                message = f"MicroTask scheduled: {record.name}"
            else:
                self._macro_queue.extend(callbacks)
                message = f"MacroTask scheduled: {record.name}"
            yield self._transition(
                ACTION_SCHEDULE, phase, record,
                f"{message} ({len(callbacks)} callback task(s))",
            )

        self._call_stack = []
        yield self._transition(
            ACTION_POP, phase, record, f"Return: {_label(record)}",
        )

    def _transition(
        self, action: str, phase: str, task: Optional[TaskRecord], log: str,
    ) -> SimulatorSnapshot:
        self._logs.append(log)
        snapshot = SimulatorSnapshot(
            step=self._step,
            action=action,
            phase=phase,
            task=task,
            call_stack=tuple(self._call_stack),
            micro_queue=tuple(self._micro_queue),
            macro_queue=tuple(self._macro_queue),
            log=log,
        )
        self._step += 1
        logger.debug("[%d] %s %s", snapshot.step, action, log)
        return snapshot

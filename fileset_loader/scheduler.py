"""
Task scheduling for the load steps.

Steps are small units of work that the scheduler runs on named queues.
A step's inputs are either plain values or Promises: single-assignment
result slots filled by another step. A task only starts once every slot
it depends on is filled, which is how the resolver waits for both the
trigger and the poller (fan-in).

Step parameters and slot values are persisted as JSON, so a step must
be rebuildable from its params and everything it passes on must survive
a JSON round trip. The in-memory scheduler enforces this the same way a
durable queue would.

InMemoryScheduler is cooperative and single-threaded: run_until_idle()
pulls ready tasks FIFO per queue, round-robin across queues, until no
task can make progress.
"""

import itertools
import json
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Any, ClassVar, Iterable, Protocol

import structlog

from fileset_loader.errors import SchedulerError, SlotAlreadyFilled, UnknownStep

log = structlog.get_logger()

DEFAULT_QUEUE = "default"


@dataclass(frozen=True)
class Promise:
    """Handle to a single-assignment result slot."""
    handle: str


@dataclass
class StepContext:
    """What a running step can see."""
    scheduler: "Scheduler"
    queue: str          # Queue this step is running on
    services: Any       # Collaborators shared by all steps
    task_id: str


class Step(ABC):
    """
    Base class for schedulable units of work.

    Subclasses set a unique `name`, and override to_params/from_params
    when they carry state.
    """

    name: ClassVar[str]

    def to_params(self) -> dict[str, Any]:
        return {}

    @classmethod
    def from_params(cls, params: dict[str, Any]) -> "Step":
        return cls()

    @abstractmethod
    def run(self, ctx: StepContext, *inputs: Any) -> Any:
        """
        Execute the step.

        Returns a JSON-safe value that fills the step's output slot, or a
        Promise whose eventual value (or failure) becomes the output.
        """
        pass


STEPS: dict[str, type[Step]] = {}


def register_step(cls: type[Step]) -> type[Step]:
    """Class decorator making a step rebuildable by name."""
    STEPS[cls.name] = cls
    return cls


class Scheduler(Protocol):
    """
    Protocol defining the scheduler interface used by steps.

    - new_promise: Allocate an empty result slot
    - fill: Assign a slot's value (exactly once)
    - schedule: Queue a step to run once its input slots are filled
    """

    def new_promise(self) -> Promise:
        ...

    def fill(self, handle: str, value: Any) -> None:
        ...

    def schedule(
        self,
        step: Step,
        *inputs: Any,
        queue: str | None = None,
        wait_for: Iterable[Promise] = (),
    ) -> Promise:
        ...


@dataclass
class _Slot:
    value_json: str | None = None
    error: Exception | None = None

    @property
    def done(self) -> bool:
        return self.value_json is not None or self.error is not None


@dataclass
class _Task:
    task_id: str
    step_name: str
    params_json: str
    inputs: list[tuple[str, str]]   # ("slot", handle) or ("value", json)
    wait_for: list[str]
    queue: str
    output: str

    def dependencies(self) -> list[str]:
        return [ref for kind, ref in self.inputs if kind == "slot"] + self.wait_for


@dataclass(frozen=True)
class TaskRecord:
    """One executed task, in execution order."""
    task_id: str
    step_name: str
    queue: str


class InMemoryScheduler:
    """In-process scheduler with JSON-persisted params and slot values."""

    def __init__(
        self,
        services: Any = None,
        default_queue: str = DEFAULT_QUEUE,
        registry: dict[str, type[Step]] | None = None,
    ) -> None:
        """
        Args:
            services: Collaborators handed to every step via StepContext
            default_queue: Queue for tasks scheduled without one
            registry: Step classes by name (defaults to every registered step)
        """
        self.services = services
        self.default_queue = default_queue
        self.registry = registry if registry is not None else STEPS
        self.history: list[TaskRecord] = []

        self._slots: dict[str, _Slot] = {}
        self._waiting: list[_Task] = []
        self._ready: dict[str, deque[_Task]] = {}
        self._queue_order: deque[str] = deque()
        self._chains: dict[str, list[str]] = {}
        self._ids = itertools.count(1)

    # Slots

    def new_promise(self) -> Promise:
        handle = f"slot-{next(self._ids)}"
        self._slots[handle] = _Slot()
        return Promise(handle)

    def fill(self, handle: str, value: Any) -> None:
        self._settle(handle, value_json=json.dumps(value, sort_keys=True))

    def is_done(self, promise: Promise) -> bool:
        return self._slot(promise.handle).done

    def result(self, promise: Promise) -> Any:
        """Return a slot's value, raising the stored error if it failed."""
        slot = self._slot(promise.handle)
        if slot.error is not None:
            raise slot.error
        if slot.value_json is None:
            raise SchedulerError(f"Result slot {promise.handle} has not been filled")
        return json.loads(slot.value_json)

    def _slot(self, handle: str) -> _Slot:
        try:
            return self._slots[handle]
        except KeyError:
            raise SchedulerError(f"Unknown result slot {handle}") from None

    def _settle(self, handle: str, value_json: str | None = None, error: Exception | None = None) -> None:
        slot = self._slot(handle)
        if slot.done:
            raise SlotAlreadyFilled(handle)
        slot.value_json = value_json
        slot.error = error

        # Chained slots settle the same way
        for target in self._chains.pop(handle, []):
            self._settle(target, value_json=value_json, error=error)

        self._promote()

    def _chain(self, source: str, target: str) -> None:
        slot = self._slot(source)
        if slot.done:
            self._settle(target, value_json=slot.value_json, error=slot.error)
        else:
            self._chains.setdefault(source, []).append(target)

    # Tasks

    def schedule(
        self,
        step: Step,
        *inputs: Any,
        queue: str | None = None,
        wait_for: Iterable[Promise] = (),
    ) -> Promise:
        encoded = []
        for value in inputs:
            if isinstance(value, Promise):
                self._slot(value.handle)
                encoded.append(("slot", value.handle))
            else:
                encoded.append(("value", json.dumps(value, sort_keys=True)))

        output = self.new_promise()
        task = _Task(
            task_id=f"task-{next(self._ids)}",
            step_name=step.name,
            params_json=json.dumps(step.to_params(), sort_keys=True),
            inputs=encoded,
            wait_for=[p.handle for p in wait_for],
            queue=queue or self.default_queue,
            output=output.handle,
        )
        self._waiting.append(task)

        log.debug(
            "task_scheduled",
            task_id=task.task_id,
            step=task.step_name,
            queue=task.queue,
            depends_on=task.dependencies(),
        )
        self._promote()
        return output

    @property
    def pending(self) -> int:
        """Tasks scheduled but not yet run."""
        return len(self._waiting) + sum(len(q) for q in self._ready.values())

    def _promote(self) -> None:
        """Move tasks whose inputs are settled to their ready queue."""
        still_waiting = []
        failed: list[tuple[_Task, Exception]] = []

        for task in self._waiting:
            slots = [self._slots[h] for h in task.dependencies()]
            error = next((s.error for s in slots if s.error is not None), None)
            if error is not None:
                failed.append((task, error))
            elif all(s.done for s in slots):
                if task.queue not in self._ready:
                    self._ready[task.queue] = deque()
                    self._queue_order.append(task.queue)
                self._ready[task.queue].append(task)
            else:
                still_waiting.append(task)

        self._waiting = still_waiting

        # A task whose input failed never runs and inherits the failure
        for task, error in failed:
            log.warning("task_skipped_upstream_failed", task_id=task.task_id, step=task.step_name)
            self._settle(task.output, error=error)

    def _next_task(self) -> _Task | None:
        for _ in range(len(self._queue_order)):
            name = self._queue_order[0]
            self._queue_order.rotate(-1)
            if self._ready[name]:
                return self._ready[name].popleft()
        return None

    def run_until_idle(self, max_tasks: int | None = None) -> int:
        """
        Run ready tasks until none are left.

        Args:
            max_tasks: Stop after this many tasks (None for no limit)

        Returns:
            Number of tasks executed
        """
        executed = 0
        while max_tasks is None or executed < max_tasks:
            task = self._next_task()
            if task is None:
                break
            self._execute(task)
            executed += 1

        if self._waiting:
            log.debug("scheduler_idle_with_waiting_tasks", waiting=len(self._waiting))
        return executed

    def _execute(self, task: _Task) -> None:
        self.history.append(TaskRecord(task.task_id, task.step_name, task.queue))
        ctx = StepContext(scheduler=self, queue=task.queue, services=self.services, task_id=task.task_id)

        try:
            step_cls = self.registry.get(task.step_name)
            if step_cls is None:
                raise UnknownStep(task.step_name)
            step = step_cls.from_params(json.loads(task.params_json))
            args = [
                json.loads(self._slots[ref].value_json if kind == "slot" else ref)
                for kind, ref in task.inputs
            ]
            result = step.run(ctx, *args)
            result_json = None if isinstance(result, Promise) else json.dumps(result, sort_keys=True)
        except Exception as e:
            log.error(
                "task_failed",
                task_id=task.task_id,
                step=task.step_name,
                queue=task.queue,
                error=str(e),
                error_type=type(e).__name__,
            )
            self._settle(task.output, error=e)
            return

        if isinstance(result, Promise):
            self._chain(result.handle, task.output)
        else:
            self._settle(task.output, value_json=result_json)

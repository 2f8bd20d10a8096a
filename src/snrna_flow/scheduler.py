"""Dependency-gated execution of a static task graph on a worker pool."""
from __future__ import annotations

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Hashable, List, Optional, Sequence

logger = logging.getLogger(__name__)


class TaskState(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    BLOCKED = "blocked"


@dataclass
class Task:
    key: Hashable
    func: Callable[..., Any]
    deps: Sequence[Hashable] = ()


@dataclass
class TaskResult:
    key: Hashable
    state: TaskState
    value: Any = None
    error: Optional[BaseException] = None
    blocked_by: Optional[Hashable] = None
    elapsed_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.state is TaskState.SUCCEEDED


@dataclass
class TaskGraph:
    """Tasks in insertion order. Dependencies must be added before dependents,
    so insertion order is always a topological order and cycles cannot occur."""
    tasks: Dict[Hashable, Task] = field(default_factory=dict)

    def add(self, key: Hashable, func: Callable[..., Any], deps: Sequence[Hashable] = ()) -> Hashable:
        if key in self.tasks:
            raise ValueError(f"Duplicate task {key!r}")
        unknown = [d for d in deps if d not in self.tasks]
        if unknown:
            raise ValueError(f"Task {key!r} depends on unknown tasks {unknown!r}")
        self.tasks[key] = Task(key, func, tuple(deps))
        return key

    def __contains__(self, key: Hashable) -> bool:
        return key in self.tasks

    def __len__(self) -> int:
        return len(self.tasks)

    def dependents(self, key: Hashable) -> List[Hashable]:
        return [t.key for t in self.tasks.values() if key in t.deps]


class Scheduler:
    """Runs each task once, as soon as all of its dependencies succeeded.

    A task that raises is marked failed; everything downstream of it is marked
    blocked without running. Unrelated tasks keep going.
    """

    def __init__(self, workers: int = 1) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self.workers = workers

    @staticmethod
    def _execute(task: Task, args: List[Any]) -> TaskResult:
        start = time.monotonic()
        try:
            value = task.func(*args)
        except Exception as e:
            return TaskResult(task.key, TaskState.FAILED, error=e, elapsed_seconds=time.monotonic() - start)
        return TaskResult(task.key, TaskState.SUCCEEDED, value=value, elapsed_seconds=time.monotonic() - start)

    def _dispatch_ready(
        self,
        pending: Dict[Hashable, Task],
        results: Dict[Hashable, TaskResult],
        running: Dict[Future, Hashable],
        pool: ThreadPoolExecutor,
    ) -> None:
        for key, task in list(pending.items()):
            dep_results = [results.get(d) for d in task.deps]
            broken = next((r for r in dep_results if r is not None and not r.ok), None)
            if broken is not None:
                origin = broken.blocked_by if broken.blocked_by is not None else broken.key
                results[key] = TaskResult(key, TaskState.BLOCKED, blocked_by=origin)
                del pending[key]
            elif all(r is not None for r in dep_results):
                running[pool.submit(self._execute, task, [r.value for r in dep_results])] = key
                del pending[key]

    def run(self, graph: TaskGraph) -> Dict[Hashable, TaskResult]:
        pending = dict(graph.tasks)
        results: Dict[Hashable, TaskResult] = {}
        running: Dict[Future, Hashable] = {}

        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="snrna-flow") as pool:
            self._dispatch_ready(pending, results, running, pool)
            while running:
                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    key = running.pop(future)
                    result = future.result()
                    results[key] = result
                    if not result.ok:
                        logger.debug(f"Task {key!r} failed: {result.error}")
                self._dispatch_ready(pending, results, running, pool)

        return {key: results[key] for key in graph.tasks}

from __future__ import annotations

import threading

import pytest

from snrna_flow.scheduler import Scheduler, TaskGraph, TaskState


def _boom() -> None:
    raise RuntimeError("boom")


def test_dependencies_run_first_and_pass_values_in_order() -> None:
    graph = TaskGraph()
    graph.add("a", lambda: 1)
    graph.add("b", lambda: 2)
    graph.add("sum", lambda a, b: (a, b), deps=["a", "b"])

    results = Scheduler(workers=2).run(graph)

    assert results["sum"].value == (1, 2)
    assert all(r.ok for r in results.values())
    assert list(results) == ["a", "b", "sum"]


def test_failure_blocks_transitive_dependents_only() -> None:
    graph = TaskGraph()
    graph.add("bad", _boom)
    graph.add("child", lambda x: x, deps=["bad"])
    graph.add("grandchild", lambda x: x, deps=["child"])
    graph.add("sibling", lambda: "fine")
    graph.add("after_sibling", lambda x: x + "!", deps=["sibling"])

    results = Scheduler(workers=2).run(graph)

    assert results["bad"].state is TaskState.FAILED
    assert isinstance(results["bad"].error, RuntimeError)
    assert results["child"].state is TaskState.BLOCKED
    assert results["grandchild"].state is TaskState.BLOCKED
    assert results["grandchild"].blocked_by == "bad"
    assert results["after_sibling"].value == "fine!"


def test_fan_in_is_blocked_by_any_failed_member() -> None:
    graph = TaskGraph()
    graph.add("m1", lambda: 1)
    graph.add("m2", _boom)
    graph.add("merge", lambda *xs: sum(xs), deps=["m1", "m2"])

    results = Scheduler(workers=1).run(graph)

    assert results["m1"].ok
    assert results["merge"].state is TaskState.BLOCKED
    assert results["merge"].blocked_by == "m2"


def test_each_task_runs_once() -> None:
    calls = []
    graph = TaskGraph()
    graph.add("root", lambda: calls.append("root"))
    for i in range(5):
        graph.add(f"leaf{i}", lambda _: calls.append("leaf"), deps=["root"])

    Scheduler(workers=3).run(graph)

    assert calls.count("root") == 1
    assert calls.count("leaf") == 5


def test_independent_tasks_run_concurrently() -> None:
    barrier = threading.Barrier(3, timeout=5)
    graph = TaskGraph()
    for i in range(3):
        graph.add(i, barrier.wait)

    results = Scheduler(workers=3).run(graph)

    assert all(r.ok for r in results.values())


def test_empty_graph() -> None:
    assert Scheduler().run(TaskGraph()) == {}


def test_graph_rejects_duplicates_and_unknown_dependencies() -> None:
    graph = TaskGraph()
    graph.add("a", lambda: None)
    with pytest.raises(ValueError, match="Duplicate"):
        graph.add("a", lambda: None)
    with pytest.raises(ValueError, match="unknown"):
        graph.add("b", lambda x: x, deps=["missing"])
    assert "b" not in graph
    assert len(graph) == 1


def test_dependents() -> None:
    graph = TaskGraph()
    graph.add("a", lambda: None)
    graph.add("b", lambda x: x, deps=["a"])
    graph.add("c", lambda x: x, deps=["a"])

    assert graph.dependents("a") == ["b", "c"]


def test_workers_must_be_positive() -> None:
    with pytest.raises(ValueError):
        Scheduler(workers=0)

"""
Dependency sequencer — turn the step set into one deterministic order.

Stable topological sort (Kahn's algorithm) where ties between ready
steps are broken by declaration order, so the same runbook always
yields the same, diffable order.

The fallback-access step gets an implicit edge to every
connectivity-risk step: "prove key login works" always runs before
"disable password login", whether or not the runbook says so.
"""

from __future__ import annotations

import heapq
import logging
from collections import deque

from hostforge.core.engine.errors import CycleError, HostforgeError, UnknownDependencyError
from hostforge.core.models.step import Step

logger = logging.getLogger(__name__)


class UnknownStepError(HostforgeError):
    """A requested step id is not in the runbook."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Unknown step(s): {', '.join(missing)}")


def dependency_graph(steps: list[Step], fallback_step: str | None = None) -> dict[str, list[str]]:
    """Map each step id to the step ids it must wait for.

    A dependency on the fallback step is allowed to point outside the
    runbook (verified in an earlier run); the executor's gate checks
    the ledger for it instead.

    Raises:
        UnknownDependencyError: A dependency names no known step.
    """
    ids = {s.id for s in steps}
    graph: dict[str, list[str]] = {}

    for step in steps:
        edges: list[str] = []
        for dep in step.depends_on:
            if dep in ids:
                edges.append(dep)
            elif dep != fallback_step:
                raise UnknownDependencyError(step.id, dep)

        if (
            step.is_connectivity_risk
            and fallback_step in ids
            and step.id != fallback_step
            and fallback_step not in edges
        ):
            edges.append(fallback_step)

        graph[step.id] = edges

    return graph


def _shortest_cycle(graph: dict[str, list[str]], candidates: list[str]) -> list[str]:
    """Find the shortest cycle among `candidates` (declaration order breaks ties).

    Returned as a closed path following depends_on edges:
    ["a", "b", "a"] reads "a depends on b, which depends on a".
    """
    allowed = set(candidates)
    best: list[str] | None = None

    for start in candidates:
        parent: dict[str, str | None] = {start: None}
        queue = deque([start])
        closing: str | None = None

        while queue and closing is None:
            node = queue.popleft()
            for nxt in graph[node]:
                if nxt not in allowed:
                    continue
                if nxt == start:
                    closing = node
                    break
                if nxt not in parent:
                    parent[nxt] = node
                    queue.append(nxt)

        if closing is None:
            continue

        path = [closing]
        while path[-1] != start:
            prev = parent[path[-1]]
            assert prev is not None
            path.append(prev)
        cycle = list(reversed(path)) + [start]

        if best is None or len(cycle) < len(best):
            best = cycle

    assert best is not None, "Kahn's algorithm stalled without a cycle"
    return best


def sequence(steps: list[Step], fallback_step: str | None = None) -> list[Step]:
    """Order steps so every step comes after everything it depends on.

    Args:
        steps: Steps in declaration order.
        fallback_step: Id of the fallback-access verification step.

    Returns:
        The steps in execution order.

    Raises:
        UnknownDependencyError: A dependency names no known step.
        CycleError: The graph has a cycle; carries the shortest one.
    """
    graph = dependency_graph(steps, fallback_step)
    index = {s.id: i for i, s in enumerate(steps)}

    dependents: dict[str, list[str]] = {s.id: [] for s in steps}
    indegree: dict[str, int] = {}
    for step_id, deps in graph.items():
        indegree[step_id] = len(deps)
        for dep in deps:
            dependents[dep].append(step_id)

    ready = [index[sid] for sid, n in indegree.items() if n == 0]
    heapq.heapify(ready)
    order: list[Step] = []

    while ready:
        step = steps[heapq.heappop(ready)]
        order.append(step)
        for dependent in dependents[step.id]:
            indegree[dependent] -= 1
            if indegree[dependent] == 0:
                heapq.heappush(ready, index[dependent])

    if len(order) != len(steps):
        stuck = [s.id for s in steps if indegree[s.id] > 0]
        cycle = _shortest_cycle(graph, stuck)
        logger.error("Dependency cycle among %d steps: %s", len(stuck), " -> ".join(cycle))
        raise CycleError(cycle)

    logger.debug("Sequenced %d steps: %s", len(order), [s.id for s in order])
    return order


def select(
    steps: list[Step],
    requested: list[str],
    fallback_step: str | None = None,
) -> list[Step]:
    """Narrow the step set to `requested` plus everything they depend on.

    Returns:
        The selected steps, in declaration order.

    Raises:
        UnknownStepError: A requested id is not in the runbook.
        UnknownDependencyError: A dependency names no known step.
    """
    by_id = {s.id: s for s in steps}
    missing = [sid for sid in requested if sid not in by_id]
    if missing:
        raise UnknownStepError(missing)

    graph = dependency_graph(steps, fallback_step)
    wanted: set[str] = set()
    stack = list(requested)
    while stack:
        sid = stack.pop()
        if sid in wanted:
            continue
        wanted.add(sid)
        stack.extend(graph[sid])

    pulled_in = [s.id for s in steps if s.id in wanted and s.id not in requested]
    if pulled_in:
        logger.info("Including dependencies of the selected steps: %s", ", ".join(pulled_in))

    return [s for s in steps if s.id in wanted]

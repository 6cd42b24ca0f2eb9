"""
StepGraph - dependency graph over the steps of a Plan.

The graph is an arena: nodes live in a list in plan order and refer to each
other by index. Each node keeps its dependency indices and its dependent
indices, plus the runtime StepStatus for the current attempt. A fresh graph is
built for every attempt; the Plan itself is never mutated.

Batching semantics
- execution_order() yields successive "ready" batches: every Pending step
  whose dependencies are all Completed, in plan order.
- Batches are greedy frontiers (Kahn-style), not a full topological sort: a
  step appears in the earliest batch for which its dependencies are satisfied.
- Readiness is evaluated lazily, when the next batch is requested, so callers
  must move the yielded steps out of Pending before asking for the next one.
- Before each batch is computed, failures cascade: every transitive dependent
  of a Failed step that is still Pending becomes Skipped.

Usage:
    graph = StepGraph.build(plan.steps)
    for batch in graph.execution_order():
        for step in batch:
            graph.mark_running(step.id)
            ...
            graph.mark_completed(step.id)
"""

import logging
from collections import deque
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Optional

from chakravarti.errors import CycleError, InvalidTransitionError, PlanValidationError
from chakravarti.schemas import STEP_TRANSITIONS, Step, StepStatus

logger = logging.getLogger(__name__)


@dataclass
class StepNode:
    """A step plus its adjacency and runtime status."""
    index: int
    step: Step
    deps: list[int] = field(default_factory=list)
    dependents: list[int] = field(default_factory=list)
    status: StepStatus = StepStatus.PENDING
    reason: Optional[str] = None

    @property
    def id(self) -> str:
        return self.step.id


class StepGraph:
    """
    Validated, acyclic dependency graph of steps.

    Construct with StepGraph.build(); the constructor assumes its input has
    already been validated.
    """

    def __init__(self, nodes: list[StepNode]):
        self._nodes = nodes
        self._index: dict[str, int] = {n.id: n.index for n in nodes}

    @classmethod
    def build(cls, steps: Iterable[Step]) -> "StepGraph":
        """
        Validate steps and build the graph.

        Args:
            steps: Steps in plan order

        Returns:
            StepGraph with every node Pending

        Raises:
            PlanValidationError: Duplicate step id or unknown dependency id
            CycleError: The dependency relation contains a cycle
        """
        nodes: list[StepNode] = []
        index: dict[str, int] = {}
        for step in steps:
            if step.id in index:
                raise PlanValidationError(f"Duplicate step id: {step.id}")
            index[step.id] = len(nodes)
            nodes.append(StepNode(index=len(nodes), step=step))

        for node in nodes:
            for dep_id in node.step.depends_on:
                if dep_id not in index:
                    raise PlanValidationError(
                        f"Step {node.id} depends on unknown step: {dep_id}"
                    )
                dep = index[dep_id]
                node.deps.append(dep)
                nodes[dep].dependents.append(node.index)

        cycle = _find_cycle(nodes)
        if cycle is not None:
            raise CycleError([nodes[i].id for i in cycle])

        return cls(nodes)

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, step_id: str) -> bool:
        return step_id in self._index

    @property
    def nodes(self) -> list[StepNode]:
        return list(self._nodes)

    def node(self, step_id: str) -> StepNode:
        """Get the node for a step id (KeyError if unknown)."""
        return self._nodes[self._index[step_id]]

    def status(self, step_id: str) -> StepStatus:
        return self.node(step_id).status

    def reason(self, step_id: str) -> Optional[str]:
        return self.node(step_id).reason

    def ids_with_status(self, status: StepStatus) -> list[str]:
        return [n.id for n in self._nodes if n.status == status]

    @property
    def is_finished(self) -> bool:
        """True when every step is in a terminal status."""
        return all(n.status.is_terminal for n in self._nodes)

    # -------------------------------------------------------------------------
    # Ordering
    # -------------------------------------------------------------------------

    def ready(self) -> list[Step]:
        """Pending steps whose dependencies are all Completed, in plan order."""
        return [
            n.step for n in self._nodes
            if n.status == StepStatus.PENDING
            and all(self._nodes[d].status == StepStatus.COMPLETED for d in n.deps)
        ]

    def execution_order(self) -> Iterator[list[Step]]:
        """
        Lazily yield ready batches until no step is ready.

        Each call returns a fresh generator; on a graph where every step is
        terminal it yields nothing. Steps already yielded by this generator
        are never yielded again, even if the caller leaves them Pending.
        """
        emitted: set[str] = set()
        while True:
            self.cascade_skips()
            batch = [s for s in self.ready() if s.id not in emitted]
            if not batch:
                return
            emitted.update(s.id for s in batch)
            yield batch

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _transition(self, node: StepNode, to_status: StepStatus, reason: Optional[str] = None) -> None:
        if to_status not in STEP_TRANSITIONS[node.status]:
            raise InvalidTransitionError(f"step {node.id}", node.status.value, to_status.value)
        node.status = to_status
        node.reason = reason

    def mark_running(self, step_id: str) -> None:
        self._transition(self.node(step_id), StepStatus.RUNNING)

    def mark_completed(self, step_id: str) -> None:
        self._transition(self.node(step_id), StepStatus.COMPLETED)

    def mark_failed(self, step_id: str, reason: str) -> None:
        self._transition(self.node(step_id), StepStatus.FAILED, reason)

    def mark_skipped(self, step_id: str, reason: str) -> None:
        self._transition(self.node(step_id), StepStatus.SKIPPED, reason)

    def cascade_skips(self) -> list[StepNode]:
        """
        Skip every Pending transitive dependent of a Failed step.

        The skip reason names the failed step the cascade started from.
        Runs to a fixed point in one pass; calling it again without new
        failures is a no-op.

        Returns:
            Nodes newly marked Skipped, in plan order
        """
        skipped: list[StepNode] = []
        for root in self._nodes:
            if root.status != StepStatus.FAILED:
                continue
            reason = f"upstream step `{root.id}` failed"
            queue = deque(root.dependents)
            seen: set[int] = set()
            while queue:
                idx = queue.popleft()
                if idx in seen:
                    continue
                seen.add(idx)
                node = self._nodes[idx]
                if node.status == StepStatus.PENDING:
                    self._transition(node, StepStatus.SKIPPED, reason)
                    skipped.append(node)
                queue.extend(node.dependents)

        if skipped:
            logger.debug("Cascaded skip to %d step(s): %s", len(skipped), [n.id for n in skipped])
        return sorted(skipped, key=lambda n: n.index)

    def skip_pending(self, reason: str) -> list[StepNode]:
        """Skip every step still Pending (cancellation). Returns the skipped nodes."""
        skipped = [n for n in self._nodes if n.status == StepStatus.PENDING]
        for node in skipped:
            self._transition(node, StepStatus.SKIPPED, reason)
        return skipped


def _find_cycle(nodes: list[StepNode]) -> Optional[list[int]]:
    """
    Depth-first search for a dependency cycle.

    Returns the cycle as a list of node indices with the first node repeated
    at the end (e.g. [a, b, a]), or None when the graph is acyclic. Iterative
    so deep chains do not hit the recursion limit.
    """
    WHITE, GREY, BLACK = 0, 1, 2
    color = [WHITE] * len(nodes)

    for start in range(len(nodes)):
        if color[start] != WHITE:
            continue
        path: list[int] = [start]
        stack: list[Iterator[int]] = [iter(nodes[start].deps)]
        color[start] = GREY
        while stack:
            nxt = next(stack[-1], None)
            if nxt is None:
                color[path.pop()] = BLACK
                stack.pop()
                continue
            if color[nxt] == GREY:
                return path[path.index(nxt):] + [nxt]
            if color[nxt] == WHITE:
                color[nxt] = GREY
                path.append(nxt)
                stack.append(iter(nodes[nxt].deps))
    return None

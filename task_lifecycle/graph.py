"""
Dependency Graph

Directed graph over task identifiers with cycle prevention.
An edge ``a -> b`` means "a depends on b".

Key Features:
- Adjacency mapping keyed by opaque identifiers (plus reverse mapping for dependents)
- Incremental cycle check on every insertion (BFS, O(V + E))
- Cycle reporting with the offending path
- Integrity check when loading persisted edges
- Topological ordering (dependencies first)
"""

from collections import deque
from typing import Dict, Hashable, Iterable, Iterator, List, Optional, Set, Tuple

from task_lifecycle.exceptions import (
    CycleDetectedError,
    GraphCorruptedError,
    SelfDependencyError,
)
from task_lifecycle.logging_config import get_logger

logger = get_logger("graph")

Edge = Tuple[Hashable, Hashable]


class DependencyGraph:
    """
    Acyclic dependency graph.

    Not thread-safe; callers serialize mutations (the lifecycle service holds
    a single writer lock). Read-only queries may run without the lock.
    """

    def __init__(self) -> None:
        self._adjacency: Dict[Hashable, Set[Hashable]] = {}
        self._reverse: Dict[Hashable, Set[Hashable]] = {}

    # ============================================================================
    # CONSTRUCTION
    # ============================================================================

    @classmethod
    def from_edges(
        cls,
        edges: Iterable[Edge],
        vertices: Iterable[Hashable] = (),
    ) -> "DependencyGraph":
        """
        Build a graph from persisted data.

        Raises:
            GraphCorruptedError: If the data contains a self-loop or a cycle
        """
        graph = cls()
        for vertex in vertices:
            graph.add_vertex(vertex)
        for from_, to in edges:
            if from_ == to:
                logger.error("Self-loop found in stored graph", task_id=str(from_))
                raise GraphCorruptedError([from_, from_])
            graph._insert(from_, to)

        cycle = graph.find_cycle()
        if cycle is not None:
            logger.error("Cycle found in stored graph", path=[str(p) for p in cycle])
            raise GraphCorruptedError(cycle)
        return graph

    @classmethod
    def from_tasks(cls, tasks: Iterable) -> "DependencyGraph":
        """Build a graph from objects exposing ``id`` and ``dependencies``."""
        tasks = list(tasks)
        edges = [(task.id, dep_id) for task in tasks for dep_id in task.dependencies]
        return cls.from_edges(edges, vertices=[task.id for task in tasks])

    def copy(self) -> "DependencyGraph":
        clone = DependencyGraph()
        clone._adjacency = {k: set(v) for k, v in self._adjacency.items()}
        clone._reverse = {k: set(v) for k, v in self._reverse.items()}
        return clone

    # ============================================================================
    # MUTATION
    # ============================================================================

    def add_vertex(self, vertex: Hashable) -> None:
        self._adjacency.setdefault(vertex, set())
        self._reverse.setdefault(vertex, set())

    def add_edge(self, from_: Hashable, to: Hashable) -> bool:
        """
        Add dependency edge ``from_ -> to``.

        Returns:
            False if the edge already existed, True if it was inserted

        Raises:
            SelfDependencyError: If ``from_ == to``
            CycleDetectedError: If ``to`` already reaches ``from_``; graph unchanged
        """
        if from_ == to:
            raise SelfDependencyError(from_)

        if self.has_edge(from_, to):
            return False

        back_path = self.find_path(to, from_)
        if back_path is not None:
            raise CycleDetectedError([from_] + back_path)

        self._insert(from_, to)
        return True

    def remove_edge(self, from_: Hashable, to: Hashable) -> bool:
        """Remove edge if present. Returns whether anything was removed."""
        targets = self._adjacency.get(from_)
        if not targets or to not in targets:
            return False
        targets.discard(to)
        self._reverse.get(to, set()).discard(from_)
        return True

    def _insert(self, from_: Hashable, to: Hashable) -> None:
        self.add_vertex(from_)
        self.add_vertex(to)
        self._adjacency[from_].add(to)
        self._reverse[to].add(from_)

    # ============================================================================
    # QUERIES
    # ============================================================================

    def has_edge(self, from_: Hashable, to: Hashable) -> bool:
        return to in self._adjacency.get(from_, ())

    def dependencies_of(self, vertex: Hashable) -> Set[Hashable]:
        return set(self._adjacency.get(vertex, ()))

    def dependents_of(self, vertex: Hashable) -> Set[Hashable]:
        return set(self._reverse.get(vertex, ()))

    def reaches(self, a: Hashable, b: Hashable) -> bool:
        """True if a path ``a -> ... -> b`` exists (a vertex reaches itself)."""
        return self.find_path(a, b) is not None

    def find_path(self, a: Hashable, b: Hashable) -> Optional[List[Hashable]]:
        """Shortest path from ``a`` to ``b`` inclusive, or None."""
        if a == b:
            return [a]
        if a not in self._adjacency:
            return None

        parents: Dict[Hashable, Hashable] = {}
        visited = {a}
        queue = deque([a])

        while queue:
            current = queue.popleft()
            for neighbor in self._adjacency.get(current, ()):
                if neighbor in visited:
                    continue
                parents[neighbor] = current
                if neighbor == b:
                    path = [b]
                    while path[-1] != a:
                        path.append(parents[path[-1]])
                    path.reverse()
                    return path
                visited.add(neighbor)
                queue.append(neighbor)

        return None

    def find_cycle(self) -> Optional[List[Hashable]]:
        """Return one cycle as ``[v0, ..., v0]`` or None (iterative DFS, three colours)."""
        white, grey, black = 0, 1, 2
        colour = {vertex: white for vertex in self._adjacency}

        for root in sorted(self._adjacency, key=str):
            if colour[root] != white:
                continue
            stack: List[Tuple[Hashable, Iterator[Hashable]]] = [
                (root, iter(sorted(self._adjacency[root], key=str)))
            ]
            path = [root]
            colour[root] = grey

            while stack:
                vertex, children = stack[-1]
                child = next(children, None)
                if child is None:
                    stack.pop()
                    path.pop()
                    colour[vertex] = black
                    continue
                if colour.get(child, white) == grey:
                    start = path.index(child)
                    return path[start:] + [child]
                if colour.get(child, white) == white:
                    colour[child] = grey
                    path.append(child)
                    stack.append((child, iter(sorted(self._adjacency.get(child, ()), key=str))))

        return None

    def topological_order(self) -> List[Hashable]:
        """Vertices ordered so that every dependency precedes its dependents."""
        remaining = {vertex: len(deps) for vertex, deps in self._adjacency.items()}
        ready = sorted((v for v, n in remaining.items() if n == 0), key=str)
        result: List[Hashable] = []

        while ready:
            current = ready.pop(0)
            result.append(current)
            released = []
            for dependent in self._reverse.get(current, ()):
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    released.append(dependent)
            ready.extend(released)
            ready.sort(key=str)

        return result

    @property
    def vertices(self) -> Set[Hashable]:
        return set(self._adjacency)

    def edges(self) -> List[Edge]:
        return [(from_, to) for from_, targets in self._adjacency.items() for to in targets]

    def __contains__(self, vertex: object) -> bool:
        return vertex in self._adjacency

    def __len__(self) -> int:
        return len(self._adjacency)

    def __repr__(self) -> str:
        return f"DependencyGraph(vertices={len(self._adjacency)}, edges={len(self.edges())})"

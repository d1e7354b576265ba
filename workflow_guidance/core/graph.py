"""
Reusable dependency graph.

Shared by batch-level and subtask-level dependency validation. Nodes are any
hashable values; an edge ``node -> prerequisite`` means the prerequisite has to
finish first. Both algorithms are iterative, so their cost is bounded by the
size of the input.
"""

import heapq
from typing import Dict, Generic, Hashable, Iterable, List, Mapping, Optional, TypeVar

from .exceptions import ValidationError

N = TypeVar("N", bound=Hashable)


class DependencyGraph(Generic[N]):
    """Directed dependency graph that remembers node insertion order"""

    def __init__(self, nodes: Optional[Iterable[N]] = None):
        self._nodes: List[N] = []
        self._index: Dict[N, int] = {}
        self._prerequisites: Dict[N, List[N]] = {}
        self._dependents: Dict[N, List[N]] = {}
        for node in nodes or []:
            self.add_node(node)

    @classmethod
    def from_mapping(cls, nodes: Iterable[N], dependencies: Mapping[N, Iterable[N]]) -> 'DependencyGraph[N]':
        """
        Build a graph from a node list and a ``node -> prerequisites`` mapping.

        Raises:
            ValidationError: If a mapping key or prerequisite is not a known node
        """
        graph: DependencyGraph[N] = cls(nodes)
        for node, prerequisites in dependencies.items():
            for prerequisite in prerequisites:
                graph.add_dependency(node, prerequisite)
        return graph

    def __contains__(self, node: object) -> bool:
        return node in self._index

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def nodes(self) -> List[N]:
        return list(self._nodes)

    def add_node(self, node: N) -> None:
        if node in self._index:
            raise ValidationError(f"Duplicate node in dependency graph: {node}", value=node)
        self._index[node] = len(self._nodes)
        self._nodes.append(node)
        self._prerequisites[node] = []
        self._dependents[node] = []

    def add_dependency(self, node: N, prerequisite: N) -> None:
        """Record that ``node`` depends on ``prerequisite`` (duplicates ignored)"""
        for member in (node, prerequisite):
            if member not in self._index:
                raise ValidationError(
                    f"Unknown node in dependency: {member}",
                    field="dependency",
                    value=member,
                    context={"node": node, "depends_on": prerequisite}
                )
        if prerequisite in self._prerequisites[node]:
            return
        self._prerequisites[node].append(prerequisite)
        self._dependents[prerequisite].append(node)

    def prerequisites_of(self, node: N) -> List[N]:
        return list(self._prerequisites.get(node, []))

    def dependents_of(self, node: N) -> List[N]:
        return list(self._dependents.get(node, []))

    def edge_count(self) -> int:
        return sum(len(deps) for deps in self._prerequisites.values())

    def find_cycle(self) -> Optional[List[N]]:
        """
        Depth-first search with a recursion-stack set.

        Returns the nodes forming the first cycle found (first node repeated at
        the end), or None when the graph is acyclic. Roots are visited in
        insertion order so the result is deterministic.
        """
        visited = set()
        on_stack = set()

        for root in self._nodes:
            if root in visited:
                continue
            path: List[N] = [root]
            iterators = [iter(self._prerequisites[root])]
            visited.add(root)
            on_stack.add(root)

            while iterators:
                advanced = False
                for prerequisite in iterators[-1]:
                    if prerequisite in on_stack:
                        start = path.index(prerequisite)
                        return path[start:] + [prerequisite]
                    if prerequisite in visited:
                        continue
                    visited.add(prerequisite)
                    on_stack.add(prerequisite)
                    path.append(prerequisite)
                    iterators.append(iter(self._prerequisites[prerequisite]))
                    advanced = True
                    break
                if not advanced:
                    iterators.pop()
                    on_stack.discard(path.pop())
        return None

    def has_cycle(self) -> bool:
        return self.find_cycle() is not None

    def topological_order(self) -> List[N]:
        """
        Kahn's algorithm.

        Prerequisites come before their dependents; among nodes that are ready
        at the same time the one inserted first wins, so an edgeless graph keeps
        its input order.

        Raises:
            ValidationError: If the graph contains a cycle
        """
        in_degree = {node: len(self._prerequisites[node]) for node in self._nodes}
        ready = [self._index[node] for node in self._nodes if in_degree[node] == 0]
        heapq.heapify(ready)
        result: List[N] = []

        while ready:
            current = self._nodes[heapq.heappop(ready)]
            result.append(current)
            for dependent in self._dependents[current]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(ready, self._index[dependent])

        if len(result) != len(self._nodes):
            cycle = self.find_cycle() or [n for n in self._nodes if in_degree[n] > 0]
            raise ValidationError(
                f"Circular dependency detected involving: {' -> '.join(str(n) for n in cycle)}",
                field="dependencies",
                value=cycle[0] if cycle else None
            )
        return result

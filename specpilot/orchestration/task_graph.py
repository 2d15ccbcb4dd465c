# specpilot/orchestration/task_graph.py
"""
Dependency graph over plan items.

Dependencies are a plain adjacency list (item id -> ids it depends on).
Ordering comes from an explicit stable topological sort; nothing walks
object references.
"""
import heapq
from typing import Dict, Iterable, List, Sequence, Tuple


class DependencyGraph:
    """
    Nodes are item ids with a priority used as the tie-breaker. Edges pointing
    at unknown ids are ignored.
    """

    def __init__(self, nodes: Sequence[Tuple[str, int]], dependencies: Dict[str, Iterable[str]]):
        self.priority: Dict[str, int] = {}
        self.order: List[str] = []
        for node_id, priority in nodes:
            if node_id not in self.priority:
                self.priority[node_id] = priority
                self.order.append(node_id)

        self.dependencies: Dict[str, List[str]] = {}
        for node_id in self.order:
            deps = [
                d for d in dependencies.get(node_id, [])
                if d in self.priority and d != node_id
            ]
            # dedupe, keep first-seen order
            self.dependencies[node_id] = list(dict.fromkeys(deps))

    def _key(self, node_id: str) -> Tuple[int, int]:
        return (self.priority[node_id], self.order.index(node_id))

    def required_for(self, node_id: str) -> List[str]:
        """Get the dependencies required for a node."""
        return list(self.dependencies.get(node_id, []))

    def get_dependents(self, node_id: str) -> List[str]:
        """Get all nodes that depend on this node."""
        return [n for n in self.order if node_id in self.dependencies[n]]

    def is_ready(self, node_id: str, completed: Iterable[str]) -> bool:
        done = set(completed)
        return all(dep in done for dep in self.required_for(node_id))

    def topological_order(self) -> List[str]:
        """
        Kahn's algorithm; among ready nodes the lowest (priority, position)
        goes first, so the result is stable for a given input.

        Nodes caught in a cycle are appended in priority order.
        """
        indegree = {n: len(self.dependencies[n]) for n in self.order}
        ready = [(self._key(n), n) for n in self.order if indegree[n] == 0]
        heapq.heapify(ready)

        result: List[str] = []
        while ready:
            _, node = heapq.heappop(ready)
            result.append(node)
            for dependent in self.get_dependents(node):
                indegree[dependent] -= 1
                if indegree[dependent] == 0:
                    heapq.heappush(ready, (self._key(dependent), dependent))

        if len(result) < len(self.order):
            placed = set(result)
            result.extend(sorted((n for n in self.order if n not in placed), key=self._key))
        return result

    def has_cycle(self) -> bool:
        """True when the dependency edges cannot be fully ordered."""
        indegree = {n: len(self.dependencies[n]) for n in self.order}
        queue = [n for n in self.order if indegree[n] == 0]
        seen = 0
        while queue:
            node = queue.pop()
            seen += 1
            for dependent in self.get_dependents(node):
                indegree[dependent] -= 1
                if indegree[dependent] == 0:
                    queue.append(dependent)
        return seen < len(self.order)

    def components(self) -> List[List[str]]:
        """
        Weakly connected components (dependency chains), each listed in
        topological order, components ordered by their earliest member.
        """
        parent = {n: n for n in self.order}

        def find(n: str) -> str:
            while parent[n] != n:
                parent[n] = parent[parent[n]]
                n = parent[n]
            return n

        for node, deps in self.dependencies.items():
            for dep in deps:
                a, b = find(node), find(dep)
                if a != b:
                    parent[b] = a

        position = {n: i for i, n in enumerate(self.topological_order())}
        groups: Dict[str, List[str]] = {}
        for node in self.order:
            groups.setdefault(find(node), []).append(node)

        chains = [sorted(members, key=position.__getitem__) for members in groups.values()]
        chains.sort(key=lambda chain: min(self._key(n) for n in chain))
        return chains

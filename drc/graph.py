from __future__ import annotations

from .errors import CyclicDependency
from .resources import Resource


class DependencyGraph:
    """Apply-order DAG. An edge a -> b means a must be applied before b."""

    def __init__(self, resources: list[Resource]):
        self.resources: dict[str, Resource] = {r.resource_id: r for r in resources}
        self.order_index: dict[str, int] = {rid: i for i, rid in enumerate(self.resources)}
        self._deps: dict[str, list[str]] = {rid: [] for rid in self.resources}
        self._dependents: dict[str, list[str]] = {rid: [] for rid in self.resources}

    def add_edge(self, before: str, after: str) -> None:
        if before not in self._deps[after]:
            self._deps[after].append(before)
            self._dependents[before].append(after)

    def dependencies(self, resource_id: str) -> list[str]:
        return list(self._deps.get(resource_id, []))

    def dependents(self, resource_id: str) -> list[str]:
        return list(self._dependents.get(resource_id, []))

    def topological_order(self) -> list[str]:
        """Kahn's algorithm; among ready nodes the earliest declared goes first."""
        indegree = {rid: len(deps) for rid, deps in self._deps.items()}
        ready = sorted((rid for rid, n in indegree.items() if n == 0), key=self.order_index.__getitem__)
        order: list[str] = []
        while ready:
            rid = ready.pop(0)
            order.append(rid)
            for nxt in self._dependents[rid]:
                indegree[nxt] -= 1
                if indegree[nxt] == 0:
                    ready.append(nxt)
            ready.sort(key=self.order_index.__getitem__)

        if len(order) != len(self.resources):
            stuck = [rid for rid in self.resources if indegree[rid] > 0]
            raise CyclicDependency(stuck)
        return order


def build_graph(resources: list[Resource]) -> DependencyGraph:
    """Build the DAG from references; raises CyclicDependency on a cycle.

    Resources must already be validated (every reference points at a declared resource).
    """
    graph = DependencyGraph(resources)
    for r in resources:
        for ref in r.references():
            graph.add_edge(ref.resource_id, r.resource_id)
    graph.topological_order()
    return graph

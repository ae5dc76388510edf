"""
Dependency graph over automation settings.

Settings store their dependency as a parent pointer (depends_on_task_id).
This module turns those pointers into explicit adjacency lists and checks
the two structural rules: a parent must exist in the same stage, and
following parents must never loop back.
"""
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Optional

from aslan_crm.automation.exceptions import DependencyCycleError, InvalidDependencyError


@dataclass(frozen=True)
class DependencyNode:
    id: int
    stage_id: str
    depends_on: Optional[int] = None


class DependencyGraph:

    def __init__(self, nodes: Iterable[DependencyNode]):
        self.nodes: dict[int, DependencyNode] = {node.id: node for node in nodes}
        self._children: dict[int, list[int]] = defaultdict(list)
        for node in self.nodes.values():
            if node.depends_on is not None:
                self._children[node.depends_on].append(node.id)

    def with_node(self, node: DependencyNode) -> "DependencyGraph":
        """Copy of the graph with one node added or replaced."""
        nodes = dict(self.nodes)
        nodes[node.id] = node
        return DependencyGraph(nodes.values())

    def children(self, node_id: int) -> list[int]:
        return list(self._children.get(node_id, []))

    def parent(self, node_id: int) -> Optional[int]:
        node = self.nodes.get(node_id)
        return node.depends_on if node else None

    def find_cycle(self) -> Optional[list[int]]:
        """Return the first cycle found as a node path, or None.

        Each node has at most one parent, so walking parent pointers from
        every node either reaches a root or revisits a node on the walk.
        """
        cleared: set[int] = set()
        for start in self.nodes:
            path: list[int] = []
            on_path: set[int] = set()
            current: Optional[int] = start
            while current is not None and current not in cleared:
                if current in on_path:
                    loop_start = path.index(current)
                    return path[loop_start:] + [current]
                path.append(current)
                on_path.add(current)
                current = self.parent(current)
            cleared.update(path)
        return None

    def invalid_edges(self) -> list[str]:
        """Describe every dependency that points outside its own stage or at nothing."""
        problems = []
        for node in self.nodes.values():
            if node.depends_on is None:
                continue
            if node.depends_on == node.id:
                problems.append(f"Setting {node.id} depends on itself")
                continue
            parent = self.nodes.get(node.depends_on)
            if parent is None:
                problems.append(f"Setting {node.id} depends on missing setting {node.depends_on}")
            elif parent.stage_id != node.stage_id:
                problems.append(
                    f"Setting {node.id} (stage {node.stage_id}) depends on setting "
                    f"{parent.id} from stage {parent.stage_id}"
                )
        return problems

    def problems(self) -> list[str]:
        """All structural problems, without raising."""
        problems = self.invalid_edges()
        cycle = self.find_cycle()
        if cycle:
            problems.append("Dependency cycle: " + " -> ".join(str(n) for n in cycle))
        return problems

    def validate(self) -> None:
        edges = self.invalid_edges()
        if edges:
            raise InvalidDependencyError(edges[0])
        cycle = self.find_cycle()
        if cycle:
            raise DependencyCycleError(cycle)

    def is_valid_edge(self, node_id: int) -> bool:
        """True when node's own dependency (if any) stays inside its stage."""
        node = self.nodes.get(node_id)
        if node is None or node.depends_on is None:
            return node is not None
        parent = self.nodes.get(node.depends_on)
        return parent is not None and parent.id != node.id and parent.stage_id == node.stage_id

    def validate_node(self, node_id: int) -> None:
        """Validate one node's dependency and any cycle running through it."""
        node = self.nodes[node_id]
        if node.depends_on is None:
            return
        if not self.is_valid_edge(node_id):
            parent = self.nodes.get(node.depends_on)
            if parent is None:
                raise InvalidDependencyError(f"Parent setting {node.depends_on} does not exist")
            if parent.id == node.id:
                raise InvalidDependencyError(f"Setting {node.id} can't depend on itself")
            raise InvalidDependencyError(
                f"Parent setting {parent.id} belongs to stage {parent.stage_id}, not {node.stage_id}"
            )
        path = [node_id]
        current = node.depends_on
        while current is not None:
            path.append(current)
            if current == node_id:
                raise DependencyCycleError(path)
            if len(path) > len(self.nodes) + 1:
                break
            current = self.parent(current)

"""Dependency registry for declared sources, bootstrap operations, and outputs.

Stands in for the table publication layer: every pipeline declares the
relations and models it reads, registers its ``init_<output>`` bootstrap
operation, and publishes its incremental output table. The registry is
an explicit object passed to the bootstrapper, never ambient global state.

Wraps a NetworkX DiGraph. Edges point from a dependency to its dependent,
so a topological sort yields a valid execution order.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import networkx as nx
import structlog

from sluice.contracts.enums import DependencyKind
from sluice.contracts.errors import DependencyCycleError, UndeclaredDependencyError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class DependencyNode:
    """A registered name.

    Attributes:
        name: Logical name used for lookups
        kind: Declaration, operation, or incremental output
        schema: Optional schema/dataset qualifier used when resolving
        unique_key: Unique key columns (incremental outputs only)
    """

    name: str
    kind: DependencyKind
    schema: str | None = None
    unique_key: tuple[str, ...] = ()

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}" if self.schema else self.name


class DependencyRegistry:
    """Registry of declared and published names.

    Example:
        registry = DependencyRegistry()
        registry.declare("hacker_50k")
        registry.declare({"name": "llm", "schema": "models"})
        registry.declare_operation("init_summaries", ["hacker_50k", "llm"])
        registry.publish("summaries", unique_key=["id"], dependencies=["init_summaries"])
        registry.execution_order()
        # ['hacker_50k', 'llm', 'init_summaries', 'summaries']
    """

    def __init__(self) -> None:
        self._graph: nx.DiGraph[str] = nx.DiGraph()

    def is_declared(self, name: str) -> bool:
        return self._graph.has_node(name)

    def declare(self, source: str | Mapping[str, Any]) -> bool:
        """Declare an external relation or model if it is not already known.

        Args:
            source: Either a bare name or a mapping with ``name`` and an
                optional ``schema`` qualifier.

        Returns:
            True if newly declared, False if the name was already present.
        """
        if isinstance(source, str):
            name, schema = source, None
        else:
            name = source["name"]
            schema = source.get("schema")

        if self.is_declared(name):
            logger.debug("Dependency already declared", name=name)
            return False

        self._graph.add_node(name, node=DependencyNode(name=name, kind=DependencyKind.DECLARATION, schema=schema))
        logger.debug("Dependency declared", name=name, schema=schema)
        return True

    def declare_operation(self, name: str, dependencies: Sequence[str] = ()) -> bool:
        """Register a one-off operation (idempotent)."""
        return self._add(DependencyNode(name=name, kind=DependencyKind.OPERATION), dependencies)

    def publish(self, name: str, *, unique_key: Sequence[str], dependencies: Sequence[str] = ()) -> bool:
        """Register an incremental output table keyed by ``unique_key`` (idempotent)."""
        node = DependencyNode(name=name, kind=DependencyKind.INCREMENTAL, unique_key=tuple(unique_key))
        return self._add(node, dependencies)

    def _add(self, node: DependencyNode, dependencies: Sequence[str]) -> bool:
        for dependency in dependencies:
            if not self.is_declared(dependency):
                raise UndeclaredDependencyError(dependency)

        created = not self.is_declared(node.name)
        if created:
            self._graph.add_node(node.name, node=node)
        for dependency in dependencies:
            self._graph.add_edge(dependency, node.name)

        if not nx.is_directed_acyclic_graph(self._graph):
            cycle = [edge[0] for edge in nx.find_cycle(self._graph, node.name)]
            for dependency in dependencies:
                self._graph.remove_edge(dependency, node.name)
            if created:
                self._graph.remove_node(node.name)
            raise DependencyCycleError([*cycle, cycle[0]])
        return created

    def get(self, name: str) -> DependencyNode:
        if not self.is_declared(name):
            raise UndeclaredDependencyError(name)
        node: DependencyNode = self._graph.nodes[name]["node"]
        return node

    def resolve(self, name: str) -> str:
        """Return the qualified storage name for a declared name."""
        return self.get(name).qualified_name

    def dependencies_of(self, name: str) -> list[str]:
        """Direct dependencies of ``name``, sorted for stable output."""
        self.get(name)
        return sorted(self._graph.predecessors(name))

    def execution_order(self) -> list[str]:
        """All names in a valid execution order (lexicographic among peers)."""
        try:
            return list(nx.lexicographical_topological_sort(self._graph))
        except nx.NetworkXUnfeasible:
            cycle = [edge[0] for edge in nx.find_cycle(self._graph)]
            raise DependencyCycleError([*cycle, cycle[0]]) from None

    def __len__(self) -> int:
        return self._graph.number_of_nodes()

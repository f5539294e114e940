"""
Diagram Graph - containment tree built from a flat node list.

The graph models an architecture diagram as:
- Nodes: containers (region, VPC, subnet) and resources, in an arena keyed by id
- Containment: parent_id references, with explicit child-id lists
- Edges: user-drawn connections, carried as opaque metadata
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType
from typing import Optional

from archcost.core.errors import MalformedGraphError
from archcost.core.schema import DiagramEdge, NodeKind, ResourceNode, ResourceType

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiagramGraph:
    """
    Immutable containment tree for one estimation request.

    Provides efficient lookups for:
    - Node by ID
    - Children and parent of a node
    - Containment order (containers before the resources they contain)

    Safe to read from many worker threads.
    """

    nodes_by_id: Mapping[str, ResourceNode]
    children: Mapping[str, tuple[str, ...]]
    roots: tuple[str, ...]
    order: tuple[str, ...]
    edges: tuple[DiagramEdge, ...] = ()

    def node(self, node_id: str) -> ResourceNode | None:
        """Get a node by ID."""
        return self.nodes_by_id.get(node_id)

    def children_of(self, node_id: str) -> list[ResourceNode]:
        """Get the direct children of a node, in diagram order."""
        return [self.nodes_by_id[c] for c in self.children.get(node_id, ())]

    def parent_of(self, node_id: str) -> ResourceNode | None:
        node = self.nodes_by_id.get(node_id)
        if node is None or node.parent_id is None:
            return None
        return self.nodes_by_id.get(node.parent_id)

    def ancestors(self, node_id: str) -> list[ResourceNode]:
        """Get all ancestors of a node, nearest first."""
        result = []
        parent = self.parent_of(node_id)
        while parent is not None:
            result.append(parent)
            parent = self.parent_of(parent.id)
        return result

    def ordered_nodes(self) -> list[ResourceNode]:
        """All nodes in containment order."""
        return [self.nodes_by_id[n] for n in self.order]

    def resources(self) -> list[ResourceNode]:
        """Resource-kind nodes in containment order. These are what gets priced."""
        return [n for n in self.ordered_nodes() if n.kind is NodeKind.RESOURCE]

    def nodes_by_type(self, resource_type: ResourceType) -> list[ResourceNode]:
        return [n for n in self.ordered_nodes() if n.resource_type is resource_type]

    def node_count(self) -> int:
        return len(self.nodes_by_id)

    def edge_count(self) -> int:
        return len(self.edges)


class GraphBuilder:
    """
    Builds a DiagramGraph from nodes and edges.

    Fails with MalformedGraphError when a parent_id does not resolve, an id
    is duplicated, or the containment references form a cycle.

    Example:
        builder = GraphBuilder(default_region="us-east-1")
        graph = builder.build(nodes=diagram.resource_nodes(), edges=diagram.edges)
    """

    def __init__(self, *, default_region: Optional[str] = None, strict_resource_types: bool = False):
        self._default_region = default_region
        self._strict = strict_resource_types

    def build(
        self,
        *,
        nodes: Sequence[ResourceNode],
        edges: Sequence[DiagramEdge] = (),
    ) -> DiagramGraph:
        """Build and validate the containment tree. Pure; inputs are not modified."""
        nodes_by_id: dict[str, ResourceNode] = {}
        for node in nodes:
            if node.id in nodes_by_id:
                raise MalformedGraphError(f"Duplicate node id '{node.id}'", node_id=node.id)
            if self._strict and node.resource_type is ResourceType.UNSUPPORTED:
                raise MalformedGraphError(
                    f"Node '{node.id}' has unsupported resource type '{node.raw_type}'",
                    node_id=node.id,
                )
            nodes_by_id[node.id] = node

        children: dict[str, list[str]] = {}
        roots: list[str] = []
        for node in nodes:
            if node.parent_id is None:
                roots.append(node.id)
                continue
            if node.parent_id not in nodes_by_id:
                raise MalformedGraphError(
                    f"Node '{node.id}' references missing parent '{node.parent_id}'",
                    node_id=node.id,
                )
            children.setdefault(node.parent_id, []).append(node.id)

        self._check_acyclic(nodes_by_id)

        # Every parent resolves and no chain cycles, so every node hangs off a root
        order = self._containment_order(roots, children)
        nodes_by_id = self._assign_regions(nodes_by_id, order)

        log.debug("Built diagram graph: %d nodes, %d edges", len(nodes_by_id), len(edges))
        return DiagramGraph(
            nodes_by_id=MappingProxyType(nodes_by_id),
            children=MappingProxyType({k: tuple(v) for k, v in children.items()}),
            roots=tuple(roots),
            order=tuple(order),
            edges=tuple(edges),
        )

    @staticmethod
    def _check_acyclic(nodes_by_id: Mapping[str, ResourceNode]) -> None:
        """Walk every parent chain with a visited set; report the first repeated ancestor."""
        known_acyclic: set[str] = set()
        for start in nodes_by_id:
            path: list[str] = []
            visited: set[str] = set()
            current: Optional[str] = start
            while current is not None and current not in known_acyclic:
                if current in visited:
                    raise MalformedGraphError(
                        f"Containment cycle detected at '{current}': "
                        + " -> ".join(path + [current]),
                        node_id=current,
                    )
                visited.add(current)
                path.append(current)
                current = nodes_by_id[current].parent_id
            known_acyclic.update(path)

    @staticmethod
    def _containment_order(roots: list[str], children: Mapping[str, list[str]]) -> list[str]:
        """Pre-order DFS from the roots; parents always precede their children."""
        order: list[str] = []
        stack = list(reversed(roots))
        while stack:
            node_id = stack.pop()
            order.append(node_id)
            stack.extend(reversed(children.get(node_id, [])))
        return order

    def _assign_regions(
        self, nodes_by_id: dict[str, ResourceNode], order: list[str]
    ) -> dict[str, ResourceNode]:
        """Nodes without a region inherit it from the nearest region container."""
        result: dict[str, ResourceNode] = {}
        for node_id in order:
            node = nodes_by_id[node_id]
            if node.region is None:
                region = None
                if node.resource_type is ResourceType.REGION:
                    region = node.config.get("region") or node.config.get("name")
                if not region and node.parent_id is not None:
                    region = result[node.parent_id].region
                region = region or self._default_region
                if region is not None:
                    node = node.model_copy(update={"region": str(region)})
            result[node_id] = node
        # Preserve input ordering of the mapping
        return {node_id: result[node_id] for node_id in nodes_by_id}

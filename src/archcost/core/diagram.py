"""
Diagram Parser - read the canvas JSON document.

The canvas emits:
    {
      "nodes": [{"id", "type", "parentId", "data": {"label", "resourceType", "config"}}],
      "edges": [{"id", "source", "target", "type", ...}],
      "variables": [{"name", "type", "default"}]
    }

Layout fields (position, style, measured, ...) are accepted and ignored.
"""
from __future__ import annotations

import json
import re
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from archcost.core.errors import MalformedGraphError
from archcost.core.schema import DiagramEdge, NodeKind, ResourceNode, ResourceType

_WHOLE_VAR_RE = re.compile(r"^\s*(?:\$\{\s*)?var\.([A-Za-z_][A-Za-z0-9_]*)(?:\s*\})?\s*$")
_EMBEDDED_VAR_RE = re.compile(r"\$\{\s*var\.([A-Za-z_][A-Za-z0-9_]*)\s*\}")

CONTAINER_NODE_TYPES = {"containerNode", "container"}


class CanvasSchema(BaseModel):
    """Lenient base for canvas input; unknown UI fields are tolerated."""

    model_config = ConfigDict(
        extra="allow",
        populate_by_name=True,
        alias_generator=to_camel,
    )


class CanvasNodeData(CanvasSchema):
    label: Optional[str] = None
    resource_type: str = ""
    config: dict[str, Any] = Field(default_factory=dict)


class CanvasNode(CanvasSchema):
    id: str = Field(min_length=1)
    type: Optional[str] = None
    parent_id: Optional[str] = None
    data: CanvasNodeData = Field(default_factory=CanvasNodeData)

    @property
    def kind(self) -> NodeKind:
        if self.type in CONTAINER_NODE_TYPES:
            return NodeKind.CONTAINER
        return NodeKind.RESOURCE

    @property
    def display_name(self) -> str:
        name = self.data.config.get("name")
        if isinstance(name, str) and name.strip():
            return name.strip()
        return self.data.label or self.id

    def to_resource_node(self) -> ResourceNode:
        return ResourceNode(
            id=self.id,
            kind=self.kind,
            resource_type=ResourceType.resolve(self.data.resource_type),
            raw_type=self.data.resource_type,
            name=self.display_name,
            config=dict(self.data.config),
            parent_id=self.parent_id or None,
        )


class CanvasVariable(CanvasSchema):
    name: str
    type: Optional[str] = None
    description: Optional[str] = None
    default: Any = None


class Diagram(CanvasSchema):
    """A parsed canvas document."""

    nodes: list[CanvasNode]
    edges: list[DiagramEdge] = Field(default_factory=list)
    variables: list[CanvasVariable] = Field(default_factory=list)

    @classmethod
    def from_json(cls, payload: Union[str, bytes, dict]) -> Diagram:
        """
        Parse a canvas document.

        Accepts a dict, JSON text, or JSON text that was encoded twice
        (a JSON string containing the document). Variable references in
        node configs are substituted with variable defaults.
        """
        data: Any = payload
        try:
            if isinstance(data, bytes):
                data = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedGraphError(f"Diagram is not valid UTF-8: {e}") from e
        try:
            if isinstance(data, str):
                data = json.loads(data)
            if isinstance(data, str):
                data = json.loads(data)
        except ValueError as e:
            # JSONDecodeError, and oversized integer literals
            raise MalformedGraphError(f"Diagram is not valid JSON: {e}") from e

        if not isinstance(data, dict) or "nodes" not in data:
            raise MalformedGraphError("Diagram document must be an object with a 'nodes' array")
        try:
            diagram = cls.model_validate(data)
        except ValidationError as e:
            raise MalformedGraphError(f"Invalid diagram document: {e}") from e
        return diagram.with_variables_resolved()

    def with_variables_resolved(self) -> Diagram:
        """Return a copy with var.<name> references replaced by defaults."""
        defaults = {v.name: v.default for v in self.variables if v.default is not None}
        if not defaults:
            return self

        nodes = []
        for node in self.nodes:
            config = _resolve_value(node.data.config, defaults)
            parent_id = node.parent_id
            if parent_id:
                parent_id = str(_resolve_value(parent_id, defaults))
            data = node.data.model_copy(update={"config": config})
            nodes.append(node.model_copy(update={"data": data, "parent_id": parent_id}))
        return self.model_copy(update={"nodes": nodes})

    def resource_nodes(self) -> list[ResourceNode]:
        return [node.to_resource_node() for node in self.nodes]


def _resolve_value(value: Any, defaults: dict[str, Any]) -> Any:
    if isinstance(value, dict):
        return {k: _resolve_value(v, defaults) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_value(v, defaults) for v in value]
    if not isinstance(value, str) or "var." not in value:
        return value

    whole = _WHOLE_VAR_RE.match(value)
    if whole:
        name = whole.group(1)
        return defaults.get(name, value)

    def _sub(match: re.Match) -> str:
        name = match.group(1)
        if name not in defaults:
            return match.group(0)
        return str(defaults[name])

    return _EMBEDDED_VAR_RE.sub(_sub, value)

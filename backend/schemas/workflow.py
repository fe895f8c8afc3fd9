"""Workflow definition schemas.

A definition is a graph of typed nodes. Edges can be declared either at the
definition level (``edges``) or on the node itself via
``data.config["connections"]``; both feed :meth:`WorkflowDefinition.connections`.

Example:
{
    "nodes": [
        {"id": "start", "type": "start", "data": {"label": "Start"}},
        {
            "id": "review",
            "type": "approval",
            "data": {
                "label": "Manager review",
                "config": {
                    "assignee_id": "user-42",
                    "connections": [
                        {"target_id": "done", "label": "approved"},
                        {"target_id": "rework", "label": "rejected"}
                    ]
                }
            }
        },
        ...
    ],
    "edges": [{"source": "start", "target": "review"}]
}
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, JsonValue
from pydantic import ValidationError as PydanticValidationError

from core.constants import StepType
from core.exceptions import MissingStartNodeError, ValidationError


class Connection(BaseModel):
    """Outgoing link from a node to the node that follows it."""

    target_id: str = Field(min_length=1)
    label: Optional[str] = None
    condition: Optional[JsonValue] = None


class NodeData(BaseModel):
    """Human label plus the processor-specific configuration bag."""

    label: str = ""
    description: Optional[str] = None
    config: Dict[str, JsonValue] = Field(default_factory=dict)
    conditions: Optional[Dict[str, JsonValue]] = None
    sla_hours: Optional[float] = None


class WorkflowNode(BaseModel):
    """A single step in the graph.

    ``type`` is kept as a plain string: an unknown tag is a data error that
    surfaces when the instance reaches the node, not when the definition loads.
    """

    id: str = Field(min_length=1)
    type: str
    position: Optional[Dict[str, float]] = None
    data: NodeData = Field(default_factory=NodeData)

    @property
    def label(self) -> str:
        return self.data.label or self.id

    @property
    def config(self) -> Dict[str, Any]:
        return self.data.config

    def configured_connections(self) -> List[Connection]:
        raw = self.data.config.get("connections") or []
        if not isinstance(raw, list):
            raise ValidationError(f"Node {self.id}: connections must be a list")
        try:
            return [Connection.model_validate(item) for item in raw]
        except PydanticValidationError as e:
            raise ValidationError(f"Node {self.id}: invalid connection: {e}") from e


class EdgeData(BaseModel):
    label: Optional[str] = None
    condition: Optional[JsonValue] = None


class WorkflowEdge(BaseModel):
    """Definition-level edge between two nodes."""

    id: Optional[str] = None
    source: str
    target: str
    type: Optional[str] = None
    data: Optional[EdgeData] = None


class WorkflowDefinition(BaseModel):
    """Immutable workflow graph."""

    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)
    variables: Dict[str, JsonValue] = Field(default_factory=dict)
    settings: Dict[str, JsonValue] = Field(default_factory=dict)

    model_config = {"frozen": True}

    def get_node(self, node_id: Optional[str]) -> Optional[WorkflowNode]:
        """Return the node with ``node_id`` or None."""
        if node_id is None:
            return None
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def start_node(self, workflow_id: str = "") -> WorkflowNode:
        """Return the single start node.

        Raises:
            MissingStartNodeError: No node has type ``start``
            ValidationError: More than one node has type ``start``
        """
        starts = [n for n in self.nodes if n.type == StepType.START.value]
        if not starts:
            raise MissingStartNodeError(workflow_id)
        if len(starts) > 1:
            raise ValidationError(
                f"Workflow must have exactly one start node, found {len(starts)}"
            )
        return starts[0]

    def connections(self, node_id: str) -> List[Connection]:
        """Outgoing connections of a node, node-level first, then edges.

        Duplicate targets keep their first occurrence.
        """
        node = self.get_node(node_id)
        result: List[Connection] = []
        seen: set[str] = set()

        candidates = node.configured_connections() if node else []
        for edge in self.edges:
            if edge.source == node_id:
                candidates.append(Connection(
                    target_id=edge.target,
                    label=edge.data.label if edge.data else None,
                    condition=edge.data.condition if edge.data else None,
                ))

        for conn in candidates:
            if conn.target_id not in seen:
                seen.add(conn.target_id)
                result.append(conn)
        return result

    def successor(self, node_id: str, label: Optional[str] = None) -> Optional[str]:
        """Pick the node that follows ``node_id``.

        With ``label``, a connection whose label matches (case-insensitive)
        wins; otherwise the first outgoing connection. None when the node has
        no outgoing connection.
        """
        conns = self.connections(node_id)
        if not conns:
            return None
        if label:
            labelled = self.labelled_target(node_id, label)
            if labelled:
                return labelled
        return conns[0].target_id

    def labelled_target(self, node_id: str, *labels: str) -> Optional[str]:
        """Target of the first connection whose label matches one of ``labels``."""
        wanted = {label.strip().lower() for label in labels if label}
        for conn in self.connections(node_id):
            if conn.label and conn.label.strip().lower() in wanted:
                return conn.target_id
        return None

    def validate_graph(self) -> List[str]:
        """Return structural problems: duplicate ids and dangling connections."""
        issues: List[str] = []
        ids = [n.id for n in self.nodes]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        for dup in duplicates:
            issues.append(f"Duplicate node id: {dup}")

        known = set(ids)
        for node in self.nodes:
            try:
                conns = self.connections(node.id)
            except ValidationError as e:
                issues.append(e.message)
                continue
            for conn in conns:
                if conn.target_id not in known:
                    issues.append(f"Node {node.id} connects to unknown node {conn.target_id}")
        for edge in self.edges:
            if edge.source not in known:
                issues.append(f"Edge from unknown node {edge.source}")
        return issues

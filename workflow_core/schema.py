"""
Workflow definitions exchanged with the automation engine.

These models describe the engine's workflow JSON (nodes, connections,
settings). They are lenient: unknown keys are preserved so a template can be
round-tripped without losing engine-specific fields. Structural checks live in
``workflow_core.validation`` and operate on the raw mapping.
"""
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# Fields the engine accepts when creating or updating a workflow.
ENGINE_WRITABLE_FIELDS = ("name", "nodes", "connections", "settings", "staticData")

ENTRY_POINT_MARKERS = ("trigger", "webhook")


def is_entry_point(node_type: Optional[str]) -> bool:
    """Nodes that start a run are allowed to have no inbound connection."""
    if not isinstance(node_type, str) or not node_type:
        return False
    lowered = node_type.lower()
    return lowered.endswith(".start") or any(marker in lowered for marker in ENTRY_POINT_MARKERS)


class _EngineModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class ConnectionTarget(_EngineModel):
    """One edge endpoint: the target node, its input type and input index."""

    node: str = Field(..., description="Target node name")
    type: str = Field(default="main", description="Input type on the target node")
    index: int = Field(default=0, ge=0, description="Input index on the target node")


# source node name -> output type -> output slot -> targets
Connections = Dict[str, Dict[str, List[List[ConnectionTarget]]]]


class NodeDefinition(_EngineModel):
    """A single node in a workflow graph."""

    id: Optional[str] = Field(default=None, description="Node ID, unique within the workflow")
    name: str = Field(..., description="Display name, used as the connection key")
    type: str = Field(..., description="Engine node type, e.g. n8n-nodes-base.httpRequest")
    type_version: Union[int, float] = Field(default=1, description="Node type version")
    position: List[float] = Field(default_factory=lambda: [0.0, 0.0], description="Canvas position [x, y]")
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Node parameters")
    credentials: Optional[Dict[str, Any]] = Field(default=None, description="Credential references by type")

    @field_validator("position")
    @classmethod
    def validate_position(cls, v: List[float]) -> List[float]:
        if len(v) != 2:
            raise ValueError("position must be a pair [x, y]")
        return v

    @property
    def is_entry_point(self) -> bool:
        return is_entry_point(self.type)


class WorkflowDefinition(_EngineModel):
    """Complete workflow as stored by the engine."""

    id: Optional[str] = Field(default=None, description="Engine-assigned workflow ID")
    name: str = Field(..., description="Workflow name")
    nodes: List[NodeDefinition] = Field(default_factory=list, description="Nodes in the workflow")
    connections: Connections = Field(default_factory=dict, description="Connections keyed by source node name")
    settings: Dict[str, Any] = Field(default_factory=dict, description="Engine workflow settings")
    active: bool = Field(default=False, description="Whether the workflow is active")
    tags: List[Any] = Field(default_factory=list, description="Workflow tags")

    def to_engine_payload(self) -> Dict[str, Any]:
        return to_engine_payload(self.model_dump(by_alias=True, exclude_none=True))


def to_engine_payload(definition: Union[Mapping[str, Any], WorkflowDefinition]) -> Dict[str, Any]:
    """
    Strip a workflow down to the fields the engine accepts on create/update.

    Args:
        definition: Workflow mapping or model

    Returns:
        New dict with only writable fields; ``settings`` defaults to ``{}``
    """
    if isinstance(definition, WorkflowDefinition):
        return definition.to_engine_payload()
    payload = {key: definition[key] for key in ENGINE_WRITABLE_FIELDS if key in definition}
    payload.setdefault("settings", {})
    payload.setdefault("connections", {})
    return payload


__all__ = [
    "ConnectionTarget",
    "Connections",
    "ENGINE_WRITABLE_FIELDS",
    "NodeDefinition",
    "WorkflowDefinition",
    "is_entry_point",
    "to_engine_payload",
]

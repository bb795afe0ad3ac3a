"""
Structural validation of workflow graphs before they reach the engine.

``validate_workflow`` never raises: every problem is collected as an error
(blocks the test) or a warning (logged and reported). The input is treated as
read-only raw JSON, so graphs that would not even parse as a
``WorkflowDefinition`` still get a full report.
"""
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from shared.errors import ValidationError
from shared.logger import get_logger
from workflow_core.schema import is_entry_point

logger = get_logger(__name__)


class WorkflowValidationResult(BaseModel):
    valid: bool = Field(..., description="True when there are no errors")
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


def _label(node: Mapping[str, Any]) -> Any:
    return node.get("name") or node.get("id")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_node_id(value: Any) -> bool:
    return isinstance(value, str) or (isinstance(value, int) and not isinstance(value, bool))


def _check_nodes(nodes: Sequence[Any], errors: List[str], warnings: List[str]) -> None:
    seen_ids = set()
    seen_names = set()

    for index, node in enumerate(nodes):
        if not isinstance(node, Mapping):
            errors.append(f"Node at index {index} is not an object")
            continue

        node_id = node.get("id")
        if not node_id:
            errors.append(f"Node at index {index} is missing an ID")
        elif not _is_node_id(node_id):
            errors.append(f"Node at index {index} has an invalid ID")
        elif node_id in seen_ids:
            errors.append(f"Duplicate node ID: {node_id}")
        else:
            seen_ids.add(node_id)

        name = node.get("name")
        if not name:
            errors.append(f"Node at index {index} is missing a name")
        elif not isinstance(name, str):
            errors.append(f"Node at index {index} has an invalid name")
        elif name in seen_names:
            warnings.append(f"Duplicate node name: {name}")
        else:
            seen_names.add(name)

        node_type = node.get("type")
        if not node_type:
            errors.append(f'Node "{_label(node)}" is missing a type')
        elif not isinstance(node_type, str):
            errors.append(f'Node "{_label(node)}" has an invalid type')

        position = node.get("position")
        if not isinstance(position, (list, tuple)) or len(position) != 2 or not all(_is_number(p) for p in position):
            warnings.append(f'Node "{_label(node)}" has invalid position')

        if node.get("parameters") is None:
            warnings.append(f'Node "{_label(node)}" has no parameters')


def _iter_targets(outputs: Any) -> Iterator[Tuple[str, int, Any]]:
    """Yield ``(output_type, slot_index, connection)`` for a well-formed output container."""
    for output_type, slots in outputs.items():
        for slot_index, slot in enumerate(slots):
            for connection in slot or ():
                yield output_type, slot_index, connection


def _check_connections(
    connections: Mapping[str, Any],
    node_names: Sequence[str],
    errors: List[str],
    warnings: List[str],
) -> Dict[str, List[str]]:
    """Validate the connection map and return the adjacency between known nodes."""
    known = set(node_names)
    adjacency: Dict[str, List[str]] = {name: [] for name in node_names}

    for source, outputs in connections.items():
        if source not in known:
            errors.append(f"Connection references non-existent source node: {source}")

        if not isinstance(outputs, Mapping) or not all(
            isinstance(slots, list) for slots in outputs.values()
        ):
            errors.append(f"Invalid connection structure for node: {source}")
            continue

        malformed = False
        for output_type, slots in outputs.items():
            for slot_index, slot in enumerate(slots):
                if slot is not None and not isinstance(slot, list):
                    errors.append(f"Invalid connection at output {slot_index} of node: {source}")
                    malformed = True
        if malformed:
            continue

        for _, _, connection in _iter_targets(outputs):
            target = connection.get("node") if isinstance(connection, Mapping) else None
            if not target:
                errors.append(f"Connection from {source} missing target node")
                continue
            if not isinstance(target, str):
                errors.append(f"Connection from {source} has an invalid target node")
                continue
            if target not in known:
                errors.append(f"Connection references non-existent target node: {target}")
            elif source in known:
                adjacency[source].append(target)

            if not isinstance(connection.get("type"), str):
                warnings.append(f"Connection from {source} to {target} missing type")
            index = connection.get("index")
            if not _is_number(index) or (isinstance(index, float) and not index.is_integer()):
                warnings.append(f"Connection from {source} to {target} missing index")

    return adjacency


def _connected_names(connections: Mapping[str, Any]) -> set:
    connected = set(connections.keys())
    for outputs in connections.values():
        if not isinstance(outputs, Mapping):
            continue
        for slots in outputs.values():
            if not isinstance(slots, list):
                continue
            for slot in slots:
                if not isinstance(slot, list):
                    continue
                for connection in slot:
                    if isinstance(connection, Mapping) and isinstance(connection.get("node"), str):
                        connected.add(connection["node"])
    return connected


def find_cycles(node_names: Sequence[str], adjacency: Mapping[str, Sequence[str]]) -> List[List[str]]:
    """
    Report every back-edge found by an iterative depth-first traversal.

    Each cycle is returned as the path from the re-entered node back to
    itself, e.g. ``["A", "B", "C", "A"]``; a self-loop is ``["A", "A"]``.
    """
    UNVISITED, ON_STACK, DONE = 0, 1, 2
    state = {name: UNVISITED for name in node_names}
    cycles: List[List[str]] = []

    for root in node_names:
        if state[root] != UNVISITED:
            continue

        path = [root]
        state[root] = ON_STACK
        stack = [iter(adjacency.get(root, ()))]

        while stack:
            advanced = False
            for target in stack[-1]:
                target_state = state.get(target)
                if target_state == ON_STACK:
                    cycles.append(path[path.index(target):] + [target])
                elif target_state == UNVISITED:
                    state[target] = ON_STACK
                    path.append(target)
                    stack.append(iter(adjacency.get(target, ())))
                    advanced = True
                    break
            if not advanced:
                stack.pop()
                state[path.pop()] = DONE

    return cycles


def validate_workflow(graph: Any) -> WorkflowValidationResult:
    """
    Check a workflow graph's internal consistency.

    Args:
        graph: Raw workflow mapping (or a pydantic model of one)

    Returns:
        WorkflowValidationResult with ``valid = not errors``
    """
    errors: List[str] = []
    warnings: List[str] = []

    if isinstance(graph, BaseModel):
        graph = graph.model_dump(by_alias=True)

    if graph is None:
        return WorkflowValidationResult(valid=False, errors=["Workflow is null or undefined"])
    if not isinstance(graph, Mapping):
        return WorkflowValidationResult(valid=False, errors=["Workflow must be an object"])

    name = graph.get("name")
    if not isinstance(name, str) or not name.strip():
        errors.append("Workflow name is required")

    nodes = graph.get("nodes")
    node_list: List[Any] = []
    if not isinstance(nodes, list):
        errors.append("Workflow must have a nodes array")
    elif not nodes:
        warnings.append("Workflow has no nodes")
    else:
        node_list = nodes
        _check_nodes(node_list, errors, warnings)

    node_names: List[str] = []
    for node in node_list:
        node_name = node.get("name") if isinstance(node, Mapping) else None
        if isinstance(node_name, str) and node_name and node_name not in node_names:
            node_names.append(node_name)

    connections = graph.get("connections")
    if connections is None:
        warnings.append("Workflow has no connections defined")
        connections = {}
    elif not isinstance(connections, Mapping):
        errors.append("Workflow connections must be an object")
        connections = {}

    adjacency = _check_connections(connections, node_names, errors, warnings)

    if len(node_list) > 1:
        connected = _connected_names(connections)
        for node in node_list:
            if not isinstance(node, Mapping):
                continue
            node_name = node.get("name")
            if not isinstance(node_name, str) or not node_name or node_name in connected:
                continue
            if not is_entry_point(node.get("type")):
                warnings.append(f'Node "{node_name}" is not connected to any other node')

    for cycle in find_cycles(node_names, adjacency):
        errors.append(f"Circular dependency detected: {' -> '.join(cycle)}")

    return WorkflowValidationResult(valid=not errors, errors=errors, warnings=warnings)


def assert_workflow_valid(graph: Any, label: Optional[str] = None) -> WorkflowValidationResult:
    """Validate ``graph`` and raise ``ValidationError`` when it has errors."""
    result = validate_workflow(graph)
    for warning in result.warnings:
        logger.warning(f"{label or 'Workflow'}: {warning}")
    if not result.valid:
        raise ValidationError(
            f"Workflow validation failed: {'; '.join(result.errors)}",
            {"errors": result.errors, "warnings": result.warnings},
        )
    return result


__all__ = [
    "WorkflowValidationResult",
    "assert_workflow_valid",
    "find_cycles",
    "validate_workflow",
]

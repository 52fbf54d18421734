"""
Explicit dependency graph handed to the provisioning platform.

Nodes are tagged with a NodeKind and carry plain properties; references to
attributes that only exist once another node is realized (an ARN, a role
name) are expressed as Ref values. Edges point from a dependent node to the
node it depends on.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from replication_plan.errors import DependencyOrderingError


class NodeKind(str, Enum):
    KEY = "key"
    KEY_ALIAS = "key_alias"
    BUCKET = "bucket"
    ROLE = "role"
    POLICY_STATEMENT = "policy_statement"
    STACK_SET = "stack_set"
    REPLICATION_RULES = "replication_rules"


@dataclass(frozen=True)
class Ref:
    node_id: str
    attribute: str = "arn"

    def to_json(self) -> Dict[str, Any]:
        return {"Fn::GetAtt": [self.node_id, self.attribute]}


@dataclass(frozen=True)
class Node:
    id: str
    kind: NodeKind
    properties: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "properties", _freeze(self.properties))

    def get(self, key: str, default=None):
        return self.properties.get(key, default)


def _freeze(value):
    """Read-only copy of a property value: mappings become proxies, lists tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def to_json_value(value):
    """Convert property values into JSON-compatible structures."""
    if hasattr(value, "to_json"):
        return value.to_json()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {k: to_json_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_value(v) for v in value]
    return value


class PlanGraph:
    def __init__(self) -> None:
        self._nodes: Dict[str, Node] = {}
        self._edges: List[Tuple[str, str]] = []
        self._frozen = False

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def edges(self) -> Tuple[Tuple[str, str], ...]:
        return tuple(self._edges)

    def _check_mutable(self) -> None:
        if self._frozen:
            raise DependencyOrderingError("Plan graph was already handed off")

    def add_node(self, node: Node, depends_on=()) -> Node:
        self._check_mutable()
        if node.id in self._nodes:
            raise ValueError(f"Duplicate node id {node.id!r}")
        for dependency in depends_on:
            self._require(dependency)
        self._nodes[node.id] = node
        for dependency in depends_on:
            self._edges.append((node.id, dependency))
        return node

    def add_dependency(self, dependent: str, dependency: str) -> None:
        self._check_mutable()
        self._require(dependent)
        self._require(dependency)
        if dependent == dependency:
            raise DependencyOrderingError(f"Node {dependent!r} cannot depend on itself")
        if not self.has_edge(dependent, dependency):
            self._edges.append((dependent, dependency))

    def _require(self, node_id: str) -> None:
        if node_id not in self._nodes:
            raise DependencyOrderingError(f"Node {node_id!r} is not part of the plan")

    def node(self, node_id: str) -> Node:
        self._require(node_id)
        return self._nodes[node_id]

    def nodes(self, kind: Optional[NodeKind] = None) -> List[Node]:
        return [n for n in self._nodes.values() if kind is None or n.kind == kind]

    def has_edge(self, dependent: str, dependency: str) -> bool:
        return (dependent, dependency) in self._edges

    def dependencies_of(self, node_id: str) -> List[str]:
        self._require(node_id)
        return [dep for src, dep in self._edges if src == node_id]

    def attached_to(self, node_id: str) -> List[Node]:
        """Policy statements and rule tables attached to the given node"""
        return [n for n in self._nodes.values() if n.get("attached_to") == node_id]

    def topological_order(self) -> List[Node]:
        """
        Creation order: every node comes after the nodes it depends on.
        Ties are broken by insertion order so the result is deterministic.
        """
        pending = {node_id: set() for node_id in self._nodes}
        for src, dep in self._edges:
            pending[src].add(dep)

        ordered: List[Node] = []
        done = set()
        while pending:
            ready = [node_id for node_id, deps in pending.items() if deps <= done]
            if not ready:
                raise DependencyOrderingError(
                    f"Dependency cycle between {sorted(pending)}"
                )
            for node_id in ready:
                ordered.append(self._nodes[node_id])
                done.add(node_id)
                del pending[node_id]
        return ordered

    def freeze(self) -> "PlanGraph":
        self._frozen = True
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [
                {
                    "id": node.id,
                    "kind": node.kind.value,
                    "properties": to_json_value(node.properties),
                }
                for node in self._nodes.values()
            ],
            "edges": [list(edge) for edge in self._edges],
        }

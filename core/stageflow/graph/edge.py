"""
Edge and Graph - how stages connect.

An edge carries optional routing metadata: a condition expression in the
condition language, a label that handlers can prefer by name, and a weight
for tie-breaking. Edge order inside a Graph is significant: rules that scan
edges keep the declared order.

Structural invariants (exactly one start node, at least one exit, every
endpoint exists, no unreachable nodes) belong to the validator. The graph
does not enforce them; the executor fails loudly when one is violated.
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator

from stageflow.graph.attributes import as_bool, as_int, as_str, coerce_attributes
from stageflow.graph.node import Node


class Edge(BaseModel):
    """
    A directed transition between two nodes.

    Example:
        Edge(source="review", target="deploy", attrs={"label": "[Y] Yes", "weight": "2"})
        Edge(source="test", target="fix", attrs={"condition": "outcome=fail"})
    """

    source: str
    target: str
    attrs: dict[str, Any] = Field(default_factory=dict)

    @field_validator("attrs", mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> dict[str, Any]:
        return coerce_attributes(value)

    @property
    def label(self) -> str:
        return as_str(self.attrs.get("label"))

    @property
    def condition(self) -> str:
        return as_str(self.attrs.get("condition")).strip()

    @property
    def weight(self) -> int:
        return as_int(self.attrs.get("weight"), 0)

    @property
    def fidelity(self) -> str:
        return as_str(self.attrs.get("fidelity"))

    @property
    def thread_id(self) -> str:
        return as_str(self.attrs.get("thread_id"))

    @property
    def loop_restart(self) -> bool:
        return as_bool(self.attrs.get("loop_restart"))


class Graph(BaseModel):
    """
    Complete pipeline graph.

    Example:
        graph = Graph(name="release", attrs={"goal": "Ship v2"})
        graph.add_node(Node(id="start", attrs={"shape": "Mdiamond"}))
        graph.add_node(Node(id="build"))
        graph.add_node(Node(id="done", attrs={"shape": "Msquare"}))
        graph.add_edge(Edge(source="start", target="build"))
        graph.add_edge(Edge(source="build", target="done"))
    """

    name: str = "pipeline"
    nodes: dict[str, Node] = Field(default_factory=dict)
    edges: list[Edge] = Field(default_factory=list)
    attrs: dict[str, Any] = Field(default_factory=dict)

    @field_validator("attrs", mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> dict[str, Any]:
        return coerce_attributes(value)

    def add_node(self, node: Node) -> Node:
        self.nodes[node.id] = node
        return node

    def add_edge(self, edge: Edge) -> Edge:
        self.edges.append(edge)
        return edge

    def get_node(self, node_id: str) -> Node | None:
        return self.nodes.get(node_id)

    def outgoing_edges(self, node_id: str) -> list[Edge]:
        return [e for e in self.edges if e.source == node_id]

    def incoming_edges(self, node_id: str) -> list[Edge]:
        return [e for e in self.edges if e.target == node_id]

    @property
    def start_node(self) -> Node | None:
        for node in self.nodes.values():
            if node.is_start:
                return node
        return self.nodes.get("start") or self.nodes.get("Start")

    @property
    def exit_nodes(self) -> list[Node]:
        return [node for node in self.nodes.values() if node.is_exit]

    @property
    def goal(self) -> str:
        return as_str(self.attrs.get("goal"))

    @property
    def label(self) -> str:
        return as_str(self.attrs.get("label"))

    @property
    def model_stylesheet(self) -> str:
        return as_str(self.attrs.get("model_stylesheet"))

    @property
    def default_max_retry(self) -> int:
        return as_int(self.attrs.get("default_max_retry"), 0)

    @property
    def retry_target(self) -> str:
        return as_str(self.attrs.get("retry_target"))

    @property
    def fallback_retry_target(self) -> str:
        return as_str(self.attrs.get("fallback_retry_target"))

    @property
    def default_fidelity(self) -> str:
        return as_str(self.attrs.get("default_fidelity"))

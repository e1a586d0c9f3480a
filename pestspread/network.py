"""Long-distance transport network between grid cells.

Nodes sit on grid cells; weighted directed edges connect non-adjacent
cells (trade routes, rail, roads). The spread engine only asks one thing
of the network: which cells a given cell connects to, and with what weight.

YAML format:

    nodes:
      - {id: port_a, row: 0, col: 0}
      - {id: port_b, row: 9, col: 12}
    edges:
      - {source: port_a, target: port_b, weight: 0.05, capacity: 10}
    bidirectional: false    # optional; true adds the reverse of each edge

weight is the per-movement-day probability that an infected host in the
source cell travels along the edge; the outgoing weights of a node may not
sum to more than 1. capacity (optional) caps the number of hosts moved
along the edge in one movement day.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional, Tuple, Union

import yaml

from pestspread.errors import ConfigurationError

WEIGHT_TOLERANCE = 1e-9


class Edge(NamedTuple):
    """Outgoing connection as seen from a source cell."""
    row: int
    col: int
    weight: float
    capacity: Optional[int] = None


@dataclass(frozen=True)
class Node:
    node_id: str
    row: int
    col: int


class Network:
    """Cell-indexed adjacency of a transport network.

    Args:
        nodes: Network nodes.
        edges: (source_id, target_id, weight, capacity) tuples.
        bidirectional: Also add the reverse of every edge.
    """

    def __init__(self, nodes: List[Node], edges: List[Tuple], bidirectional: bool = False):
        self.nodes: Dict[str, Node] = {}
        self._cells: Dict[Tuple[int, int], str] = {}
        for node in nodes:
            if node.node_id in self.nodes:
                raise ConfigurationError(f"duplicate network node id '{node.node_id}'")
            if (node.row, node.col) in self._cells:
                raise ConfigurationError(
                    f"network nodes '{self._cells[(node.row, node.col)]}' and "
                    f"'{node.node_id}' share cell ({node.row}, {node.col})"
                )
            self.nodes[node.node_id] = node
            self._cells[(node.row, node.col)] = node.node_id

        self._adjacency: Dict[Tuple[int, int], List[Edge]] = {}
        for source, target, weight, capacity in edges:
            self._add_edge(source, target, weight, capacity)
            if bidirectional:
                self._add_edge(target, source, weight, capacity)

    def _add_edge(self, source: str, target: str, weight: float, capacity) -> None:
        for node_id in (source, target):
            if node_id not in self.nodes:
                raise ConfigurationError(f"network edge references unknown node '{node_id}'")
        a, b = self.nodes[source], self.nodes[target]
        if max(abs(a.row - b.row), abs(a.col - b.col)) <= 1:
            raise ConfigurationError(
                f"network edge {source}->{target} joins adjacent cells; "
                f"use natural dispersal for short-range spread"
            )
        if not 0 <= weight <= 1:
            raise ConfigurationError(
                f"network edge {source}->{target} weight must be in [0, 1], got {weight}"
            )
        if capacity is not None and capacity < 0:
            raise ConfigurationError(
                f"network edge {source}->{target} capacity must be >= 0, got {capacity}"
            )
        outgoing = self._adjacency.setdefault((a.row, a.col), [])
        total = sum(edge.weight for edge in outgoing) + weight
        if total > 1 + WEIGHT_TOLERANCE:
            raise ConfigurationError(
                f"outgoing edge weights of node '{source}' sum to {total:g}; "
                f"a host can take at most one edge per movement day"
            )
        outgoing.append(
            Edge(b.row, b.col, float(weight), None if capacity is None else int(capacity))
        )

    # ── queries ──────────────────────────────────────────────────────

    def has_node_at(self, row: int, col: int) -> bool:
        return (row, col) in self._cells

    def lookup(self, row: int, col: int) -> List[Edge]:
        """Outgoing edges of the node at (row, col); empty if there is none."""
        return list(self._adjacency.get((row, col), ()))

    def source_cells(self) -> List[Tuple[int, int]]:
        """Cells with outgoing edges, in row-major order."""
        return sorted(self._adjacency)

    def fits(self, rows: int, cols: int) -> bool:
        return all(0 <= n.row < rows and 0 <= n.col < cols for n in self.nodes.values())

    @property
    def n_edges(self) -> int:
        return sum(len(e) for e in self._adjacency.values())

    # ── (de)serialisation ────────────────────────────────────────────

    @classmethod
    def from_dict(cls, data: Dict) -> "Network":
        try:
            nodes = [
                Node(str(n["id"]), int(n["row"]), int(n["col"]))
                for n in data.get("nodes") or []
            ]
            edges = [
                (
                    str(e["source"]),
                    str(e["target"]),
                    float(e.get("weight", 1.0)),
                    e.get("capacity"),
                )
                for e in data.get("edges") or []
            ]
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigurationError(f"malformed network description: {exc}") from exc
        return cls(nodes, edges, bool(data.get("bidirectional", False)))

    @classmethod
    def load(cls, path: Union[str, Path]) -> "Network":
        """Read a network from a YAML file.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            ConfigurationError: If the description is malformed.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Network file not found: {path}")
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)

    def to_dict(self) -> Dict:
        by_cell = {(n.row, n.col): n.node_id for n in self.nodes.values()}
        edges = []
        for cell in self.source_cells():
            for edge in self._adjacency[cell]:
                record = {
                    "source": by_cell[cell],
                    "target": by_cell[(edge.row, edge.col)],
                    "weight": edge.weight,
                }
                if edge.capacity is not None:
                    record["capacity"] = edge.capacity
                edges.append(record)
        return {
            "nodes": [
                {"id": n.node_id, "row": n.row, "col": n.col}
                for n in self.nodes.values()
            ],
            "edges": edges,
        }

    def save(self, path: Union[str, Path]) -> None:
        with open(path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, sort_keys=False)

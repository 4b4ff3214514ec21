"""
Perfect phylogeny inference over compatible SDP columns

Trees are immutable values: a node owns its child edges and an edge owns the
node below it. The unrooted tree is stored rooted at the node holding the
first strain of the sorted strain set, so every edge's ``sdp_bits`` marks the
strains below it and never has bit 0 set.
"""

from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import pandas as pd

from ..utils.bitsets import bits_from_strains, canonicalize, indices_from_bits
from ..utils.data_types import BasePairInterval
from ..utils.errors import NoValidPhylogeny

PHYLOGENY_COLUMNS = ['start_bp', 'extent_bp', 'newick_tree', 'p_value']

_NEWICK_SPECIAL = set("(),:;[]' \t")


@dataclass(frozen=True)
class PhylogenyTreeEdge:
    """Edge to a child node

    Attributes:
        sdp_bits: Strains below the edge, relative to the tree's sorted strains
        node: Child node
        edge_length: Branch length (unit by default)
        value: Optional real value such as the edge p-value
    """

    sdp_bits: int
    node: "PhylogenyTreeNode"
    edge_length: float = 1.0
    value: Optional[float] = None


@dataclass(frozen=True)
class PhylogenyTreeNode:
    strains: Tuple[str, ...] = ()
    child_edges: Tuple[PhylogenyTreeEdge, ...] = ()

    @property
    def is_leaf(self) -> bool:
        return not self.child_edges

    def subtree_strains(self) -> Set[str]:
        strains = set(self.strains)
        for edge in self.child_edges:
            strains |= edge.node.subtree_strains()
        return strains

    def all_strains(self) -> List[str]:
        """Sorted strains of the whole subtree"""
        return sorted(self.subtree_strains())

    def all_nodes(self) -> List["PhylogenyTreeNode"]:
        nodes = [self]
        for edge in self.child_edges:
            nodes.extend(edge.node.all_nodes())
        return nodes

    def all_edges(self) -> List[PhylogenyTreeEdge]:
        """Edges in pre-order"""
        edges = []
        for edge in self.child_edges:
            edges.append(edge)
            edges.extend(edge.node.all_edges())
        return edges

    def edge_with_minimum_value(self) -> Optional[PhylogenyTreeEdge]:
        """Edge with the smallest non-null value (first in pre-order on ties)"""
        best = None
        for edge in self.all_edges():
            if edge.value is None:
                continue
            if best is None or edge.value < best.value:
                best = edge
        return best

    def to_newick(self) -> str:
        return self._newick_body() + ';'

    def _newick_body(self) -> str:
        label = _newick_label(self.strains)
        if not self.child_edges:
            return label
        children = ','.join(
            f"{edge.node._newick_body()}:{_format_length(edge.edge_length)}"
            for edge in self.child_edges
        )
        return f"({children}){label}"

    def create_strain_pruned_tree(self, strains: Iterable[str]) -> "PhylogenyTreeNode":
        """
        Restrict the tree to ``strains``.

        Strains outside the set are removed, leaves left without strains are
        dropped and internal nodes left without strains and with two
        neighbours are contracted (their two branch lengths are summed).
        Edge bitsets are recomputed against the remaining sorted strains.
        """
        keep = set(strains)
        remaining = self.subtree_strains() & keep
        if not remaining:
            raise ValueError("Pruning would remove every strain from the tree")
        scratch = _ScratchTree.from_tree(self)
        for node in scratch.live_nodes():
            scratch.strains[node] &= keep
        scratch.remove_empty_nodes()
        return scratch.freeze(sorted(remaining))


def _newick_label(strains: Sequence[str]) -> str:
    label = ','.join(strains)
    if any(char in _NEWICK_SPECIAL for char in label):
        return "'" + label.replace("'", "''") + "'"
    return label


def _format_length(length: float) -> str:
    return repr(float(length))


class _ScratchTree:
    """Mutable adjacency form used while building or pruning a tree"""

    def __init__(self):
        self.strains: List[Set[str]] = []
        self.adjacency: List[Dict[int, Tuple[float, Optional[float]]]] = []
        self.removed: Set[int] = set()

    @classmethod
    def from_tree(cls, root: PhylogenyTreeNode) -> "_ScratchTree":
        scratch = cls()
        stack = [(root, scratch.add_node(root.strains))]
        while stack:
            node, node_id = stack.pop()
            for edge in node.child_edges:
                child_id = scratch.add_node(edge.node.strains)
                scratch.connect(node_id, child_id, edge.edge_length, edge.value)
                stack.append((edge.node, child_id))
        return scratch

    def add_node(self, strains: Iterable[str]) -> int:
        self.strains.append(set(strains))
        self.adjacency.append({})
        return len(self.strains) - 1

    def live_nodes(self) -> List[int]:
        return [i for i in range(len(self.strains)) if i not in self.removed]

    def connect(self, a: int, b: int, length: float = 1.0, value: Optional[float] = None):
        self.adjacency[a][b] = (length, value)
        self.adjacency[b][a] = (length, value)

    def disconnect(self, a: int, b: int) -> Tuple[float, Optional[float]]:
        del self.adjacency[b][a]
        return self.adjacency[a].pop(b)

    def component_strains(self, start: int, blocked: int) -> Set[str]:
        """Strains reachable from ``start`` without passing through ``blocked``"""
        strains: Set[str] = set()
        seen = {blocked, start}
        stack = [start]
        while stack:
            node = stack.pop()
            strains |= self.strains[node]
            for neighbour in self.adjacency[node]:
                if neighbour not in seen:
                    seen.add(neighbour)
                    stack.append(neighbour)
        return strains

    def apply_split(self, split: Set[str]) -> bool:
        """Add one edge realising ``split``; False if no node can host it"""
        for node in self.live_nodes():
            moving = []
            for neighbour in self.adjacency[node]:
                component = self.component_strains(neighbour, node)
                if component <= split:
                    moving.append(neighbour)
                elif not component.isdisjoint(split):
                    break
            else:
                own_inside = self.strains[node] & split
                new_node = self.add_node(own_inside)
                self.strains[node] -= own_inside
                for neighbour in moving:
                    length, value = self.disconnect(node, neighbour)
                    self.connect(new_node, neighbour, length, value)
                self.connect(node, new_node)
                return True
        return False

    def remove_empty_nodes(self):
        changed = True
        while changed:
            changed = False
            for node in self.live_nodes():
                if self.strains[node]:
                    continue
                neighbours = list(self.adjacency[node])
                if len(neighbours) <= 1:
                    for neighbour in neighbours:
                        self.disconnect(node, neighbour)
                    self.removed.add(node)
                    changed = True
                elif len(neighbours) == 2:
                    a, b = neighbours
                    length_a, _ = self.disconnect(node, a)
                    length_b, _ = self.disconnect(node, b)
                    self.connect(a, b, length_a + length_b, None)
                    self.removed.add(node)
                    changed = True

    def freeze(self, ordered_strains: Sequence[str]) -> PhylogenyTreeNode:
        live = self.live_nodes()
        root = live[0]
        if ordered_strains:
            first = ordered_strains[0]
            root = next(node for node in live if first in self.strains[node])
        order = {strain: i for i, strain in enumerate(ordered_strains)}

        def build(node: int, parent: Optional[int]) -> Tuple[PhylogenyTreeNode, Set[str]]:
            subtree = set(self.strains[node])
            children = []
            for neighbour, (length, value) in self.adjacency[node].items():
                if neighbour == parent:
                    continue
                child, child_strains = build(neighbour, node)
                subtree |= child_strains
                edge = PhylogenyTreeEdge(bits_from_strains(child_strains, ordered_strains), child, length, value)
                children.append((min(order[s] for s in child_strains), edge))
            children.sort(key=lambda item: item[0])
            node_strains = tuple(sorted(self.strains[node], key=order.__getitem__))
            return PhylogenyTreeNode(node_strains, tuple(edge for _, edge in children)), subtree

        return build(root, None)[0]


def infer_perfect_phylogeny(sdps: Iterable[int], strains: Sequence[str]) -> PhylogenyTreeNode:
    """
    Build the perfect phylogeny realising every SDP column.

    Args:
        sdps: SDP bitsets, bit ``i`` referring to ``strains[i]``
        strains: Strain ordering of the bitsets (normally sorted)

    Returns:
        Root node of the tree; unit edge lengths, no edge values

    Raises:
        NoValidPhylogeny: If the columns are not pairwise compatible
    """
    strains = list(strains)
    n_strains = len(strains)
    scratch = _ScratchTree()
    scratch.add_node(strains)
    seen: Set[int] = set()
    for sdp in sdps:
        bits = canonicalize(sdp, n_strains)
        if bits is None or bits in seen:
            continue
        seen.add(bits)
        split = {strains[i] for i in indices_from_bits(bits)}
        if not scratch.apply_split(split):
            raise NoValidPhylogeny(
                f"SDP splitting {sorted(split)} is incompatible with earlier columns"
            )
    return scratch.freeze(sorted(strains))


@dataclass(frozen=True)
class PhylogenyInterval:
    """Perfect phylogeny plus the MAX-K interval that produced it"""

    tree: PhylogenyTreeNode
    interval: BasePairInterval


@dataclass(frozen=True)
class PhylogenyTestResult:
    phylogeny_interval: PhylogenyInterval
    p_value: float

    def __str__(self) -> str:
        interval = self.phylogeny_interval.interval
        return f"p-value={self.p_value}, interval=chr{interval.chromosome}:{interval.start_bp}-{interval.end_bp}"


def prune_phylogeny_interval(phylogeny: PhylogenyInterval, strains: Iterable[str]) -> PhylogenyInterval:
    return replace(phylogeny, tree=phylogeny.tree.create_strain_pruned_tree(strains))


class PhylogenyAssociationResults:
    """Phylogeny test results for one chromosome"""

    def __init__(self, results: Sequence[PhylogenyTestResult]):
        self.results = list(results)

    @property
    def pvalues(self) -> List[float]:
        return [r.p_value for r in self.results]

    def to_dataframe(self) -> pd.DataFrame:
        rows = []
        for result in self.results:
            interval = result.phylogeny_interval.interval
            rows.append({
                'start_bp': interval.start_bp,
                'extent_bp': interval.extent_bp,
                'newick_tree': result.phylogeny_interval.tree.to_newick(),
                'p_value': result.p_value,
            })
        return pd.DataFrame(rows, columns=PHYLOGENY_COLUMNS)

"""
Edge-wise significance testing of perfect phylogenies
"""

import warnings
from typing import Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from .phylogeny import (
    PhylogenyInterval,
    PhylogenyTestResult,
    PhylogenyTreeEdge,
    PhylogenyTreeNode,
)
from ..utils.errors import NumericError, StrainMismatch
from ..utils.stats import strain_means, welch_t_test

EDGE_MIN_GROUP_SIZE = 2


class PhylogenySignificanceTester:
    """
    Welch t-test on every edge of a phylogeny.

    Each edge splits the strains into those below it ("inside") and the rest
    of the phenotype strains ("outside"). Sides with fewer than two strains
    get ``p = 1.0``; a failing t-test also gets ``p = 1.0`` with a warning so
    one bad edge never aborts a scan.

    Args:
        phenotypes: Mapping strain -> measurements for the strains under test
    """

    def __init__(self, phenotypes: Dict[str, Sequence[float]]):
        self.strains = sorted(phenotypes)
        means = strain_means(self.strains, phenotypes)
        self._means = dict(zip(self.strains, means))
        self._strain_set = set(self.strains)

    def _side_means(self, strains: Set[str]) -> np.ndarray:
        values = np.array([self._means[s] for s in sorted(strains)], dtype=np.float64)
        return values[~np.isnan(values)]

    def _edge_pvalue(self, inside: Set[str]) -> float:
        outside = self._strain_set - inside
        if len(inside) < EDGE_MIN_GROUP_SIZE or len(outside) < EDGE_MIN_GROUP_SIZE:
            return 1.0
        try:
            return welch_t_test(
                self._side_means(inside),
                self._side_means(outside),
                min_group_size=EDGE_MIN_GROUP_SIZE,
            )
        except NumericError as exc:
            warnings.warn(
                f"Edge test failed for partition of size {len(inside)}/{len(outside)}: {exc}"
            )
            return 1.0

    def test_tree(self, tree: PhylogenyTreeNode) -> PhylogenyTreeNode:
        """
        Return a structurally identical tree whose edges carry p-values.

        Raises:
            StrainMismatch: If the tree's strains differ from the phenotype strains
        """
        tree_strains = tree.subtree_strains()
        if tree_strains != self._strain_set:
            only_tree = sorted(tree_strains - self._strain_set)
            only_pheno = sorted(self._strain_set - tree_strains)
            raise StrainMismatch(
                "Phylogeny strains do not match phenotype strains "
                f"(tree only: {only_tree}, phenotype only: {only_pheno})"
            )
        return self._test_subtree(tree)[0]

    def _test_subtree(self, node: PhylogenyTreeNode) -> Tuple[PhylogenyTreeNode, Set[str]]:
        # Post-order: cumulative inside strains travel up each branch
        inside = set(node.strains)
        edges: List[PhylogenyTreeEdge] = []
        for edge in node.child_edges:
            child, child_inside = self._test_subtree(edge.node)
            inside |= child_inside
            edges.append(PhylogenyTreeEdge(
                edge.sdp_bits, child, edge.edge_length, self._edge_pvalue(child_inside)
            ))
        return PhylogenyTreeNode(node.strains, tuple(edges)), inside

    def test_interval(self, phylogeny: PhylogenyInterval) -> PhylogenyTestResult:
        tested = self.test_tree(phylogeny.tree)
        best: Optional[PhylogenyTreeEdge] = tested.edge_with_minimum_value()
        p_value = 1.0 if best is None else float(best.value)
        return PhylogenyTestResult(PhylogenyInterval(tested, phylogeny.interval), p_value)

    def test_intervals(self, phylogenies: Sequence[PhylogenyInterval]) -> List[PhylogenyTestResult]:
        return [self.test_interval(p) for p in phylogenies]

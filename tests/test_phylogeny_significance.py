import warnings

import numpy as np
import pytest

from haplomap.association.phylogeny import PhylogenyInterval, infer_perfect_phylogeny
from haplomap.association.phylogeny_significance import PhylogenySignificanceTester
from haplomap.utils.bitsets import from_binary_string
from haplomap.utils.data_types import BasePairInterval
from haplomap.utils.errors import StrainMismatch

STRAINS = ["A", "B", "C", "D"]


def _tree():
    return infer_perfect_phylogeny([from_binary_string("0011"), from_binary_string("0001")], STRAINS)


def test_edge_values_and_minimum_edge() -> None:
    tester = PhylogenySignificanceTester({"A": [1.0], "B": [1.0], "C": [5.0], "D": [5.0]})

    tested = tester.test_tree(_tree())
    split_edge, singleton_edge = tested.all_edges()

    assert split_edge.node.subtree_strains() == {"C", "D"}
    assert split_edge.value == 0.0
    assert singleton_edge.value == 1.0
    assert tested.edge_with_minimum_value() is split_edge
    # structure and bitsets are untouched
    assert [e.sdp_bits for e in tested.all_edges()] == [e.sdp_bits for e in _tree().all_edges()]


def test_edge_with_variance_uses_welch() -> None:
    phenotypes = {
        "A": [1.0], "B": [1.4], "C": [5.0], "D": [5.5], "E": [0.9], "F": [5.2],
    }
    strains = sorted(phenotypes)
    tree = infer_perfect_phylogeny([from_binary_string("001101")], strains)
    tester = PhylogenySignificanceTester(phenotypes)

    result = tester.test_interval(PhylogenyInterval(tree, BasePairInterval(1, 10, 5)))

    assert 0.0 < result.p_value < 0.01
    assert result.phylogeny_interval.interval == BasePairInterval(1, 10, 5)
    assert "chr1:10-15" in str(result)


def test_failed_edge_test_warns_and_reports_one() -> None:
    phenotypes = {"A": [1.0], "B": [1.0], "C": [np.inf], "D": [5.0]}
    tester = PhylogenySignificanceTester(phenotypes)

    with pytest.warns(UserWarning, match="Edge test failed"):
        tested = tester.test_tree(_tree())

    assert tested.all_edges()[0].value == 1.0


def test_tree_without_edges_reports_one() -> None:
    tree = infer_perfect_phylogeny([], STRAINS)
    tester = PhylogenySignificanceTester({s: [1.0] for s in STRAINS})

    with warnings.catch_warnings():
        warnings.simplefilter("error")
        result = tester.test_interval(PhylogenyInterval(tree, BasePairInterval(1, 1, 1)))

    assert result.p_value == 1.0


def test_strain_mismatch() -> None:
    tester = PhylogenySignificanceTester({"A": [1.0], "B": [1.0], "C": [5.0]})

    with pytest.raises(StrainMismatch, match="tree only"):
        tester.test_tree(_tree())

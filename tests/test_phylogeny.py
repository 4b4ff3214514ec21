import pytest

from haplomap.association.phylogeny import (
    PhylogenyInterval,
    PhylogenyTreeEdge,
    PhylogenyTreeNode,
    infer_perfect_phylogeny,
    prune_phylogeny_interval,
)
from haplomap.utils.bitsets import bits_from_strains, from_binary_string, strains_from_bits
from haplomap.utils.data_types import BasePairInterval
from haplomap.utils.errors import NoValidPhylogeny

STRAINS = ["A", "B", "C", "D"]


def _s3_tree():
    return infer_perfect_phylogeny([from_binary_string("0011"), from_binary_string("0001")], STRAINS)


def _components(tree):
    return sorted(sorted(e.node.subtree_strains()) for e in tree.all_edges())


def _assert_tree_invariants(tree, strains):
    nodes = tree.all_nodes()
    owned = [s for node in nodes for s in node.strains]
    assert sorted(owned) == sorted(strains)
    assert len(owned) == len(set(owned))
    for node in nodes:
        if node.is_leaf:
            assert node.strains
    for edge in tree.all_edges():
        assert strains_from_bits(edge.sdp_bits, sorted(strains)) == sorted(edge.node.subtree_strains())


def test_tree_from_two_nested_splits() -> None:
    tree = _s3_tree()

    assert tree.strains == ("A", "B")
    assert _components(tree) == [["C", "D"], ["D"]]
    edges = tree.all_edges()
    assert [e.sdp_bits for e in edges] == [from_binary_string("0011"), from_binary_string("0001")]
    assert all(e.edge_length == 1.0 and e.value is None for e in edges)
    _assert_tree_invariants(tree, STRAINS)


def test_duplicate_and_trivial_columns_are_ignored() -> None:
    tree = infer_perfect_phylogeny(
        [from_binary_string("0011"), from_binary_string("1100"), 0, from_binary_string("1111")], STRAINS
    )

    assert len(tree.all_edges()) == 1
    _assert_tree_invariants(tree, STRAINS)


def test_star_tree_from_singletons() -> None:
    sdps = [from_binary_string(s) for s in ("01000", "00100", "00010", "00001")]

    tree = infer_perfect_phylogeny(sdps, ["A", "B", "C", "D", "E"])

    assert tree.strains == ("A",)
    assert [e.node.strains for e in tree.child_edges] == [("B",), ("C",), ("D",), ("E",)]


def test_incompatible_columns_raise() -> None:
    with pytest.raises(NoValidPhylogeny):
        infer_perfect_phylogeny([from_binary_string("0011"), from_binary_string("0101")], STRAINS)


def test_newick_output() -> None:
    assert _s3_tree().to_newick() == "((D:1.0)C:1.0)'A,B';"
    leaf = PhylogenyTreeNode(("X",))
    assert leaf.to_newick() == "X;"


def test_pruning_contracts_and_recomputes_bitsets() -> None:
    pruned = _s3_tree().create_strain_pruned_tree(["B", "C", "D"])

    assert pruned.all_strains() == ["B", "C", "D"]
    assert pruned.strains == ("B",)
    assert _components(pruned) == [["C", "D"], ["D"]]
    assert [e.sdp_bits for e in pruned.all_edges()] == [
        bits_from_strains(["C", "D"], ["B", "C", "D"]),
        bits_from_strains(["D"], ["B", "C", "D"]),
    ]
    _assert_tree_invariants(pruned, ["B", "C", "D"])


def test_pruning_removes_empty_internal_nodes() -> None:
    # A | (B,C) | D with B,C and D hanging from an empty hub
    hub = PhylogenyTreeNode((), (
        PhylogenyTreeEdge(bits_from_strains(["B"], STRAINS), PhylogenyTreeNode(("B",)), 2.0, 0.1),
        PhylogenyTreeEdge(bits_from_strains(["C"], STRAINS), PhylogenyTreeNode(("C",)), 1.0, 0.2),
    ))
    tree = PhylogenyTreeNode(("A",), (
        PhylogenyTreeEdge(bits_from_strains(["B", "C"], STRAINS), hub, 0.5, 0.3),
        PhylogenyTreeEdge(bits_from_strains(["D"], STRAINS), PhylogenyTreeNode(("D",)), 1.0, 0.4),
    ))

    pruned = tree.create_strain_pruned_tree(["A", "B", "D"])

    assert [e.node.strains for e in pruned.child_edges] == [("B",), ("D",)]
    contracted = pruned.child_edges[0]
    assert contracted.edge_length == pytest.approx(2.5)
    assert contracted.value is None
    assert pruned.child_edges[1].value == 0.4
    _assert_tree_invariants(pruned, ["A", "B", "D"])


def test_pruning_everything_raises() -> None:
    with pytest.raises(ValueError):
        _s3_tree().create_strain_pruned_tree(["Z"])


def test_prune_phylogeny_interval_keeps_interval() -> None:
    interval = BasePairInterval(3, 100, 50)
    phylogeny = PhylogenyInterval(_s3_tree(), interval)

    pruned = prune_phylogeny_interval(phylogeny, ["A", "C", "D"])

    assert pruned.interval == interval
    assert pruned.tree.all_strains() == ["A", "C", "D"]


def test_minimum_edge() -> None:
    tree = PhylogenyTreeNode(("A",), (
        PhylogenyTreeEdge(1, PhylogenyTreeNode(("B",)), value=0.5),
        PhylogenyTreeEdge(2, PhylogenyTreeNode(("C",)), value=0.5),
        PhylogenyTreeEdge(4, PhylogenyTreeNode(("D",))),
    ))

    assert tree.edge_with_minimum_value() is tree.child_edges[0]
    assert PhylogenyTreeNode(("A",)).edge_with_minimum_value() is None

#!/usr/bin/env python
"""
Quartet Resolver Module - Turns PAUP* tree files into weighted quartet trees

This module reads the tree records PAUP* saves for a quartet search, checks
that they are 1-3 distinct resolutions of the quartet and weights them so
that every quartet contributes exactly six trees to the MRP supermatrix.
"""

import re
import logging
from collections import namedtuple

import dendropy

from sdpquartets.errors import OracleInvocationError, UnexpectedOptimaCountError
from sdpquartets.matrix_parser import taxon_sort_key

# tree <name> [=] [&U|&R] <newick>; the name may be a quoted Nexus token
TREE_RECORD = re.compile(
    r"^\s*tree\s+(?P<name>'(?:[^']|'')*'|\S+?)\s*=?\s*\[&(?P<rooting>[UuRr])\]\s*(?P<newick>\S.*)$",
    re.IGNORECASE
)

# Number of optimal trees -> copies of each tree, in output order
TIE_WEIGHTS = {
    1: (6,),
    2: (3, 3),
    3: (2, 2, 2),
}

QUARTET_WEIGHT = 6

TreeRecord = namedtuple('TreeRecord', ['name', 'rooted', 'newick'])


def parse_tree_records(text):
    """
    Extract tree records from PAUP* tree file text.

    Args:
        text (str): Content of a tree file.

    Returns:
        list: TreeRecord objects in file order. Each Newick string keeps its
              trailing newline.
    """
    records = []
    for line in text.splitlines(keepends=True):
        match = TREE_RECORD.match(line)
        if not match:
            continue
        # The final line of a file may lack its newline
        newick = match.group('newick').rstrip("\r") + "\n"
        records.append(TreeRecord(
            name=match.group('name'),
            rooted=match.group('rooting').upper() == 'R',
            newick=newick
        ))
    return records


class QuartetTopology(namedtuple('QuartetTopology', ['left', 'right'])):
    """The single 2-2 split of an unrooted quartet tree.

    ``left`` holds the quartet's first taxon; both sides keep canonical order.
    """

    __slots__ = ()

    @classmethod
    def from_newick(cls, newick, taxa=None):
        """
        Read the bipartition of a four-taxon Newick tree.

        Args:
            newick (str): Tree string.
            taxa (sequence, optional): The quartet's four taxa in canonical
                                       order. Taken from the tree when omitted.

        Raises:
            OracleInvocationError: If the tree is not a resolved tree on
                                   exactly these four taxa.
        """
        try:
            tree = dendropy.Tree.get(
                data=newick,
                schema="newick",
                rooting="force-unrooted",
                preserve_underscores=True,
                case_sensitive_taxon_labels=True
            )
        except Exception as e:
            raise OracleInvocationError(f"Could not parse quartet tree {newick.strip()}: {e}")

        labels = {leaf.taxon.label for leaf in tree.leaf_node_iter() if leaf.taxon is not None}
        if taxa is None:
            taxa = sorted(labels, key=taxon_sort_key)
            if len(taxa) != 4:
                raise OracleInvocationError(f"Quartet tree {newick.strip()} does not have four taxa")
        if labels != set(taxa):
            raise OracleInvocationError(
                f"Quartet tree {newick.strip()} does not contain exactly the taxa {', '.join(taxa)}"
            )

        for node in tree.postorder_internal_node_iter(exclude_seed_node=True):
            side = {leaf.taxon.label for leaf in node.leaf_iter()}
            if len(side) == 2:
                break
        else:
            raise OracleInvocationError(f"Quartet tree {newick.strip()} is not resolved")

        if taxa[0] not in side:
            side = set(taxa) - side
        left = tuple(t for t in taxa if t in side)
        right = tuple(t for t in taxa if t not in side)
        return cls(left, right)

    def __str__(self):
        return f"{','.join(self.left)}|{','.join(self.right)}"


class WeightedQuartetResult(namedtuple('WeightedQuartetResult',
                                       ['quartet', 'taxa', 'trees', 'topologies', 'weights'])):
    """Optimal trees for one quartet with their tie weights."""

    __slots__ = ()

    def copies(self):
        """Newick lines in output order, each repeated by its weight."""
        lines = []
        for newick, weight in zip(self.trees, self.weights):
            lines.extend([newick] * weight)
        return lines

    def weighted_topologies(self):
        """Topologies in output order, each repeated by its weight."""
        topologies = []
        for topology, weight in zip(self.topologies, self.weights):
            topologies.extend([topology] * weight)
        return topologies

    def as_tree_stream(self):
        return "".join(self.copies())


class QuartetResolver:
    """Parses quartet searches and applies the tie-weighting policy."""

    def __init__(self, config=None):
        self.config = config or {}
        self.logger = logging.getLogger(__name__)

    def unrooted_trees(self, text):
        """Return the Newick strings of all [&U] records in a tree file."""
        records = parse_tree_records(text)
        rooted = [r.name for r in records if r.rooted]
        if rooted:
            self.logger.warning(f"Ignoring {len(rooted)} rooted tree record(s): {', '.join(rooted)}")
        return [r.newick for r in records if not r.rooted]

    def resolve(self, quartet, taxa, text):
        """
        Weight the optimal trees PAUP* saved for a quartet.

        Args:
            quartet (Quartet): The quartet's index tuple.
            taxa (sequence): Its four taxa in canonical order.
            text (str): The saved tree file.

        Returns:
            WeightedQuartetResult: Trees, topologies and weights summing to 6.

        Raises:
            UnexpectedOptimaCountError: If 0 or more than 3 trees were saved or
                                        two saved trees share a topology.
        """
        trees = self.unrooted_trees(text)
        if len(trees) not in TIE_WEIGHTS:
            raise UnexpectedOptimaCountError(
                f"PAUP* search returned unexpected number of equally parsimonious trees "
                f"({len(trees)}) for quartet {','.join(taxa)}",
                task=quartet.task_id
            )

        topologies = [QuartetTopology.from_newick(newick, taxa) for newick in trees]
        if len(set(topologies)) != len(topologies):
            raise UnexpectedOptimaCountError(
                f"PAUP* returned the same topology more than once for quartet {','.join(taxa)}: "
                f"{'; '.join(str(t) for t in topologies)}",
                task=quartet.task_id
            )

        if len(trees) > 1:
            self.logger.debug(f"{len(trees)} equally parsimonious trees for quartet "
                              f"{','.join(taxa)}: {'; '.join(str(t) for t in topologies)}")

        return WeightedQuartetResult(
            quartet=quartet,
            taxa=tuple(taxa),
            trees=tuple(trees),
            topologies=tuple(topologies),
            weights=TIE_WEIGHTS[len(trees)]
        )

    def parse_single(self, text, what="tree"):
        """
        Return the only tree in a tree file.

        Raises:
            UnexpectedOptimaCountError: If the file holds zero or several trees.
        """
        trees = self.unrooted_trees(text)
        if len(trees) != 1:
            raise UnexpectedOptimaCountError(
                f"PAUP* returned unexpected number of trees for the {what} ({len(trees)}, expected 1)"
            )
        return trees[0]

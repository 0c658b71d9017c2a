#!/usr/bin/env python
"""
Supertree Assembler Module - Searches the MRP supermatrix for a single tree

PAUP* is asked for the strict consensus of all most parsimonious trees, so it
normally saves one tree. If several trees come back anyway, their strict
consensus is computed here with DendroPy.
"""

import logging
import dendropy

from sdpquartets.errors import (
    ConfigurationError,
    OracleInvocationError,
    UnexpectedOptimaCountError,
)
from sdpquartets.paup_client import SEARCH_STRATEGIES
from sdpquartets.quartet_resolver import QuartetResolver


class SupertreeAssembler:
    """Runs the supermatrix search and reduces its result to one tree."""

    def __init__(self, oracle, strategy="heuristic-tbr", resolver=None):
        """
        Args:
            oracle (ParsimonyOracle): Search program client.
            strategy (str): 'heuristic-tbr' or 'branch-and-bound'.
            resolver (QuartetResolver, optional): Tree file reader.

        Raises:
            ConfigurationError: If the strategy is unknown.
        """
        if strategy not in SEARCH_STRATEGIES:
            raise ConfigurationError(
                f"Unrecognized search strategy '{strategy}'. "
                f"Use one of: {', '.join(SEARCH_STRATEGIES)}"
            )
        self.oracle = oracle
        self.strategy = strategy
        self.resolver = resolver or QuartetResolver()
        self.logger = logging.getLogger(__name__)

    def assemble(self, mrp_matrix, output_base):
        """
        Search a supermatrix and return one Newick line.

        The command file sent to PAUP* is kept as ``<output_base>.MRP_search.nex``.

        Args:
            mrp_matrix (MRPMatrix): Supermatrix with informative columns only.
            output_base (str): Base name for the search files.

        Returns:
            str: Newick tree ending in a newline.
        """
        script_path = f"{output_base}.MRP_search.nex"
        self.logger.info(f"Searching {mrp_matrix.ncolumns} MRP characters with {self.strategy}")

        text = self.oracle.search(mrp_matrix.as_nexus(), self.strategy, script_path, output_base)
        trees = self.resolver.unrooted_trees(text)

        if not trees:
            raise UnexpectedOptimaCountError(
                f"PAUP* returned no tree for the supermatrix search of {output_base}"
            )
        if len(trees) == 1:
            return trees[0]

        self.logger.warning(f"Supermatrix search returned {len(trees)} trees; "
                            f"computing their strict consensus")
        return self.strict_consensus(trees)

    @staticmethod
    def strict_consensus(trees):
        """
        Strict consensus of unrooted Newick trees as a Newick line.

        Raises:
            OracleInvocationError: If the trees cannot be read.
        """
        try:
            tree_list = dendropy.TreeList.get(
                data="".join(trees),
                schema="newick",
                rooting="force-unrooted",
                taxon_namespace=dendropy.TaxonNamespace(is_case_sensitive=True),
                preserve_underscores=True,
                case_sensitive_taxon_labels=True
            )
        except Exception as e:
            raise OracleInvocationError(f"Could not read supermatrix search trees: {e}")

        consensus = tree_list.consensus(min_freq=1.0)
        newick = consensus.as_string(
            schema="newick",
            suppress_rooting=True,
            suppress_edge_lengths=True,
            suppress_internal_node_labels=True,
            suppress_annotations=True,
            unquoted_underscores=True
        )
        return newick.strip() + "\n"

#!/usr/bin/env python
"""
Shared fixtures for the sdpquartets tests.

FakeOracle answers the pipeline's requests in-process, so the pipeline can be
tested without a PAUP* installation.
"""

import time
import threading
import pytest
from pathlib import Path

from sdpquartets.errors import OracleInvocationError
from sdpquartets.matrix_parser import CharacterMatrix
from sdpquartets.mrp_encoder import MRPEncoder
from sdpquartets.paup_client import OracleOutput, ParsimonyOracle


def tree_file(*newicks, rooting="U"):
    """Tree file text in the form PAUP* saves with format=altnexus."""
    lines = [f"\ttree PAUP_{i} = [&{rooting}] {newick}" for i, newick in enumerate(newicks, 1)]
    return "#NEXUS\n\nbegin trees;\n" + "\n".join(lines) + "\nend;\n"


def quartet_newicks(taxa, count=1):
    """The first ``count`` resolutions of a quartet: ab|cd, ac|bd, ad|bc."""
    a, b, c, d = taxa
    return [f"({a},{b},({c},{d}));",
            f"({a},{c},({b},{d}));",
            f"({a},{d},({b},{c}));"][:count]


class FakeOracle(ParsimonyOracle):
    """
    In-process stand-in for PAUP*.

    Every quartet resolves to ab|cd unless ``ties`` maps its taxa to another
    number of optimal trees (0-3; 4 returns the first tree twice). ``fail_on`` names
    quartets whose request raises OracleInvocationError.
    """

    def __init__(self, ties=None, fail_on=None, delay=0.0, search_trees=1,
                 fail_search_on=None):
        self.ties = ties or {}
        self.fail_on = set(fail_on or ())
        self.fail_search_on = set(fail_search_on or ())
        self.delay = delay
        self.search_trees = search_trees
        self.calls = []
        self.searches = []
        self._lock = threading.Lock()

    def _record(self, *call):
        with self._lock:
            self.calls.append(call)

    def check_available(self):
        self._record('check_available')

    def resolve_quartet(self, taxa, sequences, scratch_base, capture_stdout=False):
        taxa = tuple(taxa)
        self._record('resolve_quartet', taxa, scratch_base, tuple(sequences or ()))
        if self.delay:
            # Vary run times so workers finish out of order
            time.sleep(self.delay * (ord(taxa[0][-1]) % 3))
        if taxa in self.fail_on:
            raise OracleInvocationError(f"PAUP* failed for {','.join(taxa)}")

        count = self.ties.get(taxa, 1)
        if count == 4:
            newicks = quartet_newicks(taxa, 1) * 2
        else:
            newicks = quartet_newicks(taxa, count)

        stdout = f"Fake PAUP* run for {','.join(taxa)}\n" if capture_stdout else None
        return OracleOutput(tree_file(*newicks), stdout)

    def matrix_representation(self, tree_path, taxa, scratch_base):
        self._record('matrix_representation', tree_path, scratch_base)
        with open(tree_path) as f:
            matrix = MRPEncoder(taxa).encode_tree_stream(f)
        weights = " ".join(f"1:{i}" for i in range(1, matrix.ncolumns + 1))
        return matrix.as_nexus() + f"\nBEGIN ASSUMPTIONS;\n\twtset * MRPweights = {weights};\nEND;\n"

    def search(self, matrix_nexus, strategy, script_path, scratch_base):
        self._record('search', strategy, script_path, scratch_base)
        with open(script_path, 'w') as f:
            f.write(matrix_nexus)
        if scratch_base in self.fail_search_on:
            raise OracleInvocationError(f"PAUP* search failed for {scratch_base}")

        block = matrix_nexus.split("MATRIX\n", 1)[1].split("\n;", 1)[0]
        taxa = [line.split()[0] for line in block.splitlines() if line.strip()]
        with self._lock:
            self.searches.append(taxa)

        newick = f"{taxa[-1]}"
        for taxon in reversed(taxa[1:-1]):
            newick = f"({taxon},{newick})"
        trees = [f"({taxa[0]},{newick[1:-1]});" if len(taxa) > 2 else f"({','.join(taxa)});"]
        if self.search_trees > 1:
            # A second optimum swapping the first two taxa
            swapped = [taxa[1], taxa[0]] + taxa[2:]
            trees.append(f"(({swapped[0]},{taxa[2]}),{swapped[1]},({','.join(taxa[3:])}));")
        return tree_file(*trees)

    def consensus(self, tree_path, scratch_base, ntrees):
        self._record('consensus', tree_path, scratch_base, ntrees)
        with open(tree_path) as f:
            first = f.readline().strip()
        return tree_file(first)

    def quartet_calls(self):
        return [call for call in self.calls if call[0] == 'resolve_quartet']


# Fixtures
@pytest.fixture
def data_dir():
    """Path to test data directory."""
    return Path(__file__).parent / "data"


@pytest.fixture
def five_taxa_path(data_dir):
    """Nexus matrix with taxa A, B, c, D and E and four characters."""
    return data_dir / "five_taxa.nex"


@pytest.fixture
def five_taxa_matrix():
    """The matrix of five_taxa.nex with an upper-case C, built in memory."""
    return CharacterMatrix({
        'A': '0011',
        'B': '0011',
        'C': '1102',
        'D': '1100',
        'E': '1?0-',
    })


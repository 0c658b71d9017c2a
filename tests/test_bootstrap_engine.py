#!/usr/bin/env python
"""
Unit tests for the bootstrap_engine module.
"""

import logging
import numpy as np
import pytest

from sdpquartets.bootstrap_engine import BootstrapEngine
from sdpquartets.errors import ConfigurationError, UnexpectedOptimaCountError
from sdpquartets.matrix_parser import CharacterMatrix
from sdpquartets.quartet_resolver import QuartetResolver

from conftest import FakeOracle, tree_file

# Set up logging
logging.basicConfig(level=logging.ERROR)


# Fixtures
@pytest.fixture
def wide_matrix():
    """Six taxa with twenty distinguishable columns."""
    rng = np.random.default_rng(7)
    rows = {f"T{i}": "".join(rng.choice(list("0123456789"), size=20)) for i in range(6)}
    return CharacterMatrix(rows)


# Tests
def test_replicate_columns_are_original_columns(wide_matrix):
    engine = BootstrapEngine(wide_matrix, replicates=3, seed=42)

    for replicate in engine.replicates():
        assert replicate.matrix.nchar == wide_matrix.nchar
        assert replicate.matrix.taxa == wide_matrix.taxa
        assert len(replicate.positions) == wide_matrix.nchar
        for column, position in enumerate(replicate.positions):
            assert np.array_equal(replicate.matrix.array[:, column],
                                  wide_matrix.array[:, position])


def test_same_seed_same_replicates(wide_matrix):
    first = BootstrapEngine(wide_matrix, replicates=4, seed=2024)
    second = BootstrapEngine(wide_matrix, replicates=4, seed=2024)

    for a, b in zip(first.replicates(), second.replicates()):
        assert a.number == b.number
        assert np.array_equal(a.positions, b.positions)
        assert a.matrix == b.matrix


def test_replicate_is_reproducible_on_its_own(wide_matrix):
    """Test that replicate r does not depend on the replicates drawn before it."""
    engine = BootstrapEngine(wide_matrix, replicates=5, seed=11)
    drawn = [r.positions for r in engine.replicates()]

    again = BootstrapEngine(wide_matrix, replicates=5, seed=11)
    assert np.array_equal(again.draw_positions(4), drawn[3])


def test_replicates_differ(wide_matrix):
    engine = BootstrapEngine(wide_matrix, replicates=2, seed=3)
    assert not np.array_equal(engine.draw_positions(1), engine.draw_positions(2))


def test_unseeded_engine_logs_reusable_entropy(wide_matrix):
    engine = BootstrapEngine(wide_matrix, replicates=2)
    replay = BootstrapEngine(wide_matrix, replicates=2, seed=engine.entropy)

    assert np.array_equal(engine.draw_positions(2), replay.draw_positions(2))


@pytest.mark.parametrize("replicates", [0, -1, 2.5, True, None])
def test_invalid_replicate_count(wide_matrix, replicates):
    with pytest.raises(ConfigurationError):
        BootstrapEngine(wide_matrix, replicates=replicates)


def test_replicate_number_out_of_range(wide_matrix):
    engine = BootstrapEngine(wide_matrix, replicates=2, seed=1)
    with pytest.raises(ValueError):
        engine.replicate(3)


def test_aggregate_writes_trees_and_consensus(wide_matrix, tmp_path):
    engine = BootstrapEngine(wide_matrix, replicates=2, seed=1)
    oracle = FakeOracle()
    output_base = str(tmp_path / "O")
    trees = ["(T0,T1,(T2,(T3,(T4,T5))));\n", "(T0,T2,(T1,(T3,(T4,T5))));\n"]

    consensus = engine.aggregate(trees, oracle, QuartetResolver(), output_base)

    assert (tmp_path / "O.MRP_bs_pseudoreplicates.tre").read_text() == "".join(trees)
    assert (tmp_path / "O.MRP_bs_consensus.tre").read_text() == consensus
    assert oracle.calls[-1] == ('consensus', f"{output_base}.MRP_bs_pseudoreplicates.tre",
                                output_base, 2)


def test_aggregate_requires_single_consensus(wide_matrix, tmp_path):
    class TwoTreeOracle(FakeOracle):
        def consensus(self, tree_path, scratch_base, ntrees):
            return tree_file("(T0,T1,(T2,T3));", "(T0,T2,(T1,T3));")

    engine = BootstrapEngine(wide_matrix, replicates=1, seed=1)
    with pytest.raises(UnexpectedOptimaCountError):
        engine.aggregate(["(T0,T1,(T2,T3));\n"], TwoTreeOracle(), QuartetResolver(),
                         str(tmp_path / "O"))

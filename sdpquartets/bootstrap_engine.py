#!/usr/bin/env python
"""
Bootstrap Engine Module - Character resampling and replicate aggregation

Each pseudoreplicate samples C columns of the original matrix with
replacement, taking the same column from every taxon. Replicate r draws from
its own generator derived from the run's seed, so any replicate can be
regenerated on its own.
"""

import logging
from collections import namedtuple

import numpy as np

from sdpquartets.errors import ConfigurationError

BootstrapReplicate = namedtuple('BootstrapReplicate', ['number', 'matrix', 'positions'])


class BootstrapEngine:
    """Generates bootstrap pseudoreplicates and summarises their trees."""

    def __init__(self, matrix, replicates, seed=None):
        """
        Args:
            matrix (CharacterMatrix): The original matrix.
            replicates (int): Number of pseudoreplicates B.
            seed (int, optional): Seed for resampling. When omitted, fresh
                                  entropy is drawn and logged.

        Raises:
            ConfigurationError: If replicates is not a positive integer.
        """
        if isinstance(replicates, bool) or not isinstance(replicates, int) or replicates < 1:
            raise ConfigurationError(
                f"Number of bootstrap replicates must be a positive integer, got {replicates!r}"
            )

        self.matrix = matrix
        self.count = replicates
        self.logger = logging.getLogger(__name__)

        self.entropy = np.random.SeedSequence(seed).entropy
        self.logger.info(f"Bootstrap resampling of {matrix.nchar} characters, "
                         f"{replicates} replicates, seed {self.entropy}")

    def generator(self, number):
        """Random generator for replicate ``number``."""
        if not 1 <= number <= self.count:
            raise ValueError(f"Replicate number must be in 1..{self.count}, got {number}")
        return np.random.default_rng(np.random.SeedSequence(self.entropy, spawn_key=(number,)))

    def draw_positions(self, number):
        """Column indices, sampled with replacement, for replicate ``number``."""
        nchar = self.matrix.nchar
        return self.generator(number).integers(0, nchar, size=nchar)

    def replicate(self, number):
        """Build pseudoreplicate ``number``."""
        positions = self.draw_positions(number)
        return BootstrapReplicate(number, self.matrix.resample(positions), positions)

    def replicates(self):
        """Lazily yield replicates 1..B in order."""
        for number in range(1, self.count + 1):
            yield self.replicate(number)

    def aggregate(self, trees, oracle, resolver, output_base):
        """
        Write the replicate trees and their extended majority-rule consensus.

        Args:
            trees (sequence): One Newick line per replicate, in replicate order.
            oracle (ParsimonyOracle): Program computing the consensus.
            resolver (QuartetResolver): Tree file reader.
            output_base (str): Output base name.

        Returns:
            str: The consensus tree with group frequencies.
        """
        replicates_path = f"{output_base}.MRP_bs_pseudoreplicates.tre"
        with open(replicates_path, 'w') as f:
            f.writelines(trees)
        self.logger.info(f"Wrote {len(trees)} replicate trees to {replicates_path}")

        text = oracle.consensus(replicates_path, output_base, len(trees))
        consensus = resolver.parse_single(text, what="bootstrap consensus")

        consensus_path = f"{output_base}.MRP_bs_consensus.tre"
        with open(consensus_path, 'w') as f:
            f.write(consensus)
        self.logger.info(f"Bootstrap consensus written to {consensus_path}")

        return consensus

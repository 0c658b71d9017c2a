#!/usr/bin/env python
"""
Quartet Enumerator Module - Generates every four-taxon subset of a taxon list

Quartets are produced in lexicographic nested-loop order over taxon indices.
Downstream weighting, file naming and debugging depend on this order, so it
must never change.
"""

import math
import logging
from collections import namedtuple

from sdpquartets.errors import InsufficientTaxaError


class Quartet(namedtuple('Quartet', ['i', 'j', 'k', 'l'])):
    """Indices into the sorted taxon list, with i < j < k < l."""

    __slots__ = ()

    @property
    def task_id(self):
        """Identifier used for scratch file names, e.g. '0_1_2_3'."""
        return f"{self.i}_{self.j}_{self.k}_{self.l}"


class QuartetEnumerator:
    """Enumerates all quartets of a sorted taxon list."""

    def __init__(self, taxa):
        """
        Initialize with a taxon list that is already in canonical sorted order.

        Args:
            taxa (sequence): Sorted taxon labels.

        Raises:
            InsufficientTaxaError: If fewer than four taxa are given.
        """
        self.taxa = tuple(taxa)
        self.logger = logging.getLogger(__name__)

        if len(self.taxa) < 4:
            raise InsufficientTaxaError(
                f"At least 4 taxa are required to build quartets, got {len(self.taxa)}"
            )

        self.logger.debug(f"Quartet enumerator initialized with {len(self.taxa)} taxa "
                          f"({len(self)} quartets)")

    def __len__(self):
        return math.comb(len(self.taxa), 4)

    def __iter__(self):
        n = len(self.taxa)
        for i in range(n - 3):
            for j in range(i + 1, n - 2):
                for k in range(j + 1, n - 1):
                    for l in range(k + 1, n):
                        yield Quartet(i, j, k, l)

    def quartet_taxa(self, quartet):
        """Return the four taxon labels of a quartet in canonical order."""
        return tuple(self.taxa[index] for index in quartet)

#!/usr/bin/env python
"""
MRP Encoder Module - Builds the Matrix Representation with Parsimony supermatrix

Each weighted quartet tree contributes one binary character: the taxa on one
side of its split get 0, the other side 1, and every taxon outside the
quartet is coded missing. The supermatrix can be built here or read back from
PAUP*'s matrixrep output; both paths go through the same checks.
"""

import re
import logging
import numpy as np

from sdpquartets.errors import MalformedMatrixError, OracleInvocationError
from sdpquartets.matrix_parser import MatrixParser
from sdpquartets.paup_client import nexus_label
from sdpquartets.quartet_resolver import QUARTET_WEIGHT, QuartetTopology

MISSING = '?'

_ASSUMPTIONS_BLOCK = re.compile(r"^\s*begin\s+assumptions\s*;", re.IGNORECASE | re.MULTILINE)


class MRPMatrix:
    """Binary supermatrix with one row per taxon in canonical order."""

    def __init__(self, taxa, array):
        self.taxa = tuple(taxa)
        self.array = np.asarray(array, dtype='U1')
        if self.array.ndim != 2 or self.array.shape[0] != len(self.taxa):
            raise ValueError(f"MRP array shape {self.array.shape} does not match "
                             f"{len(self.taxa)} taxa")

    @property
    def ntax(self):
        return len(self.taxa)

    @property
    def ncolumns(self):
        return self.array.shape[1]

    def row(self, taxon):
        return "".join(self.array[self.taxa.index(taxon)])

    def informative_mask(self):
        """Columns where both states occur in at least two taxa."""
        zeros = np.sum(self.array == '0', axis=0)
        ones = np.sum(self.array == '1', axis=0)
        return (zeros >= 2) & (ones >= 2)

    def exclude_uninformative(self):
        """
        Return a matrix without parsimony-uninformative columns.

        Raises:
            MalformedMatrixError: If no informative column remains.
        """
        mask = self.informative_mask()
        if not mask.any():
            raise MalformedMatrixError("MRP supermatrix has no parsimony-informative characters")
        return MRPMatrix(self.taxa, self.array[:, mask])

    def as_nexus(self):
        """Nexus DATA block for this matrix."""
        labels = [nexus_label(taxon) for taxon in self.taxa]
        width = max(len(label) for label in labels) + 2
        rows = "\n".join(f"{label.ljust(width)}{''.join(row)}"
                         for label, row in zip(labels, self.array))
        return (
            "#NEXUS\n"
            "BEGIN DATA;\n"
            f"\tDIMENSIONS NTAX={self.ntax} NCHAR={self.ncolumns};\n"
            "\tFORMAT DATATYPE=STANDARD SYMBOLS=\"01\" MISSING=?;\n"
            "MATRIX\n"
            f"{rows}\n"
            ";\n"
            "END;\n"
        )


class MRPEncoder:
    """Encodes weighted quartet trees as binary characters over all taxa."""

    def __init__(self, taxa):
        """
        Args:
            taxa (sequence): All taxa in canonical sorted order; fixes row order.
        """
        self.taxa = tuple(taxa)
        self.logger = logging.getLogger(__name__)
        self._row = {taxon: i for i, taxon in enumerate(self.taxa)}

    def encode_topology(self, topology):
        """Return the column for one quartet split."""
        column = np.full(len(self.taxa), MISSING, dtype='U1')
        column[[self._row[t] for t in topology.left]] = '0'
        column[[self._row[t] for t in topology.right]] = '1'
        return column

    def encode(self, results):
        """
        Build the supermatrix from weighted quartet results.

        Args:
            results (sequence): WeightedQuartetResult objects in quartet order.

        Returns:
            MRPMatrix: Six columns per quartet, in the order of the tree stream.
        """
        columns = [self.encode_topology(topology)
                   for result in results
                   for topology in result.weighted_topologies()]
        if columns:
            array = np.column_stack(columns)
        else:
            array = np.empty((len(self.taxa), 0), dtype='U1')

        matrix = MRPMatrix(self.taxa, array)
        self.logger.info(f"Encoded {len(results)} quartets as {matrix.ncolumns} MRP characters")
        return matrix

    def encode_tree_stream(self, lines):
        """
        Build the supermatrix from a quartet tree stream, one Newick per line.

        Each quartet's taxa are read from its tree, so the stream can come
        straight from a ``quartets.tre`` file.
        """
        columns = []
        previous = None
        for line in lines:
            newick = line.strip()
            if not newick:
                continue
            # Weighted copies of a tree are adjacent in the stream
            if previous is None or previous[0] != newick:
                previous = (newick, QuartetTopology.from_newick(newick))
            columns.append(self.encode_topology(previous[1]))

        if columns:
            array = np.column_stack(columns)
        else:
            array = np.empty((len(self.taxa), 0), dtype='U1')

        matrix = MRPMatrix(self.taxa, array)
        self.logger.info(f"Encoded {matrix.ncolumns} quartet trees as MRP characters")
        return matrix

    def from_matrix_representation(self, text, expected_columns=None):
        """
        Read an MRP supermatrix written by PAUP*'s matrixrep command.

        Anything from the assumptions block onwards (character weights) is
        dropped. Rows are returned in canonical taxon order.

        Args:
            text (str): The Nexus file content.
            expected_columns (int, optional): Column count to check, normally
                                              6 x number of quartets.

        Raises:
            OracleInvocationError: If the matrix cannot be read or does not look
                                   like an encoding of quartet trees.
        """
        text = _ASSUMPTIONS_BLOCK.split(text, maxsplit=1)[0]

        try:
            parsed = MatrixParser().parse_from_string(text)
        except MalformedMatrixError as e:
            raise OracleInvocationError(f"Could not read MRP supermatrix: {e.message}")

        if set(parsed.taxa) != set(self.taxa):
            missing = sorted(set(self.taxa) - set(parsed.taxa))
            extra = sorted(set(parsed.taxa) - set(self.taxa))
            raise OracleInvocationError(
                f"MRP supermatrix taxa do not match the input matrix "
                f"(missing: {', '.join(missing) or 'none'}; unexpected: {', '.join(extra) or 'none'})"
            )

        array = np.array([list(parsed[taxon]) for taxon in self.taxa], dtype='U1')
        matrix = MRPMatrix(self.taxa, array)
        self.validate(matrix, expected_columns)
        return matrix

    def validate(self, matrix, expected_columns=None):
        """
        Check the invariants of a quartet supermatrix.

        Raises:
            OracleInvocationError: On unexpected symbols, a wrong column count
                                   or a column not coding exactly four taxa.
        """
        symbols = set(np.unique(matrix.array)) if matrix.ncolumns else set()
        unknown = symbols - {'0', '1', MISSING}
        if unknown:
            raise OracleInvocationError(
                f"MRP supermatrix has non-binary symbols: {''.join(sorted(unknown))}"
            )

        if expected_columns is not None and matrix.ncolumns != expected_columns:
            raise OracleInvocationError(
                f"MRP supermatrix has {matrix.ncolumns} characters, expected {expected_columns} "
                f"({QUARTET_WEIGHT} per quartet)"
            )

        coded = np.sum(matrix.array != MISSING, axis=0)
        bad = np.flatnonzero(coded != 4)
        if bad.size:
            raise OracleInvocationError(
                f"MRP character {bad[0] + 1} codes {coded[bad[0]]} taxa, expected 4"
            )

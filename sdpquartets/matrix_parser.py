#!/usr/bin/env python
"""
Matrix Parser Module - Reads discrete character matrices

This module parses Nexus character matrices into immutable CharacterMatrix
objects. Rows are validated (equal lengths, unique taxa, known symbols) so a
bad matrix is rejected before any PAUP* run is started.
"""

import os
import logging
import numpy as np
import dendropy

from sdpquartets.errors import MalformedMatrixError


def taxon_sort_key(label):
    """Case-insensitive ordering key, ties broken by the exact label."""
    return (label.lower(), label)


class CharacterMatrix:
    """Read-only mapping of taxon labels to equal-length character strings."""

    VALID_SYMBOLS = frozenset("0123456789?-")

    def __init__(self, rows):
        """
        Build and validate a matrix.

        Args:
            rows: Mapping of taxon -> characters, or iterable of
                  (taxon, characters) pairs.

        Raises:
            MalformedMatrixError: On duplicate taxa, unequal row lengths,
                                  empty rows or unknown symbols.
        """
        if hasattr(rows, 'items'):
            rows = rows.items()

        data = {}
        nchar = None
        for taxon, characters in rows:
            if not taxon or any(ch.isspace() for ch in taxon):
                raise MalformedMatrixError(f"Could not parse taxon name {taxon!r}")
            if taxon in data:
                raise MalformedMatrixError(f"Duplicate taxon name {taxon}")

            characters = "".join(str(characters).split())
            if not characters:
                raise MalformedMatrixError(f"Taxon {taxon} has no characters")

            unknown = set(characters) - self.VALID_SYMBOLS
            if unknown:
                raise MalformedMatrixError(
                    f"Taxon {taxon} has unsupported symbols: {''.join(sorted(unknown))}"
                )

            if nchar is None:
                nchar = len(characters)
            elif len(characters) != nchar:
                raise MalformedMatrixError(
                    f"Found character matrix rows with different numbers of characters: "
                    f"{taxon} has {len(characters)}, expected {nchar}"
                )
            data[taxon] = characters

        if not data:
            raise MalformedMatrixError("Character matrix contains no taxa")

        self._taxa = tuple(sorted(data, key=taxon_sort_key))
        self._index = {taxon: i for i, taxon in enumerate(self._taxa)}
        self._array = np.array([list(data[taxon]) for taxon in self._taxa], dtype='U1')
        self._array.setflags(write=False)

    @classmethod
    def from_array(cls, taxa, array):
        """Build a matrix from taxa and a 2-D array of single characters."""
        return cls((taxon, "".join(row)) for taxon, row in zip(taxa, array))

    @property
    def taxa(self):
        """Taxon labels in case-insensitive sorted order."""
        return self._taxa

    @property
    def ntax(self):
        return len(self._taxa)

    @property
    def nchar(self):
        return self._array.shape[1]

    @property
    def array(self):
        """Read-only (ntax, nchar) character array, rows in sorted taxon order."""
        return self._array

    def __len__(self):
        return self.ntax

    def __contains__(self, taxon):
        return taxon in self._index

    def __getitem__(self, taxon):
        return "".join(self._array[self._index[taxon]])

    def items(self):
        for taxon in self._taxa:
            yield taxon, self[taxon]

    def sequences(self, taxa):
        """Return the character strings for ``taxa`` in the given order."""
        return [self[taxon] for taxon in taxa]

    def resample(self, positions):
        """
        Return a new matrix built from the given column positions.

        The same position is taken from every taxon, so the columns of the new
        matrix are verbatim copies of columns of this one.
        """
        positions = np.asarray(positions, dtype=int)
        if positions.size == 0:
            raise MalformedMatrixError("Cannot resample a matrix with no positions")
        return CharacterMatrix.from_array(self._taxa, self._array[:, positions])

    def __eq__(self, other):
        if not isinstance(other, CharacterMatrix):
            return NotImplemented
        return self._taxa == other._taxa and np.array_equal(self._array, other._array)

    def __repr__(self):
        return f"CharacterMatrix(ntax={self.ntax}, nchar={self.nchar})"


class MatrixParser:
    """Parses Nexus character matrices into CharacterMatrix objects using DendroPy."""

    def __init__(self, config=None):
        """
        Initialize the matrix parser.

        Args:
            config (dict, optional): Configuration dictionary. Can include a
                                    'schema' dict of extra DendroPy reader
                                    keyword arguments.
        """
        self.config = config or {}
        self.matrix = None
        self.logger = logging.getLogger(__name__)

    def parse_from_file(self, filepath):
        """
        Parse a Nexus character matrix from a file path.

        Args:
            filepath (str): Path to the Nexus file.

        Returns:
            CharacterMatrix: The parsed and validated matrix.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            MalformedMatrixError: If the file cannot be parsed or is inconsistent.
        """
        if not os.path.exists(filepath):
            raise FileNotFoundError(f"Matrix file not found: {filepath}")

        self.logger.info(f"Parsing character matrix from file: {filepath}")

        try:
            char_matrix = dendropy.StandardCharacterMatrix.get(
                path=filepath,
                schema="nexus",
                **self._get_schema_kwargs()
            )
        except Exception as e:
            self.logger.error(f"Failed to parse matrix file: {str(e)}")
            raise MalformedMatrixError(f"Could not parse matrix file {filepath}: {str(e)}")

        return self._convert(char_matrix)

    def parse_from_string(self, nexus_string):
        """
        Parse a Nexus character matrix from a string.

        Args:
            nexus_string (str): Nexus document containing a single matrix.

        Returns:
            CharacterMatrix: The parsed and validated matrix.

        Raises:
            MalformedMatrixError: If the string cannot be parsed or is inconsistent.
        """
        self.logger.info("Parsing character matrix from string")

        try:
            char_matrix = dendropy.StandardCharacterMatrix.get(
                data=nexus_string,
                schema="nexus",
                **self._get_schema_kwargs()
            )
        except Exception as e:
            self.logger.error(f"Failed to parse matrix string: {str(e)}")
            raise MalformedMatrixError(f"Could not parse matrix string: {str(e)}")

        return self._convert(char_matrix)

    def _get_schema_kwargs(self):
        """
        Get DendroPy reader keyword arguments.

        Returns:
            dict: Schema-specific keyword arguments.
        """
        # Labels are identifiers here: keep underscores and case as written
        schema_kwargs = {
            'preserve_underscores': True,
            'case_sensitive_taxon_labels': True,
        }

        if 'schema' in self.config:
            schema_kwargs.update(self.config['schema'])

        return schema_kwargs

    def _convert(self, char_matrix):
        """Turn a DendroPy matrix into a validated CharacterMatrix."""
        rows = []
        for taxon in char_matrix:
            sequence = char_matrix[taxon]
            rows.append((taxon.label, sequence.symbols_as_string()))

        self.matrix = CharacterMatrix(rows)
        self.logger.info(f"Matrix parsed successfully with {self.matrix.ntax} taxa "
                         f"and {self.matrix.nchar} characters")
        return self.matrix

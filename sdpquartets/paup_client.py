#!/usr/bin/env python
"""
PAUP* Client Module - File-based interface to the PAUP* parsimony program

This module writes PAUP* command files, runs PAUP* as a subprocess and reads
back the tree or matrix files it saves. Every request is single-shot: scratch
files are removed once their content has been read, whether the run
succeeded or not.
"""

import os
import re
import shutil
import logging
import subprocess
from collections import namedtuple

from sdpquartets.errors import ConfigurationError, OracleInvocationError

# Raw result of a quartet search: the saved tree file and, optionally, stdout
OracleOutput = namedtuple('OracleOutput', ['tree_text', 'stdout'])

SEARCH_STRATEGIES = ("heuristic-tbr", "branch-and-bound")

_PLAIN_LABEL = re.compile(r"^[\w.\-]+$")


def nexus_label(label):
    """Quote a taxon label when Nexus would not read it as a single token."""
    if _PLAIN_LABEL.match(label):
        return label
    return "'" + label.replace("'", "''") + "'"


def _script_path(path):
    path = str(path)
    if any(ch.isspace() for ch in path):
        return "'" + path.replace("'", "''") + "'"
    return path


class ParsimonyOracle:
    """
    Requests the pipeline makes of a parsimony search program.

    Implementations return the raw text the program saved; parsing is left to
    QuartetResolver and MRPEncoder so the same parsing code serves every
    implementation.
    """

    def check_available(self):
        """Raise OracleInvocationError if the program cannot be run."""

    def resolve_quartet(self, taxa, sequences, scratch_base, capture_stdout=False):
        """Enumerate all unrooted trees for four aligned rows; return OracleOutput."""
        raise NotImplementedError

    def matrix_representation(self, tree_path, taxa, scratch_base):
        """Read a tree file and return the MRP supermatrix as Nexus text."""
        raise NotImplementedError

    def search(self, matrix_nexus, strategy, script_path, scratch_base):
        """Search a supermatrix, keeping the command file; return tree text."""
        raise NotImplementedError

    def consensus(self, tree_path, scratch_base, ntrees):
        """Return the extended majority-rule consensus of a tree file as tree text."""
        raise NotImplementedError


class PaupClient(ParsimonyOracle):
    """Runs PAUP* command files in isolated subprocesses."""

    SETTINGS = ("set autoclose=yes warnreset=no notifybeep=no warntsave=no "
                "maxtrees={maxtrees} increase=auto;")

    def __init__(self, config=None):
        """
        Initialize with PAUP* settings.

        Args:
            config (dict, optional): May include 'executable', 'timeout',
                                     'check_returncode', 'maxtrees', 'nreps',
                                     'nchuck', 'chuckscore' and 'rseed'.
        """
        self.config = config or {}
        self.logger = logging.getLogger(__name__)

        self.executable = self.config.get('executable', 'paup')
        self.timeout = self.config.get('timeout')
        self.check_returncode = self.config.get('check_returncode', True)

        # Supermatrix search settings
        self.maxtrees = self.config.get('maxtrees', 5000)
        self.nreps = self.config.get('nreps', 100)
        self.nchuck = self.config.get('nchuck', 50)
        self.chuckscore = self.config.get('chuckscore', 1)
        self.rseed = self.config.get('rseed')

        self.logger.debug(f"PAUP* client initialized with executable={self.executable}")

    def check_available(self):
        """
        Check that the PAUP* executable can be found.

        Raises:
            OracleInvocationError: If the executable is not on PATH and is not
                                   an executable file.
        """
        if shutil.which(self.executable) is None:
            raise OracleInvocationError(
                f"Could not run PAUP* executable ({self.executable}). "
                f"Provide the executable name (and path if necessary)."
            )

    # Command files

    def quartet_script(self, taxa, sequences, tree_path):
        """Command file enumerating and saving all optimal trees for four taxa."""
        nchar = len(sequences[0])
        rows = "\n".join(f"{nexus_label(taxon)} {seq}" for taxon, seq in zip(taxa, sequences))
        return (
            "#NEXUS\n"
            "BEGIN PAUP;\n"
            f"{self.SETTINGS.format(maxtrees=100)}\n"
            "set crit=parsimony;\n"
            "END;\n\n"
            "BEGIN DATA;\n"
            f"\tDIMENSIONS NTAX={len(taxa)} NCHAR={nchar};\n"
            "\tFORMAT DATATYPE=STANDARD SYMBOLS=\"0 1 2 3 4 5 6 7 8 9\" MISSING=? GAP=-;\n"
            "MATRIX\n"
            f"{rows}\n"
            ";\n"
            "END;\n\n"
            "BEGIN PAUP;\n"
            "pset collapse=no;\n"
            "alltrees;\n"
            f"savetrees file={_script_path(tree_path)} format=altnexus root=no;\n"
            "END;\n"
            "quit;\n"
        )

    def matrixrep_script(self, tree_path, taxa, output_path):
        """Command file converting a tree file into an MRP supermatrix."""
        rows = "\n".join(f"{nexus_label(taxon)} 0" for taxon in taxa)
        return (
            "#NEXUS\n"
            "BEGIN DATA;\n"
            f"DIMENSIONS NTAX={len(taxa)} NCHAR=1;\n"
            "MATRIX\n"
            f"{rows}\n"
            ";\n"
            "END;\n\n"
            "BEGIN PAUP;\n"
            f"{self.SETTINGS.format(maxtrees=100)}\n"
            f"gettrees file={_script_path(tree_path)} unrooted=yes duptrees=keep warntree=no;\n"
            f"matrixrep file={_script_path(output_path)};\n"
            "END;\n"
            "quit;\n"
        )

    def search_block(self, strategy, tree_path):
        """
        PAUP block searching the data in the same file and saving a strict consensus.

        Raises:
            ConfigurationError: If the strategy is not recognised.
        """
        if strategy == "heuristic-tbr":
            command = (f"hsearch addseq=random swap=tbr multrees=yes nreps={self.nreps} "
                       f"nchuck={self.nchuck} chuckscore={self.chuckscore}")
            if self.rseed is not None:
                command += f" rseed={self.rseed}"
            command += ";"
        elif strategy == "branch-and-bound":
            command = "bandb multrees=yes;"
        else:
            raise ConfigurationError(
                f"Unrecognized search strategy '{strategy}'. "
                f"Use one of: {', '.join(SEARCH_STRATEGIES)}"
            )

        return (
            "\n\nBEGIN PAUP;\n"
            "set crit=parsimony;\n"
            f"{self.SETTINGS.format(maxtrees=self.maxtrees)}\n"
            f"{command}\n"
            "contree all/grpfreq=no showtree=no strict=yes majrule=no append=yes "
            f"treefile={_script_path(tree_path)};\n"
            "END;\n"
            "quit;\n"
        )

    def consensus_script(self, tree_path, output_path, ntrees):
        """Command file computing an extended majority-rule consensus with frequencies."""
        return (
            "#NEXUS\n"
            "BEGIN PAUP;\n"
            "set crit=parsimony;\n"
            f"{self.SETTINGS.format(maxtrees=max(1000, ntrees))}\n"
            f"gettrees file={_script_path(tree_path)} mode=3 unrooted=yes duptrees=keep warntree=no;\n"
            "contree all/grpfreq=yes showtree=no strict=no majrule=yes le50=yes append=no "
            f"treefile={_script_path(output_path)};\n"
            "END;\n"
            "quit;\n"
        )

    # Requests

    def resolve_quartet(self, taxa, sequences, scratch_base, capture_stdout=False):
        """
        Find all most parsimonious unrooted trees for one quartet.

        Args:
            taxa (sequence): The four taxon labels.
            sequences (sequence): Their character strings, same order.
            scratch_base (str): Unique prefix for this request's scratch files.
            capture_stdout (bool): Keep PAUP* stdout for the quartet log.

        Returns:
            OracleOutput: Saved tree file text and stdout (or None).
        """
        script_path = f"{scratch_base}.temp.nex"
        tree_path = f"{scratch_base}.temp.tre"

        try:
            self._write(script_path, self.quartet_script(taxa, sequences, tree_path))
            stdout = self.run_script(script_path, capture_stdout=capture_stdout)
            tree_text = self._read_output(tree_path)
        finally:
            self._remove(script_path, tree_path)

        return OracleOutput(tree_text, stdout)

    def matrix_representation(self, tree_path, taxa, scratch_base):
        """
        Convert a file of quartet trees into an MRP supermatrix.

        Returns:
            str: The Nexus file written by PAUP*'s matrixrep command.
        """
        script_path = f"{scratch_base}.MRP1.nex"
        output_path = f"{scratch_base}.MRP2.nex"

        try:
            self._write(script_path, self.matrixrep_script(tree_path, taxa, output_path))
            self.run_script(script_path)
            return self._read_output(output_path)
        finally:
            self._remove(script_path, output_path)

    def search(self, matrix_nexus, strategy, script_path, scratch_base):
        """
        Search a supermatrix and return the saved consensus tree file.

        The command file at ``script_path`` is kept for inspection.
        """
        tree_path = f"{scratch_base}.MRP4.nex"
        # contree appends, so a stale file would add trees
        self._remove(tree_path)

        script = matrix_nexus + self.search_block(strategy, tree_path)
        try:
            self._write(script_path, script)
            self.run_script(script_path)
            return self._read_output(tree_path)
        finally:
            self._remove(tree_path)

    def consensus(self, tree_path, scratch_base, ntrees):
        """Summarise a tree file with an extended majority-rule consensus."""
        script_path = f"{scratch_base}.consensus_run.nex"
        output_path = f"{scratch_base}.MRP_bs_consensus.temp.tre"

        try:
            self._write(script_path, self.consensus_script(tree_path, output_path, ntrees))
            self.run_script(script_path)
            return self._read_output(output_path)
        finally:
            self._remove(script_path, output_path)

    # Process and file handling

    def run_script(self, script_path, capture_stdout=False):
        """
        Run PAUP* on a command file.

        Args:
            script_path (str): Command file to execute.
            capture_stdout (bool): Return stdout instead of discarding it.

        Returns:
            str: PAUP* stdout if captured, otherwise None.

        Raises:
            OracleInvocationError: If PAUP* cannot be started, times out or
                                   exits with a non-zero status.
        """
        cmd = [self.executable, str(script_path)]
        self.logger.debug(f"Running command: {' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE if capture_stdout else subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                check=False,
                timeout=self.timeout
            )
        except FileNotFoundError:
            raise OracleInvocationError(f"PAUP* executable not found: {self.executable}")
        except PermissionError:
            raise OracleInvocationError(f"PAUP* executable is not runnable: {self.executable}")
        except subprocess.TimeoutExpired:
            raise OracleInvocationError(
                f"PAUP* timed out after {self.timeout} seconds running {script_path}"
            )

        if result.returncode != 0:
            if self.check_returncode:
                self.logger.error(f"PAUP* failed with exit code {result.returncode}")
                self.logger.error(f"PAUP* stderr: {result.stderr}")
                raise OracleInvocationError(
                    f"PAUP* failed with exit code {result.returncode} running {script_path}"
                )
            self.logger.warning(f"Ignoring PAUP* exit code {result.returncode} for {script_path}")

        return result.stdout if capture_stdout else None

    def _read_output(self, path):
        try:
            with open(path, 'r') as f:
                return f.read()
        except OSError as e:
            raise OracleInvocationError(f"Could not read PAUP* output {path}: {e}")

    @staticmethod
    def _write(path, content):
        with open(path, 'w') as f:
            f.write(content)

    @staticmethod
    def _remove(*paths):
        for path in paths:
            try:
                os.remove(path)
            except FileNotFoundError:
                pass

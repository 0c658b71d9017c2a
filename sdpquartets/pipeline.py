#!/usr/bin/env python
"""
SDP Quartets Pipeline - Main orchestration module

This module coordinates the complete workflow: reading the character matrix,
resolving every quartet with PAUP*, building the MRP supermatrix, searching
it for the supertree and, optionally, repeating the analysis on bootstrap
pseudoreplicates to summarise clade support.
"""

import os
import math
import time
import logging
from contextlib import contextmanager

from sdpquartets.errors import ConfigurationError, SDPQuartetsError
from sdpquartets.matrix_parser import CharacterMatrix, MatrixParser
from sdpquartets.quartet_enumerator import QuartetEnumerator
from sdpquartets.paup_client import PaupClient, SEARCH_STRATEGIES
from sdpquartets.quartet_resolver import QuartetResolver, QUARTET_WEIGHT
from sdpquartets.mrp_encoder import MRPEncoder
from sdpquartets.supertree_assembler import SupertreeAssembler
from sdpquartets.orchestrator import ConcurrencyOrchestrator
from sdpquartets.bootstrap_engine import BootstrapEngine

STRATEGY_ALIASES = {
    'tbr': 'heuristic-tbr',
    'bandb': 'branch-and-bound',
}

MRP_BUILDERS = ('paup', 'native')


class SDPQuartetsPipeline:
    """Orchestrates the quartet, supermatrix and bootstrap stages."""

    def __init__(self, config=None, oracle=None):
        """
        Initialize with configuration.

        Args:
            config (dict): Configuration options for the pipeline. ``output``
                           is required, as is ``paup.executable`` unless an
                           oracle is given.
            oracle (ParsimonyOracle, optional): Parsimony program to use
                                                instead of a PaupClient.

        Raises:
            ConfigurationError: If a setting is missing or invalid.
        """
        self.config = config or {}
        self.logger = logging.getLogger(__name__)

        self._validate_config(oracle)

        self.output = self.config['output']
        self.forks = self.config.get('forks', 1)
        self.search = STRATEGY_ALIASES.get(self.config.get('search', 'heuristic-tbr'),
                                           self.config.get('search', 'heuristic-tbr'))

        bootstrap_config = self.config.get('bootstrap', {})
        self.replicates = bootstrap_config.get('replicates') or 0
        self.seed = bootstrap_config.get('seed')
        self.save_reps = bootstrap_config.get('save_reps', False)

        self.mrp_builder = self.config.get('mrp', {}).get('builder', 'paup')

        # Initialize pipeline components
        self.parser = MatrixParser(config=self.config.get('parser', {}))
        self.oracle = oracle or PaupClient(config=self.config.get('paup', {}))
        self.resolver = QuartetResolver()
        self.orchestrator = ConcurrencyOrchestrator(self.forks)
        self.assembler = SupertreeAssembler(self.oracle, self.search, self.resolver)

        # Initialize pipeline state
        self.matrix = None
        self.tree = None
        self.consensus_tree = None
        self._oracle_checked = False

        # Track pipeline execution stats
        self.stats = {
            'start_time': None,
            'end_time': None,
            'elapsed_time': None,
            'taxa': None,
            'characters': None,
            'quartets': None,
            'mrp_characters': None,
            'informative_characters': None,
            'replicates': 0,
        }

        self.logger.info("SDP quartets pipeline initialized")

    def _validate_config(self, oracle):
        output = self.config.get('output')
        if not isinstance(output, str) or not output.strip():
            raise ConfigurationError("An output base name is required")

        if oracle is None and not self.config.get('paup', {}).get('executable'):
            raise ConfigurationError("The PAUP* executable must be specified")

        forks = self.config.get('forks', 1)
        if isinstance(forks, bool) or not isinstance(forks, int) or forks < 1:
            raise ConfigurationError(f"forks must be a positive integer, got {forks!r}")

        search = self.config.get('search', 'heuristic-tbr')
        if STRATEGY_ALIASES.get(search, search) not in SEARCH_STRATEGIES:
            raise ConfigurationError(
                f"Unrecognized search strategy '{search}'. "
                f"Use one of: {', '.join(SEARCH_STRATEGIES + tuple(STRATEGY_ALIASES))}"
            )

        replicates = self.config.get('bootstrap', {}).get('replicates') or 0
        if isinstance(replicates, bool) or not isinstance(replicates, int) or replicates < 0:
            raise ConfigurationError(
                f"Number of bootstrap replicates must be a non-negative integer, got {replicates!r}"
            )

        builder = self.config.get('mrp', {}).get('builder', 'paup')
        if builder not in MRP_BUILDERS:
            raise ConfigurationError(
                f"Unrecognized MRP builder '{builder}'. Use one of: {', '.join(MRP_BUILDERS)}"
            )

    @contextmanager
    def _stage(self, stage):
        """Annotate errors raised inside a block with the stage they occurred in."""
        try:
            yield
        except SDPQuartetsError as e:
            if e.stage is None:
                e.stage = stage
            raise

    def load_matrix(self, source):
        """
        Load the character matrix.

        Args:
            source: Path to a Nexus file, a taxon -> characters mapping or a
                    CharacterMatrix.

        Returns:
            CharacterMatrix: The validated matrix.
        """
        with self._stage('matrix'):
            if isinstance(source, CharacterMatrix):
                matrix = source
            elif hasattr(source, 'items'):
                matrix = CharacterMatrix(source)
            else:
                self.logger.info(f"Loading character matrix from {source}")
                try:
                    matrix = self.parser.parse_from_file(str(source))
                except FileNotFoundError as e:
                    raise ConfigurationError(str(e))

        self.matrix = matrix
        self.stats['taxa'] = matrix.ntax
        self.stats['characters'] = matrix.nchar
        self.logger.info(f"Matrix loaded with {matrix.ntax} taxa and {matrix.nchar} characters")
        return matrix

    def _check_oracle(self):
        if not self._oracle_checked:
            with self._stage('setup'):
                self.oracle.check_available()
            self._oracle_checked = True

    def resolve_quartets(self, matrix, output_base, keep_last_log=False, stage='quartets'):
        """
        Resolve every quartet of a matrix and write the weighted tree stream.

        Args:
            matrix (CharacterMatrix): Matrix to analyse.
            output_base (str): Base name for scratch and output files.
            keep_last_log (bool): Write PAUP*'s output for the last quartet to
                                  ``<output_base>.last_quartet_log.txt``.
            stage (str): Stage name used in logs and errors.

        Returns:
            list: WeightedQuartetResult objects in enumeration order.
        """
        with self._stage(stage):
            enumerator = QuartetEnumerator(matrix.taxa)
        quartets = list(enumerator)
        last = len(quartets) - 1
        self.stats['quartets'] = len(quartets)
        self.logger.info(f"Resolving {len(quartets)} quartets for {output_base}")

        def resolve_one(payload):
            index, quartet = payload
            taxa = enumerator.quartet_taxa(quartet)
            output = self.oracle.resolve_quartet(
                taxa,
                matrix.sequences(taxa),
                f"{output_base}.{quartet.task_id}",
                capture_stdout=keep_last_log and index == last
            )
            return self.resolver.resolve(quartet, taxa, output.tree_text), output.stdout

        tasks = [(quartet.task_id, (index, quartet)) for index, quartet in enumerate(quartets)]
        outcomes = self.orchestrator.run(stage, tasks, resolve_one)
        results = [result for result, _ in outcomes]

        quartets_path = f"{output_base}.quartets.tre"
        with open(quartets_path, 'w') as f:
            for result in results:
                f.write(result.as_tree_stream())
        self.logger.debug(f"Wrote {QUARTET_WEIGHT * len(results)} quartet trees to {quartets_path}")

        if keep_last_log:
            log_path = f"{output_base}.last_quartet_log.txt"
            with open(log_path, 'w') as f:
                f.write(outcomes[-1][1] or "")

        return results

    def build_supermatrix(self, taxa, quartets_path, output_base, results=None):
        """
        Build the MRP supermatrix and drop its uninformative characters.

        Args:
            taxa (sequence): All taxa in canonical order.
            quartets_path (str): The weighted quartet tree stream.
            output_base (str): Base name for scratch files.
            results (list, optional): Weighted results, used by the native
                                      builder instead of re-reading the stream.

        Returns:
            MRPMatrix: Supermatrix with informative characters only.
        """
        encoder = MRPEncoder(taxa)
        expected = QUARTET_WEIGHT * math.comb(len(taxa), 4)

        if self.mrp_builder == 'native':
            if results is not None:
                mrp = encoder.encode(results)
            else:
                with open(quartets_path) as f:
                    mrp = encoder.encode_tree_stream(f)
            encoder.validate(mrp, expected)
        else:
            text = self.oracle.matrix_representation(quartets_path, taxa, output_base)
            mrp = encoder.from_matrix_representation(text, expected)

        informative = mrp.exclude_uninformative()
        self.logger.info(f"MRP supermatrix has {mrp.ncolumns} characters, "
                         f"{informative.ncolumns} parsimony-informative")
        return informative

    def infer_tree(self, matrix, output_base, keep_last_log=False):
        """
        Run quartets, supermatrix and search for one matrix.

        Returns:
            str: The supertree as a Newick line.
        """
        results = self.resolve_quartets(matrix, output_base, keep_last_log)
        self.logger.info("Completed generation of quartet trees. "
                         "Starting conversion to MRP matrix and performing tree search.")

        with self._stage('mrp'):
            mrp = self.build_supermatrix(matrix.taxa, f"{output_base}.quartets.tre",
                                         output_base, results)
        self.stats['mrp_characters'] = QUARTET_WEIGHT * len(results)
        self.stats['informative_characters'] = mrp.ncolumns

        with self._stage('search'):
            return self.assembler.assemble(mrp, output_base)

    def _ensure_output_dir(self):
        output_dir = os.path.dirname(self.output)
        if output_dir and not os.path.exists(output_dir):
            os.makedirs(output_dir)

    def run_analysis(self, source):
        """
        Infer the supertree of a matrix and write ``<output>.MRP.tre``.

        Returns:
            str: The supertree as a Newick line.
        """
        matrix = self.load_matrix(source)
        self._ensure_output_dir()
        self._check_oracle()

        self.logger.info(f"Starting quartet analysis of {matrix.ntax} taxa")
        self.tree = self.infer_tree(matrix, self.output, keep_last_log=True)

        tree_path = f"{self.output}.MRP.tre"
        with open(tree_path, 'w') as f:
            f.write(self.tree)
        self.logger.info(f"Supertree written to {tree_path}")

        return self.tree

    def run_bootstrap(self, matrix):
        """
        Estimate clade support from bootstrap pseudoreplicates.

        Quartets are resolved one replicate at a time, each replicate's
        quartets spread over the workers. The supermatrix searches then run
        across replicates, and the replicate trees are summarised here.

        Returns:
            str: The extended majority-rule consensus tree.
        """
        self._ensure_output_dir()
        self._check_oracle()

        engine = BootstrapEngine(matrix, self.replicates, self.seed)

        pending = []
        for replicate in engine.replicates():
            base = f"{self.output}_BS{replicate.number}"
            self.resolve_quartets(replicate.matrix, base,
                                  stage=f"replicate {replicate.number} quartets")
            pending.append((replicate.number, (replicate.number, base)))
            self.logger.info(f"Resolved quartets for bootstrap replicate {replicate.number}")

        def search_replicate(payload):
            number, base = payload
            quartets_path = f"{base}.quartets.tre"
            mrp = self.build_supermatrix(matrix.taxa, quartets_path, base)
            tree = self.assembler.assemble(mrp, base)
            if not self.save_reps:
                for path in (quartets_path, f"{base}.MRP_search.nex"):
                    if os.path.exists(path):
                        os.remove(path)
            return tree

        trees = self.orchestrator.run('bootstrap search', pending, search_replicate)
        self.stats['replicates'] = len(trees)

        with self._stage('bootstrap consensus'):
            self.consensus_tree = engine.aggregate(trees, self.oracle, self.resolver, self.output)
        return self.consensus_tree

    def run(self, source=None):
        """
        Execute the complete analysis.

        Args:
            source (optional): Matrix source; defaults to ``config['matrix']``.

        Returns:
            dict: Execution statistics.
        """
        source = source if source is not None else self.config.get('matrix')
        if source is None:
            raise ConfigurationError("No character matrix given")

        self.stats['start_time'] = time.time()

        self.run_analysis(source)
        if self.replicates:
            self.run_bootstrap(self.matrix)

        self.stats['end_time'] = time.time()
        self.stats['elapsed_time'] = self.stats['end_time'] - self.stats['start_time']
        self.logger.info(f"Analysis completed in {self.stats['elapsed_time']:.2f} seconds")

        return self.stats

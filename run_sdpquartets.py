#!/usr/bin/env python
"""
SDP Quartets - Main Script

Infers a species tree from a character matrix by resolving every quartet with
PAUP*, combining the quartet trees with Matrix Representation with Parsimony
and optionally bootstrapping the analysis. This script serves as the
command-line interface to the SDP quartets pipeline.
"""

import sys
import argparse
import logging
import time
from sdpquartets.errors import SDPQuartetsError
from sdpquartets.pipeline import SDPQuartetsPipeline, STRATEGY_ALIASES
from sdpquartets.paup_client import SEARCH_STRATEGIES


# Set up logging
def setup_logging(log_level, log_file=None):
    """Configure logging system based on specified log level and optional log file."""
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {log_level}")

    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(
            logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        )
        logging.getLogger().addHandler(file_handler)

        logging.info(f"Logging to file: {log_file}")


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Infer a species tree from SDP quartets combined with MRP",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    parser.add_argument(
        "--matrix", "-m",
        required=True,
        help="Character matrix in Nexus format"
    )

    parser.add_argument(
        "--output", "-o",
        required=True,
        help="Base name for output files"
    )

    parser.add_argument(
        "--paup", "-p",
        required=True,
        help="PAUP* executable (name and path if necessary)"
    )

    parser.add_argument(
        "--bs", "-b",
        type=int,
        default=0,
        help="Number of bootstrap replicates (0 disables bootstrapping)"
    )

    parser.add_argument(
        "--forks", "-f",
        type=int,
        default=1,
        help="Maximum number of concurrent PAUP* processes"
    )

    parser.add_argument(
        "--search", "-s",
        choices=list(SEARCH_STRATEGIES) + list(STRATEGY_ALIASES),
        default="heuristic-tbr",
        help="Search strategy for the MRP supermatrix"
    )

    parser.add_argument(
        "--save-reps", "--save_reps",
        action="store_true",
        help="Keep quartet trees and search files of bootstrap replicates"
    )

    parser.add_argument(
        "--seed",
        type=int,
        help="Seed for bootstrap resampling"
    )

    parser.add_argument(
        "--mrp-builder",
        choices=["paup", "native"],
        default="paup",
        help="Build the MRP supermatrix with PAUP*'s matrixrep or natively"
    )

    parser.add_argument(
        "--timeout",
        type=float,
        help="Timeout in seconds for a single PAUP* run"
    )

    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        default="info",
        help="Set logging level"
    )

    parser.add_argument(
        "--log-file",
        help="Path to output log file"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version="%(prog)s 0.1.0"
    )

    return parser.parse_args(argv)


def build_config(args):
    """Create the pipeline configuration dict from parsed arguments."""
    return {
        'matrix': args.matrix,
        'output': args.output,
        'forks': args.forks,
        'search': args.search,
        'paup': {
            'executable': args.paup,
            'timeout': args.timeout,
        },
        'bootstrap': {
            'replicates': args.bs,
            'seed': args.seed,
            'save_reps': args.save_reps,
        },
        'mrp': {
            'builder': args.mrp_builder,
        },
    }


def main(argv=None):
    """Main function."""
    args = parse_args(argv)

    setup_logging(args.log_level, args.log_file)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    command = sys.argv[1:] if argv is None else argv
    logger.info(f"Starting SDP quartets analysis: {' '.join(command)}")

    try:
        pipeline = SDPQuartetsPipeline(config=build_config(args))
        stats = pipeline.run()

        logger.info(f"Resolved {stats['quartets']} quartets over {stats['taxa']} taxa; "
                    f"{stats['informative_characters']} informative MRP characters")
        if stats['replicates']:
            logger.info(f"Bootstrap consensus of {stats['replicates']} replicates written")

        elapsed_time = time.time() - start_time
        logger.info(f"SDP quartets analysis completed in {elapsed_time:.2f} seconds")

    except SDPQuartetsError as e:
        logger.error(f"Error during SDP quartets analysis: {str(e)}")
        return 1
    except Exception as e:
        logger.error(f"Error during SDP quartets analysis: {str(e)}")
        logger.error("Exception details:", exc_info=True)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())

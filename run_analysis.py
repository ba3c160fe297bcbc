#!/usr/bin/env python
"""Command-line entry point for multi-view factor analysis.

Examples
--------
python run_analysis.py --config config.yaml
python run_analysis.py --views rna=rna.csv methylation=meth.tsv --covariates samples.csv --factors 10
python run_analysis.py --synthetic --factors 5 --seed 1 --output-dir results/synthetic
"""

import argparse
import logging
import sys
from typing import Dict, List, Optional

import numpyro

from core.config_utils import load_config, update_config_safely
from core.error_handling import ConfigurationError
from core.logger_utils import setup_logging

logger = logging.getLogger(__name__)


def parse_view_arguments(items: Optional[List[str]]) -> Dict[str, str]:
    """Turn ``name=path`` pairs into a dict."""
    views = {}
    for item in items or []:
        name, sep, path = item.partition("=")
        if not sep or not name or not path:
            raise ConfigurationError(f"Invalid view '{item}': expected name=path")
        if name in views:
            raise ConfigurationError(f"View '{name}' given more than once")
        views[name] = path
    return views


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Multi-view latent factor analysis (group factor analysis with ARD priors)"
    )
    parser.add_argument("--config", type=str, default=None,
                        help="YAML configuration file")
    parser.add_argument("--views", nargs="+", metavar="NAME=PATH", default=None,
                        help="Feature x sample view tables (CSV/TSV)")
    parser.add_argument("--covariates", type=str, default=None,
                        help="Sample covariate table (CSV/TSV, sample IDs in the first column)")
    parser.add_argument("--likelihood", nargs="+", metavar="NAME=LIKELIHOOD", default=None,
                        help="Noise model per view: gaussian, poisson or bernoulli")
    parser.add_argument("--factors", type=int, default=None,
                        help="Number of latent factors")
    parser.add_argument("--seed", type=int, default=None,
                        help="Random seed")
    parser.add_argument("--model-type", choices=["cavi", "svi"], default=None,
                        help="Inference engine")
    parser.add_argument("--max-iter", type=int, default=None,
                        help="Maximum iterations (CAVI sweeps or SVI steps)")
    parser.add_argument("--convergence-mode", choices=["fast", "medium", "slow"], default=None,
                        help="Convergence tolerance preset")
    parser.add_argument("--output-dir", type=str, default=None,
                        help="Directory for result tables and the saved model")
    parser.add_argument("--synthetic", action="store_true",
                        help="Run on generated synthetic data")
    parser.add_argument("--device", choices=["cpu", "gpu"], default=None,
                        help="JAX platform for the SVI engine")
    parser.add_argument("--log-level", type=str, default=None,
                        help="Logging level (DEBUG, INFO, WARNING, ERROR)")
    parser.add_argument("--log-file", type=str, default=None,
                        help="Also write the log to this file")
    return parser


def config_from_args(args: argparse.Namespace) -> Dict:
    """Load the YAML config (if any) and apply command-line overrides."""
    config = load_config(args.config) if args.config else {}

    updates = {
        "data": {
            "views": parse_view_arguments(args.views) or None,
            "covariates": args.covariates,
            "synthetic": True if args.synthetic else None,
        },
        "model": {
            "model_type": args.model_type,
            "n_factors": args.factors,
            "likelihoods": parse_view_arguments(args.likelihood) or None,
        },
        "training": {
            "seed": args.seed,
            "max_iter": args.max_iter,
            "convergence_mode": args.convergence_mode,
        },
        "output": {"output_dir": args.output_dir},
        "system": {
            "use_gpu": None if args.device is None else args.device == "gpu",
            "log_level": args.log_level,
            "log_file": args.log_file,
        },
    }
    return update_config_safely(config, updates)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = config_from_args(args)
    except ConfigurationError as e:
        setup_logging("INFO")
        logger.error(f"❌ {e}")
        return 2

    system = config.get("system", {})
    setup_logging(system.get("log_level") or "INFO", system.get("log_file"))
    numpyro.set_platform("gpu" if system.get("use_gpu") else "cpu")

    # Imported here so logging is configured before the engines load
    from core.run_analysis import run_analysis

    result = run_analysis(config)
    if result["status"] != "completed":
        logger.error(f"❌ Run failed ({result['error_type']}): {result['error']}")
        return 1

    logger.info(f"Results written to {result['output_dir']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

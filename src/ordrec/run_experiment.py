"""
Orchestrator for the offline evaluation battery.

Usage:
    python -m ordrec.run_experiment --dataset data/100k.data --output metrics.json

Steps:
    1. Load configuration (defaults, .env, ORDREC_* variables, CLI flags).
    2. Load and split the dataset, compute similarities.
    3. Build preference relations when an ordinal method is requested.
    4. Run the requested methods.
    5. Save all metrics to a JSON report.
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import replace
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from .config import AppConfig, ConfigError, load_app_config
from .errors import OrdrecError
from .evaluation.runner import run_and_save
from .experiment import (
    ExperimentContext,
    MethodReport,
    prepare_numerical,
    prepare_ordinal,
    run_global_mean,
    run_most_popular,
    run_nmf,
    run_nmf_based_omf,
    run_nmf_based_orf,
    run_pref_knn,
    run_pref_mrf,
    run_pref_nmf,
    run_pref_nmf_based_omf,
    run_user_knn,
)
from .logging_utils import configure_logger
from .validators import ValidationError

NUMERICAL_METHODS = ("global_mean", "most_popular", "nmf", "user_knn", "nmf_omf", "nmf_orf")
ORDINAL_METHODS = ("pref_nmf", "pref_knn", "pref_nmf_omf", "pref_mrf")
ALL_METHODS = NUMERICAL_METHODS + ORDINAL_METHODS


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the ordinal recommender evaluation battery.")
    parser.add_argument("--dataset", type=Path, help="Ratings file; overrides ORDREC_DATASET_PATH.")
    parser.add_argument("--output", type=Path, help="Metrics JSON path; overrides ORDREC_METRICS_OUTPUT_PATH.")
    parser.add_argument(
        "--methods",
        nargs="+",
        choices=ALL_METHODS,
        default=list(ALL_METHODS),
        help="Methods to run, in order.",
    )
    parser.add_argument("--verbose", action="store_true", help="Log per-epoch losses.")
    return parser.parse_args(argv)


def run_methods(
    context: ExperimentContext,
    app_config: AppConfig,
    methods: Sequence[str],
) -> List[MethodReport]:
    """
    Run `methods` in order. ORF methods reuse the OMF run of the same scorer,
    running it first when it was not requested.
    """
    reports: List[MethodReport] = []
    omf_reports: Dict[str, MethodReport] = {}
    quantizer = app_config.omf.quantizer

    def omf_for(name: str) -> MethodReport:
        if name not in omf_reports:
            omf_reports[name] = runners[name]()
        return omf_reports[name]

    runners: Dict[str, Callable[[], MethodReport]] = {
        "global_mean": lambda: run_global_mean(context),
        "most_popular": lambda: run_most_popular(context),
        "nmf": lambda: run_nmf(context, app_config.nmf, rank=True),
        "user_knn": lambda: run_user_knn(context, app_config.knn, rank=True),
        "nmf_omf": lambda: run_nmf_based_omf(context, app_config.nmf, app_config.omf, rank=True),
        "nmf_orf": lambda: run_nmf_based_orf(
            context, omf_for("nmf_omf").prediction.distributions, app_config.orf, quantizer, rank=True
        ),
        "pref_nmf": lambda: run_pref_nmf(context, app_config.pref_nmf),
        "pref_knn": lambda: run_pref_knn(context, app_config.knn),
        "pref_nmf_omf": lambda: run_pref_nmf_based_omf(context, app_config.pref_nmf, app_config.omf),
        "pref_mrf": lambda: run_pref_mrf(
            context, omf_for("pref_nmf_omf").prediction.distributions, app_config.orf, quantizer
        ),
    }

    for name in methods:
        if name in ("nmf_omf", "pref_nmf_omf"):
            report = omf_for(name)
        else:
            report = runners[name]()
        reports.append(report)
    return reports


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Entry point for the evaluation battery.
    """
    args = _parse_args(argv)
    logger = configure_logger(
        name="ordrec",
        level=logging.DEBUG if args.verbose else logging.INFO,
    )
    logger.info("Starting evaluation battery", extra={"event": "pipeline_start"})

    # ----------------------------------------------------------
    # Step 1: Load configuration
    # ----------------------------------------------------------
    try:
        app_config = load_app_config()
        if args.dataset is not None:
            app_config = replace(app_config, dataset=replace(app_config.dataset, path=args.dataset))
        if args.output is not None:
            app_config = replace(app_config, evaluation=replace(app_config.evaluation, output_path=args.output))

        # ----------------------------------------------------------
        # Step 2: Prepare numerical data (split, similarities)
        # ----------------------------------------------------------
        context = prepare_numerical(app_config, logger=logger)

        # ----------------------------------------------------------
        # Step 3: Prepare preference relations if needed
        # ----------------------------------------------------------
        if any(method in ORDINAL_METHODS for method in args.methods):
            context = prepare_ordinal(context, app_config.similarity, logger=logger)

        # ----------------------------------------------------------
        # Step 4: Run methods
        # ----------------------------------------------------------
        reports = run_methods(context, app_config, args.methods)
    except (ConfigError, OrdrecError, ValidationError) as exc:
        logger.error(
            "Evaluation battery failed",
            extra={"event": "pipeline_failure", "exception_type": type(exc).__name__},
            exc_info=True,
        )
        return 1

    # ----------------------------------------------------------
    # Step 5: Save metrics
    # ----------------------------------------------------------
    run_and_save(
        reports,
        output_path=str(app_config.evaluation.output_path),
        meta={
            "dataset": str(app_config.dataset.path),
            "users": context.r_train.user_count,
            "items": context.r_train.item_count,
            "top_n": context.top_n,
            "users_with_relevant_items": len(context.relevant_items_by_user),
        },
    )

    logger.info(
        "Evaluation battery completed successfully",
        extra={"event": "pipeline_end", "output_path": str(app_config.evaluation.output_path)},
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

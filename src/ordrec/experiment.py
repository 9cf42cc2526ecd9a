"""
Experiment driver: builds an immutable ExperimentContext and runs the
battery of prediction methods against it.

Glossary of the context fields:
    r_train      ratings used for training
    r_test       held-out ratings
    r_unknown    1.0 at every cell of r_test, the cells to predict
    pr_train     preference relations built from r_train
    pr_test      preference relations built from r_test
    relevant_items_by_user   test items rated >= relevance threshold,
                             ground truth of every ranking evaluation
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Optional

import numpy as np
import pandas as pd

from .config import (
    AppConfig,
    KNNConfig,
    NMFConfig,
    OMFConfig,
    ORFConfig,
    Preferences,
    PrefNMFConfig,
    SimilarityConfig,
)
from .core.factorization import NMF, PrefNMF
from .core.knn import PrefUserKNN, UserKNN
from .core.ordinal import OMF, OrdinalDistribution, OrdinalPrediction
from .core.pref_relations import PrefRelations
from .core.ranking import RankedItemsByUser, get_relevant_items_by_user
from .core.rating_matrix import RatingMatrix
from .core.smoothing import ORF
from .data.loader import load_ratings, split_by_count
from .errors import PreconditionError
from .evaluation.baselines import global_mean_baseline, most_popular_baseline
from .evaluation.runner import evaluate_rating_predictions, evaluate_top_n
from .logging_utils import log_stage
from .similarity_engine import PreferenceSimilarityEngine, RatingSimilarityEngine
from .validators import validate_same_shape
from .writers import load_similarity_matrix_from_csv, save_similarity_matrix_to_csv


class ScorerKind(str, Enum):
    """Latent factor scorer feeding the ordinal calibrator."""

    NMF = "nmf"
    PREF_NMF = "pref_nmf"


class SmootherKind(str, Enum):
    """Ordinal stage applied on top of the scorer."""

    OMF = "omf"
    ORF = "orf"


@dataclass(frozen=True)
class OrdinalData:
    pr_train: PrefRelations
    pr_test: PrefRelations
    user_similarities_of_pref: np.ndarray
    item_similarities_of_pref: np.ndarray


@dataclass(frozen=True)
class ExperimentContext:
    """
    Everything a prediction method reads. Never mutated by a method.
    """
    r_train: RatingMatrix
    r_test: RatingMatrix
    r_unknown: RatingMatrix
    relevant_items_by_user: RankedItemsByUser
    user_similarities: np.ndarray
    item_similarities: np.ndarray
    top_n: int = 10
    seed: int = 1
    ordinal: Optional[OrdinalData] = None

    def require_ordinal(self) -> OrdinalData:
        if self.ordinal is None:
            raise PreconditionError(
                "Preference relation data is missing; call prepare_ordinal() first."
            )
        return self.ordinal


@dataclass(frozen=True)
class MethodReport:
    """
    Outcome of one method run.

    `prediction` is set by the ordinal methods so their distributions can
    feed a later smoothing run.
    """
    name: str
    metrics: Dict[str, float] = field(default_factory=dict)
    prediction: Optional[OrdinalPrediction] = None


_logger = logging.getLogger("ordrec.experiment")


# ----------------------------------------------------------------------
# Setup
# ----------------------------------------------------------------------

def _cached_or_computed(
    path: Path,
    compute: Callable[[], np.ndarray],
    similarity_config: SimilarityConfig,
    logger: logging.Logger,
) -> np.ndarray:
    if similarity_config.load_saved:
        try:
            return load_similarity_matrix_from_csv(path, logger=logger)
        except FileNotFoundError:
            logger.warning(
                "Cached similarity matrix not found; computing it",
                extra={"event": "similarity_cache_missing", "output_path": str(path)},
            )
    similarity = compute()
    if similarity_config.save_computed:
        save_similarity_matrix_to_csv(similarity, path, logger=logger)
    return similarity


def create_context(
    r_train: RatingMatrix,
    r_test: RatingMatrix,
    relevance_threshold: float,
    top_n: int = 10,
    seed: int = 1,
    similarity_config: Optional[SimilarityConfig] = None,
    logger: Optional[logging.Logger] = None,
) -> ExperimentContext:
    """
    Build a numerical-ready context from an existing train/test split.
    """
    logger = logger or _logger
    similarity_config = similarity_config or SimilarityConfig()
    validate_same_shape(r_train.shape, r_test.shape, "train and test matrices")

    logger.info(r_train.dataset_brief("Train set"), extra={"event": "dataset_brief", "step": "train"})
    logger.info(r_test.dataset_brief("Test set"), extra={"event": "dataset_brief", "step": "test"})

    relevant = get_relevant_items_by_user(r_test, relevance_threshold)
    mean_relevant = float(np.mean([len(v) for v in relevant.values()])) if relevant else 0.0
    logger.info(
        "Relevant items extracted",
        extra={"event": "relevant_items", "metric": "mean_relevant_per_user", "value": round(mean_relevant, 2)},
    )

    engine = RatingSimilarityEngine(logger=logger)
    user_similarities = _cached_or_computed(
        similarity_config.user_of_rating_path,
        lambda: engine.user_similarities(r_train),
        similarity_config,
        logger,
    )
    item_similarities = _cached_or_computed(
        similarity_config.item_of_rating_path,
        lambda: engine.item_similarities(r_train),
        similarity_config,
        logger,
    )

    return ExperimentContext(
        r_train=r_train,
        r_test=r_test,
        r_unknown=r_test.indexes_of_non_zero_elements(),
        relevant_items_by_user=relevant,
        user_similarities=user_similarities,
        item_similarities=item_similarities,
        top_n=top_n,
        seed=seed,
    )


def prepare_numerical(
    app_config: AppConfig,
    ratings: Optional[pd.DataFrame] = None,
    logger: Optional[logging.Logger] = None,
) -> ExperimentContext:
    """
    Load and split the dataset, extract relevant items and similarities.

    Args:
        app_config: Experiment configuration.
        ratings: Already loaded ratings; read from app_config.dataset.path otherwise.
    """
    logger = logger or _logger
    dataset = app_config.dataset

    with log_stage(logger, "prepare_numerical"):
        if ratings is None:
            ratings = load_ratings(dataset.path, sep=dataset.separator, logger=logger)
        split = split_by_count(
            ratings,
            min_count=dataset.min_count_of_ratings,
            train_count=dataset.count_of_ratings_for_train,
            shuffle=dataset.shuffle,
            seed=dataset.seed,
            logger=logger,
        )
        context = create_context(
            split.train,
            split.test,
            relevance_threshold=dataset.relevance_threshold,
            top_n=app_config.evaluation.top_n,
            seed=dataset.seed,
            similarity_config=app_config.similarity,
            logger=logger,
        )
    return context


def prepare_ordinal(
    context: ExperimentContext,
    similarity_config: Optional[SimilarityConfig] = None,
    logger: Optional[logging.Logger] = None,
) -> ExperimentContext:
    """
    Return a copy of `context` carrying preference relations and their
    similarities.
    """
    logger = logger or _logger
    similarity_config = similarity_config or SimilarityConfig()

    with log_stage(logger, "prepare_ordinal"):
        pr_train = PrefRelations.create_discrete(context.r_train)
        pr_test = PrefRelations.create_discrete(context.r_test)

        engine = PreferenceSimilarityEngine(logger=logger)
        user_similarities = _cached_or_computed(
            similarity_config.user_of_pref_path,
            lambda: engine.user_similarities(pr_train),
            similarity_config,
            logger,
        )
        item_similarities = _cached_or_computed(
            similarity_config.item_of_pref_path,
            lambda: engine.item_similarities(pr_train),
            similarity_config,
            logger,
        )

    ordinal = OrdinalData(
        pr_train=pr_train,
        pr_test=pr_test,
        user_similarities_of_pref=user_similarities,
        item_similarities_of_pref=item_similarities,
    )
    return replace(context, ordinal=ordinal)


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------

def _all_known(context: ExperimentContext) -> RatingMatrix:
    # every cell the scorer must cover: unknown (test) plus train
    return context.r_unknown.merge_non_overlap(context.r_train.indexes_of_non_zero_elements())


def _train_positions(pr_train: PrefRelations, quantizer) -> RatingMatrix:
    positions = pr_train.get_position_matrix()
    span = Preferences.PREFERRED - Preferences.LESS_PREFERRED
    return positions.quantization(Preferences.LESS_PREFERRED, span, quantizer)


def _report(name: str, metrics: Dict[str, float], started: float, prediction=None) -> MethodReport:
    metrics = dict(metrics)
    metrics["elapsed_s"] = round(time.perf_counter() - started, 4)
    for metric, value in metrics.items():
        _logger.info(
            f"{name} {metric}",
            extra={"event": "method_metric", "method": name, "metric": metric, "value": round(value, 4)},
        )
    return MethodReport(name=name, metrics=metrics, prediction=prediction)


def _ordinal_metrics(context: ExperimentContext, prediction: OrdinalPrediction, numerical: bool, rank: bool) -> Dict[str, float]:
    metrics: Dict[str, float] = {}
    if numerical:
        metrics.update(evaluate_rating_predictions(context.r_test, prediction.expectations))
        most_likely = evaluate_rating_predictions(context.r_test, prediction.most_likely)
        metrics.update({f"most_likely_{k}": v for k, v in most_likely.items()})
    if rank:
        metrics.update(evaluate_top_n(context.relevant_items_by_user, prediction.expectations, context.top_n))
        metrics.update(
            evaluate_top_n(
                context.relevant_items_by_user, prediction.most_likely, context.top_n, prefix="most_likely_"
            )
        )
    return metrics


# ----------------------------------------------------------------------
# Numerical methods
# ----------------------------------------------------------------------

def run_global_mean(context: ExperimentContext) -> MethodReport:
    """
    Predict all unknown values as the global mean rating.
    """
    started = time.perf_counter()
    with log_stage(_logger, "method", method="global_mean"):
        predicted = global_mean_baseline(context.r_train, context.r_unknown)
        metrics = evaluate_rating_predictions(context.r_test, predicted)
    return _report("global_mean", metrics, started)


def run_most_popular(context: ExperimentContext) -> MethodReport:
    """
    Recommend the items with the highest mean training rating.
    """
    started = time.perf_counter()
    with log_stage(_logger, "method", method="most_popular"):
        predicted = most_popular_baseline(context.r_train, context.r_unknown)
        metrics = evaluate_top_n(context.relevant_items_by_user, predicted, context.top_n)
    return _report("most_popular", metrics, started)


def run_nmf(context: ExperimentContext, config: NMFConfig, rank: bool = False) -> MethodReport:
    """
    Rating based non-negative matrix factorization.
    """
    started = time.perf_counter()
    with log_stage(_logger, "method", method="nmf"):
        predicted = NMF().predict_ratings(
            context.r_train, context.r_unknown,
            max_epoch=config.max_epoch,
            learn_rate=config.learn_rate,
            regularization=config.regularization,
            factor_count=config.factor_count,
            seed=context.seed,
        )
        metrics = evaluate_rating_predictions(context.r_test, predicted)
        if rank:
            metrics.update(evaluate_top_n(context.relevant_items_by_user, predicted, context.top_n))
    return _report("nmf", metrics, started)


def run_user_knn(context: ExperimentContext, config: KNNConfig, rank: bool = False) -> MethodReport:
    started = time.perf_counter()
    with log_stage(_logger, "method", method="user_knn"):
        predicted = UserKNN().predict_ratings(
            context.r_train, context.r_unknown, context.user_similarities, config.neighbor_count
        )
        metrics = evaluate_rating_predictions(context.r_test, predicted)
        if rank:
            metrics.update(evaluate_top_n(context.relevant_items_by_user, predicted, context.top_n))
    return _report("user_knn", metrics, started)


# ----------------------------------------------------------------------
# Preference methods
# ----------------------------------------------------------------------

def run_pref_nmf(context: ExperimentContext, config: PrefNMFConfig) -> MethodReport:
    ordinal = context.require_ordinal()
    started = time.perf_counter()
    with log_stage(_logger, "method", method="pref_nmf"):
        predicted = PrefNMF().predict_ratings(
            ordinal.pr_train, context.r_unknown,
            max_epoch=config.max_epoch,
            learn_rate=config.learn_rate,
            regularization_of_user=config.regularization_of_user,
            regularization_of_item=config.regularization_of_item,
            factor_count=config.factor_count,
            seed=context.seed,
        )
        metrics = evaluate_top_n(context.relevant_items_by_user, predicted, context.top_n)
    return _report("pref_nmf", metrics, started)


def run_pref_knn(context: ExperimentContext, config: KNNConfig) -> MethodReport:
    ordinal = context.require_ordinal()
    started = time.perf_counter()
    with log_stage(_logger, "method", method="pref_knn"):
        predicted = PrefUserKNN().predict_ratings(
            ordinal.pr_train, context.r_unknown, config.neighbor_count, ordinal.user_similarities_of_pref
        )
        metrics = evaluate_top_n(context.relevant_items_by_user, predicted, context.top_n)
    return _report("pref_knn", metrics, started)


# ----------------------------------------------------------------------
# Ordinal methods
# ----------------------------------------------------------------------

def run_nmf_based_omf(
    context: ExperimentContext,
    nmf_config: NMFConfig,
    omf_config: OMFConfig,
    rank: bool = False,
) -> MethodReport:
    """
    OMF calibrated on NMF scores. The scorer covers train and unknown cells.
    """
    started = time.perf_counter()
    with log_stage(_logger, "method", method="nmf_omf"):
        r_scores = NMF().predict_ratings(
            context.r_train, _all_known(context),
            max_epoch=nmf_config.max_epoch,
            learn_rate=nmf_config.learn_rate,
            regularization=nmf_config.regularization,
            factor_count=nmf_config.factor_count,
            seed=context.seed,
        )
        prediction = OMF().predict_ratings(
            context.r_train, context.r_unknown, r_scores, omf_config.quantizer,
            max_epoch=omf_config.max_epoch,
            learn_rate=omf_config.learn_rate,
            regularization=omf_config.regularization,
        )
        metrics = _ordinal_metrics(context, prediction, numerical=True, rank=rank)
    return _report("nmf_omf", metrics, started, prediction)


def run_pref_nmf_based_omf(
    context: ExperimentContext,
    pref_config: PrefNMFConfig,
    omf_config: OMFConfig,
) -> MethodReport:
    """
    OMF calibrated on PrefNMF positions.

    PrefNMF predicts relations over every pair of train and unknown items,
    the relations are quantized and collapsed into positions, which serve as
    scores. The calibration targets are the user's training positions
    quantized onto the rating levels.
    """
    ordinal = context.require_ordinal()
    started = time.perf_counter()
    with log_stage(_logger, "method", method="pref_nmf_omf"):
        pr_unknown = PrefRelations.create_discrete(_all_known(context))
        pr_predicted = PrefNMF().predict_pref_relations(
            ordinal.pr_train, pr_unknown,
            max_epoch=pref_config.max_epoch,
            learn_rate=pref_config.learn_rate,
            regularization_of_user=pref_config.regularization_of_user,
            regularization_of_item=pref_config.regularization_of_item,
            factor_count=pref_config.factor_count,
            seed=context.seed,
        )
        r_scores = pr_predicted.quantization(0.0, 1.0, Preferences.LEVELS).get_position_matrix()
        r_train_positions = _train_positions(ordinal.pr_train, omf_config.quantizer)

        prediction = OMF().predict_ratings(
            r_train_positions, context.r_unknown, r_scores, omf_config.quantizer,
            max_epoch=omf_config.max_epoch,
            learn_rate=omf_config.learn_rate,
            regularization=omf_config.regularization,
        )
        metrics = evaluate_top_n(context.relevant_items_by_user, prediction.expectations, context.top_n)
    return _report("pref_nmf_omf", metrics, started, prediction)


def run_nmf_based_orf(
    context: ExperimentContext,
    omf_distributions: OrdinalDistribution,
    orf_config: ORFConfig,
    quantizer,
    rank: bool = False,
) -> MethodReport:
    """
    ORF smoothing of NMF-based OMF distributions over rating similarities.
    """
    started = time.perf_counter()
    with log_stage(_logger, "method", method="nmf_orf"):
        prediction = ORF().predict_ratings(
            context.r_train, context.r_unknown, context.item_similarities, omf_distributions, quantizer,
            regularization=orf_config.regularization,
            learn_rate=orf_config.learn_rate,
            min_similarity=orf_config.min_similarity,
            max_epoch=orf_config.max_epoch,
        )
        metrics = _ordinal_metrics(context, prediction, numerical=True, rank=rank)
    return _report("nmf_orf", metrics, started, prediction)


def run_pref_mrf(
    context: ExperimentContext,
    omf_distributions: OrdinalDistribution,
    orf_config: ORFConfig,
    quantizer,
) -> MethodReport:
    """
    PrefMRF: ORF smoothing of PrefNMF-based OMF distributions over
    preference similarities.
    """
    ordinal = context.require_ordinal()
    started = time.perf_counter()
    with log_stage(_logger, "method", method="pref_mrf"):
        r_train_positions = _train_positions(ordinal.pr_train, quantizer)
        prediction = ORF().predict_ratings(
            r_train_positions, context.r_unknown, ordinal.item_similarities_of_pref, omf_distributions, quantizer,
            regularization=orf_config.regularization,
            learn_rate=orf_config.learn_rate,
            min_similarity=orf_config.min_similarity,
            max_epoch=orf_config.max_epoch,
        )
        metrics = _ordinal_metrics(context, prediction, numerical=False, rank=True)
    return _report("pref_mrf", metrics, started, prediction)


def run_ordinal(
    context: ExperimentContext,
    scorer: ScorerKind,
    smoother: SmootherKind,
    app_config: AppConfig,
) -> MethodReport:
    """
    Run one cell of the scorer x smoother grid.

    ORF always starts from the OMF distributions of the same scorer.
    """
    scorer = ScorerKind(scorer)
    smoother = SmootherKind(smoother)
    quantizer = app_config.omf.quantizer

    if scorer is ScorerKind.NMF:
        omf_report = run_nmf_based_omf(context, app_config.nmf, app_config.omf, rank=True)
        if smoother is SmootherKind.OMF:
            return omf_report
        return run_nmf_based_orf(
            context, omf_report.prediction.distributions, app_config.orf, quantizer, rank=True
        )

    omf_report = run_pref_nmf_based_omf(context, app_config.pref_nmf, app_config.omf)
    if smoother is SmootherKind.OMF:
        return omf_report
    return run_pref_mrf(context, omf_report.prediction.distributions, app_config.orf, quantizer)

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Tuple, TypeVar

from dotenv import load_dotenv

T = TypeVar("T")

ENV_PREFIX = "ORDREC_"


class ConfigError(RuntimeError):
    """Raised when required configuration is missing or invalid."""


class Preferences:
    """
    Relation levels stored in preference relation matrices.

    UNKNOWN is reserved for the diagonal and for pairs that are never
    materialized. Positions derived from relations live in
    [LESS_PREFERRED, PREFERRED].
    """
    UNKNOWN = 0.0
    LESS_PREFERRED = 1.0
    EQUALLY_PREFERRED = 2.0
    PREFERRED = 3.0

    LEVELS: Tuple[float, float, float] = (LESS_PREFERRED, EQUALLY_PREFERRED, PREFERRED)


@dataclass(frozen=True)
class DatasetConfig:
    """
    Dataset ingestion and split policy.

    Attributes:
        path: Ratings file (MovieLens u.data layout: user, item, rating, timestamp).
        separator: Field separator of the ratings file.
        min_count_of_ratings: Users with fewer ratings are dropped.
        count_of_ratings_for_train: Ratings per user placed in the train set.
        shuffle: Shuffle each user's ratings before splitting.
        seed: Seed for the shuffle and for every seeded predictor.
        relevance_threshold: Test ratings >= this value are relevant items.
    """
    path: Path = Path("data/100k.data")
    separator: str = "\t"
    min_count_of_ratings: int = 60
    count_of_ratings_for_train: int = 50
    shuffle: bool = False
    seed: int = 1
    relevance_threshold: float = 5.0


@dataclass(frozen=True)
class SimilarityConfig:
    """
    Optional on-disk caches for similarity matrices.

    Attributes:
        cache_dir: Folder holding the cached CSV matrices.
        load_saved: Read matrices from the cache instead of computing them.
        save_computed: Write freshly computed matrices to the cache.
    """
    cache_dir: Path = Path("data/similarities")
    load_saved: bool = False
    save_computed: bool = False

    @property
    def user_of_rating_path(self) -> Path:
        return self.cache_dir / "user_similarities_of_rating.csv"

    @property
    def item_of_rating_path(self) -> Path:
        return self.cache_dir / "item_similarities_of_rating.csv"

    @property
    def user_of_pref_path(self) -> Path:
        return self.cache_dir / "user_similarities_of_pref.csv"

    @property
    def item_of_pref_path(self) -> Path:
        return self.cache_dir / "item_similarities_of_pref.csv"


@dataclass(frozen=True)
class NMFConfig:
    max_epoch: int = 100
    learn_rate: float = 0.01
    regularization: float = 0.05
    factor_count: int = 10


@dataclass(frozen=True)
class PrefNMFConfig:
    max_epoch: int = 50
    learn_rate: float = 0.1
    regularization_of_user: float = 0.015
    regularization_of_item: float = 0.015
    factor_count: int = 10


@dataclass(frozen=True)
class OMFConfig:
    """Ordinal calibration (threshold fitting) hyperparameters."""
    max_epoch: int = 200
    learn_rate: float = 0.5
    regularization: float = 0.01
    quantizer: Tuple[float, ...] = (1.0, 2.0, 3.0, 4.0, 5.0)


@dataclass(frozen=True)
class ORFConfig:
    """Similarity field smoothing hyperparameters."""
    max_epoch: int = 20
    learn_rate: float = 0.5
    regularization: float = 1.0
    min_similarity: float = 0.1


@dataclass(frozen=True)
class KNNConfig:
    neighbor_count: int = 50


@dataclass(frozen=True)
class EvaluationConfig:
    top_n: int = 10
    output_path: Path = Path("metrics.json")


@dataclass(frozen=True)
class AppConfig:
    """
    Top-level configuration object for an experiment run.
    """
    dataset: DatasetConfig = field(default_factory=DatasetConfig)
    similarity: SimilarityConfig = field(default_factory=SimilarityConfig)
    nmf: NMFConfig = field(default_factory=NMFConfig)
    pref_nmf: PrefNMFConfig = field(default_factory=PrefNMFConfig)
    omf: OMFConfig = field(default_factory=OMFConfig)
    orf: ORFConfig = field(default_factory=ORFConfig)
    knn: KNNConfig = field(default_factory=KNNConfig)
    evaluation: EvaluationConfig = field(default_factory=EvaluationConfig)


# ----------------------------------------------------------------------
# Environment parsing
# ----------------------------------------------------------------------

def _parse_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"not a boolean: {raw!r}")


def _parse_quantizer(raw: str) -> Tuple[float, ...]:
    return tuple(float(part) for part in raw.split(",") if part.strip())


def _env(name: str, parse: Callable[[str], T], default: T) -> T:
    """
    Read ORDREC_<name> and parse it, returning `default` when unset or empty.

    Raises:
        ConfigError: If the variable is set but cannot be parsed.
    """
    env_var_name = ENV_PREFIX + name
    raw = os.getenv(env_var_name)
    if raw is None or not raw.strip():
        return default
    try:
        return parse(raw)
    except ValueError as exc:
        raise ConfigError(f"Environment variable {env_var_name!r} is invalid: {exc}") from exc


def load_app_config(dotenv_path: Optional[str] = None) -> AppConfig:
    """
    Construct the experiment configuration from defaults and ORDREC_* variables.

    Args:
        dotenv_path: Optional .env file; by default python-dotenv searches upwards.

    Returns:
        AppConfig
    """
    load_dotenv(dotenv_path)

    d, s = DatasetConfig(), SimilarityConfig()
    nmf, pref = NMFConfig(), PrefNMFConfig()
    omf, orf = OMFConfig(), ORFConfig()
    knn, ev = KNNConfig(), EvaluationConfig()

    dataset = DatasetConfig(
        path=_env("DATASET_PATH", Path, d.path),
        separator=_env("DATASET_SEPARATOR", str, d.separator),
        min_count_of_ratings=_env("MIN_COUNT_OF_RATINGS", int, d.min_count_of_ratings),
        count_of_ratings_for_train=_env("COUNT_OF_RATINGS_FOR_TRAIN", int, d.count_of_ratings_for_train),
        shuffle=_env("SHUFFLE", _parse_bool, d.shuffle),
        seed=_env("SEED", int, d.seed),
        relevance_threshold=_env("RELEVANCE_THRESHOLD", float, d.relevance_threshold),
    )
    similarity = SimilarityConfig(
        cache_dir=_env("SIMILARITY_CACHE_DIR", Path, s.cache_dir),
        load_saved=_env("LOAD_SAVED_SIMILARITIES", _parse_bool, s.load_saved),
        save_computed=_env("SAVE_SIMILARITIES", _parse_bool, s.save_computed),
    )
    nmf_cfg = NMFConfig(
        max_epoch=_env("NMF_MAX_EPOCH", int, nmf.max_epoch),
        learn_rate=_env("NMF_LEARN_RATE", float, nmf.learn_rate),
        regularization=_env("NMF_REGULARIZATION", float, nmf.regularization),
        factor_count=_env("NMF_FACTOR_COUNT", int, nmf.factor_count),
    )
    pref_cfg = PrefNMFConfig(
        max_epoch=_env("PREFNMF_MAX_EPOCH", int, pref.max_epoch),
        learn_rate=_env("PREFNMF_LEARN_RATE", float, pref.learn_rate),
        regularization_of_user=_env("PREFNMF_REGULARIZATION_OF_USER", float, pref.regularization_of_user),
        regularization_of_item=_env("PREFNMF_REGULARIZATION_OF_ITEM", float, pref.regularization_of_item),
        factor_count=_env("PREFNMF_FACTOR_COUNT", int, pref.factor_count),
    )
    omf_cfg = OMFConfig(
        max_epoch=_env("OMF_MAX_EPOCH", int, omf.max_epoch),
        learn_rate=_env("OMF_LEARN_RATE", float, omf.learn_rate),
        regularization=_env("OMF_REGULARIZATION", float, omf.regularization),
        quantizer=_env("QUANTIZER", _parse_quantizer, omf.quantizer),
    )
    orf_cfg = ORFConfig(
        max_epoch=_env("ORF_MAX_EPOCH", int, orf.max_epoch),
        learn_rate=_env("ORF_LEARN_RATE", float, orf.learn_rate),
        regularization=_env("ORF_REGULARIZATION", float, orf.regularization),
        min_similarity=_env("ORF_MIN_SIMILARITY", float, orf.min_similarity),
    )
    knn_cfg = KNNConfig(neighbor_count=_env("KNN_NEIGHBOR_COUNT", int, knn.neighbor_count))
    evaluation = EvaluationConfig(
        top_n=_env("TOP_N", int, ev.top_n),
        output_path=_env("METRICS_OUTPUT_PATH", Path, ev.output_path),
    )

    return AppConfig(
        dataset=dataset,
        similarity=similarity,
        nmf=nmf_cfg,
        pref_nmf=pref_cfg,
        omf=omf_cfg,
        orf=orf_cfg,
        knn=knn_cfg,
        evaluation=evaluation,
    )

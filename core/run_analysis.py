"""End-to-end multi-view factor analysis pipeline.

Configuration -> load (or generate) views -> assemble -> preprocess -> fit
-> variance explained -> covariate association -> export tables and model.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from analysis.covariates import associate_covariates
from analysis.export import export_results
from analysis.variance import variance_explained_summary, variance_from_model
from core.config_utils import ensure_directories, safe_get, validate_configuration
from core.error_handling import (
    ConfigurationError,
    FactorAnalysisError,
    create_success_result,
    log_and_return_error,
)
from core.logger_utils import log_section
from data.assembler import MultiViewDataset, assemble_views
from data.loaders import load_covariates, load_view_table
from data.preprocessing import ViewPreprocessor
from data.synthetic import generate_synthetic_data, to_feature_frames
from models.factory import create_model

logger = logging.getLogger(__name__)

MODEL_SUBDIR = "model"


def load_dataset(config: Dict[str, Any]) -> MultiViewDataset:
    """Load and assemble the views named in the ``data`` section.

    With ``data.synthetic`` set, a three-view synthetic dataset is generated
    instead (seeded by ``training.seed``).
    """
    data_cfg = config.get("data", {})
    likelihoods = dict(safe_get(config, "model", "likelihoods", default={}) or {})
    join = data_cfg.get("join", "outer")

    if data_cfg.get("synthetic"):
        logger.info("Using synthetic data")
        data = generate_synthetic_data(seed=safe_get(config, "training", "seed"))
        return assemble_views(
            to_feature_frames(data),
            covariates=data["covariates"],
            likelihoods={**data["likelihoods"], **likelihoods},
            join=join,
        )

    views = data_cfg.get("views") or {}
    if not views:
        raise ConfigurationError("No views configured: set data.views or data.synthetic")

    frames = {name: load_view_table(path) for name, path in views.items()}
    covariates = None
    if data_cfg.get("covariates"):
        covariates = load_covariates(data_cfg["covariates"], data_cfg.get("sample_column"))

    return assemble_views(frames, covariates=covariates, likelihoods=likelihoods, join=join)


def run_analysis(
    config: Optional[Dict[str, Any]] = None,
    dataset: Optional[MultiViewDataset] = None,
) -> Dict[str, Any]:
    """
    Run the full pipeline.

    Parameters
    ----------
    config : dict, optional
        Run configuration; missing sections take their defaults
    dataset : MultiViewDataset, optional
        Already assembled data; skips loading from ``data.views``

    Returns
    -------
    dict
        ``status`` is ``"completed"`` with ``model``, ``variance``,
        ``association``, ``files`` and ``output_dir``; or ``"failed"`` with
        ``error``/``error_type`` (and ``view`` when the error names one)
    """
    try:
        config = validate_configuration(config)
    except ConfigurationError as e:
        return log_and_return_error(e, logger, "Invalid configuration")

    output_dir = ensure_directories(config)
    log_section(logger, "MULTI-VIEW FACTOR ANALYSIS")

    try:
        if dataset is None:
            dataset = load_dataset(config)
        logger.info(
            f"📊 Dataset: {dataset.n_samples} samples, features per view {dataset.n_features}"
        )

        log_section(logger, "PREPROCESSING")
        preprocessor = ViewPreprocessor.from_config(config["preprocessing"])
        processed = preprocessor.fit_transform(dataset)

        log_section(logger, "MODEL TRAINING")
        model_type = config["model"]["model_type"]
        model = create_model(model_type, config)
        trained = model.fit(processed, scalers=preprocessor.get_scalers())

        variance = variance_from_model(trained)
        summary = variance_explained_summary(variance)
        for factor, row in summary.iterrows():
            logger.info(f"  {factor}: R² sum {row['r2_sum']:.2f}% (top view {row['top_view']})")

        association = None
        covariates = processed.covariates
        if covariates is not None and not covariates.empty:
            log_section(logger, "COVARIATE ASSOCIATION")
            analysis_cfg = config["analysis"]
            categorical = [c for c in analysis_cfg.get("categorical", []) if c in covariates.columns]
            skipped = set(analysis_cfg.get("categorical", [])) - set(categorical)
            if skipped:
                logger.warning(f"Categorical covariates not in the covariate table: {sorted(skipped)}")
            association = associate_covariates(
                trained.get_factors(),
                covariates,
                categorical=categorical,
                categorical_test=analysis_cfg.get("categorical_test", "kruskal"),
                min_group_size=analysis_cfg.get("min_group_size", 2),
            )

        files: Dict[str, Path] = {}
        if config["output"].get("export_tables", True):
            files = export_results(
                trained,
                output_dir,
                variance=variance,
                association=association,
                n_top_features=config["output"].get("n_top_features", 10),
            )
        if config["output"].get("save_model", True):
            files["model"] = trained.save(output_dir / MODEL_SUBDIR)

    except FactorAnalysisError as e:
        return log_and_return_error(
            e, logger, "Analysis failed", additional_fields={"output_dir": str(output_dir)}
        )

    logger.info(f"✓ Analysis completed; results in {output_dir}")
    return create_success_result(
        model=trained,
        variance=variance,
        association=association,
        dataset=processed,
        files=files,
        output_dir=str(output_dir),
    )

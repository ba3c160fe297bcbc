"""Write the tables of a fitted model to a results directory."""

import logging
from pathlib import Path
from typing import Dict, Optional, Union

from core.io_utils import OutputManager

from .covariates import CovariateAssociation
from .interpretation import top_features_table
from .variance import VarianceExplained, variance_explained_summary

logger = logging.getLogger(__name__)


def export_results(
    model,
    output_dir: Union[str, Path],
    variance: Optional[VarianceExplained] = None,
    association: Optional[CovariateAssociation] = None,
    n_top_features: int = 10,
) -> Dict[str, Path]:
    """
    Export factors, loadings, noise, R² and covariate tests as CSV/JSON.

    Files written into ``output_dir``:

    - ``factors.csv``: samples x factors
    - ``weights_<view>.csv`` and ``noise_<view>.csv`` for every view
    - ``r2_per_factor.csv``, ``r2_total.csv``, ``r2_summary.csv``
    - ``top_features.csv``
    - ``covariate_pvalues.csv`` and ``covariate_tests.csv`` (with ``association``)
    - ``training_stats.json``

    Returns
    -------
    dict
        Logical table name -> path written
    """
    written: Dict[str, Path] = {}

    with OutputManager(output_dir) as out:
        written["factors"] = out.save_csv(
            model.get_factors(), "factors.csv", index=True, index_label="sample"
        )

        for view in model.view_names:
            written[f"weights_{view}"] = out.save_csv(
                model.get_weights(view), f"weights_{view}.csv", index=True, index_label="feature"
            )
            written[f"noise_{view}"] = out.save_csv(
                model.get_noise(view).to_frame("noise_variance"),
                f"noise_{view}.csv",
                index=True,
                index_label="feature",
            )

        if variance is not None:
            per_factor, total = variance.per_factor, variance.total
            summary = variance_explained_summary(variance)
        else:
            per_factor, total = model.get_variance_explained(), model.get_r2_total()
            summary = None
        written["r2_per_factor"] = out.save_csv(
            per_factor, "r2_per_factor.csv", index=True, index_label="factor"
        )
        written["r2_total"] = out.save_csv(
            total.to_frame("r2_total"), "r2_total.csv", index=True, index_label="view"
        )
        if summary is not None:
            written["r2_summary"] = out.save_csv(summary, "r2_summary.csv", index=True)

        written["top_features"] = out.save_csv(
            top_features_table(model, n=n_top_features), "top_features.csv"
        )

        if association is not None:
            written["covariate_pvalues"] = out.save_csv(
                association.pvalues, "covariate_pvalues.csv", index=True, index_label="factor"
            )
            written["covariate_tests"] = out.save_csv(association.to_long(), "covariate_tests.csv")

        written["training_stats"] = out.save_json(model.training_stats, "training_stats.json")

    logger.info(f"📊 Exported {len(written)} result files to {output_dir}")
    return written

"""
End-to-end analysis of one GEO series.

load -> low-count filter -> study design -> DESeq2 fit (once) -> contrasts
-> quadrant classification -> significant-gene union -> VST -> enrichment

Every stage returns a new value; nothing is shared between stages except
what is passed explicitly.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple
import logging
import pandas as pd
import plotly.graph_objects as go

from analysis_config import AnalysisConfig
from archs4_loader import ExpressionDataset, load_series, filter_low_count_genes
from contrast_evaluator import (
    EvaluatedContrast,
    evaluate_contrast,
    rank_by_significance,
    union_significant_genes,
)
from de_analysis import DEAnalysisEngine, FittedModel
from export_engine import ExportData, ExportEngine
from pathway_enrichment import PathwayEnrichment
from study_design import build_study_design, summarize_design
from visualizations import (
    create_volcano_plot,
    create_clustered_heatmap,
    create_pca_plot,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnalysisResult:
    """Everything one run produces."""

    dataset: ExpressionDataset  # after low-count filtering
    design: pd.DataFrame
    model: FittedModel
    contrasts: Dict[Tuple[str, str], EvaluatedContrast]
    significant_genes: List[str]  # sorted union
    tested_genes: Dict[Tuple[str, str], int]  # genes with a model padj, per contrast
    vst: pd.DataFrame  # genes x samples, all genes
    enrichment: pd.DataFrame
    enrichment_error: Optional[str]

    @property
    def significant_vst(self) -> pd.DataFrame:
        """VST rows of the significant gene set."""
        return self.vst.loc[[g for g in self.significant_genes if g in self.vst.index]]


def check_contrast_levels(
    design: pd.DataFrame, contrasts: List[Tuple[str, str]]
) -> None:
    """
    Raise ValueError if a contrast names a condition absent from the design.
    """
    levels = set(design["condition"].astype(str))
    unknown = sorted({c for pair in contrasts for c in pair} - levels)
    if unknown:
        raise ValueError(
            f"Contrast conditions {unknown} not found in study design; "
            f"available: {sorted(levels)}"
        )


def prepare_inputs(config: AnalysisConfig) -> Tuple[ExpressionDataset, pd.DataFrame]:
    """Load the series, filter low-count genes, and derive the study design."""
    dataset = load_series(config.h5_path, config.series_id, config.gene_field)
    dataset = filter_low_count_genes(dataset, config.min_total_count)

    design = build_study_design(
        dataset.titles, dataset.sample_ids, separator=config.title_separator
    )
    logger.info("Samples per condition/replicate:\n%s", summarize_design(design))
    check_contrast_levels(design, config.contrasts)
    return dataset, design


def run_analysis(
    config: AnalysisConfig,
    engine: Optional[DEAnalysisEngine] = None,
    enricher: Optional[PathwayEnrichment] = None,
) -> AnalysisResult:
    """
    Run the full workflow described by config.

    Args:
        config: AnalysisConfig
        engine: DE engine (default DEAnalysisEngine())
        enricher: Enrichment client (default PathwayEnrichment())

    Returns:
        AnalysisResult

    Raises:
        EmptySampleSelection, MalformedMetadata, ValueError: fatal input problems
    """
    engine = engine or DEAnalysisEngine()
    enricher = enricher or PathwayEnrichment()

    dataset, design = prepare_inputs(config)

    # PyDESeq2 expects samples x genes
    model, de_results = engine.run_all_comparisons(
        dataset.counts.T,
        design,
        comparisons=list(config.contrasts),
        design_factors=config.design_factors,
    )

    contrasts = {
        comparison: evaluate_contrast(
            de_result.results_df,
            comparison=comparison,
            effect_threshold=config.effect_threshold,
            significance_threshold=config.significance_threshold,
        )
        for comparison, de_result in de_results.items()
    }
    significant = union_significant_genes(
        *(c.significant_genes for c in contrasts.values())
    )
    logger.info(
        "Significant genes across %d contrasts: %d", len(contrasts), len(significant)
    )

    vst = engine.variance_stabilize(model)

    enrichment, enrichment_error = enricher.run_enrichment(
        rank_by_significance(significant, contrasts.values()),
        config.enrichment_gene_sets,
        organism=config.organism,
    )

    result = AnalysisResult(
        dataset=dataset,
        design=design,
        model=model,
        contrasts=contrasts,
        significant_genes=significant,
        tested_genes={c: r.n_tested for c, r in de_results.items()},
        vst=vst,
        enrichment=enrichment,
        enrichment_error=enrichment_error,
    )

    if config.output_path is not None:
        export_results(result, config)

    return result


def build_figures(result: AnalysisResult, heatmap_top_n: Optional[int] = 50) -> Dict[str, go.Figure]:
    """Volcano per contrast, PCA, and (when any gene is significant) a heatmap."""
    figures = {}
    for (test, ref), contrast in result.contrasts.items():
        figures[f"volcano_{test}_vs_{ref}"] = create_volcano_plot(contrast)
    figures["pca"] = create_pca_plot(result.vst, result.design)
    if result.significant_genes:
        figures["heatmap"] = create_clustered_heatmap(
            result.vst, result.design, result.significant_genes, top_n_genes=heatmap_top_n
        )
    return figures


def export_results(result: AnalysisResult, config: AnalysisConfig) -> Path:
    """Write the workbook and figures to config.output_path."""
    output_path = Path(config.output_path)
    export_data = ExportData(
        series_id=config.series_id,
        design=result.design,
        contrasts=result.contrasts,
        significant_genes=result.significant_genes,
        enrichment_results=result.enrichment,
        enrichment_error=result.enrichment_error,
        settings={
            "effect_threshold": config.effect_threshold,
            "significance_threshold": config.significance_threshold,
            "design": result.model.design,
            "min_total_count": config.min_total_count,
            "genes_in_model": result.dataset.n_genes,
            **{
                f"genes_tested_{test}_vs_{ref}": n
                for (test, ref), n in result.tested_genes.items()
            },
            "samples": result.dataset.n_samples,
            "enrichment_gene_sets": ", ".join(config.enrichment_gene_sets),
        },
        figures=build_figures(result, config.heatmap_top_n),
    )

    exporter = ExportEngine()
    exporter.export_excel(str(output_path), export_data)
    exporter.export_figures(str(output_path.parent / "figures"), export_data)
    return output_path

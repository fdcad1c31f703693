"""
Contrast evaluation: significance normalization and quadrant classification.

Each gene in a contrast result table is placed in one of four quadrants by
two inclusive tests:
    bit 1: |log2FoldChange| >= effect_threshold
    bit 0: padj <= significance_threshold
Genes in the BOTH quadrant form the significant gene set.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, Iterable, List
import logging
import numpy as np
import pandas as pd
from de_analysis import ensure_gene_column

logger = logging.getLogger(__name__)

DEFAULT_EFFECT_THRESHOLD = 1.0
DEFAULT_SIGNIFICANCE_THRESHOLD = 0.05

# Adjusted p-value assigned to genes PyDESeq2 left untested (independent
# filtering, outliers, all-zero counts)
MISSING_PADJ_VALUE = 1.0


class Quadrant(IntEnum):
    """Effect/significance quadrant of a gene."""

    NEITHER = 0
    SIGNIFICANT_ONLY = 1
    LARGE_EFFECT_ONLY = 2
    BOTH = 3


@dataclass(frozen=True)
class EvaluatedContrast:
    """Classified result table for one contrast."""

    comparison: tuple  # (test_condition, reference_condition)
    table: pd.DataFrame  # gene, log2FoldChange, pvalue, padj (filled), quadrant, ...
    significant_genes: List[str]
    effect_threshold: float
    significance_threshold: float


def fill_missing_padj(results_df: pd.DataFrame) -> pd.DataFrame:
    """Return a copy with every missing padj replaced by 1.0."""
    df = results_df.copy()
    df["padj"] = df["padj"].fillna(MISSING_PADJ_VALUE)
    return df


def classify_quadrant(
    log2_fold_change: float,
    adjusted_p_value: float,
    effect_threshold: float = DEFAULT_EFFECT_THRESHOLD,
    significance_threshold: float = DEFAULT_SIGNIFICANCE_THRESHOLD,
) -> Quadrant:
    """
    Classify a single gene.

    Both comparisons are inclusive: a gene sitting exactly on a threshold
    satisfies that condition.
    """
    large_effect = abs(log2_fold_change) >= effect_threshold
    significant = adjusted_p_value <= significance_threshold
    return Quadrant((int(large_effect) << 1) | int(significant))


def _quadrant_codes(
    df: pd.DataFrame, effect_threshold: float, significance_threshold: float
) -> np.ndarray:
    # Vectorized form of classify_quadrant
    large_effect = (df["log2FoldChange"].abs() >= effect_threshold).to_numpy()
    significant = (df["padj"] <= significance_threshold).to_numpy()
    return (large_effect.astype(int) << 1) | significant.astype(int)


def evaluate_contrast(
    results_df: pd.DataFrame,
    comparison: tuple = ("test", "reference"),
    effect_threshold: float = DEFAULT_EFFECT_THRESHOLD,
    significance_threshold: float = DEFAULT_SIGNIFICANCE_THRESHOLD,
) -> EvaluatedContrast:
    """
    Fill missing adjusted p-values, classify every gene, and select the
    significant subset.

    Args:
        results_df: Contrast result table with gene, log2FoldChange, padj columns
        comparison: (test_condition, reference_condition) label for the contrast
        effect_threshold: Minimum |log2FoldChange| (inclusive)
        significance_threshold: Maximum padj (inclusive)

    Returns:
        EvaluatedContrast whose table has the same rows as results_df plus a
        "quadrant" column

    Raises:
        ValueError: If required columns are missing or thresholds are invalid
    """
    if effect_threshold < 0:
        raise ValueError(f"effect_threshold must be >= 0, got {effect_threshold}")
    if not 0 <= significance_threshold <= 1:
        raise ValueError(
            f"significance_threshold must be within [0, 1], got {significance_threshold}"
        )

    df = ensure_gene_column(results_df)
    missing = [c for c in ("gene", "log2FoldChange", "padj") if c not in df.columns]
    if missing:
        raise ValueError(f"Contrast result table is missing columns {missing}")

    n_missing = int(df["padj"].isna().sum())
    df = fill_missing_padj(df)

    # Untested genes can also lack a fold change; they belong to no effect bin
    lfc = df["log2FoldChange"].fillna(0.0)
    codes = _quadrant_codes(
        df.assign(log2FoldChange=lfc), effect_threshold, significance_threshold
    )
    df["quadrant"] = [Quadrant(c).name for c in codes]

    significant_genes = df.loc[codes == Quadrant.BOTH, "gene"].tolist()

    logger.info(
        "Contrast %s vs %s: %d genes, %d missing padj filled, %d significant",
        comparison[0],
        comparison[1],
        len(df),
        n_missing,
        len(significant_genes),
    )

    return EvaluatedContrast(
        comparison=tuple(comparison),
        table=df,
        significant_genes=significant_genes,
        effect_threshold=effect_threshold,
        significance_threshold=significance_threshold,
    )


def union_significant_genes(*gene_lists: Iterable[str]) -> List[str]:
    """
    True set union of significant genes from several contrasts.

    Order carries no meaning; the result is sorted so that downstream
    output is reproducible.
    """
    union = set()
    for genes in gene_lists:
        union.update(genes)
    return sorted(union)


def rank_by_significance(
    genes: Iterable[str], contrasts: Iterable[EvaluatedContrast]
) -> List[str]:
    """
    Order genes by their lowest adjusted p-value across contrasts.

    Genes absent from every table rank last; ties are broken by gene id.
    """
    best: Dict[str, float] = {}
    for contrast in contrasts:
        padj = contrast.table.groupby("gene")["padj"].min()
        for gene, value in padj.items():
            if gene not in best or value < best[gene]:
                best[gene] = float(value)
    return sorted(set(genes), key=lambda g: (best.get(g, MISSING_PADJ_VALUE + 1), g))


def quadrant_counts(table: pd.DataFrame) -> Dict[str, int]:
    """Number of genes per quadrant, including empty quadrants."""
    counts = table["quadrant"].value_counts()
    return {q.name: int(counts.get(q.name, 0)) for q in Quadrant}

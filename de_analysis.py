"""
Differential expression analysis using PyDESeq2.

Implements "fit once, contrast many": the negative-binomial GLM is fitted a
single time with the replicate + condition design, and each pairwise
condition contrast is extracted from the same fitted model.
"""

from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple
import logging
import pandas as pd
from pydeseq2.dds import DeseqDataSet
from pydeseq2.ds import DeseqStats

logger = logging.getLogger(__name__)

DEFAULT_DESIGN_FACTORS = ("replicate", "condition")
CONTRAST_FACTOR = "condition"

GENE_ALIASES = [
    "Gene", "GENE", "GeneSymbol", "gene_symbol", "gene_id", "SYMBOL",
    "GeneName", "gene_name", "ensembl_gene_id",
]


def ensure_gene_column(df: pd.DataFrame) -> pd.DataFrame:
    """
    Ensure DataFrame has a 'gene' column.

    Handles gene identifiers stored under a common alias (e.g. "Gene",
    "gene_id", "SYMBOL") or in a named/unnamed string index.

    Args:
        df: DataFrame that may have gene info in index or with non-standard column name

    Returns:
        DataFrame with a lowercase "gene" column containing gene identifiers
    """
    if "gene" in df.columns:
        return df

    for alias in GENE_ALIASES:
        if alias in df.columns:
            return df.rename(columns={alias: "gene"})

    index_name = df.index.name
    if index_name and index_name.lower() in ["gene", "genesymbol", "gene_symbol", "symbol", "geneid", "gene_id"]:
        df = df.reset_index()
        df.columns = ["gene"] + list(df.columns[1:])
        return df

    # Unnamed index holding string identifiers
    if index_name is None and len(df) > 0 and isinstance(df.index[0], str):
        df = df.reset_index()
        df.columns = ["gene"] + list(df.columns[1:])
        return df

    return df


def design_formula(design_factors: Sequence[str]) -> str:
    """Additive design formula, e.g. ("replicate", "condition") -> "~replicate + condition"."""
    if not design_factors:
        raise ValueError("At least one design factor is required")
    return "~" + " + ".join(design_factors)


@dataclass(frozen=True)
class FittedModel:
    """Fitted DESeq2 model and the design it was fitted with."""

    dds: DeseqDataSet
    design: str  # Wilkinson formula, e.g. "~replicate + condition"
    design_factors: Tuple[str, ...]


@dataclass(frozen=True)
class DEResult:
    """Result of a single contrast."""

    results_df: pd.DataFrame  # gene, baseMean, log2FoldChange, lfcSE, stat, pvalue, padj
    comparison: Tuple[str, str]  # (test_condition, reference_condition)
    n_tested: int  # genes with a non-missing padj


class DEAnalysisEngine:
    """Differential expression analysis using PyDESeq2."""

    def fit_model(
        self,
        counts_df: pd.DataFrame,
        design_df: pd.DataFrame,
        design_factors: Sequence[str] = DEFAULT_DESIGN_FACTORS,
    ) -> FittedModel:
        """
        Fit DESeq2 model ONCE.

        Args:
            counts_df: samples x genes DataFrame with integer counts
            design_df: study design indexed by sample id (same order as counts_df)
            design_factors: Columns of design_df in the model; the last one
                is the factor contrasts are taken on

        Returns:
            FittedModel (reuse for multiple contrasts)

        Raises:
            ValueError: If samples of counts and design disagree
        """
        if list(counts_df.index) != list(design_df.index):
            raise ValueError(
                "Sample order of counts and study design differ: "
                f"{list(counts_df.index)[:3]} vs {list(design_df.index)[:3]}"
            )
        missing = [f for f in design_factors if f not in design_df.columns]
        if missing:
            raise ValueError(f"Design factors {missing} not in study design columns")

        metadata = design_df[list(design_factors)].astype(str)
        design = design_formula(design_factors)

        dds = DeseqDataSet(
            counts=counts_df,
            metadata=metadata,
            design=design,
            refit_cooks=True,
        )

        # Size factors, dispersions, GLM
        dds.deseq2()

        return FittedModel(
            dds=dds,
            design=design,
            design_factors=tuple(design_factors),
        )

    def variance_stabilize(self, model: FittedModel) -> pd.DataFrame:
        """
        Variance-stabilizing transform of the fitted model's counts.

        Returns:
            genes x samples DataFrame of VST values
        """
        model.dds.vst(use_design=False)
        vst = pd.DataFrame(
            model.dds.layers["vst_counts"],
            index=model.dds.obs_names,
            columns=model.dds.var_names,
        )
        return vst.T

    def get_comparison(
        self,
        model: FittedModel,
        test_condition: str,
        reference_condition: str,
    ) -> DEResult:
        """
        Compute a single contrast from the fitted model.

        Args:
            model: FittedModel from fit_model()
            test_condition: Numerator condition level
            reference_condition: Denominator condition level

        Returns:
            DEResult for this comparison
        """
        stat_res = DeseqStats(
            model.dds,
            contrast=[CONTRAST_FACTOR, test_condition, reference_condition],
        )
        stat_res.summary()

        results_df = stat_res.results_df.copy()
        results_df.index.name = None
        results_df = results_df.reset_index()
        results_df.columns = ["gene"] + list(results_df.columns[1:])

        return DEResult(
            results_df=results_df,
            comparison=(test_condition, reference_condition),
            n_tested=int(results_df["padj"].notna().sum()),
        )

    def run_all_comparisons(
        self,
        counts_df: pd.DataFrame,
        design_df: pd.DataFrame,
        comparisons: List[Tuple[str, str]],
        design_factors: Sequence[str] = DEFAULT_DESIGN_FACTORS,
    ) -> Tuple[FittedModel, Dict[Tuple[str, str], DEResult]]:
        """
        Fit model once, compute all contrasts.

        Failures are logged and re-raised: a run either produces every
        requested contrast or none.

        Args:
            counts_df: samples x genes DataFrame with integer counts
            design_df: study design indexed by sample id
            comparisons: List of (test, reference) tuples
            design_factors: Columns of design_df in the model

        Returns:
            (fitted model, dict mapping (test, ref) -> DEResult)
        """
        try:
            model = self.fit_model(counts_df, design_df, design_factors)
        except (ValueError, RuntimeError, TypeError) as e:
            logger.error(f"DE analysis model fit failed: {str(e)}", exc_info=True)
            raise

        results = {}
        for test_cond, ref_cond in comparisons:
            try:
                results[(test_cond, ref_cond)] = self.get_comparison(
                    model, test_cond, ref_cond
                )
            except (ValueError, RuntimeError, TypeError, KeyError) as e:
                logger.error(
                    f"DE analysis comparison ({test_cond} vs {ref_cond}) failed: {str(e)}",
                    exc_info=True,
                )
                raise

        return model, results

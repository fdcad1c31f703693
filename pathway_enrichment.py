"""
Pathway Enrichment Analysis Module

Over-representation testing of the significant gene set using the GSEApy
Enrichr API (GO Biological Process by default).

Classes:
    PathwayEnrichment: Main class for pathway enrichment analysis
"""

import logging
import gseapy as gp
import pandas as pd
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_GENE_SETS = ["GO_Biological_Process_2023"]
RESULT_COLUMNS = ["Term", "Overlap", "P-value", "Adjusted P-value", "Genes"]


class PathwayEnrichment:
    """
    Pathway enrichment analysis using GSEApy Enrichr API.

    Supports:
    - GO Biological Process enrichment (or any Enrichr library)
    - Graceful offline handling
    """

    def __init__(self, top_n: int = 20, max_genes: Optional[int] = None):
        """
        Args:
            top_n: Number of terms kept in the formatted result
            max_genes: Optional cap on submitted genes (None submits all).
                When set, gene_list must already be ranked most significant first.
        """
        self.top_n = top_n
        self.max_genes = max_genes

    def run_enrichment(
        self,
        gene_list: List[str],
        gene_sets: Optional[List[str]] = None,
        organism: str = "Human",
    ) -> Tuple[pd.DataFrame, Optional[str]]:
        """
        Run Enrichr API query for pathway enrichment.

        Args:
            gene_list: Gene symbols (the significant gene set), ranked most
                significant first when max_genes is set
            gene_sets: Enrichr libraries (default ['GO_Biological_Process_2023'])
            organism: Organism name (default 'Human')

        Returns:
            Tuple of (results_df, error_message)
            - results_df: DataFrame with columns: Term, Overlap, P-value, Adjusted P-value, Genes
            - error_message: None if successful, error string if API fails
        """
        if not gene_list:
            logger.warning("Skipping enrichment: empty gene list")
            return pd.DataFrame(columns=RESULT_COLUMNS), "No genes provided for enrichment"

        gene_sets = gene_sets or DEFAULT_GENE_SETS
        genes = list(gene_list)
        if self.max_genes is not None and len(genes) > self.max_genes:
            logger.warning(
                "Submitting the top %d of %d significant genes to Enrichr",
                self.max_genes,
                len(genes),
            )
            genes = genes[: self.max_genes]

        try:
            enr = gp.enrichr(
                gene_list=genes,
                gene_sets=gene_sets,
                organism=organism,
                outdir=None,  # Don't save to disk
                cutoff=0.05,
            )
            results_df = self.format_results(enr)
        except Exception as e:
            error_msg = f"Enrichment analysis failed (possibly offline): {str(e)}"
            logger.warning(error_msg)
            return pd.DataFrame(columns=RESULT_COLUMNS), error_msg

        logger.info(
            "Enrichment of %d genes against %s: %d terms",
            len(genes),
            ", ".join(gene_sets),
            len(results_df),
        )
        return results_df, None

    def format_results(self, enr_results) -> pd.DataFrame:
        """
        Standardize enrichr results to consistent format.

        Args:
            enr_results: GSEApy enrichr result object

        Returns:
            Top N terms sorted by Adjusted P-value, columns as RESULT_COLUMNS
            (Overlap is left empty when Enrichr does not report it)
        """
        results_df = enr_results.results

        standardized = results_df.reindex(columns=RESULT_COLUMNS).copy()
        standardized = standardized.sort_values("Adjusted P-value")

        return standardized.head(self.top_n).reset_index(drop=True)

"""
Interactive visualizations for the contrast results using Plotly.

Provides quadrant-colored volcano plots, clustered heatmaps of the
variance-stabilized significant genes, and PCA plots.
"""

from typing import Dict, List, Optional
import pandas as pd
import numpy as np
import plotly.graph_objects as go
import plotly.express as px
from scipy.cluster.hierarchy import linkage, leaves_list
from scipy.spatial.distance import pdist
from sklearn.decomposition import PCA
from contrast_evaluator import EvaluatedContrast, Quadrant

QUADRANT_COLORS = {
    Quadrant.NEITHER.name: "lightgray",
    Quadrant.SIGNIFICANT_ONLY.name: "steelblue",
    Quadrant.LARGE_EFFECT_ONLY.name: "orange",
    Quadrant.BOTH.name: "red",
}


def create_volcano_plot(
    contrast: EvaluatedContrast, top_n_labels: int = 10
) -> go.Figure:
    """
    Create interactive volcano plot from an evaluated contrast.

    Points are colored by quadrant; dashed lines mark the thresholds.

    Args:
        contrast: EvaluatedContrast (padj already filled, quadrant assigned)
        top_n_labels: Number of most significant BOTH genes to label

    Returns:
        Plotly Figure object
    """
    df = contrast.table
    if df.empty:
        raise ValueError(
            "Cannot create volcano plot: contrast table is empty. "
            "Ensure the differential expression analysis produced results."
        )

    df = df.copy()
    df["-log10_padj"] = -np.log10(df["padj"].clip(lower=1e-300))  # Clip to avoid inf

    test, ref = contrast.comparison
    fig = px.scatter(
        df,
        x="log2FoldChange",
        y="-log10_padj",
        color="quadrant",
        hover_name="gene",
        hover_data={
            "log2FoldChange": ":.2f",
            "padj": ":.2e",
            "-log10_padj": False,
            "quadrant": False,
        },
        color_discrete_map=QUADRANT_COLORS,
        category_orders={"quadrant": list(QUADRANT_COLORS)},
        labels={"log2FoldChange": "log₂(Fold Change)", "-log10_padj": "-log₁₀(padj)"},
    )

    fig.add_hline(
        y=-np.log10(max(contrast.significance_threshold, 1e-300)),
        line_dash="dash",
        line_color="gray",
    )
    fig.add_vline(x=contrast.effect_threshold, line_dash="dash", line_color="gray")
    fig.add_vline(x=-contrast.effect_threshold, line_dash="dash", line_color="gray")

    if top_n_labels > 0:
        top_genes = df[df["quadrant"] == Quadrant.BOTH.name].nsmallest(
            top_n_labels, "padj"
        )
        if not top_genes.empty:
            fig.add_trace(
                go.Scatter(
                    x=top_genes["log2FoldChange"],
                    y=top_genes["-log10_padj"],
                    mode="text",
                    text=top_genes["gene"],
                    textposition="top center",
                    textfont=dict(size=9),
                    showlegend=False,
                    hoverinfo="skip",
                )
            )

    fig.update_layout(title=f"Volcano Plot: {test} vs {ref}", showlegend=True)
    return fig


def create_clustered_heatmap(
    vst_df: pd.DataFrame,
    design_df: pd.DataFrame,
    genes: List[str],
    top_n_genes: Optional[int] = 50,
    z_score: bool = True,
) -> go.Figure:
    """
    Heatmap of variance-stabilized expression for the significant genes.

    Args:
        vst_df: genes x samples VST matrix
        design_df: study design indexed by sample id (condition column used)
        genes: Significant gene set to display
        top_n_genes: Keep this many genes with highest VST variance (None = all)
        z_score: Z-score each gene across samples

    Returns:
        Plotly Figure object

    Note: Only rows (genes) are clustered; samples are grouped by condition.
    """
    if vst_df is None or vst_df.empty:
        raise ValueError("Cannot create heatmap: VST matrix is empty or None.")

    present = [g for g in genes if g in vst_df.index]
    if not present:
        raise ValueError(
            "Cannot create heatmap: none of the significant genes are in the VST matrix."
        )

    plot_data = vst_df.loc[present]
    if top_n_genes is not None and len(plot_data) > top_n_genes:
        top = plot_data.var(axis=1).nlargest(top_n_genes).index
        plot_data = plot_data.loc[top]

    if z_score:
        std = plot_data.std(axis=1).replace(0, 1)
        plot_data = plot_data.sub(plot_data.mean(axis=1), axis=0).div(std, axis=0)

    conditions: Dict[str, str] = design_df["condition"].astype(str).to_dict()
    sample_order = sorted(plot_data.columns, key=lambda s: conditions.get(s, ""))
    plot_data = plot_data[sample_order]

    if len(plot_data) > 1:
        linkage_matrix = linkage(
            pdist(plot_data.values, metric="euclidean"), method="average"
        )
        plot_data = plot_data.iloc[leaves_list(linkage_matrix)]

    x_labels = [f"{s} ({conditions.get(s, '?')})" for s in plot_data.columns]
    fig = go.Figure(
        data=go.Heatmap(
            z=plot_data.values,
            x=x_labels,
            y=plot_data.index,
            colorscale="RdBu_r",
            zmid=0 if z_score else None,
            hovertemplate="Gene: %{y}<br>Sample: %{x}<br>Value: %{z:.2f}<extra></extra>",
        )
    )
    fig.update_layout(
        title=f"Significant Genes (VST, {len(plot_data)} genes)",
        xaxis_title="Samples",
        yaxis_title="Genes",
        height=max(400, len(plot_data) * 10),
    )
    return fig


def create_pca_plot(vst_df: pd.DataFrame, design_df: pd.DataFrame) -> go.Figure:
    """
    PCA of samples on the VST matrix, colored by condition.

    Args:
        vst_df: genes x samples VST matrix
        design_df: study design indexed by sample id

    Returns:
        Plotly Figure object
    """
    if vst_df is None or vst_df.empty:
        raise ValueError("Cannot create PCA plot: VST matrix is empty or None.")
    if vst_df.shape[1] < 2:
        raise ValueError(
            f"Cannot create PCA plot: requires at least 2 samples, got {vst_df.shape[1]}."
        )

    samples_x_genes = vst_df.T
    pca = PCA(n_components=2)
    coords = pca.fit_transform(samples_x_genes.values)
    explained = pca.explained_variance_ratio_ * 100

    pca_df = pd.DataFrame(coords, columns=["PC1", "PC2"], index=samples_x_genes.index)
    pca_df["condition"] = design_df.loc[pca_df.index, "condition"].astype(str).values
    pca_df["replicate"] = design_df.loc[pca_df.index, "replicate"].astype(str).values
    pca_df["sample"] = pca_df.index

    fig = px.scatter(
        pca_df,
        x="PC1",
        y="PC2",
        color="condition",
        symbol="replicate",
        hover_name="sample",
        labels={
            "PC1": f"PC1 ({explained[0]:.1f}%)",
            "PC2": f"PC2 ({explained[1]:.1f}%)",
        },
    )
    fig.update_layout(title="PCA (VST)")
    return fig

"""
Pytest configuration and fixtures for the series analysis tests.
"""

from unittest.mock import MagicMock
import pytest
import pandas as pd
import numpy as np
import h5py


# ============================================================================
# Sample Data Fixtures
# ============================================================================

SERIES_ID = "GSE100"

SERIES_TITLES = [
    "Control_6W_A", "Control_6W_B", "Control_6W_C",
    "Ni_6W_A", "Ni_6W_B", "Ni_6W_C",
    "Ni_6W+2W_A", "Ni_6W+2W_B", "Ni_6W+2W_C",
]
SERIES_ACCESSIONS = [f"GSM{i + 1:03d}" for i in range(len(SERIES_TITLES))]

# Genes up 8x in Ni_6W and in Ni_6W+2W respectively (G2, G3 in both)
NI_6W_UP = ["G0", "G1", "G2", "G3"]
NI_6W_2W_UP = ["G2", "G3", "G4", "G5"]


def _series_counts() -> pd.DataFrame:
    """genes x samples counts for SERIES_TITLES, before dedup/filtering."""
    genes = [f"G{i}" for i in range(14)] + ["LOW", "DUPL", "DUPL"]
    values = np.full((len(genes), len(SERIES_ACCESSIONS)), 100, dtype=np.int64)
    values[genes.index("LOW"), :] = 0
    values[genes.index("LOW"), 0] = 3
    values[-2:, :] = 50
    for j, title in enumerate(SERIES_TITLES):
        condition = title.rsplit("_", 1)[0]
        if condition == "Ni_6W":
            up = NI_6W_UP
        elif condition == "Ni_6W+2W":
            up = NI_6W_2W_UP
        else:
            up = []
        for gene in up:
            values[genes.index(gene), j] = 800
    return pd.DataFrame(values, index=genes, columns=SERIES_ACCESSIONS)


@pytest.fixture
def series_counts():
    return _series_counts()


@pytest.fixture
def archs4_h5(tmp_path):
    """
    Small ARCHS4-layout HDF5 file: 9 samples in GSE100 (between two GSE200
    samples), plus 1 sample listed under two series as "GSE300,GSE999".
    """
    counts = _series_counts()
    n_genes = len(counts)
    matrix = np.hstack(
        [
            np.full((n_genes, 1), 20),
            counts.to_numpy(),
            np.full((n_genes, 1), 20),
            np.full((n_genes, 1), 30),
        ]
    )

    genes = list(counts.index)
    accessions = ["GSM900"] + SERIES_ACCESSIONS + ["GSM901", "GSM950"]
    series = ["GSE200"] + [SERIES_ID] * len(SERIES_ACCESSIONS) + ["GSE200", "GSE300,GSE999"]
    titles = ["other_A"] + SERIES_TITLES + ["other_B", "shared_A"]

    h5_path = tmp_path / "human_gene_v2.latest.h5"
    with h5py.File(str(h5_path), "w") as f:

        def _encode_list(vals):
            return [v.encode("utf-8") for v in vals]

        genes_grp = f.create_group("meta/genes")
        genes_grp.create_dataset("symbol", data=_encode_list(genes))
        samples_grp = f.create_group("meta/samples")
        samples_grp.create_dataset("geo_accession", data=_encode_list(accessions))
        samples_grp.create_dataset("series_id", data=_encode_list(series))
        samples_grp.create_dataset("title", data=_encode_list(titles))
        f.create_dataset("data/expression", data=matrix.astype(np.uint32))
    return h5_path


@pytest.fixture
def sample_design_df():
    """Study design matching SERIES_TITLES."""
    conditions = [t.rsplit("_", 1)[0] for t in SERIES_TITLES]
    replicates = [t.rsplit("_", 1)[1] for t in SERIES_TITLES]
    return pd.DataFrame(
        {
            "condition": pd.Categorical(conditions),
            "replicate": pd.Categorical(replicates),
        },
        index=pd.Index(SERIES_ACCESSIONS, name="sample_id"),
    )


@pytest.fixture
def sample_de_results_df():
    """
    Differential expression results with typical DESeq2 columns, including
    genes PyDESeq2 left untested (padj NaN).
    """
    np.random.seed(42)
    n_genes = 100
    genes = [f"gene_{i + 1}" for i in range(n_genes)]

    df = pd.DataFrame(
        {
            "gene": genes,
            "baseMean": np.random.uniform(10, 1000, n_genes),
            "log2FoldChange": np.random.normal(0, 2, n_genes),
            "lfcSE": np.random.uniform(0.1, 0.5, n_genes),
            "stat": np.random.normal(0, 3, n_genes),
            "pvalue": np.random.uniform(0, 1, n_genes),
            "padj": np.random.uniform(0.2, 1, n_genes),
        }
    )

    # Ensure some significant genes
    df.loc[:10, "padj"] = np.random.uniform(0, 0.05, 11)
    df.loc[:10, "log2FoldChange"] = np.random.uniform(1.5, 3, 11)
    df.loc[90:, "padj"] = np.nan

    return df


# ============================================================================
# External API Mocking Fixtures
# ============================================================================


class FakeDeseqDataSet:
    """Stand-in for pydeseq2.dds.DeseqDataSet with unit size factors."""

    def __init__(self, counts, metadata, design, refit_cooks=True):
        self.counts = counts
        self.obs = metadata
        self.design = design
        self.obs_names = counts.index
        self.var_names = counts.columns
        self.layers = {}
        self.vst_calls = 0

    def deseq2(self):
        self.layers["normed_counts"] = self.counts.to_numpy(dtype=float)

    def vst(self, use_design=False):
        self.vst_calls += 1
        self.layers["vst_counts"] = np.log2(self.layers["normed_counts"] + 1)


class FakeDeseqStats:
    """Stand-in for pydeseq2.ds.DeseqStats: log2 ratio of group means."""

    def __init__(self, dds, contrast):
        factor, test, ref = contrast
        levels = set(dds.obs[factor])
        if test not in levels or ref not in levels:
            raise KeyError(f"Unknown contrast levels {test}/{ref}")
        self.dds = dds
        self.contrast = contrast
        self.results_df = None

    def summary(self):
        factor, test, ref = self.contrast
        normed = pd.DataFrame(
            self.dds.layers["normed_counts"],
            index=self.dds.obs_names,
            columns=self.dds.var_names,
        )
        groups = self.dds.obs[factor]
        mean_test = normed.loc[groups == test].mean()
        mean_ref = normed.loc[groups == ref].mean()
        lfc = np.log2((mean_test + 1) / (mean_ref + 1))
        significant = lfc.abs() >= 1
        self.results_df = pd.DataFrame(
            {
                "baseMean": normed.mean(),
                "log2FoldChange": lfc,
                "lfcSE": 0.1,
                "stat": lfc / 0.1,
                "pvalue": np.where(significant, 1e-4, 0.6),
                "padj": np.where(significant, 1e-3, 0.8),
            },
            index=self.dds.var_names,
        )


@pytest.fixture
def fake_pydeseq2(monkeypatch):
    """Replace PyDESeq2 classes used by de_analysis with fast fakes."""
    monkeypatch.setattr("de_analysis.DeseqDataSet", FakeDeseqDataSet)
    monkeypatch.setattr("de_analysis.DeseqStats", FakeDeseqStats)
    return {"dds": FakeDeseqDataSet, "ds": FakeDeseqStats}


@pytest.fixture
def mock_gseapy(monkeypatch):
    """Mock gseapy module for enrichment analysis testing."""
    mock_gp = MagicMock()

    mock_enrichr_result = MagicMock()
    mock_enrichr_result.results = pd.DataFrame(
        {
            "Term": ["immune response", "cell cycle", "apoptosis"],
            "Overlap": ["3/120", "2/300", "3/250"],
            "P-value": [0.001, 0.005, 0.01],
            "Adjusted P-value": [0.03, 0.01, 0.02],
            "Odds Ratio": [2.5, 2.0, 1.8],
            "Combined Score": [50, 40, 35],
            "Genes": ["G0;G1;G2", "G3;G4", "G5;G2;G1"],
        }
    )
    mock_gp.enrichr = MagicMock(return_value=mock_enrichr_result)

    monkeypatch.setattr("pathway_enrichment.gp", mock_gp)
    return mock_gp

"""
ARCHS4 expression matrix access.

Reads the subset of an ARCHS4 HDF5 file belonging to one GEO series.

HDF5 layout (ARCHS4 v2):
    meta/genes/symbol           gene identifiers
    meta/samples/series_id      series membership per sample (may list several)
    meta/samples/geo_accession  GSM accession per sample
    meta/samples/title          free-text sample title
    data/expression             genes x samples integer counts

Canonical output: genes x samples DataFrame (gene ids as index, accessions as columns)
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import logging
import h5py
import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

H5_SAMPLE_FIELDS = {
    "series_id": "meta/samples/series_id",
    "geo_accession": "meta/samples/geo_accession",
    "title": "meta/samples/title",
}
H5_GENE_GROUP = "meta/genes"
H5_EXPRESSION = "data/expression"

DEFAULT_GENE_FIELD = "symbol"
DEFAULT_MIN_TOTAL_COUNT = 10


class EmptySampleSelection(Exception):
    """Raised when a series filter matches no samples."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message: str = message
        self.details: Dict[str, Any] = details or {}
        super().__init__(self.message)


@dataclass(frozen=True)
class ExpressionDataset:
    """Counts and sample metadata for one series."""

    counts: pd.DataFrame  # genes x samples, integer counts
    sample_ids: List[str]  # column order of counts
    titles: List[str]  # aligned with sample_ids
    series_id: str

    @property
    def n_genes(self) -> int:
        return self.counts.shape[0]

    @property
    def n_samples(self) -> int:
        return self.counts.shape[1]


def _decode(value) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _read_strings(f: h5py.File, path: str) -> List[str]:
    if path not in f:
        raise KeyError(f"HDF5 dataset not found: {path}")
    return [_decode(v) for v in f[path][:]]


def load_series(
    h5_path: Union[str, Path],
    series_id: str,
    gene_field: str = DEFAULT_GENE_FIELD,
) -> ExpressionDataset:
    """
    Load the count matrix and titles for every sample of a GEO series.

    A sample belongs to the series when its series_id label contains
    series_id as a substring (ARCHS4 stores comma-joined lists for samples
    shared between series).

    Args:
        h5_path: Path to the ARCHS4 HDF5 file
        series_id: GEO series accession (e.g. "GSE123456")
        gene_field: Dataset name under meta/genes holding gene identifiers

    Returns:
        ExpressionDataset with genes x samples counts

    Raises:
        FileNotFoundError: If h5_path does not exist
        KeyError: If a required HDF5 dataset is missing
        EmptySampleSelection: If no sample matches series_id
    """
    h5_path = Path(h5_path)
    if not h5_path.exists():
        raise FileNotFoundError(f"ARCHS4 data file not found: {h5_path}")
    if not series_id:
        raise ValueError("series_id must be a non-empty string")

    logger.info("Loading series %s from %s", series_id, h5_path)

    with h5py.File(str(h5_path), "r") as f:
        series_labels = _read_strings(f, H5_SAMPLE_FIELDS["series_id"])
        # Ascending indices, as required by h5py fancy indexing
        sample_idx = np.array(
            [i for i, label in enumerate(series_labels) if series_id in label],
            dtype=int,
        )
        if len(sample_idx) == 0:
            raise EmptySampleSelection(
                f"No samples found for series {series_id}",
                details={"series_id": series_id, "n_samples_searched": len(series_labels)},
            )

        accessions = _read_strings(f, H5_SAMPLE_FIELDS["geo_accession"])
        titles = _read_strings(f, H5_SAMPLE_FIELDS["title"])
        genes = _read_strings(f, f"{H5_GENE_GROUP}/{gene_field}")

        if H5_EXPRESSION not in f:
            raise KeyError(f"HDF5 dataset not found: {H5_EXPRESSION}")
        matrix = f[H5_EXPRESSION][:, sample_idx]

    sample_ids = [accessions[i] for i in sample_idx]
    counts = pd.DataFrame(
        np.asarray(matrix, dtype=np.int64),
        index=pd.Index(genes, name="gene"),
        columns=pd.Index(sample_ids, name="sample_id"),
    )

    # Some gene symbols map to several Ensembl ids; keep row labels unique
    if counts.index.has_duplicates:
        n_dup = int(counts.index.duplicated().sum())
        logger.info("Collapsing %d duplicated gene identifiers by summing counts", n_dup)
        counts = counts.groupby(level=0, sort=False).sum()
        counts.index.name = "gene"

    logger.info("Loaded %d genes x %d samples", counts.shape[0], counts.shape[1])

    return ExpressionDataset(
        counts=counts,
        sample_ids=sample_ids,
        titles=[titles[i] for i in sample_idx],
        series_id=series_id,
    )


def filter_low_count_genes(
    dataset: ExpressionDataset, min_total_count: int = DEFAULT_MIN_TOTAL_COUNT
) -> ExpressionDataset:
    """
    Drop genes whose total count across all samples is below min_total_count.

    Returns a new ExpressionDataset; sample columns are unchanged.
    """
    keep = dataset.counts.sum(axis=1) >= min_total_count
    filtered = dataset.counts.loc[keep]
    logger.info(
        "Low-count filter (total >= %d): kept %d of %d genes",
        min_total_count,
        filtered.shape[0],
        dataset.n_genes,
    )
    return ExpressionDataset(
        counts=filtered,
        sample_ids=list(dataset.sample_ids),
        titles=list(dataset.titles),
        series_id=dataset.series_id,
    )

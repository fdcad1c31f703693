"""Tests for ARCHS4 HDF5 series loading and low-count filtering."""

import pytest
import numpy as np
from archs4_loader import (
    EmptySampleSelection,
    ExpressionDataset,
    filter_low_count_genes,
    load_series,
)
from conftest import SERIES_ACCESSIONS, SERIES_ID, SERIES_TITLES


def test_load_series_selects_only_series_samples(archs4_h5):
    dataset = load_series(archs4_h5, SERIES_ID)

    assert isinstance(dataset, ExpressionDataset)
    assert dataset.sample_ids == SERIES_ACCESSIONS
    assert dataset.titles == SERIES_TITLES
    assert list(dataset.counts.columns) == SERIES_ACCESSIONS
    assert dataset.series_id == SERIES_ID


def test_load_series_counts_are_integers_genes_by_samples(archs4_h5, series_counts):
    dataset = load_series(archs4_h5, SERIES_ID)

    assert np.issubdtype(dataset.counts.dtypes.iloc[0], np.integer)
    assert dataset.counts.loc["G0", "GSM004"] == 800
    assert dataset.counts.loc["G0", "GSM001"] == 100
    assert dataset.n_samples == len(SERIES_ACCESSIONS)


def test_duplicate_gene_ids_are_summed(archs4_h5):
    dataset = load_series(archs4_h5, SERIES_ID)

    assert dataset.counts.index.is_unique
    assert dataset.counts.loc["DUPL", "GSM001"] == 100
    assert dataset.n_genes == 16


def test_series_match_is_substring(archs4_h5):
    dataset = load_series(archs4_h5, "GSE999")
    assert dataset.sample_ids == ["GSM950"]
    assert dataset.titles == ["shared_A"]


def test_empty_selection_raises(archs4_h5):
    with pytest.raises(EmptySampleSelection) as exc_info:
        load_series(archs4_h5, "GSE404")
    assert exc_info.value.details["series_id"] == "GSE404"


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_series(tmp_path / "missing.h5", SERIES_ID)


def test_missing_gene_field_raises(archs4_h5):
    with pytest.raises(KeyError, match="meta/genes/ensembl_gene"):
        load_series(archs4_h5, SERIES_ID, gene_field="ensembl_gene")


def test_filter_low_count_genes_returns_new_dataset(archs4_h5):
    dataset = load_series(archs4_h5, SERIES_ID)
    filtered = filter_low_count_genes(dataset, min_total_count=10)

    assert "LOW" in dataset.counts.index
    assert "LOW" not in filtered.counts.index
    assert filtered.n_genes == dataset.n_genes - 1
    assert filtered.sample_ids == dataset.sample_ids
    assert list(filtered.counts.columns) == list(dataset.counts.columns)


def test_filter_low_count_threshold_is_inclusive(archs4_h5):
    dataset = load_series(archs4_h5, SERIES_ID)
    # LOW totals exactly 3
    assert "LOW" in filter_low_count_genes(dataset, min_total_count=3).counts.index
    assert "LOW" not in filter_low_count_genes(dataset, min_total_count=4).counts.index

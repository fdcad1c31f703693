"""
Study design derivation from free-text sample titles.

GEO sample titles in a series usually encode the experimental condition and
the replicate label, e.g. "Ni_6W+2W_A" -> condition "Ni_6W+2W", replicate "A".
The condition vocabulary is never hard-coded: it is whatever precedes the
final separator.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
import logging
import pandas as pd

logger = logging.getLogger(__name__)

DEFAULT_SEPARATOR = "_"


class MalformedMetadata(Exception):
    """Raised when a sample title cannot be split into condition and replicate."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message: str = message
        self.details: Dict[str, Any] = details or {}
        super().__init__(self.message)


@dataclass(frozen=True)
class SampleRecord:
    """One row of the study design table."""

    id: str  # GEO sample accession (GSM...)
    condition: str
    replicate: str


@dataclass(frozen=True)
class ParseOutcome:
    """Tagged result of parsing a single sample title."""

    ok: bool
    record: Optional[SampleRecord] = None
    error: Optional[str] = None


def parse_sample_title(
    title: str, sample_id: str, separator: str = DEFAULT_SEPARATOR
) -> ParseOutcome:
    """
    Split a sample title on its final separator.

    Args:
        title: Free-text sample title (e.g. "Control_6W_B")
        sample_id: Accession of the sample the title belongs to
        separator: Delimiter between condition and replicate (default "_")

    Returns:
        ParseOutcome with ok=True and a SampleRecord, or ok=False and an
        error description. Never raises for bad titles.
    """
    if not separator:
        raise ValueError("separator must be a non-empty string")

    title = title.strip()
    condition, sep, replicate = title.rpartition(separator)

    if not sep:
        return ParseOutcome(
            ok=False, error=f"no '{separator}' separator in title {title!r}"
        )
    if not condition:
        return ParseOutcome(ok=False, error=f"empty condition in title {title!r}")
    if not replicate:
        return ParseOutcome(ok=False, error=f"empty replicate in title {title!r}")

    return ParseOutcome(
        ok=True,
        record=SampleRecord(id=sample_id, condition=condition, replicate=replicate),
    )


def build_study_design(
    titles: Sequence[str],
    sample_ids: Sequence[str],
    separator: str = DEFAULT_SEPARATOR,
) -> pd.DataFrame:
    """
    Build the study design table from parallel title/accession sequences.

    Args:
        titles: Per-sample free-text titles
        sample_ids: Per-sample accessions, order-aligned with titles
        separator: Delimiter between condition and replicate

    Returns:
        DataFrame indexed by sample id with categorical columns
        "condition" and "replicate", in input order

    Raises:
        ValueError: If inputs are empty, of different lengths, or ids repeat
        MalformedMetadata: If any title cannot be parsed (all failures listed)
    """
    if len(titles) == 0 or len(sample_ids) == 0:
        raise ValueError("titles and sample_ids must be non-empty")
    if len(titles) != len(sample_ids):
        raise ValueError(
            f"titles ({len(titles)}) and sample_ids ({len(sample_ids)}) differ in length"
        )
    if len(set(sample_ids)) != len(sample_ids):
        raise ValueError("sample_ids must be unique")

    records: List[SampleRecord] = []
    failures: Dict[str, str] = {}
    for title, sample_id in zip(titles, sample_ids):
        outcome = parse_sample_title(title, sample_id, separator)
        if outcome.ok:
            records.append(outcome.record)
        else:
            failures[sample_id] = outcome.error

    if failures:
        first = next(iter(failures.items()))
        raise MalformedMetadata(
            f"{len(failures)} of {len(sample_ids)} sample titles could not be parsed "
            f"(first: {first[0]}: {first[1]})",
            details={"failures": failures, "separator": separator},
        )

    design = pd.DataFrame(
        {
            "condition": [r.condition for r in records],
            "replicate": [r.replicate for r in records],
        },
        index=pd.Index([r.id for r in records], name="sample_id"),
    )
    design["condition"] = design["condition"].astype("category")
    design["replicate"] = design["replicate"].astype("category")

    logger.info(
        "Study design: %d samples, conditions=%s",
        len(design),
        list(design["condition"].cat.categories),
    )
    return design


def records_from_design(design: pd.DataFrame) -> List[SampleRecord]:
    """Convert a study design table back into SampleRecords."""
    return [
        SampleRecord(
            id=str(sample_id),
            condition=str(row["condition"]),
            replicate=str(row["replicate"]),
        )
        for sample_id, row in design.iterrows()
    ]


def summarize_design(design: pd.DataFrame) -> pd.DataFrame:
    """Condition x replicate sample counts."""
    return pd.crosstab(design["condition"], design["replicate"])

"""
Analysis configuration loaded from YAML.

See config/analysis.yaml for the expected layout.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
import yaml

from archs4_loader import DEFAULT_GENE_FIELD, DEFAULT_MIN_TOTAL_COUNT
from contrast_evaluator import DEFAULT_EFFECT_THRESHOLD, DEFAULT_SIGNIFICANCE_THRESHOLD
from de_analysis import DEFAULT_DESIGN_FACTORS, CONTRAST_FACTOR
from study_design import DEFAULT_SEPARATOR

DEFAULT_CONFIG_PATH = "config/analysis.yaml"


class ConfigError(Exception):
    """Raised when the analysis configuration is incomplete or invalid."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message: str = message
        self.details: Dict[str, Any] = details or {}
        super().__init__(self.message)


@dataclass(frozen=True)
class AnalysisConfig:
    """Parameters of one analysis run."""

    h5_path: Path
    series_id: str
    contrasts: List[Tuple[str, str]]
    gene_field: str = DEFAULT_GENE_FIELD
    min_total_count: int = DEFAULT_MIN_TOTAL_COUNT
    title_separator: str = DEFAULT_SEPARATOR
    design_factors: Tuple[str, ...] = DEFAULT_DESIGN_FACTORS
    effect_threshold: float = DEFAULT_EFFECT_THRESHOLD
    significance_threshold: float = DEFAULT_SIGNIFICANCE_THRESHOLD
    enrichment_gene_sets: List[str] = field(
        default_factory=lambda: ["GO_Biological_Process_2023"]
    )
    organism: str = "Human"
    heatmap_top_n: int = 50
    output_path: Optional[Path] = None

    def __post_init__(self):
        if not self.series_id:
            raise ConfigError("series_id must not be empty")
        if not self.contrasts:
            raise ConfigError("At least one contrast is required")
        for pair in self.contrasts:
            if len(pair) != 2 or pair[0] == pair[1]:
                raise ConfigError(
                    f"Contrast must be two distinct conditions, got {pair}",
                    details={"contrast": pair},
                )
        if not self.title_separator:
            raise ConfigError("title_separator must not be empty")
        if CONTRAST_FACTOR not in self.design_factors:
            raise ConfigError(
                f"design factors must include '{CONTRAST_FACTOR}', got {list(self.design_factors)}"
            )
        if self.effect_threshold < 0:
            raise ConfigError(f"effect threshold must be >= 0, got {self.effect_threshold}")
        if not 0 <= self.significance_threshold <= 1:
            raise ConfigError(
                f"significance threshold must be within [0, 1], got {self.significance_threshold}"
            )
        if self.min_total_count < 0:
            raise ConfigError(f"min_total_count must be >= 0, got {self.min_total_count}")


def _typed(section: Dict[str, Any], section_name: str, key: str, default: Any, cast):
    """Read section[key] (or default) converted with cast; ConfigError on bad values."""
    value = section.get(key, default)
    try:
        return cast(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(
            f"Invalid value for {section_name}.{key}: {value!r} ({e})",
            details={"key": f"{section_name}.{key}", "value": value},
        ) from e


def config_from_dict(config: Dict[str, Any]) -> AnalysisConfig:
    """
    Build an AnalysisConfig from the nested YAML structure.

    Raises:
        ConfigError: If required keys are missing or values have the wrong type
    """
    data = config.get("data") or {}
    design = config.get("design") or {}
    thresholds = config.get("thresholds") or {}
    enrichment = config.get("enrichment") or {}
    report = config.get("report") or {}

    for key in ("h5_path", "series_id"):
        if key not in data:
            raise ConfigError(f"Missing required key data.{key}", details={"key": key})
    if "contrasts" not in config:
        raise ConfigError("Missing required key contrasts", details={"key": "contrasts"})

    output_path = report.get("output_path")

    return AnalysisConfig(
        h5_path=Path(data["h5_path"]),
        series_id=str(data["series_id"]),
        contrasts=[tuple(str(c) for c in pair) for pair in config["contrasts"] or []],
        gene_field=data.get("gene_field", DEFAULT_GENE_FIELD),
        min_total_count=_typed(
            data, "data", "min_total_count", DEFAULT_MIN_TOTAL_COUNT, int
        ),
        title_separator=str(design.get("title_separator", DEFAULT_SEPARATOR)),
        design_factors=tuple(design.get("factors", DEFAULT_DESIGN_FACTORS)),
        effect_threshold=_typed(
            thresholds, "thresholds", "effect", DEFAULT_EFFECT_THRESHOLD, float
        ),
        significance_threshold=_typed(
            thresholds, "thresholds", "significance", DEFAULT_SIGNIFICANCE_THRESHOLD, float
        ),
        enrichment_gene_sets=list(
            enrichment.get("gene_sets", ["GO_Biological_Process_2023"])
        ),
        organism=enrichment.get("organism", "Human"),
        heatmap_top_n=_typed(report, "report", "heatmap_top_n", 50, int),
        output_path=Path(output_path) if output_path else None,
    )


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> AnalysisConfig:
    """
    Load analysis configuration from a YAML file.

    Args:
        config_path: Path to YAML config file

    Raises:
        FileNotFoundError: If the file does not exist
        ConfigError: If the content is not a mapping or is incomplete
    """
    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Analysis config not found: {config_path}")

    with open(config_file, "r") as f:
        config = yaml.safe_load(f)

    if not isinstance(config, dict):
        raise ConfigError(f"Analysis config must be a mapping: {config_path}")

    return config_from_dict(config)

"""
Excel export module for the contrast analysis results.

Exports a multi-sheet Excel workbook with the classified contrast tables,
significant genes, enrichment results, study design, and run settings.
Figures are written as standalone HTML files next to the workbook.
"""

from dataclasses import dataclass, field
from typing import Dict, Tuple, Optional, List, Any, Set
from datetime import datetime
from pathlib import Path
import logging
import re
import sys
import pandas as pd
import plotly.graph_objects as go
from contrast_evaluator import EvaluatedContrast, quadrant_counts

logger = logging.getLogger(__name__)

FIXED_SHEETS = ["Significant Union", "GO Enrichment", "Study Design", "Settings"]


@dataclass
class ExportData:
    """Complete export data bundle - constructed by the pipeline before export."""

    series_id: str
    design: pd.DataFrame  # study design indexed by sample id
    contrasts: Dict[Tuple[str, str], EvaluatedContrast]
    significant_genes: List[str]  # union across contrasts
    enrichment_results: pd.DataFrame  # Term, Overlap, P-value, Adjusted P-value, Genes
    enrichment_error: Optional[str]
    settings: Dict[str, Any]  # thresholds, design factors, gene sets, ...
    figures: Dict[str, go.Figure] = field(default_factory=dict)  # "volcano_<test>_vs_<ref>", "heatmap", "pca"


class ExportEngine:
    """Excel export engine for contrast analysis results."""

    def sanitize_sheet_name(self, name: str, max_length: int = 31) -> str:
        """
        Sanitize sheet name for Excel compatibility.

        Excel sheet name rules:
        - Max 31 characters
        - Cannot contain: [ ] : * ? / \\
        - Cannot start or end with '

        Args:
            name: Raw sheet name
            max_length: Maximum length (default 31 for Excel)

        Returns:
            Sanitized sheet name
        """
        name = re.sub(r"[\[\]:*?/\\]", "_", name)
        name = name.strip("'")
        return name[:max_length]

    def unique_sheet_name(self, name: str, used: Set[str], max_length: int = 31) -> str:
        """
        Sanitize name and make it distinct from every sheet in used.

        Excel compares sheet names case-insensitively, so names that only
        differ after truncation get a numeric suffix ("..._2", "..._3")
        that still fits within max_length. The chosen name is added to used.
        """
        base = self.sanitize_sheet_name(name, max_length)
        candidate = base
        n = 1
        while candidate.lower() in used:
            n += 1
            suffix = f"_{n}"
            candidate = base[: max_length - len(suffix)] + suffix
        used.add(candidate.lower())
        return candidate

    def export_excel(self, filepath: str, export_data: ExportData) -> None:
        """
        Export analysis results to a multi-sheet Excel workbook.

        Sheets: DE_{comparison}, Sig_{comparison} per contrast, then
        Significant Union, GO Enrichment (if it succeeded), Study Design, Settings.

        Args:
            filepath: Output Excel file path (.xlsx)
            export_data: Complete export data bundle
        """
        Path(filepath).parent.mkdir(parents=True, exist_ok=True)

        # Lowercased names already taken; fixed sheets are reserved
        used = {s.lower() for s in FIXED_SHEETS}
        sheet_map = {}

        with pd.ExcelWriter(filepath, engine="openpyxl") as writer:
            for (test, ref), contrast in export_data.contrasts.items():
                sheet_name = self.unique_sheet_name(f"DE_{test}_vs_{ref}", used)
                contrast.table.to_excel(writer, sheet_name=sheet_name, index=False)

                sig_sheet = self.unique_sheet_name(f"Sig_{test}_vs_{ref}", used)
                sheet_map[(test, ref)] = (sheet_name, sig_sheet)
                sig = contrast.table[contrast.table["gene"].isin(contrast.significant_genes)]
                sig.sort_values("padj").to_excel(writer, sheet_name=sig_sheet, index=False)

            pd.DataFrame({"gene": export_data.significant_genes}).to_excel(
                writer, sheet_name="Significant Union", index=False
            )

            if export_data.enrichment_error is None:
                export_data.enrichment_results.to_excel(
                    writer, sheet_name="GO Enrichment", index=False
                )

            design = export_data.design.copy()
            design["condition"] = design["condition"].astype(str)
            design["replicate"] = design["replicate"].astype(str)
            design.to_excel(writer, sheet_name="Study Design")

            self._write_settings_sheet(writer, export_data, sheet_map)

        logger.info("Wrote workbook %s", filepath)

    def _write_settings_sheet(
        self,
        writer: pd.ExcelWriter,
        export_data: ExportData,
        sheet_map: Optional[Dict[Tuple[str, str], Tuple[str, str]]] = None,
    ) -> None:
        """
        Write Settings sheet with analysis metadata.

        Key-value rows with sections: run info, thresholds and other settings,
        per-contrast quadrant counts and sheet names, enrichment status.
        """
        settings_data = [
            ["Parameter", "Value"],
            ["Analysis Date", datetime.now().strftime("%Y-%m-%d %H:%M:%S")],
            ["Series", export_data.series_id],
            [
                "Python Version",
                f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
            ],
        ]

        try:
            import pydeseq2

            settings_data.append(["PyDESeq2 Version", pydeseq2.__version__])
        except (ImportError, AttributeError):
            settings_data.append(["PyDESeq2 Version", "N/A"])

        if export_data.settings:
            settings_data.append(["---", "---"])
            settings_data.append(["Settings", ""])
            for key, value in export_data.settings.items():
                settings_data.append([key, str(value)])

        if export_data.contrasts:
            settings_data.append(["---", "---"])
            settings_data.append(["Comparisons", ""])
            for (test, ref), contrast in export_data.contrasts.items():
                counts = quadrant_counts(contrast.table)
                summary = ", ".join(f"{k}={v}" for k, v in counts.items())
                settings_data.append([f"{test}_vs_{ref}", summary])
                if sheet_map and (test, ref) in sheet_map:
                    settings_data.append(
                        [f"{test}_vs_{ref} sheets", ", ".join(sheet_map[(test, ref)])]
                    )
            settings_data.append(
                ["Significant union", str(len(export_data.significant_genes))]
            )

        settings_data.append(["---", "---"])
        if export_data.enrichment_error:
            settings_data.append(["Enrichment", f"FAILED ({export_data.enrichment_error})"])
        else:
            settings_data.append(
                ["Enrichment", f"SUCCESS ({len(export_data.enrichment_results)} terms)"]
            )

        settings_df = pd.DataFrame(settings_data)
        settings_df.to_excel(writer, sheet_name="Settings", index=False, header=False)

    def export_figures(self, directory: str, export_data: ExportData) -> List[Path]:
        """
        Write every figure as a standalone HTML file.

        Args:
            directory: Output directory (created if missing)
            export_data: Complete export data bundle

        Returns:
            Paths of the written files
        """
        out_dir = Path(directory)
        out_dir.mkdir(parents=True, exist_ok=True)
        written = []
        for name, fig in export_data.figures.items():
            safe = re.sub(r"[^A-Za-z0-9_.+-]", "_", name)
            path = out_dir / f"{safe}.html"
            fig.write_html(str(path), include_plotlyjs="cdn")
            written.append(path)
        return written

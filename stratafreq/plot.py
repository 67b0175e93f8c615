"""Faceted bar charts of per-stratum SNP frequencies."""

import logging
from pathlib import Path
from typing import Iterable, List

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import seaborn as sns

logger = logging.getLogger(__name__)

PALETTE = "Set2"


def plot_frequency_bars(long_df, output_prefix, formats: Iterable[str] = ("pdf", "svg"),
                        col_wrap: int = 4, title: str = None) -> List[Path]:
    """
    Grouped bars per stratum, one colour per allele/genotype label, one
    panel per SNP. long_df needs SNP, Stratum, Label and Frequency.
    """
    required = {"SNP", "Stratum", "Label", "Frequency"}
    if not required.issubset(long_df.columns):
        raise ValueError(f"Plot input must contain {', '.join(sorted(required))} columns")

    df = long_df.dropna(subset=["Frequency"])
    if df.empty:
        raise ValueError("No frequencies to plot")

    snps = list(dict.fromkeys(df["SNP"]))
    strata = list(dict.fromkeys(df["Stratum"]))

    sns.set(style="whitegrid")
    grid = sns.catplot(
        data=df,
        kind="bar",
        x="Stratum",
        y="Frequency",
        hue="Label",
        col="SNP",
        col_order=snps,
        order=strata,
        col_wrap=min(col_wrap, len(snps)),
        palette=PALETTE,
        sharex=False,
        height=3,
        aspect=1.2,
    )
    grid.set_titles("{col_name}")
    grid.set_axis_labels("Population", "Frequency")
    grid.set(ylim=(0, 1))
    for ax in grid.axes.flat:
        plt.setp(ax.get_xticklabels(), rotation=45, ha='right')
    if title:
        grid.figure.suptitle(title, fontsize=14, y=1.02)

    output_prefix = Path(output_prefix)
    output_prefix.parent.mkdir(parents=True, exist_ok=True)

    written = []
    for ext in formats:
        output_file = output_prefix.with_name(f"{output_prefix.name}.{ext}")
        grid.savefig(output_file, dpi=300, bbox_inches='tight')
        written.append(output_file)
        logger.info(f"✓ Saved: {output_file}")

    plt.close(grid.figure)
    return written

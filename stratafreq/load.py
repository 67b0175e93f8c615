"""
Load per-SNP frequency files back into one table.

Each per-SNP file has SNP, Stratum and then two or three value columns whose
names are the allele or genotype labels of that SNP. Position, not name,
decides meaning: value columns become Freq1..FreqN and their original names
are kept in Label1..LabelN.
"""

import logging
from pathlib import Path

import pandas as pd

from .errors import MissingInputError

logger = logging.getLogger(__name__)

KEY_COLUMNS = ["SNP", "Stratum"]


def normalise_snp_table(df: pd.DataFrame) -> pd.DataFrame:
    """Rename value columns positionally and record their labels."""
    if len(df.columns) < 3 or list(df.columns[:2]) != KEY_COLUMNS:
        raise ValueError(f"Expected SNP, Stratum and value columns, got {list(df.columns)}")

    labels = list(df.columns[2:])
    out = df.iloc[:, :2].copy()
    for i, label in enumerate(labels, 1):
        out[f"Label{i}"] = label
    for i, label in enumerate(labels, 1):
        out[f"Freq{i}"] = pd.to_numeric(df[label], errors="coerce")
    return out


def read_snp_file(path) -> pd.DataFrame:
    path = Path(path)
    if not path.exists():
        raise MissingInputError(path, "per-SNP frequency file")
    # Labels such as "NA" or "TT" must stay strings
    df = pd.read_csv(path, sep='\t', dtype={"SNP": str, "Stratum": str}, keep_default_na=False, na_values=[""])
    return normalise_snp_table(df)


def load_snp_frequency_files(directory) -> pd.DataFrame:
    """
    Concatenate every per-SNP file in a directory into one wide table.

    Columns: SNP, Stratum, Label1..N, Freq1..N. Files with fewer value
    columns get NaN in the extra ones.
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise MissingInputError(directory, "per-SNP directory")

    paths = sorted(directory.glob("*.txt"))
    if not paths:
        raise MissingInputError(directory / "*.txt", "per-SNP frequency files")

    frames = [read_snp_file(p) for p in paths]
    wide = pd.concat(frames, ignore_index=True, sort=False)

    n_values = max(int(c[len("Freq"):]) for c in wide.columns if c.startswith("Freq"))
    columns = KEY_COLUMNS + [f"Label{i}" for i in range(1, n_values + 1)] + \
        [f"Freq{i}" for i in range(1, n_values + 1)]
    wide = wide[columns]

    logger.info(f"Loaded {len(wide)} rows for {wide['SNP'].nunique()} SNPs from {directory}")
    return wide


def melt_frequencies(wide: pd.DataFrame) -> pd.DataFrame:
    """Long form: one row per SNP, Stratum and label with its Frequency."""
    wide = wide.reset_index(drop=True)
    n_values = sum(1 for c in wide.columns if c.startswith("Freq"))
    parts = []
    for i in range(1, n_values + 1):
        part = wide[KEY_COLUMNS + [f"Label{i}", f"Freq{i}"]].rename(
            columns={f"Label{i}": "Label", f"Freq{i}": "Frequency"}
        )
        part = part[part["Label"].notna()].copy()
        part["_row"] = part.index
        part["Slot"] = i
        parts.append(part)

    long_df = pd.concat(parts, ignore_index=True)
    # Back to input row order, labels in positional order within a row
    long_df = long_df.sort_values(["_row", "Slot"], kind="stable")
    return long_df.reset_index(drop=True)[KEY_COLUMNS + ["Label", "Frequency"]]

"""
Cross-stratum SNP frequency aggregation.

Turns one frequency table per population stratum into one table per SNP:

    <SNP>.txt
    SNP     Stratum  C    T
    rs123   AUT      0.7  0.3
    rs123   MAN      0.4  0.6

Allele files give (REF, ALT) columns holding 1 - ALT_FREQS and ALT_FREQS.
Genotype files give (REF+REF, REF+ALT, ALT+ALT) columns holding each count
divided by the three-count total. Column labels are taken from the first
stratum that reports the SNP and checked against every later one.
"""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Tuple

import numpy as np
import pandas as pd

from .config import SENTINEL_IDS
from .errors import LabelMismatchError, MissingInputError
from .frequencies import stratum_name

logger = logging.getLogger(__name__)

ALLELE = "allele"
GENOTYPE = "genotype"
KINDS = (ALLELE, GENOTYPE)

GENOTYPE_COUNT_COLUMNS = ["HOM_REF_CT", "HET_REF_ALT_CTS", "TWO_ALT_GENO_CTS"]

# Input column aliases -> normalised name
COLUMN_ALIASES = {
    "#CHROM": "CHROM",
    "CHR": "CHROM",
    "SNP": "ID",
    # PLINK 1.9 .frq: A1 is the counted (minor) allele, MAF its frequency
    "A1": "ALT",
    "A2": "REF",
    "MAF": "ALT_FREQS",
}

REQUIRED_COLUMNS = {
    ALLELE: ["ID", "REF", "ALT", "ALT_FREQS"],
    GENOTYPE: ["ID", "REF", "ALT"] + GENOTYPE_COUNT_COLUMNS,
}

# Frequencies on disk, six significant digits
FLOAT_FORMAT = "%.6g"


@dataclass
class SnpRecord:
    """Labels and per-stratum values for one SNP."""

    snp: str
    labels: Tuple[str, ...]
    rows: List[Tuple[str, Tuple[float, ...]]] = field(default_factory=list)

    @property
    def strata(self) -> List[str]:
        return [stratum for stratum, _ in self.rows]

    def add(self, stratum: str, labels: Tuple[str, ...], values: Tuple[float, ...], strict: bool = True):
        if labels != self.labels:
            if strict:
                raise LabelMismatchError(self.snp, stratum, self.labels, labels)
            logger.warning(
                f"{self.snp}: stratum {stratum} reports {'/'.join(labels)}, "
                f"keeping first-seen labels {'/'.join(self.labels)}"
            )
        self.rows.append((stratum, values))

    def to_frame(self) -> pd.DataFrame:
        records = [(self.snp, stratum) + tuple(values) for stratum, values in self.rows]
        return pd.DataFrame(records, columns=["SNP", "Stratum"] + list(self.labels))


def read_stratum_table(path, kind: str) -> pd.DataFrame:
    """
    Read one per-stratum PLINK output into ID, REF, ALT and value columns.

    Whitespace-delimited with a header row; a missing file is fatal.
    """
    if kind not in KINDS:
        raise ValueError(f"Unknown frequency kind: {kind}")
    if not os.path.exists(path):
        raise MissingInputError(path, f"{kind} frequency file")

    df = pd.read_csv(path, sep=r'\s+', dtype=str)
    df = df.rename(columns={c: COLUMN_ALIASES.get(c, c) for c in df.columns})

    missing = [c for c in REQUIRED_COLUMNS[kind] if c not in df.columns]
    if missing:
        raise ValueError(f"{path} is missing required columns: {missing}")

    df = df.loc[df["ID"].notna(), REQUIRED_COLUMNS[kind]].copy()
    df["ID"] = df["ID"].astype(str).str.strip()
    return df.reset_index(drop=True)


def read_stratum_tables(paths: Iterable, kind: str) -> Dict[str, pd.DataFrame]:
    """Read per-stratum files into {stratum: table}, keeping the given order."""
    tables = {}
    for path in paths:
        name = stratum_name(path)
        if name in tables:
            raise ValueError(f"Stratum {name} given twice ({path})")
        tables[name] = read_stratum_table(path, kind)
        logger.info(f"Read {len(tables[name])} {kind} records for stratum {name}")
    return tables


def discover_snps(tables: Mapping[str, pd.DataFrame], sentinels: Iterable[str] = SENTINEL_IDS) -> set:
    """All distinct SNP identifiers across strata, sentinel ids excluded."""
    sentinels = set(sentinels)
    snps = set()
    for table in tables.values():
        ids = table["ID"].dropna().astype(str)
        snps.update(i for i in ids if i and i not in sentinels)
    return snps


def allele_frequencies(table: pd.DataFrame) -> pd.DataFrame:
    """Label1/Label2 = REF/ALT, Freq1/Freq2 = 1 - ALT_FREQS / ALT_FREQS."""
    alt = pd.to_numeric(table["ALT_FREQS"], errors="coerce")
    return pd.DataFrame({
        "ID": table["ID"],
        "Label1": table["REF"],
        "Label2": table["ALT"],
        "Freq1": 1 - alt,
        "Freq2": alt,
    })


def genotype_frequencies(table: pd.DataFrame) -> pd.DataFrame:
    """
    Label1..3 = REF+REF / REF+ALT / ALT+ALT, Freq1..3 = count / total.

    A non-positive total, or any non-numeric count, leaves NaN in all three
    frequencies.
    """
    counts = table[GENOTYPE_COUNT_COLUMNS].apply(pd.to_numeric, errors="coerce")
    # any non-numeric count leaves the total undefined
    total = counts.sum(axis=1, min_count=len(GENOTYPE_COUNT_COLUMNS))

    bad = ~(total > 0)
    if bad.any():
        logger.warning(
            f"{int(bad.sum())} genotype records with a missing count or zero total count: "
            f"{', '.join(table.loc[bad, 'ID'].astype(str).head(5))}"
        )
    total = total.where(~bad, np.nan)

    ref = table["REF"].astype(str)
    alt = table["ALT"].astype(str)
    return pd.DataFrame({
        "ID": table["ID"],
        "Label1": ref + ref,
        "Label2": ref + alt,
        "Label3": alt + alt,
        "Freq1": counts["HOM_REF_CT"] / total,
        "Freq2": counts["HET_REF_ALT_CTS"] / total,
        "Freq3": counts["TWO_ALT_GENO_CTS"] / total,
    })


def stratum_frequencies(table: pd.DataFrame, kind: str) -> pd.DataFrame:
    if kind == ALLELE:
        return allele_frequencies(table)
    if kind == GENOTYPE:
        return genotype_frequencies(table)
    raise ValueError(f"Unknown frequency kind: {kind}")


def build_snp_records(tables: Mapping[str, pd.DataFrame], kind: str,
                      sentinels: Iterable[str] = SENTINEL_IDS,
                      strict: bool = True) -> Dict[str, SnpRecord]:
    """
    Single pass over strata building one SnpRecord per discovered SNP.

    Strata are visited in mapping order; a stratum without the SNP adds no
    row. With strict=True differing labels raise LabelMismatchError,
    otherwise the first-seen labels are kept and a warning is logged.
    """
    wanted = discover_snps(tables, sentinels)
    records: Dict[str, SnpRecord] = {}

    for stratum, table in tables.items():
        freqs = stratum_frequencies(table, kind)
        freqs = freqs[freqs["ID"].isin(wanted)]

        dup = freqs["ID"].duplicated(keep="first")
        if dup.any():
            logger.warning(
                f"Stratum {stratum}: {int(dup.sum())} duplicated SNP records ignored "
                f"({', '.join(freqs.loc[dup, 'ID'].head(5))})"
            )
            freqs = freqs[~dup]

        label_cols = [c for c in freqs.columns if c.startswith("Label")]
        freq_cols = [c for c in freqs.columns if c.startswith("Freq")]
        for row in freqs.itertuples(index=False):
            row = row._asdict()
            snp = row["ID"]
            labels = tuple(str(row[c]) for c in label_cols)
            values = tuple(float(row[c]) for c in freq_cols)
            if snp not in records:
                records[snp] = SnpRecord(snp, labels)
            records[snp].add(stratum, labels, values, strict=strict)

    return {snp: records[snp] for snp in sorted(records)}


def snp_file_name(snp: str) -> str:
    return snp.replace(os.sep, "_") + ".txt"


def write_snp_files(records: Mapping[str, SnpRecord], out_dir) -> List[Path]:
    """
    Write one tab-separated file per SNP, replacing any earlier run's files.
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    stale = list(out_dir.glob("*.txt"))
    for path in stale:
        path.unlink()
    if stale:
        logger.info(f"Removed {len(stale)} per-SNP files from a previous run in {out_dir}")

    written = []
    for snp, record in records.items():
        path = out_dir / snp_file_name(snp)
        record.to_frame().to_csv(path, sep='\t', index=False, float_format=FLOAT_FORMAT)
        written.append(path)

    logger.info(f"✓ Wrote {len(written)} per-SNP files to {out_dir}")
    return written


def aggregate_frequencies(paths: Iterable, out_dir, kind: str,
                          sentinels: Iterable[str] = SENTINEL_IDS,
                          strict: bool = True) -> List[Path]:
    """Read per-stratum files, build per-SNP records and write them out."""
    paths = list(paths)
    if not paths:
        raise MissingInputError(out_dir, f"{kind} frequency files for aggregation")

    logger.info(f"Aggregating {kind} frequencies from {len(paths)} strata")
    tables = read_stratum_tables(paths, kind)
    records = build_snp_records(tables, kind, sentinels=sentinels, strict=strict)
    logger.info(f"Discovered {len(records)} SNPs")
    return write_snp_files(records, out_dir)

"""
Gene and expression annotation of SNPs.

    positions (.bim / .pvar)  +  gene intervals (BED-like)  ->  SNP, CHROM, POS, Gene
    + differential expression table                          ->  ..., <DE columns>, Significant
"""

import logging
from pathlib import Path

import pandas as pd

from .errors import MissingInputError

logger = logging.getLogger(__name__)

BIM_COLUMNS = ["CHROM", "SNP", "CM", "POS", "A1", "A2"]
GENE_COLUMNS = ["CHROM", "START", "END", "Gene"]


def normalise_chrom(series: pd.Series) -> pd.Series:
    """'chr1' and '1' name the same chromosome."""
    return series.astype(str).str.replace(r'^chr', '', regex=True, case=False)


def _require(path, what):
    path = Path(path)
    if not path.exists():
        raise MissingInputError(path, what)
    return path


def load_snp_positions(path) -> pd.DataFrame:
    """
    SNP positions from a PLINK .bim or .pvar file.

    .bim has no header; .pvar may start with ## meta lines before #CHROM.
    """
    path = _require(path, "SNP position file")

    if path.suffix == ".bim":
        df = pd.read_csv(path, sep=r'\s+', header=None, names=BIM_COLUMNS, dtype=str)
    else:
        with open(path) as handle:
            n_meta = 0
            for line in handle:
                if not line.startswith("##"):
                    break
                n_meta += 1
        df = pd.read_csv(path, sep=r'\s+', skiprows=n_meta, dtype=str)
        df = df.rename(columns={"#CHROM": "CHROM", "ID": "SNP"})

    missing = [c for c in ["SNP", "CHROM", "POS"] if c not in df.columns]
    if missing:
        raise ValueError(f"{path} is missing required columns: {missing}")

    df = df[["SNP", "CHROM", "POS"]].copy()
    df["CHROM"] = normalise_chrom(df["CHROM"])
    df["POS"] = pd.to_numeric(df["POS"], errors="raise").astype(int)
    return df


def load_gene_intervals(path) -> pd.DataFrame:
    """Gene intervals from a BED-like CHROM START END GENE file."""
    path = _require(path, "gene annotation file")
    df = pd.read_csv(path, sep='\t', header=None, usecols=[0, 1, 2, 3], names=GENE_COLUMNS, dtype=str)

    # Drops a header line and track/browser lines
    df["START"] = pd.to_numeric(df["START"], errors="coerce")
    df["END"] = pd.to_numeric(df["END"], errors="coerce")
    df = df.dropna(subset=["START", "END"]).copy()
    df["START"] = df["START"].astype(int)
    df["END"] = df["END"].astype(int)
    df["CHROM"] = normalise_chrom(df["CHROM"])
    logger.info(f"Loaded {len(df)} gene intervals from {path}")
    return df.reset_index(drop=True)


def annotate_snps(positions: pd.DataFrame, genes: pd.DataFrame, flank: int = 0) -> pd.DataFrame:
    """
    One row per SNP and overlapping gene, flank bp either side of each gene.

    SNPs outside every gene are kept once with a missing Gene.
    """
    positions = positions.copy()
    genes = genes.copy()
    positions["CHROM"] = normalise_chrom(positions["CHROM"])
    genes["CHROM"] = normalise_chrom(genes["CHROM"])

    pairs = positions.merge(genes, on="CHROM", how="inner")
    hit = (pairs["POS"] >= pairs["START"] - flank) & (pairs["POS"] <= pairs["END"] + flank)
    hits = pairs.loc[hit, ["SNP", "CHROM", "POS", "Gene"]]

    annotated = positions[["SNP", "CHROM", "POS"]].merge(hits, on=["SNP", "CHROM", "POS"], how="left")
    n_genic = annotated.loc[annotated["Gene"].notna(), "SNP"].nunique()
    logger.info(f"{n_genic}/{positions['SNP'].nunique()} SNPs within {flank} bp of a gene")
    return annotated


def read_expression_table(path) -> pd.DataFrame:
    """Differential expression results, tab or comma separated."""
    path = _require(path, "expression table")
    sep = ',' if path.suffix == ".csv" else '\t'
    return pd.read_csv(path, sep=sep)


def merge_expression(annotated: pd.DataFrame, expression: pd.DataFrame,
                     gene_column: str = "Gene", padj_column: str = "padj",
                     alpha: float = 0.05) -> pd.DataFrame:
    """Left-join expression results on gene and flag padj < alpha."""
    for col in (gene_column, padj_column):
        if col not in expression.columns:
            raise ValueError(f"Expression table has no {col} column")

    expression = expression.rename(columns={gene_column: "Gene"})
    expression = expression.dropna(subset=["Gene"]).drop_duplicates(subset="Gene", keep="first")
    merged = annotated.merge(expression, on="Gene", how="left")

    padj = pd.to_numeric(merged[padj_column], errors="coerce")
    merged["Significant"] = padj < alpha
    logger.info(f"{int(merged['Significant'].sum())} SNP-gene pairs with padj < {alpha}")
    return merged

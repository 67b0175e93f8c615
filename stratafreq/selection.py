"""
SNP-of-interest lists: reading, filtering and overlaps.

Identifier lists come from outside this package (selection scans,
differential expression) as one- or few-column text files.
"""

import logging
from itertools import combinations
from pathlib import Path
from typing import Dict, Iterable

import pandas as pd

from .config import SENTINEL_IDS
from .errors import MissingInputError

logger = logging.getLogger(__name__)


def read_identifier_list(path, column=0, sentinels: Iterable[str] = SENTINEL_IDS) -> list:
    """
    Identifiers from one column of a whitespace-delimited file.

    column is a position or a header name. Blank lines, sentinel ids and
    repeats are dropped; first-seen order is kept.
    """
    path = Path(path)
    if not path.exists():
        raise MissingInputError(path, "identifier list")

    if isinstance(column, str):
        df = pd.read_csv(path, sep=r'\s+', dtype=str)
        if column not in df.columns:
            raise ValueError(f"{path} has no column {column}")
        values = df[column]
    else:
        df = pd.read_csv(path, sep=r'\s+', header=None, dtype=str)
        if df.shape[1] <= column:
            raise ValueError(f"{path} has only {df.shape[1]} columns")
        values = df.iloc[:, column]

    sentinels = set(sentinels)
    ids = values.dropna().str.strip()
    ids = ids[(ids != "") & ~ids.isin(sentinels)]
    identifiers = list(dict.fromkeys(ids))
    logger.info(f"Read {len(identifiers)} identifiers from {path}")
    return identifiers


def semi_join(table: pd.DataFrame, identifiers: Iterable, key: str = "SNP") -> pd.DataFrame:
    """Rows of table whose key is in identifiers; columns and order unchanged."""
    if key not in table.columns:
        raise ValueError(f"Table has no {key} column")
    selected = set(identifiers)
    return table[table[key].isin(selected)]


def overlap_counts(named_sets: Dict[str, Iterable]) -> pd.DataFrame:
    """
    Intersection size for every combination of two or more named sets.

    Also lists each set's own size, so the table covers every region of a
    Venn diagram's circles.
    """
    sets = {name: set(values) for name, values in named_sets.items()}
    rows = []
    for name, values in sets.items():
        rows.append({"Sets": name, "N_sets": 1, "Size": len(values)})
    for k in range(2, len(sets) + 1):
        for combo in combinations(sets, k):
            shared = set.intersection(*(sets[name] for name in combo))
            rows.append({"Sets": " & ".join(combo), "N_sets": k, "Size": len(shared)})
    return pd.DataFrame(rows, columns=["Sets", "N_sets", "Size"])

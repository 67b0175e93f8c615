"""
Per-stratum frequency computation with PLINK 2.

One PLINK run per population stratum, restricted to the SNP allow-list:

    plink2 --bfile <prefix> --keep <stratum>.keep --extract <allow-list>
           --freq --geno-counts --out <work_dir>/<stratum>

which leaves <stratum>.afreq (allele frequencies) and <stratum>.gcount
(genotype counts) in the work directory.
"""

import os
import logging
import subprocess
from pathlib import Path
from typing import Dict, Iterable, List, NamedTuple, Optional

import pandas as pd

from .config import DEFAULT_PLINK
from .errors import ExternalToolError, MissingInputError

logger = logging.getLogger(__name__)

ALLELE_EXT = ".afreq"
GENOTYPE_EXT = ".gcount"
# PLINK 1.9 allele frequency output
LEGACY_ALLELE_EXT = ".frq"


class StratumFiles(NamedTuple):
    name: str
    allele_path: Path
    genotype_path: Path


def stratum_name(path) -> str:
    """Stratum name is the file basename without its PLINK extension."""
    name = Path(path).name
    for ext in (ALLELE_EXT, GENOTYPE_EXT, LEGACY_ALLELE_EXT):
        if name.endswith(ext):
            return name[:-len(ext)]
    return Path(path).stem


def check_dependencies(tools: Iterable[str] = (DEFAULT_PLINK,)):
    """Fail fast if an external tool cannot be started."""
    for tool in tools:
        try:
            subprocess.run([tool, '--version'], capture_output=True, check=False)
            logger.info(f"✓ {tool} found")
        except FileNotFoundError:
            raise ExternalToolError([tool, '--version'], stderr=f"{tool} is not installed or not on PATH")


def run_command(cmd: List[str], description: str):
    """Run a command, log its progress and raise on a non-zero exit."""
    logger.info(f"{description}...")
    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except FileNotFoundError as e:
        raise ExternalToolError(cmd, stderr=str(e)) from e
    if result.returncode != 0:
        logger.error(f"Failed: {description}")
        raise ExternalToolError(cmd, result.returncode, result.stderr)
    logger.info(f"Completed: {description}")
    return result


def load_population_table(population_file) -> pd.DataFrame:
    """
    Load sample-to-population assignments.

    Needs IID and Population (or POP) columns; FID defaults to IID.
    """
    if not os.path.exists(population_file):
        raise MissingInputError(population_file, "population file")

    pop_df = pd.read_csv(population_file, sep='\t', dtype=str)
    pop_df.columns = [col.upper() for col in pop_df.columns]
    if 'POPULATION' in pop_df.columns and 'POP' not in pop_df.columns:
        pop_df = pop_df.rename(columns={'POPULATION': 'POP'})

    if 'IID' not in pop_df.columns or 'POP' not in pop_df.columns:
        raise ValueError("Population file must have IID and Population columns")

    if 'FID' not in pop_df.columns:
        pop_df['FID'] = pop_df['IID']

    return pop_df


def write_keep_files(population_file, keep_dir, strata: Optional[Iterable[str]] = None) -> Dict[str, Path]:
    """Write one PLINK --keep file (FID IID) per stratum."""
    pop_df = load_population_table(population_file)
    keep_dir = Path(keep_dir)
    keep_dir.mkdir(parents=True, exist_ok=True)

    wanted = list(strata) if strata is not None else list(pop_df['POP'].unique())
    keep_files = {}
    for population in wanted:
        pop_subset = pop_df[pop_df['POP'] == population]
        if pop_subset.empty:
            raise ValueError(f"No samples assigned to stratum {population}")
        keep_file = keep_dir / f"{population}.keep"
        pop_subset[['FID', 'IID']].to_csv(keep_file, index=False, sep='\t', header=False)
        keep_files[population] = keep_file
        logger.info(f"Stratum {population}: {len(pop_subset)} samples")

    return keep_files


def compute_frequencies(strata: Dict[str, Path], snp_allowlist, bfile, out_dir,
                        plink: str = DEFAULT_PLINK) -> List[StratumFiles]:
    """
    Run PLINK once per stratum against the SNP allow-list.

    strata maps a stratum name to its keep file. Returns the allele and
    genotype-count files per stratum, in the order strata were given.
    """
    for path, what in [(snp_allowlist, "SNP allow-list")] + [(p, "keep file") for p in strata.values()]:
        if not os.path.exists(path):
            raise MissingInputError(path, what)
    for ext in ['.bed', '.bim', '.fam']:
        if not os.path.exists(f"{bfile}{ext}"):
            raise MissingInputError(f"{bfile}{ext}", "PLINK fileset")

    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    results = []
    for idx, (name, keep_file) in enumerate(strata.items(), 1):
        out_prefix = out_dir / name
        cmd = [
            plink,
            '--bfile', str(bfile),
            '--keep', str(keep_file),
            '--extract', str(snp_allowlist),
            '--freq',
            '--geno-counts',
            '--out', str(out_prefix),
        ]
        run_command(cmd, f"[{idx}/{len(strata)}] Frequencies for {name}")

        files = StratumFiles(
            name,
            out_dir / f"{name}{ALLELE_EXT}",
            out_dir / f"{name}{GENOTYPE_EXT}",
        )
        for path in (files.allele_path, files.genotype_path):
            if not path.exists():
                raise MissingInputError(path, "PLINK output")
        results.append(files)

    return results


def collect_stratum_files(directory, extensions) -> List[Path]:
    """
    List per-stratum files already present in a directory.

    Sorted by file name so reruns see strata in the same order.
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise MissingInputError(directory, "stratum directory")
    if isinstance(extensions, str):
        extensions = (extensions,)
    return sorted(p for p in directory.iterdir() if p.is_file() and p.suffix in extensions)

"""
Run configuration and logging setup.

Settings come from three layers, later ones winning:
    module defaults  ->  CONF/stratafreq.conf [stratafreq]  ->  command line
"""

import os
import logging
import configparser
from pathlib import Path
from typing import Dict, Optional

# ============================================================================
# CONFIGURATION
# ============================================================================

DEFAULT_CONF_FILE = "CONF/stratafreq.conf"
CONF_SECTION = "stratafreq"

DEFAULT_PLINK = "plink2"
DEFAULT_BFILE = "INPUT/PLINK/cohort"
DEFAULT_POP_FILE = "INPUT/populations.tsv"
DEFAULT_ALLOWLIST = "INPUT/snp_allowlist.txt"
DEFAULT_WORK_DIR = "ANALYSIS/FREQ/STRATA"
DEFAULT_OUTPUT_DIR = "ANALYSIS/FREQ"

# Identifiers that are housekeeping records, never SNPs
SENTINEL_IDS = frozenset({"ID", "SNP"})

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"

DEFAULTS = {
    "plink": DEFAULT_PLINK,
    "bfile": DEFAULT_BFILE,
    "population_file": DEFAULT_POP_FILE,
    "snp_allowlist": DEFAULT_ALLOWLIST,
    "work_dir": DEFAULT_WORK_DIR,
    "allele_dir": os.path.join(DEFAULT_OUTPUT_DIR, "ALLELES"),
    "genotype_dir": os.path.join(DEFAULT_OUTPUT_DIR, "GENOTYPES"),
    "sentinel_ids": ",".join(sorted(SENTINEL_IDS)),
    "strict_labels": "yes",
    "log_file": "",
}


def load_config(conf_file: Optional[str] = None) -> Dict:
    """
    Read the [stratafreq] section of an INI file on top of DEFAULTS.

    A missing default file is fine; an explicitly requested file that does
    not exist is an error.
    """
    config = configparser.ConfigParser()
    config.read_dict({CONF_SECTION: DEFAULTS})

    path = conf_file or DEFAULT_CONF_FILE
    if os.path.exists(path):
        with open(path) as handle:
            config.read_file(handle)
    elif conf_file:
        raise FileNotFoundError(f"Config file not found: {conf_file}")

    section = config[CONF_SECTION]
    settings = {key: section.get(key) for key in DEFAULTS}
    settings["strict_labels"] = section.getboolean("strict_labels")
    settings["sentinel_ids"] = frozenset(
        s.strip() for s in section.get("sentinel_ids").split(",") if s.strip()
    )
    settings["log_file"] = settings["log_file"] or None
    return settings


def apply_overrides(settings: Dict, overrides: Dict) -> Dict:
    """Return a copy of settings with every non-None override applied."""
    merged = dict(settings)
    for key, value in overrides.items():
        if value is not None:
            merged[key] = value
    return merged


def setup_logging(log_file: Optional[str] = None, level=logging.INFO):
    """Configure logging to the console and, if given, a fresh log file."""
    handlers = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, mode='w'))

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers)
    return logging.getLogger("stratafreq")

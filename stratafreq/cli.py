#!/usr/bin/env python3
"""
stratafreq command line.

Usage:
    stratafreq compute   --population-file INPUT/populations.tsv --bfile INPUT/PLINK/cohort
    stratafreq aggregate --kind both
    stratafreq collect   --select ANALYSIS/SCAN/outliers.txt --output ANALYSIS/FREQ/selected.tsv
    stratafreq plot      --input ANALYSIS/FREQ/selected.tsv --output-prefix ANALYSIS/FREQ/FIGURES/selected
    stratafreq annotate  --positions INPUT/PLINK/cohort.bim --genes INPUT/genes.bed --output ANALYSIS/FREQ/genes.tsv
    stratafreq overlap   scan=ANALYSIS/SCAN/outliers.txt de=ANALYSIS/DE/genes_snps.txt
    stratafreq run

Every stage reads and writes flat files; run executes compute then
aggregate for both allele and genotype frequencies.
"""

import sys
import logging
import argparse
from pathlib import Path

import pandas as pd

from . import __version__
from .config import load_config, apply_overrides, setup_logging
from .errors import StratafreqError
from .frequencies import (
    ALLELE_EXT, GENOTYPE_EXT, LEGACY_ALLELE_EXT,
    check_dependencies, collect_stratum_files, compute_frequencies, write_keep_files,
)
from .aggregate import ALLELE, GENOTYPE, aggregate_frequencies
from .load import load_snp_frequency_files, melt_frequencies
from .selection import read_identifier_list, semi_join, overlap_counts
from .annotate import (
    annotate_snps, load_gene_intervals, load_snp_positions, merge_expression, read_expression_table,
)
from .plot import plot_frequency_bars

logger = logging.getLogger("stratafreq")

KIND_EXTENSIONS = {
    ALLELE: (ALLELE_EXT, LEGACY_ALLELE_EXT),
    GENOTYPE: (GENOTYPE_EXT,),
}


# ============================================================================
# STAGES
# ============================================================================

def cmd_compute(args, settings):
    check_dependencies([settings["plink"]])
    work_dir = Path(settings["work_dir"])
    strata = args.strata.split(',') if args.strata else None
    keep_files = write_keep_files(settings["population_file"], work_dir / "keep", strata)
    results = compute_frequencies(
        keep_files, settings["snp_allowlist"], settings["bfile"], work_dir, plink=settings["plink"]
    )
    logger.info(f"✓ Frequencies computed for {len(results)} strata in {work_dir}")
    return results


def aggregate_kinds(paths_by_kind, settings, lenient=False):
    """Write per-SNP files for each kind from its list of per-stratum files."""
    output_dirs = {ALLELE: settings["allele_dir"], GENOTYPE: settings["genotype_dir"]}
    shared = Path(output_dirs[ALLELE]).resolve() == Path(output_dirs[GENOTYPE]).resolve()
    if len(paths_by_kind) > 1 and shared:
        # each kind clears its output directory before writing
        raise ValueError(f"allele_dir and genotype_dir must differ (both {output_dirs[ALLELE]})")

    strict = settings["strict_labels"] and not lenient
    written = {}
    for kind, paths in paths_by_kind.items():
        written[kind] = aggregate_frequencies(
            paths, output_dirs[kind], kind, sentinels=settings["sentinel_ids"], strict=strict
        )
    return written


def cmd_aggregate(args, settings):
    kinds = [ALLELE, GENOTYPE] if args.kind == "both" else [args.kind]
    paths_by_kind = {
        kind: collect_stratum_files(settings["work_dir"], KIND_EXTENSIONS[kind]) for kind in kinds
    }
    return aggregate_kinds(paths_by_kind, settings, lenient=args.lenient)


def select_rows(table, select_files, column, sentinels):
    """Semi-join against each identifier list in turn."""
    for path in select_files or []:
        identifiers = read_identifier_list(path, column=column, sentinels=sentinels)
        before = len(table)
        table = semi_join(table, identifiers)
        logger.info(f"{path}: kept {len(table)}/{before} rows")
    return table


def parse_column(value):
    return int(value) if value.isdigit() else value


def cmd_collect(args, settings):
    input_dir = args.input_dir or settings["allele_dir"]
    wide = load_snp_frequency_files(input_dir)
    wide = select_rows(wide, args.select, parse_column(args.select_column), settings["sentinel_ids"])
    table = wide if args.wide else melt_frequencies(wide)

    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    table.to_csv(output, sep='\t', index=False)
    logger.info(f"✓ Saved {len(table)} rows to {output}")
    return table


def cmd_plot(args, settings):
    source = Path(args.input or settings["allele_dir"])
    if source.is_dir():
        long_df = melt_frequencies(load_snp_frequency_files(source))
    else:
        long_df = pd.read_csv(source, sep='\t', dtype={"SNP": str, "Stratum": str, "Label": str},
                              keep_default_na=False, na_values=[""])
    long_df = select_rows(long_df, args.select, parse_column(args.select_column), settings["sentinel_ids"])
    return plot_frequency_bars(long_df, args.output_prefix, formats=args.formats.split(','),
                               col_wrap=args.col_wrap, title=args.title)


def cmd_annotate(args, settings):
    positions = load_snp_positions(args.positions)
    positions = select_rows(positions, args.select, parse_column(args.select_column), settings["sentinel_ids"])
    annotated = annotate_snps(positions, load_gene_intervals(args.genes), flank=args.flank)
    if args.expression:
        annotated = merge_expression(
            annotated, read_expression_table(args.expression),
            gene_column=args.gene_column, padj_column=args.padj_column, alpha=args.alpha,
        )

    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    annotated.to_csv(output, sep='\t', index=False)
    logger.info(f"✓ Saved annotation for {annotated['SNP'].nunique()} SNPs to {output}")
    return annotated


def cmd_overlap(args, settings):
    named = {}
    for item in args.lists:
        name, sep, path = item.partition('=')
        if not sep:
            name, path = Path(item).stem, item
        named[name] = read_identifier_list(path, column=parse_column(args.select_column),
                                           sentinels=settings["sentinel_ids"])
    counts = overlap_counts(named)
    if args.output:
        output = Path(args.output)
        output.parent.mkdir(parents=True, exist_ok=True)
        counts.to_csv(output, sep='\t', index=False)
        logger.info(f"✓ Saved overlaps to {output}")
    else:
        print(counts.to_string(index=False))
    return counts


def cmd_run(args, settings):
    # Only the strata computed here; older outputs in work_dir are ignored
    results = cmd_compute(args, settings)
    paths_by_kind = {
        ALLELE: [r.allele_path for r in results],
        GENOTYPE: [r.genotype_path for r in results],
    }
    return aggregate_kinds(paths_by_kind, settings, lenient=args.lenient)


# ============================================================================
# ARGUMENTS
# ============================================================================

def build_parser():
    parser = argparse.ArgumentParser(
        prog="stratafreq",
        description="Per-population SNP allele and genotype frequency tables",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    parser.add_argument('--config', type=str, default=None,
                        help='INI config file (default: CONF/stratafreq.conf if present)')
    parser.add_argument('--log-file', type=str, default=None, help='Also log to this file')
    parser.add_argument('--verbose', action='store_true', help='Debug logging')
    parser.add_argument('--work-dir', type=str, default=None,
                        help='Directory holding per-stratum PLINK outputs')
    parser.add_argument('--allele-dir', type=str, default=None, help='Per-SNP allele frequency files')
    parser.add_argument('--genotype-dir', type=str, default=None, help='Per-SNP genotype frequency files')

    sub = parser.add_subparsers(dest='command', required=True)

    def add_compute_args(p):
        p.add_argument('--plink', type=str, default=None, help='PLINK 2 executable')
        p.add_argument('--bfile', type=str, default=None, help='PLINK .bed/.bim/.fam prefix')
        p.add_argument('--population-file', type=str, default=None,
                       help='Tab-separated FID/IID/Population table')
        p.add_argument('--snp-allowlist', type=str, default=None, help='SNP ids passed to --extract')
        p.add_argument('--strata', type=str, default=None,
                       help='Comma-separated populations (default: all in population file)')

    def add_select_args(p):
        p.add_argument('--select', action='append', default=None, metavar='FILE',
                       help='Keep only SNPs listed in FILE (repeatable, lists are intersected)')
        p.add_argument('--select-column', type=str, default='0',
                       help='Column position or header name holding SNP ids (default: 0)')

    p = sub.add_parser('compute', help='Run PLINK per stratum')
    add_compute_args(p)
    p.set_defaults(func=cmd_compute)

    p = sub.add_parser('aggregate', help='Build one frequency file per SNP')
    p.add_argument('--kind', choices=[ALLELE, GENOTYPE, 'both'], default='both')
    p.add_argument('--lenient', action='store_true',
                   help='Keep first-seen labels when strata disagree instead of failing')
    p.set_defaults(func=cmd_aggregate)

    p = sub.add_parser('collect', help='Load per-SNP files into one table')
    p.add_argument('--input-dir', type=str, default=None, help='Per-SNP directory (default: allele dir)')
    p.add_argument('--output', type=str, required=True)
    p.add_argument('--wide', action='store_true', help='Write Label1..N/Freq1..N instead of long form')
    add_select_args(p)
    p.set_defaults(func=cmd_collect)

    p = sub.add_parser('plot', help='Faceted bar charts per SNP')
    p.add_argument('--input', type=str, default=None,
                   help='Long table from collect, or a per-SNP directory (default: allele dir)')
    p.add_argument('--output-prefix', type=str, required=True)
    p.add_argument('--formats', type=str, default='pdf,svg')
    p.add_argument('--col-wrap', type=int, default=4)
    p.add_argument('--title', type=str, default=None)
    add_select_args(p)
    p.set_defaults(func=cmd_plot)

    p = sub.add_parser('annotate', help='Map SNPs to genes and expression results')
    p.add_argument('--positions', type=str, required=True, help='.bim or .pvar file')
    p.add_argument('--genes', type=str, required=True, help='BED-like CHROM START END GENE file')
    p.add_argument('--flank', type=int, default=0, help='bp added either side of each gene')
    p.add_argument('--expression', type=str, default=None, help='Differential expression table')
    p.add_argument('--gene-column', type=str, default='Gene')
    p.add_argument('--padj-column', type=str, default='padj')
    p.add_argument('--alpha', type=float, default=0.05)
    p.add_argument('--output', type=str, required=True)
    add_select_args(p)
    p.set_defaults(func=cmd_annotate)

    p = sub.add_parser('overlap', help='Intersection sizes between identifier lists')
    p.add_argument('lists', nargs='+', metavar='NAME=FILE')
    p.add_argument('--select-column', type=str, default='0')
    p.add_argument('--output', type=str, default=None)
    p.set_defaults(func=cmd_overlap)

    p = sub.add_parser('run', help='compute then aggregate')
    add_compute_args(p)
    p.add_argument('--lenient', action='store_true')
    p.set_defaults(func=cmd_run)

    return parser


def settings_from_args(args):
    settings = load_config(args.config)
    overrides = {
        key: getattr(args, key, None)
        for key in ("plink", "bfile", "population_file", "snp_allowlist",
                    "work_dir", "allele_dir", "genotype_dir", "log_file")
    }
    return apply_overrides(settings, overrides)


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = settings_from_args(args)
    except FileNotFoundError as e:
        parser.error(str(e))

    setup_logging(settings["log_file"], logging.DEBUG if args.verbose else logging.INFO)

    try:
        args.func(args, settings)
    except (StratafreqError, ValueError, FileNotFoundError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

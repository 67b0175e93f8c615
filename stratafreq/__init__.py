"""
stratafreq

Per-population SNP allele and genotype frequency tables from PLINK outputs.
"""

__version__ = "0.1.0"

import pathlib
import subprocess
import sys

import pandas as pd
import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from stratafreq import cli, config, frequencies


@pytest.fixture
def conf(tmp_path):
    path = tmp_path / "test.conf"
    path.write_text(
        "[stratafreq]\n"
        f"work_dir = {tmp_path / 'strata'}\n"
        f"allele_dir = {tmp_path / 'alleles'}\n"
        f"genotype_dir = {tmp_path / 'genotypes'}\n"
        "strict_labels = yes\n"
    )
    strata = tmp_path / "strata"
    strata.mkdir()
    (strata / "AUT.afreq").write_text(
        "#CHROM\tID\tREF\tALT\tALT_FREQS\tOBS_CT\n1\trs1\tC\tT\t0.3\t40\n1\trs2\tA\tG\t0.5\t40\n"
    )
    (strata / "MAN.afreq").write_text(
        "#CHROM\tID\tREF\tALT\tALT_FREQS\tOBS_CT\n1\trs1\tC\tT\t0.6\t40\n"
    )
    (strata / "AUT.gcount").write_text(
        "#CHROM\tID\tREF\tALT\tHOM_REF_CT\tHET_REF_ALT_CTS\tTWO_ALT_GENO_CTS\tHAP_REF_CT\tHAP_ALT_CTS\tMISSING_CT\n"
        "1\trs1\tC\tT\t10\t5\t5\t0\t0\t0\n"
    )
    return path


def test_load_config_defaults_and_file(conf, tmp_path):
    settings = config.load_config(str(conf))

    assert settings["work_dir"] == str(tmp_path / "strata")
    assert settings["plink"] == config.DEFAULT_PLINK
    assert settings["strict_labels"] is True
    assert settings["sentinel_ids"] == frozenset({"ID", "SNP"})
    assert settings["log_file"] is None


def test_explicit_missing_config_is_an_error(tmp_path):
    with pytest.raises(FileNotFoundError):
        config.load_config(str(tmp_path / "absent.conf"))


def test_overrides_skip_none():
    merged = config.apply_overrides({"plink": "plink2", "bfile": "a"}, {"plink": None, "bfile": "b"})
    assert merged == {"plink": "plink2", "bfile": "b"}


def test_aggregate_collect_and_plot(conf, tmp_path):
    assert cli.main(["--config", str(conf), "aggregate"]) == 0

    assert sorted(p.name for p in (tmp_path / "alleles").iterdir()) == ["rs1.txt", "rs2.txt"]
    assert [p.name for p in (tmp_path / "genotypes").iterdir()] == ["rs1.txt"]

    select = tmp_path / "outliers.txt"
    select.write_text("rs1\n")
    out = tmp_path / "selected.tsv"
    assert cli.main(["--config", str(conf), "collect", "--select", str(select), "--output", str(out)]) == 0

    long_df = pd.read_csv(out, sep="\t")
    assert list(long_df.columns) == ["SNP", "Stratum", "Label", "Frequency"]
    assert set(long_df["SNP"]) == {"rs1"}
    assert long_df["Frequency"].tolist() == pytest.approx([0.7, 0.3, 0.4, 0.6])

    prefix = tmp_path / "figs" / "rs1"
    assert cli.main(["--config", str(conf), "plot", "--input", str(out),
                     "--output-prefix", str(prefix), "--formats", "svg"]) == 0
    assert (tmp_path / "figs" / "rs1.svg").exists()


def test_label_mismatch_exits_non_zero(conf, tmp_path):
    (tmp_path / "strata" / "NEW.afreq").write_text(
        "#CHROM\tID\tREF\tALT\tALT_FREQS\tOBS_CT\n1\trs1\tT\tC\t0.4\t40\n"
    )

    assert cli.main(["--config", str(conf), "aggregate", "--kind", "allele"]) == 1
    assert cli.main(["--config", str(conf), "aggregate", "--kind", "allele", "--lenient"]) == 0


def test_overlap_writes_table(conf, tmp_path):
    a = tmp_path / "a.txt"
    b = tmp_path / "b.txt"
    a.write_text("rs1\nrs2\n")
    b.write_text("rs2\nrs3\n")
    out = tmp_path / "overlap.tsv"

    assert cli.main(["--config", str(conf), "overlap", f"scan={a}", str(b), "--output", str(out)]) == 0

    counts = pd.read_csv(out, sep="\t")
    assert dict(zip(counts["Sets"], counts["Size"])) == {"scan": 2, "b": 2, "scan & b": 1}


def test_run_computes_then_aggregates(conf, tmp_path, monkeypatch):
    pop_file = tmp_path / "pops.tsv"
    pop_file.write_text("IID\tPopulation\ns1\tAUT\ns2\tMAN\n")
    allow = tmp_path / "allow.txt"
    allow.write_text("rs1\n")
    bfile = tmp_path / "cohort"
    for ext in (".bed", ".bim", ".fam"):
        pathlib.Path(f"{bfile}{ext}").write_text("")

    def fake_run(cmd, **kwargs):
        if '--out' in cmd:
            out = pathlib.Path(cmd[cmd.index('--out') + 1])
            pathlib.Path(f"{out}.afreq").write_text(
                "#CHROM\tID\tREF\tALT\tALT_FREQS\tOBS_CT\n1\trs1\tC\tT\t0.25\t8\n"
            )
            pathlib.Path(f"{out}.gcount").write_text(
                "#CHROM\tID\tREF\tALT\tHOM_REF_CT\tHET_REF_ALT_CTS\tTWO_ALT_GENO_CTS\n1\trs1\tC\tT\t2\t1\t1\n"
            )
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    monkeypatch.setattr(frequencies.subprocess, "run", fake_run)

    status = cli.main([
        "--config", str(conf), "run",
        "--population-file", str(pop_file), "--snp-allowlist", str(allow), "--bfile", str(bfile),
    ])

    assert status == 0
    geno = pd.read_csv(tmp_path / "genotypes" / "rs1.txt", sep="\t")
    assert list(geno.columns) == ["SNP", "Stratum", "CC", "CT", "TT"]
    assert geno["Stratum"].tolist() == ["AUT", "MAN"]
    assert geno["CC"].tolist() == pytest.approx([0.5, 0.5])


def test_run_ignores_outputs_left_by_earlier_runs(conf, tmp_path, monkeypatch):
    strata = tmp_path / "strata"
    (strata / "OLD.afreq").write_text(
        "#CHROM\tID\tREF\tALT\tALT_FREQS\tOBS_CT\n1\trs1\tC\tT\t0.9\t40\n"
    )
    (strata / "AUT.frq").write_text(
        " CHR  SNP  A1  A2  MAF  NCHROBS\n   1  rs1   T   C  0.1  40\n"
    )
    pop_file = tmp_path / "pops.tsv"
    pop_file.write_text("IID\tPopulation\ns1\tAUT\n")
    allow = tmp_path / "allow.txt"
    allow.write_text("rs1\n")
    bfile = tmp_path / "cohort"
    for ext in (".bed", ".bim", ".fam"):
        pathlib.Path(f"{bfile}{ext}").write_text("")

    def fake_run(cmd, **kwargs):
        if '--out' in cmd:
            out = pathlib.Path(cmd[cmd.index('--out') + 1])
            pathlib.Path(f"{out}.afreq").write_text(
                "#CHROM\tID\tREF\tALT\tALT_FREQS\tOBS_CT\n1\trs1\tC\tT\t0.3\t8\n"
            )
            pathlib.Path(f"{out}.gcount").write_text(
                "#CHROM\tID\tREF\tALT\tHOM_REF_CT\tHET_REF_ALT_CTS\tTWO_ALT_GENO_CTS\n1\trs1\tC\tT\t2\t1\t1\n"
            )
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    monkeypatch.setattr(frequencies.subprocess, "run", fake_run)

    status = cli.main([
        "--config", str(conf), "run",
        "--population-file", str(pop_file), "--snp-allowlist", str(allow), "--bfile", str(bfile),
    ])

    assert status == 0
    alleles = pd.read_csv(tmp_path / "alleles" / "rs1.txt", sep="\t")
    assert alleles["Stratum"].tolist() == ["AUT"]
    assert alleles["T"].tolist() == pytest.approx([0.3])
    assert not (tmp_path / "alleles" / "rs2.txt").exists()


def test_aggregate_rejects_shared_output_dir(conf, tmp_path):
    shared = tmp_path / "shared"

    status = cli.main(["--config", str(conf), "--allele-dir", str(shared), "--genotype-dir", str(shared),
                       "aggregate"])

    assert status == 1
    assert not shared.exists()
    assert cli.main(["--config", str(conf), "--allele-dir", str(shared), "--genotype-dir", str(shared),
                     "aggregate", "--kind", "allele"]) == 0
    assert sorted(p.name for p in shared.iterdir()) == ["rs1.txt", "rs2.txt"]

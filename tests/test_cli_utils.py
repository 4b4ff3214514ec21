import pytest

from conftest import write_genotype_csv, write_phenotype_tsv
from haplomap.cli import utils
from haplomap.cli.run import main


def test_normalize_tests_defaults_and_dedup() -> None:
    assert utils.normalize_tests([]) == list(utils.TEST_CHOICES)
    assert utils.normalize_tests(["Phylogeny, haplotype", "phylogeny"]) == ["phylogeny", "haplotype"]
    with pytest.raises(ValueError):
        utils.normalize_tests(["permutation"])


def test_parse_args_defaults(tmp_path) -> None:
    args = utils.parse_args(["--genotype", str(tmp_path / "g.csv"), "--phenotype", str(tmp_path / "p.tsv")])

    assert args.genotype.endswith("g.csv")
    assert args.sex == "any"
    assert args.min_snp_extent == 1
    assert args.min_strain_group_size == 2
    assert args.n_jobs == 1
    assert args.normalize is False
    assert args.no_cache is False
    assert utils.normalize_tests(utils.split_list(args.tests)) == list(utils.TEST_CHOICES)


def test_parse_args_respects_overrides(tmp_path) -> None:
    args = utils.parse_args([
        "-g", "g.csv", "-p", "p.tsv",
        "--phenotype-name", "HDL",
        "--sex", "male",
        "--tests", "multigroup",
        "--min-snp-extent", "3",
        "--strains", "A, B,C",
        "--chromosomes", "1,X",
        "--no-cache",
        "--n-jobs", "4",
        "-o", str(tmp_path),
        "--quiet",
    ])

    assert args.phenotype_name == "HDL"
    assert args.sex == "male"
    assert utils.split_list(args.strains) == ["A", "B", "C"]
    assert utils.split_list(args.chromosomes) == ["1", "X"]
    assert args.min_snp_extent == 3
    assert args.n_jobs == 4
    assert args.quiet is True
    with pytest.raises(SystemExit):
        utils.parse_args(["-g", "g.csv", "-p", "p.tsv", "--sex", "other"])


def test_main_runs_selected_tests(tmp_path, six_strain_panel) -> None:
    strains, sdps, phenotypes = six_strain_panel
    genotype_file = write_genotype_csv(tmp_path / "strains.csv", strains, sdps)
    phenotype_file = write_phenotype_tsv(tmp_path / "pheno.tsv", phenotypes)
    out = tmp_path / "results"

    status = main([
        "-g", str(genotype_file), "-p", str(phenotype_file),
        "--tests", "haplotype,phylogeny",
        "--chromosomes", "chr1",
        "--cache-dir", str(tmp_path / "cache"),
        "-o", str(out), "--quiet",
    ])

    assert status == 0
    assert (out / "HDL_haplotype_haplotype_association.csv").exists()
    assert (out / "HDL_phylogeny_chr1_phylogeny.tsv").exists()
    assert not (out / "HDL_phylogeny_chr2_phylogeny.tsv").exists()


def test_main_reports_bad_input(tmp_path, capsys) -> None:
    status = main(["-g", str(tmp_path / "missing.csv"), "-p", str(tmp_path / "missing.tsv"),
                   "-o", str(tmp_path / "out"), "--quiet"])

    assert status == 1
    assert "Error" in capsys.readouterr().err

    assert main(["-g", "g.csv", "-p", "p.tsv", "--tests", "bogus", "--quiet"]) == 2

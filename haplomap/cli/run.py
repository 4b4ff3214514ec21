"""
Command line entry point: one phenotype against one genotype file
"""

import sys
from typing import Optional, Sequence

from ..data.load_genotype_csv import parse_chromosome
from ..pipelines.ham import HAMPipeline
from ..utils.cache import ResultCache
from .utils import normalize_tests, parse_args, split_list


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    verbose = not args.quiet

    strains = split_list(args.strains)
    chromosomes = None
    try:
        tests = normalize_tests(split_list(args.tests))
        if args.chromosomes:
            chromosomes = [parse_chromosome(c) for c in split_list(args.chromosomes)]
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    cache = None
    if 'phylogeny' in tests and not args.no_cache:
        cache = ResultCache(args.cache_dir)

    pipeline = HAMPipeline(output_dir=args.outputdir, cache=cache, verbose=verbose)

    # 1. Load Data
    try:
        phenotype_name, genome_name = pipeline.load_data(
            genotype_file=args.genotype,
            phenotype_file=args.phenotype,
            phenotype_name=args.phenotype_name,
            sex_filter=args.sex,
            strains=strains,
            chromosomes=chromosomes,
            min_snp_extent=args.min_snp_extent,
            min_strain_group_size=args.min_strain_group_size,
        )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    # 2. Run tests
    for kind in tests:
        pipeline.add_test(
            f"{phenotype_name}_{kind}",
            kind,
            phenotype=phenotype_name,
            genome=genome_name,
            normalize=args.normalize and kind == 'haplotype',
        )
    pipeline.run_analysis(chromosomes=chromosomes, n_jobs=args.n_jobs)

    if pipeline.errors:
        for name, message in pipeline.errors.items():
            print(f"Test {name} failed: {message}", file=sys.stderr)
        return 1
    return 0

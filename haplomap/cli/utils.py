import argparse
from typing import List, Optional, Sequence

TEST_CHOICES = (
    'haplotype',
    'multigroup',
    'phylogeny',
)

SEX_CHOICES = ('any', 'female', 'male')


def normalize_tests(tests: Optional[Sequence[str]]) -> List[str]:
    """Normalize test selections with comma splitting and deduplication."""
    if not tests:
        return list(TEST_CHOICES)

    normalized = []
    seen = set()
    for item in tests:
        for part in str(item).split(','):
            part = part.strip().lower()
            if not part:
                continue
            if part not in TEST_CHOICES:
                raise ValueError(f"Invalid test choice: {part}")
            if part not in seen:
                normalized.append(part)
                seen.add(part)

    return normalized if normalized else list(TEST_CHOICES)


def split_list(value: Optional[str]) -> Optional[List[str]]:
    """Comma-separated string to a list (None stays None)"""
    if value is None:
        return None
    return [v.strip() for v in value.split(',') if v.strip()]


def parse_args(argv: Optional[Sequence[str]] = None):
    """Parse command line arguments for the HAM pipeline"""
    parser = argparse.ArgumentParser(
        description="Haplotype Association Mapping of strain phenotypes",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    # Required arguments
    parser.add_argument("--genotype", "-g", required=True,
                       help="Genotype CSV (snpId, chromosome, bpPosition, aAllele, bAllele, strains...)")
    parser.add_argument("--phenotype", "-p", required=True,
                       help="Tall tab-separated phenotype file (strain, sex, varname, value)")

    # Optional arguments
    parser.add_argument("--phenotype-name", default=None,
                       help="Phenotype variable to test (required when the file holds several)")
    parser.add_argument("--sex", default='any', choices=list(SEX_CHOICES),
                       help="Keep measurements of this sex only")
    parser.add_argument("--tests", default=','.join(TEST_CHOICES),
                       help="Tests to run (comma-separated)")
    parser.add_argument("--outputdir", "-o", default="./HAM_results",
                       help="Output directory")

    # Haplotype blocks
    parser.add_argument("--min-snp-extent", type=int, default=1,
                       help="Minimum number of SNPs per haplotype block")
    parser.add_argument("--min-strain-group-size", type=int, default=2,
                       help="Minimum number of strains sharing a block haplotype")
    parser.add_argument("--normalize", action='store_true',
                       help="Divide haplotype p-values by cumulative block extent")

    # Subsetting
    parser.add_argument("--strains", default=None,
                       help="Comma-separated strains to keep")
    parser.add_argument("--chromosomes", default=None,
                       help="Comma-separated chromosomes to test")

    # Execution
    parser.add_argument("--cache-dir", default=None,
                       help="Directory for phylogeny result cache files (system temp dir if unset)")
    parser.add_argument("--no-cache", action='store_true',
                       help="Disable the phylogeny result cache")
    parser.add_argument("--n-jobs", type=int, default=1,
                       help="Number of chromosomes processed in parallel")
    parser.add_argument("--quiet", action='store_true',
                       help="Suppress progress output")

    return parser.parse_args(argv)

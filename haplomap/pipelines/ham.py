"""
Haplotype Association Mapping Pipeline Module

This module drives association tests between strain phenotypes and the
haplotype structure of a genome. A test pairs one phenotype source with one
genome source and is parameterised by a partitioning strategy (equivalence
classes of haplotype blocks, multi-group blocks, or MAX-K perfect
phylogenies) and a tester strategy (Welch t-test, one-way ANOVA, or
edge-wise phylogeny tests).
"""

import concurrent.futures
import threading
import time
import warnings
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from tqdm import tqdm

from ..association.partition_tests import (
    BinaryPartitionTester,
    group_means_by_id,
    multi_partition_pvalues,
)
from ..association.phylogeny import PhylogenyAssociationResults, PhylogenyTestResult
from ..association.phylogeny_significance import PhylogenySignificanceTester
from ..association.equivalence import create_equivalence_classes
from ..data.loaders import SexFilter, common_strains
from ..utils.cache import ResultCache, make_cache_key
from ..utils.data_types import (
    HaplotypeAssociationResults,
    HaplotypeTestResult,
    MultiGroupAssociationResults,
    MultiGroupTestResult,
)
from ..utils.errors import HamError, NumericError
from ..utils.stats import strain_means
from .sources import (
    DataRegistry,
    HaplotypeDataSource,
    PhenotypeDataSource,
    PhylogenyDataSource,
    load_genome_sources,
)

MIN_COMMON_STRAINS = 3

TEST_KINDS: Tuple[str, ...] = ('haplotype', 'multigroup', 'phylogeny')


def _warn_skip(chromosome: int, start_bp: int, partition_size: int, reason: str):
    warnings.warn(
        f"Skipping interval chr{chromosome}:{start_bp} "
        f"(partition size {partition_size}): {reason}"
    )


class EquivalenceClassPartitioning:
    """Haplotype blocks grouped into genome-wide equivalence classes"""

    name = 'equivalence-class'
    genome_wide = True

    def partition(self, source: HaplotypeDataSource, strains: Sequence[str], chromosome: int):
        return source.blocks(chromosome, strains)

    def assemble(self, per_chromosome: Iterable[list], strains: Sequence[str]):
        blocks = [block for blocks in per_chromosome for block in blocks]
        return create_equivalence_classes(blocks, len(strains))


class BlockPartitioning:
    """Multi-group haplotype blocks, one partition per block"""

    name = 'block'
    genome_wide = False

    def partition(self, source: HaplotypeDataSource, strains: Sequence[str], chromosome: int):
        return source.multi_group_blocks(chromosome, strains)

    def assemble(self, per_chromosome: Iterable[list], strains: Sequence[str]):
        return [block for blocks in per_chromosome for block in blocks]


class PhylogenyPartitioning:
    """One perfect phylogeny per MAX-K interval"""

    name = 'phylogeny'
    genome_wide = False

    def partition(self, source: PhylogenyDataSource, strains: Sequence[str], chromosome: int):
        skipped: List[Tuple[int, str]] = []
        phylogenies = source.phylogeny_intervals(chromosome, strains, skipped=skipped)
        for start_bp, reason in skipped:
            _warn_skip(chromosome, start_bp, len(strains), reason)
        return phylogenies

    def assemble(self, per_chromosome: Iterable[list], strains: Sequence[str]):
        return [p for phylogenies in per_chromosome for p in phylogenies]


class WelchTester:
    """Welch t-test per equivalence class; failing classes are logged and skipped"""

    name = 'welch'

    def __init__(self, normalize: bool = False):
        self.normalize = normalize

    def test(self, classes, strains: Sequence[str], phenotypes: Dict[str, List[float]]) -> List[HaplotypeTestResult]:
        tester = BinaryPartitionTester(strains, phenotypes, normalize=self.normalize)
        results = []
        for eq_class in classes:
            try:
                results.extend(tester.test_classes([eq_class]))
            except NumericError as exc:
                first = eq_class.intervals[0]
                _warn_skip(first.chromosome, first.start_bp, eq_class.strain_count(), str(exc))
        return results


class AnovaTester:
    """One-way ANOVA per multi-group partition"""

    name = 'anova'

    def test(self, partitions, strains: Sequence[str], phenotypes: Dict[str, List[float]]) -> List[MultiGroupTestResult]:
        means = strain_means(strains, phenotypes)
        results = []
        for partitioned in partitions:
            try:
                pvalue = multi_partition_pvalues([partitioned.group_ids], means)[0]
            except NumericError as exc:
                interval = partitioned.interval
                n_groups = len(group_means_by_id(partitioned.group_ids, means))
                _warn_skip(interval.chromosome, interval.start_bp, n_groups, str(exc))
                continue
            results.append(MultiGroupTestResult(partitioned, float(pvalue)))
        return results


class EdgeTester:
    """Edge-wise Welch tests over each phylogeny"""

    name = 'edge'

    def test(self, phylogenies, strains: Sequence[str], phenotypes: Dict[str, List[float]]) -> List[PhylogenyTestResult]:
        return PhylogenySignificanceTester(phenotypes).test_intervals(phylogenies)


PARTITIONERS = {
    'equivalence-class': EquivalenceClassPartitioning,
    'block': BlockPartitioning,
    'phylogeny': PhylogenyPartitioning,
}

TESTERS = {
    'welch': WelchTester,
    'anova': AnovaTester,
    'edge': EdgeTester,
}

KIND_STRATEGIES = {
    'haplotype': ('equivalence-class', 'welch'),
    'multigroup': ('block', 'anova'),
    'phylogeny': ('phylogeny', 'edge'),
}


def _run_chromosome_worker(test: "AssociationTest", method: str, chromosome: int):
    """Worker function to run one chromosome of a test in a separate process."""
    try:
        return (chromosome, getattr(test, method)(chromosome), None)
    except (HamError, ValueError) as e:
        return (chromosome, None, e)


class AssociationTest:
    """
    One association test: a phenotype source against a genome source.

    Args:
        name: Test name (used in output file names)
        kind: One of 'haplotype', 'multigroup', 'phylogeny'
        phenotype_source: Strain measurements
        genome_source: HaplotypeDataSource or PhylogenyDataSource matching ``kind``
        normalize: Haplotype tests only; divide p-values by cumulative extent
        cache: Optional ResultCache for per-chromosome phylogeny results
        verbose: Print progress
    """

    def __init__(self, name: str, kind: str, phenotype_source: PhenotypeDataSource,
                 genome_source: Union[HaplotypeDataSource, PhylogenyDataSource],
                 normalize: bool = False, cache: Optional[ResultCache] = None,
                 verbose: bool = True):
        if kind not in KIND_STRATEGIES:
            raise ValueError(f"Unknown test kind {kind!r}; expected one of {TEST_KINDS}")
        partitioner_name, tester_name = KIND_STRATEGIES[kind]
        expected = PhylogenyDataSource if kind == 'phylogeny' else HaplotypeDataSource
        if not isinstance(genome_source, expected):
            raise ValueError(f"{kind} tests need a {expected.__name__}")
        self.name = name
        self.kind = kind
        self.phenotype_source = phenotype_source
        self.genome_source = genome_source
        self.partitioning = PARTITIONERS[partitioner_name]()
        self.tester = WelchTester(normalize) if tester_name == 'welch' else TESTERS[tester_name]()
        self.cache = cache if kind == 'phylogeny' else None
        self.verbose = verbose
        self._strains: Optional[List[str]] = None

    def log(self, message: str):
        if self.verbose:
            print(message)

    @property
    def strains(self) -> List[str]:
        """Sorted strains shared by the genome and phenotype sources"""
        if self._strains is None:
            strains, summary = common_strains(self.genome_source.strains, self.phenotype_source.strains)
            self.log(
                f"   [{self.name}] haplotype strains: {summary['n_haplotype_strains']}, "
                f"phenotype strains: {summary['n_phenotype_strains']}, "
                f"common strains: {summary['n_common_strains']}"
            )
            if len(strains) < MIN_COMMON_STRAINS:
                raise ValueError(
                    f"Test {self.name!r} needs at least {MIN_COMMON_STRAINS} common strains, "
                    f"found {len(strains)}"
                )
            self._strains = strains
        return self._strains

    @property
    def phenotypes(self) -> Dict[str, List[float]]:
        return self.phenotype_source.get_phenotype_data(self.strains)

    def cache_key(self, chromosome: int):
        return make_cache_key(self.phenotype_source.name, self.genome_source.name, self.strains, chromosome)

    def partition_chromosome(self, chromosome: int) -> list:
        return self.partitioning.partition(self.genome_source, self.strains, chromosome)

    def test_partitions(self, partitions: list) -> list:
        return self.tester.test(partitions, self.strains, self.phenotypes)

    def test_chromosome(self, chromosome: int) -> list:
        """Partition and test one chromosome"""
        def produce():
            partitions = self.partitioning.assemble([self.partition_chromosome(chromosome)], self.strains)
            return self.test_partitions(partitions)

        if self.cache is not None:
            return self.cache.get_or_compute(self.cache_key(chromosome), produce)
        return produce()

    def _chromosomes(self, chromosomes: Optional[Iterable[int]]) -> List[int]:
        available = self.genome_source.chromosomes
        if chromosomes is None:
            return available
        chromosomes = sorted(set(chromosomes))
        missing = [c for c in chromosomes if c not in available]
        if missing:
            raise ValueError(f"Chromosomes not present in genome {self.genome_source.name!r}: {missing}")
        return chromosomes

    def _map_chromosomes(self, method: str, chromosomes: List[int], n_jobs: int,
                         cancel_event: Optional[threading.Event]) -> Dict[int, Any]:
        results: Dict[int, Any] = {}
        if n_jobs > 1 and len(chromosomes) > 1:
            pending = list(chromosomes)
            if method == 'test_chromosome' and self.cache is not None:
                for chromosome in chromosomes:
                    if self.cache.contains(self.cache_key(chromosome)):
                        results[chromosome] = self.test_chromosome(chromosome)
                        pending.remove(chromosome)
            if not pending or (cancel_event is not None and cancel_event.is_set()):
                return results
            # Worker copies run without the cache; results are stored here
            worker_test = self.without_cache()
            with concurrent.futures.ProcessPoolExecutor(max_workers=min(n_jobs, len(pending))) as executor:
                futures = [
                    executor.submit(_run_chromosome_worker, worker_test, method, chromosome)
                    for chromosome in pending
                ]
                for future in concurrent.futures.as_completed(futures):
                    chromosome, value, error = future.result()
                    if error is not None:
                        raise error
                    results[chromosome] = value
            if method == 'test_chromosome' and self.cache is not None:
                for chromosome in pending:
                    value = results[chromosome]
                    self.cache.get_or_compute(self.cache_key(chromosome), lambda: value)
            return results

        for chromosome in tqdm(chromosomes, desc=f"{self.name}", disable=not self.verbose):
            if cancel_event is not None and cancel_event.is_set():
                self.log(f"   [{self.name}] cancelled before chromosome {chromosome}")
                break
            results[chromosome] = getattr(self, method)(chromosome)
        return results

    def without_cache(self) -> "AssociationTest":
        clone = AssociationTest.__new__(AssociationTest)
        clone.__dict__.update(self.__dict__)
        clone.cache = None
        clone.verbose = False
        return clone

    def run(self, chromosomes: Optional[Iterable[int]] = None, n_jobs: int = 1,
            cancel_event: Optional[threading.Event] = None) -> list:
        """
        Run the test over ``chromosomes`` (all chromosomes by default).

        Returns:
            Result list in chromosome then interval order. Haplotype tests
            return one result per genome-wide equivalence class.
        """
        chromosomes = self._chromosomes(chromosomes)
        strains = self.strains
        if self.partitioning.genome_wide:
            per_chromosome = self._map_chromosomes('partition_chromosome', chromosomes, n_jobs, cancel_event)
            partitions = self.partitioning.assemble(
                [per_chromosome[c] for c in chromosomes if c in per_chromosome], strains
            )
            return self.test_partitions(partitions)

        per_chromosome = self._map_chromosomes('test_chromosome', chromosomes, n_jobs, cancel_event)
        return [r for c in chromosomes if c in per_chromosome for r in per_chromosome[c]]

    def to_results(self, results: list):
        """Wrap a result list in the matching results table class"""
        if self.kind == 'haplotype':
            return HaplotypeAssociationResults(results, self.strains)
        if self.kind == 'multigroup':
            return MultiGroupAssociationResults(results, self.strains)
        return PhylogenyAssociationResults(results)


class CachingAssociationTest:
    """Memoising facade around an AssociationTest

    Per-chromosome and whole-run results are computed once and reused.
    """

    def __init__(self, test: AssociationTest):
        self.test = test
        self._chromosome_results: Dict[int, list] = {}
        self._run_results: Dict[Tuple[int, ...], list] = {}
        self._lock = threading.Lock()

    def __getattr__(self, item):
        return getattr(self.test, item)

    def test_chromosome(self, chromosome: int) -> list:
        with self._lock:
            if chromosome not in self._chromosome_results:
                self._chromosome_results[chromosome] = self.test.test_chromosome(chromosome)
            return self._chromosome_results[chromosome]

    def run(self, chromosomes: Optional[Iterable[int]] = None, n_jobs: int = 1,
            cancel_event: Optional[threading.Event] = None) -> list:
        key = tuple(self.test._chromosomes(chromosomes))
        with self._lock:
            if key not in self._run_results:
                results = self.test.run(key, n_jobs=n_jobs, cancel_event=cancel_event)
                if cancel_event is not None and cancel_event.is_set():
                    return results
                self._run_results[key] = results
            return self._run_results[key]


class HAMPipeline:
    """
    High-level pipeline for Haplotype Association Mapping (HAM).

    Typical workflow:
        1. Initialize pipeline with output directory
        2. Load genotype and phenotype data (or register sources directly)
        3. Add one or more tests
        4. Run the tests; results are saved to the output directory

    Example:
        >>> from haplomap.pipelines.ham import HAMPipeline
        >>> pipeline = HAMPipeline(output_dir='./ham_results')
        >>> pipeline.load_data(genotype_file='strains.csv', phenotype_file='pheno.tsv',
        ...                    phenotype_name='HDL')
        >>> pipeline.add_test('hdl', kind='haplotype')
        >>> pipeline.add_test('hdl_tree', kind='phylogeny')
        >>> pipeline.run_analysis()
    """

    def __init__(self, output_dir: str = "./HAM_results", registry: Optional[DataRegistry] = None,
                 cache: Optional[ResultCache] = None, verbose: bool = True):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.registry = registry if registry is not None else DataRegistry()
        self.cache = cache
        self.verbose = verbose

        self.tests: Dict[str, CachingAssociationTest] = {}
        self.results: Dict[str, Any] = {}
        self.errors: Dict[str, str] = {}

    def log(self, message: str):
        """Internal logger"""
        if self.verbose:
            print(message)

    def log_step(self, step_name: str, start_time: Optional[float] = None):
        """Log a pipeline step with optional timing"""
        if start_time is not None:
            elapsed = time.time() - start_time
            self.log(f"{step_name} completed in {elapsed:.2f} seconds")
        else:
            self.log(f"{step_name}...")

    def load_data(self,
                  genotype_file: str,
                  phenotype_file: str,
                  phenotype_name: Optional[str] = None,
                  sex_filter: Union[str, SexFilter] = SexFilter.ANY,
                  strains: Optional[Sequence[str]] = None,
                  chromosomes: Optional[Sequence[int]] = None,
                  min_snp_extent: int = 1,
                  min_strain_group_size: int = 2,
                  genome_name: Optional[str] = None) -> Tuple[str, str]:
        """
        Load a genotype CSV and one phenotype from a tall table and register them.

        Returns:
            Tuple of (phenotype source name, genome source name)

        Raises:
            ValueError: If either file cannot be loaded or validated
        """
        step_start = time.time()
        self.log_step("Step 1: Loading input data")

        try:
            phenotype = PhenotypeDataSource.from_file(
                phenotype_file, phenotype_name=phenotype_name, sex_filter=sex_filter, strains=strains
            )
        except (HamError, ValueError) as e:
            raise ValueError(f"Error loading phenotype file: {e}") from e
        self.registry.add_phenotype(phenotype)
        self.log(f"   Loaded phenotype {phenotype.name!r} for {len(phenotype.strains)} strains")

        try:
            haplotype, phylogeny = load_genome_sources(
                genotype_file,
                name=genome_name,
                strain_filter=strains,
                min_snp_extent=min_snp_extent,
                min_strain_group_size=min_strain_group_size,
                chromosomes=chromosomes,
                verbose=self.verbose,
            )
        except (HamError, ValueError) as e:
            raise ValueError(f"Error loading genotype file: {e}") from e
        self.registry.add_haplotype(haplotype)
        self.registry.add_phylogeny(phylogeny)
        self.log(f"   Loaded genome {haplotype.name!r}: {len(haplotype.strains)} strains, "
                 f"chromosomes {haplotype.chromosomes}")

        self.log_step("Data loading", step_start)
        return phenotype.name, haplotype.name

    def add_test(self, name: str, kind: str, phenotype: Optional[str] = None,
                 genome: Optional[str] = None, normalize: bool = False) -> CachingAssociationTest:
        """Register a test against named sources (the only registered ones by default)"""
        if name in self.tests:
            raise ValueError(f"Test {name!r} is already defined")
        phenotype_source = self.registry.phenotype(phenotype or self._single(self.registry.phenotype_sources, 'phenotype'))
        sources = self.registry.phylogeny_sources if kind == 'phylogeny' else self.registry.haplotype_sources
        genome_name = genome or self._single(sources, 'genome')
        genome_source = (
            self.registry.phylogeny(genome_name) if kind == 'phylogeny' else self.registry.haplotype(genome_name)
        )
        test = CachingAssociationTest(AssociationTest(
            name, kind, phenotype_source, genome_source,
            normalize=normalize, cache=self.cache, verbose=self.verbose,
        ))
        self.tests[name] = test
        return test

    @staticmethod
    def _single(registry: dict, kind: str) -> str:
        if len(registry) != 1:
            raise ValueError(f"Name the {kind} source explicitly; {len(registry)} are registered")
        return next(iter(registry))

    def run_analysis(self, tests: Optional[Sequence[str]] = None,
                     chromosomes: Optional[Sequence[int]] = None,
                     n_jobs: int = 1,
                     save: bool = True,
                     cancel_event: Optional[threading.Event] = None) -> Dict[str, Any]:
        """
        Run tests and optionally save their tables.

        A failing test is logged and recorded in ``self.errors``; the remaining
        tests still run.
        """
        names = list(tests) if tests is not None else list(self.tests)
        step_start = time.time()
        self.log_step(f"Step 2: Running {len(names)} association test(s)")

        for name in names:
            if cancel_event is not None and cancel_event.is_set():
                self.log("   Analysis cancelled")
                break
            test = self.tests[name]
            test_start = time.time()
            try:
                results = test.run(chromosomes, n_jobs=n_jobs, cancel_event=cancel_event)
            except (HamError, ValueError) as e:
                self.errors[name] = str(e)
                self.log(f"   [{name}] failed: {e}")
                continue
            table = test.to_results(results)
            self.results[name] = table
            self.log(f"   [{name}] {len(results)} {test.kind} results in {time.time() - test_start:.2f} seconds")
            if save:
                self.save_results(name, table)

        self.log_step("Association testing", step_start)
        return self.results

    def save_results(self, name: str, table) -> List[Path]:
        """Write a results table: CSV for block tests, one TSV per chromosome for phylogenies"""
        written: List[Path] = []
        if isinstance(table, HaplotypeAssociationResults):
            path = self.output_dir / f"{name}_haplotype_association.csv"
            table.to_dataframe().to_csv(path, index=False)
            written.append(path)
        elif isinstance(table, MultiGroupAssociationResults):
            path = self.output_dir / f"{name}_multigroup_association.csv"
            table.to_dataframe().to_csv(path, index=False)
            written.append(path)
        else:
            by_chromosome: Dict[int, List[PhylogenyTestResult]] = {}
            for result in table.results:
                by_chromosome.setdefault(result.phylogeny_interval.interval.chromosome, []).append(result)
            for chromosome, results in sorted(by_chromosome.items()):
                path = self.output_dir / f"{name}_chr{chromosome}_phylogeny.tsv"
                PhylogenyAssociationResults(results).to_dataframe().to_csv(path, sep='\t', index=False)
                written.append(path)
        for path in written:
            self.log(f"   Saved {path}")
        return written

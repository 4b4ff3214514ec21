"""
Phenotype and genome data sources, and the registry that holds them

Sources are configured once and then only read, so the same objects can be
shared by every test of an experiment.
"""

from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Deque, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from ..association.blocks import estimate_blocks, estimate_multi_group_blocks
from ..association.equivalence import create_equivalence_classes
from ..association.maxk import scan_chromosome
from ..association.phylogeny import PhylogenyInterval, infer_perfect_phylogeny
from ..data.load_genotype_csv import StrainGenotypes, load_genotype_csv
from ..data.loaders import SexFilter, available_phenotypes, load_phenotype_file
from ..data.sdp_stream import FORWARD, SdpStream, SnpPositionStream
from ..utils.data_types import (
    EquivalenceClass,
    IndexedSnpInterval,
    MultiPartitionedInterval,
    PartitionedInterval,
)
from ..utils.errors import NoValidPhylogeny


class PhenotypeDataSource:
    """Named phenotype: strain -> measurements"""

    def __init__(self, name: str, data: Dict[str, Sequence[float]]):
        self.name = name
        self._data = {strain: list(values) for strain, values in data.items() if len(values)}

    @classmethod
    def from_file(cls, filepath: Union[str, Path], phenotype_name: Optional[str] = None,
                  sex_filter: Union[str, SexFilter] = SexFilter.ANY,
                  strains: Optional[Iterable[str]] = None,
                  name: Optional[str] = None) -> "PhenotypeDataSource":
        data = load_phenotype_file(filepath, phenotype_name=phenotype_name,
                                   sex_filter=sex_filter, strains=strains)
        sex = SexFilter.parse(sex_filter)
        if name is None:
            label = phenotype_name or available_phenotypes(filepath)[0]
            name = label if sex is SexFilter.ANY else f"{label}_{sex.value}"
        return cls(name, data)

    @property
    def strains(self) -> List[str]:
        return sorted(self._data)

    def get_phenotype_data(self, strains: Optional[Iterable[str]] = None) -> Dict[str, List[float]]:
        """Measurements restricted to ``strains`` (all strains if None)"""
        if strains is None:
            return {s: list(v) for s, v in self._data.items()}
        return {s: list(self._data[s]) for s in strains if s in self._data}


class GenomeDataSource:
    """Genotypes plus a persistent strain filter"""

    def __init__(self, name: str, genotypes: StrainGenotypes,
                 strain_filter: Optional[Iterable[str]] = None):
        self.name = name
        self.genotypes = genotypes
        self.strain_filter = set(strain_filter) if strain_filter is not None else None

    @property
    def strains(self) -> List[str]:
        strains = set(self.genotypes.strains)
        if self.strain_filter is not None:
            strains &= self.strain_filter
        return sorted(strains)

    @property
    def chromosomes(self) -> List[int]:
        return self.genotypes.chromosome_numbers

    def sdp_stream(self, chromosome: int, strains: Sequence[str], direction: str = FORWARD) -> SdpStream:
        return SdpStream(self.genotypes, chromosome, strains, direction)

    def snp_positions(self, chromosome: int, strains: Sequence[str]) -> List[int]:
        return SnpPositionStream(self.genotypes, chromosome, strains).to_array().tolist()


class HaplotypeDataSource(GenomeDataSource):
    """Genome source that infers haplotype blocks

    Args:
        min_snp_extent: Minimum number of SNPs per block
        min_strain_group_size: Minimum number of strains sharing a block haplotype
    """

    def __init__(self, name: str, genotypes: StrainGenotypes,
                 strain_filter: Optional[Iterable[str]] = None,
                 min_snp_extent: int = 1, min_strain_group_size: int = 2):
        super().__init__(name, genotypes, strain_filter)
        if min_snp_extent < 1:
            raise ValueError(f"min_snp_extent must be >= 1, got {min_snp_extent}")
        if min_strain_group_size < 2:
            raise ValueError(f"min_strain_group_size must be >= 2, got {min_strain_group_size}")
        self.min_snp_extent = min_snp_extent
        self.min_strain_group_size = min_strain_group_size

    def blocks(self, chromosome: int, strains: Sequence[str]) -> List[PartitionedInterval]:
        return estimate_blocks(
            self.sdp_stream(chromosome, strains),
            self.snp_positions(chromosome, strains),
            self.min_snp_extent,
            self.min_strain_group_size,
        )

    def multi_group_blocks(self, chromosome: int, strains: Sequence[str]) -> List[MultiPartitionedInterval]:
        return estimate_multi_group_blocks(
            self.sdp_stream(chromosome, strains),
            self.snp_positions(chromosome, strains),
            self.min_snp_extent,
            self.min_strain_group_size,
        )

    def equivalence_classes(self, strains: Sequence[str],
                            chromosomes: Optional[Iterable[int]] = None) -> List[EquivalenceClass]:
        strains = sorted(strains)
        blocks: List[PartitionedInterval] = []
        for chromosome in (self.chromosomes if chromosomes is None else chromosomes):
            blocks.extend(self.blocks(chromosome, strains))
        return create_equivalence_classes(blocks, len(strains))


def collect_interval_sdps(stream: SdpStream,
                          intervals: Sequence[IndexedSnpInterval]) -> List[List[int]]:
    """SDP columns of each interval from a single forward pass

    Intervals must be sorted with non-decreasing starts and ends (as MAX-K
    output is), so only the SDPs from the current interval start on are held.
    """
    columns: List[List[int]] = []
    buffer: Deque[Tuple[int, int]] = deque()
    next_index = 0
    for interval in intervals:
        while buffer and buffer[0][0] < interval.start_index:
            buffer.popleft()
        while next_index <= interval.end_index:
            sdp = stream.next_sdp()
            if sdp is None:
                raise ValueError(f"SDP stream ended before SNP {interval.end_index}")
            if next_index >= interval.start_index:
                buffer.append((next_index, sdp))
            next_index += 1
        columns.append([sdp for index, sdp in buffer if index <= interval.end_index])
    return columns


class PhylogenyDataSource(GenomeDataSource):
    """Genome source producing one perfect phylogeny per MAX-K interval"""

    def phylogeny_intervals(self, chromosome: int, strains: Sequence[str],
                            skipped: Optional[List[Tuple[int, str]]] = None) -> List[PhylogenyInterval]:
        """
        Build the perfect phylogenies of one chromosome.

        Intervals whose columns do not admit a perfect phylogeny are skipped
        and, when ``skipped`` is given, recorded there as (start_bp, message).
        """
        strains = sorted(strains)
        intervals = scan_chromosome(self.sdp_stream(chromosome, strains))
        positions = self.snp_positions(chromosome, strains)
        columns = collect_interval_sdps(self.sdp_stream(chromosome, strains), intervals)

        phylogenies = []
        for interval, sdps in zip(intervals, columns):
            bp_interval = interval.to_base_pair_interval(chromosome, positions)
            try:
                tree = infer_perfect_phylogeny(sdps, strains)
            except NoValidPhylogeny as exc:
                if skipped is not None:
                    skipped.append((bp_interval.start_bp, str(exc)))
                continue
            phylogenies.append(PhylogenyInterval(tree, bp_interval))
        return phylogenies


@dataclass
class DataRegistry:
    """Sources of one experiment by name, filled once and read by every test"""

    phenotype_sources: Dict[str, PhenotypeDataSource] = field(default_factory=dict)
    haplotype_sources: Dict[str, HaplotypeDataSource] = field(default_factory=dict)
    phylogeny_sources: Dict[str, PhylogenyDataSource] = field(default_factory=dict)

    @staticmethod
    def _add(registry: dict, source, kind: str):
        if source.name in registry:
            raise ValueError(f"{kind} source {source.name!r} is already registered")
        registry[source.name] = source
        return source

    @staticmethod
    def _get(registry: dict, name: str, kind: str):
        try:
            return registry[name]
        except KeyError:
            raise ValueError(
                f"Unknown {kind} source {name!r}; registered: {', '.join(sorted(registry)) or 'none'}"
            ) from None

    def add_phenotype(self, source: PhenotypeDataSource) -> PhenotypeDataSource:
        return self._add(self.phenotype_sources, source, 'Phenotype')

    def add_haplotype(self, source: HaplotypeDataSource) -> HaplotypeDataSource:
        return self._add(self.haplotype_sources, source, 'Haplotype')

    def add_phylogeny(self, source: PhylogenyDataSource) -> PhylogenyDataSource:
        return self._add(self.phylogeny_sources, source, 'Phylogeny')

    def phenotype(self, name: str) -> PhenotypeDataSource:
        return self._get(self.phenotype_sources, name, 'phenotype')

    def haplotype(self, name: str) -> HaplotypeDataSource:
        return self._get(self.haplotype_sources, name, 'haplotype')

    def phylogeny(self, name: str) -> PhylogenyDataSource:
        return self._get(self.phylogeny_sources, name, 'phylogeny')


def load_genome_sources(genotype_file: Union[str, Path], name: Optional[str] = None,
                        strain_filter: Optional[Iterable[str]] = None,
                        min_snp_extent: int = 1, min_strain_group_size: int = 2,
                        chromosomes: Optional[Sequence[int]] = None,
                        verbose: bool = False) -> Tuple[HaplotypeDataSource, PhylogenyDataSource]:
    """Load a genotype CSV once and wrap it as haplotype and phylogeny sources"""
    genotypes = load_genotype_csv(genotype_file, chromosomes=chromosomes, verbose=verbose)
    name = name or Path(genotype_file).stem
    return (
        HaplotypeDataSource(name, genotypes, strain_filter, min_snp_extent, min_strain_group_size),
        PhylogenyDataSource(name, genotypes, strain_filter),
    )

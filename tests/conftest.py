from datetime import datetime
from typing import Optional, Union

import pytest

from dpb1_epitope.gl import (
    Allele,
    AlleleList,
    Genotype,
    GenotypeList,
    Haplotype,
    Locus,
)
from dpb1_epitope.match_service import MatchService
from dpb1_epitope.models import AllelePair, DetailRace, ImmuneGroup
from dpb1_epitope.reference import (
    FrequencyTable,
    ImmuneGroupTable,
    StoredImmuneGroups,
)

DPB1: Locus = Locus("HLA-DPB1")
DRB1: Locus = Locus("HLA-DRB1")

# Shorthand for an unassigned immune group in test tables.
U: str = "u"

GroupCode = Union[int, str, None]


def dpb1(name: str) -> Allele:
    """
    e.g. dpb1("04:01") is HLA-DPB1*04:01.
    """
    return Allele(glstring=f"HLA-DPB1*{name}", locus=DPB1)


def drb1(name: str) -> Allele:
    return Allele(glstring=f"HLA-DRB1*{name}", locus=DRB1)


def haplotype(*alleles: Union[str, Allele]) -> Haplotype:
    """
    A haplotype with a single allele list; strings are DPB1 allele names.
    """
    return Haplotype(
        allele_lists=(
            AlleleList(
                alleles=tuple(dpb1(a) if isinstance(a, str) else a for a in alleles)
            ),
        )
    )


def genotype(*haplotypes: Haplotype) -> Genotype:
    return Genotype(haplotypes=tuple(haplotypes))


def genotype_list(*genotypes: Genotype) -> GenotypeList:
    return GenotypeList(genotypes=tuple(genotypes))


def group(code: GroupCode) -> Optional[ImmuneGroup]:
    if code is None:
        return None
    if code == U:
        return ImmuneGroup.unassigned()
    return ImmuneGroup.of(int(code))


def allele_pair(
    name1: str,
    group1: GroupCode,
    name2: str,
    group2: GroupCode,
    race: DetailRace = DetailRace.EURCAU,
) -> AllelePair:
    return AllelePair(
        allele1=dpb1(name1),
        group1=group(group1),
        allele2=dpb1(name2),
        group2=group(group2),
        race=race,
    )


TEST_IMMUNE_GROUPS: StoredImmuneGroups = StoredImmuneGroups(
    tag="test-groups",
    last_updated=datetime(2025, 6, 2, 12, 0, 0),
    groups={
        1: ["HLA-DPB1*09:01", "HLA-DPB1*10:01"],
        2: ["HLA-DPB1*03:01"],
        3: [
            "HLA-DPB1*01:01",
            "HLA-DPB1*02:01",
            "HLA-DPB1*04:01",
            "HLA-DPB1*13:01",
            "HLA-DPB1*28:01",
        ],
    },
    unassigned=["HLA-DPB1*98:01", "HLA-DPB1*99:01"],
)

TEST_FREQUENCIES: dict[DetailRace, dict[str, float]] = {
    DetailRace.EURCAU: {
        "HLA-DPB1*04:01": 0.4,
        "HLA-DPB1*02:01": 0.1,
        "HLA-DPB1*03:01": 0.1,
        "HLA-DPB1*13:01": 0.1,
        "HLA-DPB1*09:01": 0.7,
        "HLA-DPB1*10:01": 0.3,
        "HLA-DPB1*27:01": 0.0,
        "HLA-DPB1*28:01": 0.0,
    },
}

TEST_BASELINE_FREQUENCY: float = 0.001


@pytest.fixture
def immune_groups() -> ImmuneGroupTable:
    return ImmuneGroupTable(TEST_IMMUNE_GROUPS)


@pytest.fixture
def frequencies() -> FrequencyTable:
    return FrequencyTable(TEST_FREQUENCIES, TEST_BASELINE_FREQUENCY)


@pytest.fixture
def match_service(
    immune_groups: ImmuneGroupTable,
    frequencies: FrequencyTable,
) -> MatchService:
    return MatchService(
        immune_group_resolver=immune_groups.resolve,
        frequency_lookup=frequencies.get_frequency,
        match_probability_precision=0.01,
    )

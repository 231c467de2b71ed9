import logging
from collections.abc import Callable, Mapping
from typing import Final, Optional, Union

import numpy as np

from .config import MatchConfig
from .gl import (
    DPB1_LOCUS_NAME,
    Allele,
    Genotype,
    GenotypeList,
    GlStringResolver,
    Haplotype,
    InvalidLocusError,
    Locus,
    create_locus,
)
from .models import AllelePair, DetailRace, ImmuneGroup, MatchGrade, MatchResult
from .reference import FrequencyTable, GGroupTable, ImmuneGroupTable
from .trace import MatchObserver

logger: logging.Logger = logging.getLogger(__name__)

ImmuneGroupResolver = Callable[[Allele], Optional[ImmuneGroup]]
FrequencyLookup = Callable[[DetailRace, str], float]
GenotypeListResolver = Callable[[str], GenotypeList]
LocusFactory = Callable[[str], Locus]

PURE_GRADES: Final[tuple[MatchGrade, ...]] = MatchGrade.pure_grades()
GRADE_INDEX: Final[dict[MatchGrade, int]] = {
    grade: idx for idx, grade in enumerate(PURE_GRADES)
}


class GenotypeError(ValueError):
    pass


class NoHaplotypesError(GenotypeError):
    pass


class UnsupportedHaplotypeCountError(GenotypeError):
    pass


class NoViableAllelePairsError(ValueError):
    pass


def precision_resolution(precision: float) -> int:
    """
    Convert a rounding precision such as 0.01 into a resolution such as 100.
    """
    if not 0.0 < precision <= 1.0:
        raise ValueError(f"precision must be in (0, 1], not {precision}")
    return int(round(1.0 / precision))


def round_probabilities(probabilities: np.ndarray, resolution: int) -> np.ndarray:
    """
    Round each probability to the nearest multiple of 1/resolution.

    Halves are rounded up.  The rounded values are not renormalized.
    """
    return np.floor(probabilities * resolution + 0.5) / resolution


class MatchService:
    """
    Computes HLA-DPB1 T-cell epitope match probabilities between a recipient
    and a donor.

    For each party, every genotype in the party's genotype list is expanded
    into weighted candidate pairs of DPB1 alleles.  Every recipient pair is
    then graded against every donor pair, and the weights are accumulated per
    grade to produce the match probabilities and an overall match grade.
    """

    class LocusInitializationError(Exception):
        pass

    class NoMatchGradeError(Exception):
        pass

    def __init__(
        self,
        immune_group_resolver: ImmuneGroupResolver,
        frequency_lookup: FrequencyLookup,
        genotype_list_resolver: Optional[GenotypeListResolver] = None,
        match_probability_precision: float = 0.01,
        locus_factory: LocusFactory = create_locus,
    ):
        """
        :param immune_group_resolver: maps an allele to its immune group, or
        None if its group is unknown
        :param frequency_lookup: maps a race and allele name to the allele's
        population frequency
        :param genotype_list_resolver: converts a GL string to a GenotypeList;
        defaults to a plain GlStringResolver
        :param match_probability_precision: precision the match probabilities
        are rounded to, e.g. 0.01
        :param locus_factory: creates the DPB1 locus handle
        :raises LocusInitializationError: if the DPB1 locus can't be created
        """
        try:
            self.dpb1: Locus = locus_factory(DPB1_LOCUS_NAME)
        except InvalidLocusError as e:
            raise MatchService.LocusInitializationError(
                "unable to create DPB1 locus"
            ) from e

        self.immune_group_resolver: ImmuneGroupResolver = immune_group_resolver
        self.frequency_lookup: FrequencyLookup = frequency_lookup
        self.genotype_list_resolver: GenotypeListResolver = (
            genotype_list_resolver or GlStringResolver()
        )
        self.match_probability_precision: float = match_probability_precision
        self.resolution: int = precision_resolution(match_probability_precision)

    @classmethod
    def use_config(cls, config: Optional[MatchConfig] = None) -> "MatchService":
        """
        An alternate constructor that builds the reference tables from the
        configuration.
        """
        if config is None:
            config = MatchConfig.load()

        immune_groups: ImmuneGroupTable = ImmuneGroupTable.load(
            config.immune_groups_path
        )
        frequencies: FrequencyTable = FrequencyTable.load(
            config.frequencies_path,
            config.baseline_allele_frequency,
        )
        transformer: Optional[Callable[[str], str]] = None
        if config.apply_g_groups:
            transformer = GGroupTable.load(config.g_groups_path).transform_gl_string

        return cls(
            immune_group_resolver=immune_groups.resolve,
            frequency_lookup=frequencies.get_frequency,
            genotype_list_resolver=GlStringResolver(transformer),
            match_probability_precision=config.match_probability_precision,
        )

    @staticmethod
    def get_match_grade(
        recipient_pair: AllelePair,
        donor_pair: AllelePair,
    ) -> MatchGrade:
        """
        Grade a single recipient allele pair against a single donor allele pair.

        Identical alleles are a MATCH.  Otherwise the pairs are compared by
        their lowest (i.e. most immunogenic) immune groups: a recipient whose
        lowest group is higher than the donor's is an HVG (host-versus-graft)
        non-permissive mismatch, and the reverse is a GVH (graft-versus-host)
        non-permissive mismatch.
        """
        if recipient_pair.type_equals(donor_pair):
            return MatchGrade.MATCH

        recipient_low: Optional[ImmuneGroup] = recipient_pair.low_group
        recipient_high: Optional[ImmuneGroup] = recipient_pair.high_group
        donor_low: Optional[ImmuneGroup] = donor_pair.low_group
        donor_high: Optional[ImmuneGroup] = donor_pair.high_group

        grade: MatchGrade
        if (
            recipient_low is None
            or recipient_high is None
            or donor_low is None
            or donor_high is None
        ):
            grade = MatchGrade.UNKNOWN
        elif not recipient_high.is_assigned and not donor_high.is_assigned:
            grade = MatchGrade.PERMISSIVE
        elif not recipient_high.is_assigned:
            grade = MatchGrade.GVH_NONPERMISSIVE
        elif not donor_high.is_assigned:
            grade = MatchGrade.HVG_NONPERMISSIVE
        else:
            if not recipient_low.is_assigned:
                recipient_low = recipient_high
            if not donor_low.is_assigned:
                donor_low = donor_high

            if recipient_low == donor_low:
                grade = MatchGrade.PERMISSIVE
            elif donor_low < recipient_low:
                grade = MatchGrade.HVG_NONPERMISSIVE
            else:
                grade = MatchGrade.GVH_NONPERMISSIVE

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                f"Matched:rp:{recipient_pair},dp:{donor_pair} -> "
                f"{recipient_low}/{donor_low} -> {grade.value}"
            )
        return grade

    @staticmethod
    def get_haplotype_pair(
        genotype: Genotype,
        genotype_list: GenotypeList,
    ) -> tuple[Haplotype, Haplotype]:
        """
        Get the two haplotypes of the genotype.

        A genotype with a single haplotype is homozygous, and that haplotype is
        returned in both positions.
        """
        haplotypes: tuple[Haplotype, ...] = genotype.haplotypes
        if len(haplotypes) == 2:
            return haplotypes[0], haplotypes[1]
        elif len(haplotypes) == 1:
            return haplotypes[0], haplotypes[0]
        elif len(haplotypes) == 0:
            raise NoHaplotypesError(
                f"no haplotypes for genotype in GL string {genotype_list.glstring}"
            )
        raise UnsupportedHaplotypeCountError(
            f"unsupported haplotype count {len(haplotypes)} (expecting 1 or 2) "
            f"for genotype {genotype.glstring}"
        )

    def get_allele_pairs(
        self,
        genotype_list: GenotypeList,
        race: DetailRace,
        observer: Optional[MatchObserver] = None,
    ) -> dict[AllelePair, float]:
        """
        Expand a genotype list into candidate DPB1 allele pairs and their
        probabilities.

        The alleles of a haplotype with a single DPB1 allele are certain;
        otherwise each candidate allele is weighted by its frequency in the
        given race, and candidates with frequency 0 are dropped.  A pair drawn
        from two distinct haplotypes has its weight doubled, as either
        haplotype could carry either allele.

        All genotypes write into one mapping (a pair that recurs replaces the
        earlier entry), and the whole mapping is renormalized after each
        genotype.

        :raises GenotypeError: if a genotype doesn't have 1 or 2 haplotypes
        :raises NoViableAllelePairsError: if no candidate pair survives
        """
        if observer is None:
            observer = MatchObserver()

        allele_pairs: dict[AllelePair, float] = {}
        for genotype in genotype_list.genotypes:
            h1: Haplotype
            h2: Haplotype
            h1, h2 = self.get_haplotype_pair(genotype, genotype_list)

            h1_alleles: list[Allele] = h1.alleles_at(self.dpb1)
            h2_alleles: list[Allele] = h2.alleles_at(self.dpb1)
            h1_unambiguous: bool = len(h1_alleles) == 1
            h2_unambiguous: bool = len(h2_alleles) == 1

            dropped: set[Allele] = set()
            for a1 in h1_alleles:
                a1_freq: float = (
                    1.0
                    if h1_unambiguous
                    else self.frequency_lookup(race, a1.glstring)
                )
                if a1_freq == 0.0:
                    if a1 not in dropped:
                        observer.candidate_dropped(a1, a1_freq)
                        dropped.add(a1)
                    continue

                for a2 in h2_alleles:
                    a2_freq: float = (
                        1.0
                        if h2_unambiguous
                        else self.frequency_lookup(race, a2.glstring)
                    )
                    if a2_freq == 0.0:
                        if a2 not in dropped:
                            observer.candidate_dropped(a2, a2_freq)
                            dropped.add(a2)
                        continue

                    probability: float = a1_freq * a2_freq
                    # The same haplotype object twice is the homozygous case,
                    # which has only one phase.
                    if h1 is not h2:
                        probability *= 2

                    g1: Optional[ImmuneGroup] = self.immune_group_resolver(a1)
                    g2: Optional[ImmuneGroup] = self.immune_group_resolver(a2)
                    observer.pair_expanded(a1, g1, a1_freq, a2, g2, a2_freq)
                    allele_pairs[
                        AllelePair(
                            allele1=a1, group1=g1, allele2=a2, group2=g2, race=race
                        )
                    ] = probability

            total: float = sum(allele_pairs.values())
            if total == 0.0:
                raise NoViableAllelePairsError(
                    f"no viable allele pairs for genotype {genotype.glstring} "
                    f"(race {race.value})"
                )
            for allele_pair in allele_pairs:
                allele_pairs[allele_pair] /= total

        if len(allele_pairs) == 0:
            raise NoViableAllelePairsError(
                f'no genotypes in genotype list "{genotype_list.glstring}"'
            )
        return allele_pairs

    @staticmethod
    def resolve_match_grade(
        has_match: bool,
        has_permissive: bool,
        has_hvg: bool,
        has_gvh: bool,
        has_unknown: bool,
    ) -> MatchGrade:
        """
        Resolve the overall match grade from which pure grades are possible.

        The cases are checked in order and the first that applies wins.

        :raises NoMatchGradeError: if no grade is possible at all
        """
        cases: list[tuple[bool, MatchGrade]] = [
            (
                has_match and (has_permissive or has_hvg or has_gvh or has_unknown),
                MatchGrade.POTENTIAL,
            ),
            (has_match, MatchGrade.MATCH),
            (
                has_permissive and (has_hvg or has_gvh or has_unknown),
                MatchGrade.POTENTIAL,
            ),
            (has_permissive, MatchGrade.PERMISSIVE),
            (has_hvg and (has_gvh or has_unknown), MatchGrade.NONPERMISSIVE_UNDEFINED),
            (has_hvg, MatchGrade.HVG_NONPERMISSIVE),
            (has_gvh and has_unknown, MatchGrade.NONPERMISSIVE_UNDEFINED),
            (has_gvh, MatchGrade.GVH_NONPERMISSIVE),
            (has_unknown, MatchGrade.UNKNOWN),
        ]
        for applies, grade in cases:
            if applies:
                return grade
        raise MatchService.NoMatchGradeError("no recognized match grades possible")

    def aggregate(
        self,
        recipient_pairs: Mapping[AllelePair, float],
        donor_pairs: Mapping[AllelePair, float],
        observer: Optional[MatchObserver] = None,
    ) -> MatchResult:
        """
        Combine the recipient's and donor's allele pairs into a MatchResult.

        Every recipient pair is graded against every donor pair, and the
        product of their probabilities is added to that grade's total.  The
        totals are normalized and rounded to the configured precision.
        """
        if observer is None:
            observer = MatchObserver()

        totals: np.ndarray = np.zeros(len(PURE_GRADES))
        for recipient_pair, recipient_prob in recipient_pairs.items():
            for donor_pair, donor_prob in donor_pairs.items():
                grade: MatchGrade = self.get_match_grade(recipient_pair, donor_pair)
                probability: float = recipient_prob * donor_prob
                observer.pair_classified(
                    recipient_pair,
                    recipient_prob,
                    donor_pair,
                    donor_prob,
                    grade,
                    probability,
                )
                totals[GRADE_INDEX[grade]] += probability

        total: float = float(totals.sum())
        if total == 0.0:
            raise NoViableAllelePairsError("no allele pair combinations to grade")
        rounded: np.ndarray = round_probabilities(totals / total, self.resolution)
        logger.debug(
            "finished with: "
            + ", ".join(
                f"{grade.value}={rounded[idx]}" for grade, idx in GRADE_INDEX.items()
            )
        )

        overall_grade: MatchGrade = self.resolve_match_grade(
            *(bool(rounded[GRADE_INDEX[grade]] > 0) for grade in PURE_GRADES)
        )
        return MatchResult(
            match_probability=float(rounded[GRADE_INDEX[MatchGrade.MATCH]]),
            permissive_probability=float(rounded[GRADE_INDEX[MatchGrade.PERMISSIVE]]),
            hvg_probability=float(rounded[GRADE_INDEX[MatchGrade.HVG_NONPERMISSIVE]]),
            gvh_probability=float(rounded[GRADE_INDEX[MatchGrade.GVH_NONPERMISSIVE]]),
            unknown_probability=float(rounded[GRADE_INDEX[MatchGrade.UNKNOWN]]),
            match_grade=overall_grade,
        )

    def get_match(
        self,
        recipient: Union[str, GenotypeList],
        recipient_race: Optional[DetailRace],
        donor: Union[str, GenotypeList],
        donor_race: Optional[DetailRace],
        observer: Optional[MatchObserver] = None,
    ) -> MatchResult:
        """
        Compute the match between a recipient and a donor.

        The recipient and donor typings may be given as GL strings (or GL
        service URIs), which are resolved with the genotype list resolver, or
        as GenotypeLists.  Missing races are treated as unknown.
        """
        if observer is None:
            observer = MatchObserver()
        if isinstance(recipient, str):
            recipient = self.genotype_list_resolver(recipient)
        if isinstance(donor, str):
            donor = self.genotype_list_resolver(donor)
        if recipient_race is None:
            recipient_race = DetailRace.UNK
        if donor_race is None:
            donor_race = DetailRace.UNK

        observer.set_context("r:")
        recipient_pairs: dict[AllelePair, float] = self.get_allele_pairs(
            recipient, recipient_race, observer
        )
        observer.set_context("d:")
        donor_pairs: dict[AllelePair, float] = self.get_allele_pairs(
            donor, donor_race, observer
        )
        observer.set_context("m:")
        return self.aggregate(recipient_pairs, donor_pairs, observer)

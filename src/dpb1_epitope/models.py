from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .gl import Allele


class DetailRace(str, Enum):
    """NMDP detailed race/ethnicity codes."""

    AAFA = "AAFA"  # African American
    AFB = "AFB"  # African Black
    AINDI = "AINDI"  # South Asian Indian
    AISC = "AISC"  # American Indian, South or Central America
    ALANAM = "ALANAM"  # Alaska Native or Aleut
    AMIND = "AMIND"  # North American Indian
    CARB = "CARB"  # Caribbean Black
    CARHIS = "CARHIS"  # Caribbean Hispanic
    CARIBI = "CARIBI"  # Caribbean Indian
    EURCAU = "EURCAU"  # European Caucasian
    FILII = "FILII"  # Filipino
    HAWI = "HAWI"  # Hawaiian or Pacific Islander
    JAPI = "JAPI"  # Japanese
    KORI = "KORI"  # Korean
    MENAFC = "MENAFC"  # Middle Eastern or North Coast of Africa
    MSWHIS = "MSWHIS"  # Mexican or Chicano
    NAMER = "NAMER"  # North American
    NCHI = "NCHI"  # Chinese
    SCAHIS = "SCAHIS"  # Hispanic, South or Central American
    SCAMB = "SCAMB"  # Black, South or Central American
    SCSEAI = "SCSEAI"  # Southeast Asian
    VIET = "VIET"  # Vietnamese
    UNK = "UNK"  # Unknown


class MatchGrade(str, Enum):
    MATCH = "MATCH"
    PERMISSIVE = "PERMISSIVE"
    HVG_NONPERMISSIVE = "HVG_NONPERMISSIVE"
    GVH_NONPERMISSIVE = "GVH_NONPERMISSIVE"
    UNKNOWN = "UNKNOWN"
    POTENTIAL = "POTENTIAL"
    NONPERMISSIVE_UNDEFINED = "NONPERMISSIVE_UNDEFINED"

    @classmethod
    def pure_grades(cls) -> tuple["MatchGrade", ...]:
        """
        The grades a single recipient/donor allele pair comparison can produce.

        These are in order of precedence when resolving an overall grade.
        """
        return (
            cls.MATCH,
            cls.PERMISSIVE,
            cls.HVG_NONPERMISSIVE,
            cls.GVH_NONPERMISSIVE,
            cls.UNKNOWN,
        )


class ImmuneGroup(BaseModel):
    """
    The T-cell epitope immunogenicity group of an allele.

    This is either a numbered group, or "unassigned", meaning the allele is
    known but carries no elevated group.  Unassigned orders below every
    numbered group.  (An allele whose group can't be determined at all has
    no ImmuneGroup; see AllelePair.)
    """

    model_config = ConfigDict(frozen=True)

    group_id: Optional[int] = None

    @classmethod
    def unassigned(cls) -> "ImmuneGroup":
        return cls(group_id=None)

    @classmethod
    def of(cls, group_id: int) -> "ImmuneGroup":
        return cls(group_id=group_id)

    @property
    def is_assigned(self) -> bool:
        return self.group_id is not None

    def _sort_key(self) -> tuple[bool, int]:
        return (self.is_assigned, self.group_id or 0)

    def __lt__(self, other: "ImmuneGroup") -> bool:
        return self._sort_key() < other._sort_key()

    def __str__(self) -> str:
        if self.group_id is None:
            return "unassigned"
        return str(self.group_id)


class AllelePair(BaseModel):
    """
    One candidate assignment of DPB1 alleles to a genotype's two haplotypes.

    group1 and group2 are the immune groups of allele1 and allele2 (None if
    the group could not be resolved).  Equality is over all five fields, and
    the order of the alleles matters.
    """

    # Allows this to be used as a dict key:
    model_config = ConfigDict(frozen=True)

    allele1: Allele
    group1: Optional[ImmuneGroup]
    allele2: Allele
    group2: Optional[ImmuneGroup]
    race: DetailRace

    def _resolved_groups(self) -> list[ImmuneGroup]:
        return sorted(g for g in (self.group1, self.group2) if g is not None)

    @property
    def low_group(self) -> Optional[ImmuneGroup]:
        resolved: list[ImmuneGroup] = self._resolved_groups()
        return resolved[0] if len(resolved) > 0 else None

    @property
    def high_group(self) -> Optional[ImmuneGroup]:
        resolved: list[ImmuneGroup] = self._resolved_groups()
        return resolved[-1] if len(resolved) > 0 else None

    def type_equals(self, other: "AllelePair") -> bool:
        """
        True if both pairs carry the same alleles in the same order.

        Immune groups and race are not considered.
        """
        return self.allele1 == other.allele1 and self.allele2 == other.allele2

    def __str__(self) -> str:
        return (
            f"{self.allele1.glstring}(g:{group_str(self.group1)})+"
            f"{self.allele2.glstring}(g:{group_str(self.group2)})"
        )


def group_str(group: Optional[ImmuneGroup]) -> str:
    if group is None:
        return "unknown"
    return str(group)


class MatchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    match_probability: float = Field(ge=0.0, le=1.0)
    permissive_probability: float = Field(ge=0.0, le=1.0)
    hvg_probability: float = Field(ge=0.0, le=1.0)
    gvh_probability: float = Field(ge=0.0, le=1.0)
    unknown_probability: float = Field(ge=0.0, le=1.0)
    match_grade: MatchGrade

    def probability(self, grade: MatchGrade) -> float:
        """
        The probability of the given pure match grade.
        """
        probabilities: dict[MatchGrade, float] = {
            MatchGrade.MATCH: self.match_probability,
            MatchGrade.PERMISSIVE: self.permissive_probability,
            MatchGrade.HVG_NONPERMISSIVE: self.hvg_probability,
            MatchGrade.GVH_NONPERMISSIVE: self.gvh_probability,
            MatchGrade.UNKNOWN: self.unknown_probability,
        }
        if grade not in probabilities:
            raise ValueError(f"{grade.value} is not a pure match grade")
        return probabilities[grade]

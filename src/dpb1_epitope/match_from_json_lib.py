from typing import Optional

from pydantic import BaseModel, Field

from ._version import __version__
from .models import DetailRace, MatchGrade, MatchResult


def parse_race(race: Optional[str]) -> Optional[DetailRace]:
    """
    Convert a race code (case-insensitive) to a DetailRace; None stays None.

    :raises ValueError: if the code isn't a recognized race
    """
    if race is None:
        return None
    return DetailRace(race.strip().upper())


class MatchInput(BaseModel):
    recipient_gl: str
    recipient_race: Optional[str] = None
    donor_gl: str
    donor_race: Optional[str] = None
    config_path: Optional[str] = None
    trace: bool = False

    def check_input(self) -> list[str]:
        errors: list[str] = []
        if self.recipient_gl.strip() == "":
            errors.append("Recipient GL string is empty")
        if self.donor_gl.strip() == "":
            errors.append("Donor GL string is empty")
        for party, race in (
            ("Recipient", self.recipient_race),
            ("Donor", self.donor_race),
        ):
            try:
                parse_race(race)
            except ValueError:
                errors.append(f'{party} race "{race}" is not recognized')
        return errors

    def recipient_detail_race(self) -> Optional[DetailRace]:
        return parse_race(self.recipient_race)

    def donor_detail_race(self) -> Optional[DetailRace]:
        return parse_race(self.donor_race)


class MatchOutput(BaseModel):
    match_probability: Optional[float] = None
    permissive_probability: Optional[float] = None
    hvg_probability: Optional[float] = None
    gvh_probability: Optional[float] = None
    unknown_probability: Optional[float] = None
    match_grade: Optional[MatchGrade] = None
    alg_version: str = __version__
    errors: list[str] = Field(default_factory=list)
    trace: list[str] = Field(default_factory=list)

    @classmethod
    def build_from_result(
        cls,
        result: MatchResult,
        trace: Optional[list[str]] = None,
    ) -> "MatchOutput":
        return cls(
            match_probability=result.match_probability,
            permissive_probability=result.permissive_probability,
            hvg_probability=result.hvg_probability,
            gvh_probability=result.gvh_probability,
            unknown_probability=result.unknown_probability,
            match_grade=result.match_grade,
            trace=trace or [],
        )

from typing import Optional

from .gl import Allele
from .models import AllelePair, ImmuneGroup, MatchGrade, group_str


class MatchObserver:
    """
    Receives notifications as a match is computed.

    The hooks here do nothing; subclass and override the ones you need.
    Observers can't influence the result of a match.
    """

    def set_context(self, context: str) -> None:
        pass

    def pair_expanded(
        self,
        allele1: Allele,
        group1: Optional[ImmuneGroup],
        frequency1: float,
        allele2: Allele,
        group2: Optional[ImmuneGroup],
        frequency2: float,
    ) -> None:
        pass

    def candidate_dropped(self, allele: Allele, frequency: float) -> None:
        pass

    def pair_classified(
        self,
        recipient_pair: AllelePair,
        recipient_probability: float,
        donor_pair: AllelePair,
        donor_probability: float,
        grade: MatchGrade,
        probability: float,
    ) -> None:
        pass


class TraceRecorder(MatchObserver):
    """
    Records a human-readable explanation of each step of a match.

    Each line is prefixed with the current context: "r:" while the
    recipient's allele pairs are being expanded, "d:" for the donor's, and
    "m:" while recipient and donor pairs are being compared.
    """

    def __init__(self):
        self.context: str = ""
        self.lines: list[str] = []

    def add(self, line: str) -> None:
        self.lines.append(f"{self.context}{line}")

    def set_context(self, context: str) -> None:
        self.context = context

    def pair_expanded(
        self,
        allele1: Allele,
        group1: Optional[ImmuneGroup],
        frequency1: float,
        allele2: Allele,
        group2: Optional[ImmuneGroup],
        frequency2: float,
    ) -> None:
        self.add(
            f"{allele1.glstring}(g:{group_str(group1)},p:{frequency1})+"
            f"{allele2.glstring}(g:{group_str(group2)},p:{frequency2})"
        )

    def candidate_dropped(self, allele: Allele, frequency: float) -> None:
        self.add(f"{allele.glstring}(p:{frequency},dropped)")

    def pair_classified(
        self,
        recipient_pair: AllelePair,
        recipient_probability: float,
        donor_pair: AllelePair,
        donor_probability: float,
        grade: MatchGrade,
        probability: float,
    ) -> None:
        self.add(
            f"r:{recipient_pair}:p:{recipient_probability},"
            f"d:{donor_pair}:p:{donor_probability},"
            f"m:{grade.value}(p:{probability})"
        )

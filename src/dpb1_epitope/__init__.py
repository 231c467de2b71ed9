from ._version import __version__
from .match_service import MatchService
from .models import AllelePair, DetailRace, ImmuneGroup, MatchGrade, MatchResult

__all__ = [
    "__version__",
    "AllelePair",
    "DetailRace",
    "ImmuneGroup",
    "MatchGrade",
    "MatchResult",
    "MatchService",
]

import csv
import logging
import os
import re
from datetime import datetime
from io import TextIOBase
from typing import Final, Optional

import yaml
from pydantic import BaseModel, Field

from .gl import (
    ALLELE_SEPARATOR,
    GENOTYPE_LIST_SEPARATOR,
    GENOTYPE_SEPARATOR,
    HAPLOTYPE_SEPARATOR,
    Allele,
    qualify_allele_name,
)
from .models import DetailRace, ImmuneGroup

logger: logging.Logger = logging.getLogger(__name__)

DEFAULT_BASELINE_FREQUENCY: Final[float] = 0.00001


def _path_join_shim(*args) -> str:
    """
    A shim for os.path.join which allows us to mock out the method easily in testing.
    """
    return os.path.join(*args)


def default_data_path(filename: str) -> str:
    return _path_join_shim(os.path.dirname(__file__), "default_data", filename)


def allele_coordinates(allele_name: str) -> list[str]:
    """
    Convert an allele name into a list of field coordinates.

    For example, "HLA-DPB1*04:01:01G" gets converted to ["04", "01", "01"];
    a trailing G or P group suffix is dropped, but expression suffixes such as
    N are retained.
    """
    fields: str = allele_name.partition("*")[2]
    return re.sub(r"[GP]$", "", fields.strip()).split(":")


def two_field_name(allele_name: str) -> Optional[str]:
    """
    Reduce an allele name to its first two fields.

    e.g. "HLA-DPB1*04:01:01:02" becomes "HLA-DPB1*04:01".  Returns None if the
    name doesn't have at least two fields.
    """
    locus_name: str
    separator: str
    locus_name, separator, _ = allele_name.partition("*")
    coords: list[str] = allele_coordinates(allele_name)
    if separator == "" or len(coords) < 2:
        return None
    return f"{locus_name}*{coords[0]}:{coords[1]}"


class StoredImmuneGroups(BaseModel):
    tag: str
    last_updated: datetime
    groups: dict[int, list[str]]
    unassigned: list[str] = Field(default_factory=list)


class ImmuneGroupTable:
    """
    Maps alleles to their T-cell epitope immune groups.

    Alleles are looked up by their full name and then by their two-field name;
    alleles that appear nowhere in the table have no known group.
    """

    def __init__(self, stored_groups: StoredImmuneGroups):
        self.tag: str = stored_groups.tag
        self.last_updated: datetime = stored_groups.last_updated
        self._groups: dict[str, ImmuneGroup] = {}

        for group_id, allele_names in stored_groups.groups.items():
            for allele_name in allele_names:
                self._add(allele_name, ImmuneGroup.of(group_id))
        for allele_name in stored_groups.unassigned:
            self._add(allele_name, ImmuneGroup.unassigned())

    def _add(self, allele_name: str, group: ImmuneGroup) -> None:
        name: str = qualify_allele_name(allele_name)
        existing: Optional[ImmuneGroup] = self._groups.get(name)
        if existing is not None and existing != group:
            raise ValueError(
                f"{name} is listed in immune groups {existing} and {group}"
            )
        self._groups[name] = group

    def __len__(self) -> int:
        return len(self._groups)

    def lookup(self, allele_name: str) -> Optional[ImmuneGroup]:
        if allele_name in self._groups:
            return self._groups[allele_name]
        short_name: Optional[str] = two_field_name(allele_name)
        if short_name is not None:
            return self._groups.get(short_name)
        return None

    def resolve(self, allele: Allele) -> Optional[ImmuneGroup]:
        return self.lookup(allele.glstring)

    @classmethod
    def read(cls, groups_io: TextIOBase) -> "ImmuneGroupTable":
        stored_groups: StoredImmuneGroups = StoredImmuneGroups.model_validate(
            yaml.safe_load(groups_io)
        )
        return cls(stored_groups)

    @classmethod
    def load(cls, path: Optional[str] = None) -> "ImmuneGroupTable":
        """
        Load the immune groups from the specified file, or the bundled defaults.
        """
        if path is None:
            path = default_data_path("immune_groups.yaml")
        with open(path) as f:
            table: ImmuneGroupTable = cls.read(f)
        logger.info(
            f"Loaded {len(table)} immune group assignments (version {table.tag}) "
            f"from {path}."
        )
        return table


class FrequencyTable:
    """
    Population frequencies of DPB1 alleles, by race.

    An allele with no entry for a race is assigned the baseline frequency; an
    explicit frequency of 0 means the allele is not observed in that population.
    """

    def __init__(
        self,
        frequencies: dict[DetailRace, dict[str, float]],
        baseline_frequency: float = DEFAULT_BASELINE_FREQUENCY,
    ):
        if not 0.0 <= baseline_frequency <= 1.0:
            raise ValueError(
                f"baseline frequency must be between 0 and 1, not {baseline_frequency}"
            )
        self.frequencies: dict[DetailRace, dict[str, float]] = frequencies
        self.baseline_frequency: float = baseline_frequency

    def get_frequency(self, race: DetailRace, allele_name: str) -> float:
        race_frequencies: dict[str, float] = self.frequencies.get(race, {})
        if allele_name in race_frequencies:
            return race_frequencies[allele_name]
        short_name: Optional[str] = two_field_name(allele_name)
        if short_name is not None and short_name in race_frequencies:
            return race_frequencies[short_name]
        return self.baseline_frequency

    @staticmethod
    def read_frequencies(
        frequencies_io: TextIOBase,
    ) -> dict[DetailRace, dict[str, float]]:
        """
        Read allele frequencies from a CSV file with columns race, allele, frequency.

        :raises ValueError: if a row has an unrecognized race or a frequency
        outside [0, 1]
        """
        frequencies: dict[DetailRace, dict[str, float]] = {}
        with frequencies_io:
            frequencies_csv: csv.DictReader = csv.DictReader(frequencies_io)
            for row in frequencies_csv:
                try:
                    race: DetailRace = DetailRace(row["race"].strip())
                except ValueError as e:
                    raise ValueError(
                        f'Unrecognized race "{row["race"]}" on line '
                        f"{frequencies_csv.line_num}"
                    ) from e
                frequency: float = float(row["frequency"])
                if not 0.0 <= frequency <= 1.0:
                    raise ValueError(
                        f"Frequency {frequency} on line {frequencies_csv.line_num} "
                        "is not between 0 and 1"
                    )
                allele_name: str = qualify_allele_name(row["allele"].strip())
                frequencies.setdefault(race, {})[allele_name] = frequency
        return frequencies

    @classmethod
    def read(
        cls,
        frequencies_io: TextIOBase,
        baseline_frequency: float = DEFAULT_BASELINE_FREQUENCY,
    ) -> "FrequencyTable":
        return cls(cls.read_frequencies(frequencies_io), baseline_frequency)

    @classmethod
    def load(
        cls,
        path: Optional[str] = None,
        baseline_frequency: float = DEFAULT_BASELINE_FREQUENCY,
    ) -> "FrequencyTable":
        if path is None:
            path = default_data_path("allele_frequencies.csv")
        with open(path) as f:
            table: FrequencyTable = cls.read(f, baseline_frequency)
        logger.info(
            f"Loaded allele frequencies for {len(table.frequencies)} races from {path}."
        )
        return table


class StoredGGroups(BaseModel):
    tag: str
    last_updated: datetime
    g_groups: dict[str, list[str]]


class GGroupTable:
    """
    Collapses alleles into their G groups.

    A G group is a set of alleles sharing the same antigen-recognition domain
    sequence, e.g. HLA-DPB1*04:01:01G.
    """

    def __init__(self, stored_g_groups: StoredGGroups):
        self.tag: str = stored_g_groups.tag
        self.last_updated: datetime = stored_g_groups.last_updated
        self._group_of: dict[str, str] = {}
        for group_name, members in stored_g_groups.g_groups.items():
            for member in members:
                self._group_of[qualify_allele_name(member)] = qualify_allele_name(
                    group_name
                )

    def group_for(self, allele_name: str) -> str:
        return self._group_of.get(allele_name, allele_name)

    def _transform_allele_list(self, allele_list_str: str) -> str:
        names: list[str] = []
        for allele_str in allele_list_str.split(ALLELE_SEPARATOR):
            clean_allele: str = allele_str.strip()
            if clean_allele == "":
                # Leave malformed input for the parser to report.
                names.append(allele_str)
            else:
                names.append(self.group_for(qualify_allele_name(clean_allele)))
        # Members of the same G group collapse into a single entry.
        return ALLELE_SEPARATOR.join(dict.fromkeys(names))

    def transform_gl_string(self, gl_string: str) -> str:
        """
        Replace every allele in the GL string that belongs to a G group with the
        name of that group.
        """
        return GENOTYPE_LIST_SEPARATOR.join(
            GENOTYPE_SEPARATOR.join(
                HAPLOTYPE_SEPARATOR.join(
                    self._transform_allele_list(allele_list_str)
                    for allele_list_str in haplotype_str.split(HAPLOTYPE_SEPARATOR)
                )
                for haplotype_str in genotype_str.split(GENOTYPE_SEPARATOR)
            )
            for genotype_str in gl_string.strip().split(GENOTYPE_LIST_SEPARATOR)
        )

    @classmethod
    def read(cls, g_groups_io: TextIOBase) -> "GGroupTable":
        return cls(StoredGGroups.model_validate(yaml.safe_load(g_groups_io)))

    @classmethod
    def load(cls, path: Optional[str] = None) -> "GGroupTable":
        if path is None:
            path = default_data_path("g_groups.yaml")
        with open(path) as f:
            return cls.read(f)

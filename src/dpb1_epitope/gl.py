import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Final, Optional

import requests

logger: logging.Logger = logging.getLogger(__name__)

DPB1_LOCUS_NAME: Final[str] = "HLA-DPB1"

LOCUS_NAME_REGEX: Final[re.Pattern] = re.compile(r"^HLA-[A-Z][A-Z0-9]*$")

# GL String operators, from the most to the least tightly binding.
ALLELE_SEPARATOR: Final[str] = "/"
HAPLOTYPE_SEPARATOR: Final[str] = "~"
GENOTYPE_SEPARATOR: Final[str] = "+"
GENOTYPE_LIST_SEPARATOR: Final[str] = "|"
MULTILOCUS_SEPARATOR: Final[str] = "^"


class InvalidLocusError(ValueError):
    pass


class InvalidGlStringError(ValueError):
    pass


class GlServiceError(Exception):
    pass


@dataclass(frozen=True)
class Locus:
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Allele:
    glstring: str
    locus: Locus

    def __str__(self) -> str:
        return self.glstring


@dataclass(frozen=True)
class AlleleList:
    alleles: tuple[Allele, ...]

    @property
    def glstring(self) -> str:
        return ALLELE_SEPARATOR.join(a.glstring for a in self.alleles)


@dataclass(frozen=True)
class Haplotype:
    allele_lists: tuple[AlleleList, ...]

    @property
    def glstring(self) -> str:
        return HAPLOTYPE_SEPARATOR.join(al.glstring for al in self.allele_lists)

    def alleles_at(self, locus: Locus) -> list[Allele]:
        """
        All alleles on this haplotype that belong to the given locus.

        The order is the order they appear in the GL string.
        """
        return [
            allele
            for allele_list in self.allele_lists
            for allele in allele_list.alleles
            if allele.locus == locus
        ]


@dataclass(frozen=True)
class Genotype:
    haplotypes: tuple[Haplotype, ...]

    @property
    def glstring(self) -> str:
        return GENOTYPE_SEPARATOR.join(h.glstring for h in self.haplotypes)


@dataclass(frozen=True)
class GenotypeList:
    genotypes: tuple[Genotype, ...]

    @property
    def glstring(self) -> str:
        return GENOTYPE_LIST_SEPARATOR.join(g.glstring for g in self.genotypes)

    def __str__(self) -> str:
        return self.glstring


def qualify_allele_name(name: str) -> str:
    """
    Expand the common shorthand "DPB1*04:01" to "HLA-DPB1*04:01".

    Anything that isn't an unqualified allele name is returned unchanged.
    """
    if "*" in name and not name.startswith("HLA-"):
        return f"HLA-{name}"
    return name


def create_locus(name: str) -> Locus:
    """
    Create a locus handle, e.g. for "HLA-DPB1".

    :raises InvalidLocusError: if the name is not an HLA locus name
    """
    if not LOCUS_NAME_REGEX.match(name):
        raise InvalidLocusError(f'"{name}" is not a valid HLA locus name')
    return Locus(name)


class GlStringParser:
    """
    Parses a single-locus GL String into a GenotypeList.

    Identical haplotypes (and alleles, allele lists and genotypes) within the
    parsed string are represented by the same object, so a homozygous genotype
    such as "HLA-DPB1*04:01+HLA-DPB1*04:01" holds one haplotype twice.

    A parser is meant to be used for one GL string; use `parse_gl_string`.
    """

    def __init__(self):
        self._loci: dict[str, Locus] = {}
        self._alleles: dict[str, Allele] = {}
        self._allele_lists: dict[str, AlleleList] = {}
        self._haplotypes: dict[str, Haplotype] = {}
        self._genotypes: dict[str, Genotype] = {}

    def parse(self, gl_string: str) -> GenotypeList:
        clean_gl: str = gl_string.strip()
        if clean_gl == "":
            raise InvalidGlStringError("GL string is empty")
        if MULTILOCUS_SEPARATOR in clean_gl:
            raise InvalidGlStringError(
                f'multilocus GL strings are not supported: "{clean_gl}"'
            )
        return GenotypeList(
            genotypes=tuple(
                self._genotype(token, clean_gl)
                for token in clean_gl.split(GENOTYPE_LIST_SEPARATOR)
            )
        )

    @staticmethod
    def _check_token(token: str, gl_string: str) -> str:
        clean_token: str = token.strip()
        if clean_token == "":
            raise InvalidGlStringError(f'empty element in GL string "{gl_string}"')
        return clean_token

    def _genotype(self, token: str, gl_string: str) -> Genotype:
        key: str = self._check_token(token, gl_string)
        if key not in self._genotypes:
            self._genotypes[key] = Genotype(
                haplotypes=tuple(
                    self._haplotype(h, gl_string)
                    for h in key.split(GENOTYPE_SEPARATOR)
                )
            )
        return self._genotypes[key]

    def _haplotype(self, token: str, gl_string: str) -> Haplotype:
        key: str = self._check_token(token, gl_string)
        if key not in self._haplotypes:
            self._haplotypes[key] = Haplotype(
                allele_lists=tuple(
                    self._allele_list(al, gl_string)
                    for al in key.split(HAPLOTYPE_SEPARATOR)
                )
            )
        return self._haplotypes[key]

    def _allele_list(self, token: str, gl_string: str) -> AlleleList:
        key: str = self._check_token(token, gl_string)
        if key not in self._allele_lists:
            self._allele_lists[key] = AlleleList(
                alleles=tuple(
                    self._allele(a, gl_string) for a in key.split(ALLELE_SEPARATOR)
                )
            )
        return self._allele_lists[key]

    def _allele(self, token: str, gl_string: str) -> Allele:
        name: str = self._check_token(token, gl_string)
        if "*" not in name:
            raise InvalidGlStringError(
                f'"{name}" is not a locus-qualified allele name (in "{gl_string}")'
            )
        name = qualify_allele_name(name)
        if name not in self._alleles:
            locus_name: str = name.split("*", 1)[0]
            if locus_name not in self._loci:
                try:
                    self._loci[locus_name] = create_locus(locus_name)
                except InvalidLocusError as e:
                    raise InvalidGlStringError(
                        f'bad locus in allele "{name}" (in "{gl_string}")'
                    ) from e
            self._alleles[name] = Allele(glstring=name, locus=self._loci[locus_name])
        return self._alleles[name]


def parse_gl_string(gl_string: str) -> GenotypeList:
    return GlStringParser().parse(gl_string)


def is_gl_service_uri(gl_input: str) -> bool:
    return re.match(r"^https?://", gl_input.strip()) is not None


def fetch_gl_string(uri: str, timeout: float = 30.0) -> str:
    """
    Retrieve the GL string a GL service URI refers to.
    """
    try:
        response: requests.Response = requests.get(
            uri,
            headers={"Accept": "text/plain"},
            timeout=timeout,
        )
    except requests.RequestException as e:
        raise GlServiceError(f"failed to retrieve {uri}: {e}") from e
    if response.status_code != requests.codes.ok:
        raise GlServiceError(
            f"failed to retrieve {uri} (status code {response.status_code})"
        )
    return response.text.strip()


class GlStringResolver:
    """
    Resolves GL strings, or GL service URIs, into GenotypeLists.

    If a transformer is provided (e.g. one that collapses alleles into their
    G groups), it is applied to the GL string before parsing.
    """

    def __init__(
        self,
        transformer: Optional[Callable[[str], str]] = None,
        timeout: float = 30.0,
    ):
        self.transformer: Optional[Callable[[str], str]] = transformer
        self.timeout: float = timeout

    def __call__(self, gl_input: str) -> GenotypeList:
        gl_string: str = gl_input.strip()
        if is_gl_service_uri(gl_string):
            logger.debug(f"Retrieving GL string from {gl_string}....")
            gl_string = fetch_gl_string(gl_string, self.timeout)
        if self.transformer is not None:
            gl_string = self.transformer(gl_string)
        return parse_gl_string(gl_string)

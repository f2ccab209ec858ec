from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class PositionOfInterest:
    """A reference interval tested against every overlapping read.

    Coordinates are 0-based half-open.

    Attributes
    ----------
    reference_name:
        Contig name as present in the BAM header.
    start, end:
        Reference span ``[start, end)``; every allele has length ``end - start``.
    label:
        Unique name, used as the output column header.
    wildtype_allele:
        Expected bases for an unmutated read, uppercase.
    mutant_alleles:
        Candidate mutant bases in declared order, uppercase.
    line_no:
        Line of the positions file this record came from (0 when built in code).
    """

    reference_name: str
    start: int
    end: int
    label: str
    wildtype_allele: str
    mutant_alleles: Tuple[str, ...]
    line_no: int = 0

    @property
    def span(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class AlignmentRecord:
    """Decoded alignment record, detached from pysam so it can cross process boundaries.

    ``cigar`` uses SAM/pysam operation codes (0=M, 1=I, 2=D, 3=N, 4=S, 5=H, 6=P, 7==, 8=X).
    ``reference_end`` is the end declared by the decoder, if it reported one.
    """

    read_id: str
    reference_name: str
    reference_start: int
    cigar: Tuple[Tuple[int, int], ...]
    sequence: str
    is_mapped: bool = True
    qualities: Optional[Tuple[int, ...]] = None
    reference_end: Optional[int] = None
    mapping_quality: int = 255
    is_secondary: bool = False
    is_supplementary: bool = False
    is_duplicate: bool = False


class OutcomeKind(enum.Enum):
    WILDTYPE = "WT"
    MUTANT = "M"
    AMBIGUOUS = "AMB"
    NOT_COVERED = "NC"


@dataclass(frozen=True)
class PositionCall:
    """Allele supported by one read at one position."""

    position: PositionOfInterest
    kind: OutcomeKind
    mutant_index: Optional[int] = None
    observed: str = ""

    @property
    def tag(self) -> str:
        if self.kind is OutcomeKind.MUTANT:
            return f"M{self.mutant_index}"
        return self.kind.value


@dataclass(frozen=True)
class LinkageRecord:
    """Per-read combination of position calls (ascending position start)."""

    read_id: str
    reference_name: str
    calls: Tuple[PositionCall, ...]
    combined_pattern: str

    @property
    def labels(self) -> Tuple[str, ...]:
        return tuple(c.position.label for c in self.calls)

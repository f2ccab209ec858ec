from __future__ import annotations

from typing import Optional, Sequence

from linkedmut.cigar import parse_cigar_string
from linkedmut.models import AlignmentRecord, PositionOfInterest


def make_position(
    start: int,
    end: Optional[int] = None,
    *,
    wildtype: str = "A",
    mutants: Sequence[str] = ("G",),
    label: Optional[str] = None,
    contig: str = "chr1",
) -> PositionOfInterest:
    end = start + len(wildtype) if end is None else end
    return PositionOfInterest(
        reference_name=contig,
        start=start,
        end=end,
        label=label or f"{contig}:{start}",
        wildtype_allele=wildtype,
        mutant_alleles=tuple(mutants),
    )


def make_record(
    seq: str,
    start: int = 100,
    cigar: Optional[str] = None,
    *,
    read_id: str = "r1",
    contig: str = "chr1",
    quals: Optional[Sequence[int]] = None,
    reference_end: Optional[int] = None,
    is_mapped: bool = True,
) -> AlignmentRecord:
    return AlignmentRecord(
        read_id=read_id,
        reference_name=contig,
        reference_start=start,
        cigar=tuple(parse_cigar_string(cigar)) if cigar else ((0, len(seq)),),
        sequence=seq,
        is_mapped=is_mapped,
        qualities=tuple(quals) if quals is not None else None,
        reference_end=reference_end,
    )



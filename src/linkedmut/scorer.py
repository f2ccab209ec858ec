from __future__ import annotations

import logging
from typing import List, Optional

from .cigar import Unaligned, offsets_for_span, query_length, reference_length
from .classifier import Indeterminate, below_quality, classify
from .errors import CoordinateAnomaly
from .models import AlignmentRecord, LinkageRecord, PositionCall, PositionOfInterest
from .positions import PositionTable

logger = logging.getLogger(__name__)

PATTERN_SEP = "|"


def reference_span(record: AlignmentRecord) -> tuple[int, int]:
    """Return ``[reference_start, reference_end)`` implied by the record's CIGAR.

    Raises :class:`CoordinateAnomaly` when the CIGAR disagrees with the record:
    no reference consumed, a sequence of the wrong length, or a declared end
    that does not match.
    """
    if record.reference_start < 0:
        raise CoordinateAnomaly(f"{record.read_id}: negative reference start {record.reference_start}")
    ref_len = reference_length(record.cigar)
    if ref_len == 0:
        raise CoordinateAnomaly(f"{record.read_id}: CIGAR consumes no reference bases")
    q_len = query_length(record.cigar)
    if record.sequence and q_len != len(record.sequence):
        raise CoordinateAnomaly(
            f"{record.read_id}: CIGAR implies {q_len} read bases but the sequence has {len(record.sequence)}"
        )
    end = record.reference_start + ref_len
    if record.reference_end is not None and record.reference_end != end:
        raise CoordinateAnomaly(
            f"{record.read_id}: CIGAR implies reference end {end} but {record.reference_end} was declared"
        )
    return record.reference_start, end


def call_position(record: AlignmentRecord, position: PositionOfInterest, *, min_baseq: int = 0) -> PositionCall:
    """Map one position through the record's CIGAR and classify the bases found there."""
    resolved = offsets_for_span(record.cigar, record.reference_start, position.start, position.end)
    if isinstance(resolved, Unaligned):
        return classify(resolved, position)
    if resolved is None:
        return classify("", position, indeterminate=Indeterminate.INTERLEAVED_INSERTION)

    qstart, qend = resolved
    if not record.sequence:
        # Secondary alignments may omit SEQ; nothing to read at this position.
        return classify(Unaligned.OUT_OF_RANGE, position)
    bases = record.sequence[qstart:qend]
    if below_quality(record.qualities, qstart, qend, min_baseq):
        return classify(bases, position, indeterminate=Indeterminate.LOW_QUALITY)
    return classify(bases, position)


def combine_calls(calls: List[PositionCall]) -> str:
    return PATTERN_SEP.join(c.tag for c in calls)


def score_read(
    record: AlignmentRecord,
    table: PositionTable,
    *,
    min_baseq: int = 0,
) -> Optional[LinkageRecord]:
    """Score one alignment record against every position it overlaps.

    Returns ``None`` for unmapped records and records overlapping no position.
    Depends only on its arguments, so records can be scored in any order or
    in parallel.
    """
    if not record.is_mapped:
        return None

    start, end = reference_span(record)
    positions = table.overlapping(record.reference_name, start, end)
    if not positions:
        return None

    calls = [call_position(record, p, min_baseq=min_baseq) for p in positions]
    return LinkageRecord(
        read_id=record.read_id,
        reference_name=record.reference_name,
        calls=tuple(calls),
        combined_pattern=combine_calls(calls),
    )

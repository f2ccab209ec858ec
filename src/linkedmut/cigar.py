"""Reference coordinate to read offset mapping.

All functions take CIGARs as sequences of ``(op, length)`` tuples using the
pysam operation codes, so ``read.cigartuples`` can be passed straight through.
"""

from __future__ import annotations

import enum
import re
from typing import List, Sequence, Tuple, Union

from .errors import CoordinateAnomaly

CIGAR_M = 0
CIGAR_I = 1
CIGAR_D = 2
CIGAR_N = 3
CIGAR_S = 4
CIGAR_H = 5
CIGAR_P = 6
CIGAR_EQ = 7
CIGAR_X = 8

_CIGAR_CHARS = "MIDNSHP=X"
_CIGAR_RE = re.compile(r"(\d+)([MIDNSHP=X])")

_CONSUMES_BOTH = frozenset((CIGAR_M, CIGAR_EQ, CIGAR_X))
_CONSUMES_REF_ONLY = frozenset((CIGAR_D, CIGAR_N))
_CONSUMES_QUERY_ONLY = frozenset((CIGAR_I, CIGAR_S))

Cigar = Sequence[Tuple[int, int]]


class Unaligned(enum.Enum):
    """Why a reference coordinate has no read base."""

    DELETED = "deleted"  # inside D or N
    CLIPPED = "clipped"  # only reachable through soft-clipped bases
    OUT_OF_RANGE = "out_of_range"


ReadOffset = Union[int, Unaligned]


def parse_cigar_string(cigar: str) -> List[Tuple[int, int]]:
    """Parse ``"30M5D20M"`` into pysam-style tuples."""
    ops: List[Tuple[int, int]] = []
    pos = 0
    for m in _CIGAR_RE.finditer(cigar):
        if m.start() != pos:
            raise ValueError(f"Bad CIGAR: {cigar}")
        ops.append((_CIGAR_CHARS.index(m.group(2)), int(m.group(1))))
        pos = m.end()
    if pos != len(cigar) or not ops:
        raise ValueError(f"Bad CIGAR: {cigar}")
    return ops


def cigar_to_string(cigar: Cigar) -> str:
    return "".join(f"{length}{_CIGAR_CHARS[op]}" for op, length in cigar)


def _check_op(op: int) -> None:
    if not 0 <= op <= CIGAR_X:
        raise CoordinateAnomaly(f"Unknown CIGAR operation code {op}")


def reference_length(cigar: Cigar) -> int:
    """Number of reference bases the alignment covers (M, =, X, D, N)."""
    total = 0
    for op, length in cigar:
        _check_op(op)
        if op in _CONSUMES_BOTH or op in _CONSUMES_REF_ONLY:
            total += length
    return total


def query_length(cigar: Cigar) -> int:
    """Number of bases the stored read sequence must hold (M, =, X, I, S)."""
    total = 0
    for op, length in cigar:
        _check_op(op)
        if op in _CONSUMES_BOTH or op in _CONSUMES_QUERY_ONLY:
            total += length
    return total


def _clip_lengths(cigar: Cigar) -> Tuple[int, int]:
    """Soft-clipped bases at the left and right ends (hard clips skipped)."""
    left = 0
    for op, length in cigar:
        if op == CIGAR_H:
            continue
        if op == CIGAR_S:
            left += length
            continue
        break
    right = 0
    for op, length in reversed(cigar):
        if op == CIGAR_H:
            continue
        if op == CIGAR_S:
            right += length
            continue
        break
    return left, right


def _outside(cigar: Cigar, reference_start: int, reference_end: int, target: int) -> Unaligned:
    left_clip, right_clip = _clip_lengths(cigar)
    if target < reference_start:
        return Unaligned.CLIPPED if reference_start - target <= left_clip else Unaligned.OUT_OF_RANGE
    return Unaligned.CLIPPED if target - reference_end < right_clip else Unaligned.OUT_OF_RANGE


def map_reference_coordinate(cigar: Cigar, reference_start: int, target: int) -> ReadOffset:
    """Map one 0-based reference coordinate to an offset in the stored read sequence."""
    return map_reference_coordinates(cigar, reference_start, [target])[0]


def map_reference_coordinates(
    cigar: Cigar, reference_start: int, targets: Sequence[int]
) -> List[ReadOffset]:
    """Map ascending reference coordinates in a single CIGAR walk.

    Returns one entry per target: the read offset for bases aligned by M/=/X,
    ``DELETED`` inside D/N, ``CLIPPED`` when only soft-clipped bases would
    reach it, and ``OUT_OF_RANGE`` otherwise.
    """
    out: List[ReadOffset] = [Unaligned.OUT_OF_RANGE] * len(targets)
    if not targets:
        return out

    idx = 0
    ref_pos = reference_start
    query_pos = 0

    for op, length in cigar:
        if idx >= len(targets):
            break
        _check_op(op)

        if op in _CONSUMES_BOTH:
            ref_end = ref_pos + length
            while idx < len(targets) and targets[idx] < ref_end:
                t = targets[idx]
                if t >= ref_pos:
                    out[idx] = query_pos + (t - ref_pos)
                idx += 1
            ref_pos = ref_end
            query_pos += length
        elif op in _CONSUMES_REF_ONLY:
            ref_end = ref_pos + length
            while idx < len(targets) and targets[idx] < ref_end:
                if targets[idx] >= ref_pos:
                    out[idx] = Unaligned.DELETED
                idx += 1
            ref_pos = ref_end
        elif op in _CONSUMES_QUERY_ONLY:
            query_pos += length
        # H and P consume neither sequence

    # Anything still OUT_OF_RANGE lies before the start or past the end.
    ref_end = ref_pos
    for i, t in enumerate(targets):
        if out[i] is Unaligned.OUT_OF_RANGE:
            out[i] = _outside(cigar, reference_start, ref_end, t)
    return out


def offsets_for_span(
    cigar: Cigar, reference_start: int, start: int, end: int
) -> Union[Tuple[int, int], Unaligned, None]:
    """Resolve a reference span ``[start, end)`` to a read slice ``(qstart, qend)``.

    Returns an :class:`Unaligned` value when any coordinate is not covered
    (``OUT_OF_RANGE``/``CLIPPED`` win over ``DELETED``), and ``None`` when all
    coordinates are aligned but an insertion sits inside the span.
    """
    offsets = map_reference_coordinates(cigar, reference_start, range(start, end))
    deleted = False
    for o in offsets:
        if isinstance(o, Unaligned):
            if o is Unaligned.DELETED:
                deleted = True
            else:
                return o
    if deleted:
        return Unaligned.DELETED

    first = offsets[0]
    last = offsets[-1]
    assert isinstance(first, int) and isinstance(last, int)
    if last - first != end - start - 1:
        return None
    return first, last + 1

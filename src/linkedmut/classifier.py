from __future__ import annotations

import logging
from typing import Optional, Sequence, Union

from .cigar import Unaligned
from .models import OutcomeKind, PositionCall, PositionOfInterest

logger = logging.getLogger(__name__)


class Indeterminate:
    """Sentinels for spans that were aligned but cannot be read as one allele."""

    INTERLEAVED_INSERTION = "interleaved_insertion"
    LOW_QUALITY = "low_quality"


Extracted = Union[str, Unaligned]


def classify(
    extracted: Extracted,
    position: PositionOfInterest,
    *,
    indeterminate: Optional[str] = None,
) -> PositionCall:
    """Decide which configured allele ``extracted`` supports at ``position``.

    Rules, in order:

    1. ``OUT_OF_RANGE`` or ``CLIPPED``: not covered.
    2. ``DELETED``, or an ``indeterminate`` reason: ambiguous.
    3. Case-insensitive match with the wildtype allele: wildtype.
    4. First matching mutant allele, in declared order: mutant(index).
    5. Anything else: ambiguous (sequenced, but not a configured allele).
    """
    if isinstance(extracted, Unaligned):
        if extracted is Unaligned.DELETED:
            return PositionCall(position=position, kind=OutcomeKind.AMBIGUOUS)
        return PositionCall(position=position, kind=OutcomeKind.NOT_COVERED)

    observed = extracted.upper()
    if indeterminate is not None:
        return PositionCall(position=position, kind=OutcomeKind.AMBIGUOUS, observed=observed)

    if observed == position.wildtype_allele.upper():
        return PositionCall(position=position, kind=OutcomeKind.WILDTYPE, observed=observed)
    for i, mutant in enumerate(position.mutant_alleles):
        if observed == mutant.upper():
            return PositionCall(position=position, kind=OutcomeKind.MUTANT, mutant_index=i, observed=observed)
    return PositionCall(position=position, kind=OutcomeKind.AMBIGUOUS, observed=observed)


def below_quality(qualities: Optional[Sequence[int]], qstart: int, qend: int, min_baseq: int) -> bool:
    """True if any base in ``[qstart, qend)`` falls below ``min_baseq``.

    Reads without stored qualities never fail the check.
    """
    if min_baseq <= 0 or qualities is None:
        return False
    for q in qualities[qstart:qend]:
        if q < min_baseq:
            return True
    return False

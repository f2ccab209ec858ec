"""pysam adapter: decode alignment files into :class:`AlignmentRecord` values."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator, List

import pysam

from .errors import DecodeError
from .models import AlignmentRecord

logger = logging.getLogger(__name__)


def _open_mode(path: str | Path) -> str:
    suffix = Path(path).suffix.lower()
    if suffix == ".sam":
        return "r"
    if suffix == ".cram":
        return "rc"
    return "rb"


def open_alignments(path: str | Path) -> pysam.AlignmentFile:
    """Open a BAM/SAM/CRAM file, turning decoder failures into :class:`DecodeError`."""
    try:
        return pysam.AlignmentFile(str(path), _open_mode(path), check_sq=False)
    except (OSError, ValueError) as e:
        raise DecodeError(f"Could not open alignment file {path}: {e}") from e


def alignment_contigs(path: str | Path) -> List[str]:
    with open_alignments(path) as bam:
        return list(bam.header.references)


def record_from_segment(read: pysam.AlignedSegment) -> AlignmentRecord:
    """Copy the fields the scorer needs out of a pysam segment."""
    mapped = not read.is_unmapped and read.cigartuples is not None
    quals = read.query_qualities
    return AlignmentRecord(
        read_id=str(read.query_name),
        reference_name=read.reference_name if mapped and read.reference_name is not None else "*",
        reference_start=int(read.reference_start) if mapped else -1,
        cigar=tuple((int(op), int(n)) for op, n in read.cigartuples) if mapped else (),
        sequence=read.query_sequence or "",
        is_mapped=mapped,
        qualities=tuple(quals) if quals is not None else None,
        reference_end=int(read.reference_end) if mapped and read.reference_end is not None else None,
        mapping_quality=int(read.mapping_quality),
        is_secondary=bool(read.is_secondary),
        is_supplementary=bool(read.is_supplementary),
        is_duplicate=bool(read.is_duplicate),
    )


def iter_alignment_records(path: str | Path) -> Iterator[AlignmentRecord]:
    """Yield records in file order; no index is needed or consulted.

    Truncation and corruption surface as :class:`DecodeError` at the point
    the decoder hits them.
    """
    bam = open_alignments(path)
    n = 0
    try:
        it = bam.fetch(until_eof=True)
        while True:
            try:
                read = next(it)
            except StopIteration:
                break
            except (OSError, ValueError) as e:
                raise DecodeError(
                    f"Alignment input {path} is corrupt or truncated after {n} records: {e}"
                ) from e
            n += 1
            yield record_from_segment(read)
    finally:
        bam.close()
    logger.debug("Decoded %d records from %s", n, path)
